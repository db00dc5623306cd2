import logging
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from typing import Generic, TypeVar

from pydantic import BaseModel

from slotbook.models import Booking, Slot, User

K = TypeVar("K")
V = TypeVar("V")

logger = logging.getLogger(__name__)


class InMemoryKeyValueDatabase(Generic[K, V]):
    """
    Simple in-memory key/value database.
    """

    def __init__(self) -> None:
        self._store: MutableMapping[K, V] = {}

    def put(self, key: K, value: V) -> None:
        self._store[key] = value

    def get(self, key: K) -> V | None:
        return self._store.get(key)

    def delete(self, key: K) -> bool:
        return self._store.pop(key, None) is not None

    def all(self) -> list[V]:
        return list(self._store.values())

    def clear(self) -> None:
        self._store.clear()

    def __iter__(self) -> Iterator[V]:
        return iter(self._store.values())

    def __len__(self) -> int:
        return len(self._store)

    @contextmanager
    def transaction(self) -> Iterator["InMemoryKeyValueDatabase[K, V]"]:
        """
        Snapshot the store and restore it if the block raises, so a
        multi-record sequence either lands completely or not at all.
        """
        snapshot = {
            key: value.model_copy(deep=True)
            if isinstance(value, BaseModel)
            else value
            for key, value in self._store.items()
        }
        try:
            yield self
        except BaseException:
            logger.warning(
                "Transaction failed, restoring %d records", len(snapshot)
            )
            self._store.clear()
            self._store.update(snapshot)
            raise

    def book_slot_if_capacity(self, key: K, booking: Booking) -> Slot | None:
        """
        Atomically append a booking to a slot if it still has capacity.
        Returns the updated slot, or None if the slot is gone, full, already
        shared with the client or already holds the worker.
        """
        value = self._store.get(key)
        if not isinstance(value, Slot):
            return None
        # no await between check and set, so the event loop cannot interleave
        if value.remaining_capacity <= 0:
            return None
        if booking.client_id in value.shared_with:
            return None
        if any(b.owner_id == booking.owner_id for b in value.bookings):
            return None
        value.bookings.append(booking)
        value.remaining_capacity -= 1
        value.refresh()
        self._store[key] = value
        return value

    def release_booking(self, key: K, booking_id: str) -> Slot | None:
        """
        Remove a booking from its slot and give the unit of capacity back.
        Dedicated slots left empty are deleted; returns the slot as it stands
        afterwards (None when it was deleted or never held the booking).
        """
        value = self._store.get(key)
        if not isinstance(value, Slot):
            return None
        remaining = [b for b in value.bookings if b.id != booking_id]
        if len(remaining) == len(value.bookings):
            return None
        if not remaining and value.is_dedicated:
            self._store.pop(key, None)
            return None
        value.bookings = remaining
        value.remaining_capacity = min(
            value.capacity, value.remaining_capacity + 1
        )
        value.refresh()
        self._store[key] = value
        return value


SlotStore = InMemoryKeyValueDatabase[str, Slot | User]
