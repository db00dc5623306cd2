"""
Booking allocator: match a booking request to a slot and a free worker.

The checks run against a read of the store; the write goes through
book_slot_if_capacity, which re-checks capacity and client/worker uniqueness
on the slot itself so a concurrent booker can't take the last unit twice.
"""

import logging
from datetime import UTC, datetime

from slotbook.database import SlotStore
from slotbook.directory import (
    active_workers,
    client_has_overlap,
    committed_worker_ids,
    find_slot_by_window,
    get_user,
    slot_key,
)
from slotbook.errors import (
    Conflict,
    DuplicateBooking,
    NoWorkerAvailable,
    SlotFullyBooked,
    SlotNotFound,
)
from slotbook.models import (
    Booking,
    CallerIdentity,
    EventData,
    Role,
    Slot,
    User,
)
from slotbook.timeutil import format_timestamp, parse_window

logger = logging.getLogger(__name__)


def first_free_worker(
    workers: list[User],
    committed: set[str],
    *,
    exclude: set[str] | None = None,
) -> User | None:
    """First worker in directory order that isn't committed or excluded."""
    skip = committed | (exclude or set())
    return next((w for w in workers if w.id not in skip), None)


def resolve_client(
    db: SlotStore, event: EventData, caller: CallerIdentity | None
) -> tuple[str, str]:
    """
    Work out who the booking is for. Staff may book on behalf of a client by
    passing clientId; a plain user always books for themselves.
    """
    client_id = event.client_id
    if caller is not None and (client_id is None or caller.role == Role.USER):
        client_id = caller.user_id
    if not client_id:
        client_id = f"guest-{int(datetime.now(UTC).timestamp() * 1000)}"

    client = get_user(db, client_id)
    client_name = (
        event.client_name or (client.name if client else None) or "Guest"
    )
    return client_id, client_name


def book_slot(
    db: SlotStore, event: EventData, caller: CallerIdentity | None = None
) -> Slot:
    start_at, end_at = parse_window(event.start, event.end)
    start, end = format_timestamp(start_at), format_timestamp(end_at)

    slot = find_slot_by_window(db, start, end)
    if slot is None:
        raise SlotNotFound()

    client_id, client_name = resolve_client(db, event, caller)

    worker = first_free_worker(
        active_workers(db), committed_worker_ids(db, start_at, end_at)
    )
    if worker is None:
        logger.info("No worker free for %s - %s", start, end)
        raise NoWorkerAvailable()

    if client_has_overlap(db, client_id, start_at, end_at):
        logger.info(
            "Client %s already booked around %s - %s", client_id, start, end
        )
        raise DuplicateBooking()

    if not slot.is_available:
        raise SlotFullyBooked()

    booking = Booking(
        owner_id=worker.id,
        owner_name=worker.name,
        client_id=client_id,
        client_name=client_name,
        description=event.description or "",
    )
    updated = db.book_slot_if_capacity(slot_key(slot.id), booking)
    if updated is None:
        # someone else took the last unit (or the same client/worker) first
        logger.warning("Lost booking race on slot %s", slot.id)
        raise Conflict()

    logger.info(
        "Booked slot %s (%s - %s) for client %s with worker %s, %d left",
        updated.id,
        start,
        end,
        client_id,
        worker.id,
        updated.remaining_capacity,
    )
    return updated
