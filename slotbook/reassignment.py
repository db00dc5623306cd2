"""
Reassignment engine: re-home every booking of a worker who became
unavailable.

Each booking is first handed to another worker in place (same window). If
nobody is free then, it is relocated to the earliest open slot where some
other worker and the client are both free. Bookings that fit nowhere stay
with the original worker and are reported as unresolved.
"""

import logging
from datetime import datetime
from enum import StrEnum

from pydantic import Field

from slotbook.booking import first_free_worker
from slotbook.database import SlotStore
from slotbook.directory import (
    active_workers,
    all_bookings,
    client_has_overlap,
    committed_worker_ids,
    find_slots,
    get_user,
    slot_key,
)
from slotbook.errors import Conflict, InvalidInput, WorkerNotFound
from slotbook.models import Booking, CamelModel, Role, Slot, User
from slotbook.slots import create_dedicated_slot, remove_open_slots
from slotbook.timeutil import format_timestamp

logger = logging.getLogger(__name__)


class ReassignmentAction(StrEnum):
    REASSIGNED = "reassigned"
    RELOCATED = "relocated"


class ReassignedBooking(CamelModel):
    action: ReassignmentAction
    slot_id: str
    booking: Booking
    start: str
    end: str
    previous_owner_id: str
    previous_slot_id: str
    previous_start: str
    previous_end: str


class UnresolvedBooking(CamelModel):
    slot_id: str
    booking: Booking
    start: str
    end: str
    reason: str


class ReassignmentOutcome(CamelModel):
    sick_worker_id: str
    resolved: list[ReassignedBooking] = Field(default_factory=list)
    unresolved: list[UnresolvedBooking] = Field(default_factory=list)

    @property
    def reassigned_count(self) -> int:
        return len(self.resolved)

    @property
    def unresolved_count(self) -> int:
        return len(self.unresolved)


def _reassign_in_place(
    db: SlotStore, slot: Slot, booking: Booking, candidates: list[User]
) -> ReassignedBooking | None:
    start, end = slot.booking_window(booking)
    committed = committed_worker_ids(
        db, start, end, exclude_booking_id=booking.id
    )
    worker = first_free_worker(candidates, committed)
    if worker is None:
        return None

    previous_owner_id = booking.owner_id
    booking.owner_id = worker.id
    booking.owner_name = worker.name
    slot.refresh()
    db.put(slot_key(slot.id), slot)

    return ReassignedBooking(
        action=ReassignmentAction.REASSIGNED,
        slot_id=slot.id,
        booking=booking.model_copy(),
        start=format_timestamp(start),
        end=format_timestamp(end),
        previous_owner_id=previous_owner_id,
        previous_slot_id=slot.id,
        previous_start=format_timestamp(start),
        previous_end=format_timestamp(end),
    )


def _find_relocation(
    db: SlotStore,
    slot: Slot,
    booking: Booking,
    candidates: list[User],
    not_before: datetime | None,
) -> tuple[User, Slot, datetime, datetime] | None:
    start, end = slot.booking_window(booking)
    duration = end - start

    open_slots = find_slots(
        db,
        lambda s: s.is_available
        and (s.start_at, s.end_at) != (start, end)
        and (not_before is None or s.start_at >= not_before),
    )
    for worker in candidates:
        for target in open_slots:
            new_start = target.start_at
            new_end = new_start + duration
            busy = committed_worker_ids(
                db, new_start, new_end, exclude_booking_id=booking.id
            )
            if worker.id in busy:
                continue
            if client_has_overlap(
                db,
                booking.client_id,
                new_start,
                new_end,
                exclude_booking_id=booking.id,
            ):
                continue
            return worker, target, new_start, new_end
    return None


def _relocate(
    db: SlotStore,
    slot: Slot,
    booking: Booking,
    candidates: list[User],
    not_before: datetime | None,
) -> ReassignedBooking | None:
    found = _find_relocation(db, slot, booking, candidates, not_before)
    if found is None:
        return None
    worker, target, new_start, new_end = found
    previous_start, previous_end = slot.booking_window(booking)

    db.release_booking(slot_key(slot.id), booking.id)
    moved = booking.model_copy(
        update={
            "owner_id": worker.id,
            "owner_name": worker.name,
            "start": None,
            "end": None,
        }
    )

    if (new_start, new_end) == (target.start_at, target.end_at):
        placed = db.book_slot_if_capacity(slot_key(target.id), moved)
        if placed is None:
            raise Conflict(f"Slot {target.id} filled up during reassignment.")
    else:
        remove_open_slots(db, new_start, new_end, contained=True)
        placed = create_dedicated_slot(db, moved, new_start, new_end)

    return ReassignedBooking(
        action=ReassignmentAction.RELOCATED,
        slot_id=placed.id,
        booking=moved.model_copy(),
        start=format_timestamp(new_start),
        end=format_timestamp(new_end),
        previous_owner_id=booking.owner_id,
        previous_slot_id=slot.id,
        previous_start=format_timestamp(previous_start),
        previous_end=format_timestamp(previous_end),
    )


def reassign_worker(
    db: SlotStore,
    sick_worker_id: str | None,
    *,
    not_before: datetime | None = None,
) -> ReassignmentOutcome:
    """
    Move every booking owned by sick_worker_id to other workers.

    All store writes happen inside one transaction: if anything raises, the
    store is left exactly as it was. not_before keeps relocations out of
    slots that already started.
    """
    if not sick_worker_id:
        raise InvalidInput("sickWorkerId is required.")
    sick_worker = get_user(db, sick_worker_id)
    if sick_worker is None or sick_worker.role != Role.WORKER:
        raise WorkerNotFound(f"No worker found with id {sick_worker_id}.")

    candidates = [w for w in active_workers(db) if w.id != sick_worker_id]
    owned = [
        (s, b) for s, b in all_bookings(db) if b.owner_id == sick_worker_id
    ]
    owned.sort(key=lambda pair: pair[0].booking_window(pair[1]))

    outcome = ReassignmentOutcome(sick_worker_id=sick_worker_id)
    with db.transaction():
        for slot, booking in owned:
            result = _reassign_in_place(db, slot, booking, candidates)
            if result is None:
                result = _relocate(db, slot, booking, candidates, not_before)
            if result is not None:
                outcome.resolved.append(result)
                continue

            start, end = slot.booking_window(booking)
            logger.warning(
                "Could not re-home booking %s (%s - %s) of worker %s",
                booking.id,
                format_timestamp(start),
                format_timestamp(end),
                sick_worker_id,
            )
            outcome.unresolved.append(
                UnresolvedBooking(
                    slot_id=slot.id,
                    booking=booking.model_copy(),
                    start=format_timestamp(start),
                    end=format_timestamp(end),
                    reason=(
                        "No other worker is free for this booking "
                        "or any open slot."
                    ),
                )
            )

    logger.info(
        "Reassigned %d of %d bookings for worker %s (%d unresolved)",
        outcome.reassigned_count,
        len(owned),
        sick_worker_id,
        outcome.unresolved_count,
    )
    return outcome
