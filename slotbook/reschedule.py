import logging

from slotbook.database import SlotStore
from slotbook.directory import (
    client_has_overlap,
    committed_worker_ids,
    find_booking,
    find_slot_by_window,
    get_slot,
    get_user,
    slot_key,
)
from slotbook.errors import (
    AppointmentNotFound,
    Conflict,
    DuplicateBooking,
    InvalidInput,
    WorkerUnavailable,
)
from slotbook.models import Booking, CallerIdentity, EventData, Role, Slot
from slotbook.slots import (
    backfill_open_slots,
    create_dedicated_slot,
    remove_open_slots,
)
from slotbook.timeutil import format_timestamp, parse_window

logger = logging.getLogger(__name__)


def _booking_on_slot(
    db: SlotStore, slot_id: str, client_id: str | None
) -> tuple[Slot, Booking] | None:
    """
    Resolve an appointment addressed by the id of the slot holding it: the
    slot's only booking, or else the one booking held by client_id.
    """
    slot = get_slot(db, slot_id)
    if slot is None:
        return None
    if len(slot.bookings) == 1:
        return slot, slot.bookings[0]
    mine = [b for b in slot.bookings if client_id and b.client_id == client_id]
    if len(mine) == 1:
        return slot, mine[0]
    return None


def reschedule_booking(
    db: SlotStore,
    event: EventData,
    booking_id: str | None = None,
    caller: CallerIdentity | None = None,
) -> Slot:
    """
    Move a booked appointment to a new window and keep the time it vacated
    bookable.

    The appointment is named by its booking id or by the id of the slot
    holding it. The booking keeps its id, worker and client. It joins an
    open slot with exactly the new window when there is one; otherwise it
    gets a booked slot of its own and the open slots under the new window
    are removed. The part of the original window the new one no longer
    covers is refilled with fresh available slots.
    """
    booking_id = event.id or booking_id
    if not booking_id:
        raise InvalidInput("Missing event update data.")
    new_start, new_end = parse_window(event.start, event.end)

    if caller is not None and caller.role == Role.USER:
        client_id = caller.user_id
    else:
        client_id = event.client_id
    found = find_booking(db, booking_id) or _booking_on_slot(
        db, booking_id, client_id
    )
    if found is None:
        raise AppointmentNotFound()
    original_slot, original = found
    original_start, original_end = original_slot.booking_window(original)

    busy = committed_worker_ids(
        db, new_start, new_end, exclude_booking_id=original.id
    )
    if original.owner_id in busy:
        raise WorkerUnavailable()
    if client_has_overlap(
        db,
        original.client_id,
        new_start,
        new_end,
        exclude_booking_id=original.id,
    ):
        raise DuplicateBooking()

    with db.transaction():
        db.release_booking(slot_key(original_slot.id), original.id)
        # the worker's display name may have changed since the booking was made
        worker = get_user(db, original.owner_id)
        moved = original.model_copy(
            update={
                "owner_name": worker.name if worker else original.owner_name,
                "description": event.description or original.description,
                "client_name": (
                    event.client_name or original.client_name or "Guest"
                ),
                "start": None,
                "end": None,
            }
        )
        removed = 0
        target = find_slot_by_window(
            db, format_timestamp(new_start), format_timestamp(new_end)
        )
        if target is not None and target.is_available:
            updated = db.book_slot_if_capacity(slot_key(target.id), moved)
            if updated is None:
                raise Conflict(
                    f"Slot {target.id} filled up during reschedule."
                )
        else:
            removed = remove_open_slots(db, new_start, new_end)
            updated = create_dedicated_slot(db, moved, new_start, new_end)

        # only the vacated part of the original window is refilled
        before = backfill_open_slots(
            db, original_start, min(new_start, original_end)
        )
        after = backfill_open_slots(
            db, max(new_end, original_start), original_end
        )

    logger.info(
        "Rescheduled booking %s from %s - %s to %s - %s "
        "(%d open slots removed, %d backfilled)",
        original.id,
        format_timestamp(original_start),
        format_timestamp(original_end),
        updated.start,
        updated.end,
        removed,
        len(before) + len(after),
    )
    return updated
