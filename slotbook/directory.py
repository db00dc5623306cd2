"""
Query helpers over the record store: the worker directory and slot lookups.

Records live under "user:<id>" and "slot:<id>". Enumeration order is the
store's insertion order, which is what the allocators use as their stable
tie-break.
"""

from collections.abc import Callable
from datetime import datetime

from slotbook.database import SlotStore
from slotbook.models import Booking, CalendarId, Role, Slot, User
from slotbook.timeutil import overlaps


def slot_key(slot_id: str) -> str:
    return f"slot:{slot_id}"


def user_key(user_id: str) -> str:
    return f"user:{user_id}"


def get_user(db: SlotStore, user_id: str | None) -> User | None:
    if not user_id:
        return None
    user = db.get(user_key(user_id))
    return user if isinstance(user, User) else None


def active_workers(db: SlotStore) -> list[User]:
    return [
        u
        for u in db.all()
        if isinstance(u, User) and u.role == Role.WORKER and u.active
    ]


def get_slot(db: SlotStore, slot_id: str) -> Slot | None:
    slot = db.get(slot_key(slot_id))
    return slot if isinstance(slot, Slot) else None


def find_slots(
    db: SlotStore, predicate: Callable[[Slot], bool] | None = None
) -> list[Slot]:
    slots = [
        s
        for s in db.all()
        if isinstance(s, Slot) and (predicate is None or predicate(s))
    ]
    return sorted(slots, key=lambda s: (s.start_at, s.end_at))


def find_slot_by_window(db: SlotStore, start: str, end: str) -> Slot | None:
    """
    Exact-window lookup. An available slot wins over a full one so a
    dedicated booked record never shadows a bookable generated slot.
    """
    matches = find_slots(db, lambda s: s.start == start and s.end == end)
    available = [s for s in matches if s.calendar_id == CalendarId.AVAILABLE]
    if available:
        return available[0]
    return matches[0] if matches else None


def find_booking(
    db: SlotStore, booking_id: str
) -> tuple[Slot, Booking] | None:
    for slot in find_slots(db):
        for booking in slot.bookings:
            if booking.id == booking_id:
                return slot, booking
    return None


def all_bookings(db: SlotStore) -> list[tuple[Slot, Booking]]:
    return [(s, b) for s in find_slots(db) for b in s.bookings]


def overlapping_bookings(
    db: SlotStore,
    start: datetime,
    end: datetime,
    *,
    exclude_booking_id: str | None = None,
) -> list[tuple[Slot, Booking]]:
    found = []
    for slot, booking in all_bookings(db):
        if booking.id == exclude_booking_id:
            continue
        b_start, b_end = slot.booking_window(booking)
        if overlaps(b_start, b_end, start, end):
            found.append((slot, booking))
    return found


def committed_worker_ids(
    db: SlotStore,
    start: datetime,
    end: datetime,
    *,
    exclude_booking_id: str | None = None,
) -> set[str]:
    return {
        b.owner_id
        for _, b in overlapping_bookings(
            db, start, end, exclude_booking_id=exclude_booking_id
        )
    }


def client_has_overlap(
    db: SlotStore,
    client_id: str,
    start: datetime,
    end: datetime,
    *,
    exclude_booking_id: str | None = None,
) -> bool:
    return any(
        b.client_id == client_id
        for _, b in overlapping_bookings(
            db, start, end, exclude_booking_id=exclude_booking_id
        )
    )
