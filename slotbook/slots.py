import calendar
import logging
from datetime import date, datetime, time

from slotbook.config import settings
from slotbook.database import SlotStore
from slotbook.directory import active_workers, find_slots, slot_key
from slotbook.errors import InvalidInput
from slotbook.models import Booking, Slot
from slotbook.timeutil import format_timestamp, hourly_slices, overlaps

logger = logging.getLogger(__name__)

# weekday() -> (open hour, close hour); Sunday is closed
WEEKLY_TEMPLATE: dict[int, tuple[int, int]] = {
    0: (8, 16),
    1: (8, 16),
    2: (8, 16),
    3: (8, 16),
    4: (8, 16),
    5: (9, 13),
}


def default_slot_capacity(db: SlotStore) -> int:
    return len(active_workers(db)) or settings.default_capacity


def new_available_slot(start: datetime, end: datetime, capacity: int) -> Slot:
    return Slot(
        start=format_timestamp(start),
        end=format_timestamp(end),
        capacity=capacity,
        remaining_capacity=capacity,
    )


def _validate_year_month(year, month) -> None:
    # bool is an int subclass; reject it explicitly
    for value in (year, month):
        if not isinstance(value, int) or isinstance(value, bool):
            raise InvalidInput("Year and month must be provided as numbers.")
    if not 1 <= month <= 12:
        raise InvalidInput(f"Month must be between 1 and 12, got {month}.")
    if not 1 <= year <= 9999:
        raise InvalidInput(f"Year out of range: {year}.")


def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    last_day = calendar.monthrange(year, month)[1]
    first = datetime.combine(date(year, month, 1), time.min)
    last = datetime.combine(date(year, month, last_day), time.max)
    return first, last


def build_month_slots(year: int, month: int, capacity: int) -> list[Slot]:
    """
    Lay the weekly availability template over every day of the month and cut
    each open window into fixed-length slots, in chronological order.
    """
    _validate_year_month(year, month)

    slots: list[Slot] = []
    for day in range(1, calendar.monthrange(year, month)[1] + 1):
        current = date(year, month, day)
        hours = WEEKLY_TEMPLATE.get(current.weekday())
        if hours is None:
            continue
        opens = datetime.combine(current, time(hours[0]))
        closes = datetime.combine(current, time(hours[1]))
        for start, end in hourly_slices(opens, closes):
            slots.append(new_available_slot(start, end, capacity))
    return slots


def generate_month_slots(
    db: SlotStore, year, month, *, capacity: int | None = None
) -> tuple[list[Slot], bool]:
    """
    Generate the month's slots at most once.

    Returns (slots, created). When any slot already starts inside the month,
    nothing is inserted and the existing month slots are returned with
    created=False.
    """
    _validate_year_month(year, month)
    first, last = month_bounds(year, month)

    existing = find_slots(db, lambda s: first <= s.start_at <= last)
    if existing:
        logger.info(
            "Slots already exist for %04d-%02d (%d), skipping generation",
            year,
            month,
            len(existing),
        )
        return existing, False

    if capacity is not None and capacity < 1:
        raise InvalidInput("Capacity must be at least 1.")
    if capacity is None:
        capacity = default_slot_capacity(db)
    slots = build_month_slots(year, month, capacity)
    for slot in slots:
        db.put(slot_key(slot.id), slot)

    logger.info("Generated %d slots for %04d-%02d", len(slots), year, month)
    return slots, True


def remove_open_slots(
    db: SlotStore, start: datetime, end: datetime, *, contained: bool = False
) -> int:
    """
    Delete available slots holding no bookings that overlap [start, end), or
    with contained=True only those lying entirely inside it.
    """

    def doomed(s: Slot) -> bool:
        if not s.is_available or s.bookings:
            return False
        if contained:
            return start <= s.start_at and s.end_at <= end
        return overlaps(s.start_at, s.end_at, start, end)

    hit = find_slots(db, doomed)
    for slot in hit:
        db.delete(slot_key(slot.id))
    return len(hit)


def create_dedicated_slot(
    db: SlotStore, booking: Booking, start: datetime, end: datetime
) -> Slot:
    slot = Slot(
        start=format_timestamp(start),
        end=format_timestamp(end),
        description=booking.description,
        capacity=1,
        remaining_capacity=0,
        bookings=[booking],
        dedicated=True,
    )
    db.put(slot_key(slot.id), slot)
    return slot


def backfill_open_slots(
    db: SlotStore, start: datetime, end: datetime, capacity: int | None = None
) -> list[Slot]:
    """
    Cover [start, end) with fresh available slots using the generator's
    slicing rule. Slices that would overlap a surviving slot are skipped.
    """
    capacity = capacity or default_slot_capacity(db)
    created = []
    for slice_start, slice_end in hourly_slices(start, end):
        taken = find_slots(
            db,
            lambda s: overlaps(s.start_at, s.end_at, slice_start, slice_end),
        )
        if taken:
            continue
        slot = new_available_slot(slice_start, slice_end, capacity)
        db.put(slot_key(slot.id), slot)
        created.append(slot)
    return created
