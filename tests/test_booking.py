from datetime import UTC, datetime
from itertools import combinations

import pytest
from freezegun import freeze_time

from slotbook.booking import book_slot
from slotbook.directory import (
    all_bookings,
    find_slot_by_window,
    find_slots,
    get_slot,
    slot_key,
)
from slotbook.errors import (
    DuplicateBooking,
    InvalidInput,
    NoWorkerAvailable,
    SlotFullyBooked,
    SlotNotFound,
)
from slotbook.models import Booking, CalendarId, CallerIdentity, Role, Slot
from slotbook.slots import create_dedicated_slot, generate_month_slots
from slotbook.timeutil import overlaps, parse_timestamp
from tests.conftest import event

MONDAY_9 = ("2025-10-06 09:00", "2025-10-06 10:00")


def _put_slot(db, slot_id: str, start: str, end: str, capacity: int = 3):
    slot = Slot(
        id=slot_id,
        start=start,
        end=end,
        capacity=capacity,
        remaining_capacity=capacity,
    )
    db.put(slot_key(slot_id), slot)
    return slot


def _put_overlapping_pair(db) -> None:
    _put_slot(db, "a", "2025-10-06 09:00", "2025-10-06 10:00")
    _put_slot(db, "b", "2025-10-06 09:30", "2025-10-06 10:30")


def test_booking_decrements_capacity_and_assigns_first_worker(
    october,
) -> None:
    slot = book_slot(
        october,
        event(*MONDAY_9, client_id="carol-id", description="Deep clean"),
    )

    assert slot.remaining_capacity == 2
    assert slot.calendar_id == CalendarId.AVAILABLE
    assert slot.title == "Available Slot"
    assert slot.shared_with == ["carol-id"]

    (booking,) = slot.bookings
    assert booking.owner_id == "alice-id"
    assert booking.owner_name == "Alice Ongwele"
    assert booking.client_id == "carol-id"
    assert booking.client_name == "Carol Mendes"
    assert booking.description == "Deep clean"


def test_three_bookings_fill_the_slot(october) -> None:
    for client_id in ("carol-id", "dan-id", "erin-id"):
        slot = book_slot(october, event(*MONDAY_9, client_id=client_id))

    assert slot.remaining_capacity == 0
    assert slot.calendar_id == CalendarId.BOOKED
    assert slot.title == "Fully Booked"
    owners = [b.owner_id for b in slot.bookings]
    assert owners == ["alice-id", "wei-id", "barry-id"]

    with pytest.raises(NoWorkerAvailable) as exc_info:
        book_slot(october, event(*MONDAY_9, client_id="frank-id"))
    assert exc_info.value.status_code == 409

    stored = find_slot_by_window(october, *MONDAY_9)
    assert stored.remaining_capacity == 0
    assert len(stored.bookings) == 3


def test_same_client_cannot_book_a_slot_twice(october) -> None:
    book_slot(october, event(*MONDAY_9, client_id="carol-id"))

    with pytest.raises(DuplicateBooking) as exc_info:
        book_slot(october, event(*MONDAY_9, client_id="carol-id"))
    assert exc_info.value.status_code == 409

    assert find_slot_by_window(october, *MONDAY_9).remaining_capacity == 2


def test_client_cannot_book_an_overlapping_slot(db) -> None:
    _put_overlapping_pair(db)

    book_slot(
        db,
        event("2025-10-06 09:00", "2025-10-06 10:00", client_id="carol-id"),
    )

    with pytest.raises(DuplicateBooking):
        book_slot(
            db,
            event(
                "2025-10-06 09:30", "2025-10-06 10:30", client_id="carol-id"
            ),
        )


def test_workers_committed_in_overlapping_slots_are_not_free(db) -> None:
    _put_overlapping_pair(db)

    book_slot(
        db,
        event("2025-10-06 09:00", "2025-10-06 10:00", client_id="carol-id"),
    )
    slot = book_slot(
        db,
        event("2025-10-06 09:30", "2025-10-06 10:30", client_id="dan-id"),
    )

    # alice is busy until 10:00, so the overlapping slot gets wei
    assert slot.bookings[0].owner_id == "wei-id"


def test_adjacent_slots_do_not_conflict(october) -> None:
    book_slot(october, event(*MONDAY_9, client_id="carol-id"))
    slot = book_slot(
        october,
        event("2025-10-06 10:00", "2025-10-06 11:00", client_id="carol-id"),
    )

    assert slot.bookings[0].owner_id == "alice-id"


def test_full_slot_with_free_worker_reports_fully_booked(db) -> None:
    generate_month_slots(db, 2025, 10, capacity=1)
    book_slot(db, event(*MONDAY_9, client_id="carol-id"))

    with pytest.raises(SlotFullyBooked):
        book_slot(db, event(*MONDAY_9, client_id="dan-id"))


def test_full_single_slot_takes_worker_title(db) -> None:
    generate_month_slots(db, 2025, 10, capacity=1)
    slot = book_slot(db, event(*MONDAY_9, client_id="carol-id"))

    assert slot.calendar_id == CalendarId.BOOKED
    assert slot.title == "Booked Appointment with Alice Ongwele"


def test_unknown_window_is_not_found(october) -> None:
    with pytest.raises(SlotNotFound) as exc_info:
        book_slot(october, event("2025-10-06 09:30", "2025-10-06 10:30"))
    assert exc_info.value.status_code == 404


def test_iso_timestamps_are_normalized(october) -> None:
    slot = book_slot(
        october,
        event(
            "2025-10-06T09:00:00Z",
            "2025-10-06T10:00:00.000Z",
            client_id="carol-id",
        ),
    )
    assert (slot.start, slot.end) == MONDAY_9


@pytest.mark.parametrize(
    "start, end",
    [
        (None, "2025-10-06 10:00"),
        ("2025-10-06 09:00", None),
        ("not a date", "2025-10-06 10:00"),
        ("2025-10-06 10:00", "2025-10-06 09:00"),
    ],
)
def test_malformed_request_is_invalid_input(october, start, end) -> None:
    with pytest.raises(InvalidInput) as exc_info:
        book_slot(october, event(start, end))
    assert exc_info.value.status_code == 400


def test_plain_user_always_books_for_themselves(october) -> None:
    caller = CallerIdentity(user_id="dan-id", role=Role.USER)
    slot = book_slot(october, event(*MONDAY_9, client_id="carol-id"), caller)

    assert slot.bookings[0].client_id == "dan-id"
    assert slot.bookings[0].client_name == "Dan Okafor"


def test_staff_can_book_on_behalf_of_a_client(october) -> None:
    caller = CallerIdentity(user_id="admin-id", role=Role.ADMIN)
    slot = book_slot(
        october,
        event(*MONDAY_9, client_id="carol-id", client_name="C. Mendes"),
        caller,
    )

    assert slot.bookings[0].client_id == "carol-id"
    assert slot.bookings[0].client_name == "C. Mendes"


def test_anonymous_booking_gets_guest_identity(october) -> None:
    with freeze_time("2025-10-01 12:00:00"):
        slot = book_slot(october, event(*MONDAY_9))
        now = datetime(2025, 10, 1, 12, tzinfo=UTC)
        expected = int(now.timestamp() * 1000)

    assert slot.bookings[0].client_id == f"guest-{expected}"
    assert slot.bookings[0].client_name == "Guest"


def test_conditional_update_refuses_the_last_unit_twice(db) -> None:
    _put_slot(db, "s", *MONDAY_9, capacity=1)

    first = db.book_slot_if_capacity(
        slot_key("s"), Booking(owner_id="alice-id", client_id="carol-id")
    )
    second = db.book_slot_if_capacity(
        slot_key("s"), Booking(owner_id="wei-id", client_id="dan-id")
    )

    assert first is not None
    assert second is None
    stored = db.get(slot_key("s"))
    assert stored.remaining_capacity == 0
    assert [b.client_id for b in stored.bookings] == ["carol-id"]


def test_conditional_update_refuses_same_client_or_worker(db) -> None:
    _put_slot(db, "s", *MONDAY_9)
    db.book_slot_if_capacity(
        slot_key("s"), Booking(owner_id="alice-id", client_id="carol-id")
    )

    same_client = Booking(owner_id="wei-id", client_id="carol-id")
    same_worker = Booking(owner_id="alice-id", client_id="dan-id")
    assert db.book_slot_if_capacity(slot_key("s"), same_client) is None
    assert db.book_slot_if_capacity(slot_key("s"), same_worker) is None
    assert db.get(slot_key("s")).remaining_capacity == 2


def test_release_keeps_generated_single_capacity_slot(db) -> None:
    _put_slot(db, "s", *MONDAY_9, capacity=1)
    booking = Booking(owner_id="alice-id", client_id="carol-id")
    db.book_slot_if_capacity(slot_key("s"), booking)

    released = db.release_booking(slot_key("s"), booking.id)

    assert released is not None
    assert released.remaining_capacity == 1
    assert released.calendar_id == CalendarId.AVAILABLE
    assert get_slot(db, "s") is released


def test_release_deletes_an_emptied_dedicated_slot(db) -> None:
    booking = Booking(owner_id="alice-id", client_id="carol-id")
    slot = create_dedicated_slot(
        db, booking, parse_timestamp(MONDAY_9[0]), parse_timestamp(MONDAY_9[1])
    )
    assert slot.is_dedicated

    assert db.release_booking(slot_key(slot.id), booking.id) is None
    assert get_slot(db, slot.id) is None


def test_invariants_hold_under_a_busy_day(october) -> None:
    windows = [
        (f"2025-10-06 {h:02d}:00", f"2025-10-06 {h + 1:02d}:00")
        for h in range(8, 16)
    ]
    clients = [
        "carol-id", "dan-id", "erin-id", "frank-id", "guest-a", "guest-b"
    ]

    accepted = 0
    for start, end in windows:
        for client_id in clients:
            try:
                book_slot(october, event(start, end, client_id=client_id))
                accepted += 1
            except (NoWorkerAvailable, DuplicateBooking, SlotFullyBooked):
                pass

    # three workers per hour, eight hours
    assert accepted == 24

    for slot in find_slots(october):
        assert 0 <= slot.remaining_capacity <= slot.capacity
        assert slot.remaining_capacity == slot.capacity - len(slot.bookings)
        if slot.remaining_capacity == 0:
            assert slot.calendar_id == CalendarId.BOOKED
        else:
            assert slot.calendar_id == CalendarId.AVAILABLE

    bookings = all_bookings(october)
    for (slot_a, a), (slot_b, b) in combinations(bookings, 2):
        window_a = slot_a.booking_window(a)
        window_b = slot_b.booking_window(b)
        if overlaps(*window_a, *window_b):
            assert a.owner_id != b.owner_id
            assert a.client_id != b.client_id
