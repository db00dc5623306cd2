"""
Domain models for the slot calendar.

A Slot is a bookable window with a capacity counter and the ordered list of
bookings made against it. calendar_id and title are derived from the
capacity and are recomputed by refresh() after every mutation.
"""

import uuid
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from slotbook.timeutil import normalize_timestamp, parse_timestamp

AVAILABLE_TITLE = "Available Slot"
FULLY_BOOKED_TITLE = "Fully Booked"
BOOKED_TITLE_PREFIX = "Booked Appointment"


def new_id() -> str:
    return uuid.uuid4().hex


def booked_title(worker_name: str | None) -> str:
    if not worker_name:
        return BOOKED_TITLE_PREFIX
    return f"{BOOKED_TITLE_PREFIX} with {worker_name}"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Role(StrEnum):
    USER = "user"
    WORKER = "worker"
    ADMIN = "admin"


class CalendarId(StrEnum):
    AVAILABLE = "available"
    BOOKED = "booked"


class Visibility(StrEnum):
    PUBLIC = "public"
    INTERNAL = "internal"


class User(CamelModel):
    id: str
    name: str
    role: Role = Role.USER
    active: bool = True


class CallerIdentity(CamelModel):
    user_id: str
    role: Role


class Booking(CamelModel):
    id: str = Field(default_factory=new_id)
    owner_id: str
    owner_name: str = ""
    client_id: str
    client_name: str = "Guest"
    description: str = ""
    # set only when the booking narrows the parent slot's window
    start: str | None = None
    end: str | None = None

    @model_validator(mode="after")
    def _normalize_window(self) -> "Booking":
        if (self.start is None) != (self.end is None):
            raise ValueError("booking start and end must be set together")
        if self.start is not None and self.end is not None:
            self.start = normalize_timestamp(self.start)
            self.end = normalize_timestamp(self.end)
            if parse_timestamp(self.start) >= parse_timestamp(self.end):
                raise ValueError("booking start must be before end")
        return self

    @property
    def title(self) -> str:
        return booked_title(self.owner_name)


class Slot(CamelModel):
    id: str = Field(default_factory=new_id)
    title: str = AVAILABLE_TITLE
    description: str = ""
    start: str
    end: str
    calendar_id: CalendarId = CalendarId.AVAILABLE
    capacity: int = Field(default=1, ge=1)
    remaining_capacity: int = Field(default=1, ge=0)
    bookings: list[Booking] = Field(default_factory=list)
    shared_with: list[str] = Field(default_factory=list)
    visibility: Visibility = Visibility.PUBLIC
    # set for single-booking records created when a booking is moved
    dedicated: bool = False

    @model_validator(mode="after")
    def _check_window_and_capacity(self) -> "Slot":
        self.start = normalize_timestamp(self.start)
        self.end = normalize_timestamp(self.end)
        if self.start_at >= self.end_at:
            raise ValueError("slot start must be before end")
        if self.remaining_capacity > self.capacity:
            raise ValueError("remaining capacity cannot exceed capacity")
        self.refresh()
        return self

    @property
    def start_at(self) -> datetime:
        return parse_timestamp(self.start)

    @property
    def end_at(self) -> datetime:
        return parse_timestamp(self.end)

    @property
    def is_available(self) -> bool:
        return self.remaining_capacity > 0

    @property
    def is_dedicated(self) -> bool:
        """A single-unit record created for one moved booking."""
        return self.dedicated

    def booking_window(self, booking: Booking) -> tuple[datetime, datetime]:
        if booking.start is not None and booking.end is not None:
            return parse_timestamp(booking.start), parse_timestamp(booking.end)
        return self.start_at, self.end_at

    def refresh(self) -> None:
        """Re-derive calendar_id, title and shared_with from the bookings."""
        clients = (b.client_id for b in self.bookings)
        self.shared_with = list(dict.fromkeys(clients))
        if self.remaining_capacity > 0:
            self.calendar_id = CalendarId.AVAILABLE
            self.title = AVAILABLE_TITLE
        elif len(self.bookings) == 1:
            self.calendar_id = CalendarId.BOOKED
            self.title = self.bookings[0].title
        else:
            self.calendar_id = CalendarId.BOOKED
            self.title = FULLY_BOOKED_TITLE


class EventData(CamelModel):
    """Calendar event payload sent by the booking UI."""

    id: str | None = None
    calendar_id: CalendarId | None = None
    start: str | None = None
    end: str | None = None
    client_id: str | None = None
    client_name: str | None = None
    description: str | None = None
