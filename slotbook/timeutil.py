from collections.abc import Iterator
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from slotbook.config import settings
from slotbook.errors import InvalidInput

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M"


def parse_timestamp(value: str | datetime) -> datetime:
    """
    Parse an ISO-8601 string (or canonical "YYYY-MM-DD HH:MM") into a naive
    datetime in the configured timezone.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        if not isinstance(value, str) or not value.strip():
            raise InvalidInput(f"Invalid timestamp: {value!r}")
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise InvalidInput(f"Invalid timestamp: {value!r}") from exc

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(ZoneInfo(settings.timezone)).replace(
            tzinfo=None
        )
    return parsed.replace(second=0, microsecond=0)


def format_timestamp(value: datetime) -> str:
    return value.strftime(TIMESTAMP_FORMAT)


def normalize_timestamp(value: str | datetime) -> str:
    return format_timestamp(parse_timestamp(value))


def overlaps(
    a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime
) -> bool:
    # half-open windows: touching edges do not overlap
    return a_start < b_end and b_start < a_end


def hourly_slices(
    start: datetime, end: datetime, minutes: int | None = None
) -> Iterator[tuple[datetime, datetime]]:
    """
    Consecutive fixed-length windows [t, t + minutes) that fit entirely in
    [start, end). A trailing remainder shorter than one slice is dropped.
    """
    step = timedelta(minutes=minutes or settings.slot_minutes)
    current = start
    while current + step <= end:
        yield current, current + step
        current += step


def parse_window(start, end) -> tuple[datetime, datetime]:
    if not start or not end:
        raise InvalidInput("Missing required event data.")
    start_at, end_at = parse_timestamp(start), parse_timestamp(end)
    if start_at >= end_at:
        raise InvalidInput("Event start must be before its end.")
    return start_at, end_at
