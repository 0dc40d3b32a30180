import re
from datetime import date, datetime, timedelta, timezone
from typing import Iterator

MINUTES_PER_DAY = 24 * 60

_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")
_DATE_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")


def utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def is_hhmm(value: str) -> bool:
    return _HHMM_RE.match(value) is not None


def parse_hhmm(value: str) -> int:
    """Convert a wall-clock ``HH:MM`` string to minutes since midnight."""
    match = _HHMM_RE.match(value)
    if match is None:
        raise ValueError(f"invalid time {value!r}, expected HH:MM")
    return int(match.group(1)) * 60 + int(match.group(2))


def format_minutes(minutes: int) -> str:
    minutes %= MINUTES_PER_DAY
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def parse_calendar_date(value: str) -> date:
    """
    Parse a strict ``YYYY-MM-DD`` calendar date.

    Timestamps and offsets are refused so a client can never shift the day by
    sending a UTC instant; impossible dates such as 2025-02-30 are refused too.
    """
    match = _DATE_RE.match(value)
    if match is None:
        raise ValueError("invalid date format, use YYYY-MM-DD")
    try:
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError as exc:
        raise ValueError("date does not exist") from exc


def weekday_of(day: date) -> int:
    """Weekday with Sunday = 0 ... Saturday = 6."""
    return (day.weekday() + 1) % 7


def iter_dates(start: date, end: date) -> Iterator[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)
