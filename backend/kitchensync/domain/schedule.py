from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from ..utils.time import MINUTES_PER_DAY, format_minutes, is_hhmm, parse_hhmm
from .errors import InvalidScheduleError

DEFAULT_SLOT_INTERVAL = 30
ALLOWED_SLOT_INTERVALS = (15, 30, 60)


@dataclass(frozen=True)
class OperatingHoursEntry:
    weekday: int
    closed: bool
    open: Optional[str] = None
    close: Optional[str] = None

    @property
    def is_bookable(self) -> bool:
        return not self.closed and bool(self.open) and bool(self.close)


def generate_slot_minutes(
    entry: OperatingHoursEntry | None,
    *,
    interval: int = DEFAULT_SLOT_INTERVAL,
) -> list[int]:
    """
    Bookable slot starts for one service day, in minutes from that day's midnight.

    A window whose close is earlier than its open runs past midnight; its
    early-morning slots are returned offset by a full day (e.g. 00:30 -> 1470),
    so the result is always strictly increasing in generation order.
    """
    if entry is None or not entry.is_bookable:
        return []
    assert entry.open is not None and entry.close is not None
    open_m = parse_hhmm(entry.open)
    close_m = parse_hhmm(entry.close)

    if close_m == open_m:
        return [open_m]
    if close_m > open_m:
        return list(range(open_m, close_m + 1, interval))
    evening = range(open_m, MINUTES_PER_DAY, interval)
    early = range(0, close_m + 1, interval)
    return list(evening) + [MINUTES_PER_DAY + m for m in early]


def generate_slots(
    entry: OperatingHoursEntry | None,
    *,
    interval: int = DEFAULT_SLOT_INTERVAL,
) -> list[str]:
    """Same as :func:`generate_slot_minutes`, formatted as wall-clock ``HH:MM``."""
    return [format_minutes(m) for m in generate_slot_minutes(entry, interval=interval)]


def find_slot(entry: OperatingHoursEntry | None, time_value: str, *, interval: int = DEFAULT_SLOT_INTERVAL) -> int | None:
    """Return the service-relative minute of ``time_value`` if it is an offered slot."""
    try:
        wanted = parse_hhmm(time_value)
    except ValueError:
        return None
    for minute in generate_slot_minutes(entry, interval=interval):
        if minute % MINUTES_PER_DAY == wanted:
            return minute
    return None


def validate_week(entries: Iterable[OperatingHoursEntry]) -> list[OperatingHoursEntry]:
    """Check a weekly table submitted by staff. Midnight-crossing windows are legal."""
    seen: set[int] = set()
    result: list[OperatingHoursEntry] = []
    for entry in entries:
        if not 0 <= entry.weekday <= 6:
            raise InvalidScheduleError(f"weekday {entry.weekday} out of range 0-6")
        if entry.weekday in seen:
            raise InvalidScheduleError(f"weekday {entry.weekday} listed twice")
        seen.add(entry.weekday)
        if entry.closed:
            result.append(OperatingHoursEntry(weekday=entry.weekday, closed=True))
            continue
        if not entry.open or not entry.close:
            raise InvalidScheduleError(f"weekday {entry.weekday} needs both open and close times")
        if not is_hhmm(entry.open) or not is_hhmm(entry.close):
            raise InvalidScheduleError(f"weekday {entry.weekday} times must be HH:MM")
        result.append(entry)
    return sorted(result, key=lambda e: e.weekday)


def default_week() -> list[OperatingHoursEntry]:
    return [
        OperatingHoursEntry(weekday=0, closed=True),
        *(OperatingHoursEntry(weekday=day, closed=False, open="17:00", close="22:00") for day in range(1, 7)),
    ]
