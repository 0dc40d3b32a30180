import re
from dataclasses import dataclass
from datetime import date
from typing import Mapping, Optional

from ..utils.time import iter_dates
from .errors import DateAtCapacityError, InvalidContactError, PartySizeOutOfRangeError
from .schedule import DEFAULT_SLOT_INTERVAL

DEFAULT_MIN_PARTY_SIZE = 1
DEFAULT_MAX_PARTY_SIZE = 20

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE_FORMATTING_RE = re.compile(r"[\s\-()+]")
_PHONE_DIGITS_RE = re.compile(r"^[0-9]{7,15}$")


@dataclass(frozen=True)
class CapacityPolicy:
    max_covers_per_day: Optional[int] = None
    min_party_size: int = DEFAULT_MIN_PARTY_SIZE
    max_party_size: int = DEFAULT_MAX_PARTY_SIZE
    slot_interval_minutes: int = DEFAULT_SLOT_INTERVAL


@dataclass(frozen=True)
class DailyCapacitySnapshot:
    date: date
    current_covers: int
    max_covers_per_day: Optional[int]
    available: bool
    remaining: Optional[int]


@dataclass(frozen=True)
class Contact:
    name: str
    email: str
    phone: Optional[str] = None


def capacity_snapshot(
    day: date,
    *,
    current_covers: int,
    max_covers_per_day: int | None,
    party_size: int | None = None,
) -> DailyCapacitySnapshot:
    if max_covers_per_day is None:
        return DailyCapacitySnapshot(
            date=day,
            current_covers=current_covers,
            max_covers_per_day=None,
            available=True,
            remaining=None,
        )
    requested = party_size if party_size is not None else 0
    return DailyCapacitySnapshot(
        date=day,
        current_covers=current_covers,
        max_covers_per_day=max_covers_per_day,
        available=current_covers + requested <= max_covers_per_day,
        remaining=max(max_covers_per_day - current_covers, 0),
    )


def build_daily_capacity(
    covers_by_date: Mapping[date, int],
    *,
    start: date,
    end: date,
    max_covers_per_day: int | None,
    party_size: int | None = None,
) -> list[DailyCapacitySnapshot]:
    """One snapshot per calendar day in ``start..end`` inclusive."""
    return [
        capacity_snapshot(
            day,
            current_covers=int(covers_by_date.get(day, 0)),
            max_covers_per_day=max_covers_per_day,
            party_size=party_size,
        )
        for day in iter_dates(start, end)
    ]


def ensure_capacity(snapshot: DailyCapacitySnapshot) -> None:
    if not snapshot.available:
        raise DateAtCapacityError(
            f"{snapshot.date.isoformat()} is fully booked "
            f"({snapshot.current_covers}/{snapshot.max_covers_per_day} covers)"
        )


def validate_party_size(policy: CapacityPolicy, party_size: int) -> None:
    if not policy.min_party_size <= party_size <= policy.max_party_size:
        raise PartySizeOutOfRangeError(
            f"party size must be between {policy.min_party_size} and {policy.max_party_size}"
        )


def normalize_phone(phone: str) -> str:
    return _PHONE_FORMATTING_RE.sub("", phone)


def validate_contact(contact: Contact) -> Contact:
    """Return a trimmed copy of ``contact`` or raise InvalidContactError naming the field."""
    name = contact.name.strip()
    if not name:
        raise InvalidContactError("name is required", field="name")

    email = contact.email.strip().lower()
    if not _EMAIL_RE.match(email):
        raise InvalidContactError("invalid email address", field="email")

    phone = contact.phone.strip() if contact.phone is not None else None
    if phone:
        # an email pasted into the phone field
        if "@" in phone:
            raise InvalidContactError("phone number must not be an email address", field="phone")
        digits = normalize_phone(phone)
        if not _PHONE_DIGITS_RE.match(digits):
            raise InvalidContactError("phone number must contain 7 to 15 digits", field="phone")
    return Contact(name=name, email=email, phone=phone or None)


def confirmation_number(reservation_id: int) -> str:
    return f"KS{reservation_id:06d}"
