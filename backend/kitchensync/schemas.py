import datetime as dt
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from .domain.schedule import OperatingHoursEntry
from .domain.services import CapacityPolicy, DailyCapacitySnapshot, confirmation_number
from .models import Reservation, ReservationStatus, Restaurant
from .utils.time import is_hhmm, parse_calendar_date

HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


def _strict_date(value: Any) -> Any:
    if isinstance(value, str):
        return parse_calendar_date(value)
    return value


class RejectionDetail(BaseModel):
    reason: str
    field: Optional[str] = None
    message: str


class DailyCapacityRead(BaseModel):
    date: dt.date
    available: bool
    current_covers: int
    max_covers_per_day: Optional[int]
    remaining: Optional[int]

    @classmethod
    def from_snapshot(cls, snapshot: DailyCapacitySnapshot) -> "DailyCapacityRead":
        return cls(
            date=snapshot.date,
            available=snapshot.available,
            current_covers=snapshot.current_covers,
            max_covers_per_day=snapshot.max_covers_per_day,
            remaining=snapshot.remaining,
        )


class ReservationCreate(BaseModel):
    date: dt.date
    time: str = Field(pattern=HHMM_PATTERN)
    party_size: int
    name: str = Field(min_length=1, max_length=200)
    email: str = Field(max_length=255)
    phone: Optional[str] = Field(default=None, max_length=50)
    notes: Optional[str] = Field(default=None, max_length=1024)

    check_date = field_validator("date", mode="before")(_strict_date)


class ReservationCancel(BaseModel):
    email: str = Field(min_length=3, max_length=255)


class ReservationUpdate(BaseModel):
    date: Optional[dt.date] = None
    time: Optional[str] = Field(default=None, pattern=HHMM_PATTERN)
    party_size: Optional[int] = None
    notes: Optional[str] = Field(default=None, max_length=1024)
    version: Optional[int] = Field(default=None, ge=1)

    check_date = field_validator("date", mode="before")(_strict_date)


class GuestReservationUpdate(ReservationUpdate):
    email: str = Field(min_length=3, max_length=255)


class ReservationRead(BaseModel):
    reservation_id: int
    restaurant_id: int
    confirmation_number: str
    date: dt.date
    time: str
    party_size: int
    status: ReservationStatus
    guest_name: str
    guest_email: str
    guest_phone: Optional[str]
    notes: Optional[str]
    version: int

    @classmethod
    def from_db(cls, *, reservation: Reservation) -> "ReservationRead":
        return cls(
            reservation_id=reservation.id,
            restaurant_id=reservation.restaurant_id,
            confirmation_number=confirmation_number(reservation.id),
            date=reservation.reservation_date,
            time=reservation.reservation_time,
            party_size=reservation.party_size,
            status=reservation.status,
            guest_name=reservation.guest_name,
            guest_email=reservation.guest_email,
            guest_phone=reservation.guest_phone,
            notes=reservation.notes,
            version=reservation.version,
        )


class PolicyRead(BaseModel):
    max_covers_per_day: Optional[int]
    min_party_size: int
    max_party_size: int
    slot_interval_minutes: int

    @classmethod
    def from_policy(cls, policy: CapacityPolicy) -> "PolicyRead":
        return cls(
            max_covers_per_day=policy.max_covers_per_day,
            min_party_size=policy.min_party_size,
            max_party_size=policy.max_party_size,
            slot_interval_minutes=policy.slot_interval_minutes,
        )


class PolicyUpdate(BaseModel):
    max_covers_per_day: Optional[int] = Field(default=None, ge=0)
    min_party_size: int = Field(default=1, ge=1)
    max_party_size: int = Field(default=20, ge=1)
    slot_interval_minutes: int = Field(default=30)

    def to_policy(self) -> CapacityPolicy:
        return CapacityPolicy(
            max_covers_per_day=self.max_covers_per_day,
            min_party_size=self.min_party_size,
            max_party_size=self.max_party_size,
            slot_interval_minutes=self.slot_interval_minutes,
        )


class OperatingHoursItem(BaseModel):
    weekday: int = Field(ge=0, le=6, description="0 = Sunday")
    closed: bool = False
    open: Optional[str] = None
    close: Optional[str] = None

    @field_validator("open", "close")
    @classmethod
    def check_time(cls, value: Optional[str]) -> Optional[str]:
        # blank strings mean "not set"
        if value is None or value == "":
            return None
        if not is_hhmm(value):
            raise ValueError("time must be HH:MM")
        return value

    def to_entry(self) -> OperatingHoursEntry:
        return OperatingHoursEntry(weekday=self.weekday, closed=self.closed, open=self.open, close=self.close)

    @classmethod
    def from_entry(cls, entry: OperatingHoursEntry) -> "OperatingHoursItem":
        return cls(weekday=entry.weekday, closed=entry.closed, open=entry.open, close=entry.close)


class OperatingHoursUpdate(BaseModel):
    days: List[OperatingHoursItem]


class RestaurantCreate(BaseModel):
    name: str = Field(min_length=2, max_length=200)


class RestaurantRead(BaseModel):
    restaurant_id: int
    name: str
    slug: str
    is_active: bool

    @classmethod
    def from_db(cls, *, restaurant: Restaurant) -> "RestaurantRead":
        return cls(
            restaurant_id=restaurant.id,
            name=restaurant.name,
            slug=restaurant.slug,
            is_active=restaurant.is_active,
        )
