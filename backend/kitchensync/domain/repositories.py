from __future__ import annotations

from datetime import date
from typing import Iterable, Protocol

from ..models import Reservation, ReservationSettings, ReservationStatus, Restaurant, StaffMember
from .schedule import OperatingHoursEntry


class RestaurantRepository(Protocol):
    async def get(self, restaurant_id: int) -> Restaurant | None: ...

    async def get_by_slug(self, slug: str) -> Restaurant | None: ...

    async def slug_exists(self, slug: str) -> bool: ...

    async def create(self, *, name: str, slug: str) -> Restaurant: ...


class SettingsRepository(Protocol):
    async def get(self, restaurant_id: int) -> ReservationSettings | None: ...

    async def upsert(
        self,
        restaurant_id: int,
        *,
        max_covers_per_day: int | None,
        min_party_size: int,
        max_party_size: int,
        slot_interval_minutes: int,
    ) -> ReservationSettings: ...


class OperatingHoursRepository(Protocol):
    async def get_entry(self, restaurant_id: int, weekday: int) -> OperatingHoursEntry | None: ...

    async def list_week(self, restaurant_id: int) -> list[OperatingHoursEntry]: ...

    async def replace_week(self, restaurant_id: int, entries: Iterable[OperatingHoursEntry]) -> None: ...


class ReservationRepository(Protocol):
    async def get(self, restaurant_id: int, reservation_id: int) -> Reservation | None: ...

    async def covers_by_date(
        self, restaurant_id: int, start: date, end: date, *, for_update: bool = False
    ) -> dict[date, int]: ...

    async def lock_day(self, restaurant_id: int, day: date) -> None: ...

    async def create(
        self,
        *,
        restaurant_id: int,
        reservation_date: date,
        reservation_time: str,
        party_size: int,
        guest_name: str,
        guest_email: str,
        guest_phone: str | None,
        notes: str | None,
        customer_id: int | None,
        status: ReservationStatus,
    ) -> Reservation: ...

    async def get_for_update(self, restaurant_id: int, reservation_id: int) -> Reservation | None: ...

    async def list_for_restaurant(
        self,
        restaurant_id: int,
        *,
        day: date | None = None,
        status: ReservationStatus | None = None,
    ) -> list[Reservation]: ...

    async def save(self, reservation: Reservation) -> Reservation: ...


class StaffRepository(Protocol):
    async def get(self, staff_id: int) -> StaffMember | None: ...
