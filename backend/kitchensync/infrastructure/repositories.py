from __future__ import annotations

from datetime import date
from typing import Any, Iterable, List, Optional, Tuple

from sqlalchemy import Select, delete, func, select
from sqlalchemy.dialects.mysql import insert as mysql_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.errors import SlugConflictError
from ..domain.repositories import (
    OperatingHoursRepository,
    ReservationRepository,
    RestaurantRepository,
    SettingsRepository,
    StaffRepository,
)
from ..domain.schedule import OperatingHoursEntry
from ..models import (
    OperatingHours,
    Reservation,
    ReservationDayLock,
    ReservationSettings,
    ReservationStatus,
    Restaurant,
    StaffMember,
)
from ..utils.time import utc_now_naive


def _entry_from_row(row: OperatingHours) -> OperatingHoursEntry:
    return OperatingHoursEntry(
        weekday=row.weekday,
        closed=row.closed,
        open=row.open_time,
        close=row.close_time,
    )


class SqlAlchemyRestaurantRepository(RestaurantRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, restaurant_id: int) -> Restaurant | None:
        result = await self.session.scalar(select(Restaurant).where(Restaurant.id == restaurant_id))
        return result if isinstance(result, Restaurant) else None

    async def get_by_slug(self, slug: str) -> Restaurant | None:
        result = await self.session.scalar(select(Restaurant).where(Restaurant.slug == slug))
        return result if isinstance(result, Restaurant) else None

    async def slug_exists(self, slug: str) -> bool:
        return await self.session.scalar(select(Restaurant.id).where(Restaurant.slug == slug)) is not None

    async def create(self, *, name: str, slug: str) -> Restaurant:
        now = utc_now_naive()
        restaurant = Restaurant(name=name, slug=slug, is_active=True, created_at=now, updated_at=now)
        try:
            async with self.session.begin_nested():
                self.session.add(restaurant)
                await self.session.flush()
        except IntegrityError as exc:
            raise SlugConflictError(f"slug {slug!r} already taken") from exc
        return restaurant


class SqlAlchemySettingsRepository(SettingsRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, restaurant_id: int) -> ReservationSettings | None:
        result = await self.session.scalar(
            select(ReservationSettings).where(ReservationSettings.restaurant_id == restaurant_id)
        )
        return result if isinstance(result, ReservationSettings) else None

    async def upsert(
        self,
        restaurant_id: int,
        *,
        max_covers_per_day: int | None,
        min_party_size: int,
        max_party_size: int,
        slot_interval_minutes: int,
    ) -> ReservationSettings:
        settings = await self.get(restaurant_id)
        if settings is None:
            settings = ReservationSettings(restaurant_id=restaurant_id)
            self.session.add(settings)
        settings.max_covers_per_day = max_covers_per_day
        settings.min_party_size = min_party_size
        settings.max_party_size = max_party_size
        settings.slot_interval_minutes = slot_interval_minutes
        settings.updated_at = utc_now_naive()
        await self.session.flush()
        return settings


class SqlAlchemyOperatingHoursRepository(OperatingHoursRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_entry(self, restaurant_id: int, weekday: int) -> OperatingHoursEntry | None:
        row = await self.session.scalar(
            select(OperatingHours).where(
                OperatingHours.restaurant_id == restaurant_id,
                OperatingHours.weekday == weekday,
            )
        )
        return _entry_from_row(row) if isinstance(row, OperatingHours) else None

    async def list_week(self, restaurant_id: int) -> list[OperatingHoursEntry]:
        rows = await self.session.scalars(
            select(OperatingHours)
            .where(OperatingHours.restaurant_id == restaurant_id)
            .order_by(OperatingHours.weekday)
        )
        return [_entry_from_row(row) for row in rows]

    async def replace_week(self, restaurant_id: int, entries: Iterable[OperatingHoursEntry]) -> None:
        await self.session.execute(delete(OperatingHours).where(OperatingHours.restaurant_id == restaurant_id))
        for entry in entries:
            self.session.add(
                OperatingHours(
                    restaurant_id=restaurant_id,
                    weekday=entry.weekday,
                    closed=entry.closed,
                    open_time=None if entry.closed else entry.open,
                    close_time=None if entry.closed else entry.close,
                )
            )
        await self.session.flush()


class SqlAlchemyReservationRepository(ReservationRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def covers_by_date(
        self, restaurant_id: int, start: date, end: date, *, for_update: bool = False
    ) -> dict[date, int]:
        stmt: Select[Tuple[date, Any]] = (
            select(
                Reservation.reservation_date,
                func.coalesce(func.sum(Reservation.party_size), 0).label("covers"),
            )
            .where(
                Reservation.restaurant_id == restaurant_id,
                Reservation.reservation_date >= start,
                Reservation.reservation_date <= end,
                Reservation.status != ReservationStatus.CANCELLED,
            )
            .group_by(Reservation.reservation_date)
        )
        if for_update:
            # locking read: sees rows committed after this transaction's snapshot
            stmt = stmt.with_for_update()
        rows = await self.session.execute(stmt)
        return {day: int(covers) for day, covers in rows.all()}

    async def lock_day(self, restaurant_id: int, day: date) -> None:
        # Upsert takes an exclusive row lock held until the transaction ends,
        # serializing commits for the same restaurant and date only.
        now = utc_now_naive()
        stmt = mysql_insert(ReservationDayLock).values(
            restaurant_id=restaurant_id,
            reservation_date=day,
            locked_at=now,
        )
        stmt = stmt.on_duplicate_key_update(locked_at=stmt.inserted.locked_at)
        await self.session.execute(stmt)

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
    ) -> Reservation:
        now = utc_now_naive()
        reservation = Reservation(
            restaurant_id=restaurant_id,
            customer_id=customer_id,
            guest_name=guest_name,
            guest_email=guest_email,
            guest_phone=guest_phone,
            reservation_date=reservation_date,
            reservation_time=reservation_time,
            party_size=party_size,
            status=status,
            notes=notes,
            version=1,
            created_at=now,
            updated_at=now,
        )
        self.session.add(reservation)
        await self.session.flush()
        return reservation

    async def get(self, restaurant_id: int, reservation_id: int) -> Optional[Reservation]:
        result = await self.session.scalar(
            select(Reservation).where(Reservation.id == reservation_id, Reservation.restaurant_id == restaurant_id)
        )
        return result if isinstance(result, Reservation) else None

    async def get_for_update(self, restaurant_id: int, reservation_id: int) -> Optional[Reservation]:
        result = await self.session.scalar(
            select(Reservation)
            .where(Reservation.id == reservation_id, Reservation.restaurant_id == restaurant_id)
            .with_for_update()
            # refresh an instance already loaded by a plain read in this session
            .execution_options(populate_existing=True)
        )
        return result if isinstance(result, Reservation) else None

    async def list_for_restaurant(
        self,
        restaurant_id: int,
        *,
        day: date | None = None,
        status: ReservationStatus | None = None,
    ) -> List[Reservation]:
        stmt = select(Reservation).where(Reservation.restaurant_id == restaurant_id)
        if day is not None:
            stmt = stmt.where(Reservation.reservation_date == day)
        if status is not None:
            stmt = stmt.where(Reservation.status == status)
        stmt = stmt.order_by(Reservation.reservation_date, Reservation.id)
        rows = await self.session.scalars(stmt)
        return list(rows)

    async def save(self, reservation: Reservation) -> Reservation:
        self.session.add(reservation)
        await self.session.flush()
        return reservation


class SqlAlchemyStaffRepository(StaffRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, staff_id: int) -> StaffMember | None:
        result = await self.session.scalar(select(StaffMember).where(StaffMember.id == staff_id))
        return result if isinstance(result, StaffMember) else None
