import asyncio
from datetime import date, datetime
from typing import Iterable, List, Optional

import pytest
from kitchensync.domain.errors import (
    DateAtCapacityError,
    InvalidContactError,
    InvalidStatusTransitionError,
    PartySizeOutOfRangeError,
    ReservationNotFoundError,
    SlotUnavailableError,
    TenantInactiveError,
    TenantNotFoundError,
    VersionConflictError,
)
from kitchensync.domain.schedule import OperatingHoursEntry
from kitchensync.domain.services import Contact
from kitchensync.models import Reservation, ReservationSettings, ReservationStatus, Restaurant
from kitchensync.usecases import availability as availability_uc
from kitchensync.usecases import reservations as uc

SATURDAY = date(2025, 6, 14)
SUNDAY = date(2025, 6, 15)
GUEST = Contact(name="Ada Lovelace", email="Ada@Example.com", phone="+44 20 7946 0958")


class FakeRestaurantRepo:
    def __init__(self, *restaurants: Restaurant) -> None:
        self.by_id = {r.id: r for r in restaurants}

    async def get(self, restaurant_id: int) -> Optional[Restaurant]:
        return self.by_id.get(restaurant_id)

    async def get_by_slug(self, slug: str) -> Optional[Restaurant]:  # pragma: no cover
        return None

    async def slug_exists(self, slug: str) -> bool:  # pragma: no cover
        return False

    async def create(self, *, name: str, slug: str) -> Restaurant:  # pragma: no cover
        raise NotImplementedError


class FakeSettingsRepo:
    def __init__(self, settings: Optional[ReservationSettings] = None) -> None:
        self.settings = settings

    async def get(self, restaurant_id: int) -> Optional[ReservationSettings]:
        return self.settings

    async def upsert(self, restaurant_id: int, **fields: object) -> ReservationSettings:  # pragma: no cover
        raise NotImplementedError


class FakeHoursRepo:
    def __init__(self, entries: Iterable[OperatingHoursEntry]) -> None:
        self.entries = {entry.weekday: entry for entry in entries}

    async def get_entry(self, restaurant_id: int, weekday: int) -> Optional[OperatingHoursEntry]:
        return self.entries.get(weekday)

    async def list_week(self, restaurant_id: int) -> List[OperatingHoursEntry]:  # pragma: no cover
        return list(self.entries.values())

    async def replace_week(self, restaurant_id: int, entries: Iterable[OperatingHoursEntry]) -> None:  # pragma: no cover
        raise NotImplementedError


class ReservationStore:
    """Rows and per-day locks shared by every fake transaction."""

    def __init__(self) -> None:
        self.rows: list[Reservation] = []
        self.locks: dict[tuple[int, date], asyncio.Lock] = {}
        self.next_id = 1


class FakeReservationRepo:
    """
    One instance per transaction; ``release`` plays the part of commit.

    With ``snapshot_reads`` plain reads see the rows as of the first read, like
    MySQL REPEATABLE READ; ``for_update`` reads always see the live rows.
    """

    def __init__(self, store: Optional[ReservationStore] = None, snapshot_reads: bool = False) -> None:
        self.store = store or ReservationStore()
        self.snapshot_reads = snapshot_reads
        self.snapshot: Optional[list[tuple[int, date, int, ReservationStatus]]] = None
        self.held: list[asyncio.Lock] = []
        self.locked_days: list[date] = []
        self.saved: list[Reservation] = []

    def _live(self) -> list[tuple[int, date, int, ReservationStatus]]:
        return [(r.restaurant_id, r.reservation_date, r.party_size, r.status) for r in self.store.rows]

    async def covers_by_date(
        self, restaurant_id: int, start: date, end: date, *, for_update: bool = False
    ) -> dict[date, int]:
        rows = self._live()
        if self.snapshot_reads and not for_update:
            if self.snapshot is None:
                self.snapshot = rows
            rows = self.snapshot
        # yield so concurrent bookings interleave between read and write
        await asyncio.sleep(0)
        covers: dict[date, int] = {}
        for rid, day, party_size, status in rows:
            if rid != restaurant_id or status == ReservationStatus.CANCELLED:
                continue
            if start <= day <= end:
                covers[day] = covers.get(day, 0) + party_size
        return covers

    async def lock_day(self, restaurant_id: int, day: date) -> None:
        lock = self.store.locks.setdefault((restaurant_id, day), asyncio.Lock())
        await lock.acquire()
        self.held.append(lock)
        self.locked_days.append(day)

    def release(self) -> None:
        while self.held:
            self.held.pop().release()

    async def create(self, **fields: object) -> Reservation:
        reservation = Reservation(id=self.store.next_id, version=1, **fields)
        self.store.next_id += 1
        self.store.rows.append(reservation)
        return reservation

    async def get(self, restaurant_id: int, reservation_id: int) -> Optional[Reservation]:
        return await self.get_for_update(restaurant_id, reservation_id)

    async def get_for_update(self, restaurant_id: int, reservation_id: int) -> Optional[Reservation]:
        for row in self.store.rows:
            if row.id == reservation_id and row.restaurant_id == restaurant_id:
                return row
        return None

    async def list_for_restaurant(
        self,
        restaurant_id: int,
        *,
        day: Optional[date] = None,
        status: Optional[ReservationStatus] = None,
    ) -> List[Reservation]:
        return [
            row
            for row in self.store.rows
            if row.restaurant_id == restaurant_id
            and (day is None or row.reservation_date == day)
            and (status is None or row.status == status)
        ]

    async def save(self, reservation: Reservation) -> Reservation:
        self.saved.append(reservation)
        return reservation


def _restaurant(restaurant_id: int = 1, is_active: bool = True) -> Restaurant:
    return Restaurant(id=restaurant_id, name="Bistro", slug="bistro", is_active=is_active)


def _settings(max_covers: Optional[int] = 10, min_party: int = 1, max_party: int = 8) -> ReservationSettings:
    return ReservationSettings(
        restaurant_id=1,
        max_covers_per_day=max_covers,
        min_party_size=min_party,
        max_party_size=max_party,
        slot_interval_minutes=30,
    )


def _week(open_: str = "09:00", close: str = "22:00") -> list[OperatingHoursEntry]:
    return [OperatingHoursEntry(weekday=0, closed=True)] + [
        OperatingHoursEntry(weekday=day, closed=False, open=open_, close=close) for day in range(1, 7)
    ]


class Booking:
    def __init__(
        self,
        *,
        settings: Optional[ReservationSettings] = None,
        week: Optional[list[OperatingHoursEntry]] = None,
        restaurant: Optional[Restaurant] = None,
        store: Optional[ReservationStore] = None,
    ) -> None:
        self.restaurants = FakeRestaurantRepo(restaurant or _restaurant())
        self.settings = FakeSettingsRepo(settings or _settings())
        self.hours = FakeHoursRepo(week or _week())
        self.store = store or ReservationStore()
        self.last_repo = FakeReservationRepo(self.store)

    async def create(self, **overrides: object) -> Reservation:
        repo = FakeReservationRepo(self.store, snapshot_reads=True)
        kwargs: dict[str, object] = {
            "restaurant_id": 1,
            "reservation_date": SATURDAY,
            "reservation_time": "19:00",
            "party_size": 2,
            "contact": GUEST,
        }
        kwargs.update(overrides)
        try:
            return await uc.create_reservation(self.restaurants, self.settings, self.hours, repo, **kwargs)  # type: ignore[arg-type]
        finally:
            repo.release()

    async def update(
        self, reservation_id: int, **overrides: object
    ) -> tuple[Reservation, dict[str, tuple[object, object]]]:
        repo = FakeReservationRepo(self.store, snapshot_reads=True)
        self.last_repo = repo
        try:
            return await uc.update_reservation(
                self.restaurants,
                self.settings,
                self.hours,
                repo,
                restaurant_id=1,
                reservation_id=reservation_id,
                **overrides,  # type: ignore[arg-type]
            )
        finally:
            repo.release()


@pytest.mark.asyncio
async def test_create_confirms_and_normalizes_contact() -> None:
    booking = Booking()
    reservation = await booking.create(notes="window seat")
    assert reservation.status == ReservationStatus.CONFIRMED
    assert reservation.guest_email == "ada@example.com"
    assert reservation.reservation_time == "19:00"
    assert reservation.notes == "window seat"
    assert booking.store.rows == [reservation]


@pytest.mark.asyncio
async def test_create_rejects_unknown_and_inactive_restaurant() -> None:
    with pytest.raises(TenantNotFoundError):
        await Booking().create(restaurant_id=99)
    with pytest.raises(TenantInactiveError):
        await Booking(restaurant=_restaurant(is_active=False)).create()


@pytest.mark.asyncio
@pytest.mark.parametrize("party_size", [0, 9])
async def test_create_rejects_party_size_out_of_range(party_size: int) -> None:
    with pytest.raises(PartySizeOutOfRangeError):
        await Booking().create(party_size=party_size)


@pytest.mark.asyncio
async def test_create_never_rounds_to_an_open_slot() -> None:
    with pytest.raises(SlotUnavailableError) as excinfo:
        await Booking().create(reservation_time="03:00")
    assert excinfo.value.field == "time"


@pytest.mark.asyncio
async def test_create_rejects_closed_day() -> None:
    with pytest.raises(SlotUnavailableError):
        await Booking().create(reservation_date=SUNDAY)


@pytest.mark.asyncio
async def test_create_accepts_early_morning_slot_of_crossing_window() -> None:
    booking = Booking(week=_week("20:00", "02:00"))
    reservation = await booking.create(
        reservation_time="01:30",
        now=datetime(2025, 6, 14, 23, 45),
    )
    assert reservation.reservation_date == SATURDAY
    assert reservation.reservation_time == "01:30"


@pytest.mark.asyncio
async def test_create_rejects_slot_in_the_past() -> None:
    with pytest.raises(SlotUnavailableError):
        await Booking().create(reservation_time="18:00", now=datetime(2025, 6, 14, 18, 0))


@pytest.mark.asyncio
async def test_create_rejects_full_date() -> None:
    booking = Booking()
    await booking.create(party_size=8)
    with pytest.raises(DateAtCapacityError):
        await booking.create(party_size=3)
    assert len(booking.store.rows) == 1


@pytest.mark.asyncio
async def test_create_rejects_bad_contact_last() -> None:
    with pytest.raises(InvalidContactError) as excinfo:
        await Booking().create(contact=Contact(name="Ada", email="ada@example.com", phone="ada@example.com"))
    assert excinfo.value.field == "phone"


@pytest.mark.asyncio
async def test_validation_stops_at_first_failure() -> None:
    bad_contact = Contact(name="", email="nope")
    with pytest.raises(PartySizeOutOfRangeError):
        await Booking().create(party_size=50, reservation_time="03:00", contact=bad_contact)
    with pytest.raises(SlotUnavailableError):
        await Booking().create(reservation_time="03:00", contact=bad_contact)

    full = Booking(settings=_settings(max_covers=0))
    with pytest.raises(DateAtCapacityError):
        await full.create(contact=bad_contact)


@pytest.mark.asyncio
async def test_concurrent_bookings_for_same_day_cannot_overbook() -> None:
    booking = Booking()
    results = await asyncio.gather(
        booking.create(party_size=6),
        booking.create(party_size=6),
        return_exceptions=True,
    )
    successes = [r for r in results if isinstance(r, Reservation)]
    failures = [r for r in results if isinstance(r, Exception)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], DateAtCapacityError)
    assert len(booking.store.rows) == 1


@pytest.mark.asyncio
async def test_concurrent_bookings_for_different_days_both_succeed() -> None:
    booking = Booking()
    results = await asyncio.gather(
        booking.create(party_size=6),
        booking.create(party_size=6, reservation_date=date(2025, 6, 16)),
    )
    assert {r.reservation_date for r in results} == {SATURDAY, date(2025, 6, 16)}


@pytest.mark.asyncio
async def test_cancel_frees_covers() -> None:
    booking = Booking()
    reservation = await booking.create(party_size=8)
    repo = FakeReservationRepo(booking.store)

    before = await availability_uc.daily_capacity(
        booking.settings, repo, restaurant_id=1, start=SATURDAY, end=SATURDAY, party_size=4
    )
    assert before[0].available is False

    updated, previous = await uc.cancel_reservation(repo, restaurant_id=1, reservation_id=reservation.id)
    assert previous == ReservationStatus.CONFIRMED
    assert updated.status == ReservationStatus.CANCELLED
    assert updated.version == 2

    after = await availability_uc.daily_capacity(
        booking.settings, repo, restaurant_id=1, start=SATURDAY, end=SATURDAY, party_size=4
    )
    assert after[0].available is True
    assert after[0].current_covers == 0


@pytest.mark.asyncio
async def test_cancel_is_idempotent() -> None:
    booking = Booking()
    reservation = await booking.create()
    repo = FakeReservationRepo(booking.store)
    await uc.cancel_reservation(repo, restaurant_id=1, reservation_id=reservation.id)
    again, previous = await uc.cancel_reservation(repo, restaurant_id=1, reservation_id=reservation.id)
    assert previous == ReservationStatus.CANCELLED
    assert again.version == 2
    assert len(repo.saved) == 1


@pytest.mark.asyncio
async def test_guest_cancel_requires_matching_email() -> None:
    booking = Booking()
    reservation = await booking.create()
    repo = FakeReservationRepo(booking.store)
    with pytest.raises(ReservationNotFoundError):
        await uc.cancel_reservation(repo, restaurant_id=1, reservation_id=reservation.id, guest_email="eve@example.com")
    updated, _ = await uc.cancel_reservation(
        repo, restaurant_id=1, reservation_id=reservation.id, guest_email=" ADA@example.com "
    )
    assert updated.status == ReservationStatus.CANCELLED


@pytest.mark.asyncio
async def test_cancel_is_scoped_to_restaurant() -> None:
    booking = Booking()
    reservation = await booking.create()
    with pytest.raises(ReservationNotFoundError):
        await uc.cancel_reservation(FakeReservationRepo(booking.store), restaurant_id=2, reservation_id=reservation.id)


@pytest.mark.asyncio
async def test_guest_cannot_cancel_past_reservation() -> None:
    booking = Booking()
    reservation = await booking.create()
    with pytest.raises(InvalidStatusTransitionError):
        await uc.cancel_reservation(
            FakeReservationRepo(booking.store),
            restaurant_id=1,
            reservation_id=reservation.id,
            guest_email="ada@example.com",
            today=date(2025, 6, 20),
        )


@pytest.mark.asyncio
async def test_record_outcome_after_the_date() -> None:
    booking = Booking()
    reservation = await booking.create()
    repo = FakeReservationRepo(booking.store)

    with pytest.raises(InvalidStatusTransitionError):
        await uc.record_outcome(
            repo, restaurant_id=1, reservation_id=reservation.id, outcome=ReservationStatus.COMPLETED, today=SATURDAY
        )

    updated, previous = await uc.record_outcome(
        repo, restaurant_id=1, reservation_id=reservation.id, outcome=ReservationStatus.NO_SHOW, today=SUNDAY
    )
    assert previous == ReservationStatus.CONFIRMED
    assert updated.status == ReservationStatus.NO_SHOW

    with pytest.raises(InvalidStatusTransitionError):
        await uc.record_outcome(
            repo, restaurant_id=1, reservation_id=reservation.id, outcome=ReservationStatus.COMPLETED, today=SUNDAY
        )


@pytest.mark.asyncio
async def test_record_outcome_rejects_non_outcome_status() -> None:
    with pytest.raises(InvalidStatusTransitionError):
        await uc.record_outcome(
            FakeReservationRepo(), restaurant_id=1, reservation_id=1, outcome=ReservationStatus.CANCELLED, today=SUNDAY
        )


@pytest.mark.asyncio
async def test_list_reservations_filters() -> None:
    booking = Booking()
    first = await booking.create()
    await booking.create(reservation_date=date(2025, 6, 16))
    repo = FakeReservationRepo(booking.store)
    await uc.cancel_reservation(repo, restaurant_id=1, reservation_id=first.id)

    on_saturday = await uc.list_reservations(repo, restaurant_id=1, day=SATURDAY)
    confirmed = await uc.list_reservations(repo, restaurant_id=1, status=ReservationStatus.CONFIRMED)
    assert [r.id for r in on_saturday] == [first.id]
    assert [r.reservation_date for r in confirmed] == [date(2025, 6, 16)]


@pytest.mark.asyncio
async def test_recheck_under_lock_sees_rows_committed_after_snapshot() -> None:
    booking = Booking()
    await booking.create(party_size=8)

    # this transaction reads its snapshot before the competing booking commits
    late = FakeReservationRepo(booking.store, snapshot_reads=True)
    assert await late.covers_by_date(1, SATURDAY, SATURDAY) == {SATURDAY: 8}
    await booking.create(party_size=2)

    with pytest.raises(DateAtCapacityError):
        await uc.create_reservation(
            booking.restaurants,
            booking.settings,
            booking.hours,
            late,
            restaurant_id=1,
            reservation_date=SATURDAY,
            reservation_time="19:00",
            party_size=2,
            contact=GUEST,
        )
    late.release()
    assert sum(r.party_size for r in booking.store.rows) == 10


@pytest.mark.asyncio
async def test_update_moves_reservation_and_bumps_version() -> None:
    booking = Booking()
    reservation = await booking.create(party_size=2)

    updated, changes = await booking.update(
        reservation.id,
        reservation_date=date(2025, 6, 16),
        reservation_time="20:30",
        party_size=4,
        notes="birthday",
    )

    assert updated.reservation_date == date(2025, 6, 16)
    assert updated.reservation_time == "20:30"
    assert updated.party_size == 4
    assert updated.notes == "birthday"
    assert updated.version == 2
    assert changes["date"] == (SATURDAY, date(2025, 6, 16))
    assert changes["party_size"] == (2, 4)
    assert set(changes) == {"date", "time", "party_size", "notes"}
    # source and target days are locked in date order
    assert booking.last_repo.locked_days == [SATURDAY, date(2025, 6, 16)]


@pytest.mark.asyncio
async def test_update_counts_own_covers_only_once() -> None:
    booking = Booking(settings=_settings(max_party=10))
    reservation = await booking.create(party_size=6)
    await booking.create(party_size=2)

    # 6 -> 8 plus the other 2 is exactly the ceiling of 10
    updated, _ = await booking.update(reservation.id, party_size=8)
    assert updated.party_size == 8

    with pytest.raises(DateAtCapacityError):
        await booking.update(reservation.id, party_size=9, reservation_time="19:30")
    assert reservation.party_size == 8
    assert reservation.reservation_time == "19:00"


@pytest.mark.asyncio
async def test_update_to_full_date_is_rejected() -> None:
    booking = Booking()
    reservation = await booking.create(party_size=4)
    await booking.create(party_size=8, reservation_date=date(2025, 6, 16))

    with pytest.raises(DateAtCapacityError):
        await booking.update(reservation.id, reservation_date=date(2025, 6, 16))
    assert reservation.reservation_date == SATURDAY
    assert reservation.version == 1


@pytest.mark.asyncio
async def test_update_runs_booking_checks_in_order() -> None:
    booking = Booking()
    reservation = await booking.create()

    with pytest.raises(PartySizeOutOfRangeError):
        await booking.update(reservation.id, party_size=50, reservation_time="03:00")
    with pytest.raises(SlotUnavailableError):
        await booking.update(reservation.id, reservation_time="03:00")
    with pytest.raises(SlotUnavailableError):
        await booking.update(reservation.id, reservation_date=SUNDAY)
    with pytest.raises(SlotUnavailableError):
        await booking.update(reservation.id, reservation_time="10:00", now=datetime(2025, 6, 14, 12, 0))
    assert reservation.version == 1


@pytest.mark.asyncio
async def test_update_without_changes_writes_nothing() -> None:
    booking = Booking()
    reservation = await booking.create()
    updated, changes = await booking.update(reservation.id, reservation_time="19:00", party_size=2)
    assert changes == {}
    assert updated.version == 1
    assert booking.last_repo.saved == []


@pytest.mark.asyncio
async def test_update_guards() -> None:
    booking = Booking()
    reservation = await booking.create()

    with pytest.raises(ReservationNotFoundError):
        await booking.update(reservation.id, guest_email="eve@example.com", notes="x")
    with pytest.raises(ReservationNotFoundError):
        await booking.update(999, notes="x")
    with pytest.raises(VersionConflictError):
        await booking.update(reservation.id, expected_version=3, notes="x")
    with pytest.raises(InvalidStatusTransitionError):
        await booking.update(reservation.id, notes="x", now=datetime(2025, 6, 20, 9, 0))

    updated, _ = await booking.update(reservation.id, guest_email=" ADA@example.com ", expected_version=1, notes="x")
    assert updated.version == 2

    await uc.cancel_reservation(FakeReservationRepo(booking.store), restaurant_id=1, reservation_id=reservation.id)
    with pytest.raises(InvalidStatusTransitionError):
        await booking.update(reservation.id, notes="y")
