import logging
from datetime import date, datetime, timedelta

from ..domain.errors import (
    InvalidStatusTransitionError,
    ReservationNotFoundError,
    SlotUnavailableError,
    VersionConflictError,
)
from ..domain.repositories import (
    OperatingHoursRepository,
    ReservationRepository,
    RestaurantRepository,
    SettingsRepository,
)
from ..domain.schedule import find_slot
from ..domain.services import (
    CapacityPolicy,
    Contact,
    capacity_snapshot,
    ensure_capacity,
    validate_contact,
    validate_party_size,
)
from ..domain.tenancy import ensure_active
from ..models import Reservation, ReservationStatus
from ..utils.time import utc_now_naive, weekday_of
from .availability import load_policy

logger = logging.getLogger(__name__)

STAFF_OUTCOMES = (ReservationStatus.COMPLETED, ReservationStatus.NO_SHOW)


async def _ensure_offered(
    hours_repo: OperatingHoursRepository,
    restaurant_id: int,
    day: date,
    time: str,
    policy: CapacityPolicy,
    now: datetime | None,
) -> None:
    entry = await hours_repo.get_entry(restaurant_id, weekday_of(day))
    slot_minute = find_slot(entry, time, interval=policy.slot_interval_minutes)
    if slot_minute is None:
        raise SlotUnavailableError(f"{time} is not offered on {day.isoformat()}")
    if now is not None:
        starts_at = datetime.combine(day, datetime.min.time()) + timedelta(minutes=slot_minute)
        if starts_at <= now:
            raise SlotUnavailableError(f"{time} on {day.isoformat()} is in the past")


async def _ensure_room(
    res_repo: ReservationRepository,
    restaurant_id: int,
    day: date,
    policy: CapacityPolicy,
    party_size: int,
    *,
    locked: bool = False,
    own_covers: int = 0,
) -> None:
    # own_covers: seats already held by the reservation being changed
    covers = await res_repo.covers_by_date(restaurant_id, day, day, for_update=locked)
    ensure_capacity(
        capacity_snapshot(
            day,
            current_covers=covers.get(day, 0) - own_covers,
            max_covers_per_day=policy.max_covers_per_day,
            party_size=party_size,
        )
    )


async def create_reservation(
    restaurant_repo: RestaurantRepository,
    settings_repo: SettingsRepository,
    hours_repo: OperatingHoursRepository,
    res_repo: ReservationRepository,
    *,
    restaurant_id: int,
    reservation_date: date,
    reservation_time: str,
    party_size: int,
    contact: Contact,
    notes: str | None = None,
    customer_id: int | None = None,
    now: datetime | None = None,
) -> Reservation:
    """
    The only way a reservation gets created.

    Checks run in a fixed order and stop at the first failure: active
    restaurant, party size bounds, offered slot, daily capacity, contact
    details. The capacity check is then repeated under the per-day lock right
    before the insert, so the caller must run this inside one transaction.
    """
    restaurant = ensure_active(await restaurant_repo.get(restaurant_id), f"#{restaurant_id}")
    policy = await load_policy(settings_repo, restaurant.id)

    validate_party_size(policy, party_size)

    await _ensure_offered(hours_repo, restaurant.id, reservation_date, reservation_time, policy, now)
    await _ensure_room(res_repo, restaurant.id, reservation_date, policy, party_size)

    contact = validate_contact(contact)

    await res_repo.lock_day(restaurant.id, reservation_date)
    await _ensure_room(res_repo, restaurant.id, reservation_date, policy, party_size, locked=True)

    reservation = await res_repo.create(
        restaurant_id=restaurant.id,
        reservation_date=reservation_date,
        reservation_time=reservation_time,
        party_size=party_size,
        guest_name=contact.name,
        guest_email=contact.email,
        guest_phone=contact.phone,
        notes=notes,
        customer_id=customer_id,
        status=ReservationStatus.CONFIRMED,
    )
    logger.info(
        "reservation %s confirmed for restaurant %s on %s %s (party of %s)",
        reservation.id,
        restaurant.id,
        reservation_date.isoformat(),
        reservation_time,
        party_size,
    )
    return reservation


async def cancel_reservation(
    res_repo: ReservationRepository,
    *,
    restaurant_id: int,
    reservation_id: int,
    guest_email: str | None = None,
    today: date | None = None,
) -> tuple[Reservation, ReservationStatus]:
    """
    Cancel a reservation, returning it with its previous status.

    Guests identify themselves with the booking email and cannot cancel past
    dates; staff calls pass neither. The row is kept for audit.
    """
    reservation = await res_repo.get_for_update(restaurant_id, reservation_id)
    if reservation is None:
        raise ReservationNotFoundError("reservation not found")
    if guest_email is not None and reservation.guest_email.lower() != guest_email.strip().lower():
        raise ReservationNotFoundError("reservation not found")

    previous = reservation.status
    # Idempotent: already cancelled returns as-is
    if previous == ReservationStatus.CANCELLED:
        return reservation, previous
    if previous != ReservationStatus.CONFIRMED:
        raise InvalidStatusTransitionError(f"cannot cancel a {previous.value} reservation")
    if today is not None and reservation.reservation_date < today:
        raise InvalidStatusTransitionError("cannot cancel a past reservation")

    reservation.status = ReservationStatus.CANCELLED
    reservation.version += 1
    reservation.updated_at = utc_now_naive()
    updated = await res_repo.save(reservation)
    return updated, previous


async def update_reservation(
    restaurant_repo: RestaurantRepository,
    settings_repo: SettingsRepository,
    hours_repo: OperatingHoursRepository,
    res_repo: ReservationRepository,
    *,
    restaurant_id: int,
    reservation_id: int,
    reservation_date: date | None = None,
    reservation_time: str | None = None,
    party_size: int | None = None,
    notes: str | None = None,
    guest_email: str | None = None,
    expected_version: int | None = None,
    now: datetime | None = None,
) -> tuple[Reservation, dict[str, tuple[object, object]]]:
    """
    Change the date, time, party size or notes of a confirmed reservation.

    Omitted fields keep their current value. New values go through the same
    party size, slot and capacity checks as a new booking; capacity is
    re-checked under the day lock of the target date, not counting this
    reservation's own covers there. Returns the reservation with the changed
    fields as ``{field: (old, new)}``; nothing changed means an empty dict
    and no write.
    """
    restaurant = ensure_active(await restaurant_repo.get(restaurant_id), f"#{restaurant_id}")

    current = await res_repo.get(restaurant.id, reservation_id)
    if current is None:
        raise ReservationNotFoundError("reservation not found")
    if reservation_date is not None or party_size is not None:
        # day locks before the row lock, in date order, like create_reservation
        for day in sorted({current.reservation_date, reservation_date or current.reservation_date}):
            await res_repo.lock_day(restaurant.id, day)

    reservation = await res_repo.get_for_update(restaurant.id, reservation_id)
    if reservation is None:
        raise ReservationNotFoundError("reservation not found")
    if guest_email is not None and reservation.guest_email.lower() != guest_email.strip().lower():
        raise ReservationNotFoundError("reservation not found")
    if expected_version is not None and reservation.version != expected_version:
        raise VersionConflictError(f"reservation is at version {reservation.version}, not {expected_version}")
    if reservation.status != ReservationStatus.CONFIRMED:
        raise InvalidStatusTransitionError(f"cannot update a {reservation.status.value} reservation")
    if now is not None and reservation.reservation_date < now.date():
        raise InvalidStatusTransitionError("cannot update a past reservation")

    new_date = reservation_date if reservation_date is not None else reservation.reservation_date
    new_time = reservation_time if reservation_time is not None else reservation.reservation_time
    new_party = party_size if party_size is not None else reservation.party_size
    new_notes = notes if notes is not None else reservation.notes

    changes: dict[str, tuple[object, object]] = {}
    for field, old, new in (
        ("date", reservation.reservation_date, new_date),
        ("time", reservation.reservation_time, new_time),
        ("party_size", reservation.party_size, new_party),
        ("notes", reservation.notes, new_notes),
    ):
        if old != new:
            changes[field] = (old, new)
    if not changes:
        return reservation, changes

    policy = await load_policy(settings_repo, restaurant.id)
    if "party_size" in changes:
        validate_party_size(policy, new_party)
    if "date" in changes or "time" in changes:
        await _ensure_offered(hours_repo, restaurant.id, new_date, new_time, policy, now)
    if "date" in changes or "party_size" in changes:
        own_covers = reservation.party_size if reservation.reservation_date == new_date else 0
        await _ensure_room(
            res_repo, restaurant.id, new_date, policy, new_party, locked=True, own_covers=own_covers
        )

    reservation.reservation_date = new_date
    reservation.reservation_time = new_time
    reservation.party_size = new_party
    reservation.notes = new_notes
    reservation.version += 1
    reservation.updated_at = utc_now_naive()
    updated = await res_repo.save(reservation)
    logger.info("reservation %s updated (%s)", updated.id, ", ".join(sorted(changes)))
    return updated, changes


async def record_outcome(
    res_repo: ReservationRepository,
    *,
    restaurant_id: int,
    reservation_id: int,
    outcome: ReservationStatus,
    today: date,
) -> tuple[Reservation, ReservationStatus]:
    """Staff marks a confirmed reservation completed or no-show once its date has passed."""
    if outcome not in STAFF_OUTCOMES:
        raise InvalidStatusTransitionError(f"{outcome.value} is not a staff outcome")
    reservation = await res_repo.get_for_update(restaurant_id, reservation_id)
    if reservation is None:
        raise ReservationNotFoundError("reservation not found")

    previous = reservation.status
    if previous == outcome:
        return reservation, previous
    if previous != ReservationStatus.CONFIRMED:
        raise InvalidStatusTransitionError(f"cannot mark a {previous.value} reservation as {outcome.value}")
    if reservation.reservation_date >= today:
        raise InvalidStatusTransitionError("reservation date has not passed yet")

    reservation.status = outcome
    reservation.version += 1
    reservation.updated_at = utc_now_naive()
    updated = await res_repo.save(reservation)
    return updated, previous


async def list_reservations(
    res_repo: ReservationRepository,
    *,
    restaurant_id: int,
    day: date | None = None,
    status: ReservationStatus | None = None,
) -> list[Reservation]:
    return await res_repo.list_for_restaurant(restaurant_id, day=day, status=status)
