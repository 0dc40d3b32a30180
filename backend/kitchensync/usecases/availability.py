from datetime import date, timedelta

from ..domain.repositories import OperatingHoursRepository, ReservationRepository, SettingsRepository
from ..domain.schedule import generate_slots
from ..domain.services import CapacityPolicy, DailyCapacitySnapshot, build_daily_capacity
from ..models import ReservationSettings
from ..utils.time import weekday_of

DEFAULT_WINDOW_DAYS = 90
MAX_RANGE_DAYS = 366


def policy_from_settings(settings: ReservationSettings | None) -> CapacityPolicy:
    if settings is None:
        return CapacityPolicy()
    return CapacityPolicy(
        max_covers_per_day=settings.max_covers_per_day,
        min_party_size=settings.min_party_size,
        max_party_size=settings.max_party_size,
        slot_interval_minutes=settings.slot_interval_minutes,
    )


async def load_policy(settings_repo: SettingsRepository, restaurant_id: int) -> CapacityPolicy:
    return policy_from_settings(await settings_repo.get(restaurant_id))


def resolve_date_range(start: date | None, end: date | None, *, today: date) -> tuple[date, date]:
    range_start = start if start is not None else today
    range_end = end if end is not None else range_start + timedelta(days=DEFAULT_WINDOW_DAYS)
    if range_end < range_start:
        raise ValueError("end_date must not be before start_date")
    if (range_end - range_start).days >= MAX_RANGE_DAYS:
        raise ValueError(f"date range must not exceed {MAX_RANGE_DAYS} days")
    return range_start, range_end


async def daily_capacity(
    settings_repo: SettingsRepository,
    res_repo: ReservationRepository,
    *,
    restaurant_id: int,
    start: date,
    end: date,
    party_size: int | None = None,
) -> list[DailyCapacitySnapshot]:
    policy = await load_policy(settings_repo, restaurant_id)
    covers = await res_repo.covers_by_date(restaurant_id, start, end)
    return build_daily_capacity(
        covers,
        start=start,
        end=end,
        max_covers_per_day=policy.max_covers_per_day,
        party_size=party_size,
    )


async def list_slots(
    hours_repo: OperatingHoursRepository,
    settings_repo: SettingsRepository,
    *,
    restaurant_id: int,
    day: date,
) -> list[str]:
    policy = await load_policy(settings_repo, restaurant_id)
    entry = await hours_repo.get_entry(restaurant_id, weekday_of(day))
    return generate_slots(entry, interval=policy.slot_interval_minutes)
