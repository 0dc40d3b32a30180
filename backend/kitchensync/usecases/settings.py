from typing import Iterable

from ..domain.errors import InvalidScheduleError
from ..domain.repositories import OperatingHoursRepository, SettingsRepository
from ..domain.schedule import ALLOWED_SLOT_INTERVALS, OperatingHoursEntry, validate_week
from ..domain.services import CapacityPolicy
from .availability import policy_from_settings


async def update_policy(
    settings_repo: SettingsRepository,
    *,
    restaurant_id: int,
    policy: CapacityPolicy,
) -> CapacityPolicy:
    if policy.max_covers_per_day is not None and policy.max_covers_per_day < 0:
        raise InvalidScheduleError("max_covers_per_day must be zero or more")
    if policy.min_party_size < 1:
        raise InvalidScheduleError("min_party_size must be at least 1")
    if policy.min_party_size > policy.max_party_size:
        raise InvalidScheduleError(
            f"min_party_size ({policy.min_party_size}) cannot exceed max_party_size ({policy.max_party_size})"
        )
    if policy.slot_interval_minutes not in ALLOWED_SLOT_INTERVALS:
        raise InvalidScheduleError("slot interval must be 15, 30 or 60 minutes")

    stored = await settings_repo.upsert(
        restaurant_id,
        max_covers_per_day=policy.max_covers_per_day,
        min_party_size=policy.min_party_size,
        max_party_size=policy.max_party_size,
        slot_interval_minutes=policy.slot_interval_minutes,
    )
    return policy_from_settings(stored)


async def replace_operating_hours(
    hours_repo: OperatingHoursRepository,
    *,
    restaurant_id: int,
    entries: Iterable[OperatingHoursEntry],
) -> list[OperatingHoursEntry]:
    week = validate_week(entries)
    await hours_repo.replace_week(restaurant_id, week)
    return week
