import logging

from ..domain.errors import AllocationExhaustedError, SlugConflictError
from ..domain.repositories import OperatingHoursRepository, RestaurantRepository, SettingsRepository
from ..domain.schedule import default_week
from ..domain.services import CapacityPolicy
from ..domain.slugs import allocate_slug
from ..models import Restaurant

logger = logging.getLogger(__name__)


async def register_restaurant(
    restaurant_repo: RestaurantRepository,
    settings_repo: SettingsRepository,
    hours_repo: OperatingHoursRepository,
    *,
    name: str,
) -> Restaurant:
    """
    Create a restaurant with a freshly allocated slug, default reservation
    settings and default opening hours.

    The slug check and the insert are not atomic; when the insert loses a race
    on the unique slug, a new slug is allocated and the insert retried once.
    The check reads the transaction's snapshot, which cannot see the row that
    won the race, so slugs that already conflicted count as taken.
    """
    name = " ".join(name.split())
    conflicted: set[str] = set()

    async def slug_taken(candidate: str) -> bool:
        return candidate in conflicted or await restaurant_repo.slug_exists(candidate)

    restaurant: Restaurant | None = None
    for attempt in range(2):
        slug = await allocate_slug(slug_taken, name)
        try:
            restaurant = await restaurant_repo.create(name=name, slug=slug)
            break
        except SlugConflictError:
            conflicted.add(slug)
            logger.warning("slug %r taken concurrently (attempt %d)", slug, attempt + 1)
    if restaurant is None:
        logger.error("could not persist a unique slug for %r", name)
        raise AllocationExhaustedError(f"could not allocate a slug for {name!r}")

    defaults = CapacityPolicy()
    await settings_repo.upsert(
        restaurant.id,
        max_covers_per_day=defaults.max_covers_per_day,
        min_party_size=defaults.min_party_size,
        max_party_size=defaults.max_party_size,
        slot_interval_minutes=defaults.slot_interval_minutes,
    )
    await hours_repo.replace_week(restaurant.id, default_week())
    logger.info("registered restaurant %s with slug %r", restaurant.id, restaurant.slug)
    return restaurant
