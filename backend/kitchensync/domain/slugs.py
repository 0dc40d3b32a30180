from __future__ import annotations

import logging
import re
import secrets
import unicodedata
from typing import Awaitable, Callable

from .errors import AllocationExhaustedError

logger = logging.getLogger(__name__)

FALLBACK_SLUG = "restaurant"
MAX_COUNTER_ATTEMPTS = 1000
RANDOM_ATTEMPTS = 5

# width of restaurants.slug; the longest suffix is "-" plus 8 hex chars
MAX_SLUG_LENGTH = 120
MAX_BASE_LENGTH = MAX_SLUG_LENGTH - 9

_NON_SLUG_RE = re.compile(r"[^a-z0-9]+")

SlugExists = Callable[[str], Awaitable[bool]]


def slugify(name: str) -> str:
    """
    Lower-case, hyphen-separated and URL-safe; accents are folded to ASCII.

    The result is at most MAX_BASE_LENGTH characters so any suffix added by
    ``allocate_slug`` still fits the column.
    """
    folded = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode("ascii")
    slug = _NON_SLUG_RE.sub("-", folded.lower()).strip("-")
    slug = slug[:MAX_BASE_LENGTH].rstrip("-")
    return slug or FALLBACK_SLUG


def random_suffix() -> str:
    return secrets.token_hex(4)


async def allocate_slug(exists: SlugExists, desired_name: str) -> str:
    """
    Pick a slug not yet taken according to ``exists``.

    Tries ``base``, ``base-1``, ``base-2`` ... up to MAX_COUNTER_ATTEMPTS candidates,
    then falls back to a random 8-character suffix.
    """
    base = slugify(desired_name)
    for counter in range(MAX_COUNTER_ATTEMPTS):
        candidate = base if counter == 0 else f"{base}-{counter}"
        if not await exists(candidate):
            return candidate

    for _ in range(RANDOM_ATTEMPTS):
        candidate = f"{base}-{random_suffix()}"
        if not await exists(candidate):
            return candidate

    logger.error("slug allocation exhausted for base %r", base)
    raise AllocationExhaustedError(f"could not allocate a slug for {base!r}")
