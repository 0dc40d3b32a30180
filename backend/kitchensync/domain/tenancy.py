"""
Tenant resolution.

Every tenant-scoped request is bound to exactly one restaurant, chosen by a
fixed precedence: an explicit id from the authenticated session, then the
host subdomain, then a query parameter, then the ``restaurant_ref`` route
parameter. Each step checks presence with ``is not None``; a falsy but
present value (an id of ``0``) is never skipped. When nothing matches the
request is rejected; there is no default restaurant.
"""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Mapping, Optional, TypeVar, Union

from ..models import Restaurant
from .errors import TenantInactiveError, TenantNotFoundError, TenantRequiredError, TenantResolutionError
from .repositories import RestaurantRepository

T = TypeVar("T")

RESERVED_HOST_LABELS = frozenset({"app", "www", "admin", "platform-admin"})

ID_QUERY_KEYS = ("restaurant_id", "tenant_id")
SLUG_QUERY_KEYS = ("tenant", "restaurant")
ROUTE_PARAM = "restaurant_ref"

_DIGITS_RE = re.compile(r"^[0-9]+$")


class IdentifierSource(StrEnum):
    SESSION = "session"
    HOST = "host"
    QUERY = "query"
    ROUTE = "route"


@dataclass(frozen=True)
class TenantIdentifier:
    source: IdentifierSource
    restaurant_id: Optional[int] = None
    slug: Optional[str] = None
    # set when an id key carried something other than digits
    malformed: Optional[str] = None


@dataclass(frozen=True)
class Resolved:
    restaurant: Restaurant
    source: IdentifierSource

    @property
    def restaurant_id(self) -> int:
        return self.restaurant.id


@dataclass(frozen=True)
class Unresolved:
    error: TenantResolutionError

    @property
    def reason(self) -> str:
        return self.error.reason


TenantResolution = Union[Resolved, Unresolved]


def first_present(*values: Optional[T]) -> Optional[T]:
    """Return the first value that is not None, keeping falsy values like 0 or ''."""
    for value in values:
        if value is not None:
            return value
    return None


def subdomain_slug(host: str | None) -> str | None:
    if host is None:
        return None
    hostname = host.strip().lower().rstrip(".")
    if hostname.startswith("["):
        return None
    hostname = hostname.rsplit(":", 1)[0] if hostname.count(":") == 1 else hostname
    try:
        ipaddress.ip_address(hostname)
    except ValueError:
        pass
    else:
        return None
    labels = hostname.split(".")
    if len(labels) < 3:
        return None
    label = labels[0]
    if not label or label in RESERVED_HOST_LABELS:
        return None
    return label


def _query_value(query: Mapping[str, Any], keys: tuple[str, ...]) -> str | None:
    return first_present(*(query.get(key) for key in keys))


def _identifier_from_ref(ref: str, source: IdentifierSource) -> TenantIdentifier:
    ref = ref.strip()
    if _DIGITS_RE.match(ref):
        return TenantIdentifier(source=source, restaurant_id=int(ref))
    return TenantIdentifier(source=source, slug=ref.lower())


def extract_identifier(
    *,
    host: str | None,
    path_params: Mapping[str, Any],
    query: Mapping[str, Any],
    explicit_restaurant_id: int | None = None,
) -> TenantIdentifier | None:
    if explicit_restaurant_id is not None:
        return TenantIdentifier(source=IdentifierSource.SESSION, restaurant_id=explicit_restaurant_id)

    slug = subdomain_slug(host)
    if slug is not None:
        return TenantIdentifier(source=IdentifierSource.HOST, slug=slug)

    query_id = _query_value(query, ID_QUERY_KEYS)
    if query_id is not None:
        raw = str(query_id).strip()
        if _DIGITS_RE.match(raw):
            return TenantIdentifier(source=IdentifierSource.QUERY, restaurant_id=int(raw))
        return TenantIdentifier(source=IdentifierSource.QUERY, malformed=raw)
    query_slug = _query_value(query, SLUG_QUERY_KEYS)
    if query_slug is not None:
        return TenantIdentifier(source=IdentifierSource.QUERY, slug=str(query_slug).strip().lower())

    route_ref = path_params.get(ROUTE_PARAM)
    if route_ref is not None:
        return _identifier_from_ref(str(route_ref), IdentifierSource.ROUTE)
    return None


def ensure_active(restaurant: Restaurant | None, label: str) -> Restaurant:
    if restaurant is None:
        raise TenantNotFoundError(f"restaurant {label} not found")
    if not restaurant.is_active:
        raise TenantInactiveError(f"restaurant {label} is inactive")
    return restaurant


async def resolve_tenant(
    repo: RestaurantRepository,
    *,
    host: str | None,
    path_params: Mapping[str, Any],
    query: Mapping[str, Any],
    explicit_restaurant_id: int | None = None,
) -> TenantResolution:
    identifier = extract_identifier(
        host=host,
        path_params=path_params,
        query=query,
        explicit_restaurant_id=explicit_restaurant_id,
    )
    if identifier is None:
        return Unresolved(TenantRequiredError("restaurant context required"))

    if identifier.restaurant_id is not None:
        restaurant = await repo.get(identifier.restaurant_id)
        label = f"#{identifier.restaurant_id}"
    elif identifier.slug is not None:
        restaurant = await repo.get_by_slug(identifier.slug)
        label = repr(identifier.slug)
    else:
        return Unresolved(TenantNotFoundError(f"restaurant id {identifier.malformed!r} not found"))

    try:
        return Resolved(restaurant=ensure_active(restaurant, label), source=identifier.source)
    except TenantResolutionError as exc:
        return Unresolved(exc)
