import logging
import secrets
from typing import AsyncIterator

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .config import get_settings
from .database import async_session
from .domain.errors import TenantInactiveError, TenantResolutionError
from .domain.tenancy import Unresolved, resolve_tenant
from .infrastructure.repositories import SqlAlchemyRestaurantRepository, SqlAlchemyStaffRepository
from .utils.auth import StaffClaims, decode_access_token
from .utils.request_context import set_current_restaurant_id

logger = logging.getLogger(__name__)


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


async def get_lookup_session() -> AsyncIterator[AsyncSession]:
    """Short-lived session for auth and tenant lookups, kept apart from the handler's transaction."""
    async with async_session() as session:
        yield session


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def tenant_http_error(exc: TenantResolutionError) -> HTTPException:
    code = status.HTTP_403_FORBIDDEN if isinstance(exc, TenantInactiveError) else status.HTTP_404_NOT_FOUND
    return HTTPException(status_code=code, detail={"reason": exc.reason, "message": exc.message})


async def _verify_staff(authorization: str, session: AsyncSession) -> StaffClaims:
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise _unauthorized("Bearer token required")
    settings = get_settings()
    try:
        claims = decode_access_token(token, secret=settings.auth_secret, algorithms=[settings.auth_algorithm])
    except ValueError as exc:
        raise _unauthorized("invalid token") from exc

    try:
        staff = await SqlAlchemyStaffRepository(session).get(claims.staff_id)
    except SQLAlchemyError as exc:
        await session.rollback()
        logger.exception("staff lookup failed")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="staff lookup failed") from exc
    if staff is None or not staff.is_active or staff.restaurant_id != claims.restaurant_id:
        raise _unauthorized("staff member not found")
    return claims


async def get_current_staff(
    authorization: str | None = Header(default=None),
    session: AsyncSession = Depends(get_lookup_session),
) -> StaffClaims:
    if authorization is None:
        raise _unauthorized("Authorization header required")
    return await _verify_staff(authorization, session)


async def get_optional_staff(
    authorization: str | None = Header(default=None),
    session: AsyncSession = Depends(get_lookup_session),
) -> StaffClaims | None:
    if authorization is None:
        return None
    return await _verify_staff(authorization, session)


async def _bind_tenant(request: Request, session: AsyncSession, explicit_restaurant_id: int | None) -> int:
    resolution = await resolve_tenant(
        SqlAlchemyRestaurantRepository(session),
        host=request.headers.get("host"),
        path_params=request.path_params,
        query=request.query_params,
        explicit_restaurant_id=explicit_restaurant_id,
    )
    if isinstance(resolution, Unresolved):
        logger.info("tenant resolution rejected %s %s: %s", request.method, request.url.path, resolution.reason)
        raise tenant_http_error(resolution.error)
    request.state.restaurant_id = resolution.restaurant_id
    set_current_restaurant_id(resolution.restaurant_id)
    return resolution.restaurant_id


async def get_request_tenant(
    request: Request,
    staff: StaffClaims | None = Depends(get_optional_staff),
    session: AsyncSession = Depends(get_lookup_session),
) -> int:
    """Restaurant id for a public request; a signed-in staff member's restaurant wins."""
    explicit = staff.restaurant_id if staff is not None else None
    return await _bind_tenant(request, session, explicit)


async def get_staff_tenant(
    request: Request,
    staff: StaffClaims = Depends(get_current_staff),
    session: AsyncSession = Depends(get_lookup_session),
) -> int:
    return await _bind_tenant(request, session, staff.restaurant_id)


async def require_platform_key(x_platform_key: str | None = Header(default=None)) -> None:
    expected = get_settings().platform_api_key
    if expected is None or x_platform_key is None or not secrets.compare_digest(x_platform_key, expected):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="platform key required")
