import re
from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_request_tenant, get_session, tenant_http_error
from ..domain.errors import (
    DateAtCapacityError,
    InvalidStatusTransitionError,
    ReservationNotFoundError,
    ReservationRejectedError,
    SlotUnavailableError,
    TenantResolutionError,
    VersionConflictError,
)
from ..domain.services import Contact
from ..infrastructure.repositories import (
    SqlAlchemyOperatingHoursRepository,
    SqlAlchemyReservationRepository,
    SqlAlchemyRestaurantRepository,
    SqlAlchemySettingsRepository,
)
from ..models import Reservation, ReservationStatus
from ..schemas import GuestReservationUpdate, RejectionDetail, ReservationCancel, ReservationCreate, ReservationRead
from ..usecases import reservations as reservation_usecase
from ..utils.audit_log import emit_audit_log

router = APIRouter(prefix="", tags=["reservations"])

_REJECTION_RESPONSES = {
    status.HTTP_409_CONFLICT: {"model": RejectionDetail},
    status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": RejectionDetail},
}


def rejection_http_error(exc: ReservationRejectedError) -> HTTPException:
    """Structured rejection the client can attach to the offending field."""
    if isinstance(exc, (SlotUnavailableError, DateAtCapacityError)):
        code = status.HTTP_409_CONFLICT
    else:
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    detail = RejectionDetail(reason=exc.reason, field=exc.field, message=exc.message)
    return HTTPException(status_code=code, detail=detail.model_dump())


def status_http_error(
    exc: ReservationNotFoundError | InvalidStatusTransitionError | VersionConflictError,
) -> HTTPException:
    if isinstance(exc, ReservationNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="reservation not found")
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={"reason": exc.reason, "message": exc.message},
    )


_IF_MATCH_RE = re.compile(r'^(?:W/)?"?(\d+)"?$')


def extract_version(if_match: Optional[str], body_version: Optional[int]) -> Optional[int]:
    """Expected version from If-Match (preferred) or the body; None skips the check."""
    if if_match is not None:
        match = _IF_MATCH_RE.match(if_match.strip())
        if match is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid If-Match header")
        version = int(match.group(1))
    elif body_version is not None:
        version = body_version
    else:
        return None
    if version < 1:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="version must be >= 1")
    return version


def update_audit_fields(updated: Reservation, changes: dict[str, tuple[object, object]]) -> dict[str, object]:
    """Audit fields for an update; notes are named but never copied into the log."""
    return {
        "restaurant_id": updated.restaurant_id,
        "reservation_id": updated.id,
        "reservation_date": updated.reservation_date,
        "party_size": updated.party_size,
        "status_to": updated.status,
        "extra": {
            "changed": sorted(changes),
            "version": updated.version,
            **{
                f"previous_{field}": str(old)
                for field, (old, _) in changes.items()
                if field != "notes"
            },
        },
    }


@router.post(
    "/reservations",
    response_model=ReservationRead,
    status_code=status.HTTP_201_CREATED,
    responses=_REJECTION_RESPONSES,
)
async def create_reservation(
    payload: ReservationCreate,
    restaurant_id: int = Depends(get_request_tenant),
    session: AsyncSession = Depends(get_session),
) -> ReservationRead:
    async with session.begin():
        try:
            reservation = await reservation_usecase.create_reservation(
                SqlAlchemyRestaurantRepository(session),
                SqlAlchemySettingsRepository(session),
                SqlAlchemyOperatingHoursRepository(session),
                SqlAlchemyReservationRepository(session),
                restaurant_id=restaurant_id,
                reservation_date=payload.date,
                reservation_time=payload.time,
                party_size=payload.party_size,
                contact=Contact(name=payload.name, email=payload.email, phone=payload.phone),
                notes=payload.notes,
                now=datetime.now(),
            )
        except TenantResolutionError as exc:
            raise tenant_http_error(exc)
        except ReservationRejectedError as exc:
            raise rejection_http_error(exc)

    try:
        emit_audit_log(
            action="reservation.created",
            initiator="guest",
            restaurant_id=reservation.restaurant_id,
            reservation_id=reservation.id,
            reservation_date=reservation.reservation_date,
            party_size=reservation.party_size,
            status_to=reservation.status,
        )
    except RuntimeError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit log failed")

    return ReservationRead.from_db(reservation=reservation)


@router.post("/reservations/{reservation_id}/cancel", response_model=ReservationRead)
async def cancel_reservation(
    payload: ReservationCancel,
    reservation_id: int = Path(..., ge=1),
    restaurant_id: int = Depends(get_request_tenant),
    session: AsyncSession = Depends(get_session),
) -> ReservationRead:
    res_repo = SqlAlchemyReservationRepository(session)
    async with session.begin():
        try:
            updated, previous = await reservation_usecase.cancel_reservation(
                res_repo,
                restaurant_id=restaurant_id,
                reservation_id=reservation_id,
                guest_email=payload.email,
                today=date.today(),
            )
        except (ReservationNotFoundError, InvalidStatusTransitionError) as exc:
            raise status_http_error(exc)

    if previous != ReservationStatus.CANCELLED:
        try:
            emit_audit_log(
                action="reservation.cancelled",
                initiator="guest",
                restaurant_id=updated.restaurant_id,
                reservation_id=updated.id,
                reservation_date=updated.reservation_date,
                party_size=updated.party_size,
                status_from=previous,
                status_to=updated.status,
            )
        except RuntimeError:
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit log failed")

    return ReservationRead.from_db(reservation=updated)


@router.put(
    "/reservations/{reservation_id}",
    response_model=ReservationRead,
    responses=_REJECTION_RESPONSES,
)
async def update_reservation(
    payload: GuestReservationUpdate,
    reservation_id: int = Path(..., ge=1),
    if_match: Optional[str] = Header(default=None, alias="If-Match"),
    restaurant_id: int = Depends(get_request_tenant),
    session: AsyncSession = Depends(get_session),
) -> ReservationRead:
    expected_version = extract_version(if_match, payload.version)
    async with session.begin():
        try:
            updated, changes = await reservation_usecase.update_reservation(
                SqlAlchemyRestaurantRepository(session),
                SqlAlchemySettingsRepository(session),
                SqlAlchemyOperatingHoursRepository(session),
                SqlAlchemyReservationRepository(session),
                restaurant_id=restaurant_id,
                reservation_id=reservation_id,
                reservation_date=payload.date,
                reservation_time=payload.time,
                party_size=payload.party_size,
                notes=payload.notes,
                guest_email=payload.email,
                expected_version=expected_version,
                now=datetime.now(),
            )
        except TenantResolutionError as exc:
            raise tenant_http_error(exc)
        except ReservationRejectedError as exc:
            raise rejection_http_error(exc)
        except (ReservationNotFoundError, InvalidStatusTransitionError, VersionConflictError) as exc:
            raise status_http_error(exc)

    if changes:
        try:
            emit_audit_log(action="reservation.updated", initiator="guest", **update_audit_fields(updated, changes))  # type: ignore[arg-type]
        except RuntimeError:
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit log failed")

    return ReservationRead.from_db(reservation=updated)
