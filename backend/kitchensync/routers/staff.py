from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_current_staff, get_session, get_staff_tenant, tenant_http_error
from ..domain.errors import (
    InvalidScheduleError,
    InvalidStatusTransitionError,
    ReservationNotFoundError,
    ReservationRejectedError,
    TenantResolutionError,
    VersionConflictError,
)
from ..infrastructure.repositories import (
    SqlAlchemyOperatingHoursRepository,
    SqlAlchemyReservationRepository,
    SqlAlchemyRestaurantRepository,
    SqlAlchemySettingsRepository,
)
from ..models import ReservationStatus
from ..schemas import (
    OperatingHoursItem,
    OperatingHoursUpdate,
    PolicyRead,
    PolicyUpdate,
    ReservationRead,
    ReservationUpdate,
)
from ..usecases import availability as availability_usecase
from ..usecases import reservations as reservation_usecase
from ..usecases import settings as settings_usecase
from ..utils.audit_log import AuditAction, emit_audit_log
from ..utils.auth import StaffClaims
from ..utils.time import parse_calendar_date
from .reservations import extract_version, rejection_http_error, status_http_error, update_audit_fields

router = APIRouter(prefix="/staff", tags=["staff"], dependencies=[Depends(get_current_staff)])


def _schedule_http_error(exc: InvalidScheduleError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail={"reason": exc.reason, "message": exc.message},
    )


def _audit_or_500(**kwargs: object) -> None:
    try:
        emit_audit_log(**kwargs)  # type: ignore[arg-type]
    except RuntimeError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit log failed")


@router.get("/reservations", response_model=List[ReservationRead])
async def list_reservations(
    date_param: Optional[str] = Query(default=None, alias="date", description="YYYY-MM-DD"),
    status_param: Optional[ReservationStatus] = Query(default=None, alias="status"),
    restaurant_id: int = Depends(get_staff_tenant),
    session: AsyncSession = Depends(get_session),
) -> list[ReservationRead]:
    day: date | None = None
    if date_param is not None:
        try:
            day = parse_calendar_date(date_param)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    rows = await reservation_usecase.list_reservations(
        SqlAlchemyReservationRepository(session),
        restaurant_id=restaurant_id,
        day=day,
        status=status_param,
    )
    return [ReservationRead.from_db(reservation=row) for row in rows]


@router.post("/reservations/{reservation_id}/cancel", response_model=ReservationRead)
async def cancel_reservation(
    reservation_id: int = Path(..., ge=1),
    restaurant_id: int = Depends(get_staff_tenant),
    staff: StaffClaims = Depends(get_current_staff),
    session: AsyncSession = Depends(get_session),
) -> ReservationRead:
    async with session.begin():
        try:
            updated, previous = await reservation_usecase.cancel_reservation(
                SqlAlchemyReservationRepository(session),
                restaurant_id=restaurant_id,
                reservation_id=reservation_id,
            )
        except (ReservationNotFoundError, InvalidStatusTransitionError) as exc:
            raise status_http_error(exc)

    if previous != updated.status:
        _audit_or_500(
            action="reservation.cancelled",
            initiator="staff",
            restaurant_id=updated.restaurant_id,
            reservation_id=updated.id,
            reservation_date=updated.reservation_date,
            party_size=updated.party_size,
            status_from=previous,
            status_to=updated.status,
            staff_id=staff.staff_id,
        )
    return ReservationRead.from_db(reservation=updated)


@router.put("/reservations/{reservation_id}", response_model=ReservationRead)
async def update_reservation(
    payload: ReservationUpdate,
    reservation_id: int = Path(..., ge=1),
    if_match: Optional[str] = Header(default=None, alias="If-Match"),
    restaurant_id: int = Depends(get_staff_tenant),
    staff: StaffClaims = Depends(get_current_staff),
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
        _audit_or_500(
            action="reservation.updated",
            initiator="staff",
            staff_id=staff.staff_id,
            **update_audit_fields(updated, changes),
        )
    return ReservationRead.from_db(reservation=updated)


async def _record_outcome(
    *,
    reservation_id: int,
    restaurant_id: int,
    staff: StaffClaims,
    session: AsyncSession,
    outcome: ReservationStatus,
    action: AuditAction,
) -> ReservationRead:
    async with session.begin():
        try:
            updated, previous = await reservation_usecase.record_outcome(
                SqlAlchemyReservationRepository(session),
                restaurant_id=restaurant_id,
                reservation_id=reservation_id,
                outcome=outcome,
                today=date.today(),
            )
        except (ReservationNotFoundError, InvalidStatusTransitionError) as exc:
            raise status_http_error(exc)

    if previous != updated.status:
        _audit_or_500(
            action=action,
            initiator="staff",
            restaurant_id=updated.restaurant_id,
            reservation_id=updated.id,
            reservation_date=updated.reservation_date,
            party_size=updated.party_size,
            status_from=previous,
            status_to=updated.status,
            staff_id=staff.staff_id,
        )
    return ReservationRead.from_db(reservation=updated)


@router.post("/reservations/{reservation_id}/complete", response_model=ReservationRead)
async def complete_reservation(
    reservation_id: int = Path(..., ge=1),
    restaurant_id: int = Depends(get_staff_tenant),
    staff: StaffClaims = Depends(get_current_staff),
    session: AsyncSession = Depends(get_session),
) -> ReservationRead:
    return await _record_outcome(
        reservation_id=reservation_id,
        restaurant_id=restaurant_id,
        staff=staff,
        session=session,
        outcome=ReservationStatus.COMPLETED,
        action="reservation.completed",
    )


@router.post("/reservations/{reservation_id}/no-show", response_model=ReservationRead)
async def mark_no_show(
    reservation_id: int = Path(..., ge=1),
    restaurant_id: int = Depends(get_staff_tenant),
    staff: StaffClaims = Depends(get_current_staff),
    session: AsyncSession = Depends(get_session),
) -> ReservationRead:
    return await _record_outcome(
        reservation_id=reservation_id,
        restaurant_id=restaurant_id,
        staff=staff,
        session=session,
        outcome=ReservationStatus.NO_SHOW,
        action="reservation.no_show",
    )


@router.get("/settings", response_model=PolicyRead)
async def read_settings(
    restaurant_id: int = Depends(get_staff_tenant),
    session: AsyncSession = Depends(get_session),
) -> PolicyRead:
    policy = await availability_usecase.load_policy(SqlAlchemySettingsRepository(session), restaurant_id)
    return PolicyRead.from_policy(policy)


@router.put("/settings", response_model=PolicyRead)
async def update_settings(
    payload: PolicyUpdate,
    restaurant_id: int = Depends(get_staff_tenant),
    staff: StaffClaims = Depends(get_current_staff),
    session: AsyncSession = Depends(get_session),
) -> PolicyRead:
    async with session.begin():
        try:
            policy = await settings_usecase.update_policy(
                SqlAlchemySettingsRepository(session),
                restaurant_id=restaurant_id,
                policy=payload.to_policy(),
            )
        except InvalidScheduleError as exc:
            raise _schedule_http_error(exc)

    _audit_or_500(
        action="restaurant.settings_updated",
        initiator="staff",
        restaurant_id=restaurant_id,
        staff_id=staff.staff_id,
        extra={
            "max_covers_per_day": policy.max_covers_per_day,
            "min_party_size": policy.min_party_size,
            "max_party_size": policy.max_party_size,
            "slot_interval_minutes": policy.slot_interval_minutes,
        },
    )
    return PolicyRead.from_policy(policy)


@router.get("/operating-hours", response_model=List[OperatingHoursItem])
async def get_operating_hours(
    restaurant_id: int = Depends(get_staff_tenant),
    session: AsyncSession = Depends(get_session),
) -> list[OperatingHoursItem]:
    week = await SqlAlchemyOperatingHoursRepository(session).list_week(restaurant_id)
    return [OperatingHoursItem.from_entry(entry) for entry in week]


@router.put("/operating-hours", response_model=List[OperatingHoursItem])
async def replace_operating_hours(
    payload: OperatingHoursUpdate,
    restaurant_id: int = Depends(get_staff_tenant),
    staff: StaffClaims = Depends(get_current_staff),
    session: AsyncSession = Depends(get_session),
) -> list[OperatingHoursItem]:
    async with session.begin():
        try:
            week = await settings_usecase.replace_operating_hours(
                SqlAlchemyOperatingHoursRepository(session),
                restaurant_id=restaurant_id,
                entries=[item.to_entry() for item in payload.days],
            )
        except InvalidScheduleError as exc:
            raise _schedule_http_error(exc)

    _audit_or_500(
        action="restaurant.hours_updated",
        initiator="staff",
        restaurant_id=restaurant_id,
        staff_id=staff.staff_id,
    )
    return [OperatingHoursItem.from_entry(entry) for entry in week]
