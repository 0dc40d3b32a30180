from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_request_tenant, get_session
from ..infrastructure.repositories import (
    SqlAlchemyOperatingHoursRepository,
    SqlAlchemyReservationRepository,
    SqlAlchemySettingsRepository,
)
from ..schemas import DailyCapacityRead
from ..usecases import availability as availability_usecase
from ..utils.time import parse_calendar_date

router = APIRouter(prefix="", tags=["availability"])


def _parse_date_param(name: str, value: str) -> date:
    try:
        return parse_calendar_date(value)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{name}: {exc}") from exc


@router.get("/availability", response_model=List[DailyCapacityRead])
async def get_daily_capacity(
    start_date: Optional[str] = Query(default=None, description="YYYY-MM-DD, defaults to today"),
    end_date: Optional[str] = Query(default=None, description="YYYY-MM-DD, defaults to start + 90 days"),
    party_size: Optional[int] = Query(default=None, ge=1),
    restaurant_id: int = Depends(get_request_tenant),
    session: AsyncSession = Depends(get_session),
) -> list[DailyCapacityRead]:
    try:
        start, end = availability_usecase.resolve_date_range(
            _parse_date_param("start_date", start_date) if start_date is not None else None,
            _parse_date_param("end_date", end_date) if end_date is not None else None,
            today=date.today(),
        )
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    snapshots = await availability_usecase.daily_capacity(
        SqlAlchemySettingsRepository(session),
        SqlAlchemyReservationRepository(session),
        restaurant_id=restaurant_id,
        start=start,
        end=end,
        party_size=party_size,
    )
    return [DailyCapacityRead.from_snapshot(snapshot) for snapshot in snapshots]


@router.get("/slots", response_model=List[str])
async def list_slots(
    date_param: str = Query(..., alias="date", description="YYYY-MM-DD"),
    restaurant_id: int = Depends(get_request_tenant),
    session: AsyncSession = Depends(get_session),
) -> list[str]:
    day = _parse_date_param("date", date_param)
    return await availability_usecase.list_slots(
        SqlAlchemyOperatingHoursRepository(session),
        SqlAlchemySettingsRepository(session),
        restaurant_id=restaurant_id,
        day=day,
    )
