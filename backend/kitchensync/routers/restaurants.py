from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_session, require_platform_key
from ..domain.errors import AllocationExhaustedError
from ..infrastructure.repositories import (
    SqlAlchemyOperatingHoursRepository,
    SqlAlchemyRestaurantRepository,
    SqlAlchemySettingsRepository,
)
from ..schemas import RestaurantCreate, RestaurantRead
from ..usecases import restaurants as restaurant_usecase
from ..utils.audit_log import emit_audit_log

router = APIRouter(prefix="/restaurants", tags=["restaurants"], dependencies=[Depends(require_platform_key)])


@router.post("", response_model=RestaurantRead, status_code=status.HTTP_201_CREATED)
async def register_restaurant(
    payload: RestaurantCreate,
    session: AsyncSession = Depends(get_session),
) -> RestaurantRead:
    async with session.begin():
        try:
            restaurant = await restaurant_usecase.register_restaurant(
                SqlAlchemyRestaurantRepository(session),
                SqlAlchemySettingsRepository(session),
                SqlAlchemyOperatingHoursRepository(session),
                name=payload.name,
            )
        except AllocationExhaustedError as exc:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail={"reason": exc.reason, "message": exc.message},
            )

    try:
        emit_audit_log(
            action="restaurant.registered",
            initiator="platform",
            restaurant_id=restaurant.id,
            extra={"slug": restaurant.slug},
        )
    except RuntimeError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="audit log failed")
    return RestaurantRead.from_db(restaurant=restaurant)
