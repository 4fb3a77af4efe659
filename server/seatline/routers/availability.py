"""Availability router for segment seat maps."""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.authorization import Actor, Operation
from ..core.dependencies import require
from ..schemas.availability import AvailabilityRequest, AvailabilityResponse, SeatAvailability, SeatState
from ..services.availability_service import AvailabilityService
from .common import DB_DEPENDENCY

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/availability", tags=["availability"])

QUERY_DEPENDENCY = Depends(require(Operation.AVAILABILITY_QUERY))


@router.post("/query", response_model=AvailabilityResponse)
async def query_availability(
    request: AvailabilityRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = QUERY_DEPENDENCY,
) -> JSONResponse:
    """
    Seat map of a trip for the segment [from_ordinal, to_ordinal).

    The answer is a snapshot; holds are the only way to claim a seat.
    """
    availability_service = AvailabilityService(db)

    states = await availability_service.availability(request.trip_id, request.from_ordinal, request.to_ordinal)
    occupancy_rate = await availability_service.segment_occupancy_rate(
        request.trip_id, request.from_ordinal, request.to_ordinal
    )

    response_data = AvailabilityResponse(
        trip_id=request.trip_id,
        from_ordinal=request.from_ordinal,
        to_ordinal=request.to_ordinal,
        seats=[SeatAvailability(seat_number=number, state=state) for number, state in states.items()],
        free_count=sum(1 for state in states.values() if state == SeatState.FREE),
        occupancy_rate=occupancy_rate,
    )

    return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))
