"""Trip router for scheduling and the trip status lifecycle."""

import logging
from collections.abc import Awaitable, Callable
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.authorization import Actor, Operation
from ..core.dependencies import require
from ..core.exceptions import ProblemDetailsException
from ..models.trip import Trip as TripModel
from ..schemas.trip import (
    AssignBusRequest,
    CancelTripRequest,
    CreateTripRequest,
    Trip,
    TripActionRequest,
    TripCancellation,
)
from ..services.trip_service import TripService
from .common import DB_DEPENDENCY, IDEMPOTENCY_KEY_DEPENDENCY, handle_idempotent_operation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/trip", tags=["trip"])

SCHEDULE_DEPENDENCY = Depends(require(Operation.TRIP_SCHEDULE))
OPERATE_DEPENDENCY = Depends(require(Operation.TRIP_OPERATE))
CANCEL_DEPENDENCY = Depends(require(Operation.TRIP_CANCEL))
QUERY_DEPENDENCY = Depends(require(Operation.AVAILABILITY_QUERY))


async def _run_transition(
    name: str,
    trip_id: UUID,
    step: Callable[[UUID], Awaitable[TripModel]],
) -> JSONResponse:
    """Apply one status transition and render the updated trip."""
    try:
        trip = await step(trip_id)
        return JSONResponse(status_code=200, content=Trip.model_validate(trip).model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in trip transition",
            extra={"trip_id": str(trip_id), "transition": name, "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/create", response_model=Trip, status_code=201)
async def create_trip(
    request: CreateTripRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = SCHEDULE_DEPENDENCY,
) -> JSONResponse:
    """Schedule a trip, optionally with a bus already assigned."""
    trip_service = TripService(db)

    try:
        trip = await trip_service.create_trip(request)
        response_data = Trip.model_validate(trip)

        return JSONResponse(status_code=201, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in trip scheduling",
            extra={"route_id": str(request.route_id), "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/assign-bus", response_model=Trip)
async def assign_bus(
    request: AssignBusRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = SCHEDULE_DEPENDENCY,
) -> JSONResponse:
    """
    Assign a bus to a scheduled trip.

    The trip seat map is rebuilt from the bus; swapping buses once seats
    are held or ticketed is rejected.
    """
    trip_service = TripService(db)

    try:
        trip = await trip_service.assign_bus(request)
        return JSONResponse(status_code=200, content=Trip.model_validate(trip).model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in bus assignment",
            extra={"trip_id": str(request.trip_id), "bus_id": str(request.bus_id), "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/open-boarding", response_model=Trip)
async def open_boarding(
    request: TripActionRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = OPERATE_DEPENDENCY,
) -> JSONResponse:
    """Move a scheduled trip to BOARDING."""
    return await _run_transition("open_boarding", request.trip_id, TripService(db).open_boarding)


@router.post("/close-boarding", response_model=Trip)
async def close_boarding(
    request: TripActionRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = OPERATE_DEPENDENCY,
) -> JSONResponse:
    """Close boarding ahead of departure; the trip stays in BOARDING."""
    return await _run_transition("close_boarding", request.trip_id, TripService(db).close_boarding)


@router.post("/depart", response_model=Trip)
async def depart(
    request: TripActionRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = OPERATE_DEPENDENCY,
) -> JSONResponse:
    """Mark a boarding trip as DEPARTED."""
    return await _run_transition("depart", request.trip_id, TripService(db).depart)


@router.post("/arrive", response_model=Trip)
async def arrive(
    request: TripActionRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = OPERATE_DEPENDENCY,
) -> JSONResponse:
    """Mark a departed trip as ARRIVED."""
    return await _run_transition("arrive", request.trip_id, TripService(db).arrive)


@router.post("/cancel", response_model=TripCancellation)
async def cancel_trip(
    request: CancelTripRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = CANCEL_DEPENDENCY,
    idempotency_key: Optional[str] = IDEMPOTENCY_KEY_DEPENDENCY,
) -> JSONResponse:
    """
    Cancel a trip and everything booked on it.

    Live tickets are cancelled with a full refund of sold fares, active holds
    are released and pending overbooking requests are rejected, all in one
    atomic unit.
    """
    trip_service = TripService(db)

    async def operation():
        result = await trip_service.cancel(request, actor.user_id)
        response_data = TripCancellation(
            trip=Trip.model_validate(result.trip),
            tickets_cancelled=result.tickets_cancelled,
            holds_released=result.holds_released,
            overbooking_requests_rejected=result.overbooking_requests_rejected,
        )

        return response_data.model_dump(mode="json")

    try:
        return await handle_idempotent_operation(
            method="trip/cancel",
            idempotency_key=idempotency_key,
            actor=actor,
            request_body=request.model_dump(mode="json"),
            operation_func=operation,
            db=db
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in trip cancellation",
            extra={"trip_id": str(request.trip_id), "idempotency_key": idempotency_key, "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/get", response_model=Trip)
async def get_trip(
    request: TripActionRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = QUERY_DEPENDENCY,
) -> JSONResponse:
    """Get a trip by ID."""
    trip = await TripService(db).get_trip_by_id_or_raise(request.trip_id)
    return JSONResponse(status_code=200, content=Trip.model_validate(trip).model_dump(mode="json"))
