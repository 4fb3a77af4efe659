"""Bus router for seat inventory operations."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.authorization import Actor, Operation
from ..core.dependencies import require
from ..core.exceptions import ProblemDetailsException
from ..schemas.bus import Bus, CreateBusRequest, GetBusRequest
from ..services.bus_service import BusService
from .common import DB_DEPENDENCY

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/bus", tags=["bus"])

MANAGE_DEPENDENCY = Depends(require(Operation.BUS_MANAGE))
QUERY_DEPENDENCY = Depends(require(Operation.AVAILABILITY_QUERY))


def _convert_bus_to_schema(bus_model) -> Bus:
    """Convert bus model to schema."""
    return Bus(
        id=bus_model.id,
        plate=bus_model.plate,
        capacity=bus_model.capacity,
        seat_numbers=[seat.seat_number for seat in bus_model.seats],
    )


@router.post("/create", response_model=Bus, status_code=201)
async def create_bus(
    request: CreateBusRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = MANAGE_DEPENDENCY,
) -> JSONResponse:
    """Register a bus and its seat map; capacity is the number of seats."""
    bus_service = BusService(db)

    try:
        bus = await bus_service.create_bus(request)
        response_data = _convert_bus_to_schema(bus)

        return JSONResponse(status_code=201, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in bus registration",
            extra={"plate": request.plate, "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/get", response_model=Bus)
async def get_bus(
    request: GetBusRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = QUERY_DEPENDENCY,
) -> JSONResponse:
    """Get a bus with its seat numbers."""
    bus = await BusService(db).get_bus_by_id_or_raise(request.bus_id)
    return JSONResponse(status_code=200, content=_convert_bus_to_schema(bus).model_dump(mode="json"))
