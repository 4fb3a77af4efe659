"""Overbooking router for capacity exceptions and their approval workflow."""

import logging
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.authorization import Actor, Operation
from ..core.dependencies import require
from ..core.exceptions import ProblemDetailsException
from ..schemas.common import Acknowledgement
from ..schemas.overbooking import (
    ApproveOverbookingRequest,
    OccupancyResponse,
    OverbookingRequest,
    OverbookingRequestList,
    OverCapacityTicketRequest,
    RejectOverbookingRequest,
    RequestOverbookingRequest,
    TripOverbookingRequest,
)
from ..schemas.ticket import Ticket
from ..services.overbooking_service import OverbookingService
from .common import DB_DEPENDENCY, IDEMPOTENCY_KEY_DEPENDENCY, handle_idempotent_operation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/overbooking", tags=["overbooking"])

SELL_DEPENDENCY = Depends(require(Operation.OVERBOOKING_SELL))
REQUEST_DEPENDENCY = Depends(require(Operation.OVERBOOKING_REQUEST))
DECIDE_DEPENDENCY = Depends(require(Operation.OVERBOOKING_DECIDE))
VIEW_DEPENDENCY = Depends(require(Operation.OVERBOOKING_VIEW))


def _render_list(requests) -> dict:
    items = [OverbookingRequest.model_validate(item) for item in requests]
    return OverbookingRequestList(items=items).model_dump(mode="json")


@router.post("/ticket", response_model=Ticket, status_code=201)
async def create_over_capacity_ticket(
    request: OverCapacityTicketRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = SELL_DEPENDENCY,
    idempotency_key: Optional[str] = IDEMPOTENCY_KEY_DEPENDENCY,
) -> JSONResponse:
    """
    Sell a seat beyond nominal capacity on a saturated trip.

    Only allowed close to departure with occupancy above the threshold. The
    ticket stays PENDING_PAYMENT until an overbooking request is approved.
    """
    overbooking_service = OverbookingService(db)

    async def operation():
        ticket = await overbooking_service.create_over_capacity_ticket(request)
        return Ticket.model_validate(ticket).model_dump(mode="json")

    try:
        return await handle_idempotent_operation(
            method="overbooking/ticket",
            idempotency_key=idempotency_key,
            actor=actor,
            request_body=request.model_dump(mode="json"),
            operation_func=operation,
            db=db,
            status_code=201
        )

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in capacity exception sale",
            extra={"trip_id": str(request.trip_id), "idempotency_key": idempotency_key, "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/request", response_model=OverbookingRequest, status_code=201)
async def request_overbooking(
    request: RequestOverbookingRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = REQUEST_DEPENDENCY,
) -> JSONResponse:
    """Open an approval request for a capacity exception ticket."""
    overbooking_service = OverbookingService(db)

    try:
        overbooking_request = await overbooking_service.request_overbooking(request, actor)
        response_data = OverbookingRequest.model_validate(overbooking_request)
        return JSONResponse(status_code=201, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in overbooking request",
            extra={"trip_id": str(request.trip_id), "ticket_id": str(request.ticket_id), "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/approve", response_model=OverbookingRequest)
async def approve_overbooking(
    request: ApproveOverbookingRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = DECIDE_DEPENDENCY,
) -> JSONResponse:
    """Approve a pending request; the ticket can then be paid."""
    overbooking_request = await OverbookingService(db).approve(request, actor)
    response_data = OverbookingRequest.model_validate(overbooking_request)
    return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))


@router.post("/reject", response_model=OverbookingRequest)
async def reject_overbooking(
    request: RejectOverbookingRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = DECIDE_DEPENDENCY,
) -> JSONResponse:
    """Reject a pending request and cancel its capacity exception ticket."""
    overbooking_request = await OverbookingService(db).reject(request, actor)
    response_data = OverbookingRequest.model_validate(overbooking_request)
    return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))


@router.post("/expire", response_model=Acknowledgement)
async def expire_requests(
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = DECIDE_DEPENDENCY,
) -> JSONResponse:
    """Expire pending requests past their deadline."""
    expired = await OverbookingService(db).expire_due()
    return JSONResponse(status_code=200, content=Acknowledgement(processed=expired).model_dump())


@router.post("/pending", response_model=OverbookingRequestList)
async def list_pending(
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = VIEW_DEPENDENCY,
) -> JSONResponse:
    """List every pending request, oldest first."""
    requests = await OverbookingService(db).list_pending()
    return JSONResponse(status_code=200, content=_render_list(requests))


@router.post("/by-trip", response_model=OverbookingRequestList)
async def list_by_trip(
    request: TripOverbookingRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = VIEW_DEPENDENCY,
) -> JSONResponse:
    """List the requests of one trip."""
    requests = await OverbookingService(db).list_by_trip(request.trip_id)
    return JSONResponse(status_code=200, content=_render_list(requests))


@router.post("/occupancy", response_model=OccupancyResponse)
async def occupancy(
    request: TripOverbookingRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = VIEW_DEPENDENCY,
) -> JSONResponse:
    """Occupancy of a trip and whether it may be overbooked right now."""
    snapshot = await OverbookingService(db).occupancy(request.trip_id)
    response_data = OccupancyResponse(**asdict(snapshot))
    return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))
