"""Ticket router for the ticket lifecycle."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.authorization import Actor, Operation
from ..core.dependencies import require
from ..core.exceptions import ProblemDetailsException
from ..schemas.common import Acknowledgement
from ..schemas.ticket import (
    CancelTicketRequest,
    ConfirmPaymentRequest,
    CreateTicketRequest,
    GetTicketRequest,
    ProcessNoShowsRequest,
    QuickSaleRequest,
    Ticket,
    TicketActionRequest,
)
from ..services.ticket_service import TicketService
from .common import DB_DEPENDENCY, IDEMPOTENCY_KEY_DEPENDENCY, handle_idempotent_operation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/ticket", tags=["ticket"])

CREATE_DEPENDENCY = Depends(require(Operation.TICKET_CREATE))
QUICK_SALE_DEPENDENCY = Depends(require(Operation.TICKET_QUICK_SALE))
CONFIRM_DEPENDENCY = Depends(require(Operation.TICKET_CONFIRM_PAYMENT))
CANCEL_DEPENDENCY = Depends(require(Operation.TICKET_CANCEL))
BOARDING_DEPENDENCY = Depends(require(Operation.TICKET_BOARDING))
VIEW_DEPENDENCY = Depends(require(Operation.TICKET_VIEW))


def _render(ticket) -> dict:
    return Ticket.model_validate(ticket).model_dump(mode="json")


@router.post("/create", response_model=Ticket, status_code=201)
async def create_ticket(
    request: CreateTicketRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = CREATE_DEPENDENCY,
    idempotency_key: Optional[str] = IDEMPOTENCY_KEY_DEPENDENCY,
) -> JSONResponse:
    """
    Convert an active hold into a ticket.

    CARD payments produce a SOLD ticket; other methods leave the ticket
    PENDING_PAYMENT. Replaying the same Idempotency-Key returns the same ticket.
    """
    ticket_service = TicketService(db)

    async def operation():
        ticket = await ticket_service.create_ticket(request, actor)
        return _render(ticket)

    try:
        return await handle_idempotent_operation(
            method="ticket/create",
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
            "Unexpected error in ticket creation",
            extra={"hold_id": str(request.hold_id), "idempotency_key": idempotency_key, "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/quick-sale", response_model=Ticket, status_code=201)
async def quick_sale(
    request: QuickSaleRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = QUICK_SALE_DEPENDENCY,
    idempotency_key: Optional[str] = IDEMPOTENCY_KEY_DEPENDENCY,
) -> JSONResponse:
    """
    Hold and sell a seat in one call in the last minutes before departure.

    Counter staff only. The quick sale discount applies unless ``apply_discount`` is false.
    """
    ticket_service = TicketService(db)

    async def operation():
        ticket = await ticket_service.quick_sale(request, actor)
        return _render(ticket)

    try:
        return await handle_idempotent_operation(
            method="ticket/quick-sale",
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
            "Unexpected error in quick sale",
            extra={
                "trip_id": str(request.trip_id),
                "seat_number": request.seat_number,
                "idempotency_key": idempotency_key,
                "error": str(e),
            },
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/confirm-payment", response_model=Ticket)
async def confirm_payment(
    request: ConfirmPaymentRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = CONFIRM_DEPENDENCY,
    idempotency_key: Optional[str] = IDEMPOTENCY_KEY_DEPENDENCY,
) -> JSONResponse:
    """Settle a PENDING_PAYMENT ticket, turning it SOLD."""
    ticket_service = TicketService(db)

    async def operation():
        ticket = await ticket_service.confirm_payment(request, actor)
        return _render(ticket)

    try:
        return await handle_idempotent_operation(
            method="ticket/confirm-payment",
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
            "Unexpected error in payment confirmation",
            extra={"ticket_id": str(request.ticket_id), "idempotency_key": idempotency_key, "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/cancel", response_model=Ticket)
async def cancel_ticket(
    request: CancelTicketRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = CANCEL_DEPENDENCY,
    idempotency_key: Optional[str] = IDEMPOTENCY_KEY_DEPENDENCY,
) -> JSONResponse:
    """
    Cancel a live ticket.

    The refund depends on how far ahead of departure the cancellation happens;
    the computed amount is returned on the ticket.
    """
    ticket_service = TicketService(db)

    async def operation():
        ticket = await ticket_service.cancel(request, actor)
        return _render(ticket)

    try:
        return await handle_idempotent_operation(
            method="ticket/cancel",
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
            "Unexpected error in ticket cancellation",
            extra={"ticket_id": str(request.ticket_id), "idempotency_key": idempotency_key, "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/mark-used", response_model=Ticket)
async def mark_used(
    request: TicketActionRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = BOARDING_DEPENDENCY,
) -> JSONResponse:
    """Board a SOLD ticket while its trip is boarding."""
    ticket = await TicketService(db).mark_used(request.ticket_id)
    return JSONResponse(status_code=200, content=_render(ticket))


@router.post("/mark-no-show", response_model=Ticket)
async def mark_no_show(
    request: TicketActionRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = BOARDING_DEPENDENCY,
) -> JSONResponse:
    """Record a SOLD ticket as a no-show and charge the no-show fee."""
    ticket = await TicketService(db).mark_no_show(request.ticket_id)
    return JSONResponse(status_code=200, content=_render(ticket))


@router.post("/process-no-shows", response_model=Acknowledgement)
async def process_no_shows(
    request: ProcessNoShowsRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = BOARDING_DEPENDENCY,
) -> JSONResponse:
    """Mark every unboarded SOLD ticket of a boarding trip as a no-show once the window is reached."""
    processed = await TicketService(db).process_no_shows(request.trip_id)
    return JSONResponse(status_code=200, content=Acknowledgement(processed=processed).model_dump())


@router.post("/get", response_model=Ticket)
async def get_ticket(
    request: GetTicketRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = VIEW_DEPENDENCY,
) -> JSONResponse:
    """Get a ticket by ID or confirmation code. Passengers only see their own tickets."""
    ticket = await TicketService(db).get_ticket(ticket_id=request.ticket_id, code=request.code, actor=actor)
    return JSONResponse(status_code=200, content=_render(ticket))
