"""Hold router for seat hold operations."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.authorization import Actor, Operation
from ..core.dependencies import require
from ..core.exceptions import ProblemDetailsException
from ..schemas.common import Acknowledgement
from ..schemas.hold import CreateHoldRequest, ReleaseHoldRequest, SeatHold
from ..services.seat_hold_service import SeatHoldService
from .common import DB_DEPENDENCY, IDEMPOTENCY_KEY_DEPENDENCY, handle_idempotent_operation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/hold", tags=["hold"])

CREATE_DEPENDENCY = Depends(require(Operation.HOLD_CREATE))
RELEASE_DEPENDENCY = Depends(require(Operation.HOLD_RELEASE))
SWEEP_DEPENDENCY = Depends(require(Operation.HOLD_SWEEP))


@router.post("/create", response_model=SeatHold, status_code=201)
async def create_hold(
    request: CreateHoldRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = CREATE_DEPENDENCY,
    idempotency_key: Optional[str] = IDEMPOTENCY_KEY_DEPENDENCY,
) -> JSONResponse:
    """
    Hold one seat on a segment of a trip.

    The hold belongs to the caller and lapses after the configured TTL.
    Replaying the same Idempotency-Key returns the original hold.
    """
    hold_service = SeatHoldService(db)

    async def operation():
        hold = await hold_service.create_hold(request, holder_id=actor.user_id)

        return SeatHold.model_validate(hold).model_dump(mode="json")

    try:
        return await handle_idempotent_operation(
            method="hold/create",
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
            "Unexpected error in hold creation",
            extra={
                "trip_id": str(request.trip_id),
                "seat_number": request.seat_number,
                "idempotency_key": idempotency_key,
                "error": str(e)
            },
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/release", response_model=SeatHold)
async def release_hold(
    request: ReleaseHoldRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = RELEASE_DEPENDENCY,
) -> JSONResponse:
    """Release a hold early. Releasing a finished hold returns it unchanged."""
    hold_service = SeatHoldService(db)

    try:
        hold = await hold_service.release(request.hold_id, actor)
        return JSONResponse(status_code=200, content=SeatHold.model_validate(hold).model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in hold release",
            extra={"hold_id": str(request.hold_id), "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/expire", response_model=Acknowledgement)
async def expire_holds(
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = SWEEP_DEPENDENCY,
) -> JSONResponse:
    """Expire every ACTIVE hold whose TTL has passed."""
    expired = await SeatHoldService(db).expire_due()
    logger.info("Manual hold sweep finished", extra={"expired": expired, "actor": actor.user_id})
    return JSONResponse(status_code=200, content=Acknowledgement(processed=expired).model_dump())
