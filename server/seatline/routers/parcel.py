"""Parcel router for parcel delivery verification."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.authorization import Actor, Operation
from ..core.dependencies import require
from ..core.exceptions import ProblemDetailsException
from ..schemas.parcel import CreatedParcel, CreateParcelRequest, DeliverParcelRequest, MarkFailedRequest, MarkInTransitRequest, Parcel
from ..services.parcel_service import ParcelService
from .common import DB_DEPENDENCY

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/parcel", tags=["parcel"])

CREATE_DEPENDENCY = Depends(require(Operation.PARCEL_CREATE))
DISPATCH_DEPENDENCY = Depends(require(Operation.PARCEL_DISPATCH))
DELIVER_DEPENDENCY = Depends(require(Operation.PARCEL_DELIVER))


def _render(parcel) -> dict:
    return Parcel.model_validate(parcel).model_dump(mode="json")


@router.post("/create", response_model=CreatedParcel, status_code=201)
async def create_parcel(
    request: CreateParcelRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = CREATE_DEPENDENCY,
) -> JSONResponse:
    """
    Register a parcel.

    The delivery OTP is returned only in this response so the clerk can pass
    it to the receiver.
    """
    parcel_service = ParcelService(db)

    try:
        parcel = await parcel_service.create_parcel(request)
        response_data = CreatedParcel.model_validate(parcel)

        return JSONResponse(status_code=201, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in parcel registration",
            extra={"receiver_name": request.receiver_name, "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/in-transit", response_model=Parcel)
async def mark_in_transit(
    request: MarkInTransitRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = DISPATCH_DEPENDENCY,
) -> JSONResponse:
    """Load a parcel on its trip."""
    parcel = await ParcelService(db).mark_in_transit(request)
    return JSONResponse(status_code=200, content=_render(parcel))


@router.post("/deliver", response_model=Parcel)
async def deliver_parcel(
    request: DeliverParcelRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = DELIVER_DEPENDENCY,
) -> JSONResponse:
    """
    Hand a parcel over after checking the receiver's OTP.

    A wrong OTP is rejected and leaves the parcel IN_TRANSIT.
    """
    parcel = await ParcelService(db).deliver(request)
    return JSONResponse(status_code=200, content=_render(parcel))


@router.post("/mark-failed", response_model=Parcel)
async def mark_failed(
    request: MarkFailedRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = DELIVER_DEPENDENCY,
) -> JSONResponse:
    """Record that a parcel could not be delivered."""
    parcel = await ParcelService(db).mark_failed(request)
    return JSONResponse(status_code=200, content=_render(parcel))
