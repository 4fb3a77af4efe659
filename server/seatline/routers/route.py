"""Route router for route topology operations."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.authorization import Actor, Operation
from ..core.dependencies import require
from ..core.exceptions import ProblemDetailsException
from ..schemas.route import CreateRouteRequest, GetRouteRequest, OrdinalOfRequest, OrdinalOfResponse, Route
from ..services.route_service import RouteService
from .common import DB_DEPENDENCY

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/route", tags=["route"])

MANAGE_DEPENDENCY = Depends(require(Operation.ROUTE_MANAGE))
QUERY_DEPENDENCY = Depends(require(Operation.AVAILABILITY_QUERY))


@router.post("/create", response_model=Route, status_code=201)
async def create_route(
    request: CreateRouteRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = MANAGE_DEPENDENCY,
) -> JSONResponse:
    """
    Create a route with its ordered stops.

    Route names are unique; a second create with the same name is a conflict.
    """
    route_service = RouteService(db)

    try:
        route = await route_service.create_route(request)
        response_data = Route.model_validate(route)

        return JSONResponse(status_code=201, content=response_data.model_dump(mode="json"))

    except ProblemDetailsException:
        raise

    except Exception as e:
        logger.error(
            "Unexpected error in route creation",
            extra={"route_name": request.name, "error": str(e)},
            exc_info=True
        )
        raise HTTPException(status_code=500, detail="Internal server error") from e


@router.post("/get", response_model=Route)
async def get_route(
    request: GetRouteRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = QUERY_DEPENDENCY,
) -> JSONResponse:
    """Get a route and its stops in travel order."""
    route = await RouteService(db).get_route_by_id_or_raise(request.route_id)
    return JSONResponse(status_code=200, content=Route.model_validate(route).model_dump(mode="json"))


@router.post("/ordinal", response_model=OrdinalOfResponse)
async def ordinal_of(
    request: OrdinalOfRequest,
    db: AsyncSession = DB_DEPENDENCY,
    actor: Actor = QUERY_DEPENDENCY,
) -> JSONResponse:
    """Resolve a stop of a route to its ordinal."""
    ordinal = await RouteService(db).ordinal_of(request.route_id, request.stop_id)
    response_data = OrdinalOfResponse(route_id=request.route_id, stop_id=request.stop_id, ordinal=ordinal)
    return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))
