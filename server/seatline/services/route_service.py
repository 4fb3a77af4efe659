"""Route topology service: ordered stops and segment validation."""

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ConflictError, InvalidSegmentError, NotFoundError, UnknownStopError
from ..models.route import Route, Stop
from ..schemas.route import CreateRouteRequest

logger = logging.getLogger(__name__)


class RouteService:
    """Service for route-related operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_route(self, request: CreateRouteRequest) -> Route:
        """
        Create a route together with its ordered stops.

        Args:
            request: Route creation request

        Returns:
            Created route entity

        Raises:
            ConflictError: If a route with the same name already exists
        """
        existing = await self.get_route_by_name(request.name)
        if existing:
            logger.warning(
                "Route creation failed - name already exists",
                extra={"route_name": request.name, "existing_route_id": str(existing.id)}
            )
            raise ConflictError(
                detail=f"Route with name '{request.name}' already exists",
                conflicting_resource={"id": str(existing.id), "name": existing.name}
            )

        route = Route(
            name=request.name,
            origin=request.stops[0].name,
            destination=request.stops[-1].name,
            stops=[Stop(name=stop.name, ordinal=stop.ordinal) for stop in request.stops],
        )

        try:
            self.db.add(route)
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.error(
                "Route creation failed - database constraint violation",
                extra={"route_name": request.name, "error": str(e)}
            )
            raise ConflictError(detail=f"Route with name '{request.name}' already exists") from e

        logger.info(
            "Route created successfully",
            extra={"route_id": str(route.id), "route_name": route.name, "stops": len(request.stops)}
        )
        return route

    async def get_route_by_id(self, route_id: UUID) -> Route | None:
        stmt = select(Route).where(Route.id == route_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_route_by_id_or_raise(self, route_id: UUID) -> Route:
        route = await self.get_route_by_id(route_id)
        if not route:
            raise NotFoundError(resource_type="route", resource_id=str(route_id))
        return route

    async def get_route_by_name(self, name: str) -> Route | None:
        stmt = select(Route).where(Route.name == name)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def stops_of(self, route_id: UUID) -> list[Stop]:
        """Stops of a route in travel order."""
        route = await self.get_route_by_id_or_raise(route_id)
        return list(route.stops)

    async def ordinal_of(self, route_id: UUID, stop_id: UUID) -> int:
        """
        Resolve a stop to its position on the route.

        Raises:
            NotFoundError: If the route does not exist
            UnknownStopError: If the stop is not on the route
        """
        for stop in await self.stops_of(route_id):
            if stop.id == stop_id:
                return stop.ordinal
        raise UnknownStopError(str(route_id), str(stop_id))

    async def validate_segment(self, route_id: UUID, from_ordinal: int, to_ordinal: int) -> list[int]:
        """
        Check that ``[from_ordinal, to_ordinal)`` is an ordered range between two stops of the route.

        Returns:
            All ordinals of the route, in order

        Raises:
            InvalidSegmentError: If the range is empty, reversed, or leaves the route
        """
        ordinals = [stop.ordinal for stop in await self.stops_of(route_id)]
        check_segment(ordinals, from_ordinal, to_ordinal)
        return ordinals


def check_segment(ordinals: list[int], from_ordinal: int, to_ordinal: int) -> None:
    """Raise InvalidSegmentError unless both ends are route ordinals and ``from < to``."""
    if from_ordinal >= to_ordinal:
        raise InvalidSegmentError(
            from_ordinal, to_ordinal,
            detail=f"Segment start {from_ordinal} must come before its end {to_ordinal}"
        )
    known = set(ordinals)
    if from_ordinal not in known or to_ordinal not in known:
        raise InvalidSegmentError(from_ordinal, to_ordinal)


def legs_between(ordinals: list[int], from_ordinal: int, to_ordinal: int) -> int:
    """Number of consecutive stop-to-stop legs covered by a segment."""
    return sum(1 for ordinal in ordinals if from_ordinal <= ordinal < to_ordinal)
