"""Segment availability index: FREE / HELD / OCCUPIED per seat for an ordinal range."""

import logging
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import utcnow
from ..core.exceptions import TripHasNoBusError
from ..core.observability import metrics_collector
from ..models.seat_hold import HoldStatus, SeatHold
from ..models.ticket import LIVE_TICKET_STATUSES, Ticket
from ..models.trip import Trip
from ..schemas.availability import SeatState
from .bus_service import BusService
from .route_service import legs_between
from .trip_service import TripService

logger = logging.getLogger(__name__)


class SegmentClaim(Protocol):
    """Anything that reserves a seat for an ordinal range: holds and tickets."""

    seat_number: str
    from_ordinal: int
    to_ordinal: int


def segments_overlap(a: int, b: int, c: int, d: int) -> bool:
    """Half-open ranges [a, b) and [c, d) share at least one leg."""
    return a < d and c < b


def claim_overlaps(claim: SegmentClaim, from_ordinal: int, to_ordinal: int) -> bool:
    return segments_overlap(claim.from_ordinal, claim.to_ordinal, from_ordinal, to_ordinal)


def compute_availability(
    seat_numbers: Iterable[str],
    tickets: Iterable[SegmentClaim],
    holds: Iterable[SegmentClaim],
    from_ordinal: int,
    to_ordinal: int,
) -> dict[str, SeatState]:
    """
    Classify every seat for the segment ``[from_ordinal, to_ordinal)``.

    Args:
        seat_numbers: Seats installed on the bus
        tickets: Live tickets (PENDING_PAYMENT or SOLD) of the trip
        holds: Active, unexpired holds of the trip
        from_ordinal: Segment start
        to_ordinal: Segment end (exclusive)

    Returns:
        Seat number to state; a ticket wins over a hold on the same seat
    """
    states = {number: SeatState.FREE for number in seat_numbers}

    for hold in holds:
        if hold.seat_number in states and claim_overlaps(hold, from_ordinal, to_ordinal):
            states[hold.seat_number] = SeatState.HELD

    for ticket in tickets:
        if ticket.seat_number in states and claim_overlaps(ticket, from_ordinal, to_ordinal):
            states[ticket.seat_number] = SeatState.OCCUPIED

    return states


class AvailabilityService:
    """
    Advisory availability reads.

    The authoritative check happens again inside hold creation; a seat reported
    FREE here may be taken by the time a hold is requested.
    """

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock
        self.trip_service = TripService(db, clock)
        self.bus_service = BusService(db)

    async def availability(self, trip_id: UUID, from_ordinal: int, to_ordinal: int) -> dict[str, SeatState]:
        """
        Per-seat state of a trip for one segment.

        Raises:
            NotFoundError: If the trip does not exist
            TripHasNoBusError: If no bus is assigned yet
            InvalidSegmentError: If the segment is not an ordered range on the route
        """
        trip, seat_numbers = await self._trip_with_seats(trip_id)
        await self.trip_service.route_service.validate_segment(trip.route_id, from_ordinal, to_ordinal)

        states = compute_availability(
            seat_numbers,
            await self.live_tickets(trip_id),
            await self.active_holds(trip_id),
            from_ordinal,
            to_ordinal,
        )

        logger.debug(
            "Availability computed",
            extra={
                "trip_id": str(trip_id),
                "from_ordinal": from_ordinal,
                "to_ordinal": to_ordinal,
                "free": sum(1 for state in states.values() if state == SeatState.FREE),
            }
        )
        return states

    async def free_seat_count(self, trip_id: UUID, from_ordinal: int, to_ordinal: int) -> int:
        states = await self.availability(trip_id, from_ordinal, to_ordinal)
        return sum(1 for state in states.values() if state == SeatState.FREE)

    async def segment_occupancy_rate(self, trip_id: UUID, from_ordinal: int, to_ordinal: int) -> float:
        """
        Share of the bus capacity sold on a segment.

        A seat counts once if any live regular ticket overlaps the segment;
        capacity exceptions are not part of nominal capacity.
        """
        trip, seat_numbers = await self._trip_with_seats(trip_id)
        await self.trip_service.route_service.validate_segment(trip.route_id, from_ordinal, to_ordinal)

        occupied = {
            ticket.seat_number
            for ticket in await self.live_tickets(trip_id, include_exceptions=False)
            if claim_overlaps(ticket, from_ordinal, to_ordinal)
        }
        return len(occupied & set(seat_numbers)) / len(seat_numbers)

    async def trip_occupancy_rate(self, trip_id: UUID) -> float:
        """
        Sold seat-legs over total seat-legs of the trip.

        A ticket from the first to the last stop counts every leg of its seat;
        a ticket over one leg counts one. Returns 0.0 for a trip without a bus.
        """
        trip = await self.trip_service.get_trip_by_id_or_raise(trip_id)
        if trip.bus_id is None:
            return 0.0

        capacity = len(await self.bus_service.seats_of(trip.bus_id))
        ordinals = [stop.ordinal for stop in await self.trip_service.route_service.stops_of(trip.route_id)]
        total_legs = capacity * (len(ordinals) - 1)

        sold_legs = sum(
            legs_between(ordinals, ticket.from_ordinal, ticket.to_ordinal)
            for ticket in await self.live_tickets(trip_id, include_exceptions=False)
        )
        rate = sold_legs / total_legs if total_legs else 0.0
        metrics_collector.set_trip_occupancy(str(trip_id), rate)
        return rate

    async def live_tickets(
        self,
        trip_id: UUID,
        seat_number: str | None = None,
        include_exceptions: bool = True,
    ) -> list[Ticket]:
        """PENDING_PAYMENT and SOLD tickets of a trip, optionally for a single seat."""
        stmt = select(Ticket).where(Ticket.trip_id == trip_id, Ticket.status.in_(LIVE_TICKET_STATUSES))
        if seat_number is not None:
            stmt = stmt.where(Ticket.seat_number == seat_number)
        if not include_exceptions:
            stmt = stmt.where(Ticket.is_capacity_exception.is_(False))
        result = await self.db.execute(stmt.execution_options(populate_existing=True))
        return list(result.scalars())

    async def active_holds(
        self,
        trip_id: UUID,
        seat_number: str | None = None,
        include_lapsed: bool = False,
    ) -> list[SeatHold]:
        """
        ACTIVE holds of a trip.

        Holds past their expiry still ACTIVE (not yet swept) are left out unless
        ``include_lapsed`` is set.
        """
        stmt = select(SeatHold).where(SeatHold.trip_id == trip_id, SeatHold.status == HoldStatus.ACTIVE)
        if seat_number is not None:
            stmt = stmt.where(SeatHold.seat_number == seat_number)
        if not include_lapsed:
            stmt = stmt.where(SeatHold.expires_at > self.clock())
        result = await self.db.execute(stmt.execution_options(populate_existing=True))
        return list(result.scalars())

    async def _trip_with_seats(self, trip_id: UUID) -> tuple[Trip, list[str]]:
        trip = await self.trip_service.get_trip_by_id_or_raise(trip_id)
        if trip.bus_id is None:
            raise TripHasNoBusError(str(trip_id))
        seat_numbers = await self.trip_service.seat_numbers_of(trip_id)
        return trip, seat_numbers
