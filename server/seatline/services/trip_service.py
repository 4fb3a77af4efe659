"""Trip lifecycle service: scheduling, guarded status transitions and the cancellation cascade."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.concurrency import run_atomic
from ..core.config import settings
from ..core.database import utcnow
from ..core.exceptions import (
    ConflictError,
    InvalidStateTransitionError,
    NotFoundError,
    TripNotBookableError,
    UnknownSeatError,
)
from ..core.locking import seat_locks
from ..core.observability import metrics_collector
from ..models.overbooking import OverbookingRequest, OverbookingStatus
from ..models.seat_hold import HoldStatus, SeatHold
from ..models.ticket import LIVE_TICKET_STATUSES, Ticket, TicketStatus
from ..models.trip import Trip, TripSeat, TripStatus
from ..schemas.trip import AssignBusRequest, CancelTripRequest, CreateTripRequest
from .bus_service import BusService
from .route_service import RouteService

logger = logging.getLogger(__name__)


# Allowed trip status transitions; everything else is rejected
TRIP_TRANSITIONS: dict[TripStatus, frozenset[TripStatus]] = {
    TripStatus.SCHEDULED: frozenset({TripStatus.BOARDING, TripStatus.CANCELLED}),
    TripStatus.BOARDING: frozenset({TripStatus.DEPARTED, TripStatus.CANCELLED}),
    TripStatus.DEPARTED: frozenset({TripStatus.ARRIVED}),
    TripStatus.ARRIVED: frozenset(),
    TripStatus.CANCELLED: frozenset(),
}

BOARDING_CLOSED = "BOARDING_CLOSED"


def can_transition(current: TripStatus | str, target: TripStatus) -> bool:
    return target in TRIP_TRANSITIONS[TripStatus(current)]


@dataclass
class TripCancellationResult:
    """Trip after cancellation and the size of the cascade."""

    trip: Trip
    tickets_cancelled: int
    holds_released: int
    overbooking_requests_rejected: int


class TripService:
    """Service for trip scheduling and the trip state machine."""

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock
        self.route_service = RouteService(db)
        self.bus_service = BusService(db)

    async def create_trip(self, request: CreateTripRequest) -> Trip:
        """
        Schedule a trip on a route, optionally assigning its bus right away.

        Raises:
            NotFoundError: If the route does not exist
            UnknownBusError: If the bus does not exist
        """
        await self.route_service.get_route_by_id_or_raise(request.route_id)
        bus = None
        if request.bus_id is not None:
            bus = await self.bus_service.get_bus_by_id_or_raise(request.bus_id)

        trip = Trip(
            route_id=request.route_id,
            bus_id=bus.id if bus else None,
            departure_at=request.departure_at,
            arrival_eta=request.arrival_eta,
            status=TripStatus.SCHEDULED,
        )
        self.db.add(trip)
        await self.db.flush()

        if bus:
            self._add_trip_seats(trip.id, [seat.seat_number for seat in bus.seats])

        await self.db.commit()

        logger.info(
            "Trip scheduled",
            extra={
                "trip_id": str(trip.id),
                "route_id": str(trip.route_id),
                "bus_id": str(trip.bus_id) if trip.bus_id else None,
                "departure_at": trip.departure_at.isoformat(),
            }
        )
        return trip

    async def assign_bus(self, request: AssignBusRequest) -> Trip:
        """
        Assign a bus to a SCHEDULED trip and create one contention record per seat.

        A bus may be swapped only while the trip has no holds or live tickets.

        Raises:
            NotFoundError: If the trip does not exist
            UnknownBusError: If the bus does not exist
            TripNotBookableError: If the trip is no longer SCHEDULED
            ConflictError: If seats of the current bus are already reserved
        """
        await self.get_trip_by_id_or_raise(request.trip_id)
        bus = await self.bus_service.get_bus_by_id_or_raise(request.bus_id)
        seat_numbers = await self.seat_numbers_of(request.trip_id)
        bus_seat_numbers = [seat.seat_number for seat in bus.seats]
        bus_id, capacity = bus.id, bus.capacity

        async def operation() -> Trip:
            trip = await self.get_trip_for_update_or_raise(request.trip_id)
            if trip.status != TripStatus.SCHEDULED:
                raise TripNotBookableError(
                    str(trip.id), trip.status,
                    detail=f"A bus can only be assigned to trip {trip.id} while it is SCHEDULED"
                )
            if trip.bus_id == bus_id:
                return trip

            if trip.bus_id is not None:
                if await self._has_reservations(trip.id):
                    raise ConflictError(
                        detail=f"Trip {trip.id} already has reservations on bus {trip.bus_id}",
                        conflicting_resource={"trip_id": str(trip.id), "bus_id": str(trip.bus_id)}
                    )
                for trip_seat in await self.get_trip_seats(trip.id):
                    await self.db.delete(trip_seat)
                # Old seat rows must be gone before rows with the same numbers are inserted
                await self.db.flush()

            trip.bus_id = bus_id
            self._add_trip_seats(trip.id, bus_seat_numbers)
            return trip

        async with seat_locks.seats(request.trip_id, seat_numbers):
            trip = await run_atomic(
                self.db, operation, lambda: self._concurrent_update(request.trip_id), "assign_bus"
            )

        logger.info(
            "Bus assigned to trip",
            extra={"trip_id": str(trip.id), "bus_id": str(bus_id), "capacity": capacity}
        )
        return trip

    async def open_boarding(self, trip_id: UUID) -> Trip:
        """SCHEDULED -> BOARDING."""
        return await self._transition(trip_id, TripStatus.BOARDING)

    async def close_boarding(self, trip_id: UUID) -> Trip:
        """
        Stop accepting new holds and tickets on a BOARDING trip.

        The trip stays BOARDING so passengers can still be marked used or no-show.

        Raises:
            InvalidStateTransitionError: Unless the trip is BOARDING with boarding still open
        """
        async def mutate(trip: Trip, now: datetime) -> None:
            trip.boarding_closed_at = now

        def guard(trip: Trip) -> bool:
            return trip.status == TripStatus.BOARDING and trip.boarding_closed_at is None

        return await self._transition(trip_id, BOARDING_CLOSED, mutate=mutate, guard=guard)

    async def depart(self, trip_id: UUID) -> Trip:
        """BOARDING -> DEPARTED, closing boarding first when it is still open."""
        async def mutate(trip: Trip, now: datetime) -> None:
            if trip.boarding_closed_at is None:
                trip.boarding_closed_at = now

        return await self._transition(trip_id, TripStatus.DEPARTED, mutate=mutate)

    async def arrive(self, trip_id: UUID) -> Trip:
        """DEPARTED -> ARRIVED."""
        return await self._transition(trip_id, TripStatus.ARRIVED)

    async def cancel(self, request: CancelTripRequest, actor_id: str) -> TripCancellationResult:
        """
        Cancel a SCHEDULED or BOARDING trip together with everything reserved on it.

        Live tickets are cancelled (SOLD ones refunded in full), active holds are
        released and pending overbooking requests are rejected. The cascade and
        the status change commit as one unit while every seat lock of the trip is held.

        Args:
            request: Trip cancellation request
            actor_id: User resolving the pending overbooking requests

        Returns:
            Cancelled trip and cascade counts

        Raises:
            NotFoundError: If the trip does not exist
            InvalidStateTransitionError: If the trip already departed, arrived or was cancelled
        """
        counts: dict[str, int] = {}

        async def mutate(trip: Trip, now: datetime) -> None:
            tickets = await self._load(
                select(Ticket).where(Ticket.trip_id == trip.id, Ticket.status.in_(LIVE_TICKET_STATUSES))
            )
            for ticket in tickets:
                ticket.refund_amount = ticket.price if ticket.status == TicketStatus.SOLD else 0
                ticket.status = TicketStatus.CANCELLED
                ticket.cancelled_at = now
                ticket.cancellation_reason = f"Trip cancelled: {request.reason}"

            holds = await self._load(
                select(SeatHold).where(SeatHold.trip_id == trip.id, SeatHold.status == HoldStatus.ACTIVE)
            )
            for hold in holds:
                hold.status = HoldStatus.RELEASED

            pending = await self._load(
                select(OverbookingRequest).where(
                    OverbookingRequest.trip_id == trip.id,
                    OverbookingRequest.status == OverbookingStatus.PENDING,
                )
            )
            for overbooking in pending:
                overbooking.status = OverbookingStatus.REJECTED
                overbooking.resolved_by = actor_id
                overbooking.resolved_at = now
                overbooking.resolution_notes = f"Trip cancelled: {request.reason}"

            counts.update(tickets=len(tickets), holds=len(holds), overbooking=len(pending))

        trip = await self._transition(request.trip_id, TripStatus.CANCELLED, mutate=mutate)

        metrics_collector.record_ticket_transition(TicketStatus.CANCELLED.value, counts["tickets"])
        metrics_collector.record_holds_finished("released", counts["holds"])
        metrics_collector.record_overbooking("rejected", counts["overbooking"])

        logger.info(
            "Trip cancelled with cascade",
            extra={
                "trip_id": str(trip.id),
                "reason": request.reason,
                "tickets_cancelled": counts["tickets"],
                "holds_released": counts["holds"],
                "overbooking_requests_rejected": counts["overbooking"],
            }
        )

        return TripCancellationResult(
            trip=trip,
            tickets_cancelled=counts["tickets"],
            holds_released=counts["holds"],
            overbooking_requests_rejected=counts["overbooking"],
        )

    async def advance_due_trips(self) -> int:
        """
        Open boarding and depart trips whose schedule has come due.

        SCHEDULED trips within the boarding window open boarding; BOARDING trips
        past their departure time depart. Trips changed concurrently are skipped.

        Returns:
            Number of transitions applied
        """
        now = self.clock()
        advanced = 0

        boarding_due = await self.db.execute(
            select(Trip.id).where(
                Trip.status == TripStatus.SCHEDULED,
                Trip.departure_at <= now + timedelta(minutes=settings.boarding_opens_minutes),
            )
        )
        for trip_id in list(boarding_due.scalars()):
            advanced += await self._advance(trip_id, self.open_boarding)

        departure_due = await self.db.execute(
            select(Trip.id).where(Trip.status == TripStatus.BOARDING, Trip.departure_at <= now)
        )
        for trip_id in list(departure_due.scalars()):
            advanced += await self._advance(trip_id, self.depart)

        return advanced

    async def _advance(self, trip_id: UUID, step: Callable[[UUID], Awaitable[Trip]]) -> int:
        try:
            await step(trip_id)
        except (InvalidStateTransitionError, ConflictError) as e:
            logger.info(
                "Scheduled trip transition skipped",
                extra={"trip_id": str(trip_id), "step": step.__name__, "reason": e.problem_details.get("detail")}
            )
            return 0
        return 1

    async def _transition(
        self,
        trip_id: UUID,
        target: TripStatus | str,
        mutate: Callable[[Trip, datetime], Awaitable[None]] | None = None,
        guard: Callable[[Trip], bool] | None = None,
    ) -> Trip:
        """
        Apply a guarded trip transition while holding every seat lock of the trip.

        Every trip seat version is bumped so seat writers that validated the old
        trip state lose their compare-and-swap.
        """
        seat_numbers = await self.seat_numbers_of(trip_id)
        target_name = getattr(target, "value", target)

        async def operation() -> Trip:
            now = self.clock()
            trip = await self.get_trip_for_update_or_raise(trip_id)

            allowed = guard(trip) if guard else can_transition(trip.status, target)
            if not allowed:
                logger.warning(
                    "Trip transition rejected",
                    extra={"trip_id": str(trip_id), "status": trip.status, "target": target_name}
                )
                raise InvalidStateTransitionError("trip", str(trip_id), trip.status, target_name)

            if isinstance(target, TripStatus):
                trip.status = target
            if mutate:
                await mutate(trip, now)
            for trip_seat in await self.get_trip_seats(trip_id):
                trip_seat.touch(now)
            return trip

        async with seat_locks.seats(trip_id, seat_numbers):
            trip = await run_atomic(
                self.db, operation, lambda: self._concurrent_update(trip_id), f"trip_{target_name.lower()}"
            )

        metrics_collector.record_trip_transition(target_name)
        logger.info("Trip transitioned", extra={"trip_id": str(trip_id), "status": target_name})
        return trip

    def _add_trip_seats(self, trip_id: UUID, seat_numbers: list[str]) -> None:
        now = self.clock()
        for number in seat_numbers:
            self.db.add(TripSeat(trip_id=trip_id, seat_number=number, last_changed_at=now))

    async def _has_reservations(self, trip_id: UUID) -> bool:
        holds = await self.db.execute(
            select(func.count(SeatHold.id)).where(
                SeatHold.trip_id == trip_id, SeatHold.status == HoldStatus.ACTIVE
            )
        )
        tickets = await self.db.execute(
            select(func.count(Ticket.id)).where(
                Ticket.trip_id == trip_id, Ticket.status.in_(LIVE_TICKET_STATUSES)
            )
        )
        return (holds.scalar_one() + tickets.scalar_one()) > 0

    async def _load(self, stmt) -> list:
        result = await self.db.execute(stmt.execution_options(populate_existing=True))
        return list(result.scalars())

    @staticmethod
    def _concurrent_update(trip_id: UUID) -> ConflictError:
        return ConflictError(
            detail=f"Trip {trip_id} was modified concurrently, please retry",
            conflicting_resource={"trip_id": str(trip_id)}
        )

    async def get_trip_by_id(self, trip_id: UUID) -> Trip | None:
        stmt = select(Trip).where(Trip.id == trip_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_trip_by_id_or_raise(self, trip_id: UUID) -> Trip:
        trip = await self.get_trip_by_id(trip_id)
        if not trip:
            logger.warning("Trip not found", extra={"trip_id": str(trip_id)})
            raise NotFoundError(resource_type="trip", resource_id=str(trip_id))
        return trip

    async def get_trip_for_update_or_raise(self, trip_id: UUID) -> Trip:
        """Re-read a trip, overwriting any stale copy held by the session."""
        stmt = select(Trip).where(Trip.id == trip_id).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        trip = result.scalar_one_or_none()
        if not trip:
            raise NotFoundError(resource_type="trip", resource_id=str(trip_id))
        return trip

    async def seat_numbers_of(self, trip_id: UUID) -> list[str]:
        result = await self.db.execute(
            select(TripSeat.seat_number).where(TripSeat.trip_id == trip_id).order_by(TripSeat.seat_number)
        )
        return list(result.scalars())

    async def get_trip_seats(self, trip_id: UUID) -> list[TripSeat]:
        return await self._load(select(TripSeat).where(TripSeat.trip_id == trip_id))

    async def get_trip_seat_or_raise(self, trip_id: UUID, seat_number: str) -> TripSeat:
        """
        Re-read the contention record of one seat.

        Raises:
            UnknownSeatError: If the seat is not installed on the trip's bus
        """
        stmt = select(TripSeat).where(
            TripSeat.trip_id == trip_id, TripSeat.seat_number == seat_number
        ).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        trip_seat = result.scalar_one_or_none()
        if not trip_seat:
            raise UnknownSeatError(str(trip_id), seat_number)
        return trip_seat
