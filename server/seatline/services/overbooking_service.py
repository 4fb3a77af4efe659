"""Overbooking workflow: sales beyond nominal capacity gated by dispatcher approval."""

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.authorization import Actor
from ..core.concurrency import run_atomic
from ..core.config import settings
from ..core.database import utcnow
from ..core.exceptions import (
    ConflictError,
    InvalidStateTransitionError,
    NotFoundError,
    OverbookingNotAllowedError,
    SegmentConflictError,
    TripHasNoBusError,
    TripNotBookableError,
)
from ..core.locking import seat_locks
from ..core.observability import metrics_collector
from ..models.overbooking import OverbookingRequest, OverbookingStatus
from ..models.ticket import LIVE_TICKET_STATUSES, PaymentMethod, Ticket, TicketStatus
from ..models.trip import Trip
from ..schemas.overbooking import (
    ApproveOverbookingRequest,
    OverCapacityTicketRequest,
    RejectOverbookingRequest,
    RequestOverbookingRequest,
)
from .availability_service import AvailabilityService
from .fare_service import FareService
from .ticket_service import unique_ticket_code

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OverbookingPolicy:
    """Thresholds deciding when a trip may be sold beyond its seats."""

    window_minutes: int = 30
    occupancy_threshold: float = 0.95
    max_percentage: float = 5.0
    request_cutoff_minutes: int = 5
    request_ttl_minutes: int = 15

    @classmethod
    def from_settings(cls) -> "OverbookingPolicy":
        return cls(
            window_minutes=settings.overbooking_window_minutes,
            occupancy_threshold=settings.overbooking_occupancy_threshold,
            max_percentage=settings.overbooking_max_percentage,
            request_cutoff_minutes=settings.overbooking_request_cutoff_minutes,
            request_ttl_minutes=settings.overbooking_request_ttl_minutes,
        )

    def max_exceptions(self, capacity: int) -> int:
        """Capacity exceptions allowed on a bus of the given size."""
        return math.floor(capacity * self.max_percentage / 100)

    def within_window(self, departure_at: datetime, now: datetime) -> bool:
        return departure_at - now <= timedelta(minutes=self.window_minutes)


@dataclass
class OccupancySnapshot:
    """Occupancy of a trip and how much overbooking headroom it has left."""

    trip_id: UUID
    occupancy_rate: float
    capacity: int
    max_exceptions: int
    open_exceptions: int
    can_overbook: bool


class OverbookingService:
    """Service for capacity exception tickets and their approval requests."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Callable[[], datetime] = utcnow,
        policy: OverbookingPolicy | None = None,
    ):
        self.db = db
        self.clock = clock
        self.policy = policy or OverbookingPolicy.from_settings()
        self.availability_service = AvailabilityService(db, clock)
        self.trip_service = self.availability_service.trip_service
        self.fare_service = FareService(db)

    async def create_over_capacity_ticket(self, request: OverCapacityTicketRequest) -> Ticket:
        """
        Sell a seat segment beyond nominal capacity.

        The ticket is PENDING_PAYMENT, flagged as a capacity exception and not
        checked against the overlap rule. It can only be paid once an overbooking
        request for it is approved.

        Raises:
            NotFoundError: If the trip does not exist
            TripNotBookableError: If the trip no longer accepts reservations
            TripHasNoBusError: If no bus is assigned
            InvalidSegmentError: If the segment is not valid on the route
            UnknownSeatError: If the seat is not on the bus
            OverbookingNotAllowedError: If the trip is outside the window, below the
                occupancy threshold, or out of exception headroom
        """
        trip_id, seat_number = request.trip_id, request.seat_number
        method = PaymentMethod(request.payment_method.value)

        async def operation() -> Ticket:
            now = self.clock()
            trip = await self.trip_service.get_trip_for_update_or_raise(trip_id)
            if not trip.accepts_reservations:
                raise TripNotBookableError(str(trip_id), trip.status)
            if trip.bus_id is None:
                raise TripHasNoBusError(str(trip_id))
            await self.trip_service.route_service.validate_segment(
                trip.route_id, request.from_ordinal, request.to_ordinal
            )
            trip_seat = await self.trip_service.get_trip_seat_or_raise(trip_id, seat_number)

            if not self.policy.within_window(trip.departure_at, now):
                raise OverbookingNotAllowedError(
                    str(trip_id), f"only allowed within {self.policy.window_minutes} minutes of departure"
                )
            rate = await self.availability_service.segment_occupancy_rate(
                trip_id, request.from_ordinal, request.to_ordinal
            )
            if rate < self.policy.occupancy_threshold:
                raise OverbookingNotAllowedError(
                    str(trip_id),
                    f"segment occupancy {rate:.0%} is below {self.policy.occupancy_threshold:.0%}"
                )
            capacity = len(await self.trip_service.seat_numbers_of(trip_id))
            if await self.open_exceptions(trip_id) >= self.policy.max_exceptions(capacity):
                raise OverbookingNotAllowedError(str(trip_id), "overbooking limit reached for this trip")

            ticket = Ticket(
                code=await unique_ticket_code(self.db),
                trip_id=trip_id,
                seat_number=seat_number,
                from_ordinal=request.from_ordinal,
                to_ordinal=request.to_ordinal,
                passenger_id=request.passenger_id,
                price=await self.fare_service.quote(trip.route_id, request.from_ordinal, request.to_ordinal),
                payment_method=method,
                status=TicketStatus.PENDING_PAYMENT,
                is_capacity_exception=True,
            )
            self.db.add(ticket)
            trip_seat.touch(now)
            return ticket

        lost_race = SegmentConflictError(
            str(trip_id), seat_number, request.from_ordinal, request.to_ordinal,
            detail=f"Seat {seat_number} on trip {trip_id} was modified concurrently, please retry"
        )
        async with seat_locks.seat(trip_id, seat_number):
            ticket = await run_atomic(self.db, operation, lambda: lost_race, "create_over_capacity_ticket")

        metrics_collector.record_ticket_issued(TicketStatus.PENDING_PAYMENT.value, method.value)
        logger.info(
            "Capacity exception ticket created",
            extra={
                "ticket_id": str(ticket.id),
                "trip_id": str(trip_id),
                "seat_number": seat_number,
                "from_ordinal": request.from_ordinal,
                "to_ordinal": request.to_ordinal,
            }
        )
        return ticket

    async def request_overbooking(self, request: RequestOverbookingRequest, actor: Actor) -> OverbookingRequest:
        """
        Ask for approval of a capacity exception ticket.

        The request expires after the policy TTL or shortly before departure,
        whichever comes first.

        Raises:
            NotFoundError: If the ticket does not exist
            OverbookingNotAllowedError: If the ticket is not a capacity exception of the trip
            InvalidStateTransitionError: If the ticket is no longer awaiting payment
            ConflictError: If the ticket already has a request
            TripNotBookableError: If departure is too close for a decision
        """
        ticket = await self._get_ticket_or_raise(request.ticket_id)
        trip_id, seat_number = ticket.trip_id, ticket.seat_number

        async def operation() -> OverbookingRequest:
            now = self.clock()
            current = await self._get_ticket_or_raise(request.ticket_id, refresh=True)
            if current.trip_id != request.trip_id or not current.is_capacity_exception:
                raise OverbookingNotAllowedError(
                    str(request.trip_id), f"ticket {current.id} is not a capacity exception of this trip"
                )
            if current.status != TicketStatus.PENDING_PAYMENT:
                raise InvalidStateTransitionError("ticket", str(current.id), current.status, "OVERBOOKING_REQUESTED")
            existing = await self.db.execute(
                select(OverbookingRequest.id).where(OverbookingRequest.ticket_id == current.id)
            )
            if existing.scalar_one_or_none() is not None:
                raise ConflictError(
                    detail=f"Ticket {current.id} already has an overbooking request",
                    conflicting_resource={"ticket_id": str(current.id)}
                )

            trip = await self.trip_service.get_trip_by_id_or_raise(trip_id)
            expires_at = min(
                now + timedelta(minutes=self.policy.request_ttl_minutes),
                trip.departure_at - timedelta(minutes=self.policy.request_cutoff_minutes),
            )
            if expires_at <= now:
                raise TripNotBookableError(
                    str(trip_id), trip.status,
                    detail=f"Trip {trip_id} departs too soon for an overbooking decision"
                )

            overbooking = OverbookingRequest(
                trip_id=trip_id,
                ticket_id=current.id,
                status=OverbookingStatus.PENDING,
                reason=request.reason,
                requested_by=actor.user_id,
                requested_at=now,
                expires_at=expires_at,
            )
            self.db.add(overbooking)
            return overbooking

        async with seat_locks.seat(trip_id, seat_number):
            overbooking = await run_atomic(
                self.db, operation, lambda: self._concurrent_update(request.ticket_id), "request_overbooking"
            )

        metrics_collector.record_overbooking("requested")
        logger.info(
            "Overbooking requested",
            extra={
                "request_id": str(overbooking.id),
                "trip_id": str(trip_id),
                "ticket_id": str(request.ticket_id),
                "requested_by": actor.user_id,
                "expires_at": overbooking.expires_at.isoformat(),
            }
        )
        return overbooking

    async def approve(self, request: ApproveOverbookingRequest, actor: Actor) -> OverbookingRequest:
        """
        Approve a PENDING request; the ticket stays as a sanctioned capacity exception.

        Raises:
            NotFoundError: If the request does not exist
            InvalidStateTransitionError: If the request is not PENDING, or expired
                before the decision (it is then expired and its ticket cancelled)
        """
        def decide(overbooking: OverbookingRequest, ticket: Ticket, now: datetime) -> None:
            overbooking.status = OverbookingStatus.APPROVED
            overbooking.resolved_by = actor.user_id
            overbooking.resolved_at = now
            overbooking.resolution_notes = request.notes

        return await self._resolve(request.request_id, OverbookingStatus.APPROVED, decide, "approved")

    async def reject(self, request: RejectOverbookingRequest, actor: Actor) -> OverbookingRequest:
        """
        Reject a PENDING request and cancel its ticket.

        Raises:
            NotFoundError: If the request does not exist
            InvalidStateTransitionError: If the request is not PENDING, or expired
                before the decision
        """
        def decide(overbooking: OverbookingRequest, ticket: Ticket, now: datetime) -> None:
            overbooking.status = OverbookingStatus.REJECTED
            overbooking.resolved_by = actor.user_id
            overbooking.resolved_at = now
            overbooking.resolution_notes = request.reason
            self._cancel_exception_ticket(ticket, now, f"Overbooking rejected: {request.reason}")

        return await self._resolve(request.request_id, OverbookingStatus.REJECTED, decide, "rejected")

    async def expire_due(self) -> int:
        """
        Expire every PENDING request past its deadline and cancel its ticket.

        Returns:
            Number of requests expired
        """
        result = await self.db.execute(
            select(OverbookingRequest.id).where(
                OverbookingRequest.status == OverbookingStatus.PENDING,
                OverbookingRequest.expires_at <= self.clock(),
            )
        )
        expired = 0
        for request_id in list(result.scalars()):
            try:
                if await self._expire_one(request_id):
                    expired += 1
            except ConflictError as e:
                logger.warning(
                    "Overbooking expiry skipped after repeated conflicts",
                    extra={"request_id": str(request_id), "reason": e.problem_details.get("detail")}
                )

        metrics_collector.record_overbooking("expired", expired)
        if expired:
            logger.info("Expired overbooking requests", extra={"expired_count": expired})
        return expired

    async def occupancy_rate(self, trip_id: UUID) -> float:
        """Sold seat-legs over total seat-legs of the trip."""
        return await self.availability_service.trip_occupancy_rate(trip_id)

    async def open_exceptions(self, trip_id: UUID) -> int:
        """Live capacity exception tickets of a trip, approved or still pending."""
        result = await self.db.execute(
            select(func.count(Ticket.id)).where(
                Ticket.trip_id == trip_id,
                Ticket.is_capacity_exception.is_(True),
                Ticket.status.in_(LIVE_TICKET_STATUSES),
            )
        )
        return result.scalar_one()

    async def occupancy(self, trip_id: UUID) -> OccupancySnapshot:
        """Occupancy, exception headroom and whether the trip may be overbooked right now."""
        trip = await self.trip_service.get_trip_by_id_or_raise(trip_id)
        if trip.bus_id is None:
            raise TripHasNoBusError(str(trip_id))

        capacity = len(await self.trip_service.seat_numbers_of(trip_id))
        rate = await self.occupancy_rate(trip_id)
        open_exceptions = await self.open_exceptions(trip_id)
        max_exceptions = self.policy.max_exceptions(capacity)

        return OccupancySnapshot(
            trip_id=trip_id,
            occupancy_rate=rate,
            capacity=capacity,
            max_exceptions=max_exceptions,
            open_exceptions=open_exceptions,
            can_overbook=self._eligible(trip, rate, open_exceptions, max_exceptions),
        )

    async def can_overbook(self, trip_id: UUID) -> bool:
        return (await self.occupancy(trip_id)).can_overbook

    async def list_pending(self) -> list[OverbookingRequest]:
        result = await self.db.execute(
            select(OverbookingRequest)
            .where(OverbookingRequest.status == OverbookingStatus.PENDING)
            .order_by(OverbookingRequest.expires_at)
        )
        return list(result.scalars())

    async def list_by_trip(self, trip_id: UUID) -> list[OverbookingRequest]:
        result = await self.db.execute(
            select(OverbookingRequest)
            .where(OverbookingRequest.trip_id == trip_id)
            .order_by(OverbookingRequest.requested_at)
        )
        return list(result.scalars())

    async def get_request_by_id(self, request_id: UUID) -> OverbookingRequest | None:
        stmt = select(OverbookingRequest).where(OverbookingRequest.id == request_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_request_by_id_or_raise(self, request_id: UUID) -> OverbookingRequest:
        overbooking = await self.get_request_by_id(request_id)
        if not overbooking:
            raise NotFoundError(resource_type="overbooking request", resource_id=str(request_id))
        return overbooking

    def _eligible(self, trip: Trip, rate: float, open_exceptions: int, max_exceptions: int) -> bool:
        return (
            trip.accepts_reservations
            and self.policy.within_window(trip.departure_at, self.clock())
            and rate >= self.policy.occupancy_threshold
            and open_exceptions < max_exceptions
        )

    async def _resolve(
        self,
        request_id: UUID,
        target: OverbookingStatus,
        decide: Callable[[OverbookingRequest, Ticket, datetime], None],
        outcome: str,
    ) -> OverbookingRequest:
        """Apply a dispatcher decision, expiring the request instead when its deadline has passed."""
        overbooking = await self.get_request_by_id_or_raise(request_id)
        ticket = await self._get_ticket_or_raise(overbooking.ticket_id)
        ticket_id, trip_id, seat_number = ticket.id, ticket.trip_id, ticket.seat_number

        async def operation() -> tuple[OverbookingRequest, bool]:
            now = self.clock()
            current = await self._get_request_for_update(request_id)
            if current.status != OverbookingStatus.PENDING:
                raise InvalidStateTransitionError("overbooking request", str(request_id), current.status, target)

            current_ticket = await self._get_ticket_or_raise(ticket_id, refresh=True)
            if current.expires_at <= now:
                self._expire(current, current_ticket, now)
            else:
                decide(current, current_ticket, now)
            trip_seat = await self.trip_service.get_trip_seat_or_raise(trip_id, seat_number)
            trip_seat.touch(now)
            return current, current.status == OverbookingStatus.EXPIRED

        async with seat_locks.seat(trip_id, seat_number):
            overbooking, expired = await run_atomic(
                self.db, operation, lambda: self._concurrent_update(ticket_id), f"overbooking_{outcome}"
            )

        if expired:
            metrics_collector.record_overbooking("expired")
            logger.warning(
                "Overbooking decision arrived after expiry",
                extra={"request_id": str(request_id), "expires_at": overbooking.expires_at.isoformat()}
            )
            raise InvalidStateTransitionError(
                "overbooking request", str(request_id), OverbookingStatus.EXPIRED, target
            )

        metrics_collector.record_overbooking(outcome)
        logger.info(
            "Overbooking request resolved",
            extra={
                "request_id": str(request_id),
                "trip_id": str(trip_id),
                "ticket_id": str(ticket_id),
                "status": target.value,
                "resolved_by": overbooking.resolved_by,
            }
        )
        return overbooking

    async def _expire_one(self, request_id: UUID) -> bool:
        overbooking = await self.get_request_by_id_or_raise(request_id)
        ticket = await self._get_ticket_or_raise(overbooking.ticket_id)
        ticket_id, trip_id, seat_number = ticket.id, ticket.trip_id, ticket.seat_number

        async def operation() -> bool:
            now = self.clock()
            current = await self._get_request_for_update(request_id)
            if current.status != OverbookingStatus.PENDING or current.expires_at > now:
                return False
            current_ticket = await self._get_ticket_or_raise(ticket_id, refresh=True)
            self._expire(current, current_ticket, now)
            trip_seat = await self.trip_service.get_trip_seat_or_raise(trip_id, seat_number)
            trip_seat.touch(now)
            return True

        async with seat_locks.seat(trip_id, seat_number):
            return await run_atomic(
                self.db, operation, lambda: self._concurrent_update(ticket_id), "expire_overbooking"
            )

    def _expire(self, overbooking: OverbookingRequest, ticket: Ticket, now: datetime) -> None:
        overbooking.status = OverbookingStatus.EXPIRED
        overbooking.resolved_at = now
        self._cancel_exception_ticket(ticket, now, "Overbooking request expired")

    @staticmethod
    def _cancel_exception_ticket(ticket: Ticket, now: datetime, reason: str) -> None:
        if ticket.status not in LIVE_TICKET_STATUSES:
            return
        ticket.status = TicketStatus.CANCELLED
        ticket.cancelled_at = now
        ticket.cancellation_reason = reason
        ticket.refund_amount = 0
        metrics_collector.record_ticket_transition(TicketStatus.CANCELLED.value)

    async def _get_request_for_update(self, request_id: UUID) -> OverbookingRequest:
        stmt = select(OverbookingRequest).where(
            OverbookingRequest.id == request_id
        ).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        overbooking = result.scalar_one_or_none()
        if not overbooking:
            raise NotFoundError(resource_type="overbooking request", resource_id=str(request_id))
        return overbooking

    async def _get_ticket_or_raise(self, ticket_id: UUID, refresh: bool = False) -> Ticket:
        stmt = select(Ticket).where(Ticket.id == ticket_id)
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        ticket = result.scalar_one_or_none()
        if not ticket:
            raise NotFoundError(resource_type="ticket", resource_id=str(ticket_id))
        return ticket

    @staticmethod
    def _concurrent_update(ticket_id: UUID) -> ConflictError:
        return ConflictError(
            detail=f"Overbooking state of ticket {ticket_id} was modified concurrently, please retry",
            conflicting_resource={"ticket_id": str(ticket_id)}
        )
