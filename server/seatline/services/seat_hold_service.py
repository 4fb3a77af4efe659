"""Seat hold manager: the primary concurrency-control point of the reservation engine."""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.authorization import Actor, authorize_owner
from ..core.concurrency import run_atomic
from ..core.config import settings
from ..core.database import utcnow
from ..core.exceptions import (
    CapacityExceededError,
    HoldNotFoundError,
    SegmentConflictError,
    TripHasNoBusError,
    TripNotBookableError,
)
from ..core.locking import seat_locks
from ..core.observability import metrics_collector
from ..models.seat_hold import HoldStatus, SeatHold
from ..schemas.hold import CreateHoldRequest
from .availability_service import AvailabilityService, claim_overlaps

logger = logging.getLogger(__name__)


class SeatHoldService:
    """Service for creating, releasing and expiring seat holds."""

    def __init__(
        self,
        db: AsyncSession,
        clock: Callable[[], datetime] = utcnow,
        hold_ttl_seconds: int | None = None,
    ):
        self.db = db
        self.clock = clock
        self.hold_ttl = timedelta(seconds=hold_ttl_seconds or settings.seat_hold_ttl_seconds)
        self.availability_service = AvailabilityService(db, clock)
        self.trip_service = self.availability_service.trip_service

    async def create_hold(self, request: CreateHoldRequest, holder_id: str) -> SeatHold:
        """
        Hold one seat for a segment of a trip.

        Validation and the write happen in one atomic unit under the seat lock and
        the seat's version check, so two overlapping holds can never both commit.
        Overlapping holds already past their expiry are expired in the same unit.

        Args:
            request: Hold creation request
            holder_id: User the hold belongs to

        Returns:
            Created ACTIVE hold; its TTL comes from server policy

        Raises:
            NotFoundError: If the trip does not exist
            TripNotBookableError: If the trip no longer accepts reservations
            TripHasNoBusError: If no bus is assigned
            InvalidSegmentError: If the segment is not valid on the route
            UnknownSeatError: If the seat is not on the bus
            SegmentConflictError: If the seat is taken on an overlapping segment
            CapacityExceededError: If the whole segment is sold out close to departure
        """
        trip_id = request.trip_id
        seat_number = request.seat_number

        async def operation() -> tuple[SeatHold, int]:
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

            holds = await self.availability_service.active_holds(trip_id, seat_number, include_lapsed=True)
            tickets = await self.availability_service.live_tickets(trip_id, seat_number)

            lapsed = [
                hold for hold in holds
                if hold.is_expired_at(now) and claim_overlaps(hold, request.from_ordinal, request.to_ordinal)
            ]
            blocking = [
                claim for claim in [*tickets, *holds]
                if claim not in lapsed and claim_overlaps(claim, request.from_ordinal, request.to_ordinal)
            ]
            if blocking:
                raise await self._conflict(trip, request, now)

            for hold in lapsed:
                hold.status = HoldStatus.EXPIRED

            hold = SeatHold(
                trip_id=trip_id,
                seat_number=seat_number,
                from_ordinal=request.from_ordinal,
                to_ordinal=request.to_ordinal,
                holder_id=holder_id,
                expires_at=now + self.hold_ttl,
                status=HoldStatus.ACTIVE,
            )
            self.db.add(hold)
            trip_seat.touch(now)
            return hold, len(lapsed)

        def exhausted() -> SegmentConflictError:
            metrics_collector.record_segment_conflict("SEGMENT_CONFLICT")
            return SegmentConflictError(str(trip_id), seat_number, request.from_ordinal, request.to_ordinal)

        async with seat_locks.seat(trip_id, seat_number):
            hold, lapsed_count = await run_atomic(self.db, operation, exhausted, "create_hold")

        metrics_collector.record_hold_created(str(trip_id))
        metrics_collector.record_holds_finished("expired", lapsed_count)

        logger.info(
            "Hold created successfully",
            extra={
                "hold_id": str(hold.id),
                "trip_id": str(trip_id),
                "seat_number": seat_number,
                "from_ordinal": request.from_ordinal,
                "to_ordinal": request.to_ordinal,
                "holder_id": holder_id,
                "expires_at": hold.expires_at.isoformat(),
                "lapsed_holds_expired": lapsed_count,
            }
        )
        return hold

    async def _conflict(self, trip, request: CreateHoldRequest, now: datetime) -> SegmentConflictError:
        """Build the conflict error, upgrading it to CapacityExceeded when the segment is sold out near departure."""
        near_departure = trip.departure_at - now <= timedelta(minutes=settings.overbooking_window_minutes)
        if near_departure and await self.availability_service.free_seat_count(
            trip.id, request.from_ordinal, request.to_ordinal
        ) == 0:
            error = CapacityExceededError(
                str(trip.id), request.seat_number, request.from_ordinal, request.to_ordinal
            )
        else:
            error = SegmentConflictError(
                str(trip.id), request.seat_number, request.from_ordinal, request.to_ordinal
            )

        metrics_collector.record_segment_conflict(error.code)
        logger.warning(
            "Hold rejected - segment not free",
            extra={
                "trip_id": str(trip.id),
                "seat_number": request.seat_number,
                "from_ordinal": request.from_ordinal,
                "to_ordinal": request.to_ordinal,
                "code": error.code,
            }
        )
        return error

    async def release(self, hold_id: UUID, actor: Actor | None = None) -> SeatHold:
        """
        Release an ACTIVE hold. Releasing a hold that already ended is a no-op.

        Raises:
            HoldNotFoundError: If the hold does not exist
            AuthorizationError: If the actor neither owns the hold nor acts on behalf of others
        """
        hold = await self.get_hold_by_id_or_raise(hold_id)
        if actor is not None:
            authorize_owner(actor, hold.holder_id, "hold")

        if hold.status != HoldStatus.ACTIVE:
            logger.info(
                "Hold already finished - release ignored",
                extra={"hold_id": str(hold_id), "status": hold.status}
            )
            return hold

        async def operation() -> tuple[SeatHold, bool]:
            current = await self._reload(hold_id)
            if current.status != HoldStatus.ACTIVE:
                return current, False
            current.status = HoldStatus.RELEASED
            trip_seat = await self.trip_service.get_trip_seat_or_raise(current.trip_id, current.seat_number)
            trip_seat.touch(self.clock())
            return current, True

        # Attributes of loaded rows expire if a retry rolls the session back
        lost_race = self._lost_race(hold)
        async with seat_locks.seat(hold.trip_id, hold.seat_number):
            hold, released = await run_atomic(self.db, operation, lambda: lost_race, "release_hold")

        if released:
            metrics_collector.record_holds_finished("released")
            logger.info(
                "Hold released",
                extra={"hold_id": str(hold_id), "trip_id": str(hold.trip_id), "seat_number": hold.seat_number}
            )
        return hold

    async def expire_due(self) -> int:
        """
        Move every ACTIVE hold past its expiry to EXPIRED.

        Each hold transitions in its own atomic unit under its seat lock; a hold
        converted or released meanwhile is skipped. Running it twice is the same
        as running it once.

        Returns:
            Number of holds expired
        """
        now = self.clock()
        result = await self.db.execute(
            select(SeatHold.id, SeatHold.trip_id, SeatHold.seat_number).where(
                SeatHold.status == HoldStatus.ACTIVE,
                SeatHold.expires_at <= now,
            )
        )
        due = list(result.all())
        expired = 0

        for hold_id, trip_id, seat_number in due:
            async def operation(hold_id=hold_id) -> bool:
                hold = await self._reload(hold_id)
                if hold.status != HoldStatus.ACTIVE or not hold.is_expired_at(self.clock()):
                    return False
                hold.status = HoldStatus.EXPIRED
                trip_seat = await self.trip_service.get_trip_seat_or_raise(hold.trip_id, hold.seat_number)
                trip_seat.touch(self.clock())
                return True

            try:
                async with seat_locks.seat(trip_id, seat_number):
                    if await run_atomic(
                        self.db,
                        operation,
                        lambda: SegmentConflictError(str(trip_id), seat_number, 0, 0, detail="Hold expiry lost the race"),
                        "expire_hold",
                    ):
                        expired += 1
            except SegmentConflictError:
                # Left ACTIVE; the next sweep picks it up again
                logger.warning(
                    "Hold expiry skipped after repeated conflicts",
                    extra={"hold_id": str(hold_id), "trip_id": str(trip_id), "seat_number": seat_number}
                )

        metrics_collector.record_holds_finished("expired", expired)
        if expired:
            logger.info("Expired seat holds", extra={"expired_count": expired, "due_count": len(due)})
        return expired

    async def count_active(self) -> int:
        """Number of ACTIVE, unexpired holds; also published as a gauge."""
        result = await self.db.execute(
            select(func.count(SeatHold.id)).where(
                SeatHold.status == HoldStatus.ACTIVE,
                SeatHold.expires_at > self.clock(),
            )
        )
        count = result.scalar_one()
        metrics_collector.set_active_holds(count)
        return count

    async def get_hold_by_id(self, hold_id: UUID) -> SeatHold | None:
        stmt = select(SeatHold).where(SeatHold.id == hold_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_hold_by_id_or_raise(self, hold_id: UUID) -> SeatHold:
        hold = await self.get_hold_by_id(hold_id)
        if not hold:
            logger.warning("Hold not found", extra={"hold_id": str(hold_id)})
            raise HoldNotFoundError(str(hold_id))
        return hold

    async def _reload(self, hold_id: UUID) -> SeatHold:
        stmt = select(SeatHold).where(SeatHold.id == hold_id).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        hold = result.scalar_one_or_none()
        if not hold:
            raise HoldNotFoundError(str(hold_id))
        return hold

    @staticmethod
    def _lost_race(hold: SeatHold) -> SegmentConflictError:
        return SegmentConflictError(
            str(hold.trip_id), hold.seat_number, hold.from_ordinal, hold.to_ordinal,
            detail=f"Hold {hold.id} was modified concurrently, please retry"
        )
