"""Ticket lifecycle service: conversion from holds, payment, cancellation and boarding outcomes."""

import logging
import secrets
import string
from collections.abc import Callable
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.authorization import Actor, authorize_owner
from ..core.concurrency import run_atomic
from ..core.config import settings
from ..core.database import utcnow
from ..core.exceptions import (
    ConflictError,
    HoldExpiredError,
    InvalidStateTransitionError,
    NotFoundError,
    OverbookingNotAllowedError,
    QuickSaleClosedError,
    SegmentConflictError,
    TripNotBookableError,
    ValidationError,
)
from ..core.locking import seat_locks
from ..core.observability import metrics_collector
from ..models.overbooking import OverbookingRequest, OverbookingStatus
from ..models.seat_hold import HoldStatus
from ..models.ticket import PassengerType, PaymentMethod, Ticket, TicketStatus
from ..models.trip import Trip, TripStatus
from ..schemas.hold import CreateHoldRequest
from ..schemas.ticket import CancelTicketRequest, ConfirmPaymentRequest, CreateTicketRequest, QuickSaleRequest
from .fare_service import FareService, validate_passenger_age
from .seat_hold_service import SeatHoldService

logger = logging.getLogger(__name__)


# Allowed ticket status transitions; USED, NO_SHOW and CANCELLED are terminal
TICKET_TRANSITIONS: dict[TicketStatus, frozenset[TicketStatus]] = {
    TicketStatus.PENDING_PAYMENT: frozenset({TicketStatus.SOLD, TicketStatus.CANCELLED}),
    TicketStatus.SOLD: frozenset({TicketStatus.USED, TicketStatus.NO_SHOW, TicketStatus.CANCELLED}),
    TicketStatus.USED: frozenset(),
    TicketStatus.NO_SHOW: frozenset(),
    TicketStatus.CANCELLED: frozenset(),
}


def generate_ticket_code(length: int = 8) -> str:
    """Generate a random ticket confirmation code."""
    alphabet = string.ascii_uppercase + string.digits
    return ''.join(secrets.choice(alphabet) for _ in range(length))


async def unique_ticket_code(db: AsyncSession) -> str:
    """Draw ticket codes until one is not taken yet."""
    code = generate_ticket_code()
    while (await db.execute(select(Ticket.id).where(Ticket.code == code))).scalar_one_or_none():
        code = generate_ticket_code()
    return code


def compute_refund(status: TicketStatus | str, price: int, departure_at: datetime, now: datetime) -> int:
    """
    Refund owed when a ticket is cancelled by its holder.

    Unpaid tickets refund nothing. Paid tickets are refunded in full far enough
    ahead of departure, partially inside the partial window, and not at all after.
    """
    if status != TicketStatus.SOLD:
        return 0
    notice = departure_at - now
    if notice >= timedelta(hours=settings.cancellation_full_refund_hours):
        return price
    if notice >= timedelta(hours=settings.cancellation_partial_refund_hours):
        return price * settings.cancellation_partial_refund_percentage // 100
    return 0


def compute_no_show_fee(price: int) -> int:
    return max(settings.no_show_fee_fixed, price * settings.no_show_fee_percentage // 100)


def guard_ticket_transition(ticket: Ticket, target: TicketStatus) -> None:
    if target not in TICKET_TRANSITIONS[TicketStatus(ticket.status)]:
        logger.warning(
            "Ticket transition rejected",
            extra={"ticket_id": str(ticket.id), "status": ticket.status, "target": target.value}
        )
        raise InvalidStateTransitionError("ticket", str(ticket.id), ticket.status, target)


class TicketService:
    """Service for ticket-related operations."""

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock
        self.hold_service = SeatHoldService(db, clock)
        self.trip_service = self.hold_service.trip_service
        self.fare_service = FareService(db)

    async def create_ticket(
        self,
        request: CreateTicketRequest,
        actor: Actor | None = None,
        extra_discount_percentage: int = 0,
    ) -> Ticket:
        """
        Convert an ACTIVE hold into a ticket for the same seat and segment.

        The hold becomes CONVERTED in the same unit. CARD payments are settled at
        sale time and produce a SOLD ticket; every other method leaves it
        PENDING_PAYMENT until confirmed.

        The fare is discounted for the passenger type, then by
        ``extra_discount_percentage`` on what is left.

        Args:
            request: Ticket creation request
            actor: Caller; passengers may only convert their own holds
            extra_discount_percentage: Discount on top of the passenger type discount

        Returns:
            Created ticket

        Raises:
            ValidationError: If the passenger age does not fit the passenger type
            HoldNotFoundError: If the hold does not exist
            HoldExpiredError: If the hold expired before conversion
            InvalidStateTransitionError: If the hold was released or already converted
            TripNotBookableError: If the trip no longer accepts reservations
        """
        hold = await self.hold_service.get_hold_by_id_or_raise(request.hold_id)
        if actor is not None:
            authorize_owner(actor, hold.holder_id, "hold")

        passenger_type = PassengerType(request.passenger_type.value)
        validate_passenger_age(passenger_type, request.passenger_age)
        method = PaymentMethod(request.payment_method.value)
        trip_id, seat_number = hold.trip_id, hold.seat_number
        lost_race = SegmentConflictError(
            str(trip_id), seat_number, hold.from_ordinal, hold.to_ordinal,
            detail=f"Hold {hold.id} was modified concurrently, please retry"
        )

        async def operation() -> Ticket:
            now = self.clock()
            current = await self.hold_service._reload(request.hold_id)
            if current.status == HoldStatus.EXPIRED or (
                current.status == HoldStatus.ACTIVE and current.is_expired_at(now)
            ):
                logger.warning(
                    "Ticket creation failed - hold expired",
                    extra={"hold_id": str(current.id), "expired_at": current.expires_at.isoformat()}
                )
                raise HoldExpiredError(str(current.id), current.expires_at)
            if current.status != HoldStatus.ACTIVE:
                raise InvalidStateTransitionError("hold", str(current.id), current.status, HoldStatus.CONVERTED)

            trip = await self.trip_service.get_trip_for_update_or_raise(trip_id)
            if not trip.accepts_reservations:
                raise TripNotBookableError(str(trip_id), trip.status)
            trip_seat = await self.trip_service.get_trip_seat_or_raise(trip_id, seat_number)

            fare = await self.fare_service.quote_for(
                trip.route_id, current.from_ordinal, current.to_ordinal,
                passenger_type, extra_discount_percentage,
            )
            status = TicketStatus.SOLD if method.is_settled else TicketStatus.PENDING_PAYMENT

            ticket = Ticket(
                code=await unique_ticket_code(self.db),
                trip_id=trip_id,
                hold_id=current.id,
                seat_number=seat_number,
                from_ordinal=current.from_ordinal,
                to_ordinal=current.to_ordinal,
                passenger_id=request.passenger_id,
                price=fare.price,
                passenger_type=passenger_type,
                discount_amount=fare.discount_amount,
                payment_method=method,
                status=status,
                is_capacity_exception=False,
                paid_at=now if status == TicketStatus.SOLD else None,
            )
            current.status = HoldStatus.CONVERTED
            self.db.add(ticket)
            trip_seat.touch(now)
            return ticket

        async with seat_locks.seat(trip_id, seat_number):
            ticket = await run_atomic(self.db, operation, lambda: lost_race, "create_ticket")

        metrics_collector.record_ticket_issued(TicketStatus(ticket.status).value, method.value)
        metrics_collector.record_holds_finished("converted")

        logger.info(
            "Ticket created from hold",
            extra={
                "ticket_id": str(ticket.id),
                "ticket_code": ticket.code,
                "hold_id": str(request.hold_id),
                "trip_id": str(trip_id),
                "seat_number": seat_number,
                "status": TicketStatus(ticket.status).value,
                "payment_method": method.value,
                "price": ticket.price,
                "passenger_type": passenger_type.value,
                "discount_amount": ticket.discount_amount,
            }
        )
        return ticket

    async def quick_sale(self, request: QuickSaleRequest, actor: Actor | None = None) -> Ticket:
        """
        Sell a seat at the counter in the last minutes before departure.

        Only accepted within ``QUICK_SALE_WINDOW_MINUTES`` of departure. The seat
        is held for the passenger and converted straight away, with the quick
        sale discount on top of the passenger type discount when asked for.
        If the conversion fails the hold is released again.

        Raises:
            ValidationError: If the passenger age does not fit the passenger type
            NotFoundError: If the trip does not exist
            QuickSaleClosedError: If departure is too far away or already passed
            SegmentConflictError: If the seat is taken on an overlapping segment
        """
        validate_passenger_age(PassengerType(request.passenger_type.value), request.passenger_age)

        trip = await self.trip_service.get_trip_by_id_or_raise(request.trip_id)
        minutes_until_departure = int((trip.departure_at - self.clock()).total_seconds() // 60)
        if not 0 <= minutes_until_departure <= settings.quick_sale_window_minutes:
            logger.warning(
                "Quick sale rejected outside its window",
                extra={"trip_id": str(request.trip_id), "minutes_until_departure": minutes_until_departure}
            )
            raise QuickSaleClosedError(
                str(request.trip_id), minutes_until_departure, settings.quick_sale_window_minutes
            )

        hold = await self.hold_service.create_hold(
            CreateHoldRequest(
                trip_id=request.trip_id,
                seat_number=request.seat_number,
                from_ordinal=request.from_ordinal,
                to_ordinal=request.to_ordinal,
            ),
            holder_id=request.passenger_id,
        )
        hold_id = hold.id
        extra_percentage = settings.quick_sale_discount_percentage if request.apply_discount else 0
        try:
            ticket = await self.create_ticket(
                CreateTicketRequest(
                    hold_id=hold_id,
                    passenger_id=request.passenger_id,
                    payment_method=request.payment_method,
                    passenger_type=request.passenger_type,
                    passenger_age=request.passenger_age,
                ),
                extra_discount_percentage=extra_percentage,
            )
        except Exception:
            await self.hold_service.release(hold_id)
            raise

        logger.info(
            "Quick sale completed",
            extra={
                "ticket_id": str(ticket.id),
                "trip_id": str(request.trip_id),
                "seat_number": request.seat_number,
                "sold_by": actor.user_id if actor else "system",
                "minutes_until_departure": minutes_until_departure,
                "discount_amount": ticket.discount_amount,
            }
        )
        return ticket

    async def confirm_payment(self, request: ConfirmPaymentRequest, actor: Actor | None = None) -> Ticket:
        """
        Settle a PENDING_PAYMENT ticket.

        Capacity exception tickets can only be paid once their overbooking request is APPROVED.

        Raises:
            NotFoundError: If the ticket does not exist
            InvalidStateTransitionError: If the ticket is not awaiting payment
            OverbookingNotAllowedError: If a capacity exception has not been approved
        """
        method = PaymentMethod(request.payment_method.value)

        async def mutate(ticket: Ticket, now: datetime) -> None:
            guard_ticket_transition(ticket, TicketStatus.SOLD)
            if ticket.is_capacity_exception and not await self._overbooking_approved(ticket.id):
                raise OverbookingNotAllowedError(
                    str(ticket.trip_id), "the capacity exception has not been approved"
                )
            ticket.status = TicketStatus.SOLD
            ticket.payment_method = method
            ticket.paid_at = now

        ticket = await self._update_ticket(request.ticket_id, mutate, "confirm_payment", actor)
        metrics_collector.record_ticket_transition(TicketStatus.SOLD.value)
        logger.info(
            "Ticket payment confirmed",
            extra={"ticket_id": str(ticket.id), "payment_method": method.value, "price": ticket.price}
        )
        return ticket

    async def cancel(self, request: CancelTicketRequest, actor: Actor | None = None) -> Ticket:
        """
        Cancel a live ticket; its segment is free again as soon as this commits.

        The refund follows the cancellation policy. Cancelling a pending capacity
        exception also rejects its pending overbooking request.

        Raises:
            NotFoundError: If the ticket does not exist
            InvalidStateTransitionError: If the ticket is already used, no-show or cancelled
        """
        resolver = actor.user_id if actor else "system"

        async def mutate(ticket: Ticket, now: datetime) -> None:
            guard_ticket_transition(ticket, TicketStatus.CANCELLED)
            trip = await self.trip_service.get_trip_by_id_or_raise(ticket.trip_id)

            if ticket.is_capacity_exception:
                overbooking = await self._pending_overbooking(ticket.id)
                if overbooking is not None:
                    overbooking.status = OverbookingStatus.REJECTED
                    overbooking.resolved_by = resolver
                    overbooking.resolved_at = now
                    overbooking.resolution_notes = f"Ticket cancelled: {request.reason}"

            ticket.refund_amount = compute_refund(ticket.status, ticket.price, trip.departure_at, now)
            ticket.status = TicketStatus.CANCELLED
            ticket.cancelled_at = now
            ticket.cancellation_reason = request.reason

        ticket = await self._update_ticket(request.ticket_id, mutate, "cancel_ticket", actor)
        metrics_collector.record_ticket_transition(TicketStatus.CANCELLED.value)
        logger.info(
            "Ticket cancelled",
            extra={
                "ticket_id": str(ticket.id),
                "reason": request.reason,
                "refund_amount": ticket.refund_amount,
            }
        )
        return ticket

    async def mark_used(self, ticket_id: UUID) -> Ticket:
        """
        Record that the passenger boarded. Only SOLD tickets of a BOARDING trip.

        Raises:
            TripNotBookableError: If the trip is not BOARDING
            InvalidStateTransitionError: If the ticket is not SOLD
        """
        async def mutate(ticket: Ticket, now: datetime) -> None:
            await self._require_boarding(ticket)
            guard_ticket_transition(ticket, TicketStatus.USED)
            ticket.status = TicketStatus.USED
            ticket.boarded_at = now

        ticket = await self._update_ticket(ticket_id, mutate, "mark_used")
        metrics_collector.record_ticket_transition(TicketStatus.USED.value)
        logger.info("Ticket marked used", extra={"ticket_id": str(ticket_id)})
        return ticket

    async def mark_no_show(self, ticket_id: UUID) -> Ticket:
        """
        Record that the passenger did not board and charge the no-show fee.

        Raises:
            TripNotBookableError: If the trip is not BOARDING
            InvalidStateTransitionError: If the ticket is not SOLD
        """
        async def mutate(ticket: Ticket, now: datetime) -> None:
            await self._require_boarding(ticket)
            guard_ticket_transition(ticket, TicketStatus.NO_SHOW)
            ticket.status = TicketStatus.NO_SHOW
            ticket.no_show_fee = compute_no_show_fee(ticket.price)

        ticket = await self._update_ticket(ticket_id, mutate, "mark_no_show")
        metrics_collector.record_ticket_transition(TicketStatus.NO_SHOW.value)
        logger.info(
            "Ticket marked no-show",
            extra={"ticket_id": str(ticket_id), "no_show_fee": ticket.no_show_fee}
        )
        return ticket

    async def process_no_shows(self, trip_id: UUID) -> int:
        """
        Mark every SOLD ticket of a BOARDING trip as no-show once the no-show window has started.

        Returns:
            Number of tickets marked; 0 when the window has not started yet

        Raises:
            NotFoundError: If the trip does not exist
            TripNotBookableError: If the trip is not BOARDING
        """
        trip = await self.trip_service.get_trip_by_id_or_raise(trip_id)
        if trip.status != TripStatus.BOARDING:
            raise TripNotBookableError(
                str(trip_id), trip.status, detail=f"No-shows can only be processed while trip {trip_id} is BOARDING"
            )
        window_start = trip.departure_at - timedelta(minutes=settings.no_show_window_minutes)
        if self.clock() < window_start:
            logger.info(
                "No-show window not started yet",
                extra={"trip_id": str(trip_id), "window_start": window_start.isoformat()}
            )
            return 0

        seat_numbers = await self.trip_service.seat_numbers_of(trip_id)

        async def operation() -> int:
            now = self.clock()
            current = await self.trip_service.get_trip_for_update_or_raise(trip_id)
            if current.status != TripStatus.BOARDING:
                raise TripNotBookableError(str(trip_id), current.status)

            result = await self.db.execute(
                select(Ticket).where(
                    Ticket.trip_id == trip_id, Ticket.status == TicketStatus.SOLD
                ).execution_options(populate_existing=True)
            )
            tickets = list(result.scalars())
            for ticket in tickets:
                ticket.status = TicketStatus.NO_SHOW
                ticket.no_show_fee = compute_no_show_fee(ticket.price)
            for number in sorted({ticket.seat_number for ticket in tickets}):
                trip_seat = await self.trip_service.get_trip_seat_or_raise(trip_id, number)
                trip_seat.touch(now)
            return len(tickets)

        async with seat_locks.seats(trip_id, seat_numbers):
            marked = await run_atomic(
                self.db, operation, lambda: self.trip_service._concurrent_update(trip_id), "process_no_shows"
            )

        metrics_collector.record_ticket_transition(TicketStatus.NO_SHOW.value, marked)
        if marked:
            logger.info("Processed no-shows", extra={"trip_id": str(trip_id), "no_show_count": marked})
        return marked

    async def process_due_no_shows(self) -> int:
        """Run :meth:`process_no_shows` for every BOARDING trip inside its no-show window."""
        cutoff = self.clock() + timedelta(minutes=settings.no_show_window_minutes)
        result = await self.db.execute(
            select(Trip.id).where(Trip.status == TripStatus.BOARDING, Trip.departure_at <= cutoff)
        )
        processed = 0
        for trip_id in list(result.scalars()):
            try:
                processed += await self.process_no_shows(trip_id)
            except ConflictError as e:
                logger.info(
                    "No-show processing skipped",
                    extra={"trip_id": str(trip_id), "reason": e.problem_details.get("detail")}
                )
        return processed

    async def get_ticket(self, ticket_id: UUID | None = None, code: str | None = None,
                         actor: Actor | None = None) -> Ticket:
        """
        Read a ticket by ID or confirmation code.

        Raises:
            ValidationError: If neither ID nor code is given
            NotFoundError: If no ticket matches
        """
        if ticket_id is None and code is None:
            raise ValidationError(detail="Either ticket_id or code is required")

        stmt = select(Ticket)
        stmt = stmt.where(Ticket.id == ticket_id) if ticket_id is not None else stmt.where(Ticket.code == code)
        result = await self.db.execute(stmt)
        ticket = result.scalar_one_or_none()
        if not ticket:
            raise NotFoundError(resource_type="ticket", resource_id=str(ticket_id or code))
        if actor is not None:
            authorize_owner(actor, ticket.passenger_id, "ticket")
        return ticket

    async def get_ticket_by_id_or_raise(self, ticket_id: UUID) -> Ticket:
        return await self.get_ticket(ticket_id=ticket_id)

    async def _update_ticket(
        self,
        ticket_id: UUID,
        mutate: Callable,
        name: str,
        actor: Actor | None = None,
    ) -> Ticket:
        """Apply ``mutate`` to a ticket as one atomic unit under its seat lock, bumping the seat version."""
        ticket = await self.get_ticket_by_id_or_raise(ticket_id)
        if actor is not None:
            authorize_owner(actor, ticket.passenger_id, "ticket")

        trip_id, seat_number = ticket.trip_id, ticket.seat_number
        lost_race = SegmentConflictError(
            str(trip_id), seat_number, ticket.from_ordinal, ticket.to_ordinal,
            detail=f"Ticket {ticket_id} was modified concurrently, please retry"
        )

        async def operation() -> Ticket:
            now = self.clock()
            current = await self._reload(ticket_id)
            await mutate(current, now)
            trip_seat = await self.trip_service.get_trip_seat_or_raise(trip_id, seat_number)
            trip_seat.touch(now)
            return current

        async with seat_locks.seat(trip_id, seat_number):
            return await run_atomic(self.db, operation, lambda: lost_race, name)

    async def _reload(self, ticket_id: UUID) -> Ticket:
        stmt = select(Ticket).where(Ticket.id == ticket_id).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        ticket = result.scalar_one_or_none()
        if not ticket:
            raise NotFoundError(resource_type="ticket", resource_id=str(ticket_id))
        return ticket

    async def _require_boarding(self, ticket: Ticket) -> None:
        trip = await self.trip_service.get_trip_for_update_or_raise(ticket.trip_id)
        if trip.status != TripStatus.BOARDING:
            raise TripNotBookableError(
                str(trip.id), trip.status,
                detail=f"Passengers can only be checked in while trip {trip.id} is BOARDING"
            )

    async def _pending_overbooking(self, ticket_id: UUID) -> OverbookingRequest | None:
        stmt = select(OverbookingRequest).where(
            OverbookingRequest.ticket_id == ticket_id,
            OverbookingRequest.status == OverbookingStatus.PENDING,
        ).execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def _overbooking_approved(self, ticket_id: UUID) -> bool:
        stmt = select(OverbookingRequest.id).where(
            OverbookingRequest.ticket_id == ticket_id,
            OverbookingRequest.status == OverbookingStatus.APPROVED,
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none() is not None
