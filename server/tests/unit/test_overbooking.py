"""Unit tests for the overbooking workflow."""

from datetime import timedelta

import pytest
import pytest_asyncio

from seatline.core.authorization import Actor, Role
from seatline.core.exceptions import ConflictError, InvalidStateTransitionError, OverbookingNotAllowedError
from seatline.models.overbooking import OverbookingStatus
from seatline.models.ticket import TicketStatus
from seatline.schemas.bus import CreateBusRequest
from seatline.schemas.hold import CreateHoldRequest
from seatline.schemas.overbooking import (
    ApproveOverbookingRequest,
    OverCapacityTicketRequest,
    RejectOverbookingRequest,
    RequestOverbookingRequest,
)
from seatline.schemas.ticket import ConfirmPaymentRequest, CreateTicketRequest, PaymentMethod
from seatline.schemas.trip import CancelTripRequest, CreateTripRequest
from seatline.services import (
    BusService,
    OverbookingPolicy,
    OverbookingService,
    SeatHoldService,
    TicketService,
    TripService,
)

CLERK = Actor(user_id="clerk-1", role=Role.CLERK)
DISPATCHER = Actor(user_id="dispatcher-1", role=Role.DISPATCHER)

# Four seats at 50% allow two capacity exceptions
POLICY = OverbookingPolicy(max_percentage=50.0)


@pytest_asyncio.fixture
async def full_trip(test_session, route, clock):
    """Four-seat trip departing in 20 minutes with every seat sold end to end."""
    bus = await BusService(test_session).create_bus(CreateBusRequest(plate="VAN-004", seat_numbers=["1", "2", "3", "4"]))
    trip = await TripService(test_session, clock).create_trip(
        CreateTripRequest(route_id=route.id, bus_id=bus.id, departure_at=clock.now + timedelta(minutes=20))
    )
    hold_service = SeatHoldService(test_session, clock)
    ticket_service = TicketService(test_session, clock)
    for seat_number in ("1", "2", "3", "4"):
        hold = await hold_service.create_hold(
            CreateHoldRequest(trip_id=trip.id, seat_number=seat_number, from_ordinal=0, to_ordinal=5),
            holder_id=f"passenger-{seat_number}",
        )
        await ticket_service.create_ticket(
            CreateTicketRequest(hold_id=hold.id, passenger_id=f"passenger-{seat_number}", payment_method=PaymentMethod.CARD)
        )
    return trip


def exception_request(trip, passenger_id: str = "walk-in-1") -> OverCapacityTicketRequest:
    return OverCapacityTicketRequest(
        trip_id=trip.id,
        seat_number="1",
        from_ordinal=1,
        to_ordinal=3,
        passenger_id=passenger_id,
        payment_method=PaymentMethod.CASH,
    )


def test_policy_max_exceptions():
    assert OverbookingPolicy().max_exceptions(40) == 2
    assert OverbookingPolicy().max_exceptions(19) == 0
    assert POLICY.max_exceptions(4) == 2


@pytest.mark.asyncio
async def test_approved_exception_can_be_paid(test_session, full_trip, clock):
    """Sell beyond capacity, request approval, approve, then settle payment."""
    service = OverbookingService(test_session, clock, POLICY)

    ticket = await service.create_over_capacity_ticket(exception_request(full_trip))
    assert ticket.status == TicketStatus.PENDING_PAYMENT
    assert ticket.is_capacity_exception

    ticket_service = TicketService(test_session, clock)
    with pytest.raises(OverbookingNotAllowedError):
        await ticket_service.confirm_payment(
            ConfirmPaymentRequest(ticket_id=ticket.id, payment_method=PaymentMethod.CASH)
        )

    request = await service.request_overbooking(
        RequestOverbookingRequest(trip_id=full_trip.id, ticket_id=ticket.id, reason="Family emergency"), CLERK
    )
    assert request.status == OverbookingStatus.PENDING
    assert request.requested_by == "clerk-1"
    assert request.expires_at == clock.now + timedelta(minutes=15)
    assert [pending.id for pending in await service.list_pending()] == [request.id]

    approved = await service.approve(ApproveOverbookingRequest(request_id=request.id, notes="OK"), DISPATCHER)
    assert approved.status == OverbookingStatus.APPROVED
    assert approved.resolved_by == "dispatcher-1"
    assert await service.list_pending() == []

    paid = await ticket_service.confirm_payment(
        ConfirmPaymentRequest(ticket_id=ticket.id, payment_method=PaymentMethod.CASH)
    )
    assert paid.status == TicketStatus.SOLD


@pytest.mark.asyncio
async def test_request_expiry_capped_by_departure_cutoff(test_session, full_trip, clock):
    service = OverbookingService(test_session, clock, POLICY)
    ticket = await service.create_over_capacity_ticket(exception_request(full_trip))

    clock.advance(minutes=8)
    request = await service.request_overbooking(
        RequestOverbookingRequest(trip_id=full_trip.id, ticket_id=ticket.id, reason="Late booking"), CLERK
    )

    assert request.expires_at == full_trip.departure_at - timedelta(minutes=5)

    with pytest.raises(ConflictError):
        await service.request_overbooking(
            RequestOverbookingRequest(trip_id=full_trip.id, ticket_id=ticket.id, reason="Again"), CLERK
        )


@pytest.mark.asyncio
async def test_reject_cancels_exception_ticket(test_session, full_trip, clock):
    service = OverbookingService(test_session, clock, POLICY)
    ticket = await service.create_over_capacity_ticket(exception_request(full_trip))
    request = await service.request_overbooking(
        RequestOverbookingRequest(trip_id=full_trip.id, ticket_id=ticket.id, reason="Walk-in"), CLERK
    )

    rejected = await service.reject(RejectOverbookingRequest(request_id=request.id, reason="Bus is full"), DISPATCHER)

    assert rejected.status == OverbookingStatus.REJECTED
    await test_session.refresh(ticket)
    assert ticket.status == TicketStatus.CANCELLED
    assert ticket.refund_amount == 0

    with pytest.raises(InvalidStateTransitionError):
        await service.approve(ApproveOverbookingRequest(request_id=request.id), DISPATCHER)


@pytest.mark.asyncio
async def test_late_decision_expires_request(test_session, full_trip, clock):
    """A decision after the deadline expires the request and cancels the ticket instead."""
    service = OverbookingService(test_session, clock, POLICY)
    ticket = await service.create_over_capacity_ticket(exception_request(full_trip))
    request = await service.request_overbooking(
        RequestOverbookingRequest(trip_id=full_trip.id, ticket_id=ticket.id, reason="Walk-in"), CLERK
    )

    clock.advance(minutes=15)
    with pytest.raises(InvalidStateTransitionError):
        await service.approve(ApproveOverbookingRequest(request_id=request.id), DISPATCHER)

    await test_session.refresh(request)
    await test_session.refresh(ticket)
    assert request.status == OverbookingStatus.EXPIRED
    assert ticket.status == TicketStatus.CANCELLED


@pytest.mark.asyncio
async def test_expire_due(test_session, full_trip, clock):
    service = OverbookingService(test_session, clock, POLICY)
    ticket = await service.create_over_capacity_ticket(exception_request(full_trip))
    await service.request_overbooking(
        RequestOverbookingRequest(trip_id=full_trip.id, ticket_id=ticket.id, reason="Walk-in"), CLERK
    )

    assert await service.expire_due() == 0
    clock.advance(minutes=16)
    assert await service.expire_due() == 1
    assert await service.expire_due() == 0

    requests = await service.list_by_trip(full_trip.id)
    assert [request.status for request in requests] == [OverbookingStatus.EXPIRED]


@pytest.mark.asyncio
async def test_exception_limit(test_session, full_trip, clock):
    service = OverbookingService(test_session, clock, POLICY)

    await service.create_over_capacity_ticket(exception_request(full_trip, "walk-in-1"))
    await service.create_over_capacity_ticket(exception_request(full_trip, "walk-in-2"))

    with pytest.raises(OverbookingNotAllowedError) as exc_info:
        await service.create_over_capacity_ticket(exception_request(full_trip, "walk-in-3"))
    assert exc_info.value.code == "OVERBOOKING_NOT_ALLOWED"

    snapshot = await service.occupancy(full_trip.id)
    assert snapshot.capacity == 4
    assert snapshot.occupancy_rate == 1.0
    assert snapshot.max_exceptions == 2
    assert snapshot.open_exceptions == 2
    assert not snapshot.can_overbook


@pytest.mark.asyncio
async def test_overbooking_refused_far_from_departure(test_session, trip, clock):
    """Outside the departure window nothing may be sold beyond capacity."""
    service = OverbookingService(test_session, clock)

    with pytest.raises(OverbookingNotAllowedError):
        await service.create_over_capacity_ticket(exception_request(trip))


@pytest.mark.asyncio
async def test_overbooking_refused_below_occupancy(test_session, route, clock):
    bus = await BusService(test_session).create_bus(CreateBusRequest(plate="VAN-005", seat_numbers=["1", "2"]))
    trip = await TripService(test_session, clock).create_trip(
        CreateTripRequest(route_id=route.id, bus_id=bus.id, departure_at=clock.now + timedelta(minutes=20))
    )
    service = OverbookingService(test_session, clock, POLICY)

    with pytest.raises(OverbookingNotAllowedError):
        await service.create_over_capacity_ticket(exception_request(trip))

    snapshot = await service.occupancy(trip.id)
    assert snapshot.occupancy_rate == 0.0
    assert not snapshot.can_overbook


@pytest.mark.asyncio
async def test_trip_cancel_rejects_pending_requests(test_session, full_trip, clock):
    service = OverbookingService(test_session, clock, POLICY)
    ticket = await service.create_over_capacity_ticket(exception_request(full_trip))
    request = await service.request_overbooking(
        RequestOverbookingRequest(trip_id=full_trip.id, ticket_id=ticket.id, reason="Walk-in"), CLERK
    )

    result = await TripService(test_session, clock).cancel(
        CancelTripRequest(trip_id=full_trip.id, reason="Engine failure"), actor_id="dispatcher-1"
    )

    assert result.tickets_cancelled == 5
    assert result.overbooking_requests_rejected == 1
    await test_session.refresh(request)
    assert request.status == OverbookingStatus.REJECTED
    assert request.resolved_by == "dispatcher-1"
