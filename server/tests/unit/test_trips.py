"""Unit tests for the trip lifecycle."""

from datetime import timedelta
from uuid import uuid4

import pytest

from seatline.core.exceptions import (
    ConflictError,
    InvalidStateTransitionError,
    NotFoundError,
    TripNotBookableError,
    UnknownBusError,
)
from seatline.models.seat_hold import HoldStatus
from seatline.models.ticket import TicketStatus
from seatline.models.trip import TripStatus
from seatline.schemas.bus import CreateBusRequest
from seatline.schemas.hold import CreateHoldRequest
from seatline.schemas.ticket import CreateTicketRequest, PaymentMethod
from seatline.schemas.trip import AssignBusRequest, CancelTripRequest, CreateTripRequest
from seatline.services import BusService, SeatHoldService, TicketService, TripService
from seatline.services.trip_service import can_transition


def test_transition_table():
    assert can_transition(TripStatus.SCHEDULED, TripStatus.BOARDING)
    assert can_transition("BOARDING", TripStatus.DEPARTED)
    assert can_transition(TripStatus.DEPARTED, TripStatus.ARRIVED)
    assert not can_transition(TripStatus.SCHEDULED, TripStatus.DEPARTED)
    assert not can_transition(TripStatus.DEPARTED, TripStatus.CANCELLED)
    assert not can_transition(TripStatus.ARRIVED, TripStatus.BOARDING)
    assert not can_transition(TripStatus.CANCELLED, TripStatus.SCHEDULED)


@pytest.mark.asyncio
async def test_create_trip_creates_seat_records(test_session, trip):
    service = TripService(test_session)

    assert trip.status == TripStatus.SCHEDULED
    seat_numbers = await service.seat_numbers_of(trip.id)
    assert len(seat_numbers) == 40
    assert set(seat_numbers) == {str(number) for number in range(1, 41)}


@pytest.mark.asyncio
async def test_create_trip_unknown_route_or_bus(test_session, route, clock):
    service = TripService(test_session, clock)

    with pytest.raises(NotFoundError):
        await service.create_trip(CreateTripRequest(route_id=uuid4(), departure_at=clock.now))

    with pytest.raises(UnknownBusError):
        await service.create_trip(
            CreateTripRequest(route_id=route.id, bus_id=uuid4(), departure_at=clock.now)
        )


@pytest.mark.asyncio
async def test_full_lifecycle(test_session, trip, clock):
    """SCHEDULED -> BOARDING -> boarding closed -> DEPARTED -> ARRIVED."""
    service = TripService(test_session, clock)

    with pytest.raises(InvalidStateTransitionError):
        await service.depart(trip.id)

    boarding = await service.open_boarding(trip.id)
    assert boarding.status == TripStatus.BOARDING
    assert boarding.accepts_reservations

    closed = await service.close_boarding(trip.id)
    assert closed.status == TripStatus.BOARDING
    assert closed.boarding_closed_at == clock.now
    assert not closed.accepts_reservations

    with pytest.raises(InvalidStateTransitionError):
        await service.close_boarding(trip.id)

    clock.advance(minutes=10)
    departed = await service.depart(trip.id)
    assert departed.status == TripStatus.DEPARTED

    arrived = await service.arrive(trip.id)
    assert arrived.status == TripStatus.ARRIVED

    with pytest.raises(InvalidStateTransitionError) as exc_info:
        await service.cancel(CancelTripRequest(trip_id=trip.id, reason="Too late"), actor_id="dispatcher-1")
    assert exc_info.value.code == "INVALID_STATE_TRANSITION"


@pytest.mark.asyncio
async def test_depart_closes_open_boarding(test_session, trip, clock):
    service = TripService(test_session, clock)
    await service.open_boarding(trip.id)

    departed = await service.depart(trip.id)

    assert departed.status == TripStatus.DEPARTED
    assert departed.boarding_closed_at == clock.now


@pytest.mark.asyncio
async def test_cancel_cascades(test_session, trip, clock):
    """Cancelling a trip cancels its tickets with full refunds and releases its holds."""
    hold_service = SeatHoldService(test_session, clock)
    ticket_service = TicketService(test_session, clock)

    tickets = []
    for seat_number in ("1", "2", "3"):
        hold = await hold_service.create_hold(
            CreateHoldRequest(trip_id=trip.id, seat_number=seat_number, from_ordinal=0, to_ordinal=5),
            holder_id="passenger-1",
        )
        tickets.append(await ticket_service.create_ticket(
            CreateTicketRequest(hold_id=hold.id, passenger_id="passenger-1", payment_method=PaymentMethod.CARD)
        ))
    open_hold = await hold_service.create_hold(
        CreateHoldRequest(trip_id=trip.id, seat_number="4", from_ordinal=1, to_ordinal=2),
        holder_id="passenger-2",
    )

    result = await TripService(test_session, clock).cancel(
        CancelTripRequest(trip_id=trip.id, reason="Road closed"), actor_id="dispatcher-1"
    )

    assert result.trip.status == TripStatus.CANCELLED
    assert result.tickets_cancelled == 3
    assert result.holds_released == 1
    assert result.overbooking_requests_rejected == 0

    for ticket in tickets:
        await test_session.refresh(ticket)
        assert ticket.status == TicketStatus.CANCELLED
        assert ticket.refund_amount == ticket.price
        assert ticket.cancellation_reason == "Trip cancelled: Road closed"
    await test_session.refresh(open_hold)
    assert open_hold.status == HoldStatus.RELEASED

    with pytest.raises(TripNotBookableError):
        await hold_service.create_hold(
            CreateHoldRequest(trip_id=trip.id, seat_number="5", from_ordinal=0, to_ordinal=1),
            holder_id="passenger-3",
        )


@pytest.mark.asyncio
async def test_assign_bus(test_session, route, bus, clock):
    service = TripService(test_session, clock)
    trip = await service.create_trip(
        CreateTripRequest(route_id=route.id, departure_at=clock.now + timedelta(days=1))
    )
    assert await service.seat_numbers_of(trip.id) == []

    assigned = await service.assign_bus(AssignBusRequest(trip_id=trip.id, bus_id=bus.id))
    assert assigned.bus_id == bus.id
    assert len(await service.seat_numbers_of(trip.id)) == 40

    small = await BusService(test_session).create_bus(CreateBusRequest(plate="MINI-01", seat_numbers=["A", "B"]))
    swapped = await service.assign_bus(AssignBusRequest(trip_id=trip.id, bus_id=small.id))
    assert swapped.bus_id == small.id
    assert await service.seat_numbers_of(trip.id) == ["A", "B"]


@pytest.mark.asyncio
async def test_assign_bus_refused_with_reservations(test_session, trip, clock):
    await SeatHoldService(test_session, clock).create_hold(
        CreateHoldRequest(trip_id=trip.id, seat_number="1", from_ordinal=0, to_ordinal=1),
        holder_id="passenger-1",
    )
    other = await BusService(test_session).create_bus(CreateBusRequest(plate="OTHER-1", seat_numbers=["1", "2"]))
    service = TripService(test_session, clock)

    with pytest.raises(ConflictError):
        await service.assign_bus(AssignBusRequest(trip_id=trip.id, bus_id=other.id))

    await service.open_boarding(trip.id)
    with pytest.raises(TripNotBookableError):
        await service.assign_bus(AssignBusRequest(trip_id=trip.id, bus_id=other.id))


@pytest.mark.asyncio
async def test_advance_due_trips(test_session, trip, clock):
    """The schedule opens boarding inside the boarding window and departs at departure time."""
    service = TripService(test_session, clock)

    assert await service.advance_due_trips() == 0

    clock.now = trip.departure_at - timedelta(minutes=20)
    assert await service.advance_due_trips() == 1
    await test_session.refresh(trip)
    assert trip.status == TripStatus.BOARDING

    clock.now = trip.departure_at + timedelta(minutes=1)
    assert await service.advance_due_trips() == 1
    await test_session.refresh(trip)
    assert trip.status == TripStatus.DEPARTED
