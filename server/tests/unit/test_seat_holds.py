"""Unit tests for segment availability and seat holds."""

from datetime import timedelta

import pytest

from seatline.core.authorization import Actor, Role
from seatline.core.exceptions import (
    AuthorizationError,
    CapacityExceededError,
    HoldNotFoundError,
    InvalidSegmentError,
    SegmentConflictError,
    TripHasNoBusError,
    TripNotBookableError,
    UnknownSeatError,
)
from seatline.models.seat_hold import HoldStatus
from seatline.schemas.availability import SeatState
from seatline.schemas.bus import CreateBusRequest
from seatline.schemas.hold import CreateHoldRequest
from seatline.schemas.trip import CreateTripRequest
from seatline.services import AvailabilityService, BusService, SeatHoldService, TripService


def hold_request(trip, seat_number: str, from_ordinal: int, to_ordinal: int) -> CreateHoldRequest:
    return CreateHoldRequest(
        trip_id=trip.id, seat_number=seat_number, from_ordinal=from_ordinal, to_ordinal=to_ordinal
    )


@pytest.mark.asyncio
async def test_create_hold(test_session, trip, clock):
    """Test creating a hold with the server-side TTL."""
    service = SeatHoldService(test_session, clock)

    hold = await service.create_hold(hold_request(trip, "5", 1, 4), holder_id="passenger-1")

    assert hold.id is not None
    assert hold.status == HoldStatus.ACTIVE
    assert hold.seat_number == "5"
    assert (hold.from_ordinal, hold.to_ordinal) == (1, 4)
    assert hold.holder_id == "passenger-1"
    assert hold.expires_at == clock.now + timedelta(seconds=600)


@pytest.mark.asyncio
async def test_availability_reflects_hold_segment(test_session, trip, clock):
    """A hold only blocks segments that share a leg with it."""
    await SeatHoldService(test_session, clock).create_hold(hold_request(trip, "5", 1, 4), holder_id="passenger-1")
    availability = AvailabilityService(test_session, clock)

    before = await availability.availability(trip.id, 0, 1)
    inside = await availability.availability(trip.id, 3, 5)
    after = await availability.availability(trip.id, 4, 5)

    assert before["5"] == SeatState.FREE
    assert inside["5"] == SeatState.HELD
    assert after["5"] == SeatState.FREE
    assert len(inside) == 40
    assert await availability.free_seat_count(trip.id, 2, 3) == 39
    assert await availability.free_seat_count(trip.id, 4, 5) == 40


@pytest.mark.asyncio
async def test_overlapping_hold_rejected(test_session, trip, clock):
    """Test holding an overlapping segment of a held seat raises error."""
    service = SeatHoldService(test_session, clock)
    await service.create_hold(hold_request(trip, "5", 1, 4), holder_id="passenger-1")

    with pytest.raises(SegmentConflictError) as exc_info:
        await service.create_hold(hold_request(trip, "5", 2, 5), holder_id="passenger-2")

    assert exc_info.value.code == "SEGMENT_CONFLICT"
    assert exc_info.value.status_code == 409


@pytest.mark.asyncio
async def test_adjacent_segments_share_a_seat(test_session, trip, clock):
    """Touching segments do not overlap, so one seat can be sold leg by leg."""
    service = SeatHoldService(test_session, clock)

    first = await service.create_hold(hold_request(trip, "5", 0, 1), holder_id="passenger-1")
    middle = await service.create_hold(hold_request(trip, "5", 1, 4), holder_id="passenger-2")
    last = await service.create_hold(hold_request(trip, "5", 4, 5), holder_id="passenger-3")

    assert {first.status, middle.status, last.status} == {HoldStatus.ACTIVE}
    states = await AvailabilityService(test_session, clock).availability(trip.id, 0, 5)
    assert states["5"] == SeatState.HELD


@pytest.mark.asyncio
async def test_lapsed_hold_does_not_block(test_session, trip, clock):
    """A hold past its expiry is expired inline by the next overlapping hold."""
    service = SeatHoldService(test_session, clock)
    stale = await service.create_hold(hold_request(trip, "5", 1, 4), holder_id="passenger-1")

    clock.advance(seconds=601)
    fresh = await service.create_hold(hold_request(trip, "5", 2, 5), holder_id="passenger-2")

    await test_session.refresh(stale)
    assert stale.status == HoldStatus.EXPIRED
    assert fresh.status == HoldStatus.ACTIVE


@pytest.mark.asyncio
async def test_expire_due_is_idempotent(test_session, trip, clock):
    """Test the expiry sweep moves due holds to EXPIRED exactly once."""
    service = SeatHoldService(test_session, clock)
    due = await service.create_hold(hold_request(trip, "1", 0, 5), holder_id="passenger-1")

    clock.advance(seconds=300)
    not_due = await service.create_hold(hold_request(trip, "2", 0, 5), holder_id="passenger-2")

    clock.advance(seconds=301)
    assert await service.expire_due() == 1
    assert await service.expire_due() == 0

    await test_session.refresh(due)
    await test_session.refresh(not_due)
    assert due.status == HoldStatus.EXPIRED
    assert not_due.status == HoldStatus.ACTIVE
    assert await service.count_active() == 1


@pytest.mark.asyncio
async def test_release_hold(test_session, trip, clock):
    """Test releasing a hold frees the segment; a second release is a no-op."""
    service = SeatHoldService(test_session, clock)
    owner = Actor(user_id="passenger-1", role=Role.PASSENGER)
    hold = await service.create_hold(hold_request(trip, "7", 0, 3), holder_id=owner.user_id)

    released = await service.release(hold.id, owner)
    assert released.status == HoldStatus.RELEASED

    again = await service.release(hold.id, owner)
    assert again.status == HoldStatus.RELEASED

    states = await AvailabilityService(test_session, clock).availability(trip.id, 0, 3)
    assert states["7"] == SeatState.FREE


@pytest.mark.asyncio
async def test_release_requires_owner(test_session, trip, clock):
    """Passengers cannot release other passengers' holds; clerks can."""
    service = SeatHoldService(test_session, clock)
    hold = await service.create_hold(hold_request(trip, "7", 0, 3), holder_id="passenger-1")

    with pytest.raises(AuthorizationError):
        await service.release(hold.id, Actor(user_id="passenger-2", role=Role.PASSENGER))

    released = await service.release(hold.id, Actor(user_id="clerk-1", role=Role.CLERK))
    assert released.status == HoldStatus.RELEASED


@pytest.mark.asyncio
async def test_release_unknown_hold(test_session, clock):
    from uuid import uuid4

    with pytest.raises(HoldNotFoundError) as exc_info:
        await SeatHoldService(test_session, clock).release(uuid4())
    assert exc_info.value.code == "HOLD_NOT_FOUND"


@pytest.mark.asyncio
async def test_hold_rejects_unknown_seat_and_bad_segment(test_session, trip, clock):
    service = SeatHoldService(test_session, clock)

    with pytest.raises(UnknownSeatError):
        await service.create_hold(hold_request(trip, "99", 0, 1), holder_id="passenger-1")

    with pytest.raises(InvalidSegmentError):
        await service.create_hold(hold_request(trip, "1", 3, 2), holder_id="passenger-1")


@pytest.mark.asyncio
async def test_hold_requires_bus(test_session, route, clock):
    trip = await TripService(test_session, clock).create_trip(
        CreateTripRequest(route_id=route.id, departure_at=clock.now + timedelta(days=1))
    )

    with pytest.raises(TripHasNoBusError):
        await SeatHoldService(test_session, clock).create_hold(
            hold_request(trip, "1", 0, 1), holder_id="passenger-1"
        )


@pytest.mark.asyncio
async def test_hold_rejected_once_boarding_closes(test_session, trip, clock):
    """Holds are accepted while boarding is open and refused after it closes."""
    trip_service = TripService(test_session, clock)
    service = SeatHoldService(test_session, clock)

    await trip_service.open_boarding(trip.id)
    await service.create_hold(hold_request(trip, "1", 0, 1), holder_id="passenger-1")

    await trip_service.close_boarding(trip.id)
    with pytest.raises(TripNotBookableError) as exc_info:
        await service.create_hold(hold_request(trip, "2", 0, 1), holder_id="passenger-1")
    assert exc_info.value.code == "TRIP_NOT_BOOKABLE"


@pytest.mark.asyncio
async def test_sold_out_segment_near_departure(test_session, route, clock):
    """A conflict on a fully held segment close to departure reports capacity exhaustion."""
    bus = await BusService(test_session).create_bus(CreateBusRequest(plate="MINI-02", seat_numbers=["1", "2"]))
    trip = await TripService(test_session, clock).create_trip(
        CreateTripRequest(route_id=route.id, bus_id=bus.id, departure_at=clock.now + timedelta(minutes=20))
    )
    service = SeatHoldService(test_session, clock)
    await service.create_hold(hold_request(trip, "1", 0, 5), holder_id="passenger-1")
    await service.create_hold(hold_request(trip, "2", 0, 5), holder_id="passenger-2")

    with pytest.raises(CapacityExceededError) as exc_info:
        await service.create_hold(hold_request(trip, "1", 1, 2), holder_id="passenger-3")

    assert exc_info.value.code == "CAPACITY_EXCEEDED"
