"""Random hold and ticket operation sequences against a real session keep seat segments disjoint."""

import asyncio
from collections import defaultdict
from datetime import datetime, timedelta
from itertools import combinations

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from seatline.core.database import Base
from seatline.core.exceptions import ProblemDetailsException
from seatline.models import *  # noqa: F403 - Import all models
from seatline.models.seat_hold import HoldStatus, SeatHold
from seatline.models.ticket import LIVE_TICKET_STATUSES, Ticket
from seatline.schemas.bus import CreateBusRequest
from seatline.schemas.hold import CreateHoldRequest
from seatline.schemas.route import CreateRouteRequest, StopInput
from seatline.schemas.ticket import CancelTicketRequest, ConfirmPaymentRequest, CreateTicketRequest, PaymentMethod
from seatline.schemas.trip import CreateTripRequest
from seatline.services import BusService, RouteService, SeatHoldService, TicketService, TripService
from seatline.services.availability_service import segments_overlap

SEATS = ["1", "2", "3"]
LAST_ORDINAL = 5


class SteppedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@st.composite
def segments(draw):
    start = draw(st.integers(min_value=0, max_value=LAST_ORDINAL - 1))
    end = draw(st.integers(min_value=start + 1, max_value=LAST_ORDINAL))
    return start, end


picks = st.integers(min_value=0, max_value=7)

steps = st.one_of(
    st.tuples(st.just("hold"), st.sampled_from(SEATS), segments(), st.sampled_from(["p1", "p2"])),
    st.tuples(st.just("ticket"), picks, st.sampled_from([PaymentMethod.CARD, PaymentMethod.CASH])),
    st.tuples(st.just("confirm"), picks),
    st.tuples(st.just("cancel"), picks),
    st.tuples(st.just("release"), picks),
    st.tuples(st.just("expire_due")),
    st.tuples(st.just("advance"), st.sampled_from([1, 4, 11])),
)


async def seed(session: AsyncSession, clock: SteppedClock):
    route = await RouteService(session).create_route(
        CreateRouteRequest(
            name="Sequence route",
            stops=[StopInput(name=f"Stop {ordinal}", ordinal=ordinal) for ordinal in range(LAST_ORDINAL + 1)],
        )
    )
    bus = await BusService(session).create_bus(CreateBusRequest(plate="SEQ-001", seat_numbers=SEATS))
    trip = await TripService(session, clock).create_trip(
        CreateTripRequest(route_id=route.id, bus_id=bus.id, departure_at=clock.now + timedelta(days=2))
    )
    return trip.id


async def assert_segments_disjoint(session: AsyncSession) -> None:
    claims = defaultdict(list)
    holds = await session.execute(
        select(SeatHold.seat_number, SeatHold.from_ordinal, SeatHold.to_ordinal).where(
            SeatHold.status == HoldStatus.ACTIVE
        )
    )
    tickets = await session.execute(
        select(Ticket.seat_number, Ticket.from_ordinal, Ticket.to_ordinal).where(
            Ticket.status.in_(LIVE_TICKET_STATUSES), Ticket.is_capacity_exception.is_(False)
        )
    )
    for seat_number, from_ordinal, to_ordinal in [*holds.all(), *tickets.all()]:
        claims[seat_number].append((from_ordinal, to_ordinal))

    for seat_number, segments_held in claims.items():
        for a, b in combinations(segments_held, 2):
            assert not segments_overlap(*a, *b), f"seat {seat_number}: {a} overlaps {b}"


async def run_sequence(sequence) -> None:
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    clock = SteppedClock(datetime(2026, 3, 2, 8, 0, 0))
    try:
        async with async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)() as session:
            trip_id = await seed(session, clock)
            holds = SeatHoldService(session, clock)
            tickets = TicketService(session, clock)
            hold_ids, ticket_ids = [], []

            for step in sequence:
                kind = step[0]
                try:
                    if kind == "hold":
                        _, seat_number, (from_ordinal, to_ordinal), holder = step
                        hold = await holds.create_hold(
                            CreateHoldRequest(
                                trip_id=trip_id, seat_number=seat_number,
                                from_ordinal=from_ordinal, to_ordinal=to_ordinal,
                            ),
                            holder_id=holder,
                        )
                        hold_ids.append(hold.id)
                    elif kind == "ticket" and hold_ids:
                        hold_id = hold_ids[step[1] % len(hold_ids)]
                        ticket = await tickets.create_ticket(
                            CreateTicketRequest(hold_id=hold_id, passenger_id="p1", payment_method=step[2])
                        )
                        ticket_ids.append(ticket.id)
                    elif kind == "confirm" and ticket_ids:
                        await tickets.confirm_payment(
                            ConfirmPaymentRequest(
                                ticket_id=ticket_ids[step[1] % len(ticket_ids)], payment_method=PaymentMethod.CASH
                            )
                        )
                    elif kind == "cancel" and ticket_ids:
                        await tickets.cancel(
                            CancelTicketRequest(ticket_id=ticket_ids[step[1] % len(ticket_ids)], reason="Changed plans")
                        )
                    elif kind == "release" and hold_ids:
                        await holds.release(hold_ids[step[1] % len(hold_ids)])
                    elif kind == "expire_due":
                        await holds.expire_due()
                    elif kind == "advance":
                        clock.now += timedelta(minutes=step[1])
                except ProblemDetailsException:
                    # Rejected operations are fine; they must just leave no trace
                    pass

                await assert_segments_disjoint(session)
    finally:
        await engine.dispose()


@settings(max_examples=30, deadline=None, suppress_health_check=[HealthCheck.too_slow])
@given(sequence=st.lists(steps, min_size=1, max_size=20))
def test_operation_sequences_keep_segments_disjoint(sequence):
    asyncio.run(run_sequence(sequence))
