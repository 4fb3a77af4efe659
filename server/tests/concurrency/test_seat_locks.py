"""Tests for the in-process seat lock registry."""

import asyncio

import pytest

from seatline.core.locking import SeatLockRegistry, seat_key


@pytest.mark.asyncio
async def test_same_seat_is_serialized():
    registry = SeatLockRegistry()
    inside = 0
    peak = 0

    async def critical_section():
        nonlocal inside, peak
        async with registry.seat("trip-1", "5"):
            inside += 1
            peak = max(peak, inside)
            await asyncio.sleep(0.01)
            inside -= 1

    await asyncio.gather(*(critical_section() for _ in range(5)))

    assert peak == 1


@pytest.mark.asyncio
async def test_different_seats_run_concurrently():
    registry = SeatLockRegistry()
    both_inside = asyncio.Event()
    entered = []

    async def critical_section(seat_number: str):
        async with registry.seat("trip-1", seat_number):
            entered.append(seat_number)
            if len(entered) == 2:
                both_inside.set()
            await asyncio.wait_for(both_inside.wait(), timeout=1)

    await asyncio.gather(critical_section("1"), critical_section("2"))

    assert sorted(entered) == ["1", "2"]


@pytest.mark.asyncio
async def test_idle_locks_are_dropped():
    registry = SeatLockRegistry()

    async with registry.seats("trip-1", ["3", "1", "2", "1"]):
        assert len(registry) == 3

    assert len(registry) == 0


@pytest.mark.asyncio
async def test_overlapping_multi_seat_acquisition_does_not_deadlock():
    """Keys are taken in sorted order, so opposite request orders cannot deadlock."""
    registry = SeatLockRegistry()

    async def grab(seat_numbers):
        async with registry.seats("trip-1", seat_numbers):
            await asyncio.sleep(0.01)

    await asyncio.wait_for(
        asyncio.gather(grab(["1", "2", "3"]), grab(["3", "2", "1"]), grab(["2", "1"])),
        timeout=2,
    )
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_lock_released_when_block_raises():
    registry = SeatLockRegistry()

    with pytest.raises(RuntimeError):
        async with registry.seat("trip-1", "7"):
            raise RuntimeError("boom")

    assert len(registry) == 0
    async with registry.seat("trip-1", "7"):
        pass


def test_seat_key():
    assert seat_key("trip-1", "12") == "trip-1:12"
