"""In-process asyncio locks keyed by trip seat."""

import asyncio
import logging
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from uuid import UUID

logger = logging.getLogger(__name__)


def seat_key(trip_id: UUID | str, seat_number: str) -> str:
    """Lock key for one seat of one trip."""
    return f"{trip_id}:{seat_number}"


class SeatLockRegistry:
    """
    Registry of asyncio locks, one per (trip, seat) pair.

    Locks are created on first use and dropped once no coroutine holds or
    waits for them, so the registry stays bounded by the number of seats
    under contention. Multiple keys are always acquired in sorted order.

    The registry only serializes coroutines inside this process. Writers in
    other processes are caught by the trip seat version check at commit.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def _checkout(self, key: str) -> asyncio.Lock:
        self._users[key] = self._users.get(key, 0) + 1
        return self._locks.setdefault(key, asyncio.Lock())

    def _checkin(self, key: str) -> None:
        remaining = self._users[key] - 1
        if remaining:
            self._users[key] = remaining
        else:
            del self._users[key]
            del self._locks[key]

    @asynccontextmanager
    async def acquire(self, keys: Iterable[str]) -> AsyncIterator[None]:
        """
        Hold every lock in ``keys`` for the duration of the block.

        Args:
            keys: Lock keys, usually built with :func:`seat_key`
        """
        ordered = sorted(set(keys))
        locks = [self._checkout(key) for key in ordered]
        held: list[asyncio.Lock] = []
        try:
            for lock in locks:
                await lock.acquire()
                held.append(lock)
            yield
        finally:
            for lock in reversed(held):
                lock.release()
            for key in ordered:
                self._checkin(key)

    def seat(self, trip_id: UUID | str, seat_number: str):
        """Lock a single seat of a trip."""
        return self.acquire([seat_key(trip_id, seat_number)])

    def seats(self, trip_id: UUID | str, seat_numbers: Iterable[str]):
        """Lock several seats of a trip, e.g. for trip-wide transitions."""
        return self.acquire(seat_key(trip_id, number) for number in seat_numbers)


# Global lock registry shared by all services in this process
seat_locks = SeatLockRegistry()
