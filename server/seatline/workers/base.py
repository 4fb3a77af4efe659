"""Base worker class for periodic sweeps."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

from ..core.database import utcnow

logger = logging.getLogger(__name__)


class BaseWorker(ABC):
    """
    Abstract base class for background workers.

    A worker runs `process` every `interval_seconds`. One failing iteration is
    logged and the loop carries on after a full interval.
    """

    def __init__(self, name: str, interval_seconds: int = 60):
        """
        Initialize the worker.

        Args:
            name: Worker name for logging
            interval_seconds: How often to run the sweep
        """
        self.name = name
        self.interval_seconds = interval_seconds
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    @abstractmethod
    async def process(self) -> int:
        """Run one sweep and return how many records it transitioned."""

    async def start(self) -> None:
        """Start the worker loop as a background task."""
        if self._running:
            logger.warning(f"{self.name} worker is already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info(f"{self.name} worker started with {self.interval_seconds}s interval")

    async def stop(self) -> None:
        """Stop the worker and wait for the current iteration to unwind."""
        if not self._running:
            logger.warning(f"{self.name} worker is not running")
            return

        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                logger.debug(f"{self.name} worker task cancelled")

        logger.info(f"{self.name} worker stopped")

    async def run_once(self) -> int:
        """Run a single sweep outside the loop, logging how long it took."""
        started = utcnow()
        processed = await self.process()
        duration = (utcnow() - started).total_seconds()

        logger.info(
            f"{self.name} worker iteration completed",
            extra={"duration_seconds": duration, "processed": processed, "worker": self.name}
        )
        return processed

    async def _run(self) -> None:
        """Main worker loop."""
        logger.info(f"{self.name} worker loop started")

        while self._running:
            try:
                started = utcnow()
                await self.run_once()

                elapsed = (utcnow() - started).total_seconds()
                sleep_time = max(0, self.interval_seconds - elapsed)
                if sleep_time > 0:
                    await asyncio.sleep(sleep_time)

            except asyncio.CancelledError:
                logger.info(f"{self.name} worker loop cancelled")
                break
            except Exception as e:
                logger.error(
                    f"{self.name} worker error: {e!s}",
                    exc_info=True,
                    extra={"worker": self.name}
                )
                await asyncio.sleep(self.interval_seconds)
