"""Worker manager for coordinating background sweeps."""

import asyncio
import logging

from ..core.config import settings
from .base import BaseWorker
from .hold_expiry_worker import HoldExpiryWorker
from .no_show_worker import NoShowWorker
from .overbooking_expiry_worker import OverbookingExpiryWorker
from .trip_status_worker import TripStatusWorker

logger = logging.getLogger(__name__)


class WorkerManager:
    """
    Manages background workers for the application.

    Coordinates starting, stopping and monitoring of all background workers.
    """

    def __init__(self):
        self.workers: dict[str, BaseWorker] = {}
        self._setup_workers()

    def _setup_workers(self) -> None:
        """Initialize all workers with intervals from settings."""
        self.workers["hold_expiry"] = HoldExpiryWorker(settings.hold_expiry_interval_seconds)
        self.workers["overbooking_expiry"] = OverbookingExpiryWorker(settings.overbooking_expiry_interval_seconds)
        self.workers["trip_status"] = TripStatusWorker(settings.trip_status_interval_seconds)
        self.workers["no_show"] = NoShowWorker(settings.no_show_interval_seconds)

        logger.info(f"Initialized {len(self.workers)} workers")

    async def start_all(self) -> None:
        """Start all workers unless they are disabled in settings."""
        if not settings.workers_enabled:
            logger.info("Background workers disabled")
            return

        logger.info("Starting all workers")
        for name, worker in self.workers.items():
            try:
                await worker.start()
            except Exception as e:
                logger.error(f"Failed to start worker {name}: {e!s}", exc_info=True)

        logger.info(f"Started {len(self.workers)} workers")

    async def stop_all(self) -> None:
        """Stop all running workers gracefully."""
        running = {name: worker for name, worker in self.workers.items() if worker.running}
        if not running:
            return

        logger.info("Stopping all workers")
        results = await asyncio.gather(*(worker.stop() for worker in running.values()), return_exceptions=True)

        for name, result in zip(running.keys(), results):
            if isinstance(result, Exception):
                logger.error(f"Error stopping worker {name}: {result!s}")

        logger.info("All workers stopped")

    def get_worker(self, name: str) -> BaseWorker:
        """
        Get a specific worker by name.

        Raises:
            KeyError: If worker not found
        """
        return self.workers[name]

    def get_worker_status(self) -> dict[str, bool]:
        """Map worker names to whether they are running."""
        return {name: worker.running for name, worker in self.workers.items()}


# Global worker manager instance
worker_manager = WorkerManager()
