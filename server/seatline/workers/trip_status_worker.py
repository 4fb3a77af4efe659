"""Background worker driving time-based trip transitions."""

import logging

from ..core.database import async_session_factory
from ..services.trip_service import TripService
from .base import BaseWorker

logger = logging.getLogger(__name__)


class TripStatusWorker(BaseWorker):
    """
    Opens boarding on trips whose boarding window has started and departs
    trips whose departure time has passed.
    """

    def __init__(self, interval_seconds: int = 60):
        super().__init__(name="TripStatus", interval_seconds=interval_seconds)

    async def process(self) -> int:
        async with async_session_factory() as db:
            advanced = await TripService(db).advance_due_trips()
            if advanced > 0:
                logger.info(
                    f"Advanced {advanced} trips",
                    extra={"advanced_count": advanced, "worker": self.name}
                )
            return advanced
