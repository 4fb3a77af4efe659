"""Background worker for expiring seat holds."""

import logging

from ..core.database import async_session_factory
from ..core.observability import metrics_collector
from ..services.idempotency_service import IdempotencyService
from ..services.seat_hold_service import SeatHoldService
from .base import BaseWorker

logger = logging.getLogger(__name__)


class HoldExpiryWorker(BaseWorker):
    """
    Background worker that expires holds past their TTL.

    Hold creation already treats lapsed holds as free; the sweep makes the
    stored status match and keeps the active-holds gauge honest. Replay
    records past their TTL go in the same pass.
    """

    def __init__(self, interval_seconds: int = 180):
        super().__init__(name="HoldExpiry", interval_seconds=interval_seconds)

    async def process(self) -> int:
        """Expire due holds, refresh the active-holds gauge and purge stale replay records."""
        async with async_session_factory() as db:
            hold_service = SeatHoldService(db)

            expired_count = await hold_service.expire_due()
            metrics_collector.set_active_holds(await hold_service.count_active())
            await IdempotencyService(db).purge_expired()

            if expired_count > 0:
                logger.info(
                    f"Expired {expired_count} holds",
                    extra={"expired_count": expired_count, "worker": self.name}
                )
            return expired_count
