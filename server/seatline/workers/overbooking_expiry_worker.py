"""Background worker for expiring overbooking requests."""

import logging

from ..core.database import async_session_factory
from ..services.overbooking_service import OverbookingService
from .base import BaseWorker

logger = logging.getLogger(__name__)


class OverbookingExpiryWorker(BaseWorker):
    """Expires PENDING overbooking requests past their deadline and cancels their tickets."""

    def __init__(self, interval_seconds: int = 60):
        super().__init__(name="OverbookingExpiry", interval_seconds=interval_seconds)

    async def process(self) -> int:
        async with async_session_factory() as db:
            return await OverbookingService(db).expire_due()
