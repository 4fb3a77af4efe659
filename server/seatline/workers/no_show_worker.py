"""Background worker for marking no-shows."""

import logging

from ..core.database import async_session_factory
from ..services.ticket_service import TicketService
from .base import BaseWorker

logger = logging.getLogger(__name__)


class NoShowWorker(BaseWorker):
    """Marks unboarded SOLD tickets as NO_SHOW on boarding trips about to leave."""

    def __init__(self, interval_seconds: int = 120):
        super().__init__(name="NoShow", interval_seconds=interval_seconds)

    async def process(self) -> int:
        async with async_session_factory() as db:
            return await TicketService(db).process_due_no_shows()
