"""Health check router."""

import logging

from fastapi import APIRouter

from ..core.config import settings
from ..core.database import utcnow
from ..core.observability import SERVICE_NAME, SERVICE_VERSION
from ..schemas.health import HealthResponse, HealthStatus
from ..workers.manager import worker_manager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/health", tags=["health"])


@router.post("/ping", response_model=HealthResponse)
async def health_ping() -> HealthResponse:
    """
    Report liveness of the API process.

    The ping is DEGRADED when sweeps are enabled but one of them is not
    running, since lapsed holds and overbooking requests then only expire lazily.
    """
    workers = worker_manager.get_worker_status()
    degraded = settings.workers_enabled and workers and not all(workers.values())

    response = HealthResponse(
        status=HealthStatus.DEGRADED if degraded else HealthStatus.HEALTHY,
        service=SERVICE_NAME,
        version=SERVICE_VERSION,
        environment=settings.environment,
        timestamp=utcnow(),
        workers=workers,
    )
    logger.debug("Health ping", extra={"status": response.status.value, "workers": workers})
    return response
