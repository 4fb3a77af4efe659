"""Schemas for the RPC health ping."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"


class HealthResponse(BaseModel):
    """Liveness answer, with the background sweeps this process is running."""

    status: HealthStatus = Field(..., description="HEALTHY unless an enabled sweep has stopped")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="API version")
    environment: str = Field(..., description="Deployment environment")
    timestamp: datetime = Field(..., description="Server time (UTC)")
    workers: dict[str, bool] = Field(default_factory=dict, description="Sweep name to running flag")
