"""Seat hold schemas."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field

from .common import SegmentRequest


class HoldStatus(str, Enum):
    """Hold status enumeration."""
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    RELEASED = "RELEASED"
    CONVERTED = "CONVERTED"


class CreateHoldRequest(SegmentRequest):
    """Request schema for holding one seat on a segment. TTL is fixed by server policy."""

    trip_id: UUID = Field(..., description="Trip to reserve on")
    seat_number: str = Field(..., min_length=1, max_length=10, description="Seat label")


class ReleaseHoldRequest(BaseModel):
    """Request schema for releasing a hold."""

    hold_id: UUID = Field(..., description="Hold to release")


class SeatHold(BaseModel):
    """Hold response schema."""

    id: UUID = Field(..., description="Unique hold ID")
    trip_id: UUID = Field(..., description="Trip ID")
    seat_number: str = Field(..., description="Seat label")
    from_ordinal: int
    to_ordinal: int
    holder_id: str = Field(..., description="User that owns the hold")
    status: HoldStatus = Field(..., description="Hold status")
    expires_at: datetime = Field(..., description="Hold expiration time (UTC)")

    model_config = {"from_attributes": True}
