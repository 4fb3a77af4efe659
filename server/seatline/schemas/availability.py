"""Segment availability schemas."""

from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field

from .common import SegmentRequest


class SeatState(str, Enum):
    """Seat status for a queried segment."""
    FREE = "FREE"
    HELD = "HELD"
    OCCUPIED = "OCCUPIED"


class AvailabilityRequest(SegmentRequest):
    """Request schema for a segment availability query."""

    trip_id: UUID = Field(..., description="Trip to inspect")


class SeatAvailability(BaseModel):
    """Status of a single seat on the queried segment."""

    seat_number: str
    state: SeatState


class AvailabilityResponse(BaseModel):
    """Per-seat availability for one segment of a trip."""

    trip_id: UUID
    from_ordinal: int
    to_ordinal: int
    seats: list[SeatAvailability]
    free_count: int = Field(..., ge=0)
    occupancy_rate: float = Field(..., ge=0, description="Occupied seats over bus capacity")
