"""Overbooking workflow schemas."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from .common import SegmentRequest
from .ticket import PaymentMethod


class OverbookingStatus(str, Enum):
    """Overbooking request status enumeration."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class OverCapacityTicketRequest(SegmentRequest):
    """Request schema for selling a seat beyond nominal capacity."""

    trip_id: UUID = Field(..., description="Saturated trip")
    seat_number: str = Field(..., min_length=1, max_length=10, description="Seat label to share")
    passenger_id: str = Field(..., min_length=1, max_length=128)
    payment_method: PaymentMethod = Field(..., description="How the fare will be paid once approved")


class RequestOverbookingRequest(BaseModel):
    """Request schema for submitting an overbooking request."""

    trip_id: UUID = Field(..., description="Trip the ticket belongs to")
    ticket_id: UUID = Field(..., description="Capacity exception ticket")
    reason: str = Field(..., min_length=1, max_length=500)


class ApproveOverbookingRequest(BaseModel):
    """Request schema for approving an overbooking request."""

    request_id: UUID = Field(..., description="Pending request")
    notes: Optional[str] = Field(None, max_length=500)


class RejectOverbookingRequest(BaseModel):
    """Request schema for rejecting an overbooking request."""

    request_id: UUID = Field(..., description="Pending request")
    reason: str = Field(..., min_length=1, max_length=500)


class TripOverbookingRequest(BaseModel):
    """Request schema for trip-scoped overbooking queries."""

    trip_id: UUID


class OverbookingRequest(BaseModel):
    """Overbooking request response schema."""

    id: UUID
    trip_id: UUID
    ticket_id: UUID
    status: OverbookingStatus
    reason: str
    requested_by: str
    resolved_by: Optional[str] = None
    resolution_notes: Optional[str] = None
    requested_at: datetime
    resolved_at: Optional[datetime] = None
    expires_at: datetime

    model_config = {"from_attributes": True}


class OverbookingRequestList(BaseModel):
    """List of overbooking requests."""

    items: list[OverbookingRequest]


class OccupancyResponse(BaseModel):
    """Trip occupancy and overbooking headroom."""

    trip_id: UUID
    occupancy_rate: float = Field(..., ge=0)
    capacity: int = Field(..., ge=0)
    max_exceptions: int = Field(..., ge=0)
    open_exceptions: int = Field(..., ge=0)
    can_overbook: bool
