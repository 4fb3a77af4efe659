"""Trip-related Pydantic schemas."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from ..core.database import as_naive_utc


class TripStatus(str, Enum):
    """Trip status enumeration."""
    SCHEDULED = "SCHEDULED"
    BOARDING = "BOARDING"
    DEPARTED = "DEPARTED"
    ARRIVED = "ARRIVED"
    CANCELLED = "CANCELLED"


class CreateTripRequest(BaseModel):
    """Request schema for scheduling a trip."""

    route_id: UUID = Field(..., description="Route the trip runs on")
    departure_at: datetime = Field(..., description="Scheduled departure (UTC)")
    arrival_eta: Optional[datetime] = Field(None, description="Estimated arrival (UTC)")
    bus_id: Optional[UUID] = Field(None, description="Bus to assign right away")

    @field_validator("departure_at", "arrival_eta")
    @classmethod
    def normalize_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Store timestamps as naive UTC."""
        return as_naive_utc(v) if v is not None else None

    @model_validator(mode="after")
    def validate_times(self):
        """Arrival must come after departure."""
        if self.arrival_eta is not None and self.arrival_eta <= self.departure_at:
            raise ValueError("arrival_eta must be after departure_at")
        return self


class AssignBusRequest(BaseModel):
    """Request schema for assigning a bus to a trip."""

    trip_id: UUID = Field(..., description="Trip to update")
    bus_id: UUID = Field(..., description="Bus to assign")


class TripActionRequest(BaseModel):
    """Request schema for status transitions that only need the trip."""

    trip_id: UUID = Field(..., description="Trip to transition")


class CancelTripRequest(BaseModel):
    """Request schema for cancelling a trip."""

    trip_id: UUID = Field(..., description="Trip to cancel")
    reason: str = Field(..., min_length=1, max_length=500, description="Cancellation reason")


class Trip(BaseModel):
    """Trip response schema."""

    id: UUID = Field(..., description="Unique trip ID")
    route_id: UUID = Field(..., description="Route ID")
    bus_id: Optional[UUID] = Field(None, description="Assigned bus ID")
    departure_at: datetime = Field(..., description="Scheduled departure (UTC)")
    arrival_eta: Optional[datetime] = Field(None, description="Estimated arrival (UTC)")
    status: TripStatus = Field(..., description="Trip status")
    boarding_closed_at: Optional[datetime] = Field(None, description="When boarding was closed")

    model_config = {"from_attributes": True}


class TripCancellation(BaseModel):
    """Outcome of a trip cancellation cascade."""

    trip: Trip
    tickets_cancelled: int = Field(..., ge=0)
    holds_released: int = Field(..., ge=0)
    overbooking_requests_rejected: int = Field(..., ge=0)
