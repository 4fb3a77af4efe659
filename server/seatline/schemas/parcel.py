"""Parcel delivery schemas."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class ParcelStatus(str, Enum):
    """Parcel status enumeration."""
    CREATED = "CREATED"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"


class CreateParcelRequest(BaseModel):
    """Request schema for registering a parcel."""

    sender_name: str = Field(..., min_length=1, max_length=255)
    sender_phone: str = Field(..., min_length=3, max_length=32)
    receiver_name: str = Field(..., min_length=1, max_length=255)
    receiver_phone: str = Field(..., min_length=3, max_length=32)
    price: int = Field(0, ge=0, description="Shipping fee in minor units")
    trip_id: Optional[UUID] = Field(None, description="Trip carrying the parcel")


class MarkInTransitRequest(BaseModel):
    """Request schema for loading a parcel on a trip."""

    code: str = Field(..., min_length=1, max_length=32)
    trip_id: Optional[UUID] = Field(None, description="Trip carrying the parcel, if not set at creation")


class DeliverParcelRequest(BaseModel):
    """Request schema for handing a parcel to its receiver."""

    code: str = Field(..., min_length=1, max_length=32)
    otp: str = Field(..., min_length=1, max_length=16, description="Delivery code given by the receiver")
    proof_url: Optional[str] = Field(None, max_length=1024, description="Proof of delivery photo URL")


class MarkFailedRequest(BaseModel):
    """Request schema for recording a failed delivery."""

    code: str = Field(..., min_length=1, max_length=32)
    reason: str = Field(..., min_length=1, max_length=500)


class Parcel(BaseModel):
    """Parcel response schema. The delivery OTP is never returned here."""

    id: UUID
    code: str
    trip_id: Optional[UUID] = None
    sender_name: str
    receiver_name: str
    price: int
    status: ParcelStatus
    proof_url: Optional[str] = None
    failure_reason: Optional[str] = None
    delivered_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class CreatedParcel(Parcel):
    """Creation response; carries the OTP once so it can be sent to the receiver."""

    delivery_otp: str
