"""Ticket schemas."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from .common import SegmentRequest


class TicketStatus(str, Enum):
    """Ticket status enumeration."""
    PENDING_PAYMENT = "PENDING_PAYMENT"
    SOLD = "SOLD"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"
    USED = "USED"


class PaymentMethod(str, Enum):
    """Accepted payment methods."""
    CASH = "CASH"
    TRANSFER = "TRANSFER"
    QR = "QR"
    CARD = "CARD"


class PassengerType(str, Enum):
    """Passenger categories that carry a fare discount."""
    ADULT = "ADULT"
    CHILD = "CHILD"
    STUDENT = "STUDENT"
    SENIOR = "SENIOR"


class CreateTicketRequest(BaseModel):
    """Request schema for converting a hold into a ticket."""

    hold_id: UUID = Field(..., description="Active hold to convert")
    passenger_id: str = Field(..., min_length=1, max_length=128, description="Travelling passenger")
    payment_method: PaymentMethod = Field(..., description="How the fare is paid")
    passenger_type: PassengerType = Field(PassengerType.ADULT, description="Discount category")
    passenger_age: Optional[int] = Field(None, ge=0, le=130, description="Declared age, checked against the category")


class QuickSaleRequest(SegmentRequest):
    """Request schema for a counter sale shortly before departure."""

    trip_id: UUID = Field(..., description="Trip about to depart")
    seat_number: str = Field(..., min_length=1, max_length=10, description="Seat label")
    passenger_id: str = Field(..., min_length=1, max_length=128, description="Travelling passenger")
    payment_method: PaymentMethod = Field(..., description="How the fare is paid")
    passenger_type: PassengerType = Field(PassengerType.ADULT, description="Discount category")
    passenger_age: Optional[int] = Field(None, ge=0, le=130, description="Declared age, checked against the category")
    apply_discount: bool = Field(True, description="Apply the quick sale discount")


class ConfirmPaymentRequest(BaseModel):
    """Request schema for settling a pending ticket."""

    ticket_id: UUID = Field(..., description="Ticket awaiting payment")
    payment_method: PaymentMethod = Field(..., description="Method the payment arrived with")


class CancelTicketRequest(BaseModel):
    """Request schema for cancelling a ticket."""

    ticket_id: UUID = Field(..., description="Ticket to cancel")
    reason: str = Field(..., min_length=1, max_length=500, description="Cancellation reason")


class TicketActionRequest(BaseModel):
    """Request schema for boarding-time ticket actions."""

    ticket_id: UUID = Field(..., description="Ticket to update")


class GetTicketRequest(BaseModel):
    """Request schema for reading a ticket."""

    ticket_id: Optional[UUID] = Field(None, description="Ticket ID")
    code: Optional[str] = Field(None, max_length=32, description="Ticket confirmation code")


class ProcessNoShowsRequest(BaseModel):
    """Request schema for sweeping no-shows on a boarding trip."""

    trip_id: UUID = Field(..., description="Boarding trip")


class Ticket(BaseModel):
    """Ticket response schema."""

    id: UUID = Field(..., description="Unique ticket ID")
    code: str = Field(..., description="Ticket confirmation code")
    trip_id: UUID
    hold_id: Optional[UUID] = None
    seat_number: str
    from_ordinal: int
    to_ordinal: int
    passenger_id: str
    price: int = Field(..., ge=0, description="Fare in minor units")
    passenger_type: PassengerType = PassengerType.ADULT
    discount_amount: int = Field(0, ge=0, description="Discount already taken off the price")
    payment_method: PaymentMethod
    status: TicketStatus
    is_capacity_exception: bool = Field(False, description="Sold beyond nominal capacity")
    refund_amount: Optional[int] = None
    no_show_fee: Optional[int] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}
