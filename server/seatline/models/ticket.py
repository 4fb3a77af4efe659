"""Ticket model definition."""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base, utcnow


class TicketStatus(str, Enum):
    """Ticket status enumeration."""
    PENDING_PAYMENT = "PENDING_PAYMENT"
    SOLD = "SOLD"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"
    USED = "USED"


class PaymentMethod(str, Enum):
    """Payment methods; only CARD is settled at sale time."""
    CASH = "CASH"
    TRANSFER = "TRANSFER"
    QR = "QR"
    CARD = "CARD"

    @property
    def is_settled(self) -> bool:
        return self is PaymentMethod.CARD


class PassengerType(str, Enum):
    """Passenger categories that carry a fare discount."""
    ADULT = "ADULT"
    CHILD = "CHILD"
    STUDENT = "STUDENT"
    SENIOR = "SENIOR"


# Statuses that occupy a seat segment
LIVE_TICKET_STATUSES = (TicketStatus.PENDING_PAYMENT, TicketStatus.SOLD)


class Ticket(Base):
    """Ticket for one seat on one segment of a trip."""

    __tablename__ = "tickets"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True, index=True)
    trip_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("trips.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    hold_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("seat_holds.id", ondelete="SET NULL"),
        nullable=True,
        unique=True
    )
    seat_number: Mapped[str] = mapped_column(String(10), nullable=False)
    from_ordinal: Mapped[int] = mapped_column(Integer, nullable=False)
    to_ordinal: Mapped[int] = mapped_column(Integer, nullable=False)
    passenger_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    price: Mapped[int] = mapped_column(Integer, nullable=False)
    passenger_type: Mapped[PassengerType] = mapped_column(
        String(20), nullable=False, default=PassengerType.ADULT
    )
    discount_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payment_method: Mapped[PaymentMethod] = mapped_column(String(20), nullable=False)
    status: Mapped[TicketStatus] = mapped_column(
        String(20),
        nullable=False,
        default=TicketStatus.PENDING_PAYMENT,
        index=True
    )
    is_capacity_exception: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    refund_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    no_show_fee: Mapped[int | None] = mapped_column(Integer, nullable=True)
    boarded_at: Mapped[datetime | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("from_ordinal < to_ordinal", name="ck_ticket_segment_ordered"),
        CheckConstraint("price >= 0", name="ck_ticket_price_non_negative"),
        CheckConstraint("discount_amount >= 0", name="ck_ticket_discount_non_negative"),
        CheckConstraint("length(passenger_id) > 0", name="ck_ticket_passenger_not_empty"),
        Index("ix_tickets_trip_seat_status", "trip_id", "seat_number", "status"),
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<Ticket(id={self.id}, code='{self.code}', trip_id={self.trip_id}, "
            f"seat='{self.seat_number}', segment=[{self.from_ordinal},{self.to_ordinal}), "
            f"status={self.status})>"
        )
