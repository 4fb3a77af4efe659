"""Parcel model definition."""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base, utcnow


class ParcelStatus(str, Enum):
    """Parcel status enumeration."""
    CREATED = "CREATED"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"


class Parcel(Base):
    """Parcel shipped on a trip and released only against its delivery OTP."""

    __tablename__ = "parcels"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    code: Mapped[str] = mapped_column(String(32), nullable=False, unique=True, index=True)
    trip_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("trips.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

    sender_name: Mapped[str] = mapped_column(String(255), nullable=False)
    sender_phone: Mapped[str] = mapped_column(String(32), nullable=False)
    receiver_name: Mapped[str] = mapped_column(String(255), nullable=False)
    receiver_phone: Mapped[str] = mapped_column(String(32), nullable=False)
    price: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[ParcelStatus] = mapped_column(
        String(20),
        nullable=False,
        default=ParcelStatus.CREATED,
        index=True
    )
    delivery_otp: Mapped[str] = mapped_column(String(6), nullable=False)
    proof_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("length(delivery_otp) = 6", name="ck_parcel_otp_length"),
        CheckConstraint("price >= 0", name="ck_parcel_price_non_negative"),
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        # OTP is deliberately left out of the repr
        return f"<Parcel(id={self.id}, code='{self.code}', status={self.status})>"
