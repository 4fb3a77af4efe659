"""SeatHold model definition."""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base, utcnow


class HoldStatus(str, Enum):
    """Hold status enumeration."""
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    RELEASED = "RELEASED"
    CONVERTED = "CONVERTED"


class SeatHold(Base):
    """Time-boxed exclusive reservation of one seat for one segment."""

    __tablename__ = "seat_holds"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    trip_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("trips.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    seat_number: Mapped[str] = mapped_column(String(10), nullable=False)
    from_ordinal: Mapped[int] = mapped_column(Integer, nullable=False)
    to_ordinal: Mapped[int] = mapped_column(Integer, nullable=False)
    holder_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    expires_at: Mapped[datetime] = mapped_column(nullable=False, index=True)
    status: Mapped[HoldStatus] = mapped_column(
        String(20),
        nullable=False,
        default=HoldStatus.ACTIVE,
        index=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("from_ordinal < to_ordinal", name="ck_hold_segment_ordered"),
        CheckConstraint("length(holder_id) > 0", name="ck_hold_holder_not_empty"),
        Index("ix_seat_holds_trip_seat_status", "trip_id", "seat_number", "status"),
    )

    __mapper_args__ = {"version_id_col": version}

    def is_expired_at(self, now: datetime) -> bool:
        return self.expires_at <= now

    def __repr__(self) -> str:
        return (
            f"<SeatHold(id={self.id}, trip_id={self.trip_id}, seat='{self.seat_number}', "
            f"segment=[{self.from_ordinal},{self.to_ordinal}), status={self.status})>"
        )
