"""Bus and Seat model definitions."""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.database import Base, utcnow


class Bus(Base):
    """Bus entity; capacity equals the number of installed seats."""

    __tablename__ = "buses"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    plate: Mapped[str] = mapped_column(String(32), nullable=False, unique=True, index=True)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("capacity > 0", name="ck_bus_capacity_positive"),
    )

    seats: Mapped[list["Seat"]] = relationship(
        "Seat",
        back_populates="bus",
        cascade="all, delete-orphan",
        order_by="Seat.seat_number",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Bus(id={self.id}, plate='{self.plate}', capacity={self.capacity})>"


class Seat(Base):
    """Physical seat of a bus."""

    __tablename__ = "seats"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    bus_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("buses.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    seat_number: Mapped[str] = mapped_column(String(10), nullable=False)

    __table_args__ = (
        UniqueConstraint("bus_id", "seat_number", name="uq_seat_bus_number"),
        CheckConstraint("length(seat_number) > 0", name="ck_seat_number_not_empty"),
    )

    bus: Mapped["Bus"] = relationship("Bus", back_populates="seats")

    def __repr__(self) -> str:
        return f"<Seat(bus_id={self.bus_id}, seat_number='{self.seat_number}')>"
