"""Trip and TripSeat model definitions."""

from datetime import datetime, timedelta
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base, utcnow


class TripStatus(str, Enum):
    """Trip status enumeration."""
    SCHEDULED = "SCHEDULED"
    BOARDING = "BOARDING"
    DEPARTED = "DEPARTED"
    ARRIVED = "ARRIVED"
    CANCELLED = "CANCELLED"


class Trip(Base):
    """Trip entity: one run of a bus along a route."""

    __tablename__ = "trips"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    route_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("routes.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    bus_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("buses.id", ondelete="RESTRICT"),
        nullable=True,
        index=True
    )

    departure_at: Mapped[datetime] = mapped_column(nullable=False, index=True)
    arrival_eta: Mapped[datetime | None] = mapped_column(nullable=True)
    status: Mapped[TripStatus] = mapped_column(
        String(20),
        nullable=False,
        default=TripStatus.SCHEDULED,
        index=True
    )
    boarding_closed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(
            "arrival_eta IS NULL OR arrival_eta > departure_at",
            name="ck_trip_arrival_after_departure"
        ),
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def accepts_reservations(self) -> bool:
        """New holds and tickets are accepted until boarding closes."""
        if self.status == TripStatus.SCHEDULED:
            return True
        return self.status == TripStatus.BOARDING and self.boarding_closed_at is None

    def __repr__(self) -> str:
        return (
            f"<Trip(id={self.id}, route_id={self.route_id}, bus_id={self.bus_id}, "
            f"status={self.status}, departure_at={self.departure_at})>"
        )


class TripSeat(Base):
    """
    Contention record for one seat of one trip.

    Every write to holds or tickets of a seat bumps this row's version, so two
    writers that validated the same snapshot cannot both commit.
    """

    __tablename__ = "trip_seats"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    trip_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("trips.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    seat_number: Mapped[str] = mapped_column(String(10), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    last_changed_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("trip_id", "seat_number", name="uq_trip_seat"),
    )

    __mapper_args__ = {"version_id_col": version}

    def touch(self, now: datetime) -> None:
        """Mark the seat as changed so the version check runs at flush."""
        # The value must differ or the ORM skips the UPDATE
        floor = self.last_changed_at + timedelta(microseconds=1)
        self.last_changed_at = now if now >= floor else floor

    def __repr__(self) -> str:
        return f"<TripSeat(trip_id={self.trip_id}, seat_number='{self.seat_number}', version={self.version})>"
