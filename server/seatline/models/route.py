"""Route and Stop model definitions."""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.database import Base, utcnow


class Route(Base):
    """Route entity: an ordered sequence of stops served by trips."""

    __tablename__ = "routes"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    origin: Mapped[str] = mapped_column(String(255), nullable=False)
    destination: Mapped[str] = mapped_column(String(255), nullable=False)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("length(name) > 0", name="ck_route_name_not_empty"),
    )

    # Stops are always needed together with the route, load them eagerly
    stops: Mapped[list["Stop"]] = relationship(
        "Stop",
        back_populates="route",
        cascade="all, delete-orphan",
        order_by="Stop.ordinal",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Route(id={self.id}, name='{self.name}', stops={len(self.stops)})>"


class Stop(Base):
    """Stop on a route, positioned by its ordinal."""

    __tablename__ = "stops"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    route_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("routes.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    ordinal: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("route_id", "ordinal", name="uq_stop_route_ordinal"),
        CheckConstraint("ordinal >= 0", name="ck_stop_ordinal_non_negative"),
    )

    route: Mapped["Route"] = relationship("Route", back_populates="stops")

    def __repr__(self) -> str:
        return f"<Stop(id={self.id}, name='{self.name}', ordinal={self.ordinal})>"
