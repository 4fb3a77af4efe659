"""FareRule model definition."""

from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, ForeignKey, Integer, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base


class FareRule(Base):
    """Price for travelling a segment of a route, maintained outside this service."""

    __tablename__ = "fare_rules"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    route_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("routes.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    from_ordinal: Mapped[int] = mapped_column(Integer, nullable=False)
    to_ordinal: Mapped[int] = mapped_column(Integer, nullable=False)
    base_price: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        UniqueConstraint("route_id", "from_ordinal", "to_ordinal", name="uq_fare_rule_segment"),
        CheckConstraint("from_ordinal < to_ordinal", name="ck_fare_rule_segment_ordered"),
        CheckConstraint("base_price >= 0", name="ck_fare_rule_price_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"<FareRule(route_id={self.route_id}, segment=[{self.from_ordinal},{self.to_ordinal}), "
            f"base_price={self.base_price})>"
        )
