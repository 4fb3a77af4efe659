"""Fare lookup and discounts for route segments."""

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.exceptions import ValidationError
from ..models.fare import FareRule
from ..models.ticket import PassengerType

logger = logging.getLogger(__name__)


# Inclusive age bounds per passenger type; None leaves a side open
PASSENGER_AGE_RANGES: dict[PassengerType, tuple[int, int | None]] = {
    PassengerType.CHILD: (3, 12),
    PassengerType.STUDENT: (13, 25),
    PassengerType.ADULT: (18, 64),
    PassengerType.SENIOR: (65, None),
}


@dataclass(frozen=True)
class FareQuote:
    base_price: int
    discount_amount: int

    @property
    def price(self) -> int:
        return self.base_price - self.discount_amount


def passenger_discount_percentage(passenger_type: PassengerType) -> int:
    return {
        PassengerType.ADULT: 0,
        PassengerType.CHILD: settings.child_discount_percentage,
        PassengerType.STUDENT: settings.student_discount_percentage,
        PassengerType.SENIOR: settings.senior_discount_percentage,
    }[passenger_type]


def validate_passenger_age(passenger_type: PassengerType, age: int | None) -> None:
    """
    Check that a declared age fits the passenger type.

    A missing age is accepted; the clerk is trusted to have checked a document.

    Raises:
        ValidationError: If the age is outside the range of the passenger type
    """
    if age is None:
        return
    low, high = PASSENGER_AGE_RANGES[passenger_type]
    if age < low or (high is not None and age > high):
        logger.warning(
            "Passenger age does not match passenger type",
            extra={"passenger_type": passenger_type.value, "passenger_age": age}
        )
        raise ValidationError(
            detail=f"Age {age} is not valid for passenger type {passenger_type.value}",
            violations=[{"path": "passenger_age", "message": f"Not valid for {passenger_type.value}"}],
        )


def apply_discounts(
    base_price: int, passenger_type: PassengerType = PassengerType.ADULT, extra_percentage: int = 0
) -> FareQuote:
    """
    Discount a fare for the passenger type, then by ``extra_percentage`` on what is left.

    Amounts are integer minor units; fractions are rounded in the passenger's favour.
    """
    price = base_price * (100 - passenger_discount_percentage(passenger_type)) // 100
    price = price * (100 - extra_percentage) // 100
    return FareQuote(base_price=base_price, discount_amount=base_price - price)


class FareService:
    """Read-only fare lookup; rules are maintained elsewhere."""

    def __init__(self, db: AsyncSession, default_fare: int | None = None):
        self.db = db
        self.default_fare = settings.default_fare if default_fare is None else default_fare

    async def quote(self, route_id: UUID, from_ordinal: int, to_ordinal: int) -> int:
        """Price of a segment in minor units, falling back to the default fare."""
        stmt = select(FareRule.base_price).where(
            FareRule.route_id == route_id,
            FareRule.from_ordinal == from_ordinal,
            FareRule.to_ordinal == to_ordinal,
        )
        result = await self.db.execute(stmt)
        price = result.scalar_one_or_none()

        if price is None:
            logger.debug(
                "No fare rule for segment, using default fare",
                extra={
                    "route_id": str(route_id),
                    "from_ordinal": from_ordinal,
                    "to_ordinal": to_ordinal,
                    "default_fare": self.default_fare,
                }
            )
            return self.default_fare
        return price

    async def quote_for(
        self,
        route_id: UUID,
        from_ordinal: int,
        to_ordinal: int,
        passenger_type: PassengerType = PassengerType.ADULT,
        extra_percentage: int = 0,
    ) -> FareQuote:
        """Segment fare with the passenger type discount and any extra discount applied."""
        base_price = await self.quote(route_id, from_ordinal, to_ordinal)
        return apply_discounts(base_price, passenger_type, extra_percentage)
