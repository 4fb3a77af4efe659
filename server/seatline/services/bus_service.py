"""Seat inventory service."""

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ConflictError, UnknownBusError
from ..models.bus import Bus, Seat
from ..schemas.bus import CreateBusRequest

logger = logging.getLogger(__name__)


class BusService:
    """Service for buses and their seat maps."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_bus(self, request: CreateBusRequest) -> Bus:
        """
        Register a bus with its seats. Capacity is the number of seats.

        Raises:
            ConflictError: If the plate is already registered
        """
        existing = await self.get_bus_by_plate(request.plate)
        if existing:
            logger.warning(
                "Bus creation failed - plate already registered",
                extra={"plate": request.plate, "existing_bus_id": str(existing.id)}
            )
            raise ConflictError(
                detail=f"Bus with plate '{request.plate}' already exists",
                conflicting_resource={"id": str(existing.id), "plate": existing.plate}
            )

        bus = Bus(
            plate=request.plate,
            capacity=len(request.seat_numbers),
            seats=[Seat(seat_number=number) for number in request.seat_numbers],
        )

        try:
            self.db.add(bus)
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.error(
                "Bus creation failed - database constraint violation",
                extra={"plate": request.plate, "error": str(e)}
            )
            raise ConflictError(detail=f"Bus with plate '{request.plate}' already exists") from e

        logger.info(
            "Bus created successfully",
            extra={"bus_id": str(bus.id), "plate": bus.plate, "capacity": bus.capacity}
        )
        return bus

    async def get_bus_by_id(self, bus_id: UUID) -> Bus | None:
        stmt = select(Bus).where(Bus.id == bus_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_bus_by_id_or_raise(self, bus_id: UUID) -> Bus:
        bus = await self.get_bus_by_id(bus_id)
        if not bus:
            raise UnknownBusError(str(bus_id))
        return bus

    async def get_bus_by_plate(self, plate: str) -> Bus | None:
        stmt = select(Bus).where(Bus.plate == plate)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def seats_of(self, bus_id: UUID) -> set[str]:
        """
        Seat numbers installed on a bus.

        Raises:
            UnknownBusError: If the bus does not exist
        """
        bus = await self.get_bus_by_id_or_raise(bus_id)
        return {seat.seat_number for seat in bus.seats}
