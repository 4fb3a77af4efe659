#!/usr/bin/env python3
"""Setup script for the Seatline API: migrate the schema and seed a demo trip."""

import asyncio
import logging
import sys
from datetime import timedelta
from pathlib import Path

# Add the server directory to the Python path
server_dir = Path(__file__).parent.parent / "server"
sys.path.insert(0, str(server_dir))

from alembic import command
from alembic.config import Config
from seatline.core.database import async_session_factory, utcnow
from seatline.schemas.bus import CreateBusRequest
from seatline.schemas.route import CreateRouteRequest, StopInput
from seatline.schemas.trip import CreateTripRequest
from seatline.services import BusService, RouteService, TripService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

DEMO_ROUTE = "Lima - Huacho - Barranca - Chimbote"
DEMO_STOPS = ["Lima", "Huacho", "Barranca", "Chimbote"]
DEMO_PLATE = "ABC-123"


def setup_database() -> None:
    """Bring the schema up to the latest migration."""
    logger.info("Running database migrations...")
    alembic_cfg = Config(str(server_dir / "db" / "alembic.ini"))
    command.upgrade(alembic_cfg, "head")
    logger.info("Database migrations completed")


async def create_sample_data() -> None:
    """Create a route, a 40-seat bus and a week of daily trips."""
    logger.info("Creating sample data...")

    async with async_session_factory() as db:
        route_service = RouteService(db)
        if await route_service.get_route_by_name(DEMO_ROUTE):
            logger.info("Sample data already exists, skipping...")
            return

        route = await route_service.create_route(
            CreateRouteRequest(
                name=DEMO_ROUTE,
                stops=[StopInput(name=name, ordinal=ordinal) for ordinal, name in enumerate(DEMO_STOPS)],
            )
        )
        bus = await BusService(db).create_bus(
            CreateBusRequest(plate=DEMO_PLATE, seat_numbers=[str(number) for number in range(1, 41)])
        )

        trip_service = TripService(db)
        first_departure = utcnow().replace(hour=8, minute=0, second=0, microsecond=0) + timedelta(days=1)
        for day in range(7):
            departure_at = first_departure + timedelta(days=day)
            await trip_service.create_trip(
                CreateTripRequest(
                    route_id=route.id,
                    bus_id=bus.id,
                    departure_at=departure_at,
                    arrival_eta=departure_at + timedelta(hours=6),
                )
            )

        logger.info("Sample data created successfully!", extra={"route_id": str(route.id), "bus_id": str(bus.id)})


async def main() -> None:
    logger.info("Starting Seatline API setup...")

    # env.py drives its own event loop
    await asyncio.to_thread(setup_database)
    await create_sample_data()

    logger.info("Setup completed successfully!")
    logger.info("You can now start the API server with: cd server && uvicorn seatline.main:app --reload")


if __name__ == "__main__":
    asyncio.run(main())
