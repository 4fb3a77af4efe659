"""Service layer package."""

from .availability_service import AvailabilityService
from .bus_service import BusService
from .fare_service import FareService
from .idempotency_service import IdempotencyService
from .overbooking_service import OverbookingPolicy, OverbookingService
from .parcel_service import ParcelService
from .route_service import RouteService
from .seat_hold_service import SeatHoldService
from .ticket_service import TicketService
from .trip_service import TripService

__all__ = [
    "AvailabilityService",
    "BusService",
    "FareService",
    "IdempotencyService",
    "OverbookingPolicy",
    "OverbookingService",
    "ParcelService",
    "RouteService",
    "SeatHoldService",
    "TicketService",
    "TripService",
]
