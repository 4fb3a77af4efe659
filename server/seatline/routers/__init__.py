"""FastAPI routers package."""

from .availability import router as availability_router
from .bus import router as bus_router
from .health import router as health_router
from .hold import router as hold_router
from .overbooking import router as overbooking_router
from .parcel import router as parcel_router
from .route import router as route_router
from .ticket import router as ticket_router
from .trip import router as trip_router

__all__ = [
    "availability_router",
    "bus_router",
    "health_router",
    "hold_router",
    "overbooking_router",
    "parcel_router",
    "route_router",
    "ticket_router",
    "trip_router",
]
