"""Background workers for the reservation engine."""

from .hold_expiry_worker import HoldExpiryWorker
from .no_show_worker import NoShowWorker
from .overbooking_expiry_worker import OverbookingExpiryWorker
from .trip_status_worker import TripStatusWorker

__all__ = ["HoldExpiryWorker", "NoShowWorker", "OverbookingExpiryWorker", "TripStatusWorker"]
