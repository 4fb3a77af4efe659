"""Models module exporting all database models."""

from .bus import Bus, Seat
from .fare import FareRule
from .idempotency import IdempotencyRecord
from .overbooking import OverbookingRequest, OverbookingStatus
from .parcel import Parcel, ParcelStatus
from .route import Route, Stop
from .seat_hold import HoldStatus, SeatHold
from .ticket import LIVE_TICKET_STATUSES, PassengerType, PaymentMethod, Ticket, TicketStatus
from .trip import Trip, TripSeat, TripStatus

__all__ = [
    # Topology and inventory
    "Route",
    "Stop",
    "Bus",
    "Seat",
    "FareRule",

    # Trips
    "Trip",
    "TripSeat",
    "TripStatus",

    # Reservations
    "SeatHold",
    "HoldStatus",
    "Ticket",
    "TicketStatus",
    "PaymentMethod",
    "PassengerType",
    "LIVE_TICKET_STATUSES",

    # Overbooking
    "OverbookingRequest",
    "OverbookingStatus",

    # Parcels
    "Parcel",
    "ParcelStatus",

    # Idempotency entity
    "IdempotencyRecord",
]
