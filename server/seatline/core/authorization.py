"""Role capability table and the single authorization gate in front of the engine."""

import logging
from dataclasses import dataclass
from enum import Enum

from .exceptions import AuthorizationError

logger = logging.getLogger(__name__)


class Role(str, Enum):
    """Roles carried in the bearer token."""
    ADMIN = "ADMIN"
    CLERK = "CLERK"
    DISPATCHER = "DISPATCHER"
    DRIVER = "DRIVER"
    PASSENGER = "PASSENGER"


class Operation(str, Enum):
    """Operations exposed by the reservation engine."""
    ROUTE_MANAGE = "route:manage"
    BUS_MANAGE = "bus:manage"
    TRIP_SCHEDULE = "trip:schedule"
    TRIP_OPERATE = "trip:operate"
    TRIP_CANCEL = "trip:cancel"
    AVAILABILITY_QUERY = "availability:query"
    HOLD_CREATE = "hold:create"
    HOLD_RELEASE = "hold:release"
    HOLD_SWEEP = "hold:sweep"
    TICKET_CREATE = "ticket:create"
    TICKET_QUICK_SALE = "ticket:quick-sale"
    TICKET_VIEW = "ticket:view"
    TICKET_CONFIRM_PAYMENT = "ticket:confirm-payment"
    TICKET_CANCEL = "ticket:cancel"
    TICKET_BOARDING = "ticket:boarding"
    OVERBOOKING_SELL = "overbooking:sell"
    OVERBOOKING_REQUEST = "overbooking:request"
    OVERBOOKING_DECIDE = "overbooking:decide"
    OVERBOOKING_VIEW = "overbooking:view"
    PARCEL_CREATE = "parcel:create"
    PARCEL_DISPATCH = "parcel:dispatch"
    PARCEL_DELIVER = "parcel:deliver"


_ALL_ROLES = frozenset(Role)
_SALES = frozenset({Role.ADMIN, Role.CLERK, Role.PASSENGER})
_STAFF = frozenset({Role.ADMIN, Role.CLERK, Role.DISPATCHER})

CAPABILITIES: dict[Operation, frozenset[Role]] = {
    Operation.ROUTE_MANAGE: frozenset({Role.ADMIN}),
    Operation.BUS_MANAGE: frozenset({Role.ADMIN}),
    Operation.TRIP_SCHEDULE: frozenset({Role.ADMIN, Role.DISPATCHER}),
    Operation.TRIP_OPERATE: frozenset({Role.ADMIN, Role.DISPATCHER, Role.DRIVER}),
    Operation.TRIP_CANCEL: frozenset({Role.ADMIN, Role.DISPATCHER}),
    Operation.AVAILABILITY_QUERY: _ALL_ROLES,
    Operation.HOLD_CREATE: _SALES,
    Operation.HOLD_RELEASE: _SALES,
    Operation.HOLD_SWEEP: frozenset({Role.ADMIN, Role.DISPATCHER}),
    Operation.TICKET_CREATE: _SALES,
    Operation.TICKET_QUICK_SALE: frozenset({Role.ADMIN, Role.CLERK}),
    Operation.TICKET_VIEW: _ALL_ROLES,
    Operation.TICKET_CONFIRM_PAYMENT: _SALES,
    Operation.TICKET_CANCEL: _SALES,
    Operation.TICKET_BOARDING: frozenset({Role.ADMIN, Role.DISPATCHER, Role.DRIVER}),
    Operation.OVERBOOKING_SELL: frozenset({Role.ADMIN, Role.CLERK}),
    Operation.OVERBOOKING_REQUEST: _STAFF,
    Operation.OVERBOOKING_DECIDE: frozenset({Role.ADMIN, Role.DISPATCHER}),
    Operation.OVERBOOKING_VIEW: _STAFF,
    Operation.PARCEL_CREATE: frozenset({Role.ADMIN, Role.CLERK}),
    Operation.PARCEL_DISPATCH: frozenset({Role.ADMIN, Role.CLERK, Role.DISPATCHER, Role.DRIVER}),
    Operation.PARCEL_DELIVER: frozenset({Role.ADMIN, Role.CLERK, Role.DRIVER}),
}

# Roles that may act on holds and tickets owned by someone else
_ON_BEHALF_ROLES = frozenset({Role.ADMIN, Role.CLERK})


@dataclass(frozen=True)
class Actor:
    """Verified caller identity passed explicitly into each request."""

    user_id: str
    role: Role

    def can(self, operation: Operation) -> bool:
        return self.role in CAPABILITIES.get(operation, frozenset())


def authorize(actor: Actor, operation: Operation) -> Actor:
    """
    Check an actor against the capability table.

    Args:
        actor: Verified caller
        operation: Operation being attempted

    Returns:
        The same actor, for use as a dependency result

    Raises:
        AuthorizationError: If the actor's role is not allowed
    """
    if not actor.can(operation):
        logger.warning(
            "Operation denied by capability table",
            extra={"user_id": actor.user_id, "role": actor.role, "operation": operation}
        )
        raise AuthorizationError(
            detail=f"Role {actor.role.value} may not perform {operation.value}",
            required_permissions=sorted(role.value for role in CAPABILITIES.get(operation, ())),
        )
    return actor


def authorize_owner(actor: Actor, owner_id: str, resource: str) -> None:
    """
    Require the actor to own the resource unless their role acts on behalf of others.

    Raises:
        AuthorizationError: If a different passenger tries to touch the resource
    """
    if actor.role in _ON_BEHALF_ROLES or actor.user_id == owner_id:
        return
    logger.warning(
        "Ownership check failed",
        extra={"user_id": actor.user_id, "role": actor.role, "resource": resource}
    )
    raise AuthorizationError(detail=f"Only the owner may act on this {resource}")
