"""Unit tests for the role capability table and token parsing."""

import jwt
import pytest

from seatline.core.authorization import CAPABILITIES, Actor, Operation, Role, authorize, authorize_owner
from seatline.core.config import settings
from seatline.core.dependencies import get_current_actor, get_idempotency_key
from seatline.core.exceptions import AuthenticationError, AuthorizationError, ValidationError


def test_every_operation_has_capabilities():
    assert set(CAPABILITIES) == set(Operation)
    assert all(Role.ADMIN in roles for roles in CAPABILITIES.values())


@pytest.mark.parametrize(
    ("role", "operation", "allowed"),
    [
        (Role.PASSENGER, Operation.HOLD_CREATE, True),
        (Role.PASSENGER, Operation.TRIP_CANCEL, False),
        (Role.PASSENGER, Operation.OVERBOOKING_DECIDE, False),
        (Role.CLERK, Operation.OVERBOOKING_SELL, True),
        (Role.CLERK, Operation.OVERBOOKING_DECIDE, False),
        (Role.DISPATCHER, Operation.OVERBOOKING_DECIDE, True),
        (Role.DRIVER, Operation.TICKET_BOARDING, True),
        (Role.DRIVER, Operation.PARCEL_DELIVER, True),
        (Role.DRIVER, Operation.TICKET_CREATE, False),
    ],
)
def test_capability_table(role, operation, allowed):
    actor = Actor(user_id="user-1", role=role)

    if allowed:
        assert authorize(actor, operation) is actor
    else:
        with pytest.raises(AuthorizationError):
            authorize(actor, operation)


def test_authorize_owner():
    authorize_owner(Actor(user_id="passenger-1", role=Role.PASSENGER), "passenger-1", "ticket")
    authorize_owner(Actor(user_id="clerk-1", role=Role.CLERK), "passenger-1", "ticket")

    with pytest.raises(AuthorizationError):
        authorize_owner(Actor(user_id="passenger-2", role=Role.PASSENGER), "passenger-1", "ticket")

    with pytest.raises(AuthorizationError):
        authorize_owner(Actor(user_id="driver-1", role=Role.DRIVER), "passenger-1", "ticket")


@pytest.mark.asyncio
async def test_get_current_actor(token_for):
    actor = await get_current_actor(f"Bearer {token_for('clerk-7', 'clerk')}")

    assert actor == Actor(user_id="clerk-7", role=Role.CLERK)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "header",
    [
        None,
        "Bearer",
        "Basic abc",
        "Bearer not-a-jwt",
        f"Bearer {jwt.encode({'sub': 'x', 'role': 'ADMIN'}, 'wrong-secret', algorithm='HS256')}",
        f"Bearer {jwt.encode({'sub': 'x'}, settings.bearer_token_secret, algorithm='HS256')}",
        f"Bearer {jwt.encode({'sub': 'x', 'role': 'PILOT'}, settings.bearer_token_secret, algorithm='HS256')}",
    ],
)
async def test_get_current_actor_rejects(header):
    with pytest.raises(AuthenticationError):
        await get_current_actor(header)


@pytest.mark.asyncio
async def test_idempotency_key_length():
    assert await get_idempotency_key(None) is None
    assert await get_idempotency_key("key-1") == "key-1"

    with pytest.raises(ValidationError):
        await get_idempotency_key("k" * 256)
