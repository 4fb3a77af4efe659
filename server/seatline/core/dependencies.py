"""FastAPI dependencies for authentication, authorization, and idempotency."""

from typing import Callable, Optional

import jwt
from fastapi import Depends, Header
from jwt import PyJWTError

from .authorization import Actor, Operation, Role, authorize
from .config import settings
from .exceptions import AuthenticationError, ValidationError


async def get_current_actor(
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> Actor:
    """
    Authentication dependency that validates Bearer tokens.

    Args:
        authorization: Authorization header with Bearer token

    Returns:
        Actor: Verified user id and role from the token

    Raises:
        AuthenticationError: If token is invalid or missing
    """
    if not authorization:
        raise AuthenticationError(detail="Authorization header missing")

    try:
        scheme, token = authorization.split()
    except ValueError:
        raise AuthenticationError(detail="Invalid authorization header format") from None

    if scheme.lower() != "bearer":
        raise AuthenticationError(detail="Invalid authentication scheme")

    try:
        payload = jwt.decode(
            token,
            settings.bearer_token_secret,
            algorithms=["HS256"]
        )
    except PyJWTError as e:
        raise AuthenticationError(detail=f"Token validation failed: {e}") from e

    user_id = payload.get("sub")
    role = payload.get("role")
    if role is None and payload.get("roles"):
        role = payload["roles"][0]
    if user_id is None or role is None:
        raise AuthenticationError(detail="Invalid token payload")

    try:
        return Actor(user_id=str(user_id), role=Role(str(role).upper()))
    except ValueError:
        raise AuthenticationError(detail=f"Unknown role '{role}'") from None


def require(operation: Operation) -> Callable:
    """
    Build a dependency that authenticates the caller and checks the capability table.

    Args:
        operation: Operation the endpoint performs

    Returns:
        Dependency callable resolving to the authorized Actor
    """
    async def dependency(actor: Actor = Depends(get_current_actor)) -> Actor:
        return authorize(actor, operation)

    return dependency


async def get_idempotency_key(
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key")
) -> Optional[str]:
    """
    Extract and validate idempotency key from request headers.

    Args:
        idempotency_key: Idempotency key from header

    Returns:
        str: Validated idempotency key or None if not provided

    Raises:
        ValidationError: If idempotency key format is invalid
    """
    if idempotency_key is None:
        return None

    if len(idempotency_key) < 1 or len(idempotency_key) > 255:
        raise ValidationError(detail="Idempotency key must be between 1 and 255 characters")

    return idempotency_key
