"""Helpers shared by the RPC routers."""

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Optional

from fastapi import Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.authorization import Actor
from ..core.database import get_db
from ..core.dependencies import get_idempotency_key
from ..core.exceptions import ProblemDetailsException
from ..services.idempotency_service import IdempotencyService

logger = logging.getLogger(__name__)

# Define dependencies to avoid B008 linting errors
DB_DEPENDENCY = Depends(get_db)
IDEMPOTENCY_KEY_DEPENDENCY = Depends(get_idempotency_key)


async def handle_idempotent_operation(
    method: str,
    idempotency_key: Optional[str],
    actor: Actor,
    request_body: dict[str, Any],
    operation_func: Callable[[], Awaitable[Any]],
    db: AsyncSession,
    status_code: int = 200,
) -> JSONResponse:
    """
    Run a mutating operation, replaying the stored response when the key was seen before.

    Without an Idempotency-Key the operation simply runs. Domain errors are
    stored too, so a retried request gets the same answer.
    """
    if idempotency_key is None:
        return JSONResponse(status_code=status_code, content=await operation_func())

    replay_store = IdempotencyService(db)

    replayed = await replay_store.lookup(idempotency_key, method, actor.user_id, request_body)
    if replayed is not None:
        media_type = "application/problem+json" if replayed.is_problem else None
        return JSONResponse(status_code=replayed.status_code, content=replayed.body, media_type=media_type)

    try:
        response_body = await operation_func()
    except ProblemDetailsException as e:
        await replay_store.remember(
            idempotency_key, method, actor.user_id, request_body, e.status_code, e.problem_details
        )
        raise

    await replay_store.remember(idempotency_key, method, actor.user_id, request_body, status_code, response_body)
    return JSONResponse(status_code=status_code, content=response_body)
