"""Replay store for mutating requests sent with an Idempotency-Key header."""

import hashlib
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.database import utcnow
from ..core.exceptions import ProblemDetailsException
from ..models.idempotency import IdempotencyRecord

logger = logging.getLogger(__name__)


class IdempotencyMismatchError(ProblemDetailsException):
    """The key was already spent on the same operation with another body."""

    def __init__(self, idempotency_key: str, method: str):
        super().__init__(
            status_code=422,
            title="Idempotency Key Mismatch",
            detail=f"Idempotency key '{idempotency_key}' was already used for '{method}' with a different body",
            type_uri="https://example.com/problems/idempotency-key-mismatch",
            extensions={
                "code": "IDEMPOTENCY_KEY_MISMATCH",
                "retryable": False,
                "idempotency_key": idempotency_key,
                "method": method,
            },
        )


@dataclass(frozen=True)
class ReplayedResponse:
    status_code: int
    body: Any

    @property
    def is_problem(self) -> bool:
        return self.status_code >= 400


def fingerprint(request_body: dict[str, Any]) -> str:
    """SHA-256 over the canonical JSON form of a request body."""
    canonical = json.dumps(request_body, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class IdempotencyService:
    """
    Stores the first answer given to ``(key, operation, caller)`` and replays it.

    Keys are scoped to the caller, so two passengers reusing the same key never
    see each other's holds or tickets. Records live for
    ``IDEMPOTENCY_TTL_SECONDS`` and are purged by the hold expiry sweep.
    """

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.clock = clock

    async def lookup(
        self, idempotency_key: str, method: str, actor_id: str, request_body: dict[str, Any]
    ) -> ReplayedResponse | None:
        """
        Find the stored answer for a key.

        Raises:
            IdempotencyMismatchError: The key was used for this operation with another body
        """
        result = await self.db.execute(
            select(IdempotencyRecord).where(
                IdempotencyRecord.idempotency_key == idempotency_key,
                IdempotencyRecord.method == method,
                IdempotencyRecord.actor_id == actor_id,
                IdempotencyRecord.expires_at > self.clock(),
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            return None

        if record.request_body_hash != fingerprint(request_body):
            logger.warning(
                "Idempotency key reused with a different body",
                extra={"idempotency_key": idempotency_key, "method": method, "actor_id": actor_id},
            )
            raise IdempotencyMismatchError(idempotency_key, method)

        logger.info(
            "Replaying stored response",
            extra={
                "idempotency_key": idempotency_key,
                "method": method,
                "status_code": record.response_status_code,
            },
        )
        return ReplayedResponse(record.response_status_code, json.loads(record.response_body))

    async def remember(
        self,
        idempotency_key: str,
        method: str,
        actor_id: str,
        request_body: dict[str, Any],
        status_code: int,
        response_body: Any,
    ) -> None:
        """Persist the answer for a key; the first writer wins a concurrent race."""
        now = self.clock()
        self.db.add(
            IdempotencyRecord(
                idempotency_key=idempotency_key,
                method=method,
                actor_id=actor_id,
                request_body_hash=fingerprint(request_body),
                response_status_code=status_code,
                response_body=json.dumps(response_body, sort_keys=True, separators=(",", ":")),
                created_at=now,
                expires_at=now + timedelta(seconds=settings.idempotency_ttl_seconds),
            )
        )
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.info(
                "Response for idempotency key already stored",
                extra={"idempotency_key": idempotency_key, "method": method},
            )

    async def purge_expired(self) -> int:
        """Delete records past their TTL and return how many went."""
        result = await self.db.execute(
            delete(IdempotencyRecord).where(IdempotencyRecord.expires_at <= self.clock())
        )
        await self.db.commit()
        if result.rowcount:
            logger.info("Purged expired idempotency records", extra={"deleted_count": result.rowcount})
        return result.rowcount
