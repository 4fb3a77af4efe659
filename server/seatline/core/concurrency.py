"""Optimistic write helper with bounded retry on lost compare-and-swap."""

import logging
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from typing import TypeVar

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from .config import settings
from .observability import metrics_collector

logger = logging.getLogger(__name__)

T = TypeVar("T")


@contextmanager
def watch_writes(db: AsyncSession) -> Iterator[Callable[[], bool]]:
    """
    Yield a check telling whether the session wrote anything inside the block.

    Autoflushed writes leave ``new``/``dirty``/``deleted`` empty while already
    sitting in the open transaction, so flushes are counted as well.
    """
    flushes = 0

    def after_flush(session, flush_context) -> None:
        nonlocal flushes
        flushes += 1

    event.listen(db.sync_session, "after_flush", after_flush)
    try:
        yield lambda: bool(flushes or db.new or db.dirty or db.deleted)
    finally:
        event.remove(db.sync_session, "after_flush", after_flush)


async def run_atomic(
    db: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    on_exhausted: Callable[[], Exception],
    name: str,
    attempts: int | None = None,
) -> T:
    """
    Run ``operation`` and commit it as one unit, retrying lost version checks.

    ``operation`` must re-read every row it validates, since each attempt starts
    from a rolled back session. Versioned rows (trip seats, holds, tickets, ...)
    raise StaleDataError at flush time when another writer committed first.

    Args:
        db: Database session
        operation: Coroutine factory that validates and stages the writes
        on_exhausted: Builds the error raised after the last failed attempt
        name: Operation name for logs and metrics
        attempts: Override for ``settings.conflict_retry_attempts``

    Returns:
        Whatever ``operation`` returned on the committed attempt

    Raises:
        Exception: The error built by ``on_exhausted`` once retries run out, or
            any error raised by ``operation`` itself
    """
    max_attempts = attempts or settings.conflict_retry_attempts

    for attempt in range(1, max_attempts + 1):
        with watch_writes(db) as wrote:
            try:
                result = await operation()
                await db.commit()
                return result
            except StaleDataError:
                await db.rollback()
                metrics_collector.record_cas_retry(name)
                logger.warning(
                    "Concurrent update detected, retrying",
                    extra={"operation": name, "attempt": attempt, "max_attempts": max_attempts}
                )
            except Exception:
                # Validation failures before any write keep loaded rows usable
                if wrote() or not db.is_active:
                    await db.rollback()
                raise

    logger.error(
        "Retries exhausted for atomic operation",
        extra={"operation": name, "attempts": max_attempts}
    )
    raise on_exhausted()
