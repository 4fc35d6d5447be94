# geostory/db/retry.py
# Bounded retry with jittered backoff for SQLite lock contention.
# Only busy/locked errors are retried; everything else propagates on the first failure.

from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from geostory.middleware.error_handler import StorageBusyError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_BUSY_ERROR_NAMES = ("SQLITE_BUSY", "SQLITE_LOCKED")
_BUSY_MESSAGES = ("database is locked", "database is busy", "database table is locked")


def is_busy_error(exc: BaseException) -> bool:
    """True when ``exc`` is lock contention: SQLite busy/locked or a pool checkout timeout."""
    if isinstance(exc, PoolTimeoutError):
        return True
    if not isinstance(exc, OperationalError):
        return False
    orig = exc.orig
    error_name = getattr(orig, "sqlite_errorname", None) or ""
    if error_name.startswith(_BUSY_ERROR_NAMES):
        return True
    message = str(orig if orig is not None else exc).lower()
    return any(m in message for m in _BUSY_MESSAGES)


def backoff_delay(attempt: int, base_delay: float, jitter: float) -> float:
    """Delay in seconds before retrying after failed ``attempt`` (1-based)."""
    return base_delay * attempt + random.uniform(0, jitter)


async def run_with_busy_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    base_delay: float,
    jitter: float,
    name: str = "sql",
) -> T:
    """Run ``operation`` up to ``attempts`` times while SQLite reports busy.

    Raises StorageBusyError once the attempts are exhausted, or at once when
    no pooled connection frees up within the pool timeout.
    """
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except PoolTimeoutError as e:
            logger.error(f"[{name}] timed out waiting for a pooled connection")
            raise StorageBusyError(details={"operation": name, "attempts": attempt}) from e
        except OperationalError as e:
            if not is_busy_error(e):
                raise
            if attempt == attempts:
                logger.error(f"[{name}] SQLITE_BUSY after {attempts} attempts, giving up")
                raise StorageBusyError(details={"operation": name, "attempts": attempts}) from e

            delay = backoff_delay(attempt, base_delay, jitter)
            logger.warning(
                f"[{name}] SQLITE_BUSY on attempt {attempt}/{attempts}, retrying in {delay * 1000:.0f}ms"
            )
            await asyncio.sleep(delay)

    raise RuntimeError("Retry loop exited without result")
