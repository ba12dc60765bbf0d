"""Retry for corpus writes that hit dropped or locked database connections."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError

logger = logging.getLogger(__name__)

_ResultT = TypeVar("_ResultT")

# asyncpg and aiosqlite wording for connections worth retrying
TRANSIENT_MARKERS = (
    "connection is closed",
    "connection was closed",
    "server closed the connection unexpectedly",
    "connection reset by peer",
    "database is locked",
)


def is_transient_db_error(exc: BaseException) -> bool:
    """Return True when a corpus write may succeed if simply tried again.

    Integrity errors are never transient: a duplicate keyword row stays a
    duplicate on the next attempt.
    """
    if isinstance(exc, IntegrityError):
        return False
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    if isinstance(exc, (InterfaceError, OperationalError)):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in TRANSIENT_MARKERS)


async def run_with_db_retry(
    operation: Callable[[], Awaitable[_ResultT]],
    *,
    operation_name: str,
    attempts: int = 3,
    base_delay_seconds: float = 0.2,
    log_context: Mapping[str, Any] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> _ResultT:
    """Run ``operation``, waiting ``base_delay_seconds * attempt`` between transient failures."""
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as exc:
            if attempt >= attempts or not is_transient_db_error(exc):
                raise
            logger.warning(
                "Corpus write failed on a transient database error, retrying",
                extra={
                    **(log_context or {}),
                    "operation": operation_name,
                    "attempt": attempt,
                    "max_attempts": attempts,
                    "error": type(exc).__name__,
                },
            )
            await sleep(base_delay_seconds * attempt)
            attempt += 1
