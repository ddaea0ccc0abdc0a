"""Bounded timeout + single retry for database I/O.

Profile loads and the match upsert are the only I/O in a matching pass.
Each is retried once on a transient failure before the error reaches the
caller. Loads run under `asyncio.wait_for`; the upsert bounds each pair
inside the store instead.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(exc: BaseException) -> bool:
    """Return True for failures worth one more attempt: timeouts and dropped connections."""
    if isinstance(exc, (TimeoutError, OperationalError, InterfaceError)):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    timeout: float | None,
    retries: int = 1,
    label: str = "db operation",
    on_retry: Callable[[], Awaitable[None]] | None = None,
) -> T:
    """Run `operation` with a timeout, retrying transient failures.

    Args:
        operation: Zero-arg factory returning a fresh awaitable per attempt.
        timeout: Seconds allowed per attempt; None when the operation bounds
            its own statements.
        retries: Extra attempts after the first transient failure.
        label: Name used in log lines.
        on_retry: Awaited before each retry, e.g. `session.rollback`.

    Raises:
        The last exception once retries are exhausted or the failure is not transient.
    """
    attempt = 0
    while True:
        try:
            return await asyncio.wait_for(operation(), timeout=timeout)
        except Exception as exc:
            if attempt >= retries or not is_transient(exc):
                raise
            attempt += 1
            logger.warning("%s failed (%s: %s), retrying (%d/%d)", label, type(exc).__name__, exc, attempt, retries)
            if on_retry is not None:
                await on_retry()
