"""Deadlines for collaborator calls.

Every call the reconciler makes to an external store (runs, pods,
templates, registry) is bounded so one hung request cannot pin a worker
forever.  A call that exceeds its deadline raises ``TimeoutExpired``,
which the reconciler treats like any other failure of that call.

Example:
    >>> pod = await run_with_timeout_async(
    ...     pods.get(namespace, name),
    ...     30.0,
    ...     operation="pods.get",
    ... )
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable


class TimeoutExpired(TimeoutError):
    """Raised when an operation exceeds its deadline.

    Inherits from built-in TimeoutError for broad exception handling.

    Attributes:
        timeout: The timeout value that was exceeded
        elapsed: How long the operation ran before being interrupted
        operation: Name/description of the operation
    """

    def __init__(
        self,
        timeout: float,
        elapsed: float | None = None,
        operation: str | None = None,
    ):
        self.timeout = timeout
        self.elapsed = elapsed
        self.operation = operation or "operation"

        msg = f"Operation '{self.operation}' timed out after {timeout}s"
        if elapsed is not None:
            msg += f" (ran for {elapsed:.2f}s)"

        super().__init__(msg)


async def run_with_timeout_async(
    coro: Awaitable[Any],
    timeout_seconds: float | None,
    operation: str | None = None,
) -> Any:
    """Await ``coro`` with a time limit.

    ``timeout_seconds=None`` awaits without a limit.

    Raises:
        TimeoutExpired: If execution exceeds timeout
        ValueError: If timeout_seconds is not positive
        Exception: Any exception raised by the coroutine
    """
    if timeout_seconds is None:
        return await coro
    if timeout_seconds <= 0:
        raise ValueError(f"Timeout must be positive, got {timeout_seconds}")

    start = time.monotonic()
    try:
        return await asyncio.wait_for(coro, timeout=timeout_seconds)
    except TimeoutError:
        raise TimeoutExpired(
            timeout=timeout_seconds,
            elapsed=time.monotonic() - start,
            operation=operation,
        ) from None


__all__ = [
    "TimeoutExpired",
    "run_with_timeout_async",
]
