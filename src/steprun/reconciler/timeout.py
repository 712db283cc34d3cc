"""Per-run timeout timers.

One timer per run key, scheduled on the controller's event loop.  When a
timer fires it calls the bound callback with the run key, which in the
controller re-enqueues the run; the reconcile pass that follows sees the
elapsed time and fails the run with ``TaskRunTimeout``.

Timers never touch run state themselves.  A timer firing while a terminal
pass for the same run is in flight is harmless: the queue serializes the
re-enqueued pass after it and that pass finds a terminal run.

Each arm gets a fresh token; a handle only fires if its token is still
the current one for the key, so re-arming never double fires.

Example:
    >>> handler = TimeoutHandler(callback=queue.add)
    >>> handler.set_timeout("default/build-1", 600)
    >>> handler.cancel("default/build-1")
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Callable

from steprun.core.logging import get_logger
from steprun.models.run import Run

logger = get_logger(__name__)

ExpireCallback = Callable[[str], Any]


@dataclass
class _Armed:
    handle: asyncio.TimerHandle
    token: object
    deadline: float


class TimeoutHandler:
    """Independent cancellable countdowns keyed by run."""

    def __init__(self, callback: ExpireCallback | None = None):
        self._callback = callback
        self._timers: dict[str, _Armed] = {}
        self._callbacks: set[asyncio.Future[Any]] = set()

    def set_callback(self, callback: ExpireCallback | None) -> None:
        """Rebind what firing does.  ``None`` makes firing a no-op."""
        self._callback = callback

    def set_timeout(
        self,
        key: str,
        seconds: float,
        on_expire: ExpireCallback | None = None,
    ) -> None:
        """Arm (or re-arm) the timer for ``key``.

        ``on_expire`` overrides the bound callback for this arm only.
        Must be called from the event loop thread.
        """
        loop = asyncio.get_running_loop()
        self.cancel(key)
        token = object()
        delay = max(0.0, seconds)
        handle = loop.call_later(delay, self._fire, key, token, on_expire)
        self._timers[key] = _Armed(handle=handle, token=token, deadline=loop.time() + delay)
        logger.debug("timeout.armed", run=key, seconds=round(delay, 3))

    def wait_run(self, run: Run, default: timedelta, now: datetime | None = None) -> bool:
        """Arm for the time ``run`` has left.  Returns False when it has no deadline."""
        timeout = run.spec.timeout if run.spec.timeout is not None else default
        if timeout <= timedelta(0) or run.status.start_time is None:
            return False
        now = now or datetime.now(UTC)
        remaining = (run.status.start_time + timeout - now).total_seconds()
        self.set_timeout(run.key, remaining)
        return True

    def cancel(self, key: str) -> bool:
        armed = self._timers.pop(key, None)
        if armed is None:
            return False
        armed.handle.cancel()
        return True

    def cancel_all(self) -> None:
        for armed in self._timers.values():
            armed.handle.cancel()
        self._timers.clear()
        for task in list(self._callbacks):
            task.cancel()

    def is_armed(self, key: str) -> bool:
        return key in self._timers

    def __len__(self) -> int:
        return len(self._timers)

    @property
    def pending_callbacks(self) -> int:
        """Async expiry callbacks still running."""
        return len(self._callbacks)

    def _fire(self, key: str, token: object, on_expire: ExpireCallback | None) -> None:
        armed = self._timers.get(key)
        if armed is None or armed.token is not token:
            return
        del self._timers[key]

        callback = on_expire or self._callback
        logger.info("timeout.fired", run=key)
        if callback is None:
            return
        result = callback(key)
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._callbacks.add(task)
            task.add_done_callback(self._callback_done)

    def _callback_done(self, task: asyncio.Future[Any]) -> None:
        self._callbacks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("timeout.callback_failed", error=str(error), error_type=type(error).__name__)


__all__ = ["TimeoutHandler", "ExpireCallback"]
