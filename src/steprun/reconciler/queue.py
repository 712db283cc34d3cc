"""Work queue feeding reconcile workers.

Semantics follow the usual controller work queue:

- a key is queued at most once, however often it is added;
- a key being processed is never handed to a second worker; adding it
  meanwhile marks it dirty and it is re-queued when the worker calls
  :meth:`WorkQueue.done`;
- failures are retried with per-key exponential backoff until
  :meth:`WorkQueue.forget` resets the count.

Example:
    >>> queue = WorkQueue()
    >>> queue.add("default/build-1")
    >>> key = await queue.get()
    >>> ...  # reconcile
    >>> queue.done(key)
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass

from steprun.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ExponentialBackoff:
    """Exponential backoff with optional jitter.

    Delay = min(base_delay * (multiplier ** attempt), max_delay) + jitter
    """

    base_delay: float = 0.005
    max_delay: float = 1000.0
    multiplier: float = 2.0
    jitter: bool = False
    jitter_range: float = 0.25

    def next_delay(self, attempt: int) -> float:
        """Calculate exponential backoff delay."""
        delay = min(self.base_delay * (self.multiplier ** attempt), self.max_delay)
        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay = max(0.0, delay + random.uniform(-jitter_amount, jitter_amount))
        return delay


class WorkQueue:
    def __init__(self, backoff: ExponentialBackoff | None = None):
        self._backoff = backoff or ExponentialBackoff()
        self._ready: asyncio.Queue[str | None] = asyncio.Queue()
        self._dirty: set[str] = set()
        self._processing: set[str] = set()
        self._failures: dict[str, int] = {}
        self._delayed: set[asyncio.TimerHandle] = set()
        self._shutting_down = False

    def add(self, key: str) -> None:
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._ready.put_nowait(key)

    def add_after(self, key: str, delay: float) -> None:
        """Add ``key`` once ``delay`` seconds have passed."""
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(key)
            return
        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle | None = None

        def fire() -> None:
            self._delayed.discard(handle)
            self.add(key)

        handle = loop.call_later(delay, fire)
        self._delayed.add(handle)

    def add_rate_limited(self, key: str) -> float:
        """Re-add ``key`` after its backoff delay; returns the delay used."""
        attempt = self._failures.get(key, 0)
        self._failures[key] = attempt + 1
        delay = self._backoff.next_delay(attempt)
        self.add_after(key, delay)
        return delay

    def forget(self, key: str) -> None:
        self._failures.pop(key, None)

    def failures(self, key: str) -> int:
        return self._failures.get(key, 0)

    async def get(self) -> str | None:
        """Next key to process, or ``None`` once the queue is shut down."""
        key = await self._ready.get()
        if key is None:
            # Let every other waiting worker see the shutdown too
            self._ready.put_nowait(None)
            return None
        self._dirty.discard(key)
        self._processing.add(key)
        return key

    def done(self, key: str) -> None:
        self._processing.discard(key)
        if key in self._dirty and not self._shutting_down:
            self._ready.put_nowait(key)

    def shutdown(self) -> None:
        self._shutting_down = True
        for handle in self._delayed:
            handle.cancel()
        self._delayed.clear()
        self._ready.put_nowait(None)

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    def __len__(self) -> int:
        return self._ready.qsize()

    def __contains__(self, key: str) -> bool:
        return key in self._dirty


__all__ = ["ExponentialBackoff", "WorkQueue"]
