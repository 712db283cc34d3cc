"""Controller — worker pool draining the run work queue.

ARCHITECTURE
────────────
::

    Controller(reconciler, queue, timeouts, workers=2)
      ├── .enqueue(key)      ─ add a run key (watch events, resyncs)
      ├── .run()             ─ start workers, return once they are running
      └── .shutdown()        ─ stop the queue, cancel timers, await workers

    worker loop:
      key = await queue.get()
        └─ reconciler.reconcile(key)
             ├─ raises             ─► queue.add_rate_limited(key)
             ├─ requeue_after=N    ─► queue.add_after(key, N)
             ├─ requeue            ─► queue.add_rate_limited(key)
             └─ done               ─► queue.forget(key)
      queue.done(key)

Timeout timers feed expired run keys back into the same queue, so a
timed out run is handled by an ordinary reconcile pass.

Example::

    controller = Controller(reconciler, WorkQueue(), timeouts, workers=4)
    await controller.run()
    controller.enqueue("default/build-1")
    ...
    await controller.shutdown()
"""

from __future__ import annotations

import asyncio

from steprun.core.config.settings import StepRunSettings, get_settings
from steprun.core.logging import get_logger
from steprun.reconciler.queue import WorkQueue
from steprun.reconciler.reconciler import Reconciler
from steprun.reconciler.timeout import TimeoutHandler

logger = get_logger(__name__)


class Controller:
    """Runs ``workers`` reconcile loops over one :class:`WorkQueue`.

    The queue guarantees a key is never reconciled by two workers at once.
    """

    def __init__(
        self,
        reconciler: Reconciler,
        queue: WorkQueue,
        timeouts: TimeoutHandler,
        *,
        workers: int | None = None,
        settings: StepRunSettings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._reconciler = reconciler
        self._queue = queue
        self._timeouts = timeouts
        self._workers = workers if workers is not None else settings.workers
        if self._workers < 1:
            raise ValueError(f"workers must be >= 1, got {self._workers}")
        self._tasks: list[asyncio.Task[None]] = []
        timeouts.set_callback(queue.add)

    def enqueue(self, key: str) -> None:
        self._queue.add(key)

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    async def run(self) -> None:
        """Start the worker tasks on the running loop."""
        if self._tasks:
            raise RuntimeError("controller already started")
        for i in range(self._workers):
            self._tasks.append(asyncio.create_task(self._worker(i), name=f"steprun-worker-{i}"))
        logger.info("controller.started", workers=self._workers)

    async def shutdown(self) -> None:
        """Stop taking work and wait for in-flight passes to finish."""
        self._queue.shutdown()
        self._timeouts.cancel_all()
        if self._tasks:
            await asyncio.gather(*self._tasks)
        self._tasks.clear()
        logger.info("controller.stopped")

    async def _worker(self, index: int) -> None:
        while True:
            key = await self._queue.get()
            if key is None:
                return
            try:
                await self._process(key)
            finally:
                self._queue.done(key)

    async def _process(self, key: str) -> None:
        try:
            outcome = await self._reconciler.reconcile(key)
        except ValueError as e:
            # Malformed key, retrying cannot help
            logger.error("reconcile.invalid_key", key=key, error=str(e))
            self._queue.forget(key)
            return
        except Exception as e:
            delay = self._queue.add_rate_limited(key)
            logger.error(
                "reconcile.failed",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
                retry_in=round(delay, 3),
                failures=self._queue.failures(key),
            )
            return

        if outcome.requeue_after is not None:
            self._queue.forget(key)
            self._queue.add_after(key, outcome.requeue_after)
            logger.debug("reconcile.requeue_after", key=key, delay=outcome.requeue_after)
        elif outcome.requeue:
            self._queue.add_rate_limited(key)
        else:
            self._queue.forget(key)


__all__ = ["Controller"]
