"""Tests for the controller worker pool and controller assembly."""

import asyncio

import pytest

from steprun.app import build_controller
from steprun.models import (
    DeliveryStatus,
    PipelineResource,
    PodPhase,
    Reason,
    ResourceBinding,
    ResourceDeclaration,
    ResourceType,
)
from steprun.reconciler.controller import Controller
from steprun.reconciler.queue import ExponentialBackoff, WorkQueue
from steprun.reconciler.reconciler import ReconcileOutcome

KEY = "default/build-1"


async def _eventually(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


class ScriptedReconciler:
    """Returns (or raises) the scripted results in order, then ``ReconcileOutcome()``."""

    def __init__(self, *script):
        self.script = list(script)
        self.calls = []

    async def reconcile(self, key):
        self.calls.append(key)
        if self.script:
            step = self.script.pop(0)
            if isinstance(step, Exception):
                raise step
            return step
        return ReconcileOutcome()


@pytest.fixture
def queue():
    return WorkQueue(ExponentialBackoff(base_delay=0.001, max_delay=0.01))


class TestController:
    @pytest.mark.asyncio
    async def test_reconciles_enqueued_run(self, reconciler, queue, timeouts, runs, pods, settings):
        controller = Controller(reconciler, queue, timeouts, workers=2, settings=settings)
        await controller.run()
        controller.enqueue(KEY)

        await _eventually(lambda: "create" in pods.actions)
        await controller.shutdown()

        assert runs.current("default", "build-1").status.condition.reason is Reason.RUNNING
        assert not controller.running

    @pytest.mark.asyncio
    async def test_error_is_retried_with_backoff(self, queue, timeouts, settings):
        stub = ScriptedReconciler(RuntimeError("store hiccup"))
        controller = Controller(stub, queue, timeouts, workers=1, settings=settings)
        await controller.run()
        controller.enqueue(KEY)

        await _eventually(lambda: len(stub.calls) == 2)
        await controller.shutdown()
        assert queue.failures(KEY) == 0

    @pytest.mark.asyncio
    async def test_invalid_key_dropped(self, queue, timeouts, settings):
        stub = ScriptedReconciler(ValueError("invalid run key"))
        controller = Controller(stub, queue, timeouts, workers=1, settings=settings)
        await controller.run()
        controller.enqueue("bad")

        await _eventually(lambda: len(stub.calls) == 1)
        await asyncio.sleep(0.03)
        await controller.shutdown()
        assert stub.calls == ["bad"]

    @pytest.mark.asyncio
    async def test_requeue_after(self, queue, timeouts, settings):
        stub = ScriptedReconciler(ReconcileOutcome.retry(0.01))
        controller = Controller(stub, queue, timeouts, workers=1, settings=settings)
        await controller.run()
        controller.enqueue(KEY)

        await _eventually(lambda: len(stub.calls) == 2)
        await controller.shutdown()

    @pytest.mark.asyncio
    async def test_timer_expiry_enqueues(self, queue, timeouts, settings):
        stub = ScriptedReconciler()
        controller = Controller(stub, queue, timeouts, workers=1, settings=settings)
        await controller.run()
        timeouts.set_timeout(KEY, 0.01)

        await _eventually(lambda: stub.calls == [KEY])
        await controller.shutdown()

    @pytest.mark.asyncio
    async def test_shutdown_cancels_timers(self, queue, timeouts, settings):
        controller = Controller(ScriptedReconciler(), queue, timeouts, workers=3, settings=settings)
        await controller.run()
        timeouts.set_timeout(KEY, 60)

        await controller.shutdown()

        assert len(timeouts) == 0
        assert queue.shutting_down

    @pytest.mark.asyncio
    async def test_double_start_rejected(self, queue, timeouts, settings):
        controller = Controller(ScriptedReconciler(), queue, timeouts, workers=1, settings=settings)
        await controller.run()
        with pytest.raises(RuntimeError):
            await controller.run()
        await controller.shutdown()

    def test_workers_validated(self, queue, timeouts, settings):
        with pytest.raises(ValueError):
            Controller(ScriptedReconciler(), queue, timeouts, workers=0, settings=settings)


class TestBuildController:
    @pytest.mark.asyncio
    async def test_wired_end_to_end(self, runs, pods, templates, registry, credentials, sink, names, settings):
        controller = build_controller(
            runs=runs,
            pods=pods,
            templates=templates,
            registry=registry,
            credentials=credentials,
            sink=sink,
            names=names,
            settings=settings,
            setup_logging=False,
        )
        await controller.run()
        controller.enqueue(KEY)

        await _eventually(lambda: "create" in pods.actions)
        await controller.shutdown()

        assert ("default", "build-1-pod-00000") in pods.pods

    @pytest.mark.asyncio
    async def test_failed_notification_waits_before_retry(
        self, runs, pods, templates, registry, credentials, sink, names, settings, sample_task
    ):
        target = "http://sink.example/events"
        sample_task.spec.outputs.append(ResourceDeclaration("notify", ResourceType.CLOUD_EVENT))
        runs.current("default", "build-1").spec.outputs = [
            ResourceBinding(
                "notify",
                resource_spec=PipelineResource("sink", ResourceType.CLOUD_EVENT, {"targetURI": target}),
            )
        ]
        sink.failing.add(target)
        controller = build_controller(
            runs=runs,
            pods=pods,
            templates=templates,
            registry=registry,
            credentials=credentials,
            sink=sink,
            names=names,
            settings=settings,
            setup_logging=False,
        )
        await controller.run()
        controller.enqueue(KEY)
        await _eventually(lambda: "create" in pods.actions)

        pods.set_phase("default", "build-1-pod-00000", PodPhase.SUCCEEDED)
        controller.enqueue(KEY)
        await _eventually(lambda: len(sink.sent) == 1)
        await asyncio.sleep(0.3)
        await controller.shutdown()

        assert len(sink.sent) == 1
        (record,) = runs.current("default", "build-1").status.notifications
        assert record.status is DeliveryStatus.UNKNOWN
        assert record.attempts == 1
