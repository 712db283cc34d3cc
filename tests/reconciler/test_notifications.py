"""Tests for the notification dispatcher.

Covers:
- Records are initialized once, one per target
- Nothing is sent while the run is not terminal
- Each send increments attempts by one; Sent records are never re-sent
- One failing target does not block the others
- Bounded retries end in Failed
"""

import pytest

from steprun.models import (
    Condition,
    ConditionStatus,
    DeliveryStatus,
    NotificationDeliveryRecord,
    Reason,
    Result,
    Run,
    RunStatus,
)
from steprun.protocols import DeliveryResult
from steprun.reconciler.notifications import NotificationDispatcher, build_event
from steprun.testing import RecordingEventSink

A = "http://a.example/events"
B = "http://b.example/events"


def _run(condition=None, targets=()):
    return Run(
        name="build-1",
        namespace="default",
        status=RunStatus(
            condition=condition,
            pod_name="build-1-pod-abcde",
            notifications=[NotificationDeliveryRecord(target=t) for t in targets],
        ),
    )


SUCCEEDED = Condition(ConditionStatus.TRUE, Reason.SUCCEEDED, "All Steps have completed executing")
RUNNING = Condition(ConditionStatus.UNKNOWN, Reason.RUNNING, "Not all Steps in the Task have finished executing")


class TestPrepare:
    def test_initializes_unknown_records(self):
        run = _run()
        assert NotificationDispatcher.prepare(run, [A, B])
        assert [(r.target, r.status, r.attempts) for r in run.status.notifications] == [
            (A, DeliveryStatus.UNKNOWN, 0),
            (B, DeliveryStatus.UNKNOWN, 0),
        ]

    def test_existing_records_kept(self):
        run = _run(targets=[A])
        run.status.notifications[0].attempts = 2
        assert not NotificationDispatcher.prepare(run, [A, B])
        assert len(run.status.notifications) == 1
        assert run.status.notifications[0].attempts == 2

    def test_no_targets(self):
        run = _run()
        assert not NotificationDispatcher.prepare(run, [])
        assert run.status.notifications == []


class TestDispatch:
    @pytest.mark.asyncio
    async def test_not_sent_while_running(self):
        sink = RecordingEventSink()
        run = _run(RUNNING, [A])
        assert not await NotificationDispatcher(sink).dispatch(run)
        assert sink.sent == []
        assert run.status.notifications[0].attempts == 0

    @pytest.mark.asyncio
    async def test_sends_each_target_once(self):
        sink = RecordingEventSink()
        dispatcher = NotificationDispatcher(sink)
        run = _run(SUCCEEDED, [A, B])

        assert await dispatcher.dispatch(run)
        assert sink.targets() == [A, B]
        for record in run.status.notifications:
            assert record.status is DeliveryStatus.SENT
            assert record.attempts == 1
            assert record.message == ""

        assert not await dispatcher.dispatch(run)
        assert sink.targets() == [A, B]
        assert not dispatcher.pending(run)

    @pytest.mark.asyncio
    async def test_failure_does_not_block_others(self):
        sink = RecordingEventSink(failing={A})
        dispatcher = NotificationDispatcher(sink, max_attempts=3)
        run = _run(SUCCEEDED, [A, B])

        await dispatcher.dispatch(run)
        first, second = run.status.notifications
        assert first.status is DeliveryStatus.UNKNOWN
        assert first.attempts == 1
        assert "connection refused" in first.message
        assert second.status is DeliveryStatus.SENT
        assert dispatcher.pending(run)

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        sink = RecordingEventSink(failing={A})
        dispatcher = NotificationDispatcher(sink, max_attempts=2)
        run = _run(SUCCEEDED, [A])

        await dispatcher.dispatch(run)
        await dispatcher.dispatch(run)
        assert not await dispatcher.dispatch(run)
        (record,) = run.status.notifications
        assert record.status is DeliveryStatus.FAILED
        assert record.attempts == 2
        assert sink.targets() == [A, A]

    @pytest.mark.asyncio
    async def test_recovers_on_retry(self):
        sink = RecordingEventSink(failing={A})
        dispatcher = NotificationDispatcher(sink)
        run = _run(SUCCEEDED, [A])
        await dispatcher.dispatch(run)
        sink.failing.clear()
        await dispatcher.dispatch(run)
        (record,) = run.status.notifications
        assert record.status is DeliveryStatus.SENT
        assert record.attempts == 2
        assert record.message == ""

    @pytest.mark.asyncio
    async def test_raising_sink_recorded(self):
        class Broken:
            def send(self, target, event) -> DeliveryResult:
                raise RuntimeError("sink exploded")

        run = _run(SUCCEEDED, [A])
        assert await NotificationDispatcher(Broken()).dispatch(run)
        assert run.status.notifications[0].message == "sink exploded"
        assert run.status.notifications[0].attempts == 1

    def test_max_attempts_validated(self):
        with pytest.raises(ValueError):
            NotificationDispatcher(RecordingEventSink(), max_attempts=0)


class TestBuildEvent:
    def test_envelope(self):
        run = _run(SUCCEEDED)
        run.status.results = [Result(name="img", digest="sha256:1")]
        event = build_event(run)
        assert event["specversion"] == "1.0"
        assert event["type"] == "dev.tekton.event.task.successful.v1"
        assert event["source"].endswith("/namespaces/default/taskruns/build-1")
        task_run = event["data"]["taskRun"]
        assert task_run["condition"]["reason"] == "Succeeded"
        assert task_run["podName"] == "build-1-pod-abcde"
        assert task_run["results"] == [{"name": "img", "digest": "sha256:1"}]

    def test_failed_type(self):
        run = _run(Condition(ConditionStatus.FALSE, Reason.TIMEOUT, "late"))
        assert build_event(run)["type"] == "dev.tekton.event.task.failed.v1"
