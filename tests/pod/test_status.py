"""Tests for pod state projection."""

from datetime import UTC, datetime, timedelta

import pytest

from steprun.models import (
    Container,
    ContainerStatus,
    ContainerTerminated,
    ConditionStatus,
    ObjectMeta,
    Pod,
    PodPhase,
    PodSpec,
    PodStatus,
    Reason,
)
from steprun.pod.status import (
    MSG_RUNNING,
    MSG_SUCCEEDED,
    completion_time,
    condition_for,
    failure_message,
    format_duration,
    step_states,
)

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def _pod(phase, statuses=(), containers=(), message=""):
    return Pod(
        metadata=ObjectMeta(name="p", namespace="default"),
        spec=PodSpec(containers=list(containers)),
        status=PodStatus(phase=phase, message=message, container_statuses=list(statuses)),
    )


class TestFormatDuration:
    @pytest.mark.parametrize(
        "duration, expected",
        [
            (timedelta(0), "0s"),
            (timedelta(seconds=10), "10s"),
            (timedelta(seconds=90), "1m30s"),
            (timedelta(hours=1), "1h0m0s"),
            (timedelta(hours=25, seconds=1), "25h0m1s"),
            (timedelta(seconds=1.5), "1.5s"),
            (timedelta(milliseconds=250), "250ms"),
            (timedelta(microseconds=7), "7µs"),
            (timedelta(seconds=-10), "-10s"),
        ],
    )
    def test_go_format(self, duration, expected):
        assert format_duration(duration) == expected


class TestConditionFor:
    @pytest.mark.parametrize("phase", [PodPhase.PENDING, PodPhase.RUNNING])
    def test_in_progress(self, phase):
        condition = condition_for(_pod(phase))
        assert condition.status is ConditionStatus.UNKNOWN
        assert condition.reason is Reason.RUNNING
        assert condition.message == MSG_RUNNING

    def test_succeeded(self):
        condition = condition_for(_pod(PodPhase.SUCCEEDED))
        assert condition.status is ConditionStatus.TRUE
        assert condition.reason is Reason.SUCCEEDED
        assert condition.message == MSG_SUCCEEDED

    def test_failed_names_container(self):
        pod = _pod(
            PodPhase.FAILED,
            statuses=[
                ContainerStatus("step-a", terminated=ContainerTerminated(exit_code=0)),
                ContainerStatus("step-b", terminated=ContainerTerminated(exit_code=2, message="boom")),
            ],
            containers=[Container(name="step-b", image="busybox")],
        )
        condition = condition_for(pod)
        assert condition.status is ConditionStatus.FALSE
        assert condition.reason is Reason.FAILED
        assert condition.message == '"step-b" exited with code 2 (image: "busybox"): boom'

    def test_failed_without_detail(self):
        assert failure_message(_pod(PodPhase.FAILED, message="Evicted")) == "Evicted"


class TestStepStates:
    def test_only_steps(self):
        pod = _pod(
            PodPhase.RUNNING,
            statuses=[
                ContainerStatus("step-compile", terminated=ContainerTerminated(exit_code=0, finished_at=T0)),
                ContainerStatus("step-test", running=True),
                ContainerStatus("sidecar", running=True),
            ],
        )
        states = step_states(pod)
        assert [s.name for s in states] == ["compile", "test"]
        assert states[0].exit_code == 0
        assert states[1].running

    def test_completion_time(self):
        later = T0 + timedelta(seconds=5)
        pod = _pod(
            PodPhase.SUCCEEDED,
            statuses=[
                ContainerStatus("step-a", terminated=ContainerTerminated(exit_code=0, finished_at=T0)),
                ContainerStatus("step-b", terminated=ContainerTerminated(exit_code=0, finished_at=later)),
            ],
        )
        assert completion_time(pod, default=T0 - timedelta(days=1)) == later
        assert completion_time(_pod(PodPhase.SUCCEEDED), default=T0) == T0
