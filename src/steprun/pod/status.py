"""Projection of pod state onto run status."""

from __future__ import annotations

from datetime import datetime, timedelta

from steprun.models.pod import Pod, PodPhase
from steprun.models.run import Condition, ConditionStatus, Reason, StepState
from steprun.pod.builder import STEP_PREFIX

MSG_RUNNING = "Not all Steps in the Task have finished executing"
MSG_SUCCEEDED = "All Steps have completed executing"
MSG_FAILED_UNSPECIFIED = "build failed for unspecified reasons."


def format_duration(duration: timedelta) -> str:
    """Render like Go's ``time.Duration.String``: ``10s``, ``1m30s``, ``1h0m0s``, ``1.5s``."""
    micros = (duration.days * 86_400 + duration.seconds) * 1_000_000 + duration.microseconds
    if micros == 0:
        return "0s"
    sign = "-" if micros < 0 else ""
    micros = abs(micros)

    if micros < 1_000:
        return f"{sign}{micros}µs"
    if micros < 1_000_000:
        return f"{sign}{_fraction(micros, 1_000)}ms"

    hours, rest = divmod(micros, 3_600_000_000)
    minutes, rest = divmod(rest, 60_000_000)
    seconds = _fraction(rest, 1_000_000)
    if hours:
        return f"{sign}{hours}h{minutes}m{seconds}s"
    if minutes:
        return f"{sign}{minutes}m{seconds}s"
    return f"{sign}{seconds}s"


def _fraction(value: int, unit: int) -> str:
    whole, frac = divmod(value, unit)
    if not frac:
        return str(whole)
    digits = len(str(unit)) - 1
    return f"{whole}.{frac:0{digits}d}".rstrip("0")


def step_states(pod: Pod) -> list[StepState]:
    states = []
    for status in pod.status.container_statuses:
        if not status.name.startswith(STEP_PREFIX):
            continue
        term = status.terminated
        states.append(StepState(
            name=status.name[len(STEP_PREFIX):],
            container_name=status.name,
            running=status.running,
            waiting_reason=status.waiting_reason,
            exit_code=term.exit_code if term else None,
            reason=term.reason if term else "",
            started_at=term.started_at if term else None,
            finished_at=term.finished_at if term else None,
        ))
    return states


def failure_message(pod: Pod) -> str:
    for status in pod.status.container_statuses:
        term = status.terminated
        if term is not None and term.exit_code != 0:
            image = next((c.image for c in pod.spec.containers if c.name == status.name), "")
            msg = f'"{status.name}" exited with code {term.exit_code}'
            if image:
                msg += f' (image: "{image}")'
            if term.message:
                msg += f": {term.message}"
            return msg
    return pod.status.message or MSG_FAILED_UNSPECIFIED


def condition_for(pod: Pod) -> Condition:
    """Map the pod phase onto the run's Succeeded condition."""
    phase = pod.status.phase
    if phase is PodPhase.SUCCEEDED:
        return Condition(ConditionStatus.TRUE, Reason.SUCCEEDED, MSG_SUCCEEDED)
    if phase is PodPhase.FAILED:
        return Condition(ConditionStatus.FALSE, Reason.FAILED, failure_message(pod))
    return Condition(ConditionStatus.UNKNOWN, Reason.RUNNING, MSG_RUNNING)


def completion_time(pod: Pod, default: datetime) -> datetime:
    finished = [
        s.terminated.finished_at
        for s in pod.status.container_statuses
        if s.terminated is not None and s.terminated.finished_at is not None
    ]
    return max(finished) if finished else default


__all__ = [
    "MSG_RUNNING",
    "MSG_SUCCEEDED",
    "format_duration",
    "step_states",
    "failure_message",
    "condition_for",
    "completion_time",
]
