"""Run data model.

A run is one request to execute a task template to completion.  Its
status is owned by the reconciler; everything else is user input.

Condition lifecycle::

    (none) ──► Unknown ──► True   (Succeeded)
                  │
                  └──────► False  (Failed, FailedResolution, TaskRunTimeout, ...)

Once the condition is True or False it never changes again.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from steprun.models.task import ParamValue, PipelineResource, TaskKind, TaskSpec

SUCCEEDED = "Succeeded"
CANCEL_REQUESTED = "TaskRunCancelled"


def _utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


class ConditionStatus(str, Enum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class Reason(str, Enum):
    """Closed set of condition reasons.  Each reconcile transition emits one."""

    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    FAILED_RESOLUTION = "FailedResolution"
    VALIDATION_FAILED = "TaskRunValidationFailed"
    EXCEEDED_RESOURCE_QUOTA = "ExceededResourceQuota"
    COULDNT_GET_TASK = "CouldntGetTask"
    TIMEOUT = "TaskRunTimeout"
    CANCELLED = "TaskRunCancelled"


class DeliveryStatus(str, Enum):
    UNKNOWN = "Unknown"
    SENT = "Sent"
    FAILED = "Failed"


@dataclass
class Condition:
    status: ConditionStatus
    reason: Reason
    message: str = ""
    type: str = SUCCEEDED
    last_transition_time: datetime = field(default_factory=_utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status is not ConditionStatus.UNKNOWN

    def same_as(self, other: Condition | None) -> bool:
        """Equal ignoring the transition time."""
        return (
            other is not None
            and self.status == other.status
            and self.reason == other.reason
            and self.message == other.message
        )


@dataclass(frozen=True)
class Result:
    """One record of a step's structured output (``value`` or ``digest``)."""

    name: str
    value: str = ""
    digest: str = ""

    def to_dict(self) -> dict[str, str]:
        result = {"name": self.name}
        if self.digest:
            result["digest"] = self.digest
        if self.value:
            result["value"] = self.value
        return result


@dataclass(frozen=True)
class StepState:
    """Per-container outcome projected from the pod's container statuses."""

    name: str
    container_name: str
    running: bool = False
    waiting_reason: str = ""
    exit_code: int | None = None
    reason: str = ""
    started_at: datetime | None = None
    finished_at: datetime | None = None


@dataclass
class NotificationDeliveryRecord:
    target: str
    message: str = ""
    attempts: int = 0
    status: DeliveryStatus = DeliveryStatus.UNKNOWN

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "message": self.message,
            "attempts": self.attempts,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class TaskRef:
    name: str
    kind: TaskKind = TaskKind.TASK


@dataclass(frozen=True)
class ResourceBinding:
    """Binds a template resource slot to a stored or embedded resource.

    ``paths`` lists workspace directories written by earlier runs that the
    resource should be copied from (inputs) or to (outputs).
    """

    name: str
    resource_ref: str | None = None
    resource_spec: PipelineResource | None = None
    paths: tuple[str, ...] = ()


@dataclass
class RunSpec:
    task_ref: TaskRef | None = None
    task_spec: TaskSpec | None = None
    params: dict[str, ParamValue] = field(default_factory=dict)
    inputs: list[ResourceBinding] = field(default_factory=list)
    outputs: list[ResourceBinding] = field(default_factory=list)
    service_account: str = ""
    timeout: timedelta | None = None
    status: str = ""


@dataclass
class RunStatus:
    condition: Condition | None = None
    start_time: datetime | None = None
    completion_time: datetime | None = None
    pod_name: str = ""
    results: list[Result] = field(default_factory=list)
    steps: list[StepState] = field(default_factory=list)
    notifications: list[NotificationDeliveryRecord] = field(default_factory=list)

    def is_done(self) -> bool:
        return self.condition is not None and self.condition.is_terminal

    def set_condition(self, condition: Condition) -> bool:
        """Apply a condition unless it is already in place.

        The transition time is kept when nothing but the time differs.
        Returns whether the condition changed.
        """
        if condition.same_as(self.condition):
            return False
        self.condition = condition
        return True


@dataclass
class Run:
    name: str
    namespace: str
    spec: RunSpec = field(default_factory=RunSpec)
    status: RunStatus = field(default_factory=RunStatus)
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    def is_cancelled(self) -> bool:
        return self.spec.status == CANCEL_REQUESTED


def split_key(key: str) -> tuple[str, str]:
    """Split ``namespace/name``; raises ValueError on anything else."""
    namespace, sep, name = key.partition("/")
    if not sep or not namespace or not name or "/" in name:
        raise ValueError(f"invalid run key {key!r}, expected namespace/name")
    return namespace, name


__all__ = [
    "SUCCEEDED",
    "CANCEL_REQUESTED",
    "ConditionStatus",
    "Reason",
    "DeliveryStatus",
    "Condition",
    "Result",
    "StepState",
    "NotificationDeliveryRecord",
    "TaskRef",
    "ResourceBinding",
    "RunSpec",
    "RunStatus",
    "Run",
    "split_key",
]
