"""Run, task template and pod data model."""

from steprun.models.pod import (
    Container,
    ContainerStatus,
    ContainerTerminated,
    DownwardAPIItem,
    EnvVar,
    ObjectMeta,
    OwnerReference,
    Pod,
    PodPhase,
    PodSpec,
    PodStatus,
    Volume,
    VolumeMount,
)
from steprun.models.run import (
    Condition,
    ConditionStatus,
    DeliveryStatus,
    NotificationDeliveryRecord,
    Reason,
    ResourceBinding,
    Result,
    Run,
    RunSpec,
    RunStatus,
    StepState,
    TaskRef,
    split_key,
)
from steprun.models.task import (
    ParamSpec,
    ParamType,
    PipelineResource,
    ResourceDeclaration,
    ResourceType,
    Task,
    TaskKind,
    TaskSpec,
)

__all__ = [
    "Container",
    "ContainerStatus",
    "ContainerTerminated",
    "DownwardAPIItem",
    "EnvVar",
    "ObjectMeta",
    "OwnerReference",
    "Pod",
    "PodPhase",
    "PodSpec",
    "PodStatus",
    "Volume",
    "VolumeMount",
    "Condition",
    "ConditionStatus",
    "DeliveryStatus",
    "NotificationDeliveryRecord",
    "Reason",
    "ResourceBinding",
    "Result",
    "Run",
    "RunSpec",
    "RunStatus",
    "StepState",
    "TaskRef",
    "split_key",
    "ParamSpec",
    "ParamType",
    "PipelineResource",
    "ResourceDeclaration",
    "ResourceType",
    "Task",
    "TaskKind",
    "TaskSpec",
]
