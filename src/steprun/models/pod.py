"""Pod data model.

A deliberately small subset of the orchestrator's pod object: only the
fields the builder writes and the reconciler reads.  Field names follow
Python conventions; collaborators translating to and from the wire format
map them one to one (``mount_path`` ↔ ``mountPath`` and so on).
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any


class PodPhase(str, Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"


# ---------------------------------------------------------------------------
# Containers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EnvVar:
    name: str
    value: str = ""


@dataclass(frozen=True)
class VolumeMount:
    name: str
    mount_path: str
    read_only: bool = False


@dataclass
class Container:
    """One container of the pod, also used for task steps before wrapping."""

    name: str
    image: str = ""
    command: list[str] = field(default_factory=list)
    args: list[str] = field(default_factory=list)
    working_dir: str = ""
    env: list[EnvVar] = field(default_factory=list)
    volume_mounts: list[VolumeMount] = field(default_factory=list)
    termination_message_policy: str = ""

    def copy(self, **changes: Any) -> Container:
        """Return a copy with list fields duplicated so callers can mutate it."""
        base = replace(
            self,
            command=list(self.command),
            args=list(self.args),
            env=list(self.env),
            volume_mounts=list(self.volume_mounts),
        )
        return replace(base, **changes) if changes else base

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name, "image": self.image}
        if self.command:
            result["command"] = list(self.command)
        if self.args:
            result["args"] = list(self.args)
        if self.working_dir:
            result["workingDir"] = self.working_dir
        if self.env:
            result["env"] = [{"name": e.name, "value": e.value} for e in self.env]
        if self.volume_mounts:
            result["volumeMounts"] = [
                {"name": m.name, "mountPath": m.mount_path, **({"readOnly": True} if m.read_only else {})}
                for m in self.volume_mounts
            ]
        if self.termination_message_policy:
            result["terminationMessagePolicy"] = self.termination_message_policy
        return result


# ---------------------------------------------------------------------------
# Volumes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DownwardAPIItem:
    path: str
    field_path: str


@dataclass(frozen=True)
class Volume:
    """A pod volume.  Exactly one source field is expected to be set."""

    name: str
    empty_dir: bool = False
    config_map_name: str | None = None
    secret_name: str | None = None
    claim_name: str | None = None
    downward_api: tuple[DownwardAPIItem, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"name": self.name}
        if self.empty_dir:
            result["emptyDir"] = {}
        if self.config_map_name is not None:
            result["configMap"] = {"name": self.config_map_name}
        if self.secret_name is not None:
            result["secret"] = {"secretName": self.secret_name}
        if self.claim_name is not None:
            result["persistentVolumeClaim"] = {"claimName": self.claim_name}
        if self.downward_api:
            result["downwardAPI"] = {
                "items": [
                    {"path": i.path, "fieldRef": {"fieldPath": i.field_path}}
                    for i in self.downward_api
                ]
            }
        return result


# ---------------------------------------------------------------------------
# Pod
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OwnerReference:
    api_version: str
    kind: str
    name: str
    controller: bool = True
    block_owner_deletion: bool = True


@dataclass
class ObjectMeta:
    name: str
    namespace: str
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    owner_references: list[OwnerReference] = field(default_factory=list)


@dataclass
class PodSpec:
    init_containers: list[Container] = field(default_factory=list)
    containers: list[Container] = field(default_factory=list)
    volumes: list[Volume] = field(default_factory=list)
    service_account_name: str = ""
    restart_policy: str = "Never"


@dataclass(frozen=True)
class ContainerTerminated:
    exit_code: int
    reason: str = ""
    message: str = ""
    started_at: datetime | None = None
    finished_at: datetime | None = None


@dataclass(frozen=True)
class ContainerStatus:
    """Observed state of one container.

    At most one of ``running``/``terminated`` describes the container;
    ``waiting_reason`` is set while neither is.
    """

    name: str
    running: bool = False
    terminated: ContainerTerminated | None = None
    waiting_reason: str = ""


@dataclass
class PodStatus:
    phase: PodPhase = PodPhase.PENDING
    message: str = ""
    container_statuses: list[ContainerStatus] = field(default_factory=list)


@dataclass
class Pod:
    metadata: ObjectMeta
    spec: PodSpec = field(default_factory=PodSpec)
    status: PodStatus = field(default_factory=PodStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    def to_dict(self) -> dict[str, Any]:
        """Serialize the manifest (metadata + spec) in wire field names."""
        meta: dict[str, Any] = {
            "name": self.metadata.name,
            "namespace": self.metadata.namespace,
        }
        if self.metadata.labels:
            meta["labels"] = dict(self.metadata.labels)
        if self.metadata.annotations:
            meta["annotations"] = dict(self.metadata.annotations)
        if self.metadata.owner_references:
            meta["ownerReferences"] = [
                {
                    "apiVersion": o.api_version,
                    "kind": o.kind,
                    "name": o.name,
                    "controller": o.controller,
                    "blockOwnerDeletion": o.block_owner_deletion,
                }
                for o in self.metadata.owner_references
            ]
        spec: dict[str, Any] = {
            "restartPolicy": self.spec.restart_policy,
            "initContainers": [c.to_dict() for c in self.spec.init_containers],
            "containers": [c.to_dict() for c in self.spec.containers],
            "volumes": [v.to_dict() for v in self.spec.volumes],
        }
        if self.spec.service_account_name:
            spec["serviceAccountName"] = self.spec.service_account_name
        return {"apiVersion": "v1", "kind": "Pod", "metadata": meta, "spec": spec}


__all__ = [
    "PodPhase",
    "EnvVar",
    "VolumeMount",
    "Container",
    "DownwardAPIItem",
    "Volume",
    "OwnerReference",
    "ObjectMeta",
    "PodSpec",
    "ContainerTerminated",
    "ContainerStatus",
    "PodStatus",
    "Pod",
]
