"""Task template and pipeline resource model.

A task template is an ordered list of steps plus the parameters and
resource slots it declares.  Steps reuse :class:`~steprun.models.pod.Container`
since a step is, before wrapping, exactly a container.

Resource types::

    git         input: fetched with git-init into /workspace/<slot>
    storage     input: fetched with gsutil; output: uploaded with gsutil
    image       output: digest exporter reports the pushed image digest
    cloudEvent  output: notification target (no container injected)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from steprun.models.pod import Container, Volume


class TaskKind(str, Enum):
    TASK = "Task"
    CLUSTER_TASK = "ClusterTask"


class ParamType(str, Enum):
    STRING = "string"
    ARRAY = "array"


class ResourceType(str, Enum):
    GIT = "git"
    STORAGE = "storage"
    IMAGE = "image"
    CLOUD_EVENT = "cloudEvent"


ParamValue = str | list[str]


@dataclass(frozen=True)
class ParamSpec:
    """A declared parameter.  ``default=None`` makes it required."""

    name: str
    type: ParamType = ParamType.STRING
    default: ParamValue | None = None
    description: str = ""


@dataclass(frozen=True)
class ResourceDeclaration:
    """A resource slot on the template (``inputs.resources`` / ``outputs.resources``)."""

    name: str
    type: ResourceType
    target_path: str = ""


@dataclass
class TaskSpec:
    steps: list[Container] = field(default_factory=list)
    params: list[ParamSpec] = field(default_factory=list)
    inputs: list[ResourceDeclaration] = field(default_factory=list)
    outputs: list[ResourceDeclaration] = field(default_factory=list)
    volumes: list[Volume] = field(default_factory=list)


@dataclass
class Task:
    """A stored template.  ``namespace`` is empty for ClusterTasks."""

    name: str
    spec: TaskSpec
    kind: TaskKind = TaskKind.TASK
    namespace: str = ""


@dataclass(frozen=True)
class PipelineResource:
    """A concrete resource bound to a slot.

    ``params`` holds the type-specific attributes (``url``, ``revision``,
    ``location``, ``targetURI`` ...), all addressable from substitution as
    ``$(inputs.resources.<slot>.<attr>)``.
    """

    name: str
    type: ResourceType
    params: dict[str, str] = field(default_factory=dict)

    def attributes(self) -> dict[str, str]:
        """Substitution attributes: every param plus ``name`` and ``type``."""
        attrs = {"name": self.name, "type": self.type.value}
        attrs.update(self.params)
        return attrs

    def param(self, name: str, default: str = "") -> str:
        # Param names are case-insensitive on the wire (URL, Url, url)
        for key, value in self.params.items():
            if key.lower() == name.lower():
                return value
        return default


__all__ = [
    "TaskKind",
    "ParamType",
    "ResourceType",
    "ParamValue",
    "ParamSpec",
    "ResourceDeclaration",
    "TaskSpec",
    "Task",
    "PipelineResource",
]
