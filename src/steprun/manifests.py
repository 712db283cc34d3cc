"""
YAML manifests for tasks, runs and pipeline resources.

Reads the Tekton-shaped documents users already write and turns them into
steprun models.  A file may hold any number of documents.

File Format (YAML):
    apiVersion: tekton.dev/v1alpha1
    kind: Task                    # ClusterTask, TaskRun, PipelineResource
    metadata:
      name: build
      namespace: default
    spec:
      inputs:
        params:
          - name: flags
            default: "-v"
        resources:
          - name: source
            type: git
      steps:
        - name: compile
          image: golang
          command: [go]
          args: [build, $(inputs.params.flags)]

Everything loaded is collected in a :class:`ManifestBundle`, which also
answers the template lookups a run needs, so ``steprun render`` can build a
pod without a cluster.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml

from steprun.core.errors import ManifestError, TemplateKindError, TemplateNotFoundError
from steprun.core.logging import get_logger
from steprun.models.pod import Container, EnvVar, Volume, VolumeMount
from steprun.models.run import ResourceBinding, Run, RunSpec, TaskRef
from steprun.models.task import (
    ParamSpec,
    ParamType,
    ParamValue,
    PipelineResource,
    ResourceDeclaration,
    ResourceType,
    Task,
    TaskKind,
    TaskSpec,
)

logger = get_logger(__name__)

SUPPORTED_API_VERSIONS = {"tekton.dev/v1alpha1"}
DEFAULT_NAMESPACE = "default"

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_UNIT_SECONDS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(text: str) -> timedelta:
    """Parse a duration written the Go way: ``90s``, ``1h30m``, ``1.5h``, ``0``.

    Raises:
        ValueError: empty, negative, or a unit other than ns/us/ms/s/m/h.
    """
    text = text.strip()
    if text == "0":
        return timedelta(0)
    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(text):
        raise ValueError(f"invalid duration {text!r}")
    return timedelta(seconds=total)


# ---------------------------------------------------------------------------
# Field parsers
# ---------------------------------------------------------------------------


def _strings(value: Any) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise TypeError(f"expected a list, got {type(value).__name__}")
    return [str(v) for v in value]


def _param_value(value: Any) -> ParamValue:
    if isinstance(value, list):
        return [str(v) for v in value]
    return str(value)


def _pairs(items: Any) -> dict[str, str]:
    """``[{name: url, value: ...}]`` as a dict."""
    return {item["name"]: str(item.get("value", "")) for item in items or []}


def container_from_dict(data: dict[str, Any]) -> Container:
    return Container(
        name=data.get("name", ""),
        image=data.get("image", ""),
        command=_strings(data.get("command")),
        args=_strings(data.get("args")),
        working_dir=data.get("workingDir", ""),
        env=[EnvVar(e["name"], str(e.get("value", ""))) for e in data.get("env") or []],
        volume_mounts=[
            VolumeMount(m["name"], m["mountPath"], bool(m.get("readOnly", False)))
            for m in data.get("volumeMounts") or []
        ],
    )


def volume_from_dict(data: dict[str, Any]) -> Volume:
    config_map = data.get("configMap")
    secret = data.get("secret")
    claim = data.get("persistentVolumeClaim")
    return Volume(
        name=data["name"],
        empty_dir="emptyDir" in data,
        config_map_name=config_map["name"] if config_map else None,
        secret_name=secret["secretName"] if secret else None,
        claim_name=claim["claimName"] if claim else None,
    )


def _param_spec(data: dict[str, Any]) -> ParamSpec:
    default = data.get("default")
    return ParamSpec(
        name=data["name"],
        type=ParamType(data.get("type", ParamType.STRING.value)),
        default=_param_value(default) if default is not None else None,
        description=data.get("description", ""),
    )


def _declaration(data: dict[str, Any]) -> ResourceDeclaration:
    return ResourceDeclaration(
        name=data["name"],
        type=ResourceType(data["type"]),
        target_path=data.get("targetPath", ""),
    )


def task_spec_from_dict(spec: dict[str, Any]) -> TaskSpec:
    inputs = spec.get("inputs") or {}
    outputs = spec.get("outputs") or {}
    return TaskSpec(
        steps=[container_from_dict(s) for s in spec.get("steps") or []],
        params=[_param_spec(p) for p in inputs.get("params") or []],
        inputs=[_declaration(r) for r in inputs.get("resources") or []],
        outputs=[_declaration(r) for r in outputs.get("resources") or []],
        volumes=[volume_from_dict(v) for v in spec.get("volumes") or []],
    )


def _binding(data: dict[str, Any]) -> ResourceBinding:
    ref = data.get("resourceRef") or {}
    embedded = data.get("resourceSpec")
    return ResourceBinding(
        name=data["name"],
        resource_ref=ref.get("name"),
        resource_spec=PipelineResource(
            name=data["name"],
            type=ResourceType(embedded["type"]),
            params=_pairs(embedded.get("params")),
        ) if embedded else None,
        paths=tuple(_strings(data.get("paths"))),
    )


def run_spec_from_dict(spec: dict[str, Any]) -> RunSpec:
    inputs = spec.get("inputs") or {}
    outputs = spec.get("outputs") or {}
    ref = spec.get("taskRef")
    timeout = spec.get("timeout")
    return RunSpec(
        task_ref=TaskRef(ref["name"], TaskKind(ref.get("kind", TaskKind.TASK.value))) if ref else None,
        task_spec=task_spec_from_dict(spec["taskSpec"]) if spec.get("taskSpec") else None,
        params={p["name"]: _param_value(p["value"]) for p in inputs.get("params") or []},
        inputs=[_binding(b) for b in inputs.get("resources") or []],
        outputs=[_binding(b) for b in outputs.get("resources") or []],
        service_account=spec.get("serviceAccountName") or spec.get("serviceAccount") or "",
        timeout=parse_duration(str(timeout)) if timeout is not None else None,
        status=spec.get("status", ""),
    )


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


Manifest = Task | Run | PipelineResource


def parse_document(data: Any, source: str = "<manifest>") -> Manifest:
    """Turn one decoded YAML document into a model.

    Raises:
        ManifestError: unsupported apiVersion or kind, or a malformed field.
    """
    if not isinstance(data, dict):
        raise ManifestError(f"expected a mapping, got {type(data).__name__}", source=source)

    api_version = data.get("apiVersion")
    if api_version and api_version not in SUPPORTED_API_VERSIONS:
        raise ManifestError(
            f"unsupported apiVersion {api_version!r}, supported: {sorted(SUPPORTED_API_VERSIONS)}",
            source=source,
            field="apiVersion",
        )

    kind = data.get("kind")
    metadata = data.get("metadata") or {}
    spec = data.get("spec") or {}
    try:
        name = metadata["name"]
        namespace = metadata.get("namespace", "")
        if kind in (TaskKind.TASK.value, TaskKind.CLUSTER_TASK.value):
            task_kind = TaskKind(kind)
            return Task(
                name=name,
                spec=task_spec_from_dict(spec),
                kind=task_kind,
                namespace="" if task_kind is TaskKind.CLUSTER_TASK else namespace or DEFAULT_NAMESPACE,
            )
        if kind == "TaskRun":
            return Run(
                name=name,
                namespace=namespace or DEFAULT_NAMESPACE,
                spec=run_spec_from_dict(spec),
                labels=dict(metadata.get("labels") or {}),
                annotations=dict(metadata.get("annotations") or {}),
            )
        if kind == "PipelineResource":
            return PipelineResource(
                name=name,
                type=ResourceType(spec["type"]),
                params=_pairs(spec.get("params")),
            )
    except (KeyError, ValueError, TypeError) as e:
        raise ManifestError(f"failed to parse {kind} {metadata.get('name', '')!r}: {e}", source=source) from e
    raise ManifestError(f"unsupported kind {kind!r}", source=source, field="kind")


def _read_yaml(path: Path) -> list[Any]:
    if not path.exists():
        raise FileNotFoundError(f"Manifest file not found: {path}")

    logger.debug("manifests.load_yaml", path=str(path))
    with open(path, encoding="utf-8") as f:
        try:
            return [d for d in yaml.safe_load_all(f) if d is not None]
        except yaml.YAMLError as e:
            raise ManifestError(f"invalid YAML: {e}", source=str(path)) from e


def load_documents(path: Path | str) -> list[Manifest]:
    """Parse every document in ``path``.

    Raises:
        FileNotFoundError: ``path`` does not exist.
        ManifestError: invalid YAML or an unsupported document.
    """
    path = Path(path)
    return [parse_document(d, source=str(path)) for d in _read_yaml(path)]


@dataclass
class ManifestBundle:
    """Everything loaded from a set of manifest files.

    Resources without a namespace land in ``default``.
    """

    tasks: dict[tuple[str, str], Task] = field(default_factory=dict)
    cluster_tasks: dict[str, Task] = field(default_factory=dict)
    resources: dict[tuple[str, str], PipelineResource] = field(default_factory=dict)
    runs: list[Run] = field(default_factory=list)

    def add(self, obj: Manifest, namespace: str = DEFAULT_NAMESPACE) -> None:
        if isinstance(obj, Task):
            if obj.kind is TaskKind.CLUSTER_TASK:
                self.cluster_tasks[obj.name] = obj
            else:
                self.tasks[(obj.namespace, obj.name)] = obj
        elif isinstance(obj, Run):
            self.runs.append(obj)
        else:
            self.resources[(namespace, obj.name)] = obj

    def run(self, name: str | None = None) -> Run:
        """The run called ``name``, or the only run when ``name`` is omitted.

        Raises:
            ManifestError: no such run, or several runs and no name.
        """
        if name is not None:
            for run in self.runs:
                if run.name == name:
                    return run
            raise ManifestError(f"no TaskRun named {name!r}")
        if len(self.runs) != 1:
            raise ManifestError(f"expected exactly one TaskRun, found {len(self.runs)}; pick one by name")
        return self.runs[0]

    async def get_task(self, namespace: str, name: str) -> Task:
        task = self.tasks.get((namespace, name))
        if task is not None:
            return task
        if name in self.cluster_tasks:
            raise TemplateKindError(TaskKind.TASK.value, TaskKind.CLUSTER_TASK.value, name)
        raise TemplateNotFoundError(TaskKind.TASK.value, name, namespace)

    async def get_cluster_task(self, name: str) -> Task:
        task = self.cluster_tasks.get(name)
        if task is not None:
            return task
        if any(n == name for _, n in self.tasks):
            raise TemplateKindError(TaskKind.CLUSTER_TASK.value, TaskKind.TASK.value, name)
        raise TemplateNotFoundError(TaskKind.CLUSTER_TASK.value, name)

    async def get_resource(self, namespace: str, name: str) -> PipelineResource:
        resource = self.resources.get((namespace, name))
        if resource is None:
            raise TemplateNotFoundError("PipelineResource", name, namespace)
        return resource


def load_manifests(*paths: Path | str) -> ManifestBundle:
    """Load every file in ``paths`` into one bundle."""
    bundle = ManifestBundle()
    for path in paths:
        path = Path(path)
        for data in _read_yaml(path):
            obj = parse_document(data, source=str(path))
            namespace = (data.get("metadata") or {}).get("namespace") or DEFAULT_NAMESPACE
            bundle.add(obj, namespace=namespace)
    logger.info(
        "manifests.loaded",
        files=len(paths),
        tasks=len(bundle.tasks) + len(bundle.cluster_tasks),
        runs=len(bundle.runs),
        resources=len(bundle.resources),
    )
    return bundle


__all__ = [
    "DEFAULT_NAMESPACE",
    "SUPPORTED_API_VERSIONS",
    "Manifest",
    "ManifestBundle",
    "container_from_dict",
    "load_documents",
    "load_manifests",
    "parse_document",
    "parse_duration",
    "run_spec_from_dict",
    "task_spec_from_dict",
    "volume_from_dict",
]
