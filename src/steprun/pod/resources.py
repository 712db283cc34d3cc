"""Resource bindings and the helper containers they require.

Each resource slot on the template is bound, by the run, to a stored or
embedded :class:`PipelineResource`.  Depending on its type a bound
resource adds containers around the steps::

    before steps   step-create-dir-<slot>-<sfx>          one per output (not cloudEvent)
                   step-source-copy-<resource>-<sfx>     one per input path
                   step-git-source-<resource>-<sfx>      git input without paths
                   step-storage-source-<resource>-<sfx>  storage input without paths
    after steps    step-image-digest-exporter-<sfx>      all image outputs together
                   step-upload-<resource>-<sfx>          storage output
                   step-source-copy-<resource>-<sfx>     one per output path

cloudEvent outputs add no container; they only become notification targets.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field

from steprun.core.config.settings import Images
from steprun.core.errors import TemplateNotFoundError, TemplatingError
from steprun.models.pod import Container, EnvVar
from steprun.models.run import ResourceBinding, Run
from steprun.models.task import (
    PipelineResource,
    ResourceDeclaration,
    ResourceType,
    TaskSpec,
)
from steprun.pod.names import NameGenerator, restricted_name
from steprun.pod.substitution import OUTPUT_DIR, WORKSPACE_DIR, resource_path
from steprun.protocols import TemplateSource

DIGEST_EXPORTER_PREFIX = "step-image-digest-exporter"
RESOURCE_NAME_ENV = "TEKTON_RESOURCE_NAME"
DEFAULT_REVISION = "master"


@dataclass(frozen=True)
class BoundResource:
    declaration: ResourceDeclaration
    resource: PipelineResource
    paths: tuple[str, ...] = ()

    @property
    def slot(self) -> str:
        return self.declaration.name


@dataclass
class ResolvedResources:
    inputs: dict[str, BoundResource] = field(default_factory=dict)
    outputs: dict[str, BoundResource] = field(default_factory=dict)

    def replacement_sources(self) -> tuple[dict, dict]:
        """``(inputs, outputs)`` in the shape ``resource_replacements`` takes."""
        return (
            {s: (b.declaration, b.resource) for s, b in self.inputs.items()},
            {s: (b.declaration, b.resource) for s, b in self.outputs.items()},
        )

    def cloud_event_targets(self) -> list[str]:
        return [
            b.resource.param("targetURI")
            for b in self.outputs.values()
            if b.resource.type is ResourceType.CLOUD_EVENT and b.resource.param("targetURI")
        ]


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

async def _bind(
    templates: TemplateSource,
    namespace: str,
    declarations: list[ResourceDeclaration],
    bindings: list[ResourceBinding],
    direction: str,
) -> dict[str, BoundResource]:
    by_slot = {b.name: b for b in bindings}
    missing = [d.name for d in declarations if d.name not in by_slot]
    if missing:
        raise TemplatingError(f"missing {direction} resource bindings: {missing}")

    bound: dict[str, BoundResource] = {}
    for decl in declarations:
        binding = by_slot[decl.name]
        if binding.resource_spec is not None:
            resource = binding.resource_spec
        elif binding.resource_ref:
            resource = await templates.get_resource(namespace, binding.resource_ref)
        else:
            raise TemplateNotFoundError("PipelineResource", f"<unset for {decl.name}>", namespace)
        if resource.type is not decl.type:
            raise TemplatingError(
                f"{direction} resource {decl.name!r} expects type {decl.type.value}, "
                f"got {resource.type.value}"
            )
        bound[decl.name] = BoundResource(decl, resource, tuple(binding.paths))
    return bound


async def resolve_resources(
    templates: TemplateSource, run: Run, task_spec: TaskSpec
) -> ResolvedResources:
    """Bind every declared slot to its resource.

    Raises:
        TemplateNotFoundError: a referenced resource does not exist.
        TemplatingError: a slot is unbound or bound to the wrong type.
    """
    return ResolvedResources(
        inputs=await _bind(templates, run.namespace, task_spec.inputs, run.spec.inputs, "input"),
        outputs=await _bind(templates, run.namespace, task_spec.outputs, run.spec.outputs, "output"),
    )


# ---------------------------------------------------------------------------
# Helper containers
# ---------------------------------------------------------------------------

def _copy(name: str, images: Images, src: str, dst: str) -> Container:
    return Container(name=name, image=images.shell, command=["cp"], args=["-r", f"{src}/.", dst])


def _gsutil_args(resource: PipelineResource, src: str, dst: str) -> list[str]:
    if resource.param("dir").lower() in ("true", "1", "yes"):
        return ["rsync", "-d", "-r", src, dst]
    return ["cp", src, dst]


def input_containers(
    resources: ResolvedResources, images: Images, names: NameGenerator
) -> list[Container]:
    """Containers that run before the steps, in order."""
    containers = []

    for bound in resources.outputs.values():
        if bound.resource.type is ResourceType.CLOUD_EVENT:
            continue
        path = resource_path(bound.declaration, OUTPUT_DIR)
        containers.append(Container(
            name=restricted_name(f"step-create-dir-{bound.slot}", names.suffix()),
            image=images.shell,
            command=["mkdir"],
            args=["-p", path],
        ))

    for bound in resources.inputs.values():
        resource = bound.resource
        dest = resource_path(bound.declaration, WORKSPACE_DIR)
        if bound.paths:
            for path in bound.paths:
                containers.append(_copy(
                    restricted_name(f"step-source-copy-{resource.name}", names.suffix()),
                    images, path, dest,
                ))
            continue
        if resource.type is ResourceType.GIT:
            containers.append(Container(
                name=restricted_name(f"step-git-source-{resource.name}", names.suffix()),
                image=images.git,
                command=["/ko-app/git-init"],
                args=[
                    "-url", resource.param("url"),
                    "-revision", resource.param("revision") or DEFAULT_REVISION,
                    "-path", dest,
                ],
                env=[EnvVar(RESOURCE_NAME_ENV, resource.name)],
            ))
        elif resource.type is ResourceType.STORAGE:
            containers.append(Container(
                name=restricted_name(f"step-storage-source-{resource.name}", names.suffix()),
                image=images.gsutil,
                command=["gsutil"],
                args=_gsutil_args(resource, resource.param("location"), dest),
                env=[EnvVar(RESOURCE_NAME_ENV, resource.name)],
            ))
    return containers


def output_containers(
    resources: ResolvedResources, images: Images, names: NameGenerator
) -> list[Container]:
    """Containers that run after the steps, in order."""
    containers = []

    image_outputs = [
        b for b in resources.outputs.values() if b.resource.type is ResourceType.IMAGE
    ]
    if image_outputs:
        payload = [
            {
                "name": b.resource.name,
                "type": b.resource.type.value,
                "url": b.resource.param("url"),
                "digest": b.resource.param("digest"),
                "OutputImageDir": resource_path(b.declaration, OUTPUT_DIR),
            }
            for b in image_outputs
        ]
        containers.append(Container(
            name=restricted_name(DIGEST_EXPORTER_PREFIX, names.suffix()),
            image=images.image_digest_exporter,
            command=["/ko-app/imagedigestexporter"],
            args=["-images", json.dumps(payload, separators=(",", ":"))],
            termination_message_policy="FallbackToLogsOnError",
        ))

    for bound in resources.outputs.values():
        resource = bound.resource
        src = resource_path(bound.declaration, OUTPUT_DIR)
        if resource.type is ResourceType.STORAGE:
            containers.append(Container(
                name=restricted_name(f"step-upload-{resource.name}", names.suffix()),
                image=images.gsutil,
                command=["gsutil"],
                args=_gsutil_args(resource, src, resource.param("location")),
                env=[EnvVar(RESOURCE_NAME_ENV, resource.name)],
            ))
        if resource.type is not ResourceType.CLOUD_EVENT:
            for path in bound.paths:
                containers.append(_copy(
                    restricted_name(f"step-source-copy-{resource.name}", names.suffix()),
                    images, src, path,
                ))
    return containers


def is_result_container(name: str) -> bool:
    return name.startswith(DIGEST_EXPORTER_PREFIX)


__all__ = [
    "DIGEST_EXPORTER_PREFIX",
    "BoundResource",
    "ResolvedResources",
    "resolve_resources",
    "input_containers",
    "output_containers",
    "is_result_container",
]
