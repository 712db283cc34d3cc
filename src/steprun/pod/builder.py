"""Pod synthesis for a run.

The orchestrator starts all containers of a pod at once.  To run the
task's steps one after the other anyway, every container's command is
replaced by the entrypoint wrapper, which blocks on a *wait file*, execs
the real command, then writes a *post file* that releases the next
container::

    place-tools (init)   cp /ko-app/entrypoint /tekton/tools/entrypoint

    container 0   -wait_file /tekton/downward/ready -wait_file_content
                  -post_file /tekton/tools/0
    container 1   -wait_file /tekton/tools/0  -post_file /tekton/tools/1
    container i   -wait_file /tekton/tools/i-1 -post_file /tekton/tools/i

    ... -entrypoint <command[0]> -- <command[1:]> <args>

Container order is: resource helpers that prepare inputs, steps, resource
helpers that export outputs.  Index ``i`` counts every non-init container
in that order, starting at 0.  The readiness file is projected from the
``tekton.dev/ready`` pod annotation, which the reconciler sets once the
pod is running.

Every path and volume name below is shared with the wrapper binary and
must not change.
"""

from __future__ import annotations

from steprun.core.config.settings import Images
from steprun.core.logging import get_logger
from steprun.models.pod import (
    Container,
    DownwardAPIItem,
    EnvVar,
    ObjectMeta,
    OwnerReference,
    Pod,
    PodSpec,
    Volume,
    VolumeMount,
)
from steprun.models.run import Run
from steprun.models.task import TaskSpec
from steprun.pod.entrypoint import EntrypointCache, resolve_entrypoints
from steprun.pod.names import NameGenerator, pod_name
from steprun.pod.resources import ResolvedResources, input_containers, output_containers
from steprun.pod.substitution import (
    WORKSPACE_DIR,
    apply_replacements,
    param_replacements,
    param_values,
    resource_replacements,
)

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# Wire contract with the entrypoint wrapper
# ---------------------------------------------------------------------------

TOOLS_DIR = "/tekton/tools"
ENTRYPOINT_BIN = f"{TOOLS_DIR}/entrypoint"
HOME_DIR = "/tekton/home"
DOWNWARD_DIR = "/tekton/downward"
READY_FILE = f"{DOWNWARD_DIR}/ready"
READY_ANNOTATION = "tekton.dev/ready"
READY_VALUE = "READY"

WORKSPACE_VOLUME = "tekton-internal-workspace"
HOME_VOLUME = "tekton-internal-home"
TOOLS_VOLUME = "tekton-internal-tools"
DOWNWARD_VOLUME = "tekton-internal-downward"

INIT_CONTAINER = "place-tools"
STEP_PREFIX = "step-"

TOOLS_MOUNT = VolumeMount(TOOLS_VOLUME, TOOLS_DIR)
DOWNWARD_MOUNT = VolumeMount(DOWNWARD_VOLUME, DOWNWARD_DIR)
WORKSPACE_MOUNT = VolumeMount(WORKSPACE_VOLUME, WORKSPACE_DIR)
HOME_MOUNT = VolumeMount(HOME_VOLUME, HOME_DIR)


def post_file(index: int) -> str:
    return f"{TOOLS_DIR}/{index}"


def implicit_volumes() -> list[Volume]:
    return [
        Volume(WORKSPACE_VOLUME, empty_dir=True),
        Volume(HOME_VOLUME, empty_dir=True),
        Volume(TOOLS_VOLUME, empty_dir=True),
        Volume(
            DOWNWARD_VOLUME,
            downward_api=(
                DownwardAPIItem(path="ready", field_path=f"metadata.annotations['{READY_ANNOTATION}']"),
            ),
        ),
    ]


def place_tools_container(images: Images) -> Container:
    return Container(
        name=INIT_CONTAINER,
        image=images.entrypoint,
        command=["cp", "/ko-app/entrypoint", ENTRYPOINT_BIN],
        volume_mounts=[TOOLS_MOUNT],
    )


def wrap_container(container: Container, index: int) -> Container:
    """Route ``container`` through the entrypoint wrapper as position ``index``.

    ``container.command`` must already be resolved (non-empty).
    """
    if not container.command:
        raise ValueError(f"container {container.name!r} has no command to wrap")

    if index == 0:
        wait = ["-wait_file", READY_FILE, "-wait_file_content"]
        mounts = [TOOLS_MOUNT, DOWNWARD_MOUNT]
    else:
        wait = ["-wait_file", post_file(index - 1)]
        mounts = [TOOLS_MOUNT]
    mounts += [WORKSPACE_MOUNT, HOME_MOUNT]

    args = [
        *wait,
        "-post_file", post_file(index),
        "-entrypoint", container.command[0],
        "--",
        *container.command[1:],
        *container.args,
    ]
    return container.copy(
        command=[ENTRYPOINT_BIN],
        args=args,
        working_dir=container.working_dir or WORKSPACE_DIR,
        env=[EnvVar("HOME", HOME_DIR), *container.env],
        volume_mounts=mounts + container.volume_mounts,
    )


def step_containers(spec: TaskSpec) -> list[Container]:
    steps = []
    for i, step in enumerate(spec.steps):
        name = step.name or f"unnamed-{i}"
        steps.append(step.copy(name=f"{STEP_PREFIX}{name}"))
    return steps


async def build_pod(
    images: Images,
    run: Run,
    task_spec: TaskSpec,
    *,
    resources: ResolvedResources,
    entrypoint_cache: EntrypointCache,
    names: NameGenerator,
    service_account: str,
    labels: dict[str, str] | None = None,
    annotations: dict[str, str] | None = None,
    owner: OwnerReference | None = None,
    pin_digests: bool = False,
) -> Pod:
    """Synthesize the pod that executes ``task_spec`` for ``run``.

    The only awaited work is entrypoint resolution for steps without an
    explicit command; the returned pod is complete and nothing is created.

    Raises:
        TemplatingError: a declared parameter has no value.
        EntrypointResolutionError: a step's image command could not be resolved.
    """
    values = param_values(task_spec.params, run.spec.params)
    strings, arrays = param_replacements(values)
    strings.update(resource_replacements(*resources.replacement_sources()))
    spec = apply_replacements(task_spec, strings, arrays)

    steps = await resolve_entrypoints(
        entrypoint_cache,
        run.namespace,
        service_account,
        step_containers(spec),
        pin_digests=pin_digests,
    )

    ordered = [
        *input_containers(resources, images, names),
        *steps,
        *output_containers(resources, images, names),
    ]
    containers = [wrap_container(c, i) for i, c in enumerate(ordered)]

    pod = Pod(
        metadata=ObjectMeta(
            name=pod_name(run.name, names),
            namespace=run.namespace,
            labels=dict(labels or {}),
            annotations=dict(annotations or {}),
            owner_references=[owner] if owner else [],
        ),
        spec=PodSpec(
            init_containers=[place_tools_container(images)],
            containers=containers,
            volumes=implicit_volumes() + spec.volumes,
            service_account_name=service_account,
            restart_policy="Never",
        ),
    )
    logger.debug("pod.built", pod=pod.name, containers=[c.name for c in containers])
    return pod


__all__ = [
    "TOOLS_DIR",
    "ENTRYPOINT_BIN",
    "HOME_DIR",
    "DOWNWARD_DIR",
    "READY_FILE",
    "READY_ANNOTATION",
    "READY_VALUE",
    "INIT_CONTAINER",
    "STEP_PREFIX",
    "post_file",
    "implicit_volumes",
    "place_tools_container",
    "wrap_container",
    "step_containers",
    "build_pod",
]
