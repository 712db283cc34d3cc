"""Variable substitution for task templates.

References use the ``$(...)`` form::

    $(inputs.params.<name>)
    $(inputs.resources.<slot>.<attribute>)
    $(outputs.resources.<slot>.<attribute>)

Substitution is total: a reference with no known value is left in place
verbatim.  An argument consisting solely of a reference to an array
parameter is replaced by the array's elements; inside a longer string an
array reference is left untouched.

Every function here is pure and returns new objects.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping

from steprun.core.errors import TemplatingError
from steprun.models.pod import Container, EnvVar, Volume, VolumeMount
from steprun.models.task import (
    ParamSpec,
    ParamValue,
    PipelineResource,
    ResourceDeclaration,
    TaskSpec,
)

_REFERENCE = re.compile(r"\$\(([^()]+)\)")

WORKSPACE_DIR = "/workspace"
OUTPUT_DIR = "/workspace/output"


def param_values(
    declared: Iterable[ParamSpec], supplied: Mapping[str, ParamValue]
) -> dict[str, ParamValue]:
    """Effective parameter values: run bindings over template defaults.

    Raises:
        TemplatingError: a declared parameter has neither binding nor default.
    """
    values: dict[str, ParamValue] = {}
    missing = []
    for spec in declared:
        if spec.name in supplied:
            values[spec.name] = supplied[spec.name]
        elif spec.default is not None:
            values[spec.name] = spec.default
        else:
            missing.append(spec.name)
    if missing:
        raise TemplatingError(
            f"missing values for these params which have no default values: {sorted(missing)}",
            missing_params=sorted(missing),
        )
    for name, value in supplied.items():
        values.setdefault(name, value)
    return values


def param_replacements(
    values: Mapping[str, ParamValue],
) -> tuple[dict[str, str], dict[str, list[str]]]:
    strings: dict[str, str] = {}
    arrays: dict[str, list[str]] = {}
    for name, value in values.items():
        key = f"inputs.params.{name}"
        if isinstance(value, list):
            arrays[key] = list(value)
        else:
            strings[key] = value
    return strings, arrays


def resource_replacements(
    inputs: Mapping[str, tuple[ResourceDeclaration, PipelineResource]],
    outputs: Mapping[str, tuple[ResourceDeclaration, PipelineResource]],
) -> dict[str, str]:
    """Replacements for resource attributes, plus the slot's ``path``."""
    strings: dict[str, str] = {}
    for prefix, bound, base in (
        ("inputs", inputs, WORKSPACE_DIR),
        ("outputs", outputs, OUTPUT_DIR),
    ):
        for slot, (decl, resource) in bound.items():
            for attr, value in resource.attributes().items():
                strings[f"{prefix}.resources.{slot}.{attr}"] = value
            strings[f"{prefix}.resources.{slot}.path"] = resource_path(decl, base)
    return strings


def resource_path(decl: ResourceDeclaration, base: str = WORKSPACE_DIR) -> str:
    if decl.target_path:
        return f"{WORKSPACE_DIR}/{decl.target_path.strip('/')}"
    return f"{base}/{decl.name}"


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

def substitute(text: str, strings: Mapping[str, str]) -> str:
    """Replace every known ``$(key)`` in ``text``."""
    if "$(" not in text:
        return text
    return _REFERENCE.sub(lambda m: strings.get(m.group(1).strip(), m.group(0)), text)


def _expand(items: list[str], strings: Mapping[str, str], arrays: Mapping[str, list[str]]) -> list[str]:
    expanded: list[str] = []
    for item in items:
        match = _REFERENCE.fullmatch(item.strip())
        if match and match.group(1).strip() in arrays:
            expanded.extend(arrays[match.group(1).strip()])
        else:
            expanded.append(substitute(item, strings))
    return expanded


def substitute_container(
    container: Container,
    strings: Mapping[str, str],
    arrays: Mapping[str, list[str]] | None = None,
) -> Container:
    arrays = arrays or {}
    return container.copy(
        image=substitute(container.image, strings),
        command=_expand(container.command, strings, arrays),
        args=_expand(container.args, strings, arrays),
        working_dir=substitute(container.working_dir, strings),
        env=[EnvVar(e.name, substitute(e.value, strings)) for e in container.env],
        volume_mounts=[
            VolumeMount(
                name=substitute(m.name, strings),
                mount_path=substitute(m.mount_path, strings),
                read_only=m.read_only,
            )
            for m in container.volume_mounts
        ],
    )


def substitute_volume(volume: Volume, strings: Mapping[str, str]) -> Volume:
    def maybe(value: str | None) -> str | None:
        return substitute(value, strings) if value is not None else None

    return Volume(
        name=volume.name,
        empty_dir=volume.empty_dir,
        config_map_name=maybe(volume.config_map_name),
        secret_name=maybe(volume.secret_name),
        claim_name=maybe(volume.claim_name),
        downward_api=volume.downward_api,
    )


def apply_replacements(
    spec: TaskSpec,
    strings: Mapping[str, str],
    arrays: Mapping[str, list[str]] | None = None,
) -> TaskSpec:
    """Return a copy of ``spec`` with references substituted in steps and volumes."""
    return TaskSpec(
        steps=[substitute_container(s, strings, arrays) for s in spec.steps],
        params=list(spec.params),
        inputs=list(spec.inputs),
        outputs=list(spec.outputs),
        volumes=[substitute_volume(v, strings) for v in spec.volumes],
    )


__all__ = [
    "WORKSPACE_DIR",
    "OUTPUT_DIR",
    "param_values",
    "param_replacements",
    "resource_replacements",
    "resource_path",
    "substitute",
    "substitute_container",
    "substitute_volume",
    "apply_replacements",
]
