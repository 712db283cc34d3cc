"""
CLI: ``steprun render`` — the pod a TaskRun manifest would run as.

Resolution happens exactly as in the controller, except that image
entrypoints come from ``--image IMAGE=COMMAND`` options instead of a
registry.  Digests of those images are placeholders derived from the
image name.
"""

from __future__ import annotations

import asyncio
import hashlib
import shlex
from pathlib import Path
from typing import Any

import typer
import yaml

from steprun.cli.utils import echo_json, fail
from steprun.core.config import get_settings
from steprun.core.errors import EntrypointResolutionError, ManifestError, ResolutionError, TemplatingError
from steprun.manifests import ManifestBundle, load_manifests
from steprun.models.pod import Pod
from steprun.models.run import Run
from steprun.pod.entrypoint import EntrypointCache
from steprun.pod.names import RandomSuffixGenerator
from steprun.pod.reference import ImageReference
from steprun.protocols import ImageConfig
from steprun.reconciler.reconciler import render_pod


def placeholder_digest(name: str) -> str:
    return "sha256:" + hashlib.sha256(name.encode("utf-8")).hexdigest()


class StaticRegistry:
    """Image entrypoints given up front, keyed by canonical repository name."""

    def __init__(self, entrypoints: dict[str, tuple[str, ...]]):
        self._configs: dict[str, ImageConfig] = {}
        for image, command in entrypoints.items():
            name = ImageReference.parse(image).name
            self._configs[name] = ImageConfig(digest=placeholder_digest(name), entrypoint=command)

    async def config(self, ref: ImageReference, credentials: Any) -> ImageConfig:
        config = self._configs.get(ref.name)
        if config is None:
            raise EntrypointResolutionError(str(ref), "no entrypoint known, pass --image IMAGE=COMMAND")
        return config


class NoCredentials:
    async def credentials(self, namespace: str, service_account: str) -> None:
        return None


def parse_image_option(value: str) -> tuple[str, tuple[str, ...]]:
    image, sep, command = value.partition("=")
    argv = tuple(shlex.split(command)) if sep else ()
    if not image or not argv:
        raise typer.BadParameter(f"expected IMAGE=COMMAND, got {value!r}", param_hint="--image")
    return image, argv


async def _render(
    run: Run,
    bundle: ManifestBundle,
    entrypoints: dict[str, tuple[str, ...]],
    seed: int | None,
) -> Pod:
    cache = EntrypointCache(StaticRegistry(entrypoints), NoCredentials())
    pod, _ = await render_pod(
        run,
        templates=bundle,
        entrypoint_cache=cache,
        names=RandomSuffixGenerator(seed),
        settings=get_settings(),
    )
    return pod


def render(
    manifests: list[Path] = typer.Argument(
        ...,
        exists=True,
        dir_okay=False,
        help="Manifest files holding the TaskRun and what it references",
    ),
    run_name: str | None = typer.Option(None, "--run", "-r", help="TaskRun to render when several are loaded"),
    images: list[str] | None = typer.Option(
        None, "--image", "-i", help="IMAGE=COMMAND entrypoint for steps without a command"
    ),
    format: str = typer.Option("yaml", "--format", "-f", help="Output format: yaml, json"),
    seed: int | None = typer.Option(None, "--seed", help="Seed for generated name suffixes"),
) -> None:
    """Render the pod a TaskRun would run as, without a cluster."""
    if format not in ("yaml", "json"):
        raise typer.BadParameter(f"unknown format {format!r}", param_hint="--format")
    entrypoints = dict(parse_image_option(v) for v in images or [])

    try:
        bundle = load_manifests(*manifests)
        run = bundle.run(run_name)
        pod = asyncio.run(_render(run, bundle, entrypoints, seed))
    except (ManifestError, ResolutionError, TemplatingError) as e:
        fail(e.message)

    payload = pod.to_dict()
    if format == "json":
        echo_json(payload)
    else:
        typer.echo(yaml.safe_dump(payload, sort_keys=False), nl=False)
