"""Collaborator protocols.

The reconciler talks to the outside world only through these interfaces.
Implementations for a real cluster translate to API calls; the in-memory
versions in :mod:`steprun.testing` back the test suite.

Architecture::

    Reconciler ──► RunStore          get / update_status
               ──► TemplateSource    get_task / get_cluster_task / get_resource
               ──► PodStore          create / get / list / delete / annotate / logs
               ──► EventSink         send

    EntrypointCache ──► CredentialResolver   credentials(namespace, sa)
                    ──► ImageRegistry        config(ref, credentials)

Error contract:
    TemplateSource raises ``TemplateNotFoundError`` / ``TemplateKindError``.
    PodStore raises ``PodStoreError`` (``kind`` ∈ forbidden / not_found / other).
    ImageRegistry raises ``EntrypointResolutionError``.
    EventSink never raises; it returns a ``DeliveryResult``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from steprun.models.pod import Pod
from steprun.models.run import Run, RunStatus
from steprun.models.task import PipelineResource, Task
from steprun.pod.reference import ImageReference


@dataclass(frozen=True)
class ImageConfig:
    """Registry answer for one image: declared entrypoint/cmd and manifest digest."""

    digest: str
    entrypoint: tuple[str, ...] = ()
    cmd: tuple[str, ...] = ()


@dataclass
class DeliveryResult:
    """Result of one event delivery attempt."""

    target: str
    success: bool
    message: str | None = None
    response: dict[str, Any] | None = None
    error: Exception | None = None
    delivered_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def ok(cls, target: str, message: str | None = None, **kwargs: Any) -> DeliveryResult:
        return cls(target=target, success=True, message=message, **kwargs)

    @classmethod
    def fail(cls, target: str, error: Exception) -> DeliveryResult:
        return cls(target=target, success=False, error=error, message=str(error))


@runtime_checkable
class RunStore(Protocol):
    async def get(self, namespace: str, name: str) -> Run | None:
        """Return the run, or ``None`` if it was deleted."""
        ...

    async def update_status(self, run: Run) -> Run:
        """Persist ``run.status`` (and nothing else)."""
        ...


@runtime_checkable
class TemplateSource(Protocol):
    async def get_task(self, namespace: str, name: str) -> Task: ...

    async def get_cluster_task(self, name: str) -> Task: ...

    async def get_resource(self, namespace: str, name: str) -> PipelineResource: ...


@runtime_checkable
class PodStore(Protocol):
    async def create(self, pod: Pod) -> Pod: ...

    async def get(self, namespace: str, name: str) -> Pod: ...

    async def list(self, namespace: str, selector: dict[str, str]) -> list[Pod]: ...

    async def delete(self, namespace: str, name: str) -> None: ...

    async def annotate(self, namespace: str, name: str, annotations: dict[str, str]) -> Pod: ...

    async def logs(self, namespace: str, name: str, container: str) -> str: ...


@runtime_checkable
class CredentialResolver(Protocol):
    async def credentials(self, namespace: str, service_account: str) -> Any:
        """Pull credentials for the pair; opaque to everything but the registry."""
        ...


@runtime_checkable
class ImageRegistry(Protocol):
    async def config(self, ref: ImageReference, credentials: Any) -> ImageConfig: ...


@runtime_checkable
class EventSink(Protocol):
    def send(self, target: str, event: dict[str, Any]) -> DeliveryResult: ...


__all__ = [
    "ImageConfig",
    "DeliveryResult",
    "RunStore",
    "TemplateSource",
    "PodStore",
    "CredentialResolver",
    "ImageRegistry",
    "EventSink",
]
