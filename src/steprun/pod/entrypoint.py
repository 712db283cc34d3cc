"""Entrypoint resolution with a process-wide cache.

Steps that leave ``command`` empty rely on the image's declared
entrypoint.  Since the sequencing wrapper must be told what to exec, the
builder needs that command up front, which means reading the image config
from its registry.  Registry round trips are slow and need pull
credentials, so answers are cached for the lifetime of the process.

Keys::

    digest reference   index.docker.io/library/app@sha256:...    (content addressed)
    tag reference      index.docker.io/library/app:latest|<namespace>|<sa>

Tag references are keyed per credential identity because the same tag can
resolve differently depending on which registry credentials are used.

Concurrent misses for the same key may both hit the registry; both write
equal values so the last write wins harmlessly.
"""

from __future__ import annotations

from dataclasses import dataclass

from steprun.core.cache import CacheBackend, InMemoryCache
from steprun.core.errors import EntrypointResolutionError
from steprun.core.logging import get_logger
from steprun.models.pod import Container
from steprun.pod.reference import ImageReference
from steprun.protocols import CredentialResolver, ImageRegistry

logger = get_logger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    command: tuple[str, ...]
    digest: str


class EntrypointCache:
    """Resolve an image to ``(command, digest reference)``, memoized.

    Credentials are only fetched on a miss.

    Example:
        >>> cache = EntrypointCache(registry, credentials)
        >>> command, ref = await cache.get("ubuntu", "default", "builder")
        >>> str(ref)
        'index.docker.io/library/ubuntu@sha256:...'
    """

    def __init__(
        self,
        registry: ImageRegistry,
        credentials: CredentialResolver,
        backend: CacheBackend | None = None,
    ):
        self._registry = registry
        self._credentials = credentials
        self._backend: CacheBackend = backend if backend is not None else InMemoryCache()

    @staticmethod
    def cache_key(ref: ImageReference, namespace: str, service_account: str) -> str:
        if ref.is_digest:
            return str(ref)
        return f"{ref}|{namespace}|{service_account}"

    async def get(
        self, image: str, namespace: str, service_account: str
    ) -> tuple[list[str], ImageReference]:
        """Return the image's startable command and its digest-pinned reference.

        Raises:
            EntrypointResolutionError: malformed reference, registry failure,
                or an image that declares neither entrypoint nor cmd.
        """
        ref, entry = await self._lookup(image, namespace, service_account)
        if not entry.command:
            raise EntrypointResolutionError(str(ref), "image declares no entrypoint or cmd")
        return list(entry.command), ref.with_digest(entry.digest)

    async def pin(self, image: str, namespace: str, service_account: str) -> ImageReference:
        """Return the digest-pinned reference only; the image may lack a command."""
        ref, entry = await self._lookup(image, namespace, service_account)
        return ref.with_digest(entry.digest)

    async def _lookup(
        self, image: str, namespace: str, service_account: str
    ) -> tuple[ImageReference, CacheEntry]:
        ref = ImageReference.parse(image)
        key = self.cache_key(ref, namespace, service_account)

        entry = self._backend.get(key)
        if entry is None:
            entry = await self._resolve(ref, namespace, service_account)
            self._backend.set(key, entry)
        else:
            logger.debug("entrypoint.cache_hit", image=str(ref))
        return ref, entry

    async def _resolve(
        self, ref: ImageReference, namespace: str, service_account: str
    ) -> CacheEntry:
        try:
            creds = await self._credentials.credentials(namespace, service_account)
            config = await self._registry.config(ref, creds)
        except EntrypointResolutionError:
            raise
        except Exception as e:
            raise EntrypointResolutionError(str(ref), str(e), cause=e).with_context(
                image=str(ref)
            ) from e

        command = config.entrypoint or config.cmd

        # A digest reference is already content addressed; keep it verbatim
        digest = ref.digest or config.digest
        if not digest:
            raise EntrypointResolutionError(str(ref), "registry returned no digest")

        logger.info(
            "entrypoint.resolved",
            image=str(ref),
            digest=digest,
            namespace=namespace,
            service_account=service_account,
        )
        return CacheEntry(command=tuple(command), digest=digest)


async def resolve_entrypoints(
    cache: EntrypointCache,
    namespace: str,
    service_account: str,
    containers: list[Container],
    *,
    pin_digests: bool = False,
) -> list[Container]:
    """Fill in empty commands (and pin images) for ``containers``.

    Containers with an explicit command pass through untouched, without any
    registry access, unless ``pin_digests`` is set; then only their image is
    pinned to its digest and the command is kept.  Returns new containers.
    """
    resolved = []
    for container in containers:
        if container.command and not pin_digests:
            resolved.append(container)
            continue
        if container.command:
            ref = await cache.pin(container.image, namespace, service_account)
            resolved.append(container.copy(image=str(ref)))
        else:
            command, ref = await cache.get(container.image, namespace, service_account)
            resolved.append(container.copy(image=str(ref), command=command))
    return resolved


__all__ = ["CacheEntry", "EntrypointCache", "resolve_entrypoints"]
