"""Image reference parsing.

Accepts the loose forms users write in task steps and canonicalizes them::

    ubuntu                        -> index.docker.io/library/ubuntu:latest
    gcr.io/foo/bar                -> gcr.io/foo/bar:latest
    localhost:5000/app:v1         -> localhost:5000/app:v1
    bar@sha256:<64 hex>           -> index.docker.io/library/bar@sha256:<64 hex>

A reference carries either a tag or a digest; when both are written the
digest wins and the tag is dropped.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace

from steprun.core.errors import EntrypointResolutionError

DEFAULT_REGISTRY = "index.docker.io"
DEFAULT_TAG = "latest"

_COMPONENT = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_TAG = re.compile(r"^[\w][\w.-]{0,127}$")
_DIGEST = re.compile(r"^[a-z0-9]+(?:[+._-][a-z0-9]+)*:[a-fA-F0-9]{32,}$")


@dataclass(frozen=True)
class ImageReference:
    registry: str
    repository: str
    tag: str = ""
    digest: str = ""

    @property
    def name(self) -> str:
        """``registry/repository`` without tag or digest."""
        return f"{self.registry}/{self.repository}"

    @property
    def is_digest(self) -> bool:
        return bool(self.digest)

    def with_digest(self, digest: str) -> ImageReference:
        return replace(self, tag="", digest=digest)

    def __str__(self) -> str:
        if self.digest:
            return f"{self.name}@{self.digest}"
        return f"{self.name}:{self.tag or DEFAULT_TAG}"

    @classmethod
    def parse(cls, image: str) -> ImageReference:
        """Parse and canonicalize ``image``.

        Raises:
            EntrypointResolutionError: the reference is empty or malformed.
        """
        if not image or image != image.strip():
            raise EntrypointResolutionError(image, "invalid image reference")

        remainder, digest = image, ""
        if "@" in remainder:
            remainder, _, digest = remainder.partition("@")
            if not _DIGEST.match(digest):
                raise EntrypointResolutionError(image, f"invalid digest {digest!r}")

        tag = ""
        last_slash = remainder.rfind("/")
        colon = remainder.rfind(":")
        if colon > last_slash:
            remainder, tag = remainder[:colon], remainder[colon + 1:]
            if not _TAG.match(tag):
                raise EntrypointResolutionError(image, f"invalid tag {tag!r}")

        parts = remainder.split("/")
        first = parts[0]
        if len(parts) > 1 and ("." in first or ":" in first or first == "localhost"):
            registry, path = first, parts[1:]
        else:
            registry, path = DEFAULT_REGISTRY, parts
        if registry == "docker.io":
            registry = DEFAULT_REGISTRY
        if registry == DEFAULT_REGISTRY and len(path) == 1:
            path = ["library", *path]

        if not path or not all(_COMPONENT.match(p) for p in path):
            raise EntrypointResolutionError(image, "invalid repository name")

        if digest:
            tag = ""
        elif not tag:
            tag = DEFAULT_TAG
        return cls(registry=registry, repository="/".join(path), tag=tag, digest=digest)


__all__ = ["DEFAULT_REGISTRY", "DEFAULT_TAG", "ImageReference"]
