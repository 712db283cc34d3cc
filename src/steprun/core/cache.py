"""
Caching abstraction used by the entrypoint cache.

Provides a ``CacheBackend`` protocol and a thread-safe ``InMemoryCache``.
Lookups that hit the registry are expensive, so resolved image metadata
is kept for the lifetime of the process unless a bound is configured.

Architecture:
    ::

        CacheBackend (Protocol)
        └── InMemoryCache  (single-process, optional LRU bound and TTL)

        API: get(key) → value | None
             set(key, value, ttl_seconds=None)
             delete(key)
             exists(key) → bool
             clear()

Examples:
    >>> from steprun.core.cache import InMemoryCache
    >>> cache = InMemoryCache()
    >>> cache.set("gcr.io/foo/bar@sha256:abc", ["/bin/app"])
    >>> cache.get("gcr.io/foo/bar@sha256:abc")
    ['/bin/app']

Guardrails:
    ❌ DON'T: Store mutable values you intend to change after ``set``
    ✅ DO: Store tuples or frozen dataclasses

Tags:
    cache, caching, in-memory, ttl, steprun, protocol

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class CacheBackend(Protocol):
    """Protocol for cache backend implementations.

    All backends provide get/set/delete/exists/clear with optional TTL.
    Keys are strings.
    """

    def get(self, key: str) -> Any | None:
        """Return the cached value, or ``None`` if absent or expired."""
        ...

    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        """Store a value. ``ttl_seconds=None`` → use the backend default."""
        ...

    def delete(self, key: str) -> None:
        """Remove a key. No-op if the key does not exist."""
        ...

    def exists(self, key: str) -> bool:
        """True if the key exists and has not expired."""
        ...

    def clear(self) -> None:
        """Remove all keys."""
        ...


# ------------------------------------------------------------------ #
# In-Memory Cache
# ------------------------------------------------------------------ #


class InMemoryCache:
    """In-memory cache with optional LRU bound and TTL.

    With the defaults (``max_size=None``, ``default_ttl_seconds=None``)
    entries are never evicted.  All operations hold an internal lock, so
    the cache can be shared by worker tasks and threads.

    Example:
        cache = InMemoryCache(max_size=500, default_ttl_seconds=1800)
        cache.set("index.docker.io/library/ubuntu:latest|default|builder", entry)
    """

    def __init__(
        self,
        *,
        max_size: int | None = None,
        default_ttl_seconds: int | None = None,
    ):
        self._store: OrderedDict[str, tuple[Any, float | None]] = OrderedDict()
        self._max_size = max_size
        self._default_ttl = default_ttl_seconds
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        """Retrieve a value by key."""
        with self._lock:
            item = self._store.get(key)
            if item is None:
                return None
            value, expires_at = item
            if expires_at is not None and time.monotonic() > expires_at:
                del self._store[key]
                return None
            self._store.move_to_end(key)
            return value

    def set(self, key: str, value: Any, *, ttl_seconds: int | None = None) -> None:
        """Store a value with optional TTL."""
        ttl = ttl_seconds if ttl_seconds is not None else self._default_ttl
        expires_at = (time.monotonic() + ttl) if ttl else None

        with self._lock:
            if key in self._store:
                self._store.move_to_end(key)
            elif self._max_size is not None and len(self._store) >= self._max_size:
                self._store.popitem(last=False)
            self._store[key] = (value, expires_at)

    def delete(self, key: str) -> None:
        """Remove a key from the cache."""
        with self._lock:
            self._store.pop(key, None)

    def exists(self, key: str) -> bool:
        """Check if key exists and is not expired."""
        return self.get(key) is not None

    def clear(self) -> None:
        """Remove all keys."""
        with self._lock:
            self._store.clear()

    def size(self) -> int:
        """Return current number of cached keys."""
        with self._lock:
            return len(self._store)


__all__ = [
    "CacheBackend",
    "InMemoryCache",
]
