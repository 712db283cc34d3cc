"""Random name suffixes for pods and helper containers."""

from __future__ import annotations

import random
import string
from typing import Protocol

_ALPHABET = string.ascii_lowercase + string.digits
SUFFIX_LENGTH = 5
MAX_NAME_LENGTH = 63


class NameGenerator(Protocol):
    def suffix(self) -> str:
        """Return a fresh lowercase alphanumeric suffix."""
        ...


class RandomSuffixGenerator:
    """Suffixes from a private PRNG; pass ``seed`` for reproducible names."""

    def __init__(self, seed: int | None = None):
        self._rng = random.Random(seed)

    def suffix(self) -> str:
        return "".join(self._rng.choice(_ALPHABET) for _ in range(SUFFIX_LENGTH))


def restricted_name(base: str, suffix: str) -> str:
    """``<base>-<suffix>``, with ``base`` cut so the result fits a DNS label."""
    room = MAX_NAME_LENGTH - len(suffix) - 1
    return f"{base[:room].rstrip('-')}-{suffix}"


def pod_name(run_name: str, names: NameGenerator) -> str:
    return restricted_name(f"{run_name}-pod", names.suffix())


__all__ = [
    "NameGenerator",
    "RandomSuffixGenerator",
    "restricted_name",
    "pod_name",
]
