"""Structured step results from container logs.

Result-producing containers finish by printing one JSON array::

    [{"name": "source-image", "digest": "sha256:1234"}]

Anything may be printed before it (tool chatter, progress bars).  The
first ``[`` that starts a decodable JSON array is taken as the payload;
the whole array must be valid or nothing is accepted.
"""

from __future__ import annotations

import json
import re

from steprun.core.errors import ExtractionError
from steprun.models.run import Result

_decoder = json.JSONDecoder()
_BRACKET_RUN = re.compile(r"[\[\s]*")


def _find_array(text: str) -> list:
    start = text.find("[")
    while start != -1:
        try:
            payload, _ = _decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("[", start + 1)
            continue
        except RecursionError:
            # Nesting too deep to decode; every bracket in this run would recurse the same way
            start = text.find("[", _BRACKET_RUN.match(text, start).end())
            continue
        if isinstance(payload, list):
            return payload
        start = text.find("[", start + 1)
    raise ExtractionError("no JSON array found in output")


def _to_result(index: int, item: object) -> Result:
    if not isinstance(item, dict):
        raise ExtractionError(f"result {index} is not an object: {item!r}")
    name = item.get("name")
    if not isinstance(name, str) or not name:
        raise ExtractionError(f"result {index} has no name")
    value, digest = item.get("value"), item.get("digest")
    if value is None and digest is None:
        raise ExtractionError(f"result {name!r} has neither value nor digest")
    if value is not None and not isinstance(value, str):
        raise ExtractionError(f"result {name!r} value must be a string")
    if digest is not None and not isinstance(digest, str):
        raise ExtractionError(f"result {name!r} digest must be a string")
    return Result(name=name, value=value or "", digest=digest or "")


def extract_results(raw: str | bytes) -> list[Result]:
    """Parse the result array out of ``raw``.

    Raises:
        ExtractionError: no array, an empty array, or an element of the wrong shape.
    """
    text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
    if not text.strip():
        raise ExtractionError("empty result payload")

    payload = _find_array(text)
    if not payload:
        raise ExtractionError("empty result payload")
    return [_to_result(i, item) for i, item in enumerate(payload)]


__all__ = ["extract_results"]
