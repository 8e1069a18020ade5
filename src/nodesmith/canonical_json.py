"""Manifest serialization: one byte sequence per logical manifest."""

from __future__ import annotations

import json
import math
from typing import Any, Iterator, Tuple

_SCALARS = (str, int, bool, type(None))


class CanonicalJsonTypeError(TypeError):
    pass


def _children(value: Any, path: str) -> Iterator[Tuple[str, Any]]:
    if isinstance(value, dict):
        for key, child in value.items():
            if not isinstance(key, str):
                raise CanonicalJsonTypeError(f"{path}: manifest keys must be strings, got {type(key).__name__}")
            yield f"{path}.{key}", child
    elif isinstance(value, (list, tuple)):
        for idx, child in enumerate(value):
            yield f"{path}[{idx}]", child


def _check_tree(root: Any) -> None:
    # explicit stack; manifests can nest columns/components fairly deep
    pending = [("$", root)]
    while pending:
        path, value = pending.pop()
        if isinstance(value, float):
            if math.isnan(value) or math.isinf(value):
                raise ValueError(f"{path}: {value!r} has no JSON form")
        elif isinstance(value, (dict, list, tuple)):
            pending.extend(_children(value, path))
        elif not isinstance(value, _SCALARS):
            raise CanonicalJsonTypeError(f"{path}: cannot serialize {type(value).__name__}")


def _encode(obj: Any, **layout: Any) -> str:
    _check_tree(obj)
    return json.dumps(obj, sort_keys=True, ensure_ascii=False, allow_nan=False, **layout)


def canonical_dumps(obj: Any) -> str:
    """Compact form that manifest heads are hashed from."""
    return _encode(obj, separators=(",", ":"))


def canonical_pretty(obj: Any) -> str:
    return _encode(obj, indent=2) + "\n"
