"""Content hashes used as manifest heads."""

from __future__ import annotations

import hashlib
from typing import Any

from .canonical_json import canonical_dumps

EMPTY_HEAD_SOURCE: dict = {}


def manifest_hash(manifest_obj: Any) -> str:
    """Return the sha256 head of a manifest mapping.

    Key order does not affect the head; an absent manifest hashes like {}.
    """
    if manifest_obj is None:
        manifest_obj = EMPTY_HEAD_SOURCE
    data = canonical_dumps(manifest_obj).encode("utf-8")
    digest = hashlib.sha256(data).hexdigest()
    return f"sha256:{digest}"
