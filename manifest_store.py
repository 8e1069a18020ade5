"""File-backed manifest store: one JSON document per resource kind."""

from __future__ import annotations

import copy
import json
import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, Tuple

from nodesmith.canonical_json import canonical_pretty
from nodesmith.manifest_hash import manifest_hash


MANIFEST_KINDS = ("table", "endpoint", "route", "template", "layout")

_logger = logging.getLogger("nodesmith.manifest")
_LOCKS: Dict[str, threading.RLock] = {}
_LOCKS_GUARD = threading.Lock()


@dataclass
class ManifestConflictError(Exception):
    kind: str
    expected_head: str
    actual_head: str

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return f"{self.kind} manifest changed concurrently (expected {self.expected_head}, found {self.actual_head})"


def _lock_for(path: Path) -> threading.RLock:
    key = str(path.resolve())
    with _LOCKS_GUARD:
        lock = _LOCKS.get(key)
        if lock is None:
            lock = threading.RLock()
            _LOCKS[key] = lock
        return lock


class ManifestStore:
    def __init__(self, paths: Dict[str, Path]) -> None:
        unknown = set(paths) - set(MANIFEST_KINDS)
        if unknown:
            raise ValueError(f"Unknown manifest kinds: {sorted(unknown)}")
        self._paths = {kind: Path(path) for kind, path in paths.items()}

    def path_for(self, kind: str) -> Path:
        path = self._paths.get(kind)
        if path is None:
            raise KeyError(f"No manifest configured for kind {kind!r}")
        return path

    @contextmanager
    def lock(self, kind: str) -> Iterator[None]:
        with _lock_for(self.path_for(kind)):
            yield

    def _load(self, kind: str) -> Dict[str, Any]:
        path = self.path_for(kind)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            _logger.warning("manifest %s unreadable at %s: %s", kind, path, exc)
            return {}
        try:
            data = json.loads(raw)
        except ValueError:
            _logger.warning("manifest %s at %s is corrupt; treating as empty", kind, path)
            return {}
        if not isinstance(data, dict):
            _logger.warning("manifest %s at %s is not an object; treating as empty", kind, path)
            return {}
        return data

    def read(self, kind: str) -> Dict[str, Any]:
        return copy.deepcopy(self._load(kind))

    def read_with_head(self, kind: str) -> Tuple[Dict[str, Any], str]:
        data = self._load(kind)
        return copy.deepcopy(data), manifest_hash(data)

    def get_head(self, kind: str) -> str:
        return manifest_hash(self._load(kind))

    def write(self, kind: str, mapping: Dict[str, Any], expected_head: str | None = None) -> str:
        path = self.path_for(kind)
        with self.lock(kind):
            if expected_head is not None:
                actual = self.get_head(kind)
                if actual != expected_head:
                    raise ManifestConflictError(kind=kind, expected_head=expected_head, actual_head=actual)
            text = canonical_pretty(mapping)
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_name(f".{path.name}.{os.getpid()}.{threading.get_ident()}.tmp")
            tmp.write_text(text, encoding="utf-8")
            os.replace(tmp, path)
        new_head = manifest_hash(mapping)
        _logger.debug("manifest %s written head=%s", kind, new_head)
        return new_head
