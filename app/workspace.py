"""Workspace configuration, application-tree paths and file primitives."""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List

from manifest_store import ManifestStore

from app.errors import ArtifactError, Issue, PreconditionError, issue
from app.migrations import CommandMigrator, NullMigrator
from app.storage import SqlStorage

_logger = logging.getLogger("nodesmith.workspace")

DEFAULT_MIGRATE_GENERATE = "alembic revision --autogenerate -m nodesmith-sync"
DEFAULT_MIGRATE_APPLY = "alembic upgrade head"


def load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


def _flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes")


def epoch_ms() -> int:
    return int(time.time() * 1000)


# --- file primitives -------------------------------------------------------


def contained(base: Path, target: Path, where: str) -> Path:
    """Return ``target`` if it resolves inside ``base``; otherwise refuse it."""
    root = base.resolve()
    resolved = target.resolve()
    if resolved != root and root not in resolved.parents:
        raise PreconditionError(
            "PATH_OUTSIDE_WORKSPACE",
            f"{target} resolves outside {base}",
            where,
            {"base": str(root), "resolved": str(resolved)},
        )
    return target


def write_text(path: Path, content: str) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    except OSError as exc:
        raise ArtifactError("ARTIFACT_WRITE_FAILED", f"Cannot write {path}: {exc}", str(path)) from exc


def ensure_dir(path: Path) -> bool:
    if path.is_dir():
        return False
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise ArtifactError("ARTIFACT_WRITE_FAILED", f"Cannot create {path}: {exc}", str(path)) from exc
    return True


def write_if_absent(path: Path, content: str) -> bool:
    if path.exists():
        return False
    write_text(path, content)
    return True


def move_path(src: Path, dest: Path) -> None:
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(src), str(dest))
    except OSError as exc:
        raise ArtifactError("ARTIFACT_MOVE_FAILED", f"Cannot move {src} to {dest}: {exc}", str(src)) from exc


def remove_best_effort(path: Path, warnings: List[Issue]) -> bool:
    """Remove a superseded file or directory; failures become warnings."""
    try:
        if path.is_dir():
            shutil.rmtree(path)
        elif path.exists():
            path.unlink()
        return True
    except OSError as exc:
        _logger.warning("cleanup of %s failed: %s", path, exc)
        warnings.append(issue("CLEANUP_FAILED", f"Could not remove {path.name}: {exc}", str(path)))
        return False


def list_files(directory: Path) -> List[str]:
    try:
        return sorted(entry.name for entry in directory.iterdir() if entry.is_file())
    except OSError:
        return []


# --- workspace ------------------------------------------------------------


@dataclass
class Workspace:
    """An application tree plus the collaborators that act on it."""

    root: Path
    migrator: Any = None
    storage: Any = None
    store: ManifestStore = field(init=False)

    def __post_init__(self) -> None:
        self.root = Path(self.root)
        self.store = ManifestStore(
            {
                "table": self.schema_dir / "manifest.json",
                "endpoint": self.api_dir / "manifest.json",
                "route": self.generated_dir / "routes" / "manifest.json",
                "template": self.templates_dir / "manifest.json",
                "layout": self.templates_dir / "layout_manifest.json",
            }
        )

    @classmethod
    def from_env(cls) -> "Workspace":
        root = Path(os.getenv("NODESMITH_WORKSPACE", "").strip() or os.getcwd()).resolve()
        if _flag("NODESMITH_SKIP_MIGRATIONS"):
            migrator = NullMigrator()
        else:
            migrator = CommandMigrator(
                generate=shlex.split(os.getenv("NODESMITH_MIGRATE_GENERATE", DEFAULT_MIGRATE_GENERATE)),
                apply=shlex.split(os.getenv("NODESMITH_MIGRATE_APPLY", DEFAULT_MIGRATE_APPLY)),
                cwd=root,
                timeout=float(os.getenv("NODESMITH_MIGRATE_TIMEOUT", "300")),
            )
        db_url = os.getenv("NODESMITH_DB_URL", "").strip() or f"sqlite:///{root / 'sqlite.db'}"
        return cls(root=root, migrator=migrator, storage=SqlStorage(db_url))

    @property
    def schema_dir(self) -> Path:
        return self.root / "db" / "schema"

    @property
    def schema_archive_dir(self) -> Path:
        return self.schema_dir / "_archive"

    @property
    def site_dir(self) -> Path:
        return self.root / "site"

    @property
    def api_dir(self) -> Path:
        return self.site_dir / "api"

    @property
    def route_archive_dir(self) -> Path:
        return self.site_dir / "_archive"

    @property
    def generated_dir(self) -> Path:
        return self.site_dir / "_generated"

    @property
    def templates_dir(self) -> Path:
        return self.generated_dir / "templates"

    def route_dir(self, segments: List[str]) -> Path:
        return self.site_dir.joinpath(*segments)
