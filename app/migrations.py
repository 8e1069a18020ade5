"""Migration collaborator: generate a migration from schema sources, then apply it."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import List, Sequence

from app.errors import CollaboratorError

_logger = logging.getLogger("nodesmith.migrations")


def _tail(text: str | None, limit: int = 2000) -> str:
    if not text:
        return ""
    text = text.strip()
    return text if len(text) <= limit else "…" + text[-limit:]


class CommandMigrator:
    """Runs the two migration steps as external commands, in order."""

    def __init__(self, generate: Sequence[str], apply: Sequence[str], cwd: Path, timeout: float = 300.0) -> None:
        self.generate = list(generate)
        self.apply = list(apply)
        self.cwd = Path(cwd)
        self.timeout = timeout

    def _run(self, step: str, args: List[str]) -> None:
        if not args:
            raise CollaboratorError("MIGRATION_FAILED", f"No command configured for migration step {step}", step)
        _logger.info("migration %s: %s", step, " ".join(args))
        try:
            proc = subprocess.run(
                args,
                cwd=str(self.cwd),
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise CollaboratorError("MIGRATION_FAILED", f"{' '.join(args)} could not run: {exc}", step) from exc
        if proc.stdout:
            _logger.debug("migration %s stdout: %s", step, _tail(proc.stdout))
        if proc.returncode != 0:
            raise CollaboratorError(
                "MIGRATION_FAILED",
                f"{' '.join(args)} exited with {proc.returncode}",
                step,
                {"stderr": _tail(proc.stderr), "returncode": proc.returncode},
            )

    def sync(self) -> None:
        self._run("generate", self.generate)
        self._run("apply", self.apply)


class NullMigrator:
    """Skips migrations entirely (NODESMITH_SKIP_MIGRATIONS=1)."""

    def sync(self) -> None:
        _logger.info("migrations skipped")
