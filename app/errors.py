"""Operation errors raised by resource handlers and normalized by the dispatcher."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Dict


Issue = Dict[str, Any]


def issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> Issue:
    return {"code": code, "message": message, "path": path, "detail": detail}


@dataclass
class NodeError(Exception):
    code: str
    message: str
    path: str | None = None
    detail: dict | None = None

    status: ClassVar[int] = 500

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        base = f"{self.code}: {self.message}"
        return f"{base} (path={self.path})" if self.path else base

    def to_issue(self) -> Issue:
        return issue(self.code, self.message, self.path, self.detail)


class PreconditionError(NodeError):
    status = 422


class ArtifactError(NodeError):
    status = 500


class CollaboratorError(NodeError):
    status = 500
