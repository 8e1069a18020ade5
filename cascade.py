"""Cross-resource cascade planning and execution.

Planning is pure: it turns one node into the dependent steps that must follow
its own artifact writes. Execution hands each step to a handler from ``deps``
and stops at the first failure.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List

from nodesmith.paths import normalize_route_path


Issue = Dict[str, Any]
Step = Dict[str, Any]

_logger = logging.getLogger("nodesmith.cascade")

STEP_ORDER = (
    "route.ensure",
    "route.ensure_detail",
    "schema.reindex",
    "storage.drop_table",
    "storage.migrate",
)

SCHEMA_TARGET = "db/schema"
MIGRATE_TARGET = "migrations"


def _issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> Issue:
    return {"code": code, "message": message, "path": path, "detail": detail}


def _step(kind: str, target: str, args: dict | None = None) -> Step:
    return {"kind": kind, "target": target, "args": args or {}}


def _template_steps(payload: dict) -> List[Step]:
    route = normalize_route_path(payload.get("routePath") or "/")
    steps = [_step("route.ensure", route, {"path": route})]
    detail_target = route.rstrip("/") + "/[id]"
    for component in payload.get("components") or []:
        if component.get("type") != "table" or not component.get("dynamicRouting"):
            continue
        source = component.get("dataSource") or {}
        steps.append(
            _step(
                "route.ensure_detail",
                detail_target,
                {
                    "path": route,
                    "endpoint_path": source.get("endpointPath"),
                    "primary_key": source.get("primaryKey"),
                },
            )
        )
    return steps


def _table_steps(operation: str, payload: dict) -> List[Step]:
    steps = [_step("schema.reindex", SCHEMA_TARGET)]
    if operation == "delete":
        name = payload.get("tableName")
        steps.append(_step("storage.drop_table", name, {"table_name": name}))
    steps.append(_step("storage.migrate", MIGRATE_TARGET))
    return steps


def _dedupe(steps: List[Step], warnings: List[Issue]) -> List[Step]:
    by_key: Dict[tuple, Step] = {}
    for idx, step in enumerate(steps):
        key = (step["kind"], step["target"])
        previous = by_key.get(key)
        if previous is not None and previous["args"] != step["args"]:
            warnings.append(
                _issue(
                    "CASCADE_TARGET_SHADOWED",
                    f"{step['kind']} for {step['target']} declared twice with different arguments; the last one wins",
                    f"steps[{idx}]",
                    {"kept": step["args"], "dropped": previous["args"]},
                )
            )
        by_key[key] = step
    rank = {kind: pos for pos, kind in enumerate(STEP_ORDER)}
    ordered = sorted(enumerate(by_key.values()), key=lambda item: (rank[item[1]["kind"]], item[0]))
    return [step for _, step in ordered]


def plan_cascade(node_type: str, operation: str, payload: dict) -> dict:
    errors: List[Issue] = []
    warnings: List[Issue] = []

    if not isinstance(payload, dict):
        errors.append(_issue("CASCADE_PAYLOAD_INVALID", "payload must be object", "payload"))
        return {"ok": False, "errors": errors, "warnings": warnings, "steps": []}

    steps: List[Step] = []
    if node_type == "template" and operation == "upsert":
        steps = _template_steps(payload)
    elif node_type == "table" and operation in ("upsert", "delete"):
        steps = _table_steps(operation, payload)

    return {"ok": True, "errors": errors, "warnings": warnings, "steps": _dedupe(steps, warnings)}


def execute_cascade(plan: dict, deps: Dict[str, Callable[..., Any]]) -> dict:
    """Run planned steps in order; each dep is called with the step's args."""
    errors: List[Issue] = []
    warnings: List[Issue] = list(plan.get("warnings") or []) if isinstance(plan, dict) else []
    effects: List[dict] = []
    status = 200

    steps = plan.get("steps") if isinstance(plan, dict) else None
    if not isinstance(steps, list):
        errors.append(_issue("CASCADE_PLAN_INVALID", "steps must be list", "$.steps"))
        return {"ok": False, "errors": errors, "warnings": warnings, "effects": effects, "status": 500}

    for idx, step in enumerate(steps):
        path = f"$.steps[{idx}]"
        kind = step.get("kind")
        handler = deps.get(kind)
        if handler is None:
            errors.append(_issue("CASCADE_DEP_MISSING", f"No handler for {kind}", path))
            status = 500
            break
        try:
            outcome = handler(**step.get("args", {}))
        except Exception as exc:
            to_issue = getattr(exc, "to_issue", None)
            if callable(to_issue):
                failure = to_issue()
                status = getattr(exc, "status", 500)
            else:
                _logger.exception("cascade step %s for %s failed", kind, step.get("target"))
                failure = _issue("CASCADE_STEP_FAILED", str(exc), path)
                status = 500
            failure["detail"] = {**(failure.get("detail") or {}), "step": kind, "target": step.get("target")}
            errors.append(failure)
            break
        effects.append({"kind": kind, "target": step.get("target"), "result": outcome})
        _logger.debug("cascade step %s for %s done", kind, step.get("target"))

    if errors:
        return {"ok": False, "errors": errors, "warnings": warnings, "effects": effects, "status": status}
    return {"ok": True, "errors": errors, "warnings": warnings, "effects": effects, "status": 200}
