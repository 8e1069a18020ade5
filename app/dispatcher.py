"""Node dispatcher: validate, run exactly one handler, then its cascade.

Every outcome is folded into the response envelope; nothing raised by a
handler or a cascade step escapes ``run_node``.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Tuple

from cascade import execute_cascade, plan_cascade
from manifest_store import ManifestConflictError

from app import endpoints, layouts, routes, tables, ui_templates
from app.errors import Issue, NodeError, issue
from app.node_validate import validate_node_raw
from app.workspace import Workspace

_logger = logging.getLogger("nodesmith.dispatcher")


HANDLERS: Dict[Tuple[str, str], Callable[[Workspace, dict], dict]] = {
    ("table", "upsert"): tables.upsert_table,
    ("table", "delete"): lambda ws, p: tables.delete_table(ws, p["tableName"]),
    ("endpoint", "upsert"): endpoints.upsert_endpoint,
    ("endpoint", "delete"): lambda ws, p: endpoints.delete_endpoint(ws, p["path"], p["method"]),
    ("route", "upsert"): lambda ws, p: _upsert_route(ws, p),
    ("route", "delete"): lambda ws, p: routes.delete_route(ws, p["path"]),
    ("template", "upsert"): ui_templates.upsert_template,
    ("template", "delete"): lambda ws, p: ui_templates.delete_template(ws, p["templateId"]),
    ("layout", "upsert"): layouts.upsert_layout,
    ("layout", "delete"): lambda ws, p: layouts.delete_layout(ws, p["layoutId"]),
}


def _upsert_route(ws: Workspace, payload: dict) -> dict:
    routes.ensure_route(ws, payload["path"])
    return routes.upsert_route(ws, payload)


def _migrate(ws: Workspace) -> None:
    if ws.migrator is None:
        _logger.info("no migrator configured; skipping migrations")
        return
    ws.migrator.sync()


def _drop_table(ws: Workspace, table_name: str) -> None:
    if ws.storage is None:
        _logger.info("no storage configured; skipping drop of %s", table_name)
        return
    ws.storage.drop_table(table_name)


def cascade_deps(ws: Workspace) -> Dict[str, Callable[..., Any]]:
    return {
        "route.ensure": lambda path: routes.ensure_route(ws, path),
        "route.ensure_detail": lambda path, endpoint_path, primary_key: routes.ensure_detail_route(
            ws, path, endpoint_path, primary_key
        ),
        "schema.reindex": lambda: tables.refresh_schema_index(ws),
        "storage.drop_table": lambda table_name: _drop_table(ws, table_name),
        "storage.migrate": lambda: _migrate(ws),
    }


def failure(errors: List[Issue], warnings: List[Issue] | None = None) -> dict:
    return {
        "ok": False,
        "error": errors[0]["message"] if errors else "Operation failed",
        "errors": errors,
        "warnings": warnings or [],
    }


def run_node(ws: Workspace, raw: Any) -> Tuple[int, dict]:
    """Process one flow node and return ``(status, envelope)``."""
    node, errors, warnings = validate_node_raw(raw)
    if errors:
        return 400, failure(errors, warnings)

    node_type = node["nodeType"]
    operation = node["operation"]
    payload = node["payload"]
    handler = HANDLERS[(node_type, operation)]

    try:
        result = handler(ws, payload)
    except ManifestConflictError as exc:
        _logger.warning("%s %s rejected: %s", node_type, operation, exc)
        conflict = issue(
            "MANIFEST_CONFLICT",
            str(exc),
            exc.kind,
            {"expected": exc.expected_head, "actual": exc.actual_head},
        )
        return 409, failure([conflict], warnings)
    except NodeError as exc:
        _logger.warning("%s %s failed: %s", node_type, operation, exc)
        return exc.status, failure([exc.to_issue()], warnings)
    except Exception as exc:
        _logger.exception("%s %s handler crashed", node_type, operation)
        return 500, failure([issue("NODE_HANDLER_FAILED", str(exc) or type(exc).__name__, None)], warnings)

    warnings.extend(result.get("warnings") or [])

    plan = plan_cascade(node_type, operation, payload)
    if not plan["ok"]:
        return 500, failure(plan["errors"], warnings + plan["warnings"])
    outcome = execute_cascade(plan, cascade_deps(ws))
    warnings.extend(outcome["warnings"])
    if not outcome["ok"]:
        return outcome["status"], failure(outcome["errors"], warnings)

    _logger.info("%s %s: %s", node_type, operation, result.get("message"))
    return 200, {"ok": True, "message": result.get("message"), "warnings": warnings}


def dispatch_node(ws: Workspace, raw: Any) -> dict:
    return run_node(ws, raw)[1]
