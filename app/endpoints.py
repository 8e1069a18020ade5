"""Endpoint synthesizer: every method declared at one API path shares one route module."""

from __future__ import annotations

import inspect
import logging
from typing import Dict, List

from nodesmith import sources
from nodesmith.identifiers import column_accessor, to_identifier
from nodesmith.paths import api_route_segments, normalize_api_path, unsafe_segments

from app.emit import render_source
from app.errors import Issue, PreconditionError
from app.workspace import Workspace, contained, remove_best_effort, write_text

_logger = logging.getLogger("nodesmith.endpoints")

METHOD_ORDER = ("GET", "POST", "DELETE")

COMPARATORS = {
    "=": "eq",
    "!=": "ne",
    ">": "gt",
    ">=": "ge",
    "<": "lt",
    "<=": "le",
}

STATEMENTS = {
    "select": "select",
    "insert": "insert",
    "delete": "delete",
}

_RESOLVER_SOURCE = inspect.getsource(sources.read_from_source).replace(
    "def read_from_source(", "def _read_from_source(", 1
)

_ROUTE_TEMPLATE = '''
"""Generated API handlers for {{ path_key }}."""

import logging
{% if comparators %}
from operator import {{ comparators|join(", ") }}
{% endif %}

from fastapi import Request
from fastapi.responses import JSONResponse
from sqlalchemy import {{ statements|join(", ") }}

from db.client import engine
{% for table in tables %}
from db.schema.{{ table }} import {{ table }}
{% endfor %}

logger = logging.getLogger(__name__)


{{ resolver }}

{% for handler in handlers %}

async def {{ handler.method }}(request: Request):
    try:
        params = dict(request.path_params)
{% if handler.reads_body %}
        body = await request.json()
{% else %}
        body = None
{% endif %}
        bag = {"body": body, "query": request.query_params, "params": params}
{% if handler.action == "insert" %}
{% if handler.assignments %}
        values = {
{% for key, source in handler.assignments %}
            {{ key|pystr }}: _read_from_source({{ source|pystr }}, bag),
{% endfor %}
        }
{% else %}
        values = {}
{% endif %}
        stmt = insert({{ handler.table }}).values(**values).returning({{ handler.table }})
{% else %}
        filters = []
{% for condition in handler.conditions %}
        value_{{ loop.index0 }} = _read_from_source({{ condition.source|pystr }}, bag)
        if value_{{ loop.index0 }} is not None:
            filters.append({{ condition.comparator }}({{ condition.column }}, value_{{ loop.index0 }}))
{% endfor %}
        where_clause = None if not filters else filters[0] if len(filters) == 1 else and_(*filters)
{% if handler.action == "select" %}
        stmt = select({{ handler.table }})
        if where_clause is not None:
            stmt = stmt.where(where_clause)
{% else %}
        if where_clause is None:
            raise ValueError("Delete endpoint requires a where clause.")
        stmt = delete({{ handler.table }}).where(where_clause).returning({{ handler.table }})
{% endif %}
{% endif %}
        async with engine.begin() as conn:
            result = await conn.execute(stmt)
            data = [dict(row._mapping) for row in result]
        return JSONResponse({"ok": True, "data": data})
    except Exception as exc:
        logger.exception("{{ handler.method }} {{ path_key }} failed")
        return JSONResponse({"ok": False, "error": str(exc)}, status_code=500)

{% endfor %}
'''


def _ordered_methods(group: Dict[str, dict]) -> List[str]:
    return [method for method in METHOD_ORDER if group.get(method)]


def _handler_description(method: str, config: dict) -> dict:
    table = to_identifier(config["table"])
    conditions = []
    for condition in config.get("where") or []:
        conditions.append(
            {
                "source": condition["source"],
                "comparator": COMPARATORS[condition["op"]],
                "column": column_accessor(table, to_identifier(condition["column"])),
            }
        )
    assignments = [
        (to_identifier(column), source)
        for column, source in sorted((config.get("fieldMapping") or {}).items())
    ]
    return {
        "method": method,
        "action": config["action"],
        "table": table,
        "reads_body": sources.needs_body(config),
        "conditions": conditions,
        "assignments": assignments,
    }


def collect_imports(group: Dict[str, dict]) -> dict:
    comparators: set[str] = set()
    statements: set[str] = set()
    tables: set[str] = set()
    for method in _ordered_methods(group):
        config = group[method]
        tables.add(to_identifier(config["table"]))
        statements.add(STATEMENTS[config["action"]])
        if config["action"] == "insert":
            continue
        statements.add("and_")
        for condition in config.get("where") or []:
            comparators.add(COMPARATORS[condition["op"]])
    return {
        "comparators": sorted(comparators),
        "statements": sorted(statements),
        "tables": sorted(tables),
    }


def build_route_source(path_key: str, group: Dict[str, dict]) -> str:
    methods = _ordered_methods(group)
    if not methods:
        return ""
    imports = collect_imports(group)
    handlers = [_handler_description(method, group[method]) for method in methods]
    return render_source(
        _ROUTE_TEMPLATE,
        "route.py",
        path_key=path_key,
        resolver=_RESOLVER_SOURCE.strip(),
        handlers=handlers,
        **imports,
    )


def check_api_path(path: str, where: str = "payload.path") -> str:
    unsafe = unsafe_segments(path)
    if unsafe:
        raise PreconditionError(
            "ENDPOINT_PATH_INVALID",
            f"Endpoint path {path!r} contains the segment {unsafe[0]!r}",
            where,
            {"segment": unsafe[0]},
        )
    return normalize_api_path(path)


def route_file(ws: Workspace, path_key: str):
    target = ws.api_dir.joinpath(*api_route_segments(path_key), "route.py")
    return contained(ws.api_dir, target, "payload.path")


def _write_route_file(ws: Workspace, path_key: str, group: Dict[str, dict], warnings: List[Issue]) -> None:
    content = build_route_source(path_key, group)
    target = route_file(ws, path_key)
    if not content:
        if target.exists():
            remove_best_effort(target, warnings)
            _logger.info("endpoint artifact %s removed", path_key)
        return
    write_text(target, content)
    _logger.info("endpoint artifact %s written (%s)", path_key, ", ".join(_ordered_methods(group)))


def _check_preconditions(payload: dict) -> None:
    if payload["action"] == "delete" and not payload.get("where"):
        raise PreconditionError(
            "ENDPOINT_DELETE_WITHOUT_WHERE",
            "Delete endpoints require at least one where condition.",
            "payload.where",
        )


def upsert_endpoint(ws: Workspace, payload: dict) -> dict:
    _check_preconditions(payload)
    warnings: List[Issue] = []
    path_key = check_api_path(payload["path"])
    method = payload["method"]
    with ws.store.lock("endpoint"):
        manifest, head = ws.store.read_with_head("endpoint")
        group = dict(manifest.get(path_key) or {})
        group[method] = payload
        _write_route_file(ws, path_key, group, warnings)
        manifest[path_key] = group
        ws.store.write("endpoint", manifest, expected_head=head)
    return {"ok": True, "message": f"Endpoint {method} {path_key} generated.", "warnings": warnings}


def delete_endpoint(ws: Workspace, path: str, method: str) -> dict:
    warnings: List[Issue] = []
    path_key = check_api_path(path)
    with ws.store.lock("endpoint"):
        manifest, head = ws.store.read_with_head("endpoint")
        group = dict(manifest.get(path_key) or {})
        if method not in group:
            return {"ok": True, "message": f"Endpoint {method} {path_key} already removed.", "warnings": warnings}
        del group[method]
        _write_route_file(ws, path_key, group, warnings)
        if group:
            manifest[path_key] = group
        else:
            del manifest[path_key]
        ws.store.write("endpoint", manifest, expected_head=head)
    return {"ok": True, "message": f"Endpoint {method} {path_key} removed.", "warnings": warnings}
