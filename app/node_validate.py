"""Flow node validation: envelope checks, per-type payload schemas and normalization."""

from __future__ import annotations

import copy
import math
from typing import Any, Dict, List, Tuple

from nodesmith.paths import unsafe_segments
from nodesmith.sources import source_scope


Issue = Dict[str, Any]

NODE_TYPES = ("table", "endpoint", "route", "template", "layout")
OPERATIONS = ("upsert", "delete")

ALLOWED_NODE_KEYS = {"nodeType", "operation", "payload"}

COLUMN_TYPES = {"integer", "text", "real", "boolean"}
ON_DELETE_ACTIONS = {"cascade", "restrict", "set null", "no action"}
ENDPOINT_METHODS = {"GET", "POST", "DELETE"}
ENDPOINT_ACTIONS = {"select", "insert", "delete"}
WHERE_OPS = {"=", "!=", ">", ">=", "<", "<="}
COMPONENT_TYPES = {"input", "textarea", "button", "table"}
BUTTON_COLORS = {"primary", "secondary", "danger"}
BUTTON_METHODS = {"POST", "GET", "PUT", "PATCH", "DELETE"}

ALLOWED_TABLE_KEYS = {"tableName", "displayName", "columns"}
ALLOWED_COLUMN_KEYS = {"name", "type", "primaryKey", "autoIncrement", "notNull", "default", "foreignKey"}
ALLOWED_FK_KEYS = {"table", "column", "onDelete"}
ALLOWED_ENDPOINT_KEYS = {"path", "method", "table", "action", "fieldMapping", "where"}
ALLOWED_WHERE_KEYS = {"column", "op", "source"}
ALLOWED_ROUTE_KEYS = {"routeId", "path", "pageName", "dynamic"}
ALLOWED_TEMPLATE_KEYS = {"templateId", "routePath", "components"}
ALLOWED_COMPONENT_KEYS = {
    "input": {"id", "type", "label", "placeholder", "bind"},
    "textarea": {"id", "type", "label", "placeholder", "bind"},
    "button": {"id", "type", "label", "color", "action"},
    "table": {"id", "type", "label", "tableName", "columns", "dataSource", "dynamicRouting"},
}
ALLOWED_BIND_KEYS = {"endpointPath", "field"}
ALLOWED_BUTTON_ACTION_KEYS = {"type", "endpointPath", "method"}
ALLOWED_DATA_SOURCE_KEYS = {"endpointPath", "primaryKey"}
ALLOWED_LAYOUT_KEYS = {"layoutId", "templateId", "routeId", "areas"}

DELETE_KEYS = {
    "table": ("tableName",),
    "endpoint": ("path", "method"),
    "route": ("path",),
    "template": ("templateId",),
    "layout": ("layoutId",),
}


def _issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> Issue:
    return {"code": code, "message": message, "path": path, "detail": detail}


def _reject_unknown_keys(errors: list[Issue], obj: dict, allowed: set[str], path: str) -> None:
    if not isinstance(obj, dict):
        return
    for key in obj.keys():
        if key not in allowed:
            errors.append(_issue("PAYLOAD_UNKNOWN_KEY", f"Unknown key: {key}", f"{path}.{key}"))


def _require_string(errors: list[Issue], obj: dict, key: str, path: str) -> bool:
    value = obj.get(key)
    if not isinstance(value, str) or not value.strip():
        errors.append(_issue("PAYLOAD_FIELD_REQUIRED", f"{key} must be a non-empty string", f"{path}.{key}"))
        return False
    return True


def _require_path(errors: list[Issue], obj: dict, key: str, path: str) -> None:
    if not _require_string(errors, obj, key, path):
        return
    unsafe = unsafe_segments(obj[key])
    if unsafe:
        errors.append(
            _issue("PAYLOAD_PATH_INVALID", f"{key} must not contain {unsafe[0]!r} segments", f"{path}.{key}", {"segment": unsafe[0]})
        )


def _optional_string(errors: list[Issue], obj: dict, key: str, path: str) -> None:
    if key in obj and not isinstance(obj[key], str):
        errors.append(_issue("PAYLOAD_FIELD_INVALID", f"{key} must be a string", f"{path}.{key}"))


def _optional_bool(errors: list[Issue], obj: dict, key: str, path: str) -> None:
    if key in obj and not isinstance(obj[key], bool):
        errors.append(_issue("PAYLOAD_FIELD_INVALID", f"{key} must be a boolean", f"{path}.{key}"))


def _require_object(errors: list[Issue], obj: dict, key: str, path: str) -> dict | None:
    value = obj.get(key)
    if not isinstance(value, dict):
        errors.append(_issue("PAYLOAD_FIELD_REQUIRED", f"{key} must be an object", f"{path}.{key}"))
        return None
    return value


# --- normalization ----------------------------------------------------------


def _normalize_columns(columns: Any) -> Any:
    if not isinstance(columns, list):
        return columns
    normalized = []
    for column in columns:
        if isinstance(column, dict) and "fk" in column and "foreignKey" not in column:
            column = dict(column)
            column["foreignKey"] = column.pop("fk")
        normalized.append(column)
    return normalized


def _normalize_components(components: Any) -> Any:
    if not isinstance(components, list):
        return components
    normalized = []
    for component in components:
        if isinstance(component, dict) and component.get("type") == "button":
            action = component.get("action")
            if isinstance(action, dict) and "method" not in action:
                component = dict(component)
                component["action"] = {**action, "method": "POST"}
        normalized.append(component)
    return normalized


def normalize_node(raw: Any) -> Any:
    """Fill defaults and rewrite legacy keys; shape errors are left for validation."""
    if not isinstance(raw, dict):
        return raw
    node = copy.deepcopy(raw)
    payload = node.get("payload")
    if not isinstance(payload, dict):
        return node
    node_type = node.get("nodeType")
    if node_type == "endpoint" and isinstance(payload.get("method"), str):
        payload["method"] = payload["method"].upper()
    if node.get("operation") != "upsert":
        return node
    if node_type == "table":
        payload["columns"] = _normalize_columns(payload.get("columns"))
    elif node_type == "endpoint":
        payload.setdefault("fieldMapping", {})
        payload.setdefault("where", [])
    elif node_type == "route":
        payload.setdefault("dynamic", False)
    elif node_type == "template":
        payload["components"] = _normalize_components(payload.get("components"))
    elif node_type == "layout":
        payload.setdefault("areas", {})
    return node


# --- per-type schemas ------------------------------------------------------


def _validate_default(errors: list[Issue], value: Any, path: str) -> None:
    if isinstance(value, bool) or isinstance(value, (int, str)):
        return
    if isinstance(value, float) and math.isfinite(value):
        return
    errors.append(_issue("TABLE_DEFAULT_INVALID", "default must be a string, finite number or boolean", path))


def _validate_table(payload: dict, errors: list[Issue], warnings: list[Issue]) -> None:
    _reject_unknown_keys(errors, payload, ALLOWED_TABLE_KEYS, "payload")
    _require_string(errors, payload, "tableName", "payload")
    _optional_string(errors, payload, "displayName", "payload")
    columns = payload.get("columns")
    if not isinstance(columns, list) or not columns:
        errors.append(_issue("TABLE_COLUMNS_EMPTY", "columns must be a non-empty list", "payload.columns"))
        return
    seen: set[str] = set()
    for idx, column in enumerate(columns):
        path = f"payload.columns[{idx}]"
        if not isinstance(column, dict):
            errors.append(_issue("TABLE_COLUMN_INVALID", "column must be an object", path))
            continue
        _reject_unknown_keys(errors, column, ALLOWED_COLUMN_KEYS, path)
        if _require_string(errors, column, "name", path):
            if column["name"] in seen:
                errors.append(_issue("TABLE_COLUMN_DUPLICATE", f"Duplicate column: {column['name']}", f"{path}.name"))
            seen.add(column["name"])
        if column.get("type") not in COLUMN_TYPES:
            errors.append(
                _issue("TABLE_COLUMN_TYPE_INVALID", "type must be one of integer, text, real, boolean", f"{path}.type")
            )
        for flag in ("primaryKey", "autoIncrement", "notNull"):
            _optional_bool(errors, column, flag, path)
        if "default" in column and column["default"] is not None:
            _validate_default(errors, column["default"], f"{path}.default")
        if "foreignKey" in column:
            fk = column["foreignKey"]
            fk_path = f"{path}.foreignKey"
            if not isinstance(fk, dict):
                errors.append(_issue("TABLE_FK_INVALID", "foreignKey must be an object", fk_path))
                continue
            _reject_unknown_keys(errors, fk, ALLOWED_FK_KEYS, fk_path)
            _require_string(errors, fk, "table", fk_path)
            _require_string(errors, fk, "column", fk_path)
            if "onDelete" in fk and fk["onDelete"] not in ON_DELETE_ACTIONS:
                errors.append(
                    _issue("TABLE_FK_INVALID", "onDelete must be cascade, restrict, set null or no action", f"{fk_path}.onDelete")
                )


def _validate_source(errors: list[Issue], source: Any, path: str) -> None:
    if source_scope(source) is None:
        errors.append(
            _issue("ENDPOINT_SOURCE_INVALID", "source must use the body., query. or params. scope", path, {"source": source})
        )


def _validate_endpoint(payload: dict, errors: list[Issue], warnings: list[Issue]) -> None:
    _reject_unknown_keys(errors, payload, ALLOWED_ENDPOINT_KEYS, "payload")
    _require_path(errors, payload, "path", "payload")
    _require_string(errors, payload, "table", "payload")
    if payload.get("method") not in ENDPOINT_METHODS:
        errors.append(_issue("ENDPOINT_METHOD_INVALID", "method must be GET, POST or DELETE", "payload.method"))
    if payload.get("action") not in ENDPOINT_ACTIONS:
        errors.append(_issue("ENDPOINT_ACTION_INVALID", "action must be select, insert or delete", "payload.action"))
    mapping = payload.get("fieldMapping")
    if not isinstance(mapping, dict):
        errors.append(_issue("PAYLOAD_FIELD_INVALID", "fieldMapping must be an object", "payload.fieldMapping"))
    else:
        for column, source in mapping.items():
            _validate_source(errors, source, f"payload.fieldMapping.{column}")
    where = payload.get("where")
    if not isinstance(where, list):
        errors.append(_issue("PAYLOAD_FIELD_INVALID", "where must be a list", "payload.where"))
        return
    for idx, condition in enumerate(where):
        path = f"payload.where[{idx}]"
        if not isinstance(condition, dict):
            errors.append(_issue("ENDPOINT_WHERE_INVALID", "where entry must be an object", path))
            continue
        _reject_unknown_keys(errors, condition, ALLOWED_WHERE_KEYS, path)
        _require_string(errors, condition, "column", path)
        if condition.get("op") not in WHERE_OPS:
            errors.append(_issue("ENDPOINT_WHERE_INVALID", "op must be one of =, !=, >, >=, <, <=", f"{path}.op"))
        _validate_source(errors, condition.get("source"), f"{path}.source")
    if payload.get("action") == "insert" and where:
        warnings.append(_issue("ENDPOINT_WHERE_IGNORED", "where has no effect on insert endpoints", "payload.where"))


def _validate_route(payload: dict, errors: list[Issue], warnings: list[Issue]) -> None:
    _reject_unknown_keys(errors, payload, ALLOWED_ROUTE_KEYS, "payload")
    _require_string(errors, payload, "routeId", "payload")
    _require_path(errors, payload, "path", "payload")
    _require_string(errors, payload, "pageName", "payload")
    _optional_bool(errors, payload, "dynamic", "payload")


def _validate_component(component: Any, path: str, errors: list[Issue]) -> None:
    if not isinstance(component, dict):
        errors.append(_issue("TEMPLATE_COMPONENT_INVALID", "component must be an object", path))
        return
    ctype = component.get("type")
    if ctype not in COMPONENT_TYPES:
        errors.append(
            _issue("TEMPLATE_COMPONENT_TYPE_INVALID", "type must be input, textarea, button or table", f"{path}.type")
        )
        return
    _reject_unknown_keys(errors, component, ALLOWED_COMPONENT_KEYS[ctype], path)
    _require_string(errors, component, "id", path)
    _optional_string(errors, component, "label", path)
    if ctype in ("input", "textarea"):
        _optional_string(errors, component, "placeholder", path)
        if "bind" in component:
            bind = _require_object(errors, component, "bind", path)
            if bind is not None:
                _reject_unknown_keys(errors, bind, ALLOWED_BIND_KEYS, f"{path}.bind")
                _require_string(errors, bind, "endpointPath", f"{path}.bind")
                _require_string(errors, bind, "field", f"{path}.bind")
    elif ctype == "button":
        if "color" in component and component["color"] not in BUTTON_COLORS:
            errors.append(_issue("TEMPLATE_COMPONENT_INVALID", "color must be primary, secondary or danger", f"{path}.color"))
        if "action" in component:
            action = _require_object(errors, component, "action", path)
            if action is not None:
                _reject_unknown_keys(errors, action, ALLOWED_BUTTON_ACTION_KEYS, f"{path}.action")
                if action.get("type") != "callEndpoint":
                    errors.append(_issue("TEMPLATE_COMPONENT_INVALID", "action.type must be callEndpoint", f"{path}.action.type"))
                _require_string(errors, action, "endpointPath", f"{path}.action")
                if action.get("method") not in BUTTON_METHODS:
                    errors.append(
                        _issue("TEMPLATE_COMPONENT_INVALID", "action.method must be POST, GET, PUT, PATCH or DELETE", f"{path}.action.method")
                    )
    else:
        _require_string(errors, component, "tableName", path)
        columns = component.get("columns")
        if columns is not None and (not isinstance(columns, list) or not all(isinstance(c, str) for c in columns)):
            errors.append(_issue("TEMPLATE_COMPONENT_INVALID", "columns must be a list of strings", f"{path}.columns"))
        source = _require_object(errors, component, "dataSource", path)
        if source is not None:
            _reject_unknown_keys(errors, source, ALLOWED_DATA_SOURCE_KEYS, f"{path}.dataSource")
            _require_string(errors, source, "endpointPath", f"{path}.dataSource")
            _require_string(errors, source, "primaryKey", f"{path}.dataSource")
        _optional_bool(errors, component, "dynamicRouting", path)


def _validate_template(payload: dict, errors: list[Issue], warnings: list[Issue]) -> None:
    _reject_unknown_keys(errors, payload, ALLOWED_TEMPLATE_KEYS, "payload")
    _require_string(errors, payload, "templateId", "payload")
    _require_path(errors, payload, "routePath", "payload")
    components = payload.get("components")
    if not isinstance(components, list):
        errors.append(_issue("PAYLOAD_FIELD_REQUIRED", "components must be a list", "payload.components"))
        return
    seen: set[str] = set()
    for idx, component in enumerate(components):
        path = f"payload.components[{idx}]"
        _validate_component(component, path, errors)
        cid = component.get("id") if isinstance(component, dict) else None
        if isinstance(cid, str):
            if cid in seen:
                errors.append(_issue("TEMPLATE_COMPONENT_DUPLICATE", f"Duplicate component id: {cid}", f"{path}.id"))
            seen.add(cid)


def _validate_layout(payload: dict, errors: list[Issue], warnings: list[Issue]) -> None:
    _reject_unknown_keys(errors, payload, ALLOWED_LAYOUT_KEYS, "payload")
    _require_string(errors, payload, "layoutId", "payload")
    _require_string(errors, payload, "templateId", "payload")
    _require_string(errors, payload, "routeId", "payload")
    areas = payload.get("areas")
    if not isinstance(areas, dict):
        errors.append(_issue("LAYOUT_AREAS_INVALID", "areas must be an object", "payload.areas"))
        return
    for area, ids in areas.items():
        if not isinstance(ids, list) or not all(isinstance(i, str) for i in ids):
            errors.append(_issue("LAYOUT_AREAS_INVALID", "area must be a list of component ids", f"payload.areas.{area}"))


UPSERT_SCHEMAS = {
    "table": _validate_table,
    "endpoint": _validate_endpoint,
    "route": _validate_route,
    "template": _validate_template,
    "layout": _validate_layout,
}


def _validate_delete(node_type: str, payload: dict, errors: list[Issue]) -> None:
    keys = DELETE_KEYS[node_type]
    _reject_unknown_keys(errors, payload, set(keys), "payload")
    for key in keys:
        if key == "path":
            _require_path(errors, payload, key, "payload")
        else:
            _require_string(errors, payload, key, "payload")
    if node_type == "endpoint" and isinstance(payload.get("method"), str):
        if payload["method"] not in ENDPOINT_METHODS:
            errors.append(_issue("ENDPOINT_METHOD_INVALID", "method must be GET, POST or DELETE", "payload.method"))


def validate_node(node: Any) -> tuple[list[Issue], list[Issue]]:
    errors: list[Issue] = []
    warnings: list[Issue] = []

    if not isinstance(node, dict):
        errors.append(_issue("NODE_INVALID", "node must be an object", None))
        return errors, warnings
    for key in node.keys():
        if key not in ALLOWED_NODE_KEYS:
            errors.append(_issue("NODE_UNKNOWN_KEY", f"Unknown key: {key}", key))

    node_type = node.get("nodeType")
    operation = node.get("operation")
    payload = node.get("payload")
    if not isinstance(node_type, str):
        errors.append(_issue("NODE_TYPE_INVALID", "nodeType must be a string", "nodeType"))
    elif node_type not in NODE_TYPES:
        errors.append(
            _issue("NODE_TYPE_UNSUPPORTED", f"Unsupported nodeType: {node_type}", "nodeType", {"supported": list(NODE_TYPES)})
        )
    if operation not in OPERATIONS:
        errors.append(_issue("NODE_OPERATION_INVALID", "operation must be upsert or delete", "operation"))
    if not isinstance(payload, dict):
        errors.append(_issue("NODE_PAYLOAD_INVALID", "payload must be an object", "payload"))
    if errors:
        return errors, warnings

    if operation == "delete":
        _validate_delete(node_type, payload, errors)
    else:
        UPSERT_SCHEMAS[node_type](payload, errors, warnings)
    return errors, warnings


def validate_node_raw(raw: Any) -> Tuple[Any, List[Issue], List[Issue]]:
    normalized = normalize_node(raw)
    errors, warnings = validate_node(normalized)
    return normalized, errors, warnings
