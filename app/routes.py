"""Route synthesizer: page descriptors under site/ plus record detail sub-routes."""

from __future__ import annotations

import logging
from typing import List

from nodesmith.identifiers import to_function_name
from nodesmith.paths import (
    archive_slug,
    breadcrumbs,
    dynamic_segment_names,
    normalize_route_path,
    route_segments,
    unsafe_segments,
)

from app.emit import render_source
from app.errors import ArtifactError, Issue, PreconditionError, issue
from app.workspace import Workspace, contained, ensure_dir, epoch_ms, move_path, write_text

_logger = logging.getLogger("nodesmith.routes")

RESERVED_SEGMENTS = ("api", "_generated", "_archive")
DETAIL_SEGMENT = "[id]"

_PAGE_TEMPLATE = '''
"""Generated page for {{ route_path }}."""

ROUTE_PATH = {{ route_path|pystr }}
PAGE_NAME = {{ page_name|pystr }}
DYNAMIC = {{ dynamic|py }}
CRUMBS = {{ crumbs|py }}
FALLBACK_TEXT = "No templates are assigned to this route yet."


def {{ function_name }}():
    from _generated.templates.registry import get_templates_for_route

    templates = get_templates_for_route(ROUTE_PATH)
    return {
        "route": ROUTE_PATH,
        "title": PAGE_NAME,
        "dynamic": DYNAMIC,
        "breadcrumbs": [{"label": "/", "href": "/"}] + CRUMBS,
        "sections": [
            {"template_id": entry["template_id"], "surface": entry["renderable"]()}
            for entry in templates
        ],
        "fallback": None if templates else FALLBACK_TEXT,
    }


page = {{ function_name }}
'''

_DETAIL_TEMPLATE = '''
"""Generated record detail page below {{ route_path }}."""

import httpx

PARENT_PATH = {{ route_path|pystr }}
ENDPOINT_PATH = {{ endpoint_path|pystr }}
PRIMARY_KEY = {{ primary_key|pystr }}


def _first(data):
    if isinstance(data, list):
        return data[0] if data else None
    return data


def load_record(client: httpx.Client, record_id):
    response = client.get(ENDPOINT_PATH, params={PRIMARY_KEY: record_id})
    response.raise_for_status()
    return _first(response.json().get("data"))


def delete_record(client: httpx.Client, params):
    response = client.delete(ENDPOINT_PATH, params={PRIMARY_KEY: params["id"]})
    response.raise_for_status()
    return {"redirect": PARENT_PATH}


def page(client: httpx.Client, params):
    record, error = None, None
    try:
        record = load_record(client, params["id"])
    except (httpx.HTTPError, ValueError) as exc:
        error = str(exc)
    return {
        "route": PARENT_PATH.rstrip("/") + "/" + str(params["id"]),
        "back": PARENT_PATH,
        "record": record,
        "error": error,
        "actions": [{"label": "Delete", "handler": delete_record}],
    }
'''


def check_route_path(path: str, where: str = "payload.path") -> str:
    """Normalize a route path and refuse paths that shadow generated areas."""
    unsafe = unsafe_segments(path)
    if unsafe:
        raise PreconditionError(
            "ROUTE_PATH_INVALID",
            f"Route {path!r} contains the segment {unsafe[0]!r}",
            where,
            {"segment": unsafe[0]},
        )
    normalized = normalize_route_path(path)
    segments = route_segments(normalized)
    if segments and segments[0] in RESERVED_SEGMENTS:
        raise PreconditionError(
            "ROUTE_PATH_RESERVED",
            f"Route {normalized} collides with the reserved /{segments[0]} tree",
            where,
            {"segment": segments[0]},
        )
    return normalized


def check_detail_parent(path: str, where: str = "payload.routePath") -> str:
    normalized = check_route_path(path, where)
    name = DETAIL_SEGMENT[1:-1]
    if name in dynamic_segment_names(normalized):
        raise PreconditionError(
            "ROUTE_DETAIL_CONFLICT",
            f"Route {normalized} already binds [{name}]; a detail page below it would shadow that parameter",
            where,
            {"param": name},
        )
    return normalized


def route_directory(ws: Workspace, normalized: str, where: str = "payload.path"):
    return contained(ws.site_dir, ws.route_dir(route_segments(normalized)), where)


def build_page_source(route_path: str, page_name: str, dynamic: bool = False) -> str:
    return render_source(
        _PAGE_TEMPLATE,
        "page.py",
        route_path=route_path,
        page_name=page_name,
        dynamic=bool(dynamic),
        crumbs=breadcrumbs(route_path),
        function_name=to_function_name(page_name, "generated_route_page"),
    )


def build_detail_source(route_path: str, endpoint_path: str, primary_key: str) -> str:
    return render_source(
        _DETAIL_TEMPLATE,
        "page.py",
        route_path=route_path,
        endpoint_path=endpoint_path,
        primary_key=primary_key,
    )


def ensure_route(ws: Workspace, path: str) -> dict:
    normalized = check_route_path(path)
    created = ensure_dir(route_directory(ws, normalized))
    if created:
        _logger.info("route directory %s created", normalized)
    return {"route": normalized, "created": created}


def ensure_detail_route(ws: Workspace, path: str, endpoint_path: str, primary_key: str) -> dict:
    normalized = check_detail_parent(path)
    target = route_directory(ws, normalized) / DETAIL_SEGMENT / "page.py"
    write_text(target, build_detail_source(normalized, endpoint_path, primary_key))
    _logger.info("detail route %s/%s written", normalized.rstrip("/"), DETAIL_SEGMENT)
    return {"route": normalized, "detail": str(target.relative_to(ws.root))}


def upsert_route(ws: Workspace, payload: dict) -> dict:
    normalized = check_route_path(payload["path"])
    directory = route_directory(ws, normalized)
    with ws.store.lock("route"):
        manifest, head = ws.store.read_with_head("route")
        ensure_dir(directory)
        content = build_page_source(normalized, payload["pageName"], payload.get("dynamic", False))
        write_text(directory / "page.py", content)
        manifest[normalized] = payload
        ws.store.write("route", manifest, expected_head=head)
    _logger.info("route %s generated", normalized)
    return {"ok": True, "message": f"Route {normalized} generated.", "warnings": []}


def delete_route(ws: Workspace, path: str) -> dict:
    warnings: List[Issue] = []
    normalized = check_route_path(path)
    segments = route_segments(normalized)
    source = route_directory(ws, normalized)
    with ws.store.lock("route"):
        manifest, head = ws.store.read_with_head("route")
        if not segments:
            warnings.append(issue("ROUTE_ARCHIVE_SKIPPED", "The root route directory is never archived", "payload.path"))
        elif not source.is_dir():
            warnings.append(issue("ROUTE_DIRECTORY_MISSING", f"No directory for {normalized}", "payload.path"))
        else:
            target = ws.route_archive_dir / f"{archive_slug(normalized)}-{epoch_ms()}"
            try:
                move_path(source, target)
                _logger.info("route %s archived to %s", normalized, target.name)
            except ArtifactError as exc:
                _logger.warning("route %s could not be archived: %s", normalized, exc.message)
                warnings.append(issue("ROUTE_ARCHIVE_FAILED", exc.message, "payload.path"))
        if normalized in manifest:
            del manifest[normalized]
            ws.store.write("route", manifest, expected_head=head)
    return {"ok": True, "message": f"Route {normalized} archived.", "warnings": warnings}
