"""Template synthesizer: template modules and the route registry the pages read."""

from __future__ import annotations

import logging
from typing import Dict, List

from nodesmith.identifiers import to_identifier
from nodesmith.paths import normalize_route_path

from app.emit import render_source
from app.errors import Issue, PreconditionError
from app.routes import check_detail_parent, check_route_path
from app.workspace import Workspace, remove_best_effort, write_if_absent, write_text

_logger = logging.getLogger("nodesmith.templates")

RESERVED_MODULES = ("registry", "layouts")

_PACKAGE_INIT = '"""Generated package."""\n'

_TEMPLATE_MODULE = '''
"""Generated template {{ template_id }}."""

from runtime.surface import TemplateSurface

TEMPLATE_ID = {{ template_id|pystr }}
ROUTE_PATH = {{ route_path|pystr }}
COMPONENTS = {{ components|py }}


def render():
    return TemplateSurface(template_id=TEMPLATE_ID, route_path=ROUTE_PATH, components=COMPONENTS)
'''

_REGISTRY_MODULE = '''
"""Generated route -> template registry."""

{% for entry in imports %}
from .{{ entry.module }} import render as {{ entry.alias }}
{% endfor %}

{% if routes %}
REGISTRY = {
{% for route, entries in routes %}
    {{ route|pystr }}: [
{% for entry in entries %}
        {"template_id": {{ entry.template_id|pystr }}, "renderable": {{ entry.alias }}},
{% endfor %}
    ],
{% endfor %}
}
{% else %}
REGISTRY = {}
{% endif %}


def get_templates_for_route(route_path):
    return list(REGISTRY.get(route_path, []))
'''


def template_module(template_id: str) -> str:
    return to_identifier(template_id)


def is_reserved_module(module: str) -> bool:
    return module in RESERVED_MODULES or module.startswith("__")


def _check_module_name(manifest: Dict[str, dict], template_id: str) -> str:
    module = template_module(template_id)
    if is_reserved_module(module):
        raise PreconditionError(
            "TEMPLATE_MODULE_RESERVED",
            f"Template {template_id!r} would overwrite the generated {module} module",
            "payload.templateId",
            {"module": module},
        )
    for other in manifest:
        if other != template_id and template_module(other) == module:
            raise PreconditionError(
                "TEMPLATE_MODULE_COLLISION",
                f"Template {template_id!r} maps to the same module as existing template {other!r}",
                "payload.templateId",
                {"module": module},
            )
    return module


def build_template_source(payload: dict) -> str:
    return render_source(
        _TEMPLATE_MODULE,
        f"{template_module(payload['templateId'])}.py",
        template_id=payload["templateId"],
        route_path=normalize_route_path(payload["routePath"]),
        components=payload["components"],
    )


def build_registry_source(manifest: Dict[str, dict]) -> str:
    grouped: Dict[str, List[dict]] = {}
    imports = []
    for template_id in sorted(manifest):
        module = template_module(template_id)
        entry = {"module": module, "alias": f"render_{module}", "template_id": template_id}
        imports.append(entry)
        route = normalize_route_path(manifest[template_id]["routePath"])
        grouped.setdefault(route, []).append(entry)
    return render_source(
        _REGISTRY_MODULE,
        "registry.py",
        imports=imports,
        routes=sorted(grouped.items()),
    )


def ensure_packages(ws: Workspace) -> None:
    write_if_absent(ws.generated_dir / "__init__.py", _PACKAGE_INIT)
    write_if_absent(ws.templates_dir / "__init__.py", _PACKAGE_INIT)


def refresh_registry(ws: Workspace, manifest: Dict[str, dict]) -> None:
    ensure_packages(ws)
    write_text(ws.templates_dir / "registry.py", build_registry_source(manifest))
    _logger.info("template registry refreshed (%d templates)", len(manifest))


def _has_detail_page(component: dict) -> bool:
    return component.get("type") == "table" and bool(component.get("dynamicRouting"))


def upsert_template(ws: Workspace, payload: dict) -> dict:
    template_id = payload["templateId"]
    check_route_path(payload["routePath"], "payload.routePath")
    if any(_has_detail_page(component) for component in payload["components"]):
        check_detail_parent(payload["routePath"])
    with ws.store.lock("template"):
        manifest, head = ws.store.read_with_head("template")
        module = _check_module_name(manifest, template_id)
        content = build_template_source(payload)
        ensure_packages(ws)
        write_text(ws.templates_dir / f"{module}.py", content)
        manifest[template_id] = payload
        refresh_registry(ws, manifest)
        ws.store.write("template", manifest, expected_head=head)
    _logger.info("template %s written to %s.py", template_id, module)
    return {"ok": True, "message": f"Template {template_id} generated.", "warnings": []}


def delete_template(ws: Workspace, template_id: str) -> dict:
    warnings: List[Issue] = []
    with ws.store.lock("template"):
        manifest, head = ws.store.read_with_head("template")
        known = manifest.pop(template_id, None) is not None
        module = template_module(template_id)
        shared = any(template_module(other) == module for other in manifest)
        refresh_registry(ws, manifest)
        if known and not shared and not is_reserved_module(module):
            remove_best_effort(ws.templates_dir / f"{module}.py", warnings)
        if known:
            ws.store.write("template", manifest, expected_head=head)
    return {"ok": True, "message": f"Template {template_id} removed.", "warnings": warnings}
