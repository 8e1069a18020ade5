"""Layout synthesizer: area assignments per template, exposed as layouts.py."""

from __future__ import annotations

import logging
from typing import Dict

from app.emit import render_source
from app.errors import PreconditionError
from app.ui_templates import ensure_packages
from app.workspace import Workspace, write_text

_logger = logging.getLogger("nodesmith.layouts")

_LAYOUTS_MODULE = '''
"""Generated template -> layout lookup."""

LAYOUTS = {{ layouts|py }}


def get_layout_for_template(template_id):
    return LAYOUTS.get(template_id)
'''


def build_layouts_source(manifest: Dict[str, dict]) -> str:
    return render_source(_LAYOUTS_MODULE, "layouts.py", layouts=manifest)


def refresh_layouts(ws: Workspace, manifest: Dict[str, dict]) -> None:
    ensure_packages(ws)
    write_text(ws.templates_dir / "layouts.py", build_layouts_source(manifest))


def _check_references(ws: Workspace, payload: dict) -> None:
    templates = ws.store.read("template")
    template = templates.get(payload["templateId"])
    if template is None:
        raise PreconditionError(
            "LAYOUT_UNKNOWN_TEMPLATE",
            f"Template {payload['templateId']!r} does not exist",
            "payload.templateId",
        )
    declared = {component.get("id") for component in template.get("components") or []}
    for area, ids in sorted((payload.get("areas") or {}).items()):
        for idx, component_id in enumerate(ids):
            if component_id not in declared:
                raise PreconditionError(
                    "LAYOUT_UNKNOWN_COMPONENT",
                    f"Area {area!r} names component {component_id!r}, which template {payload['templateId']!r} does not declare",
                    f"payload.areas.{area}[{idx}]",
                    {"templateId": payload["templateId"], "componentId": component_id},
                )


def upsert_layout(ws: Workspace, payload: dict) -> dict:
    layout_id = payload["layoutId"]
    _check_references(ws, payload)
    with ws.store.lock("layout"):
        manifest, head = ws.store.read_with_head("layout")
        for template_id, entry in list(manifest.items()):
            if entry.get("layoutId") == layout_id and template_id != payload["templateId"]:
                del manifest[template_id]
                _logger.info("layout %s moved from template %s", layout_id, template_id)
        manifest[payload["templateId"]] = payload
        refresh_layouts(ws, manifest)
        ws.store.write("layout", manifest, expected_head=head)
    return {"ok": True, "message": f"Layout {layout_id} applied.", "warnings": []}


def delete_layout(ws: Workspace, layout_id: str) -> dict:
    with ws.store.lock("layout"):
        manifest, head = ws.store.read_with_head("layout")
        owners = [template_id for template_id, entry in manifest.items() if entry.get("layoutId") == layout_id]
        if not owners:
            return {"ok": True, "message": f"Layout {layout_id} already removed.", "warnings": []}
        for template_id in owners:
            del manifest[template_id]
        refresh_layouts(ws, manifest)
        ws.store.write("layout", manifest, expected_head=head)
    return {"ok": True, "message": f"Layout {layout_id} removed.", "warnings": []}
