import os
import sys
import tempfile
import types
import unittest
from pathlib import Path
from unittest import mock

import httpx


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from app import routes
from app.errors import ArtifactError, PreconditionError
from app.workspace import Workspace


ROUTE = {"routeId": "r1", "path": "/todos/:id/edit", "pageName": "Edit Todo", "dynamic": True}


class TestRouteSource(unittest.TestCase):
    def test_page_descriptor(self) -> None:
        text = routes.build_page_source("/todos/[id]/edit", "Edit Todo", True)
        compile(text, "page.py", "exec")
        self.assertIn('ROUTE_PATH = "/todos/[id]/edit"\n', text)
        self.assertIn('PAGE_NAME = "Edit Todo"\n', text)
        self.assertIn("DYNAMIC = True\n", text)
        self.assertIn('"href": "/todos/[id]/edit"', text)
        self.assertIn("def edit_todo():", text)
        self.assertIn("page = edit_todo\n", text)
        self.assertIn("from _generated.templates.registry import get_templates_for_route", text)

    def test_page_callable_reads_registry_at_render_time(self) -> None:
        text = routes.build_page_source("/todos", "Todos")
        registry = types.ModuleType("_generated.templates.registry")
        registry.get_templates_for_route = mock.Mock(
            return_value=[{"template_id": "list", "renderable": lambda: "surface"}]
        )
        namespace: dict = {}
        exec(compile(text, "page.py", "exec"), namespace)
        with mock.patch.dict(
            sys.modules,
            {
                "_generated": types.ModuleType("_generated"),
                "_generated.templates": types.ModuleType("_generated.templates"),
                "_generated.templates.registry": registry,
            },
        ):
            page = namespace["page"]()
        registry.get_templates_for_route.assert_called_once_with("/todos")
        self.assertEqual(page["sections"], [{"template_id": "list", "surface": "surface"}])
        self.assertIsNone(page["fallback"])
        self.assertEqual(page["breadcrumbs"][0], {"label": "/", "href": "/"})

    def test_detail_page(self) -> None:
        text = routes.build_detail_source("/todos", "/api/todos", "id")
        compile(text, "page.py", "exec")
        self.assertIn("import httpx\n", text)
        self.assertIn('ENDPOINT_PATH = "/api/todos"\n', text)
        self.assertIn("client.get(ENDPOINT_PATH, params={PRIMARY_KEY: record_id})", text)
        self.assertIn('client.delete(ENDPOINT_PATH, params={PRIMARY_KEY: params["id"]})', text)
        self.assertIn('return {"redirect": PARENT_PATH}', text)

    def test_detail_page_below_root_has_single_slash(self) -> None:
        namespace: dict = {}
        exec(compile(routes.build_detail_source("/", "/api/todos", "id"), "page.py", "exec"), namespace)

        class DownClient:
            def get(self, url, params=None):
                raise httpx.ConnectError("server down")

        page = namespace["page"](DownClient(), {"id": 7})
        self.assertEqual(page["route"], "/7")
        self.assertEqual(page["back"], "/")
        self.assertIn("server down", page["error"])


class TestRouteWorkspace(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.ws = Workspace(Path(self._tmp.name))

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_upsert_writes_bracketed_directory(self) -> None:
        result = routes.upsert_route(self.ws, ROUTE)
        self.assertTrue(result["ok"])
        page = self.ws.site_dir / "todos" / "[id]" / "edit" / "page.py"
        self.assertTrue(page.exists())
        self.assertEqual(self.ws.store.read("route"), {"/todos/[id]/edit": ROUTE})

    def test_ensure_route_is_idempotent(self) -> None:
        self.assertTrue(routes.ensure_route(self.ws, "/todos")["created"])
        self.assertFalse(routes.ensure_route(self.ws, "/todos")["created"])
        self.assertTrue((self.ws.site_dir / "todos").is_dir())

    def test_reserved_roots_rejected(self) -> None:
        for path in ("/api/x", "/_generated", "/_archive/old"):
            with self.assertRaises(PreconditionError):
                routes.upsert_route(self.ws, dict(ROUTE, path=path))

    def test_ensure_detail_route(self) -> None:
        result = routes.ensure_detail_route(self.ws, "/todos", "/api/todos", "id")
        self.assertEqual(result["detail"], os.path.join("site", "todos", "[id]", "page.py"))
        self.assertTrue((self.ws.site_dir / "todos" / "[id]" / "page.py").exists())

    def test_delete_archives_directory(self) -> None:
        routes.upsert_route(self.ws, dict(ROUTE, path="/todos"))
        result = routes.delete_route(self.ws, "/todos")
        self.assertTrue(result["ok"])
        self.assertEqual(result["warnings"], [])
        self.assertFalse((self.ws.site_dir / "todos").exists())
        archived = [p.name for p in self.ws.route_archive_dir.iterdir()]
        self.assertEqual(len(archived), 1)
        self.assertTrue(archived[0].startswith("_todos-"))
        self.assertEqual(self.ws.store.read("route"), {})

    def test_delete_missing_directory_warns(self) -> None:
        result = routes.delete_route(self.ws, "/ghost")
        self.assertTrue(result["ok"])
        self.assertEqual([w["code"] for w in result["warnings"]], ["ROUTE_DIRECTORY_MISSING"])

    def test_failed_move_is_warning(self) -> None:
        routes.upsert_route(self.ws, dict(ROUTE, path="/todos"))
        failure = ArtifactError("ARTIFACT_MOVE_FAILED", "disk says no", "site/todos")
        with mock.patch.object(routes, "move_path", side_effect=failure):
            result = routes.delete_route(self.ws, "/todos")
        self.assertTrue(result["ok"])
        self.assertEqual([w["code"] for w in result["warnings"]], ["ROUTE_ARCHIVE_FAILED"])
        self.assertEqual(self.ws.store.read("route"), {})

    def test_delete_refuses_reserved_and_escaping_paths(self) -> None:
        self.ws.api_dir.mkdir(parents=True)
        (self.ws.api_dir / "manifest.json").write_text("{}", encoding="utf-8")
        self.ws.schema_dir.mkdir(parents=True)
        cases = (("/api", "ROUTE_PATH_RESERVED"), ("/_generated", "ROUTE_PATH_RESERVED"), ("/../db", "ROUTE_PATH_INVALID"))
        for path, code in cases:
            with self.assertRaises(PreconditionError) as ctx:
                routes.delete_route(self.ws, path)
            self.assertEqual(ctx.exception.code, code)
        self.assertTrue((self.ws.api_dir / "manifest.json").exists())
        self.assertTrue(self.ws.schema_dir.is_dir())
        self.assertFalse(self.ws.route_archive_dir.exists())

    def test_upsert_refuses_dot_segments(self) -> None:
        for path in ("/todos/../../escaped", "/./todos"):
            with self.assertRaises(PreconditionError) as ctx:
                routes.upsert_route(self.ws, dict(ROUTE, path=path))
            self.assertEqual(ctx.exception.code, "ROUTE_PATH_INVALID")
        self.assertFalse((self.ws.root.parent / "escaped").exists())

    def test_detail_below_id_route_is_refused(self) -> None:
        with self.assertRaises(PreconditionError) as ctx:
            routes.ensure_detail_route(self.ws, "/todos/:id", "/api/todos", "id")
        self.assertEqual(ctx.exception.code, "ROUTE_DETAIL_CONFLICT")

    def test_root_route_never_archived(self) -> None:
        routes.upsert_route(self.ws, dict(ROUTE, path="/"))
        result = routes.delete_route(self.ws, "/")
        self.assertEqual([w["code"] for w in result["warnings"]], ["ROUTE_ARCHIVE_SKIPPED"])
        self.assertTrue(self.ws.site_dir.is_dir())


if __name__ == "__main__":
    unittest.main()
