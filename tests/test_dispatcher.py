import os
import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from manifest_store import ManifestConflictError
from app.dispatcher import dispatch_node, run_node
from app.errors import CollaboratorError
from app.workspace import Workspace


class RecordingMigrator:
    def __init__(self, error: Exception | None = None) -> None:
        self.calls = 0
        self.error = error

    def sync(self) -> None:
        self.calls += 1
        if self.error is not None:
            raise self.error


class RecordingStorage:
    def __init__(self) -> None:
        self.dropped = []

    def drop_table(self, table_name: str) -> None:
        self.dropped.append(table_name)


TODOS_TABLE = {
    "nodeType": "table",
    "operation": "upsert",
    "payload": {
        "tableName": "todos",
        "columns": [
            {"name": "id", "type": "integer", "primaryKey": True, "autoIncrement": True},
            {"name": "title", "type": "text", "notNull": True},
            {"name": "done", "type": "boolean", "default": False},
        ],
    },
}


def _endpoint(method: str, action: str, **extra) -> dict:
    payload = {"path": "/todos", "method": method, "table": "todos", "action": action}
    payload.update(extra)
    return {"nodeType": "endpoint", "operation": "upsert", "payload": payload}


class DispatcherCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.migrator = RecordingMigrator()
        self.storage = RecordingStorage()
        self.ws = Workspace(Path(self._tmp.name), migrator=self.migrator, storage=self.storage)

    def tearDown(self) -> None:
        self._tmp.cleanup()


class TestTableNodes(DispatcherCase):
    def test_table_upsert_indexes_and_migrates(self) -> None:
        status, body = run_node(self.ws, TODOS_TABLE)
        self.assertEqual(status, 200, body)
        self.assertEqual(body, {"ok": True, "message": "Table todos synced.", "warnings": []})
        self.assertTrue((self.ws.schema_dir / "todos.py").exists())
        index = (self.ws.schema_dir / "__init__.py").read_text(encoding="utf-8")
        self.assertIn("todos", index)
        self.assertEqual(self.migrator.calls, 1)
        self.assertEqual(self.storage.dropped, [])

    def test_table_delete_archives_drops_and_migrates(self) -> None:
        run_node(self.ws, TODOS_TABLE)
        status, body = run_node(
            self.ws, {"nodeType": "table", "operation": "delete", "payload": {"tableName": "todos"}}
        )
        self.assertEqual(status, 200, body)
        self.assertFalse((self.ws.schema_dir / "todos.py").exists())
        archived = [p.name for p in self.ws.schema_archive_dir.iterdir()]
        self.assertEqual(len(archived), 1)
        self.assertTrue(archived[0].startswith("todos-"))
        self.assertEqual(self.storage.dropped, ["todos"])
        self.assertEqual(self.migrator.calls, 2)
        self.assertEqual(self.ws.store.read("table"), {})
        index = (self.ws.schema_dir / "__init__.py").read_text(encoding="utf-8")
        self.assertNotIn("todos", index)

    def test_migration_failure_is_500_after_files_written(self) -> None:
        self.migrator.error = CollaboratorError("MIGRATION_FAILED", "alembic exited with 1", "apply")
        status, body = run_node(self.ws, TODOS_TABLE)
        self.assertEqual(status, 500)
        self.assertFalse(body["ok"])
        self.assertEqual(body["errors"][0]["code"], "MIGRATION_FAILED")
        self.assertEqual(body["errors"][0]["detail"]["step"], "storage.migrate")
        self.assertTrue((self.ws.schema_dir / "todos.py").exists())

    def test_without_collaborators_cascade_is_skipped(self) -> None:
        ws = Workspace(self.ws.root)
        status, body = run_node(ws, TODOS_TABLE)
        self.assertEqual(status, 200, body)


class TestEndpointNodes(DispatcherCase):
    def test_get_and_post_share_one_module(self) -> None:
        get = _endpoint("get", "select", where=[{"column": "id", "op": "=", "source": "query.id"}])
        post = _endpoint("POST", "insert", fieldMapping={"title": "body.title"})
        self.assertEqual(run_node(self.ws, get)[0], 200)
        status, body = run_node(self.ws, post)
        self.assertEqual(status, 200, body)
        self.assertEqual(body["message"], "Endpoint POST /api/todos generated.")
        text = (self.ws.api_dir / "todos" / "route.py").read_text(encoding="utf-8")
        self.assertIn("async def GET(", text)
        self.assertIn("async def POST(", text)
        self.assertEqual(self.migrator.calls, 0)

    def test_delete_one_method(self) -> None:
        run_node(self.ws, _endpoint("GET", "select"))
        run_node(self.ws, _endpoint("POST", "insert", fieldMapping={"title": "body.title"}))
        status, _ = run_node(
            self.ws, {"nodeType": "endpoint", "operation": "delete", "payload": {"path": "/todos", "method": "get"}}
        )
        self.assertEqual(status, 200)
        text = (self.ws.api_dir / "todos" / "route.py").read_text(encoding="utf-8")
        self.assertNotIn("async def GET(", text)
        self.assertIn("async def POST(", text)

    def test_insert_where_warning_is_returned(self) -> None:
        node = _endpoint(
            "POST", "insert", fieldMapping={"title": "body.title"}, where=[{"column": "id", "op": "=", "source": "query.id"}]
        )
        status, body = run_node(self.ws, node)
        self.assertEqual(status, 200)
        self.assertEqual([w["code"] for w in body["warnings"]], ["ENDPOINT_WHERE_IGNORED"])

    def test_delete_without_where_is_422(self) -> None:
        status, body = run_node(self.ws, _endpoint("DELETE", "delete"))
        self.assertEqual(status, 422)
        self.assertEqual(body["errors"][0]["code"], "ENDPOINT_DELETE_WITHOUT_WHERE")


class TestTemplateNodes(DispatcherCase):
    def test_template_with_dynamic_table_creates_route_and_detail(self) -> None:
        node = {
            "nodeType": "template",
            "operation": "upsert",
            "payload": {
                "templateId": "todo-list",
                "routePath": "/todos",
                "components": [
                    {
                        "id": "grid",
                        "type": "table",
                        "tableName": "todos",
                        "dataSource": {"endpointPath": "/api/todos", "primaryKey": "id"},
                        "dynamicRouting": True,
                    }
                ],
            },
        }
        status, body = run_node(self.ws, node)
        self.assertEqual(status, 200, body)
        self.assertTrue((self.ws.site_dir / "todos").is_dir())
        detail = self.ws.site_dir / "todos" / "[id]" / "page.py"
        self.assertTrue(detail.exists())
        self.assertIn('ENDPOINT_PATH = "/api/todos"', detail.read_text(encoding="utf-8"))
        self.assertTrue((self.ws.templates_dir / "todo_list.py").exists())

    def test_route_upsert_and_delete(self) -> None:
        node = {
            "nodeType": "route",
            "operation": "upsert",
            "payload": {"routeId": "r1", "path": "/todos", "pageName": "Todos"},
        }
        self.assertEqual(run_node(self.ws, node)[0], 200)
        self.assertTrue((self.ws.site_dir / "todos" / "page.py").exists())
        body = dispatch_node(self.ws, {"nodeType": "route", "operation": "delete", "payload": {"path": "/todos"}})
        self.assertTrue(body["ok"])
        self.assertEqual(body["message"], "Route /todos archived.")


class TestFailureStatuses(DispatcherCase):
    def test_validation_failure_is_400(self) -> None:
        status, body = run_node(self.ws, {"nodeType": "table", "operation": "upsert", "payload": {"tableName": "x"}})
        self.assertEqual(status, 400)
        self.assertFalse(body["ok"])
        self.assertEqual(body["errors"][0]["code"], "TABLE_COLUMNS_EMPTY")
        self.assertEqual(body["error"], body["errors"][0]["message"])
        self.assertFalse(self.ws.schema_dir.exists())

    def test_reserved_route_is_422(self) -> None:
        node = {"nodeType": "route", "operation": "upsert", "payload": {"routeId": "r", "path": "/api/x", "pageName": "X"}}
        status, body = run_node(self.ws, node)
        self.assertEqual(status, 422)
        self.assertEqual(body["errors"][0]["code"], "ROUTE_PATH_RESERVED")

    def test_deleting_reserved_route_keeps_endpoints(self) -> None:
        run_node(self.ws, _endpoint("GET", "select"))
        status, body = run_node(self.ws, {"nodeType": "route", "operation": "delete", "payload": {"path": "/api"}})
        self.assertEqual(status, 422)
        self.assertEqual(body["errors"][0]["code"], "ROUTE_PATH_RESERVED")
        self.assertTrue((self.ws.api_dir / "todos" / "route.py").exists())
        self.assertEqual(sorted(self.ws.store.read("endpoint")), ["/api/todos"])

    def test_escaping_paths_are_400(self) -> None:
        run_node(self.ws, TODOS_TABLE)
        status, body = run_node(self.ws, {"nodeType": "route", "operation": "delete", "payload": {"path": "/../db"}})
        self.assertEqual(status, 400)
        self.assertEqual(body["errors"][0]["code"], "PAYLOAD_PATH_INVALID")
        self.assertTrue((self.ws.schema_dir / "todos.py").exists())
        status, _ = run_node(self.ws, _endpoint("GET", "select", path="/../../../escaped"))
        self.assertEqual(status, 400)
        self.assertFalse((self.ws.root.parent / "escaped").exists())

    def test_manifest_conflict_is_409(self) -> None:
        conflict = ManifestConflictError(kind="table", expected_head="aaa", actual_head="bbb")
        with mock.patch.object(self.ws.store, "write", side_effect=conflict):
            status, body = run_node(self.ws, TODOS_TABLE)
        self.assertEqual(status, 409)
        self.assertEqual(body["errors"][0]["code"], "MANIFEST_CONFLICT")
        self.assertEqual(body["errors"][0]["detail"], {"expected": "aaa", "actual": "bbb"})
        self.assertEqual(self.migrator.calls, 0)

    def test_unexpected_handler_error_is_500(self) -> None:
        with mock.patch.object(self.ws.store, "read_with_head", side_effect=RuntimeError("disk gone")):
            with self.assertLogs("nodesmith.dispatcher", level="ERROR"):
                status, body = run_node(self.ws, TODOS_TABLE)
        self.assertEqual(status, 500)
        self.assertEqual(body["errors"][0]["code"], "NODE_HANDLER_FAILED")
        self.assertEqual(body["error"], "disk gone")


if __name__ == "__main__":
    unittest.main()
