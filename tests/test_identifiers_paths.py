import os
import sys
import unittest


ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SRC = os.path.join(ROOT, "src")
if SRC not in sys.path:
    sys.path.insert(0, SRC)

from nodesmith.identifiers import column_accessor, to_function_name, to_identifier
from nodesmith.paths import (
    api_route_segments,
    archive_slug,
    breadcrumbs,
    dynamic_segment_names,
    normalize_api_path,
    normalize_route_path,
    route_segments,
    unsafe_segments,
)
from nodesmith.sources import needs_body, read_from_source, source_scope


class TestIdentifiers(unittest.TestCase):
    def test_unsafe_characters_replaced(self) -> None:
        self.assertEqual(to_identifier("todo-items"), "todo_items")
        self.assertEqual(to_identifier("a b.c"), "a_b_c")

    def test_leading_digit_prefixed(self) -> None:
        self.assertEqual(to_identifier("2fa"), "_2fa")

    def test_keywords_suffixed(self) -> None:
        self.assertEqual(to_identifier("class"), "class_")
        self.assertEqual(to_identifier("from"), "from_")

    def test_case_preserved_and_empty(self) -> None:
        self.assertEqual(to_identifier("TodoList"), "TodoList")
        self.assertEqual(to_identifier(""), "_")

    def test_function_name(self) -> None:
        self.assertEqual(to_function_name("Todo List", "fallback"), "todo_list")
        self.assertEqual(to_function_name("!!!", "fallback"), "fallback")
        self.assertEqual(to_function_name("3 Steps", "fallback"), "_3_steps")

    def test_column_accessor(self) -> None:
        self.assertEqual(column_accessor("todos", "id"), "todos.c.id")


class TestRoutePaths(unittest.TestCase):
    def test_normalize(self) -> None:
        self.assertEqual(normalize_route_path("todos/"), "/todos")
        self.assertEqual(normalize_route_path("  //todos//:id/  "), "/todos/[id]")
        self.assertEqual(normalize_route_path(""), "/")
        self.assertEqual(normalize_route_path("/"), "/")

    def test_param_segments_map_to_brackets_in_order(self) -> None:
        path = "/orgs/:org/projects/:project"
        segments = route_segments(path)
        self.assertEqual(segments, ["orgs", "[org]", "projects", "[project]"])
        self.assertEqual(dynamic_segment_names(path), ["org", "project"])

    def test_breadcrumbs_one_per_segment(self) -> None:
        crumbs = breadcrumbs("/todos/:id/edit")
        self.assertEqual(len(crumbs), 3)
        self.assertEqual(
            crumbs,
            [
                {"label": "todos", "href": "/todos"},
                {"label": "[id]", "href": "/todos/[id]"},
                {"label": "edit", "href": "/todos/[id]/edit"},
            ],
        )
        self.assertEqual(breadcrumbs("/"), [])

    def test_unsafe_segments(self) -> None:
        self.assertEqual(unsafe_segments("/a/../b"), [".."])
        self.assertEqual(unsafe_segments("./x/../.."), [".", "..", ".."])
        self.assertEqual(unsafe_segments("/a\\b"), ["a\\b"])
        self.assertEqual(unsafe_segments("/todos/:id"), [])
        self.assertEqual(unsafe_segments("/todos/..x"), [])

    def test_archive_slug(self) -> None:
        self.assertEqual(archive_slug("/todos/:id"), "_todos_[id]")


class TestApiPaths(unittest.TestCase):
    def test_prefix_added_once(self) -> None:
        self.assertEqual(normalize_api_path("/todos"), "/api/todos")
        self.assertEqual(normalize_api_path("api/todos/"), "/api/todos")
        self.assertEqual(normalize_api_path("/todos/:id"), "/api/todos/:id")

    def test_route_segments_below_api(self) -> None:
        self.assertEqual(api_route_segments("/api/todos/:id"), ["todos", "[id]"])
        self.assertEqual(api_route_segments("/todos"), ["todos"])


class TestSources(unittest.TestCase):
    def setUp(self) -> None:
        self.bag = {
            "body": {"title": "milk", "meta": {"tag": "home"}},
            "query": {"id": "7"},
            "params": {"slug": "abc"},
        }

    def test_scopes(self) -> None:
        self.assertEqual(read_from_source("body.title", self.bag), "milk")
        self.assertEqual(read_from_source("body.meta.tag", self.bag), "home")
        self.assertEqual(read_from_source("query.id", self.bag), "7")
        self.assertEqual(read_from_source("params.slug", self.bag), "abc")

    def test_misses_yield_none(self) -> None:
        self.assertIsNone(read_from_source("body.missing.deeper", self.bag))
        self.assertIsNone(read_from_source("query.nope", self.bag))
        self.assertIsNone(read_from_source("cookie.x", self.bag))
        self.assertIsNone(read_from_source("", self.bag))
        self.assertIsNone(read_from_source("body.title", {"body": None, "query": None, "params": None}))

    def test_source_scope(self) -> None:
        self.assertEqual(source_scope("body.a"), "body")
        self.assertIsNone(source_scope("body."))
        self.assertIsNone(source_scope("header.x"))
        self.assertIsNone(source_scope(3))

    def test_needs_body(self) -> None:
        self.assertTrue(needs_body({"action": "insert", "fieldMapping": {}}))
        self.assertTrue(needs_body({"action": "select", "where": [{"source": "body.id"}]}))
        self.assertFalse(needs_body({"action": "select", "where": [{"source": "query.id"}]}))


if __name__ == "__main__":
    unittest.main()
