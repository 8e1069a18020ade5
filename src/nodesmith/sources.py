"""Source expressions: where a generated handler reads a value from.

A source is "<scope>.<path>" with scope body, query or params.
"""

from __future__ import annotations

from typing import Iterable

SOURCE_SCOPES = ("body", "query", "params")


# Embedded verbatim into generated endpoint modules; keep it free of imports.
def read_from_source(source, bag):
    if not source:
        return None
    scope, _, rest = source.partition(".")
    if scope == "body":
        current = bag.get("body")
        for key in rest.split(".") if rest else []:
            if not isinstance(current, dict):
                return None
            current = current.get(key)
        return current
    if scope == "query":
        query = bag.get("query")
        return query.get(rest) if query is not None else None
    if scope == "params":
        params = bag.get("params") or {}
        return params.get(rest)
    return None


def source_scope(source: str) -> str | None:
    if not isinstance(source, str) or "." not in source:
        return None
    scope, _, rest = source.partition(".")
    if scope not in SOURCE_SCOPES or not rest:
        return None
    return scope


def endpoint_sources(config: dict) -> Iterable[str]:
    mapping = config.get("fieldMapping") or {}
    for source in mapping.values():
        yield source
    for condition in config.get("where") or []:
        yield condition.get("source")


def needs_body(config: dict) -> bool:
    if config.get("action") == "insert":
        return True
    return any(source_scope(source) == "body" for source in endpoint_sources(config))
