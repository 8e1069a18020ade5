"""Table synthesizer: one SQLAlchemy schema module per table plus the schema index."""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from nodesmith.identifiers import to_identifier

from app.emit import py_literal, py_string, render_source
from app.errors import Issue, PreconditionError, issue
from app.workspace import Workspace, epoch_ms, list_files, move_path, write_if_absent, write_text

_logger = logging.getLogger("nodesmith.tables")

TYPE_BUILDERS = {
    "integer": "Integer",
    "text": "Text",
    "real": "Float",
    "boolean": "Integer",
}

METADATA_MODULE = "_metadata"
RESERVED_IDENTIFIERS = ("metadata",)

_METADATA_SOURCE = '''"""Shared MetaData for generated schema modules."""

from sqlalchemy import MetaData

metadata = MetaData()
'''

_TABLE_TEMPLATE = '''
{% if header %}
# {{ header }}
{% endif %}
from sqlalchemy import {{ builders|join(", ") }}

from .{{ metadata_module }} import metadata
{% for ident in foreign_tables %}
from .{{ ident }} import {{ ident }}
{% endfor %}

__all__ = [{{ table_ident|pystr }}]

{{ table_ident }} = Table(
    {{ sql_name|pystr }},
    metadata,
{% for args in columns %}
    Column({{ args|join(", ") }}),
{% endfor %}
)
'''

_INDEX_TEMPLATE = '''
# Auto-generated schema exports
from .{{ metadata_module }} import metadata
{% for module in modules %}
from .{{ module }} import *  # noqa: F401,F403
{% endfor %}
'''


def _column_args(column: dict, table_name: str, sql_name: str, path: str, warnings: List[Issue]) -> tuple[list[str], set[str], str | None]:
    builders = {TYPE_BUILDERS[column["type"]]}
    key = to_identifier(column["name"])
    args = [py_string(column["name"]), TYPE_BUILDERS[column["type"]]]
    foreign_table = None

    fk = column.get("foreignKey")
    if fk:
        builders.add("ForeignKey")
        target_column = to_identifier(fk["column"])
        if fk["table"] == table_name or to_identifier(fk["table"]) == sql_name:
            ref = py_string(f"{sql_name}.{target_column}")
        else:
            foreign_table = to_identifier(fk["table"])
            ref = f"{foreign_table}.c.{target_column}"
        fk_args = [ref]
        if fk.get("onDelete"):
            fk_args.append(f"ondelete={py_string(fk['onDelete'].upper())}")
        args.append(f"ForeignKey({', '.join(fk_args)})")

    if key != column["name"]:
        args.append(f"key={py_string(key)}")
    if column.get("primaryKey"):
        args.append("primary_key=True")
        if column.get("autoIncrement"):
            args.append("autoincrement=True")
    elif column.get("autoIncrement"):
        warnings.append(
            issue("TABLE_AUTOINCREMENT_IGNORED", "autoIncrement has no effect without primaryKey", f"{path}.autoIncrement")
        )
    if column.get("notNull"):
        args.append("nullable=False")
    if "default" in column and column["default"] is not None:
        args.append(f"default={py_literal(column['default'])}")
    if column["type"] == "boolean":
        args.append('info={"logical_type": "boolean"}')
    return args, builders, foreign_table


def build_table_source(payload: dict, warnings: List[Issue] | None = None) -> str:
    warnings = warnings if warnings is not None else []
    table_name = payload["tableName"]
    sql_name = to_identifier(table_name)
    builders = {"Column", "Table"}
    foreign_tables: set[str] = set()
    columns = []
    for idx, column in enumerate(payload["columns"]):
        args, used, foreign_table = _column_args(column, table_name, sql_name, f"payload.columns[{idx}]", warnings)
        builders |= used
        if foreign_table and foreign_table != sql_name:
            foreign_tables.add(foreign_table)
        columns.append(args)
    header = payload.get("displayName")
    if header:
        header = " ".join(header.split())
    return render_source(
        _TABLE_TEMPLATE,
        f"{sql_name}.py",
        header=header,
        builders=sorted(builders),
        metadata_module=METADATA_MODULE,
        foreign_tables=sorted(foreign_tables),
        table_ident=sql_name,
        sql_name=sql_name,
        columns=columns,
    )


def schema_modules(ws: Workspace) -> List[str]:
    modules = []
    for name in list_files(ws.schema_dir):
        if not name.endswith(".py") or name == "__init__.py" or name.startswith("_"):
            continue
        modules.append(name[: -len(".py")])
    return sorted(modules)


def refresh_schema_index(ws: Workspace) -> List[str]:
    write_if_absent(ws.schema_dir / f"{METADATA_MODULE}.py", _METADATA_SOURCE)
    modules = schema_modules(ws)
    content = render_source(
        _INDEX_TEMPLATE,
        "__init__.py",
        metadata_module=METADATA_MODULE,
        modules=modules,
    )
    write_text(ws.schema_dir / "__init__.py", content)
    _logger.info("schema index refreshed (%d tables)", len(modules))
    return modules


def _check_identifier(manifest: Dict[str, Any], table_name: str) -> None:
    ident = to_identifier(table_name)
    if ident in RESERVED_IDENTIFIERS or ident.startswith("_"):
        # the index star-imports every table module next to the shared metadata
        raise PreconditionError(
            "TABLE_IDENTIFIER_RESERVED",
            f"Table {table_name!r} maps to the reserved schema module {ident!r}",
            "payload.tableName",
            {"identifier": ident},
        )
    for other in manifest:
        if other != table_name and to_identifier(other) == ident:
            raise PreconditionError(
                "TABLE_IDENTIFIER_COLLISION",
                f"Table {table_name!r} maps to the same module as existing table {other!r}",
                "payload.tableName",
                {"identifier": ident},
            )


def upsert_table(ws: Workspace, payload: dict) -> dict:
    warnings: List[Issue] = []
    table_name = payload["tableName"]
    ident = to_identifier(table_name)
    with ws.store.lock("table"):
        manifest, head = ws.store.read_with_head("table")
        _check_identifier(manifest, table_name)
        content = build_table_source(payload, warnings)
        write_if_absent(ws.schema_dir / f"{METADATA_MODULE}.py", _METADATA_SOURCE)
        write_text(ws.schema_dir / f"{ident}.py", content)
        manifest[table_name] = payload
        ws.store.write("table", manifest, expected_head=head)
    _logger.info("table %s written to %s.py", table_name, ident)
    return {"ok": True, "message": f"Table {table_name} synced.", "warnings": warnings}


def delete_table(ws: Workspace, table_name: str) -> dict:
    warnings: List[Issue] = []
    ident = to_identifier(table_name)
    source = ws.schema_dir / f"{ident}.py"
    with ws.store.lock("table"):
        manifest, head = ws.store.read_with_head("table")
        if source.exists():
            archived = ws.schema_archive_dir / f"{ident}-{epoch_ms()}.py"
            move_path(source, archived)
            _logger.info("table %s archived to %s", table_name, archived.name)
        else:
            warnings.append(issue("TABLE_SOURCE_MISSING", f"No schema source for {table_name}", "payload.tableName"))
        if table_name in manifest:
            del manifest[table_name]
            ws.store.write("table", manifest, expected_head=head)
    return {"ok": True, "message": f"Table {table_name} archived.", "warnings": warnings}
