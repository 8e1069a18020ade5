"""Storage collaborator: direct DDL issued when a table is deleted."""

from __future__ import annotations

import logging
import sqlite3
from urllib.parse import urlparse

import psycopg2

from app.errors import CollaboratorError
from nodesmith.identifiers import to_identifier

_logger = logging.getLogger("nodesmith.storage")


def drop_table_sql(table_name: str) -> str:
    return f'DROP TABLE IF EXISTS "{to_identifier(table_name)}"'


def sqlite_path(db_url: str) -> str:
    # sqlite:///relative.db and sqlite:////abs/path.db
    prefix = "sqlite:///"
    if not db_url.startswith(prefix):
        raise ValueError(f"Not a sqlite URL: {db_url}")
    return db_url[len(prefix):]


class SqlStorage:
    def __init__(self, db_url: str) -> None:
        self.db_url = db_url
        self.scheme = urlparse(db_url).scheme.split("+", 1)[0]
        if self.scheme not in ("sqlite", "postgres", "postgresql"):
            raise ValueError(f"Unsupported storage URL scheme: {self.scheme or db_url}")

    def _execute(self, sql: str) -> None:
        if self.scheme == "sqlite":
            conn = sqlite3.connect(sqlite_path(self.db_url))
            try:
                conn.execute(sql)
                conn.commit()
            finally:
                conn.close()
            return
        conn = psycopg2.connect(self.db_url.replace("postgresql+psycopg2://", "postgresql://", 1))
        try:
            with conn:
                with conn.cursor() as cur:
                    cur.execute(sql)
        finally:
            conn.close()

    def drop_table(self, table_name: str) -> None:
        sql = drop_table_sql(table_name)
        _logger.info("storage: %s", sql)
        try:
            self._execute(sql)
        except (sqlite3.Error, psycopg2.Error) as exc:
            raise CollaboratorError("STORAGE_DROP_FAILED", f"{sql} failed: {exc}", "tableName") from exc
