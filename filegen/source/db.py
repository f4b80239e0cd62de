"""Keyset-paginated record source over any DB-API 2 connection.

The configured query is wrapped as a derived table so the pagination
predicate and ORDER BY never have to be spliced into user SQL:

    SELECT * FROM (<query>) src WHERE src.<key> > ? ORDER BY src.<key>

Rows are pulled with ``fetchmany`` until ``page_size`` is reached, and
the cursor and connection are released before the page is returned.
"""

from __future__ import annotations

import logging
import os
import sqlite3
from typing import Any, Callable, List, Optional, Sequence

from filegen.config.models import DatabaseConfig
from filegen.exceptions import ConfigValidationError, DataShapeError
from filegen.source.base import RecordSource, Row

logger = logging.getLogger(__name__)

ConnectionFactory = Callable[[], Any]

# Keeps IN lists under the parameter limits of common drivers
MAX_IN_PARAMS = 900


def build_connection_factory(db_cfg: DatabaseConfig) -> ConnectionFactory:
    """Return a zero-arg callable that opens a new connection."""
    conn_str = db_cfg.conn_str
    if db_cfg.conn_str_env:
        conn_str = os.environ.get(db_cfg.conn_str_env)
        if not conn_str:
            raise ConfigValidationError(
                f"Environment variable {db_cfg.conn_str_env} is not set",
                key="database.conn_str_env",
            )

    if db_cfg.driver == "sqlite":

        def _sqlite_connect() -> Any:
            return sqlite3.connect(conn_str, timeout=db_cfg.timeout_seconds)

        return _sqlite_connect

    def _pyodbc_connect() -> Any:
        import pyodbc

        return pyodbc.connect(conn_str, timeout=db_cfg.timeout_seconds)

    return _pyodbc_connect


def _quote_identifier(name: str) -> str:
    if not name.replace("_", "").isalnum():
        raise ConfigValidationError(f"Invalid key column name '{name}'", key="key_column")
    return name


def _strip_query(query: str) -> str:
    return query.strip().rstrip(";").strip()


class DbRecordSource(RecordSource):
    """Record source backed by a DB-API connection factory (``?`` paramstyle)."""

    def __init__(
        self,
        connect: ConnectionFactory,
        query: str,
        key_column: str,
        detail_query: Optional[str] = None,
        page_limit_clause: Optional[str] = None,
    ):
        self._connect = connect
        self.query = _strip_query(query)
        self.key_column = _quote_identifier(key_column)
        self.detail_query = _strip_query(detail_query) if detail_query else None
        self.page_limit_clause = page_limit_clause

    def build_page_query(self, has_lower_bound: bool, page_size: int) -> str:
        sql = f"SELECT * FROM ({self.query}) src"
        if has_lower_bound:
            sql += f"\nWHERE src.{self.key_column} > ?"
        sql += f"\nORDER BY src.{self.key_column}"
        if self.page_limit_clause:
            sql += "\n" + self.page_limit_clause.format(n=int(page_size))
        return sql

    def fetch_page(
        self,
        lower_bound: Optional[Any],
        page_size: int,
        fetch_size: Optional[int] = None,
    ) -> List[Row]:
        sql = self.build_page_query(lower_bound is not None, page_size)
        params = (lower_bound,) if lower_bound is not None else ()
        return self._run(sql, params, limit=page_size, fetch_size=fetch_size or page_size)

    def fetch_details_by_keys(self, keys: Sequence[Any]) -> List[Row]:
        if not self.detail_query:
            return super().fetch_details_by_keys(keys)
        rows: List[Row] = []
        for start in range(0, len(keys), MAX_IN_PARAMS):
            batch = list(keys[start : start + MAX_IN_PARAMS])
            placeholders = ", ".join("?" for _ in batch)
            sql = (
                f"SELECT * FROM ({self.detail_query}) d"
                f"\nWHERE d.{self.key_column} IN ({placeholders})"
            )
            rows.extend(self._run(sql, tuple(batch)))
        return rows

    def _run(
        self,
        sql: str,
        params: Sequence[Any],
        limit: Optional[int] = None,
        fetch_size: int = 500,
    ) -> List[Row]:
        logger.debug("Executing query params=%s limit=%s", params, limit)
        conn = self._connect()
        try:
            cur = conn.cursor()
            try:
                cur.execute(sql, tuple(params))
                columns = [str(col[0]).lower() for col in cur.description]
                if len(set(columns)) != len(columns):
                    duplicates = sorted({c for c in columns if columns.count(c) > 1})
                    raise DataShapeError(
                        f"Query returned duplicate column names: {', '.join(duplicates)}"
                    )
                rows: List[Row] = []
                while limit is None or len(rows) < limit:
                    size = fetch_size if limit is None else min(fetch_size, limit - len(rows))
                    batch = cur.fetchmany(size)
                    if not batch:
                        break
                    rows.extend(dict(zip(columns, row)) for row in batch)
                return rows
            finally:
                cur.close()
        finally:
            conn.close()


def source_from_config(interface: Any, db_cfg: DatabaseConfig) -> DbRecordSource:
    """Build the record source for an ``InterfaceConfig``."""
    limit_clause = db_cfg.effective_page_limit_clause
    if limit_clause is None:
        logger.warning(
            "No page_limit_clause for driver %s; every page query orders all remaining rows",
            db_cfg.driver,
        )
    return DbRecordSource(
        build_connection_factory(db_cfg),
        interface.data_source_query,
        interface.key_column,
        detail_query=interface.detail_query,
        page_limit_clause=limit_clause,
    )


__all__ = ["DbRecordSource", "build_connection_factory", "source_from_config", "ConnectionFactory"]
