"""Pytest configuration and fixtures."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import pytest

from filegen.config import AppConfig, parse_config
from filegen.jobs import InMemoryJobStore, SqliteJobStore
from filegen.source.base import RecordSource, Row


RECORDS_DDL = """
CREATE TABLE records (
    id INTEGER PRIMARY KEY,
    name TEXT,
    amount TEXT,
    status TEXT
)
"""

ORDERS_DDL = """
CREATE TABLE orders (
    order_id INTEGER PRIMARY KEY,
    order_number TEXT,
    order_amount TEXT,
    order_date TEXT,
    customer_id TEXT,
    customer_name TEXT,
    status TEXT
);
CREATE TABLE line_items (
    line_item_id TEXT PRIMARY KEY,
    order_id INTEGER,
    product_id TEXT,
    product_name TEXT,
    quantity INTEGER,
    unit_price TEXT,
    line_amount TEXT,
    line_status TEXT
);
"""

ORDER_DETAIL_QUERY = """
SELECT o.order_id, o.order_number, o.order_amount, o.order_date,
       o.customer_id, o.customer_name, o.status,
       li.line_item_id, li.product_id, li.product_name, li.quantity,
       li.unit_price, li.line_amount, li.line_status
FROM orders o LEFT JOIN line_items li ON li.order_id = o.order_id
"""


def create_records_db(path: Path, rows: Iterable[Sequence[Any]]) -> Path:
    """Create a sqlite file with a ``records`` table holding ``rows``."""
    conn = sqlite3.connect(str(path))
    try:
        conn.execute(RECORDS_DDL)
        conn.executemany("INSERT INTO records (id, name, amount, status) VALUES (?, ?, ?, ?)", rows)
        conn.commit()
    finally:
        conn.close()
    return path


def numbered_rows(count: int, start: int = 1) -> List[tuple]:
    return [(i, f"name-{i}", f"{i}.50", "ACTIVE") for i in range(start, start + count)]


@pytest.fixture
def records_db(tmp_path: Path) -> Callable[..., Path]:
    """Factory: ``records_db(rows)`` returns the sqlite file path."""

    def _make(rows: Optional[Iterable[Sequence[Any]]] = None, name: str = "source.db") -> Path:
        return create_records_db(tmp_path / name, rows if rows is not None else numbered_rows(10))

    return _make


@pytest.fixture
def orders_db(tmp_path: Path) -> Path:
    """Five orders; order 3 has no valid line item, order 5 has two items."""
    path = tmp_path / "orders.db"
    conn = sqlite3.connect(str(path))
    try:
        conn.executescript(ORDERS_DDL)
        conn.executemany(
            "INSERT INTO orders VALUES (?, ?, ?, ?, ?, ?, ?)",
            [
                (i, f" ORD-{i:03d} ", f"{i * 10}.00", "2025-01-15", f"C{i}", f"Customer {i}", "NEW")
                for i in range(1, 6)
            ],
        )
        conn.executemany(
            "INSERT INTO line_items VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            [
                ("L1", 1, "P1", "Widget", 1, "10.00", "10.00", "OPEN"),
                ("L2", 2, "P2", "Gadget", 2, "10.00", "20.00", "OPEN"),
                ("L3", 3, "P3", "Broken", 0, "10.00", "0.00", "OPEN"),
                ("L4", 4, "P4", "Thing", 4, "10.00", "40.00", "OPEN"),
                ("L5a", 5, "P5", "Part A", 1, "20.00", "20.00", "OPEN"),
                ("L5b", 5, "P6", "Part B", 3, "10.00", "30.00", "OPEN"),
            ],
        )
        conn.commit()
    finally:
        conn.close()
    return path


def build_config(
    tmp_path: Path,
    db_path: Path,
    interfaces: Dict[str, Dict[str, Any]],
    **settings: Any,
) -> AppConfig:
    """Build a validated config writing under ``tmp_path``."""
    base_settings = {
        "output_directory": str(tmp_path / "out"),
        "state_directory": str(tmp_path / "state"),
        "retry": {"max_attempts": 2, "base_delay": 0, "max_delay": 0},
    }
    base_settings.update(settings)
    return parse_config(
        {
            "settings": base_settings,
            "database": {"driver": "sqlite", "conn_str": str(db_path)},
            "interfaces": interfaces,
            "config_dir": str(tmp_path),
        }
    )


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., AppConfig]:
    def _make(db_path: Path, interfaces: Dict[str, Dict[str, Any]], **settings: Any) -> AppConfig:
        return build_config(tmp_path, db_path, interfaces, **settings)

    return _make


@pytest.fixture(params=["memory", "sqlite"])
def job_store(request, tmp_path: Path):
    """Both job store implementations."""
    if request.param == "memory":
        return InMemoryJobStore()
    return SqliteJobStore(tmp_path / "jobs.db")


class ListSource(RecordSource):
    """In-memory record source over a list of dict rows sorted by ``id``."""

    def __init__(self, rows: List[Row], key: str = "id", details: Optional[List[Row]] = None):
        self.rows = sorted(rows, key=lambda r: r[key])
        self.key = key
        self.details = details or []
        self.page_calls: List[Any] = []
        self.detail_calls: List[List[Any]] = []

    def fetch_page(self, lower_bound, page_size, fetch_size=None) -> List[Row]:
        self.page_calls.append(lower_bound)
        rows = [r for r in self.rows if lower_bound is None or r[self.key] > lower_bound]
        return [dict(r) for r in rows[:page_size]]

    def fetch_details_by_keys(self, keys) -> List[Row]:
        self.detail_calls.append(list(keys))
        wanted = set(keys)
        return [dict(r) for r in self.details if r[self.key] in wanted]


@pytest.fixture
def list_source() -> Callable[..., ListSource]:
    def _make(count: int = 10, **kwargs: Any) -> ListSource:
        rows = [{"id": i, "name": f"name-{i}", "amount": f"{i}.50"} for i in range(1, count + 1)]
        return ListSource(rows, **kwargs)

    return _make


@pytest.fixture
def restore_root_logging():
    """Put the root logger back after code that calls ``setup_logging``."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    for handler in list(root.handlers):
        if handler not in handlers:
            handler.close()
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
