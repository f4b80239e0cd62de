"""Typed records produced by the cursor readers."""

from filegen.records.orders import LineItem, Order
from filegen.records.schema import ColumnDef, ColumnType, Record, RecordSchema

__all__ = ["ColumnDef", "ColumnType", "Record", "RecordSchema", "LineItem", "Order"]
