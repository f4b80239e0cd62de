"""Schema-by-example records.

The column set of a dynamic interface is only known once the first page
comes back from the source, so ``RecordSchema.from_row`` infers names and
types from that row. Names are lower-cased; a name may not repeat.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from filegen.exceptions import DataShapeError
from filegen.primitives.base import RichEnumMixin


class ColumnType(RichEnumMixin, str, Enum):
    STRING = "string"
    INTEGER = "integer"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"

    @classmethod
    def from_value(cls, value: Any) -> "ColumnType":
        """Infer the column type from a sample value (None is STRING)."""
        # bool is a subclass of int, check it first
        if isinstance(value, bool):
            return cls.BOOLEAN
        if isinstance(value, int):
            return cls.INTEGER
        if isinstance(value, (float, Decimal)):
            return cls.DECIMAL
        if isinstance(value, (datetime, date)):
            return cls.TIMESTAMP
        return cls.STRING


ColumnType._default = "STRING"
ColumnType._aliases = {
    "str": "string",
    "varchar": "string",
    "int": "integer",
    "bigint": "integer",
    "numeric": "decimal",
    "float": "decimal",
    "bool": "boolean",
    "datetime": "timestamp",
    "date": "timestamp",
}


@dataclass(frozen=True)
class ColumnDef:
    name: str
    type: ColumnType


class RecordSchema:
    """Ordered column definitions shared by every record of a job."""

    def __init__(self, columns: Sequence[ColumnDef]):
        seen = set()
        for column in columns:
            if column.name in seen:
                raise DataShapeError(f"Duplicate column name '{column.name}'")
            seen.add(column.name)
        self.columns: Tuple[ColumnDef, ...] = tuple(columns)
        self._index = {column.name: i for i, column in enumerate(self.columns)}

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "RecordSchema":
        columns: List[ColumnDef] = []
        for name, value in row.items():
            columns.append(ColumnDef(str(name).lower(), ColumnType.from_value(value)))
        return cls(columns)

    @property
    def names(self) -> List[str]:
        return [column.name for column in self.columns]

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def __len__(self) -> int:
        return len(self.columns)

    def index_of(self, name: str) -> int:
        return self._index[name.lower()]

    def type_of(self, name: str) -> ColumnType:
        return self.columns[self.index_of(name)].type

    def record(self, row: Mapping[str, Any]) -> "Record":
        """Build a record from a row whose columns match this schema."""
        lowered: Dict[str, Any] = {}
        for name, value in row.items():
            key = str(name).lower()
            if key in lowered:
                raise DataShapeError(f"Duplicate column name '{key}'")
            lowered[key] = value
        if set(lowered) != set(self._index):
            raise DataShapeError(
                "Row columns do not match the schema",
                last_key=None,
            )
        return Record(self, [lowered[name] for name in self.names])


class Record:
    """An ordered, named set of typed values from one source row."""

    __slots__ = ("schema", "_values")

    def __init__(self, schema: RecordSchema, values: Sequence[Any]):
        if len(values) != len(schema):
            raise DataShapeError(
                f"Record has {len(values)} values for {len(schema)} columns"
            )
        self.schema = schema
        self._values = list(values)

    def __getitem__(self, name: str) -> Any:
        return self._values[self.schema.index_of(name)]

    def __setitem__(self, name: str, value: Any) -> None:
        self._values[self.schema.index_of(name)] = value

    def __iter__(self) -> Iterator[str]:
        return iter(self.schema.names)

    def __len__(self) -> int:
        return len(self._values)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Record):
            return NotImplemented
        return self.schema.names == other.schema.names and self._values == other._values

    def __repr__(self) -> str:
        return f"Record({self.as_dict()!r})"

    def get(self, name: str, default: Any = None) -> Any:
        if name.lower() not in self.schema:
            return default
        return self[name]

    def items(self) -> List[Tuple[str, Any]]:
        return list(zip(self.schema.names, self._values))

    def values(self) -> List[Any]:
        return list(self._values)

    def as_dict(self) -> Dict[str, Any]:
        return dict(self.items())

    def is_empty(self) -> bool:
        return all(value is None or (isinstance(value, str) and not value.strip())
                   for value in self._values)


def format_value(value: Any) -> Optional[str]:
    """Render a column value as text for output files (None stays None)."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, float):
        return format(Decimal(repr(value)), "f")
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def json_value(value: Any) -> Any:
    """Map a column value to its JSON form: exact decimals become strings."""
    if isinstance(value, (Decimal, datetime, date, bytes)):
        return format_value(value)
    if isinstance(value, list):
        return [json_value(v) for v in value]
    if isinstance(value, dict):
        return {k: json_value(v) for k, v in value.items()}
    return value


__all__ = ["ColumnType", "ColumnDef", "RecordSchema", "Record", "format_value", "json_value"]
