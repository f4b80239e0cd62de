"""Object-array (JSON) writer.

Output shape::

    {"records":[
    {...}
    ,{...}
    ],"totalRecords":2}

Each record is one line; the separating comma is written in front of
every record after the first, so a checkpoint always ends on a complete
object and the comma decision only depends on the restored record count.
"""

from __future__ import annotations

import json
from typing import Any

from filegen.records.orders import Order
from filegen.records.schema import json_value
from filegen.writers.base import CheckpointedWriter


JSON_HEADER = '{"records":['


class JsonWriter(CheckpointedWriter):
    format_name = "json"

    def write_header(self) -> None:
        self.emit(JSON_HEADER + "\n")

    def write_item(self, item: Any) -> None:
        payload = item.to_dict() if isinstance(item, Order) else item.as_dict()
        prefix = "," if self.record_count > 0 else ""
        self.emit(prefix + json.dumps(json_value(payload), ensure_ascii=False) + "\n")

    def write_footer(self) -> None:
        self.emit(f'],"totalRecords":{self.record_count}}}\n')


__all__ = ["JSON_HEADER", "JsonWriter"]
