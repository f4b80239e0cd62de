"""Delimited and fixed-length writers driven by YAML stream mappings.

A mapping file describes one or more named streams::

    streams:
      payments:
        format: csv            # csv | delimited | fixedlength
        delimiter: ","
        header: true
        trailer: "TRAILER|{count}"
        fields:
          - name: payment_id
          - name: amount
            column: amount_due
          - name: reference
            length: 12          # fixedlength only
            justify: left
            padding: " "

Parsed mappings are held in a ``MappingCache`` keyed by the resolved
mapping path. The cache is an explicit object owned by whoever builds
writers; call ``clear()`` to pick up edited mapping files.
"""

from __future__ import annotations

import csv
import io
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import yaml

from filegen.exceptions import ConfigValidationError, WriterError
from filegen.records.orders import Order
from filegen.records.schema import format_value
from filegen.writers.base import CheckpointedWriter

logger = logging.getLogger(__name__)

MAPPING_SUBDIR = "mappings"
STREAM_FORMATS = ("csv", "delimited", "fixedlength")


@dataclass(frozen=True)
class FieldMapping:
    name: str
    column: str
    length: Optional[int] = None
    justify: str = "left"
    padding: str = " "
    default: str = ""


@dataclass(frozen=True)
class StreamMapping:
    name: str
    format: str = "csv"
    delimiter: str = ","
    quote_char: str = '"'
    header: bool = False
    trailer: Optional[str] = None
    fields: Sequence[FieldMapping] = field(default_factory=tuple)

    @property
    def fixed_length(self) -> bool:
        return self.format == "fixedlength"


def _parse_field(stream: str, raw: Any) -> FieldMapping:
    if isinstance(raw, str):
        raw = {"name": raw}
    if not isinstance(raw, dict) or not raw.get("name"):
        raise ValueError(f"stream {stream}: every field needs a name")
    name = str(raw["name"])
    length = raw.get("length")
    padding = str(raw.get("padding", " "))
    justify = str(raw.get("justify", "left")).lower()
    if length is not None and int(length) < 1:
        raise ValueError(f"stream {stream}: field {name} length must be positive")
    if len(padding) != 1:
        raise ValueError(f"stream {stream}: field {name} padding must be one character")
    if justify not in ("left", "right"):
        raise ValueError(f"stream {stream}: field {name} justify must be left or right")
    return FieldMapping(
        name=name,
        column=str(raw.get("column", name)).lower(),
        length=int(length) if length is not None else None,
        justify=justify,
        padding=padding,
        default=str(raw.get("default", "")),
    )


def parse_mapping(data: Dict[str, Any], source: str = "<mapping>") -> Dict[str, StreamMapping]:
    """Parse a mapping document into stream definitions keyed by name."""
    streams = data.get("streams") if isinstance(data, dict) else None
    if not isinstance(streams, dict) or not streams:
        raise ConfigValidationError("Mapping file defines no streams", config_path=source)

    result: Dict[str, StreamMapping] = {}
    for name, body in streams.items():
        body = body or {}
        try:
            fmt = str(body.get("format", "csv")).lower()
            if fmt not in STREAM_FORMATS:
                raise ValueError(f"stream {name}: unknown format '{fmt}'")
            fields = tuple(_parse_field(name, f) for f in body.get("fields") or [])
            if not fields:
                raise ValueError(f"stream {name}: no fields defined")
            if fmt == "fixedlength" and any(f.length is None for f in fields):
                raise ValueError(f"stream {name}: fixedlength fields need a length")
        except (TypeError, ValueError) as exc:
            raise ConfigValidationError(str(exc), config_path=source, key=f"streams.{name}") from exc

        result[str(name)] = StreamMapping(
            name=str(name),
            format=fmt,
            delimiter=str(body.get("delimiter", "," if fmt == "csv" else "|")),
            quote_char=str(body.get("quote", '"')),
            header=bool(body.get("header", False)),
            trailer=body.get("trailer"),
            fields=fields,
        )
    return result


def resolve_mapping_path(
    mapping_file: str,
    external_config_dir: Optional[str] = None,
    default_dir: Optional[Path] = None,
) -> Path:
    """Find a mapping file, external config directory first.

    The external directory is searched under ``<dir>/mappings``; names
    that would escape it (``../``, absolute paths) are rejected.
    """
    if external_config_dir:
        base = (Path(external_config_dir) / MAPPING_SUBDIR).resolve()
        candidate = (base / mapping_file).resolve()
        try:
            candidate.relative_to(base)
        except ValueError:
            logger.warning("Mapping file path traversal attempt blocked: %s", mapping_file)
            raise ConfigValidationError(
                "Mapping file resolves outside the external config directory",
                key="mapping_file",
            )
        if candidate.is_file():
            return candidate

    fallback = Path(mapping_file)
    if not fallback.is_absolute() and default_dir is not None:
        fallback = Path(default_dir) / fallback
    if not fallback.is_file():
        raise ConfigValidationError(f"Mapping file not found: {mapping_file}", key="mapping_file")
    return fallback.resolve()


class MappingCache:
    """Parsed mapping files keyed by resolved path."""

    def __init__(self) -> None:
        self._entries: Dict[str, Dict[str, StreamMapping]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, path: Path) -> Dict[str, StreamMapping]:
        key = str(Path(path).resolve())
        with self._lock:
            cached = self._entries.get(key)
            if cached is not None:
                return cached
            try:
                with open(key, "r", encoding="utf-8") as handle:
                    data = yaml.safe_load(handle)
            except yaml.YAMLError as exc:
                raise ConfigValidationError(f"Invalid YAML in mapping file: {exc}", config_path=key)
            streams = parse_mapping(data or {}, key)
            self._entries[key] = streams
            logger.info("Loaded mapping %s (%d stream(s))", key, len(streams))
            return streams

    def stream(self, path: Path, stream_name: Optional[str] = None) -> StreamMapping:
        streams = self.get(path)
        if stream_name is None:
            if len(streams) != 1:
                raise ConfigValidationError(
                    "Mapping file has several streams; set stream_name", config_path=str(path)
                )
            return next(iter(streams.values()))
        if stream_name not in streams:
            raise ConfigValidationError(
                f"Stream '{stream_name}' not found in mapping", config_path=str(path)
            )
        return streams[stream_name]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("Mapping cache cleared.")


class DelimitedWriter(CheckpointedWriter):
    """One line per record; optional header line and trailer line."""

    format_name = "delimited"

    def __init__(self, interface_type: str, mapping: StreamMapping, have_headers: Optional[bool] = None):
        super().__init__(interface_type)
        self.mapping = mapping
        self.have_headers = mapping.header if have_headers is None else have_headers

    def _values(self, item: Any) -> List[str]:
        if isinstance(item, Order):
            source = {k.lower(): v for k, v in item.to_dict().items() if k != "lineItems"}
        else:
            source = item
        values: List[str] = []
        for f in self.mapping.fields:
            text = format_value(source.get(f.column))
            values.append(f.default if text is None else text)
        return values

    def _line(self, values: Sequence[str]) -> str:
        if self.mapping.fixed_length:
            return "".join(self._fit(f, v) for f, v in zip(self.mapping.fields, values)) + "\n"
        buffer = io.StringIO()
        csv.writer(
            buffer,
            delimiter=self.mapping.delimiter,
            quotechar=self.mapping.quote_char,
            lineterminator="\n",
            quoting=csv.QUOTE_MINIMAL,
        ).writerow(values)
        return buffer.getvalue()

    def _fit(self, f: FieldMapping, value: str) -> str:
        length = f.length or 0
        if len(value) > length:
            raise WriterError(
                f"Value for {f.name} is {len(value)} chars, field length is {length}",
                str(self.path),
                "format",
            )
        if f.justify == "right":
            return value.rjust(length, f.padding)
        return value.ljust(length, f.padding)

    def write_header(self) -> None:
        if self.have_headers:
            names = [f.name for f in self.mapping.fields]
            if self.mapping.fixed_length:
                names = [n[: f.length or 0] for n, f in zip(names, self.mapping.fields)]
            self.emit(self._line(names))

    def write_item(self, item: Any) -> None:
        self.emit(self._line(self._values(item)))

    def write_footer(self) -> None:
        if self.mapping.trailer:
            self.emit(self.mapping.trailer.format(count=self.record_count) + "\n")


__all__ = [
    "DelimitedWriter",
    "FieldMapping",
    "MappingCache",
    "StreamMapping",
    "parse_mapping",
    "resolve_mapping_path",
]
