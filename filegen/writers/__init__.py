"""Output writers keyed by declared output format.

``WRITER_REGISTRY`` maps each ``OutputFormat`` to a builder; the pipeline
resolves the builder once per job through ``build_writer``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, Optional

from filegen.config.models import InterfaceConfig, OutputFormat, RecordShape
from filegen.writers.base import PART_SUFFIX, CheckpointedWriter, part_path_for
from filegen.writers.delimited import DelimitedWriter, MappingCache, resolve_mapping_path
from filegen.writers.json_writer import JsonWriter
from filegen.writers.sink import ByteTrackingSink
from filegen.writers.xml_writer import XmlOrderWriter, XmlRecordWriter


class WriterContext:
    """Everything a writer builder may need besides the interface config."""

    def __init__(
        self,
        mapping_cache: Optional[MappingCache] = None,
        external_config_dir: Optional[str] = None,
        config_dir: Optional[Path] = None,
    ):
        self.mapping_cache = mapping_cache or MappingCache()
        self.external_config_dir = external_config_dir
        self.config_dir = config_dir


WriterBuilder = Callable[[str, InterfaceConfig, WriterContext], CheckpointedWriter]


def _build_xml(interface_type: str, cfg: InterfaceConfig, ctx: WriterContext) -> CheckpointedWriter:
    if cfg.record_shape == RecordShape.ORDER:
        return XmlOrderWriter(interface_type, namespace=cfg.namespace)
    return XmlRecordWriter(interface_type, root_element=cfg.root_element)


def _build_mapped(interface_type: str, cfg: InterfaceConfig, ctx: WriterContext) -> CheckpointedWriter:
    path = resolve_mapping_path(cfg.mapping_file or "", ctx.external_config_dir, ctx.config_dir)
    mapping = ctx.mapping_cache.stream(path, cfg.stream_name)
    return DelimitedWriter(interface_type, mapping, have_headers=cfg.have_headers or mapping.header)


def _build_json(interface_type: str, cfg: InterfaceConfig, ctx: WriterContext) -> CheckpointedWriter:
    return JsonWriter(interface_type)


WRITER_REGISTRY: Dict[OutputFormat, WriterBuilder] = {
    OutputFormat.XML: _build_xml,
    OutputFormat.CSV: _build_mapped,
    OutputFormat.TXT: _build_mapped,
    OutputFormat.FIXED: _build_mapped,
    OutputFormat.JSON: _build_json,
}


def build_writer(
    interface_type: str,
    cfg: InterfaceConfig,
    ctx: Optional[WriterContext] = None,
) -> CheckpointedWriter:
    builder = WRITER_REGISTRY[cfg.output_format]
    return builder(interface_type, cfg, ctx or WriterContext())


__all__ = [
    "ByteTrackingSink",
    "CheckpointedWriter",
    "DelimitedWriter",
    "JsonWriter",
    "MappingCache",
    "PART_SUFFIX",
    "WRITER_REGISTRY",
    "WriterContext",
    "XmlOrderWriter",
    "XmlRecordWriter",
    "build_writer",
    "part_path_for",
]
