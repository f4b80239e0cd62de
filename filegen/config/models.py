"""Typed configuration models using Pydantic for validation.

A config file has three sections: ``settings`` (pipeline-wide knobs),
``database`` (how to reach the record source) and ``interfaces`` (one
entry per generated file type, keyed by interface type).
"""

from __future__ import annotations

import os
import re
from enum import Enum
from typing import Dict, List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from filegen.primitives.base import RichEnumMixin

MIN_CHUNK_SIZE = 1
MAX_CHUNK_SIZE = 10000
DEFAULT_CHUNK_SIZE = 1000
DEFAULT_SKIP_LIMIT = 100
DEFAULT_ALLOWED_EXTENSIONS = ["xml", "csv", "txt", "json", "dat"]

# Row-limit clause per driver, appended after ORDER BY; {n} is the page size
DEFAULT_PAGE_LIMIT_CLAUSES: Dict[str, str] = {"sqlite": "LIMIT {n}"}

_PERMISSIONS_PATTERN = re.compile(r"^([r-][w-][x-]){3}$")


class OutputFormat(RichEnumMixin, str, Enum):
    XML = "XML"
    CSV = "CSV"
    TXT = "TXT"
    JSON = "JSON"
    FIXED = "FIXED"

    @property
    def default_extension(self) -> str:
        return "dat" if self is OutputFormat.FIXED else self.value.lower()

    @property
    def uses_mapping(self) -> bool:
        return self in (OutputFormat.CSV, OutputFormat.TXT, OutputFormat.FIXED)


OutputFormat._default = "XML"
OutputFormat._aliases = {"delimited": "CSV", "fixedlength": "FIXED", "fixed_length": "FIXED"}


class RecordShape(RichEnumMixin, str, Enum):
    FLAT = "flat"
    ORDER = "order"


RecordShape._default = "FLAT"
RecordShape._descriptions = {
    "flat": "One source row per output record",
    "order": "Parent order rows with nested line items (two-phase fetch)",
}


class RetrySettings(BaseModel):
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0

    @field_validator("max_attempts")
    @classmethod
    def _validate_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_attempts must be at least 1")
        return value


class Settings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    output_directory: str = "./output"
    state_directory: Optional[str] = None
    chunk_size: int = DEFAULT_CHUNK_SIZE
    page_size: Optional[int] = None
    skip_limit: int = DEFAULT_SKIP_LIMIT
    worker_pool_size: int = 4
    poll_interval_seconds: float = 30.0
    retry: RetrySettings = Field(default_factory=RetrySettings)
    xsd_strict_mode: bool = True
    file_permissions: Optional[str] = "rw-r--r--"
    external_config_dir: Optional[str] = None
    job_store_path: Optional[str] = None
    allowed_extensions: List[str] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_EXTENSIONS)
    )

    @field_validator("chunk_size")
    @classmethod
    def _validate_chunk_size(cls, value: int) -> int:
        if not MIN_CHUNK_SIZE <= value <= MAX_CHUNK_SIZE:
            raise ValueError(
                f"chunk_size must be between {MIN_CHUNK_SIZE} and {MAX_CHUNK_SIZE}"
            )
        return value

    @field_validator("page_size")
    @classmethod
    def _validate_page_size(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value < 1:
            raise ValueError("page_size must be a positive integer")
        return value

    @field_validator("skip_limit")
    @classmethod
    def _validate_skip_limit(cls, value: int) -> int:
        if value < 0:
            raise ValueError("skip_limit cannot be negative")
        return value

    @field_validator("worker_pool_size")
    @classmethod
    def _validate_pool(cls, value: int) -> int:
        if value < 1:
            raise ValueError("worker_pool_size must be a positive integer")
        return value

    @field_validator("file_permissions")
    @classmethod
    def _validate_permissions(cls, value: Optional[str]) -> Optional[str]:
        if value and not _PERMISSIONS_PATTERN.match(value):
            raise ValueError(f"file_permissions must look like 'rw-r--r--', got {value!r}")
        return value or None

    @field_validator("allowed_extensions", mode="before")
    @classmethod
    def _lower_extensions(cls, value):
        if isinstance(value, str):
            value = [value]
        return [str(ext).lower().lstrip(".") for ext in value]

    @property
    def effective_page_size(self) -> int:
        return self.page_size or self.chunk_size

    @property
    def checkpoint_directory(self) -> str:
        return self.state_directory or self.output_directory

    @property
    def job_store_file(self) -> str:
        return self.job_store_path or os.path.join(self.checkpoint_directory, "jobs.db")


class DatabaseConfig(BaseModel):
    """Connection details for the record source.

    ``driver`` is ``pyodbc`` for production databases or ``sqlite`` for
    local files. The connection string is read from ``conn_str_env`` when
    set so secrets stay out of config files.

    ``page_limit_clause`` is appended after each page's ORDER BY with
    ``{n}`` replaced by the page size. sqlite defaults to ``LIMIT {n}``;
    pyodbc has no default because the syntax depends on the server (for
    example ``OFFSET 0 ROWS FETCH NEXT {n} ROWS ONLY``). Without a clause
    the server orders every remaining row and the reader stops fetching
    after one page. An empty string turns the sqlite default off.
    """

    driver: str = "pyodbc"
    conn_str: Optional[str] = None
    conn_str_env: Optional[str] = None
    timeout_seconds: int = 30
    page_limit_clause: Optional[str] = None

    @property
    def effective_page_limit_clause(self) -> Optional[str]:
        if self.page_limit_clause is not None:
            return self.page_limit_clause or None
        return DEFAULT_PAGE_LIMIT_CLAUSES.get(self.driver)

    @field_validator("driver")
    @classmethod
    def _validate_driver(cls, value: str) -> str:
        value = value.lower()
        if value not in ("pyodbc", "sqlite"):
            raise ValueError("database.driver must be 'pyodbc' or 'sqlite'")
        return value

    @model_validator(mode="after")
    def _require_connection(self):
        if not self.conn_str and not self.conn_str_env:
            raise ValueError("database requires conn_str or conn_str_env")
        return self


class InterfaceConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    enabled: bool = True
    description: Optional[str] = None
    data_source_query: str
    key_column: str = "id"
    record_shape: RecordShape = RecordShape.FLAT
    detail_query: Optional[str] = None
    output_format: OutputFormat = OutputFormat.XML
    output_file_extension: Optional[str] = None
    mapping_file: Optional[str] = None
    stream_name: Optional[str] = None
    have_headers: bool = False
    root_element: Optional[str] = None
    namespace: Optional[str] = None
    xsd_schema_file: Optional[str] = None
    json_schema_file: Optional[str] = None
    record_schema_file: Optional[str] = None
    required_fields: List[str] = Field(default_factory=list)
    filter_blank_fields: List[str] = Field(default_factory=list)

    @field_validator("output_format", mode="before")
    @classmethod
    def _normalize_format(cls, value):
        return OutputFormat.normalize(value)

    @field_validator("record_shape", mode="before")
    @classmethod
    def _normalize_shape(cls, value):
        return RecordShape.normalize(value)

    @field_validator("key_column")
    @classmethod
    def _lower_key(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("required_fields", "filter_blank_fields")
    @classmethod
    def _lower_fields(cls, value: List[str]) -> List[str]:
        return [name.strip().lower() for name in value]

    @model_validator(mode="after")
    def _validate_shape(self):
        if self.record_shape == RecordShape.ORDER and not self.detail_query:
            raise ValueError("detail_query is required for record_shape 'order'")
        if self.output_format.uses_mapping and not self.mapping_file:
            raise ValueError(
                f"mapping_file is required for output_format {self.output_format.value}"
            )
        return self

    @property
    def file_extension(self) -> str:
        ext = self.output_file_extension or self.output_format.default_extension
        return ext.lower().lstrip(".")


class AppConfig(BaseModel):
    settings: Settings = Field(default_factory=Settings)
    database: Optional[DatabaseConfig] = None
    interfaces: Dict[str, InterfaceConfig] = Field(default_factory=dict)
    # Directory of the loaded file; relative schema/mapping paths resolve against it
    config_dir: Optional[str] = None

    @field_validator("interfaces", mode="before")
    @classmethod
    def _inject_names(cls, value):
        if not isinstance(value, dict):
            raise ValueError("interfaces must be a mapping of interface type to config")
        result = {}
        for key, entry in value.items():
            entry = dict(entry or {})
            entry.setdefault("name", key)
            result[str(key).upper()] = entry
        return result

    @model_validator(mode="after")
    def _check_extensions(self):
        allowed = set(self.settings.allowed_extensions)
        for key, interface in self.interfaces.items():
            if interface.file_extension not in allowed:
                raise ValueError(
                    f"interface {key}: extension '{interface.file_extension}' is not allowed"
                )
        return self

    def get_interface(self, interface_type: str) -> InterfaceConfig:
        key = interface_type.upper()
        if key not in self.interfaces:
            raise KeyError(interface_type)
        return self.interfaces[key]

    def resolve_path(self, path: Optional[str]) -> Optional[str]:
        if not path or os.path.isabs(path) or not self.config_dir:
            return path
        return os.path.join(self.config_dir, path)
