"""Record source contract and the DB-API implementation."""

from filegen.source.base import RecordSource
from filegen.source.db import DbRecordSource, build_connection_factory, source_from_config
from filegen.source.db_utils import is_retryable_db_error

__all__ = [
    "RecordSource",
    "DbRecordSource",
    "build_connection_factory",
    "source_from_config",
    "is_retryable_db_error",
]
