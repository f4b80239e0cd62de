"""Restart-safe interface file generation.

Layer Structure:
    filegen.primitives   - enum parsing shared by statuses and formats
    filegen.config       - YAML + pydantic configuration
    filegen.records      - typed records and schema-by-example
    filegen.source       - record source contract and DB-API implementation
    filegen.writers      - byte-tracking, checkpointed output writers
    filegen.jobs         - job model, stores and status machine
    filegen.pipeline     - reader -> processor -> writer orchestration
    filegen.launcher     - bounded worker pool and pending-job poller
"""

__version__ = "1.0.0"

from filegen.exceptions import (
    FileGenError,
    ConfigValidationError,
    ValidationError,
    ReadError,
    DataShapeError,
    WriterError,
    FinalizationError,
    InvalidTransitionError,
    ConcurrentModificationError,
)
from filegen.jobs.status import JobStatus

__all__ = [
    "__version__",
    "FileGenError",
    "ConfigValidationError",
    "ValidationError",
    "ReadError",
    "DataShapeError",
    "WriterError",
    "FinalizationError",
    "InvalidTransitionError",
    "ConcurrentModificationError",
    "JobStatus",
]
