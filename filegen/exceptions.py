"""Custom exception classes for filegen.

This module provides specific exception types for better error handling and debugging.
Record-level errors (``ValidationError``) are counted and skipped by the pipeline;
everything else surfaces as a terminal job status change.
"""

from typing import Optional, Dict, Any


class FileGenError(Exception):
    """Base exception for all filegen errors."""

    error_code: str = "ERR000"  # Override in subclasses

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, error_code: Optional[str] = None):
        """
        Initialize filegen exception.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional context
            error_code: Optional error code override
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code

    def __str__(self) -> str:
        """Return string representation with error code and details."""
        parts = [f"[{self.error_code}] {self.message}"]
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            parts.append(f"({detail_str})")
        return " ".join(parts)


class ConfigValidationError(FileGenError):
    """Raised when configuration validation fails.

    Examples:
        - Missing required configuration keys
        - Unknown interface type
        - Mapping file outside the external config directory
    """

    error_code = "CFG001"

    def __init__(self, message: str, config_path: Optional[str] = None, key: Optional[str] = None):
        details = {}
        if config_path:
            details['config_path'] = config_path
        if key:
            details['config_key'] = key
        super().__init__(message, details)


class ValidationError(FileGenError):
    """Raised when a single record fails a business rule.

    The pipeline counts these as skipped and keeps going until the
    configured skip limit is exceeded.
    """

    error_code = "VAL001"

    def __init__(self, message: str, field: Optional[str] = None, record_key: Any = None):
        details: Dict[str, Any] = {}
        if field:
            details['field'] = field
        if record_key is not None:
            details['record_key'] = record_key
        super().__init__(message, details)
        self.field = field
        self.record_key = record_key


class SkipLimitExceededError(FileGenError):
    """Raised when more records were skipped than the job allows."""

    error_code = "VAL002"

    def __init__(self, skipped: int, skip_limit: int, last_error: Optional[Exception] = None):
        details: Dict[str, Any] = {'skipped': skipped, 'skip_limit': skip_limit}
        if last_error:
            details['last_error'] = str(last_error)
        super().__init__("Skip limit exceeded", details)
        self.skipped = skipped
        self.skip_limit = skip_limit


class ReadError(FileGenError):
    """Raised when the record source cannot deliver the next page.

    Examples:
        - Transient errors that outlived the retry budget
        - Malformed query or missing table
    """

    error_code = "READ001"

    def __init__(
        self,
        message: str,
        interface_type: Optional[str] = None,
        last_key: Any = None,
        original_error: Optional[Exception] = None,
    ):
        details: Dict[str, Any] = {}
        if interface_type:
            details['interface_type'] = interface_type
        if last_key is not None:
            details['last_key'] = last_key
        if original_error:
            details['original_error'] = str(original_error)
            details['error_type'] = type(original_error).__name__
        super().__init__(message, details)
        self.original_error = original_error


class DataShapeError(ReadError):
    """Raised when rows break pagination assumptions.

    Examples:
        - NULL in the ordering key column
        - Ordering key lower than the last one seen
        - Duplicate column names in a row
    """

    error_code = "READ002"


class WriterError(FileGenError):
    """Raised when the provisional output file cannot be written."""

    error_code = "WRT001"

    def __init__(
        self,
        message: str,
        file_path: Optional[str] = None,
        operation: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        details: Dict[str, Any] = {}
        if file_path:
            details['file_path'] = file_path
        if operation:
            details['operation'] = operation
        if original_error:
            details['original_error'] = str(original_error)
            details['error_type'] = type(original_error).__name__
        super().__init__(message, details)
        self.original_error = original_error


class FinalizationError(FileGenError):
    """Raised when a provisional file could not be published and verified."""

    error_code = "FIN001"

    def __init__(self, message: str, file_path: Optional[str] = None, result: Optional[str] = None):
        details = {}
        if file_path:
            details['file_path'] = file_path
        if result:
            details['result'] = result
        super().__init__(message, details)
        self.result = result


class InvalidTransitionError(FileGenError):
    """Raised for an illegal job status change or a change to a terminal job."""

    error_code = "JOB001"

    def __init__(self, job_id: str, current: Any, requested: Any):
        super().__init__(
            f"Cannot transition job from {current} to {requested}",
            {'job_id': job_id, 'current': current, 'requested': requested},
        )
        self.job_id = job_id
        self.current = current
        self.requested = requested


class ConcurrentModificationError(FileGenError):
    """Raised when optimistic version retries are exhausted."""

    error_code = "JOB002"

    def __init__(self, job_id: str, attempts: int):
        super().__init__(
            "Job was modified concurrently",
            {'job_id': job_id, 'attempts': attempts},
        )
        self.job_id = job_id


class JobNotFoundError(FileGenError):
    """Raised when a job id is unknown to the job store."""

    error_code = "JOB003"

    def __init__(self, job_id: str):
        super().__init__("Job not found", {'job_id': job_id})
        self.job_id = job_id


class InterfaceBusyError(FileGenError):
    """Raised when another job is already PROCESSING the same interface."""

    error_code = "JOB004"

    def __init__(self, interface_type: str, job_id: Optional[str] = None):
        details = {'interface_type': interface_type}
        if job_id:
            details['job_id'] = job_id
        super().__init__("Interface already has a running job", details)
        self.interface_type = interface_type


class JobActiveError(FileGenError):
    """Raised when a job is still being run by a worker in this process."""

    error_code = "JOB005"

    def __init__(self, job_id: str, action: str = "restart"):
        super().__init__(f"Job is still running; cannot {action}", {'job_id': job_id})
        self.job_id = job_id


class ContentValidationError(FileGenError):
    """Raised in strict mode when a finished file fails schema validation."""

    error_code = "XSD001"

    def __init__(self, message: str, file_path: Optional[str] = None, errors: Optional[list] = None):
        details: Dict[str, Any] = {}
        if file_path:
            details['file_path'] = file_path
        if errors:
            details['error_count'] = len(errors)
        super().__init__(message, details)
        self.errors = list(errors or [])


__all__ = [
    "FileGenError",
    "ConfigValidationError",
    "ValidationError",
    "SkipLimitExceededError",
    "ReadError",
    "DataShapeError",
    "WriterError",
    "FinalizationError",
    "InvalidTransitionError",
    "ConcurrentModificationError",
    "JobNotFoundError",
    "InterfaceBusyError",
    "JobActiveError",
    "ContentValidationError",
]
