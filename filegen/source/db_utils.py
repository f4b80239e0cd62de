"""Shared utilities for DB-API record sources."""

from __future__ import annotations

_SQLITE_TRANSIENT_MARKERS = ("locked", "busy", "timeout")


def is_retryable_db_error(exc: BaseException) -> bool:
    """Determine if a database error is retryable.

    Retries on transient connection/lock errors but not on query/data errors.
    Supports pyodbc, sqlite3, and generic Python connection exceptions.
    """
    exc_type = type(exc).__name__
    exc_module = type(exc).__module__

    if "pyodbc" in exc_module:
        if "OperationalError" in exc_type or "InterfaceError" in exc_type:
            return True
        # 40001 is the SQLSTATE for deadlock victim / serialization failure
        if exc_type == "Error" and exc.args and str(exc.args[0]) in ("40001", "HYT00", "08S01"):
            return True

    if "sqlite3" in exc_module and "OperationalError" in exc_type:
        message = str(exc).lower()
        return any(marker in message for marker in _SQLITE_TRANSIENT_MARKERS)

    if exc_type in ("ConnectionError", "TimeoutError", "BrokenPipeError", "ConnectionResetError"):
        return True

    return False


__all__ = ["is_retryable_db_error"]
