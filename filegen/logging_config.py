"""Logging configuration for filegen.

Console output is human readable by default and JSON on request; the
optional log file is always JSON. Every record emitted while a job runs
carries that job's ``job_id`` and ``interface_type``: ``job_context()``
sets them for the current thread (each worker runs one job) and
``JobContextFilter`` copies them onto records at the handler.

Environment Variables:
    FILEGEN_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR, CRITICAL (fallback: LOG_LEVEL)
    FILEGEN_LOG_FORMAT: json, human, simple
    FILEGEN_LOG_FILE: path of a rotating JSON log file
"""

import contextvars
import json
import logging
import logging.handlers
import os
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Union

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5

_LEVELS = {
    'DEBUG': logging.DEBUG,
    'INFO': logging.INFO,
    'WARNING': logging.WARNING,
    'WARN': logging.WARNING,
    'ERROR': logging.ERROR,
    'CRITICAL': logging.CRITICAL,
}

_CONTEXT_FIELDS = ('job_id', 'interface_type')

_job_fields: contextvars.ContextVar[Dict[str, str]] = contextvars.ContextVar(
    'filegen_job_fields', default={}
)

# LogRecord attributes that are not caller-supplied extras
_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {'message', 'asctime'}


@contextmanager
def job_context(job_id: str, interface_type: Optional[str] = None) -> Iterator[None]:
    """Tag every record logged inside the block with the job's identity."""
    fields = {'job_id': job_id}
    if interface_type:
        fields['interface_type'] = interface_type
    token = _job_fields.set(fields)
    try:
        yield
    finally:
        _job_fields.reset(token)


def current_job_fields() -> Dict[str, str]:
    return dict(_job_fields.get())


class JobContextFilter(logging.Filter):
    """Copy the active job context onto records that do not set it explicitly."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _job_fields.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line; extras become top-level keys."""

    def __init__(self, include_context: bool = True):
        super().__init__()
        self.include_context = include_context

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created, timezone.utc)
        payload: Dict[str, Any] = {
            'timestamp': stamp.isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        if self.include_context:
            payload.update(module=record.module, function=record.funcName, line=record.lineno)
        if record.exc_info:
            payload['exception'] = self.formatException(record.exc_info)

        payload.update(
            (key, value) for key, value in vars(record).items() if key not in _STANDARD_ATTRS
        )
        return json.dumps(payload, default=str)


class HumanReadableFormatter(logging.Formatter):
    """``[LEVEL] time - logger - message [job=...]`` with optional ANSI colors."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def __init__(self, use_colors: bool = False, include_context: bool = False):
        location = ' - %(module)s.%(funcName)s:%(lineno)d' if include_context else ''
        super().__init__(
            fmt=f'[%(levelname)s] %(asctime)s - %(name)s{location} - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
        )
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        job_id = getattr(record, 'job_id', None)
        if job_id:
            text = f"{text} [job={job_id}]"
        if self.use_colors and record.levelname in self.COLORS:
            text = f"{self.COLORS[record.levelname]}{text}{self.RESET}"
        return text


def get_log_level_from_env() -> int:
    """FILEGEN_LOG_LEVEL, then LOG_LEVEL; unknown names fall back to INFO."""
    name = os.environ.get('FILEGEN_LOG_LEVEL') or os.environ.get('LOG_LEVEL', 'INFO')
    return _LEVELS.get(name.upper(), logging.INFO)


def get_log_format_from_env() -> str:
    return os.environ.get('FILEGEN_LOG_FORMAT', 'human').lower()


def _console_formatter(format_type: str, use_colors: bool, include_context: bool) -> logging.Formatter:
    if format_type == 'json':
        return JSONFormatter(include_context=include_context)
    if format_type == 'simple':
        return logging.Formatter('%(levelname)s: %(message)s')
    return HumanReadableFormatter(use_colors=use_colors, include_context=include_context)


def setup_logging(
    level: Optional[int] = None,
    format_type: Optional[str] = None,
    log_file: Optional[Path] = None,
    use_colors: bool = False,
    include_context: bool = False
) -> None:
    """
    Replace the root logger's handlers with filegen's console (and file) handlers.

    Arguments left as None are read from the environment variables listed in
    the module docstring.

    Examples:
        >>> setup_logging()

        >>> setup_logging(format_type='json', log_file=Path('logs/filegen.log'))
    """
    level = get_log_level_from_env() if level is None else level
    format_type = format_type or get_log_format_from_env()
    if log_file is None and os.environ.get('FILEGEN_LOG_FILE'):
        log_file = Path(os.environ['FILEGEN_LOG_FILE'])

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    context_filter = JobContextFilter()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(_console_formatter(format_type, use_colors, include_context))
    console.addFilter(context_filter)
    root.addHandler(console)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        rotating = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS
        )
        rotating.setLevel(level)
        rotating.setFormatter(JSONFormatter(include_context=True))
        rotating.addFilter(context_filter)
        root.addHandler(rotating)


def log_exception(logger: Union[logging.Logger, logging.LoggerAdapter], message: str, exc: Exception) -> None:
    """Log ``message: exc`` at ERROR with the traceback and exception type."""
    logger.error(
        f"{message}: {exc}",
        exc_info=True,
        extra={'exception_type': type(exc).__name__, 'exception_message': str(exc)},
    )


def log_performance(
    logger: Union[logging.Logger, logging.LoggerAdapter],
    operation: str,
    duration_seconds: float,
    **metrics: Any,
) -> None:
    """
    Example:
        >>> log_performance(logger, "file_generation", duration_seconds=45.2, records_written=10000)
    """
    logger.info(
        f"Performance: {operation} completed in {duration_seconds:.2f}s",
        extra={'operation': operation, 'duration_seconds': duration_seconds, **metrics},
    )
