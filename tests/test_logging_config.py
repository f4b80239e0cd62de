from __future__ import annotations

import json
import logging
import logging.handlers
import threading
from pathlib import Path

import pytest

from filegen.logging_config import (
    HumanReadableFormatter,
    JobContextFilter,
    JSONFormatter,
    current_job_fields,
    get_log_format_from_env,
    get_log_level_from_env,
    job_context,
    log_exception,
    log_performance,
    setup_logging,
)


def _record(msg: str = "hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord("filegen.test", logging.INFO, __file__, 10, msg, None, None, func="fn")
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_setup_logging_writes_json_file(tmp_path: Path, restore_root_logging) -> None:
    """Console output plus a rotating JSON file handler."""
    log_path = tmp_path / "logs" / "filegen.log"
    setup_logging(level=logging.DEBUG, format_type="json", log_file=log_path, include_context=True)

    root = restore_root_logging
    assert root.level == logging.DEBUG
    file_handlers = [h for h in root.handlers if isinstance(h, logging.handlers.RotatingFileHandler)]
    assert len(file_handlers) == 1
    assert file_handlers[0].maxBytes == 10 * 1024 * 1024
    assert file_handlers[0].backupCount == 5

    with job_context("job-1", "CUSTOMER_INTERFACE"):
        logging.getLogger("filegen.test").info("generated %d records", 3)
    file_handlers[0].flush()

    payload = json.loads(log_path.read_text(encoding="utf-8").strip().splitlines()[-1])
    assert payload["message"] == "generated 3 records"
    assert payload["job_id"] == "job-1"
    assert payload["interface_type"] == "CUSTOMER_INTERFACE"
    assert payload["level"] == "INFO"


def test_setup_logging_reads_env(monkeypatch, restore_root_logging) -> None:
    monkeypatch.setenv("FILEGEN_LOG_LEVEL", "warning")
    monkeypatch.setenv("FILEGEN_LOG_FORMAT", "simple")
    monkeypatch.delenv("FILEGEN_LOG_FILE", raising=False)
    setup_logging()

    root = restore_root_logging
    assert root.level == logging.WARNING
    assert len(root.handlers) == 1
    assert root.handlers[0].formatter._fmt == "%(levelname)s: %(message)s"


@pytest.mark.parametrize(
    "env, expected",
    [
        ({}, logging.INFO),
        ({"LOG_LEVEL": "debug"}, logging.DEBUG),
        ({"FILEGEN_LOG_LEVEL": "ERROR", "LOG_LEVEL": "debug"}, logging.ERROR),
        ({"FILEGEN_LOG_LEVEL": "WARN"}, logging.WARNING),
        ({"FILEGEN_LOG_LEVEL": "nonsense"}, logging.INFO),
    ],
)
def test_log_level_from_env(monkeypatch, env, expected) -> None:
    monkeypatch.delenv("FILEGEN_LOG_LEVEL", raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    assert get_log_level_from_env() == expected


def test_log_format_from_env(monkeypatch) -> None:
    monkeypatch.delenv("FILEGEN_LOG_FORMAT", raising=False)
    assert get_log_format_from_env() == "human"
    monkeypatch.setenv("FILEGEN_LOG_FORMAT", "JSON")
    assert get_log_format_from_env() == "json"


class TestFormatters:
    def test_json_formatter_context_and_extras(self) -> None:
        record = _record(interface_type="ORDER_INTERFACE")
        payload = json.loads(JSONFormatter(include_context=True).format(record))

        assert payload["logger"] == "filegen.test"
        assert payload["function"] == "fn"
        assert payload["line"] == 10
        assert payload["interface_type"] == "ORDER_INTERFACE"
        assert payload["timestamp"].endswith("Z")

    def test_json_formatter_without_context(self) -> None:
        payload = json.loads(JSONFormatter(include_context=False).format(_record()))
        assert "function" not in payload
        assert "args" not in payload

    def test_human_formatter_appends_job_id(self) -> None:
        formatted = HumanReadableFormatter().format(_record(job_id="job-9"))
        assert formatted.startswith("[INFO]")
        assert formatted.endswith("hello [job=job-9]")


class TestJobContext:
    def test_fields_are_scoped_to_the_block(self) -> None:
        assert current_job_fields() == {}
        with job_context("job-1", "ORDER_INTERFACE"):
            assert current_job_fields() == {"job_id": "job-1", "interface_type": "ORDER_INTERFACE"}
            with job_context("job-2"):
                assert current_job_fields() == {"job_id": "job-2"}
            assert current_job_fields()["job_id"] == "job-1"
        assert current_job_fields() == {}

    def test_filter_tags_records_without_overriding_extras(self) -> None:
        context_filter = JobContextFilter()
        plain = _record()
        explicit = _record(job_id="explicit")
        with job_context("job-7", "PAYMENT_INTERFACE"):
            assert context_filter.filter(plain)
            context_filter.filter(explicit)
        assert plain.job_id == "job-7"
        assert plain.interface_type == "PAYMENT_INTERFACE"
        assert explicit.job_id == "explicit"

    def test_context_does_not_leak_into_other_threads(self) -> None:
        seen = []
        with job_context("job-1"):
            worker = threading.Thread(target=lambda: seen.append(current_job_fields()))
            worker.start()
            worker.join()
        assert seen == [{}]


def test_log_exception_and_performance(caplog) -> None:
    logger = logging.getLogger("filegen.test.helpers")
    with caplog.at_level(logging.INFO, logger="filegen.test.helpers"):
        try:
            raise RuntimeError("disk full")
        except RuntimeError as exc:
            log_exception(logger, "Publish failed", exc)
        log_performance(logger, "file_generation", 1.234, records_written=10)

    error, perf = caplog.records
    assert error.getMessage() == "Publish failed: disk full"
    assert error.exception_type == "RuntimeError"
    assert error.exc_info is not None
    assert perf.getMessage() == "Performance: file_generation completed in 1.23s"
    assert perf.records_written == 10
