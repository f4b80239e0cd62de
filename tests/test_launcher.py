"""Tests for job submission, polling and the worker pool."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from filegen.exceptions import ConfigValidationError, InterfaceBusyError
from filegen.jobs import InMemoryJobStore, Job, JobStatus
from filegen.launcher import JobLauncher
from tests.conftest import numbered_rows

INTERFACES = {
    "CUSTOMER_INTERFACE": {"data_source_query": "SELECT * FROM records"},
    "PAYMENT_INTERFACE": {"data_source_query": "SELECT id, amount FROM records"},
}


@pytest.fixture
def launcher(make_config, records_db):
    config = make_config(records_db(numbered_rows(20)), INTERFACES, worker_pool_size=2)
    with JobLauncher(config, InMemoryJobStore()) as job_launcher:
        yield job_launcher


class TestSubmit:
    def test_creates_pending_job(self, launcher) -> None:
        job = launcher.submit("customer_interface", created_by="tests", launch=False)
        assert job.status == JobStatus.PENDING
        assert job.interface_type == "CUSTOMER_INTERFACE"
        assert launcher.store.get(job.job_id).created_by == "tests"

    def test_unknown_interface_rejected(self, launcher) -> None:
        with pytest.raises(ConfigValidationError, match="Unknown interface"):
            launcher.submit("NOPE", launch=False)
        assert launcher.store.list_jobs() == []

    def test_idempotency_key_returns_existing_job(self, launcher) -> None:
        first = launcher.submit("CUSTOMER_INTERFACE", idempotency_key="batch-42", launch=False)
        second = launcher.submit("CUSTOMER_INTERFACE", idempotency_key="batch-42", launch=False)
        assert second.job_id == first.job_id
        assert len(launcher.store.list_jobs()) == 1

    def test_submit_and_launch(self, launcher) -> None:
        job = launcher.submit("CUSTOMER_INTERFACE", launch=False)
        result = launcher.launch(job.job_id).result(timeout=30)
        assert result.status == JobStatus.COMPLETED
        assert result.record_count == 20


class TestPolling:
    def test_one_job_per_interface_per_poll(self, launcher) -> None:
        a1 = launcher.submit("CUSTOMER_INTERFACE", launch=False)
        a2 = launcher.submit("CUSTOMER_INTERFACE", launch=False)
        b1 = launcher.submit("PAYMENT_INTERFACE", launch=False)

        results = [f.result(timeout=30) for f in launcher.poll_pending()]

        assert sorted(j.job_id for j in results) == sorted([a1.job_id, b1.job_id])
        assert all(j.status == JobStatus.COMPLETED for j in results)
        assert launcher.store.get(a2.job_id).status == JobStatus.PENDING
        history = launcher.store.history(a1.job_id)
        assert [a.to_status for a in history][:2] == [JobStatus.QUEUED, JobStatus.PROCESSING]

        second = [f.result(timeout=30) for f in launcher.poll_pending()]
        assert [j.job_id for j in second] == [a2.job_id]

    def test_busy_interface_is_skipped(self, launcher) -> None:
        running = launcher.store.create(Job(interface_type="CUSTOMER_INTERFACE"))
        launcher.store.update_status(running.job_id, 0, JobStatus.PROCESSING)
        waiting = launcher.submit("CUSTOMER_INTERFACE", launch=False)

        assert launcher.poll_pending() == []
        assert launcher.store.get(waiting.job_id).status == JobStatus.PENDING

    def test_poll_limit(self, launcher) -> None:
        launcher.submit("CUSTOMER_INTERFACE", launch=False)
        launcher.submit("PAYMENT_INTERFACE", launch=False)
        assert len(launcher.poll_pending(limit=1)) == 1

    def test_run_forever_polls_until_stopped(self, launcher, monkeypatch) -> None:
        stop_event = threading.Event()
        calls = []

        def fake_poll(limit=None):
            calls.append(limit)
            if len(calls) == 3:
                stop_event.set()
            return []

        monkeypatch.setattr(launcher, "poll_pending", fake_poll)
        launcher.config.settings.poll_interval_seconds = 0
        launcher.run_forever(stop_event)
        assert len(calls) == 3


class TestExecute:
    def test_busy_queued_job_is_failed(self, launcher, monkeypatch) -> None:
        job = launcher.submit("CUSTOMER_INTERFACE", launch=False)
        launcher.machine.mark_queued(job.job_id)

        def busy(job_id):
            raise InterfaceBusyError("CUSTOMER_INTERFACE", job_id)

        monkeypatch.setattr(launcher.orchestrator, "run", busy)
        result = launcher.launch(job.job_id).result(timeout=30)
        assert result.status == JobStatus.FAILED
        assert "running job" in result.error_message

    def test_busy_pending_job_is_left_alone(self, launcher, monkeypatch) -> None:
        job = launcher.submit("CUSTOMER_INTERFACE", launch=False)

        def busy(job_id):
            raise InterfaceBusyError("CUSTOMER_INTERFACE", job_id)

        monkeypatch.setattr(launcher.orchestrator, "run", busy)
        assert launcher.launch(job.job_id).result(timeout=30).status == JobStatus.PENDING

    def test_unrunnable_job_is_reported_not_raised(self, launcher) -> None:
        job = launcher.submit("CUSTOMER_INTERFACE", launch=False)
        launcher.machine.mark_failed(job.job_id, "cancelled")
        result = launcher.launch(job.job_id).result(timeout=30)
        assert result.status == JobStatus.FAILED
        assert result.error_message == "cancelled"


class TestControl:
    def test_stop_pending_job(self, launcher) -> None:
        job = launcher.submit("CUSTOMER_INTERFACE", launch=False)
        stopped = launcher.stop(job.job_id, "not today")
        assert stopped.status == JobStatus.STOPPED
        assert launcher.store.history(job.job_id)[-1].reason == "not today"

    def test_restart_and_launch(self, launcher) -> None:
        job = launcher.submit("CUSTOMER_INTERFACE", launch=False)
        launcher.stop(job.job_id)
        launcher.restart(job.job_id, launch=True)
        launcher.shutdown(wait=True)
        assert launcher.store.get(job.job_id).status == JobStatus.COMPLETED

    def test_cleanup_failed_ignores_jobs_without_files(self, launcher) -> None:
        job = launcher.submit("CUSTOMER_INTERFACE", launch=False)
        launcher.machine.mark_failed(job.job_id, "never ran")
        assert launcher.cleanup_failed() == 0


def test_cleanup_failed_removes_provisional_file(launcher, tmp_path: Path) -> None:
    job = launcher.submit("CUSTOMER_INTERFACE", launch=False)
    part = tmp_path / "out" / "x.xml.part"
    part.parent.mkdir(exist_ok=True)
    part.write_text("partial", encoding="utf-8")
    launcher.machine.mark_processing(job.job_id)
    launcher.machine.update_metrics(job.job_id, 0, file_path=str(part))
    launcher.machine.mark_failed(job.job_id, "boom")

    assert launcher.cleanup_failed() == 1
    assert not part.exists()
