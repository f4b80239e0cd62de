"""Tests for the in-memory and SQLite job stores (parametrized via ``job_store``)."""

from __future__ import annotations

from pathlib import Path

import pytest

from filegen.jobs import InMemoryJobStore, Job, JobStatus, SqliteJobStore, TransitionAudit, build_job_store


def _job(interface: str = "ORDER_INTERFACE", **kwargs) -> Job:
    return Job(interface_type=interface, **kwargs)


class TestJobStore:
    def test_create_and_get(self, job_store) -> None:
        created = job_store.create(_job(created_by="tests", version=7))
        fetched = job_store.get(created.job_id)

        assert fetched == created
        assert fetched.version == 0
        assert fetched.status == JobStatus.PENDING
        assert fetched.created_by == "tests"
        assert job_store.get("missing") is None

    def test_duplicate_id_rejected(self, job_store) -> None:
        job = job_store.create(_job())
        with pytest.raises(ValueError):
            job_store.create(_job(job_id=job.job_id))

    def test_duplicate_idempotency_key_rejected(self, job_store) -> None:
        first = job_store.create(_job(idempotency_key="k-1"))
        with pytest.raises(ValueError):
            job_store.create(_job(idempotency_key="k-1"))
        assert job_store.find_by_idempotency_key("k-1").job_id == first.job_id
        assert job_store.find_by_idempotency_key("k-2") is None

    def test_update_status_is_compare_and_swap(self, job_store) -> None:
        job = job_store.create(_job())

        assert job_store.update_status(job.job_id, 0, JobStatus.QUEUED) == 1
        # Stale version: no rows, nothing changes
        assert job_store.update_status(job.job_id, 0, JobStatus.FAILED, "late") == 0

        stored = job_store.get(job.job_id)
        assert stored.status == JobStatus.QUEUED
        assert stored.version == 1
        assert stored.error_message is None

    def test_update_metrics_does_not_bump_version(self, job_store) -> None:
        job = job_store.create(_job())
        assert job_store.update_metrics(job.job_id, 10, 2, 1, file_name="f.xml", file_path="/o/f.xml.part") == 1
        assert job_store.update_metrics(job.job_id, 20, 3) == 1

        stored = job_store.get(job.job_id)
        assert (stored.record_count, stored.skipped_count, stored.invalid_count) == (20, 3, 0)
        assert stored.file_name == "f.xml"
        assert stored.file_path == "/o/f.xml.part"
        assert stored.version == 0

    @pytest.mark.parametrize("terminal", [JobStatus.COMPLETED, JobStatus.FAILED])
    def test_update_metrics_refused_for_terminal_jobs(self, job_store, terminal) -> None:
        job = job_store.create(_job())
        job_store.update_status(job.job_id, 0, terminal, completed_at="2025-01-15T10:30:00Z")
        assert job_store.update_metrics(job.job_id, 99) == 0
        assert job_store.get(job.job_id).record_count == 0

    def test_find_pending_oldest_first_with_limit(self, job_store) -> None:
        late = job_store.create(_job(created_at="2025-01-15T10:00:02Z"))
        early = job_store.create(_job(created_at="2025-01-15T10:00:01Z"))
        queued = job_store.create(_job(created_at="2025-01-15T10:00:00Z"))
        job_store.update_status(queued.job_id, 0, JobStatus.QUEUED)

        assert [j.job_id for j in job_store.find_pending()] == [early.job_id, late.job_id]
        assert [j.job_id for j in job_store.find_pending(limit=1)] == [early.job_id]

    def test_exists_running(self, job_store) -> None:
        job = job_store.create(_job("A"))
        job_store.create(_job("B"))
        assert not job_store.exists_running("A")

        job_store.update_status(job.job_id, 0, JobStatus.PROCESSING)
        assert job_store.exists_running("A")
        assert not job_store.exists_running("A", exclude_job_id=job.job_id)
        assert not job_store.exists_running("B")

    def test_claim_processing_is_exclusive_per_interface(self, job_store) -> None:
        first = job_store.create(_job("A"))
        second = job_store.create(_job("A"))
        other = job_store.create(_job("B"))

        assert job_store.claim_processing(first.job_id, 0) == 1
        assert job_store.claim_processing(second.job_id, 0) == 0
        assert job_store.get(second.job_id).status == JobStatus.PENDING
        assert job_store.claim_processing(other.job_id, 0) == 1

        stored = job_store.get(first.job_id)
        assert stored.status == JobStatus.PROCESSING
        assert stored.version == 1

    def test_claim_processing_needs_current_version(self, job_store) -> None:
        job = job_store.create(_job("A"))
        job_store.update_status(job.job_id, 0, JobStatus.QUEUED)
        assert job_store.claim_processing(job.job_id, 0) == 0
        assert job_store.claim_processing(job.job_id, 1) == 1

    def test_history_in_insertion_order(self, job_store) -> None:
        job = job_store.create(_job())
        job_store.record_transition(TransitionAudit(job.job_id, JobStatus.PENDING, JobStatus.QUEUED, "claimed"))
        job_store.record_transition(TransitionAudit(job.job_id, JobStatus.QUEUED, JobStatus.PROCESSING))

        history = job_store.history(job.job_id)
        assert [(a.from_status, a.to_status) for a in history] == [
            (JobStatus.PENDING, JobStatus.QUEUED),
            (JobStatus.QUEUED, JobStatus.PROCESSING),
        ]
        assert history[0].reason == "claimed"
        assert job_store.history("other") == []

    def test_list_jobs_by_interface(self, job_store) -> None:
        a = job_store.create(_job("A"))
        job_store.create(_job("B"))
        assert [j.job_id for j in job_store.list_jobs("A")] == [a.job_id]
        assert len(job_store.list_jobs()) == 2


class TestSqliteJobStore:
    def test_state_survives_new_instance(self, tmp_path: Path) -> None:
        path = tmp_path / "state" / "jobs.db"
        job = SqliteJobStore(path).create(_job(idempotency_key="abc"))
        SqliteJobStore(path).update_status(job.job_id, 0, JobStatus.PROCESSING)

        reopened = SqliteJobStore(path)
        assert reopened.get(job.job_id).status == JobStatus.PROCESSING
        assert reopened.find_by_idempotency_key("abc").job_id == job.job_id

    def test_memory_path_rejected(self) -> None:
        with pytest.raises(ValueError):
            SqliteJobStore(":memory:")


def test_build_job_store(tmp_path: Path) -> None:
    assert isinstance(build_job_store(), InMemoryJobStore)
    assert isinstance(build_job_store(tmp_path / "jobs.db"), SqliteJobStore)


def test_job_dict_round_trip() -> None:
    job = _job(status="running", record_count=3, error_message=None)
    assert job.status == JobStatus.PROCESSING
    assert Job.from_dict(job.to_dict()) == job
