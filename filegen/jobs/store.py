"""Durable job storage.

The job store is the source of truth for job identity, status and
metrics. Status changes are compare-and-swap on ``version``: an update
names the version it read and affects zero rows if someone else got
there first. ``claim_processing`` folds the one-PROCESSING-job-per-interface
check into that same swap. Metrics updates never touch ``version`` and are
refused for terminal jobs.

Two backends:

- ``InMemoryJobStore``: dicts under a lock, for tests and one-shot runs
- ``SqliteJobStore``: one table for jobs, one for transition history
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import closing, contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from filegen.jobs.models import Job, TransitionAudit
from filegen.jobs.status import TERMINAL_STATES, JobStatus

logger = logging.getLogger(__name__)

_TERMINAL_VALUES = tuple(sorted(status.value for status in TERMINAL_STATES))


class JobStore(ABC):
    """Storage contract used by the status machine, pipeline and launcher."""

    @abstractmethod
    def create(self, job: Job) -> Job:
        """Insert a new job (version 0). Raises ValueError on duplicate id or key."""

    @abstractmethod
    def get(self, job_id: str) -> Optional[Job]:
        ...

    @abstractmethod
    def update_status(
        self,
        job_id: str,
        expected_version: int,
        new_status: JobStatus,
        error_message: Optional[str] = None,
        completed_at: Optional[str] = None,
    ) -> int:
        """Set status if the stored version still matches; returns rows affected."""

    @abstractmethod
    def claim_processing(self, job_id: str, expected_version: int) -> int:
        """Move the job to PROCESSING in one atomic step.

        Affects zero rows if the version moved on or another job of the same
        interface type is already PROCESSING.
        """

    @abstractmethod
    def update_metrics(
        self,
        job_id: str,
        record_count: int,
        skipped_count: int = 0,
        invalid_count: int = 0,
        file_name: Optional[str] = None,
        file_path: Optional[str] = None,
    ) -> int:
        """Store progress counters for a non-terminal job; returns rows affected."""

    @abstractmethod
    def find_pending(self, limit: Optional[int] = None) -> List[Job]:
        ...

    @abstractmethod
    def exists_running(self, interface_type: str, exclude_job_id: Optional[str] = None) -> bool:
        ...

    @abstractmethod
    def find_by_idempotency_key(self, key: str) -> Optional[Job]:
        ...

    @abstractmethod
    def record_transition(self, audit: TransitionAudit) -> None:
        ...

    @abstractmethod
    def history(self, job_id: str) -> List[TransitionAudit]:
        ...

    @abstractmethod
    def list_jobs(self, interface_type: Optional[str] = None) -> List[Job]:
        ...


class InMemoryJobStore(JobStore):
    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._history: Dict[str, List[TransitionAudit]] = {}
        self._lock = threading.RLock()

    def create(self, job: Job) -> Job:
        with self._lock:
            if job.job_id in self._jobs:
                raise ValueError(f"Job {job.job_id} already exists")
            if job.idempotency_key and self.find_by_idempotency_key(job.idempotency_key):
                raise ValueError(f"Idempotency key {job.idempotency_key} already used")
            stored = job.copy(version=0)
            self._jobs[job.job_id] = stored
            return stored.copy()

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return job.copy() if job else None

    def update_status(self, job_id, expected_version, new_status, error_message=None, completed_at=None) -> int:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.version != expected_version:
                return 0
            self._jobs[job_id] = job.copy(
                status=JobStatus.normalize(new_status),
                error_message=error_message,
                completed_at=completed_at,
                version=job.version + 1,
            )
            return 1

    def claim_processing(self, job_id: str, expected_version: int) -> int:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or self.exists_running(job.interface_type, exclude_job_id=job_id):
                return 0
            return self.update_status(job_id, expected_version, JobStatus.PROCESSING)

    def update_metrics(self, job_id, record_count, skipped_count=0, invalid_count=0, file_name=None, file_path=None) -> int:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.is_terminal:
                return 0
            self._jobs[job_id] = job.copy(
                record_count=record_count,
                skipped_count=skipped_count,
                invalid_count=invalid_count,
                file_name=file_name or job.file_name,
                file_path=file_path or job.file_path,
            )
            return 1

    def find_pending(self, limit: Optional[int] = None) -> List[Job]:
        with self._lock:
            pending = sorted(
                (j.copy() for j in self._jobs.values() if j.status == JobStatus.PENDING),
                key=lambda j: j.created_at or "",
            )
        return pending[:limit] if limit else pending

    def exists_running(self, interface_type: str, exclude_job_id: Optional[str] = None) -> bool:
        with self._lock:
            return any(
                j.interface_type == interface_type
                and j.status == JobStatus.PROCESSING
                and j.job_id != exclude_job_id
                for j in self._jobs.values()
            )

    def find_by_idempotency_key(self, key: str) -> Optional[Job]:
        with self._lock:
            for job in self._jobs.values():
                if job.idempotency_key == key:
                    return job.copy()
        return None

    def record_transition(self, audit: TransitionAudit) -> None:
        with self._lock:
            self._history.setdefault(audit.job_id, []).append(audit)

    def history(self, job_id: str) -> List[TransitionAudit]:
        with self._lock:
            return list(self._history.get(job_id, []))

    def list_jobs(self, interface_type: Optional[str] = None) -> List[Job]:
        with self._lock:
            jobs = [
                j.copy()
                for j in self._jobs.values()
                if interface_type is None or j.interface_type == interface_type
            ]
        return sorted(jobs, key=lambda j: j.created_at or "")


_SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    job_id TEXT PRIMARY KEY,
    interface_type TEXT NOT NULL,
    file_name TEXT,
    file_path TEXT,
    status TEXT NOT NULL,
    record_count INTEGER NOT NULL DEFAULT 0,
    skipped_count INTEGER NOT NULL DEFAULT 0,
    invalid_count INTEGER NOT NULL DEFAULT 0,
    error_message TEXT,
    created_by TEXT,
    created_at TEXT NOT NULL,
    completed_at TEXT,
    version INTEGER NOT NULL DEFAULT 0,
    idempotency_key TEXT UNIQUE
);
CREATE INDEX IF NOT EXISTS ix_jobs_interface_status ON jobs (interface_type, status);
CREATE TABLE IF NOT EXISTS job_transitions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_id TEXT NOT NULL,
    from_status TEXT,
    to_status TEXT NOT NULL,
    reason TEXT,
    changed_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS ix_job_transitions_job ON job_transitions (job_id);
"""

_JOB_COLUMNS = (
    "job_id", "interface_type", "file_name", "file_path", "status",
    "record_count", "skipped_count", "invalid_count", "error_message",
    "created_by", "created_at", "completed_at", "version", "idempotency_key",
)


class SqliteJobStore(JobStore):
    """SQLite-backed store; a short-lived connection per operation."""

    def __init__(self, db_path: Union[str, Path], timeout: float = 30.0):
        self.db_path = str(db_path)
        if self.db_path == ":memory:":
            raise ValueError("SqliteJobStore needs a file path; use InMemoryJobStore instead")
        self.timeout = timeout
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        with self._transaction() as conn:
            conn.executescript(_SCHEMA)
        logger.debug("Job store ready at %s", self.db_path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    @staticmethod
    def _to_job(row: Optional[sqlite3.Row]) -> Optional[Job]:
        return Job.from_dict(dict(row)) if row is not None else None

    def create(self, job: Job) -> Job:
        data = job.copy(version=0).to_dict()
        placeholders = ", ".join("?" for _ in _JOB_COLUMNS)
        try:
            with self._transaction() as conn:
                conn.execute(
                    f"INSERT INTO jobs ({', '.join(_JOB_COLUMNS)}) VALUES ({placeholders})",
                    [data[c] for c in _JOB_COLUMNS],
                )
        except sqlite3.IntegrityError as exc:
            raise ValueError(f"Cannot create job {job.job_id}: {exc}") from exc
        return Job.from_dict(data)

    def get(self, job_id: str) -> Optional[Job]:
        with closing(self._connect()) as conn:
            row = conn.execute("SELECT * FROM jobs WHERE job_id = ?", (job_id,)).fetchone()
        return self._to_job(row)

    def update_status(self, job_id, expected_version, new_status, error_message=None, completed_at=None) -> int:
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE jobs SET status = ?, error_message = ?, completed_at = ?, "
                "version = version + 1 WHERE job_id = ? AND version = ?",
                (JobStatus.normalize(new_status).value, error_message, completed_at, job_id, expected_version),
            )
            return cursor.rowcount

    def claim_processing(self, job_id: str, expected_version: int) -> int:
        processing = JobStatus.PROCESSING.value
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE jobs SET status = ?, error_message = NULL, completed_at = NULL, "
                "version = version + 1 WHERE job_id = ? AND version = ? AND NOT EXISTS ("
                "SELECT 1 FROM jobs other WHERE other.interface_type = jobs.interface_type "
                "AND other.status = ? AND other.job_id != jobs.job_id)",
                (processing, job_id, expected_version, processing),
            )
            return cursor.rowcount

    def update_metrics(self, job_id, record_count, skipped_count=0, invalid_count=0, file_name=None, file_path=None) -> int:
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE jobs SET record_count = ?, skipped_count = ?, invalid_count = ?, "
                "file_name = COALESCE(?, file_name), file_path = COALESCE(?, file_path) "
                f"WHERE job_id = ? AND status NOT IN ({', '.join('?' for _ in _TERMINAL_VALUES)})",
                (record_count, skipped_count, invalid_count, file_name, file_path, job_id, *_TERMINAL_VALUES),
            )
            return cursor.rowcount

    def find_pending(self, limit: Optional[int] = None) -> List[Job]:
        sql = "SELECT * FROM jobs WHERE status = ? ORDER BY created_at, job_id"
        params: List[Any] = [JobStatus.PENDING.value]
        if limit:
            sql += " LIMIT ?"
            params.append(int(limit))
        with closing(self._connect()) as conn:
            rows = conn.execute(sql, params).fetchall()
        return [Job.from_dict(dict(r)) for r in rows]

    def exists_running(self, interface_type: str, exclude_job_id: Optional[str] = None) -> bool:
        with closing(self._connect()) as conn:
            row = conn.execute(
                "SELECT 1 FROM jobs WHERE interface_type = ? AND status = ? AND job_id != ? LIMIT 1",
                (interface_type, JobStatus.PROCESSING.value, exclude_job_id or ""),
            ).fetchone()
        return row is not None

    def find_by_idempotency_key(self, key: str) -> Optional[Job]:
        with closing(self._connect()) as conn:
            row = conn.execute("SELECT * FROM jobs WHERE idempotency_key = ?", (key,)).fetchone()
        return self._to_job(row)

    def record_transition(self, audit: TransitionAudit) -> None:
        data = audit.to_dict()
        with self._transaction() as conn:
            conn.execute(
                "INSERT INTO job_transitions (job_id, from_status, to_status, reason, changed_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (data["job_id"], data["from_status"], data["to_status"], data["reason"], data["changed_at"]),
            )

    def history(self, job_id: str) -> List[TransitionAudit]:
        with closing(self._connect()) as conn:
            rows = conn.execute(
                "SELECT * FROM job_transitions WHERE job_id = ? ORDER BY id", (job_id,)
            ).fetchall()
        return [
            TransitionAudit(
                job_id=r["job_id"],
                from_status=JobStatus.normalize(r["from_status"]) if r["from_status"] else None,
                to_status=JobStatus.normalize(r["to_status"]),
                reason=r["reason"],
                changed_at=r["changed_at"],
            )
            for r in rows
        ]

    def list_jobs(self, interface_type: Optional[str] = None) -> List[Job]:
        sql = "SELECT * FROM jobs"
        params: List[Any] = []
        if interface_type:
            sql += " WHERE interface_type = ?"
            params.append(interface_type)
        with closing(self._connect()) as conn:
            rows = conn.execute(sql + " ORDER BY created_at, job_id", params).fetchall()
        return [Job.from_dict(dict(r)) for r in rows]


def build_job_store(path: Optional[Union[str, Path]] = None) -> JobStore:
    """SQLite store at ``path``, or an in-memory store when no path is given."""
    if path is None:
        return InMemoryJobStore()
    return SqliteJobStore(path)


__all__ = ["JobStore", "InMemoryJobStore", "SqliteJobStore", "build_job_store"]
