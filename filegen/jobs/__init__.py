"""Job model, storage and status transitions."""

from filegen.jobs.machine import JobStatusMachine
from filegen.jobs.models import Job, TransitionAudit
from filegen.jobs.status import ALLOWED_TRANSITIONS, TERMINAL_STATES, JobStatus
from filegen.jobs.store import InMemoryJobStore, JobStore, SqliteJobStore, build_job_store

__all__ = [
    "ALLOWED_TRANSITIONS",
    "TERMINAL_STATES",
    "InMemoryJobStore",
    "Job",
    "JobStatus",
    "JobStatusMachine",
    "JobStore",
    "SqliteJobStore",
    "TransitionAudit",
    "build_job_store",
]
