"""Guarded job status transitions.

Every status change goes through ``JobStatusMachine.transition``:

1. Re-read the job from the store.
2. Same status: nothing to do (idempotent).
3. Terminal or not allowed from the current status: ``InvalidTransitionError``,
   stored state untouched.
4. Compare-and-swap on ``version`` (PROCESSING also requires no other
   PROCESSING job of the interface type, else ``InterfaceBusyError``); a
   lost race re-reads and retries up to ``max_attempts`` times, then
   ``ConcurrentModificationError``.
5. Append an audit entry.
"""

from __future__ import annotations

import logging
from typing import Optional

from filegen.exceptions import (
    ConcurrentModificationError,
    InterfaceBusyError,
    InvalidTransitionError,
    JobNotFoundError,
)
from filegen.jobs.models import Job, TransitionAudit, utc_isoformat
from filegen.jobs.status import JobStatus
from filegen.jobs.store import JobStore
from filegen.primitives.base import RawEnumInput

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_FAILURE_MESSAGE = "Job failed without a recorded reason"


class JobStatusMachine:
    def __init__(self, store: JobStore, max_attempts: int = DEFAULT_MAX_ATTEMPTS):
        self.store = store
        self.max_attempts = max_attempts

    def get(self, job_id: str) -> Job:
        job = self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def transition(
        self,
        job_id: str,
        new_status: RawEnumInput,
        reason: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> Job:
        target = JobStatus.normalize(new_status)

        for attempt in range(1, self.max_attempts + 1):
            job = self.get(job_id)
            current = job.status
            if current == target:
                logger.debug("Job %s already %s", job_id, target.value)
                return job
            if current.is_terminal or not current.can_transition_to(target):
                logger.warning(
                    "Rejected transition for job %s: %s -> %s", job_id, current.value, target.value
                )
                raise InvalidTransitionError(job_id, current.value, target.value)

            message = error_message
            if target == JobStatus.FAILED and not message:
                message = reason or DEFAULT_FAILURE_MESSAGE
            completed_at = utc_isoformat() if target.is_terminal else None

            if target == JobStatus.PROCESSING:
                rows = self.store.claim_processing(job_id, job.version)
                if rows == 0 and self.store.exists_running(job.interface_type, exclude_job_id=job_id):
                    logger.warning("Another job is already PROCESSING %s", job.interface_type)
                    raise InterfaceBusyError(job.interface_type, job_id)
            else:
                rows = self.store.update_status(job_id, job.version, target, message, completed_at)
            if rows == 1:
                self.store.record_transition(
                    TransitionAudit(job_id=job_id, from_status=current, to_status=target, reason=reason or message)
                )
                logger.info(
                    "Job %s: %s -> %s%s",
                    job_id,
                    current.value,
                    target.value,
                    f" ({reason})" if reason else "",
                )
                return self.get(job_id)

            logger.debug(
                "Version conflict on job %s (attempt %d/%d); re-reading",
                job_id,
                attempt,
                self.max_attempts,
            )

        raise ConcurrentModificationError(job_id, self.max_attempts)

    def mark_queued(self, job_id: str) -> Job:
        return self.transition(job_id, JobStatus.QUEUED, reason="claimed")

    def mark_processing(self, job_id: str) -> Job:
        return self.transition(job_id, JobStatus.PROCESSING)

    def mark_finalizing(self, job_id: str) -> Job:
        return self.transition(job_id, JobStatus.FINALIZING)

    def mark_completed(self, job_id: str) -> Job:
        return self.transition(job_id, JobStatus.COMPLETED)

    def mark_failed(self, job_id: str, message: str) -> Job:
        return self.transition(job_id, JobStatus.FAILED, error_message=message)

    def mark_stopped(self, job_id: str, reason: Optional[str] = None) -> Job:
        return self.transition(job_id, JobStatus.STOPPED, reason=reason or "stop requested")

    def mark_pending(self, job_id: str, reason: Optional[str] = None) -> Job:
        return self.transition(job_id, JobStatus.PENDING, reason=reason)

    def update_metrics(
        self,
        job_id: str,
        record_count: int,
        skipped_count: int = 0,
        invalid_count: int = 0,
        file_name: Optional[str] = None,
        file_path: Optional[str] = None,
    ) -> None:
        rows = self.store.update_metrics(
            job_id, record_count, skipped_count, invalid_count, file_name, file_path
        )
        if rows == 0:
            job = self.get(job_id)
            raise InvalidTransitionError(job_id, job.status.value, "metrics update")
