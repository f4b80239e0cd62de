"""Job submission and execution on a bounded worker pool.

``submit`` only creates the job record (and optionally queues it for
execution); generation runs on a ``ThreadPoolExecutor`` sized by
``settings.worker_pool_size``. ``poll_pending`` is the scheduler hook:
it claims PENDING jobs through QUEUED, at most one per interface type,
and hands them to the pool.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
from typing import Iterator, List, Optional, Set

from filegen.config.models import AppConfig
from filegen.exceptions import (
    ConfigValidationError,
    FileGenError,
    InterfaceBusyError,
    InvalidTransitionError,
    JobActiveError,
)
from filegen.jobs.machine import JobStatusMachine
from filegen.jobs.models import Job
from filegen.jobs.status import JobStatus
from filegen.jobs.store import JobStore
from filegen.logging_config import log_exception
from filegen.pipeline import PipelineOrchestrator

logger = logging.getLogger(__name__)


class JobLauncher:
    def __init__(
        self,
        config: AppConfig,
        store: JobStore,
        orchestrator: Optional[PipelineOrchestrator] = None,
        max_workers: Optional[int] = None,
    ):
        self.config = config
        self.store = store
        self.machine = JobStatusMachine(store)
        self.orchestrator = orchestrator or PipelineOrchestrator(config, store)
        self.executor = ThreadPoolExecutor(
            max_workers=max_workers or config.settings.worker_pool_size,
            thread_name_prefix="filegen",
        )
        # Job ids currently inside orchestrator.run() in this process
        self._active: Set[str] = set()
        self._active_lock = threading.Lock()

    def __enter__(self) -> "JobLauncher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown(wait=True)

    # ------------------------------------------------------------------ #
    # Submission
    # ------------------------------------------------------------------ #
    def submit(
        self,
        interface_type: str,
        created_by: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        launch: bool = True,
    ) -> Job:
        """Create a PENDING job; a repeated idempotency key returns the existing job."""
        interface_type = interface_type.upper()
        if interface_type not in self.config.interfaces:
            raise ConfigValidationError(f"Unknown interface type: {interface_type}", key="interfaces")

        if idempotency_key:
            existing = self.store.find_by_idempotency_key(idempotency_key)
            if existing is not None:
                logger.info(
                    "Idempotency key %s already used by job %s", idempotency_key, existing.job_id
                )
                return existing

        try:
            job = self.store.create(
                Job(interface_type=interface_type, created_by=created_by, idempotency_key=idempotency_key)
            )
        except ValueError:
            existing = self.store.find_by_idempotency_key(idempotency_key) if idempotency_key else None
            if existing is None:
                raise
            return existing

        logger.info("Submitted job %s for %s", job.job_id, interface_type)
        if launch:
            self.launch(job.job_id)
        return job

    def launch(self, job_id: str) -> Future:
        return self.executor.submit(self._execute, job_id)

    def run_now(self, job_id: str) -> Job:
        """Run a job on the calling thread."""
        with self._holding(job_id):
            return self.orchestrator.run(job_id)

    def is_active(self, job_id: str) -> bool:
        with self._active_lock:
            return job_id in self._active

    @contextmanager
    def _holding(self, job_id: str) -> Iterator[None]:
        with self._active_lock:
            if job_id in self._active:
                raise JobActiveError(job_id, action="run it again")
            self._active.add(job_id)
        try:
            yield
        finally:
            with self._active_lock:
                self._active.discard(job_id)

    def _execute(self, job_id: str) -> Optional[Job]:
        try:
            with self._holding(job_id):
                return self.orchestrator.run(job_id)
        except InterfaceBusyError as exc:
            job = self.machine.get(job_id)
            if job.status == JobStatus.QUEUED:
                # QUEUED cannot go back to PENDING
                return self.machine.mark_failed(job_id, exc.message)
            logger.warning("Job %s left %s: %s", job_id, job.status.value, exc.message)
            return job
        except FileGenError as exc:
            log_exception(logger, f"Job {job_id} could not be run", exc)
            return self.store.get(job_id)

    # ------------------------------------------------------------------ #
    # Scheduling
    # ------------------------------------------------------------------ #
    def poll_pending(self, limit: Optional[int] = None) -> List[Future]:
        """Claim runnable PENDING jobs and launch them."""
        futures: List[Future] = []
        claimed: Set[str] = set()
        for job in self.store.find_pending(limit):
            if job.interface_type in claimed or self.store.exists_running(job.interface_type):
                logger.debug("Interface %s busy; job %s stays PENDING", job.interface_type, job.job_id)
                continue
            try:
                self.machine.mark_queued(job.job_id)
            except InvalidTransitionError:
                # Claimed or stopped by someone else since the query
                continue
            claimed.add(job.interface_type)
            futures.append(self.launch(job.job_id))
        if futures:
            logger.info("Launched %d pending job(s)", len(futures))
        return futures

    def run_forever(self, stop_event: threading.Event) -> None:
        interval = self.config.settings.poll_interval_seconds
        logger.info("Polling for pending jobs every %.1fs", interval)
        while not stop_event.is_set():
            self.poll_pending()
            stop_event.wait(interval)

    # ------------------------------------------------------------------ #
    # Control
    # ------------------------------------------------------------------ #
    def stop(self, job_id: str, reason: Optional[str] = None) -> Job:
        """Request a stop; a running job notices between chunks."""
        return self.machine.mark_stopped(job_id, reason)

    def restart(self, job_id: str, launch: bool = True) -> Job:
        """Return a STOPPED job to PENDING so it resumes from its checkpoint.

        A job found in PROCESSING is treated as orphaned by a crashed
        process and is stopped first; only call this when no live process
        still owns it. A job still running on this launcher's workers is
        refused with ``JobActiveError``, even when already STOPPED.
        """
        if self.is_active(job_id):
            raise JobActiveError(job_id)
        job = self.machine.get(job_id)
        if job.status == JobStatus.PROCESSING:
            logger.warning("Recovering job %s left PROCESSING by a previous run", job_id)
            self.machine.mark_stopped(job_id, "recovered after crash")
        elif job.status != JobStatus.STOPPED:
            raise InvalidTransitionError(job_id, job.status.value, JobStatus.PENDING.value)

        job = self.machine.mark_pending(job_id, reason="restart")
        if launch:
            self.launch(job_id)
        return job

    def cleanup_failed(self) -> int:
        """Remove provisional files and checkpoints left by FAILED jobs."""
        cleaned = 0
        for job in self.store.list_jobs():
            if job.status != JobStatus.FAILED or not job.file_path:
                continue
            self.orchestrator.finalizer.cleanup(job.file_path)
            self.orchestrator.checkpoints.clear(job.job_id)
            cleaned += 1
        if cleaned:
            logger.info("Cleaned artifacts of %d failed job(s)", cleaned)
        return cleaned

    def shutdown(self, wait: bool = True) -> None:
        self.executor.shutdown(wait=wait)


__all__ = ["JobLauncher"]
