"""Job lifecycle states and the legal transitions between them."""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet

from filegen.primitives.base import RichEnumMixin


class JobStatus(RichEnumMixin, str, Enum):
    """Status of a file generation job."""

    PENDING = "PENDING"
    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    FINALIZING = "FINALIZING"
    STOPPED = "STOPPED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES

    def can_transition_to(self, target: "JobStatus") -> bool:
        return target in ALLOWED_TRANSITIONS.get(self, frozenset())


# RichEnumMixin class variables must be set AFTER class definition
JobStatus._default = "PENDING"
JobStatus._aliases = {"running": "PROCESSING"}
JobStatus._descriptions = {
    "PENDING": "Job accepted, waiting to be launched",
    "QUEUED": "Job claimed by a launcher, waiting for a worker",
    "PROCESSING": "Records are being streamed to the provisional file",
    "FINALIZING": "Provisional file is being renamed and checksummed",
    "STOPPED": "Job stopped on request; resumable from its checkpoint",
    "COMPLETED": "Final file and checksum sidecar published",
    "FAILED": "Job failed; see error message",
}

TERMINAL_STATES: FrozenSet[JobStatus] = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

ALLOWED_TRANSITIONS: Dict[JobStatus, FrozenSet[JobStatus]] = {
    JobStatus.PENDING: frozenset(
        {JobStatus.QUEUED, JobStatus.PROCESSING, JobStatus.STOPPED, JobStatus.FAILED}
    ),
    JobStatus.QUEUED: frozenset({JobStatus.PROCESSING, JobStatus.FAILED}),
    JobStatus.PROCESSING: frozenset(
        {JobStatus.FINALIZING, JobStatus.STOPPED, JobStatus.FAILED}
    ),
    JobStatus.FINALIZING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.STOPPED: frozenset(
        {JobStatus.PROCESSING, JobStatus.FAILED, JobStatus.PENDING}
    ),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


__all__ = ["JobStatus", "TERMINAL_STATES", "ALLOWED_TRANSITIONS"]
