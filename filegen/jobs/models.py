"""Job records and their transition audit entries.

Job file structure (as returned by ``Job.to_dict``)::

    {
      "job_id": "3f2a...",
      "interface_type": "ORDER_INTERFACE",
      "file_name": "ORDER_INTERFACE_3f2a....xml",
      "file_path": "/data/out/ORDER_INTERFACE_3f2a....xml.part",
      "status": "PROCESSING",
      "record_count": 1800,
      "skipped_count": 2,
      "invalid_count": 0,
      "error_message": null,
      "created_by": "scheduler",
      "created_at": "2025-01-15T10:30:00Z",
      "completed_at": null,
      "version": 3,
      "idempotency_key": null
    }
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from filegen.jobs.status import JobStatus


def utc_isoformat() -> str:
    """Current UTC time as ISO-8601 with a 'Z' suffix."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def new_job_id() -> str:
    return uuid.uuid4().hex


@dataclass
class Job:
    """One file generation request and its progress."""

    interface_type: str
    job_id: str = field(default_factory=new_job_id)
    file_name: Optional[str] = None
    file_path: Optional[str] = None
    status: JobStatus = JobStatus.PENDING
    record_count: int = 0
    skipped_count: int = 0
    invalid_count: int = 0
    error_message: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[str] = None
    completed_at: Optional[str] = None
    version: int = 0
    idempotency_key: Optional[str] = None

    def __post_init__(self):
        self.status = JobStatus.normalize(self.status)
        if self.created_at is None:
            self.created_at = utc_isoformat()

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def copy(self, **changes: Any) -> "Job":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "interface_type": self.interface_type,
            "file_name": self.file_name,
            "file_path": self.file_path,
            "status": self.status.value,
            "record_count": self.record_count,
            "skipped_count": self.skipped_count,
            "invalid_count": self.invalid_count,
            "error_message": self.error_message,
            "created_by": self.created_by,
            "created_at": self.created_at,
            "completed_at": self.completed_at,
            "version": self.version,
            "idempotency_key": self.idempotency_key,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        return cls(
            job_id=data["job_id"],
            interface_type=data["interface_type"],
            file_name=data.get("file_name"),
            file_path=data.get("file_path"),
            status=JobStatus.normalize(data.get("status")),
            record_count=int(data.get("record_count") or 0),
            skipped_count=int(data.get("skipped_count") or 0),
            invalid_count=int(data.get("invalid_count") or 0),
            error_message=data.get("error_message"),
            created_by=data.get("created_by"),
            created_at=data.get("created_at"),
            completed_at=data.get("completed_at"),
            version=int(data.get("version") or 0),
            idempotency_key=data.get("idempotency_key"),
        )


@dataclass(frozen=True)
class TransitionAudit:
    """One recorded status change."""

    job_id: str
    from_status: Optional[JobStatus]
    to_status: JobStatus
    reason: Optional[str] = None
    changed_at: str = field(default_factory=utc_isoformat)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "from_status": self.from_status.value if self.from_status else None,
            "to_status": self.to_status.value,
            "reason": self.reason,
            "changed_at": self.changed_at,
        }


__all__ = ["Job", "TransitionAudit", "new_job_id", "utc_isoformat"]
