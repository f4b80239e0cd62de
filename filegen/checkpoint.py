"""Checkpoint state for resumable file generation.

A checkpoint has two independent halves, persisted together after every
chunk:

* reader: ``total_read`` and ``last_key`` (the keyset cursor)
* writer: ``offset`` and ``record_count`` (the byte-exact end of file)

Checkpoint file structure (``<state_dir>/_checkpoints/<job_id>__<step>.json``):
```json
{
  "job_id": "7f0c...",
  "step_name": "generate",
  "reader": {"total_read": 1800, "last_key": 1800, "key_type": "integer"},
  "writer": {"offset": 251934, "record_count": 1800},
  "chunk_count": 2,
  "skipped_count": 0,
  "invalid_count": 0,
  "filtered_count": 0,
  "updated_at": "2025-01-15T10:30:00Z"
}
```
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from filegen.exceptions import FileGenError
from filegen.jobs.models import utc_isoformat

logger = logging.getLogger(__name__)

DEFAULT_STEP = "generate"


class CheckpointError(FileGenError):
    """Raised when checkpoint state cannot be persisted or read back."""

    error_code = "STATE001"


@runtime_checkable
class Checkpointable(Protocol):
    """Component whose position can be captured and restored explicitly."""

    def checkpoint(self) -> Any:
        ...

    def restore(self, state: Any) -> None:
        ...


@dataclass
class CursorState:
    """Reader half: how far the keyset cursor has advanced."""

    total_read: int = 0
    last_key: Any = None
    key_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_read": self.total_read,
            "last_key": self.last_key,
            "key_type": self.key_type,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CursorState":
        data = data or {}
        return cls(
            total_read=int(data.get("total_read", 0)),
            last_key=data.get("last_key"),
            key_type=data.get("key_type"),
        )


@dataclass
class WriterState:
    """Writer half: byte offset and record count at the last flush."""

    offset: int = 0
    record_count: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"offset": self.offset, "record_count": self.record_count}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "WriterState":
        data = data or {}
        return cls(offset=int(data.get("offset", 0)), record_count=int(data.get("record_count", 0)))


@dataclass
class Checkpoint:
    job_id: str
    step_name: str = DEFAULT_STEP
    reader: CursorState = field(default_factory=CursorState)
    writer: WriterState = field(default_factory=WriterState)
    chunk_count: int = 0
    skipped_count: int = 0
    invalid_count: int = 0
    filtered_count: int = 0
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "step_name": self.step_name,
            "reader": self.reader.to_dict(),
            "writer": self.writer.to_dict(),
            "chunk_count": self.chunk_count,
            "skipped_count": self.skipped_count,
            "invalid_count": self.invalid_count,
            "filtered_count": self.filtered_count,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Checkpoint":
        return cls(
            job_id=data["job_id"],
            step_name=data.get("step_name", DEFAULT_STEP),
            reader=CursorState.from_dict(data.get("reader")),
            writer=WriterState.from_dict(data.get("writer")),
            chunk_count=int(data.get("chunk_count", 0)),
            skipped_count=int(data.get("skipped_count", 0)),
            invalid_count=int(data.get("invalid_count", 0)),
            filtered_count=int(data.get("filtered_count", 0)),
            updated_at=data.get("updated_at"),
        )


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return format(value, "f")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


_SAFE_NAME = re.compile(r"[^A-Za-z0-9_.-]")


class CheckpointStore:
    """Durable checkpoint storage keyed by job id and step name.

    Writes go to a temp file in the same directory, are fsynced and then
    ``os.replace``d over the previous checkpoint so a crash never leaves
    a half-written JSON document behind.
    """

    def __init__(self, base_dir: Path):
        self.base_dir = Path(base_dir)
        self.checkpoint_dir = self.base_dir / "_checkpoints"
        self.checkpoint_dir.mkdir(parents=True, exist_ok=True)

    def get_checkpoint_path(self, job_id: str, step_name: str = DEFAULT_STEP) -> Path:
        safe_job = _SAFE_NAME.sub("_", job_id)
        safe_step = _SAFE_NAME.sub("_", step_name)
        return self.checkpoint_dir / f"{safe_job}__{safe_step}.json"

    def save(self, checkpoint: Checkpoint) -> None:
        checkpoint.updated_at = utc_isoformat()
        path = self.get_checkpoint_path(checkpoint.job_id, checkpoint.step_name)
        payload = json.dumps(checkpoint.to_dict(), indent=2, default=_json_default)

        fd, tmp_name = tempfile.mkstemp(dir=str(self.checkpoint_dir), prefix=".ckpt-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except OSError as exc:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise CheckpointError(
                "Failed to save checkpoint",
                {"job_id": checkpoint.job_id, "step": checkpoint.step_name, "error": str(exc)},
            ) from exc

        logger.debug(
            "Saved checkpoint for %s/%s: offset=%d records=%d last_key=%s",
            checkpoint.job_id,
            checkpoint.step_name,
            checkpoint.writer.offset,
            checkpoint.writer.record_count,
            checkpoint.reader.last_key,
        )

    def load(self, job_id: str, step_name: str = DEFAULT_STEP) -> Optional[Checkpoint]:
        path = self.get_checkpoint_path(job_id, step_name)
        if not path.exists():
            return None

        try:
            with open(path, "r", encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            raise CheckpointError(
                "Failed to load checkpoint",
                {"job_id": job_id, "step": step_name, "error": str(exc)},
            ) from exc

        checkpoint = Checkpoint.from_dict(data)
        logger.info(
            "Loaded checkpoint for %s/%s: offset=%d records=%d last_key=%s",
            job_id,
            step_name,
            checkpoint.writer.offset,
            checkpoint.writer.record_count,
            checkpoint.reader.last_key,
        )
        return checkpoint

    def clear(self, job_id: str, step_name: str = DEFAULT_STEP) -> None:
        path = self.get_checkpoint_path(job_id, step_name)
        if path.exists():
            path.unlink()
            logger.debug("Cleared checkpoint for %s/%s", job_id, step_name)


__all__ = [
    "Checkpoint",
    "CheckpointError",
    "CheckpointStore",
    "Checkpointable",
    "CursorState",
    "WriterState",
    "DEFAULT_STEP",
]
