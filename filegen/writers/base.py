"""Checkpointed streaming writer shared by every output encoding.

Stream stack, outermost first::

    TextIOWrapper (utf-8)  ->  BufferedWriter  ->  ByteTrackingSink  ->  raw file

``checkpoint()`` flushes that stack top to bottom and fsyncs before it
reads the tracked byte count, so the recorded offset is always the real
end of file. On restart the provisional file is truncated back to the
checkpointed offset and writing resumes from there; a header is only
written on a fresh open and a footer only on ``close(success=True)``.
"""

from __future__ import annotations

import io
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterable, Optional

from filegen.checkpoint import WriterState
from filegen.exceptions import WriterError
from filegen.writers.sink import ByteTrackingSink

logger = logging.getLogger(__name__)

PART_SUFFIX = ".part"


def part_path_for(path: Path) -> Path:
    path = Path(path)
    return path if path.name.endswith(PART_SUFFIX) else path.with_name(path.name + PART_SUFFIX)


class CheckpointedWriter(ABC):
    """Base class for restartable writers.

    Subclasses only describe the encoding: ``write_header``,
    ``write_item`` and ``write_footer``, each producing text through
    ``self.emit``. Every item must be emitted as one self-contained unit
    so a checkpoint never falls inside a record.
    """

    format_name = "base"

    def __init__(self, interface_type: str):
        self.interface_type = interface_type
        self.path: Optional[Path] = None
        self._record_count = 0
        self._raw: Any = None
        self._sink: Optional[ByteTrackingSink] = None
        self._text: Optional[io.TextIOWrapper] = None
        self._pending_restore: Optional[WriterState] = None
        self._checkpoint_offset: Optional[int] = None
        self._lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Encoding hooks
    # ------------------------------------------------------------------ #
    @abstractmethod
    def write_header(self) -> None:
        ...

    @abstractmethod
    def write_item(self, item: Any) -> None:
        ...

    @abstractmethod
    def write_footer(self) -> None:
        ...

    def emit(self, text: str) -> None:
        if self._text is None:
            raise WriterError("Writer not opened", operation="write")
        self._text.write(text)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    @property
    def record_count(self) -> int:
        return self._record_count

    @property
    def is_open(self) -> bool:
        return self._text is not None

    def restore(self, state: WriterState) -> None:
        """Remember a checkpoint to resume from on the next ``open``."""
        self._pending_restore = state

    def open(self, path: Path, restart: bool = False, checkpoint: Optional[WriterState] = None) -> None:
        path = Path(path)
        state = checkpoint or self._pending_restore
        self._pending_restore = None
        resume = restart and state is not None and state.offset > 0

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            if resume:
                self._open_for_restart(path, state)
            else:
                if restart:
                    logger.info("No checkpoint recorded for %s; starting fresh", path)
                self._raw = open(path, "wb", buffering=0)
                self._record_count = 0
                self._attach(0)
        except OSError as exc:
            self._close_handles()
            raise WriterError("Failed to open output file", str(path), "open", exc) from exc

        self._checkpoint_offset = state.offset if resume else None
        self.path = path
        try:
            if not resume:
                self.write_header()
        except OSError as exc:
            self._close_handles()
            raise WriterError("Failed to write header", str(path), "write", exc) from exc

        logger.info(
            "%s writer opened for interface=%s output=%s restart=%s records=%d",
            self.format_name,
            self.interface_type,
            path,
            resume,
            self._record_count,
        )

    def _open_for_restart(self, path: Path, state: WriterState) -> None:
        if not path.exists():
            raise WriterError(
                f"Checkpoint at offset {state.offset} but provisional file is missing",
                str(path),
                "open",
            )
        self._raw = open(path, "ab", buffering=0)
        size = os.fstat(self._raw.fileno()).st_size
        if size < state.offset:
            self._close_handles()
            raise WriterError(
                f"Provisional file is {size} bytes, shorter than checkpoint offset {state.offset}",
                str(path),
                "open",
            )
        if size > state.offset:
            self._raw.truncate(state.offset)
            logger.info(
                "Restart: truncated %s from %d to checkpoint offset %d", path, size, state.offset
            )
        self._record_count = state.record_count
        self._attach(os.fstat(self._raw.fileno()).st_size)

    def _attach(self, initial_offset: int) -> None:
        self._sink = ByteTrackingSink(self._raw, initial_offset)
        buffered = io.BufferedWriter(self._sink)
        self._text = io.TextIOWrapper(buffered, encoding="utf-8", newline="\n")

    def write(self, items: Iterable[Any]) -> int:
        written = 0
        with self._lock:
            if self._text is None:
                raise WriterError("Writer not opened", operation="write")
            try:
                for item in items:
                    if item is None:
                        continue
                    self.write_item(item)
                    self._record_count += 1
                    written += 1
            except OSError as exc:
                raise WriterError(
                    "Failed to write records", str(self.path), "write", exc
                ) from exc
        logger.debug("Chunk written: %d, total written: %d", written, self._record_count)
        return written

    def checkpoint(self) -> WriterState:
        with self._lock:
            if self._text is None or self._sink is None:
                raise WriterError("Writer not opened", operation="checkpoint")
            try:
                # Text -> buffer -> sink -> disk, then the count is exact
                self._text.flush()
                self._sink.fsync()
            except OSError as exc:
                raise WriterError(
                    "Failed to flush checkpoint", str(self.path), "flush", exc
                ) from exc
            state = WriterState(offset=self._sink.bytes_written, record_count=self._record_count)
            self._checkpoint_offset = state.offset
        logger.debug("Saved restart state: bytes=%d, records=%d", state.offset, state.record_count)
        return state

    def close(self, success: bool) -> None:
        with self._lock:
            if self._text is None:
                return
            try:
                if success:
                    self.write_footer()
                    logger.info(
                        "Footer written for %s (%d records)", self.path, self._record_count
                    )
                else:
                    logger.warning(
                        "Closing %s without footer; file is left at its last checkpoint",
                        self.path,
                    )
                self._text.flush()
                if not success:
                    self._rewind_to_checkpoint()
                if self._sink is not None:
                    self._sink.fsync()
            except OSError as exc:
                if success:
                    raise WriterError(
                        "Failed to finish output file", str(self.path), "close", exc
                    ) from exc
                logger.warning("Error flushing %s during failed close: %s", self.path, exc)
            finally:
                self._close_handles()

    def _rewind_to_checkpoint(self) -> None:
        if self._checkpoint_offset is None or self._raw is None:
            return
        size = os.fstat(self._raw.fileno()).st_size
        if size > self._checkpoint_offset:
            self._raw.truncate(self._checkpoint_offset)
            logger.info(
                "Discarded %d unflushed bytes after checkpoint in %s",
                size - self._checkpoint_offset,
                self.path,
            )

    def _close_handles(self) -> None:
        text, raw = self._text, self._raw
        self._text = None
        self._sink = None
        self._raw = None
        try:
            if text is not None:
                text.close()
        except OSError as exc:
            logger.warning("Error closing output stream: %s", exc)
        finally:
            if raw is not None and not raw.closed:
                raw.close()


__all__ = ["CheckpointedWriter", "PART_SUFFIX", "part_path_for"]
