"""Byte-counting raw stream used underneath every output writer."""

from __future__ import annotations

import io
import os
from typing import BinaryIO


class ByteTrackingSink(io.RawIOBase):
    """Wrap a raw file handle and count every byte written through it.

    ``bytes_written`` starts at the physical file size observed when the
    file was opened (0 for a fresh file), so after a full flush it equals
    the true end-of-file offset.
    """

    def __init__(self, raw: BinaryIO, initial_offset: int = 0):
        super().__init__()
        if initial_offset < 0:
            raise ValueError("initial_offset cannot be negative")
        self._raw = raw
        self._bytes_written = initial_offset

    @property
    def bytes_written(self) -> int:
        return self._bytes_written

    def writable(self) -> bool:
        return True

    def write(self, b) -> int:  # type: ignore[override]
        view = memoryview(b).cast("B")
        total = len(view)
        done = 0
        # Raw writes may be partial; loop until the whole buffer is on the fd
        while done < total:
            written = self._raw.write(view[done:])
            if written is None:
                raise BlockingIOError("raw file would block")
            done += written
        self._bytes_written += total
        return total

    def flush(self) -> None:
        if not self.closed and not self._raw.closed:
            self._raw.flush()

    def fsync(self) -> None:
        """Force written bytes to stable storage."""
        self.flush()
        os.fsync(self._raw.fileno())

    def fileno(self) -> int:
        return self._raw.fileno()

    def close(self) -> None:
        if self.closed:
            return
        # RawIOBase.close() flushes, so the raw handle must still be open
        try:
            super().close()
        finally:
            self._raw.close()


__all__ = ["ByteTrackingSink"]
