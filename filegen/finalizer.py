"""Publishing of provisional files.

``finalize`` promotes ``<name>.part`` to ``<name>`` and writes the
checksum sidecar ``<name>.sha`` containing exactly::

    SHA256(<name>)= <64 lowercase hex chars>

The sidecar is written to ``<name>.sha.part`` first and renamed, so it is
never addressable under its final name before its content is complete.

The rename is ``os.replace`` (atomic on one filesystem). When source and
target are on different filesystems the rename falls back to
``shutil.move``, which copies then deletes: a crash during that copy can
leave a partial final file, so the atomic guarantee does not hold there.
"""

from __future__ import annotations

import errno
import hashlib
import logging
import os
import re
import shutil
import stat
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from filegen.primitives.base import RichEnumMixin
from filegen.writers.base import PART_SUFFIX

logger = logging.getLogger(__name__)

SHA_SUFFIX = ".sha"
SHA_PART_SUFFIX = ".sha.part"
SHA_PATTERN = re.compile(r"^SHA256\((.+?)\)=\s*([a-f0-9]{64})$", re.IGNORECASE)
CHUNK_SIZE = 1024 * 1024

_PERMISSION_BITS = (
    stat.S_IRUSR, stat.S_IWUSR, stat.S_IXUSR,
    stat.S_IRGRP, stat.S_IWGRP, stat.S_IXGRP,
    stat.S_IROTH, stat.S_IWOTH, stat.S_IXOTH,
)


class FinalizationResult(RichEnumMixin, str, Enum):
    SUCCESS = "SUCCESS"
    INVALID_PART_FILE = "INVALID_PART_FILE"
    SHA_GENERATION_FAILED = "SHA_GENERATION_FAILED"
    SECURITY_ERROR = "SECURITY_ERROR"
    IO_ERROR = "IO_ERROR"

    @property
    def success(self) -> bool:
        return self is FinalizationResult.SUCCESS

    @property
    def retryable(self) -> bool:
        return self in (FinalizationResult.SHA_GENERATION_FAILED, FinalizationResult.IO_ERROR)


FinalizationResult._descriptions = {
    "SUCCESS": "File renamed and checksum sidecar written",
    "INVALID_PART_FILE": "Provisional file missing or not a .part file",
    "SHA_GENERATION_FAILED": "Checksum could not be computed or written",
    "SECURITY_ERROR": "Permission denied while publishing",
    "IO_ERROR": "Filesystem error while publishing",
}


@dataclass
class FinalizationOutcome:
    result: FinalizationResult
    part_path: Optional[Path] = None
    final_path: Optional[Path] = None
    sha_path: Optional[Path] = None
    digest: Optional[str] = None
    message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.result.success

    @property
    def retryable(self) -> bool:
        return self.result.retryable


def compute_file_sha256(path: Path) -> str:
    """Compute SHA256 hash of a file, streaming 1 MiB at a time."""
    sha256 = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


def parse_permissions(text: Optional[str]) -> Optional[int]:
    """Convert ``rw-r--r--`` notation to a mode int (None passes through)."""
    if not text:
        return None
    if len(text) != 9 or any(c not in "rwx-" for c in text):
        raise ValueError(f"Invalid permission string {text!r}")
    mode = 0
    for char, bit, expected in zip(text, _PERMISSION_BITS, "rwxrwxrwx"):
        if char == expected:
            mode |= bit
        elif char != "-":
            raise ValueError(f"Invalid permission string {text!r}")
    return mode


def final_path_for(part_path: Path) -> Path:
    part_path = Path(part_path)
    return part_path.with_name(part_path.name[: -len(PART_SUFFIX)])


def sha_path_for(final_path: Path) -> Path:
    return final_path.with_name(final_path.name + SHA_SUFFIX)


class Finalizer:
    """Rename, checksum and verify generated files."""

    def __init__(self, file_permissions: Optional[str] = "rw-r--r--"):
        self.permissions = parse_permissions(file_permissions)
        # path -> [lock, number of callers holding or waiting on it]
        self._locks: Dict[str, List[Any]] = {}
        self._registry_lock = threading.Lock()

    @contextmanager
    def _lock_for(self, path: Path) -> Iterator[None]:
        """Serialize work on one path; the entry is dropped once unused."""
        key = str(path)
        with self._registry_lock:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._registry_lock:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    @staticmethod
    def _resolve_part(part_path: Union[str, Path, None]) -> Optional[Path]:
        if part_path is None or not str(part_path).strip():
            logger.error("Provisional file path is empty")
            return None
        path = Path(str(part_path).strip()).absolute()
        name = path.name
        if not name.lower().endswith(PART_SUFFIX) or len(name) <= len(PART_SUFFIX):
            logger.error("Not a .part file: %s", path)
            return None
        return path

    # ------------------------------------------------------------------ #
    # Finalize
    # ------------------------------------------------------------------ #
    def finalize(self, part_path: Union[str, Path, None]) -> FinalizationOutcome:
        resolved = self._resolve_part(part_path)
        if resolved is None:
            return FinalizationOutcome(FinalizationResult.INVALID_PART_FILE, message="not a .part file")
        if not resolved.is_file():
            logger.error("Provisional file not found: %s", resolved)
            return FinalizationOutcome(
                FinalizationResult.INVALID_PART_FILE, part_path=resolved, message="file not found"
            )

        with self._lock_for(resolved):
            return self._do_finalize(resolved)

    def _do_finalize(self, part_path: Path) -> FinalizationOutcome:
        final_path = final_path_for(part_path)
        sha_path = sha_path_for(final_path)
        sha_part_path = final_path.with_name(final_path.name + SHA_PART_SUFFIX)

        try:
            self._move(part_path, final_path)
        except PermissionError as exc:
            logger.error("Permission denied moving %s to %s: %s", part_path, final_path, exc)
            return FinalizationOutcome(
                FinalizationResult.SECURITY_ERROR, part_path, message=str(exc)
            )
        except OSError as exc:
            logger.error("I/O error during finalization of %s: %s", part_path, exc)
            return FinalizationOutcome(FinalizationResult.IO_ERROR, part_path, message=str(exc))

        try:
            digest = compute_file_sha256(final_path)
            with open(sha_part_path, "w", encoding="utf-8", newline="\n") as handle:
                handle.write(f"SHA256({final_path.name})= {digest}")
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(sha_part_path, sha_path)
        except OSError as exc:
            logger.error("Error generating SHA file for %s: %s", final_path, exc)
            if sha_part_path.exists():
                sha_part_path.unlink()
            return FinalizationOutcome(
                FinalizationResult.SHA_GENERATION_FAILED,
                part_path,
                final_path=final_path,
                message=str(exc),
            )

        for path in (final_path, sha_path):
            self._apply_permissions(path)

        logger.info("Finalized %s (sha256=%s)", final_path, digest)
        return FinalizationOutcome(
            FinalizationResult.SUCCESS,
            part_path,
            final_path=final_path,
            sha_path=sha_path,
            digest=digest,
        )

    def _move(self, source: Path, target: Path) -> None:
        try:
            os.replace(source, target)
            logger.info("Atomically moved %s to %s", source, target)
        except OSError as exc:
            if exc.errno != errno.EXDEV:
                raise
            logger.warning(
                "Atomic rename not supported between %s and %s; falling back to a "
                "non-atomic move (copy then delete)",
                source,
                target,
            )
            shutil.move(str(source), str(target))

    def _apply_permissions(self, path: Path) -> None:
        if self.permissions is None or os.name != "posix":
            return
        try:
            os.chmod(path, self.permissions)
        except OSError as exc:
            logger.warning("Failed to apply POSIX permissions to %s: %s", path, exc)

    # ------------------------------------------------------------------ #
    # Verify / cleanup
    # ------------------------------------------------------------------ #
    def verify(self, final_path: Union[str, Path]) -> bool:
        path = Path(final_path)
        sha_path = sha_path_for(path)
        if not sha_path.is_file():
            logger.warning("SHA file not found: %s", sha_path)
            return False
        try:
            with open(sha_path, "r", encoding="utf-8") as handle:
                content = handle.readline().strip()
        except OSError as exc:
            logger.error("Error reading SHA file %s: %s", sha_path, exc)
            return False

        match = SHA_PATTERN.match(content)
        if not match:
            logger.error("Invalid SHA file format: %s", sha_path)
            return False
        recorded_name, expected = match.group(1), match.group(2)
        if recorded_name != path.name:
            logger.error("SHA file %s names %s, expected %s", sha_path, recorded_name, path.name)
            return False

        try:
            actual = compute_file_sha256(path)
        except OSError as exc:
            logger.warning("Failed to calculate SHA for %s: %s", path, exc)
            return False
        if expected.lower() != actual.lower():
            logger.warning("SHA mismatch for %s: expected %s, actual %s", path, expected, actual)
            return False
        return True

    def cleanup(self, path: Union[str, Path]) -> None:
        """Remove every artifact derived from ``path`` (part, final, sidecars)."""
        path = Path(path).absolute()
        if path.name.lower().endswith(PART_SUFFIX):
            part_path, final_path = path, final_path_for(path)
        else:
            part_path, final_path = path.with_name(path.name + PART_SUFFIX), path
        targets = (
            part_path,
            final_path,
            sha_path_for(final_path),
            final_path.with_name(final_path.name + SHA_PART_SUFFIX),
        )
        with self._lock_for(part_path):
            for target in targets:
                if target.exists():
                    target.unlink()
                    logger.info("Removed %s", target)


__all__ = [
    "Finalizer",
    "FinalizationOutcome",
    "FinalizationResult",
    "compute_file_sha256",
    "final_path_for",
    "parse_permissions",
    "sha_path_for",
    "SHA_PATTERN",
]
