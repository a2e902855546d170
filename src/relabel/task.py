"""Work unit, job and report definitions for parallel relabel runs."""

from __future__ import annotations

import hashlib
import os
import string
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import JobFailure, RelabelError

_SAFE_BYTES = frozenset((string.ascii_letters + string.digits + ".").encode("ascii"))
_MAX_SINK_ID = 200
_DIGEST_CHARS = 16


def log_sink_id(path: str) -> str:
    """Return the log file stem for the mount point ``path``.

    The mapping is injective over absolute paths: ``/`` separators become
    ``-`` and every byte outside ``[A-Za-z0-9.]`` (and a leading ``.``) is
    written as ``_xx`` in hex, so ``/a/b`` and ``/a_b`` yield ``a-b`` and
    ``a_5fb``.  The root mount maps to ``-``.  Ids longer than 200 characters
    are cut and suffixed with ``~`` and a SHA-256 prefix of the full path.
    """

    if path == "/":
        return "-"

    raw = os.fsencode(path)
    body = raw[1:] if raw.startswith(b"/") else raw
    parts: List[str] = []
    for index, byte in enumerate(body):
        if byte == 0x2F:
            parts.append("-")
        elif byte in _SAFE_BYTES and not (index == 0 and byte == 0x2E):
            parts.append(chr(byte))
        else:
            parts.append(f"_{byte:02x}")
    sink = "".join(parts)

    if len(sink) > _MAX_SINK_ID:
        digest = hashlib.sha256(raw).hexdigest()[:_DIGEST_CHARS]
        sink = f"{sink[: _MAX_SINK_ID - _DIGEST_CHARS - 1]}~{digest}"
    return sink


@dataclass(frozen=True)
class WorkUnit:
    """One independently relabelled filesystem tree.

    ``device`` and ``root`` come from the mount table and identify which part
    of which filesystem the mount exposes; they are only used to detect bind
    mounts that would make two units overlap.
    """

    path: str
    fstype: str = ""
    source: str = ""
    device: str = ""
    root: str = "/"
    log_sink_id: str = field(init=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "log_sink_id", log_sink_id(self.path))


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED)


@dataclass(eq=False)
class Job:
    """Runtime instance of relabelling one :class:`WorkUnit`."""

    work_unit: WorkUnit
    process: Any = None
    status: JobStatus = JobStatus.PENDING
    log_path: Optional[Path] = None
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    exit_code: Optional[int] = None
    error: Optional[RelabelError] = None

    def _require(self, *allowed: JobStatus) -> None:
        if self.status not in allowed:
            raise RuntimeError(
                f"Job for '{self.work_unit.path}' cannot leave state {self.status.value}"
            )

    def start(self, process: Any, log_path: Path) -> None:
        self._require(JobStatus.PENDING)
        self.process = process
        self.log_path = log_path
        self.start_time = time.monotonic()
        self.status = JobStatus.RUNNING

    def finish(self, exit_code: int) -> None:
        """Record the exit status of the running process."""

        self._require(JobStatus.RUNNING)
        self.exit_code = exit_code
        self.end_time = time.monotonic()
        if exit_code == 0:
            self.status = JobStatus.SUCCEEDED
        else:
            self.error = JobFailure(self.work_unit.path, exit_code)
            self.status = JobStatus.FAILED

    def fail(self, error: RelabelError) -> None:
        """Mark the job failed without an exit status (launch or wait error)."""

        self._require(JobStatus.PENDING, JobStatus.RUNNING)
        self.error = error
        self.end_time = time.monotonic()
        self.status = JobStatus.FAILED

    @property
    def duration(self) -> Optional[float]:
        if self.start_time is None or self.end_time is None:
            return None
        return self.end_time - self.start_time

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.work_unit.path,
            "status": self.status.value,
            "exit_code": self.exit_code,
            "log_path": str(self.log_path) if self.log_path is not None else None,
            "duration_s": self.duration,
            "error": str(self.error) if self.error is not None else None,
        }


@dataclass
class RunReport:
    """Aggregate of every terminal job of one run."""

    jobs: List[Job] = field(default_factory=list)
    elapsed_s: float = 0.0

    @property
    def succeeded(self) -> List[Job]:
        return [job for job in self.jobs if job.status is JobStatus.SUCCEEDED]

    @property
    def failed(self) -> List[Job]:
        return [job for job in self.jobs if job.status is JobStatus.FAILED]

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "total": len(self.jobs),
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "elapsed_s": round(self.elapsed_s, 3),
            "jobs": [job.to_dict() for job in self.jobs],
        }


__all__ = ["Job", "JobStatus", "RunReport", "WorkUnit", "log_sink_id"]
