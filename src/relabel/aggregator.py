"""Collection of terminal jobs into a run report."""

from __future__ import annotations

import queue
import time
from typing import List, Optional, Set

from .task import Job, RunReport


class CompletionAggregator:
    """Thread-safe sink for finished jobs.

    Watcher threads call :meth:`job_finished` in whatever order the processes
    exit; the scheduler thread blocks in :meth:`collect` until every expected
    job has arrived.
    """

    def __init__(self) -> None:
        self._done: "queue.Queue[Job]" = queue.Queue()
        self._jobs: List[Job] = []
        self._seen: Set[int] = set()
        self._first_launch: Optional[float] = None

    def mark_launch(self) -> None:
        if self._first_launch is None:
            self._first_launch = time.monotonic()

    def job_finished(self, job: Job) -> None:
        self._done.put(job)

    def _record(self, job: Job) -> None:
        if not job.status.terminal:
            raise RuntimeError(f"Job for '{job.work_unit.path}' reported before reaching a terminal state")
        if id(job) in self._seen:
            raise RuntimeError(f"Job for '{job.work_unit.path}' reported twice")
        self._seen.add(id(job))
        self._jobs.append(job)

    def collect(self, expected: int) -> RunReport:
        """Block until ``expected`` jobs have finished and build the report."""

        while len(self._jobs) < expected:
            self._record(self._done.get())
        elapsed = 0.0
        if self._first_launch is not None and self._jobs:
            elapsed = time.monotonic() - self._first_launch
        return RunReport(jobs=list(self._jobs), elapsed_s=elapsed)


__all__ = ["CompletionAggregator"]
