"""Bounded job pool that admits relabel jobs against a concurrency ceiling."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from .aggregator import CompletionAggregator
from .errors import LaunchError, RelabelError
from .launcher import JobLauncher
from .task import Job, RunReport, WorkUnit

_LOGGER = logging.getLogger(__name__)

EventSink = Callable[[Mapping[str, Any]], Any]


@dataclass
class PoolState:
    """Shared scheduling state; every mutation happens under ``lock``."""

    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    running: Dict[int, Job] = field(default_factory=dict)
    launched: int = 0
    completed: int = 0
    peak_running: int = 0
    admission_waits: int = 0

    def add_running(self, job: Job) -> None:
        with self.lock:
            self.running[id(job)] = job
            self.launched += 1
            self.peak_running = max(self.peak_running, len(self.running))

    def remove_running(self, job: Job) -> None:
        with self.lock:
            self.running.pop(id(job), None)
            self.completed += 1

    def record_unlaunched(self) -> None:
        with self.lock:
            self.completed += 1

    def running_count(self) -> int:
        with self.lock:
            return len(self.running)


class JobPoolScheduler:
    """Run one job per work unit with at most ``max_jobs`` in flight.

    Units are admitted in the given order.  A slot is taken from a bounded
    semaphore before each launch and handed back by the job's watcher thread
    once the process exits, so a full pool blocks the scheduler thread without
    polling.  Failures of individual jobs are recorded, never raised.
    """

    def __init__(
        self,
        launcher: JobLauncher,
        max_jobs: int,
        *,
        aggregator: Optional[CompletionAggregator] = None,
        on_event: Optional[EventSink] = None,
        on_launch: Optional[Callable[[Job], Any]] = None,
    ) -> None:
        if max_jobs < 1:
            raise ValueError("max_jobs must be at least 1")
        self.launcher = launcher
        self.max_jobs = max_jobs
        self.aggregator = aggregator or CompletionAggregator()
        self.state = PoolState()
        self._on_event = on_event
        self._on_launch = on_launch
        self._slots = threading.BoundedSemaphore(max_jobs)
        self._watchers: List[threading.Thread] = []

    def _emit(self, event: Mapping[str, Any]) -> None:
        if self._on_event is None:
            return
        try:
            self._on_event(event)
        except OSError as exc:
            _LOGGER.warning("Could not record %s event: %s", event.get("event"), exc)

    def _acquire_slot(self) -> None:
        if self._slots.acquire(blocking=False):
            return
        with self.state.lock:
            self.state.admission_waits += 1
        _LOGGER.debug("Pool full (%d running); waiting for a slot", self.max_jobs)
        self._slots.acquire()

    def _watch(self, job: Job) -> None:
        try:
            exit_code = job.process.wait()
        except Exception as exc:
            _LOGGER.exception("Waiting on relabel job for %s failed", job.work_unit.path)
            job.fail(RelabelError(f"wait failed for '{job.work_unit.path}': {exc}"))
        else:
            job.finish(exit_code)

        try:
            self.state.remove_running(job)
            self._emit(
                {
                    "event": "job.finished",
                    "path": job.work_unit.path,
                    "status": job.status.value,
                    "exit_code": job.exit_code,
                    "duration_s": job.duration,
                }
            )
        finally:
            self.aggregator.job_finished(job)
            self._slots.release()

    def _admit(self, unit: WorkUnit) -> None:
        self._acquire_slot()
        self.aggregator.mark_launch()
        try:
            job = self.launcher.launch(unit)
        except LaunchError as exc:
            _LOGGER.error("%s", exc)
            failed = Job(work_unit=unit, log_path=self.launcher.log_path_for(unit))
            failed.fail(exc)
            self.state.record_unlaunched()
            self._emit({"event": "job.launch_failed", "path": unit.path, "error": exc.reason})
            self.aggregator.job_finished(failed)
            self._slots.release()
            return

        self.state.add_running(job)
        self._emit(
            {
                "event": "job.started",
                "path": unit.path,
                "log_path": str(job.log_path),
                "pid": getattr(job.process, "pid", None),
            }
        )
        watcher = threading.Thread(
            target=self._watch,
            args=(job,),
            name=f"relabel-watch-{unit.log_sink_id}",
            daemon=True,
        )
        self._watchers.append(watcher)
        watcher.start()
        if self._on_launch is not None:
            self._on_launch(job)

    def run(self, units: Sequence[WorkUnit]) -> RunReport:
        """Launch every unit, wait for all of them and return the report."""

        admitted = 0
        try:
            for unit in units:
                self._admit(unit)
                admitted += 1
        finally:
            if admitted < len(units):
                # Do not abandon started processes when the loop itself breaks.
                for watcher in self._watchers:
                    watcher.join()

        report = self.aggregator.collect(admitted)
        for watcher in self._watchers:
            watcher.join()
        return report


__all__ = ["EventSink", "JobPoolScheduler", "PoolState"]
