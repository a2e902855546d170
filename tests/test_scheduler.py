from __future__ import annotations

import threading

import pytest

from relabel.errors import JobFailure, LaunchError
from relabel.launcher import JobLauncher
from relabel.scheduler import JobPoolScheduler
from relabel.task import JobStatus, WorkUnit


def _units(*paths):
    return [WorkUnit(path) for path in paths]


def _scheduler(tmp_path, fake_relabel, max_jobs, **kwargs):
    launcher = JobLauncher(tmp_path, command=str(fake_relabel))
    return JobPoolScheduler(launcher, max_jobs, **kwargs)


def test_empty_unit_set_completes_immediately(tmp_path, fake_relabel):
    scheduler = _scheduler(tmp_path, fake_relabel, 4)
    report = scheduler.run([])
    assert report.ok
    assert report.jobs == []
    assert report.elapsed_s == 0.0
    assert scheduler.state.launched == 0


def test_every_unit_reaches_exactly_one_terminal_state(tmp_path, fake_relabel):
    units = _units("/a", "/b", "/c", "/d", "/e", "/f")
    scheduler = _scheduler(tmp_path, fake_relabel, 2)
    report = scheduler.run(units)

    assert sorted(job.work_unit.path for job in report.jobs) == sorted(u.path for u in units)
    assert all(job.status is JobStatus.SUCCEEDED for job in report.jobs)
    assert scheduler.state.launched == 6
    assert scheduler.state.completed == 6
    assert scheduler.state.running == {}
    assert scheduler.state.peak_running <= 2


def test_failed_job_does_not_stop_remaining_units(tmp_path, fake_relabel):
    units = _units("/fail", "/b", "/c")
    report = _scheduler(tmp_path, fake_relabel, 1).run(units)

    statuses = {job.work_unit.path: job.status for job in report.jobs}
    assert statuses == {
        "/fail": JobStatus.FAILED,
        "/b": JobStatus.SUCCEEDED,
        "/c": JobStatus.SUCCEEDED,
    }
    assert not report.ok
    (failed,) = report.failed
    assert isinstance(failed.error, JobFailure)
    assert failed.exit_code == 1


def test_pool_larger_than_work_never_blocks(tmp_path, fake_relabel):
    scheduler = _scheduler(tmp_path, fake_relabel, 8)
    report = scheduler.run(_units("/a", "/b", "/c"))
    assert len(report.succeeded) == 3
    assert scheduler.state.admission_waits == 0


def test_single_slot_runs_jobs_one_at_a_time(tmp_path, fake_relabel, monkeypatch):
    monkeypatch.setenv("FAKE_RELABEL_SLEEP", "0.1")
    scheduler = _scheduler(tmp_path, fake_relabel, 1)
    report = scheduler.run(_units("/a", "/b", "/c"))

    assert len(report.succeeded) == 3
    assert scheduler.state.peak_running == 1
    assert scheduler.state.admission_waits == 2
    # Sequential: total time is the sum of the three sleeps, not the max.
    assert report.elapsed_s >= 0.3


def test_launch_errors_are_recorded_and_release_slots(tmp_path):
    launcher = JobLauncher(tmp_path, command=str(tmp_path / "missing-binary"))
    scheduler = JobPoolScheduler(launcher, 1)
    report = scheduler.run(_units("/a", "/b"))

    assert len(report.failed) == 2
    assert all(isinstance(job.error, LaunchError) for job in report.failed)
    assert scheduler.state.launched == 0
    assert scheduler.state.completed == 2


def test_events_are_emitted_per_job(tmp_path, fake_relabel):
    events = []
    lock = threading.Lock()

    def sink(event):
        with lock:
            events.append(dict(event))

    announced = []
    scheduler = _scheduler(tmp_path, fake_relabel, 2, on_event=sink, on_launch=announced.append)
    scheduler.run(_units("/x", "/fail"))

    started = [e for e in events if e["event"] == "job.started"]
    finished = {e["path"]: e["status"] for e in events if e["event"] == "job.finished"}
    assert [e["path"] for e in started] == ["/x", "/fail"]
    assert finished == {"/x": "succeeded", "/fail": "failed"}
    assert [job.work_unit.path for job in announced] == ["/x", "/fail"]


def test_broken_event_sink_does_not_lose_jobs(tmp_path, fake_relabel):
    def sink(event):
        raise OSError("disk full")

    report = _scheduler(tmp_path, fake_relabel, 2, on_event=sink).run(_units("/a", "/b"))
    assert len(report.succeeded) == 2


class _GatedProcess:
    """Process double whose exit is controlled by the test."""

    def __init__(self, gate: threading.Event) -> None:
        self.gate = gate
        self.pid = None

    def wait(self) -> int:
        self.gate.wait(timeout=5)
        return 0


def test_running_set_never_exceeds_max_jobs(tmp_path):
    gates = []
    observed = []

    def popen(argv, **kwargs):
        gate = threading.Event()
        gates.append(gate)
        return _GatedProcess(gate)

    launcher = JobLauncher(tmp_path, popen=popen)
    scheduler = JobPoolScheduler(launcher, 2, on_launch=lambda job: observed.append(scheduler.state.running_count()))

    def release_in_order():
        released = 0
        while released < 5:
            if len(gates) > released:
                gates[released].set()
                released += 1
            else:
                threading.Event().wait(0.01)

    releaser = threading.Thread(target=release_in_order)
    releaser.start()
    report = scheduler.run(_units("/1", "/2", "/3", "/4", "/5"))
    releaser.join()

    assert len(report.succeeded) == 5
    assert max(observed) <= 2
    assert scheduler.state.peak_running <= 2


def test_max_jobs_must_be_positive(tmp_path):
    with pytest.raises(ValueError):
        JobPoolScheduler(JobLauncher(tmp_path), 0)


def test_units_sharing_a_path_are_tracked_separately(tmp_path):
    gates = []

    def popen(argv, **kwargs):
        gate = threading.Event()
        gates.append(gate)
        return _GatedProcess(gate)

    def on_launch(job):
        if len(gates) == 2:
            for gate in gates:
                gate.set()

    scheduler = JobPoolScheduler(JobLauncher(tmp_path, popen=popen), 2, on_launch=on_launch)
    report = scheduler.run([WorkUnit("/a"), WorkUnit("/a")])

    assert len(report.succeeded) == 2
    assert scheduler.state.peak_running == 2
    assert scheduler.state.running == {}
