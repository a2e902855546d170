"""End-to-end parallel relabel run (discover → budget → pool → report)."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

from . import log as event_log
from .budget import resolve_max_jobs
from .config import RelabelSettings, resolve_settings
from .discovery import discover_work_units
from .errors import ConfigError, DiscoveryError, PreflightError
from .launcher import JobLauncher
from .preflight import check_preflight
from .scheduler import JobPoolScheduler
from .task import Job, RunReport, WorkUnit

_LOGGER = logging.getLogger(__name__)
_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

Echo = Callable[[str], Any]


@dataclass
class RunPlan:
    """Everything decided before the first job starts."""

    settings: RelabelSettings
    units: List[WorkUnit]
    max_jobs: int
    detected_cores: Optional[int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "settings": self.settings.to_dict(),
            "max_jobs": self.max_jobs,
            "detected_cores": self.detected_cores,
            "units": [
                {
                    "path": unit.path,
                    "fstype": unit.fstype,
                    "source": unit.source,
                    "log_sink_id": unit.log_sink_id,
                }
                for unit in self.units
            ],
        }


def format_duration(seconds: float) -> str:
    total = int(seconds)
    return f"{total // 3600}h {(total // 60) % 60}m {total % 60}s"


def new_run_id() -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return f"run-{stamp}-{uuid.uuid4().hex[:6]}"


def build_plan(
    settings: RelabelSettings,
    *,
    core_query: Callable[[], Optional[int]] | None = None,
) -> RunPlan:
    """Size the pool and discover work units; raises :class:`DiscoveryError`."""

    max_jobs, cores = resolve_max_jobs(settings.reserved_cores, query=core_query)
    units = discover_work_units(
        settings.filesystem_types,
        mount_table=settings.mount_table,
        dedupe_bind_mounts=settings.dedupe_bind_mounts,
    )
    return RunPlan(settings=settings, units=units, max_jobs=max_jobs, detected_cores=cores)


def _record(event: Mapping[str, Any]) -> None:
    try:
        event_log.append_event(event)
    except OSError as exc:
        _LOGGER.warning("Could not record %s event: %s", event.get("event"), exc)


def execute_plan(plan: RunPlan, *, run_id: str | None = None, echo: Echo = print) -> RunReport:
    """Run every planned unit through the job pool and return the report."""

    if not plan.units:
        return RunReport()

    settings = plan.settings
    settings.log_dir.mkdir(parents=True, exist_ok=True)
    event_log.configure(settings.log_dir / "events", run_id=run_id or new_run_id())

    launcher = JobLauncher(settings.log_dir, command=settings.command, extra_args=settings.extra_args)

    def _announce(job: Job) -> None:
        echo(
            f"[{time.strftime('%H:%M:%S')}] Starting job for: '{job.work_unit.path}'. "
            f"Log: {job.log_path}"
        )

    scheduler = JobPoolScheduler(
        launcher,
        plan.max_jobs,
        on_event=event_log.append_event,
        on_launch=_announce,
    )
    _record(
        {
            "event": "run.started",
            "max_jobs": plan.max_jobs,
            "units": [unit.path for unit in plan.units],
        }
    )
    report = scheduler.run(plan.units)
    _record(
        {
            "event": "run.finished",
            "ok": report.ok,
            "succeeded": len(report.succeeded),
            "failed": len(report.failed),
            "elapsed_s": round(report.elapsed_s, 3),
            "peak_running": scheduler.state.peak_running,
        }
    )
    return report


def _print_plan(plan: RunPlan, echo: Echo = print) -> None:
    if plan.detected_cores is None:
        echo("Could not detect the CPU core count.")
    else:
        echo(
            f"Detected {plan.detected_cores} CPU cores. "
            f"Reserving {plan.settings.reserved_cores}."
        )
    echo(f"Will run a maximum of {plan.max_jobs} '{plan.settings.command}' jobs in parallel.")
    echo(f"Mount points for filesystem types: {','.join(plan.settings.filesystem_types)}")
    if not plan.units:
        return
    echo(f"Found {len(plan.units)} filesystems to relabel (processed independently):")
    for unit in plan.units:
        echo(f" - {unit.path}")
    echo(f"Log files for each job will be stored in {plan.settings.log_dir}")


def _print_summary(report: RunReport, log_dir: Path, echo: Echo = print) -> None:
    echo("")
    if report.ok:
        echo(f"All {len(report.jobs)} filesystems have been relabeled successfully!")
    else:
        echo(f"{len(report.failed)} of {len(report.jobs)} relabel jobs failed:")
        for job in report.failed:
            echo(f" - {job.work_unit.path}: {job.error} (log: {job.log_path})")
    echo(f"Total execution time: {format_duration(report.elapsed_s)}")
    echo("")
    echo("--- Next Steps ---")
    echo(f"1. Check for any errors by reviewing the logs in '{log_dir}'.")
    echo(f"   Example: relabelctl report-logs {log_dir}")
    echo("2. Verify there are no new SELinux denials:")
    echo("   sudo ausearch -m AVC,USER_AVC,SELINUX_ERR -ts recent")


def _merge_env(overrides: Mapping[str, str] | None = None) -> Dict[str, str]:
    env: Dict[str, str] = {str(k): str(v) for k, v in os.environ.items()}
    if overrides:
        env.update({str(k): str(v) for k, v in overrides.items()})
    return env


def _cli_overrides(args: argparse.Namespace) -> Dict[str, str]:
    payload: Dict[str, str] = {}
    if getattr(args, "reserved_cores", None) is not None:
        payload["CLI_RELABEL_RESERVED_CORES"] = str(args.reserved_cores)
    if getattr(args, "filesystem_types", None):
        payload["CLI_RELABEL_FILESYSTEM_TYPES"] = args.filesystem_types
    if getattr(args, "log_dir", None):
        payload["CLI_RELABEL_LOG_DIR"] = args.log_dir
    if getattr(args, "command", None):
        payload["CLI_RELABEL_COMMAND"] = args.command
    if getattr(args, "mount_table", None):
        payload["CLI_RELABEL_MOUNT_TABLE"] = args.mount_table
    return payload


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Relabel SELinux contexts of every mounted filesystem in parallel.",
    )
    parser.add_argument(
        "--reserved-cores",
        type=int,
        help="CPU cores kept free; the pool runs max(1, cores - reserved) jobs.",
    )
    parser.add_argument(
        "--fs-types",
        dest="filesystem_types",
        help="Comma-separated filesystem types to relabel (e.g. 'xfs,ext4').",
    )
    parser.add_argument("--log-dir", help="Directory receiving one log file per mount point.")
    parser.add_argument("--command", help="Relabel executable (defaults to restorecon).")
    parser.add_argument("--mount-table", help="Mount table to read instead of /proc/self/mountinfo.")
    parser.add_argument(
        "--skip-preflight",
        action="store_true",
        help="Do not check for root privileges and the SELinux mode.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the mount points and pool size, then exit without relabeling.",
    )
    parser.add_argument("--json", action="store_true", help="Print the final report as JSON.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format=_LOG_FORMAT,
        stream=sys.stderr,
    )

    try:
        settings = resolve_settings(_merge_env(_cli_overrides(args)))
    except ConfigError as exc:
        parser.error(str(exc))

    if not (args.skip_preflight or args.dry_run):
        print("--- Running Pre-flight Checks ---")
        try:
            mode = check_preflight(settings.required_selinux_mode)
        except PreflightError as exc:
            print(f"Error: {exc}")
            if exc.hint:
                print(exc.hint)
            return 1
        print("Root privileges confirmed.")
        print(f"SELinux is in {mode} mode.")

    print("--- Starting Parallel Relabeling Process ---")
    try:
        plan = build_plan(settings)
    except DiscoveryError as exc:
        print(f"Error: {exc}")
        return 2
    _print_plan(plan)

    if not plan.units:
        print("No filesystems of the specified types were found. Exiting.")
        return 0
    if args.dry_run:
        return 0

    try:
        report = execute_plan(plan)
    except OSError as exc:
        print(f"Error: cannot prepare log directory {settings.log_dir}: {exc}")
        return 2

    if args.json:
        print(json.dumps(report.to_dict(), indent=2, sort_keys=True))
    else:
        _print_summary(report, settings.log_dir)
    return 0 if report.ok else 1


__all__ = ["RunPlan", "build_parser", "build_plan", "execute_plan", "format_duration", "main"]


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    raise SystemExit(main())
