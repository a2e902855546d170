"""Command line helpers for inspecting relabel plans and logs."""

from __future__ import annotations

import argparse
import json
import os
from pathlib import Path
from typing import Dict, List

from relabel.config import resolve_settings
from relabel.discovery import find_overlaps, read_mount_table, visible_mounts
from relabel.errors import ConfigError, DiscoveryError
from relabel.runner import build_plan
from relabel.task import WorkUnit
from relabel_tools.reports import log_report


def _plan_env(args: argparse.Namespace) -> Dict[str, str]:
    env: Dict[str, str] = {}
    if args.fs_types:
        env["CLI_RELABEL_FILESYSTEM_TYPES"] = args.fs_types
    if args.mount_table:
        env["CLI_RELABEL_MOUNT_TABLE"] = args.mount_table
    if args.reserved_cores is not None:
        env["CLI_RELABEL_RESERVED_CORES"] = str(args.reserved_cores)
    return env


def cmd_plan(args: argparse.Namespace) -> int:
    env = dict(os.environ)
    env.update(_plan_env(args))
    try:
        settings = resolve_settings(env)
        plan = build_plan(settings)
        wanted = set(settings.filesystem_types)
        typed: List[WorkUnit] = [
            unit for unit in visible_mounts(read_mount_table(settings.mount_table)) if unit.fstype in wanted
        ]
    except (ConfigError, DiscoveryError) as exc:
        raise SystemExit(f"error: {exc}")

    payload = plan.to_dict()
    payload["overlaps"] = [
        {"kept": kept.path, "covered": covered.path, "device": covered.device}
        for kept, covered in find_overlaps(typed)
    ]
    print(json.dumps(payload, indent=2, sort_keys=True))
    return 0


def cmd_report_logs(args: argparse.Namespace) -> int:
    base_dir = Path(args.path)
    files = sorted(base_dir.glob("*.log"))
    if not files:
        raise SystemExit(f"No relabel logs found under {base_dir}")
    summary = log_report.aggregate(files, top=args.top)
    print(json.dumps(summary, indent=2, sort_keys=True))
    return 1 if summary["logs_with_issues"] else 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Parallel relabel helpers")
    sub = parser.add_subparsers(dest="command", required=True)

    plan = sub.add_parser("plan", help="Show the mount points and pool size of a run")
    plan.add_argument("--fs-types", default=None, help="Comma-separated filesystem types")
    plan.add_argument("--mount-table", default=None)
    plan.add_argument("--reserved-cores", type=int, default=None)
    plan.set_defaults(func=cmd_plan)

    report = sub.add_parser("report-logs", help="Summarise relabeled entries and errors in job logs")
    report.add_argument("path", help="Directory containing the per-mount .log files")
    report.add_argument("--top", type=int, default=5)
    report.set_defaults(func=cmd_report_logs)

    return parser


def main(argv: List[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
