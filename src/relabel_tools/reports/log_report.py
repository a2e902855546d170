"""Aggregation helpers for per-mount relabel logs."""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Mapping

__all__ = ["LogScan", "aggregate", "scan_log"]

_ISSUE = re.compile(r"error|failed", re.IGNORECASE)
_RELABELED = "Relabeled "


@dataclass
class LogScan:
    path: Path
    relabeled: int = 0
    issues: List[str] = field(default_factory=list)


def scan_log(path: Path) -> LogScan:
    """Count relabeled entries and error lines in one job log."""

    scan = LogScan(path=path)
    with path.open("r", encoding="utf-8", errors="replace") as handle:
        for raw in handle:
            line = raw.rstrip("\n")
            if line.startswith(_RELABELED):
                scan.relabeled += 1
            elif _ISSUE.search(line):
                scan.issues.append(line.strip())
    return scan


def aggregate(paths: Iterable[Path], *, top: int = 5) -> Mapping[str, object]:
    scans = [scan_log(path) for path in paths]
    messages: Counter[str] = Counter()
    for scan in scans:
        messages.update(scan.issues)

    return {
        "total_logs": len(scans),
        "relabeled": sum(scan.relabeled for scan in scans),
        "logs_with_issues": [
            {"log": str(scan.path), "issue_count": len(scan.issues)} for scan in scans if scan.issues
        ],
        "top_issues": messages.most_common(top),
    }
