"""JSONL journal of run and job lifecycle events, with size-based rotation."""

from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

__all__ = ["configure", "append_event", "current_log_path"]

_DEFAULT_MAX_BYTES = 10 * 1024 * 1024
_LOCK = threading.Lock()
_EVENT_DIR = Path("/var/log/parallel_relabel/events")
_MAX_BYTES = _DEFAULT_MAX_BYTES
_RUN_ID: str | None = None
_CURRENT_PATH: Path | None = None


def configure(base_dir: str | Path, *, run_id: str | None = None, max_bytes: int | None = None) -> None:
    """Write subsequent events under ``base_dir`` and tag them with ``run_id``."""

    global _EVENT_DIR, _MAX_BYTES, _RUN_ID, _CURRENT_PATH
    with _LOCK:
        _EVENT_DIR = Path(base_dir)
        _MAX_BYTES = max_bytes or _DEFAULT_MAX_BYTES
        _RUN_ID = run_id
        _CURRENT_PATH = None


def _date_prefix() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d")


def _resolve_log_path() -> Path:
    global _CURRENT_PATH
    date_dir = _EVENT_DIR / _date_prefix()
    date_dir.mkdir(parents=True, exist_ok=True)

    if _CURRENT_PATH is not None and _CURRENT_PATH.parent == date_dir and _CURRENT_PATH.exists():
        if _CURRENT_PATH.stat().st_size < _MAX_BYTES:
            return _CURRENT_PATH

    counter = 0
    while True:
        candidate = date_dir / f"events_{counter:02d}.jsonl"
        if not candidate.exists() or candidate.stat().st_size < _MAX_BYTES:
            _CURRENT_PATH = candidate
            return candidate
        counter += 1


def append_event(event: Mapping[str, Any]) -> Path:
    """Append ``event`` to the active JSONL file and return the file path.

    Safe to call from the job watcher threads.
    """

    payload = dict(event)
    payload.setdefault("ts", datetime.now(timezone.utc).isoformat(timespec="milliseconds"))
    with _LOCK:
        if _RUN_ID is not None:
            payload.setdefault("run_id", _RUN_ID)
        line = json.dumps(payload, sort_keys=True, ensure_ascii=False, default=str)
        path = _resolve_log_path()
        with path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
    return path


def current_log_path() -> Path | None:
    return _CURRENT_PATH
