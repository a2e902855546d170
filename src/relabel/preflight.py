"""Privilege and SELinux mode checks run before any job is launched."""

from __future__ import annotations

import os
import subprocess
from typing import Callable, Optional

from .errors import PreflightError

__all__ = ["check_preflight", "is_root", "selinux_mode"]


def is_root() -> bool:
    return os.geteuid() == 0


def selinux_mode(getenforce: str = "getenforce") -> str:
    """Return the current SELinux mode as reported by ``getenforce``."""

    try:
        completed = subprocess.run(
            [getenforce],
            check=True,
            capture_output=True,
            text=True,
        )
    except (OSError, subprocess.CalledProcessError) as exc:
        raise PreflightError(
            f"Could not determine the SELinux mode: {exc}",
            hint="Make sure the SELinux userspace tools are installed.",
        ) from exc
    return completed.stdout.strip()


def check_preflight(
    required_mode: str = "Permissive",
    *,
    root_check: Callable[[], bool] = is_root,
    mode_query: Optional[Callable[[], str]] = None,
) -> str:
    """Raise :class:`PreflightError` unless running as root in ``required_mode``.

    Returns the detected SELinux mode.
    """

    if not root_check():
        raise PreflightError("This tool must be run as root.")

    mode = (mode_query or selinux_mode)()
    if mode != required_mode:
        raise PreflightError(
            f"SELinux is not in {required_mode} mode. Current mode: {mode}",
            hint="Please run 'sudo setenforce 0' and then re-run this tool.",
        )
    return mode
