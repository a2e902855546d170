"""Spawning of one relabel process per work unit."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Any, Callable, List, Sequence

from .errors import LaunchError
from .task import Job, WorkUnit

_LOGGER = logging.getLogger(__name__)

DEFAULT_COMMAND = "restorecon"
# Recursive, verbose, and never descend into another mounted filesystem.
# The last flag is what keeps the work units disjoint.
RELABEL_FLAGS: tuple[str, ...] = ("-R", "-v", "-x")


class JobLauncher:
    """Start relabel processes with output captured in per-unit log files."""

    def __init__(
        self,
        log_dir: str | Path,
        *,
        command: str = DEFAULT_COMMAND,
        extra_args: Sequence[str] = (),
        popen: Callable[..., Any] = subprocess.Popen,
    ) -> None:
        self.log_dir = Path(log_dir)
        self.command = command
        self.extra_args = tuple(extra_args)
        self._popen = popen

    def argv_for(self, unit: WorkUnit) -> List[str]:
        return [self.command, *RELABEL_FLAGS, *self.extra_args, unit.path]

    def log_path_for(self, unit: WorkUnit) -> Path:
        return self.log_dir / f"{unit.log_sink_id}.log"

    def launch(self, unit: WorkUnit) -> Job:
        """Start the relabel process for ``unit`` and return it as a running job.

        Does not wait for the process.  Raises :class:`LaunchError` if the log
        file cannot be created or the process cannot be spawned.
        """

        job = Job(work_unit=unit)
        log_path = self.log_path_for(unit)
        argv = self.argv_for(unit)
        try:
            # The child keeps its own copy of the descriptor.
            with log_path.open("wb") as sink:
                process = self._popen(
                    argv,
                    stdin=subprocess.DEVNULL,
                    stdout=sink,
                    stderr=subprocess.STDOUT,
                    close_fds=True,
                )
        except (OSError, ValueError, subprocess.SubprocessError) as exc:
            raise LaunchError(unit.path, str(exc)) from exc

        job.start(process, log_path)
        _LOGGER.debug("Started %s (pid %s), output in %s", argv, getattr(process, "pid", "?"), log_path)
        return job


__all__ = ["DEFAULT_COMMAND", "JobLauncher", "RELABEL_FLAGS"]
