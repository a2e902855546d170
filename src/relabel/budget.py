"""Concurrency budget derived from the host CPU count."""

from __future__ import annotations

import logging
import os
from typing import Callable, Optional

from .errors import ResourceQueryError

_LOGGER = logging.getLogger(__name__)

DEFAULT_RESERVED_CORES = 2


def _affinity_core_count() -> Optional[int]:
    # Honour CPU affinity the way nproc does; fall back to the raw count.
    if hasattr(os, "sched_getaffinity"):
        return len(os.sched_getaffinity(0))
    return os.cpu_count()


def host_core_count(query: Callable[[], Optional[int]] | None = None) -> int:
    """Return the number of usable CPU cores or raise :class:`ResourceQueryError`."""

    query = query or _affinity_core_count
    try:
        count = query()
    except OSError as exc:
        raise ResourceQueryError(f"CPU core count query failed: {exc}") from exc
    if not isinstance(count, int) or isinstance(count, bool) or count < 1:
        raise ResourceQueryError(f"CPU core count unavailable (got {count!r})")
    return count


def compute_max_jobs(total_cores: int, reserved_cores: int = DEFAULT_RESERVED_CORES) -> int:
    """Return ``max(1, total_cores - reserved_cores)``."""

    return max(1, total_cores - reserved_cores)


def resolve_max_jobs(
    reserved_cores: int = DEFAULT_RESERVED_CORES,
    *,
    query: Callable[[], Optional[int]] | None = None,
) -> tuple[int, Optional[int]]:
    """Return ``(max_jobs, detected_cores)``.

    A failed core count query never aborts the run: it is logged and the
    budget falls back to a single job, with ``detected_cores`` set to ``None``.
    """

    try:
        cores = host_core_count(query)
    except ResourceQueryError as exc:
        _LOGGER.warning("%s; running one job at a time", exc)
        return 1, None
    return compute_max_jobs(cores, reserved_cores), cores


__all__ = [
    "DEFAULT_RESERVED_CORES",
    "compute_max_jobs",
    "host_core_count",
    "resolve_max_jobs",
]
