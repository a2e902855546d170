"""Parallel SELinux relabeling across independently mounted filesystems."""

from .aggregator import CompletionAggregator
from .budget import compute_max_jobs, resolve_max_jobs
from .discovery import discover_work_units
from .errors import (
    DiscoveryError,
    JobFailure,
    LaunchError,
    RelabelError,
    ResourceQueryError,
)
from .launcher import JobLauncher
from .scheduler import JobPoolScheduler, PoolState
from .task import Job, JobStatus, RunReport, WorkUnit, log_sink_id

__all__ = [
    "CompletionAggregator",
    "DiscoveryError",
    "Job",
    "JobFailure",
    "JobLauncher",
    "JobPoolScheduler",
    "JobStatus",
    "LaunchError",
    "PoolState",
    "RelabelError",
    "ResourceQueryError",
    "RunReport",
    "WorkUnit",
    "compute_max_jobs",
    "discover_work_units",
    "log_sink_id",
    "resolve_max_jobs",
]
