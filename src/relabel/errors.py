"""Error taxonomy for parallel relabel runs."""

from __future__ import annotations


class RelabelError(RuntimeError):
    """Base class for every error raised by the relabel package."""


class DiscoveryError(RelabelError):
    """The mount table could not be read; no work partition exists."""


class ResourceQueryError(RelabelError):
    """The host core count is unavailable."""


class ConfigError(RelabelError):
    """The runtime configuration is invalid."""


class PreflightError(RelabelError):
    """A privilege or SELinux mode precondition is not met."""

    def __init__(self, message: str, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class LaunchError(RelabelError):
    """A job for one work unit could not be started."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"failed to start relabel job for '{path}': {reason}")
        self.path = path
        self.reason = reason


class JobFailure(RelabelError):
    """The relabel process for one work unit exited with a nonzero status."""

    def __init__(self, path: str, exit_code: int) -> None:
        super().__init__(f"relabel job for '{path}' exited with status {exit_code}")
        self.path = path
        self.exit_code = exit_code


__all__ = [
    "ConfigError",
    "DiscoveryError",
    "JobFailure",
    "LaunchError",
    "PreflightError",
    "RelabelError",
    "ResourceQueryError",
]
