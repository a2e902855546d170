"""Runtime configuration: TOML file, environment and CLI overrides."""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import jsonschema

try:  # Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - fallback for older Python
    import tomli as tomllib  # type: ignore[import-untyped]

from .budget import DEFAULT_RESERVED_CORES
from .discovery import DEFAULT_FILESYSTEM_TYPES, DEFAULT_MOUNT_TABLE
from .errors import ConfigError
from .launcher import DEFAULT_COMMAND

__all__ = ["RelabelSettings", "get_config", "reload", "resolve_settings", "CONFIG_SCHEMA"]

_CONFIG_FILENAME = "config.toml"
_CONFIG_ENV = "RELABEL_CONFIG"
_SECTION = "relabel"

DEFAULTS: Dict[str, Any] = {
    "reserved_cores": DEFAULT_RESERVED_CORES,
    "filesystem_types": list(DEFAULT_FILESYSTEM_TYPES),
    "log_dir": "/var/log/parallel_relabel",
    "command": DEFAULT_COMMAND,
    "extra_args": [],
    "mount_table": str(DEFAULT_MOUNT_TABLE),
    "required_selinux_mode": "Permissive",
    "dedupe_bind_mounts": False,
}

_SETTINGS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "reserved_cores": {"type": "integer", "minimum": 0},
        "filesystem_types": {
            "oneOf": [
                {"type": "array", "items": {"type": "string", "minLength": 1}},
                {"type": "string"},
            ]
        },
        "log_dir": {"type": "string", "minLength": 1},
        "command": {"type": "string", "minLength": 1},
        "extra_args": {"type": "array", "items": {"type": "string"}},
        "mount_table": {"type": "string", "minLength": 1},
        "required_selinux_mode": {"type": "string", "minLength": 1},
        "dedupe_bind_mounts": {"type": "boolean"},
    },
    "additionalProperties": False,
}

CONFIG_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {_SECTION: _SETTINGS_SCHEMA},
}

# CLI-derived keys win over plain environment keys, as in the argparse layer.
_OVERRIDE_PREFIXES = ("CLI_RELABEL_", "RELABEL_")


@dataclass(frozen=True)
class RelabelSettings:
    reserved_cores: int
    filesystem_types: Tuple[str, ...]
    log_dir: Path
    command: str
    extra_args: Tuple[str, ...]
    mount_table: Path
    required_selinux_mode: str
    dedupe_bind_mounts: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reserved_cores": self.reserved_cores,
            "filesystem_types": list(self.filesystem_types),
            "log_dir": str(self.log_dir),
            "command": self.command,
            "extra_args": list(self.extra_args),
            "mount_table": str(self.mount_table),
            "required_selinux_mode": self.required_selinux_mode,
            "dedupe_bind_mounts": self.dedupe_bind_mounts,
        }


def _default_config_path() -> Path:
    return Path(__file__).resolve().parents[2] / _CONFIG_FILENAME


def _config_path(env: Mapping[str, str]) -> Optional[Path]:
    explicit = env.get(_CONFIG_ENV)
    if explicit:
        path = Path(explicit)
        if not path.is_file():
            raise ConfigError(f"Configuration file '{path}' named by {_CONFIG_ENV} does not exist")
        return path
    path = _default_config_path()
    return path if path.is_file() else None


def _validate(data: Any, schema: Mapping[str, Any], origin: str) -> None:
    try:
        jsonschema.validate(instance=data, schema=schema)
    except jsonschema.ValidationError as exc:
        location = "/".join(str(part) for part in exc.absolute_path) or "<root>"
        raise ConfigError(f"Invalid configuration in {origin} at {location}: {exc.message}") from exc


@lru_cache(maxsize=4)
def _load_file(path: Path) -> Dict[str, Any]:
    try:
        with path.open("rb") as fh:
            data = tomllib.load(fh)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"Cannot load configuration file '{path}': {exc}") from exc
    _validate(data, CONFIG_SCHEMA, str(path))
    return data


def reload() -> None:
    """Clear the cached configuration file contents."""

    _load_file.cache_clear()


def get_config(env: Mapping[str, str] | None = None) -> Dict[str, Any]:
    """Return the ``[relabel]`` table of the active configuration file, if any."""

    env = os.environ if env is None else env
    path = _config_path(env)
    if path is None:
        return {}
    return dict(_load_file(path).get(_SECTION, {}))


def _coerce_bool(value: str) -> Optional[bool]:
    normalised = value.strip().lower()
    if normalised in {"1", "true", "yes", "on"}:
        return True
    if normalised in {"0", "false", "no", "off"}:
        return False
    return None


def _coerce(key: str, raw: str) -> Any:
    if key == "reserved_cores":
        try:
            return int(raw.strip())
        except ValueError as exc:
            raise ConfigError(f"reserved_cores must be an integer, got {raw!r}") from exc
    if key == "extra_args":
        return shlex.split(raw)
    if key == "dedupe_bind_mounts":
        flag = _coerce_bool(raw)
        if flag is None:
            raise ConfigError(f"dedupe_bind_mounts must be a boolean, got {raw!r}")
        return flag
    return raw


def _split_types(value: Any) -> Tuple[str, ...]:
    if isinstance(value, str):
        value = value.split(",")
    types = tuple(item.strip() for item in value if item.strip())
    if not types:
        raise ConfigError("filesystem_types must name at least one filesystem type")
    return types


def resolve_settings(env: Mapping[str, str] | None = None) -> RelabelSettings:
    """Merge defaults, the TOML file and ``RELABEL_*``/``CLI_RELABEL_*`` overrides."""

    env = os.environ if env is None else env
    merged: Dict[str, Any] = dict(DEFAULTS)
    merged.update(get_config(env))

    for key in DEFAULTS:
        for prefix in _OVERRIDE_PREFIXES:
            raw = env.get(prefix + key.upper())
            if raw is not None:
                merged[key] = _coerce(key, raw)
                break

    _validate(merged, _SETTINGS_SCHEMA, "merged settings")
    return RelabelSettings(
        reserved_cores=merged["reserved_cores"],
        filesystem_types=_split_types(merged["filesystem_types"]),
        log_dir=Path(merged["log_dir"]),
        command=merged["command"],
        extra_args=tuple(merged["extra_args"]),
        mount_table=Path(merged["mount_table"]),
        required_selinux_mode=merged["required_selinux_mode"],
        dedupe_bind_mounts=merged["dedupe_bind_mounts"],
    )
