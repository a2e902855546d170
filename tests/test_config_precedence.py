from __future__ import annotations

from pathlib import Path

import pytest

from relabel.config import DEFAULTS, get_config, resolve_settings
from relabel.errors import ConfigError


def _write_config(tmp_path: Path, body: str) -> dict[str, str]:
    path = tmp_path / "relabel.toml"
    path.write_text(body, encoding="utf-8")
    return {"RELABEL_CONFIG": str(path)}


def test_config_precedence_defaults(tmp_path):
    settings = resolve_settings(_write_config(tmp_path, ""))
    assert settings.reserved_cores == DEFAULTS["reserved_cores"] == 2
    assert settings.filesystem_types == ("xfs", "ext4", "btrfs", "ext3", "ext2")
    assert settings.log_dir == Path("/var/log/parallel_relabel")
    assert settings.command == "restorecon"
    assert settings.required_selinux_mode == "Permissive"
    assert settings.dedupe_bind_mounts is False


def test_toml_overrides_defaults(tmp_path):
    env = _write_config(
        tmp_path,
        '[relabel]\nreserved_cores = 4\nfilesystem_types = "xfs, ext4"\nlog_dir = "/tmp/relabel"\n',
    )
    settings = resolve_settings(env)
    assert settings.reserved_cores == 4
    assert settings.filesystem_types == ("xfs", "ext4")
    assert settings.log_dir == Path("/tmp/relabel")
    assert get_config(env)["reserved_cores"] == 4


def test_environment_overrides_toml(tmp_path):
    env = _write_config(tmp_path, "[relabel]\nreserved_cores = 4\n")
    env.update(
        {
            "RELABEL_RESERVED_CORES": "6",
            "RELABEL_FILESYSTEM_TYPES": "xfs,btrfs",
            "RELABEL_EXTRA_ARGS": "-e /var/tmp",
            "RELABEL_DEDUPE_BIND_MOUNTS": "on",
        }
    )
    settings = resolve_settings(env)
    assert settings.reserved_cores == 6
    assert settings.filesystem_types == ("xfs", "btrfs")
    assert settings.extra_args == ("-e", "/var/tmp")
    assert settings.dedupe_bind_mounts is True


def test_cli_overrides_environment(tmp_path):
    env = _write_config(tmp_path, "[relabel]\nreserved_cores = 4\n")
    env.update({"RELABEL_RESERVED_CORES": "6", "CLI_RELABEL_RESERVED_CORES": "0"})
    assert resolve_settings(env).reserved_cores == 0


@pytest.mark.parametrize(
    "body",
    [
        "[relabel]\nreserved_cores = -1\n",
        "[relabel]\nunknown_key = 1\n",
        "[relabel]\nfilesystem_types = [1, 2]\n",
        "[relabel\n",
    ],
)
def test_invalid_files_are_rejected(tmp_path, body):
    with pytest.raises(ConfigError):
        resolve_settings(_write_config(tmp_path, body))


@pytest.mark.parametrize(
    "override",
    [
        {"RELABEL_RESERVED_CORES": "many"},
        {"RELABEL_RESERVED_CORES": "-2"},
        {"RELABEL_DEDUPE_BIND_MOUNTS": "maybe"},
        {"RELABEL_FILESYSTEM_TYPES": " , "},
    ],
)
def test_invalid_overrides_are_rejected(tmp_path, override):
    env = _write_config(tmp_path, "")
    env.update(override)
    with pytest.raises(ConfigError):
        resolve_settings(env)


def test_missing_explicit_config_file(tmp_path):
    with pytest.raises(ConfigError):
        resolve_settings({"RELABEL_CONFIG": str(tmp_path / "absent.toml")})
