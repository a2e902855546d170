from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterable, Tuple

import pytest

from relabel import config

# Stands in for restorecon: echoes its argv, fails for any path containing
# "fail", otherwise sleeps briefly and prints a relabel line for the path.
FAKE_RELABEL = """#!/bin/sh
for last; do :; done
echo "argv: $*"
case "$last" in
  *fail*)
    echo "restorecon: error while relabeling $last" >&2
    exit 1
    ;;
esac
sleep "${FAKE_RELABEL_SLEEP:-0.05}"
echo "Relabeled $last from system_u:object_r:unlabeled_t:s0 to system_u:object_r:default_t:s0"
"""

MountSpec = Tuple[str, ...]


@pytest.fixture(autouse=True)
def _fresh_config():
    config.reload()
    yield
    config.reload()


@pytest.fixture
def fake_relabel(tmp_path: Path) -> Path:
    script = tmp_path / "fake-restorecon"
    script.write_text(FAKE_RELABEL, encoding="utf-8")
    script.chmod(0o755)
    return script


def _mountinfo_line(mount_id: int, spec: MountSpec) -> str:
    path, fstype = spec[0], spec[1]
    device = spec[2] if len(spec) > 2 else f"8:{mount_id}"
    root = spec[3] if len(spec) > 3 else "/"
    return f"{mount_id} 1 {device} {root} {path} rw,relatime shared:{mount_id} - {fstype} /dev/disk{mount_id} rw"


@pytest.fixture
def mountinfo(tmp_path: Path) -> Callable[[Iterable[MountSpec]], Path]:
    """Write a mountinfo file; each spec is ``(path, fstype[, device[, root]])``."""

    def _write(specs: Iterable[MountSpec]) -> Path:
        lines = [_mountinfo_line(index, spec) for index, spec in enumerate(specs, start=20)]
        table = tmp_path / "mountinfo"
        table.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return table

    return _write
