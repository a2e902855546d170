"""Discovery of the disjoint set of mount points to relabel."""

from __future__ import annotations

import itertools
import logging
import re
from pathlib import Path
from typing import Dict, Iterable, List, Sequence, Tuple

from .errors import DiscoveryError
from .task import WorkUnit

_LOGGER = logging.getLogger(__name__)

DEFAULT_FILESYSTEM_TYPES: Tuple[str, ...] = ("xfs", "ext4", "btrfs", "ext3", "ext2")
DEFAULT_MOUNT_TABLE = Path("/proc/self/mountinfo")

_OCTAL_ESCAPE = re.compile(r"\\([0-7]{3})")
# Subvolumes report their own st_dev, so `restorecon -x` stops at them even
# though mountinfo lists one device for the whole filesystem.
_OVERLAP_EXEMPT_TYPES = frozenset({"btrfs"})


def _unescape(value: str) -> str:
    return _OCTAL_ESCAPE.sub(lambda match: chr(int(match.group(1), 8)), value)


def parse_mountinfo(text: str) -> List[WorkUnit]:
    """Parse ``/proc/<pid>/mountinfo`` content into unfiltered work units."""

    units: List[WorkUnit] = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        fields = line.split(" ")
        try:
            separator = fields.index("-", 6)
            fstype = fields[separator + 1]
            source = fields[separator + 2]
        except (ValueError, IndexError) as exc:
            raise DiscoveryError(f"malformed mount table entry on line {lineno}: {line!r}") from exc
        units.append(
            WorkUnit(
                path=_unescape(fields[4]),
                fstype=fstype,
                source=_unescape(source),
                device=fields[2],
                root=_unescape(fields[3]),
            )
        )
    return units


def read_mount_table(path: str | Path = DEFAULT_MOUNT_TABLE) -> List[WorkUnit]:
    try:
        text = Path(path).read_text(encoding="utf-8", errors="surrogateescape")
    except OSError as exc:
        raise DiscoveryError(f"cannot read mount table {path}: {exc}") from exc
    return parse_mountinfo(text)


def order_work_units(units: Iterable[WorkUnit]) -> List[WorkUnit]:
    """Sort deepest mounts first: path length descending, then path descending."""

    return sorted(units, key=lambda unit: (len(unit.path), unit.path), reverse=True)


def _root_within(inner: str, outer: str) -> bool:
    if inner == outer or outer == "/":
        return True
    return inner.startswith(outer.rstrip("/") + "/")


def find_overlaps(units: Sequence[WorkUnit]) -> List[Tuple[WorkUnit, WorkUnit]]:
    """Return ``(kept, covered)`` pairs of units exposing the same filesystem tree.

    Two units overlap when they sit on the same device and one mount's
    filesystem root lies inside the other's, which is what a bind mount looks
    like.  The covered unit is the one with the deeper root; for identical
    roots it is the one with the longer (then greater) mount path.
    """

    pairs: List[Tuple[WorkUnit, WorkUnit]] = []
    for first, second in itertools.combinations(units, 2):
        if not first.device or first.device != second.device:
            continue
        if first.fstype in _OVERLAP_EXEMPT_TYPES:
            continue
        if first.root == second.root:
            ranked = sorted((first, second), key=lambda unit: (len(unit.path), unit.path))
            pairs.append((ranked[0], ranked[1]))
        elif _root_within(second.root, first.root):
            pairs.append((first, second))
        elif _root_within(first.root, second.root):
            pairs.append((second, first))
    return pairs


def visible_mounts(entries: Iterable[WorkUnit]) -> List[WorkUnit]:
    """Keep the last mount table entry per path, the one stacked on top."""

    by_path: Dict[str, WorkUnit] = {}
    for unit in entries:
        by_path.pop(unit.path, None)
        by_path[unit.path] = unit
    return list(by_path.values())


def _may_drop(kept: WorkUnit, covered: WorkUnit) -> bool:
    # Labels follow the path, so a mount that contains the kept one must
    # still be relabelled under its own path.
    if covered.path == "/":
        return False
    return not kept.path.startswith(covered.path.rstrip("/") + "/")


def discover_work_units(
    filesystem_types: Iterable[str] = DEFAULT_FILESYSTEM_TYPES,
    *,
    mount_table: str | Path = DEFAULT_MOUNT_TABLE,
    dedupe_bind_mounts: bool = False,
) -> List[WorkUnit]:
    """Return one work unit per mounted filesystem of a recognised type.

    Paths mounted more than once yield a single unit built from the visible
    (last) entry; a recognised type hidden under another mount is ignored.
    Overlapping bind mounts are only reported unless ``dedupe_bind_mounts``
    is set, and even then ``/`` and ancestors of the kept mount stay.  The
    result may be empty.  Raises :class:`DiscoveryError` when the mount table
    is unreadable.
    """

    wanted = {fstype.strip() for fstype in filesystem_types if fstype.strip()}
    units = [unit for unit in visible_mounts(read_mount_table(mount_table)) if unit.fstype in wanted]

    dropped: set[str] = set()
    for kept, covered in find_overlaps(units):
        drop = dedupe_bind_mounts and _may_drop(kept, covered)
        _LOGGER.warning(
            "Mount %s exposes the same tree as %s (device %s)%s",
            covered.path,
            kept.path,
            covered.device,
            "; skipping it" if drop else "",
        )
        if drop:
            dropped.add(covered.path)

    ordered = order_work_units(unit for unit in units if unit.path not in dropped)
    _LOGGER.debug("Discovered %d work units: %s", len(ordered), [unit.path for unit in ordered])
    return ordered


__all__ = [
    "DEFAULT_FILESYSTEM_TYPES",
    "DEFAULT_MOUNT_TABLE",
    "discover_work_units",
    "find_overlaps",
    "order_work_units",
    "parse_mountinfo",
    "read_mount_table",
    "visible_mounts",
]
