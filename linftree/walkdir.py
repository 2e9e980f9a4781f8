"""Fill a file tree by walking a directory hierarchy on disk."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Callable, Iterable, Iterator, Sequence

from .store import FsBuf

MAX_PARTS = 256
MOUNTS_PATH = "/proc/mounts"

_CUSTOM_FS_TYPES = frozenset({"fuse.dlnfs"})

ProgressFn = Callable[[int, int, str, "str | None"], object]


@dataclass(frozen=True)
class Partition:
    """A mounted file system as listed in the mount table."""

    dev: str
    mount_point: str
    fs_type: str
    major: int = 0
    minor: int = 0


class BuildCancelled(Exception):
    """The progress callback asked to stop the walk."""


def mounted_at(mount_point: str, root: str) -> bool:
    """Whether ``mount_point`` is ``root`` or lies below it."""
    return mount_point == root or (
        len(mount_point) > len(root)
        and mount_point.startswith(root)
        and mount_point[len(root)] == "/"
    )


def is_special_mount_point(mount_point: str, fs_type: str) -> bool:
    """Whether the mount point belongs to a pseudo file system not worth indexing."""
    if mounted_at(mount_point, "/sys") or mounted_at(mount_point, "/proc"):
        return True
    return (mounted_at(mount_point, "/dev") or mounted_at(mount_point, "/run")) and fs_type != "tmpfs"


def is_custom_type(fs_type: str) -> bool:
    """Whether ``fs_type`` is a custom file system mounted over other partitions."""
    return fs_type in _CUSTOM_FS_TYPES


def _device_major(dev: int) -> int:
    return ((dev >> 8) & 0xFFF) | ((dev >> 32) & ~0xFFF)


def _device_minor(dev: int) -> int:
    return (dev & 0xFF) | ((dev >> 12) & ~0xFF)


def _default_stat(path: str) -> int:
    return os.stat(path).st_dev


def _merge_same_mount(parts: list[Partition], major: int, minor: int, mount_point: str) -> bool:
    """Keep only the longest of several mount points of one device."""
    for pos, part in enumerate(parts):
        if part.major != major or part.minor != minor:
            continue
        if mount_point.endswith(part.mount_point):
            parts[pos] = replace(part, mount_point=mount_point)
            return True
        if part.mount_point.endswith(mount_point):
            return True
    return False


def parse_mounts(lines: Iterable[str], stat_fn: Callable[[str], int] | None = None) -> list[Partition]:
    """Partitions from mount-table lines, sorted by mount point.

    ``stat_fn`` maps a mount point to its device number and raises
    ``OSError`` for mount points that cannot be examined.
    """
    stat_fn = stat_fn or _default_stat
    parts: list[Partition] = []
    for line in lines:
        fields = line.split()
        if not fields:
            continue
        if len(fields) < 3:
            break
        dev, mount_point, fs_type = fields[:3]
        if is_special_mount_point(mount_point, fs_type):
            continue
        try:
            device = stat_fn(mount_point)
        except OSError:
            continue
        major, minor = _device_major(device), _device_minor(device)
        if is_custom_type(fs_type) and _merge_same_mount(parts, major, minor, mount_point):
            continue
        parts.append(Partition(dev, mount_point, fs_type, major, minor))
    parts.sort(key=lambda part: part.mount_point)
    return parts


def get_partitions(mounts_path: str = MOUNTS_PATH) -> list[Partition]:
    """Read the system's mount table."""
    with open(mounts_path, encoding="utf-8", errors="surrogateescape") as mounts:
        return parse_mounts(mounts)


def path_partition(path: str, partitions: Sequence[Partition]) -> int | None:
    """Index of the last partition (in sorted order) whose mount point prefixes ``path``."""
    for pos in range(len(partitions) - 1, -1, -1):
        if path.startswith(partitions[pos].mount_point):
            return pos
    return None


class _Walker:
    def __init__(self, fsbuf: FsBuf, merge_partition: bool, progress: ProgressFn | None,
                 partitions: Sequence[Partition], selected: int | None) -> None:
        self.fsbuf = fsbuf
        self.merge_partition = merge_partition
        self.progress = progress
        self.partitions = partitions
        self.selected = selected
        self.file_count = 0
        self.dir_count = 0

    def _report(self, cur_dir: str, cur_file: str | None) -> None:
        if self.progress is not None and self.progress(self.file_count, self.dir_count, cur_dir, cur_file):
            raise BuildCancelled(cur_dir)

    def _should_skip(self, path: str) -> bool:
        fs_type = self.partitions[self.selected].fs_type if self.selected is not None else ""
        if is_special_mount_point(path, fs_type):
            return True
        if self.merge_partition:
            return False
        first = 0 if self.selected is None else self.selected + 1
        return any(
            path.startswith(part.mount_point) and not is_custom_type(part.fs_type)
            for part in self.partitions[first:]
        )

    def _entries(self, path: str) -> Iterator[tuple[str, bool]]:
        try:
            with os.scandir(path) as entries:
                for entry in entries:
                    try:
                        is_dir = entry.is_dir(follow_symlinks=False)
                        wanted = is_dir or entry.is_file(follow_symlinks=False) or entry.is_symlink()
                    except OSError:
                        continue
                    if wanted:
                        yield entry.name, is_dir
        except OSError:
            return

    def _fill(self, path: str, parent_off: int) -> list[int] | None:
        """Append the entries of ``path``; the offsets of its subdirectories, or None if empty."""
        if self._should_skip(path):
            return None
        self._report(path, None)

        fsbuf = self.fsbuf
        start = fsbuf.tail
        dirs: list[int] = []
        for name, is_dir in self._entries(path):
            off = fsbuf.tail
            fsbuf.append_new_name(name, is_dir)
            if is_dir:
                dirs.append(off)
                self.dir_count += 1
            else:
                self.file_count += 1
            self._report(path, name)

        if fsbuf.tail == start:
            return None
        fsbuf.append_parent(parent_off)
        return dirs

    def walk(self, root: str) -> None:
        fsbuf = self.fsbuf
        dirs = self._fill(root, 0)
        if dirs is None:
            return
        stack = [(root, iter(dirs))]
        while stack:
            path, pending = stack[-1]
            off = next(pending, None)
            if off is None:
                stack.pop()
                continue
            fsbuf.set_kids_off(off, fsbuf.tail)
            child = (path if path.endswith("/") else path + "/") + fsbuf.name(off)
            kids = self._fill(child, off)
            if kids is None:
                fsbuf.set_kids_off(off, 0)
            else:
                stack.append((child, iter(kids)))


def build_fstree(
    fsbuf: FsBuf,
    merge_partition: bool = False,
    progress: ProgressFn | None = None,
    partitions: Sequence[Partition] | None = None,
) -> tuple[int, int]:
    """Fill ``fsbuf`` with everything below its root path.

    Unless ``merge_partition`` is set, other partitions mounted below the
    root are left out.  ``progress(file_count, dir_count, cur_dir, cur_file)``
    is called as the walk proceeds; a true return raises ``BuildCancelled``.
    Returns the numbers of files and directories found.
    """
    if partitions is None:
        try:
            partitions = get_partitions()
        except OSError:
            partitions = []
    parts = sorted(partitions, key=lambda part: part.mount_point)
    if len(parts) > MAX_PARTS:
        raise ValueError(f"the number of partitions exceeds the upper limit: {MAX_PARTS}")

    root = fsbuf.root_path
    walker = _Walker(fsbuf, merge_partition, progress, parts, path_partition(root, parts))
    walker.walk(root)
    return walker.file_count, walker.dir_count