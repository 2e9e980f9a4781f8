"""Linear file tree storage: names and directory links packed in one buffer.

Layout of the buffer (all integers little endian):

* bytes 0..7 are reserved for the file header (magic ``LFT\\0`` and size);
* the root path, ending with ``/``, followed by a NUL byte;
* name entries: the name, a NUL byte and a tag.  A file has a single
  zero tag byte; a directory has a 32-bit tag ``(rel << 2) | 1`` where
  ``rel`` is the distance from the tag to the directory's first kid
  (0 when it has none);
* each list of siblings ends with a parent entry: a NUL byte followed by a
  32-bit tag ``(rel << 2) | 1`` where ``rel`` is the distance from the tag
  back to the parent directory's name (0 for the root).
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

DATA_START = 8
FS_NEW_BLK_SIZE = 1 << 20
FS_TAG_BITS = 2
FS_TAG_MASK = (1 << FS_TAG_BITS) - 1
MAX_FSBUF_SIZE = 1 << (32 - FS_TAG_BITS)
FS_TAG_FILE = 0
FS_TAG_DIR = 1
MAGIC = b"LFT\0"

_TAG_SIZE = 4
_PARENT_ENTRY_SIZE = 1 + _TAG_SIZE
_MIN_FILE_SIZE = 2 * _TAG_SIZE + 5
_SLASH = ord("/")


def _encode(text: str) -> bytes:
    return text.encode("utf-8", "surrogateescape")


def _decode(raw: bytes) -> str:
    return raw.decode("utf-8", "surrogateescape")


class FsBufError(Exception):
    """Base class of errors raised by the file tree."""

    code = 0


class OutOfSpaceError(FsBufError):
    """The buffer cannot grow any further."""

    code = 1


class NoPathError(FsBufError):
    """The path, or its parent, is not in the tree."""

    code = 2


class PathExistsError(FsBufError):
    """The path is already in the tree."""

    code = 3


class NestedPathError(FsBufError):
    """The operation would nest a path inside itself or replace the root."""

    code = 4


class PathDifferError(FsBufError):
    """Source and destination are of different kinds (file vs directory)."""

    code = 5


class NotEmptyError(FsBufError):
    """The destination directory is not empty."""

    code = 6


class FormatError(FsBufError):
    """A saved tree file is malformed."""

    code = 7


@dataclass(frozen=True)
class FsChange:
    """A shift of the buffer at ``start_off``: bytes added (>0) or removed (<0)."""

    start_off: int
    delta: int


class _RWLock:
    """A reader-preferring read/write lock."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._readers = 0
        self._writer = False

    @contextmanager
    def reading(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def writing(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class FsBuf:
    """A file tree stored as a single linear byte buffer.

    Offsets handed out by this class point into the buffer.  Methods that
    only navigate (``name``, ``next_name``, ``kids_offset``,
    ``tree_end_offset``, ``path_offset``) do not lock; wrap them in
    ``read_lock()`` when other threads may modify the tree.
    """

    def __init__(self, capacity: int, root_path: str) -> None:
        if capacity > MAX_FSBUF_SIZE:
            raise ValueError(f"capacity exceeds {MAX_FSBUF_SIZE}")
        root = _encode(root_path)
        if len(root) + FS_NEW_BLK_SIZE > capacity:
            raise ValueError("capacity too small for the root path")
        if not root.startswith(b"/") or not root.endswith(b"/"):
            raise ValueError("root path must start and end with '/'")
        if 0 in root:
            raise ValueError("root path contains a NUL byte")
        self._setup(bytearray(DATA_START) + root + b"\0", capacity)

    def _setup(self, data: bytearray, capacity: int) -> None:
        self._data = data
        self._capacity = capacity
        self._first_name_off = data.index(0, DATA_START) + 1
        self._lock = _RWLock()

    # ----- basic properties -------------------------------------------------

    @property
    def capacity(self) -> int:
        """Current logical capacity of the buffer in bytes."""
        return self._capacity

    @property
    def root_path(self) -> str:
        """The root path, always ending with '/'."""
        return _decode(bytes(self._data[DATA_START:self._first_name_off - 1]))

    @property
    def tail(self) -> int:
        """Offset just past the last used byte."""
        return len(self._data)

    @property
    def first_name(self) -> int:
        """Offset of the first name below the root."""
        return self._first_name_off

    # ----- locking ----------------------------------------------------------

    def read_lock(self):
        """Context manager holding the tree's shared (read) lock."""
        return self._lock.reading()

    def _write_lock(self):
        return self._lock.writing()

    # ----- raw access -------------------------------------------------------

    def _name_bytes(self, name_off: int) -> bytes:
        end = self._data.index(0, name_off)
        return bytes(self._data[name_off:end])

    def _tag_offset(self, name_off: int) -> int:
        return self._data.index(0, name_off) + 1

    def _read_tag(self, tag_off: int) -> int:
        return int.from_bytes(self._data[tag_off:tag_off + _TAG_SIZE], "little")

    def _write_tag(self, tag_off: int, value: int) -> None:
        self._data[tag_off:tag_off + _TAG_SIZE] = value.to_bytes(_TAG_SIZE, "little")

    def _reloff_by_tag(self, tag_off: int) -> int:
        return self._read_tag(tag_off) >> FS_TAG_BITS

    def _is_file(self, name_off: int) -> bool:
        return self._data[self._tag_offset(name_off)] == FS_TAG_FILE

    def _set_kids_off(self, name_off: int, kids_off: int) -> None:
        tag_off = self._tag_offset(name_off)
        rel = kids_off - tag_off if kids_off else 0
        self._write_tag(tag_off, (rel << FS_TAG_BITS) + FS_TAG_DIR)

    def _set_parent_offset(self, name_off: int, parent_off: int) -> None:
        self._data[name_off] = 0
        rel = name_off + 1 - parent_off if parent_off > 0 else 0
        self._write_tag(name_off + 1, (rel << FS_TAG_BITS) + FS_TAG_DIR)

    def _folder_tail_offset(self, name_off: int) -> int:
        """Offset of the parent entry closing the sibling list, or 0."""
        data = self._data
        while name_off < len(data):
            if not data[name_off]:
                return name_off
            name_off = self.next_name(name_off)
        return 0

    def _reserve(self, extra: int) -> None:
        if extra + len(self._data) >= self._capacity:
            self._add_capacity(extra)

    def _add_capacity(self, size: int) -> None:
        alloc = -(-size // FS_NEW_BLK_SIZE) * FS_NEW_BLK_SIZE
        if self._capacity + alloc > MAX_FSBUF_SIZE:
            raise OutOfSpaceError("file tree buffer is full")
        self._capacity += alloc

    def _insert_bytes(self, off: int, chunk: bytes) -> None:
        self._reserve(len(chunk))
        self._data[off:off] = chunk

    def _delete(self, start: int, end: int) -> bytes:
        """Cut the bytes in ``[start, end)`` out of the tree and return them."""
        if start < self._first_name_off or start > end or end > len(self._data):
            raise ValueError(f"invalid range [{start}, {end}) for deletion")
        removed = bytes(self._data[start:end])
        del self._data[start:end]
        return removed

    def _insert_new_name(self, off: int, name: str, is_dir: bool,
                         create_parent_tag: bool = False) -> int:
        """Insert a name entry at ``off`` and return the number of bytes added."""
        raw = _encode(name)
        if not raw or 0 in raw:
            raise ValueError("name must be non-empty and free of NUL bytes")
        tag = FS_TAG_DIR.to_bytes(_TAG_SIZE, "little") if is_dir else bytes([FS_TAG_FILE])
        entry = raw + b"\0" + tag
        if create_parent_tag:
            entry += bytes(_PARENT_ENTRY_SIZE)
        self._insert_bytes(off, entry)
        return len(entry)

    # ----- navigation -------------------------------------------------------

    def name(self, name_off: int) -> str:
        """The name stored at ``name_off`` (empty for a parent entry)."""
        return _decode(self._name_bytes(name_off))

    def is_file(self, name_off: int) -> bool:
        """Whether the entry at ``name_off`` is a file."""
        with self._lock.reading():
            return self._is_file(name_off)

    def next_name(self, name_off: int) -> int:
        """Offset of the entry following the one at ``name_off``."""
        tag_off = self._tag_offset(name_off)
        if self._data[tag_off] == FS_TAG_FILE:
            return tag_off + 1
        return tag_off + _TAG_SIZE

    def kids_offset(self, name_off: int) -> int:
        """Offset of a directory's first kid; 0 for files and empty directories."""
        if self._is_file(name_off):
            return 0
        tag_off = self._tag_offset(name_off)
        rel = self._reloff_by_tag(tag_off)
        return tag_off + rel if rel else 0

    def tree_end_offset(self, start_off: int) -> int:
        """Offset just past the whole subtree whose sibling list starts at ``start_off``."""
        data = self._data
        name_off, last_kids_off = start_off, 0
        while name_off < len(data):
            if data[name_off]:
                kids_off = self.kids_offset(name_off)
                if kids_off:
                    last_kids_off = kids_off
                name_off = self.next_name(name_off)
                continue
            if last_kids_off:
                name_off, last_kids_off = last_kids_off, 0
                continue
            return name_off + _PARENT_ENTRY_SIZE
        return len(data)

    def path_of(self, name_off: int) -> str:
        """Full path of the entry at ``name_off``."""
        with self._lock.reading():
            data = self._data
            parts = [self._name_bytes(name_off)]
            off = name_off
            while off < len(data):
                if data[off]:
                    off = self.next_name(off)
                    continue
                tag_off = off + 1
                rel = self._reloff_by_tag(tag_off)
                if rel == 0:
                    break
                off = tag_off - rel
                parts.append(self._name_bytes(off))
            root = bytes(data[DATA_START:self._first_name_off - 1])
            return _decode(root + b"/".join(reversed(parts)))

    def _find_path(self, path: bytes) -> int:
        data = self._data
        if not path and self._first_name_off == DATA_START + 2:
            return DATA_START
        root = bytes(data[DATA_START:self._first_name_off - 1])
        if not path.startswith(root):
            return 0
        rest = path[len(root):]
        if not rest:
            return DATA_START
        off = self._first_name_off
        while off < len(data):
            if not data[off]:
                return 0
            name = self._name_bytes(off)
            size = len(name)
            if rest.startswith(name) and (len(rest) == size or rest[size] == _SLASH):
                if len(rest) == size:
                    return off
                kids_off = self.kids_offset(off)
                if not kids_off:
                    return 0
                rest = rest[size + 1:]
                off = kids_off
            else:
                off = self.next_name(off)
        return 0

    def path_offset(self, path: str) -> int:
        """Offset of ``path``'s entry: 0 if absent, ``DATA_START`` for the root.

        A trailing slash is tried both ways.
        """
        raw = _encode(path)
        off = self._find_path(raw)
        if off == 0:
            alt = raw[:-1] if raw.endswith(b"/") else raw + b"/"
            off = self._find_path(alt)
        return off

    # ----- building ---------------------------------------------------------

    def append_new_name(self, name: str, is_dir: bool) -> None:
        """Append a name entry at the tail."""
        with self._lock.writing():
            self._insert_new_name(len(self._data), name, is_dir)

    def append_parent(self, parent_off: int) -> None:
        """Append a parent entry pointing at ``parent_off`` (0 for the root)."""
        with self._lock.writing():
            self._reserve(_PARENT_ENTRY_SIZE)
            off = len(self._data)
            self._data += bytes(_PARENT_ENTRY_SIZE)
            self._set_parent_offset(off, parent_off)

    def set_kids_off(self, name_off: int, kids_off: int) -> None:
        """Point the directory at ``name_off`` to its first kid (0 for none)."""
        with self._lock.writing():
            self._set_kids_off(name_off, kids_off)

    # ----- persistence ------------------------------------------------------

    def save(self, filename) -> None:
        """Write the tree to ``filename``."""
        with open(filename, "wb") as out, self._lock.reading():
            tail = len(self._data)
            out.write(MAGIC + tail.to_bytes(4, "little"))
            out.write(memoryview(self._data)[DATA_START:])

    @classmethod
    def load(cls, filename) -> "FsBuf":
        """Read a tree previously written by ``save``."""
        with open(filename, "rb") as src:
            magic = src.read(len(MAGIC))
            if magic != MAGIC:
                raise FormatError("not a file tree: bad magic")
            raw_size = src.read(4)
            if len(raw_size) != 4:
                raise FormatError("truncated header")
            size = int.from_bytes(raw_size, "little")
            if size < _MIN_FILE_SIZE:
                raise FormatError("declared size too small")
            body = src.read(size - DATA_START)
        if len(body) != size - DATA_START:
            raise FormatError("truncated tree data")
        if 0 not in body:
            raise FormatError("missing root path terminator")
        tree = cls.__new__(cls)
        tree._setup(bytearray(MAGIC + raw_size) + body, size)
        return tree