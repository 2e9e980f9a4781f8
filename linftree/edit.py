"""Editing operations on a linear file tree: insert, remove, rename."""

from __future__ import annotations

from .store import (
    DATA_START,
    FsBuf,
    FsChange,
    NestedPathError,
    NoPathError,
    NotEmptyError,
    PathDifferError,
    PathExistsError,
)

_PARENT_ENTRY_SIZE = 5


def _split_path(path: str) -> tuple[str, str]:
    """Split ``path`` at its last slash; the name part must not be empty."""
    parent, sep, name = path.rpartition("/")
    if not sep or not name:
        raise NoPathError(f"no name in path: {path!r}")
    return parent, name


class FsTree(FsBuf):
    """A linear file tree that can be edited in place.

    Every edit shifts part of the buffer; the returned ``FsChange`` values
    describe those shifts so that offsets kept elsewhere can follow them.
    """

    # ----- navigation helpers ----------------------------------------------

    def _parent_offset(self, name_off: int) -> int:
        tail = self._folder_tail_offset(name_off)
        if not tail:
            return 0
        rel = self._reloff_by_tag(tail + 1)
        if not rel:
            return 0
        return tail + 1 - rel

    def _first_sibling_offset(self, name_off: int) -> int:
        parent_off = self._parent_offset(name_off)
        if not parent_off:
            return self.first_name
        return self.kids_offset(parent_off)

    def _insert_offset(self, empty_folder_off: int) -> int:
        """Where the kids of an empty directory must be placed."""
        data = self._data
        name_off = off = empty_folder_off
        while off < len(data):
            if not data[off]:
                rel = self._reloff_by_tag(off + 1)
                if not rel:
                    return len(data)
                name_off = off = off + 1 - rel
                continue
            if off > name_off:
                kids_off = self.kids_offset(off)
                if kids_off:
                    return kids_off
            off = self.next_name(off)
        return len(data)

    # ----- offset maintenance ------------------------------------------------

    def _update_kids_off(self, off: int, delta: int) -> None:
        kids_off = self.kids_offset(off)
        if not kids_off:
            return
        kids_off += delta
        self._set_kids_off(off, kids_off)
        tail = self._folder_tail_offset(kids_off)
        if tail:
            self._set_parent_offset(tail, off)

    def _update_offsets(self, start_off: int, delta: int, update_siblings: bool) -> None:
        data = self._data
        off = start_off
        if update_siblings:
            off = self._first_sibling_offset(start_off)
            if not off:
                return
            while off < start_off:
                self._update_kids_off(off, delta)
                off = self.next_name(off)
            off = start_off = self._parent_offset(start_off)

        while off and off < len(data):
            if not data[off]:
                rel = self._reloff_by_tag(off + 1)
                if not rel:
                    return
                off = start_off = off + 1 - rel
                continue
            if off > start_off:
                self._update_kids_off(off, delta)
            off = self.next_name(off)

    # ----- edits --------------------------------------------------------------

    def _insert(self, path: str, is_dir: bool) -> FsChange:
        parent_path, name = _split_path(path)
        parent_off = self.path_offset(parent_path)
        if not parent_off or (parent_off != DATA_START and self._is_file(parent_off)):
            raise NoPathError(f"no parent directory for {path!r}")

        data = self._data
        at_root = parent_off == DATA_START
        kids_off = self.first_name if at_root else self.kids_offset(parent_off)
        # an empty tree has no closing root entry yet
        empty_folder = not kids_off or (at_root and kids_off >= len(data))
        if not kids_off:
            kids_off = self._insert_offset(parent_off)
        elif not empty_folder:
            while kids_off < len(data) and data[kids_off]:
                if self.name(kids_off) == name:
                    raise PathExistsError(f"path exists: {path!r}")
                kids_off = self.next_name(kids_off)

        delta = self._insert_new_name(kids_off, name, is_dir, empty_folder)
        if empty_folder:
            self._set_parent_offset(kids_off + delta - _PARENT_ENTRY_SIZE,
                                    0 if at_root else parent_off)
            if not at_root:
                self._set_kids_off(parent_off, kids_off)
        elif not at_root:
            self._set_parent_offset(self._folder_tail_offset(kids_off), parent_off)
        self._update_offsets(kids_off, delta, True)
        return FsChange(kids_off, delta)

    def _remove(self, path: str, keep_tree: bool = False) -> tuple[list[FsChange], bytes | None]:
        name_off = self.path_offset(path)
        if not name_off:
            raise NoPathError(f"no such path: {path!r}")

        data = self._data
        tree = None
        if name_off == DATA_START:
            first, tail = self.first_name, len(data)
            if keep_tree:
                tree = bytes(data[first:tail])
            self._delete(first, tail)
            return [FsChange(first, first - tail)], tree

        changes: list[FsChange] = []
        kids_off = self.kids_offset(name_off)
        if kids_off:
            end = self.tree_end_offset(kids_off)
            if keep_tree:
                tree = bytes(data[kids_off:end])
            self._set_kids_off(name_off, 0)
            self._delete(kids_off, end)
            self._update_offsets(name_off, kids_off - end, False)
            changes.append(FsChange(kids_off, kids_off - end))

        parent_off = self._parent_offset(name_off)
        sibling1 = self._first_sibling_offset(name_off)
        size = self.next_name(name_off) - name_off
        after = name_off + size
        only_kid = after < len(data) and not data[after] and sibling1 == name_off
        if only_kid:
            size += _PARENT_ENTRY_SIZE
            if parent_off:
                self._set_kids_off(parent_off, 0)
        elif parent_off:
            tail = self._folder_tail_offset(name_off)
            self._set_parent_offset(tail, parent_off + size)

        self._delete(name_off, name_off + size)
        if only_kid:
            if parent_off:
                self._update_offsets(parent_off, -size, False)
        else:
            self._update_offsets(name_off, -size, True)
        changes.append(FsChange(name_off, -size))
        return changes, tree

    def _rename(self, src_path: str, dst_path: str) -> list[FsChange]:
        src_off = self.path_offset(src_path)
        if not src_off:
            raise NoPathError(f"no such path: {src_path!r}")
        dst_off = self.path_offset(dst_path)
        if dst_off == DATA_START:
            raise NestedPathError("cannot rename onto the root")
        if dst_off == src_off:
            return []
        if dst_path.startswith(src_path.rstrip("/") + "/"):
            raise NestedPathError(f"{dst_path!r} lies inside {src_path!r}")

        src_is_file = self._is_file(src_off)
        if dst_off and self._is_file(dst_off) != src_is_file:
            raise PathDifferError(f"{src_path!r} and {dst_path!r} differ in kind")
        if dst_off and not src_is_file and self.kids_offset(dst_off):
            raise NotEmptyError(f"directory not empty: {dst_path!r}")

        parent_path, _ = _split_path(dst_path)
        dst_parent_off = self.path_offset(parent_path)
        if not dst_parent_off or (dst_parent_off != DATA_START and self._is_file(dst_parent_off)):
            raise NoPathError(f"no parent directory for {dst_path!r}")

        changes, tree = self._remove(src_path, keep_tree=True)
        if not dst_off:
            changes.append(self._insert(dst_path, not src_is_file))
        dst_off = self.path_offset(dst_path)

        if tree:
            self._reserve(len(tree))
            kids_off = self._insert_offset(dst_off)
            self._insert_bytes(kids_off, tree)
            self._set_kids_off(dst_off, kids_off)
            self._set_parent_offset(self._folder_tail_offset(kids_off), dst_off)
            self._update_offsets(kids_off, len(tree), True)
            changes.append(FsChange(kids_off, len(tree)))
        return changes

    # ----- public API ---------------------------------------------------------

    def insert_path(self, path: str, is_dir: bool) -> FsChange:
        """Add ``path`` as a file or directory; its parent must exist."""
        with self._write_lock():
            return self._insert(path, is_dir)

    def remove_path(self, path: str) -> list[FsChange]:
        """Remove ``path`` and everything below it."""
        with self._write_lock():
            changes, _ = self._remove(path)
            return changes

    def rename_path(self, src_path: str, dst_path: str) -> list[FsChange]:
        """Move ``src_path`` to ``dst_path``; an existing directory target must be empty."""
        with self._write_lock():
            return self._rename(src_path, dst_path)

    def path_range(self, path: str) -> tuple[int, int, int]:
        """Return ``(path_off, start_off, end_off)``: the entry and its subtree's span.

        For the root the span is the whole tree; for files and empty
        directories it is ``(0, 0)``.
        """
        with self.read_lock():
            path_off = self.path_offset(path)
            if not path_off:
                raise NoPathError(f"no such path: {path!r}")
            if path_off == DATA_START:
                return path_off, self.first_name, self.tail
            start_off = self.kids_offset(path_off)
            if not start_off:
                return path_off, 0, 0
            return path_off, start_off, self.tree_end_offset(start_off)