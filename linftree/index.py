"""Keyword index over the names of a file tree, held in memory or read from disk.

An index file is laid out as (little endian)::

    b"FSI\\0"
    uint32 count                       # number of hash buckets
    (uint32 len, uint64 off) * count   # keywords per bucket, record position
    keyword records, bucket after bucket
"""

from __future__ import annotations

import io
import struct
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import IntEnum
from typing import BinaryIO

from .keyword import (
    COUNT_OFF,
    IndexKeyword,
    keyword_substrings,
    name_hash,
    read_keyword,
    skip_or_read_keyword,
)

MAGIC = b"FSI\0"
_COUNT = struct.Struct("<I")
HEADER_SIZE = len(MAGIC) + _COUNT.size

# Sizes the in-memory estimate charges for buckets, keywords and offsets.
_BUCKET_COST = 12
_KEYWORD_COST = 20
_OFFSET_COST = 4
_SHORT_KEYWORD = 7


class LoadPolicy(IntEnum):
    """How much of an index file is brought into memory."""

    ALL = 0
    NONE = 1


@dataclass(frozen=True)
class IndexStats:
    """Estimated memory use, number of keywords and number of stored offsets."""

    memory: int
    keywords: int
    fsbuf_offsets: int


class IndexFormatError(Exception):
    """An index file is malformed or truncated."""


def _check_count(count: int) -> int:
    if count < 1:
        raise ValueError("an index needs at least one bucket")
    return count


class FsIndex(ABC):
    """An index mapping keywords to the offsets of names that contain them."""

    def __init__(self, count: int) -> None:
        self.count = _check_count(count)

    def _bucket(self, keyword: str) -> int:
        return name_hash(keyword) % self.count

    @property
    @abstractmethod
    def load_policy(self) -> LoadPolicy:
        """The policy this index was loaded with."""

    @abstractmethod
    def stats(self) -> IndexStats:
        """Memory and content statistics."""

    @abstractmethod
    def get_keyword(self, query: str) -> IndexKeyword | None:
        """The entry for ``query``, or None when it is not indexed."""

    @abstractmethod
    def add_keyword(self, keyword: str, fsbuf_offset: int) -> None:
        """Record that the name at ``fsbuf_offset`` contains ``keyword``."""

    @abstractmethod
    def shift_offsets(self, start_off: int, delta: int) -> None:
        """Move every stored offset at or after ``start_off`` by ``delta``."""

    def add_name(self, name: str, fsbuf_offset: int) -> None:
        """Index every short substring of ``name`` for the name at ``fsbuf_offset``."""
        for keyword in keyword_substrings(name):
            self.add_keyword(keyword, fsbuf_offset)

    def close(self) -> None:
        """Release resources held by the index."""

    def __enter__(self) -> "FsIndex":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class MemoryIndex(FsIndex):
    """An index held entirely in memory; it can be modified and saved."""

    def __init__(self, count: int) -> None:
        super().__init__(count)
        self._buckets: list[list[IndexKeyword]] = [[] for _ in range(count)]

    @classmethod
    def _read(cls, stream: BinaryIO, count: int) -> "MemoryIndex":
        index = cls(count)
        table = stream.read(COUNT_OFF.size * count)
        if len(table) != COUNT_OFF.size * count:
            raise IndexFormatError("truncated bucket table")
        lengths = [length for length, _ in COUNT_OFF.iter_unpack(table)]
        try:
            for bucket, length in zip(index._buckets, lengths):
                for _ in range(length):
                    keyword = read_keyword(stream)
                    if keyword is not None:
                        bucket.append(keyword)
        except (EOFError, ValueError, struct.error) as exc:
            raise IndexFormatError(f"bad keyword record: {exc}") from exc
        return index

    @property
    def load_policy(self) -> LoadPolicy:
        return LoadPolicy.ALL

    def stats(self) -> IndexStats:
        memory = _BUCKET_COST * self.count
        keywords = offsets = 0
        for bucket in self._buckets:
            keywords += len(bucket)
            memory += _KEYWORD_COST * len(bucket)
            for entry in bucket:
                offsets += len(entry.offsets)
                memory += _OFFSET_COST * len(entry.offsets)
                raw_size = len(entry.keyword.encode("utf-8", "surrogateescape"))
                if raw_size >= _SHORT_KEYWORD:
                    memory += raw_size + 1
        return IndexStats(memory, keywords, offsets)

    def get_keyword(self, query: str) -> IndexKeyword | None:
        return next((entry for entry in self._buckets[self._bucket(query)]
                     if entry.keyword == query), None)

    def add_keyword(self, keyword: str, fsbuf_offset: int) -> None:
        entry = self.get_keyword(keyword)
        if entry is None:
            entry = IndexKeyword(keyword)
            self._buckets[self._bucket(keyword)].append(entry)
        entry.add_offset(fsbuf_offset)

    def shift_offsets(self, start_off: int, delta: int) -> None:
        for bucket in self._buckets:
            for entry in bucket:
                entry.shift_offsets(start_off, delta)

    def save(self, filename) -> None:
        """Write the index to ``filename``."""
        position = HEADER_SIZE + COUNT_OFF.size * self.count
        table = bytearray()
        for bucket in self._buckets:
            table += COUNT_OFF.pack(len(bucket), position)
            position += sum(entry.encoded_size() for entry in bucket)
        with open(filename, "wb") as out:
            out.write(MAGIC + _COUNT.pack(self.count))
            out.write(table)
            for bucket in self._buckets:
                for entry in bucket:
                    entry.write(out)


class FileIndex(FsIndex):
    """A read-only index that looks keywords up directly in an open index file."""

    def __init__(self, stream: BinaryIO, count: int) -> None:
        super().__init__(count)
        self._stream = stream

    @property
    def load_policy(self) -> LoadPolicy:
        return LoadPolicy.NONE

    def stats(self) -> IndexStats:
        return IndexStats(0, 0, 0)

    def get_keyword(self, query: str) -> IndexKeyword | None:
        stream = self._stream
        stream.seek(HEADER_SIZE + self._bucket(query) * COUNT_OFF.size)
        entry = stream.read(COUNT_OFF.size)
        if len(entry) != COUNT_OFF.size:
            return None
        length, position = COUNT_OFF.unpack(entry)
        if not length:
            return None
        stream.seek(position)
        try:
            for _ in range(length):
                found = skip_or_read_keyword(stream, query)
                if found is not None:
                    return found
        except (EOFError, ValueError, struct.error, OSError):
            return None
        return None

    def add_keyword(self, keyword: str, fsbuf_offset: int) -> None:
        raise io.UnsupportedOperation("a file-backed index is read-only")

    def shift_offsets(self, start_off: int, delta: int) -> None:
        raise io.UnsupportedOperation("a file-backed index is read-only")

    def close(self) -> None:
        self._stream.close()


def load_fs_index(filename, load_policy: LoadPolicy | int = LoadPolicy.ALL) -> FsIndex:
    """Open an index file with the given policy."""
    try:
        policy = LoadPolicy(load_policy)
    except ValueError:
        raise ValueError(f"unknown load policy: {load_policy!r}") from None

    stream = open(filename, "rb")
    try:
        if stream.read(len(MAGIC)) != MAGIC:
            raise IndexFormatError("not an index file: bad magic")
        raw_count = stream.read(_COUNT.size)
        if len(raw_count) != _COUNT.size:
            raise IndexFormatError("truncated header")
        (count,) = _COUNT.unpack(raw_count)
        if count < 1:
            raise IndexFormatError("index has no buckets")
        if policy is LoadPolicy.NONE:
            return FileIndex(stream, count)
        with stream:
            return MemoryIndex._read(stream, count)
    except BaseException:
        stream.close()
        raise