"""Keywords of the name index: a keyword and the sorted name offsets holding it.

A keyword record is stored as (little endian)::

    uint32 size    # 4 + len(keyword) + 1 + 4 * count
    uint32 count
    keyword bytes, NUL
    uint32 offsets[count]
"""

from __future__ import annotations

import struct
from bisect import bisect_left
from dataclasses import dataclass, field
from typing import BinaryIO, Iterator, Sequence

MAX_KW_LEN = 8

# A bucket's entry in the index file: keyword count and record position.
COUNT_OFF = struct.Struct("<IQ")
KEYWORD_HEADER = struct.Struct("<II")

_U32 = 0xFFFFFFFF


def _encode(text: str) -> bytes:
    return text.encode("utf-8", "surrogateescape")


def name_hash(name: str | bytes) -> int:
    """The 32-bit hash that picks a keyword's bucket (bytes taken as signed chars)."""
    raw = _encode(name) if isinstance(name, str) else name
    result = 0
    for byte in raw:
        signed = byte - 256 if byte >= 128 else byte
        result = (result * 31 + signed) & _U32
    return result


def insert_position(value: int, sorted_values: Sequence[int], favor_big: bool = True) -> int:
    """Position of ``value`` in ``sorted_values``, or where it falls between entries.

    For a value not present, ``favor_big`` gives the position of the next
    bigger entry, otherwise that of the next smaller one.
    """
    size = len(sorted_values)
    if not size or sorted_values[0] >= value:
        return 0
    if sorted_values[-1] == value:
        return size - 1
    if sorted_values[-1] < value:
        return size if favor_big else size - 1
    pos = bisect_left(sorted_values, value)
    if sorted_values[pos] == value:
        return pos
    return pos if favor_big else pos - 1


@dataclass
class IndexKeyword:
    """A keyword and the ascending, distinct offsets of the names containing it."""

    keyword: str
    offsets: list[int] = field(default_factory=list)

    def add_offset(self, fsbuf_offset: int) -> bool:
        """Insert an offset in order; False if it was already there."""
        pos = insert_position(fsbuf_offset, self.offsets, True)
        if pos < len(self.offsets) and self.offsets[pos] == fsbuf_offset:
            return False
        self.offsets.insert(pos, fsbuf_offset)
        return True

    def shift_offsets(self, start_off: int, delta: int) -> int:
        """Move every offset at or after ``start_off`` by ``delta``; return how many moved."""
        if not self.offsets or self.offsets[-1] < start_off:
            return 0
        moved = 0
        for pos, off in enumerate(self.offsets):
            if off >= start_off:
                self.offsets[pos] = (off + delta) & _U32
                moved += 1
        return moved

    def encoded_size(self) -> int:
        """Number of bytes ``write`` produces."""
        return KEYWORD_HEADER.size + len(_encode(self.keyword)) + 1 + 4 * len(self.offsets)

    def write(self, stream: BinaryIO) -> int:
        """Write the record to ``stream`` and return its size."""
        raw = _encode(self.keyword)
        count = len(self.offsets)
        record_size = 4 + len(raw) + 1 + 4 * count
        stream.write(KEYWORD_HEADER.pack(record_size, count))
        stream.write(raw + b"\0")
        stream.write(struct.pack(f"<{count}I", *self.offsets))
        return record_size + 4


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    data = stream.read(size)
    if len(data) != size:
        raise EOFError("truncated keyword record")
    return data


def _read_head(stream: BinaryIO) -> tuple[str, int]:
    record_size, count = KEYWORD_HEADER.unpack(_read_exact(stream, KEYWORD_HEADER.size))
    text_size = record_size - 4 - 4 * count
    if text_size < 1:
        raise ValueError("inconsistent keyword record size")
    raw = _read_exact(stream, text_size)
    raw = raw.split(b"\0", 1)[0]
    return raw.decode("utf-8", "surrogateescape"), count


def _read_offsets(stream: BinaryIO, count: int) -> list[int]:
    return list(struct.unpack(f"<{count}I", _read_exact(stream, 4 * count)))


def read_keyword(stream: BinaryIO, query: str | None = None) -> IndexKeyword | None:
    """Read one record; None when ``query`` is given and the keyword differs.

    The whole record is consumed either way.
    """
    keyword, count = _read_head(stream)
    offsets = _read_offsets(stream, count)
    if query is not None and keyword != query:
        return None
    return IndexKeyword(keyword, offsets)


def skip_or_read_keyword(stream: BinaryIO, query: str) -> IndexKeyword | None:
    """Read the record if its keyword is ``query``; otherwise seek past its offsets."""
    keyword, count = _read_head(stream)
    if keyword != query:
        stream.seek(4 * count, 1)
        return None
    return IndexKeyword(keyword, _read_offsets(stream, count))


def keyword_substrings(name: str, max_len: int = MAX_KW_LEN) -> Iterator[str]:
    """Every substring of ``name`` up to ``max_len`` characters, by start then length.

    Names that are not valid text yield nothing.
    """
    try:
        name.encode("utf-8")
    except UnicodeEncodeError:
        return
    size = len(name)
    for start in range(size):
        for end in range(start + 1, min(size, start + max_len) + 1):
            yield name[start:end]