"""Name search over a linear file tree, with optional filtering rules."""

from __future__ import annotations

import logging
import os
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import IntEnum, IntFlag
from itertools import pairwise
from typing import Callable, Iterable, Sequence

from .store import FsBuf

_log = logging.getLogger(__name__)

NAME_MAX = 255

_REGEX_CHARS = frozenset("$()*+.?[\\^{|")
_INT_PREFIX = re.compile(r"\s*([+-]?\d+)")


class RuleFlag(IntEnum):
    """Flags of the search rules."""

    NONE = 0x00
    SEARCH_REGX = 0x01
    SEARCH_MAX_COUNT = 0x02
    SEARCH_ICASE = 0x03
    SEARCH_STARTOFF = 0x04
    SEARCH_ENDOFF = 0x05
    # Accepted but without effect: no transliteration table is available.
    SEARCH_PINYIN = 0x06
    EXCLUDE_SUB_S = 0x40
    EXCLUDE_SUB_D = 0x41
    EXCLUDE_PATH = 0x42
    INCLUDE_SUB_S = 0x80
    INCLUDE_SUB_D = 0x81


class RuleKind(IntFlag):
    """The family a rule belongs to."""

    SEARCH = 1
    EXCLUDE = 2
    INCLUDE = 4


_KIND_OF_FLAG = {
    RuleFlag.SEARCH_REGX: RuleKind.SEARCH,
    RuleFlag.SEARCH_MAX_COUNT: RuleKind.SEARCH,
    RuleFlag.SEARCH_ICASE: RuleKind.SEARCH,
    RuleFlag.SEARCH_STARTOFF: RuleKind.SEARCH,
    RuleFlag.SEARCH_ENDOFF: RuleKind.SEARCH,
    RuleFlag.SEARCH_PINYIN: RuleKind.SEARCH,
    RuleFlag.EXCLUDE_SUB_S: RuleKind.EXCLUDE,
    RuleFlag.EXCLUDE_SUB_D: RuleKind.EXCLUDE,
    RuleFlag.EXCLUDE_PATH: RuleKind.EXCLUDE,
    RuleFlag.INCLUDE_SUB_S: RuleKind.INCLUDE,
    RuleFlag.INCLUDE_SUB_D: RuleKind.INCLUDE,
}


@dataclass(frozen=True)
class SearchRule:
    """One search rule: a flag and its textual argument."""

    flag: int
    target: str = ""


@dataclass
class SearchResult:
    """Offsets of matching names, the total match count and where to resume."""

    offsets: list[int]
    total: int
    next_start: int


def rule_kind(flag: int) -> RuleKind | None:
    """The kind of a rule flag, or None for an unknown flag."""
    return _KIND_OF_FLAG.get(flag)


def split_rules(rules: Iterable[SearchRule], kind: RuleKind) -> tuple[RuleKind, list[SearchRule]]:
    """Return the kinds present in ``rules`` and the rules of ``kind``.

    Rules with an unknown flag are reported and kept in every selection.
    """
    present = RuleKind(0)
    selected: list[SearchRule] = []
    for rule in rules:
        found = rule_kind(rule.flag)
        if found is None:
            _log.warning("unknown rule tag: %d, target: %s", rule.flag, rule.target)
        else:
            present |= found
        if found is None or found == kind:
            selected.append(rule)
    return present, selected


def rule_value(rules: Sequence[SearchRule], flag: int) -> str:
    """Target of the first rule with ``flag``; "0" when there is none."""
    if not rules or rules[0].flag == RuleFlag.NONE:
        return "0"
    return next((rule.target for rule in rules if rule.flag == flag), "0")


def check_name(name: str, rules: Sequence[SearchRule]) -> bool:
    """Whether ``name`` is hit by any of the exclude/include rules."""
    if not rules or rules[0].flag == RuleFlag.NONE:
        return False
    for rule in rules:
        if rule.flag == RuleFlag.EXCLUDE_PATH:
            if name == rule.target:
                return True
        elif rule.flag in (RuleFlag.EXCLUDE_SUB_S, RuleFlag.INCLUDE_SUB_S):
            if name.startswith(rule.target):
                return True
        elif rule.flag in (RuleFlag.EXCLUDE_SUB_D, RuleFlag.INCLUDE_SUB_D):
            if name.endswith(rule.target):
                return True
    return False


def is_regex(query: str) -> bool:
    """Whether ``query`` holds a regular-expression metacharacter."""
    return any(char in _REGEX_CHARS for char in query)


def _atoi(text: str) -> int:
    match = _INT_PREFIX.match(text)
    return int(match.group(1)) if match else 0


def search_files(
    fsbuf: FsBuf,
    start_off: int,
    end_off: int,
    max_results: int,
    comparator: Callable[[str], bool],
    progress: Callable[[int, str], bool] | None = None,
) -> SearchResult:
    """Collect up to ``max_results`` names accepted by ``comparator``.

    ``progress(count, name)`` is called for every entry; a true return
    stops the search.  ``next_start`` is the offset to resume from.
    """
    offsets: list[int] = []
    with fsbuf.read_lock():
        name_off = start_off
        limit = min(fsbuf.tail, end_off)
        while name_off < limit and len(offsets) < max_results:
            name = fsbuf.name(name_off)
            if progress is not None and progress(len(offsets), name):
                break
            if name and comparator(name):
                offsets.append(name_off)
            name_off = fsbuf.next_name(name_off)
    return SearchResult(offsets, len(offsets), name_off)


@dataclass
class _Chunk:
    start: int
    end: int
    offsets: list[int] = field(default_factory=list)
    found: int = 0
    resume: int = 0

    def __post_init__(self) -> None:
        self.resume = self.start

    def record(self, name_off: int, keep: int) -> None:
        if self.found < keep:
            self.offsets.append(name_off)
        self.found += 1


def _make_comparator(query: str, icase: bool, use_regex: bool) -> Callable[[str], bool]:
    if use_regex:
        try:
            pattern = re.compile(query, re.IGNORECASE)
        except re.error:
            pattern = None
        if pattern is not None:
            return lambda name: pattern.search(name) is not None
    if icase:
        needle = query.lower()
        return lambda name: needle in name.lower()
    return lambda name: query in name


def _scan_plain(fsbuf: FsBuf, chunk: _Chunk, match: Callable[[str], bool],
                keep: int, max_count: int) -> None:
    name_off = chunk.start
    while name_off < chunk.end:
        name = fsbuf.name(name_off)
        if name and match(name):
            chunk.record(name_off, keep)
        name_off = fsbuf.next_name(name_off)
        if max_count > 0 and chunk.found >= max_count:
            chunk.resume = name_off
            break


def _take_jump(jumps: list[list[int]], name_off: int) -> int | None:
    """End of the pending skipped range with the smallest start at or before ``name_off``."""
    hit = None
    lowest = name_off
    for jump in jumps:
        start, _, done = jump
        if not done and start <= lowest:
            lowest = start
            hit = jump
    if hit is None:
        return None
    hit[2] = True
    return hit[1]


def _scan_rules(fsbuf: FsBuf, chunk: _Chunk, match: Callable[[str], bool],
                keep: int, max_count: int, rules: Sequence[SearchRule]) -> None:
    _, include = split_rules(rules, RuleKind.INCLUDE)
    kinds, exclude = split_rules(rules, RuleKind.EXCLUDE)
    jumps: list[list[int]] = []

    name_off = chunk.start
    while name_off < chunk.end:
        name = fsbuf.name(name_off)
        if not name:
            name_off = fsbuf.next_name(name_off)
            continue

        jump_end = _take_jump(jumps, name_off)
        if jump_end is not None:
            name_off = jump_end
            continue

        if kinds & RuleKind.EXCLUDE:
            kids_off = fsbuf.kids_offset(name_off)
            if kids_off and check_name(name, exclude):
                jumps.append([kids_off, fsbuf.tree_end_offset(kids_off), False])
                name_off = fsbuf.next_name(name_off)
                continue

        if match(name):
            if kinds <= RuleKind.SEARCH:
                accepted = True
            elif kinds & RuleKind.INCLUDE:
                accepted = check_name(name, include) and not (
                    kinds & RuleKind.EXCLUDE and check_name(name, exclude))
            else:
                accepted = not check_name(name, exclude)
            if accepted:
                chunk.record(name_off, keep)

        name_off = fsbuf.next_name(name_off)
        if max_count > 0 and chunk.found >= max_count:
            chunk.resume = name_off
            break


def _partition(fsbuf: FsBuf, start: int, end: int, parts: int) -> list[tuple[int, int]]:
    """Split ``[start, end)`` into up to ``parts`` ranges on entry boundaries."""
    if parts <= 1:
        return [(start, end)]
    step = max((end - start) // parts, 1)
    bounds = [start]
    off = start
    while off < end and len(bounds) < parts:
        if off >= start + step * len(bounds):
            bounds.append(off)
        off = fsbuf.next_name(off)
    bounds.append(end)
    return [(low, high) for low, high in pairwise(bounds) if low < high]


def parallel_search(
    fsbuf: FsBuf,
    start_off: int,
    end_off: int,
    max_results: int,
    rules: Sequence[SearchRule] | None = None,
    query: str = "",
    workers: int | None = None,
) -> SearchResult:
    """Search names containing (or matching) ``query`` using several threads.

    Rules select regular expressions, case folding, a maximum count and
    exclude/include filters.  With a maximum count, ``next_start`` is the
    offset from which a following call continues.
    """
    rules = list(rules or ())
    use_regex = _atoi(rule_value(rules, RuleFlag.SEARCH_REGX)) != 0 and is_regex(query)
    icase = _atoi(rule_value(rules, RuleFlag.SEARCH_ICASE)) > 0
    max_count = _atoi(rule_value(rules, RuleFlag.SEARCH_MAX_COUNT))
    match = _make_comparator(query, icase, use_regex)

    with fsbuf.read_lock():
        limit = min(fsbuf.tail, end_off)
        if start_off >= limit:
            return SearchResult([], 0, start_off)

        min_range = max(max_count + 1, 0) * NAME_MAX
        parts = 1 if limit - start_off <= min_range else (workers or os.cpu_count() or 1)
        chunks = [_Chunk(low, high) for low, high in _partition(fsbuf, start_off, limit, parts)]

        def scan(chunk: _Chunk) -> None:
            if rules:
                _scan_rules(fsbuf, chunk, match, max_results, max_count, rules)
            else:
                _scan_plain(fsbuf, chunk, match, max_results, max_count)

        if len(chunks) == 1:
            scan(chunks[0])
        else:
            with ThreadPoolExecutor(max_workers=len(chunks)) as pool:
                list(pool.map(scan, chunks))

    offsets: list[int] = []
    total = 0
    next_start = limit
    limited = False
    for chunk in chunks:
        total += chunk.found
        if max_count > 0 and total >= max_count:
            next_start = chunk.resume
            limited = True
        for name_off in chunk.offsets:
            if len(offsets) < max_results:
                offsets.append(name_off)
                continue
            if limited and total > max_count:
                next_start = name_off
                total = max_count
            break
        if limited:
            break
    return SearchResult(offsets, total, next_start)