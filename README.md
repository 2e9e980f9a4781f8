# linftree

`linftree` stores a whole directory tree in one compact, linear byte buffer
and searches the names in it. A separate keyword index maps short substrings
of names to their offsets in that buffer.

The package is pure Python and has no runtime dependencies.

## Installation

```
pip install .
```

## Building a tree

```python
from linftree.store import FsBuf
from linftree.walkdir import build_fstree

fsbuf = FsBuf(1 << 24, "/home/")
files, dirs = build_fstree(fsbuf)
fsbuf.save("tree.lft")
```

The root path must begin and end with `/`. The capacity must be at least
1 MiB plus the length of the root path. The buffer grows in 1 MiB steps as
needed, up to 1 GiB. Beyond that, `OutOfSpaceError` is raised.

`build_fstree(fsbuf, merge_partition=False, progress=None, partitions=None)`
walks the directories below the root path. It records directories, regular
files and symbolic links, and returns the numbers of files and directories
it found.

- Pseudo file systems under `/sys`, `/proc`, `/dev` and `/run` are skipped.
  Under `/dev` and `/run`, `tmpfs` mounts are still walked.
- Partitions mounted below the root are left out unless `merge_partition`
  is true. A custom `fuse.dlnfs` mount is never left out this way.
- The partition list is read from `/proc/mounts` unless you pass one.
  `get_partitions` and `parse_mounts` build it, as a list of `Partition`
  records.
- `progress(file_count, dir_count, cur_dir, cur_file)` is called as the walk
  goes. If it returns a true value, the walk stops with `BuildCancelled`.

`FsBuf.load("tree.lft")` reads a saved tree back. It raises `FormatError`
if the file is malformed.

Use `FsBuf` to move around the buffer:

- `first_name` and `tail` give the bounds of the name entries.
- `name(off)`, `is_file(off)` and `next_name(off)` read a single entry.
- `kids_offset(off)` and `tree_end_offset(off)` find a directory's contents.
- `path_of(off)` gives an entry's full path.
- `path_offset(path)` finds an entry by path. It returns 0 if the path is
  absent.

## Keeping a tree up to date

`FsTree` in `linftree.edit` is an `FsBuf` that can add, remove and rename
paths in place. Each edit returns `FsChange(start_off, delta)` records. They
say where the buffer shifted and by how many bytes, so that offsets kept
elsewhere can follow.

```python
from linftree.edit import FsTree

tree = FsTree(1 << 24, "/data/")
tree.insert_path("/data/docs", True)
tree.insert_path("/data/docs/report.txt", False)
changes = tree.rename_path("/data/docs/report.txt", "/data/docs/final.txt")
path_off, start, end = tree.path_range("/data/docs")
```

`path_range` returns the entry's offset and the span of its subtree:

- for the root, the span covers the whole tree;
- for files and empty directories, it is `(0, 0)`.

Errors are raised as subclasses of `FsBufError`:

- `NoPathError`
- `PathExistsError`
- `NestedPathError`
- `PathDifferError`
- `NotEmptyError`
- `OutOfSpaceError`
- `FormatError`

## Searching

`linftree.search.parallel_search` finds names that contain `query`. It
splits the range into chunks and scans them on several threads.

```python
from linftree.search import RuleFlag, SearchRule, parallel_search

result = parallel_search(
    tree, tree.first_name, tree.tail, 100,
    rules=[SearchRule(RuleFlag.SEARCH_ICASE, "1")],
    query="FINAL",
)
paths = [tree.path_of(off) for off in result.offsets]
```

Rules control the search:

- `SEARCH_REGX` with a non-zero value treats the query as a
  case-insensitive regular expression, if it contains a metacharacter.
- `SEARCH_ICASE` turns on case-insensitive substring matching.
- `SEARCH_MAX_COUNT` caps the number of matches. `result.next_start` is then
  the offset to resume from.
- `EXCLUDE_SUB_S` and `EXCLUDE_SUB_D` drop names by prefix or suffix.
  `EXCLUDE_PATH` drops names that are exactly equal to the target. When an
  excluded name is a directory, its whole subtree is skipped.
- `INCLUDE_SUB_S` and `INCLUDE_SUB_D` keep only names with the given prefix
  or suffix.

The result is a `SearchResult`:

- `offsets` holds up to `max_results` offsets.
- `total` is the number of matches.
- `next_start` is the offset to resume from.

`search_files(fsbuf, start_off, end_off, max_results, comparator, progress)`
is the single-threaded version. `comparator(name)` returns true for a match.
If `progress(count, name)` returns true, the scan stops.

The helpers `rule_kind`, `split_rules`, `rule_value`, `check_name` and
`is_regex` are also public.

## Keyword index

`linftree.index.MemoryIndex(count)` is an in-memory hash with `count`
buckets.

- `add_name(name, offset)` indexes every substring of a name, up to eight
  characters long.
- `add_keyword` adds a single keyword.
- `get_keyword(query)` returns an `IndexKeyword` with sorted `offsets`, or
  `None`.
- `shift_offsets(start_off, delta)` applies an `FsChange` to the stored
  offsets.
- `stats()` returns an `IndexStats`.
- `save(filename)` writes the index to disk.

```python
from linftree.index import LoadPolicy, MemoryIndex, load_fs_index

index = MemoryIndex(1024)
index.add_name("final.txt", 42)
index.save("names.fsi")

with load_fs_index("names.fsi", LoadPolicy.NONE) as on_disk:
    entry = on_disk.get_keyword("fin")
```

`load_fs_index` opens a saved index in one of two ways:

- `LoadPolicy.ALL` returns a `MemoryIndex`.
- `LoadPolicy.NONE` returns a read-only `FileIndex`. It reads each keyword
  from the file when it is asked for, and its `add_keyword` and
  `shift_offsets` raise `io.UnsupportedOperation`.

A malformed file raises `IndexFormatError`.

The record format and its helpers live in `linftree.keyword`:

- `IndexKeyword`
- `read_keyword`
- `skip_or_read_keyword`
- `keyword_substrings`
- `name_hash`
- `insert_position`

## What it does not do

- There is no command-line program. Everything is used as a library.
- `RuleFlag.SEARCH_PINYIN` is accepted but has no effect, because no
  transliteration table is included. `SEARCH_STARTOFF` and `SEARCH_ENDOFF`
  are recognised as rules, but the search range comes from the function
  arguments.
- The keyword index is not tied to a tree. Calling `add_name` and
  `shift_offsets` as the tree changes is left to you.