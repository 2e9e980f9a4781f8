import pytest

from linftree.store import DATA_START, FsBuf
from linftree.walkdir import (
    BuildCancelled,
    Partition,
    build_fstree,
    get_partitions,
    is_custom_type,
    is_special_mount_point,
    mounted_at,
    parse_mounts,
    path_partition,
)

CAPACITY = 1 << 21


@pytest.mark.parametrize(
    "mount_point, root, expected",
    [
        ("/sys", "/sys", True),
        ("/sys/kernel", "/sys", True),
        ("/system", "/sys", False),
        ("/", "/sys", False),
    ],
)
def test_mounted_at(mount_point, root, expected):
    assert mounted_at(mount_point, root) is expected


@pytest.mark.parametrize(
    "mount_point, fs_type, expected",
    [
        ("/proc", "proc", True),
        ("/sys/fs/cgroup", "cgroup2", True),
        ("/dev", "devtmpfs", True),
        ("/dev/shm", "tmpfs", False),
        ("/run/user/1000", "tmpfs", False),
        ("/run/lock", "ext4", True),
        ("/home", "ext4", False),
    ],
)
def test_is_special_mount_point(mount_point, fs_type, expected):
    assert is_special_mount_point(mount_point, fs_type) is expected


def test_is_custom_type():
    assert is_custom_type("fuse.dlnfs")
    assert not is_custom_type("ext4")


def _stat_table(table):
    def stat_fn(path):
        if path not in table:
            raise OSError(path)
        return table[path]
    return stat_fn


def test_parse_mounts_filters_and_sorts():
    lines = [
        "/dev/sda2 /home ext4 rw 0 0\n",
        "proc /proc proc rw 0 0\n",
        "/dev/sda1 / ext4 rw 0 0\n",
        "/dev/sdb1 /gone ext4 rw 0 0\n",
        "\n",
    ]
    parts = parse_mounts(lines, _stat_table({"/": 2049, "/home": 2050}))
    assert [part.mount_point for part in parts] == ["/", "/home"]
    assert [part.dev for part in parts] == ["/dev/sda1", "/dev/sda2"]
    assert parts[0].fs_type == "ext4"


def test_parse_mounts_keeps_longest_custom_mount():
    lines = [
        "dlnfs /home/user fuse.dlnfs rw 0 0",
        "dlnfs /data/home/user fuse.dlnfs rw 0 0",
    ]
    table = {"/home/user": 77, "/data/home/user": 77}
    parts = parse_mounts(lines, _stat_table(table))
    assert [part.mount_point for part in parts] == ["/data/home/user"]

    parts = parse_mounts(list(reversed(lines)), _stat_table(table))
    assert [part.mount_point for part in parts] == ["/data/home/user"]


def test_parse_mounts_keeps_distinct_devices():
    lines = [
        "dlnfs /home/user fuse.dlnfs rw 0 0",
        "dlnfs /data/home/user fuse.dlnfs rw 0 0",
    ]
    parts = parse_mounts(lines, _stat_table({"/home/user": 1, "/data/home/user": 2}))
    assert len(parts) == 2


def test_get_partitions_reads_file(tmp_path):
    mounts = tmp_path / "mounts"
    mounts.write_text(f"tmpdev {tmp_path} ext4 rw 0 0\nproc /proc proc rw 0 0\n")
    parts = get_partitions(str(mounts))
    assert [part.mount_point for part in parts] == [str(tmp_path)]


def test_get_partitions_missing_file(tmp_path):
    with pytest.raises(OSError):
        get_partitions(str(tmp_path / "absent"))


def test_path_partition():
    parts = [Partition("a", "/", "ext4"), Partition("b", "/home", "ext4")]
    assert path_partition("/home/user/file", parts) == 1
    assert path_partition("/usr/bin", parts) == 0
    assert path_partition("relative", parts) is None


def _make_tree(root):
    (root / "docs").mkdir()
    (root / "docs" / "a.txt").write_text("a")
    (root / "docs" / "deep").mkdir()
    (root / "docs" / "deep" / "b.txt").write_text("b")
    (root / "empty").mkdir()
    (root / "top.txt").write_text("t")
    return {
        "docs",
        "docs/a.txt",
        "docs/deep",
        "docs/deep/b.txt",
        "empty",
        "top.txt",
    }


def _all_paths(fsbuf):
    paths = set()
    off = fsbuf.first_name
    while off < fsbuf.tail:
        if fsbuf.name(off):
            paths.add(fsbuf.path_of(off))
        off = fsbuf.next_name(off)
    return paths


def test_build_fstree_collects_everything(tmp_path):
    expected = _make_tree(tmp_path)
    root = str(tmp_path) + "/"
    fsbuf = FsBuf(CAPACITY, root)
    files, dirs = build_fstree(fsbuf, partitions=[])
    assert (files, dirs) == (3, 3)
    assert _all_paths(fsbuf) == {root + rel for rel in expected}

    for rel in expected:
        off = fsbuf.path_offset(root + rel)
        assert off > DATA_START
        assert fsbuf.is_file(off) == rel.endswith(".txt")

    assert fsbuf.kids_offset(fsbuf.path_offset(root + "empty")) == 0
    assert fsbuf.kids_offset(fsbuf.path_offset(root + "docs")) > 0


def test_build_fstree_counts_symlinks_as_files(tmp_path):
    (tmp_path / "target.txt").write_text("x")
    (tmp_path / "link").symlink_to(tmp_path / "target.txt")
    fsbuf = FsBuf(CAPACITY, str(tmp_path) + "/")
    files, dirs = build_fstree(fsbuf, partitions=[])
    assert (files, dirs) == (2, 0)
    assert fsbuf.is_file(fsbuf.path_offset(str(tmp_path) + "/link"))


def test_build_fstree_save_load_round_trip(tmp_path):
    tree_root = tmp_path / "tree"
    tree_root.mkdir()
    expected = _make_tree(tree_root)
    root = str(tree_root) + "/"
    fsbuf = FsBuf(CAPACITY, root)
    build_fstree(fsbuf, partitions=[])
    saved = tmp_path / "tree.lft"
    fsbuf.save(saved)
    loaded = FsBuf.load(saved)
    assert _all_paths(loaded) == {root + rel for rel in expected}


def test_build_fstree_skips_other_partitions(tmp_path):
    (tmp_path / "mnt").mkdir()
    (tmp_path / "mnt" / "inner.txt").write_text("i")
    (tmp_path / "outer.txt").write_text("o")
    parts = [
        Partition("sda1", str(tmp_path), "ext4"),
        Partition("sdb1", str(tmp_path / "mnt"), "ext4"),
    ]
    root = str(tmp_path) + "/"

    separate = FsBuf(CAPACITY, root)
    build_fstree(separate, False, None, parts)
    assert separate.path_offset(root + "mnt/inner.txt") == 0
    assert separate.path_offset(root + "outer.txt") > DATA_START
    assert separate.kids_offset(separate.path_offset(root + "mnt")) == 0

    merged = FsBuf(CAPACITY, root)
    build_fstree(merged, True, None, parts)
    assert merged.path_offset(root + "mnt/inner.txt") > DATA_START


def test_build_fstree_custom_partition_is_not_skipped(tmp_path):
    (tmp_path / "mnt").mkdir()
    (tmp_path / "mnt" / "inner.txt").write_text("i")
    parts = [
        Partition("sda1", str(tmp_path), "ext4"),
        Partition("dlnfs", str(tmp_path / "mnt"), "fuse.dlnfs"),
    ]
    root = str(tmp_path) + "/"
    fsbuf = FsBuf(CAPACITY, root)
    build_fstree(fsbuf, False, None, parts)
    assert fsbuf.path_offset(root + "mnt/inner.txt") > DATA_START


def test_build_fstree_progress_cancels(tmp_path):
    _make_tree(tmp_path)
    seen = []

    def progress(files, dirs, cur_dir, cur_file):
        seen.append(cur_file)
        return cur_file is not None

    fsbuf = FsBuf(CAPACITY, str(tmp_path) + "/")
    with pytest.raises(BuildCancelled):
        build_fstree(fsbuf, False, progress, [])
    assert seen[0] is None
    assert len(seen) == 2


def test_build_fstree_progress_reports_directories(tmp_path):
    _make_tree(tmp_path)
    dirs_seen = []

    def progress(files, dirs, cur_dir, cur_file):
        if cur_file is None:
            dirs_seen.append(cur_dir)
        return False

    root = str(tmp_path) + "/"
    build_fstree(FsBuf(CAPACITY, root), False, progress, [])
    assert dirs_seen[0] == root
    assert set(dirs_seen) == {root, root + "docs", root + "docs/deep", root + "empty"}


def test_build_fstree_empty_root(tmp_path):
    fsbuf = FsBuf(CAPACITY, str(tmp_path) + "/")
    assert build_fstree(fsbuf, partitions=[]) == (0, 0)
    assert fsbuf.tail == fsbuf.first_name