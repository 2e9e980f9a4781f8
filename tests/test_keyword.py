import io

import pytest

from linftree.keyword import (
    COUNT_OFF,
    MAX_KW_LEN,
    IndexKeyword,
    insert_position,
    keyword_substrings,
    name_hash,
    read_keyword,
    skip_or_read_keyword,
)


def test_name_hash_basics():
    assert name_hash("") == 0
    assert name_hash("a") == ord("a")
    assert name_hash("a") == name_hash(b"a")


def test_name_hash_uses_signed_bytes():
    # UTF-8 of "\xe9" is c3 a9, taken as -61 and -87.
    assert name_hash("\xe9") == 4294965318


def test_name_hash_stays_32_bit():
    assert 0 <= name_hash("x" * 500) < 2 ** 32


SORTED = [1, 3, 5, 9]


@pytest.mark.parametrize("value", [0, 1, 2, 3, 4, 5, 7, 9, 12])
def test_insert_position_favor_big_keeps_order(value):
    pos = insert_position(value, SORTED, True)
    assert 0 <= pos <= len(SORTED)
    if value in SORTED:
        assert SORTED[pos] == value
    else:
        merged = SORTED[:pos] + [value] + SORTED[pos:]
        assert merged == sorted(merged)


@pytest.mark.parametrize("value", [2, 4, 7, 12])
def test_insert_position_favor_small_is_previous(value):
    assert insert_position(value, SORTED, False) == insert_position(value, SORTED, True) - 1


def test_insert_position_empty_and_front():
    assert insert_position(7, [], True) == 0
    assert insert_position(0, SORTED, False) == 0


def test_add_offset_sorted_and_distinct():
    kw = IndexKeyword("abc")
    values = [40, 10, 30, 10, 20, 40, 5]
    added = [kw.add_offset(v) for v in values]
    assert kw.offsets == sorted(set(values))
    assert added.count(False) == len(values) - len(set(values))


def test_shift_offsets():
    kw = IndexKeyword("k", [10, 20, 30])
    assert kw.shift_offsets(15, 5) == 2
    assert kw.offsets == [10, 25, 35]


def test_shift_offsets_none_after_start():
    kw = IndexKeyword("k", [10, 20])
    assert kw.shift_offsets(21, -3) == 0
    assert kw.offsets == [10, 20]
    assert IndexKeyword("k").shift_offsets(0, 1) == 0


def test_shift_offsets_negative_delta_round_trip():
    kw = IndexKeyword("k", [4, 8, 16])
    kw.shift_offsets(8, 100)
    kw.shift_offsets(108, -100)
    assert kw.offsets == [4, 8, 16]


def test_write_wire_format():
    out = io.BytesIO()
    size = IndexKeyword("ab", [1]).write(out)
    assert out.getvalue() == b"\x0b\x00\x00\x00\x01\x00\x00\x00ab\x00\x01\x00\x00\x00"
    assert size == len(out.getvalue())


@pytest.mark.parametrize(
    "kw",
    [
        IndexKeyword("a", []),
        IndexKeyword("readme", [12, 40, 99]),
        IndexKeyword("长文件名关键字", [7]),
    ],
)
def test_write_read_round_trip(kw):
    out = io.BytesIO()
    written = kw.write(out)
    assert written == kw.encoded_size() == len(out.getvalue())
    out.seek(0)
    assert read_keyword(out) == kw
    assert out.read() == b""


def _two_records():
    out = io.BytesIO()
    IndexKeyword("first", [1, 2]).write(out)
    IndexKeyword("second", [3]).write(out)
    out.seek(0)
    return out


def test_read_keyword_with_query_mismatch_consumes_record():
    stream = _two_records()
    assert read_keyword(stream, "second") is None
    assert read_keyword(stream, "second") == IndexKeyword("second", [3])


def test_skip_or_read_keyword():
    stream = _two_records()
    assert skip_or_read_keyword(stream, "second") is None
    found = skip_or_read_keyword(stream, "second")
    assert found == IndexKeyword("second", [3])


def test_read_keyword_truncated():
    out = io.BytesIO()
    IndexKeyword("word", [1, 2, 3]).write(out)
    data = out.getvalue()
    with pytest.raises(EOFError):
        read_keyword(io.BytesIO(data[:-2]))
    with pytest.raises(EOFError):
        read_keyword(io.BytesIO(data[:5]))


def test_count_off_record_size():
    assert COUNT_OFF.size == 12
    assert COUNT_OFF.unpack(COUNT_OFF.pack(3, 1 << 40)) == (3, 1 << 40)


def test_keyword_substrings_order():
    assert list(keyword_substrings("abc", 2)) == ["a", "ab", "b", "bc", "c"]


def test_keyword_substrings_respects_max_len():
    subs = list(keyword_substrings("abcdefghijkl"))
    assert max(len(s) for s in subs) == MAX_KW_LEN
    assert all(s in "abcdefghijkl" for s in subs)
    assert len(subs) == len(set(subs))


def test_keyword_substrings_counts_characters_not_bytes():
    assert list(keyword_substrings("文件", 8)) == ["文", "文件", "件"]


def test_keyword_substrings_rejects_undecodable_name():
    assert list(keyword_substrings("a\udcff")) == []
    assert list(keyword_substrings("")) == []