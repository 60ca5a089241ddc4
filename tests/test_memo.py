"""
xbase Memo Store Tests
======================
Covers:
  ✔ first index and allocation for each shape
  ✔ get(append(t, b)) == (t, b) within and across block boundaries
  ✔ strictly increasing indices, index 0 never issued
  ✔ on-disk framing of each shape
  ✔ header persistence and reopen
  ✔ enumeration, including zero-filled padding blocks
  ✔ invalid indices and unsupported content
"""

import io
import os
import struct
import sys

import pytest

# Ensure project root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from xbase.errors import MemoError, UnsupportedVersionError
from xbase.memo import (
    Dbt4MemoStore, DbtMemoStore, FptMemoStore, MemoRecord, MemoType,
    create_memo, open_memo,
)
from xbase.versions import DbfVersion

ALL_STORES = [DbtMemoStore, Dbt4MemoStore, FptMemoStore]
SIZES = [1, 55, 56, 57, 62, 63, 64, 65, 200, 1000]


# ═══════════════════════════════════════════════════════════════════════════
# 1. Allocation
# ═══════════════════════════════════════════════════════════════════════════

class TestAllocation:

    def test_extended_store_first_append(self):
        store = FptMemoStore.create(io.BytesIO(), block_length=64)
        assert store.append(MemoType.TEXT, b"Hello") == 1
        assert store.get(1) == (MemoType.TEXT, b"Hello")
        assert store.next_index == 2

    @pytest.mark.parametrize("store_cls", ALL_STORES)
    def test_fresh_store_starts_at_one(self, store_cls):
        store = store_cls.create(io.BytesIO())
        assert store.first_index == 1
        assert store.next_index == 1

    def test_tiny_blocks_reserve_whole_header(self):
        store = FptMemoStore.create(io.BytesIO(), block_length=4)
        assert store.first_index == 2
        assert store.append(MemoType.TEXT, b"x") == 2

    @pytest.mark.parametrize("store_cls", ALL_STORES)
    def test_indices_strictly_increase(self, store_cls):
        store = store_cls.create(io.BytesIO(), block_length=64)
        indices = [store.append(MemoType.TEXT, b"y" * size) for size in SIZES]
        assert 0 not in indices
        assert indices == sorted(set(indices))

    def test_multi_block_span(self):
        store = FptMemoStore.create(io.BytesIO(), block_length=64)
        assert store.append(MemoType.TEXT, b"a" * 100) == 1   # 108 bytes -> 2 blocks
        assert store.append(MemoType.TEXT, b"b" * 56) == 3    # 64 bytes -> 1 block
        assert store.append(MemoType.TEXT, b"c" * 57) == 4    # 65 bytes -> 2 blocks
        assert store.next_index == 6

    def test_span(self):
        assert DbtMemoStore.create(io.BytesIO(), 512).span(510) == 1
        assert DbtMemoStore.create(io.BytesIO(), 512).span(511) == 2
        assert FptMemoStore.create(io.BytesIO(), 64).span(56) == 1

    def test_file_is_block_aligned(self):
        stream = io.BytesIO()
        store = FptMemoStore.create(stream, block_length=64)
        store.append(MemoType.TEXT, b"z" * 70)
        assert len(stream.getvalue()) == 3 * 64

    def test_empty_payload_rejected(self):
        store = FptMemoStore.create(io.BytesIO())
        with pytest.raises(ValueError):
            store.append(MemoType.TEXT, b"")

    def test_invalid_block_length(self):
        with pytest.raises(MemoError):
            FptMemoStore.create(io.BytesIO(), block_length=0)


# ═══════════════════════════════════════════════════════════════════════════
# 2. Round trip
# ═══════════════════════════════════════════════════════════════════════════

class TestRoundTrip:

    @pytest.mark.parametrize("store_cls", ALL_STORES)
    @pytest.mark.parametrize("size", SIZES)
    def test_get_after_append(self, store_cls, size):
        store = store_cls.create(io.BytesIO(), block_length=64)
        payload = bytes((i % 250) + 1 for i in range(size)).replace(b"\x1a", b"!")
        index = store.append(MemoType.TEXT, payload)
        assert store.get(index) == MemoRecord(MemoType.TEXT, payload)

    def test_fpt_keeps_type(self):
        store = FptMemoStore.create(io.BytesIO())
        pic = store.append(MemoType.PICTURE, b"\x89PNG\r\n")
        obj = store.append(MemoType.OBJECT, b"\x00\x01\x02")
        assert store.get(pic) == (MemoType.PICTURE, b"\x89PNG\r\n")
        assert store.get(obj) == (MemoType.OBJECT, b"\x00\x01\x02")

    def test_dbt3_sentinel_across_block_boundary(self):
        store = DbtMemoStore.create(io.BytesIO(), block_length=512)
        index = store.append(MemoType.TEXT, b"q" * 511)
        assert store.get(index).data == b"q" * 511
        assert store.next_index == 3

    def test_reopen(self):
        stream = io.BytesIO()
        store = FptMemoStore.create(stream, block_length=64)
        first = store.append(MemoType.TEXT, b"one")
        second = store.append(MemoType.TEXT, b"two" * 40)

        reopened = FptMemoStore.open(stream)
        assert reopened.block_length == 64
        assert reopened.next_index == store.next_index
        assert reopened.get(first).data == b"one"
        assert reopened.get(second).data == b"two" * 40
        assert reopened.append(MemoType.TEXT, b"three") == store.next_index


# ═══════════════════════════════════════════════════════════════════════════
# 3. On-disk layout
# ═══════════════════════════════════════════════════════════════════════════

class TestWireFormat:

    def test_fpt_layout(self):
        stream = io.BytesIO()
        store = FptMemoStore.create(stream, block_length=64)
        store.append(MemoType.TEXT, b"Hello")
        data = stream.getvalue()
        assert data[:8] == struct.pack(">I2sH", 2, b"\0\0", 64)
        assert data[64:77] == struct.pack(">II", 1, 5) + b"Hello"
        assert data[77:128] == bytes(51)

    def test_dbt3_layout(self):
        stream = io.BytesIO()
        store = DbtMemoStore.create(stream)
        store.append(MemoType.TEXT, b"Hello")
        data = stream.getvalue()
        assert struct.unpack_from("<I", data, 0)[0] == 2
        assert struct.unpack_from("<H", data, 4)[0] == 512
        assert data[16] == 0x03
        assert data[512:519] == b"Hello\x1a\x1a"
        assert len(data) == 1024

    def test_dbt4_layout(self):
        stream = io.BytesIO()
        store = Dbt4MemoStore.create(stream, block_length=64)
        store.append(MemoType.TEXT, b"Hello")
        data = stream.getvalue()
        assert data[16] == 0
        assert struct.unpack_from("<H", data, 20)[0] == 64
        assert data[64:77] == b"\xff\xff\x08\x00" + struct.pack("<I", 13) + b"Hello"

    def test_dbt4_block_length_at_offset_20(self):
        header = struct.pack("<IH10sB3sH2s", 2, 0, bytes(10), 0, bytes(3), 1024, bytes(2))
        store = Dbt4MemoStore.open(io.BytesIO(header.ljust(1024, b"\0")))
        assert store.block_length == 1024

    def test_dbt_zero_block_length_defaults(self):
        header = struct.pack("<IH10sB3sH2s", 1, 0, bytes(10), 3, bytes(3), 0, bytes(2))
        store = DbtMemoStore.open(io.BytesIO(header.ljust(512, b"\0")))
        assert store.block_length == 512

    def test_truncated_header(self):
        with pytest.raises(MemoError):
            FptMemoStore.open(io.BytesIO(b"\x00\x00"))


# ═══════════════════════════════════════════════════════════════════════════
# 4. Lookup and enumeration
# ═══════════════════════════════════════════════════════════════════════════

class TestLookup:

    def test_index_zero(self):
        store = FptMemoStore.create(io.BytesIO())
        store.append(MemoType.TEXT, b"a")
        with pytest.raises(MemoError):
            store.get(0)

    def test_index_past_end(self):
        store = FptMemoStore.create(io.BytesIO())
        store.append(MemoType.TEXT, b"a")
        with pytest.raises(MemoError):
            store.get(store.next_index)

    def test_middle_of_record(self):
        store = Dbt4MemoStore.create(io.BytesIO(), block_length=64)
        store.append(MemoType.TEXT, b"m" * 200)
        with pytest.raises(MemoError):
            store.get(2)

    @pytest.mark.parametrize("store_cls", ALL_STORES)
    def test_enumerate_in_order(self, store_cls):
        store = store_cls.create(io.BytesIO(), block_length=64)
        expected = []
        for payload in (b"first", b"second" * 20, b"third"):
            expected.append((store.append(MemoType.TEXT, payload), MemoType.TEXT, payload))
        assert list(store.enumerate()) == expected
        # restartable from the top
        assert list(store.enumerate()) == expected

    def test_enumerate_skips_padding(self):
        # A store written with a 512-byte header region and 64-byte blocks
        raw = bytearray(struct.pack(">I2sH", 9, b"\0\0", 64).ljust(512, b"\0"))
        raw += (struct.pack(">II", 1, 3) + b"abc").ljust(64, b"\0")
        store = FptMemoStore.open(io.BytesIO(bytes(raw)))
        assert list(store.enumerate()) == [(8, MemoType.TEXT, b"abc")]
        assert store.get(8) == (MemoType.TEXT, b"abc")

    def test_iter_yields_records(self):
        store = FptMemoStore.create(io.BytesIO())
        store.append(MemoType.OBJECT, b"\x01")
        assert list(store) == [MemoRecord(MemoType.OBJECT, b"\x01")]


# ═══════════════════════════════════════════════════════════════════════════
# 5. Shape selection and restrictions
# ═══════════════════════════════════════════════════════════════════════════

class TestShapes:

    def test_create_by_version(self):
        assert isinstance(create_memo(io.BytesIO(), DbfVersion.DBASE_83), DbtMemoStore)
        assert isinstance(create_memo(io.BytesIO(), DbfVersion.DBASE_8B), Dbt4MemoStore)
        assert isinstance(create_memo(io.BytesIO(), DbfVersion.VISUAL_FOXPRO), FptMemoStore)

    def test_open_by_version(self):
        stream = io.BytesIO()
        create_memo(stream, DbfVersion.FOXPRO2_MEMO, 64).append(MemoType.TEXT, b"x")
        store = open_memo(stream, DbfVersion.FOXPRO2_MEMO)
        assert isinstance(store, FptMemoStore)
        assert store.get(1).data == b"x"

    def test_version_without_memo(self):
        with pytest.raises(UnsupportedVersionError):
            create_memo(io.BytesIO(), DbfVersion.DBASE_03)

    @pytest.mark.parametrize("store_cls", [DbtMemoStore, Dbt4MemoStore])
    def test_dbt_is_text_only(self, store_cls):
        store = store_cls.create(io.BytesIO())
        with pytest.raises(MemoError):
            store.append(MemoType.OBJECT, b"\x00")

    def test_dbt3_rejects_sentinel_in_content(self):
        store = DbtMemoStore.create(io.BytesIO())
        with pytest.raises(MemoError):
            store.append(MemoType.TEXT, b"a\x1a\x1ab")
