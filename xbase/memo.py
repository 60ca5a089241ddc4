"""
xbase Memo Store
================
Variable-length content lives outside the table, in a companion file made
of fixed-size blocks. A memo-backed field holds only the number of the
first block of its content; the store owns allocation.

Layout shared by every shape:
  - Block 0 (and more, if the header is wider than a block) is the store
    header. Index 0 is therefore never issued and means "no content".
  - Records start on a block boundary and are zero-padded to the next
    one. A record spans ceil((overhead + len(payload)) / block_length)
    blocks.
  - Space is append-only: append() writes at the next-free index,
    advances it past the new record, and re-persists the header before
    returning. Blocks are never reused or rewritten.

Shapes:
  DBT3  dBASE III (.dbt)  payload, then 0x1A 0x1A. Text only.
  DBT4  dBASE IV  (.dbt)  FF FF 08 00, u32 LE total length, payload.
  FPT   FoxPro    (.fpt)  u32 BE type tag, u32 BE payload length, payload.

Header fields:
  DBT   next-free index u32 LE at 0; block length u16 LE at 4 (dBASE III)
        or at 20 when the version byte at 16 is 0 (dBASE IV); 0 -> 512
  FPT   next-free index u32 BE at 0; block length u16 BE at 6

enumerate() walks forward from the first index. Zero-filled blocks are
unallocated padding (append never writes an empty record) and are
stepped over; the first block that does not hold a valid record ends
the walk.
"""

import logging
import math
import struct
from enum import IntEnum
from typing import BinaryIO, Iterator, NamedTuple, Optional

from xbase.config import (
    DEFAULT_BLOCK_LENGTH, MAX_BLOCK_LENGTH, MEMO_SENTINEL, DBT4_SIGNATURE,
)
from xbase.errors import MemoError
from xbase.versions import DbfVersion, MemoShape, require_memo_shape

logger = logging.getLogger(__name__)


class MemoType(IntEnum):
    """Memo record type tag (stored on disk by the FPT shape only)."""
    PICTURE = 0
    TEXT = 1
    OBJECT = 2


class MemoRecord(NamedTuple):
    type: MemoType
    data: bytes


class MemoStore:
    """
    Block-allocated, append-only content store.

    Subclasses describe one wire shape: the header struct, how a record
    is framed and how it is read back. The store keeps its own cursor
    into its stream: every operation seeks before reading or writing.
    """

    shape: MemoShape
    HEADER_STRUCT: struct.Struct

    def __init__(self, stream: BinaryIO, block_length: int, next_index: int):
        if not 0 < block_length <= MAX_BLOCK_LENGTH:
            raise MemoError(f"Block length {block_length} out of range 1..{MAX_BLOCK_LENGTH}")
        self._stream = stream
        self._block_length = block_length
        self._next_index = next_index

    # ─── Properties ─────────────────────────────────────────────────

    @property
    def block_length(self) -> int:
        return self._block_length

    @property
    def next_index(self) -> int:
        return self._next_index

    @property
    def first_index(self) -> int:
        """First block after the reserved header block(s)."""
        return max(1, math.ceil(self.HEADER_STRUCT.size / self._block_length))

    def span(self, payload_length: int) -> int:
        """Number of blocks a payload of this length occupies."""
        return math.ceil((self.overhead + payload_length) / self._block_length)

    # ─── Create / Open / Close ──────────────────────────────────────

    @classmethod
    def create(cls, stream: BinaryIO, block_length: int = DEFAULT_BLOCK_LENGTH) -> "MemoStore":
        """Initialize an empty store on the stream."""
        store = cls(stream, block_length, 0)
        store._next_index = store.first_index
        stream.seek(0)
        stream.truncate()
        stream.write(bytes(store.first_index * block_length))
        store._write_header()
        logger.debug("Created %s memo store, block length %d", cls.shape.name, block_length)
        return store

    @classmethod
    def open(cls, stream: BinaryIO) -> "MemoStore":
        """Attach to an existing store, reading its header."""
        stream.seek(0)
        data = stream.read(cls.HEADER_STRUCT.size)
        if len(data) < cls.HEADER_STRUCT.size:
            raise MemoError(
                f"Memo header truncated: {len(data)} of {cls.HEADER_STRUCT.size} bytes"
            )
        block_length, next_index = cls._parse_header(data)
        store = cls(stream, block_length, next_index)
        if next_index < store.first_index:
            raise MemoError(
                f"Next-free index {next_index} points into the store header "
                f"(first index {store.first_index})"
            )
        logger.debug(
            "Opened %s memo store, block length %d, next index %d",
            cls.shape.name, block_length, next_index,
        )
        return store

    def flush(self) -> None:
        self._stream.flush()

    def close(self) -> None:
        if not self._stream.closed:
            self.flush()
            self._stream.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False

    # ─── Operations ─────────────────────────────────────────────────

    def append(self, memo_type: MemoType, data: bytes) -> int:
        """Write a record at the next-free index and return that index."""
        if not data:
            raise ValueError("Empty memo content is stored as reference 0, not appended")
        payload = self._frame(MemoType(memo_type), bytes(data))
        blocks = math.ceil(len(payload) / self._block_length)
        index = self._next_index

        self._stream.seek(index * self._block_length)
        self._stream.write(payload.ljust(blocks * self._block_length, b"\0"))
        self._next_index = index + blocks
        self._write_header()

        logger.debug("Memo append: %d bytes at block %d (%d blocks)", len(data), index, blocks)
        return index

    def get(self, index: int) -> MemoRecord:
        """Read the record that starts at block `index`."""
        if index < self.first_index or index >= self._next_index:
            raise MemoError(
                f"Memo index {index} out of range [{self.first_index}, {self._next_index})"
            )
        found = self._read(index)
        if found is None:
            raise MemoError(f"Block {index} does not start a {self.shape.name} memo record")
        return found[0]

    def enumerate(self) -> Iterator[tuple[int, MemoType, bytes]]:
        """Yield (index, type, data) for every record, in block order."""
        index = self.first_index
        while index < self._next_index:
            if self._is_unused(index):
                index += 1
                continue
            found = self._read(index)
            if found is None:
                return
            record, blocks = found
            yield index, record.type, record.data
            index += blocks

    def __iter__(self) -> Iterator[MemoRecord]:
        for _, memo_type, data in self.enumerate():
            yield MemoRecord(memo_type, data)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(block_length={self._block_length}, "
            f"next_index={self._next_index})"
        )

    # ─── Shape hooks ────────────────────────────────────────────────

    overhead: int = 0

    @classmethod
    def _parse_header(cls, data: bytes) -> tuple[int, int]:
        raise NotImplementedError

    def _header_bytes(self) -> bytes:
        raise NotImplementedError

    def _frame(self, memo_type: MemoType, data: bytes) -> bytes:
        raise NotImplementedError

    def _read(self, index: int) -> Optional[tuple[MemoRecord, int]]:
        raise NotImplementedError

    # ─── Internals ──────────────────────────────────────────────────

    def _write_header(self) -> None:
        self._stream.seek(0)
        self._stream.write(self._header_bytes())

    def _seek_block(self, index: int) -> None:
        self._stream.seek(index * self._block_length)

    def _is_unused(self, index: int) -> bool:
        self._seek_block(index)
        prefix = self._stream.read(min(8, self._block_length))
        return len(prefix) > 0 and not any(prefix)


# ═══════════════════════════════════════════════════════════════════════════
# dBASE .dbt stores
# ═══════════════════════════════════════════════════════════════════════════

# next(I) block03(H) reserved(10s) version(B) reserved(3s) block04(H) reserved(2s)
DBT_HEADER_FMT = "<IH10sB3sH2s"


class _DbtStore(MemoStore):
    HEADER_STRUCT = struct.Struct(DBT_HEADER_FMT)
    header_version = 0

    @classmethod
    def _parse_header(cls, data: bytes) -> tuple[int, int]:
        next_index, block03, _, version, _, block04, _ = cls.HEADER_STRUCT.unpack(data)
        block_length = (block04 if version == 0 else block03) or DEFAULT_BLOCK_LENGTH
        return block_length, next_index

    def _header_bytes(self) -> bytes:
        return self.HEADER_STRUCT.pack(
            self._next_index, self._block_length, bytes(10),
            self.header_version, bytes(3), self._block_length, bytes(2),
        )

    def _check_text(self, memo_type: MemoType) -> None:
        if memo_type != MemoType.TEXT:
            raise MemoError(f"{self.shape.name} memo stores hold text only, not {memo_type.name}")


class DbtMemoStore(_DbtStore):
    """dBASE III memo: payload terminated by 0x1A 0x1A."""
    shape = MemoShape.DBT3
    overhead = len(MEMO_SENTINEL)
    header_version = 0x03

    def _frame(self, memo_type: MemoType, data: bytes) -> bytes:
        self._check_text(memo_type)
        if MEMO_SENTINEL in data:
            raise MemoError("dBASE III memo content may not contain 0x1A 0x1A")
        return data + MEMO_SENTINEL

    def _read(self, index: int) -> Optional[tuple[MemoRecord, int]]:
        buffer = bytearray()
        block = index
        while block < self._next_index:
            self._seek_block(block)
            chunk = self._stream.read(self._block_length)
            # The sentinel may straddle a block boundary
            search_from = max(0, len(buffer) - 1)
            buffer += chunk
            end = buffer.find(MEMO_SENTINEL, search_from)
            if end >= 0:
                return MemoRecord(MemoType.TEXT, bytes(buffer[:end])), self.span(end)
            if len(chunk) < self._block_length:
                break
            block += 1
        return None


class Dbt4MemoStore(_DbtStore):
    """dBASE IV memo: FF FF 08 00 signature and a length prefix."""
    shape = MemoShape.DBT4
    overhead = 8
    header_version = 0

    PREFIX = struct.Struct("<4sI")

    def _frame(self, memo_type: MemoType, data: bytes) -> bytes:
        self._check_text(memo_type)
        return self.PREFIX.pack(DBT4_SIGNATURE, len(data) + self.overhead) + data

    def _read(self, index: int) -> Optional[tuple[MemoRecord, int]]:
        self._seek_block(index)
        prefix = self._stream.read(self.PREFIX.size)
        if len(prefix) < self.PREFIX.size:
            return None
        signature, total = self.PREFIX.unpack(prefix)
        if signature != DBT4_SIGNATURE or total < self.overhead:
            return None
        length = total - self.overhead
        data = self._stream.read(length)
        if len(data) < length:
            return None
        return MemoRecord(MemoType.TEXT, data), self.span(length)


# ═══════════════════════════════════════════════════════════════════════════
# FoxPro .fpt store
# ═══════════════════════════════════════════════════════════════════════════

# next(I) reserved(2s) block_length(H), all big-endian
FPT_HEADER_FMT = ">I2sH"


class FptMemoStore(MemoStore):
    """FoxPro memo: big-endian type tag and payload length before the data."""
    shape = MemoShape.FPT
    HEADER_STRUCT = struct.Struct(FPT_HEADER_FMT)
    overhead = 8

    PREFIX = struct.Struct(">II")

    @classmethod
    def _parse_header(cls, data: bytes) -> tuple[int, int]:
        next_index, _, block_length = cls.HEADER_STRUCT.unpack(data)
        return block_length, next_index

    def _header_bytes(self) -> bytes:
        return self.HEADER_STRUCT.pack(self._next_index, bytes(2), self._block_length)

    def _frame(self, memo_type: MemoType, data: bytes) -> bytes:
        return self.PREFIX.pack(memo_type, len(data)) + data

    def _read(self, index: int) -> Optional[tuple[MemoRecord, int]]:
        self._seek_block(index)
        prefix = self._stream.read(self.PREFIX.size)
        if len(prefix) < self.PREFIX.size:
            return None
        tag, length = self.PREFIX.unpack(prefix)
        try:
            memo_type = MemoType(tag)
        except ValueError:
            return None
        data = self._stream.read(length)
        if len(data) < length:
            return None
        return MemoRecord(memo_type, data), self.span(length)


# ─── Shape selection ────────────────────────────────────────────────────────

_STORES: dict[MemoShape, type[MemoStore]] = {
    MemoShape.DBT3: DbtMemoStore,
    MemoShape.DBT4: Dbt4MemoStore,
    MemoShape.FPT: FptMemoStore,
}


def store_class(shape: MemoShape) -> type[MemoStore]:
    return _STORES[shape]


def open_memo(stream: BinaryIO, version: DbfVersion) -> MemoStore:
    """Open the memo store that belongs to a table of the given version."""
    return store_class(require_memo_shape(version)).open(stream)


def create_memo(
    stream: BinaryIO,
    version: DbfVersion,
    block_length: int = DEFAULT_BLOCK_LENGTH,
) -> MemoStore:
    """Create an empty memo store for a table of the given version."""
    return store_class(require_memo_shape(version)).create(stream, block_length)
