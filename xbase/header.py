"""
xbase Table Header
==================
Reads and writes the fixed preamble at the start of every table file.

Two physical shapes normalize into one TableHeader value:

  Standard (32 bytes, little-endian):
     0  version            1  yy mm dd (year - 1900)
     4  record count (u32) 8  header length (u16)
    10  record length (u16)
    12  16 reserved bytes (transaction flag at 14, encryption flag at 15)
    28  table flags       29  language id       30  2 reserved bytes

  Legacy dBASE II (8 bytes):
     0  version            1  record count (u16)
     3  yy mm dd           6  record length (u16)

A legacy header has no header-length field; it always reports 521,
the fixed size of its 32-slot descriptor table plus terminator.

Reserved bytes and the raw date bytes are carried through untouched, so
an unmodified header re-serializes byte for byte.
"""

import calendar
import struct
from dataclasses import dataclass, replace
from datetime import date
from enum import IntFlag
from typing import BinaryIO, Optional

from xbase.config import (
    HEADER_SIZE, DESCRIPTOR_SIZE, LEGACY_HEADER_SIZE, LEGACY_HEADER_LENGTH,
)
from xbase.errors import MalformedHeaderError
from xbase.versions import DbfVersion, version_from_byte

# version(B) yy(B) mm(B) dd(B) record_count(I) header_length(H) record_length(H)
# reserved(16s) table_flags(B) language(B) reserved(2s)
HEADER_FMT = "<BBBBIHH16sBB2s"
HEADER_STRUCT = struct.Struct(HEADER_FMT)

# version(B) record_count(H) yy(B) mm(B) dd(B) record_length(H)
LEGACY_HEADER_FMT = "<BHBBBH"
LEGACY_HEADER_STRUCT = struct.Struct(LEGACY_HEADER_FMT)

assert HEADER_STRUCT.size == HEADER_SIZE
assert LEGACY_HEADER_STRUCT.size == LEGACY_HEADER_SIZE


class TableFlags(IntFlag):
    NONE = 0x00
    HAS_STRUCTURAL_CDX = 0x01
    HAS_MEMO_FIELD = 0x02
    IS_DBC = 0x04


@dataclass(frozen=True)
class TableHeader:
    """Normalized table header. Immutable; use with_update() to derive."""
    version: DbfVersion
    record_count: int
    header_length: int
    record_length: int
    update_year: int = 0      # raw byte: years since 1900
    update_month: int = 1
    update_day: int = 1
    table_flags: TableFlags = TableFlags.NONE
    language: int = 0
    reserved: bytes = bytes(16)
    reserved_tail: bytes = bytes(2)

    @property
    def is_legacy(self) -> bool:
        return self.version.is_legacy

    @property
    def preamble_size(self) -> int:
        return LEGACY_HEADER_SIZE if self.is_legacy else HEADER_SIZE

    @property
    def transaction_flag(self) -> int:
        return self.reserved[2]

    @property
    def encryption_flag(self) -> int:
        return self.reserved[3]

    @property
    def last_update(self) -> date:
        """Last modification date, clamped into a valid calendar date."""
        year = 1900 + self.update_year
        month = min(max(self.update_month, 1), 12)
        day = min(max(self.update_day, 1), calendar.monthrange(year, month)[1])
        return date(year, month, day)

    def with_update(self, record_count: int, when: Optional[date] = None) -> "TableHeader":
        """Return a copy with a new record count and modification date."""
        when = when or date.today()
        return replace(
            self,
            record_count=record_count,
            update_year=when.year - 1900,
            update_month=when.month,
            update_day=when.day,
        )

    # ─── Construction ───────────────────────────────────────────────

    @classmethod
    def create(
        cls,
        version: DbfVersion,
        field_count: int,
        record_length: int,
        table_flags: TableFlags = TableFlags.NONE,
        language: int = 0,
        trailer_length: int = 0,
        when: Optional[date] = None,
    ) -> "TableHeader":
        """Build the header of an empty table."""
        when = when or date.today()
        if version.is_legacy:
            header_length = LEGACY_HEADER_LENGTH
        else:
            header_length = HEADER_SIZE + field_count * DESCRIPTOR_SIZE + 1 + trailer_length
        return cls(
            version=version,
            record_count=0,
            header_length=header_length,
            record_length=record_length,
            update_year=when.year - 1900,
            update_month=when.month,
            update_day=when.day,
            table_flags=table_flags,
            language=language,
        )

    # ─── Serialization ──────────────────────────────────────────────

    def to_bytes(self) -> bytes:
        if self.is_legacy:
            if self.record_count > 0xFFFF:
                raise ValueError(f"Legacy tables hold at most 65535 records, not {self.record_count}")
            return LEGACY_HEADER_STRUCT.pack(
                self.version, self.record_count,
                self.update_year, self.update_month, self.update_day,
                self.record_length,
            )
        return HEADER_STRUCT.pack(
            self.version,
            self.update_year, self.update_month, self.update_day,
            self.record_count, self.header_length, self.record_length,
            self.reserved, self.table_flags, self.language, self.reserved_tail,
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "TableHeader":
        if not data:
            raise MalformedHeaderError("Table file is empty")
        version = version_from_byte(data[0])

        if version.is_legacy:
            if len(data) < LEGACY_HEADER_SIZE:
                raise MalformedHeaderError(
                    f"Legacy header truncated: {len(data)} of {LEGACY_HEADER_SIZE} bytes"
                )
            _, count, yy, mm, dd, record_length = LEGACY_HEADER_STRUCT.unpack_from(data)
            header = cls(
                version=version, record_count=count,
                header_length=LEGACY_HEADER_LENGTH, record_length=record_length,
                update_year=yy, update_month=mm, update_day=dd,
            )
        else:
            if len(data) < HEADER_SIZE:
                raise MalformedHeaderError(
                    f"Header truncated: {len(data)} of {HEADER_SIZE} bytes"
                )
            (_, yy, mm, dd, count, header_length, record_length,
             reserved, flags, language, reserved_tail) = HEADER_STRUCT.unpack_from(data)
            if header_length < HEADER_SIZE + 1:
                raise MalformedHeaderError(f"Header length {header_length} is too small")
            header = cls(
                version=version, record_count=count,
                header_length=header_length, record_length=record_length,
                update_year=yy, update_month=mm, update_day=dd,
                table_flags=TableFlags(flags), language=language,
                reserved=reserved, reserved_tail=reserved_tail,
            )

        if header.record_length < 1:
            raise MalformedHeaderError(f"Record length {header.record_length} is too small")
        return header


def read_header(stream: BinaryIO) -> TableHeader:
    """Read the table header from the start of the stream."""
    stream.seek(0)
    first = stream.read(1)
    if not first:
        raise MalformedHeaderError("Table file is empty")
    version = version_from_byte(first[0])
    size = LEGACY_HEADER_SIZE if version.is_legacy else HEADER_SIZE
    return TableHeader.from_bytes(first + stream.read(size - 1))


def write_header(stream: BinaryIO, header: TableHeader) -> None:
    """Overwrite the header preamble in place."""
    stream.seek(0)
    stream.write(header.to_bytes())
