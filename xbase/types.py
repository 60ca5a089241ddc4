"""
xbase Field Types
=================
The one-character type tag stored in every field descriptor.

Types fall into three storage families:
  - text types: the value is ASCII/locale text padded to the field width
    (Character, Numeric, Float, Date, Logical)
  - fixed binary types: little-endian integers or IEEE doubles
    (Int32, Double, Currency, DateTime, Timestamp, AutoIncrement)
  - memo-backed types: the field holds a reference into the memo store
    (Memo, Blob, Ole, Picture, and Binary unless it is 8 bytes wide)

Variant and NullFlags are extended-dialect oddities with their own rules.
"""

from enum import Enum
from typing import Optional

from xbase.errors import UnsupportedFieldTypeError


class FieldType(Enum):
    """Descriptor type tags, keyed by their on-disk character."""
    AUTOINCREMENT = "+"
    BINARY = "B"
    BLOB = "W"
    CHARACTER = "C"
    CURRENCY = "Y"
    DATE = "D"
    DATETIME = "T"
    DOUBLE = "O"
    FLOAT = "F"
    INT32 = "I"
    LOGICAL = "L"
    MEMO = "M"
    NULLFLAGS = "0"
    NUMERIC = "N"
    OLE = "G"
    PICTURE = "P"
    TIMESTAMP = "@"
    VARIANT = "V"

    @property
    def tag(self) -> int:
        return ord(self.value)


# ─── Size constants ─────────────────────────────────────────────────────────

FIXED_SIZES: dict[FieldType, int] = {
    FieldType.AUTOINCREMENT: 8,   # int64 little-endian
    FieldType.CURRENCY: 8,        # int64 scaled by 10 000
    FieldType.DATE: 8,            # yyyyMMdd
    FieldType.DATETIME: 8,        # julian day + ms since midnight
    FieldType.TIMESTAMP: 8,
    FieldType.DOUBLE: 8,          # IEEE 754 double
    FieldType.INT32: 4,
    FieldType.LOGICAL: 1,
}

# Memo-backed types and the memo record type their content is stored under
MEMO_BACKED: frozenset[FieldType] = frozenset({
    FieldType.MEMO, FieldType.BINARY, FieldType.BLOB, FieldType.OLE, FieldType.PICTURE,
})


def fixed_size(ftype: FieldType) -> Optional[int]:
    """Return the canonical width of a fixed-size type, or None."""
    return FIXED_SIZES.get(ftype)


def is_memo_backed(ftype: FieldType, length: int) -> bool:
    """True if a field of this type and width holds a memo reference."""
    if ftype == FieldType.BINARY:
        # Visual FoxPro reuses 'B' for an 8-byte double
        return length != 8
    return ftype in MEMO_BACKED


def type_from_tag(tag: int | str, field_name: str = "") -> FieldType:
    """Resolve a descriptor type byte (or character) into a FieldType."""
    char = chr(tag) if isinstance(tag, int) else tag
    try:
        return FieldType(char.upper())
    except ValueError:
        raise UnsupportedFieldTypeError(char, field_name) from None
