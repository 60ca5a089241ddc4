"""
xbase Table Versions
====================
The first byte of every table file names its dialect. Everything else
about the file (header shape, descriptor width, which memo store sits
next to it) follows from that byte.

  0x02            legacy (dBASE II): 8-byte header, 16-byte descriptors
  0x03 .. 0xFB    standard: 32-byte header, 32-byte descriptors
  0x30 .. 0x32    extended (Visual FoxPro): standard layout plus richer
                  field types and optional trailing metadata
"""

from enum import IntEnum, Enum
from typing import Optional

from xbase.errors import UnsupportedVersionError


class DbfVersion(IntEnum):
    """Known table version bytes."""
    DBASE_02 = 0x02
    DBASE_03 = 0x03
    DBASE_04 = 0x04
    DBASE_05 = 0x05
    VISUAL_FOXPRO = 0x30
    VISUAL_FOXPRO_AUTOINCREMENT = 0x31
    VISUAL_FOXPRO_VARCHAR = 0x32
    DBASE_43 = 0x43
    DBASE_63 = 0x63
    DBASE_83 = 0x83
    DBASE_8B = 0x8B
    DBASE_CB = 0xCB
    FOXPRO2_MEMO = 0xF5
    FOXBASE = 0xFB

    # ─── Bit tests ─────────────────────────────────────────────────

    @property
    def has_dos_memo(self) -> bool:
        return bool(self & 0b0000_1000)

    @property
    def has_sql_table(self) -> bool:
        return bool(self & 0b0111_0000)

    @property
    def has_dbt_memo(self) -> bool:
        return bool(self & 0b1000_0000)

    @property
    def is_foxpro(self) -> bool:
        return self in _FOXPRO

    @property
    def is_legacy(self) -> bool:
        return self == DbfVersion.DBASE_02

    @property
    def dialect_class(self) -> int:
        """dBASE level encoded in the low three bits (2..5)."""
        return self & 0b0000_0111


_FOXPRO = frozenset({
    DbfVersion.VISUAL_FOXPRO,
    DbfVersion.VISUAL_FOXPRO_AUTOINCREMENT,
    DbfVersion.VISUAL_FOXPRO_VARCHAR,
})

MAX_DIALECT_CLASS = 5


def version_from_byte(value: int) -> DbfVersion:
    """Classify a version byte, raising UnsupportedVersionError if unknown."""
    try:
        version = DbfVersion(value)
    except ValueError:
        raise UnsupportedVersionError(value) from None
    if version.dialect_class > MAX_DIALECT_CLASS:
        raise UnsupportedVersionError(value, "dialect class out of range")
    return version


# ─── Memo shape selection ───────────────────────────────────────────────────

class MemoShape(Enum):
    """On-disk layout of the memo store that accompanies a table."""
    DBT3 = "dbt3"   # dBASE III: payload + 0x1A 0x1A
    DBT4 = "dbt4"   # dBASE IV: FF FF 08 00 + length prefix
    FPT = "fpt"     # FoxPro: big-endian type + length prefix

    @property
    def extension(self) -> str:
        return ".fpt" if self is MemoShape.FPT else ".dbt"


_MEMO_SHAPES: dict[DbfVersion, MemoShape] = {
    DbfVersion.DBASE_83: MemoShape.DBT3,
    DbfVersion.DBASE_8B: MemoShape.DBT4,
    DbfVersion.DBASE_CB: MemoShape.DBT4,
    DbfVersion.VISUAL_FOXPRO: MemoShape.FPT,
    DbfVersion.VISUAL_FOXPRO_AUTOINCREMENT: MemoShape.FPT,
    DbfVersion.VISUAL_FOXPRO_VARCHAR: MemoShape.FPT,
    DbfVersion.FOXPRO2_MEMO: MemoShape.FPT,
}


def memo_shape_for(version: DbfVersion) -> Optional[MemoShape]:
    """Return the memo layout a table version uses, or None if it has none."""
    return _MEMO_SHAPES.get(version)


def require_memo_shape(version: DbfVersion) -> MemoShape:
    shape = memo_shape_for(version)
    if shape is None:
        raise UnsupportedVersionError(int(version), "version has no memo store")
    return shape


def version_for_memo(version: DbfVersion) -> DbfVersion:
    """Upgrade a memo-less version to the closest one that carries memos."""
    if memo_shape_for(version) is not None:
        return version
    if version in (DbfVersion.DBASE_02, DbfVersion.DBASE_03):
        return DbfVersion.DBASE_83
    if version in (DbfVersion.DBASE_04, DbfVersion.DBASE_05, DbfVersion.DBASE_43, DbfVersion.DBASE_63):
        return DbfVersion.DBASE_8B
    if version == DbfVersion.FOXBASE:
        return DbfVersion.FOXPRO2_MEMO
    raise UnsupportedVersionError(int(version), "version has no memo store")
