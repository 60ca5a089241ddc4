"""
xbase Schema Definition
=======================
Field descriptors and the descriptor table that follows the header.

  Standard descriptor (32 bytes):
     0  name (10 bytes + NUL)   11  type char
    12  address (u32, raw)      16  length     17  decimal count
    18  flags                   19  autoincrement next (i32)
    23  autoincrement step      24  8 reserved bytes

  Legacy descriptor (16 bytes):
     0  name (10 bytes + NUL)   11  type char   12  length
    13  address (u16, raw)      15  decimal count

The table ends with 0x0D. Visual FoxPro may put trailing metadata after
it (the 263-byte database-container backlink); that block is detected,
kept as opaque bytes, and written back unchanged. It is never parsed.

Field offsets are always computed (status byte at 0, first field at 1),
never trusted from the address bytes on disk.
"""

import logging
import struct
from dataclasses import dataclass, field, replace
from enum import IntFlag
from typing import BinaryIO, Iterable, Iterator, Optional, Union

from xbase.config import (
    HEADER_SIZE, DESCRIPTOR_SIZE, FIELD_TERMINATOR, FIELD_NAME_SIZE,
    LEGACY_HEADER_SIZE, LEGACY_DESCRIPTOR_SIZE, LEGACY_SLOT_COUNT,
    MAX_FIELD_NAME_LENGTH, DEFAULT_MEMO_REF_LENGTH,
)
from xbase.errors import MalformedSchemaError
from xbase.header import TableHeader, TableFlags
from xbase.types import FieldType, is_memo_backed, type_from_tag

logger = logging.getLogger(__name__)

# name(11s) type(B) address(I) length(B) decimals(B) flags(B)
# autoinc_next(i) autoinc_step(B) reserved(8s)
DESCRIPTOR_FMT = "<11sBIBBBiB8s"
DESCRIPTOR_STRUCT = struct.Struct(DESCRIPTOR_FMT)

# name(11s) type(B) length(B) address(H) decimals(B)
LEGACY_DESCRIPTOR_FMT = "<11sBBHB"
LEGACY_DESCRIPTOR_STRUCT = struct.Struct(LEGACY_DESCRIPTOR_FMT)

assert DESCRIPTOR_STRUCT.size == DESCRIPTOR_SIZE
assert LEGACY_DESCRIPTOR_STRUCT.size == LEGACY_DESCRIPTOR_SIZE


class FieldFlags(IntFlag):
    NONE = 0x00
    SYSTEM = 0x01
    NULLABLE = 0x02
    BINARY = 0x04
    AUTOINCREMENT = 0x0C


def _validate_name(name: str) -> str:
    if not name or not name.strip():
        raise ValueError("Field name must not be blank")
    try:
        encoded = name.encode("ascii")
    except UnicodeEncodeError:
        raise ValueError(f"Field name {name!r} must be ASCII") from None
    if len(encoded) > MAX_FIELD_NAME_LENGTH:
        raise ValueError(f"Field name {name!r} is longer than {MAX_FIELD_NAME_LENGTH} bytes")
    if b"\0" in encoded:
        raise ValueError(f"Field name {name!r} contains NUL")
    return name


def _decode_name(raw: bytes) -> str:
    return raw.split(b"\0", 1)[0].decode("latin-1").strip()


@dataclass(frozen=True)
class FieldDescriptor:
    """
    Definition of one fixed-width field.

    offset is filled in by Schema; address, reserved and name_raw exist so
    that descriptors read from disk are written back byte for byte.
    """
    name: str
    type: FieldType
    length: int
    decimals: int = 0
    flags: FieldFlags = FieldFlags.NONE
    autoincrement_next: int = 0
    autoincrement_step: int = 0
    offset: int = field(default=0, compare=False)
    address: Optional[int] = field(default=None, compare=False, repr=False)
    reserved: bytes = field(default=bytes(8), compare=False, repr=False)
    name_raw: bytes = field(default=b"", compare=False, repr=False)

    def __post_init__(self):
        if not 0 < self.length <= 255:
            raise ValueError(f"Field {self.name!r}: length {self.length} out of range 1..255")
        if not 0 <= self.decimals <= 255:
            raise ValueError(f"Field {self.name!r}: decimal count {self.decimals} out of range")

    @property
    def end(self) -> int:
        return self.offset + self.length

    @property
    def memo_backed(self) -> bool:
        return is_memo_backed(self.type, self.length)

    @property
    def nullable(self) -> bool:
        return bool(self.flags & FieldFlags.NULLABLE)

    def _name_bytes(self) -> bytes:
        if self.name_raw and _decode_name(self.name_raw) == self.name:
            return self.name_raw
        return self.name.encode("ascii", "replace").ljust(FIELD_NAME_SIZE, b"\0")[:FIELD_NAME_SIZE]

    # ─── Serialization ──────────────────────────────────────────────

    def to_bytes(self) -> bytes:
        """Encode as a 32-byte standard descriptor."""
        address = self.offset if self.address is None else self.address
        return DESCRIPTOR_STRUCT.pack(
            self._name_bytes(), self.type.tag, address & 0xFFFFFFFF,
            self.length, self.decimals, self.flags,
            self.autoincrement_next, self.autoincrement_step, self.reserved,
        )

    def to_legacy_bytes(self) -> bytes:
        """Encode as a 16-byte legacy descriptor."""
        address = self.offset if self.address is None else self.address
        return LEGACY_DESCRIPTOR_STRUCT.pack(
            self._name_bytes(), self.type.tag, self.length, address & 0xFFFF, self.decimals,
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "FieldDescriptor":
        (name_raw, tag, address, length, decimals, flags,
         next_value, step, reserved) = DESCRIPTOR_STRUCT.unpack_from(data)
        name = _decode_name(name_raw)
        if length == 0:
            raise MalformedSchemaError(f"Field {name!r} has zero length")
        return cls(
            name=name, type=type_from_tag(tag, name), length=length, decimals=decimals,
            flags=FieldFlags(flags), autoincrement_next=next_value, autoincrement_step=step,
            address=address, reserved=reserved, name_raw=name_raw,
        )

    @classmethod
    def from_legacy_bytes(cls, data: bytes) -> "FieldDescriptor":
        name_raw, tag, length, address, decimals = LEGACY_DESCRIPTOR_STRUCT.unpack_from(data)
        name = _decode_name(name_raw)
        if length == 0:
            raise MalformedSchemaError(f"Field {name!r} has zero length")
        return cls(
            name=name, type=type_from_tag(tag, name), length=length, decimals=decimals,
            address=address, name_raw=name_raw,
        )

    # ─── Factories ──────────────────────────────────────────────────

    @classmethod
    def text(cls, name: str, length: int) -> "FieldDescriptor":
        return cls(_validate_name(name), FieldType.CHARACTER, length)

    @classmethod
    def numeric(cls, name: str, length: int, decimals: int = 0) -> "FieldDescriptor":
        if decimals and decimals >= length:
            raise ValueError(f"Field {name!r}: decimals must be smaller than length")
        return cls(_validate_name(name), FieldType.NUMERIC, length, decimals)

    @classmethod
    def float_(cls, name: str, length: int = 20, decimals: int = 10) -> "FieldDescriptor":
        if decimals >= length:
            raise ValueError(f"Field {name!r}: decimals must be smaller than length")
        return cls(_validate_name(name), FieldType.FLOAT, length, decimals)

    @classmethod
    def date(cls, name: str) -> "FieldDescriptor":
        return cls(_validate_name(name), FieldType.DATE, 8)

    @classmethod
    def logical(cls, name: str) -> "FieldDescriptor":
        return cls(_validate_name(name), FieldType.LOGICAL, 1)

    @classmethod
    def memo(cls, name: str, length: int = DEFAULT_MEMO_REF_LENGTH) -> "FieldDescriptor":
        return cls(_validate_name(name), FieldType.MEMO, length)

    @classmethod
    def binary_memo(cls, name: str, ftype: FieldType = FieldType.BLOB, length: int = 4) -> "FieldDescriptor":
        if not is_memo_backed(ftype, length):
            raise ValueError(f"{ftype.name} with length {length} is not memo-backed")
        return cls(_validate_name(name), ftype, length)

    @classmethod
    def int32(cls, name: str) -> "FieldDescriptor":
        return cls(_validate_name(name), FieldType.INT32, 4)

    @classmethod
    def double(cls, name: str) -> "FieldDescriptor":
        return cls(_validate_name(name), FieldType.DOUBLE, 8)

    @classmethod
    def currency(cls, name: str) -> "FieldDescriptor":
        return cls(_validate_name(name), FieldType.CURRENCY, 8, 4)

    @classmethod
    def datetime(cls, name: str) -> "FieldDescriptor":
        return cls(_validate_name(name), FieldType.DATETIME, 8)

    @classmethod
    def timestamp(cls, name: str) -> "FieldDescriptor":
        return cls(_validate_name(name), FieldType.TIMESTAMP, 8)

    @classmethod
    def autoincrement(cls, name: str, next_value: int = 1, step: int = 1) -> "FieldDescriptor":
        return cls(
            _validate_name(name), FieldType.AUTOINCREMENT, 8,
            flags=FieldFlags.AUTOINCREMENT, autoincrement_next=next_value, autoincrement_step=step,
        )

    @classmethod
    def variant(cls, name: str, length: int) -> "FieldDescriptor":
        if length < 2:
            raise ValueError(f"Field {name!r}: variant fields need room for a length byte")
        return cls(_validate_name(name), FieldType.VARIANT, length)

    @classmethod
    def null_flags(cls, name: str = "_NullFlags", length: int = 1) -> "FieldDescriptor":
        return cls(_validate_name(name), FieldType.NULLFLAGS, length, flags=FieldFlags.SYSTEM)




@dataclass
class Schema:
    """
    Ordered, contiguous field descriptors plus any opaque trailing
    metadata that sat after the descriptor terminator.
    """
    fields: list[FieldDescriptor] = field(default_factory=list)
    trailer: bytes = b""

    def __post_init__(self):
        placed = []
        offset = 1  # byte 0 is the record status
        for desc in self.fields:
            placed.append(replace(desc, offset=offset))
            offset += desc.length
        self.fields = placed

    @classmethod
    def from_tuples(cls, specs: Iterable[tuple]) -> "Schema":
        """Build from (name, type, length[, decimals]) tuples; type may be a tag char."""
        fields = []
        for spec in specs:
            name, ftype, length, *rest = spec
            decimals = rest[0] if rest else 0
            if not isinstance(ftype, FieldType):
                ftype = type_from_tag(ftype, name)
            fields.append(FieldDescriptor(_validate_name(name), ftype, length, decimals))
        return cls(fields)

    # ─── Lookup ─────────────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self.fields)

    def __iter__(self) -> Iterator[FieldDescriptor]:
        return iter(self.fields)

    def __getitem__(self, key: Union[int, str]) -> FieldDescriptor:
        if isinstance(key, str):
            return self.fields[self.index(key)]
        return self.fields[key]

    def names(self) -> list[str]:
        return [f.name for f in self.fields]

    def index(self, name: str) -> int:
        """Return the position of a field (case-insensitive). Raises KeyError."""
        lower = name.lower()
        for i, desc in enumerate(self.fields):
            if desc.name.lower() == lower:
                return i
        raise KeyError(f"Field '{name}' not found in schema")

    def key(self) -> tuple[FieldDescriptor, ...]:
        """Hashable identity of the descriptor list."""
        return tuple(self.fields)

    # ─── Derived layout ─────────────────────────────────────────────

    @property
    def record_length(self) -> int:
        return 1 + sum(f.length for f in self.fields)

    @property
    def has_memo_fields(self) -> bool:
        return any(f.memo_backed for f in self.fields)

    def table_flags(self) -> TableFlags:
        return TableFlags.HAS_MEMO_FIELD if self.has_memo_fields else TableFlags.NONE

    def __repr__(self) -> str:
        cols = ", ".join(f"{f.name} {f.type.value}({f.length},{f.decimals})" for f in self.fields)
        return f"Schema({cols})"


# ─── Descriptor table I/O ───────────────────────────────────────────────────

def read_descriptors(stream: BinaryIO, header: TableHeader) -> Schema:
    """Read the descriptor table that follows the header preamble."""
    if header.is_legacy:
        schema = _read_legacy_descriptors(stream)
    else:
        schema = _read_standard_descriptors(stream, header)

    expected = schema.record_length
    if expected > header.record_length:
        raise MalformedSchemaError(
            f"Fields need {expected} bytes per record but header declares {header.record_length}"
        )
    if expected < header.record_length:
        logger.warning(
            "Record length %d exceeds field widths (%d); trailing record bytes are ignored",
            header.record_length, expected,
        )
    return schema


def _read_standard_descriptors(stream: BinaryIO, header: TableHeader) -> Schema:
    stream.seek(HEADER_SIZE)
    block_size = header.header_length - HEADER_SIZE
    block = stream.read(block_size)
    if len(block) < block_size:
        raise MalformedSchemaError(
            f"Descriptor block truncated: {len(block)} of {block_size} bytes"
        )

    # The first slot that starts with the terminator ends the table. With
    # no trailing metadata that slot is the one right after the last
    # descriptor; otherwise the metadata follows the terminator.
    count = None
    for slot in range(block_size // DESCRIPTOR_SIZE + 1):
        pos = slot * DESCRIPTOR_SIZE
        if pos < block_size and block[pos] == FIELD_TERMINATOR:
            count = slot
            break
    if count is None:
        raise MalformedSchemaError("Descriptor table has no 0x0D terminator")

    fields = [
        FieldDescriptor.from_bytes(block[i * DESCRIPTOR_SIZE:(i + 1) * DESCRIPTOR_SIZE])
        for i in range(count)
    ]
    trailer = block[count * DESCRIPTOR_SIZE + 1:]
    if trailer:
        logger.info("Descriptor table carries %d bytes of trailing metadata", len(trailer))
    return Schema(fields, trailer)


def _read_legacy_descriptors(stream: BinaryIO) -> Schema:
    stream.seek(LEGACY_HEADER_SIZE)
    table_size = LEGACY_SLOT_COUNT * LEGACY_DESCRIPTOR_SIZE
    block = stream.read(table_size + 1)
    if len(block) < table_size + 1:
        raise MalformedSchemaError(
            f"Legacy descriptor table truncated: {len(block)} of {table_size + 1} bytes"
        )

    trailer = b""
    if block[table_size] == FIELD_TERMINATOR:
        count = LEGACY_SLOT_COUNT
    else:
        for slot in range(LEGACY_SLOT_COUNT):
            if block[slot * LEGACY_DESCRIPTOR_SIZE] == FIELD_TERMINATOR:
                count = slot
                trailer = block[slot * LEGACY_DESCRIPTOR_SIZE + 1:]
                break
        else:
            logger.warning("Legacy descriptor table has no terminator; assuming 32 fields")
            count = LEGACY_SLOT_COUNT

    fields = [
        FieldDescriptor.from_legacy_bytes(block[i * LEGACY_DESCRIPTOR_SIZE:(i + 1) * LEGACY_DESCRIPTOR_SIZE])
        for i in range(count)
    ]
    return Schema(fields, trailer)


def descriptor_block(header: TableHeader, schema: Schema) -> bytes:
    """Encode descriptors, terminator and trailer for the given header shape."""
    out = bytearray()
    if header.is_legacy:
        if len(schema) > LEGACY_SLOT_COUNT:
            raise ValueError(f"Legacy tables hold at most {LEGACY_SLOT_COUNT} fields")
        for desc in schema:
            out += desc.to_legacy_bytes()
        out.append(FIELD_TERMINATOR)
        out += schema.trailer
        table_size = LEGACY_SLOT_COUNT * LEGACY_DESCRIPTOR_SIZE + 1
        return bytes(out[:table_size].ljust(table_size, b"\0"))

    for desc in schema:
        out += desc.to_bytes()
    out.append(FIELD_TERMINATOR)
    out += schema.trailer
    return bytes(out)


def write_descriptors(stream: BinaryIO, header: TableHeader, schema: Schema) -> None:
    stream.seek(header.preamble_size)
    stream.write(descriptor_block(header, schema))


def write_schema_block(stream: BinaryIO, header: TableHeader, schema: Schema) -> None:
    """Write header preamble and descriptor table together."""
    stream.seek(0)
    stream.write(header.to_bytes())
    stream.write(descriptor_block(header, schema))
