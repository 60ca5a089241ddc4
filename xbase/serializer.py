"""
xbase Record Serializer
=======================
Schema-aware conversion between a record buffer and a Record.

Record binary layout (record_length bytes):
  [status: 1B] [field 0] [field 1] ... [field n-1] [ignored padding]

  status 0x20 (' ') = valid, 0x2A ('*') = deleted. Any other byte is
  kept as a plain int and written back unchanged. Fields sit at the
  offsets the Schema computed; each is exactly its declared width.

Decoding is all-or-nothing: a short buffer or a bad field raises, and
no partially decoded record is returned.

Encoding runs field by field in schema order. Memo-backed fields append
their content to the memo store inside the field codec, so by the time
the buffer is complete every reference in it is already backed by
written blocks.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Iterator, Optional, Sequence, TYPE_CHECKING

from xbase.codec import decode_field, encode_field
from xbase.errors import RecordDecodeError
from xbase.schema import Schema

if TYPE_CHECKING:
    from xbase.memo import MemoStore


class RecordStatus(IntEnum):
    VALID = 0x20
    DELETED = 0x2A


@dataclass
class Record:
    """A decoded record: status byte plus values aligned with the schema."""
    status: int = RecordStatus.VALID
    values: list[Any] = field(default_factory=list)

    @property
    def is_deleted(self) -> bool:
        return self.status == RecordStatus.DELETED

    def __len__(self) -> int:
        return len(self.values)

    def __getitem__(self, index: int) -> Any:
        return self.values[index]

    def __iter__(self) -> Iterator[Any]:
        return iter(self.values)

    def to_dict(self, schema: Schema) -> dict[str, Any]:
        """Values keyed by field name."""
        return dict(zip(schema.names(), self.values))


@dataclass(frozen=True)
class CodecContext:
    """Everything the field codec needs beyond the descriptor itself."""
    encoding: str = "ascii"
    decimal_separator: str = "."
    memo: Optional["MemoStore"] = None


def read_record(buffer: bytes, schema: Schema, context: CodecContext) -> Record:
    """Decode one record buffer."""
    if len(buffer) < schema.record_length:
        raise RecordDecodeError(
            f"Record buffer is {len(buffer)} bytes, schema needs {schema.record_length}"
        )
    try:
        status = RecordStatus(buffer[0])
    except ValueError:
        status = buffer[0]

    values = [
        decode_field(
            bytes(buffer[desc.offset:desc.end]), desc,
            context.encoding, context.decimal_separator, context.memo,
        )
        for desc in schema
    ]
    return Record(status, values)


def write_record(
    values: Sequence[Any],
    schema: Schema,
    context: CodecContext,
    target: Optional[bytearray] = None,
    status: int = RecordStatus.VALID,
) -> bytearray:
    """
    Encode values into a record buffer and return it.

    When target is given it is filled in place; it must be at least
    schema.record_length bytes. Bytes past the last field are untouched.
    """
    if len(values) != len(schema):
        raise ValueError(f"Expected {len(schema)} values, got {len(values)}")
    if target is None:
        target = bytearray(b" " * schema.record_length)
    elif len(target) < schema.record_length:
        raise ValueError(
            f"Target buffer is {len(target)} bytes, schema needs {schema.record_length}"
        )

    target[0] = status
    for desc, value in zip(schema, values):
        target[desc.offset:desc.end] = encode_field(
            value, desc, context.encoding, context.decimal_separator, context.memo,
        )
    return target


def encode_record(record: Record, schema: Schema, context: CodecContext) -> bytes:
    return bytes(write_record(record.values, schema, context, status=record.status))
