"""
xbase Field Value Codec
=======================
Converts one field's bytes to a Python value and back.

Every type goes through decode_field / encode_field, a single if/elif
chain over FieldType that ends in UnsupportedFieldTypeError: a type tag
that is not handled here can never be silently skipped.

Value shapes:
  Character, Variant, Memo (text)   -> str
  Numeric (0 decimals)              -> int or None
  Numeric (decimals), Float         -> float or None
  Int32, AutoIncrement              -> int
  Double, Binary (8 bytes wide)     -> float
  Currency                          -> Decimal (four decimal places)
  Date                              -> date or None
  DateTime, Timestamp               -> datetime or None
  Logical                           -> bool or None
  Blob, Ole, Picture, Binary        -> bytes (memo content)
  NullFlags                         -> upper-case hex str

Blank text fields (numeric, date) are a logical null, not an error.
Bytes that are wrong for their type raise FieldDecodeError, naming the
field and its byte range inside the record.

Text is decoded with the encoding the caller resolved from the table's
language byte; numeric text uses the locale decimal separator on disk
and '.' in memory.
"""

import math
import re
import struct
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_EVEN
from typing import Any, Optional, TYPE_CHECKING

from xbase.errors import (
    FieldDecodeError, FieldEncodeError, MemoError, UnsupportedFieldTypeError,
)
from xbase.memo import MemoType
from xbase.schema import FieldDescriptor
from xbase.types import FieldType

if TYPE_CHECKING:
    from xbase.memo import MemoStore

# Julian day number of proleptic Gregorian ordinal 0.
# 1899-12-30 (OLE automation day 0) is JDN 2415019; 2000-01-01 is 2451545.
JULIAN_DAY_OFFSET = 1_721_425

INT32 = struct.Struct("<i")
INT64 = struct.Struct("<q")
DOUBLE = struct.Struct("<d")
JULIAN = struct.Struct("<ii")   # julian day, milliseconds since midnight

CURRENCY_SCALE = Decimal(10_000)
CURRENCY_QUANTUM = Decimal("0.0001")

_INT_RE = re.compile(r"[+-]?\d+")
_FLOAT_RE = re.compile(r"[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")
_PAD = b"\0 "

_MEMO_TYPES: dict[FieldType, MemoType] = {
    FieldType.MEMO: MemoType.TEXT,
    FieldType.BINARY: MemoType.OBJECT,
    FieldType.BLOB: MemoType.OBJECT,
    FieldType.OLE: MemoType.OBJECT,
    FieldType.PICTURE: MemoType.PICTURE,
}


def memo_type_for(ftype: FieldType) -> MemoType:
    """Memo record type that content of this field type is stored under."""
    return _MEMO_TYPES[ftype]


def _decode_error(desc: FieldDescriptor, raw: bytes, reason: str) -> FieldDecodeError:
    return FieldDecodeError(desc.name, desc.offset, desc.offset + len(raw), raw, reason)


def _ascii(raw: bytes, desc: FieldDescriptor) -> str:
    try:
        return raw.decode("ascii")
    except UnicodeDecodeError:
        raise _decode_error(desc, raw, "non-ASCII bytes in numeric text") from None


def _unpack(fmt: struct.Struct, raw: bytes, desc: FieldDescriptor) -> tuple:
    if len(raw) < fmt.size:
        raise _decode_error(desc, raw, f"needs {fmt.size} bytes, field is {len(raw)} wide")
    return fmt.unpack_from(raw)


def _pack(fmt: struct.Struct, desc: FieldDescriptor, value: Any, *args: Any) -> bytes:
    if desc.length < fmt.size:
        raise FieldEncodeError(desc.name, value, f"needs {fmt.size} bytes, field is {desc.length} wide")
    try:
        data = fmt.pack(*args)
    except struct.error as exc:
        raise FieldEncodeError(desc.name, value, str(exc)) from None
    return data.ljust(desc.length, b"\0")


def _number(value: Any, desc: FieldDescriptor) -> Any:
    """Accept int, float or Decimal; NaN and infinities have no text form."""
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise FieldEncodeError(desc.name, value, "expected a number")
    if isinstance(value, float) and not math.isfinite(value):
        raise FieldEncodeError(desc.name, value, "not a finite number")
    if isinstance(value, Decimal) and not value.is_finite():
        raise FieldEncodeError(desc.name, value, "not a finite number")
    return value


def _fit(data: bytes, desc: FieldDescriptor, value: Any, right: bool = False) -> bytes:
    if len(data) > desc.length:
        raise FieldEncodeError(desc.name, value, f"{len(data)} bytes exceed width {desc.length}")
    return data.rjust(desc.length) if right else data.ljust(desc.length)


# ═══════════════════════════════════════════════════════════════════════════
# Decode
# ═══════════════════════════════════════════════════════════════════════════

def decode_field(
    raw: bytes,
    desc: FieldDescriptor,
    encoding: str,
    decimal_separator: str = ".",
    memo: Optional["MemoStore"] = None,
) -> Any:
    """Decode one field's bytes into a Python value."""
    ftype = desc.type

    if ftype == FieldType.CHARACTER:
        try:
            return raw.strip(_PAD).decode(encoding)
        except UnicodeDecodeError as exc:
            raise _decode_error(desc, raw, str(exc)) from None

    elif ftype == FieldType.NUMERIC and desc.decimals == 0:
        text = _ascii(raw.strip(_PAD), desc)
        if not text:
            return None
        if not _INT_RE.fullmatch(text):
            raise _decode_error(desc, raw, "not an integer")
        return int(text)

    elif ftype in (FieldType.NUMERIC, FieldType.FLOAT):
        stripped = raw.strip(_PAD)
        if not stripped or (len(stripped) == 1 and not stripped.isdigit()):
            return None
        text = _ascii(stripped, desc)
        if decimal_separator != ".":
            text = text.replace(decimal_separator, ".")
        if not _FLOAT_RE.fullmatch(text):
            raise _decode_error(desc, raw, "not a number")
        return float(text)

    elif ftype == FieldType.INT32:
        return _unpack(INT32, raw, desc)[0]

    elif ftype == FieldType.DOUBLE or (ftype == FieldType.BINARY and desc.length == 8):
        return _unpack(DOUBLE, raw, desc)[0]

    elif ftype == FieldType.AUTOINCREMENT:
        return int.from_bytes(raw, "little", signed=True)

    elif ftype == FieldType.CURRENCY:
        units = _unpack(INT64, raw, desc)[0]
        return Decimal(units).scaleb(-4)

    elif ftype == FieldType.DATE:
        text = raw.strip(_PAD)
        if len(text) != 8:
            return None
        if not text.isdigit():
            raise _decode_error(desc, raw, "date is not yyyyMMdd")
        try:
            return date(int(text[:4]), int(text[4:6]), int(text[6:]))
        except ValueError as exc:
            raise _decode_error(desc, raw, str(exc)) from None

    elif ftype in (FieldType.DATETIME, FieldType.TIMESTAMP):
        julian, millis = _unpack(JULIAN, raw, desc)
        if julian == 0:
            return None
        try:
            return datetime.fromordinal(julian - JULIAN_DAY_OFFSET) + timedelta(milliseconds=millis)
        except (ValueError, OverflowError) as exc:
            raise _decode_error(desc, raw, f"invalid julian day {julian}: {exc}") from None

    elif ftype == FieldType.LOGICAL:
        if not raw:
            raise _decode_error(desc, raw, "empty logical field")
        flag = chr(raw[0]).upper()
        if flag in "TY1":
            return True
        if flag in "FN0":
            return False
        if flag in "? ":
            return None
        raise _decode_error(desc, raw, f"invalid logical byte 0x{raw[0]:02X}")

    elif ftype in _MEMO_TYPES:
        return _decode_memo(raw, desc, encoding, memo)

    elif ftype == FieldType.VARIANT:
        size = raw[-1]
        if size > len(raw) - 1:
            raise _decode_error(desc, raw, f"variant length {size} exceeds field width")
        try:
            return raw[:size].decode(encoding)
        except UnicodeDecodeError as exc:
            raise _decode_error(desc, raw, str(exc)) from None

    elif ftype == FieldType.NULLFLAGS:
        return raw.hex().upper()

    raise UnsupportedFieldTypeError(ftype.value, desc.name)


def _memo_ref(raw: bytes, desc: FieldDescriptor) -> int:
    if desc.length == 4:
        return INT32.unpack(raw)[0]
    text = raw.strip(_PAD)
    if not text:
        return 0
    if not text.isdigit():
        raise _decode_error(desc, raw, "memo reference is not a block number")
    return int(text)


def _decode_memo(raw: bytes, desc: FieldDescriptor, encoding: str, memo: Optional["MemoStore"]) -> Any:
    text = desc.type == FieldType.MEMO
    index = _memo_ref(raw, desc)
    if index == 0:
        return "" if text else b""
    if memo is None:
        raise MemoError(f"Field {desc.name!r} references memo block {index} but no memo store is attached")
    record = memo.get(index)
    if not text:
        return record.data
    try:
        return record.data.decode(encoding)
    except UnicodeDecodeError as exc:
        raise _decode_error(desc, raw, f"memo block {index}: {exc}") from None


# ═══════════════════════════════════════════════════════════════════════════
# Encode
# ═══════════════════════════════════════════════════════════════════════════

def encode_field(
    value: Any,
    desc: FieldDescriptor,
    encoding: str,
    decimal_separator: str = ".",
    memo: Optional["MemoStore"] = None,
) -> bytes:
    """
    Encode a Python value into exactly desc.length bytes.

    Memo-backed content is appended to the memo store here, before the
    reference is returned, so a record never points at a block that was
    not written.
    """
    ftype = desc.type
    blank = b" " * desc.length
    zeros = bytes(desc.length)

    if ftype == FieldType.CHARACTER:
        if value is None:
            return blank
        if not isinstance(value, str):
            raise FieldEncodeError(desc.name, value, "expected str")
        try:
            data = value.encode(encoding)
        except UnicodeEncodeError as exc:
            raise FieldEncodeError(desc.name, value, str(exc)) from None
        return _fit(data, desc, value)

    elif ftype == FieldType.NUMERIC and desc.decimals == 0:
        if value is None:
            return blank
        _number(value, desc)
        if value != int(value):
            raise FieldEncodeError(desc.name, value, "field has no decimal places")
        return _fit(str(int(value)).encode("ascii"), desc, value, right=True)

    elif ftype in (FieldType.NUMERIC, FieldType.FLOAT):
        if value is None:
            return blank
        text = format(_number(value, desc), f".{desc.decimals}f")
        if decimal_separator != ".":
            text = text.replace(".", decimal_separator)
        return _fit(text.encode("ascii"), desc, value, right=True)

    elif ftype == FieldType.INT32:
        return zeros if value is None else _pack(INT32, desc, value, value)

    elif ftype == FieldType.DOUBLE or (ftype == FieldType.BINARY and desc.length == 8):
        return zeros if value is None else _pack(DOUBLE, desc, value, float(value))

    elif ftype == FieldType.AUTOINCREMENT:
        if value is None:
            return zeros
        try:
            return int(value).to_bytes(desc.length, "little", signed=True)
        except OverflowError as exc:
            raise FieldEncodeError(desc.name, value, str(exc)) from None

    elif ftype == FieldType.CURRENCY:
        if value is None:
            return zeros
        try:
            amount = value if isinstance(value, Decimal) else Decimal(str(value))
        except InvalidOperation:
            raise FieldEncodeError(desc.name, value, "expected a number") from None
        if not amount.is_finite():
            raise FieldEncodeError(desc.name, value, "not a finite number")
        units = int((amount * CURRENCY_SCALE).to_integral_value(rounding=ROUND_HALF_EVEN))
        return _pack(INT64, desc, value, units)

    elif ftype == FieldType.DATE:
        if value is None:
            return blank
        if not isinstance(value, date):
            raise FieldEncodeError(desc.name, value, "expected a date")
        return _fit(f"{value.year:04d}{value.month:02d}{value.day:02d}".encode("ascii"), desc, value)

    elif ftype in (FieldType.DATETIME, FieldType.TIMESTAMP):
        if value is None:
            return zeros
        if not isinstance(value, date):
            raise FieldEncodeError(desc.name, value, "expected a datetime")
        julian = value.toordinal() + JULIAN_DAY_OFFSET
        millis = 0
        if isinstance(value, datetime):
            millis = ((value.hour * 60 + value.minute) * 60 + value.second) * 1000 + value.microsecond // 1000
        return _pack(JULIAN, desc, value, julian, millis)

    elif ftype == FieldType.LOGICAL:
        if value is None:
            flag = b"?"
        elif isinstance(value, bool):
            flag = b"T" if value else b"F"
        else:
            raise FieldEncodeError(desc.name, value, "expected bool or None")
        return _fit(flag, desc, value)

    elif ftype in _MEMO_TYPES:
        return _encode_memo(value, desc, encoding, memo)

    elif ftype == FieldType.VARIANT:
        if value is None:
            value = ""
        data = value.encode(encoding) if isinstance(value, str) else bytes(value)
        room = desc.length - 1
        if len(data) > room:
            raise FieldEncodeError(desc.name, value, f"{len(data)} bytes exceed variant capacity {room}")
        return data.ljust(room) + bytes([len(data)])

    elif ftype == FieldType.NULLFLAGS:
        if value is None:
            return zeros
        try:
            data = bytes.fromhex(value) if isinstance(value, str) else bytes(value)
        except ValueError as exc:
            raise FieldEncodeError(desc.name, value, str(exc)) from None
        if len(data) > desc.length:
            raise FieldEncodeError(desc.name, value, f"{len(data)} bytes exceed width {desc.length}")
        return data.ljust(desc.length, b"\0")

    raise UnsupportedFieldTypeError(ftype.value, desc.name)


def _encode_memo(value: Any, desc: FieldDescriptor, encoding: str, memo: Optional["MemoStore"]) -> bytes:
    if value is None or (isinstance(value, (str, bytes, bytearray, memoryview)) and len(value) == 0):
        return bytes(4) if desc.length == 4 else b" " * desc.length

    if isinstance(value, str):
        try:
            data = value.encode(encoding)
        except UnicodeEncodeError as exc:
            raise FieldEncodeError(desc.name, value, str(exc)) from None
    elif isinstance(value, (bytes, bytearray, memoryview)):
        data = bytes(value)
    else:
        raise FieldEncodeError(desc.name, value, "expected str or bytes")

    if memo is None:
        raise MemoError(f"Field {desc.name!r} has memo content but no memo store is attached")
    index = memo.append(memo_type_for(desc.type), data)

    if desc.length == 4:
        return INT32.pack(index)
    return _fit(str(index).encode("ascii"), desc, value, right=True)
