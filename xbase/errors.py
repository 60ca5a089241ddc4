"""
xbase Error Types
=================
Every failure the codec raises on purpose derives from XBaseError.

Two families matter to callers:
  - CapabilityError: the bytes may be perfectly valid, but this library
    does not speak that version, field type or code page. Raised
    immediately, never retried.
  - Malformed*/Decode errors: the bytes are wrong for the shape they
    claim to be. Structural damage fails open(); a bad field value fails
    the record it belongs to, with enough context to find the bytes.

Programming mistakes (wrong value count, empty memo payload, negative
index) raise the built-in ValueError / IndexError instead.
"""

from typing import Any


class XBaseError(Exception):
    """Base class for all xbase errors."""
    pass


# ─── Capability errors ──────────────────────────────────────────────────────

class CapabilityError(XBaseError):
    """The input uses a feature this library does not support."""
    pass


class UnsupportedVersionError(CapabilityError):
    """Unknown table version byte, or a version with no memo shape."""

    def __init__(self, version: int, reason: str = "unknown version byte"):
        self.version = version
        super().__init__(f"Unsupported table version 0x{version:02X}: {reason}")


class UnsupportedFieldTypeError(CapabilityError):
    """A descriptor carries a type tag outside the supported set."""

    def __init__(self, tag: Any, field_name: str = ""):
        self.tag = tag
        self.field_name = field_name
        where = f" (field {field_name!r})" if field_name else ""
        super().__init__(f"Unsupported field type {tag!r}{where}")


class UnsupportedLanguageError(CapabilityError):
    """The language/code-page byte has no known text encoding."""

    def __init__(self, language: int):
        self.language = language
        super().__init__(
            f"Unsupported language id 0x{language:02X}; "
            f"pass an explicit encoding in TableOptions"
        )


# ─── Structural errors ──────────────────────────────────────────────────────

class MalformedHeaderError(XBaseError):
    """The table header is truncated or internally inconsistent."""
    pass


class MalformedSchemaError(XBaseError):
    """The descriptor block is truncated, unterminated or inconsistent."""
    pass


# ─── Data errors ────────────────────────────────────────────────────────────

class RecordDecodeError(XBaseError):
    """A record could not be decoded (bad status byte, wrong size)."""
    pass


class FieldDecodeError(RecordDecodeError):
    """
    A single field's bytes are not valid for its declared type.
    Carries the field name, the byte range inside the record buffer
    and the raw bytes so the caller can locate the damage.
    """

    def __init__(self, field_name: str, start: int, end: int, raw: bytes, reason: str):
        self.field_name = field_name
        self.start = start
        self.end = end
        self.raw = bytes(raw)
        self.reason = reason
        super().__init__(
            f"Field {field_name!r} bytes [{start}:{end}] {self.raw!r}: {reason}"
        )


class FieldEncodeError(XBaseError):
    """A value does not fit the field it is being written to."""

    def __init__(self, field_name: str, value: Any, reason: str):
        self.field_name = field_name
        self.value = value
        super().__init__(f"Cannot encode {value!r} into field {field_name!r}: {reason}")


class MemoError(XBaseError):
    """Memo store failure: bad index, damaged block, or no store attached."""
    pass
