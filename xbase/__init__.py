"""
xbase
=====
Codec for xBase/dBASE table files (.dbf) and their memo stores
(.dbt, .fpt).

Usage:
    from xbase import DbfTable, Schema, FieldDescriptor
    from xbase import FieldType, DbfVersion, MemoType

    with DbfTable.open("people.dbf") as table:
        for record in table:
            print(record.values)
"""

import logging

from xbase.config import TableOptions
from xbase.errors import (
    XBaseError, CapabilityError, UnsupportedVersionError, UnsupportedFieldTypeError,
    UnsupportedLanguageError, MalformedHeaderError, MalformedSchemaError,
    RecordDecodeError, FieldDecodeError, FieldEncodeError, MemoError,
)
from xbase.versions import DbfVersion, MemoShape
from xbase.languages import DbfLanguage, resolve_language
from xbase.types import FieldType
from xbase.header import TableHeader, TableFlags, read_header, write_header
from xbase.schema import (
    FieldDescriptor, FieldFlags, Schema, read_descriptors, write_descriptors, write_schema_block,
)
from xbase.memo import (
    MemoType, MemoRecord, MemoStore, DbtMemoStore, Dbt4MemoStore, FptMemoStore,
    open_memo, create_memo,
)
from xbase.codec import decode_field, encode_field
from xbase.serializer import Record, RecordStatus, CodecContext, read_record, write_record
from xbase.projection import TypeProjection, get_projection, clear_projection_cache
from xbase.table import DbfTable

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "TableOptions",
    "XBaseError", "CapabilityError", "UnsupportedVersionError", "UnsupportedFieldTypeError",
    "UnsupportedLanguageError", "MalformedHeaderError", "MalformedSchemaError",
    "RecordDecodeError", "FieldDecodeError", "FieldEncodeError", "MemoError",
    "DbfVersion", "MemoShape", "DbfLanguage", "resolve_language", "FieldType",
    "TableHeader", "TableFlags", "read_header", "write_header",
    "FieldDescriptor", "FieldFlags", "Schema", "read_descriptors", "write_descriptors",
    "write_schema_block",
    "MemoType", "MemoRecord", "MemoStore", "DbtMemoStore", "Dbt4MemoStore", "FptMemoStore",
    "open_memo", "create_memo",
    "decode_field", "encode_field",
    "Record", "RecordStatus", "CodecContext", "read_record", "write_record",
    "TypeProjection", "get_projection", "clear_projection_cache",
    "DbfTable",
]
