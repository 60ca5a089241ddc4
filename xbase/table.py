"""
xbase Table Handle
==================
Opens, creates, reads and appends .dbf tables, with their memo stores.

File layout:
  header preamble | descriptors | 0x0D | trailing metadata | records ...
  Record i lives at header_length + i * record_length.

The handle sequences the other components:
  open   -> read header, read descriptors, resolve text format, attach memo
  read   -> one record_length read per record, decoded by the serializer
  append -> memo content first (inside the field codec), then the record
            buffer, then the bumped record count
  flush  -> rewrite the header if the record count changed, flush memo

Scan order is file order. Enumeration is lazy and forward-only: each
record is read when the caller asks for it, bounded by the header's
record count. A short read (truncated file) ends the sequence early.

Records are only ever appended; there is no in-place update or delete.
"""

import logging
import os
from datetime import date
from typing import Any, BinaryIO, Iterator, Optional, Sequence

from xbase.config import DBC_BACKLINK_SIZE, TableOptions
from xbase.header import TableHeader, read_header, write_header
from xbase.languages import DbfLanguage, resolve_language, is_known_language
from xbase.memo import MemoStore, create_memo, open_memo
from xbase.projection import get_projection
from xbase.schema import Schema, read_descriptors, write_schema_block
from xbase.serializer import (
    CodecContext, Record, RecordStatus, read_record, write_record,
)
from xbase.versions import DbfVersion, MemoShape, memo_shape_for, version_for_memo

logger = logging.getLogger(__name__)


def memo_path_for(path: str, shape: Optional[MemoShape] = None) -> Optional[str]:
    """Return the existing memo file next to a table, trying both extensions."""
    base, _ = os.path.splitext(path)
    extensions = [".dbt", ".fpt"]
    if shape is not None:
        extensions.sort(key=lambda ext: ext != shape.extension)
    for ext in extensions:
        for candidate in (base + ext, base + ext.upper()):
            if os.path.exists(candidate):
                return candidate
    return None


class DbfTable:
    """
    A single .dbf table and, if it has one, its memo store.

    Provides:
    - open() / from_streams(): attach to an existing table
    - create() / create_streams(): write an empty table
    - iteration / records(): lazy scan of every record
    - read(i): one record by position
    - append(): add a record at the end
    - read_typed() / append_typed(): the same, through a user type
    - flush() / close(), or use as a context manager
    """

    def __init__(
        self,
        stream: BinaryIO,
        header: TableHeader,
        schema: Schema,
        memo: Optional[MemoStore] = None,
        options: Optional[TableOptions] = None,
        path: Optional[str] = None,
    ):
        self._stream = stream
        self._header = header
        self._schema = schema
        self._memo = memo
        self._options = options or TableOptions()
        self._path = path
        self._dirty = False
        self._closed = False

        encoding = self._options.encoding
        separator = self._options.decimal_separator
        if encoding is None or separator is None:
            if encoding is None or is_known_language(header.language):
                text_format = resolve_language(header.language)
                encoding = encoding or text_format.encoding
                separator = separator or text_format.decimal_separator
            else:
                separator = "."
        self._context = CodecContext(encoding, separator, memo)

    # ─── Open / Create / Close ──────────────────────────────────────

    @classmethod
    def from_streams(
        cls,
        stream: BinaryIO,
        memo_stream: Optional[BinaryIO] = None,
        options: Optional[TableOptions] = None,
    ) -> "DbfTable":
        """Attach to a table (and optional memo store) already open as streams."""
        header = read_header(stream)
        schema = read_descriptors(stream, header)
        memo = open_memo(memo_stream, header.version) if memo_stream is not None else None
        table = cls(stream, header, schema, memo, options)
        logger.debug(
            "Opened table: version 0x%02X, %d fields, %d records",
            header.version, len(schema), header.record_count,
        )
        return table

    @classmethod
    def open(cls, path: str, options: Optional[TableOptions] = None) -> "DbfTable":
        """Open a table file, picking up an adjacent .dbt/.fpt memo file."""
        stream = open(path, "r+b")
        memo_stream = None
        try:
            header = read_header(stream)
            schema = read_descriptors(stream, header)
            shape = memo_shape_for(header.version)
            memo_path = memo_path_for(path, shape) if shape is not None else None
            if memo_path is not None:
                memo_stream = open(memo_path, "r+b")
                memo = open_memo(memo_stream, header.version)
            else:
                memo = None
                if schema.has_memo_fields:
                    logger.warning("Table %s has memo fields but no memo file was found", path)
            table = cls(stream, header, schema, memo, options, path=os.path.abspath(path))
        except BaseException:
            stream.close()
            if memo_stream is not None:
                memo_stream.close()
            raise
        logger.debug("Opened %s (%d records)", path, header.record_count)
        return table

    @classmethod
    def create_streams(
        cls,
        stream: BinaryIO,
        schema: Schema,
        version: Optional[DbfVersion] = None,
        language: int = DbfLanguage.ANSI,
        memo_stream: Optional[BinaryIO] = None,
        options: Optional[TableOptions] = None,
    ) -> "DbfTable":
        """
        Write an empty table to the stream.

        Without an explicit version the table is dBASE III (0x03), or 0x83
        when the schema has memo-backed fields. A memo-less version given
        together with memo fields is upgraded to the nearest memo version.
        """
        options = options or TableOptions()
        version = DbfVersion(version) if version is not None else DbfVersion.DBASE_03
        if schema.has_memo_fields:
            version = version_for_memo(version)
            if memo_stream is None:
                raise ValueError("Schema has memo-backed fields; a memo stream is required")

        if version.is_foxpro and not schema.trailer:
            schema = Schema(schema.fields, bytes(DBC_BACKLINK_SIZE))
        if version.is_legacy:
            language = 0

        header = TableHeader.create(
            version,
            field_count=len(schema),
            record_length=schema.record_length,
            table_flags=schema.table_flags(),
            language=language,
            trailer_length=len(schema.trailer),
        )
        stream.seek(0)
        stream.truncate()
        write_schema_block(stream, header, schema)

        memo = None
        if schema.has_memo_fields:
            memo = create_memo(memo_stream, version, options.memo_block_length)
        logger.debug("Created table: version 0x%02X, %d fields", version, len(schema))
        return cls(stream, header, schema, memo, options)

    @classmethod
    def create(
        cls,
        path: str,
        schema: Schema,
        version: Optional[DbfVersion] = None,
        language: int = DbfLanguage.ANSI,
        options: Optional[TableOptions] = None,
    ) -> "DbfTable":
        """Create a new table file (and memo file). Fails if either exists."""
        resolved = DbfVersion(version) if version is not None else DbfVersion.DBASE_03
        memo_path = None
        if schema.has_memo_fields:
            resolved = version_for_memo(resolved)
            base, _ = os.path.splitext(path)
            memo_path = base + memo_shape_for(resolved).extension
            if os.path.exists(memo_path):
                raise FileExistsError(f"Memo file already exists: {memo_path}")

        stream = open(path, "x+b")
        memo_stream = None
        try:
            if memo_path is not None:
                memo_stream = open(memo_path, "x+b")
            table = cls.create_streams(stream, schema, resolved, language, memo_stream, options)
        except BaseException:
            # a failed create leaves neither file on disk
            stream.close()
            os.remove(path)
            if memo_stream is not None:
                memo_stream.close()
                os.remove(memo_path)
            raise
        table._path = os.path.abspath(path)
        return table

    def flush(self) -> None:
        """Persist the header if records were appended, then flush both files."""
        self._ensure_open()
        if self._dirty:
            write_header(self._stream, self._header)
            self._dirty = False
            logger.debug("Header rewritten: %d records", self._header.record_count)
        if self._memo is not None:
            self._memo.flush()
        self._stream.flush()

    def close(self) -> None:
        if self._closed:
            return
        self.flush()
        if self._memo is not None:
            self._memo.close()
        self._stream.close()
        self._closed = True
        logger.debug("Closed table %s", self._path or "<stream>")

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False

    # ─── Properties ─────────────────────────────────────────────────

    @property
    def header(self) -> TableHeader:
        return self._header

    @property
    def schema(self) -> Schema:
        return self._schema

    @property
    def version(self) -> DbfVersion:
        return self._header.version

    @property
    def encoding(self) -> str:
        return self._context.encoding

    @property
    def decimal_separator(self) -> str:
        return self._context.decimal_separator

    @property
    def memo(self) -> Optional[MemoStore]:
        return self._memo

    @property
    def path(self) -> Optional[str]:
        return self._path

    @property
    def last_update(self) -> date:
        return self._header.last_update

    def __len__(self) -> int:
        return self._header.record_count

    # ─── Reading ────────────────────────────────────────────────────

    def _offset(self, index: int) -> int:
        return self._header.header_length + index * self._header.record_length

    def _read_buffer(self, index: int) -> Optional[bytes]:
        self._stream.seek(self._offset(index))
        buffer = self._stream.read(self._header.record_length)
        if len(buffer) < self._header.record_length:
            return None
        return buffer

    def read(self, index: int) -> Record:
        """Read the record at a position. Raises IndexError."""
        self._ensure_open()
        if not 0 <= index < self._header.record_count:
            raise IndexError(f"Record {index} out of range (table has {self._header.record_count})")
        buffer = self._read_buffer(index)
        if buffer is None:
            raise IndexError(f"Record {index} is past the end of the file")
        return read_record(buffer, self._schema, self._context)

    def records(self) -> Iterator[Record]:
        """Lazily yield every record in file order."""
        self._ensure_open()
        for index in range(self._header.record_count):
            buffer = self._read_buffer(index)
            if buffer is None:
                logger.warning(
                    "Table truncated: header declares %d records, file holds %d",
                    self._header.record_count, index,
                )
                return
            yield read_record(buffer, self._schema, self._context)

    def __iter__(self) -> Iterator[Record]:
        return self.records()

    def read_typed(self, shape: type, include_deleted: bool = True) -> Iterator[Any]:
        """Lazily yield every record as an instance of `shape`."""
        projection = get_projection(self._schema, shape)
        for record in self.records():
            if record.is_deleted and not include_deleted:
                continue
            yield projection.from_values(record.values)

    def read_typed_at(self, index: int, shape: type) -> Any:
        return get_projection(self._schema, shape).from_values(self.read(index).values)

    # ─── Writing ────────────────────────────────────────────────────

    def append(self, values: Sequence[Any], status: RecordStatus = RecordStatus.VALID) -> int:
        """Append one record; returns its position."""
        self._ensure_open()
        index = self._header.record_count
        target = bytearray(b" " * self._header.record_length)
        write_record(values, self._schema, self._context, target, status)

        self._stream.seek(self._offset(index))
        self._stream.write(target)
        self._header = self._header.with_update(index + 1)
        self._dirty = True
        return index

    def append_record(self, record: Record) -> int:
        return self.append(record.values, record.status)

    def append_typed(self, obj: Any, status: RecordStatus = RecordStatus.VALID) -> int:
        """Append an instance of a user type, matched to fields by name."""
        projection = get_projection(self._schema, type(obj))
        return self.append(projection.to_values(obj), status)

    # ─── Internals ──────────────────────────────────────────────────

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("Table is closed")

    def __repr__(self) -> str:
        return (
            f"DbfTable(version=0x{self._header.version:02X}, "
            f"fields={len(self._schema)}, records={self._header.record_count})"
        )
