"""
xbase Table Tests
=================
Covers:
  ✔ create / append / flush / reopen on streams and on disk
  ✔ record count equals enumerated records
  ✔ truncated files end enumeration early
  ✔ memo tables (dBASE III and Visual FoxPro)
  ✔ typed append / read
  ✔ language-driven encoding and decimal separator
  ✔ legacy dBASE II tables
"""

import gc
import io
import os
import shutil
import struct
import sys
import tempfile
import warnings
from dataclasses import dataclass
from datetime import date
from types import GeneratorType

import pytest

# Ensure project root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from xbase.config import TableOptions
from xbase.errors import FieldEncodeError, MemoError, UnsupportedLanguageError
from xbase.header import TableFlags
from xbase.languages import DbfLanguage
from xbase.memo import DbtMemoStore, FptMemoStore
from xbase.projection import clear_projection_cache
from xbase.schema import FieldDescriptor, Schema
from xbase.serializer import Record, RecordStatus
from xbase.table import DbfTable
from xbase.types import FieldType
from xbase.versions import DbfVersion


# ═══════════════════════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def tmp_dir():
    """Create a temporary directory for test files."""
    path = tempfile.mkdtemp(prefix="xbase_test_")
    yield path
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def people_schema():
    return Schema([
        FieldDescriptor.numeric("ID", 5),
        FieldDescriptor.text("NAME", 12),
        FieldDescriptor.numeric("SALARY", 10, 2),
        FieldDescriptor.date("HIRED"),
    ])


@pytest.fixture
def memo_schema():
    return Schema([FieldDescriptor.text("TITLE", 20), FieldDescriptor.memo("BODY")])


@pytest.fixture(autouse=True)
def fresh_cache():
    clear_projection_cache()
    yield


ROWS = [
    [1, "Alice", 5000.5, date(2020, 1, 15)],
    [2, "Bob", 4200.0, None],
    [3, "Carol", None, date(2021, 7, 1)],
]


@dataclass
class Employee:
    name: str
    id: int
    hired: date = None


# ═══════════════════════════════════════════════════════════════════════════
# 1. Streams
# ═══════════════════════════════════════════════════════════════════════════

class TestStreamTables:

    def test_create_empty(self, people_schema):
        stream = io.BytesIO()
        table = DbfTable.create_streams(stream, people_schema)
        assert table.version is DbfVersion.DBASE_03
        assert table.header.header_length == 32 + 4 * 32 + 1
        assert table.header.record_length == people_schema.record_length
        assert len(table) == 0
        assert list(table) == []
        assert stream.getvalue()[table.header.header_length - 1] == 0x0D

    def test_append_and_reopen(self, people_schema):
        stream = io.BytesIO()
        table = DbfTable.create_streams(stream, people_schema, language=DbfLanguage.WINDOWS_ANSI_1252)
        for row in ROWS:
            table.append(row)
        table.flush()

        reopened = DbfTable.from_streams(stream)
        assert len(reopened) == 3
        assert [r.values for r in reopened] == ROWS

    def test_record_count_matches_enumeration(self, people_schema):
        stream = io.BytesIO()
        table = DbfTable.create_streams(stream, people_schema)
        for i in range(17):
            table.append([i, f"n{i}", float(i), None])
        table.flush()
        reopened = DbfTable.from_streams(stream)
        assert reopened.header.record_count == len(list(reopened)) == 17

    def test_flush_writes_count_and_date(self, people_schema):
        stream = io.BytesIO()
        table = DbfTable.create_streams(stream, people_schema)
        table.append(ROWS[0])
        table.append(ROWS[1])
        table.flush()
        data = stream.getvalue()
        assert struct.unpack_from("<I", data, 4)[0] == 2
        assert table.last_update == date.today()

    def test_records_are_lazy(self, people_schema):
        table = DbfTable.create_streams(io.BytesIO(), people_schema)
        table.append(ROWS[0])
        records = table.records()
        assert isinstance(records, GeneratorType)
        assert next(records).values == ROWS[0]

    def test_truncated_file_ends_early(self, people_schema):
        stream = io.BytesIO()
        table = DbfTable.create_streams(stream, people_schema)
        for row in ROWS:
            table.append(row)
        table.flush()
        truncated = io.BytesIO(stream.getvalue()[:-5])
        reopened = DbfTable.from_streams(truncated)
        assert len(reopened) == 3
        assert [r.values for r in reopened] == ROWS[:2]

    def test_read_by_index(self, people_schema):
        table = DbfTable.create_streams(io.BytesIO(), people_schema)
        for row in ROWS:
            table.append(row)
        assert table.read(1).values == ROWS[1]
        with pytest.raises(IndexError):
            table.read(3)
        with pytest.raises(IndexError):
            table.read(-1)

    def test_deleted_records(self, people_schema):
        table = DbfTable.create_streams(io.BytesIO(), people_schema)
        table.append(ROWS[0], RecordStatus.DELETED)
        table.append_record(Record(RecordStatus.VALID, ROWS[1]))
        statuses = [r.is_deleted for r in table]
        assert statuses == [True, False]

    def test_non_finite_append_writes_nothing(self, people_schema):
        table = DbfTable.create_streams(io.BytesIO(), people_schema)
        with pytest.raises(FieldEncodeError):
            table.append([1, "Nan", float("nan"), None])
        assert len(table) == 0
        table.append(ROWS[0])
        assert [r.values for r in table] == [ROWS[0]]

    def test_memo_schema_needs_memo_stream(self, memo_schema):
        with pytest.raises(ValueError):
            DbfTable.create_streams(io.BytesIO(), memo_schema)

    def test_closed_table(self, people_schema):
        table = DbfTable.create_streams(io.BytesIO(), people_schema)
        table.close()
        with pytest.raises(RuntimeError):
            table.read(0)


# ═══════════════════════════════════════════════════════════════════════════
# 2. Memo tables
# ═══════════════════════════════════════════════════════════════════════════

class TestMemoTables:

    def test_dbase_iii_memo(self, memo_schema):
        dbf, dbt = io.BytesIO(), io.BytesIO()
        table = DbfTable.create_streams(dbf, memo_schema, memo_stream=dbt)
        assert table.version is DbfVersion.DBASE_83
        assert table.header.table_flags == TableFlags.HAS_MEMO_FIELD
        assert isinstance(table.memo, DbtMemoStore)

        long_text = "lorem ipsum " * 100
        table.append(["short", "hello"])
        table.append(["long", long_text])
        table.append(["empty", ""])
        table.flush()

        reopened = DbfTable.from_streams(dbf, dbt)
        assert [r.values for r in reopened] == [
            ["short", "hello"], ["long", long_text], ["empty", ""],
        ]

    def test_visual_foxpro_memo(self):
        schema = Schema([
            FieldDescriptor.autoincrement("ID"),
            FieldDescriptor.memo("NOTES", length=4),
            FieldDescriptor.binary_memo("DATA", FieldType.BLOB),
            FieldDescriptor.currency("PRICE"),
        ])
        dbf, fpt = io.BytesIO(), io.BytesIO()
        table = DbfTable.create_streams(
            dbf, schema, DbfVersion.VISUAL_FOXPRO, memo_stream=fpt,
            options=TableOptions(memo_block_length=64),
        )
        assert isinstance(table.memo, FptMemoStore)
        assert table.schema.trailer == bytes(263)
        assert table.header.header_length == 32 + 4 * 32 + 1 + 263

        table.append([1, "note", b"\x00\x01", None])
        table.flush()

        reopened = DbfTable.from_streams(dbf, fpt)
        assert reopened.schema.trailer == bytes(263)
        record = reopened.read(0)
        assert record.values[:3] == [1, "note", b"\x00\x01"]
        assert reopened.memo.block_length == 64

    def test_missing_memo_store_on_read(self, memo_schema):
        dbf, dbt = io.BytesIO(), io.BytesIO()
        table = DbfTable.create_streams(dbf, memo_schema, memo_stream=dbt)
        table.append(["t", "body"])
        table.flush()
        reopened = DbfTable.from_streams(dbf)
        with pytest.raises(MemoError):
            list(reopened)


# ═══════════════════════════════════════════════════════════════════════════
# 3. Files on disk
# ═══════════════════════════════════════════════════════════════════════════

class TestFileTables:

    def test_create_close_open(self, tmp_dir, people_schema):
        path = os.path.join(tmp_dir, "people.dbf")
        with DbfTable.create(path, people_schema) as table:
            for row in ROWS:
                table.append(row)

        with DbfTable.open(path) as table:
            assert table.path == os.path.abspath(path)
            assert [r.values for r in table] == ROWS

    def test_memo_file_is_found(self, tmp_dir, memo_schema):
        path = os.path.join(tmp_dir, "notes.dbf")
        with DbfTable.create(path, memo_schema) as table:
            table.append(["a", "memo body"])
        assert os.path.exists(os.path.join(tmp_dir, "notes.dbt"))

        with DbfTable.open(path) as table:
            assert isinstance(table.memo, DbtMemoStore)
            assert table.read(0).values == ["a", "memo body"]

    def test_foxpro_memo_file(self, tmp_dir, memo_schema):
        path = os.path.join(tmp_dir, "fox.dbf")
        with DbfTable.create(path, memo_schema, DbfVersion.VISUAL_FOXPRO) as table:
            table.append(["a", "fox memo"])
        assert os.path.exists(os.path.join(tmp_dir, "fox.fpt"))
        with DbfTable.open(path) as table:
            assert table.read(0).values == ["a", "fox memo"]

    def test_create_refuses_existing(self, tmp_dir, people_schema):
        path = os.path.join(tmp_dir, "dup.dbf")
        DbfTable.create(path, people_schema).close()
        with pytest.raises(FileExistsError):
            DbfTable.create(path, people_schema)

    def test_existing_memo_file_leaves_no_table(self, tmp_dir, memo_schema):
        path = os.path.join(tmp_dir, "orphan.dbf")
        memo_path = os.path.join(tmp_dir, "orphan.dbt")
        with open(memo_path, "wb") as f:
            f.write(b"stale")

        with pytest.raises(FileExistsError):
            DbfTable.create(path, memo_schema)
        assert not os.path.exists(path)

        os.remove(memo_path)
        with DbfTable.create(path, memo_schema) as table:
            table.append(["a", "fresh"])
        with DbfTable.open(path) as table:
            assert table.read(0).values == ["a", "fresh"]

    def test_unknown_language_closes_files(self, tmp_dir, memo_schema):
        path = os.path.join(tmp_dir, "lang.dbf")
        DbfTable.create(path, memo_schema).close()
        with open(path, "r+b") as f:
            f.seek(29)
            f.write(b"\x26")

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            with pytest.raises(UnsupportedLanguageError):
                DbfTable.open(path)
            gc.collect()
        leaks = [w for w in caught if issubclass(w.category, ResourceWarning)]
        assert leaks == []

        with DbfTable.open(path, TableOptions(encoding="latin-1")) as table:
            assert len(table) == 0


# ═══════════════════════════════════════════════════════════════════════════
# 4. Typed access
# ═══════════════════════════════════════════════════════════════════════════

class TestTypedTables:

    def test_append_and_read_typed(self, people_schema):
        table = DbfTable.create_streams(io.BytesIO(), people_schema)
        table.append_typed(Employee("Dana", 8, date(2019, 3, 4)))
        table.append_typed(Employee("Eli", 9))
        assert list(table.read_typed(Employee)) == [
            Employee("Dana", 8, date(2019, 3, 4)),
            Employee("Eli", 9, None),
        ]
        # SALARY has no member and was written blank
        assert table.read(0).values[2] is None

    def test_read_typed_skips_deleted(self, people_schema):
        table = DbfTable.create_streams(io.BytesIO(), people_schema)
        table.append_typed(Employee("Gone", 1), RecordStatus.DELETED)
        table.append_typed(Employee("Here", 2))
        assert [e.name for e in table.read_typed(Employee, include_deleted=False)] == ["Here"]
        assert table.read_typed_at(0, Employee).name == "Gone"


# ═══════════════════════════════════════════════════════════════════════════
# 5. Languages and legacy tables
# ═══════════════════════════════════════════════════════════════════════════

class TestTextFormat:

    def test_language_sets_encoding(self):
        schema = Schema([FieldDescriptor.text("NAME", 10), FieldDescriptor.numeric("AMT", 8, 2)])
        stream = io.BytesIO()
        table = DbfTable.create_streams(stream, schema, language=DbfLanguage.RUSSIAN_WINDOWS_1251)
        assert table.encoding == "cp1251"
        assert table.decimal_separator == " "
        table.append(["Привет", 1.25])
        table.flush()

        raw = stream.getvalue()
        record_start = table.header.header_length
        assert raw[record_start + 11:record_start + 19] == b"    1 25"

        reopened = DbfTable.from_streams(stream)
        assert reopened.read(0).values == ["Привет", 1.25]

    def test_unknown_language_needs_override(self):
        schema = Schema([FieldDescriptor.text("NAME", 10)])
        stream = io.BytesIO()
        table = DbfTable.create_streams(
            stream, schema, language=0x99, options=TableOptions(encoding="latin-1"),
        )
        assert table.encoding == "latin-1"
        assert table.decimal_separator == "."
        table.flush()
        with pytest.raises(UnsupportedLanguageError):
            DbfTable.from_streams(stream)

    def test_options_override_separator(self):
        schema = Schema([FieldDescriptor.numeric("AMT", 6, 1)])
        table = DbfTable.create_streams(
            io.BytesIO(), schema, options=TableOptions(decimal_separator=","),
        )
        assert table.encoding == "ascii"
        assert table.decimal_separator == ","


class TestLegacyTables:

    def test_legacy_round_trip(self):
        schema = Schema([FieldDescriptor.numeric("ID", 4), FieldDescriptor.text("NAME", 8)])
        stream = io.BytesIO()
        table = DbfTable.create_streams(stream, schema, DbfVersion.DBASE_02)
        assert table.header.header_length == 521
        table.append([1, "ann"])
        table.append([2, "ben"])
        table.flush()

        data = stream.getvalue()
        assert len(data) == 521 + 2 * 13
        assert data[8 + 2 * 16] == 0x0D

        reopened = DbfTable.from_streams(stream)
        assert reopened.header.is_legacy
        assert [r.values for r in reopened] == [[1, "ann"], [2, "ben"]]
