"""Tests for the database cursor adapter."""

from unittest.mock import MagicMock

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from columnar_export.errors import AdapterError, SourceConnectionError
from columnar_export.ingestion.database_ingestor import (
    CursorAdapter,
    build_keyset_query,
    build_offset_query,
)
from columnar_export.ingestion.models import PaginationMode
from columnar_export.utils.db_client import get_engine, list_tables, verify_connection


def _drain(adapter, capacity):
    handle = adapter.open()
    batches = []
    try:
        batch = adapter.next_batch(handle, capacity)
        while batch is not None:
            batches.append(batch)
            batch = adapter.next_batch(handle, capacity)
    finally:
        adapter.close(handle)
    return batches


def _create_grouped_table(engine):
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE grouped (id INTEGER PRIMARY KEY, grp INTEGER)"))
        conn.execute(
            text("INSERT INTO grouped (id, grp) VALUES (:id, :grp)"),
            [{"id": i, "grp": g} for i, g in zip(range(1, 7), [1, 1, 2, 2, 3, 3])],
        )


class TestQueryBuilders:
    """Tests for the window query builders."""

    def test_offset_query_with_order(self):
        sql = build_offset_query('"t"', ['"a"', '"b"'])
        assert sql == 'SELECT * FROM "t" ORDER BY "a", "b" LIMIT :limit OFFSET :offset'

    def test_offset_query_without_order(self):
        assert build_offset_query("t", []) == "SELECT * FROM t LIMIT :limit OFFSET :offset"

    def test_keyset_first_page(self):
        assert build_keyset_query("t", "id", True) == "SELECT * FROM t ORDER BY id LIMIT :limit"

    def test_keyset_next_page(self):
        sql = build_keyset_query("t", "id", False)
        assert sql == "SELECT * FROM t WHERE id > :last_key ORDER BY id LIMIT :limit"


class TestDbClient:
    """Tests for the database client helpers."""

    def test_lists_tables(self, sqlite_engine):
        assert list_tables(sqlite_engine) == ["accounts", "events", "nothing"]

    def test_verify_connection(self, sqlite_engine):
        verify_connection(sqlite_engine)

    def test_invalid_url_raises(self):
        with pytest.raises(SourceConnectionError, match="Invalid database URL"):
            get_engine("not a url")

    def test_unreachable_database_raises(self):
        engine = MagicMock()
        engine.connect.side_effect = OperationalError("SELECT 1", {}, Exception("refused"))
        with pytest.raises(SourceConnectionError, match="Cannot connect"):
            verify_connection(engine)


class TestCursorAdapter:
    """Tests for CursorAdapter."""

    def test_keyset_paging_on_primary_key(self, sqlite_engine):
        adapter = CursorAdapter(sqlite_engine, "accounts")
        handle = adapter.open()
        try:
            assert handle.mode is PaginationMode.KEYSET
            assert handle.order_columns == ["id"]
            assert handle.estimated_rows == 7
        finally:
            adapter.close(handle)

        batches = _drain(CursorAdapter(sqlite_engine, "accounts"), 3)
        assert [len(b) for b in batches] == [3, 3, 1]
        assert batches[0].columns == ("id", "owner", "amount")
        assert [r[0] for b in batches for r in b.rows] == list(range(1, 8))

    def test_offset_paging_without_key(self, sqlite_engine):
        adapter = CursorAdapter(sqlite_engine, "events")
        handle = adapter.open()
        try:
            assert handle.mode is PaginationMode.OFFSET
            assert handle.order_columns == []
        finally:
            adapter.close(handle)

        batches = _drain(CursorAdapter(sqlite_engine, "events"), 2)
        assert [len(b) for b in batches] == [2, 1]

    def test_forced_offset_orders_by_primary_key(self, sqlite_engine):
        adapter = CursorAdapter(sqlite_engine, "accounts", PaginationMode.OFFSET)
        batches = _drain(adapter, 4)
        assert [r[0] for b in batches for r in b.rows] == list(range(1, 8))

    def test_explicit_key_column(self, sqlite_engine):
        adapter = CursorAdapter(sqlite_engine, "events", PaginationMode.KEYSET, key_column="happened_at")
        batches = _drain(adapter, 2)
        timestamps = [r[1] for b in batches for r in b.rows]
        assert timestamps == sorted(timestamps)
        assert len(timestamps) == 3

    def test_duplicate_key_falls_back_to_offset(self, sqlite_engine):
        _create_grouped_table(sqlite_engine)
        adapter = CursorAdapter(sqlite_engine, "grouped", key_column="grp")
        handle = adapter.open()
        try:
            assert handle.mode is PaginationMode.OFFSET
            assert handle.order_columns == ["grp", "id"]
        finally:
            adapter.close(handle)

        batches = _drain(CursorAdapter(sqlite_engine, "grouped", key_column="grp"), 3)
        assert [len(b) for b in batches] == [3, 3]
        assert [r[0] for b in batches for r in b.rows] == [1, 2, 3, 4, 5, 6]

    def test_duplicate_key_rejected_for_keyset(self, sqlite_engine):
        _create_grouped_table(sqlite_engine)
        adapter = CursorAdapter(sqlite_engine, "grouped", PaginationMode.KEYSET, key_column="grp")
        with pytest.raises(AdapterError, match="is not unique"):
            adapter.open()

    def test_keyset_without_key_raises(self, sqlite_engine):
        adapter = CursorAdapter(sqlite_engine, "events", PaginationMode.KEYSET)
        with pytest.raises(AdapterError, match="needs a key column"):
            adapter.open()

    def test_exact_multiple_of_capacity(self, sqlite_engine):
        batches = _drain(CursorAdapter(sqlite_engine, "accounts"), 7)
        assert [len(b) for b in batches] == [7]

    def test_empty_table(self, sqlite_engine):
        assert _drain(CursorAdapter(sqlite_engine, "nothing"), 5) == []

    def test_missing_table_raises_on_open(self, sqlite_engine):
        with pytest.raises(AdapterError, match="Failed to open table 'ghost'"):
            CursorAdapter(sqlite_engine, "ghost").open()

    def test_null_key_raises(self, sqlite_engine):
        with sqlite_engine.begin() as conn:
            conn.execute(text("INSERT INTO events (kind, happened_at) VALUES ('odd', NULL)"))
        adapter = CursorAdapter(sqlite_engine, "events", PaginationMode.KEYSET, key_column="happened_at")
        handle = adapter.open()
        try:
            # NULL sorts first in SQLite
            with pytest.raises(AdapterError, match="holds NULL values"):
                adapter.next_batch(handle, 1)
        finally:
            adapter.close(handle)

    @pytest.mark.parametrize("capacity", [1, 100, 100000])
    def test_capacity_is_never_exceeded(self, sqlite_engine, capacity):
        batches = _drain(CursorAdapter(sqlite_engine, "accounts"), capacity)
        assert all(0 < len(b) <= capacity for b in batches)
        assert sum(len(b) for b in batches) == 7

    def test_close_releases_connection(self, sqlite_engine):
        adapter = CursorAdapter(sqlite_engine, "accounts")
        handle = adapter.open()
        adapter.close(handle)
        assert handle.connection is None
