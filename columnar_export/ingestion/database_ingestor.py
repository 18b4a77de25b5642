"""Database ingestion: stream a live table in bounded windows.

Each open table holds one pooled connection for its whole lifetime. Rows
are fetched with windowed queries, either offset-bounded::

    SELECT * FROM t [ORDER BY pk] LIMIT :limit OFFSET :offset

or keyset-bounded on a stable, unique key::

    SELECT * FROM t [WHERE key > :last_key] ORDER BY key LIMIT :limit

A keyset key whose values repeat is checked for on open. Offset paging
without any key gives no ordering guarantee if the table is modified during
the export.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from columnar_export.errors import AdapterError
from .models import PaginationMode, RowBatch
from .source_adapter import SourceHandle, check_capacity
from columnar_export.utils.db_client import (
    count_rows,
    execute_query,
    has_unique_values,
    primary_key_columns,
    quote_identifier,
)

log = logging.getLogger(__name__)


@dataclass
class CursorHandle(SourceHandle):
    connection: Optional[Connection] = None
    mode: PaginationMode = PaginationMode.OFFSET
    order_columns: List[str] = field(default_factory=list)
    offset: int = 0
    last_key: Any = None


def build_offset_query(quoted_table: str, quoted_order: List[str]) -> str:
    """Build an offset-bounded window query."""
    order_clause = f" ORDER BY {', '.join(quoted_order)}" if quoted_order else ""
    return f"SELECT * FROM {quoted_table}{order_clause} LIMIT :limit OFFSET :offset"


def build_keyset_query(quoted_table: str, quoted_key: str, first_page: bool) -> str:
    """Build a keyset-bounded window query."""
    where_clause = "" if first_page else f" WHERE {quoted_key} > :last_key"
    return f"SELECT * FROM {quoted_table}{where_clause} ORDER BY {quoted_key} LIMIT :limit"


class CursorAdapter:
    """Source adapter over one table of a live database.

    Args:
        engine: Pooled SQLAlchemy engine shared by all units of the run.
        table_name: Table to export.
        pagination: Windowing strategy; ``auto`` uses keyset paging when the
            table has a single-column primary key.
        key_column: Explicit key for keyset paging. A key that is not unique
            falls back to offset paging ordered by the key under ``auto``
            and is rejected under ``keyset``.
    """

    def __init__(
        self,
        engine: Engine,
        table_name: str,
        pagination: PaginationMode = PaginationMode.AUTO,
        key_column: Optional[str] = None,
    ):
        self.engine = engine
        self.table_name = table_name
        self.pagination = pagination
        self.key_column = key_column

    def _plan(self, conn: Connection) -> CursorHandle:
        pk = primary_key_columns(conn, self.table_name)
        key = self.key_column or (pk[0] if len(pk) == 1 else None)

        # WHERE key > :last_key skips rows that share the boundary value
        if key is not None and self.pagination is not PaginationMode.OFFSET and pk != [key]:
            if not has_unique_values(conn, self.table_name, key):
                if self.pagination is PaginationMode.KEYSET:
                    raise AdapterError(
                        f"Key column '{key}' of table '{self.table_name}' is not unique",
                        context={"table": self.table_name, "key_column": key},
                    )
                log.warning("Key column %s of table %s is not unique; using offset paging", key, self.table_name)
                key = None

        if self.pagination is PaginationMode.KEYSET:
            if key is None:
                raise AdapterError(
                    f"Keyset pagination needs a key column for table '{self.table_name}'",
                    context={"table": self.table_name},
                )
            return CursorHandle(connection=conn, mode=PaginationMode.KEYSET, order_columns=[key])
        if self.pagination is PaginationMode.AUTO and key is not None:
            return CursorHandle(connection=conn, mode=PaginationMode.KEYSET, order_columns=[key])

        order = pk
        if self.key_column:
            order = [self.key_column] + [c for c in pk if c != self.key_column]
        if not order:
            log.warning("Table %s has no primary key; offset paging is unordered", self.table_name)
        return CursorHandle(connection=conn, mode=PaginationMode.OFFSET, order_columns=order)

    def open(self) -> CursorHandle:
        """Check out a connection and plan the window queries.

        Raises:
            AdapterError: If the connection or table cannot be accessed.
        """
        try:
            conn = self.engine.connect()
        except SQLAlchemyError as exc:
            raise AdapterError(f"Failed to connect for table '{self.table_name}': {exc}") from exc

        try:
            handle = self._plan(conn)
            handle.estimated_rows = count_rows(conn, self.table_name)
        except AdapterError:
            conn.close()
            raise
        except SQLAlchemyError as exc:
            conn.close()
            raise AdapterError(f"Failed to open table '{self.table_name}': {exc}") from exc

        log.info("Table %s has %d rows (%s paging on %s)", self.table_name, handle.estimated_rows,
                 handle.mode.value, ", ".join(handle.order_columns) or "no key")
        return handle

    def next_batch(self, handle: CursorHandle, capacity: int) -> Optional[RowBatch]:
        """Fetch the next window of at most ``capacity`` rows.

        Raises:
            AdapterError: If the query fails.
        """
        check_capacity(capacity)
        if handle.exhausted:
            return None

        conn = handle.connection
        quoted_table = quote_identifier(conn, self.table_name)
        quoted_order = [quote_identifier(conn, c) for c in handle.order_columns]

        if handle.mode is PaginationMode.KEYSET:
            first_page = handle.last_key is None
            sql = build_keyset_query(quoted_table, quoted_order[0], first_page)
            params = {"limit": capacity} if first_page else {"limit": capacity, "last_key": handle.last_key}
        else:
            sql = build_offset_query(quoted_table, quoted_order)
            params = {"limit": capacity, "offset": handle.offset}

        try:
            result = execute_query(conn, sql, params)
            columns = tuple(result.keys())
            rows = [tuple(row) for row in result.fetchall()]
        except SQLAlchemyError as exc:
            raise AdapterError(f"Failed to read table '{self.table_name}': {exc}") from exc

        if len(rows) < capacity:
            handle.exhausted = True
        if not rows:
            return None

        if handle.mode is PaginationMode.KEYSET:
            handle.last_key = rows[-1][self._key_index(columns, handle.order_columns[0])]
            if handle.last_key is None:
                raise AdapterError(
                    f"Key column '{handle.order_columns[0]}' of table '{self.table_name}' holds NULL values"
                )
        else:
            handle.offset += len(rows)
        return RowBatch(columns=columns, rows=rows)

    def _key_index(self, columns: tuple, key: str) -> int:
        folded = [str(c).lower() for c in columns]
        if key in columns:
            return columns.index(key)
        if key.lower() in folded:
            return folded.index(key.lower())
        raise AdapterError(f"Key column '{key}' not found in table '{self.table_name}'")

    def close(self, handle: CursorHandle) -> None:
        if handle.connection is not None:
            handle.connection.close()
            handle.connection = None
