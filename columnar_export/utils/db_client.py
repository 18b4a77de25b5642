"""Source database client utilities."""

import logging
from contextlib import contextmanager
from typing import Any, List, Optional

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.exc import SQLAlchemyError

from columnar_export.errors import SourceConnectionError

log = logging.getLogger(__name__)


def get_engine(connection_string: str, pool_size: int = 4, **kwargs: Any) -> Engine:
    """Create a SQLAlchemy engine sized for the export worker pool.

    Args:
        connection_string: SQLAlchemy URL of the source database.
        pool_size: Number of pooled connections, normally the maximum
            number of concurrent export units.
        **kwargs: Extra ``create_engine`` arguments.

    Returns:
        SQLAlchemy Engine instance.

    Raises:
        SourceConnectionError: If the URL is invalid or the driver is missing.
    """
    try:
        url = make_url(connection_string)
    except Exception as exc:
        raise SourceConnectionError(f"Invalid database URL: {exc}") from exc

    options = {"pool_pre_ping": True}
    if url.get_backend_name() == "sqlite":
        options["connect_args"] = {"check_same_thread": False}
    else:
        options["pool_size"] = pool_size
        options["max_overflow"] = 0
    options.update(kwargs)

    try:
        engine = create_engine(url, **options)
    except (SQLAlchemyError, ImportError) as exc:
        raise SourceConnectionError(f"Failed to create engine for {url.render_as_string(hide_password=True)}: {exc}") from exc

    log.info("Database engine created for %s (pool_size=%d)", url.render_as_string(hide_password=True), pool_size)
    return engine


@contextmanager
def _get_connection(engine: Engine):
    """Context manager for database connections with automatic cleanup."""
    conn = engine.connect()
    try:
        yield conn
    finally:
        conn.close()


def verify_connection(engine: Engine) -> None:
    """Check that the source database is reachable.

    Raises:
        SourceConnectionError: If a connection cannot be established.
    """
    try:
        with _get_connection(engine) as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        raise SourceConnectionError(f"Cannot connect to source database: {exc}") from exc
    log.info("Source database connection verified")


def list_tables(engine: Engine, schema: Optional[str] = None) -> List[str]:
    """List the tables of the source database.

    Raises:
        SourceConnectionError: If the catalog cannot be read.
    """
    try:
        names = inspect(engine).get_table_names(schema=schema)
    except SQLAlchemyError as exc:
        raise SourceConnectionError(f"Failed to list tables: {exc}") from exc
    log.info("Found %d tables in source database", len(names))
    return sorted(names)


def quote_identifier(engine_or_conn: Any, name: str) -> str:
    """Quote a table or column name for the connection's dialect."""
    return engine_or_conn.dialect.identifier_preparer.quote(name)


def count_rows(conn: Connection, table_name: str) -> int:
    """Return ``SELECT COUNT(*)`` for a table."""
    sql = f"SELECT COUNT(*) FROM {quote_identifier(conn, table_name)}"
    return int(conn.execute(text(sql)).scalar() or 0)


def has_unique_values(conn: Connection, table_name: str, column: str) -> bool:
    """Return True when the non-NULL values of a column are all distinct."""
    quoted = quote_identifier(conn, column)
    sql = f"SELECT COUNT({quoted}), COUNT(DISTINCT {quoted}) FROM {quote_identifier(conn, table_name)}"
    total, distinct = conn.execute(text(sql)).one()
    return int(total or 0) == int(distinct or 0)


def primary_key_columns(conn: Connection, table_name: str) -> List[str]:
    """Return the primary key columns of a table (empty if none)."""
    constraint = inspect(conn).get_pk_constraint(table_name) or {}
    return list(constraint.get("constrained_columns") or [])


def execute_query(conn: Connection, sql: str, params: Optional[dict] = None) -> Any:
    """Execute a SQL query on an open connection and return the result."""
    result = conn.execute(text(sql), params or {})
    log.debug("Executed query: %s", sql[:100])
    return result
