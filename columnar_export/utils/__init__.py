"""Shared utility functions for export runs."""

from columnar_export.utils.db_client import get_engine, verify_connection, list_tables, count_rows
from columnar_export.utils.logging_config import get_logger, setup_logging, export_logging_context
from columnar_export.utils.storage import table_directory, list_part_files, read_table, describe_table

__all__ = [
    "get_engine",
    "verify_connection",
    "list_tables",
    "count_rows",
    "get_logger",
    "setup_logging",
    "export_logging_context",
    "table_directory",
    "list_part_files",
    "read_table",
    "describe_table",
]
