"""Chunked columnar export modules.

Provides the source adapters, schema resolution, part writing and
orchestration used to export tables into directories of part files.

Modules:
    models: Descriptors, batches, part files and outcomes.
    schema_detector: Resolve and freeze a table's column schema.
    codec: Encode typed columns as ORC or Parquet with pyarrow.
    part_writer: Write one batch as one atomically renamed part file.
    metadata_logger: Checksums and the aggregate run report.
    source_adapter: Capability interface shared by every adapter.
    database_ingestor: Windowed reads from a live database table.
    sql_dump_parser: Quote-aware statement and VALUES tokenizer.
    dump_ingestor: Read one table's rows out of a SQL dump.
    file_ingestor: Chunked reads of delimited text files.
    catalog: Table discovery and adapter construction per source kind.
    export_unit: State machine driving one table to completion.
    orchestrator: Bounded worker pool with retry and cancellation.
"""

from .models import (
    Compression,
    ExportOutcome,
    OutcomeStatus,
    OutputFormat,
    PaginationMode,
    PartFile,
    RowBatch,
    SourceKind,
    TableDescriptor,
)
from .schema_detector import (
    ColumnSchema,
    ColumnSpec,
    ColumnType,
    infer_column,
    map_declared_type,
    resolve_schema,
)
from .codec import encode
from .part_writer import PartWriter
from .metadata_logger import (
    ExportReport,
    build_report,
    compute_checksum,
    log_report,
    write_run_report,
)
from .source_adapter import SourceAdapter, SourceHandle
from .database_ingestor import CursorAdapter
from .sql_dump_parser import (
    DumpParseError,
    iter_statements,
    iter_value_tuples,
    parse_create_table,
    parse_insert,
)
from .dump_ingestor import DumpAdapter, scan_dump_tables
from .file_ingestor import FileAdapter, discover_files
from .catalog import SourceCatalog, parse_table_selector
from .export_unit import ExportUnit, UnitState
from .orchestrator import ExportOrchestrator, RetryPolicy

__all__ = [
    # Models
    "Compression",
    "ExportOutcome",
    "OutcomeStatus",
    "OutputFormat",
    "PaginationMode",
    "PartFile",
    "RowBatch",
    "SourceKind",
    "TableDescriptor",
    # Schema resolution
    "ColumnSchema",
    "ColumnSpec",
    "ColumnType",
    "infer_column",
    "map_declared_type",
    "resolve_schema",
    # Writing
    "encode",
    "PartWriter",
    # Run metadata
    "ExportReport",
    "build_report",
    "compute_checksum",
    "log_report",
    "write_run_report",
    # Source adapters
    "SourceAdapter",
    "SourceHandle",
    "CursorAdapter",
    "DumpParseError",
    "iter_statements",
    "iter_value_tuples",
    "parse_create_table",
    "parse_insert",
    "DumpAdapter",
    "scan_dump_tables",
    "FileAdapter",
    "discover_files",
    "SourceCatalog",
    "parse_table_selector",
    # Orchestration
    "ExportUnit",
    "UnitState",
    "ExportOrchestrator",
    "RetryPolicy",
]
