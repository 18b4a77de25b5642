"""Command line entry point for columnar exports.

Exports every selected table of a source into ``<output-dir>/<table>/``
as a directory of columnar part files, then prints a per-table summary.

Usage:
    columnar-export export database mysql+mysqlconnector://user:pw@host/db --tables all
    columnar-export export dump backup.sql --output-dir ./orc_output --compression high-ratio
    columnar-export export csv ./exports --delimiter ';' --no-header
    columnar-export inspect ./orc_output

Exit codes: 0 when every table succeeded, 1 when at least one failed,
2 when the source is unreachable or the configuration is invalid, 130 when
the run was interrupted.
"""

import argparse
import logging
import signal
import sys
import threading
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from columnar_export.config.pipeline_config import PipelineConfig
from columnar_export.errors import AdapterError, PartWriteError, SourceConnectionError
from columnar_export.ingestion.catalog import SourceCatalog
from columnar_export.ingestion.metadata_logger import build_report, log_report, write_run_report
from columnar_export.ingestion.models import Compression, OutputFormat, PaginationMode, SourceKind
from columnar_export.ingestion.orchestrator import ExportOrchestrator, RetryPolicy
from columnar_export.ingestion.part_writer import PartWriter
from columnar_export.utils.db_client import get_engine, verify_connection
from columnar_export.utils.logging_config import export_logging_context, setup_logging
from columnar_export.utils.storage import describe_table, list_table_directories

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_UNREACHABLE = 2
EXIT_INTERRUPTED = 130

COMPRESSION_CHOICES = ["fast", "high-ratio", "none", "snappy", "zstd", "uncompressed"]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="columnar-export",
        description="Export database tables, SQL dumps and delimited files into columnar part files",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    export = subparsers.add_parser("export", help="Export the tables of a source")
    export.add_argument("source_kind", choices=[k.value for k in SourceKind], help="Kind of source")
    export.add_argument(
        "source",
        nargs="?",
        default=None,
        help="Database URL, dump file, or CSV file/directory (database default: MYSQL_* env vars)",
    )
    export.add_argument("--output-dir", default=None, help="Output root directory (default: ./orc_output)")
    export.add_argument("--compression", choices=COMPRESSION_CHOICES, default=None,
                        help="Compression of the part files (default: fast/snappy)")
    export.add_argument("--format", dest="output_format", choices=[f.value for f in OutputFormat], default=None,
                        help="Columnar file format (default: orc)")
    export.add_argument("--tables", default="all", help="'all' or a comma separated list of tables")
    export.add_argument("--chunk-size", type=int, default=None, help="Rows per part (default: 50000)")
    export.add_argument("--max-concurrency", type=int, default=None,
                        help="Tables exported at the same time (default: 4)")
    export.add_argument("--pagination", choices=[m.value for m in PaginationMode], default=None,
                        help="Database windowing strategy (default: auto)")
    export.add_argument("--key-column", default=None, help="Key column for keyset pagination")
    export.add_argument("--delimiter", default=None, help="CSV field delimiter (default: ',')")
    export.add_argument("--no-header", action="store_true", help="CSV files have no header line")
    export.add_argument("--no-infer-schema", action="store_true", help="Store every CSV column as text")
    export.add_argument("--pattern", default=None, help="Glob pattern for CSV directories (default: *.csv)")
    export.add_argument("--encoding", default=None, help="Text encoding of dump and CSV sources")
    export.add_argument("--retries", type=int, default=None,
                        help="Re-run a table this many times after a read or write failure (default: 0)")
    export.add_argument("--no-overwrite", action="store_true",
                        help="Fail tables whose output directory already holds parts")
    export.add_argument("--report-file", default=None, help="Write the run report as JSON to this path")
    export.add_argument("--log-level", default=None, help="Log level (default: INFO)")
    export.add_argument("--log-file", default=None, help="Also write log lines to this file")

    inspect_cmd = subparsers.add_parser("inspect", help="Summarise an output directory")
    inspect_cmd.add_argument("output_dir", help="Output root directory")
    inspect_cmd.add_argument("--log-level", default=None, help="Log level (default: INFO)")
    return parser


def _apply_overrides(config: PipelineConfig, args: argparse.Namespace) -> PipelineConfig:
    """Let command line flags take precedence over environment defaults."""
    export = config.export
    if args.output_dir:
        export.output_dir = args.output_dir
    if args.compression:
        export.compression = args.compression
    if args.output_format:
        export.output_format = args.output_format
    if args.chunk_size is not None:
        export.chunk_size = args.chunk_size
    if args.max_concurrency is not None:
        export.max_concurrency = args.max_concurrency
    if args.pagination:
        export.pagination = args.pagination
    if args.key_column:
        export.key_column = args.key_column
    if args.retries is not None:
        export.retries = args.retries
    if args.no_overwrite:
        export.overwrite = False

    csv = config.csv
    if args.delimiter:
        csv.delimiter = args.delimiter
    if args.no_header:
        csv.has_header = False
    if args.no_infer_schema:
        csv.infer_schema = False
    if args.pattern:
        csv.pattern = args.pattern
    if args.encoding:
        csv.encoding = args.encoding

    if args.log_level:
        config.log_level = args.log_level
    return config


def _new_run_id() -> str:
    return f"{datetime.now(timezone.utc).strftime('%Y%m%dT%H%M%S')}-{uuid.uuid4().hex[:8]}"


def _print_summary(report) -> None:
    print()
    print("=" * 60)
    print(" Export summary")
    print("=" * 60)
    for outcome in report.outcomes:
        status = "OK" if outcome.is_success else "FAILED"
        line = f"  [{status:6}] {outcome.table_name}: {outcome.row_count} rows, {outcome.part_count} parts"
        if not outcome.is_success:
            line += f" ({outcome.error_type}: {outcome.error})"
        print(line)
    print()
    print(f"  {len(report.succeeded)}/{len(report.outcomes)} tables successful, "
          f"{report.total_rows} rows in {report.total_parts} parts")


def run_export(args: argparse.Namespace) -> int:
    config = _apply_overrides(PipelineConfig(), args)
    setup_logging(config.log_level, args.log_file)

    errors = config.validate()
    if errors:
        log.error("Configuration errors: %s", "; ".join(errors))
        return EXIT_UNREACHABLE

    run_id = _new_run_id()
    started_at = datetime.now(timezone.utc).isoformat()
    source_kind = SourceKind(args.source_kind)
    export = config.export

    with export_logging_context(run_id):
        engine = None
        try:
            if source_kind is SourceKind.DATABASE:
                engine = get_engine(args.source or config.database.connection_string, pool_size=export.max_concurrency)
                verify_connection(engine)
            elif not args.source:
                log.error("A %s source needs a path", source_kind.value)
                return EXIT_UNREACHABLE

            catalog = SourceCatalog(
                source_kind,
                args.source or "",
                export.output_dir,
                engine=engine,
                pagination=PaginationMode(export.pagination.lower()),
                key_column=export.key_column,
                delimiter=config.csv.delimiter,
                has_header=config.csv.has_header,
                pattern=config.csv.pattern,
                encoding=config.csv.encoding,
            )
            descriptors = catalog.descriptors(args.tables)
        except SourceConnectionError as exc:
            log.error("Source unreachable: %s", exc)
            if engine is not None:
                engine.dispose()
            return EXIT_UNREACHABLE

        writer = PartWriter(
            Compression.from_name(export.compression),
            OutputFormat(export.output_format.lower()),
            overwrite=export.overwrite,
        )
        orchestrator = ExportOrchestrator(
            catalog.adapter_for,
            writer,
            export.chunk_size,
            retry_policy=RetryPolicy(
                max_attempts=export.retries + 1,
                backoff_seconds=1.0,
                retry_on=(AdapterError, PartWriteError),
            ),
            infer_types=config.csv.infer_schema if source_kind is SourceKind.FILE else True,
        )

        previous_handler = None
        if threading.current_thread() is threading.main_thread():
            previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: orchestrator.cancel())
        try:
            outcomes = orchestrator.run(descriptors, export.max_concurrency)
        finally:
            if previous_handler is not None:
                signal.signal(signal.SIGINT, previous_handler)
            if engine is not None:
                engine.dispose()

        report = build_report(outcomes, run_id=run_id, started_at=started_at)
        log_report(report)
        if args.report_file:
            write_run_report(report, args.report_file)

    _print_summary(report)
    print(f"  Output: {export.output_dir}")
    if orchestrator.cancelled:
        return EXIT_INTERRUPTED
    return report.exit_code


def run_inspect(args: argparse.Namespace) -> int:
    setup_logging(args.log_level)
    directories = list_table_directories(args.output_dir)
    if not directories:
        print(f"No exported tables found in {args.output_dir}")
        return EXIT_FAILED

    healthy = True
    for directory in directories:
        try:
            info = describe_table(directory)
        except (OSError, ValueError) as exc:
            print(f"  {directory.name}: unreadable ({exc})")
            healthy = False
            continue

        flags = []
        if not info["contiguous"]:
            flags.append("sequence gap")
        if info["temp_files"]:
            flags.append(f"{info['temp_files']} temp files")
        suffix = f"  [{', '.join(flags)}]" if flags else ""
        print(f"  {info['table']}: {info['parts']} parts, {info['rows']} rows, {info['size_bytes']} bytes{suffix}")
        if info["schema"]:
            print("      " + ", ".join(f"{c['name']}:{c['type']}" for c in info["schema"]))
        healthy = healthy and not flags

    return EXIT_OK if healthy else EXIT_FAILED


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "inspect":
        return run_inspect(args)
    return run_export(args)


if __name__ == "__main__":
    sys.exit(main())
