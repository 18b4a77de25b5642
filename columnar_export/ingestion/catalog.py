"""Table discovery and adapter construction for each source kind.

The catalog turns a source location and a table selector into table
descriptors, and builds the matching source adapter for each descriptor.
Tables that were requested by name but do not exist in the source still get
a descriptor, so their failure shows up in the run report. The same holds
for a table whose name maps to the output directory of an earlier table.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

from sqlalchemy.engine import Engine

from columnar_export.errors import AdapterError, OutputExistsError
from .database_ingestor import CursorAdapter
from .dump_ingestor import DumpAdapter, scan_dump_tables
from .file_ingestor import FileAdapter, discover_files, table_name_for
from .models import PaginationMode, SourceKind, TableDescriptor
from .source_adapter import SourceAdapter
from .sql_dump_parser import TableDefinition
from columnar_export.utils.db_client import list_tables
from columnar_export.utils.storage import table_directory

log = logging.getLogger(__name__)


def parse_table_selector(selector: Optional[str]) -> Optional[List[str]]:
    """Parse ``all`` or a comma separated table list.

    Returns:
        None for every table, otherwise the requested names in order.
    """
    if selector is None or selector.strip().lower() in ("", "all", "*"):
        return None
    names: List[str] = []
    for name in selector.split(","):
        name = name.strip()
        if name and name not in names:
            names.append(name)
    return names


class SourceCatalog:
    """Tables available in one source, and adapters to read them.

    Args:
        source_kind: Kind of source.
        location: Database URL (informational), dump path, or file/directory path.
        output_root: Root directory of the exported tables.
        engine: SQLAlchemy engine, required for database sources.
        pagination: Cursor paging mode for database sources.
        key_column: Explicit keyset column for database sources.
        delimiter: Field delimiter for file sources.
        has_header: Header flag for file sources.
        pattern: Glob pattern for directory file sources.
        encoding: Text encoding for dump and file sources.
    """

    def __init__(
        self,
        source_kind: SourceKind,
        location: str,
        output_root: Union[str, Path],
        engine: Optional[Engine] = None,
        pagination: PaginationMode = PaginationMode.AUTO,
        key_column: Optional[str] = None,
        delimiter: str = ",",
        has_header: bool = True,
        pattern: str = "*.csv",
        encoding: str = "utf-8",
    ):
        if source_kind is SourceKind.DATABASE and engine is None:
            raise ValueError("A database source needs an engine")
        self.source_kind = source_kind
        self.location = location
        self.output_root = Path(output_root)
        self.engine = engine
        self.pagination = pagination
        self.key_column = key_column
        self.delimiter = delimiter
        self.has_header = has_header
        self.pattern = pattern
        self.encoding = encoding

        self._dump_tables: Dict[str, TableDefinition] = {}
        self._files: Dict[str, str] = {}
        self._collisions: Dict[str, str] = {}

    def available_tables(self) -> List[str]:
        """Discover the tables of the source.

        Raises:
            SourceConnectionError: If the source cannot be reached.
        """
        if self.source_kind is SourceKind.DATABASE:
            return list_tables(self.engine)
        if self.source_kind is SourceKind.DUMP:
            self._dump_tables = {d.name: d for d in scan_dump_tables(self.location, self.encoding)}
            return list(self._dump_tables)

        self._files = {}
        for path in discover_files(self.location, self.pattern):
            name = table_name_for(path)
            if name in self._files:
                log.warning("Skipping %s: table name %s already taken by %s", path, name, self._files[name])
                continue
            self._files[name] = path
        return list(self._files)

    def descriptors(self, selector: Optional[str] = "all") -> List[TableDescriptor]:
        """Build one descriptor per selected table.

        Raises:
            SourceConnectionError: If the source cannot be reached.
        """
        available = self.available_tables()
        requested = parse_table_selector(selector)
        if requested is None:
            names = available
        else:
            missing = [n for n in requested if n not in available]
            if missing:
                log.warning("Requested tables not found in source: %s", ", ".join(missing))
            names = requested

        descriptors = []
        owners: Dict[Path, str] = {}
        self._collisions = {}
        for name in names:
            if self.source_kind is SourceKind.FILE:
                source_ref = self._files.get(name, "")
            elif self.source_kind is SourceKind.DUMP:
                source_ref = self.location
            else:
                source_ref = name
            output_dir = table_directory(self.output_root, name)
            if output_dir in owners:
                log.warning("Tables %s and %s share output directory %s", owners[output_dir], name, output_dir)
                self._collisions[name] = owners[output_dir]
            else:
                owners[output_dir] = name
            descriptors.append(TableDescriptor(
                name=name,
                source_kind=self.source_kind,
                source_ref=source_ref,
                output_dir=output_dir,
            ))
        log.info("Selected %d of %d tables", len(descriptors), len(available))
        return descriptors

    def adapter_for(self, descriptor: TableDescriptor) -> SourceAdapter:
        """Build a fresh source adapter for a descriptor.

        Raises:
            OutputExistsError: If the table shares its output directory with
                an earlier table.
            AdapterError: If no input file exists for a file source table.
        """
        if descriptor.name in self._collisions:
            raise OutputExistsError(
                f"Table '{descriptor.name}' maps to output directory '{descriptor.output_dir}', "
                f"already used by table '{self._collisions[descriptor.name]}'",
                context={"table": descriptor.name, "output_dir": str(descriptor.output_dir)},
            )
        if descriptor.source_kind is SourceKind.DATABASE:
            return CursorAdapter(self.engine, descriptor.source_ref, self.pagination, self.key_column)

        if descriptor.source_kind is SourceKind.DUMP:
            definition = self._dump_tables.get(descriptor.name)
            if definition is None or not definition.columns:
                log.warning("Table %s has no CREATE TABLE in the dump; reading its INSERT statements only",
                            descriptor.name)
            return DumpAdapter(descriptor.source_ref, descriptor.name, definition, self.encoding)

        if not descriptor.source_ref:
            raise AdapterError(f"No input file found for table '{descriptor.name}'")
        return FileAdapter(
            descriptor.source_ref,
            table_name=descriptor.name,
            delimiter=self.delimiter,
            has_header=self.has_header,
            encoding=self.encoding,
        )
