"""SQL dump ingestion: stream one table's rows out of a dump file.

Tables are discovered from the ``CREATE TABLE`` and ``INSERT`` statements of
the dump. Every table is read by its own pass over the document, so a dump
with N selected tables is scanned N times. Only one statement is buffered at a
time; an extended INSERT is held in full while its rows are handed out.
"""

import gzip
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional, TextIO, Tuple, Union

from columnar_export.errors import AdapterError, SourceConnectionError
from .models import RowBatch
from .source_adapter import SourceHandle, check_capacity
from .sql_dump_parser import (
    DumpParseError,
    TableDefinition,
    iter_statements,
    parse_create_table,
    parse_insert,
)

log = logging.getLogger(__name__)

_Row = Tuple[Tuple[str, ...], tuple]


def open_dump(path: Union[str, Path], encoding: str = "utf-8") -> TextIO:
    """Open a plain or gzip-compressed dump as text."""
    path = Path(path)
    if path.suffix == ".gz":
        return gzip.open(path, "rt", encoding=encoding, errors="replace")
    return open(path, "r", encoding=encoding, errors="replace")


def scan_dump_tables(path: Union[str, Path], encoding: str = "utf-8") -> List[TableDefinition]:
    """List the tables of a dump, in document order.

    Tables come from ``CREATE TABLE`` statements and from the targets of
    ``INSERT`` statements. A table that is only ever inserted into gets a
    definition without columns or type hints.

    Raises:
        SourceConnectionError: If the dump cannot be read.
    """
    definitions: Dict[str, TableDefinition] = {}
    try:
        with open_dump(path, encoding) as stream:
            for statement in iter_statements(stream):
                insert = parse_insert(statement)
                if insert is not None:
                    if insert.table not in definitions:
                        definitions[insert.table] = TableDefinition(name=insert.table, columns=(), hints=())
                    continue
                try:
                    definition = parse_create_table(statement)
                except DumpParseError as exc:
                    log.warning("Skipping unparseable table definition: %s", exc)
                    continue
                if definition is None:
                    continue
                known = definitions.get(definition.name)
                if known is None or not known.columns:
                    definitions[definition.name] = definition
    except (OSError, DumpParseError) as exc:
        raise SourceConnectionError(f"Failed to read dump file '{path}': {exc}") from exc

    log.info("Found %d tables in dump %s", len(definitions), path)
    return list(definitions.values())


@dataclass
class DumpHandle(SourceHandle):
    stream: Optional[TextIO] = None
    rows: Optional[Iterator[_Row]] = None
    pending: Optional[_Row] = None
    rows_read: int = 0


class DumpAdapter:
    """Source adapter over one table of a SQL dump.

    Args:
        path: Dump file path.
        table_name: Table whose INSERT statements are read.
        definition: The table's ``CREATE TABLE`` definition, if the dump has one.
        encoding: Text encoding of the dump.
    """

    def __init__(
        self,
        path: Union[str, Path],
        table_name: str,
        definition: Optional[TableDefinition] = None,
        encoding: str = "utf-8",
    ):
        self.path = Path(path)
        self.table_name = table_name
        self.definition = definition
        self.encoding = encoding

    def _iter_rows(self, stream: TextIO) -> Iterator[_Row]:
        default_columns = self.definition.columns if self.definition and self.definition.columns else None
        for statement in iter_statements(stream):
            insert = parse_insert(statement)
            if insert is None or insert.table != self.table_name:
                continue
            columns = insert.columns or default_columns
            for values in insert.rows():
                yield columns or tuple(f"col_{i}" for i in range(len(values))), values

    def open(self) -> DumpHandle:
        """Open the dump for a pass over this table's rows.

        Raises:
            AdapterError: If the dump cannot be opened.
        """
        try:
            stream = open_dump(self.path, self.encoding)
        except OSError as exc:
            raise AdapterError(f"Failed to open dump '{self.path}': {exc}") from exc

        hints = self.definition.hints if self.definition else ()
        handle = DumpHandle(stream=stream, hints=hints)
        handle.rows = self._iter_rows(stream)
        log.info("Scanning dump %s for table %s", self.path, self.table_name)
        return handle

    def next_batch(self, handle: DumpHandle, capacity: int) -> Optional[RowBatch]:
        """Collect up to ``capacity`` rows sharing the same column list.

        Raises:
            AdapterError: If the dump cannot be read or tokenized.
        """
        check_capacity(capacity)
        if handle.exhausted:
            return None

        columns = None
        rows = []
        try:
            while len(rows) < capacity:
                if handle.pending is not None:
                    item, handle.pending = handle.pending, None
                else:
                    item = next(handle.rows, None)
                if item is None:
                    handle.exhausted = True
                    break
                item_columns, values = item
                if columns is None:
                    columns = item_columns
                elif item_columns != columns:
                    handle.pending = item
                    break
                rows.append(values)
        except DumpParseError as exc:
            raise AdapterError(f"Failed to parse dump for table '{self.table_name}': {exc}") from exc
        except (OSError, UnicodeError) as exc:
            raise AdapterError(f"Failed to read dump for table '{self.table_name}': {exc}") from exc

        handle.rows_read += len(rows)
        if handle.exhausted and handle.rows_read == 0:
            log.warning("No data found for table %s", self.table_name)
        if not rows:
            return None
        return RowBatch(columns=columns, rows=rows)

    def close(self, handle: DumpHandle) -> None:
        if handle.stream is not None:
            handle.stream.close()
            handle.stream = None
