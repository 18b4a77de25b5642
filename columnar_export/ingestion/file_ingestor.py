"""File-based ingestion: stream delimited text files in bounded chunks.

Files are read with pandas' chunked reader, every field as text, so the
schema resolver sees the raw values. A directory source exports each file
matching the glob pattern as its own table, named after the file stem.
"""

import glob as globmod
import logging
import math
import os
from dataclasses import dataclass
from typing import Any, List, Optional

import pandas as pd

from columnar_export.errors import AdapterError, SourceConnectionError
from .models import RowBatch
from .source_adapter import SourceHandle, check_capacity

log = logging.getLogger(__name__)


def normalize_delimiter(delimiter: str) -> str:
    """Accept escaped control characters such as ``\\t`` on the command line."""
    if delimiter in ("\\t", "tab"):
        return "\t"
    return delimiter


def discover_files(location: str, pattern: str = "*.csv") -> List[str]:
    """Return the files a file source consists of.

    Args:
        location: A single file or a directory.
        pattern: Glob pattern applied when ``location`` is a directory.

    Returns:
        Sorted list of file paths.

    Raises:
        SourceConnectionError: If the location does not exist.
    """
    if os.path.isfile(location):
        return [location]
    if not os.path.isdir(location):
        raise SourceConnectionError(f"Input path '{location}' does not exist")

    search_path = os.path.join(location, pattern)
    files = sorted(p for p in globmod.glob(search_path) if os.path.isfile(p))
    if not files:
        log.warning("No files matched pattern '%s' in '%s'", pattern, location)
    else:
        log.info("Found %d files matching '%s'", len(files), search_path)
    return files


def table_name_for(file_path: str) -> str:
    return os.path.splitext(os.path.basename(file_path))[0]


def _clean(value: Any) -> Any:
    if isinstance(value, float) and math.isnan(value):
        return None
    return value


@dataclass
class FileHandle(SourceHandle):
    reader: Any = None
    columns: tuple = ()


class FileAdapter:
    """Source adapter over one delimited text file.

    Args:
        path: File to read.
        table_name: Name of the exported table; defaults to the file stem.
        delimiter: Field delimiter.
        has_header: Whether the first line holds column names.
        encoding: Text encoding of the file.
    """

    def __init__(
        self,
        path: str,
        table_name: Optional[str] = None,
        delimiter: str = ",",
        has_header: bool = True,
        encoding: str = "utf-8",
    ):
        self.path = path
        self.table_name = table_name or table_name_for(path)
        self.delimiter = normalize_delimiter(delimiter)
        self.has_header = has_header
        self.encoding = encoding

    def open(self) -> FileHandle:
        """Open a chunked reader over the file.

        Raises:
            AdapterError: If the file cannot be opened or its header parsed.
        """
        options = {
            "sep": self.delimiter,
            "header": 0 if self.has_header else None,
            "dtype": str,
            "keep_default_na": False,
            "na_filter": False,
            "skip_blank_lines": True,
            "encoding": self.encoding,
            "iterator": True,
        }
        if len(self.delimiter) > 1:
            options["engine"] = "python"

        try:
            reader = pd.read_csv(self.path, **options)
        except pd.errors.EmptyDataError:
            log.warning("File %s is empty", self.path)
            return FileHandle(exhausted=True)
        except (OSError, UnicodeError, pd.errors.ParserError, ValueError) as exc:
            raise AdapterError(f"Failed to open file '{self.path}': {exc}") from exc

        log.info("Reading %s as table %s", self.path, self.table_name)
        return FileHandle(reader=reader)

    def next_batch(self, handle: FileHandle, capacity: int) -> Optional[RowBatch]:
        """Read the next chunk of at most ``capacity`` rows.

        Raises:
            AdapterError: If the file cannot be parsed.
        """
        check_capacity(capacity)
        if handle.exhausted:
            return None

        try:
            chunk = handle.reader.get_chunk(capacity)
        except StopIteration:
            chunk = None
        except (OSError, UnicodeError, pd.errors.ParserError, ValueError) as exc:
            raise AdapterError(f"Failed to parse file '{self.path}': {exc}") from exc

        if chunk is None or chunk.empty:
            handle.exhausted = True
            return None

        if not handle.columns:
            if self.has_header:
                handle.columns = tuple(str(c).strip() for c in chunk.columns)
            else:
                handle.columns = tuple(f"col_{i}" for i in range(len(chunk.columns)))

        rows = [tuple(_clean(v) for v in row) for row in chunk.itertuples(index=False, name=None)]
        if len(rows) < capacity:
            handle.exhausted = True
        return RowBatch(columns=handle.columns, rows=rows)

    def close(self, handle: FileHandle) -> None:
        if handle.reader is not None:
            handle.reader.close()
            handle.reader = None
