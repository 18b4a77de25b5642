"""Output layout for exported tables.

Every table gets its own directory under the output root, holding part files
named by zero-padded sequence number::

    output_root/
      customers/part-00000.orc
      customers/part-00001.orc
      orders/part-00000.orc

A table is read back by concatenating its parts in sequence order.

Usage:
    from columnar_export.utils.storage import table_directory, list_part_files, read_table

    table_dir = table_directory("/data/orc_output", "customers")
    table = read_table(table_dir)
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Union

import pyarrow as pa
import pyarrow.orc as orc
import pyarrow.parquet as pq

log = logging.getLogger(__name__)

PART_PREFIX = "part-"
TMP_SUFFIX = ".tmp"

_PART_RE = re.compile(r"^part-(\d{5,})\.(orc|parquet)$")
_UNSAFE_CHARS = re.compile(r"[\\/\x00]")

PathLike = Union[str, Path]


def part_file_name(sequence_number: int, extension: str) -> str:
    """Return the file name of a part, e.g. ``part-00003.orc``."""
    return f"{PART_PREFIX}{sequence_number:05d}.{extension}"


def part_path(table_dir: PathLike, sequence_number: int, extension: str) -> Path:
    return Path(table_dir) / part_file_name(sequence_number, extension)


def temp_path_for(path: Path) -> Path:
    """Hidden temporary name a part is written to before being renamed."""
    return path.with_name(f".{path.name}{TMP_SUFFIX}")


def table_directory(output_root: PathLike, table_name: str) -> Path:
    """Return the directory holding a table's parts.

    Path separators in the table name are replaced so every table stays a
    direct child of the output root.
    """
    safe_name = _UNSAFE_CHARS.sub("_", table_name).strip() or "_"
    if safe_name in (".", ".."):
        safe_name = safe_name.replace(".", "_")
    return Path(output_root) / safe_name


def list_part_files(table_dir: PathLike) -> List[Path]:
    """List a table's part files in sequence order."""
    directory = Path(table_dir)
    if not directory.is_dir():
        return []
    parts = []
    for entry in directory.iterdir():
        match = _PART_RE.match(entry.name)
        if match and entry.is_file():
            parts.append((int(match.group(1)), entry))
    return [path for _, path in sorted(parts)]


def list_temp_files(table_dir: PathLike) -> List[Path]:
    directory = Path(table_dir)
    if not directory.is_dir():
        return []
    return sorted(p for p in directory.iterdir() if p.name.startswith(f".{PART_PREFIX}") and p.name.endswith(TMP_SUFFIX))


def sequence_number_of(path: PathLike) -> int:
    match = _PART_RE.match(Path(path).name)
    if not match:
        raise ValueError(f"'{path}' is not a part file")
    return int(match.group(1))


def remove_part_files(table_dir: PathLike) -> int:
    """Delete part and temporary files from a table directory.

    Returns:
        Number of files removed.
    """
    removed = 0
    for path in list_part_files(table_dir) + list_temp_files(table_dir):
        path.unlink()
        removed += 1
    if removed:
        log.info("Removed %d stale files from %s", removed, table_dir)
    return removed


def remove_parts(paths: Iterable[PathLike]) -> int:
    """Delete the given part files, ignoring any that are already gone.

    Returns:
        Number of files removed.
    """
    removed = 0
    for path in paths:
        path = Path(path)
        if path.is_file():
            path.unlink()
            removed += 1
    return removed


def atomic_write(path: Path, data: bytes) -> None:
    """Write bytes to ``path`` so readers never observe a partial file.

    The data goes to a hidden temporary file in the same directory, is
    flushed to disk, and is then renamed over the target.

    Raises:
        OSError: If the write or the rename fails. The temporary file is
            removed in that case.
    """
    tmp = temp_path_for(path)
    try:
        with open(tmp, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except OSError:
        if tmp.exists():
            tmp.unlink()
        raise


def read_part(path: PathLike) -> pa.Table:
    """Read a single part file."""
    path = Path(path)
    if path.suffix == ".parquet":
        return pq.read_table(path)
    return orc.read_table(str(path))


def read_table(table_dir: PathLike) -> pa.Table:
    """Read every part of a table, in sequence order, as one Arrow table.

    Raises:
        FileNotFoundError: If the directory holds no part files.
    """
    parts = list_part_files(table_dir)
    if not parts:
        raise FileNotFoundError(f"No part files found in '{table_dir}'")
    return pa.concat_tables([read_part(p) for p in parts])


def is_contiguous(parts: List[Path]) -> bool:
    """Return True when part sequence numbers run 0..n-1 without gaps."""
    return [sequence_number_of(p) for p in parts] == list(range(len(parts)))


def describe_table(table_dir: PathLike) -> Dict[str, Any]:
    """Summarise an exported table directory.

    Returns:
        Dict with ``table``, ``parts``, ``rows``, ``size_bytes``,
        ``contiguous``, ``schema`` and ``temp_files`` keys.
    """
    directory = Path(table_dir)
    parts = list_part_files(directory)
    rows = 0
    schema = None
    for part in parts:
        table = read_part(part)
        rows += table.num_rows
        if schema is None:
            schema = [{"name": f.name, "type": str(f.type)} for f in table.schema]

    return {
        "table": directory.name,
        "parts": len(parts),
        "rows": rows,
        "size_bytes": sum(p.stat().st_size for p in parts),
        "contiguous": is_contiguous(parts),
        "schema": schema or [],
        "temp_files": len(list_temp_files(directory)),
    }


def list_table_directories(output_root: PathLike) -> List[Path]:
    """List the table directories under an output root."""
    root = Path(output_root)
    if not root.is_dir():
        return []
    return sorted(p for p in root.iterdir() if p.is_dir() and not p.name.startswith("."))
