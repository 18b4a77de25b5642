"""Part writer: turns one row batch into one columnar part file on disk."""

import logging
import threading
from pathlib import Path
from typing import Set, Tuple

from .codec import encode
from columnar_export.errors import OutputExistsError, PartWriteError
from .metadata_logger import compute_checksum
from .models import Compression, OutputFormat, PartFile, RowBatch
from .schema_detector import ColumnSchema
from columnar_export.utils.storage import atomic_write, list_part_files, part_path, remove_part_files

log = logging.getLogger(__name__)


class PartWriter:
    """Writes parts atomically and never reuses a sequence number in a run.

    One writer is shared by every export unit of a run; each unit only
    touches its own table directory.
    """

    def __init__(
        self,
        compression: Compression = Compression.FAST,
        output_format: OutputFormat = OutputFormat.ORC,
        overwrite: bool = True,
    ):
        self.compression = compression
        self.output_format = output_format
        self.overwrite = overwrite
        self._written: Set[Tuple[Path, int]] = set()
        self._lock = threading.Lock()

    @property
    def extension(self) -> str:
        return self.output_format.extension

    def prepare(self, table_dir: Path) -> None:
        """Create the table directory and clear parts left by earlier runs.

        Raises:
            OutputExistsError: If the directory already holds parts and
                overwriting is disabled.
            PartWriteError: If the directory cannot be prepared.
        """
        table_dir = Path(table_dir)
        try:
            table_dir.mkdir(parents=True, exist_ok=True)
            existing = list_part_files(table_dir)
            if existing and not self.overwrite:
                raise OutputExistsError(
                    f"Output directory '{table_dir}' already holds {len(existing)} parts",
                    context={"table_dir": str(table_dir)},
                )
            remove_part_files(table_dir)
        except OSError as exc:
            raise PartWriteError(f"Failed to prepare '{table_dir}': {exc}") from exc

        with self._lock:
            self._written = {key for key in self._written if key[0] != table_dir}

    def write(self, table_dir: Path, sequence_number: int, schema: ColumnSchema, batch: RowBatch) -> PartFile:
        """Encode a batch and write it as ``part-<sequence_number>``.

        Args:
            table_dir: The table's output directory.
            sequence_number: Position of this part within the table.
            schema: The table's frozen schema.
            batch: Rows to write.

        Returns:
            The written PartFile.

        Raises:
            SchemaConflictError: If the batch does not fit the schema.
            EncodeError: If the codec rejects the batch.
            PartWriteError: If the file cannot be written or the sequence
                number was already used.
        """
        table_dir = Path(table_dir)
        key = (table_dir, sequence_number)
        with self._lock:
            if key in self._written:
                raise PartWriteError(
                    f"Sequence number {sequence_number} already written in '{table_dir}'",
                    context={"table_dir": str(table_dir), "sequence_number": sequence_number},
                )
            self._written.add(key)

        columns = schema.coerce_batch(batch)
        data = encode(columns, schema, self.compression, self.output_format)

        path = part_path(table_dir, sequence_number, self.extension)
        try:
            table_dir.mkdir(parents=True, exist_ok=True)
            atomic_write(path, data)
        except OSError as exc:
            raise PartWriteError(
                f"Failed to write part '{path}': {exc}",
                context={"path": str(path)},
            ) from exc

        part = PartFile(
            path=path,
            sequence_number=sequence_number,
            row_count=len(batch),
            size_bytes=len(data),
            checksum=compute_checksum(data),
        )
        log.debug("Wrote %s (%d rows, %d bytes)", path, part.row_count, part.size_bytes)
        return part
