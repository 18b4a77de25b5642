"""Export unit: drives one table from its source adapter to part files.

State machine::

    Opening -> SchemaPending -> Streaming -> Closing -> Succeeded
        |            |              |           \\-> Failed
        \\-----------+--------------+--> Closing (on error)

Opening failures produce no parts. An empty source succeeds with zero
parts. Once a part is written it stays on disk even if a later batch fails;
the outcome reports how many parts were completed.
"""

import threading
import time
from enum import Enum
from typing import Callable, List, Optional

from columnar_export.errors import ExportCancelledError, ExportError
from .models import ExportOutcome, PartFile, TableDescriptor
from .part_writer import PartWriter
from .schema_detector import ColumnSchema, resolve_schema
from .source_adapter import SourceAdapter, SourceHandle
from columnar_export.utils.logging_config import get_logger


class UnitState(Enum):
    OPENING = "opening"
    SCHEMA_PENDING = "schema_pending"
    STREAMING = "streaming"
    CLOSING = "closing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


ACTIVE_STATES = frozenset({UnitState.SCHEMA_PENDING, UnitState.STREAMING})

StateListener = Callable[[str, UnitState], None]


class ExportUnit:
    """Exports one table.

    Args:
        descriptor: Table to export.
        adapter: Source adapter built for this table.
        writer: Part writer shared by the run.
        chunk_size: Maximum rows per batch and per part.
        cancel_event: Set to request cooperative cancellation.
        state_listener: Called with ``(table_name, state)`` on every transition.
        infer_types: Passed to the schema resolver.
    """

    def __init__(
        self,
        descriptor: TableDescriptor,
        adapter: SourceAdapter,
        writer: PartWriter,
        chunk_size: int,
        cancel_event: Optional[threading.Event] = None,
        state_listener: Optional[StateListener] = None,
        infer_types: bool = True,
    ):
        self.descriptor = descriptor
        self.adapter = adapter
        self.writer = writer
        self.chunk_size = chunk_size
        self.cancel_event = cancel_event or threading.Event()
        self.state_listener = state_listener
        self.infer_types = infer_types

        self.state = UnitState.OPENING
        self.schema: Optional[ColumnSchema] = None
        self.parts: List[PartFile] = []
        self.rows_written = 0
        self.error: Optional[BaseException] = None
        self.log = get_logger(__name__, table=descriptor.name, source_kind=descriptor.source_kind.value)

    def _transition(self, state: UnitState) -> None:
        self.state = state
        self.log.debug("Table %s entered state %s", self.descriptor.name, state.value)
        if self.state_listener is not None:
            self.state_listener(self.descriptor.name, state)

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise ExportCancelledError(f"Export of table '{self.descriptor.name}' was cancelled")

    def _write(self, batch) -> None:
        part = self.writer.write(self.descriptor.output_dir, len(self.parts), self.schema, batch)
        self.parts.append(part)
        self.rows_written += part.row_count

    def _log_progress(self, handle: SourceHandle) -> None:
        if handle.estimated_rows:
            self.log.info("Progress %s: %d/%d rows", self.descriptor.name, self.rows_written, handle.estimated_rows)
        else:
            self.log.info("Progress %s: %d rows", self.descriptor.name, self.rows_written)

    def _stream(self, handle: SourceHandle) -> None:
        self._transition(UnitState.SCHEMA_PENDING)
        batch = self.adapter.next_batch(handle, self.chunk_size)
        if batch is None:
            self.writer.prepare(self.descriptor.output_dir)
            self.log.info("Table %s is empty, no parts written", self.descriptor.name)
            return

        self.schema = resolve_schema(batch, handle.hints, infer_types=self.infer_types)
        self.writer.prepare(self.descriptor.output_dir)
        self._write(batch)
        self._log_progress(handle)

        self._transition(UnitState.STREAMING)
        while True:
            self._check_cancelled()
            batch = self.adapter.next_batch(handle, self.chunk_size)
            if batch is None:
                break
            self._write(batch)
            self._log_progress(handle)

    def run(self) -> ExportOutcome:
        """Run the unit to a terminal state. Never raises."""
        started = time.monotonic()
        name = self.descriptor.name
        error: Optional[BaseException] = None
        handle: Optional[SourceHandle] = None

        self.log.info("Starting export of table %s", name)
        self._transition(UnitState.OPENING)
        try:
            self._check_cancelled()
            handle = self.adapter.open()
            self._stream(handle)
        except ExportError as exc:
            error = exc
        except Exception as exc:
            self.log.exception("Unexpected error exporting table %s", name)
            error = exc
        finally:
            self._transition(UnitState.CLOSING)
            if handle is not None:
                try:
                    self.adapter.close(handle)
                except Exception as exc:
                    self.log.warning("Failed to release source for table %s: %s", name, exc)

        self.error = error
        extra = {
            "duration_seconds": time.monotonic() - started,
            "schema": self.schema.to_dict() if self.schema else None,
        }
        if error is None:
            self._transition(UnitState.SUCCEEDED)
            self.log.info("Completed export of table %s: %d rows in %d parts", name, self.rows_written, len(self.parts))
            return ExportOutcome.succeeded(name, self.rows_written, self.parts, **extra)

        self._transition(UnitState.FAILED)
        cancelled = isinstance(error, ExportCancelledError)
        self.log.error("Export of table %s failed after %d parts: %s", name, len(self.parts), error)
        return ExportOutcome.failed(name, error, self.rows_written, self.parts, cancelled=cancelled, **extra)
