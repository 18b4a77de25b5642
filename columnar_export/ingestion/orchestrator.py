"""Orchestrator: runs export units on a bounded worker pool.

Each worker owns one unit end to end. A failing unit never stops its
siblings; the orchestrator waits for every unit and returns one outcome per
descriptor, in descriptor order.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Type

from columnar_export.errors import ExportError
from .export_unit import ExportUnit, StateListener
from .models import ExportOutcome, TableDescriptor
from .part_writer import PartWriter
from .source_adapter import SourceAdapter
from columnar_export.utils.storage import remove_parts

log = logging.getLogger(__name__)

AdapterFactory = Callable[[TableDescriptor], SourceAdapter]


@dataclass
class RetryPolicy:
    """Whole-unit retry for failures of the listed error types.

    A retried unit starts over from part 0 with a fresh adapter after the
    parts of the failed attempt have been deleted, so parts are rewritten,
    never appended. Files the attempt did not write are left alone.
    """

    max_attempts: int = 1
    backoff_seconds: float = 0.0
    retry_on: Tuple[Type[BaseException], ...] = ()

    def should_retry(self, outcome: ExportOutcome, error: Optional[BaseException], attempt: int) -> bool:
        if outcome.is_success or outcome.cancelled or attempt >= self.max_attempts:
            return False
        return error is not None and isinstance(error, self.retry_on)


class ExportOrchestrator:
    """Runs one export unit per table with bounded concurrency.

    Args:
        adapter_factory: Builds a fresh source adapter for a descriptor.
        writer: Part writer shared by all units.
        chunk_size: Rows per batch and per part.
        retry_policy: Optional whole-unit retry policy; no retries by default.
        infer_types: Passed to each unit's schema resolver.
        state_listener: Observer of every unit state transition.
    """

    def __init__(
        self,
        adapter_factory: AdapterFactory,
        writer: PartWriter,
        chunk_size: int,
        retry_policy: Optional[RetryPolicy] = None,
        infer_types: bool = True,
        state_listener: Optional[StateListener] = None,
    ):
        self.adapter_factory = adapter_factory
        self.writer = writer
        self.chunk_size = chunk_size
        self.retry_policy = retry_policy or RetryPolicy()
        self.infer_types = infer_types
        self.state_listener = state_listener
        self._cancel_event = threading.Event()

    def cancel(self) -> None:
        """Ask every running unit to stop after its current part."""
        if not self._cancel_event.is_set():
            log.warning("Cancellation requested; units stop after their current part")
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def _run_once(self, descriptor: TableDescriptor) -> Tuple[ExportOutcome, Optional[BaseException]]:
        try:
            adapter = self.adapter_factory(descriptor)
        except ExportError as exc:
            log.error("Cannot build source adapter for table %s: %s", descriptor.name, exc)
            return ExportOutcome.failed(descriptor.name, exc), exc

        unit = ExportUnit(
            descriptor,
            adapter,
            self.writer,
            self.chunk_size,
            cancel_event=self._cancel_event,
            state_listener=self.state_listener,
            infer_types=self.infer_types,
        )
        return unit.run(), unit.error

    def run_unit(self, descriptor: TableDescriptor) -> ExportOutcome:
        """Run one unit, applying the retry policy."""
        attempt = 1
        while True:
            outcome, error = self._run_once(descriptor)
            outcome.attempts = attempt
            if not self.retry_policy.should_retry(outcome, error, attempt):
                return outcome

            log.warning("Retrying table %s after %s (attempt %d of %d)",
                        descriptor.name, outcome.error_type, attempt + 1, self.retry_policy.max_attempts)
            removed = remove_parts(part.path for part in outcome.parts)
            log.info("Removed %d parts written by the failed attempt for table %s", removed, descriptor.name)
            if self.retry_policy.backoff_seconds:
                time.sleep(self.retry_policy.backoff_seconds * attempt)
            attempt += 1

    def run(self, descriptors: Sequence[TableDescriptor], max_concurrency: int) -> List[ExportOutcome]:
        """Export every descriptor and wait for all units to terminate.

        Args:
            descriptors: Tables to export.
            max_concurrency: Maximum number of units running at once.

        Returns:
            One outcome per descriptor, in descriptor order.
        """
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be positive, got {max_concurrency}")
        if not descriptors:
            log.warning("No tables to export")
            return []

        log.info("Exporting %d tables with up to %d concurrent units", len(descriptors), max_concurrency)
        outcomes: Dict[int, ExportOutcome] = {}
        with ThreadPoolExecutor(max_workers=max_concurrency, thread_name_prefix="export-unit") as executor:
            futures = {executor.submit(self.run_unit, d): index for index, d in enumerate(descriptors)}
            for future in as_completed(futures):
                index = futures[future]
                try:
                    outcomes[index] = future.result()
                except Exception as exc:
                    log.exception("Export unit for table %s crashed", descriptors[index].name)
                    outcomes[index] = ExportOutcome.failed(descriptors[index].name, exc)

        return [outcomes[i] for i in range(len(descriptors))]
