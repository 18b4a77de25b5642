"""Capability interface shared by every source adapter.

An adapter is built for one table and is driven by exactly one export unit:

    handle = adapter.open()
    try:
        batch = adapter.next_batch(handle, capacity)
        while batch is not None:
            ...
            batch = adapter.next_batch(handle, capacity)
    finally:
        adapter.close(handle)

``next_batch`` returns at most ``capacity`` rows and ``None`` once the source
is exhausted. It never returns an empty batch.
"""

from dataclasses import dataclass
from typing import Optional, Protocol, Tuple, runtime_checkable

from .models import RowBatch
from .schema_detector import ColumnSpec


@dataclass
class SourceHandle:
    """State an adapter keeps between batches of one open table."""

    hints: Tuple[ColumnSpec, ...] = ()
    estimated_rows: Optional[int] = None
    exhausted: bool = False


@runtime_checkable
class SourceAdapter(Protocol):
    table_name: str

    def open(self) -> SourceHandle:
        ...

    def next_batch(self, handle: SourceHandle, capacity: int) -> Optional[RowBatch]:
        ...

    def close(self, handle: SourceHandle) -> None:
        ...


def check_capacity(capacity: int) -> int:
    if capacity < 1:
        raise ValueError(f"Batch capacity must be positive, got {capacity}")
    return capacity
