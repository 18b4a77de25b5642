"""Value types shared by adapters, writers and the orchestrator."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple


class SourceKind(Enum):
    """Kinds of source an export unit can read from."""

    DATABASE = "database"
    DUMP = "dump"
    FILE = "csv"


class OutputFormat(Enum):
    """Columnar file formats a part can be encoded as."""

    ORC = "orc"
    PARQUET = "parquet"

    @property
    def extension(self) -> str:
        return self.value


class Compression(Enum):
    """Codec-neutral compression choices."""

    FAST = "fast"
    HIGH_RATIO = "high-ratio"
    NONE = "none"

    @classmethod
    def from_name(cls, name: str) -> "Compression":
        """Resolve a compression choice, accepting codec names as aliases.

        Raises:
            ValueError: If the name is not recognised.
        """
        key = (name or "").strip().lower()
        if key in _COMPRESSION_ALIASES:
            return _COMPRESSION_ALIASES[key]
        raise ValueError(f"Unsupported compression '{name}'")


_COMPRESSION_ALIASES = {
    "fast": Compression.FAST,
    "snappy": Compression.FAST,
    "high-ratio": Compression.HIGH_RATIO,
    "high_ratio": Compression.HIGH_RATIO,
    "zstd": Compression.HIGH_RATIO,
    "none": Compression.NONE,
    "uncompressed": Compression.NONE,
}


class PaginationMode(Enum):
    """Windowing strategies for the database cursor adapter."""

    AUTO = "auto"
    OFFSET = "offset"
    KEYSET = "keyset"


@dataclass(frozen=True)
class TableDescriptor:
    """Identity of one logical table to export."""

    name: str
    source_kind: SourceKind
    source_ref: str
    output_dir: Path


@dataclass
class RowBatch:
    """A bounded run of rows pulled from a source, in source order."""

    columns: Tuple[str, ...]
    rows: List[tuple]

    def __len__(self) -> int:
        return len(self.rows)


@dataclass(frozen=True)
class PartFile:
    """One written part of a table."""

    path: Path
    sequence_number: int
    row_count: int
    size_bytes: int
    checksum: str


class OutcomeStatus(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class ExportOutcome:
    """Terminal result of one export unit."""

    table_name: str
    status: OutcomeStatus
    row_count: int = 0
    part_count: int = 0
    error: Optional[str] = None
    error_type: Optional[str] = None
    cancelled: bool = False
    attempts: int = 1
    duration_seconds: float = 0.0
    schema: Optional[List[Dict[str, Any]]] = None
    parts: Sequence[PartFile] = field(default_factory=list)

    @classmethod
    def succeeded(cls, table_name: str, row_count: int, parts: Sequence[PartFile], **kwargs) -> "ExportOutcome":
        return cls(
            table_name=table_name,
            status=OutcomeStatus.SUCCEEDED,
            row_count=row_count,
            part_count=len(parts),
            parts=list(parts),
            **kwargs,
        )

    @classmethod
    def failed(
        cls,
        table_name: str,
        error: BaseException,
        row_count: int = 0,
        parts: Sequence[PartFile] = (),
        **kwargs,
    ) -> "ExportOutcome":
        return cls(
            table_name=table_name,
            status=OutcomeStatus.FAILED,
            row_count=row_count,
            part_count=len(parts),
            parts=list(parts),
            error=str(error),
            error_type=type(error).__name__,
            **kwargs,
        )

    @property
    def is_success(self) -> bool:
        return self.status is OutcomeStatus.SUCCEEDED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table": self.table_name,
            "status": self.status.value,
            "row_count": self.row_count,
            "part_count": self.part_count,
            "error": self.error,
            "error_type": self.error_type,
            "cancelled": self.cancelled,
            "attempts": self.attempts,
            "duration_seconds": round(self.duration_seconds, 3),
            "schema": self.schema,
            "parts": [
                {
                    "path": str(part.path),
                    "sequence_number": part.sequence_number,
                    "row_count": part.row_count,
                    "size_bytes": part.size_bytes,
                    "checksum": part.checksum,
                }
                for part in self.parts
            ],
        }
