"""Run metadata for export runs.

Computes part checksums, aggregates unit outcomes into a run report, logs
the report and optionally writes it as JSON next to the exported data.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .models import ExportOutcome
from columnar_export.utils.storage import atomic_write

log = logging.getLogger(__name__)


def compute_checksum(data: bytes, algorithm: str = "md5") -> str:
    """Compute a hex-digest checksum for encoded part contents.

    Args:
        data: Bytes to hash.
        algorithm: Hash algorithm (``md5`` or ``sha256``).

    Returns:
        Hex-encoded checksum string.
    """
    h = hashlib.new(algorithm)
    h.update(data)
    return h.hexdigest()


@dataclass
class ExportReport:
    """Aggregate view over every unit outcome of a run."""

    outcomes: List[ExportOutcome]
    run_id: Optional[str] = None
    started_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    finished_at: Optional[str] = None

    @property
    def succeeded(self) -> List[ExportOutcome]:
        return [o for o in self.outcomes if o.is_success]

    @property
    def failed(self) -> List[ExportOutcome]:
        return [o for o in self.outcomes if not o.is_success]

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    @property
    def any_succeeded(self) -> bool:
        return bool(self.succeeded)

    @property
    def total_rows(self) -> int:
        return sum(o.row_count for o in self.outcomes)

    @property
    def total_parts(self) -> int:
        return sum(o.part_count for o in self.outcomes)

    @property
    def exit_code(self) -> int:
        return 0 if self.all_succeeded else 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "tables": len(self.outcomes),
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "total_rows": self.total_rows,
            "total_parts": self.total_parts,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


def build_report(outcomes: Sequence[ExportOutcome], run_id: Optional[str] = None,
                 started_at: Optional[str] = None) -> ExportReport:
    """Aggregate unit outcomes once every unit has terminated."""
    report = ExportReport(outcomes=list(outcomes), run_id=run_id)
    if started_at:
        report.started_at = started_at
    report.finished_at = datetime.now(timezone.utc).isoformat()
    return report


def log_report(report: ExportReport) -> None:
    """Log one line per table followed by the run summary."""
    for outcome in report.outcomes:
        if outcome.is_success:
            log.info("Table %s succeeded: %d rows in %d parts",
                     outcome.table_name, outcome.row_count, outcome.part_count)
        else:
            log.error("Table %s failed after %d parts (%s): %s",
                      outcome.table_name, outcome.part_count, outcome.error_type, outcome.error)

    log.info("Export completed: %d/%d tables successful", len(report.succeeded), len(report.outcomes))


def write_run_report(report: ExportReport, path: Path) -> Path:
    """Write the report as JSON.

    Args:
        report: Report to serialise.
        path: Destination file.

    Returns:
        The path written.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = json.dumps(report.to_dict(), indent=2, default=str).encode("utf-8")
    atomic_write(path, payload)
    log.info("Run report written to %s", path)
    return path
