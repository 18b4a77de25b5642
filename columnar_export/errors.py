"""Exception hierarchy for export runs.

    ExportError (base)
    ├── SourceConnectionError   source unreachable, fatal to the whole run
    ├── AdapterError            extraction failed for one table
    ├── SchemaConflictError     a batch disagrees with the frozen schema
    ├── EncodeError             the columnar codec rejected a batch
    ├── PartWriteError          writing a part to disk failed
    ├── OutputExistsError       the table directory is already taken
    └── ExportCancelledError    the run was cancelled while the unit was active

Every error except SourceConnectionError is local to one export unit and ends
up in that unit's outcome.
"""

from typing import Any, Dict, Optional


class ExportError(Exception):
    """Base class for export failures, carrying optional context."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "context": self.context,
        }


class SourceConnectionError(ExportError):
    """Raised when the source cannot be reached or authentication fails."""


class AdapterError(ExportError):
    """Raised when a source adapter cannot open or read its table."""


class SchemaConflictError(ExportError):
    """Raised when a batch cannot be represented in the frozen schema."""


class EncodeError(ExportError):
    """Raised when the columnar codec rejects a batch."""


class PartWriteError(ExportError):
    """Raised when a part file cannot be written to the output directory."""


class OutputExistsError(ExportError):
    """Raised when a table directory is already taken.

    Either overwriting is disabled and the directory holds parts of an earlier
    run, or another table of the same run maps to the same directory.
    """


class ExportCancelledError(ExportError):
    """Raised inside a unit when cancellation has been requested."""
