"""JSON logging for export runs.

Every line is one JSON object. Records emitted while a table is exported
carry the table name and source kind, and records emitted inside
``export_logging_context`` carry the run id, so a run's log can be filtered
per table or joined with its manifest. The console always receives the
lines; ``--log-file`` mirrors them into a file next to the exported data.
"""

import json
import logging
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Optional, Union

LEVEL_ENV_VAR = "EXPORT_LOG_LEVEL"

_CONTEXT_FIELDS = ("run_id", "table", "source_kind")


class JSONFormatter(logging.Formatter):
    """Render a record as one JSON line, with the run and table it belongs to."""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for name in _CONTEXT_FIELDS:
            if hasattr(record, name):
                log_entry[name] = getattr(record, name)

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry)


def _attach(root: logging.Logger, handler: logging.Handler, level: int) -> None:
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter())
    root.addHandler(handler)


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None):
    """Route export logs to the console and, optionally, to a mirror file.

    Safe to call once per command: a second call adjusts the level but never
    adds a second console handler or a second handler for the same file.

    Args:
        level: Level name such as DEBUG or WARNING. Falls back to the
            EXPORT_LOG_LEVEL environment variable, then INFO.
        log_file: File that receives a copy of every line of the run.
    """
    if level is None:
        level = os.environ.get(LEVEL_ENV_VAR, "INFO")
    log_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # FileHandler subclasses StreamHandler
    if not any(type(h) is logging.StreamHandler for h in root_logger.handlers):
        _attach(root_logger, logging.StreamHandler(), log_level)

    if log_file:
        target = os.path.abspath(log_file)
        mirrored = any(
            isinstance(h, logging.FileHandler) and h.baseFilename == target for h in root_logger.handlers
        )
        if not mirrored:
            _attach(root_logger, logging.FileHandler(target), log_level)


def get_logger(
    name: str,
    table: Optional[str] = None,
    source_kind: Optional[str] = None,
) -> Union[logging.Logger, logging.LoggerAdapter]:
    """Return a logger whose records name the table being exported.

    Args:
        name: Logger name, usually the calling module's ``__name__``.
        table: Source table the records are about.
        source_kind: "database" or "dump".

    Returns:
        A LoggerAdapter carrying the table fields, or the plain logger when
        neither is given.
    """
    logger = logging.getLogger(name)

    extra: Dict[str, str] = {}
    if table:
        extra["table"] = table
    if source_kind:
        extra["source_kind"] = source_kind
    return logging.LoggerAdapter(logger, extra) if extra else logger


@contextmanager
def export_logging_context(run_id: str):
    """Stamp every record created in the block with ``run_id``.

    The record factory is process-wide, so worker threads exporting tables
    for the run are covered too. The previous factory is restored on exit.

    Example:
        with export_logging_context("20240101T000000-ab12"):
            orchestrator.run(descriptors, max_concurrency=4)
    """
    previous_factory = logging.getLogRecordFactory()

    def record_factory(*args, **kwargs):
        record = previous_factory(*args, **kwargs)
        record.run_id = run_id
        return record

    logging.setLogRecordFactory(record_factory)
    try:
        yield
    finally:
        logging.setLogRecordFactory(previous_factory)
