"""Pytest configuration and shared fixtures for export tests."""

import csv
import logging
import os
import sys
import time

import pytest

# Ensure the columnar_export package is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from columnar_export.errors import AdapterError  # noqa: E402
from columnar_export.ingestion.models import RowBatch, SourceKind, TableDescriptor  # noqa: E402
from columnar_export.ingestion.source_adapter import SourceHandle, check_capacity  # noqa: E402
from columnar_export.utils.storage import table_directory  # noqa: E402


SAMPLE_DUMP = """-- MySQL dump 10.13
/*!40101 SET NAMES utf8mb4 */;
DROP TABLE IF EXISTS `customers`;
CREATE TABLE `customers` (
  `id` int(11) NOT NULL AUTO_INCREMENT,
  `name` varchar(100) DEFAULT NULL,
  `balance` decimal(10,2) DEFAULT NULL,
  `created_at` datetime DEFAULT NULL,
  PRIMARY KEY (`id`)
) ENGINE=InnoDB DEFAULT CHARSET=utf8mb4;

LOCK TABLES `customers` WRITE;
INSERT INTO `customers` VALUES (1,'Alice','10.50','2024-01-01 10:00:00'),(2,'Bob, Jr.',NULL,'2024-01-02 11:30:00');
INSERT INTO `customers` VALUES (3,'O\\'Brien','7.25','2024-01-03 09:15:00');
UNLOCK TABLES;

# orders keep an explicit column list
CREATE TABLE `orders` (
  `order_id` bigint NOT NULL,
  `customer_id` int NOT NULL,
  `note` text,
  PRIMARY KEY (`order_id`)
);
INSERT INTO `orders` (`order_id`,`customer_id`,`note`) VALUES (100,1,'first; order'),(101,2,NULL);

CREATE TABLE `empty_table` (
  `id` int
);
"""


class ListAdapter:
    """In-memory source adapter used to drive export units in tests.

    Args:
        table_name: Table name reported by the adapter.
        columns: Column names of every batch.
        rows: Rows handed out in order.
        hints: Declared column types returned from ``open``.
        fail_at: Raise AdapterError when this batch index is requested.
        fail_on_open: Raise AdapterError from ``open``.
        delay: Seconds to sleep before every batch.
    """

    def __init__(self, table_name, columns, rows, hints=(), fail_at=None, fail_on_open=False, delay=0.0):
        self.table_name = table_name
        self.columns = tuple(columns)
        self.rows = list(rows)
        self.hints = tuple(hints)
        self.fail_at = fail_at
        self.fail_on_open = fail_on_open
        self.delay = delay
        self.position = 0
        self.batches_served = 0
        self.closed = False

    def open(self):
        if self.fail_on_open:
            raise AdapterError(f"Cannot open {self.table_name}")
        return SourceHandle(hints=self.hints, estimated_rows=len(self.rows))

    def next_batch(self, handle, capacity):
        check_capacity(capacity)
        if self.delay:
            time.sleep(self.delay)
        if self.fail_at is not None and self.batches_served == self.fail_at:
            raise AdapterError(f"Read failure in {self.table_name}")
        chunk = self.rows[self.position:self.position + capacity]
        if not chunk:
            handle.exhausted = True
            return None
        self.position += len(chunk)
        self.batches_served += 1
        return RowBatch(columns=self.columns, rows=list(chunk))

    def close(self, handle):
        self.closed = True


@pytest.fixture(autouse=True)
def restore_logging():
    """Undo handler and level changes made by setup_logging."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    factory = logging.getLogRecordFactory()
    yield
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)
    logging.setLogRecordFactory(factory)


@pytest.fixture
def list_adapter():
    """Return the in-memory adapter class."""
    return ListAdapter


@pytest.fixture
def output_root(tmp_path):
    """Create an empty output root directory."""
    root = tmp_path / "orc_output"
    root.mkdir()
    return root


@pytest.fixture
def make_descriptor(output_root):
    """Build table descriptors rooted in the temporary output directory."""

    def _make(name, source_kind=SourceKind.FILE, source_ref=""):
        return TableDescriptor(
            name=name,
            source_kind=source_kind,
            source_ref=source_ref or name,
            output_dir=table_directory(output_root, name),
        )

    return _make


@pytest.fixture
def sample_csv_file(tmp_path):
    """Create a CSV file with a header and five rows."""
    path = tmp_path / "people.csv"
    with open(path, "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(["id", "name", "score", "joined"])
        writer.writerow([1, "Alice", "9.5", "2024-01-01"])
        writer.writerow([2, "Bob, Jr.", "7.25", "2024-02-15"])
        writer.writerow([3, "Carol", "", "2024-03-10"])
        writer.writerow([4, "Dave", "8", ""])
        writer.writerow([5, "Eve", "6.75", "2024-05-30"])
    return path


@pytest.fixture
def csv_directory(tmp_path):
    """Create a directory holding two CSV files and one unrelated file."""
    directory = tmp_path / "exports"
    directory.mkdir()
    (directory / "cities.csv").write_text("city,population\nParis,2148000\nLyon,513000\nNice,342000\n")
    (directory / "flags.csv").write_text("code,active\nFR,true\nDE,false\n")
    (directory / "README.txt").write_text("not a table\n")
    return directory


@pytest.fixture
def sample_dump_file(tmp_path):
    """Create a MySQL style dump with three tables, one of them empty."""
    path = tmp_path / "backup.sql"
    path.write_text(SAMPLE_DUMP)
    return path


@pytest.fixture
def sqlite_engine(tmp_path):
    """Create a SQLite database with keyed, unkeyed and empty tables."""
    from sqlalchemy import text

    from columnar_export.utils.db_client import get_engine

    engine = get_engine(f"sqlite:///{tmp_path / 'source.db'}")
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE accounts (id INTEGER PRIMARY KEY, owner TEXT, amount REAL)"))
        conn.execute(text("CREATE TABLE events (kind TEXT, happened_at TEXT)"))
        conn.execute(text('CREATE TABLE "nothing" (id INTEGER PRIMARY KEY)'))
        conn.execute(
            text("INSERT INTO accounts (id, owner, amount) VALUES (:id, :owner, :amount)"),
            [{"id": i, "owner": f"owner-{i}", "amount": i * 1.5} for i in range(1, 8)],
        )
        conn.execute(
            text("INSERT INTO events (kind, happened_at) VALUES (:kind, :at)"),
            [
                {"kind": "login", "at": "2024-01-01 08:00:00"},
                {"kind": "logout", "at": "2024-01-01 09:00:00"},
                {"kind": "login", "at": "2024-01-02 08:30:00"},
            ],
        )
    yield engine
    engine.dispose()
