"""Tests for the export unit state machine."""

import math
import threading

import pytest

from columnar_export.ingestion.export_unit import ExportUnit, UnitState
from columnar_export.ingestion.models import OutcomeStatus
from columnar_export.ingestion.part_writer import PartWriter
from columnar_export.ingestion.schema_detector import ColumnSpec, ColumnType
from columnar_export.utils.storage import list_part_files, list_temp_files, read_table


def _rows(count):
    return [(i, f"name-{i}") for i in range(count)]


class _Recorder:
    """Collects state transitions."""

    def __init__(self):
        self.states = []

    def __call__(self, table_name, state):
        self.states.append(state)


class TestExportUnit:
    """Tests for ExportUnit.run."""

    def test_ten_rows_at_capacity_three(self, list_adapter, make_descriptor):
        descriptor = make_descriptor("people")
        adapter = list_adapter("people", ("id", "name"), _rows(10))

        outcome = ExportUnit(descriptor, adapter, PartWriter(), chunk_size=3).run()

        assert outcome.status is OutcomeStatus.SUCCEEDED
        assert outcome.row_count == 10
        assert [p.row_count for p in outcome.parts] == [3, 3, 3, 1]
        assert [p.path.name for p in list_part_files(descriptor.output_dir)] == [
            "part-00000.orc", "part-00001.orc", "part-00002.orc", "part-00003.orc",
        ]
        assert read_table(descriptor.output_dir).column("id").to_pylist() == list(range(10))
        assert adapter.closed is True

    def test_state_sequence_on_success(self, list_adapter, make_descriptor):
        recorder = _Recorder()
        adapter = list_adapter("t", ("id", "name"), _rows(4))

        ExportUnit(make_descriptor("t"), adapter, PartWriter(), 2, state_listener=recorder).run()

        assert recorder.states == [
            UnitState.OPENING,
            UnitState.SCHEMA_PENDING,
            UnitState.STREAMING,
            UnitState.CLOSING,
            UnitState.SUCCEEDED,
        ]

    def test_empty_table_succeeds_with_zero_parts(self, list_adapter, make_descriptor):
        descriptor = make_descriptor("empty")
        recorder = _Recorder()
        adapter = list_adapter("empty", ("id",), [])

        outcome = ExportUnit(descriptor, adapter, PartWriter(), 5, state_listener=recorder).run()

        assert outcome.status is OutcomeStatus.SUCCEEDED
        assert outcome.part_count == 0
        assert outcome.row_count == 0
        assert outcome.schema is None
        assert list_part_files(descriptor.output_dir) == []
        assert UnitState.STREAMING not in recorder.states

    def test_empty_table_clears_previous_parts(self, list_adapter, make_descriptor):
        descriptor = make_descriptor("shrunk")
        ExportUnit(descriptor, list_adapter("shrunk", ("id", "name"), _rows(3)), PartWriter(), 2).run()
        assert len(list_part_files(descriptor.output_dir)) == 2

        ExportUnit(descriptor, list_adapter("shrunk", ("id", "name"), []), PartWriter(), 2).run()

        assert list_part_files(descriptor.output_dir) == []

    @pytest.mark.parametrize("batch_index", [1, 2, 3])
    def test_schema_conflict_keeps_completed_parts(self, list_adapter, make_descriptor, batch_index):
        descriptor = make_descriptor("conflict")
        rows = _rows(12)
        rows[batch_index * 3] = ("not-an-int", "bad")
        adapter = list_adapter("conflict", ("id", "name"), rows)

        outcome = ExportUnit(descriptor, adapter, PartWriter(), 3).run()

        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.error_type == "SchemaConflictError"
        assert outcome.part_count == batch_index
        assert outcome.row_count == batch_index * 3
        assert len(list_part_files(descriptor.output_dir)) == batch_index
        assert list_temp_files(descriptor.output_dir) == []
        assert read_table(descriptor.output_dir).num_rows == batch_index * 3

    def test_open_failure_writes_nothing(self, list_adapter, make_descriptor):
        descriptor = make_descriptor("broken")
        adapter = list_adapter("broken", ("id",), _rows(3), fail_on_open=True)

        outcome = ExportUnit(descriptor, adapter, PartWriter(), 3).run()

        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.error_type == "AdapterError"
        assert outcome.part_count == 0
        assert not descriptor.output_dir.exists()

    def test_read_failure_mid_stream(self, list_adapter, make_descriptor):
        adapter = list_adapter("t", ("id", "name"), _rows(9), fail_at=2)

        outcome = ExportUnit(make_descriptor("t"), adapter, PartWriter(), 3).run()

        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.error_type == "AdapterError"
        assert outcome.part_count == 2
        assert adapter.closed is True

    def test_unexpected_error_is_contained(self, list_adapter, make_descriptor):
        adapter = list_adapter("t", ("id", "name"), _rows(3))
        adapter.next_batch = lambda handle, capacity: 1 / 0

        unit = ExportUnit(make_descriptor("t"), adapter, PartWriter(), 3)
        outcome = unit.run()

        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.error_type == "ZeroDivisionError"
        assert isinstance(unit.error, ZeroDivisionError)

    def test_declared_hints_are_applied(self, list_adapter, make_descriptor):
        descriptor = make_descriptor("t")
        adapter = list_adapter("t", ("id", "name"), _rows(2), hints=[ColumnSpec("id", ColumnType.STRING)])

        outcome = ExportUnit(descriptor, adapter, PartWriter(), 10).run()

        assert outcome.schema == [{"name": "id", "type": "string"}, {"name": "name", "type": "string"}]
        assert read_table(descriptor.output_dir).column("id").to_pylist() == ["0", "1"]

    def test_cancelled_before_start(self, list_adapter, make_descriptor):
        event = threading.Event()
        event.set()
        adapter = list_adapter("t", ("id", "name"), _rows(6))

        outcome = ExportUnit(make_descriptor("t"), adapter, PartWriter(), 3, cancel_event=event).run()

        assert outcome.status is OutcomeStatus.FAILED
        assert outcome.cancelled is True
        assert outcome.part_count == 0

    def test_cancelled_after_first_part(self, list_adapter, make_descriptor):
        event = threading.Event()

        def cancel_when_streaming(table_name, state):
            if state is UnitState.STREAMING:
                event.set()

        adapter = list_adapter("t", ("id", "name"), _rows(9))
        outcome = ExportUnit(
            make_descriptor("t"), adapter, PartWriter(), 3,
            cancel_event=event, state_listener=cancel_when_streaming,
        ).run()

        assert outcome.cancelled is True
        assert outcome.error_type == "ExportCancelledError"
        assert outcome.part_count == 1

    @pytest.mark.parametrize("capacity", [1, 100, 100000])
    def test_capacity_is_never_exceeded(self, list_adapter, make_descriptor, capacity):
        adapter = list_adapter("t", ("id", "name"), _rows(120))

        outcome = ExportUnit(make_descriptor("t"), adapter, PartWriter(), capacity).run()

        assert outcome.is_success
        assert all(p.row_count <= capacity for p in outcome.parts)
        assert outcome.part_count == math.ceil(120 / capacity)
        assert [p.sequence_number for p in outcome.parts] == list(range(outcome.part_count))
