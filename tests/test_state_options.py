"""Tests for operation state, option models and progress reporting."""

import asyncio

import pytest

from db_migrator.engine.options import ExportOptions, ImportOptions, build_options
from db_migrator.engine.progress import ExportStage, ProgressEvent, ProgressReporter
from db_migrator.engine.state import ErrorType, OperationState, OperationStatus
from db_migrator.exceptions import (
    BatchInsertError,
    ConfigurationError,
    InvalidIdentifierError,
    PermissionDeniedError,
)


# ------------------------------------------------------------------
# OperationState
# ------------------------------------------------------------------


class TestOperationState:
    """Final status follows the recorded outcomes."""

    def _state(self) -> OperationState:
        return OperationState(operation_type="export", provider="SqlServer")

    def test_completed(self):
        state = self._state()
        state.mark_completed("dbo.Customers", rows=3)
        assert state.finalize() == OperationStatus.COMPLETED
        assert state.finished_at is not None

    def test_warnings_do_not_change_status(self):
        state = self._state()
        state.mark_completed("dbo.Customers")
        state.add_warning("Row count unavailable")
        assert state.finalize() == OperationStatus.COMPLETED

    def test_completed_with_errors(self):
        state = self._state()
        state.mark_completed("dbo.Customers", rows=3)
        state.mark_failed("dbo.Orders", PermissionDeniedError("denied", table="dbo.Orders"))
        assert state.finalize() == OperationStatus.COMPLETED_WITH_ERRORS

    def test_all_tables_failed(self):
        state = self._state()
        state.mark_failed("dbo.Orders", "boom")
        assert state.finalize() == OperationStatus.FAILED

    def test_aborted_and_cancelled(self):
        assert self._state().finalize(aborted=True) == OperationStatus.FAILED
        assert self._state().finalize(cancelled=True) == OperationStatus.CANCELLED

    def test_error_details_from_migration_errors(self):
        state = self._state()
        error = state.mark_failed(
            "dbo.Orders",
            BatchInsertError("row 7 failed", table="dbo.Orders", batch_number=3, row_index=7),
        )
        assert error.error_type == ErrorType.TABLE_PROCESSING
        assert error.error_code == "BATCH_INSERT_ERROR"
        assert error.message == "row 7 failed"
        assert (error.batch_number, error.row_index) == (3, 7)

    def test_general_error_does_not_fail_table(self):
        state = self._state()
        state.add_error("index creation failed", table="dbo.Orders")
        assert state.failed_tables == []
        assert state.errors[0].error_type == ErrorType.GENERAL

    def test_marks_are_idempotent(self):
        state = self._state()
        state.mark_completed("a")
        state.mark_completed("a")
        state.mark_skipped("b", "resumed")
        state.mark_skipped("b", "resumed")
        assert state.completed_tables == ["a"]
        assert state.skipped_tables == ["b"]

    def test_is_completed_ignores_case(self):
        state = self._state()
        state.mark_completed("dbo.Customers")
        assert state.is_completed("DBO.customers")

    def test_save_and_load(self, tmp_path):
        state = self._state()
        state.mark_completed("dbo.Customers", rows=3)
        state.mark_failed("dbo.Orders", "boom")
        state.finalize()
        path = state.save(tmp_path / "nested" / "export_state.json")

        loaded = OperationState.load(path)
        assert loaded.status == OperationStatus.COMPLETED_WITH_ERRORS
        assert loaded.table_row_counts == {"dbo.Customers": 3}
        assert loaded.errors[0].table == "dbo.Orders"

    def test_summary(self):
        state = self._state()
        state.mark_failed("dbo.Orders", "boom")
        state.finalize()
        summary = state.summary()
        assert summary.startswith("Export Failed")
        assert "[TableProcessingError] dbo.Orders: boom" in summary


# ------------------------------------------------------------------
# Options
# ------------------------------------------------------------------


class TestExportOptions:
    def test_defaults(self, tmp_path):
        options = ExportOptions(output_directory=tmp_path)
        assert options.batch_size == 100_000
        assert options.command_timeout == 300
        assert options.continue_on_error is True
        assert options.retry_on_timeout is True
        assert options.tables is None

    def test_tables_from_comma_string(self, tmp_path):
        options = ExportOptions(output_directory=tmp_path, tables=" a, dbo.b ,")
        assert options.tables == ["a", "dbo.b"]

    @pytest.mark.parametrize(
        "field, value",
        [("batch_size", 0), ("batch_size", 1_000_001), ("command_timeout", 29), ("command_timeout", 3601)],
    )
    def test_ranges(self, tmp_path, field, value):
        with pytest.raises(ConfigurationError) as exc_info:
            build_options(ExportOptions, output_directory=tmp_path, **{field: value})
        assert exc_info.value.config_key == field

    def test_directory_required(self):
        with pytest.raises(ConfigurationError) as exc_info:
            build_options(ExportOptions, output_directory="  ")
        assert exc_info.value.config_key == "output_directory"

    def test_criteria_must_name_selected_table(self, tmp_path):
        options = ExportOptions(
            output_directory=tmp_path, tables=["dbo.Orders"], table_criteria={"Customers": "a = 1"}
        )
        with pytest.raises(ConfigurationError, match="not in the table list"):
            options.check()

    def test_criteria_by_bare_name(self, tmp_path):
        options = ExportOptions(
            output_directory=tmp_path, tables=["dbo.Orders"], table_criteria={"Orders": "a = 1"}
        )
        options.check()

    def test_empty_criteria(self, tmp_path):
        options = ExportOptions(output_directory=tmp_path, table_criteria={"Orders": " "})
        with pytest.raises(ConfigurationError, match="Empty criteria"):
            options.check()

    def test_invalid_table_name(self, tmp_path):
        with pytest.raises(InvalidIdentifierError):
            build_options(ExportOptions, output_directory=tmp_path, tables=["a b"])


class TestImportOptions:
    def test_defaults(self, tmp_path):
        options = ImportOptions(input_directory=tmp_path)
        assert options.create_schema is True
        assert options.create_foreign_keys is True
        assert options.continue_on_error is False
        assert options.use_dependency_order is True

    def test_directory_required(self):
        with pytest.raises(ConfigurationError) as exc_info:
            build_options(ImportOptions, input_directory="")
        assert exc_info.value.config_key == "input_directory"


# ------------------------------------------------------------------
# Progress
# ------------------------------------------------------------------


class TestProgressReporter:
    def test_delivers_events(self):
        events = []
        reporter = ProgressReporter(events.append)
        reporter.report(ExportStage.EXPORTING_DATA, "batch", processed_rows=5, total_rows=10)
        assert events[0].stage == "ExportingData"
        assert events[0].percentage == 50.0
        assert reporter.last_event is events[0]

    def test_no_sink(self):
        event = ProgressReporter().report("Custom", "hello")
        assert event.stage == "Custom"

    def test_sink_errors_ignored(self):
        def _sink(event):
            raise RuntimeError("broken display")

        ProgressReporter(_sink).report(ExportStage.COMPLETED)

    async def test_async_sink_scheduled(self):
        received = []

        async def _sink(event):
            received.append(event.stage)

        ProgressReporter(_sink).report(ExportStage.FINALIZING)
        await asyncio.sleep(0)
        assert received == ["Finalizing"]

    def test_percentage_from_tables(self):
        event = ProgressEvent(stage="x", table_index=1, table_count=4)
        assert event.percentage == 25.0

    def test_percentage_capped(self):
        event = ProgressEvent(stage="x", processed_rows=12, total_rows=10)
        assert event.percentage == 100.0
