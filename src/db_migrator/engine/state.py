"""Operation state: per-table outcomes, errors and the final status.

An ``OperationState`` is the ledger an export or import fills in as it
runs.  It is returned to the caller, can be saved as JSON, and can be fed
back to a later run to skip tables that already completed.

Usage:
    from db_migrator.engine.state import OperationState

    state = OperationState(operation_type="export", provider="SqlServer")
    state.mark_completed("dbo.Customers", rows=2_500)
    state.mark_failed("dbo.Orders", PermissionDeniedError("denied", table="dbo.Orders"))
    state.finalize()
    state.status  # OperationStatus.COMPLETED_WITH_ERRORS
    state.save("exports/erp/export_state.json")
"""

import uuid
from datetime import datetime
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field

from db_migrator.exceptions import BatchInsertError, MigrationError


class OperationStatus(str, Enum):
    RUNNING = "Running"
    COMPLETED = "Completed"
    COMPLETED_WITH_ERRORS = "Completed with errors"
    FAILED = "Failed"
    CANCELLED = "Cancelled"


class ErrorType(str, Enum):
    TABLE_PROCESSING = "TableProcessingError"
    GENERAL = "General"


class OperationError(BaseModel):
    """One error attached to a run."""

    table: str | None = None
    message: str
    error_type: ErrorType = ErrorType.GENERAL
    error_code: str | None = None
    batch_number: int | None = None
    row_index: int | None = None
    timestamp: datetime = Field(default_factory=datetime.now)


class OperationState(BaseModel):
    """Mutable ledger of one export or import run."""

    operation_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    operation_type: str                       # "export" | "import"
    provider: str = ""
    directory: str = ""
    started_at: datetime = Field(default_factory=datetime.now)
    finished_at: datetime | None = None
    status: OperationStatus = OperationStatus.RUNNING
    stage: str = ""
    current_table: str | None = None
    completed_tables: list[str] = Field(default_factory=list)
    skipped_tables: list[str] = Field(default_factory=list)
    failed_tables: list[str] = Field(default_factory=list)
    table_row_counts: dict[str, int] = Field(default_factory=dict)
    processed_rows: int = 0
    total_rows: int = 0
    errors: list[OperationError] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def mark_completed(self, table: str, rows: int | None = None) -> None:
        if table not in self.completed_tables:
            self.completed_tables.append(table)
        if rows is not None:
            self.table_row_counts[table] = rows

    def mark_skipped(self, table: str, reason: str) -> None:
        if table not in self.skipped_tables:
            self.skipped_tables.append(table)
        self.add_warning(f"Table {table} skipped: {reason}")

    def mark_failed(self, table: str, error: BaseException | str) -> OperationError:
        """Record a table failure as a ``TableProcessingError``."""
        if table not in self.failed_tables:
            self.failed_tables.append(table)
        return self.add_error(error, table=table, error_type=ErrorType.TABLE_PROCESSING)

    def add_error(
        self,
        error: BaseException | str,
        table: str | None = None,
        error_type: ErrorType = ErrorType.GENERAL,
    ) -> OperationError:
        entry = OperationError(table=table, message=str(error), error_type=error_type)
        if isinstance(error, MigrationError):
            entry.message = error.message
            entry.error_code = error.error_code
        if isinstance(error, BatchInsertError):
            entry.batch_number = error.batch_number
            entry.row_index = error.row_index
        self.errors.append(entry)
        return entry

    def add_warning(self, warning: str) -> None:
        self.warnings.append(warning)

    def is_completed(self, table: str) -> bool:
        lowered = table.lower()
        return any(t.lower() == lowered for t in self.completed_tables)

    # ------------------------------------------------------------------
    # Outcome
    # ------------------------------------------------------------------

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    @property
    def duration_seconds(self) -> float:
        end = self.finished_at or datetime.now()
        return (end - self.started_at).total_seconds()

    def finalize(self, cancelled: bool = False, aborted: bool = False) -> OperationStatus:
        """Set the final status.

        - cancelled -> CANCELLED
        - aborted (fail-fast stop or run-level failure) -> FAILED
        - no errors -> COMPLETED
        - table failures and no completed table -> FAILED
        - otherwise -> COMPLETED_WITH_ERRORS
        """
        self.finished_at = datetime.now()
        self.current_table = None
        if cancelled:
            self.status = OperationStatus.CANCELLED
        elif aborted:
            self.status = OperationStatus.FAILED
        elif not self.errors:
            self.status = OperationStatus.COMPLETED
        elif self.failed_tables and not self.completed_tables:
            self.status = OperationStatus.FAILED
        else:
            self.status = OperationStatus.COMPLETED_WITH_ERRORS
        return self.status

    def summary(self) -> str:
        lines = [
            f"{self.operation_type.capitalize()} {self.status.value}: "
            f"{len(self.completed_tables)} completed, {len(self.skipped_tables)} skipped, "
            f"{len(self.failed_tables)} failed, {self.processed_rows:,} rows "
            f"in {self.duration_seconds:.1f}s"
        ]
        for err in self.errors:
            where = f"{err.table}: " if err.table else ""
            lines.append(f"  [{err.error_type.value}] {where}{err.message}")
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, path: str | Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.model_dump_json(indent=2))
        return path

    @classmethod
    def load(cls, path: str | Path) -> "OperationState":
        return cls.model_validate_json(Path(path).read_text())
