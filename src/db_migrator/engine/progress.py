"""Progress events and the reporter that delivers them to a sink.

The sink is any callable taking a ``ProgressEvent``.  Delivery is
fire-and-forget: a sink that raises is logged and ignored, and a sink
returning an awaitable is scheduled without being awaited.

Usage:
    from db_migrator.engine.progress import ProgressReporter, ExportStage

    reporter = ProgressReporter(lambda e: print(e.stage, e.message))
    reporter.report(ExportStage.EXPORTING_DATA, "Exporting dbo.Orders",
                    current_table="dbo.Orders", processed_rows=1000, total_rows=5000)
"""

import asyncio
import inspect
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel, Field

from db_migrator.logging import get_logger

logger = get_logger(__name__)


class ExportStage(str, Enum):
    INITIALIZING = "Initializing"
    CONNECTING = "ConnectingDatabase"
    DISCOVERING_TABLES = "DiscoveringTables"
    CALCULATING_DEPENDENCIES = "CalculatingDependencies"
    EXPORTING_SCHEMA = "ExportingSchema"
    EXPORTING_DATA = "ExportingData"
    FINALIZING = "Finalizing"
    COMPLETED = "Completed"
    ERROR = "Error"
    CANCELLED = "Cancelled"


class ImportStage(str, Enum):
    INITIALIZING = "Initializing"
    CONNECTING = "ConnectingDatabase"
    IMPORTING_SCHEMA = "ImportingSchema"
    CREATING_INDEXES = "CreatingIndexes"
    IMPORTING_DATA = "ImportingData"
    CREATING_FOREIGN_KEYS = "CreatingForeignKeys"
    FINALIZING = "Finalizing"
    COMPLETED = "Completed"
    ERROR = "Error"
    CANCELLED = "Cancelled"


class ProgressEvent(BaseModel):
    """One progress update."""

    stage: str
    message: str = ""
    current_table: str | None = None
    processed_rows: int = 0
    total_rows: int = 0
    processed_bytes: int = 0
    total_bytes: int = 0
    table_index: int = 0                 # 1-based position of current_table
    table_count: int = 0
    warnings: list[str] = Field(default_factory=list)
    completed_tables: list[str] = Field(default_factory=list)
    skipped_tables: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=datetime.now)

    @property
    def percentage(self) -> float:
        """Row-based percentage, falling back to table position."""
        if self.total_rows > 0:
            return min(100.0, self.processed_rows / self.total_rows * 100)
        if self.table_count > 0:
            return min(100.0, self.table_index / self.table_count * 100)
        return 0.0


ProgressSink = Callable[[ProgressEvent], Any]


class ProgressReporter:
    """Builds ``ProgressEvent`` objects and hands them to the sink."""

    def __init__(self, sink: ProgressSink | None = None, log: logging.Logger | None = None):
        self._sink = sink
        self._log = log or logger
        self._pending: set[asyncio.Future] = set()
        self.last_event: ProgressEvent | None = None

    def report(self, stage: Enum | str, message: str = "", **fields: Any) -> ProgressEvent:
        stage_name = stage.value if isinstance(stage, Enum) else str(stage)
        event = ProgressEvent(stage=stage_name, message=message, **fields)
        self.last_event = event
        self._log.debug("[%s] %s", stage_name, message)
        if self._sink is None:
            return event
        try:
            result = self._sink(event)
        except Exception as e:
            self._log.warning("Progress sink raised %s; ignoring", e)
            return event
        if inspect.isawaitable(result):
            future = asyncio.ensure_future(result)
            self._pending.add(future)
            future.add_done_callback(self._discard)
        return event

    def _discard(self, future: asyncio.Future) -> None:
        self._pending.discard(future)
        if not future.cancelled() and future.exception() is not None:
            self._log.warning("Progress sink raised %s; ignoring", future.exception())
