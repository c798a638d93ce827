"""Export a database into an archive directory.

The exporter walks the stages
``Initializing -> ConnectingDatabase -> DiscoveringTables ->
CalculatingDependencies -> ExportingSchema -> ExportingData -> Finalizing``
and ends in ``Completed``, ``Error`` or ``Cancelled``.

Tables are processed one at a time in dependency order.  Rows are pulled
from the provider's stream one batch at a time and each batch is written
to its own file before the next one is read.  A table failure is recorded
on the returned ``OperationState`` and the export moves on (unless
``continue_on_error`` is False).  Any manifest already in the directory is
replaced by an incomplete one before the first table is read, and the
final manifest is written last and lists only tables whose files were
fully written.  Files left by an earlier export of a table are removed
before that table is written again.

Usage:
    from db_migrator.engine.exporter import DatabaseExporter
    from db_migrator.engine.options import ExportOptions

    exporter = DatabaseExporter(provider, progress=print)
    state = await exporter.export(ExportOptions(output_directory="exports/erp"))
    print(state.summary())
"""

import asyncio
import logging
import math
from collections.abc import AsyncIterator
from contextlib import aclosing

from db_migrator.archive.models import (
    DependencyInfo,
    ExportManifest,
    ForeignKeyEdge,
    ManifestEntry,
    TableData,
)
from db_migrator.archive.store import ArchiveReader, ArchiveWriter
from db_migrator.engine.options import ExportOptions
from db_migrator.engine.progress import ExportStage, ProgressReporter, ProgressSink
from db_migrator.engine.state import OperationState
from db_migrator.exceptions import (
    ArchiveFormatError,
    CommandTimeoutError,
    ConfigurationError,
    MigrationError,
    OperationCancelledError,
)
from db_migrator.logging import get_logger
from db_migrator.providers.base import DatabaseProvider
from db_migrator.providers.sql import run_with_timeout
from db_migrator.schema.dependencies import (
    cross_table_foreign_keys,
    dependency_levels,
    topological_order,
)
from db_migrator.schema.models import RowData, TableSchema

logger = get_logger(__name__)


class _AbortExport(Exception):
    """Raised internally when a table fails and fail-fast is requested."""


async def _read_rows(rows: AsyncIterator[RowData], count: int) -> list[RowData]:
    """Pull up to ``count`` rows from an open stream."""
    result: list[RowData] = []
    while len(result) < count:
        try:
            result.append(await rows.__anext__())
        except StopAsyncIteration:
            break
    return result


def _find_criteria(criteria: dict[str, str], table: TableSchema) -> str | None:
    """Look up a table's predicate by full name, then by bare name."""
    lowered = {k.lower(): v for k, v in criteria.items()}
    return lowered.get(table.full_name.lower()) or lowered.get(table.name.lower())


class DatabaseExporter:
    """Exports tables from one provider into an archive directory.

    Args:
        provider: Source database provider (not yet connected).
        progress: Optional progress sink; called with every ``ProgressEvent``.
        cancel_event: Optional event; when set, the export stops after the
            batch being written.
        log: Logger to use instead of the module logger.
    """

    def __init__(
        self,
        provider: DatabaseProvider,
        progress: ProgressSink | None = None,
        cancel_event: asyncio.Event | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        self.provider = provider
        self.cancel_event = cancel_event or asyncio.Event()
        self.log = log or logger
        self.reporter = ProgressReporter(progress, self.log)
        self._estimates: dict[str, int] = {}

    def cancel(self) -> None:
        """Request cancellation; observed between batches."""
        self.cancel_event.set()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def export(
        self, options: ExportOptions, previous_state: OperationState | None = None
    ) -> OperationState:
        """Run the export.

        Args:
            options: Export options (validated with ``check()`` first).
            previous_state: State of an earlier run; its completed tables are
                skipped and their manifest entries carried over.

        Returns:
            The final ``OperationState``.

        Raises:
            ConfigurationError: On invalid options or unknown requested tables.
            DatabaseConnectionError: If the source cannot be reached.
        """
        options.check()
        state = OperationState(
            operation_type="export",
            provider=self.provider.provider_name.value,
            directory=str(options.output_directory),
        )
        self._stage(state, ExportStage.INITIALIZING, "Preparing export directory")
        writer = ArchiveWriter(options.output_directory)
        writer.prepare()
        carried = self._carried_entries(options, previous_state)
        # Until this run finishes, the manifest may only list carried tables.
        writer.write_manifest(self._manifest(options, list(carried.values()), complete=False))

        self._stage(state, ExportStage.CONNECTING, "Connecting to source database")
        await self.provider.connect()
        try:
            return await self._run(options, state, writer, previous_state, carried)
        finally:
            await self.provider.close()

    async def _run(
        self,
        options: ExportOptions,
        state: OperationState,
        writer: ArchiveWriter,
        previous_state: OperationState | None,
        carried: dict[str, ManifestEntry],
    ) -> OperationState:
        entries: list[ManifestEntry] = []
        cancelled = aborted = False

        try:
            self._stage(state, ExportStage.DISCOVERING_TABLES, "Discovering tables")
            tables = await self._discover(options, state)

            self._stage(
                state, ExportStage.CALCULATING_DEPENDENCIES, "Calculating table dependencies"
            )
            tables = topological_order(tables)
            writer.write_dependencies(self._dependency_info(tables))

            pending: list[TableSchema] = []
            for table in tables:
                name = table.full_name
                if previous_state is not None and previous_state.is_completed(name):
                    state.mark_skipped(name, "already exported by a previous run")
                    if name.lower() in carried:
                        entries.append(carried[name.lower()])
                    continue
                pending.append(table)

            self._stage(state, ExportStage.EXPORTING_SCHEMA, "Exporting table schemas")
            state.total_rows = await self._estimate_totals(pending, options, state)

            for index, table in enumerate(pending, start=1):
                self._check_cancelled()
                entry = await self._export_table_with_retry(
                    table, index, len(pending), options, state, writer
                )
                if entry is not None:
                    entries.append(entry)
        except OperationCancelledError:
            cancelled = True
            self.log.warning("Export cancelled")
        except _AbortExport:
            aborted = True
            self.log.error("Export aborted after a table failure")

        self._stage(state, ExportStage.FINALIZING, "Writing export manifest")
        writer.write_manifest(
            self._manifest(options, entries, complete=not (cancelled or aborted))
        )

        status = state.finalize(cancelled=cancelled, aborted=aborted)
        final_stage = (
            ExportStage.CANCELLED
            if cancelled
            else ExportStage.ERROR if state.failed_tables or aborted else ExportStage.COMPLETED
        )
        self._stage(state, final_stage, f"Export {status.value.lower()}")
        self.log.info(
            "Export %s: %d tables, %d rows",
            status.value.lower(),
            len(state.completed_tables),
            state.processed_rows,
        )
        return state

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def _discover(self, options: ExportOptions, state: OperationState) -> list[TableSchema]:
        listed = await self.provider.get_tables(options.tables)
        if options.tables:
            self._check_requested(options.tables, listed)
        self._check_criteria(options.table_criteria, listed)

        tables: list[TableSchema] = []
        for table in listed:
            try:
                tables.append(await self.provider.get_table_schema(table.name, table.schema_name))
            except MigrationError as e:
                self._table_failed(state, table.full_name, e, options)
        self.log.info("Discovered %d tables", len(tables))
        return tables

    @staticmethod
    def _check_requested(requested: list[str], listed: list[TableSchema]) -> None:
        full = {t.full_name.lower() for t in listed}
        bare = {t.name.lower() for t in listed}
        missing = [
            name
            for name in requested
            if name.lower() not in full and name.split(".")[-1].lower() not in bare
        ]
        if missing:
            raise ConfigurationError(
                f"Requested tables not found: {', '.join(missing)}", config_key="tables"
            )

    @staticmethod
    def _check_criteria(criteria: dict[str, str], listed: list[TableSchema]) -> None:
        full = {t.full_name.lower() for t in listed}
        bare = {t.name.lower() for t in listed}
        for key in criteria:
            if key.lower() not in full and key.lower() not in bare:
                raise ConfigurationError(
                    f"Criteria given for unknown table '{key}'", config_key="table_criteria"
                )

    def _manifest(
        self, options: ExportOptions, entries: list[ManifestEntry], complete: bool
    ) -> ExportManifest:
        return ExportManifest(
            source_provider=self.provider.provider_name.value,
            database_name=getattr(self.provider, "database_name", None),
            complete=complete,
            batch_size=options.batch_size,
            schema_only=options.schema_only,
            tables=entries,
        )

    @staticmethod
    def _dependency_info(tables: list[TableSchema]) -> DependencyInfo:
        levels = dependency_levels(tables)
        return DependencyInfo(
            levels={str(level): names for level, names in levels.items()},
            foreign_keys=[ForeignKeyEdge(**edge) for edge in cross_table_foreign_keys(tables)],
        )

    def _carried_entries(
        self, options: ExportOptions, previous_state: OperationState | None
    ) -> dict[str, ManifestEntry]:
        """Manifest entries of tables a previous run already exported."""
        if previous_state is None or not previous_state.completed_tables:
            return {}
        reader = ArchiveReader(options.output_directory)
        if not reader.has_manifest():
            return {}
        try:
            manifest = reader.load_manifest()
        except ArchiveFormatError as e:
            self.log.warning("Cannot reuse previous manifest: %s", e)
            return {}
        return {
            e.full_name.lower(): e
            for e in manifest.tables
            if previous_state.is_completed(e.full_name)
        }

    async def _estimate_totals(
        self, tables: list[TableSchema], options: ExportOptions, state: OperationState
    ) -> int:
        if options.schema_only:
            return 0
        total = 0
        for table in tables:
            count = await self.provider.estimate_row_count(
                table.name, table.schema_name, _find_criteria(options.table_criteria, table)
            )
            if count < 0:
                state.add_warning(f"Row count unavailable for {table.full_name} ({count})")
                continue
            self._estimates[table.full_name] = count
            total += count
        return total

    # ------------------------------------------------------------------
    # Per table
    # ------------------------------------------------------------------

    async def _export_table_with_retry(
        self,
        table: TableSchema,
        index: int,
        count: int,
        options: ExportOptions,
        state: OperationState,
        writer: ArchiveWriter,
    ) -> ManifestEntry | None:
        name = table.full_name
        state.current_table = name
        attempts = 2 if options.retry_on_timeout else 1
        for attempt in range(1, attempts + 1):
            processed_before = state.processed_rows
            try:
                entry = await self._export_table(table, index, count, options, state, writer)
            except (OperationCancelledError, asyncio.CancelledError):
                writer.remove_table_files(table.name, table.schema_name)
                raise
            except CommandTimeoutError as e:
                writer.remove_table_files(table.name, table.schema_name)
                state.processed_rows = processed_before
                if attempt < attempts:
                    self.log.warning("Timeout exporting %s; retrying once", name)
                    state.add_warning(f"Table {name} timed out and was retried")
                    continue
                self._table_failed(state, name, e, options)
                return None
            except Exception as e:
                writer.remove_table_files(table.name, table.schema_name)
                state.processed_rows = processed_before
                self._table_failed(state, name, e, options)
                return None
            state.mark_completed(name, entry.row_count)
            self.log.info("Exported %s (%d rows)", name, entry.row_count)
            return entry
        return None

    async def _export_table(
        self,
        table: TableSchema,
        index: int,
        count: int,
        options: ExportOptions,
        state: OperationState,
        writer: ArchiveWriter,
    ) -> ManifestEntry:
        estimate = self._estimates.get(table.full_name, 0)
        stale = writer.remove_table_files(table.name, table.schema_name)
        if stale:
            self.log.debug("Removed %d files of an earlier export of %s", len(stale), table.full_name)
        metadata_file = writer.write_metadata(table, row_count=estimate)
        entry = ManifestEntry(
            table_name=table.name,
            schema_name=table.schema_name,
            metadata_file=metadata_file,
            schema_only=options.schema_only,
        )
        if options.schema_only:
            self.reporter.report(
                ExportStage.EXPORTING_SCHEMA,
                f"Exported schema of {table.full_name}",
                current_table=table.full_name,
                table_index=index,
                table_count=count,
            )
            return entry

        entry.data_files, entry.row_count = await self._export_rows(
            table, index, count, options, state, writer
        )
        entry.has_data = entry.row_count > 0
        if entry.row_count != estimate:
            writer.write_metadata(table, row_count=entry.row_count)
        return entry

    async def _export_rows(
        self,
        table: TableSchema,
        index: int,
        count: int,
        options: ExportOptions,
        state: OperationState,
        writer: ArchiveWriter,
    ) -> tuple[list[str], int]:
        """Stream a table into batch files.

        One row is read past each full batch so the batch can be flagged as
        last (and named as a single file) before it is written.
        """
        state.stage = ExportStage.EXPORTING_DATA.value
        size = options.batch_size
        timeout = options.command_timeout
        where = _find_criteria(options.table_criteria, table)
        estimate = self._estimates.get(table.full_name, 0)
        estimated_batches = math.ceil(estimate / size) if estimate > 0 else None
        columns = [c.name for c in table.ordered_columns]
        files: list[str] = []
        written = 0
        batch_number = 0
        carry: list[RowData] = []

        stream = self.provider.get_table_data(table.name, table.schema_name, where, size)
        async with aclosing(stream) as rows:
            while True:
                batch = carry + await run_with_timeout(
                    _read_rows(rows, size - len(carry)), timeout, f"Reading {table.full_name}"
                )
                if not batch:
                    break
                peek: list[RowData] = []
                if len(batch) == size:
                    peek = await run_with_timeout(
                        _read_rows(rows, 1), timeout, f"Reading {table.full_name}"
                    )
                is_last = not peek
                batch_number += 1
                written += len(batch)

                data = TableData(
                    table_name=table.name,
                    schema_name=table.schema_name,
                    columns=columns or list(batch[0]),
                    rows=batch,
                    batch_number=batch_number,
                    total_batches=batch_number
                    if is_last
                    else max(estimated_batches or 0, batch_number + 1),
                    is_last_batch=is_last,
                    total_count=written,
                )
                files.append(writer.write_batch(data, single=is_last and batch_number == 1))
                state.processed_rows += len(batch)
                self.reporter.report(
                    ExportStage.EXPORTING_DATA,
                    f"Exported batch {batch_number} of {table.full_name}",
                    current_table=table.full_name,
                    processed_rows=state.processed_rows,
                    total_rows=state.total_rows,
                    table_index=index,
                    table_count=count,
                    warnings=list(state.warnings),
                    completed_tables=list(state.completed_tables),
                    skipped_tables=list(state.skipped_tables),
                )
                if is_last:
                    break
                self._check_cancelled()
                carry = peek

        return files, written

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise OperationCancelledError("Export cancelled")

    def _table_failed(
        self, state: OperationState, name: str, error: BaseException, options: ExportOptions
    ) -> None:
        self.log.error("Failed to export %s: %s", name, error)
        state.mark_failed(name, error)
        if not options.continue_on_error:
            raise _AbortExport(name)

    def _stage(self, state: OperationState, stage: ExportStage, message: str) -> None:
        state.stage = stage.value
        self.log.info(message)
        self.reporter.report(
            stage,
            message,
            processed_rows=state.processed_rows,
            total_rows=state.total_rows,
            warnings=list(state.warnings),
            completed_tables=list(state.completed_tables),
            skipped_tables=list(state.skipped_tables),
        )
