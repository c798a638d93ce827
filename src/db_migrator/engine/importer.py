"""Import an archive directory into a database.

Stages: ``Initializing -> ConnectingDatabase -> ImportingSchema ->
CreatingIndexes -> ImportingData -> CreatingForeignKeys -> Finalizing``,
ending in ``Completed``, ``Error`` or ``Cancelled``.

Every table is created (and loaded) before any foreign key is added, and a
foreign key is only created when both of its tables exist and neither
failed.  When the archive came from a different engine, each table passes
through the type mapper before DDL and each value through
``coerce_value`` before insertion.  Data is inserted in the batches it was
written in.

Usage:
    from db_migrator.engine.importer import DatabaseImporter
    from db_migrator.engine.options import ImportOptions

    importer = DatabaseImporter(provider)
    state = await importer.import_(ImportOptions(input_directory="exports/erp"))
    if state.status != OperationStatus.COMPLETED:
        print(state.summary())
"""

import asyncio
import logging

from db_migrator.archive.models import ExportManifest, ManifestEntry
from db_migrator.archive.store import ArchiveReader
from db_migrator.constants import EngineName
from db_migrator.engine.options import ImportOptions
from db_migrator.engine.progress import ImportStage, ProgressReporter, ProgressSink
from db_migrator.engine.state import ErrorType, OperationState
from db_migrator.exceptions import (
    ConfigurationError,
    OperationCancelledError,
    TableExistsError,
)
from db_migrator.logging import get_logger
from db_migrator.providers.base import DatabaseProvider
from db_migrator.schema.dependencies import order_by_levels, topological_order
from db_migrator.schema.models import ForeignKeyDefinition, RowData, TableSchema
from db_migrator.schema.type_mapper import coerce_value, map_table

logger = get_logger(__name__)


class _AbortImport(Exception):
    """Raised internally when a table fails and fail-fast is requested."""


class _ImportTable:
    """A manifest entry paired with the (mapped) schema to create."""

    def __init__(self, entry: ManifestEntry, table: TableSchema) -> None:
        self.entry = entry
        self.table = table

    @property
    def name(self) -> str:
        return self.table.full_name


def _coerce_rows(table: TableSchema, rows: list[RowData]) -> list[RowData]:
    types = {c.name: c.data_type for c in table.columns}
    return [
        {k: coerce_value(v, types[k]) if k in types else v for k, v in row.items()}
        for row in rows
    ]


class DatabaseImporter:
    """Imports an archive into one provider.

    Args:
        provider: Target database provider (not yet connected).
        progress: Optional progress sink.
        cancel_event: Optional event; when set, the import stops after the
            batch being inserted.
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

    def cancel(self) -> None:
        """Request cancellation; observed between batches."""
        self.cancel_event.set()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def import_(
        self, options: ImportOptions, previous_state: OperationState | None = None
    ) -> OperationState:
        """Run the import.

        Args:
            options: Import options.
            previous_state: State of an earlier run; its completed tables are
                skipped (they still count as existing foreign key targets).

        Returns:
            The final ``OperationState``.

        Raises:
            ArchiveFormatError: If the manifest is missing or unreadable.
            ConfigurationError: On invalid options, an unknown source engine
                or requested tables missing from the archive.
            DatabaseConnectionError: If the target cannot be reached.
        """
        options.check()
        state = OperationState(
            operation_type="import",
            provider=self.provider.provider_name.value,
            directory=str(options.input_directory),
        )
        self._stage(state, ImportStage.INITIALIZING, "Reading export manifest")
        reader = ArchiveReader(options.input_directory)
        manifest = reader.load_manifest()
        if not manifest.complete:
            state.add_warning("Archive is marked incomplete; importing the tables it lists")
        source = self._source_engine(manifest)
        entries = self._select_entries(manifest, options.tables)

        self._stage(state, ImportStage.CONNECTING, "Connecting to target database")
        await self.provider.connect()
        try:
            return await self._run(options, state, reader, source, entries, previous_state)
        finally:
            await self.provider.close()

    async def _run(
        self,
        options: ImportOptions,
        state: OperationState,
        reader: ArchiveReader,
        source: EngineName,
        entries: list[ManifestEntry],
        previous_state: OperationState | None,
    ) -> OperationState:
        cancelled = aborted = False
        cross_engine = source != self.provider.provider_name
        existing: set[str] = set()

        try:
            tables = await self._load_tables(reader, source, entries, options, state)
            tables = self._order(reader, tables, options.use_dependency_order)

            pending: list[_ImportTable] = []
            for item in tables:
                if previous_state is not None and previous_state.is_completed(item.name):
                    state.mark_skipped(item.name, "already imported by a previous run")
                    existing.add(item.name.lower())
                    continue
                pending.append(item)
            state.total_rows = sum(
                max(i.entry.row_count, 0) for i in pending if not i.entry.schema_only
            )

            if options.create_schema:
                self._stage(state, ImportStage.IMPORTING_SCHEMA, "Creating tables")
                for index, item in enumerate(pending, start=1):
                    await self._create_table(item, index, len(pending), options, state)

                if options.create_indexes:
                    self._stage(state, ImportStage.CREATING_INDEXES, "Creating indexes")
                    for item in self._alive(pending, state):
                        await self._create_indexes(item, state)

            load_data = not options.schema_only
            if load_data:
                self._stage(state, ImportStage.IMPORTING_DATA, "Importing data")
            for index, item in enumerate(self._alive(pending, state), start=1):
                if load_data and not item.entry.schema_only:
                    await self._import_rows(
                        item, index, len(pending), reader, cross_engine, options, state
                    )
                else:
                    state.mark_completed(item.name, 0)

            if options.create_foreign_keys:
                self._stage(
                    state, ImportStage.CREATING_FOREIGN_KEYS, "Creating foreign keys"
                )
                existing.update(i.name.lower() for i in self._alive(pending, state))
                for item in self._alive(pending, state):
                    await self._create_foreign_keys(item, existing, state)
        except OperationCancelledError:
            cancelled = True
            self.log.warning("Import cancelled")
        except _AbortImport:
            aborted = True
            self.log.error("Import aborted after a table failure")

        self._stage(state, ImportStage.FINALIZING, "Finalizing import")
        status = state.finalize(cancelled=cancelled, aborted=aborted)
        final_stage = (
            ImportStage.CANCELLED
            if cancelled
            else ImportStage.ERROR if state.failed_tables or aborted else ImportStage.COMPLETED
        )
        self._stage(state, final_stage, f"Import {status.value.lower()}")
        self.log.info(
            "Import %s: %d tables, %d rows",
            status.value.lower(),
            len(state.completed_tables),
            state.processed_rows,
        )
        return state

    # ------------------------------------------------------------------
    # Preparation
    # ------------------------------------------------------------------

    @staticmethod
    def _source_engine(manifest: ExportManifest) -> EngineName:
        try:
            return EngineName(manifest.source_provider)
        except ValueError as e:
            raise ConfigurationError(
                f"Archive was written by unknown engine '{manifest.source_provider}'",
                config_key="source_provider",
            ) from e

    @staticmethod
    def _select_entries(
        manifest: ExportManifest, tables: list[str] | None
    ) -> list[ManifestEntry]:
        if not tables:
            return list(manifest.tables)
        selected: list[ManifestEntry] = []
        missing: list[str] = []
        for name in tables:
            entry = manifest.entry(name)
            if entry is None:
                missing.append(name)
            elif entry not in selected:
                selected.append(entry)
        if missing:
            raise ConfigurationError(
                f"Tables not in archive: {', '.join(missing)}", config_key="tables"
            )
        return selected

    async def _load_tables(
        self,
        reader: ArchiveReader,
        source: EngineName,
        entries: list[ManifestEntry],
        options: ImportOptions,
        state: OperationState,
    ) -> list[_ImportTable]:
        target = self.provider.provider_name
        tables: list[_ImportTable] = []
        for entry in entries:
            try:
                metadata = await asyncio.to_thread(reader.read_metadata, entry)
            except Exception as e:
                self._table_failed(state, entry.full_name, e, options)
                continue
            table, warnings = map_table(source, target, metadata.table)
            for warning in warnings:
                self.log.warning(warning)
                state.add_warning(warning)
            tables.append(_ImportTable(entry, table))
        return tables

    def _order(
        self, reader: ArchiveReader, tables: list[_ImportTable], use_levels: bool
    ) -> list[_ImportTable]:
        by_id = {id(t.table): t for t in tables}
        schemas = [t.table for t in tables]
        dependencies = reader.load_dependencies() if use_levels else None
        if dependencies is not None and dependencies.levels:
            # levels use archive names; mapping may have moved tables to another schema
            mapped = {t.entry.full_name.lower(): t.name for t in tables}
            levels = {
                level: [mapped.get(name.lower(), name) for name in names]
                for level, names in dependencies.levels.items()
            }
            ordered = order_by_levels(schemas, levels)
        else:
            ordered = topological_order(schemas)
        return [by_id[id(s)] for s in ordered]

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _create_table(
        self,
        item: _ImportTable,
        index: int,
        count: int,
        options: ImportOptions,
        state: OperationState,
    ) -> None:
        table = item.table
        state.current_table = item.name
        self.reporter.report(
            ImportStage.IMPORTING_SCHEMA,
            f"Creating {item.name}",
            current_table=item.name,
            table_index=index,
            table_count=count,
        )
        try:
            if await self.provider.table_exists(table.name, table.schema_name):
                raise TableExistsError(item.name)
            await self.provider.create_table(table)
            self.log.info("Created table %s", item.name)
        except Exception as e:
            self._table_failed(state, item.name, e, options)

    async def _create_indexes(self, item: _ImportTable, state: OperationState) -> None:
        state.current_table = item.name
        try:
            await self.provider.create_indexes(item.table)
            await self.provider.create_constraints(item.table)
        except Exception as e:
            self.log.error("Failed to create indexes on %s: %s", item.name, e)
            state.add_error(e, table=item.name, error_type=ErrorType.GENERAL)

    async def _import_rows(
        self,
        item: _ImportTable,
        index: int,
        count: int,
        reader: ArchiveReader,
        cross_engine: bool,
        options: ImportOptions,
        state: OperationState,
    ) -> None:
        table = item.table
        state.current_table = item.name
        inserted = 0
        try:
            for relative in item.entry.data_files:
                self._check_cancelled()
                batch = await asyncio.to_thread(reader.read_batch, relative)
                rows = _coerce_rows(table, batch.rows) if cross_engine else batch.rows
                inserted += await self.provider.import_data(
                    table, rows, options.batch_size, batch.batch_number
                )
                state.processed_rows += len(rows)
                self.reporter.report(
                    ImportStage.IMPORTING_DATA,
                    f"Imported batch {batch.batch_number} of {item.name}",
                    current_table=item.name,
                    processed_rows=state.processed_rows,
                    total_rows=state.total_rows,
                    table_index=index,
                    table_count=count,
                    warnings=list(state.warnings),
                    completed_tables=list(state.completed_tables),
                    skipped_tables=list(state.skipped_tables),
                )
        except OperationCancelledError:
            raise
        except Exception as e:
            self._table_failed(state, item.name, e, options)
            return
        if inserted != item.entry.row_count:
            state.add_warning(
                f"{item.name}: archive lists {item.entry.row_count} rows, imported {inserted}"
            )
        state.mark_completed(item.name, inserted)
        self.log.info("Imported %s (%d rows)", item.name, inserted)

    async def _create_foreign_keys(
        self, item: _ImportTable, existing: set[str], state: OperationState
    ) -> None:
        failed = {t.lower() for t in state.failed_tables}
        table = item.table
        if not table.foreign_keys:
            return
        state.current_table = item.name
        ready: list[ForeignKeyDefinition] = []
        for fk in table.foreign_keys:
            if await self._reference_exists(fk, table, existing, failed):
                ready.append(fk)
            else:
                message = (
                    f"Foreign key {fk.name} on {item.name} skipped: "
                    f"{fk.referenced_full_name} was not imported"
                )
                self.log.warning(message)
                state.add_warning(message)
        if not ready:
            return
        try:
            await self.provider.create_foreign_keys(
                table.model_copy(update={"foreign_keys": ready})
            )
        except Exception as e:
            self.log.error("Failed to create foreign keys on %s: %s", item.name, e)
            state.add_error(e, table=item.name, error_type=ErrorType.GENERAL)

    async def _reference_exists(
        self,
        fk: ForeignKeyDefinition,
        table: TableSchema,
        existing: set[str],
        failed: set[str],
    ) -> bool:
        """True when the referenced table is available and did not fail."""
        schema = fk.referenced_schema or table.schema_name
        candidates = {fk.referenced_full_name.lower()}
        qualified = f"{schema}.{fk.referenced_table}" if schema else fk.referenced_table
        candidates.add(qualified.lower())
        if candidates & failed:
            return False
        if candidates & existing:
            return True
        return await self.provider.table_exists(fk.referenced_table, schema)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _alive(tables: list[_ImportTable], state: OperationState) -> list[_ImportTable]:
        failed = {t.lower() for t in state.failed_tables}
        return [t for t in tables if t.name.lower() not in failed]

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise OperationCancelledError("Import cancelled")

    def _table_failed(
        self, state: OperationState, name: str, error: BaseException, options: ImportOptions
    ) -> None:
        self.log.error("Failed to import %s: %s", name, error)
        state.mark_failed(name, error)
        if not options.continue_on_error:
            raise _AbortImport(name)

    def _stage(self, state: OperationState, stage: ImportStage, message: str) -> None:
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
