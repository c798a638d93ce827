"""Import-side conflict check.

For each table in an archive, looks the table up in the target database
(in the schema the import would use) and classifies it:

- ``New``: the table does not exist; it will be created.
- ``EmptyTarget``: the table exists with no rows; data will be inserted.
- ``Conflicting``: the table exists and holds rows (or its row count
  cannot be read); data would be appended.

Schema creation against any existing table fails, which is reported as a
schema conflict.  The checker only runs catalog queries.

Usage:
    from db_migrator.overwrite.import_checker import ImportConflictChecker

    result = await ImportConflictChecker(target).check("exports/erp")
    for table in result.conflicting_tables:
        print(table.full_name, table.target_row_count)
"""

import logging
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field

from db_migrator.archive.store import ArchiveReader
from db_migrator.constants import EngineName
from db_migrator.logging import get_logger
from db_migrator.providers.base import DatabaseProvider
from db_migrator.schema.type_mapper import map_schema_name

logger = get_logger(__name__)


class TableClassification(str, Enum):
    NEW = "New"
    EMPTY_TARGET = "EmptyTarget"
    CONFLICTING = "Conflicting"


class ConflictType(str, Enum):
    NONE = "None"
    DATA_IMPORT = "DataImport"                     # empty existing table receives rows
    DATA_APPEND = "DataAppend"                     # rows appended to a non-empty table
    SCHEMA_CONFLICT = "SchemaConflict"             # CREATE TABLE would fail
    SCHEMA_AND_DATA_CONFLICT = "SchemaAndDataConflict"


class TableConflict(BaseModel):
    """Check outcome for one archive table."""

    table_name: str
    schema_name: str | None = None               # schema in the target database
    exists: bool = False
    target_row_count: int | None = None          # None when the table does not exist
    incoming_row_count: int = 0
    classification: TableClassification = TableClassification.NEW
    conflict_type: ConflictType = ConflictType.NONE
    message: str = ""

    @property
    def full_name(self) -> str:
        if self.schema_name:
            return f"{self.schema_name}.{self.table_name}"
        return self.table_name


class ImportCheckResult(BaseModel):
    """Per-table classification of an archive against a target database."""

    input_directory: str
    target_provider: str
    tables: list[TableConflict] = Field(default_factory=list)

    @property
    def new_tables(self) -> list[TableConflict]:
        return [t for t in self.tables if t.classification == TableClassification.NEW]

    @property
    def empty_tables(self) -> list[TableConflict]:
        return [t for t in self.tables if t.classification == TableClassification.EMPTY_TARGET]

    @property
    def conflicting_tables(self) -> list[TableConflict]:
        return [t for t in self.tables if t.classification == TableClassification.CONFLICTING]

    @property
    def has_conflicts(self) -> bool:
        return any(t.conflict_type != ConflictType.NONE for t in self.tables)

    def summary(self) -> str:
        lines = [
            f"{len(self.tables)} tables: {len(self.new_tables)} new, "
            f"{len(self.empty_tables)} empty in target, "
            f"{len(self.conflicting_tables)} conflicting"
        ]
        for t in self.tables:
            if t.conflict_type != ConflictType.NONE:
                lines.append(f"  {t.full_name}: {t.message}")
        return "\n".join(lines)


def classify_table(
    exists: bool, target_row_count: int | None, create_schema: bool, schema_only: bool
) -> tuple[TableClassification, ConflictType, str]:
    """Classify one table from its existence and row count.

    A negative (sentinel) row count on an existing table is treated as
    non-empty.
    """
    if not exists:
        return TableClassification.NEW, ConflictType.NONE, "Table will be created"
    has_rows = target_row_count is None or target_row_count != 0
    classification = (
        TableClassification.CONFLICTING if has_rows else TableClassification.EMPTY_TARGET
    )
    if create_schema and has_rows and not schema_only:
        return (
            classification,
            ConflictType.SCHEMA_AND_DATA_CONFLICT,
            "Table exists with rows; creation will fail",
        )
    if create_schema:
        return classification, ConflictType.SCHEMA_CONFLICT, "Table exists; creation will fail"
    if schema_only:
        return classification, ConflictType.NONE, "Table exists; schema-only import skips it"
    if has_rows:
        rows = "unknown" if target_row_count is None or target_row_count < 0 else target_row_count
        return classification, ConflictType.DATA_APPEND, f"Rows will be appended ({rows} existing)"
    return classification, ConflictType.DATA_IMPORT, "Data will be inserted into empty table"


class ImportConflictChecker:
    """Checks an archive's tables against a target provider.

    Args:
        provider: Target provider.  ``check`` connects and closes it.
        log: Logger to use instead of the module logger.
    """

    def __init__(self, provider: DatabaseProvider, log: logging.Logger | None = None) -> None:
        self.provider = provider
        self.log = log or logger

    async def check(
        self,
        input_dir: str | Path,
        tables: list[str] | None = None,
        create_schema: bool = True,
        schema_only: bool = False,
    ) -> ImportCheckResult:
        """Classify every (requested) archive table.

        Raises:
            ArchiveFormatError: If the manifest cannot be read.
            DatabaseConnectionError: If the target cannot be reached.
        """
        manifest = ArchiveReader(input_dir).load_manifest()
        entries = manifest.tables
        if tables:
            wanted = [manifest.entry(name) for name in tables]
            entries = [e for e in wanted if e is not None]

        target = self.provider.provider_name
        try:
            source = EngineName(manifest.source_provider)
        except ValueError:
            source = target

        result = ImportCheckResult(input_directory=str(input_dir), target_provider=target.value)
        await self.provider.connect()
        try:
            for entry in entries:
                schema = map_schema_name(source, target, entry.schema_name)
                exists = await self.provider.table_exists(entry.table_name, schema)
                count = (
                    await self.provider.estimate_row_count(entry.table_name, schema)
                    if exists
                    else None
                )
                classification, conflict, message = classify_table(
                    exists, count, create_schema, schema_only
                )
                result.tables.append(
                    TableConflict(
                        table_name=entry.table_name,
                        schema_name=schema,
                        exists=exists,
                        target_row_count=count,
                        incoming_row_count=entry.row_count,
                        classification=classification,
                        conflict_type=conflict,
                        message=message,
                    )
                )
        finally:
            await self.provider.close()

        self.log.info(
            "Import check: %d new, %d empty, %d conflicting",
            len(result.new_tables),
            len(result.empty_tables),
            len(result.conflicting_tables),
        )
        return result
