"""Archive models: manifest, per-table entries, data batches, dependencies.

The manifest is plain JSON and small; conflict checks read it without
opening metadata or data files.

Usage:
    from db_migrator.archive.models import ExportManifest, ManifestEntry

    manifest = ExportManifest.model_validate_json(path.read_text())
    for entry in manifest.tables:
        print(entry.full_name, entry.row_count, entry.data_files)
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from db_migrator.constants import FORMAT_VERSION
from db_migrator.schema.models import TableSchema


class TableData(BaseModel):
    """One batch of rows for a table, the unit of archive I/O."""

    table_name: str
    schema_name: str | None = Field(default=None, alias="schema")
    columns: list[str] = Field(default_factory=list)
    rows: list[dict[str, Any]] = Field(default_factory=list)  # RowData, not re-validated
    batch_number: int = 1                    # 1-based
    total_batches: int | None = None         # estimate until the last batch
    is_last_batch: bool = True
    total_count: int = 0                     # rows written up to and including this batch

    model_config = {"populate_by_name": True}

    @property
    def full_name(self) -> str:
        if self.schema_name:
            return f"{self.schema_name}.{self.table_name}"
        return self.table_name


class ManifestEntry(BaseModel):
    """Per-table manifest record."""

    table_name: str
    schema_name: str | None = Field(default=None, alias="schema")
    metadata_file: str                       # relative to the export directory
    data_files: list[str] = Field(default_factory=list)  # ordered by batch
    row_count: int = 0
    schema_only: bool = False
    has_data: bool = False
    export_date: datetime = Field(default_factory=datetime.now)

    model_config = {"populate_by_name": True}

    @property
    def full_name(self) -> str:
        if self.schema_name:
            return f"{self.schema_name}.{self.table_name}"
        return self.table_name


class ExportManifest(BaseModel):
    """Index of an export directory.

    ``complete`` is False when the export was cancelled or aborted; the
    entries then cover only the tables whose files were fully written.
    """

    format_version: str = FORMAT_VERSION
    source_provider: str
    database_name: str | None = None
    export_date: datetime = Field(default_factory=datetime.now)
    complete: bool = True
    batch_size: int | None = None
    schema_only: bool = False
    tables: list[ManifestEntry] = Field(default_factory=list)

    @property
    def table_count(self) -> int:
        return len(self.tables)

    @property
    def total_rows(self) -> int:
        return sum(max(e.row_count, 0) for e in self.tables)

    def entry(self, name: str) -> ManifestEntry | None:
        """Find an entry by full name, or by bare table name when unambiguous."""
        lowered = name.lower()
        for e in self.tables:
            if e.full_name.lower() == lowered:
                return e
        matches = [e for e in self.tables if e.table_name.lower() == lowered]
        return matches[0] if len(matches) == 1 else None


class ForeignKeyEdge(BaseModel):
    table: str
    foreign_key: str
    referenced_table: str


class DependencyInfo(BaseModel):
    """Contents of ``dependencies.json``."""

    levels: dict[str, list[str]] = Field(default_factory=dict)
    foreign_keys: list[ForeignKeyEdge] = Field(default_factory=list)


class TableMetadata(BaseModel):
    """Contents of a ``.meta`` file."""

    format_version: str = FORMAT_VERSION
    table: TableSchema
    row_count: int = 0
    export_date: datetime = Field(default_factory=datetime.now)
