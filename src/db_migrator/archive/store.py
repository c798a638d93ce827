"""Export directory layout: writing, reading and validating archives.

Layout of an export directory::

    export_manifest.json                  # written last
    dependencies.json                     # FK edges + dependency levels
    table_metadata/{schema}_{table}.meta  # schema snapshot per table
    data/{schema}_{table}.bin             # single-batch table
    data/{schema}_{table}_batch{N}.bin    # multi-batch table, N = 1..

Every file is written to a temporary name and renamed into place, so a
crash never leaves a truncated file under its final name.

Usage:
    from db_migrator.archive.store import ArchiveReader, ArchiveWriter, validate_export

    writer = ArchiveWriter("exports/erp")
    writer.prepare()
    writer.write_metadata(table, row_count=10)
    writer.write_batch(batch, single=True)
    writer.write_manifest(manifest)

    reader = ArchiveReader("exports/erp")
    manifest = reader.load_manifest()
    for batch in reader.iter_batches(manifest.tables[0]):
        ...

    report = validate_export("exports/erp")
"""

import os
from collections.abc import Iterator
from pathlib import Path

from pydantic import ValidationError

from db_migrator.archive.codec import (
    decode_metadata,
    decode_table_data,
    encode_metadata,
    encode_table_data,
)
from db_migrator.archive.models import (
    DependencyInfo,
    ExportManifest,
    ManifestEntry,
    TableData,
    TableMetadata,
)
from db_migrator.constants import (
    DATA_DIR,
    DATA_EXTENSION,
    DEPENDENCIES_FILE,
    MANIFEST_FILE,
    METADATA_DIR,
    METADATA_EXTENSION,
)
from db_migrator.exceptions import ArchiveFormatError
from db_migrator.logging import get_logger
from db_migrator.schema.models import TableSchema

logger = get_logger(__name__)


# ============================================================================
# Naming
# ============================================================================


def file_prefix(table: str, schema: str | None = None) -> str:
    """``{schema}_{table}``, or ``{table}`` for schemaless engines."""
    return f"{schema}_{table}" if schema else table


def metadata_file_name(prefix: str) -> str:
    return f"{METADATA_DIR}/{prefix}{METADATA_EXTENSION}"


def data_file_name(prefix: str, batch_number: int, single: bool) -> str:
    """Relative data file path for a batch.

    Args:
        prefix: Result of ``file_prefix``.
        batch_number: 1-based batch number.
        single: True when the table fits in one batch.
    """
    if single:
        return f"{DATA_DIR}/{prefix}{DATA_EXTENSION}"
    return f"{DATA_DIR}/{prefix}_batch{batch_number}{DATA_EXTENSION}"


def _atomic_write(path: Path, data: bytes) -> None:
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_bytes(data)
    os.replace(tmp, path)


# ============================================================================
# Writer
# ============================================================================


class ArchiveWriter:
    """Writes one export directory."""

    def __init__(self, output_dir: str | Path) -> None:
        self.root = Path(output_dir)

    def prepare(self) -> None:
        (self.root / DATA_DIR).mkdir(parents=True, exist_ok=True)
        (self.root / METADATA_DIR).mkdir(parents=True, exist_ok=True)

    def write_metadata(self, table: TableSchema, row_count: int = 0) -> str:
        """Write the schema snapshot; returns its path relative to the root."""
        relative = metadata_file_name(file_prefix(table.name, table.schema_name))
        metadata = TableMetadata(table=table, row_count=row_count)
        _atomic_write(self.root / relative, encode_metadata(metadata))
        return relative

    def write_batch(self, batch: TableData, single: bool) -> str:
        """Write one data batch; returns its path relative to the root."""
        prefix = file_prefix(batch.table_name, batch.schema_name)
        relative = data_file_name(prefix, batch.batch_number, single)
        _atomic_write(self.root / relative, encode_table_data(batch))
        logger.debug(
            "Wrote %s (batch %d, %d rows)", relative, batch.batch_number, len(batch.rows)
        )
        return relative

    def remove_table_files(
        self, table: str, schema: str | None = None, include_metadata: bool = True
    ) -> list[str]:
        """Delete a table's data files, and its metadata file unless told not to."""
        prefix = file_prefix(table, schema)
        candidates = [self.root / metadata_file_name(prefix)] if include_metadata else []
        data_dir = self.root / DATA_DIR
        candidates.append(data_dir / f"{prefix}{DATA_EXTENSION}")
        candidates.extend(data_dir.glob(f"{prefix}_batch*{DATA_EXTENSION}"))
        removed = []
        for path in candidates:
            if path.exists():
                path.unlink()
                removed.append(str(path.relative_to(self.root)))
        return removed

    def write_dependencies(self, info: DependencyInfo) -> None:
        _atomic_write(
            self.root / DEPENDENCIES_FILE, info.model_dump_json(indent=2).encode()
        )

    def write_manifest(self, manifest: ExportManifest) -> Path:
        path = self.root / MANIFEST_FILE
        _atomic_write(path, manifest.model_dump_json(indent=2, by_alias=True).encode())
        return path


# ============================================================================
# Reader
# ============================================================================


class ArchiveReader:
    """Reads one export directory."""

    def __init__(self, input_dir: str | Path) -> None:
        self.root = Path(input_dir)

    @property
    def manifest_path(self) -> Path:
        return self.root / MANIFEST_FILE

    def has_manifest(self) -> bool:
        return self.manifest_path.is_file()

    def load_manifest(self) -> ExportManifest:
        """Parse ``export_manifest.json``.

        Raises:
            ArchiveFormatError: If the manifest is missing or invalid.
        """
        path = self.manifest_path
        try:
            return ExportManifest.model_validate_json(path.read_bytes())
        except FileNotFoundError as e:
            raise ArchiveFormatError("Export manifest not found", path=str(path)) from e
        except ValidationError as e:
            raise ArchiveFormatError(f"Invalid export manifest: {e}", path=str(path)) from e

    def load_dependencies(self) -> DependencyInfo | None:
        path = self.root / DEPENDENCIES_FILE
        if not path.is_file():
            return None
        try:
            return DependencyInfo.model_validate_json(path.read_bytes())
        except ValidationError as e:
            logger.warning("Ignoring unreadable %s: %s", DEPENDENCIES_FILE, e)
            return None

    def read_metadata(self, entry: ManifestEntry) -> TableMetadata:
        path = self.root / entry.metadata_file
        try:
            data = path.read_bytes()
        except FileNotFoundError as e:
            raise ArchiveFormatError("Metadata file not found", path=str(path)) from e
        return decode_metadata(data, str(path))

    def read_batch(self, relative: str) -> TableData:
        path = self.root / relative
        try:
            data = path.read_bytes()
        except FileNotFoundError as e:
            raise ArchiveFormatError("Data file not found", path=str(path)) from e
        return decode_table_data(data, str(path))

    def iter_batches(self, entry: ManifestEntry) -> Iterator[TableData]:
        """Yield a table's batches in the order they were written."""
        for relative in entry.data_files:
            yield self.read_batch(relative)


# ============================================================================
# Validation
# ============================================================================


def validate_export(export_dir: str | Path) -> dict:
    """Validate an export directory without touching any database.

    Checks the manifest, every metadata file, every data file, batch
    numbering continuity and per-table row totals.

    Args:
        export_dir: Directory holding ``export_manifest.json``.

    Returns:
        Dict with ``valid`` (bool), ``errors`` (list[str])
        and ``warnings`` (list[str]).

    Example:
        report = validate_export("exports/erp")
        if not report["valid"]:
            for err in report["errors"]:
                print(err)
    """
    errors: list[str] = []
    warnings: list[str] = []
    reader = ArchiveReader(export_dir)

    try:
        manifest = reader.load_manifest()
    except ArchiveFormatError as e:
        errors.append(str(e))
        return {"valid": False, "errors": errors, "warnings": warnings}

    if not manifest.complete:
        warnings.append("Export is marked incomplete (cancelled or aborted)")
    if not (reader.root / DEPENDENCIES_FILE).is_file():
        warnings.append(f"Missing {DEPENDENCIES_FILE}; import will compute dependency order")
    if not manifest.tables:
        warnings.append("Export contains no tables")

    for entry in manifest.tables:
        name = entry.full_name
        try:
            metadata = reader.read_metadata(entry)
        except ArchiveFormatError as e:
            errors.append(f"{name}: {e}")
            continue
        if not metadata.table.columns:
            errors.append(f"{name}: metadata has no columns")

        if entry.schema_only:
            if entry.data_files:
                warnings.append(f"{name}: schema-only entry lists data files")
            continue
        if entry.has_data and not entry.data_files:
            errors.append(f"{name}: marked as having data but lists no data files")
            continue

        total = 0
        expected_batch = 1
        last_seen = False
        for relative in entry.data_files:
            try:
                batch = reader.read_batch(relative)
            except ArchiveFormatError as e:
                errors.append(f"{name}: {e}")
                break
            if batch.batch_number != expected_batch:
                errors.append(
                    f"{name}: expected batch {expected_batch}, found {batch.batch_number} "
                    f"in {relative}"
                )
            if last_seen:
                errors.append(f"{name}: data after the last batch in {relative}")
            last_seen = batch.is_last_batch
            expected_batch = batch.batch_number + 1
            total += len(batch.rows)
        else:
            if entry.data_files and not last_seen:
                errors.append(f"{name}: final batch is not flagged as last")
            if total != entry.row_count:
                errors.append(
                    f"{name}: manifest row_count {entry.row_count} but data files hold {total}"
                )

    return {"valid": len(errors) == 0, "errors": errors, "warnings": warnings}
