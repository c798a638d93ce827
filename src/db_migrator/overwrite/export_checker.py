"""Export-side overwrite check.

Inspects a destination directory before an export writes into it.  The
check itself never modifies anything; deletion is a separate call that
refuses to run without ``confirm=True``.

Usage:
    from db_migrator.overwrite.export_checker import check_export_directory

    result = check_export_directory("exports/erp", tables=["dbo.Orders"])
    if result.has_existing_export:
        print(result.summary())
        delete_existing_export("exports/erp", confirm=True)
"""

from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field

from db_migrator.archive.store import ArchiveReader, ArchiveWriter
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

logger = get_logger(__name__)


class ExportCheckResult(BaseModel):
    """What an export into ``output_directory`` would replace."""

    output_directory: str
    has_existing_export: bool = False
    manifest_readable: bool = True
    is_complete: bool | None = None
    source_provider: str | None = None
    export_date: datetime | None = None
    existing_files: list[str] = Field(default_factory=list)
    conflicting_tables: list[str] = Field(default_factory=list)
    table_count: int = 0
    file_count: int = 0
    total_size_bytes: int = 0

    @property
    def requires_confirmation(self) -> bool:
        return self.has_existing_export or self.file_count > 0

    def summary(self) -> str:
        if not self.requires_confirmation:
            return f"No existing export in {self.output_directory}"
        lines = [
            f"Existing export in {self.output_directory}: "
            f"{self.table_count} tables, {self.file_count} files, "
            f"{self.total_size_bytes:,} bytes"
        ]
        if self.source_provider:
            date = f" on {self.export_date:%Y-%m-%d %H:%M}" if self.export_date else ""
            lines.append(f"  Exported from {self.source_provider}{date}")
        if self.is_complete is False:
            lines.append("  Previous export is incomplete")
        if not self.manifest_readable:
            lines.append("  Manifest is unreadable")
        if self.conflicting_tables:
            lines.append(f"  Tables that would be replaced: {', '.join(self.conflicting_tables)}")
        return "\n".join(lines)


def _archive_files(root: Path) -> list[Path]:
    """Files written by an export: manifest, dependencies, metadata and data."""
    files = [root / MANIFEST_FILE, root / DEPENDENCIES_FILE]
    meta_dir = root / METADATA_DIR
    if meta_dir.is_dir():
        files.extend(meta_dir.glob(f"*{METADATA_EXTENSION}"))
        files.extend(meta_dir.glob("*.tmp"))
    data_dir = root / DATA_DIR
    if data_dir.is_dir():
        files.extend(data_dir.glob(f"*{DATA_EXTENSION}"))
        files.extend(data_dir.glob("*.tmp"))
    return sorted(p for p in files if p.is_file())


def check_export_directory(
    output_dir: str | Path, tables: list[str] | None = None
) -> ExportCheckResult:
    """Report what an export into ``output_dir`` would overwrite.

    Args:
        output_dir: Destination directory (may not exist yet).
        tables: Tables about to be exported; those already present in the
            manifest are reported as conflicting.  ``None`` means every
            table in the existing manifest conflicts.

    Returns:
        ``ExportCheckResult``.  Nothing is modified.
    """
    root = Path(output_dir)
    result = ExportCheckResult(output_directory=str(root))
    if not root.is_dir():
        return result

    files = _archive_files(root)
    result.existing_files = [str(p.relative_to(root)) for p in files]
    result.file_count = len(files)
    result.total_size_bytes = sum(p.stat().st_size for p in files)

    reader = ArchiveReader(root)
    if not reader.has_manifest():
        return result
    result.has_existing_export = True
    try:
        manifest = reader.load_manifest()
    except ArchiveFormatError as e:
        logger.warning("Existing manifest in %s is unreadable: %s", root, e)
        result.manifest_readable = False
        return result

    result.is_complete = manifest.complete
    result.source_provider = manifest.source_provider
    result.export_date = manifest.export_date
    result.table_count = manifest.table_count
    if tables is None:
        result.conflicting_tables = [e.full_name for e in manifest.tables]
    else:
        result.conflicting_tables = [
            entry.full_name for name in tables if (entry := manifest.entry(name)) is not None
        ]
    return result


def delete_existing_export(output_dir: str | Path, confirm: bool = False) -> int:
    """Delete every export file in ``output_dir``.

    Other files in the directory are left alone.

    Returns:
        Number of files deleted.

    Raises:
        ValueError: If ``confirm`` is not True.
    """
    if not confirm:
        raise ValueError("Deleting an existing export requires confirm=True")
    root = Path(output_dir)
    if not root.is_dir():
        return 0
    files = _archive_files(root)
    for path in files:
        path.unlink()
    for sub in (METADATA_DIR, DATA_DIR):
        directory = root / sub
        if directory.is_dir() and not any(directory.iterdir()):
            directory.rmdir()
    logger.info("Deleted %d files of the existing export in %s", len(files), root)
    return len(files)


def delete_conflicting_tables(
    output_dir: str | Path, tables: list[str], confirm: bool = False
) -> list[str]:
    """Delete the files of specific tables and drop them from the manifest.

    Returns:
        Full names of the tables removed.

    Raises:
        ValueError: If ``confirm`` is not True.
        ArchiveFormatError: If the manifest cannot be read.
    """
    if not confirm:
        raise ValueError("Deleting exported tables requires confirm=True")
    reader = ArchiveReader(output_dir)
    if not reader.has_manifest():
        return []
    manifest = reader.load_manifest()
    writer = ArchiveWriter(output_dir)

    removed: list[str] = []
    for name in tables:
        entry = manifest.entry(name)
        if entry is None:
            continue
        writer.remove_table_files(entry.table_name, entry.schema_name)
        manifest.tables.remove(entry)
        removed.append(entry.full_name)

    if removed:
        writer.write_manifest(manifest)
        logger.info("Removed %d tables from %s", len(removed), output_dir)
    return removed
