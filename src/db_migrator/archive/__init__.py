"""Export archive: manifest models, binary codec and directory layout.

Usage:
    from db_migrator.archive import ArchiveReader, validate_export

    manifest = ArchiveReader("exports/erp").load_manifest()
    report = validate_export("exports/erp")
"""

from db_migrator.archive.models import (
    DependencyInfo,
    ExportManifest,
    ForeignKeyEdge,
    ManifestEntry,
    TableData,
    TableMetadata,
)
from db_migrator.archive.store import (
    ArchiveReader,
    ArchiveWriter,
    data_file_name,
    file_prefix,
    validate_export,
)

__all__ = [
    "ArchiveReader",
    "ArchiveWriter",
    "DependencyInfo",
    "ExportManifest",
    "ForeignKeyEdge",
    "ManifestEntry",
    "TableData",
    "TableMetadata",
    "data_file_name",
    "file_prefix",
    "validate_export",
]
