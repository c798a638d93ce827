"""Read-only overwrite and conflict checks run before export and import.

Usage:
    from db_migrator.overwrite import check_export_directory, ImportConflictChecker

    export_check = check_export_directory("exports/erp")
    import_check = await ImportConflictChecker(target).check("exports/erp")
"""

from db_migrator.overwrite.export_checker import (
    ExportCheckResult,
    check_export_directory,
    delete_conflicting_tables,
    delete_existing_export,
)
from db_migrator.overwrite.import_checker import (
    ConflictType,
    ImportCheckResult,
    ImportConflictChecker,
    TableClassification,
    TableConflict,
    classify_table,
)

__all__ = [
    "ConflictType",
    "ExportCheckResult",
    "ImportCheckResult",
    "ImportConflictChecker",
    "TableClassification",
    "TableConflict",
    "check_export_directory",
    "classify_table",
    "delete_conflicting_tables",
    "delete_existing_export",
]
