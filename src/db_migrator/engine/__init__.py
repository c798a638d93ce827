"""Migration engines: export, import, options, progress and run state.

Usage:
    from db_migrator.engine import DatabaseExporter, DatabaseImporter, ExportOptions

    state = await DatabaseExporter(source).export(ExportOptions(output_directory="out"))
    state = await DatabaseImporter(target).import_(ImportOptions(input_directory="out"))
"""

from db_migrator.engine.exporter import DatabaseExporter
from db_migrator.engine.importer import DatabaseImporter
from db_migrator.engine.options import ExportOptions, ImportOptions, build_options
from db_migrator.engine.progress import (
    ExportStage,
    ImportStage,
    ProgressEvent,
    ProgressReporter,
    ProgressSink,
)
from db_migrator.engine.script import generate_schema_script
from db_migrator.engine.state import (
    ErrorType,
    OperationError,
    OperationState,
    OperationStatus,
)

__all__ = [
    "DatabaseExporter",
    "DatabaseImporter",
    "ErrorType",
    "ExportOptions",
    "ExportStage",
    "ImportOptions",
    "ImportStage",
    "OperationError",
    "OperationState",
    "OperationStatus",
    "ProgressEvent",
    "ProgressReporter",
    "ProgressSink",
    "build_options",
    "generate_schema_script",
]
