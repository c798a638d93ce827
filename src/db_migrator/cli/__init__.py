"""CLI module for exporting, importing and checking database migrations.

Usage:
    db-migrator providers
    db-migrator profiles
    db-migrator export --profile legacy --output exports/erp --batch-size 50000
    db-migrator export --profile legacy --output exports/erp \\
        --tables dbo.Orders --where "dbo.Orders=OrderDate >= '2024-01-01'"
    db-migrator check-export --output exports/erp
    db-migrator validate --input exports/erp
    db-migrator check-import --profile pg --input exports/erp
    db-migrator import --profile pg --input exports/erp --continue-on-error
    db-migrator schema --profile pg --input exports/erp --output schema.sql

Commands:
    providers     - List registered database engines
    profiles      - List profiles in db.toml
    export        - Export a database into an archive directory
    import        - Import an archive directory into a database
    check-export  - Show what an export would overwrite
    check-import  - Classify archive tables against the target database
    validate      - Validate an archive directory (no database access)
    schema        - Print the DDL an import would run

Exit codes: 0 completed, 2 completed with errors, 1 failed or cancelled.
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import Callable

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from db_migrator.archive.store import ArchiveReader, validate_export
from db_migrator.config.loader import load_db_config
from db_migrator.config.models import DatabaseConfig
from db_migrator.engine.exporter import DatabaseExporter
from db_migrator.engine.importer import DatabaseImporter
from db_migrator.engine.options import ExportOptions, ImportOptions, build_options
from db_migrator.engine.progress import ProgressEvent
from db_migrator.engine.script import generate_schema_script
from db_migrator.engine.state import OperationState, OperationStatus
from db_migrator.exceptions import ConfigurationError, MigrationError
from db_migrator.factory import create_provider
from db_migrator.logging import setup_logging
from db_migrator.overwrite.export_checker import (
    check_export_directory,
    delete_existing_export,
)
from db_migrator.overwrite.import_checker import ConflictType, ImportConflictChecker
from db_migrator.providers.registry import DEFAULT_ALIASES, build_default_registry

console = Console()

EXPORT_STATE_FILE = "export_state.json"
IMPORT_STATE_FILE = "import_state.json"


# ============================================================================
# Helpers
# ============================================================================


def _load_config(args: argparse.Namespace) -> DatabaseConfig | None:
    """Load db.toml and apply its logging settings."""
    try:
        config = load_db_config(args.config)
    except (FileNotFoundError, ConfigurationError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return None
    settings = config.settings
    if settings.verbose_logging or settings.log_file:
        setup_logging(
            level="DEBUG" if args.verbose else "INFO",
            log_file=args.log_file or settings.log_file,
        )
    return config


def _parse_criteria(values: list[str] | None) -> dict[str, str]:
    """Parse repeated ``--where TABLE=PREDICATE`` arguments."""
    criteria: dict[str, str] = {}
    for value in values or []:
        table, sep, predicate = value.partition("=")
        if not sep or not table.strip():
            raise ConfigurationError(
                f"Invalid --where '{value}'; expected TABLE=PREDICATE", config_key="where"
            )
        criteria[table.strip()] = predicate.strip()
    return criteria


def _exit_code(state: OperationState) -> int:
    if state.status == OperationStatus.COMPLETED:
        return 0
    if state.status == OperationStatus.COMPLETED_WITH_ERRORS:
        return 2
    return 1


def _progress_printer() -> Callable[[ProgressEvent], None]:
    """Progress sink printing each stage change and per-table batch messages."""
    last_stage: list[str] = [""]

    def sink(event: ProgressEvent) -> None:
        if event.stage != last_stage[0]:
            last_stage[0] = event.stage
            console.print(f"[bold]{event.stage}[/bold] [dim]{escape(event.message)}[/dim]")
        elif event.current_table:
            console.print(
                f"  [dim]{escape(event.message)} "
                f"({event.processed_rows:,}/{event.total_rows:,} rows, "
                f"{event.percentage:.0f}%)[/dim]"
            )

    return sink


def _install_cancel_handler(cancel: Callable[[], None]) -> None:
    """Route Ctrl+C to a cooperative cancel observed between batches."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel)
    except (NotImplementedError, RuntimeError):
        pass  # Windows event loops


def _load_state(path: str | None) -> OperationState | None:
    if not path:
        return None
    return OperationState.load(path)


def _print_state(state: OperationState) -> None:
    style = {
        OperationStatus.COMPLETED: "green",
        OperationStatus.COMPLETED_WITH_ERRORS: "yellow",
    }.get(state.status, "red")
    console.print()
    console.print(f"[bold {style}]{state.status.value}[/bold {style}]")

    table = Table(show_header=False)
    table.add_column("Key", style="dim")
    table.add_column("Value")
    table.add_row("Completed tables", str(len(state.completed_tables)))
    table.add_row("Skipped tables", str(len(state.skipped_tables)))
    table.add_row("Failed tables", str(len(state.failed_tables)))
    table.add_row("Rows", f"{state.processed_rows:,}")
    table.add_row("Duration", f"{state.duration_seconds:.1f}s")
    console.print(table)

    for error in state.errors:
        where = f"{error.table}: " if error.table else ""
        line = f"[{error.error_type.value}] {where}{error.message}"
        console.print(f"  [red]x[/red] {escape(line)}")
    for warning in state.warnings:
        console.print(f"  [yellow]![/yellow] {escape(warning)}")


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_export(args: argparse.Namespace) -> int:
    """Async implementation for export command.

    Returns:
        0 on success, 2 when some tables failed, 1 on failure.
    """
    config = _load_config(args)
    if config is None:
        return 1
    settings = config.settings

    try:
        options = build_options(
            ExportOptions,
            output_directory=args.output,
            tables=args.tables,
            table_criteria=_parse_criteria(args.where),
            batch_size=args.batch_size or settings.batch_size,
            schema_only=args.schema_only,
            command_timeout=args.timeout or settings.timeout_seconds,
            continue_on_error=not args.fail_fast,
            retry_on_timeout=not args.no_retry,
        )
        previous = _load_state(args.resume)
    except (MigrationError, FileNotFoundError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1

    if not (args.skip_overwrite_check or settings.skip_overwrite_checks) and previous is None:
        check = check_export_directory(options.output_directory, options.tables)
        if check.requires_confirmation:
            console.print(check.summary())
            if not (args.confirm or settings.auto_confirm_overwrites):
                console.print(
                    "[yellow]Existing export found.[/yellow] "
                    "[dim]Re-run with[/dim] [cyan]--confirm[/cyan] [dim]to replace it.[/dim]"
                )
                return 1
            deleted = delete_existing_export(options.output_directory, confirm=True)
            console.print(f"[dim]Deleted {deleted} files of the previous export[/dim]")

    try:
        provider = create_provider(args.profile, config, build_default_registry())
        exporter = DatabaseExporter(provider, progress=_progress_printer())
        _install_cancel_handler(exporter.cancel)
        console.print(f"Exporting profile [bold cyan]{args.profile}[/bold cyan]...")
        state = await exporter.export(options, previous_state=previous)
    except MigrationError as e:
        console.print(f"\n[bold red]x[/bold red] {escape(str(e))}")
        return 1

    state.save(Path(options.output_directory) / EXPORT_STATE_FILE)
    _print_state(state)
    return _exit_code(state)


async def _async_import(args: argparse.Namespace) -> int:
    """Async implementation for import command.

    Returns:
        0 on success, 2 when some tables failed, 1 on failure.
    """
    config = _load_config(args)
    if config is None:
        return 1
    settings = config.settings

    try:
        options = build_options(
            ImportOptions,
            input_directory=args.input,
            tables=args.tables,
            batch_size=args.batch_size or settings.batch_size,
            create_schema=not args.no_create_schema,
            create_indexes=not args.no_create_indexes,
            create_foreign_keys=not args.no_create_foreign_keys,
            schema_only=args.schema_only,
            continue_on_error=args.continue_on_error,
            use_dependency_order=not args.no_dependency_order,
            command_timeout=args.timeout or settings.timeout_seconds,
        )
        previous = _load_state(args.resume)
        registry = build_default_registry()
        if not (args.skip_overwrite_check or settings.skip_overwrite_checks):
            checker = ImportConflictChecker(create_provider(args.profile, config, registry))
            check = await checker.check(
                options.input_directory,
                options.tables,
                create_schema=options.create_schema,
                schema_only=options.schema_only,
            )
            if check.has_conflicts:
                console.print(check.summary())
                if not (args.confirm or settings.auto_confirm_overwrites):
                    console.print(
                        "[yellow]Target has conflicting tables.[/yellow] "
                        "[dim]Re-run with[/dim] [cyan]--confirm[/cyan] [dim]to proceed.[/dim]"
                    )
                    return 1

        provider = create_provider(args.profile, config, registry)
        importer = DatabaseImporter(provider, progress=_progress_printer())
        _install_cancel_handler(importer.cancel)
        console.print(f"Importing into profile [bold cyan]{args.profile}[/bold cyan]...")
        state = await importer.import_(options, previous_state=previous)
    except (MigrationError, FileNotFoundError) as e:
        console.print(f"\n[bold red]x[/bold red] {escape(str(e))}")
        return 1

    state.save(Path(options.input_directory) / IMPORT_STATE_FILE)
    _print_state(state)
    return _exit_code(state)


async def _async_check_import(args: argparse.Namespace) -> int:
    """Async implementation for check-import command.

    Returns:
        0 when nothing conflicts, 1 otherwise.
    """
    config = _load_config(args)
    if config is None:
        return 1
    try:
        provider = create_provider(args.profile, config, build_default_registry())
        result = await ImportConflictChecker(provider).check(
            args.input,
            args.tables.split(",") if args.tables else None,
            create_schema=not args.no_create_schema,
        )
    except MigrationError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1

    table = Table(title="Import Check", show_header=True, header_style="bold")
    table.add_column("Table")
    table.add_column("Status")
    table.add_column("Target rows", justify="right")
    table.add_column("Incoming rows", justify="right")
    table.add_column("Notes")
    for t in result.tables:
        style = "green" if t.conflict_type == ConflictType.NONE else "yellow"
        table.add_row(
            t.full_name,
            f"[{style}]{t.classification.value}[/{style}]",
            "" if t.target_row_count is None else f"{t.target_row_count:,}",
            f"{t.incoming_row_count:,}",
            t.message,
        )
    console.print(table)
    console.print(result.summary().splitlines()[0])
    return 1 if result.has_conflicts else 0


# ============================================================================
# Command wrappers
# ============================================================================


def cmd_providers(args: argparse.Namespace) -> int:
    """List registered providers and their aliases.

    Returns:
        0 always (informational command).
    """
    registry = build_default_registry()
    aliases = {engine.value: names for engine, names in DEFAULT_ALIASES.items()}

    table = Table(title="Providers", show_header=True, header_style="bold")
    table.add_column("Provider")
    table.add_column("Aliases")
    for name in registry.names():
        table.add_row(name, ", ".join(aliases.get(name, ())))
    console.print(table)
    return 0


def cmd_profiles(args: argparse.Namespace) -> int:
    """List available profiles from db.toml.

    Reads only local TOML config -- no database calls.

    Returns:
        0 on success, 1 if db.toml not found.
    """
    config = _load_config(args)
    if config is None:
        return 1

    table = Table(title="Database Profiles", show_header=True, header_style="bold")
    table.add_column("Profile")
    table.add_column("Provider")
    table.add_column("Description")
    for name, profile in config.profiles.items():
        table.add_row(name, profile.provider, profile.description or "")
    console.print(table)
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    """Export a database.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_export(args))


def cmd_import(args: argparse.Namespace) -> int:
    """Import an archive.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_import(args))


def cmd_check_import(args: argparse.Namespace) -> int:
    """Classify archive tables against the target database.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_check_import(args))


def cmd_check_export(args: argparse.Namespace) -> int:
    """Show what an export into a directory would overwrite.

    Reads only local files -- no database calls.

    Returns:
        0 when the directory holds no export, 1 otherwise.
    """
    result = check_export_directory(
        args.output, args.tables.split(",") if args.tables else None
    )
    console.print(result.summary())
    return 1 if result.requires_confirmation else 0


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate an archive directory.

    Returns:
        0 when valid, 1 otherwise.
    """
    report = validate_export(args.input)
    for error in report["errors"]:
        console.print(f"  [red]x[/red] {escape(error)}")
    for warning in report["warnings"]:
        console.print(f"  [yellow]![/yellow] {escape(warning)}")
    if report["valid"]:
        console.print("[bold green]v[/bold green] Archive is valid")
        return 0
    console.print(f"[bold red]x[/bold red] Archive has {len(report['errors'])} errors")
    return 1


def cmd_schema(args: argparse.Namespace) -> int:
    """Print (or write) the DDL an import of an archive would run.

    Builds the target provider without connecting to it.

    Returns:
        0 on success, 1 on failure.
    """
    config = _load_config(args)
    if config is None:
        return 1
    try:
        provider = create_provider(args.profile, config, build_default_registry())
        reader = ArchiveReader(args.input)
        manifest = reader.load_manifest()
        entries = manifest.tables
        if args.tables:
            entries = [e for name in args.tables.split(",") if (e := manifest.entry(name.strip()))]
        tables = [reader.read_metadata(e).table for e in entries]
        script = generate_schema_script(
            provider,
            tables,
            source=manifest.source_provider,
            include_foreign_keys=not args.no_foreign_keys,
        )
    except (MigrationError, ValueError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1

    if args.output:
        Path(args.output).write_text(script + "\n")
        console.print(f"Wrote {len(tables)} tables to [cyan]{args.output}[/cyan]")
    else:
        console.print(script, markup=False, highlight=False)
    return 0


# ============================================================================
# Entry point
# ============================================================================


def main() -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = argparse.ArgumentParser(
        prog="db-migrator",
        description="Heterogeneous database export/import toolkit",
    )
    parser.add_argument("--config", default="db.toml", help="Path to db.toml")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--log-file", help="Also log to this rotating file")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # providers command
    p_providers = subparsers.add_parser("providers", help="List registered database engines")
    p_providers.set_defaults(func=cmd_providers)

    # profiles command
    p_profiles = subparsers.add_parser("profiles", help="List available profiles")
    p_profiles.set_defaults(func=cmd_profiles)

    # export command
    p_export = subparsers.add_parser("export", help="Export a database to an archive")
    p_export.add_argument("--profile", "-p", required=True, help="Source profile")
    p_export.add_argument("--output", "-o", required=True, help="Archive directory")
    p_export.add_argument("--tables", help="Comma-separated tables (default: all)")
    p_export.add_argument(
        "--where",
        action="append",
        metavar="TABLE=PREDICATE",
        help="Row filter for one table (repeatable)",
    )
    p_export.add_argument("--batch-size", type=int, help="Rows per batch file")
    p_export.add_argument("--timeout", type=int, help="Per-command timeout in seconds")
    p_export.add_argument("--schema-only", action="store_true", help="Export schema only")
    p_export.add_argument(
        "--fail-fast", action="store_true", help="Stop at the first table failure"
    )
    p_export.add_argument(
        "--no-retry", action="store_true", help="Do not retry tables that time out"
    )
    p_export.add_argument("--resume", metavar="STATE_FILE", help="Skip tables done by a run")
    p_export.add_argument(
        "--skip-overwrite-check", action="store_true", help="Write without checking"
    )
    p_export.add_argument(
        "--confirm", action="store_true", help="Replace an existing export"
    )
    p_export.set_defaults(func=cmd_export)

    # import command
    p_import = subparsers.add_parser("import", help="Import an archive into a database")
    p_import.add_argument("--profile", "-p", required=True, help="Target profile")
    p_import.add_argument("--input", "-i", required=True, help="Archive directory")
    p_import.add_argument("--tables", help="Comma-separated tables (default: all)")
    p_import.add_argument("--batch-size", type=int, help="Rows per insert transaction")
    p_import.add_argument("--timeout", type=int, help="Per-command timeout in seconds")
    p_import.add_argument("--schema-only", action="store_true", help="Create schema only")
    p_import.add_argument(
        "--no-create-schema", action="store_true", help="Target tables already exist"
    )
    p_import.add_argument(
        "--no-create-indexes", action="store_true", help="Skip indexes and constraints"
    )
    p_import.add_argument(
        "--no-create-foreign-keys", action="store_true", help="Skip foreign keys"
    )
    p_import.add_argument(
        "--no-dependency-order",
        action="store_true",
        help="Ignore dependencies.json and order tables from their foreign keys",
    )
    p_import.add_argument(
        "--continue-on-error", action="store_true", help="Record table failures and go on"
    )
    p_import.add_argument("--resume", metavar="STATE_FILE", help="Skip tables done by a run")
    p_import.add_argument(
        "--skip-overwrite-check", action="store_true", help="Import without checking"
    )
    p_import.add_argument(
        "--confirm", action="store_true", help="Proceed despite conflicting tables"
    )
    p_import.set_defaults(func=cmd_import)

    # check-export command
    p_check_export = subparsers.add_parser(
        "check-export", help="Show what an export would overwrite"
    )
    p_check_export.add_argument("--output", "-o", required=True, help="Archive directory")
    p_check_export.add_argument("--tables", help="Comma-separated tables to be exported")
    p_check_export.set_defaults(func=cmd_check_export)

    # check-import command
    p_check_import = subparsers.add_parser(
        "check-import", help="Classify archive tables against the target"
    )
    p_check_import.add_argument("--profile", "-p", required=True, help="Target profile")
    p_check_import.add_argument("--input", "-i", required=True, help="Archive directory")
    p_check_import.add_argument("--tables", help="Comma-separated tables")
    p_check_import.add_argument(
        "--no-create-schema", action="store_true", help="Target tables already exist"
    )
    p_check_import.set_defaults(func=cmd_check_import)

    # validate command
    p_validate = subparsers.add_parser("validate", help="Validate an archive directory")
    p_validate.add_argument("--input", "-i", required=True, help="Archive directory")
    p_validate.set_defaults(func=cmd_validate)

    # schema command
    p_schema = subparsers.add_parser("schema", help="Print the DDL an import would run")
    p_schema.add_argument("--profile", "-p", required=True, help="Target profile")
    p_schema.add_argument("--input", "-i", required=True, help="Archive directory")
    p_schema.add_argument("--tables", help="Comma-separated tables")
    p_schema.add_argument("--output", "-o", help="Write the script to this file")
    p_schema.add_argument(
        "--no-foreign-keys", action="store_true", help="Omit foreign keys"
    )
    p_schema.set_defaults(func=cmd_schema)

    args = parser.parse_args()
    setup_logging(level="DEBUG" if args.verbose else "WARNING", log_file=args.log_file)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
