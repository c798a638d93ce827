"""Exception hierarchy for the migration engine.

Every error raised by ``db_migrator`` derives from ``MigrationError`` so
callers can catch one type at the boundary.  Each subclass carries a fixed
``error_code`` and the context needed to report it (table, provider, path).

Usage:
    from db_migrator.exceptions import ConfigurationError, MigrationError

    try:
        provider = registry.create("Oracle", url)
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
"""

from typing import Any


class MigrationError(Exception):
    """Base exception for all migration errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def __str__(self) -> str:
        if self.error_code:
            return f"[{self.error_code}] {self.message}"
        return self.message


# ============================================================================
# Configuration
# ============================================================================


class ConfigurationError(MigrationError):
    """Raised for invalid options, profiles, or missing credentials.

    Configuration errors are detected before any database or file I/O.
    """

    def __init__(
        self,
        message: str,
        config_key: str | None = None,
        details: dict[str, Any] | None = None,
        error_code: str = "CONFIG_ERROR",
    ) -> None:
        super().__init__(message, error_code, details)
        self.config_key = config_key


class ProviderNotFoundError(ConfigurationError):
    """Raised when an engine name has no registered provider."""

    def __init__(self, provider_name: str, available: list[str] | None = None) -> None:
        available = available or []
        message = f"Unsupported database provider: '{provider_name}'"
        if available:
            message += f". Available providers: {', '.join(available)}"
        super().__init__(
            message,
            config_key="provider",
            details={"available": available},
            error_code="PROVIDER_NOT_FOUND",
        )
        self.provider_name = provider_name


class ProfileNotFoundError(ConfigurationError):
    """Raised when a named profile is missing from db.toml."""

    def __init__(self, profile_name: str, available: list[str] | None = None) -> None:
        available = available or []
        message = f"Profile '{profile_name}' not found in db.toml"
        if available:
            message += f". Available profiles: {', '.join(available)}"
        super().__init__(
            message,
            config_key="profile",
            details={"available": available},
            error_code="PROFILE_NOT_FOUND",
        )
        self.profile_name = profile_name


class InvalidIdentifierError(ConfigurationError):
    """Raised when a table or column name fails identifier validation."""

    def __init__(self, identifier: str, reason: str = "") -> None:
        message = f"Invalid identifier: '{identifier}'"
        if reason:
            message += f" ({reason})"
        super().__init__(message, config_key="identifier", error_code="INVALID_IDENTIFIER")
        self.identifier = identifier


# ============================================================================
# Database
# ============================================================================


class DatabaseConnectionError(MigrationError):
    """Raised when a provider cannot create or open its connection."""

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, "CONNECTION_ERROR", details)
        self.provider = provider


class PermissionDeniedError(MigrationError):
    """Raised when the connected user lacks privileges on a table or catalog.

    Insufficient privilege is reported once; providers do not retry the
    statement with alternate syntax.
    """

    def __init__(self, message: str, table: str | None = None) -> None:
        super().__init__(message, "PERMISSION_DENIED", {"table": table})
        self.table = table


class CatalogError(MigrationError):
    """Raised when catalog introspection fails for a reason other than privileges."""

    def __init__(self, message: str, table: str | None = None) -> None:
        super().__init__(message, "CATALOG_ERROR", {"table": table})
        self.table = table


class CommandTimeoutError(MigrationError):
    """Raised when a single database command exceeds its timeout."""

    def __init__(self, message: str, timeout: float | None = None) -> None:
        super().__init__(message, "COMMAND_TIMEOUT", {"timeout": timeout})
        self.timeout = timeout


class BatchInsertError(MigrationError):
    """Raised when a batch of rows cannot be inserted.

    ``row_index`` is the 1-based position of the first failing row inside
    the batch when the single-row diagnostic pass identified it, else None.
    """

    def __init__(
        self,
        message: str,
        table: str,
        batch_number: int | None = None,
        row_index: int | None = None,
        rolled_back: bool = True,
    ) -> None:
        super().__init__(
            message,
            "BATCH_INSERT_ERROR",
            {
                "table": table,
                "batch_number": batch_number,
                "row_index": row_index,
                "rolled_back": rolled_back,
            },
        )
        self.table = table
        self.batch_number = batch_number
        self.row_index = row_index
        self.rolled_back = rolled_back


class TableExistsError(MigrationError):
    """Raised when schema creation targets a table that already exists."""

    def __init__(self, table: str) -> None:
        super().__init__(
            f"Table {table} already exists in the target database",
            "TABLE_EXISTS",
            {"table": table},
        )
        self.table = table


# ============================================================================
# Archive / operation
# ============================================================================


class ArchiveFormatError(MigrationError):
    """Raised when an export archive file cannot be read or written."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message, "ARCHIVE_FORMAT_ERROR", {"path": path})
        self.path = path


class OperationCancelledError(MigrationError):
    """Raised when cancellation is observed between batches."""

    def __init__(self, message: str = "Operation cancelled") -> None:
        super().__init__(message, "CANCELLED")
