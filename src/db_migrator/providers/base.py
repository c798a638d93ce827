"""Database provider protocol definition.

Defines the ``DatabaseProvider`` Protocol that every engine implements.
All I/O methods are ``async def``; script generation and identifier
escaping are pure and synchronous.

Usage:
    from db_migrator.providers.base import DatabaseProvider

    async def copy_schema(source: DatabaseProvider, target: DatabaseProvider) -> None:
        await source.connect()
        await target.connect()
        for table in await source.get_tables():
            full = await source.get_table_schema(table.name, table.schema_name)
            await target.create_table(full)
        await source.close()
        await target.close()
"""

from collections.abc import AsyncIterator
from typing import Protocol, runtime_checkable

from db_migrator.constants import DEFAULT_BATCH_SIZE, EngineName
from db_migrator.schema.models import (
    ColumnDefinition,
    ConstraintDefinition,
    ForeignKeyDefinition,
    IndexDefinition,
    RowData,
    TableSchema,
)


@runtime_checkable
class DatabaseProvider(Protocol):
    """Engine adapter: catalog introspection, row streaming, DDL and inserts.

    A provider owns one engine per logical operation.  Catalog and read
    failures caused by missing privileges raise ``PermissionDeniedError``;
    other catalog failures raise ``CatalogError``.  Estimation methods never
    raise: they return ``ESTIMATE_PERMISSION_DENIED`` (-2) or
    ``ESTIMATE_ERROR`` (-1).
    """

    provider_name: EngineName
    default_schema: str
    supports_batch_statements: bool

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Create the engine and verify the connection.

        Raises:
            DatabaseConnectionError: If the database is unreachable or
                rejects the credentials.
        """
        ...

    async def close(self) -> None:
        """Dispose the engine and every pooled connection."""
        ...

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    async def get_tables(self, table_names: list[str] | None = None) -> list[TableSchema]:
        """List tables (name, schema, properties; no columns).

        Args:
            table_names: Optional ``table`` / ``schema.table`` filter.  Each
                name is validated against the identifier allow-list.  When
                given, system tables are not filtered out.

        Raises:
            InvalidIdentifierError: If a filter name fails validation.
        """
        ...

    async def get_columns(self, table: str, schema: str | None = None) -> list[ColumnDefinition]:
        ...

    async def get_indexes(self, table: str, schema: str | None = None) -> list[IndexDefinition]:
        ...

    async def get_foreign_keys(
        self, table: str, schema: str | None = None
    ) -> list[ForeignKeyDefinition]:
        ...

    async def get_constraints(
        self, table: str, schema: str | None = None
    ) -> list[ConstraintDefinition]:
        ...

    async def get_table_schema(self, table: str, schema: str | None = None) -> TableSchema:
        """Fetch a table with columns, indexes, foreign keys and constraints."""
        ...

    async def table_exists(self, table: str, schema: str | None = None) -> bool:
        ...

    async def estimate_row_count(
        self, table: str, schema: str | None = None, where_clause: str | None = None
    ) -> int:
        """Row count, or a negative sentinel when it cannot be determined."""
        ...

    async def estimate_table_size(self, table: str, schema: str | None = None) -> int:
        """Approximate size in bytes, or a negative sentinel."""
        ...

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------

    def get_table_data(
        self,
        table: str,
        schema: str | None = None,
        where_clause: str | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> AsyncIterator[RowData]:
        """Stream rows lazily from an open cursor.

        The connection is released when the iterator is exhausted, closed
        early with ``aclose()``, or abandoned because of an error.
        """
        ...

    async def import_data(
        self,
        table: TableSchema,
        rows: list[RowData],
        batch_size: int | None = None,
        batch_number: int | None = None,
    ) -> int:
        """Insert rows using the engine's batching strategy.

        Returns:
            Number of rows inserted.

        Raises:
            BatchInsertError: When a batch fails.
        """
        ...

    # ------------------------------------------------------------------
    # DDL
    # ------------------------------------------------------------------

    async def create_table(self, table: TableSchema) -> None:
        """Create the table with columns and primary key (no FKs)."""
        ...

    async def create_indexes(self, table: TableSchema) -> None:
        ...

    async def create_constraints(self, table: TableSchema) -> None:
        """Create UNIQUE and CHECK constraints (the primary key is in CREATE TABLE)."""
        ...

    async def create_foreign_keys(self, table: TableSchema) -> None:
        ...

    def generate_table_creation_script(self, table: TableSchema) -> str:
        ...

    def generate_index_script(self, table: TableSchema) -> str:
        ...

    def generate_foreign_key_script(self, table: TableSchema) -> str:
        ...

    def generate_insert_script(self, table: TableSchema, rows: list[RowData]) -> str:
        ...

    def escape_identifier(self, name: str) -> str:
        ...
