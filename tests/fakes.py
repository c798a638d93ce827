"""In-memory provider used by the exporter, importer and checker tests.

Behaves like a connected engine without a database: tables and rows live
in dicts, DDL calls are recorded in ``calls``, and failures can be injected
per table and per operation.
"""

import asyncio
from collections.abc import AsyncIterator

from db_migrator.constants import DEFAULT_BATCH_SIZE, DEFAULT_SCHEMAS, EngineName
from db_migrator.exceptions import (
    BatchInsertError,
    CatalogError,
    CommandTimeoutError,
    PermissionDeniedError,
)
from db_migrator.providers.identifiers import parse_table_filter
from db_migrator.schema.models import (
    ColumnDefinition,
    ForeignKeyDefinition,
    IndexDefinition,
    RowData,
    TableSchema,
)


class FakeProvider:
    """Dict-backed ``DatabaseProvider``.

    Args:
        engine: Engine the fake pretends to be.
        tables: Source tables (with columns, FKs ...).
        rows: Rows per table full name.
        existing: Full names reported by ``table_exists`` on top of created tables.
        row_counts: Overrides for ``estimate_row_count`` per full name.
    """

    supports_batch_statements = True

    def __init__(
        self,
        engine: EngineName = EngineName.SQLSERVER,
        tables: list[TableSchema] | None = None,
        rows: dict[str, list[RowData]] | None = None,
        existing: set[str] | None = None,
        row_counts: dict[str, int] | None = None,
    ) -> None:
        self.provider_name = engine
        self.default_schema = DEFAULT_SCHEMAS[engine]
        self.database_name = "testdb"
        self.tables = {t.full_name: t for t in tables or []}
        self.rows = rows or {}
        self.existing = {n.lower() for n in existing or set()}
        self.row_counts = row_counts or {}

        self.fail_schema: set[str] = set()
        self.denied: set[str] = set()
        self.fail_create: set[str] = set()
        self.fail_insert: set[str] = set()
        self.fail_foreign_keys: set[str] = set()
        self.fail_indexes: set[str] = set()
        self.timeouts: dict[str, int] = {}   # table -> read timeouts still to raise
        self.cancel_after: dict[str, int] = {}   # table -> rows yielded before the task is cancelled

        self.calls: list[tuple[str, str]] = []
        self.created: list[str] = []
        self.inserted: dict[str, list[RowData]] = {}
        self.insert_batches: list[tuple[str, int | None, int]] = []
        self.foreign_keys_created: dict[str, list[str]] = {}
        self.streams_closed: list[str] = []
        self.connected = False
        self.connect_count = 0

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        self.connected = True
        self.connect_count += 1

    async def close(self) -> None:
        self.connected = False

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    async def get_tables(self, table_names: list[str] | None = None) -> list[TableSchema]:
        listed = [
            TableSchema(name=t.name, schema=t.schema_name) for t in self.tables.values()
        ]
        if not table_names:
            return listed
        wanted = parse_table_filter(table_names)
        result = []
        for t in listed:
            for schema, name in wanted:
                if name.lower() == t.name.lower() and (
                    schema is None or (t.schema_name or "").lower() == schema.lower()
                ):
                    result.append(t)
                    break
        return result

    async def get_columns(self, table: str, schema: str | None = None):
        return self._table(table, schema).columns

    async def get_indexes(self, table: str, schema: str | None = None):
        return self._table(table, schema).indexes

    async def get_foreign_keys(self, table: str, schema: str | None = None):
        return self._table(table, schema).foreign_keys

    async def get_constraints(self, table: str, schema: str | None = None):
        return self._table(table, schema).constraints

    async def get_table_schema(self, table: str, schema: str | None = None) -> TableSchema:
        name = _full(table, schema)
        if name in self.denied:
            raise PermissionDeniedError(f"SELECT permission denied on {name}", table=name)
        if name in self.fail_schema:
            raise CatalogError(f"Cannot read catalog for {name}", table=name)
        return self._table(table, schema)

    async def table_exists(self, table: str, schema: str | None = None) -> bool:
        name = _full(table, schema).lower()
        return name in self.existing or name in {c.lower() for c in self.created}

    async def estimate_row_count(
        self, table: str, schema: str | None = None, where_clause: str | None = None
    ) -> int:
        name = _full(table, schema)
        if name in self.row_counts:
            return self.row_counts[name]
        if where_clause:
            return len(self._filtered(name, where_clause))
        return len(self.rows.get(name, []))

    async def estimate_table_size(self, table: str, schema: str | None = None) -> int:
        return 8192 * len(self.rows.get(_full(table, schema), []))

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------

    async def get_table_data(
        self,
        table: str,
        schema: str | None = None,
        where_clause: str | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> AsyncIterator[RowData]:
        name = _full(table, schema)
        self.calls.append(("read", name if not where_clause else f"{name} WHERE {where_clause}"))
        try:
            remaining = self.timeouts.get(name, 0)
            if remaining:
                self.timeouts[name] = remaining - 1
                raise CommandTimeoutError(f"Reading {name} timed out", timeout=30)
            if name in self.denied:
                raise PermissionDeniedError(f"SELECT permission denied on {name}", table=name)
            for index, row in enumerate(self._filtered(name, where_clause)):
                if index == self.cancel_after.get(name, -1):
                    raise asyncio.CancelledError
                await asyncio.sleep(0)
                yield dict(row)
        finally:
            self.streams_closed.append(name)

    async def import_data(
        self,
        table: TableSchema,
        rows: list[RowData],
        batch_size: int | None = None,
        batch_number: int | None = None,
    ) -> int:
        name = table.full_name
        self.calls.append(("insert", name))
        if name in self.fail_insert:
            raise BatchInsertError(
                f"Insert into {name} failed", table=name, batch_number=batch_number, row_index=1
            )
        self.inserted.setdefault(name, []).extend(rows)
        self.insert_batches.append((name, batch_number, len(rows)))
        return len(rows)

    # ------------------------------------------------------------------
    # DDL
    # ------------------------------------------------------------------

    async def create_table(self, table: TableSchema) -> None:
        self.calls.append(("create_table", table.full_name))
        if table.full_name in self.fail_create:
            raise CatalogError(f"CREATE TABLE {table.full_name} failed", table=table.full_name)
        self.created.append(table.full_name)
        self.tables[table.full_name] = table

    async def create_indexes(self, table: TableSchema) -> None:
        self.calls.append(("create_indexes", table.full_name))
        if table.full_name in self.fail_indexes:
            raise CatalogError(f"CREATE INDEX on {table.full_name} failed", table=table.full_name)

    async def create_constraints(self, table: TableSchema) -> None:
        self.calls.append(("create_constraints", table.full_name))

    async def create_foreign_keys(self, table: TableSchema) -> None:
        self.calls.append(("create_foreign_keys", table.full_name))
        if table.full_name in self.fail_foreign_keys:
            raise CatalogError(f"ALTER TABLE {table.full_name} failed", table=table.full_name)
        self.foreign_keys_created[table.full_name] = [fk.name for fk in table.foreign_keys]

    def generate_table_creation_script(self, table: TableSchema) -> str:
        return f"CREATE TABLE {table.full_name} ()"

    def generate_index_script(self, table: TableSchema) -> str:
        return ";\n".join(f"CREATE INDEX {i.name}" for i in table.indexes)

    def generate_foreign_key_script(self, table: TableSchema) -> str:
        return ";\n".join(f"ADD CONSTRAINT {fk.name}" for fk in table.foreign_keys)

    def generate_insert_script(self, table: TableSchema, rows: list[RowData]) -> str:
        return ";\n".join(f"INSERT INTO {table.full_name}" for _ in rows)

    def escape_identifier(self, name: str) -> str:
        return f"[{name}]"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def calls_of(self, kind: str) -> list[str]:
        return [name for call, name in self.calls if call == kind]

    def _table(self, table: str, schema: str | None) -> TableSchema:
        return self.tables[_full(table, schema)]

    def _filtered(self, name: str, where_clause: str | None) -> list[RowData]:
        rows = self.rows.get(name, [])
        if not where_clause:
            return rows
        # "Column = value" with an integer value is all the tests need
        column, value = (part.strip() for part in where_clause.split("="))
        return [r for r in rows if str(r.get(column)) == value]


def _full(table: str, schema: str | None) -> str:
    return f"{schema}.{table}" if schema else table


# ------------------------------------------------------------------
# Sample schema: Customers <- Orders <- OrderLines
# ------------------------------------------------------------------


def sample_tables(schema: str | None = "dbo") -> list[TableSchema]:
    """Three tables chained by foreign keys, listed child first."""

    def col(name: str, data_type: str, position: int, **kw) -> ColumnDefinition:
        return ColumnDefinition(name=name, data_type=data_type, ordinal_position=position, **kw)

    customers = TableSchema(
        name="Customers",
        schema=schema,
        columns=[
            col("CustomerId", "int", 1, is_primary_key=True, is_nullable=False),
            col("Name", "nvarchar", 2, max_length=100),
            col("IsActive", "bit", 3),
        ],
        indexes=[IndexDefinition(name="IX_Customers_Name", columns=["Name"])],
    )
    orders = TableSchema(
        name="Orders",
        schema=schema,
        columns=[
            col("OrderId", "int", 1, is_primary_key=True, is_nullable=False),
            col("CustomerId", "int", 2, is_nullable=False),
            col("Total", "decimal", 3, precision=18, scale=2),
        ],
        foreign_keys=[
            ForeignKeyDefinition(
                name="FK_Orders_Customers",
                columns=["CustomerId"],
                referenced_table="Customers",
                referenced_schema=schema,
                referenced_columns=["CustomerId"],
            )
        ],
    )
    order_lines = TableSchema(
        name="OrderLines",
        schema=schema,
        columns=[
            col("LineId", "int", 1, is_primary_key=True, is_nullable=False),
            col("OrderId", "int", 2, is_nullable=False),
            col("Quantity", "int", 3),
        ],
        foreign_keys=[
            ForeignKeyDefinition(
                name="FK_OrderLines_Orders",
                columns=["OrderId"],
                referenced_table="Orders",
                referenced_schema=schema,
                referenced_columns=["OrderId"],
            )
        ],
    )
    return [order_lines, orders, customers]


def sample_rows(schema: str | None = "dbo", customers: int = 3, orders: int = 5) -> dict:
    prefix = f"{schema}." if schema else ""
    return {
        f"{prefix}Customers": [
            {"CustomerId": i, "Name": f"Customer {i}", "IsActive": i % 2 == 0}
            for i in range(1, customers + 1)
        ],
        f"{prefix}Orders": [
            {"OrderId": i, "CustomerId": (i % customers) + 1, "Total": i * 10}
            for i in range(1, orders + 1)
        ],
        f"{prefix}OrderLines": [
            {"LineId": i, "OrderId": (i % orders) + 1, "Quantity": i}
            for i in range(1, 2 * orders + 1)
        ],
    }
