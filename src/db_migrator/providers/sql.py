"""SQL text helpers and batch executors shared by the providers.

These are plain functions; each provider opts into the ones that match
its engine.  Two batch strategies exist:

- ``insert_batch_joined``: the whole batch runs as one executemany inside
  one transaction.  On failure the transaction rolls back and the batch is
  replayed one row per transaction to find the failing row; rows before it
  stay committed and the failure is reported with its row index.
- ``insert_batch_per_row``: rows execute one statement at a time inside a
  single transaction (engines without multi-row batches).  Any row failure
  rolls back the whole batch.

Usage:
    from db_migrator.providers.sql import build_insert_sql, insert_batch_joined

    sql = build_insert_sql('"public"."orders"', ['"id"', '"total"'])
    await insert_batch_joined(engine, sql, params, table="public.orders",
                              batch_number=1, timeout=300)
"""

import asyncio
import logging
from collections.abc import Awaitable, Sequence
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Callable, TypeVar
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.ext.asyncio import AsyncEngine

from db_migrator.exceptions import (
    BatchInsertError,
    CatalogError,
    CommandTimeoutError,
    MigrationError,
    PermissionDeniedError,
)
from db_migrator.logging import get_logger
from db_migrator.schema.models import (
    ConstraintDefinition,
    ConstraintType,
    ForeignKeyDefinition,
    IndexDefinition,
    ReferentialAction,
    RowData,
    RowValue,
    TableSchema,
)

logger = get_logger(__name__)

T = TypeVar("T")

_PERMISSION_PATTERNS = (
    "permission denied",
    "permission was denied",
    "access denied",
    "command denied",
    "no permission for",
    "insufficient privilege",
    "not have permission",
)
_PERMISSION_SQLSTATES = frozenset({"42501"})
_PERMISSION_ERRNOS = frozenset({229, 230, 262, 1044, 1142, 1143, 1227})


# ============================================================================
# Error classification / timeouts
# ============================================================================


def is_permission_error(exc: BaseException) -> bool:
    """True when a driver error means the user lacks a privilege."""
    if isinstance(exc, PermissionDeniedError):
        return True
    candidates: list[BaseException] = [exc]
    orig = getattr(exc, "orig", None)
    if isinstance(orig, BaseException):
        candidates.append(orig)
    for err in candidates:
        if getattr(err, "sqlstate", None) in _PERMISSION_SQLSTATES:
            return True
        args = getattr(err, "args", ())
        if args and isinstance(args[0], int) and args[0] in _PERMISSION_ERRNOS:
            return True
        message = str(err).lower()
        if any(p in message for p in _PERMISSION_PATTERNS):
            return True
    return False


def classify_catalog_error(exc: Exception, table: str | None = None) -> MigrationError:
    """Wrap a driver error raised during introspection or reads."""
    if isinstance(exc, MigrationError):
        return exc
    if is_permission_error(exc):
        return PermissionDeniedError(f"Insufficient privileges: {exc}", table=table)
    return CatalogError(str(exc), table=table)


async def run_with_timeout(awaitable: Awaitable[T], timeout: float | None, what: str) -> T:
    """Await with a per-command timeout, raising ``CommandTimeoutError``."""
    if not timeout:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as e:
        raise CommandTimeoutError(
            f"{what} exceeded command timeout of {timeout}s", timeout=timeout
        ) from e


# ============================================================================
# Literals / statements
# ============================================================================


def format_literal(
    value: RowValue,
    *,
    bool_style: str = "int",
    bytes_style: str = "hex",
) -> str:
    """Render a row value as a SQL literal.

    Args:
        value: Value from a ``RowData`` map.
        bool_style: ``"int"`` renders 1/0, ``"keyword"`` renders TRUE/FALSE.
        bytes_style: ``"hex"`` -> ``0xABCD``, ``"bytea"`` -> ``'\\xabcd'::bytea``,
            ``"x"`` -> ``x'ABCD'``.

    Returns:
        SQL literal text.
    """
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        if bool_style == "keyword":
            return "TRUE" if value else "FALSE"
        return "1" if value else "0"
    if isinstance(value, (int, Decimal)):
        return str(value)
    if isinstance(value, float):
        return repr(value)
    if isinstance(value, datetime):
        return "'" + value.strftime("%Y-%m-%d %H:%M:%S") + (
            f".{value.microsecond:06d}'" if value.microsecond else "'"
        )
    if isinstance(value, date):
        return "'" + value.strftime("%Y-%m-%d") + "'"
    if isinstance(value, time):
        return "'" + value.strftime("%H:%M:%S") + "'"
    if isinstance(value, timedelta):
        return str(int(value.total_seconds()))
    if isinstance(value, bytes):
        hex_value = value.hex()
        if bytes_style == "bytea":
            return f"'\\x{hex_value}'::bytea"
        if bytes_style == "x":
            return f"x'{hex_value.upper()}'"
        return f"0x{hex_value.upper()}"
    if isinstance(value, UUID):
        return f"'{value}'"
    return "'" + str(value).replace("'", "''") + "'"


def build_insert_sql(qualified_table: str, quoted_columns: Sequence[str]) -> str:
    """Parameterized single-row INSERT with binds ``:p0 .. :pN``."""
    placeholders = ", ".join(f":p{i}" for i in range(len(quoted_columns)))
    return (
        f"INSERT INTO {qualified_table} ({', '.join(quoted_columns)}) "
        f"VALUES ({placeholders})"
    )


def row_params(
    row: RowData,
    columns: Sequence[str],
    convert: Callable[[str, RowValue], Any] | None = None,
) -> dict[str, Any]:
    """Bind parameters for ``build_insert_sql`` in column order."""
    params: dict[str, Any] = {}
    for i, name in enumerate(columns):
        value = row.get(name)
        params[f"p{i}"] = convert(name, value) if convert else value
    return params


def build_insert_script(
    qualified_table: str,
    quoted_columns: Sequence[str],
    columns: Sequence[str],
    rows: Sequence[RowData],
    literal: Callable[[RowValue], str],
) -> str:
    """One literal INSERT statement per row, separated by ``;\\n``."""
    statements = []
    for row in rows:
        values = ", ".join(literal(row.get(c)) for c in columns)
        statements.append(
            f"INSERT INTO {qualified_table} ({', '.join(quoted_columns)}) VALUES ({values})"
        )
    return ";\n".join(statements) + (";" if statements else "")


# ============================================================================
# Batch executors
# ============================================================================


async def insert_batch_joined(
    engine: AsyncEngine,
    sql: str,
    params: list[dict[str, Any]],
    *,
    table: str,
    batch_number: int | None = None,
    timeout: float | None = None,
    setup: Sequence[str] = (),
    teardown: Sequence[str] = (),
    log: logging.Logger | None = None,
) -> int:
    """Insert a batch as one executemany inside one transaction.

    When the batch fails it is rolled back and replayed one row per
    transaction to find the failing row.

    Args:
        engine: Async engine of the target.
        sql: Parameterized INSERT from ``build_insert_sql``.
        params: One bind dict per row.
        table: Table name for error reporting.
        batch_number: Batch number for error reporting.
        timeout: Per-command timeout in seconds.
        setup: Statements run on the same connection before inserting
            (``SET IDENTITY_INSERT ... ON``).
        teardown: Statements run after inserting.
        log: Logger sink.

    Returns:
        Number of rows inserted.

    Raises:
        BatchInsertError: With ``row_index`` of the failing row and
            ``rolled_back=False`` (rows before it were committed).
        CommandTimeoutError: If the batch times out.
    """
    log = log or logger
    if not params:
        return 0

    async def _run(rows: list[dict[str, Any]]) -> None:
        async with engine.begin() as conn:
            for stmt in setup:
                await conn.execute(text(stmt))
            await conn.execute(text(sql), rows)
            for stmt in teardown:
                await conn.execute(text(stmt))

    try:
        await run_with_timeout(_run(params), timeout, f"Insert batch into {table}")
        return len(params)
    except CommandTimeoutError:
        raise
    except Exception as batch_error:
        log.warning(
            "Batch %s for %s failed (%s); retrying row by row to locate the failing row",
            batch_number, table, batch_error,
        )

    for index, row in enumerate(params, start=1):
        try:
            await run_with_timeout(_run([row]), timeout, f"Insert row into {table}")
        except Exception as row_error:
            raise BatchInsertError(
                f"Row {index} of batch {batch_number} failed for {table}: {row_error}",
                table=table,
                batch_number=batch_number,
                row_index=index,
                rolled_back=False,
            ) from row_error
    log.info("Batch %s for %s succeeded on row-by-row retry", batch_number, table)
    return len(params)


def insert_batch_per_row(
    engine: Engine,
    sql: str,
    params: list[dict[str, Any]],
    *,
    table: str,
    batch_number: int | None = None,
) -> int:
    """Insert rows one statement at a time inside a single transaction.

    Synchronous; callers run it on a worker thread.  The transaction commits
    when every row succeeded and rolls back entirely on the first failure.

    Raises:
        BatchInsertError: With ``row_index`` of the failing row and
            ``rolled_back=True``.
    """
    if not params:
        return 0
    with engine.connect() as conn:
        trans = conn.begin()
        for index, row in enumerate(params, start=1):
            try:
                conn.execute(text(sql), row)
            except Exception as row_error:
                trans.rollback()
                raise BatchInsertError(
                    f"Row {index} of batch {batch_number} failed for {table}; "
                    f"batch rolled back: {row_error}",
                    table=table,
                    batch_number=batch_number,
                    row_index=index,
                    rolled_back=True,
                ) from row_error
        trans.commit()
    return len(params)


# ============================================================================
# DDL statements common to all dialects
# ============================================================================


def index_statement(
    quote: Callable[[str], str],
    qualified_table: str,
    index: IndexDefinition,
    clustered_keyword: bool = False,
) -> str:
    """``CREATE [UNIQUE] [CLUSTERED|NONCLUSTERED] INDEX``."""
    parts = ["CREATE"]
    if index.is_unique:
        parts.append("UNIQUE")
    if clustered_keyword:
        parts.append("CLUSTERED" if index.is_clustered else "NONCLUSTERED")
    columns = ", ".join(quote(c) for c in index.columns)
    parts.append(f"INDEX {quote(index.name)} ON {qualified_table} ({columns})")
    return " ".join(parts)


def foreign_key_statement(
    quote: Callable[[str], str],
    qualified_table: str,
    referenced_table: str,
    fk: ForeignKeyDefinition,
    supported_rules: frozenset[ReferentialAction] = frozenset(ReferentialAction),
) -> str:
    """``ALTER TABLE .. ADD CONSTRAINT .. FOREIGN KEY .. REFERENCES ..``.

    Rules the engine does not support fall back to NO ACTION.
    """
    def rule(action: ReferentialAction) -> str:
        return (action if action in supported_rules else ReferentialAction.NO_ACTION).sql

    columns = ", ".join(quote(c) for c in fk.columns)
    referenced = ", ".join(quote(c) for c in fk.referenced_columns)
    return (
        f"ALTER TABLE {qualified_table} ADD CONSTRAINT {quote(fk.name)} "
        f"FOREIGN KEY ({columns}) REFERENCES {referenced_table} ({referenced}) "
        f"ON DELETE {rule(fk.delete_rule)} ON UPDATE {rule(fk.update_rule)}"
    )


def constraint_statement(
    quote: Callable[[str], str],
    qualified_table: str,
    constraint: ConstraintDefinition,
) -> str | None:
    """``ALTER TABLE .. ADD CONSTRAINT`` for UNIQUE and CHECK; None for PRIMARY KEY."""
    if constraint.type == ConstraintType.UNIQUE:
        columns = ", ".join(quote(c) for c in constraint.columns)
        return (
            f"ALTER TABLE {qualified_table} ADD CONSTRAINT {quote(constraint.name)} "
            f"UNIQUE ({columns})"
        )
    if constraint.type == ConstraintType.CHECK and constraint.definition:
        definition = constraint.definition.strip()
        if not (definition.startswith("(") and definition.endswith(")")):
            definition = f"({definition})"
        return (
            f"ALTER TABLE {qualified_table} ADD CONSTRAINT {quote(constraint.name)} "
            f"CHECK {definition}"
        )
    return None


def primary_key_clause(quote: Callable[[str], str], table: TableSchema) -> str | None:
    """``CONSTRAINT pk PRIMARY KEY (cols)`` line for CREATE TABLE."""
    pk_columns = table.primary_key_columns
    if not pk_columns:
        return None
    pk_name = next(
        (c.name for c in table.constraints if c.type == ConstraintType.PRIMARY_KEY),
        f"PK_{table.name}",
    )
    return f"CONSTRAINT {quote(pk_name)} PRIMARY KEY ({', '.join(quote(c) for c in pk_columns)})"


def create_table_statement(
    qualified_table: str, column_lines: Sequence[str], pk_line: str | None, suffix: str = ""
) -> str:
    lines = list(column_lines)
    if pk_line:
        lines.append(pk_line)
    body = ",\n    ".join(lines)
    return f"CREATE TABLE {qualified_table} (\n    {body}\n){suffix}"
