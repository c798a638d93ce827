"""Identifier validation and quoting shared by all providers.

Most SQL dialects cannot bind identifiers as parameters, so table and
column names end up interpolated into SQL text.  User-supplied names go
through ``validate_identifier`` (letters, digits, underscore, at most one
``schema.table`` dot) before they reach a query; catalog-sourced names go
through a dialect quote function that rejects embedded quote characters.

Usage:
    from db_migrator.providers.identifiers import (
        quote_brackets, split_table_name, validate_identifier,
    )

    schema, table = split_table_name("sales.orders")
    sql = f"SELECT COUNT(*) FROM {quote_brackets(schema)}.{quote_brackets(table)}"
"""

import re

from db_migrator.exceptions import InvalidIdentifierError

_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9_]+(\.[A-Za-z0-9_]+)?$")
_QUOTE_CHARS = ('"', "`", "[", "]", "'")


def validate_identifier(name: str) -> str:
    """Validate a user-supplied table name against the allow-list.

    Args:
        name: ``table`` or ``schema.table``.

    Returns:
        The name, stripped of surrounding whitespace.

    Raises:
        InvalidIdentifierError: If the name is empty or contains anything
            other than letters, digits, underscore and one dot.

    Example:
        >>> validate_identifier("dbo.Orders")
        'dbo.Orders'
        >>> validate_identifier("Orders; DROP TABLE x")
        Traceback (most recent call last):
        ...
        InvalidIdentifierError: [INVALID_IDENTIFIER] Invalid identifier: ...
    """
    stripped = (name or "").strip()
    if not stripped:
        raise InvalidIdentifierError(name or "", "empty name")
    if not _IDENTIFIER_RE.match(stripped):
        raise InvalidIdentifierError(
            name, "only letters, digits, underscore and one schema separator allowed"
        )
    return stripped


def split_table_name(name: str) -> tuple[str | None, str]:
    """Validate and split ``schema.table`` into ``(schema, table)``."""
    validated = validate_identifier(name)
    if "." in validated:
        schema, table = validated.split(".", 1)
        return schema, table
    return None, validated


def parse_table_filter(names: list[str] | str | None) -> list[tuple[str | None, str]]:
    """Validate a table filter list (or comma-separated string).

    Returns:
        List of ``(schema, table)`` pairs, duplicates removed, order kept.
    """
    if names is None:
        return []
    if isinstance(names, str):
        names = [n for n in names.split(",")]
    result: list[tuple[str | None, str]] = []
    for raw in names:
        if not raw.strip():
            continue
        pair = split_table_name(raw)
        if pair not in result:
            result.append(pair)
    return result


def _check_no_quotes(identifier: str) -> None:
    if not identifier:
        raise InvalidIdentifierError(identifier, "empty name")
    for ch in _QUOTE_CHARS:
        if ch in identifier:
            raise InvalidIdentifierError(identifier, f"contains quote character {ch!r}")


def quote_brackets(identifier: str) -> str:
    """SQL Server quoting: ``[name]``."""
    _check_no_quotes(identifier)
    return f"[{identifier}]"


def quote_double(identifier: str) -> str:
    """ANSI quoting used by PostgreSQL and Firebird: ``"name"``."""
    _check_no_quotes(identifier)
    return f'"{identifier}"'


def quote_backtick(identifier: str) -> str:
    """MySQL quoting: ``name`` in backticks."""
    _check_no_quotes(identifier)
    return f"`{identifier}`"


def qualified_name(quote, table: str, schema: str | None = None) -> str:
    """Quote ``schema.table`` (or just ``table``) with the given quote function."""
    if schema:
        return f"{quote(schema)}.{quote(table)}"
    return quote(table)


def sql_string(value: str) -> str:
    """Render a catalog lookup value as a SQL string literal."""
    return "'" + value.replace("'", "''") + "'"
