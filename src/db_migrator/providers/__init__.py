"""Database providers package.

Provides the ``DatabaseProvider`` Protocol, one implementation per engine
and the registry that maps engine names to them.

Usage:
    from db_migrator.providers import DatabaseProvider, build_default_registry

    registry = build_default_registry()
    provider: DatabaseProvider = registry.create("SqlServer", url, command_timeout=300)
"""

from db_migrator.providers.base import DatabaseProvider
from db_migrator.providers.firebird import FirebirdProvider
from db_migrator.providers.identifiers import (
    parse_table_filter,
    split_table_name,
    validate_identifier,
)
from db_migrator.providers.mysql import MySqlProvider
from db_migrator.providers.postgresql import PostgreSqlProvider
from db_migrator.providers.registry import ProviderRegistry, build_default_registry
from db_migrator.providers.sqlserver import SqlServerProvider

__all__ = [
    "DatabaseProvider",
    "FirebirdProvider",
    "MySqlProvider",
    "PostgreSqlProvider",
    "SqlServerProvider",
    "ProviderRegistry",
    "build_default_registry",
    "parse_table_filter",
    "split_table_name",
    "validate_identifier",
]
