"""Provider registry: engine name -> provider constructor.

Lookup is case-insensitive and accepts aliases (``postgres``, ``mssql``,
``mariadb``).  ``build_default_registry()`` returns a registry with the
four built-in engines; tests register fakes on a fresh registry.

Usage:
    from db_migrator.providers.registry import build_default_registry

    registry = build_default_registry()
    provider = registry.create("postgres", "postgresql://u:p@localhost/db")
    registry.names()  # ['Firebird', 'MySQL', 'PostgreSQL', 'SqlServer']
"""

from typing import Any, Callable

from db_migrator.constants import EngineName
from db_migrator.exceptions import ProviderNotFoundError
from db_migrator.providers.base import DatabaseProvider
from db_migrator.providers.firebird import FirebirdProvider
from db_migrator.providers.mysql import MySqlProvider
from db_migrator.providers.postgresql import PostgreSqlProvider
from db_migrator.providers.sqlserver import SqlServerProvider

ProviderFactory = Callable[..., DatabaseProvider]

DEFAULT_ALIASES: dict[EngineName, tuple[str, ...]] = {
    EngineName.SQLSERVER: ("sqlserver", "mssql", "sql_server"),
    EngineName.MYSQL: ("mysql", "mariadb"),
    EngineName.POSTGRESQL: ("postgresql", "postgres", "pg"),
    EngineName.FIREBIRD: ("firebird", "fb"),
}


class ProviderRegistry:
    """Maps provider names and aliases to factories."""

    def __init__(self) -> None:
        self._factories: dict[str, ProviderFactory] = {}
        self._aliases: dict[str, str] = {}

    def register(
        self, name: str, factory: ProviderFactory, aliases: tuple[str, ...] = ()
    ) -> None:
        """Register a factory under a canonical name plus aliases.

        Re-registering a name replaces its factory.
        """
        self._factories[name] = factory
        for alias in (name, *aliases):
            self._aliases[alias.lower()] = name

    def resolve(self, name: str) -> str:
        """Canonical provider name for ``name`` or one of its aliases.

        Raises:
            ProviderNotFoundError: If nothing is registered under ``name``.
        """
        key = (name or "").strip().lower()
        if key not in self._aliases:
            raise ProviderNotFoundError(name, self.names())
        return self._aliases[key]

    def create(self, name: str, connection_string: str, **kwargs: Any) -> DatabaseProvider:
        """Instantiate the provider registered under ``name``."""
        return self._factories[self.resolve(name)](connection_string, **kwargs)

    def names(self) -> list[str]:
        return sorted(self._factories)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.strip().lower() in self._aliases


def build_default_registry() -> ProviderRegistry:
    """Registry with SQL Server, MySQL, PostgreSQL and Firebird."""
    registry = ProviderRegistry()
    builtins: dict[EngineName, ProviderFactory] = {
        EngineName.SQLSERVER: SqlServerProvider,
        EngineName.MYSQL: MySqlProvider,
        EngineName.POSTGRESQL: PostgreSqlProvider,
        EngineName.FIREBIRD: FirebirdProvider,
    }
    for engine, factory in builtins.items():
        registry.register(engine.value, factory, DEFAULT_ALIASES[engine])
    return registry
