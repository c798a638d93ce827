"""Schema preview: the DDL a provider would run for a set of tables.

Usage:
    from db_migrator.engine.script import generate_schema_script

    sql = generate_schema_script(target_provider, tables, source=EngineName.SQLSERVER)
    print(sql)
"""

from db_migrator.constants import EngineName
from db_migrator.providers.base import DatabaseProvider
from db_migrator.schema.dependencies import topological_order
from db_migrator.schema.models import TableSchema
from db_migrator.schema.type_mapper import map_table


def generate_schema_script(
    provider: DatabaseProvider,
    tables: list[TableSchema],
    source: EngineName | str | None = None,
    include_indexes: bool = True,
    include_foreign_keys: bool = True,
) -> str:
    """Build a CREATE TABLE / INDEX / FOREIGN KEY script.

    Tables are emitted in dependency order, then every table's indexes and
    constraints, then every foreign key, matching the import phases.

    Args:
        provider: Target provider; only its script generators are used.
        tables: Tables to script.
        source: Engine the tables were read from.  When it differs from the
            provider's engine the tables are type-mapped first.
        include_indexes: Emit indexes and UNIQUE/CHECK constraints.
        include_foreign_keys: Emit foreign keys.

    Returns:
        Statements separated by ``;`` and blank lines, ending with ``;``.
    """
    if source is not None:
        tables = [map_table(source, provider.provider_name, t)[0] for t in tables]
    ordered = topological_order(tables)

    sections: list[str] = [provider.generate_table_creation_script(t) for t in ordered]
    if include_indexes:
        sections.extend(provider.generate_index_script(t) for t in ordered)
    if include_foreign_keys:
        sections.extend(provider.generate_foreign_key_script(t) for t in ordered)
    return "\n\n".join(f"{s};" for s in sections if s)
