"""Foreign-key dependency ordering for tables.

Referenced tables come before the tables that reference them.  Cycles
(including self references) are broken by ignoring the edge that closes
the cycle, so every table always appears exactly once.

Usage:
    from db_migrator.schema.dependencies import dependency_levels, topological_order

    ordered = topological_order(tables)        # list[TableSchema]
    levels = dependency_levels(tables)         # {0: ["dbo.customers"], 1: [...]}
"""

from db_migrator.schema.models import ForeignKeyDefinition, TableSchema


def _resolve_reference(
    fk: ForeignKeyDefinition,
    by_full_name: dict[str, TableSchema],
    by_name: dict[str, list[TableSchema]],
) -> TableSchema | None:
    """Find the table a foreign key points at within the given set."""
    if fk.referenced_schema:
        target = by_full_name.get(fk.referenced_full_name.lower())
        if target is not None:
            return target
    candidates = by_name.get(fk.referenced_table.lower(), [])
    if len(candidates) == 1:
        return candidates[0]
    return None


def build_dependency_graph(tables: list[TableSchema]) -> dict[str, list[str]]:
    """Map each table's full name to the full names it references.

    Only tables inside ``tables`` are considered; self references and
    references to tables outside the set are dropped.
    """
    by_full_name = {t.full_name.lower(): t for t in tables}
    by_name: dict[str, list[TableSchema]] = {}
    for t in tables:
        by_name.setdefault(t.name.lower(), []).append(t)

    graph: dict[str, list[str]] = {}
    for table in tables:
        deps: list[str] = []
        for fk in table.foreign_keys:
            target = _resolve_reference(fk, by_full_name, by_name)
            if target is None or target is table:
                continue
            if target.full_name not in deps:
                deps.append(target.full_name)
        graph[table.full_name] = deps
    return graph


def topological_order(tables: list[TableSchema]) -> list[TableSchema]:
    """Order tables so that referenced tables precede referencing ones.

    Depth-first visit in input order; a table currently being visited is
    skipped when reached again, which breaks cycles.

    Args:
        tables: Tables with their foreign keys populated.

    Returns:
        The same table objects in dependency order.
    """
    graph = build_dependency_graph(tables)
    by_full_name = {t.full_name: t for t in tables}
    visited: set[str] = set()
    visiting: set[str] = set()
    result: list[TableSchema] = []

    def visit(name: str) -> None:
        if name in visited or name in visiting:
            return
        visiting.add(name)
        for dep in graph.get(name, []):
            visit(dep)
        visiting.discard(name)
        visited.add(name)
        result.append(by_full_name[name])

    for table in tables:
        visit(table.full_name)
    return result


def dependency_levels(tables: list[TableSchema]) -> dict[int, list[str]]:
    """Group tables into numbered levels.

    Level 0 holds tables with no in-set dependencies; every other table sits
    one level above the deepest table it references.

    Returns:
        Mapping of level number to full table names, in topological order.
    """
    graph = build_dependency_graph(tables)
    level_of: dict[str, int] = {}
    for table in topological_order(tables):
        deps = [level_of[d] for d in graph[table.full_name] if d in level_of]
        level_of[table.full_name] = max(deps) + 1 if deps else 0

    levels: dict[int, list[str]] = {}
    for name, level in level_of.items():
        levels.setdefault(level, []).append(name)
    return dict(sorted(levels.items()))


def cross_table_foreign_keys(tables: list[TableSchema]) -> list[dict[str, str]]:
    """List FK edges between distinct tables for the archive's dependency file."""
    edges: list[dict[str, str]] = []
    for table in tables:
        for fk in table.foreign_keys:
            if fk.referenced_table.lower() == table.name.lower() and (
                fk.referenced_schema or table.schema_name
            ) == table.schema_name:
                continue
            edges.append(
                {
                    "table": table.full_name,
                    "foreign_key": fk.name,
                    "referenced_table": fk.referenced_full_name,
                }
            )
    return edges


def order_by_levels(
    tables: list[TableSchema], levels: dict[str, list[str]] | dict[int, list[str]]
) -> list[TableSchema]:
    """Reorder tables by previously computed levels.

    Level keys may be ints or numeric strings (as read back from JSON).
    Tables not named in any level keep their relative order at the end.
    """
    by_full_name = {t.full_name.lower(): t for t in tables}
    result: list[TableSchema] = []
    seen: set[int] = set()

    def level_key(key: str | int) -> int:
        try:
            return int(key)
        except (TypeError, ValueError):
            return 0

    for key in sorted(levels, key=level_key):
        for name in levels[key]:  # type: ignore[index]
            table = by_full_name.get(name.lower())
            if table is not None and id(table) not in seen:
                seen.add(id(table))
                result.append(table)

    result.extend(t for t in tables if id(t) not in seen)
    return result
