"""Schema model, dependency ordering and cross-engine type mapping.

Usage:
    from db_migrator.schema import TableSchema, ColumnDefinition
    from db_migrator.schema import topological_order, map_type
"""

from db_migrator.schema.dependencies import (
    dependency_levels,
    order_by_levels,
    topological_order,
)
from db_migrator.schema.models import (
    ColumnDefinition,
    ConstraintDefinition,
    ConstraintType,
    ForeignKeyDefinition,
    IndexDefinition,
    ReferentialAction,
    RowData,
    RowValue,
    TableSchema,
)
from db_migrator.schema.type_mapper import MappedType, coerce_value, map_table, map_type

__all__ = [
    "ColumnDefinition",
    "ConstraintDefinition",
    "ConstraintType",
    "ForeignKeyDefinition",
    "IndexDefinition",
    "ReferentialAction",
    "RowData",
    "RowValue",
    "TableSchema",
    "dependency_levels",
    "order_by_levels",
    "topological_order",
    "MappedType",
    "coerce_value",
    "map_table",
    "map_type",
]
