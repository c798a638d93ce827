"""Cross-engine type mapping.

Every source type is first normalized to the canonical vocabulary (SQL
Server type names) and then rendered in the target engine's vocabulary.
Both steps are total: unknown or unmappable types degrade to the widest
string type of the engine instead of failing the table.

Narrowing is never silent.  When a target cannot hold the full resolution
of a source type (for example ``datetime2(7)`` into MySQL's microsecond
``datetime(6)``), the returned ``MappedType`` carries a ``warning``.

Usage:
    from db_migrator.constants import EngineName
    from db_migrator.schema.type_mapper import map_type, map_table

    mapped = map_type(EngineName.POSTGRESQL, EngineName.SQLSERVER, "boolean")
    mapped.type_name  # "bit"

    table, warnings = map_table(EngineName.SQLSERVER, EngineName.MYSQL, table)
"""

import re
from typing import NamedTuple
from uuid import UUID

from db_migrator.constants import DEFAULT_SCHEMAS, EngineName
from db_migrator.schema.models import (
    ColumnDefinition,
    ConstraintType,
    RowValue,
    TableSchema,
)

MAX = -1  # max_length value meaning unbounded


class MappedType(NamedTuple):
    """A type name with its size parameters and an optional narrowing warning."""

    type_name: str
    max_length: int | None = None
    precision: int | None = None
    scale: int | None = None
    warning: str | None = None


# ============================================================================
# Canonical (SQL Server) vocabulary
# ============================================================================

SQLSERVER_TYPES = frozenset({
    "bit", "tinyint", "smallint", "int", "bigint",
    "decimal", "numeric", "money", "smallmoney", "float", "real",
    "date", "time", "datetime", "datetime2", "smalldatetime", "datetimeoffset",
    "char", "varchar", "nchar", "nvarchar", "text", "ntext",
    "binary", "varbinary", "image",
    "uniqueidentifier", "xml",
})

_LENGTH_TYPES = frozenset({"char", "varchar", "nchar", "nvarchar", "binary", "varbinary"})
_INTEGER_TYPES = frozenset({
    "tinyint", "smallint", "int", "integer", "bigint", "mediumint",
    "int2", "int4", "int8",
})
_BOOLEAN_TYPES = frozenset({"bit", "bool", "boolean"})
_CHAR_TYPES = frozenset({
    "char", "varchar", "nchar", "nvarchar", "text", "ntext", "longtext",
    "mediumtext", "tinytext", "character", "character varying",
    "blob sub_type text",
})


def _wide_string(source_type: str) -> MappedType:
    return MappedType(
        "nvarchar",
        MAX,
        warning=f"Unknown type '{source_type}' mapped to nvarchar(max)",
    )


def _sqlserver_to_canonical(
    name: str, length: int | None, precision: int | None, scale: int | None
) -> MappedType:
    if name in ("timestamp", "rowversion"):
        return MappedType("binary", 8)
    if name == "text":
        return MappedType("varchar", MAX)
    if name == "ntext":
        return MappedType("nvarchar", MAX)
    if name == "image":
        return MappedType("varbinary", MAX)
    if name in ("sql_variant", "hierarchyid", "geography", "geometry", "sysname"):
        return MappedType("nvarchar", 128 if name == "sysname" else MAX)
    if name in SQLSERVER_TYPES:
        if name in _LENGTH_TYPES:
            return MappedType(name, length if length else (1 if "char" in name else MAX))
        if name in ("decimal", "numeric"):
            return MappedType(name, precision=precision or 18, scale=scale or 0)
        if name in ("datetime2", "datetimeoffset", "time"):
            return MappedType(name, precision=precision if precision is not None else 7)
        return MappedType(name)
    return _wide_string(name)


def _postgresql_to_canonical(
    name: str, length: int | None, precision: int | None, scale: int | None
) -> MappedType:
    simple = {
        "smallint": "smallint", "int2": "smallint",
        "integer": "int", "int": "int", "int4": "int", "serial": "int",
        "bigint": "bigint", "int8": "bigint", "bigserial": "bigint",
        "smallserial": "smallint",
        "real": "real", "float4": "real",
        "double precision": "float", "float8": "float",
        "money": "money",
        "boolean": "bit", "bool": "bit",
        "date": "date",
        "uuid": "uniqueidentifier",
        "xml": "xml",
    }
    if name in simple:
        return MappedType(simple[name])
    if name in ("numeric", "decimal"):
        if precision is None:
            return MappedType(
                "decimal", precision=38, scale=10,
                warning="Unconstrained numeric mapped to decimal(38,10)",
            )
        return MappedType("decimal", precision=precision, scale=scale or 0)
    if name in ("character varying", "varchar"):
        return MappedType("nvarchar", length if length else MAX)
    if name in ("character", "char", "bpchar"):
        return MappedType("nchar", length or 1)
    if name in ("text", "citext", "json", "jsonb", "array", "user-defined", "tsvector"):
        return MappedType("nvarchar", MAX)
    if name == "bytea":
        return MappedType("varbinary", MAX)
    if name in ("time", "time without time zone"):
        return MappedType("time", precision=precision if precision is not None else 6)
    if name in ("time with time zone", "timetz"):
        return MappedType(
            "time", precision=precision if precision is not None else 6,
            warning="Time zone offset of 'time with time zone' is dropped",
        )
    if name in ("timestamp", "timestamp without time zone"):
        return MappedType("datetime2", precision=precision if precision is not None else 6)
    if name in ("timestamp with time zone", "timestamptz"):
        return MappedType(
            "datetimeoffset", precision=precision if precision is not None else 6
        )
    if name == "interval":
        return MappedType("nvarchar", 100)
    if name in ("inet", "cidr", "macaddr", "macaddr8"):
        return MappedType("nvarchar", 50)
    return _wide_string(name)


def _mysql_to_canonical(
    name: str, length: int | None, precision: int | None, scale: int | None
) -> MappedType:
    simple = {
        "bool": "bit", "boolean": "bit",
        "tinyint": "smallint",  # signed -128..127 does not fit SQL Server's tinyint
        "smallint": "smallint",
        "mediumint": "int",
        "int": "int", "integer": "int",
        "bigint": "bigint",
        "float": "real",
        "double": "float", "double precision": "float", "real": "float",
        "date": "date",
        "year": "smallint",
    }
    if name in simple:
        return MappedType(simple[name])
    if name in ("decimal", "numeric"):
        return MappedType("decimal", precision=precision or 10, scale=scale or 0)
    if name == "bit":
        if not precision or precision == 1:
            return MappedType("bit")
        return MappedType("bigint")
    if name == "char":
        return MappedType("nchar", length or 1)
    if name == "varchar":
        return MappedType("nvarchar", length if length else MAX)
    if name in ("tinytext", "text", "mediumtext", "longtext", "json"):
        return MappedType("nvarchar", MAX)
    if name in ("enum", "set"):
        return MappedType("nvarchar", 255)
    if name == "binary":
        return MappedType("binary", length or 1)
    if name == "varbinary":
        return MappedType("varbinary", length if length else MAX)
    if name in ("tinyblob", "blob", "mediumblob", "longblob"):
        return MappedType("varbinary", MAX)
    if name == "time":
        return MappedType("time", precision=precision or 0)
    if name in ("datetime", "timestamp"):
        return MappedType("datetime2", precision=precision or 0)
    return _wide_string(name)


def _firebird_to_canonical(
    name: str, length: int | None, precision: int | None, scale: int | None
) -> MappedType:
    aliases = {
        "integer": "int",
        "double precision": "float",
        "boolean": "bit",
        "blob sub_type text": "nvarchar",
        "blob": "varbinary",
        "blob sub_type binary": "varbinary",
        "timestamp": "datetime2",
        "time": "time",
    }
    if name in aliases:
        target = aliases[name]
        if target in _LENGTH_TYPES:
            return MappedType(target, MAX)
        if target in ("datetime2", "time"):
            return MappedType(target, precision=4)
        return MappedType(target)
    return _sqlserver_to_canonical(name, length, precision, scale)


# ============================================================================
# Rendering canonical types for a target engine
# ============================================================================


def _canonical_to_postgresql(t: MappedType) -> MappedType:
    name = t.type_name
    simple = {
        "bit": "boolean", "tinyint": "smallint", "smallint": "smallint",
        "int": "integer", "bigint": "bigint", "float": "double precision",
        "real": "real", "date": "date", "uniqueidentifier": "uuid", "xml": "xml",
    }
    if name in simple:
        return MappedType(simple[name])
    if name in ("decimal", "numeric"):
        return MappedType("numeric", precision=t.precision, scale=t.scale)
    if name == "money":
        return MappedType("numeric", precision=19, scale=4)
    if name == "smallmoney":
        return MappedType("numeric", precision=10, scale=4)
    if name in ("char", "nchar"):
        return MappedType("char", t.max_length or 1)
    if name in ("varchar", "nvarchar"):
        if not t.max_length or t.max_length == MAX:
            return MappedType("text")
        return MappedType("varchar", t.max_length)
    if name in ("text", "ntext"):
        return MappedType("text")
    if name in ("binary", "varbinary", "image"):
        return MappedType("bytea")
    if name == "time":
        return _cap_precision("time", t.precision, 6, "PostgreSQL")
    if name in ("datetime", "smalldatetime"):
        return MappedType("timestamp", precision=3)
    if name == "datetime2":
        return _cap_precision("timestamp", t.precision, 6, "PostgreSQL")
    if name == "datetimeoffset":
        return _cap_precision("timestamptz", t.precision, 6, "PostgreSQL")
    return MappedType("text", warning=f"Type '{name}' mapped to text")


def _canonical_to_mysql(t: MappedType) -> MappedType:
    name = t.type_name
    simple = {
        "bit": "bool", "tinyint": "smallint", "smallint": "smallint",
        "int": "int", "bigint": "bigint", "float": "double", "real": "float",
        "date": "date",
    }
    if name in simple:
        return MappedType(simple[name])
    if name in ("decimal", "numeric"):
        precision = t.precision or 18
        if precision > 65:
            return MappedType(
                "decimal", precision=65, scale=min(t.scale or 0, 30),
                warning=f"decimal({precision}) exceeds MySQL maximum precision 65",
            )
        return MappedType("decimal", precision=precision, scale=t.scale or 0)
    if name == "money":
        return MappedType("decimal", precision=19, scale=4)
    if name == "smallmoney":
        return MappedType("decimal", precision=10, scale=4)
    if name in ("char", "nchar"):
        length = t.max_length or 1
        if length > 255:
            return MappedType("varchar", length) if length <= 16383 else MappedType("longtext")
        return MappedType("char", length)
    if name in ("varchar", "nvarchar"):
        if not t.max_length or t.max_length == MAX or t.max_length > 16383:
            return MappedType("longtext")
        return MappedType("varchar", t.max_length)
    if name in ("text", "ntext", "xml"):
        return MappedType("longtext")
    if name == "binary":
        length = t.max_length or 1
        return MappedType("binary", length) if length <= 255 else MappedType("longblob")
    if name == "varbinary":
        if not t.max_length or t.max_length == MAX or t.max_length > 65535:
            return MappedType("longblob")
        return MappedType("varbinary", t.max_length)
    if name == "image":
        return MappedType("longblob")
    if name == "uniqueidentifier":
        return MappedType("char", 36)
    if name == "time":
        return _cap_precision("time", t.precision, 6, "MySQL")
    if name in ("datetime", "smalldatetime"):
        return MappedType("datetime", precision=3)
    if name == "datetime2":
        return _cap_precision("datetime", t.precision, 6, "MySQL")
    if name == "datetimeoffset":
        mapped = _cap_precision("datetime", t.precision, 6, "MySQL")
        return mapped._replace(
            warning="Time zone offset of datetimeoffset is dropped"
            + (f"; {mapped.warning}" if mapped.warning else "")
        )
    return MappedType("longtext", warning=f"Type '{name}' mapped to longtext")


def _canonical_to_firebird(t: MappedType) -> MappedType:
    name = t.type_name
    simple = {
        "bit": "smallint", "tinyint": "smallint", "smallint": "smallint",
        "int": "integer", "bigint": "bigint", "float": "double precision",
        "real": "float", "date": "date",
    }
    if name in simple:
        return MappedType(simple[name])
    if name == "time":
        return MappedType("time", warning=_firebird_fraction_warning(name, t.precision))
    if name in ("decimal", "numeric"):
        precision = t.precision or 18
        if precision > 18:
            return MappedType(
                "decimal", precision=18, scale=min(t.scale or 0, 18),
                warning=f"decimal({precision}) exceeds Firebird maximum precision 18",
            )
        return MappedType("decimal", precision=precision, scale=t.scale or 0)
    if name in ("money", "smallmoney"):
        return MappedType("decimal", precision=18, scale=4)
    if name in ("char", "nchar"):
        length = t.max_length or 1
        return MappedType("char", length) if length <= 8191 else MappedType("blob sub_type text")
    if name in ("varchar", "nvarchar"):
        if not t.max_length or t.max_length == MAX or t.max_length > 8191:
            return MappedType("blob sub_type text")
        return MappedType("varchar", t.max_length)
    if name in ("text", "ntext", "xml"):
        return MappedType("blob sub_type text")
    if name in ("binary", "varbinary", "image"):
        return MappedType("blob sub_type binary")
    if name == "uniqueidentifier":
        return MappedType("char", 36)
    if name in ("datetime", "smalldatetime"):
        return MappedType("timestamp")
    if name in ("datetime2", "datetimeoffset"):
        warning = _firebird_fraction_warning(name, t.precision)
        if name == "datetimeoffset":
            warning = "Time zone offset of datetimeoffset is dropped" + (
                f"; {warning}" if warning else ""
            )
        return MappedType("timestamp", warning=warning)
    return MappedType("blob sub_type text", warning=f"Type '{name}' mapped to blob text")


def _firebird_fraction_warning(name: str, precision: int | None) -> str | None:
    """Firebird time and timestamp values hold four fractional digits."""
    if precision is None or precision > 4:
        return f"{name} fractional seconds truncated to Firebird's 1/10000 s"
    return None


def _canonical_to_sqlserver(t: MappedType) -> MappedType:
    if t.type_name in SQLSERVER_TYPES:
        return t
    return MappedType("nvarchar", MAX, warning=f"Type '{t.type_name}' mapped to nvarchar(max)")


def _cap_precision(
    type_name: str, precision: int | None, cap: int, engine: str
) -> MappedType:
    if precision is not None and precision > cap:
        return MappedType(
            type_name,
            precision=cap,
            warning=(
                f"Fractional seconds precision {precision} truncated to "
                f"{cap} for {engine}"
            ),
        )
    return MappedType(type_name, precision=precision)


_TO_CANONICAL = {
    EngineName.SQLSERVER: _sqlserver_to_canonical,
    EngineName.POSTGRESQL: _postgresql_to_canonical,
    EngineName.MYSQL: _mysql_to_canonical,
    EngineName.FIREBIRD: _firebird_to_canonical,
}

_FROM_CANONICAL = {
    EngineName.SQLSERVER: _canonical_to_sqlserver,
    EngineName.POSTGRESQL: _canonical_to_postgresql,
    EngineName.MYSQL: _canonical_to_mysql,
    EngineName.FIREBIRD: _canonical_to_firebird,
}


def _base_name(type_name: str) -> str:
    """Lowercase type name with any ``(n)`` suffix removed."""
    return re.sub(r"\s*\(.*\)\s*", " ", type_name.strip().lower()).strip()


def to_canonical(
    engine: EngineName,
    type_name: str,
    max_length: int | None = None,
    precision: int | None = None,
    scale: int | None = None,
) -> MappedType:
    """Normalize an engine's native type to the canonical vocabulary."""
    return _TO_CANONICAL[EngineName(engine)](
        _base_name(type_name), max_length, precision, scale
    )


def map_type(
    source: EngineName,
    target: EngineName,
    type_name: str,
    max_length: int | None = None,
    precision: int | None = None,
    scale: int | None = None,
) -> MappedType:
    """Translate a source engine type into the target engine's equivalent.

    Args:
        source: Engine that reported the type.
        target: Engine the type will be created on.
        type_name: Native type name (``"character varying"``, ``"nvarchar"``).
        max_length: Character/byte length, ``-1`` for unbounded.
        precision: Numeric precision or fractional-seconds precision.
        scale: Numeric scale.

    Returns:
        ``MappedType`` for the target.  ``warning`` is set when the mapping
        is lossy or the source type was unknown.

    Example:
        >>> map_type(EngineName.SQLSERVER, EngineName.POSTGRESQL, "uniqueidentifier")
        MappedType(type_name='uuid', max_length=None, precision=None, scale=None, warning=None)
    """
    canonical = to_canonical(source, type_name, max_length, precision, scale)
    rendered = _FROM_CANONICAL[EngineName(target)](canonical)
    if canonical.warning and not rendered.warning:
        return rendered._replace(warning=canonical.warning)
    if canonical.warning and rendered.warning:
        return rendered._replace(warning=f"{canonical.warning}; {rendered.warning}")
    return rendered


# ============================================================================
# Column / table translation
# ============================================================================

_CURRENT_TIMESTAMP_DEFAULTS = frozenset({
    "getdate()", "sysdatetime()", "current_timestamp", "now()",
    "current_timestamp()", "localtimestamp", "getutcdate()", "sysutcdatetime()",
})
_LITERAL_DEFAULT = re.compile(r"^(null|-?\d+(\.\d+)?|'([^']|'')*')$", re.IGNORECASE)
_BOOLEAN_LITERALS = {"true": True, "false": False, "1": True, "0": False}


def translate_default(
    default_value: str | None, target_type: str | None = None
) -> tuple[str | None, str | None]:
    """Translate a raw default expression for another engine.

    Literals and current-timestamp functions survive; anything else is
    dropped with a warning.  Boolean literals (``true``, ``((1))``) are
    rendered for the target column: ``TRUE``/``FALSE`` on a ``boolean``
    column, ``1``/``0`` on anything else.

    Args:
        default_value: Default expression as the source catalog reports it.
        target_type: Mapped column type on the target engine.

    Returns:
        Tuple of (translated default, warning).
    """
    if default_value is None:
        return None, None
    value = default_value.strip()
    # SQL Server wraps defaults in parentheses: ((0)), ('abc')
    while value.startswith("(") and value.endswith(")"):
        value = value[1:-1].strip()
    # PostgreSQL casts: 'abc'::character varying
    value = re.sub(r"::[\w\s]+$", "", value)
    lowered = value.lower()
    if lowered in _CURRENT_TIMESTAMP_DEFAULTS:
        return "CURRENT_TIMESTAMP", None
    if lowered in _BOOLEAN_LITERALS:
        truth = _BOOLEAN_LITERALS[lowered]
        if target_type is not None and _base_name(target_type) == "boolean":
            return ("TRUE" if truth else "FALSE"), None
        if lowered in ("true", "false"):
            return ("1" if truth else "0"), None
    if _LITERAL_DEFAULT.match(value):
        return value, None
    return None, f"Default '{default_value}' dropped"


def map_column(
    source: EngineName, target: EngineName, column: ColumnDefinition
) -> tuple[ColumnDefinition, list[str]]:
    """Map one column's type and default to the target engine."""
    mapped = map_type(
        source, target, column.data_type, column.max_length, column.precision, column.scale
    )
    warnings: list[str] = []
    if mapped.warning:
        warnings.append(f"{column.name}: {mapped.warning}")
    default = column.default_value
    if column.is_identity:
        default = None
    elif default is not None:
        default, warning = translate_default(default, mapped.type_name)
        if warning:
            warnings.append(f"{column.name}: {warning}")
    new_column = column.model_copy(
        update={
            "data_type": mapped.type_name,
            "max_length": mapped.max_length,
            "precision": mapped.precision,
            "scale": mapped.scale,
            "default_value": default,
        }
    )
    return new_column, warnings


def map_schema_name(
    source: EngineName, target: EngineName, schema_name: str | None
) -> str | None:
    """Translate a schema name; the source default schema becomes the target default."""
    target_default = DEFAULT_SCHEMAS[EngineName(target)] or None
    if EngineName(target) in (EngineName.MYSQL, EngineName.FIREBIRD):
        return None
    if not schema_name or schema_name.lower() == DEFAULT_SCHEMAS[EngineName(source)].lower():
        return target_default
    return schema_name


def map_table(
    source: EngineName, target: EngineName, table: TableSchema
) -> tuple[TableSchema, list[str]]:
    """Translate a table's columns, defaults and schema for the target engine.

    Same-engine calls return the table unchanged.  CHECK constraints hold
    dialect-specific expressions and are dropped when crossing engines.

    Returns:
        Tuple of (new TableSchema, list of warnings).
    """
    source, target = EngineName(source), EngineName(target)
    if source == target:
        return table, []

    warnings: list[str] = []
    columns: list[ColumnDefinition] = []
    for column in table.columns:
        new_column, column_warnings = map_column(source, target, column)
        columns.append(new_column)
        warnings.extend(f"{table.full_name}.{w}" for w in column_warnings)

    constraints = []
    for constraint in table.constraints:
        if constraint.type == ConstraintType.CHECK:
            warnings.append(
                f"{table.full_name}: CHECK constraint {constraint.name} dropped"
            )
            continue
        constraints.append(constraint)

    foreign_keys = [
        fk.model_copy(
            update={
                "referenced_schema": map_schema_name(source, target, fk.referenced_schema)
            }
        )
        for fk in table.foreign_keys
    ]

    properties = dict(table.additional_properties)
    properties.setdefault("OriginalSchema", table.schema_name or "")

    mapped = table.model_copy(
        update={
            "schema_name": map_schema_name(source, target, table.schema_name),
            "columns": columns,
            "constraints": constraints,
            "foreign_keys": foreign_keys,
            "additional_properties": properties,
        }
    )
    return mapped, warnings


# ============================================================================
# Value coercion
# ============================================================================


def coerce_value(value: RowValue, type_name: str) -> RowValue:
    """Coerce a row value to suit the target column type.

    Only representation changes are made (bool <-> int, UUID <-> str);
    values are never validated.
    """
    if value is None:
        return None
    name = _base_name(type_name)
    if isinstance(value, bool):
        if name in _INTEGER_TYPES:
            return int(value)
        return value
    if isinstance(value, int) and name in _BOOLEAN_TYPES and value in (0, 1):
        return bool(value)
    if isinstance(value, UUID) and name in _CHAR_TYPES:
        return str(value)
    if isinstance(value, str) and name in ("uuid", "uniqueidentifier"):
        try:
            return UUID(value)
        except ValueError:
            return value
    return value
