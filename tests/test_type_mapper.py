"""Tests for cross-engine type mapping, table translation and value coercion."""

from itertools import permutations
from uuid import UUID

import pytest

from db_migrator.constants import EngineName
from db_migrator.schema.models import (
    ColumnDefinition,
    ConstraintDefinition,
    ConstraintType,
    ForeignKeyDefinition,
    TableSchema,
)
from db_migrator.schema.type_mapper import (
    coerce_value,
    map_column,
    map_schema_name,
    map_table,
    map_type,
    to_canonical,
    translate_default,
)

SQLSERVER = EngineName.SQLSERVER
POSTGRESQL = EngineName.POSTGRESQL
MYSQL = EngineName.MYSQL
FIREBIRD = EngineName.FIREBIRD


class TestMapType:
    """Type translation between engine pairs."""

    @pytest.mark.parametrize(
        "source, target, type_name, expected",
        [
            (POSTGRESQL, SQLSERVER, "boolean", "bit"),
            (SQLSERVER, POSTGRESQL, "bit", "boolean"),
            (SQLSERVER, POSTGRESQL, "uniqueidentifier", "uuid"),
            (SQLSERVER, MYSQL, "bit", "bool"),
            (SQLSERVER, FIREBIRD, "bit", "smallint"),
            (SQLSERVER, POSTGRESQL, "int", "integer"),
            (SQLSERVER, MYSQL, "ntext", "longtext"),
            (SQLSERVER, FIREBIRD, "image", "blob sub_type binary"),
            (MYSQL, SQLSERVER, "tinyint", "smallint"),
            (POSTGRESQL, MYSQL, "bytea", "longblob"),
            (FIREBIRD, POSTGRESQL, "blob sub_type text", "text"),
        ],
    )
    def test_simple_mappings(self, source, target, type_name, expected):
        mapped = map_type(source, target, type_name)
        assert mapped.type_name == expected
        assert mapped.warning is None

    @pytest.mark.parametrize("target", [MYSQL, FIREBIRD])
    def test_uniqueidentifier_to_char36(self, target):
        mapped = map_type(SQLSERVER, target, "uniqueidentifier")
        assert (mapped.type_name, mapped.max_length) == ("char", 36)

    def test_varchar_length_kept(self):
        mapped = map_type(SQLSERVER, POSTGRESQL, "nvarchar", max_length=100)
        assert (mapped.type_name, mapped.max_length) == ("varchar", 100)

    def test_varchar_max_becomes_text(self):
        assert map_type(SQLSERVER, POSTGRESQL, "nvarchar", max_length=-1).type_name == "text"

    def test_type_name_with_size_suffix(self):
        """Sizes in the type name itself are ignored in favor of the parameters."""
        mapped = map_type(POSTGRESQL, SQLSERVER, "character varying(50)", max_length=50)
        assert (mapped.type_name, mapped.max_length) == ("nvarchar", 50)

    def test_decimal_precision_kept(self):
        mapped = map_type(SQLSERVER, POSTGRESQL, "decimal", precision=18, scale=2)
        assert (mapped.type_name, mapped.precision, mapped.scale) == ("numeric", 18, 2)


class TestNarrowingWarnings:
    """Lossy mappings always carry a warning."""

    def test_datetime2_7_into_mysql(self):
        mapped = map_type(SQLSERVER, MYSQL, "datetime2", precision=7)
        assert mapped.type_name == "datetime"
        assert mapped.precision == 6
        assert "truncated" in mapped.warning

    def test_datetime2_6_into_mysql_is_exact(self):
        mapped = map_type(SQLSERVER, MYSQL, "datetime2", precision=6)
        assert mapped.precision == 6
        assert mapped.warning is None

    def test_decimal_over_65_into_mysql(self):
        mapped = map_type(POSTGRESQL, MYSQL, "numeric", precision=70, scale=4)
        assert mapped.precision == 65
        assert "65" in mapped.warning

    def test_decimal_over_18_into_firebird(self):
        mapped = map_type(SQLSERVER, FIREBIRD, "decimal", precision=38, scale=10)
        assert (mapped.precision, mapped.scale) == (18, 10)
        assert "Firebird" in mapped.warning

    def test_unconstrained_numeric_from_postgresql(self):
        mapped = map_type(POSTGRESQL, SQLSERVER, "numeric")
        assert (mapped.type_name, mapped.precision, mapped.scale) == ("decimal", 38, 10)
        assert mapped.warning

    def test_datetimeoffset_into_mysql_drops_offset(self):
        mapped = map_type(SQLSERVER, MYSQL, "datetimeoffset", precision=7)
        assert "offset" in mapped.warning
        assert "truncated" in mapped.warning

    def test_unknown_type_degrades_to_wide_string(self):
        mapped = map_type(POSTGRESQL, SQLSERVER, "geometry_custom")
        assert mapped.type_name == "nvarchar"
        assert mapped.max_length == -1
        assert mapped.warning

    @pytest.mark.parametrize("precision", [7, None])
    def test_time_into_firebird_truncated(self, precision):
        mapped = map_type(SQLSERVER, FIREBIRD, "time", precision=precision)
        assert mapped.type_name == "time"
        assert "1/10000" in mapped.warning

    def test_time_3_into_firebird_is_exact(self):
        assert map_type(MYSQL, FIREBIRD, "time", precision=3).warning is None


class TestToCanonical:
    def test_firebird_timestamp(self):
        canonical = to_canonical(FIREBIRD, "TIMESTAMP")
        assert (canonical.type_name, canonical.precision) == ("datetime2", 4)

    def test_firebird_time(self):
        canonical = to_canonical(FIREBIRD, "TIME")
        assert (canonical.type_name, canonical.precision) == ("time", 4)

    def test_sqlserver_rowversion(self):
        canonical = to_canonical(SQLSERVER, "rowversion")
        assert (canonical.type_name, canonical.max_length) == ("binary", 8)


class TestTranslateDefault:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("((0))", "0"),
            ("('abc')", "'abc'"),
            ("(getdate())", "CURRENT_TIMESTAMP"),
            ("now()", "CURRENT_TIMESTAMP"),
            ("'open'::character varying", "'open'"),
            ("true", "1"),
            ("NULL", "NULL"),
        ],
    )
    def test_portable_defaults(self, raw, expected):
        assert translate_default(raw) == (expected, None)

    def test_function_default_dropped_with_warning(self):
        value, warning = translate_default("(newid())")
        assert value is None
        assert "dropped" in warning

    def test_none(self):
        assert translate_default(None) == (None, None)

    @pytest.mark.parametrize(
        "raw, target_type, expected",
        [
            ("((0))", "boolean", "FALSE"),
            ("((1))", "boolean", "TRUE"),
            ("true", "BOOLEAN", "TRUE"),
            ("false", "bit", "0"),
            ("true", "bool", "1"),
            ("((1))", "smallint", "1"),
            ("((0))", "integer", "0"),
        ],
    )
    def test_boolean_literals_follow_target_type(self, raw, target_type, expected):
        assert translate_default(raw, target_type) == (expected, None)


class TestBooleanDefaults:
    """Boolean-like defaults are valid for the mapped column type."""

    @pytest.mark.parametrize(
        "source, target, data_type, default, expected_type, expected_default",
        [
            (SQLSERVER, POSTGRESQL, "bit", "((0))", "boolean", "FALSE"),
            (SQLSERVER, POSTGRESQL, "bit", "((1))", "boolean", "TRUE"),
            (SQLSERVER, MYSQL, "bit", "((1))", "bool", "1"),
            (SQLSERVER, FIREBIRD, "bit", "((0))", "smallint", "0"),
            (POSTGRESQL, SQLSERVER, "boolean", "false", "bit", "0"),
            (POSTGRESQL, MYSQL, "boolean", "true", "bool", "1"),
            (POSTGRESQL, FIREBIRD, "boolean", "true", "smallint", "1"),
            (MYSQL, POSTGRESQL, "bool", "1", "boolean", "TRUE"),
            (MYSQL, SQLSERVER, "bool", "0", "bit", "0"),
            (FIREBIRD, POSTGRESQL, "boolean", "FALSE", "boolean", "FALSE"),
            (SQLSERVER, POSTGRESQL, "int", "((0))", "integer", "0"),
        ],
    )
    def test_map_column(self, source, target, data_type, default, expected_type, expected_default):
        column = ColumnDefinition(
            name="active", data_type=data_type, is_nullable=False,
            default_value=default, ordinal_position=1,
        )
        mapped, warnings = map_column(source, target, column)
        assert (mapped.data_type, mapped.default_value) == (expected_type, expected_default)
        assert warnings == []


# ------------------------------------------------------------------
# Round trip: A -> B -> A is never narrower unless a warning says so
# ------------------------------------------------------------------

# (type_name, max_length, precision, scale) as each provider introspects them
VOCABULARY = {
    SQLSERVER: [
        ("bit", None, None, None),
        ("tinyint", None, None, None),
        ("smallint", None, None, None),
        ("int", None, None, None),
        ("bigint", None, None, None),
        ("decimal", None, 18, 4),
        ("money", None, None, None),
        ("float", None, None, None),
        ("real", None, None, None),
        ("date", None, None, None),
        ("time", None, 3, None),
        ("time", None, 7, None),
        ("datetime", None, None, None),
        ("datetime2", None, 3, None),
        ("datetime2", None, 7, None),
        ("datetimeoffset", None, 7, None),
        ("char", 10, None, None),
        ("nchar", 10, None, None),
        ("varchar", 200, None, None),
        ("nvarchar", 4000, None, None),
        ("nvarchar", -1, None, None),
        ("binary", 16, None, None),
        ("varbinary", -1, None, None),
        ("uniqueidentifier", None, None, None),
    ],
    POSTGRESQL: [
        ("boolean", None, None, None),
        ("smallint", None, None, None),
        ("integer", None, None, None),
        ("bigint", None, None, None),
        ("real", None, None, None),
        ("double precision", None, None, None),
        ("numeric", None, 12, 2),
        ("character varying", 100, None, None),
        ("character", 5, None, None),
        ("text", None, None, None),
        ("bytea", None, None, None),
        ("date", None, None, None),
        ("time without time zone", None, 6, None),
        ("timestamp without time zone", None, 6, None),
        ("timestamp with time zone", None, 6, None),
        ("uuid", None, None, None),
        ("jsonb", None, None, None),
    ],
    MYSQL: [
        ("bool", None, None, None),
        ("tinyint", None, None, None),
        ("smallint", None, None, None),
        ("mediumint", None, None, None),
        ("int", None, None, None),
        ("bigint", None, None, None),
        ("decimal", None, 10, 2),
        ("float", None, None, None),
        ("double", None, None, None),
        ("date", None, None, None),
        ("time", None, None, None),
        ("datetime", None, None, None),
        ("datetime", None, 6, None),
        ("timestamp", None, None, None),
        ("char", 10, None, None),
        ("varchar", 255, None, None),
        ("text", -1, None, None),
        ("longtext", -1, None, None),
        ("blob", -1, None, None),
        ("varbinary", 100, None, None),
        ("binary", 16, None, None),
        ("enum", 10, None, None),
        ("json", -1, None, None),
        ("year", None, None, None),
    ],
    FIREBIRD: [
        ("smallint", None, None, None),
        ("integer", None, None, None),
        ("bigint", None, None, None),
        ("float", None, None, None),
        ("double precision", None, None, None),
        ("boolean", None, None, None),
        ("date", None, None, None),
        ("time", None, None, None),
        ("timestamp", None, None, None),
        ("char", 10, None, None),
        ("varchar", 100, None, None),
        ("decimal", None, 9, 2),
        ("numeric", None, 18, 4),
        ("blob sub_type text", -1, None, None),
        ("blob sub_type binary", -1, None, None),
    ],
}

_INTEGER_RANK = {"bit": 0, "tinyint": 1, "smallint": 2, "int": 3, "bigint": 4}

ROUND_TRIPS = [
    pytest.param(source, target, spec, id=f"{source.value}-{target.value}-{spec[0]}-{spec[1] or spec[2]}")
    for source, target in permutations(VOCABULARY, 2)
    for spec in VOCABULARY[source]
]


class TestRoundTrip:
    @pytest.mark.parametrize("source, target, spec", ROUND_TRIPS)
    def test_not_narrower_unless_warned(self, source, target, spec):
        type_name, max_length, precision, scale = spec
        there = map_type(source, target, type_name, max_length, precision, scale)
        back = map_type(target, source, there.type_name, there.max_length, there.precision, there.scale)
        if there.warning or back.warning:
            return

        before = to_canonical(source, type_name, max_length, precision, scale)
        after = to_canonical(source, back.type_name, back.max_length, back.precision, back.scale)

        if before.max_length is not None:
            assert after.max_length is not None
            assert after.max_length == -1 or (
                before.max_length != -1 and after.max_length >= before.max_length
            )
        if before.precision is not None:
            assert after.precision is not None and after.precision >= before.precision
        if before.scale is not None:
            assert after.scale is not None and after.scale >= before.scale
        if before.type_name in _INTEGER_RANK:
            assert _INTEGER_RANK[after.type_name] >= _INTEGER_RANK[before.type_name]


class TestMapSchemaName:
    def test_default_schema_follows_target(self):
        assert map_schema_name(SQLSERVER, POSTGRESQL, "dbo") == "public"
        assert map_schema_name(POSTGRESQL, SQLSERVER, "public") == "dbo"

    def test_custom_schema_kept(self):
        assert map_schema_name(SQLSERVER, POSTGRESQL, "sales") == "sales"

    @pytest.mark.parametrize("target", [MYSQL, FIREBIRD])
    def test_schemaless_targets(self, target):
        assert map_schema_name(SQLSERVER, target, "sales") is None


def _sample_table() -> TableSchema:
    return TableSchema(
        name="Orders",
        schema="dbo",
        columns=[
            ColumnDefinition(
                name="Id", data_type="int", is_primary_key=True, is_identity=True,
                is_nullable=False, default_value="((1))", ordinal_position=1,
            ),
            ColumnDefinition(
                name="Created", data_type="datetime2", precision=7,
                default_value="(sysdatetime())", ordinal_position=2,
            ),
            ColumnDefinition(name="Flag", data_type="bit", ordinal_position=3),
        ],
        constraints=[
            ConstraintDefinition(name="PK_Orders", type=ConstraintType.PRIMARY_KEY, columns=["Id"]),
            ConstraintDefinition(name="CK_Flag", type=ConstraintType.CHECK, definition="([Flag]=(1))"),
        ],
        foreign_keys=[
            ForeignKeyDefinition(
                name="FK_Orders_Customers",
                columns=["Id"],
                referenced_table="Customers",
                referenced_schema="dbo",
                referenced_columns=["Id"],
            )
        ],
    )


class TestMapTable:
    """Whole-table translation."""

    def test_same_engine_is_unchanged(self):
        table = _sample_table()
        mapped, warnings = map_table(SQLSERVER, SQLSERVER, table)
        assert mapped is table
        assert warnings == []

    def test_into_mysql(self):
        mapped, warnings = map_table(SQLSERVER, MYSQL, _sample_table())
        assert mapped.schema_name is None
        assert mapped.additional_properties["OriginalSchema"] == "dbo"
        created = mapped.column("Created")
        assert (created.data_type, created.precision) == ("datetime", 6)
        assert created.default_value == "CURRENT_TIMESTAMP"
        assert mapped.column("Flag").data_type == "bool"
        assert mapped.column("Id").default_value is None
        assert mapped.foreign_keys[0].referenced_schema is None
        assert any("Created" in w and "truncated" in w for w in warnings)

    def test_check_constraints_dropped(self):
        mapped, warnings = map_table(SQLSERVER, POSTGRESQL, _sample_table())
        assert [c.name for c in mapped.constraints] == ["PK_Orders"]
        assert any("CK_Flag" in w for w in warnings)

    def test_source_table_untouched(self):
        table = _sample_table()
        map_table(SQLSERVER, POSTGRESQL, table)
        assert table.column("Flag").data_type == "bit"
        assert table.schema_name == "dbo"


class TestCoerceValue:
    def test_bool_to_int_for_integer_column(self):
        assert coerce_value(True, "smallint") == 1
        assert type(coerce_value(True, "smallint")) is int

    def test_bool_kept_for_boolean_column(self):
        assert coerce_value(False, "boolean") is False

    def test_int_to_bool_for_boolean_column(self):
        assert coerce_value(1, "boolean") is True
        assert coerce_value(0, "bit") is False

    def test_other_ints_untouched_for_boolean_column(self):
        assert coerce_value(5, "bool") == 5

    def test_uuid_to_string_for_char_column(self):
        value = UUID("12345678-1234-5678-1234-567812345678")
        assert coerce_value(value, "char(36)") == str(value)

    def test_string_to_uuid(self):
        value = "12345678-1234-5678-1234-567812345678"
        assert coerce_value(value, "uuid") == UUID(value)

    def test_invalid_uuid_string_left_alone(self):
        assert coerce_value("not-a-uuid", "uniqueidentifier") == "not-a-uuid"

    def test_none(self):
        assert coerce_value(None, "int") is None
