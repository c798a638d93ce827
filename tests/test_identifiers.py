"""Tests for identifier validation, table filters and dialect quoting."""

import pytest

from db_migrator.exceptions import ConfigurationError, InvalidIdentifierError
from db_migrator.providers.identifiers import (
    parse_table_filter,
    qualified_name,
    quote_backtick,
    quote_brackets,
    quote_double,
    split_table_name,
    sql_string,
    validate_identifier,
)


class TestValidateIdentifier:
    """Allow-list validation of user-supplied table names."""

    @pytest.mark.parametrize("name", ["Orders", "dbo.Orders", "order_lines_2024", "A.B"])
    def test_accepts_valid_names(self, name):
        """Letters, digits, underscore and one dot pass unchanged."""
        assert validate_identifier(name) == name

    def test_strips_whitespace(self):
        assert validate_identifier("  dbo.Orders ") == "dbo.Orders"

    @pytest.mark.parametrize(
        "name",
        [
            "Orders; DROP TABLE x",
            "a.b.c",
            "dbo.",
            ".Orders",
            "Order-Lines",
            "Orders'",
            "[dbo].[Orders]",
            "Orders--",
        ],
    )
    def test_rejects_invalid_names(self, name):
        with pytest.raises(InvalidIdentifierError):
            validate_identifier(name)

    def test_rejects_empty_name(self):
        with pytest.raises(InvalidIdentifierError, match="empty"):
            validate_identifier("   ")

    def test_is_a_configuration_error(self):
        """Callers catching ConfigurationError also see identifier failures."""
        with pytest.raises(ConfigurationError):
            validate_identifier("x y")


class TestSplitTableName:
    def test_schema_and_table(self):
        assert split_table_name("sales.orders") == ("sales", "orders")

    def test_table_only(self):
        assert split_table_name("orders") == (None, "orders")


class TestParseTableFilter:
    """Table filters from options and the CLI."""

    def test_none_is_empty(self):
        assert parse_table_filter(None) == []

    def test_comma_string(self):
        assert parse_table_filter("dbo.Customers, Orders") == [
            ("dbo", "Customers"),
            (None, "Orders"),
        ]

    def test_duplicates_removed_order_kept(self):
        result = parse_table_filter(["b", "a", "b", " ", "a"])
        assert result == [(None, "b"), (None, "a")]

    def test_invalid_entry_raises(self):
        with pytest.raises(InvalidIdentifierError):
            parse_table_filter(["Orders", "Orders;--"])


class TestQuoting:
    """Dialect quote functions reject embedded quote characters."""

    def test_brackets(self):
        assert quote_brackets("Order Lines") == "[Order Lines]"

    def test_double(self):
        assert quote_double("orders") == '"orders"'

    def test_backtick(self):
        assert quote_backtick("orders") == "`orders`"

    @pytest.mark.parametrize("quote", [quote_brackets, quote_double, quote_backtick])
    @pytest.mark.parametrize("name", ['a"b', "a`b", "a]b", "a[b", "a'b", ""])
    def test_rejects_quote_characters(self, quote, name):
        with pytest.raises(InvalidIdentifierError):
            quote(name)

    def test_qualified_name_with_schema(self):
        assert qualified_name(quote_brackets, "Orders", "dbo") == "[dbo].[Orders]"

    def test_qualified_name_without_schema(self):
        assert qualified_name(quote_backtick, "orders") == "`orders`"

    def test_sql_string_doubles_quotes(self):
        assert sql_string("O'Brien") == "'O''Brien'"
