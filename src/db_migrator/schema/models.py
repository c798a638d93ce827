"""Pydantic models describing database schema objects.

These models are the common vocabulary between providers: each provider
introspects its own catalog into them, and each provider emits DDL from
them.  ``data_type`` holds the type name as reported by the engine that
produced the schema; SQL Server type names serve as the canonical
vocabulary when the type mapper translates between engines.

Usage:
    from db_migrator.schema.models import ColumnDefinition, TableSchema

    table = TableSchema(
        name="customers",
        schema="dbo",
        columns=[
            ColumnDefinition(name="id", data_type="int", is_primary_key=True,
                             is_nullable=False, ordinal_position=1),
        ],
    )
    table.full_name  # "dbo.customers"
"""

from datetime import date, datetime, time, timedelta
from decimal import Decimal
from enum import Enum
from typing import Union
from uuid import UUID

from pydantic import BaseModel, Field, ValidationInfo, field_validator

# A single row value.  The archive codec handles exactly these types.
RowValue = Union[
    None, bool, int, float, Decimal, str, datetime, date, time, timedelta, bytes, UUID
]

# One row, keyed by column name in ordinal order.
RowData = dict[str, RowValue]


# ============================================================================
# Enums
# ============================================================================


class ReferentialAction(str, Enum):
    """Foreign key ON UPDATE / ON DELETE rule."""

    NO_ACTION = "NO_ACTION"
    CASCADE = "CASCADE"
    SET_NULL = "SET_NULL"
    SET_DEFAULT = "SET_DEFAULT"

    @property
    def sql(self) -> str:
        """Rule as written in DDL (``SET NULL``, ``NO ACTION``, ...)."""
        return self.value.replace("_", " ")

    @classmethod
    def parse(cls, value: str | None) -> "ReferentialAction":
        """Normalize a catalog rule string; unknown rules become NO_ACTION.

        ``RESTRICT`` is treated as NO_ACTION.
        """
        if not value:
            return cls.NO_ACTION
        normalized = value.strip().upper().replace(" ", "_")
        try:
            return cls(normalized)
        except ValueError:
            return cls.NO_ACTION


class ConstraintType(str, Enum):
    """Table constraint kinds captured outside of FKs."""

    PRIMARY_KEY = "PRIMARY KEY"
    UNIQUE = "UNIQUE"
    CHECK = "CHECK"


# ============================================================================
# Schema objects
# ============================================================================


class ColumnDefinition(BaseModel):
    """A table column."""

    name: str
    data_type: str
    is_nullable: bool = True
    is_primary_key: bool = False
    is_identity: bool = False
    default_value: str | None = None  # raw dialect expression
    max_length: int | None = None  # -1 means unbounded (MAX)
    precision: int | None = None
    scale: int | None = None
    ordinal_position: int = 0


class IndexDefinition(BaseModel):
    """A secondary index.  Column order is the key order."""

    name: str
    columns: list[str] = Field(default_factory=list)
    is_unique: bool = False
    is_clustered: bool = False


class ForeignKeyDefinition(BaseModel):
    """A foreign key; ``columns`` and ``referenced_columns`` pair by position."""

    name: str
    columns: list[str] = Field(default_factory=list)
    referenced_table: str
    referenced_schema: str | None = None
    referenced_columns: list[str] = Field(default_factory=list)
    update_rule: ReferentialAction = ReferentialAction.NO_ACTION
    delete_rule: ReferentialAction = ReferentialAction.NO_ACTION

    @field_validator("referenced_columns")
    @classmethod
    def _same_length(cls, v: list[str], info: ValidationInfo) -> list[str]:
        columns = info.data.get("columns", [])
        if len(v) != len(columns):
            raise ValueError(
                f"Foreign key has {len(columns)} columns but "
                f"{len(v)} referenced columns"
            )
        return v

    @property
    def referenced_full_name(self) -> str:
        if self.referenced_schema:
            return f"{self.referenced_schema}.{self.referenced_table}"
        return self.referenced_table


class ConstraintDefinition(BaseModel):
    """PRIMARY KEY, UNIQUE or CHECK constraint."""

    name: str
    type: ConstraintType
    columns: list[str] = Field(default_factory=list)
    definition: str | None = None  # raw CHECK expression


class TableSchema(BaseModel):
    """A table with its columns, indexes, foreign keys and constraints.

    ``additional_properties`` carries engine-specific flags (``IsSystem``,
    ``OwnerName``, ``OriginalSchema``).  Unknown keys are preserved as-is.
    """

    name: str
    schema_name: str | None = Field(default=None, alias="schema")
    columns: list[ColumnDefinition] = Field(default_factory=list)
    indexes: list[IndexDefinition] = Field(default_factory=list)
    foreign_keys: list[ForeignKeyDefinition] = Field(default_factory=list)
    constraints: list[ConstraintDefinition] = Field(default_factory=list)
    additional_properties: dict[str, str] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}

    @field_validator("name")
    @classmethod
    def _name_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Table name must not be empty")
        return v

    @field_validator("columns")
    @classmethod
    def _unique_ordinals(cls, v: list[ColumnDefinition]) -> list[ColumnDefinition]:
        positions = [c.ordinal_position for c in v if c.ordinal_position]
        if len(positions) != len(set(positions)):
            raise ValueError("Column ordinal positions must be unique")
        return v

    @property
    def full_name(self) -> str:
        """``schema.name`` or just ``name`` when there is no schema."""
        if self.schema_name:
            return f"{self.schema_name}.{self.name}"
        return self.name

    @property
    def ordered_columns(self) -> list[ColumnDefinition]:
        return sorted(self.columns, key=lambda c: c.ordinal_position)

    @property
    def primary_key_columns(self) -> list[str]:
        return [c.name for c in self.ordered_columns if c.is_primary_key]

    @property
    def identity_columns(self) -> list[ColumnDefinition]:
        return [c for c in self.columns if c.is_identity]

    def column(self, name: str) -> ColumnDefinition | None:
        """Look up a column by name (case-insensitive)."""
        lowered = name.lower()
        for col in self.columns:
            if col.name.lower() == lowered:
                return col
        return None
