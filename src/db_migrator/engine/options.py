"""Export and import option models.

Field ranges are enforced by pydantic; ``check()`` adds the cross-field
rules and turns every problem into a ``ConfigurationError`` so callers see
one error type for bad options.

Usage:
    from db_migrator.engine.options import ExportOptions

    options = ExportOptions(
        output_directory="exports/erp",
        tables=["dbo.Customers", "dbo.Orders"],
        table_criteria={"dbo.Orders": "OrderDate >= '2024-01-01'"},
        batch_size=50_000,
    )
    options.check()
"""

from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, field_validator

from db_migrator.constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_COMMAND_TIMEOUT,
    MAX_BATCH_SIZE,
    MAX_COMMAND_TIMEOUT,
    MIN_BATCH_SIZE,
    MIN_COMMAND_TIMEOUT,
)
from db_migrator.exceptions import ConfigurationError
from db_migrator.providers.identifiers import parse_table_filter


def _require_directory(value: object) -> object:
    if value is None or not str(value).strip():
        raise ValueError("directory is required")
    return value


def _normalize_tables(value: list[str] | str | None) -> list[str] | None:
    if value is None:
        return None
    if isinstance(value, str):
        value = value.split(",")
    names = [v.strip() for v in value if v and v.strip()]
    return names or None


class ExportOptions(BaseModel):
    """Options for ``DatabaseExporter.export``."""

    output_directory: Path
    tables: list[str] | None = None                   # None = all non-system tables
    table_criteria: dict[str, str] = Field(default_factory=dict)  # table -> WHERE predicate
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=MIN_BATCH_SIZE, le=MAX_BATCH_SIZE)
    schema_only: bool = False
    command_timeout: int = Field(
        default=DEFAULT_COMMAND_TIMEOUT, ge=MIN_COMMAND_TIMEOUT, le=MAX_COMMAND_TIMEOUT
    )
    continue_on_error: bool = True                    # False = fail fast
    retry_on_timeout: bool = True

    @field_validator("output_directory", mode="before")
    @classmethod
    def _output_required(cls, v: object) -> object:
        return _require_directory(v)

    @field_validator("tables", mode="before")
    @classmethod
    def _split_tables(cls, v: list[str] | str | None) -> list[str] | None:
        return _normalize_tables(v)

    def check(self) -> None:
        """Validate table names and criteria keys.

        Raises:
            ConfigurationError: On an invalid identifier or a criteria key
                that names a table outside ``tables``.
        """
        parse_table_filter(self.tables)
        parse_table_filter(list(self.table_criteria))
        if self.tables:
            wanted = {t.lower() for t in self.tables}
            bare = {t.split(".")[-1].lower() for t in self.tables}
            for key in self.table_criteria:
                lowered = key.lower()
                if lowered not in wanted and lowered not in bare:
                    raise ConfigurationError(
                        f"Criteria given for '{key}', which is not in the table list",
                        config_key="table_criteria",
                    )
        for key, predicate in self.table_criteria.items():
            if not predicate.strip():
                raise ConfigurationError(
                    f"Empty criteria for '{key}'", config_key="table_criteria"
                )


class ImportOptions(BaseModel):
    """Options for ``DatabaseImporter.import_``."""

    input_directory: Path
    tables: list[str] | None = None                   # None = every table in the manifest
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=MIN_BATCH_SIZE, le=MAX_BATCH_SIZE)
    create_schema: bool = True                        # False = NoCreateSchema
    create_indexes: bool = True
    create_foreign_keys: bool = True                  # False = NoCreateForeignKeys
    schema_only: bool = False
    continue_on_error: bool = False
    use_dependency_order: bool = True
    command_timeout: int = Field(
        default=DEFAULT_COMMAND_TIMEOUT, ge=MIN_COMMAND_TIMEOUT, le=MAX_COMMAND_TIMEOUT
    )

    @field_validator("input_directory", mode="before")
    @classmethod
    def _input_required(cls, v: object) -> object:
        return _require_directory(v)

    @field_validator("tables", mode="before")
    @classmethod
    def _split_tables(cls, v: list[str] | str | None) -> list[str] | None:
        return _normalize_tables(v)

    def check(self) -> None:
        parse_table_filter(self.tables)


def build_options(model: type[BaseModel], **values: object) -> BaseModel:
    """Construct an options model, converting validation failures.

    Raises:
        ConfigurationError: With the first offending field as ``config_key``.
    """
    try:
        options = model(**values)
    except ValidationError as e:
        first = e.errors()[0]
        key = ".".join(str(p) for p in first.get("loc", ())) or None
        raise ConfigurationError(f"Invalid option {key}: {first['msg']}", config_key=key) from e
    check = getattr(options, "check", None)
    if check is not None:
        check()
    return options
