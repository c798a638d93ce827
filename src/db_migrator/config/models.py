"""Pydantic models for db.toml configuration."""

from pydantic import BaseModel, Field

from db_migrator.constants import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_COMMAND_TIMEOUT,
    MAX_BATCH_SIZE,
    MAX_COMMAND_TIMEOUT,
    MIN_BATCH_SIZE,
    MIN_COMMAND_TIMEOUT,
)


# ============================================================================
# Configuration Models
# ============================================================================


class DatabaseProfile(BaseModel):
    """Database connection profile from db.toml."""

    url: str
    provider: str  # registry name or alias
    description: str = ""
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution


class MigrationSettings(BaseModel):
    """The ``[settings]`` table of db.toml."""

    timeout_seconds: int = Field(
        default=DEFAULT_COMMAND_TIMEOUT, ge=MIN_COMMAND_TIMEOUT, le=MAX_COMMAND_TIMEOUT
    )
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=MIN_BATCH_SIZE, le=MAX_BATCH_SIZE)
    verbose_logging: bool = False
    auto_confirm_overwrites: bool = False
    skip_overwrite_checks: bool = False
    log_file: str | None = None


class DatabaseConfig(BaseModel):
    """Complete database configuration from db.toml."""

    profiles: dict[str, DatabaseProfile] = Field(default_factory=dict)
    settings: MigrationSettings = Field(default_factory=MigrationSettings)
