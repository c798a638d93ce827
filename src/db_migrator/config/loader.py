"""Configuration loading from db.toml."""

import tomllib
from pathlib import Path

from pydantic import ValidationError

from db_migrator.config.models import DatabaseConfig, DatabaseProfile, MigrationSettings
from db_migrator.exceptions import ConfigurationError

DEFAULT_CONFIG_PATH = Path("db.toml")


def load_db_config(config_path: Path | str | None = None) -> DatabaseConfig:
    """Load database configuration from TOML file.

    Args:
        config_path: Path to db.toml (default: ./db.toml)

    Returns:
        DatabaseConfig with all profiles and settings

    Raises:
        FileNotFoundError: If config file doesn't exist
        ConfigurationError: If config format is invalid
    """
    config_path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH

    if not config_path.exists():
        raise FileNotFoundError(
            f"Database config not found: {config_path}\n"
            f"Create db.toml with a [profiles.<name>] table per database."
        )

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {config_path}: {e}") from e

    # Parse profiles
    profiles = {}
    for name, profile_data in data.get("profiles", {}).items():
        try:
            profiles[name] = DatabaseProfile(**profile_data)
        except (TypeError, ValidationError) as e:
            raise ConfigurationError(
                f"Invalid profile '{name}': {e}", config_key=f"profiles.{name}"
            ) from e

    # Parse migration settings
    try:
        settings = MigrationSettings(**data.get("settings", {}))
    except (TypeError, ValidationError) as e:
        raise ConfigurationError(f"Invalid [settings]: {e}", config_key="settings") from e

    return DatabaseConfig(profiles=profiles, settings=settings)
