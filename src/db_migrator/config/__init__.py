"""Configuration management: profiles, settings, and TOML loading.

Usage:
    >>> from db_migrator.config import load_db_config, DatabaseProfile, DatabaseConfig
"""

from db_migrator.config.loader import load_db_config
from db_migrator.config.models import DatabaseConfig, DatabaseProfile, MigrationSettings

__all__ = ["load_db_config", "DatabaseConfig", "DatabaseProfile", "MigrationSettings"]
