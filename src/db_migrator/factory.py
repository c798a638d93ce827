"""Provider factory: db.toml profile -> connected-ready provider.

The registry is passed in rather than looked up globally, so callers (and
tests) decide which engines exist.

Usage:
    from db_migrator.config import load_db_config
    from db_migrator.factory import create_provider
    from db_migrator.providers.registry import build_default_registry

    config = load_db_config("db.toml")
    provider = create_provider("legacy", config, build_default_registry())
    await provider.connect()
"""

import logging
from urllib.parse import quote

from db_migrator.config.models import DatabaseConfig, DatabaseProfile
from db_migrator.exceptions import ProfileNotFoundError
from db_migrator.logging import get_logger
from db_migrator.providers.base import DatabaseProvider
from db_migrator.providers.engine import PASSWORD_PLACEHOLDER
from db_migrator.providers.registry import ProviderRegistry

logger = get_logger(__name__)


# ============================================================================
# Profile Resolution
# ============================================================================


def get_profile(config: DatabaseConfig, profile_name: str) -> DatabaseProfile:
    """Look up a profile by name.

    Raises:
        ProfileNotFoundError: If the profile is not in the config.
    """
    profile = config.profiles.get(profile_name)
    if profile is None:
        raise ProfileNotFoundError(profile_name, sorted(config.profiles))
    return profile


def resolve_url(profile: DatabaseProfile) -> str:
    """Resolve profile URL with password substitution.

    The password is URL-quoted.  A placeholder left in the URL (no
    ``db_password`` set) is rejected later by the provider.

    Args:
        profile: Database profile from config

    Returns:
        Connection URL with password substituted
    """
    url = profile.url
    if profile.db_password and PASSWORD_PLACEHOLDER in url:
        url = url.replace(PASSWORD_PLACEHOLDER, quote(profile.db_password, safe=""))
    return url


# ============================================================================
# Provider Creation
# ============================================================================


def create_provider(
    profile_name: str,
    config: DatabaseConfig,
    registry: ProviderRegistry,
    command_timeout: float | None = None,
    log: logging.Logger | None = None,
) -> DatabaseProvider:
    """Build the provider for a profile (not connected).

    Args:
        profile_name: Key under ``[profiles]`` in db.toml.
        config: Loaded configuration.
        registry: Registry resolving the profile's ``provider`` name.
        command_timeout: Per-command timeout; defaults to
            ``config.settings.timeout_seconds``.
        log: Logger handed to the provider.

    Raises:
        ProfileNotFoundError: Unknown profile.
        ProviderNotFoundError: Unknown provider name in the profile.
        ConfigurationError: Malformed URL or missing credentials.
    """
    profile = get_profile(config, profile_name)
    timeout = command_timeout if command_timeout is not None else config.settings.timeout_seconds
    provider = registry.create(
        profile.provider, resolve_url(profile), command_timeout=timeout, log=log
    )
    logger.debug(
        "Created %s provider for profile %s", registry.resolve(profile.provider), profile_name
    )
    return provider
