"""Row client factory.

Resolves the active connection profile and builds the matching adapter.

Profile resolution order:
1. ``<PREFIX>DB_PROFILE`` environment variable
2. ``.db-profile`` lock file in the current working directory
3. ``ProfileNotFoundError``
"""

import logging
import os
from pathlib import Path
from urllib.parse import quote

from store_backup.adapters.base import RowClient
from store_backup.adapters.postgres import AsyncPostgresAdapter
from store_backup.adapters.supabase import AsyncSupabaseAdapter
from store_backup.config.loader import load_config
from store_backup.config.models import DatabaseProfile

logger = logging.getLogger(__name__)

# Profile lock file path
_PROFILE_LOCK_FILE = Path.cwd() / ".db-profile"


class ProfileNotFoundError(Exception):
    """Raised when no database profile is configured."""

    pass


# ============================================================================
# Profile Lock File Operations
# ============================================================================


def read_profile_lock() -> str | None:
    """Read profile name from lock file.

    Returns:
        Profile name if lock file exists, None otherwise
    """
    if _PROFILE_LOCK_FILE.exists():
        return _PROFILE_LOCK_FILE.read_text().strip() or None
    return None


def write_profile_lock(profile_name: str) -> None:
    """Write profile name to lock file."""
    _PROFILE_LOCK_FILE.write_text(profile_name)


def get_active_profile_name(env_prefix: str = "") -> str:
    """Get active profile name from env var or lock file.

    Args:
        env_prefix: Prefix for the environment variable, e.g. ``"SHOP_"``
            reads ``SHOP_DB_PROFILE``.

    Raises:
        ProfileNotFoundError: If no profile is configured
    """
    env_profile = os.environ.get(f"{env_prefix}DB_PROFILE")
    if env_profile:
        return env_profile

    lock_profile = read_profile_lock()
    if lock_profile:
        return lock_profile

    raise ProfileNotFoundError(
        "No database profile configured.\n"
        f"Set {env_prefix}DB_PROFILE=<name> or run: store-backup --profile <name> ..."
    )


def get_active_profile(
    profile_name: str | None = None,
    env_prefix: str = "",
    config_path: Path | None = None,
) -> tuple[str, DatabaseProfile]:
    """Get profile name and configuration.

    Raises:
        ProfileNotFoundError: If no profile configured or the name is unknown
    """
    if profile_name is None:
        profile_name = get_active_profile_name(env_prefix=env_prefix)
    config = load_config(config_path)

    if profile_name not in config.profiles:
        available = ", ".join(config.profiles.keys()) or "(none)"
        raise ProfileNotFoundError(
            f"Profile '{profile_name}' not found in backup.toml.\n"
            f"Available profiles: {available}"
        )

    return profile_name, config.profiles[profile_name]


def resolve_url(profile: DatabaseProfile) -> str:
    """Resolve profile URL with password substitution.

    The password is URL-encoded before it replaces the
    ``[YOUR-PASSWORD]`` placeholder.
    """
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


def create_adapter(profile: DatabaseProfile) -> RowClient:
    """Build the adapter for a profile without touching the network."""
    if profile.provider == "supabase":
        if not profile.key:
            raise ValueError("Supabase profiles require a 'key'")
        return AsyncSupabaseAdapter(
            url=profile.url, key=profile.key, schema=profile.db_schema
        )
    return AsyncPostgresAdapter(resolve_url(profile))


async def get_adapter(
    profile_name: str | None = None,
    env_prefix: str = "",
    config_path: Path | None = None,
) -> RowClient:
    """Create a row client for the active (or named) profile.

    A new adapter is returned on every call; callers own it and must
    ``await adapter.close()`` when done.

    Example:
        >>> adapter = await get_adapter("prod")
        >>> result = await adapter.count("products")
    """
    name, profile = get_active_profile(
        profile_name, env_prefix=env_prefix, config_path=config_path
    )
    logger.debug("Creating %s adapter for profile %s", profile.provider, name)
    return create_adapter(profile)
