"""TOML configuration loader for connection profiles and backup settings."""

import tomllib
from pathlib import Path

from store_backup.config.models import BackupConfig, BackupSettings, DatabaseProfile


def load_config(config_path: Path | None = None) -> BackupConfig:
    """Load configuration from a TOML file.

    Args:
        config_path: Path to backup.toml (default: ``backup.toml`` in the
            current working directory).

    Returns:
        BackupConfig with all profiles and backup settings.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        pydantic.ValidationError: If a profile or setting is invalid.
    """
    if config_path is None:
        config_path = Path.cwd() / "backup.toml"

    if not config_path.exists():
        raise FileNotFoundError(
            f"Backup config not found: {config_path}\n"
            f"Create backup.toml with at least one [profiles.<name>] section."
        )

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    profiles = {}
    for name, profile_data in data.get("profiles", {}).items():
        profiles[name] = DatabaseProfile(**profile_data)

    return BackupConfig(
        profiles=profiles,
        backup=BackupSettings(**data.get("backup", {})),
    )
