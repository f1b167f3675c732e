"""Configuration management: profiles, backup settings, and TOML loading.

Usage:
    >>> from store_backup.config import load_config, BackupSettings, DatabaseProfile
"""

from store_backup.config.loader import load_config
from store_backup.config.models import BackupConfig, BackupSettings, DatabaseProfile

__all__ = ["load_config", "BackupConfig", "BackupSettings", "DatabaseProfile"]
