"""store-backup: snapshot export, validation and restore for a multi-tenant store database.

Exports every table of a fixed, dependency-ordered registry into one JSON
snapshot with per-table checksums, and restores it destructively while
keeping the acting administrator's own account rows.

Usage:
    from store_backup import DEFAULT_REGISTRY, get_adapter
    from store_backup import export_snapshot, validate_snapshot, import_snapshot
    from store_backup import create_app
"""

__version__ = "0.1.0"

# Adapters
from store_backup.adapters.base import QueryResult, RowClient
from store_backup.adapters.postgres import AsyncPostgresAdapter
from store_backup.adapters.supabase import AsyncSupabaseAdapter

# Config
from store_backup.config.loader import load_config
from store_backup.config.models import BackupConfig, BackupSettings, DatabaseProfile

# Factory
from store_backup.factory import ProfileNotFoundError, get_adapter, resolve_url

# Backup engine
from store_backup.backup import (
    DEFAULT_REGISTRY,
    ProgressTracker,
    Snapshot,
    TableRegistry,
    export_snapshot,
    finalize_import,
    import_snapshot,
    import_table,
    init_import,
    validate_snapshot,
)

# HTTP surface
from store_backup.api import create_app

__all__ = [
    # Adapters
    "RowClient",
    "QueryResult",
    "AsyncPostgresAdapter",
    "AsyncSupabaseAdapter",
    # Config
    "load_config",
    "BackupConfig",
    "BackupSettings",
    "DatabaseProfile",
    # Factory
    "get_adapter",
    "ProfileNotFoundError",
    "resolve_url",
    # Backup engine
    "DEFAULT_REGISTRY",
    "TableRegistry",
    "Snapshot",
    "ProgressTracker",
    "export_snapshot",
    "validate_snapshot",
    "import_snapshot",
    "init_import",
    "import_table",
    "finalize_import",
    # HTTP
    "create_app",
]
