"""Snapshot export, validation and restore.

Usage:
    from store_backup.backup import DEFAULT_REGISTRY, ProgressTracker
    from store_backup.backup import export_snapshot, validate_snapshot, import_snapshot
    from store_backup.backup import init_import, import_table, finalize_import
"""

from store_backup.backup.checksum import compute_checksum
from store_backup.backup.errors import (
    AuthorizationError,
    BackupError,
    ImportJobNotFoundError,
    OperationInProgressError,
    SnapshotValidationError,
)
from store_backup.backup.exporter import export_snapshot, write_snapshot
from store_backup.backup.finalizer import replay_circular_fks, verify_row_counts
from store_backup.backup.importer import ProtectionMode, import_snapshot
from store_backup.backup.incremental import (
    ImportJobStore,
    finalize_import,
    import_table,
    init_import,
)
from store_backup.backup.models import (
    CircularFK,
    ImportOutcome,
    ProgressState,
    Snapshot,
    TableRegistry,
    ValidationResult,
)
from store_backup.backup.progress import ProgressTracker
from store_backup.backup.registry import DEFAULT_REGISTRY
from store_backup.backup.sanitizer import sanitize_circular_fks
from store_backup.backup.validator import validate_snapshot, validate_snapshot_file

__all__ = [
    "DEFAULT_REGISTRY",
    "TableRegistry",
    "CircularFK",
    "Snapshot",
    "ProgressState",
    "ProgressTracker",
    "ImportOutcome",
    "ValidationResult",
    "compute_checksum",
    "export_snapshot",
    "write_snapshot",
    "sanitize_circular_fks",
    "import_snapshot",
    "ProtectionMode",
    "init_import",
    "import_table",
    "finalize_import",
    "ImportJobStore",
    "replay_circular_fks",
    "verify_row_counts",
    "validate_snapshot",
    "validate_snapshot_file",
    "BackupError",
    "SnapshotValidationError",
    "OperationInProgressError",
    "ImportJobNotFoundError",
    "AuthorizationError",
]
