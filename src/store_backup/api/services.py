"""Process-wide objects shared by the backup endpoints."""

from dataclasses import dataclass, field

from fastapi import Request

from store_backup.adapters.base import RowClient
from store_backup.api.auth import SessionProvider
from store_backup.backup.incremental import ImportJobStore
from store_backup.backup.models import TableRegistry
from store_backup.backup.progress import ProgressTracker
from store_backup.backup.registry import DEFAULT_REGISTRY
from store_backup.config.models import BackupSettings


@dataclass
class BackupServices:
    adapter: RowClient
    session_provider: SessionProvider
    registry: TableRegistry = DEFAULT_REGISTRY
    settings: BackupSettings = field(default_factory=BackupSettings)
    progress: ProgressTracker = field(default_factory=ProgressTracker)
    jobs: ImportJobStore = field(default_factory=ImportJobStore)


def get_services(request: Request) -> BackupServices:
    return request.app.state.backup
