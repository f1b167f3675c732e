"""HTTP surface for export, validation and restore.

Usage:
    from store_backup.api import BearerTokenSessionProvider, create_app

    app = create_app(adapter, BearerTokenSessionProvider(token))
"""

from store_backup.api.app import create_app
from store_backup.api.auth import (
    AdminContext,
    BearerTokenSessionProvider,
    Session,
    SessionProvider,
)
from store_backup.api.services import BackupServices

__all__ = [
    "create_app",
    "BackupServices",
    "Session",
    "SessionProvider",
    "BearerTokenSessionProvider",
    "AdminContext",
]
