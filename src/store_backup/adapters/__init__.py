"""Row client adapters package.

Provides the ``RowClient`` Protocol, the ``QueryResult`` return type and
concrete async adapters for the hosted Supabase API and for direct
PostgreSQL connections.

Usage:
    from store_backup.adapters import RowClient, QueryResult
    from store_backup.adapters import AsyncSupabaseAdapter, AsyncPostgresAdapter
"""

from store_backup.adapters.base import QueryResult, RowClient
from store_backup.adapters.postgres import AsyncPostgresAdapter
from store_backup.adapters.supabase import AsyncSupabaseAdapter

__all__ = [
    "RowClient",
    "QueryResult",
    "AsyncPostgresAdapter",
    "AsyncSupabaseAdapter",
]
