"""Async Supabase row client.

Provides ``AsyncSupabaseAdapter``, an async implementation of the
``RowClient`` protocol using the supabase-py async client.

The client is initialized lazily on first use with an ``asyncio.Lock``
to ensure thread-safe initialization.  PostgREST errors are returned as
``QueryResult.error`` instead of being raised.

Usage:
    from store_backup.adapters.supabase import AsyncSupabaseAdapter

    adapter = AsyncSupabaseAdapter(
        url="https://xyzproject.supabase.co",
        key="eyJ...",
        schema="elfaroukgroup",
    )

    result = await adapter.select("customers", offset=0, limit=1000)
    await adapter.close()
"""

import asyncio
import logging
from typing import Any

import httpx
from postgrest import APIError
from postgrest.types import CountMethod
from supabase import AsyncClient, acreate_client
from supabase.lib.client_options import AsyncClientOptions

from store_backup.adapters.base import QueryResult

logger = logging.getLogger(__name__)


def _error_message(exc: Exception) -> str:
    if isinstance(exc, APIError):
        return exc.message or str(exc)
    return str(exc) or exc.__class__.__name__


class AsyncSupabaseAdapter:
    """Async Supabase implementation of the ``RowClient`` protocol.

    Wraps the Supabase Python async client.  The client is initialized
    lazily on first call using ``acreate_client`` protected by an
    ``asyncio.Lock``.  Sessions are never persisted or refreshed: the
    adapter is meant to run with a service-role key.

    Args:
        url: Supabase project URL.
        key: Supabase API key (service role key for backup/restore).
        schema: Postgres schema exposed through PostgREST.

    Example:
        adapter = AsyncSupabaseAdapter(
            url="https://xyzproject.supabase.co",
            key="eyJhbGciOiJIUzI1NiIs...",
        )
        result = await adapter.count("products")
        await adapter.close()
    """

    def __init__(self, url: str, key: str, schema: str = "public") -> None:
        self._url: str = url
        self._key: str = key
        self._schema: str = schema
        self._client: AsyncClient | None = None
        self._lock: asyncio.Lock = asyncio.Lock()

    async def _get_client(self) -> AsyncClient:
        """Get or create the async Supabase client.

        Uses an ``asyncio.Lock`` to ensure the client is created exactly
        once, even under concurrent access.
        """
        if self._client is None:
            async with self._lock:
                # Double-check after acquiring lock
                if self._client is None:
                    options = AsyncClientOptions(
                        schema=self._schema,
                        persist_session=False,
                        auto_refresh_token=False,
                    )
                    self._client = await acreate_client(
                        self._url, self._key, options=options
                    )
        return self._client

    # ------------------------------------------------------------------
    # Row client methods
    # ------------------------------------------------------------------

    async def select(
        self,
        table: str,
        columns: str = "*",
        filters: dict[str, Any] | None = None,
        offset: int | None = None,
        limit: int | None = None,
    ) -> QueryResult:
        """Select rows using the PostgREST query builder."""
        try:
            client = await self._get_client()
            query = client.table(table).select(columns)

            if filters:
                for key, value in filters.items():
                    query = query.eq(key, value)

            if limit is not None:
                start = offset or 0
                query = query.range(start, start + limit - 1)

            result = await query.execute()
            return QueryResult(data=result.data or [])
        except (APIError, httpx.HTTPError) as e:
            return QueryResult(error=_error_message(e))

    async def count(self, table: str) -> QueryResult:
        """Exact row count via a HEAD request."""
        try:
            client = await self._get_client()
            result = await (
                client.table(table)
                .select("*", count=CountMethod.exact, head=True)
                .execute()
            )
            return QueryResult(count=result.count or 0)
        except (APIError, httpx.HTTPError) as e:
            return QueryResult(error=_error_message(e))

    async def insert(
        self, table: str, rows: dict[str, Any] | list[dict[str, Any]]
    ) -> QueryResult:
        """Insert one row or a batch in a single request."""
        try:
            client = await self._get_client()
            result = await client.table(table).insert(rows).execute()
            return QueryResult(data=result.data or [])
        except (APIError, httpx.HTTPError) as e:
            return QueryResult(error=_error_message(e))

    async def update(
        self, table: str, data: dict[str, Any], filters: dict[str, Any]
    ) -> QueryResult:
        """Update rows matching all filters."""
        try:
            client = await self._get_client()
            query = client.table(table).update(data)

            for key, value in filters.items():
                query = query.eq(key, value)

            result = await query.execute()
            return QueryResult(data=result.data or [])
        except (APIError, httpx.HTTPError) as e:
            return QueryResult(error=_error_message(e))

    async def delete(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        exclude: dict[str, Any] | None = None,
        gte: dict[str, Any] | None = None,
        not_null: str | None = None,
    ) -> QueryResult:
        """Delete rows matching every given condition."""
        try:
            client = await self._get_client()
            query = client.table(table).delete()

            for key, value in (filters or {}).items():
                query = query.eq(key, value)
            for key, value in (exclude or {}).items():
                query = query.neq(key, value)
            for key, value in (gte or {}).items():
                query = query.gte(key, value)
            if not_null:
                query = query.not_.is_(not_null, "null")

            await query.execute()
            return QueryResult()
        except (APIError, httpx.HTTPError) as e:
            return QueryResult(error=_error_message(e))

    async def close(self) -> None:
        """Close the Supabase async client.

        If the client was never initialized (no calls were made),
        this is a no-op.
        """
        if self._client is not None:
            await self._client.postgrest.aclose()
            self._client = None
