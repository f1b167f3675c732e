"""Row client protocol definition.

Defines the ``RowClient`` Protocol that all adapters must implement.
All methods are ``async def`` -- the library is async-first.

Unlike a typical ORM session, a ``RowClient`` never raises for database
errors.  Every call returns a ``QueryResult`` carrying either ``data`` or
an ``error`` message, and callers check the pair after each call.  The
backup engine relies on this to keep a many-table restore going when a
single table or row fails.

Usage:
    from store_backup.adapters.base import QueryResult, RowClient

    async def do_work(client: RowClient) -> None:
        result = await client.select("customers", offset=0, limit=1000)
        if result.error:
            ...
        await client.insert("customers", [{"id": "c1", "name": "Alice"}])
        await client.close()
"""

from typing import Any, Protocol

from pydantic import BaseModel


class QueryResult(BaseModel):
    """Outcome of a single row-client call.

    Attributes:
        data: Returned rows (empty for writes that return nothing).
        error: Error message when the call failed, ``None`` on success.
        count: Exact row count for ``count()`` calls.
    """

    data: list[dict[str, Any]] = []
    error: str | None = None
    count: int | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class RowClient(Protocol):
    """Row client interface that all adapters must implement.

    This Protocol ensures consistent behavior across database backends
    (hosted Supabase, direct PostgreSQL).  All methods are async.
    """

    async def select(
        self,
        table: str,
        columns: str = "*",
        filters: dict[str, Any] | None = None,
        offset: int | None = None,
        limit: int | None = None,
    ) -> QueryResult:
        """Select rows from table.

        Args:
            table: Table name.
            columns: Comma-separated column names, ``"*"`` for all.
            filters: Optional dict of field=value filters (AND).
            offset: Zero-based index of the first row to return.
            limit: Maximum number of rows to return.

        Returns:
            ``QueryResult`` with ``data`` set to the matching rows.

        Example:
            page = await client.select("products", offset=1000, limit=1000)
        """
        ...

    async def count(self, table: str) -> QueryResult:
        """Count all rows of a table.

        Returns:
            ``QueryResult`` with ``count`` set to the exact row count.
        """
        ...

    async def insert(
        self, table: str, rows: dict[str, Any] | list[dict[str, Any]]
    ) -> QueryResult:
        """Insert one row or a batch of rows in a single statement.

        A batch either succeeds as a whole or fails as a whole.

        Args:
            table: Table name.
            rows: A row dict or a list of row dicts.

        Example:
            result = await client.insert("brands", [{"id": "b1"}, {"id": "b2"}])
        """
        ...

    async def update(
        self, table: str, data: dict[str, Any], filters: dict[str, Any]
    ) -> QueryResult:
        """Update rows matching ``filters`` with ``data``.

        Example:
            await client.update("branches", {"manager_id": "u1"}, {"id": "br1"})
        """
        ...

    async def delete(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        exclude: dict[str, Any] | None = None,
        gte: dict[str, Any] | None = None,
        not_null: str | None = None,
    ) -> QueryResult:
        """Delete rows from table.

        All given conditions are combined with AND.  Hosted clients refuse
        an unfiltered delete, so wiping a table is expressed as a condition
        that every row satisfies (``gte`` on the key or ``not_null``).

        Args:
            table: Table name.
            filters: field=value equality conditions.
            exclude: field=value conditions that must NOT hold (``!=``).
            gte: field=value lower bounds (``>=``).
            not_null: Column that must not be NULL.

        Example:
            await client.delete("auth_users", exclude={"id": admin_id})
        """
        ...

    async def close(self) -> None:
        """Close the connection and clean up resources."""
        ...
