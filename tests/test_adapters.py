"""Tests for the Supabase and PostgreSQL row clients with mocked backends."""

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import UUID

import httpx
import pytest
from postgrest import APIError
from sqlalchemy import Boolean, Column, Integer, MetaData, Numeric, Table, Text
from sqlalchemy.dialects.postgresql import ENUM, JSONB, TIMESTAMP, asyncpg
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.exc import IntegrityError, NoSuchTableError

from store_backup.adapters.postgres import AsyncPostgresAdapter, normalize_url
from store_backup.adapters.supabase import AsyncSupabaseAdapter


# ============================================================================
# Supabase
# ============================================================================


def _query_chain(data=None, count=None) -> MagicMock:
    """Build a PostgREST query builder mock whose filters chain on itself."""
    query = MagicMock()
    for method in ("select", "insert", "update", "delete", "eq", "neq", "gte", "range"):
        getattr(query, method).return_value = query
    query.not_.is_.return_value = query
    query.execute = AsyncMock(return_value=MagicMock(data=data, count=count))
    return query


@pytest.fixture
def supabase_adapter() -> AsyncSupabaseAdapter:
    adapter = AsyncSupabaseAdapter(url="https://xyz.supabase.co", key="k", schema="shop")
    adapter._client = MagicMock()
    return adapter


class TestSupabaseAdapter:
    async def test_paged_select(self, supabase_adapter) -> None:
        query = _query_chain(data=[{"id": "1"}])
        supabase_adapter._client.table.return_value = query

        result = await supabase_adapter.select("products", offset=1000, limit=1000)

        assert result.data == [{"id": "1"}]
        assert result.ok
        supabase_adapter._client.table.assert_called_with("products")
        query.range.assert_called_once_with(1000, 1999)

    async def test_select_without_limit_has_no_range(self, supabase_adapter) -> None:
        query = _query_chain(data=None)
        supabase_adapter._client.table.return_value = query

        result = await supabase_adapter.select("user_profiles", "is_admin", {"email": "a@b"})

        assert result.data == []
        query.range.assert_not_called()
        query.eq.assert_called_once_with("email", "a@b")

    async def test_count(self, supabase_adapter) -> None:
        query = _query_chain(count=42)
        supabase_adapter._client.table.return_value = query

        result = await supabase_adapter.count("sales")

        assert result.count == 42

    async def test_api_error_is_returned(self, supabase_adapter) -> None:
        query = _query_chain()
        query.execute.side_effect = APIError(
            {"message": "duplicate key value violates unique constraint", "code": "23505"}
        )
        supabase_adapter._client.table.return_value = query

        result = await supabase_adapter.insert("brands", [{"id": "b1"}])

        assert not result.ok
        assert "duplicate key" in result.error

    async def test_transport_error_is_returned(self, supabase_adapter) -> None:
        query = _query_chain()
        query.execute.side_effect = httpx.ConnectError("connection refused")
        supabase_adapter._client.table.return_value = query

        result = await supabase_adapter.count("sales")

        assert result.error == "connection refused"

    async def test_delete_conditions(self, supabase_adapter) -> None:
        query = _query_chain()
        supabase_adapter._client.table.return_value = query

        result = await supabase_adapter.delete(
            "auth_users", exclude={"id": "admin"}, gte={"id": "0"}, not_null="id"
        )

        assert result.ok
        query.neq.assert_called_once_with("id", "admin")
        query.gte.assert_called_once_with("id", "0")
        query.not_.is_.assert_called_once_with("id", "null")

    async def test_close_releases_client(self, supabase_adapter) -> None:
        client = supabase_adapter._client
        client.postgrest.aclose = AsyncMock()

        await supabase_adapter.close()

        client.postgrest.aclose.assert_awaited_once()
        assert supabase_adapter._client is None

    async def test_close_without_client_is_noop(self) -> None:
        adapter = AsyncSupabaseAdapter(url="https://xyz.supabase.co", key="k")
        await adapter.close()

    async def test_client_created_once(self) -> None:
        adapter = AsyncSupabaseAdapter(url="https://xyz.supabase.co", key="k", schema="shop")
        client = MagicMock()
        with patch(
            "store_backup.adapters.supabase.acreate_client", AsyncMock(return_value=client)
        ) as create:
            assert await adapter._get_client() is client
            assert await adapter._get_client() is client

        create.assert_awaited_once()
        assert create.call_args.kwargs["options"].schema == "shop"


# ============================================================================
# PostgreSQL
# ============================================================================


class TestNormalizeUrl:
    @pytest.mark.parametrize(
        "url",
        [
            "postgres://u:p@h:5432/db",
            "postgresql://u:p@h:5432/db",
            "postgresql+asyncpg://u:p@h:5432/db",
        ],
    )
    def test_asyncpg_scheme(self, url: str) -> None:
        assert normalize_url(url) == "postgresql+asyncpg://u:p@h:5432/db"


_METADATA = MetaData()
_TABLES = [
    Table(
        "products",
        _METADATA,
        Column("id", PG_UUID),
        Column("created_at", TIMESTAMP(timezone=True)),
        Column("price", Numeric),
    ),
    Table(
        "brands", _METADATA, Column("id", PG_UUID), Column("name", Text), Column("metadata", JSONB)
    ),
    Table(
        "user_profiles",
        _METADATA,
        Column("id", PG_UUID),
        Column("user_id", PG_UUID),
        Column("is_admin", Boolean),
    ),
    Table("branches", _METADATA, Column("id", PG_UUID), Column("manager_id", PG_UUID)),
    Table(
        "sales",
        _METADATA,
        Column("id", Integer),
        Column("total", Numeric),
        Column("created_at", TIMESTAMP(timezone=True)),
        Column("status", ENUM("open", "paid", name="sale_status")),
    ),
]

NIL_UUID = "00000000-0000-0000-0000-000000000000"


@pytest.fixture
def pg():
    """Adapter wired to a mocked engine with pre-reflected tables; yields (adapter, conn)."""
    conn = AsyncMock()
    conn.execute.return_value = MagicMock()
    engine = MagicMock()
    engine.begin.return_value.__aenter__.return_value = conn
    engine.connect.return_value.__aenter__.return_value = conn
    engine.dispose = AsyncMock()
    with patch(
        "store_backup.adapters.postgres.create_async_engine_pooled", return_value=engine
    ):
        adapter = AsyncPostgresAdapter("postgres://u:p@h/db")
    adapter._tables.update({table.name: table for table in _TABLES})
    return adapter, conn


def _sql(call) -> str:
    """SQL as asyncpg receives it."""
    return str(call.args[0].compile(dialect=asyncpg.dialect()))


class TestPostgresAdapter:
    async def test_select_serializes_driver_values(self, pg) -> None:
        adapter, conn = pg
        result_proxy = MagicMock()
        result_proxy.keys.return_value = ["id", "created_at", "price"]
        result_proxy.fetchall.return_value = [
            (
                UUID("00000000-0000-0000-0000-000000000001"),
                datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
                Decimal("9.50"),
            )
        ]
        conn.execute.return_value = result_proxy

        result = await adapter.select("products", offset=2000, limit=1000)

        assert result.data == [
            {
                "id": "00000000-0000-0000-0000-000000000001",
                "created_at": "2024-01-02T03:04:05+00:00",
                "price": 9.5,
            }
        ]
        call = conn.execute.call_args
        assert "ORDER BY ctid" in _sql(call)
        assert sorted(call.args[0].compile().params.values()) == [1000, 2000]

    async def test_select_filter_on_uuid_column(self, pg) -> None:
        adapter, conn = pg

        await adapter.select(
            "user_profiles", "is_admin", filters={"id": NIL_UUID}, limit=1
        )

        call = conn.execute.call_args
        sql = _sql(call)
        assert sql.startswith("SELECT user_profiles.is_admin FROM user_profiles")
        assert "user_profiles.id = CAST($1::VARCHAR AS UUID)" in sql
        assert call.args[1] == {"p_0": NIL_UUID}

    async def test_insert_groups_by_column_set(self, pg) -> None:
        adapter, conn = pg
        rows = [
            {"id": "1", "name": "a"},
            {"id": "2", "name": "b"},
            {"id": "3", "metadata": {"k": "v"}},
        ]

        result = await adapter.insert("brands", rows)

        assert result.ok
        assert conn.execute.await_count == 2
        first, second = conn.execute.call_args_list
        assert _sql(first).startswith("INSERT INTO brands (id, name) VALUES (CAST($1::VARCHAR AS UUID)")
        assert first.args[1] == [{"p_0": "1", "p_1": "a"}, {"p_0": "2", "p_1": "b"}]
        assert "AS JSONB" not in _sql(second)
        assert second.args[1] == [{"p_0": "3", "p_1": {"k": "v"}}]

    async def test_insert_casts_string_values_to_column_types(self, pg) -> None:
        adapter, conn = pg
        row = {"id": 7, "total": 9.5, "created_at": "2024-01-02T03:04:05+00:00", "status": "paid"}

        assert (await adapter.insert("sales", row)).ok

        call = conn.execute.call_args
        sql = _sql(call)
        assert "CAST($3::VARCHAR AS TIMESTAMP WITH TIME ZONE)" in sql
        assert "CAST($4::VARCHAR AS sale_status)" in sql
        assert "CAST($1" not in sql
        assert call.args[1] == [
            {"p_0": 7, "p_1": Decimal("9.5"), "p_2": "2024-01-02T03:04:05+00:00", "p_3": "paid"}
        ]

    async def test_insert_unknown_column(self, pg) -> None:
        adapter, conn = pg

        result = await adapter.insert("brands", {"id": "1", "ghost": 1})

        assert 'column "ghost"' in result.error
        conn.execute.assert_not_called()

    async def test_insert_empty_batch(self, pg) -> None:
        adapter, conn = pg
        assert (await adapter.insert("brands", [])).ok
        conn.execute.assert_not_called()

    async def test_insert_error_is_returned(self, pg) -> None:
        adapter, conn = pg
        conn.execute.side_effect = IntegrityError(
            "INSERT", {}, Exception("duplicate key value violates unique constraint")
        )

        result = await adapter.insert("brands", {"id": "1"})

        assert result.error == "duplicate key value violates unique constraint"

    async def test_delete_conditions(self, pg) -> None:
        adapter, conn = pg

        await adapter.delete(
            "user_profiles", exclude={"user_id": "u1"}, gte={"id": NIL_UUID}, not_null="id"
        )

        call = conn.execute.call_args
        sql = _sql(call)
        assert "user_profiles.user_id <> CAST($1::VARCHAR AS UUID)" in sql
        assert "user_profiles.id >= CAST($2::VARCHAR AS UUID)" in sql
        assert "user_profiles.id IS NOT NULL" in sql
        assert call.args[1] == {"ne_0": "u1", "ge_0": NIL_UUID}

    async def test_update_returns_rows(self, pg) -> None:
        adapter, conn = pg
        result_proxy = MagicMock()
        result_proxy.keys.return_value = ["id", "manager_id"]
        result_proxy.fetchall.return_value = [("b1", "u1")]
        conn.execute.return_value = result_proxy

        result = await adapter.update("branches", {"manager_id": "u1"}, {"id": "b1"})

        assert result.data == [{"id": "b1", "manager_id": "u1"}]
        call = conn.execute.call_args
        assert "RETURNING" in _sql(call)
        assert call.args[1] == {"set_0": "u1", "where_0": "b1"}

    async def test_update_by_stringified_integer_key(self, pg) -> None:
        adapter, conn = pg

        await adapter.update("sales", {"total": 12}, {"id": "7"})

        call = conn.execute.call_args
        sql = _sql(call)
        assert "CAST($1" not in sql
        assert "sales.id = CAST($2::VARCHAR AS INTEGER)" in sql
        assert call.args[1] == {"set_0": 12, "where_0": "7"}

    async def test_table_is_reflected_once(self, pg) -> None:
        adapter, conn = pg
        conn.run_sync.return_value = Table("vendors", MetaData(), Column("id", PG_UUID))

        await adapter.delete("vendors")
        await adapter.delete("vendors", filters={"id": NIL_UUID})

        conn.run_sync.assert_awaited_once()
        assert conn.execute.await_count == 2

    async def test_missing_table_is_an_error(self, pg) -> None:
        adapter, conn = pg
        conn.run_sync.side_effect = NoSuchTableError("vendors")

        result = await adapter.select("vendors")

        assert result.error == "vendors"
        conn.execute.assert_not_called()

    async def test_count(self, pg) -> None:
        adapter, conn = pg
        result_proxy = MagicMock()
        result_proxy.scalar.return_value = 7
        conn.execute.return_value = result_proxy

        assert (await adapter.count("sales")).count == 7

    async def test_close_disposes_engine(self, pg) -> None:
        adapter, _ = pg
        await adapter.close()
        adapter._engine.dispose.assert_awaited_once()
