"""Shared fixtures: an in-memory row client and a small store topology."""

import copy
from typing import Any

import pytest

from store_backup.adapters.base import QueryResult
from store_backup.backup.models import CircularFK, TableRegistry


def uid(n: int) -> str:
    """UUID-shaped id; sorts after the all-zero UUID."""
    return f"00000000-0000-0000-0000-{n:012d}"


ADMIN_ID = uid(1)
OTHER_USER_ID = uid(2)


# ------------------------------------------------------------------
# In-memory row client
# ------------------------------------------------------------------


class FakeRowClient:
    """Dict-backed ``RowClient`` with primary key, NOT NULL and FK checks.

    A batch insert is atomic like a single SQL statement: one bad row
    rejects the whole batch.  Deletes do not check references.

    Attributes:
        calls: ``(method, table)`` for every call, in order.
        fail_select: table -> error returned by ``select``.
        fail_delete_gte: tables whose ``gte`` delete fails (non-UUID keys).
    """

    def __init__(
        self,
        tables: dict[str, list[dict[str, Any]]] | None = None,
        *,
        not_null: dict[str, set[str]] | None = None,
        foreign_keys: dict[tuple[str, str], str] | None = None,
    ) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = copy.deepcopy(tables or {})
        self.not_null = not_null or {}
        self.foreign_keys = foreign_keys or {}
        self.calls: list[tuple[str, str]] = []
        self.fail_select: dict[str, str] = {}
        self.fail_delete_gte: set[str] = set()
        self.closed = False

    # -- helpers ---------------------------------------------------

    def rows(self, table: str) -> list[dict[str, Any]]:
        return self.tables.setdefault(table, [])

    def ids(self, table: str) -> set[Any]:
        return {row.get("id") for row in self.rows(table)}

    def _check_row(self, table: str, row: dict[str, Any], pending_ids: set[Any]) -> str | None:
        for column in self.not_null.get(table, set()):
            if row.get(column) is None:
                return f'null value in column "{column}" of relation "{table}" violates not-null constraint'
        for (fk_table, column), referenced in self.foreign_keys.items():
            if fk_table != table:
                continue
            value = row.get(column)
            if value is None:
                continue
            known = self.ids(referenced) | (pending_ids if referenced == table else set())
            if value not in known:
                return f'insert or update on table "{table}" violates foreign key constraint "{table}_{column}_fkey"'
        return None

    @staticmethod
    def _matches(row: dict[str, Any], filters: dict[str, Any] | None) -> bool:
        return all(row.get(k) == v for k, v in (filters or {}).items())

    # -- RowClient ------------------------------------------------

    async def select(self, table, columns="*", filters=None, offset=None, limit=None):
        self.calls.append(("select", table))
        if table in self.fail_select:
            return QueryResult(error=self.fail_select[table])
        matched = [row for row in self.rows(table) if self._matches(row, filters)]
        start = offset or 0
        matched = matched[start:start + limit] if limit is not None else matched[start:]
        if columns != "*":
            wanted = [c.strip() for c in columns.split(",")]
            matched = [{c: row.get(c) for c in wanted} for row in matched]
        return QueryResult(data=copy.deepcopy(matched))

    async def count(self, table):
        self.calls.append(("count", table))
        return QueryResult(count=len(self.rows(table)))

    async def insert(self, table, rows):
        self.calls.append(("insert", table))
        batch = [rows] if isinstance(rows, dict) else list(rows)
        existing = self.ids(table)
        pending: set[Any] = set()
        for row in batch:
            row_id = row.get("id")
            if row_id is not None and (row_id in existing or row_id in pending):
                return QueryResult(
                    error=f'duplicate key value violates unique constraint "{table}_pkey"'
                )
            pending.add(row_id)
        for row in batch:
            error = self._check_row(table, row, pending)
            if error:
                return QueryResult(error=error)
        self.rows(table).extend(copy.deepcopy(batch))
        return QueryResult(data=copy.deepcopy(batch))

    async def update(self, table, data, filters):
        self.calls.append(("update", table))
        targets = [row for row in self.rows(table) if self._matches(row, filters)]
        for row in targets:
            error = self._check_row(table, {**row, **data}, set())
            if error:
                return QueryResult(error=error)
        for row in targets:
            row.update(data)
        return QueryResult(data=copy.deepcopy(targets))

    async def delete(self, table, filters=None, exclude=None, gte=None, not_null=None):
        self.calls.append(("delete", table))
        if gte and table in self.fail_delete_gte:
            return QueryResult(error="invalid input syntax for type uuid")

        def doomed(row: dict[str, Any]) -> bool:
            if not self._matches(row, filters):
                return False
            if any(row.get(k) == v for k, v in (exclude or {}).items()):
                return False
            for k, v in (gte or {}).items():
                if row.get(k) is None or str(row[k]) < str(v):
                    return False
            if not_null and row.get(not_null) is None:
                return False
            return True

        kept = [row for row in self.rows(table) if not doomed(row)]
        removed = len(self.rows(table)) - len(kept)
        self.tables[table] = kept
        return QueryResult(count=removed)

    async def close(self):
        self.closed = True


# ------------------------------------------------------------------
# Small store topology
# ------------------------------------------------------------------

STORE_FOREIGN_KEYS: dict[tuple[str, str], str] = {
    ("user_profiles", "user_id"): "auth_users",
    ("user_profiles", "branch_id"): "branches",
    ("branches", "manager_id"): "user_profiles",
    ("auth_sessions", "user_id"): "auth_users",
    ("customers", "linked_supplier_id"): "suppliers",
    ("suppliers", "linked_customer_id"): "customers",
    ("products", "brand_id"): "brands",
    ("sales", "customer_id"): "customers",
    ("sales", "product_id"): "products",
    ("whatsapp_messages", "customer_id"): "customers",
}

STORE_NOT_NULL: dict[str, set[str]] = {
    "products": {"name"},
    "sales": {"customer_id", "product_id"},
}


def make_registry() -> TableRegistry:
    return TableRegistry(
        levels=[
            ["auth_users", "brands", "branches"],
            ["user_profiles", "auth_sessions", "suppliers"],
            ["customers", "products"],
            ["sales", "whatsapp_messages"],
        ],
        circular_fks=[
            CircularFK(table="branches", column="manager_id", referenced_table="user_profiles"),
            CircularFK(table="user_profiles", column="branch_id", referenced_table="branches"),
            CircularFK(table="customers", column="linked_supplier_id", referenced_table="suppliers"),
            CircularFK(table="suppliers", column="linked_customer_id", referenced_table="customers"),
        ],
        messaging_tables=["whatsapp_messages"],
        session_tables=["auth_sessions"],
    )


def make_store_tables() -> dict[str, list[dict[str, Any]]]:
    """A consistent data set covering every table of ``make_registry()``."""
    return {
        "auth_users": [
            {"id": ADMIN_ID, "email": "admin@example.com"},
            {"id": OTHER_USER_ID, "email": "clerk@example.com"},
        ],
        "brands": [{"id": uid(10), "name": "Acme"}],
        "branches": [
            {"id": uid(20), "name": "Main", "manager_id": ADMIN_ID},
            {"id": uid(21), "name": "Harbor", "manager_id": OTHER_USER_ID},
        ],
        "user_profiles": [
            {"id": ADMIN_ID, "user_id": ADMIN_ID, "email": "admin@example.com",
             "is_admin": True, "branch_id": uid(20)},
            {"id": OTHER_USER_ID, "user_id": OTHER_USER_ID, "email": "clerk@example.com",
             "is_admin": False, "branch_id": uid(21)},
        ],
        "auth_sessions": [
            {"id": uid(30), "user_id": ADMIN_ID},
            {"id": uid(31), "user_id": OTHER_USER_ID},
        ],
        "suppliers": [{"id": uid(40), "name": "Wholesale", "linked_customer_id": uid(50)}],
        "customers": [
            {"id": uid(50), "name": "Wholesale (customer)", "linked_supplier_id": uid(40)},
            {"id": uid(51), "name": "Walk-in", "linked_supplier_id": None},
        ],
        "products": [
            {"id": uid(60), "name": "Widget", "brand_id": uid(10), "price": 9.5},
            {"id": uid(61), "name": "Gadget", "brand_id": uid(10), "price": 20},
        ],
        "sales": [
            {"id": uid(70), "customer_id": uid(51), "product_id": uid(60), "qty": 2},
            {"id": uid(71), "customer_id": uid(50), "product_id": uid(61), "qty": 1},
        ],
        "whatsapp_messages": [{"id": uid(80), "customer_id": uid(51), "body": "مرحبا"}],
    }


def make_fake_db(tables: dict[str, list[dict[str, Any]]] | None = None) -> FakeRowClient:
    return FakeRowClient(
        tables if tables is not None else make_store_tables(),
        not_null=STORE_NOT_NULL,
        foreign_keys=STORE_FOREIGN_KEYS,
    )


@pytest.fixture
def registry() -> TableRegistry:
    return make_registry()


@pytest.fixture
def store_tables() -> dict[str, list[dict[str, Any]]]:
    return make_store_tables()


@pytest.fixture
def fake_db() -> FakeRowClient:
    return make_fake_db()
