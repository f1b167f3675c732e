"""Destructive restore of a snapshot (bulk, single-call path).

Restore runs in four phases, strictly in this order:

1. **delete** -- wipe every snapshot table, last dependency level first,
   keeping the acting admin's own identity/session rows.
2. **insert** -- reinsert rows level by level in fixed-size batches with
   circular FK columns nulled; a failing batch is retried row by row.
3. **finalize** -- replay the nulled circular FK values.
4. **verify** -- compare live row counts with the snapshot.

Table- and row-level failures never abort the run; they are folded into
``DeleteOutcome``/``TableOutcome`` values and logged.  Only an invalid
upload (``SnapshotValidationError``) or an unexpected exception stops it.

The building blocks (``delete_table_data``, ``filter_protected_rows``,
``batch_insert``, ``insert_table``) are shared with the incremental
importer.
"""

import json
import logging
from enum import Enum
from typing import Any, NamedTuple

from store_backup.adapters.base import RowClient
from store_backup.backup.checksum import compute_checksum
from store_backup.backup.errors import SnapshotValidationError
from store_backup.backup.finalizer import replay_circular_fks, verify_row_counts
from store_backup.backup.models import (
    CircularUpdate,
    DeleteOutcome,
    ImportOutcome,
    TableOutcome,
    TableRegistry,
)
from store_backup.backup.progress import ProgressTracker, percent
from store_backup.backup.registry import (
    PROTECTED_AUTH_USERS,
    PROTECTED_BY_USER_ID,
    PROTECTED_USER_PROFILES,
)
from store_backup.backup.sanitizer import sanitize_circular_fks
from store_backup.config.models import BackupSettings

logger = logging.getLogger(__name__)

# Lower bound every UUID key satisfies; used to express "delete all rows"
# through clients that refuse an unfiltered delete.
_MIN_UUID = "00000000-0000-0000-0000-000000000000"


class ProtectionMode(str, Enum):
    """Column used to recognise the admin's own ``user_profiles`` row.

    The bulk path matches the profile by its primary key, the incremental
    path by its ``user_id`` column.  Both behaviours are kept until the
    correct column is confirmed against the live schema.
    """

    BY_ID = "id"
    BY_USER_ID = "user_id"


def _protection_column(table: str, mode: ProtectionMode) -> str | None:
    if table == PROTECTED_AUTH_USERS:
        return "id"
    if table == PROTECTED_USER_PROFILES:
        return mode.value
    if table in PROTECTED_BY_USER_ID:
        return "user_id"
    return None


# ============================================================================
# Upload parsing
# ============================================================================


def parse_snapshot_text(raw: str | bytes) -> dict[str, Any]:
    """Decode an uploaded snapshot.

    Raises:
        SnapshotValidationError: If the payload is not a JSON object.
    """
    try:
        document = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise SnapshotValidationError([f"Could not read snapshot file: {e}"]) from e
    if not isinstance(document, dict):
        raise SnapshotValidationError(["Snapshot is not a JSON object"])
    return document


def check_importable(document: dict[str, Any], settings: BackupSettings) -> None:
    """Quick pre-import check: recognised format and matching checksum.

    Raises:
        SnapshotValidationError: Before anything is deleted.
    """
    meta = document.get("_meta")
    if not isinstance(meta, dict):
        raise SnapshotValidationError(["Snapshot has no _meta section"])

    fmt = meta.get("format")
    if not isinstance(fmt, str) or not fmt.endswith(settings.foreign_format_suffix):
        raise SnapshotValidationError([f"Unrecognised snapshot format: {fmt or 'missing'}"])

    tables = document.get("tables")
    if not isinstance(tables, dict):
        raise SnapshotValidationError(["Snapshot has no tables section"])

    expected = meta.get("checksum")
    if expected:
        actual = compute_checksum(tables, sort_keys=settings.canonical_checksums)
        if actual != expected:
            raise SnapshotValidationError(["Snapshot checksum mismatch: data integrity check failed"])


# ============================================================================
# Delete phase
# ============================================================================


async def delete_table_data(
    adapter: RowClient,
    table: str,
    protected_id: str | None = None,
    mode: ProtectionMode = ProtectionMode.BY_ID,
) -> DeleteOutcome:
    """Delete all rows of ``table``, sparing the protected admin's rows."""
    column = _protection_column(table, mode) if protected_id else None
    if column:
        result = await adapter.delete(table, exclude={column: protected_id})
        if result.error:
            return DeleteOutcome(table=table, ok=False, error=f"delete {table}: {result.error}")
        return DeleteOutcome(table=table, ok=True)

    result = await adapter.delete(table, gte={"id": _MIN_UUID})
    if result.error:
        # Non-UUID keys: fall back to a condition every row satisfies
        retry = await adapter.delete(table, not_null="id")
        if retry.error:
            return DeleteOutcome(
                table=table, ok=False, error=f"Could not delete {table}: {retry.error}"
            )
    return DeleteOutcome(table=table, ok=True)


async def run_delete_phase(
    adapter: RowClient,
    registry: TableRegistry,
    tables: list[str],
    *,
    protected_id: str | None,
    mode: ProtectionMode,
    progress: ProgressTracker,
    total_steps: int,
) -> list[DeleteOutcome]:
    """Wipe ``tables`` in reverse dependency order.

    Tables not in the registry are never touched.  Each completed table
    counts as one progress step.
    """
    wanted = set(tables)
    outcomes: list[DeleteOutcome] = []

    for table in registry.reversed_tables():
        if table not in wanted:
            continue

        progress.set(phase=f"Deleting {table}...", current_table=table)
        outcome = await delete_table_data(adapter, table, protected_id, mode)
        if not outcome.ok:
            logger.warning("Delete warning for %s: %s", table, outcome.error)
        outcomes.append(outcome)

        progress.set(progress=percent(len(outcomes), total_steps))

    return outcomes


# ============================================================================
# Insert phase
# ============================================================================


def filter_protected_rows(
    table: str,
    rows: list[dict[str, Any]],
    protected_id: str | None,
    mode: ProtectionMode = ProtectionMode.BY_ID,
) -> list[dict[str, Any]]:
    """Drop the protected admin's row so it is never inserted twice.

    Only ``auth_users`` (by ``id``) and ``user_profiles`` (by the column
    chosen by ``mode``) are filtered.
    """
    if not protected_id:
        return rows
    if table == PROTECTED_AUTH_USERS:
        column = "id"
    elif table == PROTECTED_USER_PROFILES:
        column = mode.value
    else:
        return rows
    return [row for row in rows if row.get(column) != protected_id]


class InsertReport(NamedTuple):
    inserted: int
    error: str | None


async def batch_insert(
    adapter: RowClient,
    table: str,
    rows: list[dict[str, Any]],
    batch_size: int,
) -> InsertReport:
    """Insert ``rows`` in batches, retrying a failed batch row by row.

    A row that fails on its own is dropped and not counted.  Batch errors
    are reported as ``"Batch <n>: <message>"`` joined by ``"; "``.
    """
    if not rows:
        return InsertReport(0, None)

    inserted = 0
    errors: list[str] = []

    for start in range(0, len(rows), batch_size):
        batch = rows[start:start + batch_size]
        result = await adapter.insert(table, batch)
        if not result.error:
            inserted += len(batch)
            continue

        errors.append(f"Batch {start // batch_size}: {result.error}")
        for row in batch:
            single = await adapter.insert(table, row)
            if single.error:
                logger.debug("Dropped %s row %s: %s", table, row.get("id"), single.error)
            else:
                inserted += 1

    return InsertReport(inserted, "; ".join(errors) if errors else None)


async def insert_table(
    adapter: RowClient,
    registry: TableRegistry,
    table: str,
    rows: list[dict[str, Any]],
    *,
    protected_id: str | None,
    mode: ProtectionMode,
    batch_size: int,
) -> tuple[TableOutcome, dict[str, Any]]:
    """Filter, sanitize and insert one table's rows.

    Returns:
        The table outcome and the circular FK carry for the table.
    """
    filtered = filter_protected_rows(table, rows, protected_id, mode)
    cleaned, carry = sanitize_circular_fks(table, filtered, registry)

    report = await batch_insert(adapter, table, cleaned, batch_size)
    outcome = TableOutcome.from_counts(table, len(filtered), report.inserted, report.error)
    if outcome.status != "ok":
        logger.warning(
            "Import of %s: %d/%d rows (%s)",
            table, outcome.inserted, outcome.expected, outcome.error,
        )
    return outcome, carry


# ============================================================================
# Bulk import
# ============================================================================


async def import_snapshot(
    adapter: RowClient,
    document: dict[str, Any],
    registry: TableRegistry,
    *,
    protected_id: str | None = None,
    settings: BackupSettings | None = None,
    progress: ProgressTracker | None = None,
) -> ImportOutcome:
    """Replace the database contents with a snapshot in one call.

    Args:
        adapter: Row client for the target database.
        document: Parsed snapshot document (``_meta``/``_manifest``/``tables``).
        registry: Table topology driving delete and insert order.
        protected_id: ``auth_users.id`` of the acting admin; their rows
            survive the wipe and are not reinserted.
        settings: Format constants and batch size.
        progress: Tracker updated throughout.  The caller is expected to
            hold its claim.

    Returns:
        ``ImportOutcome`` with per-table results and count verification.

    Raises:
        SnapshotValidationError: If the document fails the quick check;
            nothing has been deleted at that point.
    """
    settings = settings or BackupSettings()
    progress = progress or ProgressTracker()

    try:
        check_importable(document, settings)
        snapshot_tables: dict[str, Any] = document["tables"]

        present = [t for t in registry.all_tables() if t in snapshot_tables]
        total_steps = len(present) * 2 + 2

        progress.set(
            operation="import",
            phase="Deleting existing data...",
            progress=0,
            tables_total=len(present),
            tables_completed=0,
        )

        await run_delete_phase(
            adapter,
            registry,
            present,
            protected_id=protected_id,
            mode=ProtectionMode.BY_ID,
            progress=progress,
            total_steps=total_steps,
        )
        completed_steps = len(present)

        progress.set(phase="Importing data...")
        results: list[TableOutcome] = []
        circular_updates: list[CircularUpdate] = []

        for table in registry.all_tables():
            rows = snapshot_tables.get(table)
            if not isinstance(rows, list):
                continue

            progress.set(
                phase=f"Importing {table} ({len(rows)} rows)...",
                current_table=table,
            )
            outcome, carry = await insert_table(
                adapter,
                registry,
                table,
                rows,
                protected_id=protected_id,
                mode=ProtectionMode.BY_ID,
                batch_size=settings.batch_insert_size,
            )
            results.append(outcome)
            if carry:
                circular_updates.append(CircularUpdate(table=table, entries=carry))

            completed_steps += 1
            progress.set(
                progress=percent(completed_steps, total_steps),
                tables_completed=len(results),
            )

        progress.set(phase="Restoring circular references...")
        await replay_circular_fks(adapter, circular_updates)
        completed_steps += 1
        progress.set(progress=percent(completed_steps, total_steps))

        progress.set(phase="Verifying row counts...")
        expected = {
            table: len(rows)
            for table, rows in snapshot_tables.items()
            if isinstance(rows, list) and rows
        }
        verification = await verify_row_counts(adapter, expected, registry)

        progress.set(phase="Import completed", progress=100, current_table="")
        progress.schedule_reset(settings.import_reset_delay)

        outcome = ImportOutcome(
            success=all(r.status != "error" for r in results),
            results=results,
            verification=verification,
        )
        logger.info(
            "Imported %d tables (%d with errors)",
            len(results), sum(1 for r in results if r.status != "ok"),
        )
        return outcome
    except SnapshotValidationError as e:
        progress.fail(str(e))
        raise
    except Exception as e:
        logger.exception("Import failed")
        progress.fail(str(e))
        raise
