"""Full-table snapshot export.

Walks the registry in level order, pages through every table, and
assembles a ``Snapshot`` with per-table manifest entries and a checksum
over the whole ``tables`` payload.

Usage:
    from store_backup.backup.exporter import export_snapshot, write_snapshot

    snapshot = await export_snapshot(
        adapter,
        DEFAULT_REGISTRY,
        created_by="admin@example.com",
        include_messaging=True,
    )
    path = write_snapshot(snapshot)
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from store_backup.adapters.base import RowClient
from store_backup.backup.checksum import compute_checksum
from store_backup.backup.models import (
    ManifestEntry,
    Snapshot,
    SnapshotMeta,
    TableRegistry,
)
from store_backup.backup.progress import ProgressTracker, percent
from store_backup.config.models import BackupSettings

logger = logging.getLogger(__name__)


async def fetch_all_rows(
    adapter: RowClient, table: str, page_size: int
) -> list[dict[str, Any]]:
    """Read every row of ``table`` with offset paging.

    A failing page is logged and ends the scan with the rows collected so
    far, so an unreachable table exports as empty instead of aborting.
    """
    rows: list[dict[str, Any]] = []
    offset = 0

    while True:
        result = await adapter.select(table, "*", offset=offset, limit=page_size)
        if result.error:
            logger.warning("Could not fetch %s at offset %d: %s", table, offset, result.error)
            return rows

        rows.extend(result.data)
        offset += len(result.data)
        if len(result.data) < page_size:
            return rows


async def export_snapshot(
    adapter: RowClient,
    registry: TableRegistry,
    *,
    created_by: str,
    include_messaging: bool = False,
    include_sessions: bool = False,
    settings: BackupSettings | None = None,
    progress: ProgressTracker | None = None,
) -> Snapshot:
    """Export every registry table into a snapshot.

    Args:
        adapter: Row client for the source database.
        registry: Table topology; tables are exported in level order.
        created_by: Identity recorded in ``_meta.created_by``.
        include_messaging: Include the messaging tables.
        include_sessions: Include the session/account tables.
        settings: Format constants and page size.
        progress: Tracker updated per table.  The caller is expected to
            hold its claim; a private tracker is used when omitted.

    Returns:
        The assembled ``Snapshot``.
    """
    settings = settings or BackupSettings()
    progress = progress or ProgressTracker()
    sort_keys = settings.canonical_checksums

    table_names = registry.tables_for_export(include_messaging, include_sessions)
    total = len(table_names)

    progress.set(
        operation="export",
        phase="Exporting data...",
        progress=0,
        tables_total=total,
        tables_completed=0,
    )

    tables: dict[str, list[dict[str, Any]]] = {}
    manifest: dict[str, ManifestEntry] = {}
    total_rows = 0

    for index, table in enumerate(table_names):
        progress.set(
            current_table=table,
            tables_completed=index,
            progress=percent(index, total),
        )

        rows = await fetch_all_rows(adapter, table, settings.export_page_size)
        tables[table] = rows
        manifest[table] = ManifestEntry(
            row_count=len(rows),
            checksum=compute_checksum(rows, sort_keys=sort_keys),
        )
        total_rows += len(rows)
        logger.debug("Exported %s (%d rows)", table, len(rows))

    meta = SnapshotMeta(
        version=settings.version,
        format=settings.format,
        created_by=created_by,
        db_schema=settings.schema_tag,
        checksum=compute_checksum(tables, sort_keys=sort_keys),
        table_count=total,
        total_rows=total_rows,
    )

    progress.set(
        phase="Export completed",
        progress=100,
        tables_completed=total,
        current_table="",
    )
    progress.schedule_reset(settings.export_reset_delay)
    logger.info("Exported %d tables, %d rows", total, total_rows)

    return Snapshot(meta=meta, manifest=manifest, tables=tables)


def snapshot_filename(snapshot: Snapshot) -> str:
    """Download name: ``<format>-<YYYY-MM-DD>.json``."""
    try:
        day = datetime.fromisoformat(snapshot.meta.created_at).date().isoformat()
    except ValueError:
        day = datetime.now(timezone.utc).date().isoformat()
    return f"{snapshot.meta.format}-{day}.json"


def dump_snapshot(snapshot: Snapshot) -> str:
    """Compact JSON text of the snapshot document."""
    return json.dumps(
        snapshot.to_document(), separators=(",", ":"), ensure_ascii=False, default=str
    )


def write_snapshot(snapshot: Snapshot, output_path: str | None = None) -> str:
    """Write the snapshot JSON file.

    When ``output_path`` is ``None`` the file is placed under
    ``./backups/`` using ``snapshot_filename()``.

    Returns:
        Path of the written file.
    """
    if output_path is None:
        backups_dir = Path.cwd() / "backups"
        backups_dir.mkdir(exist_ok=True)
        output_path = str(backups_dir / snapshot_filename(snapshot))

    output_path_obj = Path(output_path)
    output_path_obj.parent.mkdir(parents=True, exist_ok=True)
    output_path_obj.write_text(dump_snapshot(snapshot), encoding="utf-8")

    return output_path
