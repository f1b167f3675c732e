"""Post-insert replay of circular FK values and row-count verification.

Shared by the end of the bulk import and the explicit finalize call of
the incremental import.  Both functions are safe to call with empty
input.
"""

import logging
from typing import Iterable

from pydantic import BaseModel, Field

from store_backup.adapters.base import RowClient
from store_backup.backup.models import CircularUpdate, TableRegistry, VerificationEntry
from store_backup.backup.sanitizer import split_carry_key

logger = logging.getLogger(__name__)

# Live count may differ by one from the snapshot: the protected admin row
# is kept in place instead of being deleted and re-inserted.
COUNT_TOLERANCE = 1


class ReplayReport(BaseModel):
    restored: int = 0
    failed: list[str] = Field(default_factory=list)


async def replay_circular_fks(
    adapter: RowClient,
    updates: Iterable[CircularUpdate],
    pk: str = "id",
) -> ReplayReport:
    """Restore carried circular FK values with one update per row/column.

    Failures are logged and skipped; the affected column stays NULL.
    """
    report = ReplayReport()
    for update in updates:
        for key, value in update.entries.items():
            row_id, column = split_carry_key(key)
            result = await adapter.update(update.table, {column: value}, {pk: row_id})
            if result.error:
                logger.warning(
                    "Circular FK update %s.%s for %s failed: %s",
                    update.table, column, row_id, result.error,
                )
                report.failed.append(f"{update.table}.{column}:{row_id}")
            else:
                report.restored += 1

    if report.restored or report.failed:
        logger.info(
            "Replayed circular FKs: %d restored, %d failed",
            report.restored, len(report.failed),
        )
    return report


def counts_match(expected: int, actual: int) -> bool:
    return abs(actual - expected) <= COUNT_TOLERANCE


async def verify_row_counts(
    adapter: RowClient,
    expected_counts: dict[str, int],
    registry: TableRegistry,
) -> list[VerificationEntry]:
    """Compare expected row counts against live counts, in registry order.

    Tables not in the registry are ignored.  A table whose count cannot
    be read reports ``actual=0``.
    """
    verification: list[VerificationEntry] = []
    for table in registry.all_tables():
        if table not in expected_counts:
            continue
        expected = expected_counts[table] or 0

        result = await adapter.count(table)
        if result.error:
            logger.warning("Could not count %s: %s", table, result.error)
            verification.append(
                VerificationEntry(table=table, expected=expected, actual=0, match=False)
            )
            continue

        actual = result.count or 0
        verification.append(
            VerificationEntry(
                table=table,
                expected=expected,
                actual=actual,
                match=counts_match(expected, actual),
            )
        )
    return verification
