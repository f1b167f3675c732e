"""Null-out of circular FK columns before insert.

A row that points at a sibling not inserted yet would violate its FK
constraint, so every circular column is inserted as NULL and the
original value is carried to the finalize phase.
"""

from typing import Any, NamedTuple

from store_backup.backup.models import TableRegistry

CARRY_SEPARATOR = "::"


def carry_key(row_id: Any, column: str) -> str:
    return f"{row_id}{CARRY_SEPARATOR}{column}"


def split_carry_key(key: str) -> tuple[str, str]:
    """Inverse of ``carry_key``; row ids may themselves contain ``::``."""
    row_id, _, column = key.rpartition(CARRY_SEPARATOR)
    return row_id, column


class SanitizedRows(NamedTuple):
    rows: list[dict[str, Any]]
    carry: dict[str, Any]


def sanitize_circular_fks(
    table: str,
    rows: list[dict[str, Any]],
    registry: TableRegistry,
    pk: str = "id",
) -> SanitizedRows:
    """Null circular FK columns of ``table`` and record their values.

    Input rows are never mutated.  Tables without circular FKs get the
    same list back; otherwise every row is a shallow copy.

    Returns:
        ``SanitizedRows(rows, carry)`` where ``carry`` maps
        ``"<rowId>::<column>"`` to the original non-null value.
    """
    circular = registry.circular_fks_for(table)
    if not circular:
        return SanitizedRows(rows, {})

    carry: dict[str, Any] = {}
    cleaned: list[dict[str, Any]] = []
    for row in rows:
        new_row = dict(row)
        for fk in circular:
            value = new_row.get(fk.column)
            if value is not None:
                carry[carry_key(new_row.get(pk), fk.column)] = value
                new_row[fk.column] = None
        cleaned.append(new_row)

    return SanitizedRows(cleaned, carry)
