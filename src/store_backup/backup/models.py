"""Backup models: table topology, snapshot document, progress and outcomes.

The table topology is declared as dependency *levels*: a table may only
reference tables of earlier levels, so walking the levels forward is a
valid insert order and walking them backward a valid delete order.  The
few relationships that form true cycles are declared separately as
circular foreign keys and are broken with a null-then-update pass.

Usage:
    from store_backup.backup.models import CircularFK, TableRegistry

    registry = TableRegistry(
        levels=[
            ["warehouses", "teams"],
            ["staff"],
            ["shipments"],
        ],
        circular_fks=[
            CircularFK(table="teams", column="lead_id", referenced_table="staff"),
        ],
    )
    registry.all_tables()  # ["warehouses", "teams", "staff", "shipments"]
"""

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


# ============================================================================
# Table topology
# ============================================================================


class CircularFK(BaseModel):
    """A nullable FK column that takes part in a reference cycle."""

    table: str                  # table holding the column
    column: str                 # FK column, nulled before insert
    referenced_table: str       # table the column points to


class TableRegistry(BaseModel):
    """Dependency-ordered table list plus cycle and category declarations."""

    model_config = ConfigDict(frozen=True)

    levels: list[list[str]]
    circular_fks: list[CircularFK] = Field(default_factory=list)
    messaging_tables: list[str] = Field(default_factory=list)
    session_tables: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_topology(self) -> "TableRegistry":
        seen: set[str] = set()
        for level in self.levels:
            for table in level:
                if table in seen:
                    raise ValueError(f"Table '{table}' appears in more than one level")
                seen.add(table)

        for fk in self.circular_fks:
            for name in (fk.table, fk.referenced_table):
                if name not in seen:
                    raise ValueError(f"Circular FK references unknown table '{name}'")

        for name in [*self.messaging_tables, *self.session_tables]:
            if name not in seen:
                raise ValueError(f"Category lists unknown table '{name}'")
        return self

    def all_tables(self) -> list[str]:
        """Flattened level order.  A new list is returned on every call."""
        return [table for level in self.levels for table in level]

    def reversed_tables(self) -> list[str]:
        """Delete order: last level first, tables in declared order within a level."""
        return [table for level in reversed(self.levels) for table in level]

    def level_of(self, table: str) -> int | None:
        for index, level in enumerate(self.levels):
            if table in level:
                return index
        return None

    def circular_fks_for(self, table: str) -> list[CircularFK]:
        return [fk for fk in self.circular_fks if fk.table == table]

    def tables_for_export(
        self, include_messaging: bool = False, include_sessions: bool = False
    ) -> list[str]:
        """Table order for an export, minus the opted-out categories."""
        excluded: set[str] = set()
        if not include_messaging:
            excluded.update(self.messaging_tables)
        if not include_sessions:
            excluded.update(self.session_tables)
        return [t for t in self.all_tables() if t not in excluded]


# ============================================================================
# Snapshot document
# ============================================================================


class SnapshotMeta(BaseModel):
    """``_meta`` section of a snapshot."""

    version: str
    format: str
    created_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    created_by: str = ""
    db_schema: str = Field(default="", alias="schema")
    checksum: str = ""
    table_count: int = 0
    total_rows: int = 0

    model_config = ConfigDict(populate_by_name=True)


class ManifestEntry(BaseModel):
    """Per-table entry of ``_manifest``."""

    row_count: int
    checksum: str


class Snapshot(BaseModel):
    """The exported document: ``{"_meta", "_manifest", "tables"}``."""

    meta: SnapshotMeta = Field(alias="_meta")
    manifest: dict[str, ManifestEntry] = Field(alias="_manifest")
    tables: dict[str, list[dict[str, Any]]]

    model_config = ConfigDict(populate_by_name=True)

    def to_document(self) -> dict[str, Any]:
        """Plain dict in file layout, preserving row key order."""
        return self.model_dump(by_alias=True)


# ============================================================================
# Progress
# ============================================================================


class ProgressState(BaseModel):
    """Snapshot of the running backup operation, polled by the UI."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    operation: Literal["export", "import", "idle"] = "idle"
    phase: str = ""
    progress: int = Field(default=0, ge=0, le=100)
    current_table: str = ""
    tables_completed: int = 0
    tables_total: int = 0
    error: str | None = None


# ============================================================================
# Outcomes
# ============================================================================


class DeleteOutcome(BaseModel):
    """Result of wiping one table."""

    table: str
    ok: bool
    error: str | None = None


class TableOutcome(BaseModel):
    """Insert result for one table."""

    table: str
    expected: int
    inserted: int
    status: Literal["ok", "partial", "error"]
    error: str | None = None

    @classmethod
    def from_counts(
        cls, table: str, expected: int, inserted: int, error: str | None
    ) -> "TableOutcome":
        if error is None:
            status = "ok"
        elif inserted > 0:
            status = "partial"
        else:
            status = "error"
        return cls(
            table=table, expected=expected, inserted=inserted, status=status, error=error
        )


class VerificationEntry(BaseModel):
    """Expected vs. live row count for one table after a restore."""

    table: str
    expected: int
    actual: int
    match: bool


class CircularUpdate(BaseModel):
    """Carried circular FK values of one table, keyed ``"<rowId>::<column>"``."""

    table: str
    entries: dict[str, Any]


class ImportOutcome(BaseModel):
    """Full result of a bulk import."""

    success: bool
    results: list[TableOutcome] = Field(default_factory=list)
    verification: list[VerificationEntry] = Field(default_factory=list)


# ============================================================================
# Validation
# ============================================================================


class ValidationSummary(BaseModel):
    """Human-readable facts extracted from ``_meta``."""

    created_at: str
    created_by: str
    table_count: int
    total_rows: int


class ValidationResult(BaseModel):
    """Outcome of validating a candidate snapshot document."""

    valid: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    summary: ValidationSummary | None = None
