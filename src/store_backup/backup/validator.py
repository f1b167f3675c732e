"""Snapshot validation.

Two tiers share one implementation:

* the **lightweight** tier (``verify_checksums=False``) checks structure,
  format, version and row counts only; it is cheap enough to run before
  a file is uploaded.
* the **full** tier additionally recomputes the per-table and
  whole-payload checksums and must pass before any destructive import.

Unknown or missing tables are warnings, never errors, so older snapshots
stay valid while the registry evolves.

Usage:
    report = validate_snapshot(document, DEFAULT_REGISTRY)
    if not report.valid:
        raise SnapshotValidationError(report.errors)
"""

import json
from pathlib import Path
from typing import Any

from store_backup.backup.checksum import compute_checksum
from store_backup.backup.models import TableRegistry, ValidationResult, ValidationSummary
from store_backup.config.models import BackupSettings

_UNKNOWN = "unknown"


def _count(value: Any, default: int) -> int:
    if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
        return value
    return default


def _summary(meta: dict[str, Any], tables: dict[str, Any]) -> ValidationSummary:
    return ValidationSummary(
        created_at=str(meta.get("created_at") or _UNKNOWN),
        created_by=str(meta.get("created_by") or _UNKNOWN),
        table_count=_count(meta.get("table_count"), len(tables)),
        total_rows=_count(
            meta.get("total_rows"),
            sum(len(rows) for rows in tables.values() if isinstance(rows, list)),
        ),
    )


def validate_snapshot(
    document: Any,
    registry: TableRegistry,
    *,
    settings: BackupSettings | None = None,
    verify_checksums: bool = True,
) -> ValidationResult:
    """Validate a parsed snapshot document.

    Args:
        document: Parsed JSON of the candidate file.
        registry: Known tables, for unknown/missing-table warnings.
        settings: Expected format tag and version.
        verify_checksums: Run the checksum checks (full tier).

    Returns:
        ``ValidationResult``; ``summary`` is set once the document is
        structurally sound.
    """
    settings = settings or BackupSettings()
    sort_keys = settings.canonical_checksums
    errors: list[str] = []
    warnings: list[str] = []

    if not isinstance(document, dict):
        return ValidationResult(valid=False, errors=["File is not a valid JSON object"])

    meta = document.get("_meta")
    if not isinstance(meta, dict):
        return ValidationResult(valid=False, errors=["File has no metadata section (_meta)"])

    fmt = meta.get("format")
    if fmt != settings.format:
        if isinstance(fmt, str) and fmt.endswith(settings.foreign_format_suffix):
            warnings.append(f"Snapshot comes from a different project: {fmt}")
        else:
            errors.append(f"Unrecognised snapshot format: {fmt or 'missing'}")

    version = meta.get("version")
    if version != settings.version:
        warnings.append(
            f"Snapshot version ({version}) differs from the current version ({settings.version})"
        )

    manifest = document.get("_manifest")
    tables = document.get("tables")
    if not isinstance(manifest, dict):
        errors.append("File has no manifest section (_manifest)")
    if not isinstance(tables, dict):
        errors.append("File has no table data (tables)")

    if errors:
        return ValidationResult(valid=False, errors=errors, warnings=warnings)

    if verify_checksums:
        expected = meta.get("checksum")
        if expected and compute_checksum(tables, sort_keys=sort_keys) != expected:
            errors.append("Data integrity check failed (checksum mismatch)")

    for table, rows in tables.items():
        entry = manifest.get(table)
        if not isinstance(entry, dict):
            warnings.append(f"Table {table} is missing from the manifest")
            continue

        if not isinstance(rows, list):
            errors.append(f"Data of table {table} is not an array")
            continue

        row_count = entry.get("row_count")
        if len(rows) != row_count:
            errors.append(
                f"Row count of {table}: expected {row_count}, found {len(rows)}"
            )

        if verify_checksums:
            checksum = entry.get("checksum")
            if checksum and compute_checksum(rows, sort_keys=sort_keys) != checksum:
                errors.append(f"Integrity check failed for table {table}")

    known = set(registry.all_tables())
    for table in tables:
        if table not in known:
            warnings.append(f"Unknown table in snapshot: {table}")
    for table in registry.all_tables():
        if table not in tables:
            warnings.append(f"Table {table} is not in the snapshot")

    return ValidationResult(
        valid=not errors,
        errors=errors,
        warnings=warnings,
        summary=_summary(meta, tables),
    )


def validate_snapshot_text(
    raw: str | bytes,
    registry: TableRegistry,
    *,
    settings: BackupSettings | None = None,
    verify_checksums: bool = True,
) -> ValidationResult:
    """Validate raw file content; unreadable JSON is reported, not raised."""
    try:
        document = json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError):
        return ValidationResult(
            valid=False,
            errors=["Could not read the file - make sure it is valid JSON"],
        )
    return validate_snapshot(
        document, registry, settings=settings, verify_checksums=verify_checksums
    )


def validate_snapshot_file(
    path: str | Path,
    registry: TableRegistry,
    *,
    settings: BackupSettings | None = None,
    verify_checksums: bool = True,
) -> ValidationResult:
    """Validate a local snapshot file.

    This function is **sync** -- it only reads a local file.
    """
    try:
        raw = Path(path).read_bytes()
    except FileNotFoundError:
        return ValidationResult(valid=False, errors=[f"Snapshot file not found: {path}"])
    return validate_snapshot_text(
        raw, registry, settings=settings, verify_checksums=verify_checksums
    )
