"""CLI for snapshot export, validation and restore.

Usage:
    store-backup profiles
    store-backup use prod
    SHOP_DB_PROFILE=prod store-backup --env-prefix SHOP_ export --include-whatsapp
    store-backup validate backups/elfaroukgroup-backup-2025-06-01.json
    store-backup restore backups/elfaroukgroup-backup-2025-06-01.json --protect-user-id <uuid>
    store-backup restore backups/snapshot.json --incremental --yes
    store-backup check
    store-backup serve --port 8000

Commands:
    profiles  - List available profiles
    use       - Make a profile the default for this directory
    export    - Export every table to a snapshot file
    validate  - Validate a snapshot file (no database access)
    restore   - Replace the database contents with a snapshot
    check     - Check connectivity and circular FK nullability
    serve     - Run the backup HTTP API
"""

import argparse
import asyncio
import getpass
import logging
import os
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.prompt import Confirm
from rich.table import Table

from store_backup.adapters.base import RowClient
from store_backup.backup.errors import BackupError
from store_backup.backup.exporter import export_snapshot, write_snapshot
from store_backup.backup.importer import import_snapshot, parse_snapshot_text
from store_backup.backup.incremental import (
    ImportJobStore,
    ProgressHint,
    finalize_import,
    import_table,
    init_import,
)
from store_backup.backup.models import ImportOutcome, TableOutcome, VerificationEntry
from store_backup.backup.progress import ProgressTracker, percent
from store_backup.backup.registry import DEFAULT_REGISTRY, check_circular_fk_nullability
from store_backup.backup.validator import validate_snapshot, validate_snapshot_file
from store_backup.config.loader import load_config
from store_backup.config.models import BackupSettings
from store_backup.factory import (
    ProfileNotFoundError,
    create_adapter,
    get_active_profile,
    read_profile_lock,
    write_profile_lock,
)

console = Console()


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _config_path(args: argparse.Namespace) -> Path | None:
    return Path(args.config) if args.config else None


def _load_settings(args: argparse.Namespace) -> BackupSettings:
    """``[backup]`` settings, or defaults when there is no config file."""
    try:
        return load_config(_config_path(args)).backup
    except FileNotFoundError:
        return BackupSettings()


def _open_adapter(args: argparse.Namespace) -> RowClient:
    name, profile = get_active_profile(
        args.profile, env_prefix=args.env_prefix, config_path=_config_path(args)
    )
    console.print(
        f"Profile: [bold cyan]{name}[/bold cyan] ({profile.provider})", style="dim"
    )
    return create_adapter(profile)


# ============================================================================
# Report rendering
# ============================================================================


def _print_validation(result) -> None:
    if result.summary:
        info = Table(title="Snapshot", show_header=False)
        info.add_column("Key", style="dim")
        info.add_column("Value")
        info.add_row("Created at", result.summary.created_at)
        info.add_row("Created by", result.summary.created_by)
        info.add_row("Tables", str(result.summary.table_count))
        info.add_row("Rows", str(result.summary.total_rows))
        console.print(info)

    for warning in result.warnings:
        console.print(f"  [yellow]![/yellow] {warning}")
    for error in result.errors:
        console.print(f"  [red]x[/red] {error}")

    if result.valid:
        console.print("[bold green]v[/bold green] Snapshot is valid")
    else:
        console.print("[bold red]x[/bold red] Snapshot is invalid")


def _print_import(results: list[TableOutcome], verification: list[VerificationEntry]) -> None:
    problems = [r for r in results if r.status != "ok"]
    if problems:
        table = Table(title="Tables with errors", header_style="bold")
        table.add_column("Table")
        table.add_column("Inserted", justify="right")
        table.add_column("Status")
        table.add_column("Error", overflow="fold")
        for r in problems:
            style = "yellow" if r.status == "partial" else "red"
            table.add_row(
                r.table, f"{r.inserted}/{r.expected}", f"[{style}]{r.status}[/{style}]", r.error or ""
            )
        console.print(table)

    mismatched = [v for v in verification if not v.match]
    if mismatched:
        table = Table(title="Row count mismatches", header_style="bold")
        table.add_column("Table")
        table.add_column("Expected", justify="right")
        table.add_column("Actual", justify="right")
        for v in mismatched:
            table.add_row(v.table, str(v.expected), str(v.actual))
        console.print(table)

    inserted = sum(r.inserted for r in results)
    console.print(
        f"Restored {len(results)} tables, {inserted} rows "
        f"({len(problems)} with errors, {len(mismatched)} count mismatches)"
    )


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_export(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    adapter = _open_adapter(args)
    try:
        with console.status("Exporting tables..."):
            snapshot = await export_snapshot(
                adapter,
                DEFAULT_REGISTRY,
                created_by=args.created_by or getpass.getuser(),
                include_messaging=args.include_whatsapp,
                include_sessions=args.include_auth,
                settings=settings,
            )
    finally:
        await adapter.close()

    path = write_snapshot(snapshot, args.output)
    console.print(
        f"[bold green]v[/bold green] Exported {snapshot.meta.table_count} tables, "
        f"{snapshot.meta.total_rows} rows"
    )
    console.print(f"  File: [cyan]{path}[/cyan]")
    return 0


async def _restore_incremental(
    adapter: RowClient,
    document: dict,
    protected_id: str | None,
    settings: BackupSettings,
) -> ImportOutcome:
    """Drive init/table/finalize locally, one table per call."""
    tables = document["tables"]
    progress = ProgressTracker()
    jobs = ImportJobStore()

    init = await init_import(
        adapter,
        DEFAULT_REGISTRY,
        meta=document.get("_meta"),
        table_list=list(tables),
        protected_id=protected_id,
        jobs=jobs,
        settings=settings,
        progress=progress,
    )
    job = jobs.get(init.job_id)
    total_steps = init.tables_total * 2 + 2

    for index, table in enumerate(t for t in DEFAULT_REGISTRY.all_tables() if t in tables):
        rows = tables[table]
        if not isinstance(rows, list):
            continue
        console.print(f"  {table} ({len(rows)} rows)", style="dim")
        hint = ProgressHint(
            progress=percent(init.tables_total + index + 1, total_steps),
            tables_completed=index + 1,
            tables_total=init.tables_total,
        )
        await import_table(
            adapter,
            DEFAULT_REGISTRY,
            table=table,
            rows=rows,
            progress_hint=hint,
            job=job,
            settings=settings,
            progress=progress,
        )

    manifest = {t: len(r) for t, r in tables.items() if isinstance(r, list) and r}
    results = list(job.results)
    final = await finalize_import(
        adapter,
        DEFAULT_REGISTRY,
        table_manifest=manifest,
        job=job,
        jobs=jobs,
        settings=settings,
        progress=progress,
    )
    return ImportOutcome(
        success=all(r.status != "error" for r in results),
        results=results,
        verification=final.verification,
    )


async def _async_restore(args: argparse.Namespace) -> int:
    settings = _load_settings(args)
    path = Path(args.snapshot)
    if not path.exists():
        console.print(f"[red]Error: Snapshot file not found: {path}[/red]")
        return 1

    try:
        document = parse_snapshot_text(path.read_bytes())
    except BackupError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    report = validate_snapshot(document, DEFAULT_REGISTRY, settings=settings)
    _print_validation(report)
    if not report.valid:
        return 1

    adapter = _open_adapter(args)
    try:
        if not args.yes:
            console.print()
            console.print(
                "[bold yellow]WARNING[/bold yellow] Every table in the snapshot "
                "will be wiped and replaced."
            )
            if not args.protect_user_id:
                console.print("[yellow]No --protect-user-id given: no account is kept.[/yellow]")
            if not Confirm.ask("Continue?", console=console, default=False):
                console.print("Cancelled.")
                return 0

        if args.incremental:
            outcome = await _restore_incremental(
                adapter, document, args.protect_user_id, settings
            )
        else:
            with console.status("Restoring..."):
                outcome = await import_snapshot(
                    adapter,
                    document,
                    DEFAULT_REGISTRY,
                    protected_id=args.protect_user_id,
                    settings=settings,
                )
    except BackupError as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return 1
    finally:
        await adapter.close()

    _print_import(outcome.results, outcome.verification)
    return 0 if outcome.success else 1


async def _async_check(args: argparse.Namespace) -> int:
    adapter = _open_adapter(args)
    try:
        reachable = await adapter.count(DEFAULT_REGISTRY.all_tables()[0])
        if reachable.error:
            console.print(f"[bold red]x[/bold red] {reachable.error}")
            return 1
        console.print("[bold green]v[/bold green] Connected")

        problems = await check_circular_fk_nullability(adapter, DEFAULT_REGISTRY)
    finally:
        await adapter.close()

    if problems:
        console.print("[bold red]x[/bold red] Circular FK columns that cannot be nulled:")
        for problem in problems:
            console.print(f"  - {problem}")
        return 1

    console.print(
        f"[bold green]v[/bold green] All {len(DEFAULT_REGISTRY.circular_fks)} "
        "circular FK columns are nullable"
    )
    return 0


# ============================================================================
# Sync command wrappers
# ============================================================================


def cmd_profiles(args: argparse.Namespace) -> int:
    """List available profiles from backup.toml.

    Reads only local TOML config -- no database calls.
    """
    try:
        config = load_config(_config_path(args))
    except FileNotFoundError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1

    current = read_profile_lock()

    table = Table(title="Database Profiles", show_header=True, header_style="bold")
    table.add_column("", width=2)
    table.add_column("Profile")
    table.add_column("Provider")
    table.add_column("Description")

    for name, profile in config.profiles.items():
        marker = "[bold green]*[/bold green]" if name == current else " "
        table.add_row(
            marker,
            f"[bold cyan]{name}[/bold cyan]" if name == current else name,
            profile.provider,
            profile.description or "",
        )

    console.print(table)
    if current:
        console.print("\n[bold green]*[/bold green] = current profile")
    return 0


def cmd_use(args: argparse.Namespace) -> int:
    """Write the ``.db-profile`` lock file after checking the name."""
    try:
        name, _ = get_active_profile(args.name, config_path=_config_path(args))
    except (FileNotFoundError, ProfileNotFoundError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1
    write_profile_lock(name)
    console.print(f"[bold green]v[/bold green] Using profile [bold cyan]{name}[/bold cyan]")
    return 0


def cmd_export(args: argparse.Namespace) -> int:
    return asyncio.run(_async_export(args))


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate a snapshot file.

    Offline: reads only the file.  ``--quick`` skips the checksum checks.
    """
    result = validate_snapshot_file(
        args.snapshot,
        DEFAULT_REGISTRY,
        settings=_load_settings(args),
        verify_checksums=not args.quick,
    )
    _print_validation(result)
    return 0 if result.valid else 1


def cmd_restore(args: argparse.Namespace) -> int:
    return asyncio.run(_async_restore(args))


def cmd_check(args: argparse.Namespace) -> int:
    return asyncio.run(_async_check(args))


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the HTTP API with uvicorn.

    Requests authenticate with ``Authorization: Bearer <token>``; the
    token comes from ``--token`` or ``<PREFIX>BACKUP_API_TOKEN``.
    """
    import uvicorn

    from store_backup.api import BearerTokenSessionProvider, create_app

    token = args.token or os.environ.get(f"{args.env_prefix}BACKUP_API_TOKEN")
    if not token:
        console.print(
            f"[red]Error: no API token. Pass --token or set "
            f"{args.env_prefix}BACKUP_API_TOKEN.[/red]"
        )
        return 1

    adapter = _open_adapter(args)
    app = create_app(
        adapter,
        BearerTokenSessionProvider(token, default_email=args.admin_email),
        settings=_load_settings(args),
    )
    uvicorn.run(app, host=args.host, port=args.port, log_config=None)
    return 0


# ============================================================================
# Main entry point
# ============================================================================


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="store-backup",
        description="Snapshot export, validation and restore for the store database",
    )
    parser.add_argument(
        "--env-prefix",
        default="",
        help=(
            "Prefix for environment variable lookup "
            "(e.g., --env-prefix SHOP_ reads SHOP_DB_PROFILE)"
        ),
    )
    parser.add_argument("--profile", help="Profile to use instead of the active one")
    parser.add_argument("--config", help="Path to backup.toml (default: ./backup.toml)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_profiles = subparsers.add_parser("profiles", help="List available profiles")
    p_profiles.set_defaults(func=cmd_profiles)

    p_use = subparsers.add_parser("use", help="Make a profile the default for this directory")
    p_use.add_argument("name", help="Profile name from backup.toml")
    p_use.set_defaults(func=cmd_use)

    p_export = subparsers.add_parser("export", help="Export every table to a snapshot file")
    p_export.add_argument("--output", "-o", help="Output file (default: ./backups/<name>.json)")
    p_export.add_argument(
        "--include-whatsapp", action="store_true", help="Include the messaging tables"
    )
    p_export.add_argument(
        "--include-auth", action="store_true", help="Include session and account tables"
    )
    p_export.add_argument("--created-by", help="Identity recorded in the snapshot")
    p_export.set_defaults(func=cmd_export)

    p_validate = subparsers.add_parser("validate", help="Validate a snapshot file")
    p_validate.add_argument("snapshot", help="Path to the snapshot JSON file")
    p_validate.add_argument(
        "--quick", action="store_true", help="Skip checksum verification"
    )
    p_validate.set_defaults(func=cmd_validate)

    p_restore = subparsers.add_parser(
        "restore", help="Replace the database contents with a snapshot"
    )
    p_restore.add_argument("snapshot", help="Path to the snapshot JSON file")
    p_restore.add_argument(
        "--incremental",
        action="store_true",
        help="Restore one table per step (init, table, finalize)",
    )
    p_restore.add_argument(
        "--protect-user-id",
        help="auth_users.id whose account rows survive the restore",
    )
    p_restore.add_argument("--yes", "-y", action="store_true", help="Skip confirmation")
    p_restore.set_defaults(func=cmd_restore)

    p_check = subparsers.add_parser(
        "check", help="Check connectivity and circular FK nullability"
    )
    p_check.set_defaults(func=cmd_check)

    p_serve = subparsers.add_parser("serve", help="Run the backup HTTP API")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8000)
    p_serve.add_argument("--token", help="Shared bearer token for API requests")
    p_serve.add_argument(
        "--admin-email", help="Acting user when requests send no X-User-Email header"
    )
    p_serve.set_defaults(func=cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = _build_parser().parse_args(argv)
    _setup_logging(args.verbose)
    try:
        return args.func(args)
    except (FileNotFoundError, ProfileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1


if __name__ == "__main__":
    sys.exit(main())
