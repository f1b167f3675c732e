"""Incremental restore: init, one call per table, finalize.

Long restores outlive a single request's time budget, so the bulk
import is split into independent calls:

* ``init_import`` validates the snapshot header, wipes the tables and
  opens an ``ImportJob``.
* ``import_table`` inserts one table and returns its circular FK carry.
* ``finalize_import`` replays the carry and verifies row counts.

The job record lives in an ``ImportJobStore`` owned by the server and
accumulates the protected id, cursor and carry.  Callers may still send
the carry and protected id back explicitly on every call; explicit
values take precedence over the stored ones, so a client that keeps its
own state and a client that only passes the job id both work.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from store_backup.adapters.base import RowClient
from store_backup.backup.errors import ImportJobNotFoundError, SnapshotValidationError
from store_backup.backup.finalizer import replay_circular_fks, verify_row_counts
from store_backup.backup.importer import ProtectionMode, insert_table, run_delete_phase
from store_backup.backup.models import (
    CircularUpdate,
    TableOutcome,
    TableRegistry,
    VerificationEntry,
)
from store_backup.backup.progress import ProgressTracker, percent
from store_backup.config.models import BackupSettings

logger = logging.getLogger(__name__)


class ImportJob(BaseModel):
    """Server-side state of one incremental restore."""

    job_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    protected_id: str | None = None
    tables_total: int = 0
    tables_completed: int = 0
    phase: Literal["inserting", "done"] = "inserting"
    results: list[TableOutcome] = Field(default_factory=list)
    circular_updates: list[CircularUpdate] = Field(default_factory=list)
    claim_token: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ImportJobStore:
    """In-process registry of open incremental restores."""

    def __init__(self) -> None:
        self._jobs: dict[str, ImportJob] = {}

    def create(self, **fields: Any) -> ImportJob:
        job = ImportJob(**fields)
        self._jobs[job.job_id] = job
        return job

    def get(self, job_id: str) -> ImportJob:
        try:
            return self._jobs[job_id]
        except KeyError:
            raise ImportJobNotFoundError(f"Unknown import job: {job_id}") from None

    def current(self) -> ImportJob | None:
        """Most recently opened job that is not finished."""
        open_jobs = [job for job in self._jobs.values() if job.phase != "done"]
        return open_jobs[-1] if open_jobs else None

    def discard(self, job_id: str) -> None:
        self._jobs.pop(job_id, None)

    def discard_open(self) -> list[str]:
        """Drop every unfinished job and return their ids."""
        stale = [job_id for job_id, job in self._jobs.items() if job.phase != "done"]
        for job_id in stale:
            del self._jobs[job_id]
        return stale

    def __len__(self) -> int:
        return len(self._jobs)


class ProgressHint(BaseModel):
    """Progress values computed by the caller for a table call."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    progress: int | None = None
    tables_completed: int | None = None
    tables_total: int | None = None


class InitResult(BaseModel):
    job_id: str
    protected_id: str | None
    tables_total: int


class TableImportResult(TableOutcome):
    circular_originals: dict[str, Any] | None = Field(
        default=None, serialization_alias="circularOriginals"
    )


class FinalizeResult(BaseModel):
    success: bool = True
    verification: list[VerificationEntry] = Field(default_factory=list)


def _merge_updates(
    stored: list[CircularUpdate], provided: list[CircularUpdate]
) -> list[CircularUpdate]:
    merged: dict[str, dict[str, Any]] = {}
    for update in [*stored, *provided]:
        merged.setdefault(update.table, {}).update(update.entries)
    return [CircularUpdate(table=t, entries=e) for t, e in merged.items() if e]


async def init_import(
    adapter: RowClient,
    registry: TableRegistry,
    *,
    meta: Any,
    table_list: Any,
    protected_id: str | None,
    jobs: ImportJobStore,
    settings: BackupSettings | None = None,
    progress: ProgressTracker | None = None,
) -> InitResult:
    """Validate the snapshot header, wipe the tables and open a job.

    ``user_profiles`` rows are spared by their ``user_id`` column here
    (see ``ProtectionMode``).

    Raises:
        SnapshotValidationError: If ``meta`` does not carry this system's
            format or ``table_list`` is not a list.
        OperationInProgressError: If another export/import is running.
    """
    settings = settings or BackupSettings()
    progress = progress or ProgressTracker()

    if not isinstance(meta, dict) or meta.get("format") != settings.format:
        raise SnapshotValidationError(["Snapshot format is not recognised"])
    if not isinstance(table_list, list):
        raise SnapshotValidationError(["A list of table names is required"])

    present = [t for t in registry.all_tables() if t in table_list]
    total_steps = len(present) * 2 + 2

    token = progress.claim("import")
    # Holding the claim means any other open job was abandoned
    for job_id in jobs.discard_open():
        logger.warning("Discarded abandoned import job %s", job_id)

    try:
        progress.set(
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
            mode=ProtectionMode.BY_USER_ID,
            progress=progress,
            total_steps=total_steps,
        )
    except Exception as e:
        logger.exception("Import init failed")
        progress.fail(str(e))
        progress.release(token)
        raise

    job = jobs.create(
        protected_id=protected_id,
        tables_total=len(present),
        claim_token=token,
    )
    logger.info("Opened import job %s (%d tables)", job.job_id, job.tables_total)
    return InitResult(job_id=job.job_id, protected_id=protected_id, tables_total=len(present))


async def import_table(
    adapter: RowClient,
    registry: TableRegistry,
    *,
    table: str,
    rows: list[dict[str, Any]],
    protected_id: str | None = None,
    progress_hint: ProgressHint | None = None,
    job: ImportJob | None = None,
    settings: BackupSettings | None = None,
    progress: ProgressTracker | None = None,
) -> TableImportResult:
    """Insert one table of an incremental restore.

    ``user_profiles`` rows are filtered by ``user_id``.  The table's
    circular FK carry is returned to the caller and, when a job is given,
    also stored on the job.

    Raises:
        ImportJobNotFoundError: If the job lost its claim on the tracker.
    """
    settings = settings or BackupSettings()
    progress = progress or ProgressTracker()
    if job is not None and job.claim_token and not progress.touch(job.claim_token):
        raise ImportJobNotFoundError(
            f"Import job {job.job_id} has expired; start the restore again"
        )
    if protected_id is None and job is not None:
        protected_id = job.protected_id

    progress.set(
        operation="import",
        phase=f"Importing {table} ({len(rows)} rows)...",
        current_table=table,
    )
    if progress_hint is not None:
        progress.set(**progress_hint.model_dump(exclude_none=True))

    outcome, carry = await insert_table(
        adapter,
        registry,
        table,
        rows,
        protected_id=protected_id,
        mode=ProtectionMode.BY_USER_ID,
        batch_size=settings.batch_insert_size,
    )

    if job is not None:
        job.results.append(outcome)
        job.tables_completed += 1
        if carry:
            job.circular_updates.append(CircularUpdate(table=table, entries=carry))
        if progress_hint is None or progress_hint.progress is None:
            progress.set(
                progress=percent(
                    job.tables_total + job.tables_completed, job.tables_total * 2 + 2
                ),
                tables_completed=job.tables_completed,
            )

    return TableImportResult(
        **outcome.model_dump(),
        circular_originals=carry or None,
    )


async def finalize_import(
    adapter: RowClient,
    registry: TableRegistry,
    *,
    circular_updates: list[CircularUpdate] | None = None,
    table_manifest: dict[str, int] | None = None,
    job: ImportJob | None = None,
    jobs: ImportJobStore | None = None,
    settings: BackupSettings | None = None,
    progress: ProgressTracker | None = None,
) -> FinalizeResult:
    """Replay circular FKs, verify counts and close the job.

    With an empty carry and manifest this only closes the job.
    """
    settings = settings or BackupSettings()
    progress = progress or ProgressTracker()

    stored = job.circular_updates if job is not None else []
    updates = _merge_updates(stored, circular_updates or [])

    try:
        progress.set(operation="import", phase="Restoring circular references...", progress=90)
        await replay_circular_fks(adapter, updates)

        progress.set(phase="Verifying row counts...", progress=95)
        verification = await verify_row_counts(adapter, table_manifest or {}, registry)

        progress.set(phase="Import completed", progress=100, current_table="")
    except Exception as e:
        logger.exception("Import finalize failed")
        progress.fail(str(e))
        raise
    finally:
        if job is not None:
            job.phase = "done"
            if job.claim_token:
                progress.release(job.claim_token)
            if jobs is not None:
                jobs.discard(job.job_id)

    progress.schedule_reset(settings.import_reset_delay)
    return FinalizeResult(success=True, verification=verification)
