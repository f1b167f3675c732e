"""
Backup API Router
=================

Endpoints under ``/api/backup``:

- POST /export: download a snapshot file
- POST /validate: check an uploaded snapshot without touching the database
- POST /import: restore an uploaded snapshot in one call
- POST /import/init, /import/table, /import/finalize: incremental restore
- GET /status: current progress (no auth)
"""

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from store_backup.api.auth import AdminContext, resolve_admin
from store_backup.api.services import BackupServices, get_services
from store_backup.backup.errors import BackupError
from store_backup.backup.exporter import dump_snapshot, export_snapshot, snapshot_filename
from store_backup.backup.importer import import_snapshot, parse_snapshot_text
from store_backup.backup.incremental import (
    ImportJob,
    ProgressHint,
    finalize_import,
    import_table,
    init_import,
)
from store_backup.backup.models import CircularUpdate
from store_backup.backup.validator import validate_snapshot_text

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/backup", tags=["backup"])


async def require_admin(
    request: Request, services: BackupServices = Depends(get_services)
) -> AdminContext:
    session = await services.session_provider(request)
    return await resolve_admin(services.adapter, session)


# ============================================================================
# Request bodies
# ============================================================================


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ExportRequest(_CamelModel):
    include_whatsapp: bool = False
    include_auth: bool = False


class ImportInitRequest(_CamelModel):
    meta: Any = Field(default=None, alias="_meta")
    table_list: Any = None


class ImportTableRequest(_CamelModel):
    table_name: str = Field(min_length=1)
    rows: list[dict[str, Any]]
    protect_user_id: str | None = None
    progress_info: ProgressHint | None = None
    job_id: str | None = None


class ImportFinalizeRequest(_CamelModel):
    circular_updates: list[CircularUpdate] = Field(default_factory=list)
    table_manifest: dict[str, int] = Field(default_factory=dict)
    job_id: str | None = None


def _find_job(services: BackupServices, job_id: str | None) -> ImportJob | None:
    if job_id:
        return services.jobs.get(job_id)
    return services.jobs.current()


async def _read_upload(file: UploadFile | None) -> bytes:
    if file is None:
        raise HTTPException(status_code=400, detail="No file was uploaded")
    return await file.read()


# ============================================================================
# Endpoints
# ============================================================================


@router.get("/status")
async def get_status(services: BackupServices = Depends(get_services)):
    """Current progress; safe to poll."""
    return services.progress.get().model_dump(by_alias=True)


@router.post("/export")
async def export_backup(
    request: Request,
    admin: AdminContext = Depends(require_admin),
    services: BackupServices = Depends(get_services),
):
    """Export every table and return the snapshot as a file download.

    A missing, unreadable or ill-typed JSON body means default options.
    """
    options = ExportRequest()
    raw = await request.body()
    if raw:
        try:
            body = json.loads(raw)
        except ValueError:
            body = None
        if isinstance(body, dict):
            try:
                options = ExportRequest.model_validate(body)
            except ValidationError:
                logger.info("Ignoring invalid export options: %s", body)

    async with services.progress.run("export"):
        try:
            snapshot = await export_snapshot(
                services.adapter,
                services.registry,
                created_by=admin.email,
                include_messaging=options.include_whatsapp,
                include_sessions=options.include_auth,
                settings=services.settings,
                progress=services.progress,
            )
        except Exception as e:
            logger.exception("Export failed")
            services.progress.fail(str(e))
            raise HTTPException(status_code=500, detail=f"Export failed: {e}") from e

    filename = snapshot_filename(snapshot)
    return Response(
        content=dump_snapshot(snapshot),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/validate")
async def validate_backup(
    file: UploadFile | None = File(None),
    _admin: AdminContext = Depends(require_admin),
    services: BackupServices = Depends(get_services),
):
    """Full validation (structure and checksums) of an uploaded snapshot."""
    raw = await _read_upload(file)
    result = validate_snapshot_text(
        raw, services.registry, settings=services.settings, verify_checksums=True
    )
    return result.model_dump()


@router.post("/import")
async def import_backup(
    file: UploadFile | None = File(None),
    admin: AdminContext = Depends(require_admin),
    services: BackupServices = Depends(get_services),
):
    """Replace the database contents with the uploaded snapshot."""
    raw = await _read_upload(file)
    document = parse_snapshot_text(raw)

    async with services.progress.run("import"):
        try:
            outcome = await import_snapshot(
                services.adapter,
                document,
                services.registry,
                protected_id=admin.protected_id,
                settings=services.settings,
                progress=services.progress,
            )
        except BackupError:
            raise
        except Exception as e:
            raise HTTPException(status_code=500, detail=f"Import failed: {e}") from e

    return outcome.model_dump()


@router.post("/import/init")
async def import_init(
    body: ImportInitRequest,
    admin: AdminContext = Depends(require_admin),
    services: BackupServices = Depends(get_services),
):
    """Wipe the snapshot's tables and open an incremental import job."""
    try:
        result = await init_import(
            services.adapter,
            services.registry,
            meta=body.meta,
            table_list=body.table_list,
            protected_id=admin.protected_id,
            jobs=services.jobs,
            settings=services.settings,
            progress=services.progress,
        )
    except BackupError:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Import init failed: {e}") from e

    return {
        "success": True,
        "jobId": result.job_id,
        "protectUserId": result.protected_id,
        "tablesTotal": result.tables_total,
    }


@router.post("/import/table")
async def import_one_table(
    body: ImportTableRequest,
    _admin: AdminContext = Depends(require_admin),
    services: BackupServices = Depends(get_services),
):
    """Insert one table's rows; returns the table's circular FK carry."""
    job = _find_job(services, body.job_id)
    try:
        result = await import_table(
            services.adapter,
            services.registry,
            table=body.table_name,
            rows=body.rows,
            protected_id=body.protect_user_id,
            progress_hint=body.progress_info,
            job=job,
            settings=services.settings,
            progress=services.progress,
        )
    except BackupError:
        raise
    except Exception as e:
        logger.exception("Import of table %s failed", body.table_name)
        raise HTTPException(
            status_code=500, detail=f"Import of {body.table_name} failed: {e}"
        ) from e

    return result.model_dump(by_alias=True)


@router.post("/import/finalize")
async def import_finalize(
    body: ImportFinalizeRequest,
    _admin: AdminContext = Depends(require_admin),
    services: BackupServices = Depends(get_services),
):
    """Replay circular FKs, verify row counts and close the job."""
    job = _find_job(services, body.job_id)
    try:
        result = await finalize_import(
            services.adapter,
            services.registry,
            circular_updates=body.circular_updates,
            table_manifest=body.table_manifest,
            job=job,
            jobs=services.jobs,
            settings=services.settings,
            progress=services.progress,
        )
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Import finalize failed: {e}") from e

    return result.model_dump()
