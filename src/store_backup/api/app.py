"""FastAPI application factory for the backup endpoints.

Every error leaves the API as ``{"error": "<message>"}`` with a matching
status code; validation failures also carry the individual ``errors``.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from store_backup.adapters.base import RowClient
from store_backup.api.auth import SessionProvider
from store_backup.api.routes import router
from store_backup.api.services import BackupServices
from store_backup.backup.errors import (
    AuthorizationError,
    ImportJobNotFoundError,
    OperationInProgressError,
    SnapshotValidationError,
)
from store_backup.backup.incremental import ImportJobStore
from store_backup.backup.models import TableRegistry
from store_backup.backup.progress import ProgressTracker
from store_backup.backup.registry import DEFAULT_REGISTRY
from store_backup.config.models import BackupSettings

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def http_error(_request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def request_invalid(_request: Request, exc: RequestValidationError):
        return _error(400, "Invalid request body", details=jsonable_encoder(exc.errors()))

    @app.exception_handler(AuthorizationError)
    async def not_authorized(_request: Request, exc: AuthorizationError):
        return _error(exc.status_code, str(exc))

    @app.exception_handler(SnapshotValidationError)
    async def snapshot_invalid(_request: Request, exc: SnapshotValidationError):
        return _error(400, str(exc), errors=exc.errors)

    @app.exception_handler(OperationInProgressError)
    async def busy(_request: Request, exc: OperationInProgressError):
        logger.info("Rejected concurrent backup operation: %s", exc)
        return _error(409, str(exc))

    @app.exception_handler(ImportJobNotFoundError)
    async def unknown_job(_request: Request, exc: ImportJobNotFoundError):
        return _error(404, str(exc))


def create_app(
    adapter: RowClient,
    session_provider: SessionProvider,
    *,
    registry: TableRegistry = DEFAULT_REGISTRY,
    settings: BackupSettings | None = None,
    progress: ProgressTracker | None = None,
    jobs: ImportJobStore | None = None,
) -> FastAPI:
    """Build the backup API around an existing row client.

    The adapter is closed when the application shuts down.

    Example:
        >>> adapter = await get_adapter("prod")
        >>> app = create_app(adapter, BearerTokenSessionProvider(token))
    """

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        await adapter.close()

    app = FastAPI(title="store-backup", lifespan=lifespan)
    app.state.backup = BackupServices(
        adapter=adapter,
        session_provider=session_provider,
        registry=registry,
        settings=settings or BackupSettings(),
        progress=progress or ProgressTracker(),
        jobs=jobs if jobs is not None else ImportJobStore(),
    )
    _register_error_handlers(app)
    app.include_router(router)
    return app
