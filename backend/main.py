"""FastAPI application entry point."""

from __future__ import annotations

import functools
import logging
import sys
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from backend.api.health import router as health_router
from backend.api.settings import router as settings_router
from backend.api.sync import router as sync_router
from backend.api.vaults import router as vaults_router
from backend.config import Settings
from backend.database import create_engine
from backend.exceptions import (
    ConfigurationError,
    InternalServerError,
    RemoteApiError,
    SyncConflictError,
    VaultNotFoundError,
)
from backend.models.base import Base
from backend.remote.client import RemarkableClient
from backend.services.scheduler import SyncScheduler
from backend.services.sync_service import SyncOrchestrator
from backend.services.sync_worker import SyncWorker

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Callable

    import httpx

    from backend.remote.base import DocumentSource

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _ensure_sqlite_dir(database_url: str) -> None:
    if database_url.startswith("sqlite"):
        db_path = database_url.split("///", 1)[-1] if "///" in database_url else None
        if db_path and db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)


async def init_app_state(
    app: FastAPI,
    settings: Settings,
    client_factory: Callable[[str], DocumentSource] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> None:
    """Create the database schema and attach engine, worker, and orchestrator to the app.

    ``transport`` replaces the network layer of every reMarkable Cloud client
    the app builds.
    """
    app.state.started_at = time.monotonic()
    engine, session_factory = create_engine(settings)
    app.state.engine = engine
    app.state.session_factory = session_factory

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    app.state.remote_transport = transport
    if client_factory is None:
        client_factory = functools.partial(
            RemarkableClient.from_settings, settings, transport=transport
        )

    worker = SyncWorker()
    app.state.sync_worker = worker
    app.state.sync_orchestrator = SyncOrchestrator(
        session_factory=session_factory,
        client_factory=client_factory,
        worker=worker,
        secret_key=settings.secret_key,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    settings.validate_runtime_security()
    _configure_logging(settings.debug)
    logger.info("Starting reMarkidian (debug=%s)", settings.debug)

    _ensure_sqlite_dir(settings.database_url)

    try:
        await init_app_state(app, settings)
    except Exception as exc:
        logger.critical(
            "Failed to initialize database: %s. Check database path and permissions.", exc
        )
        raise

    scheduler: SyncScheduler | None = None
    if settings.sync_interval_minutes > 0:
        scheduler = SyncScheduler(
            app.state.sync_orchestrator, interval_seconds=settings.sync_interval_minutes * 60
        )
        scheduler.start()
    app.state.sync_scheduler = scheduler

    yield

    if scheduler is not None:
        try:
            await scheduler.stop()
        except Exception as exc:
            logger.error("Error during scheduler shutdown: %s", exc, exc_info=True)

    try:
        await app.state.sync_worker.drain()
    except Exception as exc:
        logger.error("Error while waiting for running syncs: %s", exc, exc_info=True)

    try:
        await app.state.engine.dispose()
    except Exception as exc:
        logger.error("Error during engine disposal: %s", exc, exc_info=True)

    logger.info("reMarkidian stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    docs_enabled = settings.debug or settings.expose_docs

    app = FastAPI(
        title="reMarkidian",
        description="Mirror reMarkable Cloud documents into local vaults",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
    )
    app.state.settings = settings

    cors_origins = (
        settings.cors_origins
        if settings.cors_origins
        else (["http://localhost:3000", "http://localhost:8000"] if settings.debug else [])
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(vaults_router)
    app.include_router(sync_router)
    app.include_router(settings_router)

    # Global exception handlers: safety net for unhandled exceptions

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = []
        for err in exc.errors():
            loc = err.get("loc", ())
            field = str(loc[-1]) if loc else "unknown"
            errors.append({"field": field, "message": err.get("msg", "Invalid value")})
        logger.warning(
            "RequestValidationError in %s %s: %s",
            request.method,
            request.url.path,
            errors,
        )
        return JSONResponse(status_code=422, content={"detail": errors})

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(
        request: Request, exc: ConfigurationError
    ) -> JSONResponse:
        logger.warning("ConfigurationError in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(VaultNotFoundError)
    async def vault_not_found_handler(request: Request, exc: VaultNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": "Vault not found"})

    @app.exception_handler(SyncConflictError)
    async def sync_conflict_handler(request: Request, exc: SyncConflictError) -> JSONResponse:
        logger.info("Rejected sync start for vault %d: already in progress", exc.vault_id)
        return JSONResponse(
            status_code=409,
            content={"detail": "Sync already in progress for this vault"},
        )

    @app.exception_handler(RemoteApiError)
    async def remote_api_error_handler(request: Request, exc: RemoteApiError) -> JSONResponse:
        logger.error("RemoteApiError in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=502,
            content={"detail": "reMarkable Cloud request failed"},
        )

    @app.exception_handler(InternalServerError)
    async def internal_server_error_handler(
        request: Request, exc: InternalServerError
    ) -> JSONResponse:
        logger.error(
            "InternalServerError in %s %s: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.error("ValueError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        message = str(exc) or "Invalid value"
        return JSONResponse(
            status_code=422,
            content={"detail": message},
        )

    @app.exception_handler(TypeError)
    async def type_error_handler(request: Request, exc: TypeError) -> JSONResponse:
        logger.error(
            "[BUG] TypeError in %s %s: %s",
            request.method,
            request.url.path,
            exc,
            exc_info=exc,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    @app.exception_handler(OperationalError)
    async def operational_error_handler(request: Request, exc: OperationalError) -> JSONResponse:
        logger.error(
            "OperationalError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=503,
            content={"detail": "Database temporarily unavailable"},
        )

    return app


app = create_app()


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "backend.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
