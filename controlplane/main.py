"""FastAPI application entry point."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from controlplane import __version__
from controlplane.api.health import router as health_router
from controlplane.api.internal import router as internal_router
from controlplane.api.mirrors import router as mirrors_router
from controlplane.config import Settings
from controlplane.database import create_engine, create_schema
from controlplane.exceptions import (
    CacheWriteError,
    InternalServerError,
    ManifestNotFoundError,
    MirrorChangedError,
    MirrorNotFoundError,
    MissingCredentialsError,
    ProviderError,
    SyncInProgressError,
)
from controlplane.storage.blob_store import LocalBlobStore

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

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
    logging.getLogger("httpx").setLevel(logging.INFO if debug else logging.WARNING)


def create_http_client(settings: Settings) -> httpx.AsyncClient:
    """Create the shared outbound client for provider and sandbox calls."""
    return httpx.AsyncClient(timeout=httpx.Timeout(settings.provider_timeout_seconds))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    settings.validate_runtime_security()
    _configure_logging(settings.debug)
    logger.info("Starting controlplane (debug=%s)", settings.debug)

    try:
        engine, session_factory = create_engine(settings)
        app.state.engine = engine
        app.state.session_factory = session_factory
    except Exception as exc:
        logger.critical(
            "Failed to initialize database: %s. Check database path and permissions.", exc
        )
        raise

    try:
        await create_schema(engine)
    except Exception as exc:
        logger.critical("Failed to create database schema: %s.", exc)
        raise

    store = LocalBlobStore(settings.cache_dir)
    try:
        store.ensure_dirs()
    except Exception as exc:
        logger.critical("Failed to initialize mirror cache at %s: %s.", settings.cache_dir, exc)
        raise
    app.state.blob_store = store

    http_client = create_http_client(settings)
    app.state.http_client = http_client

    yield

    try:
        await http_client.aclose()
    except Exception as exc:
        logger.error("Error during HTTP client shutdown: %s", exc, exc_info=True)

    try:
        await engine.dispose()
    except Exception as exc:
        logger.error("Error during engine disposal: %s", exc, exc_info=True)

    logger.info("Controlplane stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    docs_enabled = settings.debug or settings.expose_docs

    app = FastAPI(
        title="Mirror Controlplane",
        description="Mirrors remote storage roots into a content cache for workspaces",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
    )
    app.state.settings = settings

    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.include_router(health_router)
    app.include_router(mirrors_router)
    app.include_router(internal_router)

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

    @app.exception_handler(MirrorNotFoundError)
    async def mirror_not_found_handler(
        request: Request, exc: MirrorNotFoundError
    ) -> JSONResponse:
        logger.info("MirrorNotFoundError in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=404, content={"detail": "Mirror not found"})

    @app.exception_handler(ManifestNotFoundError)
    async def manifest_not_found_handler(
        request: Request, exc: ManifestNotFoundError
    ) -> JSONResponse:
        logger.info("ManifestNotFoundError in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=404, content={"detail": "Manifest not found"})

    @app.exception_handler(SyncInProgressError)
    async def sync_in_progress_handler(
        request: Request, exc: SyncInProgressError
    ) -> JSONResponse:
        logger.warning("SyncInProgressError in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=409, content={"detail": "Sync already in progress"})

    @app.exception_handler(MirrorChangedError)
    async def mirror_changed_handler(request: Request, exc: MirrorChangedError) -> JSONResponse:
        logger.warning("MirrorChangedError in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=409, content={"detail": "Mirror changed during sync"})

    @app.exception_handler(MissingCredentialsError)
    async def missing_credentials_handler(
        request: Request, exc: MissingCredentialsError
    ) -> JSONResponse:
        logger.warning(
            "MissingCredentialsError in %s %s: %s", request.method, request.url.path, exc
        )
        return JSONResponse(
            status_code=400,
            content={"detail": "Provider credentials not configured"},
        )

    @app.exception_handler(ProviderError)
    async def provider_error_handler(request: Request, exc: ProviderError) -> JSONResponse:
        logger.error(
            "ProviderError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(status_code=502, content={"detail": "Provider request failed"})

    @app.exception_handler(httpx.HTTPError)
    async def http_error_handler(request: Request, exc: httpx.HTTPError) -> JSONResponse:
        logger.error(
            "HTTPError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(status_code=502, content={"detail": "Provider request failed"})

    @app.exception_handler(CacheWriteError)
    async def cache_write_error_handler(request: Request, exc: CacheWriteError) -> JSONResponse:
        logger.error(
            "CacheWriteError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(status_code=500, content={"detail": "Storage operation failed"})

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

    @app.exception_handler(OSError)
    async def os_error_handler(request: Request, exc: OSError) -> JSONResponse:
        if isinstance(exc, (ConnectionError, TimeoutError)):
            raise exc
        logger.error("OSError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Storage operation failed"},
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


def main() -> None:
    """Run the controlplane with uvicorn."""
    import uvicorn

    settings = Settings()
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
