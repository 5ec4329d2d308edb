"""
FastAPI application entry point.

``create_app`` builds an application with its own job registry, connection
registry and upload store on ``app.state``; the module-level ``app`` is the
instance served by uvicorn.
"""
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.routers import db, files
from .core.config import Settings, settings as default_settings
from .core.errors import DataAskError
from .core.logging_config import configure_logging
from .db.connections import ConnectionManager
from .domain.imports.jobs import ImportProgressRegistry
from .domain.imports.orchestrator import build_importer
from .domain.uploads.scratch import ScratchFileStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create storage directories on startup and release engines on shutdown."""
    config: Settings = app.state.settings
    os.makedirs(config.data_dir, exist_ok=True)
    app.state.scratch_store.ensure_root()
    swept = app.state.scratch_store.sweep_expired()
    logger.info(
        "DataAsk API ready (data_dir=%s, uploads=%s, %d stale upload(s) removed)",
        config.data_dir, config.upload_scratch_dir, swept,
    )

    yield  # Application runs here

    app.state.connections.dispose_all()


async def handle_dataask_error(request: Request, exc: DataAskError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def handle_request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return JSONResponse(
        status_code=400,
        content={"error": "; ".join(messages) or "Invalid request", "type": "validation_error"},
    )


def create_app(config: Optional[Settings] = None) -> FastAPI:
    config = config or default_settings
    configure_logging(config.log_level, config.log_levels)

    app = FastAPI(
        title="DataAsk API",
        version="1.0.0",
        description="Import CSV and Excel files into SQLite and explore them with read-only SQL",
        lifespan=lifespan,
    )

    registry = ImportProgressRegistry(retention_seconds=config.import_job_retention_seconds)
    app.state.settings = config
    app.state.progress_registry = registry
    app.state.connections = ConnectionManager(config.data_dir)
    app.state.scratch_store = ScratchFileStore(
        config.upload_scratch_dir,
        max_bytes=config.upload_max_file_size_mb * 1024 * 1024,
        ttl_seconds=config.upload_ttl_seconds,
    )
    app.state.bulk_importer = build_importer(registry, config)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.allowed_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(DataAskError, handle_dataask_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)

    app.include_router(files.router)
    app.include_router(db.router)

    @app.get("/")
    async def root():
        """Root endpoint returning API information."""
        return {"message": "DataAsk API", "version": "1.0.0"}

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "service": "dataask-api",
        }

    return app


app = create_app()
