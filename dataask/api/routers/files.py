"""
File upload, preview and import endpoints.
"""
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, Query, Request, UploadFile
from pydantic import ValidationError as PydanticValidationError
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile as StarletteUploadFile

from dataask.api.dependencies import (
    get_bulk_importer,
    get_connection_manager,
    get_progress_registry,
    get_scratch_store,
    get_settings,
)
from dataask.api.schemas.shared import (
    CancelImportResponse,
    DiscardUploadResponse,
    FilePreview,
    ImportJob,
    ImportRequest,
    ImportStartResponse,
    validate_table_name,
)
from dataask.core.config import Settings
from dataask.core.errors import ValidationError
from dataask.db.connections import ConnectionManager
from dataask.domain.imports.bulk_importer import BulkImporter
from dataask.domain.imports.jobs import ImportProgressRegistry
from dataask.domain.imports.orchestrator import (
    PreparedImport,
    check_target_table,
    prepare_import,
    preview_upload,
    request_from_preview,
)
from dataask.domain.imports.processors.tabular_reader import detect_file_type
from dataask.domain.uploads.scratch import ScratchFileStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/files", tags=["files"])


def format_validation_errors(exc: PydanticValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg')}" if location else error.get("msg", ""))
    return "; ".join(parts)


def _store_and_preview(
    upload: StarletteUploadFile,
    scratch: ScratchFileStore,
    settings: Settings,
    sheet_name: Optional[str],
) -> FilePreview:
    file_name = upload.filename or ""
    detect_file_type(file_name)
    scratch.sweep_expired()
    path = scratch.save(upload.file, file_name)
    try:
        return preview_upload(path, file_name, settings, sheet_name=sheet_name)
    except Exception:
        scratch.discard(path)
        raise


@router.post("/upload", response_model=FilePreview)
def upload_file(
    file: UploadFile = File(...),
    sheetName: Optional[str] = Form(None),
    scratch: ScratchFileStore = Depends(get_scratch_store),
    settings: Settings = Depends(get_settings),
):
    """
    Upload a CSV or Excel file and return its preview.

    The file is kept in the scratch store; its ``tempFilePath`` is what a later
    ``POST /api/files/import`` refers to.
    """
    preview = _store_and_preview(file, scratch, settings, sheetName)
    logger.info("Previewed upload %s -> %s", preview.filename, preview.temp_file_path)
    return preview


def _start_one_shot(
    upload: StarletteUploadFile,
    raw_table_name: Optional[str],
    connection_id: Optional[str],
    mode: str,
    sheet_name: Optional[str],
    *,
    connections: ConnectionManager,
    registry: ImportProgressRegistry,
    scratch: ScratchFileStore,
    settings: Settings,
) -> PreparedImport:
    try:
        table_name = validate_table_name(raw_table_name or "")
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    if mode not in ("create", "append"):
        raise ValidationError("mode must be 'create' or 'append'")

    # Collision check before any parsing work.
    connection = connections.get(connection_id) if connection_id else None
    check_target_table(connection, table_name, mode, [])

    preview = _store_and_preview(upload, scratch, settings, sheet_name)
    try:
        request = request_from_preview(preview, table_name, connection_id=connection_id, mode=mode)
        return prepare_import(
            request,
            connections=connections,
            registry=registry,
            scratch=scratch,
            total_rows=preview.row_count,
        )
    except Exception:
        scratch.discard(preview.temp_file_path)
        raise


@router.post("/import", response_model=ImportStartResponse)
async def import_file(
    request: Request,
    background_tasks: BackgroundTasks,
    connections: ConnectionManager = Depends(get_connection_manager),
    registry: ImportProgressRegistry = Depends(get_progress_registry),
    scratch: ScratchFileStore = Depends(get_scratch_store),
    importer: BulkImporter = Depends(get_bulk_importer),
    settings: Settings = Depends(get_settings),
):
    """
    Start an import and return immediately with its ``importId``.

    Accepts either a multipart form (``file`` + ``tableName``) for a one-shot
    import with inferred types, or a JSON body that commits a previous upload
    with user-confirmed columns. Validation failures answer synchronously;
    anything that goes wrong later is reported on the import job.
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data"):
        form = await request.form()
        upload = form.get("file")
        if not isinstance(upload, StarletteUploadFile):
            raise ValidationError("A file is required")
        prepared = await run_in_threadpool(
            _start_one_shot,
            upload,
            form.get("tableName"),
            form.get("connectionId") or None,
            form.get("mode") or "create",
            form.get("sheetName") or None,
            connections=connections,
            registry=registry,
            scratch=scratch,
            settings=settings,
        )
    else:
        try:
            payload = await request.json()
        except ValueError as exc:
            raise ValidationError("Request body must be JSON or multipart form data") from exc
        try:
            import_request = ImportRequest.model_validate(payload)
        except PydanticValidationError as exc:
            raise ValidationError(format_validation_errors(exc)) from exc
        prepared = await run_in_threadpool(
            prepare_import,
            import_request,
            connections=connections,
            registry=registry,
            scratch=scratch,
        )

    background_tasks.add_task(importer.run, prepared.plan)
    return prepared.response


@router.get("/import-progress/{import_id}", response_model=ImportJob)
def get_import_progress(
    import_id: str,
    registry: ImportProgressRegistry = Depends(get_progress_registry),
):
    """Current state of an import; an unknown id answers 404 and means the job is gone."""
    return registry.require(import_id)


@router.post("/import/{import_id}/cancel", response_model=CancelImportResponse)
def cancel_import(
    import_id: str,
    registry: ImportProgressRegistry = Depends(get_progress_registry),
):
    job = registry.request_cancel(import_id)
    return CancelImportResponse(
        import_id=job.import_id,
        cancel_requested=not job.is_terminal,
        status=job.status,
    )


@router.delete("/uploads", response_model=DiscardUploadResponse)
def discard_upload(
    tempFilePath: str = Query(...),
    scratch: ScratchFileStore = Depends(get_scratch_store),
):
    """Delete a previewed upload that will not be imported."""
    deleted = scratch.discard(tempFilePath)
    return DiscardUploadResponse(temp_file_path=tempFilePath, deleted=deleted)
