"""
Import orchestration: everything that must happen before a background import starts.

All checks that can fail an import up front (table name, column list, table
collision, unreadable file) run here synchronously, so the HTTP call fails
with a descriptive error and no job is ever created for them.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from dataask.api.schemas.shared import (
    ColumnDescriptor,
    FilePreview,
    ImportRequest,
    ImportStartResponse,
)
from dataask.core.config import Settings
from dataask.core.errors import TableConflictError, ValidationError
from dataask.db.connections import ConnectionManager, SQLiteConnection
from dataask.db.introspection import get_table_columns, table_exists
from dataask.domain.imports.bulk_importer import BulkImporter, ImportPlan
from dataask.domain.imports.jobs import ImportProgressRegistry
from dataask.domain.imports.preview import build_file_preview
from dataask.domain.imports.processors.tabular_reader import TabularSource, open_tabular_source
from dataask.domain.uploads.scratch import ScratchFileStore

logger = logging.getLogger(__name__)


@dataclass
class PreparedImport:
    response: ImportStartResponse
    plan: ImportPlan


def build_importer(registry: ImportProgressRegistry, settings: Settings) -> BulkImporter:
    return BulkImporter(
        registry,
        batch_size=settings.import_batch_size,
        max_malformed_ratio=settings.import_max_malformed_ratio,
        max_variables=settings.sqlite_max_variables,
    )


def preview_upload(
    path: str,
    file_name: str,
    settings: Settings,
    sheet_name: Optional[str] = None,
) -> FilePreview:
    """Build the File Preview for an upload already stored at ``path``."""
    source = open_tabular_source(path, file_name, sheet_name=sheet_name)
    return build_file_preview(
        source,
        path,
        sample_rows=settings.import_sample_rows,
        preview_rows=settings.preview_rows,
        max_malformed_ratio=settings.import_max_malformed_ratio,
        filename=file_name,
    )


def _check_columns(columns: Sequence[ColumnDescriptor]) -> None:
    seen = set()
    duplicates = []
    for column in columns:
        key = column.name.strip().lower()
        if not key:
            raise ValidationError("Column names must not be blank")
        if key in seen:
            duplicates.append(column.name)
        seen.add(key)
    if duplicates:
        raise ValidationError(
            f"Duplicate column name(s): {', '.join(duplicates)}",
            details={"duplicate_columns": duplicates},
        )


def check_target_table(
    connection: Optional[SQLiteConnection],
    table_name: str,
    mode: str,
    columns: Sequence[ColumnDescriptor],
) -> None:
    if connection is None or not table_exists(connection.engine, table_name):
        return
    if mode != "append":
        raise TableConflictError(table_name)
    present = {column.name.lower() for column in get_table_columns(connection.engine, table_name)}
    missing = [column.name for column in columns if column.name.lower() not in present]
    if missing:
        raise ValidationError(
            f"Table '{table_name}' has no column(s) {', '.join(missing)}; cannot append.",
            details={"missing_columns": missing},
        )


def _check_headers(source: TabularSource, columns: Sequence[ColumnDescriptor]) -> None:
    with source.open() as stream:
        header_count = len(stream.headers)
    if header_count != len(columns):
        raise ValidationError(
            f"The file has {header_count} columns but {len(columns)} column definitions were sent."
        )


def prepare_import(
    request: ImportRequest,
    *,
    connections: ConnectionManager,
    registry: ImportProgressRegistry,
    scratch: ScratchFileStore,
    total_rows: Optional[int] = None,
) -> PreparedImport:
    """
    Validate an import request, register its job and return the plan to run.

    Order matters: the table collision check runs before the file is opened,
    and the job is registered only after every check passed. The upload stays
    leased until the plan's cleanup runs.
    """
    path = scratch.lease(request.temp_file_path)
    try:
        existing = connections.get(request.connection_id) if request.connection_id else None
        _check_columns(request.columns)
        check_target_table(existing, request.table_name, request.mode, request.columns)

        source = open_tabular_source(path, request.filename, sheet_name=request.sheet_name)
        _check_headers(source, request.columns)
        if total_rows is None:
            total_rows = source.count_rows()
        if total_rows == 0:
            raise ValidationError(f"'{request.filename}' has no data rows to import.")

        connection = existing or connections.create_import_database(request.table_name)
    except Exception:
        scratch.release(path, discard=False)
        raise

    columns = tuple(request.columns)
    job = registry.create(
        total_rows=total_rows,
        table_name=request.table_name,
        connection_id=connection.id,
    )
    plan = ImportPlan(
        import_id=job.import_id,
        connection=connection,
        table_name=request.table_name,
        columns=columns,
        source=source,
        total_rows=total_rows,
        mode=request.mode,
        cleanup=lambda: scratch.release(path),
    )
    logger.info(
        "Queued import %s: %s -> %s.%s (%d rows)",
        job.import_id, request.filename, connection.name, request.table_name, total_rows,
    )
    return PreparedImport(
        response=ImportStartResponse(
            connection_id=connection.id,
            import_id=job.import_id,
            row_count=total_rows,
            table_name=request.table_name,
        ),
        plan=plan,
    )


def request_from_preview(
    preview: FilePreview,
    table_name: str,
    *,
    connection_id: Optional[str] = None,
    mode: str = "create",
    columns: Optional[List[ColumnDescriptor]] = None,
) -> ImportRequest:
    """Turn a fresh preview into an import request that keeps the inferred types."""
    return ImportRequest(
        filename=preview.filename,
        table_name=table_name,
        columns=columns or preview.columns,
        temp_file_path=preview.temp_file_path,
        connection_id=connection_id,
        mode=mode,
        sheet_name=preview.sheet_name,
    )
