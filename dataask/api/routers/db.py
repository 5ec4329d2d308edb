"""
Database endpoints: SQLite connections, schema browsing, read-only queries and
column statistics.
"""
import logging

from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool

from dataask.api.dependencies import get_connection_manager, get_settings
from dataask.api.schemas.shared import (
    ColumnStatisticsRequest,
    ConnectionCreateRequest,
    ConnectionCreateResponse,
    ConnectionInfo,
    ConnectionsListResponse,
    DatabaseSchemaResponse,
    QueryRequest,
    QueryResult,
    TableColumnsResponse,
    TableMetadataResponse,
    TableRequest,
    VariableStatistics,
)
from dataask.core.config import Settings
from dataask.db.connections import ConnectionManager, SQLiteConnection
from dataask.db.introspection import (
    fetch_column_values,
    get_schema,
    get_table_columns,
    get_table_metadata,
    get_table_preview,
)
from dataask.domain.queries.validation import execute_read_only_query
from dataask.domain.statistics.summarizer import summarize_column

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/db", tags=["db"])


def _connection_info(connection: SQLiteConnection) -> ConnectionInfo:
    return ConnectionInfo(
        id=connection.id,
        name=connection.name,
        filename=connection.filename,
        created_at=connection.created_at,
    )


@router.post("/connections", response_model=ConnectionCreateResponse)
def create_connection(
    payload: ConnectionCreateRequest,
    connections: ConnectionManager = Depends(get_connection_manager),
):
    """Register an existing SQLite database file."""
    connection = connections.create_connection(payload.name, payload.filename)
    return ConnectionCreateResponse(connectionId=connection.id)


@router.get("/connections", response_model=ConnectionsListResponse)
def list_connections(connections: ConnectionManager = Depends(get_connection_manager)):
    return ConnectionsListResponse(
        connections=[_connection_info(connection) for connection in connections.list_connections()]
    )


@router.delete("/connections/{connection_id}")
def delete_connection(
    connection_id: str,
    connections: ConnectionManager = Depends(get_connection_manager),
):
    connections.delete_connection(connection_id)
    return {"success": True, "message": "Connection closed"}


@router.get("/connections/{connection_id}/schema", response_model=DatabaseSchemaResponse)
def get_connection_schema(
    connection_id: str,
    connections: ConnectionManager = Depends(get_connection_manager),
):
    connection = connections.get(connection_id)
    return DatabaseSchemaResponse(schema_=get_schema(connection.engine))


@router.post("/query", response_model=QueryResult)
def run_query(
    payload: QueryRequest,
    connections: ConnectionManager = Depends(get_connection_manager),
    settings: Settings = Depends(get_settings),
):
    """
    Execute a read-only SQL query.

    Only a single SELECT/WITH statement is accepted; results are capped at
    ``query_row_limit`` rows and flagged as ``truncated`` beyond that.
    """
    connection = connections.get(payload.connection_id)
    return execute_read_only_query(
        connection.engine,
        payload.sql,
        payload.params,
        row_limit=settings.query_row_limit,
    )


@router.post("/table-metadata", response_model=TableMetadataResponse)
def table_metadata(
    payload: TableRequest,
    connections: ConnectionManager = Depends(get_connection_manager),
):
    connection = connections.get(payload.connection_id)
    return get_table_metadata(connection.engine, payload.table_name)


@router.post("/table-columns", response_model=TableColumnsResponse)
def table_columns(
    payload: TableRequest,
    connections: ConnectionManager = Depends(get_connection_manager),
):
    connection = connections.get(payload.connection_id)
    return TableColumnsResponse(columns=get_table_columns(connection.engine, payload.table_name))


@router.post("/table-preview", response_model=QueryResult)
def table_preview(
    payload: TableRequest,
    connections: ConnectionManager = Depends(get_connection_manager),
    settings: Settings = Depends(get_settings),
):
    """First rows of a table; ``limit`` defaults to 100 and is capped at 1000."""
    connection = connections.get(payload.connection_id)
    limit = min(payload.limit or settings.table_preview_default_limit, settings.table_preview_max_limit)
    preview = get_table_preview(connection.engine, payload.table_name, limit)
    return QueryResult(
        rows=preview["rows"],
        rowCount=preview["rowCount"],
        fields=preview["fields"],
        executionTime=0,
    )


@router.post("/column-statistics", response_model=VariableStatistics)
async def column_statistics(
    payload: ColumnStatisticsRequest,
    connections: ConnectionManager = Depends(get_connection_manager),
    settings: Settings = Depends(get_settings),
):
    """Descriptive statistics for one column, computed fresh on every call."""
    connection = connections.get(payload.connection_id)
    column = await run_in_threadpool(
        fetch_column_values,
        connection.engine,
        payload.table_name,
        payload.column_name,
        settings.statistics_max_rows,
    )
    return await run_in_threadpool(
        summarize_column,
        column["values"],
        payload.outlier_method,
        column["column_name"],
        column["sampled"],
    )
