import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from dataask.domain.imports.types import ColumnType

logger = logging.getLogger(__name__)

MAX_TABLE_NAME_LENGTH = 50
_UNSAFE_IDENTIFIER_CHARS = re.compile(r"[^A-Za-z0-9_]")


def sanitize_table_name(requested_name: str) -> str:
    """
    Return a table name safe to embed in quoted SQL identifiers.

    - Trims whitespace
    - Replaces anything outside ``[A-Za-z0-9_]`` with an underscore
    """
    normalized = requested_name.strip()
    cleaned = _UNSAFE_IDENTIFIER_CHARS.sub("_", normalized)
    if cleaned != normalized:
        logger.info("Table name '%s' sanitized to '%s'", requested_name, cleaned)
    return cleaned


def validate_table_name(value: str) -> str:
    if not value or not value.strip():
        raise ValueError("Table name is required")
    cleaned = sanitize_table_name(value)
    if len(cleaned) > MAX_TABLE_NAME_LENGTH:
        raise ValueError(f"Table name must be at most {MAX_TABLE_NAME_LENGTH} characters")
    if cleaned.lower().startswith("sqlite_"):
        raise ValueError("Table names starting with 'sqlite_' are reserved")
    return cleaned


class CamelModel(BaseModel):
    """Models exchanged with the UI use camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Import pipeline -------------------------------------------------------

class ColumnDescriptor(CamelModel):
    """One column's name and confirmed type; frozen so an import cannot mutate it mid-run."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    name: str = Field(min_length=1)
    type: ColumnType
    original_type: Optional[ColumnType] = None
    nullable: bool = True
    sample_values: List[Any] = Field(default_factory=list)
    missing_count: int = 0


class FilePreview(CamelModel):
    filename: str
    row_count: int
    columns: List[ColumnDescriptor]
    headers: List[str]
    sample_data: List[List[Any]]
    temp_file_path: str
    sheet_name: Optional[str] = None
    sampled_rows: int = 0
    malformed_rows: int = 0
    warnings: List[str] = Field(default_factory=list)


class ImportRequest(CamelModel):
    """Commit a previously uploaded file with user-confirmed column types."""
    filename: str
    table_name: str
    columns: List[ColumnDescriptor] = Field(min_length=1)
    temp_file_path: str
    connection_id: Optional[str] = None
    mode: Literal["create", "append"] = "create"
    sheet_name: Optional[str] = None

    @field_validator("table_name")
    @classmethod
    def check_table_name(cls, value: str) -> str:
        return validate_table_name(value)


class ImportStartResponse(CamelModel):
    connection_id: str
    import_id: str
    row_count: int
    table_name: str


class ColumnCoercionSummary(CamelModel):
    column: str
    target_type: ColumnType
    rejected_count: int = 0
    samples: List[str] = Field(default_factory=list)


class ImportSummary(CamelModel):
    rows_inserted: int = 0
    rows_rejected: int = 0
    malformed_rows: int = 0
    null_constraint_rejections: int = 0
    first_malformed_line: Optional[int] = None
    coerced_cells: int = 0
    coercion: List[ColumnCoercionSummary] = Field(default_factory=list)


ImportStatus = Literal["pending", "processing", "completed", "failed"]


class ImportJob(CamelModel):
    """Live status of one bulk import, as returned to pollers."""
    import_id: str
    status: ImportStatus = "pending"
    progress: int = Field(default=0, ge=0, le=100)
    message: str = ""
    error: Optional[str] = None
    failure_reason: Optional[str] = None
    rows_processed: int = 0
    total_rows: int = 0
    table_name: Optional[str] = None
    connection_id: Optional[str] = None
    summary: Optional[ImportSummary] = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in ("completed", "failed")


class CancelImportResponse(CamelModel):
    import_id: str
    cancel_requested: bool
    status: ImportStatus


class DiscardUploadResponse(CamelModel):
    temp_file_path: str
    deleted: bool


# Database connections and introspection --------------------------------

class ConnectionCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    filename: str = Field(min_length=1)


class ConnectionInfo(BaseModel):
    id: str
    name: str
    type: Literal["sqlite"] = "sqlite"
    filename: str
    created_at: datetime


class ConnectionCreateResponse(BaseModel):
    connectionId: str
    message: str = "Connection created successfully"


class ConnectionsListResponse(BaseModel):
    connections: List[ConnectionInfo]


class SchemaColumn(BaseModel):
    name: str
    type: str
    nullable: bool
    default_value: Optional[str] = None
    primary_key: bool = False


class SchemaTable(BaseModel):
    name: str
    type: str = "table"
    columns: List[SchemaColumn]


class DatabaseSchemaResponse(BaseModel):
    schema_: Dict[str, List[SchemaTable]] = Field(alias="schema")

    model_config = ConfigDict(populate_by_name=True)


class QueryRequest(CamelModel):
    connection_id: str
    sql: str = Field(min_length=1)
    params: Optional[List[Any]] = None


class QueryResult(BaseModel):
    rows: List[Dict[str, Any]]
    rowCount: int
    fields: List[str]
    executionTime: float
    truncated: bool = False


class TableRequest(CamelModel):
    connection_id: str
    table_name: str = Field(min_length=1)
    limit: Optional[int] = Field(default=None, ge=1, le=1000)


class TableMetadataResponse(BaseModel):
    table_name: str
    row_count: int
    table_size: str = "N/A (SQLite)"
    column_count: int


class TableColumnsResponse(BaseModel):
    columns: List[SchemaColumn]


class ColumnStatisticsRequest(CamelModel):
    connection_id: str
    table_name: str = Field(min_length=1)
    column_name: str = Field(min_length=1)
    outlier_method: Literal["iqr", "zscore"] = "iqr"


class VariableStatistics(BaseModel):
    """Descriptive statistics for one column; numeric fields stay None for text columns."""
    column: Optional[str] = None
    count: int
    missing_count: int
    completeness: float
    distinct_count: int
    uniqueness_ratio: float
    is_numeric: bool
    mode: Optional[Any] = None
    mean: Optional[float] = None
    median: Optional[float] = None
    std_dev: Optional[float] = None
    variance: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None
    q1: Optional[float] = None
    q3: Optional[float] = None
    iqr: Optional[float] = None
    skewness: Optional[float] = None
    kurtosis: Optional[float] = None
    outlier_count: Optional[int] = None
    outlier_method: Optional[str] = None
    distribution_type: Optional[str] = None
    sampled: bool = False
