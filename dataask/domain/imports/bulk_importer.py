"""
Transactional, batched import of a tabular file into a SQLite table.

The whole run happens inside one ``engine.begin()`` block: the CREATE TABLE
and every INSERT either commit together or roll back together, so a failed or
cancelled import never leaves a partial table behind.
"""
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError

from dataask.api.schemas.shared import ColumnDescriptor, ImportSummary
from dataask.core.errors import (
    DataAskError,
    ImportCancelledError,
    MalformedRowsError,
    ParseError,
    StorageError,
    TableConflictError,
    ValidationError,
)
from dataask.db.connections import SQLiteConnection
from dataask.db.introspection import find_table, quote_identifier, read_columns
from dataask.domain.imports.coercion import CoercionReport, coerce_row
from dataask.domain.imports.jobs import ImportProgressRegistry
from dataask.domain.imports.preview import malformed_limit
from dataask.domain.imports.processors.tabular_reader import TabularSource

logger = logging.getLogger(__name__)


@dataclass
class ImportPlan:
    """Everything one background import needs, fixed before the job starts."""
    import_id: str
    connection: SQLiteConnection
    table_name: str
    columns: Tuple[ColumnDescriptor, ...]
    source: TabularSource
    total_rows: int
    mode: str = "create"
    cleanup: Optional[Callable[[], None]] = field(default=None, repr=False)


def build_create_table_sql(table_name: str, columns: Sequence[ColumnDescriptor]) -> str:
    definitions = []
    for column in columns:
        definition = f"{quote_identifier(column.name)} {column.type.sql_type}"
        if not column.nullable:
            definition += " NOT NULL"
        definitions.append(definition)
    return f"CREATE TABLE {quote_identifier(table_name)} ({', '.join(definitions)})"


def failure_reason_for(exc: BaseException) -> str:
    """Map an exception raised inside the batch loop to the job's ``failureReason``."""
    if isinstance(exc, ImportCancelledError):
        return "cancelled"
    if isinstance(exc, MalformedRowsError):
        return "malformed_rows"
    if isinstance(exc, TableConflictError):
        return "conflict"
    if isinstance(exc, ParseError):
        return "parse_error"
    if isinstance(exc, ValidationError):
        return "validation_error"
    if isinstance(exc, (StorageError, SQLAlchemyError, OSError)):
        return "storage_error"
    return "internal_error"


class _RunState:
    __slots__ = ("rows_seen", "rows_inserted", "malformed_rows", "null_rejections", "first_malformed_line", "batches")

    def __init__(self):
        self.rows_seen = 0
        self.rows_inserted = 0
        self.malformed_rows = 0
        self.null_rejections = 0
        self.first_malformed_line: Optional[int] = None
        self.batches = 0


class BulkImporter:
    """
    Streams a ``TabularSource`` into SQLite in fixed-size batches.

    A batch is ``batch_size`` source rows. Its surviving rows are written with
    multi-row INSERT statements of at most ``max_variables`` bound parameters
    each, then the job's progress is updated. The cancel flag is checked before
    every batch.
    """

    def __init__(
        self,
        registry: ImportProgressRegistry,
        *,
        batch_size: int = 1000,
        max_malformed_ratio: float = 0.05,
        max_variables: int = 32766,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.registry = registry
        self.batch_size = batch_size
        self.max_malformed_ratio = max_malformed_ratio
        self.max_variables = max_variables

    def rows_per_statement(self, column_count: int) -> int:
        return max(1, min(self.batch_size, self.max_variables // max(column_count, 1)))

    def run(self, plan: ImportPlan) -> ImportSummary:
        """
        Execute the import and record the outcome on the job.

        Never raises for failures inside the import itself: those end the job
        as ``failed``. The returned summary is empty on failure.
        """
        started = time.perf_counter()
        state = _RunState()
        report = CoercionReport(plan.columns)
        logger.info(
            "Starting import %s into '%s' (%d rows, %d columns, mode=%s)",
            plan.import_id, plan.table_name, plan.total_rows, len(plan.columns), plan.mode,
        )
        try:
            self.registry.update(plan.import_id, status="processing", progress=0, message="Preparing import...")
            with plan.connection.write_lock:
                self._check_cancelled(plan)
                with plan.connection.engine.begin() as conn:
                    self._prepare_table(conn, plan)
                    self._stream_rows(conn, plan, state, report)
                    self._check_cancelled(plan)
                    self.registry.update(plan.import_id, message="Committing...")
        except Exception as exc:
            self._fail(plan, exc)
            return ImportSummary()
        finally:
            if plan.cleanup is not None:
                plan.cleanup()

        summary = ImportSummary(
            rows_inserted=state.rows_inserted,
            rows_rejected=state.malformed_rows + state.null_rejections,
            malformed_rows=state.malformed_rows,
            null_constraint_rejections=state.null_rejections,
            first_malformed_line=state.first_malformed_line,
            coerced_cells=report.total,
            coercion=report.summaries(),
        )
        if state.rows_seen != plan.total_rows:
            logger.warning(
                "Import %s read %d rows but %d were expected from the preview",
                plan.import_id, state.rows_seen, plan.total_rows,
            )
        elapsed = time.perf_counter() - started
        message = f"Imported {state.rows_inserted} rows into '{plan.table_name}'"
        if summary.rows_rejected:
            message += f" ({summary.rows_rejected} rejected)"
        self.registry.complete(
            plan.import_id, summary=summary, message=message, rows_processed=state.rows_seen,
        )
        logger.info(
            "Import %s finished in %.2fs: %d inserted, %d rejected, %d cells coerced to NULL",
            plan.import_id, elapsed, state.rows_inserted, summary.rows_rejected, report.total,
        )
        return summary

    # Steps -------------------------------------------------------------

    def _check_cancelled(self, plan: ImportPlan) -> None:
        if self.registry.is_cancelled(plan.import_id):
            raise ImportCancelledError(plan.import_id)

    def _prepare_table(self, conn: Connection, plan: ImportPlan) -> None:
        existing = find_table(conn, plan.table_name)
        if plan.mode == "append":
            if existing is None:
                conn.execute(text(build_create_table_sql(plan.table_name, plan.columns)))
                return
            present = {column.name.lower() for column in read_columns(conn, existing)}
            missing = [column.name for column in plan.columns if column.name.lower() not in present]
            if missing:
                raise ValidationError(
                    f"Table '{existing}' has no column(s) {', '.join(missing)}; cannot append.",
                    details={"missing_columns": missing},
                )
            return
        if existing is not None:
            raise TableConflictError(plan.table_name)
        conn.execute(text(build_create_table_sql(plan.table_name, plan.columns)))

    def _stream_rows(self, conn: Connection, plan: ImportPlan, state: _RunState, report: CoercionReport) -> None:
        limit = malformed_limit(plan.total_rows, self.max_malformed_ratio)
        required = [index for index, column in enumerate(plan.columns) if not column.nullable]
        pending: List[List[Any]] = []

        with plan.source.open() as stream:
            if len(stream.headers) != len(plan.columns):
                raise ValidationError(
                    f"The file has {len(stream.headers)} columns but {len(plan.columns)} were confirmed."
                )
            for row in stream.rows:
                state.rows_seen += 1
                if row.malformed:
                    state.malformed_rows += 1
                    if state.first_malformed_line is None:
                        state.first_malformed_line = row.line_number
                        logger.warning(
                            "Import %s: line %d has %d cells, expected %d; row rejected",
                            plan.import_id, row.line_number, len(row.cells), len(plan.columns),
                        )
                    if state.malformed_rows > limit:
                        raise MalformedRowsError(
                            state.malformed_rows, plan.total_rows, self.max_malformed_ratio,
                            state.first_malformed_line,
                        )
                else:
                    values = coerce_row(row.cells, plan.columns, row.line_number, report)
                    if any(values[index] is None for index in required):
                        state.null_rejections += 1
                    else:
                        pending.append(values)

                if state.rows_seen % self.batch_size == 0:
                    self._flush(conn, plan, state, pending)
                    pending = []

            if pending or state.rows_seen % self.batch_size:
                self._flush(conn, plan, state, pending)

    def _flush(self, conn: Connection, plan: ImportPlan, state: _RunState, rows: List[List[Any]]) -> None:
        self._check_cancelled(plan)
        if rows:
            self._insert_rows(conn, plan, rows)
            state.rows_inserted += len(rows)
        state.batches += 1
        total = max(plan.total_rows, state.rows_seen, 1)
        progress = math.floor(state.rows_seen * 100 / total)
        self.registry.update(
            plan.import_id,
            progress=progress,
            rows_processed=state.rows_seen,
            message=f"Processed {state.rows_seen} of {plan.total_rows} rows",
        )
        logger.debug(
            "Import %s batch %d: %d rows seen, %d inserted (%d%%)",
            plan.import_id, state.batches, state.rows_seen, state.rows_inserted, progress,
        )

    def _insert_rows(self, conn: Connection, plan: ImportPlan, rows: List[List[Any]]) -> None:
        column_count = len(plan.columns)
        step = self.rows_per_statement(column_count)
        column_list = ", ".join(quote_identifier(column.name) for column in plan.columns)
        row_placeholder = "(" + ", ".join("?" for _ in range(column_count)) + ")"
        statements: Dict[int, str] = {}
        for offset in range(0, len(rows), step):
            chunk = rows[offset:offset + step]
            sql = statements.get(len(chunk))
            if sql is None:
                sql = (
                    f"INSERT INTO {quote_identifier(plan.table_name)} ({column_list}) VALUES "
                    + ", ".join(row_placeholder for _ in chunk)
                )
                statements[len(chunk)] = sql
            params = tuple(value for row in chunk for value in row)
            conn.exec_driver_sql(sql, params)

    def _fail(self, plan: ImportPlan, exc: Exception) -> None:
        reason = failure_reason_for(exc)
        if isinstance(exc, DataAskError):
            error = exc.message
        elif isinstance(exc, SQLAlchemyError):
            error = f"Database error during import: {getattr(exc, 'orig', None) or exc}"
        else:
            error = f"Import failed: {exc}"
        if reason == "internal_error":
            logger.exception("Import %s crashed", plan.import_id)
        else:
            logger.warning("Import %s rolled back: %s", plan.import_id, error)
        self.registry.fail(plan.import_id, error=error, reason=reason)
