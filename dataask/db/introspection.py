"""
Read-only inspection of SQLite databases: schema, table metadata and data previews.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from dataask.api.schemas.shared import SchemaColumn, SchemaTable
from dataask.core.errors import NotFoundError, StorageError
from dataask.domain.imports.preview import to_json_value

logger = logging.getLogger(__name__)


def quote_identifier(name: str) -> str:
    """Quote a table or column name for SQLite, doubling embedded quotes."""
    return '"' + str(name).replace('"', '""') + '"'


def find_table(conn: Connection, table_name: str) -> Optional[str]:
    """Return the stored name of ``table_name`` (SQLite names are case-insensitive)."""
    result = conn.execute(
        text(
            "SELECT name FROM sqlite_master "
            "WHERE type IN ('table', 'view') AND lower(name) = lower(:table_name)"
        ),
        {"table_name": table_name},
    )
    row = result.fetchone()
    return row[0] if row else None


def table_exists(engine: Engine, table_name: str) -> bool:
    try:
        with engine.connect() as conn:
            return find_table(conn, table_name) is not None
    except SQLAlchemyError as exc:
        raise StorageError(f"Could not inspect database: {exc}") from exc


def read_columns(conn: Connection, table_name: str) -> List[SchemaColumn]:
    rows = conn.execute(text(f"PRAGMA table_info({quote_identifier(table_name)})")).fetchall()
    return [
        SchemaColumn(
            name=row[1],
            type=row[2] or "",
            nullable=not bool(row[3]),
            default_value=None if row[4] is None else str(row[4]),
            primary_key=bool(row[5]),
        )
        for row in rows
    ]


def _require_table(conn: Connection, table_name: str) -> str:
    stored = find_table(conn, table_name)
    if stored is None:
        raise NotFoundError(f"Table '{table_name}' not found")
    return stored


def get_schema(engine: Engine) -> Dict[str, List[SchemaTable]]:
    """
    Describe every user table and view, grouped under SQLite's ``main`` schema.

    Internal ``sqlite_*`` tables are skipped.
    """
    try:
        with engine.connect() as conn:
            entries = conn.execute(
                text(
                    "SELECT name, type FROM sqlite_master "
                    "WHERE type IN ('table', 'view') AND name NOT LIKE 'sqlite_%' "
                    "ORDER BY name"
                )
            ).fetchall()
            tables = [
                SchemaTable(name=name, type=kind, columns=read_columns(conn, name))
                for name, kind in entries
            ]
    except SQLAlchemyError as exc:
        raise StorageError(f"Could not read database schema: {exc}") from exc
    return {"main": tables}


def get_table_metadata(engine: Engine, table_name: str) -> Dict[str, Any]:
    try:
        with engine.connect() as conn:
            stored = _require_table(conn, table_name)
            row_count = conn.execute(text(f"SELECT COUNT(*) FROM {quote_identifier(stored)}")).scalar()
            columns = read_columns(conn, stored)
    except SQLAlchemyError as exc:
        raise StorageError(f"Could not read metadata for '{table_name}': {exc}") from exc
    return {
        "table_name": stored,
        "row_count": int(row_count or 0),
        "table_size": "N/A (SQLite)",
        "column_count": len(columns),
    }


def get_table_columns(engine: Engine, table_name: str) -> List[SchemaColumn]:
    try:
        with engine.connect() as conn:
            return read_columns(conn, _require_table(conn, table_name))
    except SQLAlchemyError as exc:
        raise StorageError(f"Could not read columns for '{table_name}': {exc}") from exc


def get_table_preview(engine: Engine, table_name: str, limit: int) -> Dict[str, Any]:
    """Return the first ``limit`` rows of a table in storage order."""
    try:
        with engine.connect() as conn:
            stored = _require_table(conn, table_name)
            result = conn.execute(
                text(f"SELECT * FROM {quote_identifier(stored)} LIMIT :limit"),
                {"limit": limit},
            )
            fields = list(result.keys())
            rows = [
                {field: to_json_value(value) for field, value in zip(fields, row)}
                for row in result.fetchall()
            ]
    except SQLAlchemyError as exc:
        raise StorageError(f"Could not preview '{table_name}': {exc}") from exc
    return {"rows": rows, "fields": fields, "rowCount": len(rows)}


def fetch_column_values(engine: Engine, table_name: str, column_name: str, limit: int) -> Dict[str, Any]:
    """
    Load up to ``limit`` values of one column for statistics.

    Returns the values, the declared column type and whether the table holds
    more rows than were read.
    """
    try:
        with engine.connect() as conn:
            stored = _require_table(conn, table_name)
            columns = {column.name.lower(): column for column in read_columns(conn, stored)}
            column = columns.get(column_name.lower())
            if column is None:
                raise NotFoundError(f"Column '{column_name}' not found in table '{stored}'")
            total = conn.execute(text(f"SELECT COUNT(*) FROM {quote_identifier(stored)}")).scalar() or 0
            result = conn.execute(
                text(f"SELECT {quote_identifier(column.name)} FROM {quote_identifier(stored)} LIMIT :limit"),
                {"limit": limit},
            )
            values = [row[0] for row in result]
    except SQLAlchemyError as exc:
        raise StorageError(f"Could not read column '{column_name}' of '{table_name}': {exc}") from exc
    if total > limit:
        logger.info("Column statistics for %s.%s sampled %d of %d rows", stored, column.name, limit, total)
    return {
        "table_name": stored,
        "column_name": column.name,
        "declared_type": column.type,
        "values": values,
        "sampled": total > limit,
    }
