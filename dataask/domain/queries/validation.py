"""
Read-only SQL execution for the query endpoint.
"""
import logging
import re
import time
from typing import Any, Dict, Optional, Sequence

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from dataask.core.errors import ValidationError
from dataask.domain.imports.preview import to_json_value

logger = logging.getLogger(__name__)

READ_ONLY_PREFIXES = ("SELECT", "WITH")

DANGEROUS_PATTERNS = [
    r"\b(INSERT|UPDATE|DELETE|DROP|CREATE|ALTER|TRUNCATE|REPLACE|ATTACH|DETACH|PRAGMA|VACUUM|REINDEX)\b",
    r"--.*",
    r"/\*.*?\*/",
]

_STRING_LITERAL = re.compile(r"'(?:[^']|'')*'")
_TRAILING_SEMICOLONS = re.compile(r";\s*$")


def validate_read_only_sql(sql: str) -> str:
    """
    Return the statement stripped of trailing semicolons, or raise ValidationError.

    Only a single SELECT (or WITH ... SELECT) statement passes. Keywords inside
    string literals are ignored; comments are rejected outright.
    """
    statement = (sql or "").strip()
    while _TRAILING_SEMICOLONS.search(statement):
        statement = _TRAILING_SEMICOLONS.sub("", statement).rstrip()
    if not statement:
        raise ValidationError("SQL query is required")
    if not statement.upper().startswith(READ_ONLY_PREFIXES):
        raise ValidationError("Only SELECT queries are allowed")

    unquoted = _STRING_LITERAL.sub("''", statement)
    if ";" in unquoted:
        raise ValidationError("Only a single statement is allowed")
    for pattern in DANGEROUS_PATTERNS:
        if re.search(pattern, unquoted, re.IGNORECASE | re.MULTILINE | re.DOTALL):
            raise ValidationError("Query contains forbidden operations")
    return statement


def execute_read_only_query(
    engine: Engine,
    sql: str,
    params: Optional[Sequence[Any]] = None,
    row_limit: int = 1000,
) -> Dict[str, Any]:
    """Run a validated SELECT with positional ``?`` parameters, capping the result at ``row_limit`` rows."""
    statement = validate_read_only_sql(sql)
    start_time = time.time()
    try:
        with engine.connect() as conn:
            conn.exec_driver_sql("PRAGMA query_only = ON")
            try:
                result = conn.exec_driver_sql(statement, tuple(params or ()))
                fields = list(result.keys())
                fetched = result.fetchmany(row_limit + 1)
            finally:
                conn.exec_driver_sql("PRAGMA query_only = OFF")
    except SQLAlchemyError as exc:
        raise ValidationError(f"Query failed: {getattr(exc, 'orig', None) or exc}") from exc

    truncated = len(fetched) > row_limit
    rows = [
        {field: to_json_value(value) for field, value in zip(fields, row)}
        for row in fetched[:row_limit]
    ]
    execution_time = round((time.time() - start_time) * 1000, 2)
    logger.info("Query returned %d row(s) in %.2fms%s", len(rows), execution_time, " (truncated)" if truncated else "")
    return {
        "rows": rows,
        "rowCount": len(rows),
        "fields": fields,
        "executionTime": execution_time,
        "truncated": truncated,
    }
