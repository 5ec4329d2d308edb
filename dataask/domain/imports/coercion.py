"""
Per-type cell coercion for bulk imports.

Every ``ColumnType`` has exactly one coercer in ``COERCERS``. A coercer returns
the value to bind for SQLite or raises ``ValueError`` when the cell cannot be
represented; ``coerce_row`` turns that failure into a NULL plus a
``TypeCoercionWarning`` recorded on the ``CoercionReport``.
"""
import logging
from collections import OrderedDict
from datetime import date, datetime, time
from typing import Any, Callable, Dict, List, Sequence

import pandas as pd

from dataask.api.schemas.shared import ColumnCoercionSummary, ColumnDescriptor
from dataask.core.errors import TypeCoercionWarning
from dataask.domain.imports.type_inference import (
    is_missing,
    parse_boolean,
    parse_integral,
    parse_numeric,
)
from dataask.domain.imports.types import ColumnType

logger = logging.getLogger(__name__)

SQLITE_INT_MIN = -(2 ** 63)
SQLITE_INT_MAX = 2 ** 63 - 1
_TRUTHY = {"true", "1", "yes", "y", "t"}
_FALSY = {"false", "0", "no", "n", "f"}


def _coerce_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _coerce_integer(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    result = parse_integral(value)
    if result is None:
        if parse_numeric(value) is None:
            raise ValueError("not a number")
        raise ValueError("has a fractional part or is out of range")
    if not SQLITE_INT_MIN <= result <= SQLITE_INT_MAX:
        raise ValueError("out of 64-bit integer range")
    return result


def _coerce_real(value: Any) -> float:
    number = parse_numeric(value)
    if number is None:
        raise ValueError("not a number")
    return number


def _coerce_boolean(value: Any) -> bool:
    parsed = parse_boolean(value)
    if parsed is not None:
        return parsed
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUTHY:
            return True
        if lowered in _FALSY:
            return False
    else:
        number = parse_numeric(value)
        if number in (0.0, 1.0):
            return bool(number)
    raise ValueError("not a boolean")


def _format_timestamp(moment: datetime) -> str:
    if moment.time() == time(0, 0) and moment.tzinfo is None:
        return moment.date().isoformat()
    return moment.isoformat()


def _coerce_date(value: Any) -> str:
    if isinstance(value, pd.Timestamp):
        if pd.isna(value):
            raise ValueError("not a date")
        return _format_timestamp(value.to_pydatetime())
    if isinstance(value, datetime):
        return _format_timestamp(value)
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, str):
        raise ValueError("not a date")
    text = value.strip()
    try:
        return _format_timestamp(datetime.fromisoformat(text))
    except ValueError:
        pass
    try:
        parsed = pd.to_datetime(text, errors="raise")
    except (ValueError, TypeError, OverflowError) as exc:
        raise ValueError("not a date") from exc
    if pd.isna(parsed):
        raise ValueError("not a date")
    return _format_timestamp(parsed.to_pydatetime())


COERCERS: Dict[ColumnType, Callable[[Any], Any]] = {
    ColumnType.TEXT: _coerce_text,
    ColumnType.INTEGER: _coerce_integer,
    ColumnType.REAL: _coerce_real,
    ColumnType.BOOLEAN: _coerce_boolean,
    ColumnType.DATE: _coerce_date,
}

_uncovered = set(ColumnType) - set(COERCERS)
if _uncovered:
    raise RuntimeError(f"No coercer registered for column types: {sorted(t.value for t in _uncovered)}")


def coerce_value(value: Any, column_type: ColumnType) -> Any:
    """
    Coerce a value to match the column's confirmed type for database insertion.

    Returns None for missing cells and raises ValueError for cells that cannot
    be represented in the target type.
    """
    if is_missing(value):
        return None
    return COERCERS[column_type](value)


class CoercionReport:
    """Aggregates per-column coercion rejections for the import summary."""

    def __init__(self, columns: Sequence[ColumnDescriptor], sample_limit: int = 5):
        self.sample_limit = sample_limit
        self._by_column: "OrderedDict[str, ColumnCoercionSummary]" = OrderedDict(
            (column.name, ColumnCoercionSummary(column=column.name, target_type=column.type))
            for column in columns
        )

    def record(self, warning: TypeCoercionWarning) -> None:
        summary = self._by_column[warning.column]
        summary.rejected_count += 1
        if len(summary.samples) < self.sample_limit:
            summary.samples.append(str(warning.value))
        if summary.rejected_count == 1:
            logger.warning("%s (further rejections in this column are counted only)", warning)

    @property
    def total(self) -> int:
        return sum(summary.rejected_count for summary in self._by_column.values())

    def summaries(self) -> List[ColumnCoercionSummary]:
        """Columns that had at least one rejected cell, in column order."""
        return [summary.model_copy(deep=True) for summary in self._by_column.values() if summary.rejected_count]


def coerce_row(
    cells: Sequence[Any],
    columns: Sequence[ColumnDescriptor],
    row_number: int,
    report: CoercionReport,
) -> List[Any]:
    """Coerce one source row cell-by-cell; failures become NULL and are reported."""
    coerced = []
    for column, value in zip(columns, cells):
        try:
            coerced.append(coerce_value(value, column.type))
        except (ValueError, TypeError, OverflowError):
            report.record(TypeCoercionWarning(column.name, value, column.type.value, row_number))
            coerced.append(None)
    return coerced
