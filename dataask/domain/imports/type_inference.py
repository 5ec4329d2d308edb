"""
Column type detection for file imports.

Inference is conservative: every non-missing value in the sample
has to satisfy a rule for the rule to win, so one stray string in an otherwise
numeric column yields TEXT rather than REAL.
"""
import logging
import math
import numbers
import re
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence

import pandas as pd

from dataask.domain.imports.types import ColumnType

logger = logging.getLogger(__name__)

# Optional sign, digits with optional fraction (or a bare fraction), optional exponent.
NUMERIC_LITERAL = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")
ISO_DATE_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")
BOOLEAN_LITERALS = {"true": True, "false": False}


def is_missing(value: Any) -> bool:
    """Return True for None, NaN/NaT and blank strings."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def parse_boolean(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return BOOLEAN_LITERALS.get(value.strip().lower())
    return None


def parse_numeric(value: Any) -> Optional[float]:
    """
    Parse a numeric literal, returning None when the value is not one.

    Booleans and non-finite numbers are rejected; strings must match the
    plain literal grammar so that ``"nan"`` or ``"1_000"`` stay text.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (numbers.Real, Decimal)):
        number = float(value)
        return number if math.isfinite(number) else None
    if isinstance(value, str):
        candidate = value.strip()
        if not NUMERIC_LITERAL.match(candidate):
            return None
        parsed = float(candidate)
        return parsed if math.isfinite(parsed) else None
    return None


def parse_integral(value: Any) -> Optional[int]:
    """
    Return the exact integer a value represents, or None.

    Strings are judged on their literal, not on the float they round to, so
    ``"1.0000000000000001"`` is not integral while ``"3.0"`` is. Magnitudes of
    10**19 and above are never integral since SQLite cannot store them.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, numbers.Integral):
        return int(value)
    if isinstance(value, str):
        candidate = value.strip()
        if not NUMERIC_LITERAL.match(candidate):
            return None
        exact = Decimal(candidate)
    elif isinstance(value, Decimal):
        exact = value
    else:
        number = parse_numeric(value)
        if number is None or not number.is_integer():
            return None
        exact = Decimal(number)
    if not exact.is_finite() or exact.adjusted() >= 19:
        return None
    if exact != exact.to_integral_value():
        return None
    return int(exact)


def is_integral(value: Any) -> bool:
    return parse_integral(value) is not None


def looks_like_date(value: Any) -> bool:
    if isinstance(value, (datetime, date, pd.Timestamp)):
        return True
    if isinstance(value, str):
        return bool(ISO_DATE_PREFIX.match(value.strip()))
    return False


def infer_column_type(values: Iterable[Any]) -> ColumnType:
    """
    Assign a semantic type to a column from its sampled raw values.

    Rules are evaluated in order and the first one every value satisfies wins:
    BOOLEAN, INTEGER, REAL, DATE, then TEXT as the catch-all.
    """
    present = [value for value in values if not is_missing(value)]
    if not present:
        return ColumnType.TEXT

    if all(parse_boolean(value) is not None for value in present):
        return ColumnType.BOOLEAN

    numeric = [parse_numeric(value) for value in present]
    if all(number is not None for number in numeric):
        if all(is_integral(value) for value in present):
            return ColumnType.INTEGER
        return ColumnType.REAL

    if all(looks_like_date(value) for value in present):
        return ColumnType.DATE

    return ColumnType.TEXT


def infer_column_types(headers: Sequence[str], rows: Sequence[Sequence[Any]]) -> list[ColumnType]:
    """Run ``infer_column_type`` once per column over a sampled prefix of rows."""
    inferred = []
    for index, header in enumerate(headers):
        column_values = [row[index] if index < len(row) else None for row in rows]
        column_type = infer_column_type(column_values)
        logger.debug("Inferred %s for column '%s' from %d sampled rows", column_type.value, header, len(rows))
        inferred.append(column_type)
    return inferred
