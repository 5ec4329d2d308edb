"""
Descriptive statistics for a single column of values.

``summarize_column`` is a pure function: it never touches the database and
gives identical output for identical input. ``distribution_type`` is a
heuristic label derived from fixed skewness/kurtosis thresholds, not the
result of a statistical test.
"""
import logging
from collections import Counter
from typing import Any, List, Optional, Sequence

import numpy as np
import pandas as pd

from dataask.api.schemas.shared import VariableStatistics
from dataask.domain.imports.type_inference import is_missing, parse_numeric

logger = logging.getLogger(__name__)

OUTLIER_METHODS = ("iqr", "zscore")
IQR_FENCE = 1.5
ZSCORE_THRESHOLD = 3.0

# distribution_type thresholds
MIN_VALUES_FOR_SHAPE = 8
NORMAL_MAX_ABS_SKEW = 0.5
NORMAL_MAX_ABS_KURTOSIS = 1.0


def _mode(values: Sequence[Any]) -> Any:
    """Most frequent value; ties go to the value seen first."""
    if not values:
        return None
    # Counter keeps first-insertion order among equal counts.
    return Counter(values).most_common(1)[0][0]


def _as_number(value: float) -> Any:
    return int(value) if float(value).is_integer() else float(value)


def classify_distribution(n: int, std_dev: float, skewness: Optional[float], kurtosis: Optional[float]) -> str:
    if n < MIN_VALUES_FOR_SHAPE:
        return "insufficient_data"
    if std_dev == 0 or skewness is None or kurtosis is None:
        return "constant"
    if abs(skewness) < NORMAL_MAX_ABS_SKEW and abs(kurtosis) < NORMAL_MAX_ABS_KURTOSIS:
        return "normal"
    if skewness >= NORMAL_MAX_ABS_SKEW:
        return "right_skewed"
    if skewness <= -NORMAL_MAX_ABS_SKEW:
        return "left_skewed"
    return "heavy_tailed" if kurtosis >= NORMAL_MAX_ABS_KURTOSIS else "light_tailed"


def count_outliers(data: np.ndarray, method: str, q1: float, q3: float, mean: float, std_dev: float) -> int:
    if method == "iqr":
        spread = q3 - q1
        lower, upper = q1 - IQR_FENCE * spread, q3 + IQR_FENCE * spread
        return int(np.count_nonzero((data < lower) | (data > upper)))
    if std_dev == 0:
        return 0
    z_scores = np.abs((data - mean) / std_dev)
    return int(np.count_nonzero(z_scores > ZSCORE_THRESHOLD))


def summarize_column(
    values: Sequence[Any],
    outlier_method: str = "iqr",
    column: Optional[str] = None,
    sampled: bool = False,
) -> VariableStatistics:
    """
    Summarize a materialized column.

    Numeric columns (every present value is a finite number) get the full set
    of moments, quartiles and outliers; other columns only get completeness,
    uniqueness and mode.
    """
    if outlier_method not in OUTLIER_METHODS:
        raise ValueError(f"Unknown outlier method '{outlier_method}'; use one of {OUTLIER_METHODS}")

    count = len(values)
    present = [value for value in values if not is_missing(value)]
    missing_count = count - len(present)
    numbers: List[Optional[float]] = [parse_numeric(value) for value in present]
    is_numeric = bool(present) and all(number is not None for number in numbers)

    distinct_source = numbers if is_numeric else present
    distinct_count = int(pd.Series(distinct_source, dtype=object).nunique()) if present else 0

    stats = VariableStatistics(
        column=column,
        count=count,
        missing_count=missing_count,
        completeness=(1 - missing_count / count) if count else 0.0,
        distinct_count=distinct_count,
        uniqueness_ratio=(distinct_count / count) if count else 0.0,
        is_numeric=is_numeric,
        sampled=sampled,
    )
    if not is_numeric:
        stats.mode = _mode(present)
        return stats

    data = np.asarray(numbers, dtype=float)
    mean = float(data.mean())
    deviations = data - mean
    m2 = float(np.mean(deviations ** 2))
    m3 = float(np.mean(deviations ** 3))
    m4 = float(np.mean(deviations ** 4))
    std_dev = float(np.sqrt(m2))
    q1, median, q3 = (float(q) for q in np.percentile(data, [25, 50, 75]))

    if m2 > 0:
        skewness: Optional[float] = m3 / m2 ** 1.5
        kurtosis: Optional[float] = m4 / m2 ** 2 - 3
    else:
        skewness = kurtosis = None

    stats.mode = _as_number(_mode(numbers))
    stats.mean = mean
    stats.median = median
    stats.variance = m2
    stats.std_dev = std_dev
    stats.min = float(data.min())
    stats.max = float(data.max())
    stats.q1 = q1
    stats.q3 = q3
    stats.iqr = q3 - q1
    stats.skewness = skewness
    stats.kurtosis = kurtosis
    stats.outlier_count = count_outliers(data, outlier_method, q1, q3, mean, std_dev)
    stats.outlier_method = outlier_method
    stats.distribution_type = classify_distribution(len(data), std_dev, skewness, kurtosis)
    return stats
