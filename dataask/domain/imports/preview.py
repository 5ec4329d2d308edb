"""
File preview: inferred column types, a few sample rows and a full row count.
"""
import logging
import math
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, List, Optional

from dataask.api.schemas.shared import ColumnDescriptor, FilePreview
from dataask.core.errors import MalformedRowsError, ValidationError
from dataask.domain.imports.processors.tabular_reader import TabularSource
from dataask.domain.imports.type_inference import infer_column_types, is_missing

logger = logging.getLogger(__name__)

SAMPLE_VALUES_PER_COLUMN = 5


def to_json_value(value: Any) -> Any:
    """Make a raw cell safe for a JSON response."""
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (bytes, bytearray)):
        return value.hex()
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return value


def malformed_limit(total_rows: int, max_ratio: float) -> int:
    """Largest number of malformed rows tolerated out of ``total_rows``."""
    return math.floor(max_ratio * total_rows)


def build_file_preview(
    source: TabularSource,
    temp_file_path: str,
    *,
    sample_rows: int = 1000,
    preview_rows: int = 10,
    max_malformed_ratio: float = 0.05,
    filename: Optional[str] = None,
) -> FilePreview:
    """
    Read a bounded prefix for typing and samples, then count the remaining rows.

    Only the first ``sample_rows`` rows are kept in memory; the rest of the file
    is scanned lazily for the row and malformed-row counts.
    """
    total_rows = 0
    malformed_rows = 0
    prefix_malformed = 0
    first_malformed_line = None
    sample: List[List[Any]] = []

    with source.open() as stream:
        headers = stream.headers
        sheet_name = stream.sheet_name
        for row in stream.rows:
            total_rows += 1
            in_prefix = total_rows <= sample_rows
            if row.malformed:
                malformed_rows += 1
                if in_prefix:
                    prefix_malformed += 1
                if first_malformed_line is None:
                    first_malformed_line = row.line_number
                    logger.warning(
                        "%s line %d has %d cells, expected %d",
                        source.file_name, row.line_number, len(row.cells), len(headers),
                    )
                continue
            if in_prefix:
                sample.append(row.cells)

    if total_rows == 0:
        raise ValidationError(
            f"'{source.file_name}' has a header row but no data rows."
        )

    prefix_total = min(total_rows, sample_rows)
    if prefix_malformed > malformed_limit(prefix_total, max_malformed_ratio):
        raise MalformedRowsError(prefix_malformed, prefix_total, max_malformed_ratio, first_malformed_line)

    warnings: List[str] = []
    if first_malformed_line is not None:
        warnings.append(
            f"Line {first_malformed_line} does not match the header's {len(headers)} columns; "
            f"{malformed_rows} malformed row(s) will be skipped and counted as rejected."
        )
    if malformed_rows > malformed_limit(total_rows, max_malformed_ratio):
        warnings.append(
            f"{malformed_rows} of {total_rows} rows are malformed, above the "
            f"{max_malformed_ratio:.0%} limit; importing this file will fail."
        )

    inferred = infer_column_types(headers, sample)
    columns = []
    for index, (header, column_type) in enumerate(zip(headers, inferred)):
        values = [cells[index] for cells in sample]
        present = [value for value in values if not is_missing(value)]
        columns.append(
            ColumnDescriptor(
                name=header,
                type=column_type,
                original_type=column_type,
                nullable=True,
                sample_values=[to_json_value(value) for value in present[:SAMPLE_VALUES_PER_COLUMN]],
                missing_count=len(values) - len(present),
            )
        )

    logger.info(
        "Preview of %s: %d rows, %d columns, %d malformed",
        source.file_name, total_rows, len(headers), malformed_rows,
    )
    return FilePreview(
        filename=filename or source.file_name,
        row_count=total_rows,
        columns=columns,
        headers=headers,
        sample_data=[[to_json_value(value) for value in cells] for cells in sample[:preview_rows]],
        temp_file_path=temp_file_path,
        sheet_name=sheet_name,
        sampled_rows=len(sample),
        malformed_rows=malformed_rows,
        warnings=warnings,
    )
