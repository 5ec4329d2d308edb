"""
Error kinds raised by the import pipeline and the database endpoints.

Each exception carries the HTTP status the API layer answers with and a short
``kind`` string that clients use to tell failures apart without parsing
messages.
"""
from typing import Any, Dict, Optional


class DataAskError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code = 500
    kind = "error"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message, "type": self.kind}
        if self.details:
            payload["details"] = self.details
        return payload


class ParseError(DataAskError):
    """The file could not be parsed (corrupt workbook, broken CSV quoting)."""

    status_code = 400
    kind = "parse_error"


class FileEncodingError(ParseError):
    """The file bytes could not be decoded with the requested encoding."""

    def __init__(self, file_name: str, encoding: str, reason: str):
        self.file_name = file_name
        self.encoding = encoding
        super().__init__(
            f"Could not decode '{file_name}' as {encoding}: {reason}. "
            "Re-save the file as UTF-8 and upload it again.",
            details={"encoding": encoding},
        )


class ValidationError(DataAskError):
    """The request or the file content failed validation."""

    status_code = 400
    kind = "validation_error"


class UnsupportedFileTypeError(ValidationError):
    """The file extension is not one the importer can read."""

    def __init__(self, file_name: str, allowed: tuple):
        self.file_name = file_name
        super().__init__(
            f"Unsupported file format for '{file_name}'. "
            f"Please upload one of: {', '.join(allowed)}.",
            details={"allowed_extensions": list(allowed)},
        )


class MalformedRowsError(ValidationError):
    """Too many rows disagree with the header's column count."""

    def __init__(self, malformed_rows: int, total_rows: int, max_ratio: float,
                 first_line: Optional[int] = None):
        self.malformed_rows = malformed_rows
        self.total_rows = total_rows
        self.max_ratio = max_ratio
        self.first_line = first_line
        location = f" (first at line {first_line})" if first_line else ""
        super().__init__(
            f"{malformed_rows} of {total_rows} rows have a column count that does not match "
            f"the header{location}; the limit is {max_ratio:.0%}.",
            details={
                "malformed_rows": malformed_rows,
                "total_rows": total_rows,
                "first_malformed_line": first_line,
            },
        )


class TableConflictError(DataAskError):
    """A table with the requested name already exists and append mode was not requested."""

    status_code = 409
    kind = "conflict"

    def __init__(self, table_name: str):
        self.table_name = table_name
        super().__init__(
            f"Table '{table_name}' already exists. Choose another name or import in append mode.",
            details={"table_name": table_name},
        )


class StorageError(DataAskError):
    """The target database rejected a statement or the transaction failed to commit."""

    status_code = 500
    kind = "storage_error"


class NotFoundError(DataAskError):
    """An unknown connection, import, table or upload was referenced."""

    status_code = 404
    kind = "not_found"


class ImportCancelledError(DataAskError):
    """Raised inside the batch loop when an import's cancel flag is set."""

    status_code = 409
    kind = "cancelled"

    def __init__(self, import_id: str, reason: str = "Import cancelled by request"):
        self.import_id = import_id
        super().__init__(reason)


class TypeCoercionWarning(UserWarning):
    """
    A single cell that could not be converted to its column's confirmed type.

    Never raised; instances are aggregated by ``CoercionReport`` into the job
    summary.
    """

    def __init__(self, column: str, value: Any, target_type: str, row_number: int):
        self.column = column
        self.value = value
        self.target_type = target_type
        self.row_number = row_number
        super().__init__(
            f"Row {row_number}: value {value!r} in column '{column}' is not a valid {target_type}"
        )
