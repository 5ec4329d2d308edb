"""
Uniform, lazy row access over CSV and spreadsheet files.

Both the preview pass and the full import pass call ``TabularSource.open()``,
which re-reads the file from the start each time and yields rows one at a time
so that neither pass needs the whole file in memory.
"""
import csv
import logging
import os
import zipfile
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, List, Optional
from xml.etree.ElementTree import ParseError as XMLParseError

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from dataask.core.errors import (
    FileEncodingError,
    ParseError,
    UnsupportedFileTypeError,
    ValidationError,
)

logger = logging.getLogger(__name__)

CSV_EXTENSIONS = (".csv",)
EXCEL_EXTENSIONS = (".xlsx", ".xlsm")
SUPPORTED_EXTENSIONS = CSV_EXTENSIONS + EXCEL_EXTENSIONS

# openpyxl in read_only mode parses sheet XML while rows are iterated.
EXCEL_READ_ERRORS = (XMLParseError, zipfile.BadZipFile, KeyError, ValueError, EOFError)


def detect_file_type(filename: str) -> str:
    """Detect file type from filename extension ('csv' or 'excel')."""
    extension = os.path.splitext(filename or "")[1].lower()
    if extension in CSV_EXTENSIONS:
        return "csv"
    if extension in EXCEL_EXTENSIONS:
        return "excel"
    raise UnsupportedFileTypeError(filename, SUPPORTED_EXTENSIONS)


def normalize_headers(raw_headers: List[Any]) -> List[str]:
    """
    Turn a raw header row into usable, unique column names.

    Blank headers become ``Column_<n>`` (1-based) and repeated names get a
    ``_2``, ``_3``... suffix in order of appearance.
    """
    headers: List[str] = []
    used = set()  # SQLite identifiers are case-insensitive
    for index, raw in enumerate(raw_headers, start=1):
        name = "" if raw is None else str(raw).strip()
        if not name:
            name = f"Column_{index}"
        candidate = name
        suffix = 1
        while candidate.lower() in used:
            suffix += 1
            candidate = f"{name}_{suffix}"
        used.add(candidate.lower())
        headers.append(candidate)
    return headers


def _is_blank(cells: List[Any]) -> bool:
    return all(cell is None or (isinstance(cell, str) and cell.strip() == "") for cell in cells)


@dataclass
class SourceRow:
    """One data row as read from the file; ``malformed`` rows keep their raw cells."""
    line_number: int
    cells: List[Any]
    malformed: bool = False


@dataclass
class TabularStream:
    headers: List[str]
    rows: Iterator[SourceRow]
    sheet_name: Optional[str] = None


def _fit_row(cells: List[Any], width: int, *, pad_short: bool) -> Optional[List[Any]]:
    """Return the row trimmed/padded to ``width`` cells, or None when it does not fit."""
    if len(cells) > width:
        if not _is_blank(cells[width:]):
            return None
        return cells[:width]
    if len(cells) < width:
        if not pad_short:
            return None
        return cells + [None] * (width - len(cells))
    return cells


class TabularSource:
    """A re-openable handle on an uploaded CSV or spreadsheet file."""

    def __init__(
        self,
        path: str,
        file_name: Optional[str] = None,
        *,
        sheet_name: Optional[str] = None,
        encoding: str = "utf-8-sig",
        delimiter: str = ",",
    ):
        self.path = path
        self.file_name = file_name or os.path.basename(path)
        self.file_type = detect_file_type(self.file_name)
        self.sheet_name = sheet_name
        self.encoding = encoding
        self.delimiter = delimiter

    def __repr__(self) -> str:
        return f"TabularSource({self.file_name!r}, type={self.file_type})"

    @contextmanager
    def open(self) -> Iterator[TabularStream]:
        """Open the file from the start and yield its headers plus a lazy row iterator."""
        if not os.path.exists(self.path):
            raise ValidationError(
                f"Uploaded file for '{self.file_name}' was not found. Please upload your file again."
            )
        if self.file_type == "csv":
            with self._open_csv() as stream:
                yield stream
        else:
            with self._open_excel() as stream:
                yield stream

    def count_rows(self) -> int:
        """Count data rows (malformed ones included) with a full lazy scan."""
        with self.open() as stream:
            return sum(1 for _ in stream.rows)

    # CSV ---------------------------------------------------------------

    @contextmanager
    def _open_csv(self) -> Iterator[TabularStream]:
        handle = open(self.path, "r", encoding=self.encoding, newline="")
        try:
            reader = csv.reader(handle, delimiter=self.delimiter)
            raw_headers = self._read_csv_header(reader)
            headers = normalize_headers(raw_headers)
            yield TabularStream(
                headers=headers,
                rows=self._iter_csv_rows(reader, len(headers)),
            )
        finally:
            handle.close()

    def _read_csv_header(self, reader) -> List[Any]:
        try:
            for row in reader:
                if not _is_blank(row):
                    return row
        except UnicodeDecodeError as exc:
            raise FileEncodingError(self.file_name, self.encoding, str(exc)) from exc
        except csv.Error as exc:
            raise ParseError(f"Could not parse header of '{self.file_name}': {exc}") from exc
        raise ValidationError(
            f"'{self.file_name}' is empty. Please ensure your file has a header row and at least one data row."
        )

    def _iter_csv_rows(self, reader, width: int) -> Iterator[SourceRow]:
        try:
            for row in reader:
                if _is_blank(row):
                    continue
                fitted = _fit_row(row, width, pad_short=False)
                if fitted is None:
                    yield SourceRow(line_number=reader.line_num, cells=list(row), malformed=True)
                else:
                    yield SourceRow(line_number=reader.line_num, cells=fitted)
        except UnicodeDecodeError as exc:
            raise FileEncodingError(self.file_name, self.encoding, str(exc)) from exc
        except csv.Error as exc:
            raise ParseError(
                f"Could not parse '{self.file_name}' near line {reader.line_num}: {exc}",
                details={"line_number": reader.line_num},
            ) from exc

    # Excel -------------------------------------------------------------

    @contextmanager
    def _open_excel(self) -> Iterator[TabularStream]:
        try:
            workbook = load_workbook(self.path, read_only=True, data_only=True)
        except (InvalidFileException, OSError) + EXCEL_READ_ERRORS as exc:
            raise ParseError(
                f"'{self.file_name}' appears to be corrupted or is not a valid Excel workbook: {exc}"
            ) from exc

        try:
            worksheet = self._select_sheet(workbook)
            row_iter = enumerate(worksheet.iter_rows(values_only=True), start=1)
            raw_headers = self._read_excel_header(row_iter)
            if raw_headers is None:
                raise ValidationError(
                    f"No data found in sheet '{worksheet.title}'. "
                    "Please ensure the sheet has a header row and at least one data row."
                )
            # Spreadsheets report trailing formatted-but-empty header cells as None.
            while raw_headers and (raw_headers[-1] is None or str(raw_headers[-1]).strip() == ""):
                raw_headers.pop()
            headers = normalize_headers(raw_headers)
            yield TabularStream(
                headers=headers,
                rows=self._iter_excel_rows(row_iter, len(headers)),
                sheet_name=worksheet.title,
            )
        finally:
            workbook.close()

    def _unreadable_sheet(self, exc: Exception) -> ParseError:
        return ParseError(
            f"Could not read the worksheet in '{self.file_name}'; the workbook appears to be corrupted: {exc}"
        )

    def _read_excel_header(self, row_iter) -> Optional[List[Any]]:
        try:
            for _, values in row_iter:
                cells = list(values)
                if not _is_blank(cells):
                    return cells
        except EXCEL_READ_ERRORS as exc:
            raise self._unreadable_sheet(exc) from exc
        return None

    def _select_sheet(self, workbook):
        if self.sheet_name is None:
            return workbook.worksheets[0]
        if self.sheet_name not in workbook.sheetnames:
            raise ValidationError(
                f"Sheet '{self.sheet_name}' not found in '{self.file_name}'. "
                f"Available sheets: {', '.join(workbook.sheetnames)}"
            )
        return workbook[self.sheet_name]

    def _iter_excel_rows(self, row_iter, width: int) -> Iterator[SourceRow]:
        try:
            for line_number, values in row_iter:
                cells = list(values)
                if _is_blank(cells):
                    continue
                fitted = _fit_row(cells, width, pad_short=True)
                if fitted is None:
                    yield SourceRow(line_number=line_number, cells=cells, malformed=True)
                else:
                    yield SourceRow(line_number=line_number, cells=fitted)
        except EXCEL_READ_ERRORS as exc:
            raise self._unreadable_sheet(exc) from exc


def open_tabular_source(
    path: str,
    file_name: Optional[str] = None,
    *,
    sheet_name: Optional[str] = None,
    encoding: str = "utf-8-sig",
) -> TabularSource:
    """Validate the extension and return a re-openable source for ``path``."""
    source = TabularSource(path, file_name, sheet_name=sheet_name, encoding=encoding)
    logger.debug("Opened %r at %s", source, path)
    return source
