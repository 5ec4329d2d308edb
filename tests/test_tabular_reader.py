from datetime import datetime

import pytest

from dataask.core.errors import (
    FileEncodingError,
    ParseError,
    UnsupportedFileTypeError,
    ValidationError,
)
from dataask.domain.imports.processors.tabular_reader import (
    detect_file_type,
    normalize_headers,
    open_tabular_source,
)


def _rows(source):
    with source.open() as stream:
        return stream.headers, list(stream.rows)


def test_detect_file_type():
    assert detect_file_type("people.csv") == "csv"
    assert detect_file_type("REPORT.XLSX") == "excel"
    assert detect_file_type("macro.xlsm") == "excel"


@pytest.mark.parametrize("name", ["legacy.xls", "notes.txt", "data.json", "noextension"])
def test_unsupported_extensions_raise(name):
    with pytest.raises(UnsupportedFileTypeError) as excinfo:
        detect_file_type(name)
    assert isinstance(excinfo.value, ValidationError)
    assert excinfo.value.status_code == 400


def test_normalize_headers_fills_blanks_and_dedupes():
    assert normalize_headers(["id", "", "Name", "name", None, "id"]) == [
        "id", "Column_2", "Name", "name_2", "Column_5", "id_2",
    ]


def test_csv_doubled_quotes_and_embedded_commas(write_csv):
    path = write_csv("quotes.csv", 'id,text\n1,"He said ""hi"", then left"\n')

    headers, rows = _rows(open_tabular_source(path))

    assert headers == ["id", "text"]
    assert rows[0].cells == ["1", 'He said "hi", then left']


def test_csv_strips_utf8_bom(write_csv, tmp_path):
    path = tmp_path / "bom.csv"
    path.write_bytes("\ufeffid,name\n1,a\n".encode("utf-8"))

    headers, _ = _rows(open_tabular_source(str(path)))

    assert headers == ["id", "name"]


def test_csv_blank_lines_are_skipped(write_csv):
    path = write_csv("blank.csv", "a,b\n\n1,2\n,\n3,4\n")

    _, rows = _rows(open_tabular_source(path))

    assert [row.cells for row in rows] == [["1", "2"], ["3", "4"]]


def test_csv_rows_with_wrong_cell_count_are_marked_malformed(write_csv):
    path = write_csv("ragged.csv", "a,b\n1,2\n3\n4,5,6\n7,8,\n")

    _, rows = _rows(open_tabular_source(path))

    assert [row.malformed for row in rows] == [False, True, True, False]
    assert rows[1].line_number == 3
    assert rows[1].cells == ["3"]
    assert rows[3].cells == ["7", "8"]


def test_csv_rows_are_streamed_lazily(write_csv):
    path = write_csv("many.csv", "n\n" + "\n".join(str(i) for i in range(5000)) + "\n")

    with open_tabular_source(path).open() as stream:
        assert iter(stream.rows) is stream.rows
        first = next(stream.rows)

    assert first.cells == ["0"]


def test_count_rows_includes_malformed_rows(write_csv):
    path = write_csv("count.csv", "a,b\n1,2\n3\n4,5\n")

    assert open_tabular_source(path).count_rows() == 3


def test_source_can_be_reopened(write_csv):
    path = write_csv("twice.csv", "a\n1\n2\n")
    source = open_tabular_source(path)

    assert source.count_rows() == 2
    assert source.count_rows() == 2


def test_empty_csv_raises_validation_error(write_csv):
    path = write_csv("empty.csv", "")

    with pytest.raises(ValidationError):
        open_tabular_source(path).count_rows()


def test_missing_file_raises_validation_error(tmp_path):
    source = open_tabular_source(str(tmp_path / "gone.csv"))

    with pytest.raises(ValidationError):
        source.count_rows()


def test_undecodable_bytes_raise_encoding_error(tmp_path):
    path = tmp_path / "latin.csv"
    path.write_bytes(b"id,name\n1,caf\xe9\n")

    with pytest.raises(FileEncodingError) as excinfo:
        open_tabular_source(str(path)).count_rows()
    assert isinstance(excinfo.value, ParseError)
    assert excinfo.value.kind == "parse_error"


def test_explicit_encoding_reads_latin1(tmp_path):
    path = tmp_path / "latin.csv"
    path.write_bytes(b"id,name\n1,caf\xe9\n")

    _, rows = _rows(open_tabular_source(str(path), encoding="latin-1"))

    assert rows[0].cells == ["1", "café"]


def test_corrupt_workbook_raises_parse_error(tmp_path):
    path = tmp_path / "broken.xlsx"
    path.write_bytes(b"this is not a zip archive")

    with pytest.raises(ParseError):
        open_tabular_source(str(path)).count_rows()



def test_truncated_sheet_xml_raises_parse_error(write_corrupt_xlsx):
    rows = [["id", "name"]] + [[index, f"name {index}"] for index in range(30)]
    path = write_corrupt_xlsx("truncated.xlsx", {"Data": rows})
    source = open_tabular_source(path)

    with pytest.raises(ParseError) as excinfo:
        source.count_rows()

    assert "truncated.xlsx" in excinfo.value.message


def test_excel_first_sheet_is_default(write_xlsx):
    path = write_xlsx("book.xlsx", {
        "October": [["id", "sales"], [1, 10.5], [2, 20]],
        "November": [["id", "returns"], [1, 3]],
    })

    headers, rows = _rows(open_tabular_source(path))

    assert headers == ["id", "sales"]
    assert [row.cells for row in rows] == [[1, 10.5], [2, 20]]


def test_excel_selected_sheet(write_xlsx):
    path = write_xlsx("book.xlsx", {
        "October": [["id", "sales"], [1, 10.5]],
        "November": [["id", "returns"], [1, 3]],
    })

    with open_tabular_source(path, sheet_name="November").open() as stream:
        assert stream.sheet_name == "November"
        assert stream.headers == ["id", "returns"]


def test_excel_unknown_sheet_raises(write_xlsx):
    path = write_xlsx("book.xlsx", {"Only": [["a"], [1]]})

    with pytest.raises(ValidationError) as excinfo:
        open_tabular_source(path, sheet_name="Missing").count_rows()
    assert "Only" in excinfo.value.message


def test_excel_short_rows_are_padded_and_dates_kept(write_xlsx):
    joined = datetime(2024, 1, 2, 0, 0)
    path = write_xlsx("book.xlsx", {"People": [["id", "name", "joined"], [1, "Ann", joined], [2]]})

    _, rows = _rows(open_tabular_source(path))

    assert rows[0].cells == [1, "Ann", joined]
    assert rows[1].cells == [2, None, None]
    assert not any(row.malformed for row in rows)


def test_excel_wider_rows_are_malformed(write_xlsx):
    path = write_xlsx("book.xlsx", {"Data": [["a", "b"], [1, 2], [3, 4, 5]]})

    _, rows = _rows(open_tabular_source(path))

    assert [row.malformed for row in rows] == [False, True]
    assert rows[1].line_number == 3
