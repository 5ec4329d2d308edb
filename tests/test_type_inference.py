from datetime import date, datetime

import pytest

from dataask.domain.imports.type_inference import (
    infer_column_type,
    infer_column_types,
    is_missing,
    parse_numeric,
)
from dataask.domain.imports.types import ColumnType


def test_integer_strings_infer_integer():
    assert infer_column_type(["1", "2", "-3", "+40"]) == ColumnType.INTEGER


@pytest.mark.parametrize("position", [0, 3, 7])
def test_one_non_numeric_value_forces_text(position):
    values = [str(n) for n in range(8)]
    values.insert(position, "abc")

    assert infer_column_type(values) == ColumnType.TEXT


def test_fractional_values_infer_real():
    assert infer_column_type(["1", "2.5", "3"]) == ColumnType.REAL
    assert infer_column_type([1.5, 2]) == ColumnType.REAL


def test_whole_floats_infer_integer():
    assert infer_column_type([1.0, 2, "3.0"]) == ColumnType.INTEGER


def test_integrality_is_judged_on_the_literal():
    assert infer_column_type(["1.0000000000000001", "2"]) == ColumnType.REAL
    assert infer_column_type(["10.000", "2e3"]) == ColumnType.INTEGER
    assert infer_column_type(["1e30"]) == ColumnType.REAL


def test_missing_values_are_ignored():
    assert infer_column_type(["1", None, "", "  ", float("nan"), "2"]) == ColumnType.INTEGER


def test_all_missing_is_text():
    assert infer_column_type([None, "", float("nan")]) == ColumnType.TEXT
    assert infer_column_type([]) == ColumnType.TEXT


def test_boolean_literals_infer_boolean():
    assert infer_column_type(["true", "FALSE", True, " False "]) == ColumnType.BOOLEAN


def test_boolean_mixed_with_numbers_is_not_boolean():
    assert infer_column_type(["true", "1"]) == ColumnType.TEXT


def test_iso_dates_infer_date():
    assert infer_column_type(["2024-01-02", "2023-12-31T08:30:00"]) == ColumnType.DATE
    assert infer_column_type([date(2024, 1, 2), datetime(2024, 1, 3, 9, 0)]) == ColumnType.DATE


def test_non_iso_dates_stay_text():
    assert infer_column_type(["01/02/2024", "2024-01-02"]) == ColumnType.TEXT


@pytest.mark.parametrize("literal", ["nan", "inf", "-Infinity", "1_000", "0x1F", "1,000"])
def test_non_plain_numeric_literals_are_text(literal):
    assert parse_numeric(literal) is None
    assert infer_column_type([literal, "1"]) == ColumnType.TEXT


def test_parse_numeric_rejects_booleans():
    assert parse_numeric(True) is None
    assert parse_numeric("1e3") == 1000.0


def test_is_missing():
    assert is_missing(None)
    assert is_missing("   ")
    assert is_missing(float("nan"))
    assert not is_missing(0)
    assert not is_missing("0")


def test_infer_column_types_per_column():
    headers = ["id", "name", "value"]
    rows = [["1", "Alice", "10.5"], ["2", "Bob", ""]]

    assert infer_column_types(headers, rows) == [ColumnType.INTEGER, ColumnType.TEXT, ColumnType.REAL]
