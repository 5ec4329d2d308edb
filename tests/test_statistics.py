import math

import pytest

from dataask.domain.statistics.summarizer import classify_distribution, summarize_column


def test_known_values_for_one_to_eight():
    stats = summarize_column([1, 2, 3, 4, 5, 6, 7, 8])

    assert stats.is_numeric
    assert stats.count == 8
    assert stats.mean == pytest.approx(4.5)
    assert stats.median == pytest.approx(4.5)
    assert stats.variance == pytest.approx(5.25)
    assert stats.std_dev == pytest.approx(math.sqrt(5.25))
    assert stats.min == 1 and stats.max == 8
    assert stats.q1 == pytest.approx(2.75)
    assert stats.q3 == pytest.approx(6.25)
    assert stats.iqr == pytest.approx(3.5)
    assert stats.skewness == pytest.approx(0.0, abs=1e-12)
    assert stats.kurtosis == pytest.approx(48.5625 / 5.25 ** 2 - 3)
    assert stats.outlier_count == 0
    assert stats.outlier_method == "iqr"
    assert stats.distribution_type == "light_tailed"
    assert stats.mode == 1


def test_completeness_and_uniqueness_count_missing_values():
    stats = summarize_column([1, None, "", 3])

    assert stats.count == 4
    assert stats.missing_count == 2
    assert stats.completeness == pytest.approx(0.5)
    assert stats.distinct_count == 2
    assert stats.uniqueness_ratio == pytest.approx(0.5)


def test_mode_ties_go_to_first_value_seen():
    assert summarize_column([3, 1, 3, 1, 2]).mode == 3
    assert summarize_column(["b", "a", "a", "b"]).mode == "b"


def test_numeric_strings_are_treated_as_numbers():
    stats = summarize_column(["1", "2", "2.5"])

    assert stats.is_numeric
    assert stats.mean == pytest.approx(5.5 / 3)


def test_text_columns_only_get_completeness_uniqueness_and_mode():
    stats = summarize_column(["a", "b", "a", None])

    assert not stats.is_numeric
    assert stats.completeness == pytest.approx(0.75)
    assert stats.distinct_count == 2
    assert stats.uniqueness_ratio == pytest.approx(0.5)
    assert stats.mode == "a"
    assert stats.mean is None
    assert stats.outlier_count is None
    assert stats.distribution_type is None


def test_outlier_methods_can_disagree():
    values = [1, 2, 3, 4, 5, 6, 7, 8, 100]

    by_iqr = summarize_column(values, outlier_method="iqr")
    by_zscore = summarize_column(values, outlier_method="zscore")

    assert (by_iqr.outlier_count, by_iqr.outlier_method) == (1, "iqr")
    assert (by_zscore.outlier_count, by_zscore.outlier_method) == (0, "zscore")


def test_zscore_flags_extreme_values():
    values = [10] * 30 + [11] * 30 + [1000]

    assert summarize_column(values, outlier_method="zscore").outlier_count == 1


def test_constant_column():
    stats = summarize_column([5] * 10)

    assert stats.std_dev == 0
    assert stats.skewness is None
    assert stats.kurtosis is None
    assert stats.outlier_count == 0
    assert stats.distribution_type == "constant"


def test_small_samples_are_not_labelled():
    assert summarize_column([1, 2, 3]).distribution_type == "insufficient_data"


def test_right_skewed_column():
    stats = summarize_column([1, 1, 1, 1, 1, 1, 1, 1, 2, 10])

    assert stats.skewness > 0.5
    assert stats.distribution_type == "right_skewed"


@pytest.mark.parametrize("skew, kurt, label", [
    (0.1, 0.2, "normal"),
    (0.7, 0.0, "right_skewed"),
    (-0.7, 0.0, "left_skewed"),
    (0.2, 2.5, "heavy_tailed"),
    (0.2, -1.5, "light_tailed"),
])
def test_distribution_thresholds(skew, kurt, label):
    assert classify_distribution(100, 1.0, skew, kurt) == label


def test_summaries_are_idempotent():
    values = [3.5, None, 2, 2, 8, 13, "", 21, 0.5, 2]

    assert summarize_column(values).model_dump() == summarize_column(values).model_dump()


def test_empty_column():
    stats = summarize_column([])

    assert stats.count == 0
    assert stats.completeness == 0.0
    assert not stats.is_numeric
    assert stats.mode is None


def test_unknown_outlier_method_is_rejected():
    with pytest.raises(ValueError):
        summarize_column([1, 2], outlier_method="mad")
