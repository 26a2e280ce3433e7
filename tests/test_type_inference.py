"""Tests for column type inference and per-type statistics."""

import pandas as pd
import pytest

from csvsense.agents.contracts import ColumnType
from csvsense.profiling.statistics import (
    categorical_stats,
    datetime_stats,
    infer_frequency,
    numeric_stats,
    text_stats,
)
from csvsense.profiling.type_inference import (
    build_typed_column,
    infer_column_type,
    normalize_nulls,
    parse_numeric,
)


def infer(values):
    return infer_column_type(normalize_nulls(pd.Series(values, dtype="string")))


class TestInference:
    def test_numeric_with_currency_and_separators(self):
        assert infer(["$1,200.50", "300", "(45.00)", "12%"]) is ColumnType.NUMERIC

    def test_boolean_tokens(self):
        assert infer(["yes", "no", "Yes", "no", ""]) is ColumnType.BOOLEAN

    def test_dates(self):
        assert infer(["2024-01-05", "2024-02-01", "2024-03-15"]) is ColumnType.DATETIME

    def test_bare_numbers_are_not_dates(self):
        assert infer(["20240105", "20240201", "20240315"]) is ColumnType.NUMERIC

    def test_repeated_labels_are_categorical(self):
        assert infer(["North", "South", "North", "East", "South"]) is ColumnType.CATEGORICAL

    def test_unique_free_text(self):
        values = [f"customer left a note number {i} about delivery" for i in range(60)]
        assert infer(values) is ColumnType.TEXT

    def test_all_null_is_text(self):
        assert infer(["", "n/a", "null"]) is ColumnType.TEXT

    def test_parse_numeric_handles_accounting_negatives(self):
        assert parse_numeric(pd.Series(["(12.5)"])).iloc[0] == -12.5

    def test_typed_column_counts(self):
        col = build_typed_column("amount", pd.Series(["1", "2", "", "x", "4"]))
        assert col.type is ColumnType.NUMERIC
        assert col.non_null == 4
        assert col.conforming == 3


class TestNumericStats:
    def test_two_values(self):
        stats = numeric_stats(pd.Series([25.0, 30.0]))
        assert stats.min == 25
        assert stats.max == 30
        assert stats.mean == pytest.approx(27.5)
        assert stats.median == pytest.approx(27.5)
        assert stats.count == 2
        assert stats.sum == 55

    def test_population_variance(self):
        stats = numeric_stats(pd.Series([2.0, 4.0, 4.0, 4.0, 5.0, 5.0, 7.0, 9.0]))
        assert stats.variance == pytest.approx(4.0)
        assert stats.stddev == pytest.approx(2.0)
        assert stats.mode == [4.0]

    def test_outliers(self):
        stats = numeric_stats(pd.Series([10.0, 11.0, 12.0, 11.0, 10.0, 500.0]))
        assert stats.outlier_count == 1
        assert stats.outliers == [500.0]

    def test_histogram_covers_all_values(self):
        stats = numeric_stats(pd.Series(range(100), dtype=float))
        assert sum(b.count for b in stats.histogram) == 100

    def test_empty(self):
        stats = numeric_stats(pd.Series([], dtype=float))
        assert stats.count == 0


class TestOtherStats:
    def test_categorical(self):
        stats = categorical_stats(pd.Series(["a", "b", "a", "a", "c"]))
        assert stats.mode == "a"
        assert stats.unique_count == 3
        assert stats.top_values[0].count == 3
        assert stats.entropy > 0

    def test_daily_datetime(self):
        stamps = pd.Series(pd.date_range("2024-01-01", periods=30, freq="D"))
        stats = datetime_stats(stamps)
        assert stats.frequency == "daily"
        assert stats.range_days == pytest.approx(29)

    @pytest.mark.parametrize("days,expected", [(1, "daily"), (7, "weekly"), (30, "monthly"), (365, "yearly")])
    def test_frequency_buckets(self, days, expected):
        assert infer_frequency(days) == expected

    def test_text_language(self):
        series = pd.Series([f"the parcel for order {i} arrived late" for i in range(10)])
        stats = text_stats(series)
        assert stats.languages == ["en"]
        assert stats.common_words[0].word in {"parcel", "order", "arrived", "late"}

    def test_text_patterns(self):
        stats = text_stats(pd.Series([f"user{i}@example.com" for i in range(10)]))
        assert any(p.name == "email" and p.matches == 10 for p in stats.patterns)
