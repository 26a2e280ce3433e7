"""Tests for entity extraction against a profiled schema."""

from datetime import datetime

import pytest

from csvsense.agents.contracts import AggregationFunction, FilterOperator, Granularity, SortDirection
from csvsense.planning.entities import (
    EntityExtractor,
    coerce_filter_value,
    column_aliases,
    normalize_query,
)


@pytest.fixture
def extract(sales_profile):
    extractor = EntityExtractor(sales_profile)
    return extractor.extract


class TestHelpers:
    def test_normalize_query(self):
        assert normalize_query("  Total ORDER_ID  count ") == "total order id count"

    def test_aliases(self):
        assert {"order id", "orderid"} <= column_aliases("order_id")
        assert "categories" in column_aliases("category")
        assert "region" in column_aliases("regions")
        assert "unit price" in column_aliases("UnitPrice")

    def test_coerce_numeric(self, sales_profile):
        assert coerce_filter_value("$1,000", sales_profile.column("revenue")) == 1000

    def test_coerce_categorical_uses_profile_spelling(self, sales_profile):
        assert coerce_filter_value("north", sales_profile.column("region")) == "North"

    def test_coerce_rejects_bad_numbers(self, sales_profile):
        with pytest.raises(ValueError):
            coerce_filter_value("lots", sales_profile.column("revenue"))


class TestMentions:
    def test_measure_and_group_by(self, extract):
        result = extract("What is the total revenue by category?")
        assert result.measures == ["revenue"]
        assert result.group_by == ["category"]
        assert "category" in result.dimensions
        assert result.aggregation is AggregationFunction.SUM
        assert result.unresolved == []

    def test_plural_mentions(self, extract):
        result = extract("average quantity across regions")
        assert result.measures == ["quantity"]
        assert result.group_by == ["region"]
        assert result.aggregation is AggregationFunction.AVG

    def test_numeric_group_target_is_ignored(self, extract):
        result = extract("top 3 categories by revenue")
        assert result.group_by == []
        assert result.limit == 3
        assert result.sort_direction is SortDirection.DESC


class TestFilters:
    def test_symbolic_operator(self, extract):
        result = extract("show orders where revenue > 1000")
        condition = result.filters[0]
        assert (condition.column, condition.operator, condition.value) == ("revenue", FilterOperator.GT, 1000)

    def test_word_operator(self, extract):
        result = extract("rows with quantity at least 3")
        assert result.filters[0].operator is FilterOperator.GTE
        assert result.filters[0].value == 3

    def test_implicit_category_value(self, extract):
        result = extract("total revenue in North")
        assert len(result.filters) == 1
        condition = result.filters[0]
        assert (condition.column, condition.operator, condition.value) == ("region", FilterOperator.EQ, "North")

    def test_several_values_become_in(self, extract):
        result = extract("compare revenue for North vs South")
        condition = result.filters[0]
        assert condition.operator is FilterOperator.IN
        assert set(condition.value) == {"North", "South"}

    def test_explicit_list(self, extract):
        result = extract("revenue where category in (Electronics, Clothing)")
        condition = result.filters[0]
        assert condition.operator is FilterOperator.IN
        assert condition.value == ["Electronics", "Clothing"]

    def test_ordering_on_categorical_is_unresolved(self, extract):
        result = extract("rows where region > 5")
        assert result.filters == []
        assert result.unresolved

    def test_loose_words_in_ordinary_phrasing_are_not_filters(self, extract):
        result = extract("revenue over time")
        assert result.filters == []
        assert result.unresolved == []


class TestUnresolved:
    def test_unknown_measure(self, extract):
        result = extract("total profit by category")
        assert "profit" in result.unresolved

    def test_unknown_group(self, extract):
        result = extract("count orders by warehouse")
        assert result.unresolved == ["warehouse"]

    def test_time_unit_groups_are_not_unresolved(self, extract):
        result = extract("revenue by month")
        assert result.unresolved == []
        assert result.timeframe.granularity is Granularity.MONTH


class TestTime:
    def test_default_time_column(self, extract):
        assert extract("revenue").time_column == "date"

    def test_between_dates(self, extract):
        tf = extract("total revenue between 2024-01-01 and 2024-02-15").timeframe
        assert tf.column == "date"
        assert tf.start == datetime(2024, 1, 1)
        assert tf.end == datetime(2024, 2, 15, 23, 59, 59)

    def test_month_and_year(self, extract):
        tf = extract("revenue in february 2024").timeframe
        assert tf.start == datetime(2024, 2, 1)
        assert tf.end == datetime(2024, 2, 29, 23, 59, 59)

    def test_year(self, extract):
        tf = extract("revenue in 2024").timeframe
        assert (tf.start, tf.end) == (datetime(2024, 1, 1), datetime(2024, 12, 31, 23, 59, 59))

    def test_relative_range_anchors_on_latest_date(self, extract):
        tf = extract("revenue for the last 1 month").timeframe
        assert tf.end == datetime(2024, 3, 11)
        assert tf.start == datetime(2024, 2, 11)

    def test_granularity_word(self, extract):
        assert extract("weekly revenue").timeframe.granularity is Granularity.WEEK


class TestOperation:
    def test_sort_phrase(self, extract):
        result = extract("list revenue sorted by quantity ascending")
        assert result.sort[0].column == "quantity"
        assert result.sort[0].direction is SortDirection.ASC

    def test_bottom_is_ascending(self, extract):
        result = extract("bottom 2 regions by revenue")
        assert result.limit == 2
        assert result.sort_direction is SortDirection.ASC

    def test_count(self, extract):
        assert extract("how many orders").aggregation is AggregationFunction.COUNT
