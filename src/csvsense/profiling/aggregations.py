"""Precomputed aggregations and index hints.

Both derive from finished column profiles so the executor can answer
whole-column questions without touching rows again.
"""

from __future__ import annotations

from csvsense.agents.contracts import (
    CategoricalAggregate,
    CategoricalStats,
    ColumnProfile,
    ColumnType,
    DataIndexes,
    DateTimeStats,
    IndexHint,
    NumericAggregate,
    NumericStats,
    PrecomputedAggregations,
    TemporalAggregate,
)


def build_aggregations(columns: list[ColumnProfile]) -> PrecomputedAggregations:
    numeric: dict[str, NumericAggregate] = {}
    categorical: dict[str, CategoricalAggregate] = {}
    temporal: dict[str, TemporalAggregate] = {}

    for col in columns:
        stats = col.statistics
        if isinstance(stats, NumericStats) and stats.count:
            numeric[col.name] = NumericAggregate(
                sum=stats.sum,
                avg=stats.mean,
                min=stats.min,
                max=stats.max,
                median=stats.median,
                stddev=stats.stddev,
                count=stats.count,
                percentiles=stats.percentiles,
                histogram=stats.histogram,
            )
        elif isinstance(stats, CategoricalStats):
            categorical[col.name] = CategoricalAggregate(
                value_counts=stats.distribution,
                top_values=stats.top_values,
                unique_count=stats.unique_count,
                entropy=stats.entropy,
            )
        elif isinstance(stats, DateTimeStats):
            temporal[col.name] = TemporalAggregate(
                min=stats.min,
                max=stats.max,
                range_days=stats.range_days,
                frequency=stats.frequency,
                trend=stats.trend,
                seasonality=stats.seasonality,
            )

    return PrecomputedAggregations(numeric=numeric, categorical=categorical, temporal=temporal)


def build_indexes(columns: list[ColumnProfile]) -> DataIndexes:
    """Suggest indexes from column shape.

    - primary: first fully populated unique column
    - secondary: categorical and boolean columns
    - composite: every (categorical, datetime) pair
    - full_text: text columns
    """
    primary = next((c.name for c in columns if c.unique and c.null_count == 0), None)
    categorical = [c for c in columns if c.type is ColumnType.CATEGORICAL]
    datetimes = [c for c in columns if c.type is ColumnType.DATETIME]

    secondary = [
        IndexHint(columns=[c.name], kind="secondary", cardinality=c.unique_count)
        for c in columns
        if c.type in (ColumnType.CATEGORICAL, ColumnType.BOOLEAN)
    ]
    composite = [
        IndexHint(columns=[cat.name, dt.name], kind="composite", cardinality=cat.unique_count)
        for cat in categorical
        for dt in datetimes
    ]
    return DataIndexes(
        primary=primary,
        secondary=secondary,
        composite=composite,
        full_text=[c.name for c in columns if c.type is ColumnType.TEXT],
    )
