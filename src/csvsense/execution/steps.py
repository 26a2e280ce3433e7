"""Step semantics for the semantic executor.

Each plan step type maps to one function over a pandas DataFrame. Columns
are resolved against the profile (case-insensitive) and values are coerced
by the column's declared type before comparison.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any

import numpy as np
import pandas as pd

from csvsense.agents.contracts import (
    AggregationFunction,
    ColumnType,
    DataProfile,
    FilterOperator,
    Granularity,
)
from csvsense.profiling.type_inference import BOOLEAN_TOKENS


class StepError(Exception):
    """A step cannot run against this data (missing column, incompatible type)."""


_PERIOD_CODES = {
    Granularity.DAY: "D",
    Granularity.WEEK: "W",
    Granularity.MONTH: "M",
    Granularity.QUARTER: "Q",
    Granularity.YEAR: "Y",
}

_ORDERING_OPS = {FilterOperator.GT, FilterOperator.LT, FilterOperator.GTE, FilterOperator.LTE}
_STRING_OPS = {FilterOperator.CONTAINS, FilterOperator.STARTS_WITH, FilterOperator.ENDS_WITH}

_PANDAS_FUNCTIONS = {
    AggregationFunction.SUM: "sum",
    AggregationFunction.AVG: "mean",
    AggregationFunction.MIN: "min",
    AggregationFunction.MAX: "max",
    AggregationFunction.MEDIAN: "median",
    AggregationFunction.COUNT: "count",
}


# =============================================================================
# Working set
# =============================================================================

def build_frame(profile: DataProfile, columns: list[str] | None = None) -> pd.DataFrame:
    """Typed DataFrame over the profile's sample rows.

    Args:
        profile: Source profile
        columns: Restrict to these columns (all when empty)

    Raises:
        StepError: If a requested column is not in the profile
    """
    names = [resolve_column(profile, c) for c in columns] if columns else [c.name for c in profile.columns]
    frame = pd.DataFrame(profile.sample_data, columns=[c.name for c in profile.columns])
    frame = frame[list(dict.fromkeys(names))].copy()
    for name in frame.columns:
        col_type = profile.column(name).type
        if col_type is ColumnType.NUMERIC:
            frame[name] = pd.to_numeric(frame[name], errors="coerce")
        elif col_type is ColumnType.DATETIME:
            frame[name] = pd.to_datetime(frame[name], errors="coerce")
    return frame


def resolve_column(profile: DataProfile, name: str) -> str:
    col = profile.column(name)
    if col is None:
        raise StepError(f"unknown column {name!r}")
    return col.name


def _require(frame: pd.DataFrame, name: str) -> None:
    if name not in frame.columns:
        raise StepError(f"column {name!r} is not available at this step")


# =============================================================================
# Filter
# =============================================================================

def apply_filters(
    frame: pd.DataFrame,
    profile: DataProfile,
    conditions: list[dict[str, Any]],
    time_range: dict[str, Any] | None = None,
) -> pd.DataFrame:
    mask = pd.Series(True, index=frame.index)
    for condition in conditions:
        mask &= condition_mask(frame, profile, condition)
    if time_range:
        mask &= time_range_mask(frame, profile, time_range)
    return frame[mask]


def condition_mask(frame: pd.DataFrame, profile: DataProfile, condition: dict[str, Any]) -> pd.Series:
    """Boolean mask for one filter condition; nulls never match."""
    name = resolve_column(profile, condition["column"])
    _require(frame, name)
    col_type = profile.column(name).type
    op = FilterOperator(condition["operator"])
    series = frame[name]

    if op in _ORDERING_OPS and col_type not in (ColumnType.NUMERIC, ColumnType.DATETIME):
        raise StepError(f"operator {op.value!r} is incompatible with {col_type.value} column {name!r}")
    if op in _STRING_OPS and col_type not in (ColumnType.CATEGORICAL, ColumnType.TEXT):
        raise StepError(f"operator {op.value!r} is incompatible with {col_type.value} column {name!r}")

    present = series.notna()
    raw = condition.get("value")
    if op in (FilterOperator.IN, FilterOperator.NOT_IN):
        values = raw if isinstance(raw, list) else [raw]
        keys, targets = _comparable(series, col_type), {_coerce(v, col_type, name) for v in values}
        hit = keys.isin(targets)
        return present & (hit if op is FilterOperator.IN else ~hit)

    if op in _STRING_OPS:
        text = series.astype(str).str.lower()
        needle = str(raw).lower()
        if op is FilterOperator.CONTAINS:
            hit = text.str.contains(needle, regex=False)
        elif op is FilterOperator.STARTS_WITH:
            hit = text.str.startswith(needle)
        else:
            hit = text.str.endswith(needle)
        return present & hit

    keys, target = _comparable(series, col_type), _coerce(raw, col_type, name)
    if op is FilterOperator.EQ:
        return present & (keys == target)
    if op is FilterOperator.NE:
        return present & (keys != target)
    if op is FilterOperator.GT:
        return present & (keys > target)
    if op is FilterOperator.LT:
        return present & (keys < target)
    if op is FilterOperator.GTE:
        return present & (keys >= target)
    return present & (keys <= target)


def time_range_mask(frame: pd.DataFrame, profile: DataProfile, time_range: dict[str, Any]) -> pd.Series:
    name = resolve_column(profile, time_range["column"])
    _require(frame, name)
    if profile.column(name).type is not ColumnType.DATETIME:
        raise StepError(f"time range needs a datetime column, {name!r} is not one")
    series = frame[name]
    mask = series.notna()
    if time_range.get("start"):
        mask &= series >= _naive(time_range["start"])
    if time_range.get("end"):
        mask &= series <= _naive(time_range["end"])
    return mask


def _naive(value: Any) -> pd.Timestamp:
    stamp = pd.Timestamp(value)
    return stamp.tz_convert(None) if stamp.tzinfo is not None else stamp


def _comparable(series: pd.Series, col_type: ColumnType) -> pd.Series:
    if col_type in (ColumnType.CATEGORICAL, ColumnType.TEXT):
        return series.astype(str).str.lower()
    return series


def _coerce(value: Any, col_type: ColumnType, column: str) -> Any:
    try:
        if col_type is ColumnType.NUMERIC:
            if isinstance(value, bool):
                raise ValueError(value)
            return float(str(value).replace(",", ""))
        if col_type is ColumnType.DATETIME:
            return _naive(value)
        if col_type is ColumnType.BOOLEAN:
            if isinstance(value, bool):
                return value
            return BOOLEAN_TOKENS[str(value).strip().lower()]
    except (ValueError, TypeError, KeyError) as exc:
        raise StepError(f"value {value!r} is not valid for {col_type.value} column {column!r}") from exc
    return str(value).lower()


# =============================================================================
# Aggregate
# =============================================================================

def bucket_times(series: pd.Series, grain: Granularity) -> pd.Series:
    if grain is Granularity.HOUR:
        return series.dt.floor("h")
    return series.dt.to_period(_PERIOD_CODES[grain]).dt.start_time


def aggregate(
    frame: pd.DataFrame,
    profile: DataProfile,
    function: str,
    measures: list[str],
    group_by: list[str],
    time_column: str | None = None,
    time_grain: str | None = None,
) -> pd.DataFrame:
    """Group and aggregate; without measures the rows are counted."""
    func = AggregationFunction(function)
    measures = [resolve_column(profile, m) for m in measures]
    group_by = [resolve_column(profile, g) for g in group_by]
    for name in measures + group_by:
        _require(frame, name)
    if func not in (AggregationFunction.COUNT, AggregationFunction.MODE):
        for name in measures:
            if profile.column(name).type is not ColumnType.NUMERIC:
                raise StepError(f"cannot {func.value} non-numeric column {name!r}")

    work = frame
    if time_column and time_grain:
        time_column = resolve_column(profile, time_column)
        work = frame.copy()
        work[time_column] = bucket_times(work[time_column], Granularity(time_grain))

    if not group_by:
        if not measures:
            return pd.DataFrame([{"count": len(work)}])
        return pd.DataFrame([{m: _reduce(work[m], func) for m in measures}])

    grouped = work.groupby(group_by, dropna=True, sort=True)
    if not measures:
        return grouped.size().reset_index(name="count")
    if func is AggregationFunction.MODE:
        result = grouped[measures].agg(lambda s: _reduce(s, func))
    else:
        result = grouped[measures].agg(_PANDAS_FUNCTIONS[func])
    return result.reset_index()


def aggregate_precomputed(profile: DataProfile, function: str, measures: list[str]) -> pd.DataFrame | None:
    """Answer an ungrouped aggregate from the profile's precomputed values.

    Returns None when the precomputed aggregates cannot answer it.
    """
    func = AggregationFunction(function)
    if not measures:
        return pd.DataFrame([{"count": profile.metadata.row_count}]) if func is AggregationFunction.COUNT else None
    field = {
        AggregationFunction.SUM: "sum",
        AggregationFunction.AVG: "avg",
        AggregationFunction.MIN: "min",
        AggregationFunction.MAX: "max",
        AggregationFunction.MEDIAN: "median",
        AggregationFunction.COUNT: "count",
    }.get(func)
    if field is None:
        return None
    row = {}
    for measure in measures:
        agg = profile.aggregations.numeric.get(resolve_column(profile, measure))
        if agg is None:
            return None
        row[measure] = getattr(agg, field)
    return pd.DataFrame([row])


def _reduce(series: pd.Series, func: AggregationFunction) -> Any:
    values = series.dropna()
    if func is AggregationFunction.COUNT:
        return int(len(values))
    if values.empty:
        return None
    if func is AggregationFunction.MODE:
        return values.mode().iloc[0]
    return getattr(values, _PANDAS_FUNCTIONS[func])()


# =============================================================================
# Sort, limit, transform
# =============================================================================

def sort_rows(frame: pd.DataFrame, keys: list[dict[str, Any]]) -> pd.DataFrame:
    if not keys:
        return frame
    by, ascending = [], []
    for key in keys:
        column = _frame_column(frame, key["column"])
        by.append(column)
        ascending.append(key.get("direction", "desc") == "asc")
    return frame.sort_values(by=by, ascending=ascending, na_position="last", kind="mergesort")


def limit_rows(frame: pd.DataFrame, count: int) -> pd.DataFrame:
    if count < 1:
        raise StepError(f"limit must be positive, got {count}")
    return frame.head(count)


def transform(frame: pd.DataFrame, profile: DataProfile, kind: str, **params: Any) -> pd.DataFrame:
    if kind == "column_summary":
        return column_summary(profile)
    if kind == "histogram":
        return histogram_rows(frame, _frame_column(frame, params["column"]), params.get("bins", 10))
    if kind == "correlation":
        return correlation_rows(frame, [_frame_column(frame, c) for c in params["columns"]])

    column = _frame_column(frame, params["column"])
    values = pd.to_numeric(frame[column], errors="coerce")
    out = frame.copy()
    if kind == "pct_of_total":
        total = values.sum()
        out[f"{column}_pct_of_total"] = (values / total * 100).round(2) if total else np.nan
    elif kind == "pct_change":
        out[f"{column}_pct_change"] = (values.pct_change(fill_method=None) * 100).round(2)
    elif kind == "rank":
        out[f"{column}_rank"] = values.rank(method="min", ascending=False).astype("Int64")
    elif kind == "cumulative":
        out[f"{column}_cumulative"] = values.cumsum()
    else:
        raise StepError(f"unknown transform {kind!r}")
    return out


def _frame_column(frame: pd.DataFrame, name: str) -> str:
    if name in frame.columns:
        return name
    lowered = {str(c).lower(): c for c in frame.columns}
    if name.lower() in lowered:
        return lowered[name.lower()]
    raise StepError(f"column {name!r} is not available at this step")


def histogram_rows(frame: pd.DataFrame, column: str, bins: int = 10) -> pd.DataFrame:
    values = pd.to_numeric(frame[column], errors="coerce").dropna()
    if values.empty:
        return pd.DataFrame(columns=["lower", "upper", "count"])
    if values.min() == values.max():
        return pd.DataFrame([{"lower": float(values.min()), "upper": float(values.max()), "count": len(values)}])
    counts, edges = np.histogram(values, bins=bins)
    return pd.DataFrame([
        {"lower": float(edges[i]), "upper": float(edges[i + 1]), "count": int(counts[i])}
        for i in range(len(counts))
    ])


def correlation_rows(frame: pd.DataFrame, columns: list[str]) -> pd.DataFrame:
    numeric = frame[columns].apply(pd.to_numeric, errors="coerce")
    matrix = numeric.corr(method="pearson")
    rows = []
    for i, a in enumerate(columns):
        for b in columns[i + 1:]:
            value = matrix.loc[a, b]
            rows.append({"column_a": a, "column_b": b, "correlation": None if pd.isna(value) else round(float(value), 4)})
    return pd.DataFrame(rows, columns=["column_a", "column_b", "correlation"])


def column_summary(profile: DataProfile) -> pd.DataFrame:
    rows = []
    for col in profile.columns:
        stats = col.statistics
        summary: Any = None
        if col.type is ColumnType.NUMERIC:
            summary = round(stats.mean, 4)
        elif col.type is ColumnType.CATEGORICAL:
            summary = stats.mode
        elif col.type is ColumnType.DATETIME:
            summary = f"{stats.min.isoformat()} to {stats.max.isoformat()}"
        elif col.type is ColumnType.BOOLEAN:
            summary = round(stats.true_percentage, 2)
        rows.append({
            "column": col.name,
            "type": col.type.value,
            "null_percentage": col.null_percentage,
            "unique_count": col.unique_count,
            "summary": summary,
        })
    return pd.DataFrame(rows)


# =============================================================================
# Output
# =============================================================================

def to_records(frame: pd.DataFrame) -> list[dict[str, Any]]:
    """JSON-safe row dicts (ISO datetimes, None for missing, builtin numbers)."""
    return [{str(k): _json_safe(v) for k, v in row.items()} for row in frame.to_dict(orient="records")]


def _json_safe(value: Any) -> Any:
    if value is None or value is pd.NA or value is pd.NaT:
        return None
    if isinstance(value, (pd.Timestamp, datetime)):
        return value.isoformat()
    if isinstance(value, np.bool_):
        return bool(value)
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, (float, np.floating)):
        f = float(value)
        if math.isnan(f) or math.isinf(f):
            return None
        return int(f) if f.is_integer() and abs(f) < 2**53 else f
    return value
