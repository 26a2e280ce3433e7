"""Insights, chart suggestions and follow-up questions for executed plans."""

from __future__ import annotations

import numpy as np
import pandas as pd

from csvsense.agents.contracts import (
    AggregationFunction,
    ChartSuggestion,
    ChartType,
    ColumnType,
    DataProfile,
    ExecutionPlan,
    GeneratedInsight,
    InsightType,
    IntentType,
    QueryIntent,
)


FLAT_TREND_PCT = 2.0
MIN_ROWS_FOR_OUTLIERS = 4
MAX_PIE_SLICES = 6
MAX_FOLLOW_UPS = 4
LOW_QUALITY_SCORE = 70


def _value_column(frame: pd.DataFrame, intent: QueryIntent) -> str | None:
    for name in list(intent.entities.measures) + ["count"]:
        if name in frame.columns and pd.api.types.is_numeric_dtype(frame[name]):
            return name
    numeric = [c for c in frame.columns if pd.api.types.is_numeric_dtype(frame[c]) and not pd.api.types.is_bool_dtype(frame[c])]
    return numeric[0] if numeric else None


def _label_column(frame: pd.DataFrame, intent: QueryIntent) -> str | None:
    for name in intent.operation.group_by:
        if name in frame.columns:
            return name
    return None


def _fmt(value: float) -> str:
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,.2f}"


# =============================================================================
# Insights
# =============================================================================

def generate_insights(
    frame: pd.DataFrame,
    intent: QueryIntent,
    plan: ExecutionPlan,
    profile: DataProfile,
) -> list[GeneratedInsight]:
    insights: list[GeneratedInsight] = []
    value = _value_column(frame, intent)
    label = _label_column(frame, intent)

    insights.append(_summary(frame, intent, value))
    if value is not None and len(frame) >= 2:
        series = pd.to_numeric(frame[value], errors="coerce")
        if intent.type is IntentType.TREND:
            trend = _trend(series, value)
            if trend:
                insights.append(trend)
        if label is not None and intent.type is not IntentType.TREND:
            comparison = _comparison(frame, label, value)
            if comparison:
                insights.append(comparison)
        anomaly = _anomaly(frame, series, label, value)
        if anomaly:
            insights.append(anomaly)

    recommendation = _recommendation(intent, plan, profile, frame)
    if recommendation:
        insights.append(recommendation)
    return insights


def _summary(frame: pd.DataFrame, intent: QueryIntent, value: str | None) -> GeneratedInsight:
    if len(frame) == 1 and value is not None and not intent.operation.group_by:
        func = intent.operation.aggregation or AggregationFunction.COUNT
        result = frame[value].iloc[0]
        description = f"The {func.value} of {value} is {_fmt(result)}" if pd.notna(result) else f"No {value} values matched"
        return GeneratedInsight(
            type=InsightType.SUMMARY,
            title="Result",
            description=description,
            confidence=0.95,
            data={"value": None if pd.isna(result) else float(result)},
        )
    return GeneratedInsight(
        type=InsightType.SUMMARY,
        title="Result",
        description=f"{len(frame)} row(s) returned",
        confidence=0.9,
        data={"rows": len(frame)},
    )


def _trend(series: pd.Series, value: str) -> GeneratedInsight | None:
    values = series.dropna().to_numpy(dtype=float)
    if len(values) < 2:
        return None
    slope = float(np.polyfit(np.arange(len(values)), values, 1)[0])
    first, last = values[0], values[-1]
    change = (last - first) / abs(first) * 100 if first else None
    if change is not None and abs(change) < FLAT_TREND_PCT:
        direction = "flat"
    else:
        direction = "up" if slope > 0 else "down" if slope < 0 else "flat"
    description = f"{value} is trending {direction}"
    if change is not None:
        description += f" ({change:+.1f}% from first to last period)"
    return GeneratedInsight(
        type=InsightType.TREND,
        title=f"{value} trend",
        description=description,
        confidence=round(0.5 + 0.4 * min(len(values) / 12, 1.0), 2),
        data={"slope": slope, "direction": direction, "change_pct": change},
    )


def _comparison(frame: pd.DataFrame, label: str, value: str) -> GeneratedInsight | None:
    ranked = frame[[label, value]].dropna().sort_values(value, ascending=False)
    if len(ranked) < 2:
        return None
    top, bottom = ranked.iloc[0], ranked.iloc[-1]
    description = f"{top[label]} leads with {_fmt(top[value])}; {bottom[label]} is lowest with {_fmt(bottom[value])}"
    ratio = None
    if bottom[value] and bottom[value] > 0:
        ratio = float(top[value] / bottom[value])
        description += f" ({ratio:.1f}x)"
    return GeneratedInsight(
        type=InsightType.COMPARISON,
        title=f"{value} by {label}",
        description=description,
        confidence=0.85 if len(ranked) >= 3 else 0.7,
        data={"top": str(top[label]), "bottom": str(bottom[label]), "ratio": ratio},
    )


def _anomaly(frame: pd.DataFrame, series: pd.Series, label: str | None, value: str) -> GeneratedInsight | None:
    values = series.dropna()
    if len(values) < MIN_ROWS_FOR_OUTLIERS:
        return None
    q1, q3 = np.percentile(values, [25, 75])
    iqr = q3 - q1
    if iqr <= 0:
        return None
    low, high = q1 - 1.5 * iqr, q3 + 1.5 * iqr
    outliers = frame[(series < low) | (series > high)]
    if outliers.empty:
        return None
    names = [str(v) for v in outliers[label]] if label else [_fmt(v) for v in outliers[value]]
    return GeneratedInsight(
        type=InsightType.ANOMALY,
        title=f"Unusual {value} values",
        description=f"{len(outliers)} result(s) fall outside the expected range: {', '.join(names[:5])}",
        confidence=0.7,
        data={"lower_fence": float(low), "upper_fence": float(high), "count": len(outliers)},
    )


def _recommendation(
    intent: QueryIntent,
    plan: ExecutionPlan,
    profile: DataProfile,
    frame: pd.DataFrame,
) -> GeneratedInsight | None:
    if intent.unresolved_terms:
        return GeneratedInsight(
            type=InsightType.RECOMMENDATION,
            title="Some terms were not understood",
            description=f"Could not match {', '.join(repr(t) for t in intent.unresolved_terms)} to a column; "
                        "try using column names from the dataset",
            confidence=0.8,
        )
    if frame.empty:
        return GeneratedInsight(
            type=InsightType.RECOMMENDATION,
            title="No matching rows",
            description="The filters removed every row; try widening the conditions",
            confidence=0.8,
        )
    if profile.metadata.sampled or profile.metadata.row_count > len(profile.sample_data):
        return GeneratedInsight(
            type=InsightType.RECOMMENDATION,
            title="Computed on a sample",
            description=f"Results use the first {len(profile.sample_data)} of {profile.metadata.row_count} rows",
            confidence=0.9,
        )
    if profile.quality.overall_score < LOW_QUALITY_SCORE:
        return GeneratedInsight(
            type=InsightType.RECOMMENDATION,
            title="Check data quality",
            description=f"Dataset quality score is {profile.quality.overall_score:.0f}/100; "
                        "review the quality issues before relying on this result",
            confidence=0.7,
        )
    if plan.fallback_to_llm:
        return GeneratedInsight(
            type=InsightType.RECOMMENDATION,
            title="Low confidence interpretation",
            description="The question was only partially understood; rephrasing may give a more precise answer",
            confidence=0.6,
        )
    return None


# =============================================================================
# Charts and follow-ups
# =============================================================================

def suggest_charts(frame: pd.DataFrame, intent: QueryIntent, profile: DataProfile) -> list[ChartSuggestion]:
    suggestions: list[ChartSuggestion] = []
    value = _value_column(frame, intent)
    group_by = [g for g in intent.operation.group_by if g in frame.columns]
    datetime_cols = {c.name for c in profile.columns_of(ColumnType.DATETIME)}
    time_col = next((g for g in group_by if g in datetime_cols), None)
    dims = [g for g in group_by if g != time_col]

    if time_col and value:
        suggestions.append(ChartSuggestion(
            chart_type=ChartType.LINE, x_axis=time_col, y_axis=value,
            reason="Values over time read best as a line", score=0.9,
        ))
    if len(dims) >= 2:
        suggestions.append(ChartSuggestion(
            chart_type=ChartType.HEATMAP, x_axis=dims[0], y_axis=dims[1],
            reason="Two dimensions cross-tabulate into a heatmap", score=0.75,
        ))
    if dims and value:
        suggestions.append(ChartSuggestion(
            chart_type=ChartType.BAR, x_axis=dims[0], y_axis=value,
            reason="Bars compare values across categories", score=0.85,
        ))
        func = intent.operation.aggregation
        non_negative = bool((pd.to_numeric(frame[value], errors="coerce").dropna() >= 0).all())
        if len(frame) <= MAX_PIE_SLICES and non_negative and func in (AggregationFunction.SUM, AggregationFunction.COUNT):
            suggestions.append(ChartSuggestion(
                chart_type=ChartType.PIE, x_axis=dims[0], y_axis=value,
                reason="A few parts of a whole fit a pie chart", score=0.65,
            ))
    measures = [m for m in intent.entities.measures if m in frame.columns]
    if not group_by and len(measures) >= 2:
        suggestions.append(ChartSuggestion(
            chart_type=ChartType.SCATTER, x_axis=measures[0], y_axis=measures[1],
            reason="Two measures against each other show their relationship", score=0.8,
        ))
    suggestions.append(ChartSuggestion(
        chart_type=ChartType.TABLE, reason="Raw rows are always available as a table", score=0.5,
    ))
    return sorted(suggestions, key=lambda s: s.score, reverse=True)


def follow_up_questions(intent: QueryIntent, profile: DataProfile) -> list[str]:
    numeric = [c.name for c in profile.columns_of(ColumnType.NUMERIC)]
    categorical = [c.name for c in profile.columns_of(ColumnType.CATEGORICAL)]
    datetimes = [c.name for c in profile.columns_of(ColumnType.DATETIME)]
    measure = (intent.entities.measures or numeric or [None])[0]
    used = set(intent.operation.group_by)

    questions: list[str] = []
    if measure and datetimes and intent.type is not IntentType.TREND:
        questions.append(f"Show the {measure} trend over time")
    for dim in categorical:
        if dim not in used and measure:
            questions.append(f"What is the total {measure} by {dim}?")
            break
    dims = [g for g in intent.operation.group_by if g not in datetimes]
    if measure and dims:
        questions.append(f"Top 5 {dims[0]} by {measure}")
    if measure:
        questions.append(f"Show the distribution of {measure}")
    if intent.unresolved_terms:
        questions.insert(0, f"Available columns: {', '.join(c.name for c in profile.columns[:8])}")
    return list(dict.fromkeys(questions))[:MAX_FOLLOW_UPS]
