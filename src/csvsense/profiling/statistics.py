"""Type-specific column statistics.

Pure pandas + numpy. Each function takes the parsed, non-null values of one
column and returns the matching statistics payload from the contracts.
"""

from __future__ import annotations

import math
import re
from collections import Counter
from typing import Any

import numpy as np
import pandas as pd

from csvsense.agents.contracts import (
    BooleanStats,
    CategoricalStats,
    DateGap,
    DateTimeStats,
    HistogramBin,
    NumericStats,
    Percentiles,
    RegexPattern,
    SeasonalityPattern,
    TextStats,
    ValueCount,
    WordCount,
)


HISTOGRAM_BINS = 10
MAX_OUTLIERS_LISTED = 20
TOP_VALUES = 10
MAX_DISTRIBUTION_ENTRIES = 50
MAX_GAPS = 10

STOPWORDS = frozenset(
    "the and for are but not you all any can had her was one our out has have "
    "him his how its may new now old see two way who did get let say she too "
    "use this that with from they will would there their what about which when "
    "were been into than then them these some".split()
)

TEXT_PATTERNS: list[tuple[str, str, str]] = [
    ("email", r"^[\w.+-]+@[\w-]+\.[\w.-]+$", "Email address"),
    ("url", r"^https?://\S+$", "URL"),
    ("phone", r"^\+?[\d\s().-]{7,}\d$", "Phone-like number"),
    ("code", r"^[A-Z]{2,}[-_]?\d+$", "Uppercase identifier code"),
    ("numeric_code", r"^\d{4,}$", "Digits-only code"),
]
_PATTERN_MIN_RATIO = 0.1

_WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
_MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


def _safe_float(v: Any) -> float:
    """Coerce to float, return 0.0 on failure."""
    try:
        f = float(v)
        return 0.0 if math.isnan(f) or math.isinf(f) else f
    except (TypeError, ValueError):
        return 0.0


# ---------------------------------------------------------------------------
# Numeric
# ---------------------------------------------------------------------------

def percentile(values: np.ndarray, p: float) -> float:
    """Linear-interpolated percentile at rank ``p * (n - 1)``."""
    return _safe_float(np.percentile(values, p * 100))


def histogram(values: np.ndarray, bins: int = HISTOGRAM_BINS) -> list[HistogramBin]:
    """Equal-width histogram; a single bin when every value is the same."""
    if len(values) == 0:
        return []
    lo, hi = float(values.min()), float(values.max())
    if lo == hi:
        return [HistogramBin(lower=lo, upper=hi, count=len(values))]
    counts, edges = np.histogram(values, bins=bins, range=(lo, hi))
    return [
        HistogramBin(lower=float(edges[i]), upper=float(edges[i + 1]), count=int(counts[i]))
        for i in range(len(counts))
    ]


def iqr_bounds(values: np.ndarray, k: float = 1.5) -> tuple[float, float]:
    q1, q3 = percentile(values, 0.25), percentile(values, 0.75)
    iqr = q3 - q1
    return q1 - k * iqr, q3 + k * iqr


def numeric_stats(series: pd.Series) -> NumericStats:
    """Statistics for numeric values. Variance and stddev are population measures."""
    values = pd.to_numeric(series, errors="coerce").dropna().to_numpy(dtype=float)
    n = len(values)
    if n == 0:
        zero = Percentiles(p25=0.0, p50=0.0, p75=0.0, p90=0.0, p95=0.0)
        return NumericStats(min=0.0, max=0.0, mean=0.0, median=0.0, stddev=0.0, variance=0.0, percentiles=zero)

    mean = float(values.mean())
    variance = float(values.var())
    stddev = math.sqrt(variance)

    counts = Counter(values.tolist())
    top = max(counts.values())
    modes = sorted(v for v, c in counts.items() if c == top)[:10] if top > 1 or n == 1 else []

    skewness = 0.0
    if stddev > 0:
        skewness = _safe_float(((values - mean) ** 3).mean() / stddev ** 3)

    lower, upper = iqr_bounds(values)
    outliers = values[(values < lower) | (values > upper)]

    return NumericStats(
        count=n,
        sum=_safe_float(values.sum()),
        min=float(values.min()),
        max=float(values.max()),
        mean=mean,
        median=percentile(values, 0.5),
        mode=modes,
        stddev=stddev,
        variance=variance,
        skewness=round(skewness, 4),
        percentiles=Percentiles(
            p25=percentile(values, 0.25),
            p50=percentile(values, 0.5),
            p75=percentile(values, 0.75),
            p90=percentile(values, 0.90),
            p95=percentile(values, 0.95),
        ),
        histogram=histogram(values),
        outliers=[float(v) for v in outliers[:MAX_OUTLIERS_LISTED]],
        outlier_count=int(len(outliers)),
    )


# ---------------------------------------------------------------------------
# Categorical
# ---------------------------------------------------------------------------

def shannon_entropy(counts: pd.Series) -> float:
    total = counts.sum()
    if total == 0:
        return 0.0
    p = counts / total
    return _safe_float(-(p * np.log2(p)).sum())


def categorical_stats(series: pd.Series) -> CategoricalStats:
    values = series.dropna().astype(str)
    counts = values.value_counts()
    n = int(counts.sum())
    top_values = [
        ValueCount(value=str(v), count=int(c), percentage=round(c / n * 100, 2))
        for v, c in counts.head(TOP_VALUES).items()
    ] if n else []
    return CategoricalStats(
        unique_count=int(len(counts)),
        top_values=top_values,
        entropy=round(shannon_entropy(counts), 4),
        mode=str(counts.index[0]) if n else None,
        distribution={str(v): int(c) for v, c in counts.head(MAX_DISTRIBUTION_ENTRIES).items()},
    )


# ---------------------------------------------------------------------------
# Datetime
# ---------------------------------------------------------------------------

_FREQUENCY_PERIOD = {"daily": "D", "weekly": "W", "monthly": "M", "yearly": "Y", "irregular": "M"}


def infer_frequency(median_interval_days: float) -> str:
    if median_interval_days <= 2:
        return "daily"
    if median_interval_days <= 9:
        return "weekly"
    if median_interval_days <= 35:
        return "monthly"
    if median_interval_days <= 400:
        return "yearly"
    return "irregular"


def _slope(y: np.ndarray) -> float:
    if len(y) < 2:
        return 0.0
    x = np.arange(len(y), dtype=float)
    return _safe_float(np.polyfit(x, y.astype(float), 1)[0])


def detect_seasonality(stamps: pd.Series, range_days: float) -> SeasonalityPattern | None:
    """Weekday or month-of-year concentration measured by coefficient of variation."""
    if range_days >= 730:
        counts = stamps.dt.month.value_counts().reindex(range(1, 13), fill_value=0)
        labels, period = _MONTHS, "yearly"
    elif range_days >= 21:
        counts = stamps.dt.dayofweek.value_counts().reindex(range(7), fill_value=0)
        labels, period = _WEEKDAYS, "weekly"
    else:
        return None
    mean = counts.mean()
    if mean == 0:
        return None
    strength = min(_safe_float(counts.std(ddof=0) / mean), 1.0)
    if strength < 0.3:
        return None
    peak_idx = counts.sort_values(ascending=False).index[:2]
    offset = 1 if period == "yearly" else 0
    return SeasonalityPattern(
        period=period,
        strength=round(strength, 4),
        peaks=[labels[i - offset] for i in peak_idx],
    )


def datetime_stats(series: pd.Series) -> DateTimeStats:
    stamps = pd.to_datetime(series, errors="coerce").dropna().sort_values()
    start, end = stamps.iloc[0], stamps.iloc[-1]
    range_days = (end - start).total_seconds() / 86400

    unique = pd.Series(stamps.unique()).sort_values()
    intervals = unique.diff().dropna().dt.total_seconds() / 86400
    median_interval = float(intervals.median()) if len(intervals) else 0.0
    frequency = infer_frequency(median_interval) if len(intervals) else "irregular"

    seasonality = detect_seasonality(stamps, range_days)

    period_counts = stamps.dt.to_period(_FREQUENCY_PERIOD[frequency]).value_counts().sort_index()
    trend = "stable"
    if len(period_counts) >= 3:
        rel_slope = _slope(period_counts.to_numpy()) / max(period_counts.mean(), 1e-9)
        if rel_slope > 0.05:
            trend = "increasing"
        elif rel_slope < -0.05:
            trend = "decreasing"
        elif seasonality is not None:
            trend = "seasonal"

    gaps: list[DateGap] = []
    if median_interval > 0:
        diffs = unique.diff()
        for idx in intervals[intervals > 3 * median_interval].index[:MAX_GAPS]:
            gap_end = unique.loc[idx]
            gap_start = gap_end - diffs.loc[idx]
            gaps.append(DateGap(
                start=gap_start.to_pydatetime(),
                end=gap_end.to_pydatetime(),
                duration_days=round(diffs.loc[idx].total_seconds() / 86400, 3),
            ))

    return DateTimeStats(
        min=start.to_pydatetime(),
        max=end.to_pydatetime(),
        range_days=round(range_days, 3),
        frequency=frequency,
        trend=trend,
        seasonality=seasonality,
        gaps=gaps,
    )


# ---------------------------------------------------------------------------
# Text and boolean
# ---------------------------------------------------------------------------

_WORD_RE = re.compile(r"[a-z][a-z0-9']+")


def text_stats(series: pd.Series) -> TextStats:
    values = series.dropna().astype(str)
    lengths = values.str.len()
    n = len(values)

    words: Counter[str] = Counter()
    for text in values.iloc[:5000]:
        words.update(w for w in _WORD_RE.findall(text.lower()) if len(w) > 2 and w not in STOPWORDS)

    stopword_hits = sum(
        1 for text in values.iloc[:500] if any(w in STOPWORDS for w in text.lower().split())
    )

    patterns: list[RegexPattern] = []
    for name, regex, description in TEXT_PATTERNS:
        matches = int(values.str.match(regex).sum()) if n else 0
        ratio = matches / n if n else 0.0
        if ratio >= _PATTERN_MIN_RATIO:
            patterns.append(RegexPattern(
                name=name,
                pattern=regex,
                matches=matches,
                confidence=round(ratio, 4),
                description=description,
            ))

    ascii_only = bool(values.map(str.isascii).all()) if n else True
    return TextStats(
        avg_length=round(_safe_float(lengths.mean()), 2),
        min_length=int(lengths.min()) if n else 0,
        max_length=int(lengths.max()) if n else 0,
        common_words=[WordCount(word=w, count=c) for w, c in words.most_common(10)],
        encoding="ascii" if ascii_only else "utf-8",
        languages=["en"] if stopword_hits else ["unknown"],
        patterns=patterns,
    )


def boolean_stats(raw: pd.Series, parsed: pd.Series) -> BooleanStats:
    flags = parsed.dropna().astype(bool)
    n = len(flags)
    true_count = int(flags.sum())
    tokens = raw.dropna().astype(str).str.lower().value_counts()
    return BooleanStats(
        true_count=true_count,
        false_count=n - true_count,
        true_percentage=round(true_count / n * 100, 2) if n else 0.0,
        distribution={str(k): int(v) for k, v in tokens.items()},
    )
