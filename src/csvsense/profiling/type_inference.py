"""Column type inference from string values.

Every column arrives as strings. Inference tries the narrowest type first:
boolean, numeric, datetime, categorical, and falls back to text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

import pandas as pd

from csvsense.agents.contracts import ColumnType


NULL_TOKENS = frozenset({"", "na", "n/a", "null", "none", "nan", "-", "#n/a"})

BOOLEAN_TOKENS: dict[str, bool] = {
    "true": True, "false": False,
    "yes": True, "no": False,
    "y": True, "n": False,
    "t": True, "f": False,
    "1": True, "0": False,
}

BOOLEAN_THRESHOLD = 0.8
NUMERIC_THRESHOLD = 0.7
DATETIME_THRESHOLD = 0.6
CATEGORICAL_MAX_RATIO = 0.5
CATEGORICAL_MAX_DISTINCT = 100

# Small columns rarely reach a 0.5 distinct ratio; treat short repeated
# labels as categories.
SMALL_COLUMN_ROWS = 50
SMALL_COLUMN_MAX_LABEL_LEN = 30

INFERENCE_HEAD_ROWS = 2000

MIN_YEAR = 1900
MAX_YEAR = 2100

_CURRENCY_RE = re.compile(r"[$€£¥,\s]")
_PURE_NUMBER_RE = re.compile(r"^[+-]?\d+(\.\d+)?$")


@dataclass
class TypedColumn:
    """A column after null normalization and type inference.

    ``raw`` holds stripped strings with nulls as ``pd.NA``; ``values`` holds
    the parsed representation for the inferred type (float, datetime64,
    bool or str) with unparseable cells as NA.
    """

    name: str
    type: ColumnType
    raw: pd.Series
    values: pd.Series

    @property
    def non_null(self) -> int:
        return int(self.raw.notna().sum())

    @property
    def conforming(self) -> int:
        """Non-null cells that parsed as the inferred type."""
        return int(self.values.notna().sum())


def normalize_nulls(series: pd.Series) -> pd.Series:
    """Strip whitespace and replace null tokens with ``pd.NA``."""
    stripped = series.astype("string").str.strip()
    return stripped.mask(stripped.str.lower().isin(NULL_TOKENS))


def parse_numeric(series: pd.Series) -> pd.Series:
    """Parse numbers, tolerating currency symbols, thousands separators and %."""
    cleaned = series.astype("string").str.replace(_CURRENCY_RE, "", regex=True)
    cleaned = cleaned.str.rstrip("%")
    # accounting negatives: (123.45)
    cleaned = cleaned.str.replace(r"^\((.*)\)$", r"-\1", regex=True)
    return pd.to_numeric(cleaned, errors="coerce").astype("float64")


def parse_datetime(series: pd.Series) -> pd.Series:
    """Parse dates; bare numbers never count as dates and years must be plausible."""
    text = series.astype("string")
    candidate = text.mask(text.str.match(_PURE_NUMBER_RE).fillna(False))
    parsed = pd.to_datetime(candidate, errors="coerce", format="ISO8601", utc=True)
    leftover = parsed.isna() & candidate.notna()
    if leftover.any():
        parsed[leftover] = pd.to_datetime(candidate[leftover], errors="coerce", format="mixed", utc=True)
    parsed = parsed.dt.tz_convert(None)
    in_range = parsed.dt.year.between(MIN_YEAR, MAX_YEAR)
    return parsed.where(in_range.fillna(False))


def parse_boolean(series: pd.Series) -> pd.Series:
    lowered = series.astype("string").str.lower()
    return lowered.map(BOOLEAN_TOKENS, na_action="ignore").astype("boolean")


def infer_column_type(raw: pd.Series) -> ColumnType:
    """Infer a column type from its null-normalized string values."""
    values = raw.dropna()
    n = len(values)
    if n == 0:
        return ColumnType.TEXT

    lowered = values.str.lower()
    distinct_tokens = lowered.nunique()
    boolean_ratio = lowered.isin(list(BOOLEAN_TOKENS)).mean()
    if boolean_ratio > BOOLEAN_THRESHOLD and distinct_tokens <= 3:
        return ColumnType.BOOLEAN

    head = values.iloc[:INFERENCE_HEAD_ROWS]
    if parse_numeric(head).notna().mean() > NUMERIC_THRESHOLD:
        return ColumnType.NUMERIC

    if parse_datetime(head).notna().mean() > DATETIME_THRESHOLD:
        return ColumnType.DATETIME

    distinct = values.nunique()
    if distinct / n < CATEGORICAL_MAX_RATIO and distinct < CATEGORICAL_MAX_DISTINCT:
        return ColumnType.CATEGORICAL
    if (
        n < SMALL_COLUMN_ROWS
        and distinct < n
        and values.str.len().mean() <= SMALL_COLUMN_MAX_LABEL_LEN
    ):
        return ColumnType.CATEGORICAL

    return ColumnType.TEXT


def build_typed_column(name: str, series: pd.Series) -> TypedColumn:
    raw = normalize_nulls(series)
    col_type = infer_column_type(raw)
    if col_type is ColumnType.NUMERIC:
        values = parse_numeric(raw)
    elif col_type is ColumnType.DATETIME:
        values = parse_datetime(raw)
    elif col_type is ColumnType.BOOLEAN:
        values = parse_boolean(raw)
    else:
        values = raw
    return TypedColumn(name=name, type=col_type, raw=raw, values=values)
