"""Entity extraction: map question text onto the profiled schema.

Finds column mentions, group-by targets, typed filter conditions, time
ranges and operation hints (aggregation function, sort direction, limit).
Everything that looks like a reference but cannot be resolved is reported
in ``unresolved`` so the planner can lower its confidence.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import pandas as pd

from csvsense.agents.contracts import (
    AggregationFunction,
    CategoricalStats,
    ColumnProfile,
    ColumnType,
    DataProfile,
    DateTimeStats,
    FilterCondition,
    FilterOperator,
    Granularity,
    SortDirection,
    SortKey,
    TimeRange,
)
from csvsense.profiling.type_inference import BOOLEAN_TOKENS


# =============================================================================
# Vocabulary
# =============================================================================

_TIME_UNITS: dict[str, Granularity] = {
    "hour": Granularity.HOUR,
    "day": Granularity.DAY,
    "week": Granularity.WEEK,
    "month": Granularity.MONTH,
    "quarter": Granularity.QUARTER,
    "year": Granularity.YEAR,
}

_GRANULARITY_WORDS: dict[str, Granularity] = {
    "hourly": Granularity.HOUR,
    "daily": Granularity.DAY,
    "weekly": Granularity.WEEK,
    "monthly": Granularity.MONTH,
    "quarterly": Granularity.QUARTER,
    "yearly": Granularity.YEAR,
    "annual": Granularity.YEAR,
    "annually": Granularity.YEAR,
}

_MONTHS = {
    name: i
    for i, names in enumerate(
        [("january", "jan"), ("february", "feb"), ("march", "mar"), ("april", "apr"),
         ("may",), ("june", "jun"), ("july", "jul"), ("august", "aug"),
         ("september", "sep", "sept"), ("october", "oct"), ("november", "nov"),
         ("december", "dec")],
        start=1,
    )
    for name in names
}

_AGGREGATION_WORDS: list[tuple[str, AggregationFunction]] = [
    (r"\bmedian\b", AggregationFunction.MEDIAN),
    (r"\b(mode|most common|most frequent)\b", AggregationFunction.MODE),
    (r"\b(average|avg|mean)\b", AggregationFunction.AVG),
    (r"\b(sum|total)\b", AggregationFunction.SUM),
    (r"\b(count|how many|number of)\b", AggregationFunction.COUNT),
    (r"\b(min|minimum)\b", AggregationFunction.MIN),
    (r"\b(max|maximum)\b", AggregationFunction.MAX),
]

# (phrase, operator, symbolic); longest phrases first so "is not" wins over "is"
_OPERATORS: list[tuple[str, FilterOperator, bool]] = [
    ("greater than or equal to", FilterOperator.GTE, False),
    ("less than or equal to", FilterOperator.LTE, False),
    ("not equal to", FilterOperator.NE, False),
    ("no less than", FilterOperator.GTE, False),
    ("no more than", FilterOperator.LTE, False),
    ("starting with", FilterOperator.STARTS_WITH, False),
    ("starts with", FilterOperator.STARTS_WITH, False),
    ("begins with", FilterOperator.STARTS_WITH, False),
    ("ending with", FilterOperator.ENDS_WITH, False),
    ("ends with", FilterOperator.ENDS_WITH, False),
    ("greater than", FilterOperator.GT, False),
    ("more than", FilterOperator.GT, False),
    ("less than", FilterOperator.LT, False),
    ("fewer than", FilterOperator.LT, False),
    ("at least", FilterOperator.GTE, False),
    ("at most", FilterOperator.LTE, False),
    ("is not", FilterOperator.NE, False),
    ("not in", FilterOperator.NOT_IN, False),
    (">=", FilterOperator.GTE, True),
    ("<=", FilterOperator.LTE, True),
    ("!=", FilterOperator.NE, True),
    ("<>", FilterOperator.NE, True),
    ("==", FilterOperator.EQ, True),
    ("=", FilterOperator.EQ, True),
    (">", FilterOperator.GT, True),
    ("<", FilterOperator.LT, True),
    ("equals", FilterOperator.EQ, False),
    ("equal", FilterOperator.EQ, False),
    ("is", FilterOperator.EQ, False),
    ("in", FilterOperator.IN, False),
    ("above", FilterOperator.GT, False),
    ("over", FilterOperator.GT, False),
    ("exceeds", FilterOperator.GT, False),
    ("below", FilterOperator.LT, False),
    ("under", FilterOperator.LT, False),
    ("containing", FilterOperator.CONTAINS, False),
    ("contains", FilterOperator.CONTAINS, False),
    ("contain", FilterOperator.CONTAINS, False),
    ("includes", FilterOperator.CONTAINS, False),
]

_ORDERING_OPS = frozenset({FilterOperator.GT, FilterOperator.LT, FilterOperator.GTE, FilterOperator.LTE})
_STRING_OPS = frozenset({FilterOperator.CONTAINS, FilterOperator.STARTS_WITH, FilterOperator.ENDS_WITH})
_LIST_OPS = frozenset({FilterOperator.IN, FilterOperator.NOT_IN})

# Loose word operators also appear in ordinary phrasing ("revenue over time")
_LOOSE_OPERATORS = frozenset({"is", "in", "over", "under", "above", "below", "equal", "includes"})

_LIST_VALUE = re.compile(r"\s*(?:\((?P<paren>[^)]*)\)|\[(?P<bracket>[^\]]*)\])")
_QUOTED_VALUE = re.compile(r"\s*(?:\"(?P<dq>[^\"]*)\"|'(?P<sq>[^']*)')")
_WORD_VALUE = re.compile(r"\s*(?P<word>[^\s,;?!()\[\]]+)")
_ANY_WORD = re.compile(r"[^\s,;?!()\[\]]+")

_GROUP_PHRASE = re.compile(
    r"\b(?P<phrase>grouped by|group by|broken down by|split by|for each|for every|by|per|across)"
    r"\s+(?:the\s+|each\s+)?"
)
_SORT_PHRASE = re.compile(
    r"\b(?:sort(?:ed)?|order(?:ed)?)\s+by\s+(?:the\s+)?(?P<rest>.*?)"
    r"(?:\s+(?P<dir>asc(?:ending)?|desc(?:ending)?))?(?=$|[,.;?!]|\s+(?:and|limit|top)\b)"
)
_TERM_STOP = (
    r"(?=\s+(?:by|per|for|in|where|over|across|and|vs|versus|between|from|since|with|"
    r"during|before|after|sorted|ordered|top|limit)\b|[?.!,;]|$)"
)
_MEASURE_TERM = re.compile(
    r"\b(?:sum of|total|average|avg|mean|median|max|maximum|min|minimum)\s+"
    r"(?:the\s+|of\s+|of\s+the\s+)?(?P<term>[a-z][a-z0-9 ]*?)" + _TERM_STOP
)

_DATE_TOKEN = r"\d{4}-\d{1,2}-\d{1,2}|\d{4}/\d{1,2}/\d{1,2}|\d{1,2}/\d{1,2}/\d{4}"
_BETWEEN_DATES = re.compile(rf"\bbetween\s+(?P<a>{_DATE_TOKEN})\s+and\s+(?P<b>{_DATE_TOKEN})")
_FROM_TO_DATES = re.compile(rf"\bfrom\s+(?P<a>{_DATE_TOKEN})\s+(?:to|until|through)\s+(?P<b>{_DATE_TOKEN})")
_SINCE_DATE = re.compile(rf"\b(?:since|after|from|starting)\s+(?P<a>{_DATE_TOKEN})")
_BEFORE_DATE = re.compile(rf"\b(?:before|until|through|up to)\s+(?P<a>{_DATE_TOKEN})")
_IN_MONTH_YEAR = re.compile(r"\bin\s+(?P<month>[a-z]+)\s+(?P<year>(?:19|20)\d{2})\b")
_IN_YEAR = re.compile(r"\b(?:in|during|for)\s+(?P<year>(?:19|20)\d{2})\b")
_RELATIVE = re.compile(r"\b(?:last|past|previous)\s+(?:(?P<n>\d+)\s+)?(?P<unit>day|week|month|quarter|year)s?\b")
_GRANULARITY_PHRASE = re.compile(r"\b(?:by|per|each|every)\s+(?P<unit>hour|day|week|month|quarter|year)\b")

_LIMIT_PATTERNS = [
    re.compile(r"\b(?:top|bottom|first)\s+(?P<n>\d+)\b"),
    re.compile(r"\blimit\s+(?:to\s+)?(?P<n>\d+)\b"),
    re.compile(r"\b(?P<n>\d+)\s+(?:highest|lowest|best|worst|largest|smallest|biggest)\b"),
]
_DESC_WORDS = re.compile(r"\b(top|highest|best|largest|biggest|descending|desc)\b|(?<!\bat )\bmost\b")
_ASC_WORDS = re.compile(r"\b(bottom|lowest|worst|smallest|ascending|asc)\b|(?<!\bat )\bleast\b")

_COUNT_NOUNS = frozenset({"rows", "records", "entries", "items", "lines", "data"})
_IGNORED_VALUES = frozenset({"all", "other", "total", "none", "and", "or", "the", "yes", "no", "true", "false"})


# =============================================================================
# Helpers
# =============================================================================

def normalize_query(query: str) -> str:
    """Lowercase, join snake/kebab words with spaces, collapse whitespace."""
    text = query.strip().lower()
    text = re.sub(r"(?<=[a-z])[_-](?=[a-z])", " ", text)
    return " ".join(text.split())


def column_aliases(name: str) -> set[str]:
    """Spellings under which a column may appear in a question."""
    spaced = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", name)
    base = " ".join(re.split(r"[_\-.\s]+", spaced.strip().lower())).strip()
    aliases = {base}
    if " " in base:
        aliases.add(base.replace(" ", ""))
    for alias in list(aliases):
        if alias.endswith("ies"):
            aliases.add(alias[:-3] + "y")
        elif alias.endswith("s") and not alias.endswith("ss") and len(alias) > 3:
            aliases.add(alias[:-1])
        elif alias.endswith("y") and len(alias) > 2 and alias[-2] not in "aeiou":
            aliases.add(alias[:-1] + "ies")
        else:
            aliases.add(alias + "s")
    return {a for a in aliases if len(a) >= 2}


def _word_pattern(phrase: str) -> str:
    return rf"(?<![a-z0-9]){re.escape(phrase)}(?![a-z0-9])"


def parse_date(text: str) -> datetime | None:
    try:
        stamp = pd.Timestamp(text)
    except (ValueError, TypeError):
        return None
    if pd.isna(stamp):
        return None
    return stamp.to_pydatetime()


def known_values(column: ColumnProfile) -> list[str]:
    stats = column.statistics
    if isinstance(stats, CategoricalStats):
        values = list(stats.distribution) + [v.value for v in stats.top_values]
        return list(dict.fromkeys(values))
    return []


def coerce_filter_value(value: Any, column: ColumnProfile) -> Any:
    """Type a raw filter value against the column's declared type.

    Raises:
        ValueError: If the value cannot be represented in the column's type
    """
    if isinstance(value, list):
        return [coerce_filter_value(v, column) for v in value]
    text = str(value).strip().strip("\"'")
    if column.type is ColumnType.NUMERIC:
        cleaned = re.sub(r"[$€£¥,]", "", text).rstrip("%")
        number = float(cleaned)
        return int(number) if number.is_integer() else number
    if column.type is ColumnType.DATETIME:
        parsed = parse_date(text)
        if parsed is None:
            raise ValueError(f"{text!r} is not a date")
        return parsed.isoformat()
    if column.type is ColumnType.BOOLEAN:
        key = text.lower()
        if key not in BOOLEAN_TOKENS:
            raise ValueError(f"{text!r} is not a boolean")
        return BOOLEAN_TOKENS[key]
    for candidate in known_values(column):
        if candidate.lower() == text.lower():
            return candidate
    return text


def operator_compatible(op: FilterOperator, col_type: ColumnType) -> bool:
    if op in _ORDERING_OPS:
        return col_type in (ColumnType.NUMERIC, ColumnType.DATETIME)
    if op in _STRING_OPS:
        return col_type in (ColumnType.CATEGORICAL, ColumnType.TEXT)
    return True


# =============================================================================
# Extraction
# =============================================================================

@dataclass
class Mention:
    column: ColumnProfile
    start: int
    end: int


@dataclass
class Extraction:
    """Everything resolved from one question."""

    mentions: list[Mention] = field(default_factory=list)
    measures: list[str] = field(default_factory=list)
    dimensions: list[str] = field(default_factory=list)
    group_by: list[str] = field(default_factory=list)
    filters: list[FilterCondition] = field(default_factory=list)
    timeframe: TimeRange | None = None
    time_column: str | None = None
    aggregation: AggregationFunction | None = None
    sort: list[SortKey] = field(default_factory=list)
    sort_direction: SortDirection | None = None
    limit: int | None = None
    resolved: int = 0
    unresolved: list[str] = field(default_factory=list)

    @property
    def referenced_columns(self) -> list[str]:
        cols = self.measures + self.dimensions + self.group_by + [f.column for f in self.filters]
        cols += [k.column for k in self.sort]
        if self.timeframe:
            cols.append(self.timeframe.column)
        if self.time_column:
            cols.append(self.time_column)
        return list(dict.fromkeys(cols))


class EntityExtractor:
    """Resolves question text against one profile's schema."""

    def __init__(self, profile: DataProfile):
        self.profile = profile
        pairs = [(alias, col) for col in profile.columns for alias in column_aliases(col.name)]
        self._aliases = sorted(pairs, key=lambda p: len(p[0]), reverse=True)

    def extract(self, query: str) -> Extraction:
        text = normalize_query(query)
        result = Extraction()
        result.mentions = self._find_mentions(text)
        result.resolved += len(result.mentions)

        filter_spans = self._explicit_filters(text, result)
        self._implicit_filters(text, result, filter_spans)
        self._group_by(text, result)
        self._measures_and_dimensions(result, filter_spans)
        self._unresolved_measure_terms(text, result)
        self._time_range(text, result)
        self._operation(text, result)
        return result

    # -- column mentions ---------------------------------------------------

    def _find_mentions(self, text: str) -> list[Mention]:
        claimed: list[Mention] = []
        for alias, col in self._aliases:
            for m in re.finditer(_word_pattern(alias), text):
                if any(m.start() < c.end and c.start < m.end() for c in claimed):
                    continue
                claimed.append(Mention(col, m.start(), m.end()))
        return sorted(claimed, key=lambda m: m.start)

    # -- filters -------------------------------------------------------------

    def _explicit_filters(self, text: str, result: Extraction) -> list[tuple[int, int]]:
        spans: list[tuple[int, int]] = []
        for mention in result.mentions:
            parsed = self._parse_condition(text, mention)
            if parsed is None:
                continue
            op, raw_value, end, loose = parsed
            column = mention.column
            if not operator_compatible(op, column.type):
                if not loose:
                    result.unresolved.append(text[mention.start:end])
                continue
            try:
                value = coerce_filter_value(raw_value, column)
            except ValueError:
                if not loose:
                    result.unresolved.append(text[mention.start:end])
                continue
            result.filters.append(FilterCondition(
                column=column.name, operator=op, value=value, data_type=column.type,
            ))
            result.resolved += 1
            spans.append((mention.start, end))
        return spans

    def _parse_condition(self, text: str, mention: Mention) -> tuple[FilterOperator, Any, int, bool] | None:
        rest_start = mention.end
        for phrase, op, symbolic in _OPERATORS:
            pattern = rf"\s*{re.escape(phrase)}" if symbolic else rf"\s+{re.escape(phrase)}\b"
            m = re.match(pattern, text[rest_start:])
            if not m:
                continue
            pos = rest_start + m.end()
            loose = phrase in _LOOSE_OPERATORS
            if op in _LIST_OPS:
                lm = _LIST_VALUE.match(text, pos)
                if not lm:
                    return None
                body = lm.group("paren") if lm.group("paren") is not None else lm.group("bracket")
                values = [v.strip().strip("\"'") for v in re.split(r",|\bor\b", body) if v.strip()]
                return op, values, lm.end(), False
            qm = _QUOTED_VALUE.match(text, pos)
            if qm:
                value = qm.group("dq") if qm.group("dq") is not None else qm.group("sq")
                return op, value, qm.end(), loose
            wm = _WORD_VALUE.match(text, pos)
            if not wm:
                return None
            value, end = self._extend_value(text, wm, mention.column)
            return op, value, end, loose
        return None

    def _extend_value(self, text: str, first: re.Match, column: ColumnProfile) -> tuple[str, int]:
        """Grow a one-word value to a multi-word known category when possible."""
        value, end = first.group("word").rstrip("."), first.end()
        choices = {v.lower() for v in known_values(column)}
        if not choices or value in choices:
            return value, end
        words, pos = [value], end
        for _ in range(3):
            nxt = _ANY_WORD.search(text, pos)
            if not nxt or text[pos:nxt.start()].strip():
                break
            words.append(nxt.group(0).rstrip("."))
            pos = nxt.end()
            if " ".join(words) in choices:
                return " ".join(words), pos
        return value, end

    def _implicit_filters(self, text: str, result: Extraction, spans: list[tuple[int, int]]) -> None:
        explicit = {f.column for f in result.filters}
        blocked = spans + [(m.start, m.end) for m in result.mentions]
        for column in self.profile.columns_of(ColumnType.CATEGORICAL, ColumnType.BOOLEAN):
            if column.name in explicit:
                continue
            found: list[str] = []
            for value in known_values(column):
                needle = normalize_query(value)
                if len(needle) < 2 or needle in _IGNORED_VALUES:
                    continue
                for m in re.finditer(_word_pattern(needle), text):
                    if any(m.start() < e and s < m.end() for s, e in blocked):
                        continue
                    found.append(value)
                    blocked.append((m.start(), m.end()))
                    break
            if not found:
                continue
            op = FilterOperator.EQ if len(found) == 1 else FilterOperator.IN
            value = found[0] if len(found) == 1 else found
            result.filters.append(FilterCondition(
                column=column.name, operator=op, value=value, data_type=column.type,
            ))
            result.resolved += 1

    # -- grouping, measures, dimensions ------------------------------------

    def _group_by(self, text: str, result: Extraction) -> None:
        for m in _GROUP_PHRASE.finditer(text):
            before = text[:m.start()].split()[-1:] or [""]
            if before[0] in {"sort", "sorted", "order", "ordered", "rank", "ranked"}:
                continue
            target = next((x for x in result.mentions if x.start == m.end()), None)
            if target is None:
                word = _ANY_WORD.match(text, m.end())
                term = word.group(0).rstrip("s.") if word else ""
                if term and term not in _TIME_UNITS and not term.isdigit():
                    result.unresolved.append(word.group(0))
                continue
            column = target.column
            if column.type is ColumnType.NUMERIC:
                continue
            if column.name not in result.group_by:
                result.group_by.append(column.name)

    def _measures_and_dimensions(self, result: Extraction, filter_spans: list[tuple[int, int]]) -> None:
        for mention in result.mentions:
            filter_only = any(s <= mention.start and mention.end <= e for s, e in filter_spans)
            if filter_only:
                continue
            column = mention.column
            if column.type is ColumnType.NUMERIC:
                bucket = result.measures
            elif column.type in (ColumnType.CATEGORICAL, ColumnType.DATETIME, ColumnType.BOOLEAN):
                bucket = result.dimensions
            elif column.name in result.group_by:
                bucket = result.dimensions
            else:
                continue
            if column.name not in bucket:
                bucket.append(column.name)
        for name in result.group_by:
            if name not in result.dimensions:
                result.dimensions.append(name)

    def _unresolved_measure_terms(self, text: str, result: Extraction) -> None:
        for m in _MEASURE_TERM.finditer(text):
            start, end = m.start("term"), m.end("term")
            if any(x.start < end and start < x.end for x in result.mentions):
                continue
            term = m.group("term").strip()
            if term and term not in _COUNT_NOUNS:
                result.unresolved.append(term)

    # -- time ------------------------------------------------------------------

    def _time_range(self, text: str, result: Extraction) -> None:
        datetime_cols = self.profile.columns_of(ColumnType.DATETIME)
        mentioned = [m.column for m in result.mentions if m.column.type is ColumnType.DATETIME]
        column = (mentioned or datetime_cols or [None])[0]
        if column is not None:
            result.time_column = column.name

        granularity = None
        for word, gran in _GRANULARITY_WORDS.items():
            if re.search(rf"\b{word}\b", text):
                granularity = gran
                break
        if granularity is None:
            gm = _GRANULARITY_PHRASE.search(text)
            if gm:
                granularity = _TIME_UNITS[gm.group("unit")]

        start, end, phrase = self._time_bounds(text, column)
        if phrase is None and granularity is None:
            return
        if column is None:
            result.unresolved.append(phrase or "time grouping")
            return
        result.timeframe = TimeRange(column=column.name, start=start, end=end, granularity=granularity)
        result.resolved += 1

    def _time_bounds(
        self, text: str, column: ColumnProfile | None,
    ) -> tuple[datetime | None, datetime | None, str | None]:
        m = _BETWEEN_DATES.search(text) or _FROM_TO_DATES.search(text)
        if m:
            return parse_date(m.group("a")), _end_of_day(parse_date(m.group("b"))), m.group(0)

        m = _IN_MONTH_YEAR.search(text)
        if m and m.group("month") in _MONTHS:
            start = datetime(int(m.group("year")), _MONTHS[m.group("month")], 1)
            end = (pd.Timestamp(start) + pd.offsets.MonthEnd(1)).to_pydatetime()
            return start, _end_of_day(end), m.group(0)

        m = _IN_YEAR.search(text)
        if m:
            year = int(m.group("year"))
            return datetime(year, 1, 1), datetime(year, 12, 31, 23, 59, 59), m.group(0)

        m = _RELATIVE.search(text)
        if m:
            if column is None or not isinstance(column.statistics, DateTimeStats):
                return None, None, m.group(0)
            anchor = pd.Timestamp(column.statistics.max)
            n = int(m.group("n") or 1)
            unit = m.group("unit")
            offset = pd.DateOffset(months=3 * n) if unit == "quarter" else pd.DateOffset(**{f"{unit}s": n})
            return (anchor - offset).to_pydatetime(), anchor.to_pydatetime(), m.group(0)

        start = end = None
        phrase = None
        m = _SINCE_DATE.search(text)
        if m:
            start, phrase = parse_date(m.group("a")), m.group(0)
        m = _BEFORE_DATE.search(text)
        if m:
            end, phrase = _end_of_day(parse_date(m.group("a"))), (phrase or m.group(0))
        return start, end, phrase

    # -- operation hints ---------------------------------------------------

    def _operation(self, text: str, result: Extraction) -> None:
        for pattern, func in _AGGREGATION_WORDS:
            if re.search(pattern, text):
                result.aggregation = func
                break

        for pattern in _LIMIT_PATTERNS:
            m = pattern.search(text)
            if m:
                result.limit = max(int(m.group("n")), 1)
                break

        if _ASC_WORDS.search(text):
            result.sort_direction = SortDirection.ASC
        elif _DESC_WORDS.search(text):
            result.sort_direction = SortDirection.DESC

        m = _SORT_PHRASE.search(text)
        if m:
            rest_start = m.start("rest")
            target = next((x for x in result.mentions if x.start == rest_start), None)
            if target is not None:
                direction = SortDirection.ASC if (m.group("dir") or "").startswith("asc") else SortDirection.DESC
                result.sort.append(SortKey(column=target.column.name, direction=direction))
            elif m.group("rest"):
                result.unresolved.append(m.group("rest"))


def _end_of_day(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.hour == value.minute == value.second == 0:
        return value.replace(hour=23, minute=59, second=59)
    return value
