"""Intent classification for natural-language questions.

Classification is a strategy: the planner depends only on the
:class:`IntentClassifier` protocol, and :class:`RuleBasedIntentClassifier`
is the default keyword implementation. A model-backed classifier can be
dropped in without touching planner control flow.

Query type taxonomy (finer than the public intent types):
- aggregation: "total revenue", "how many orders"
- trend: "revenue over time", "monthly growth"
- ranking: "top 5 regions by sales"
- distribution: "distribution of order value"
- relationship: "correlation between price and quantity"
- filter: "show only orders where region = North"
- comparison: "compare North vs South"
- profile: "give me an overview of the dataset"
- unknown: nothing matched
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from csvsense.agents.contracts import DataProfile, IntentType


class QueryType(str, Enum):
    AGGREGATION = "aggregation"
    TREND = "trend"
    RANKING = "ranking"
    DISTRIBUTION = "distribution"
    RELATIONSHIP = "relationship"
    FILTER = "filter"
    COMPARISON = "comparison"
    PROFILE = "profile"
    UNKNOWN = "unknown"


INTENT_FOR_QUERY_TYPE: dict[QueryType, IntentType] = {
    QueryType.AGGREGATION: IntentType.AGGREGATION,
    QueryType.TREND: IntentType.TREND,
    QueryType.COMPARISON: IntentType.COMPARISON,
    QueryType.FILTER: IntentType.FILTER,
    QueryType.PROFILE: IntentType.PROFILE,
    QueryType.RANKING: IntentType.CUSTOM,
    QueryType.DISTRIBUTION: IntentType.CUSTOM,
    QueryType.RELATIONSHIP: IntentType.CUSTOM,
    QueryType.UNKNOWN: IntentType.CUSTOM,
}

UNKNOWN_CONFIDENCE = 0.1
EXTRA_HIT_BONUS = 0.05
MAX_CLASSIFIER_CONFIDENCE = 0.95


@dataclass
class Classification:
    """Classifier output consumed by the planner."""

    query_type: QueryType
    confidence: float
    matched_keywords: list[str] = field(default_factory=list)

    @property
    def intent_type(self) -> IntentType:
        return INTENT_FOR_QUERY_TYPE[self.query_type]


class IntentClassifier(Protocol):
    def classify(self, query: str, profile: DataProfile) -> Classification: ...


@dataclass(frozen=True)
class KeywordRule:
    query_type: QueryType
    base_confidence: float
    patterns: tuple[str, ...]

    def hits(self, text: str) -> list[str]:
        found = []
        for pattern in self.patterns:
            match = re.search(pattern, text)
            if match:
                found.append(match.group(0).strip())
        return found


# Checked in order; the first rule with any hit wins, so more specific
# phrasings ("top 5 ... by total") come before generic ones ("total").
DEFAULT_RULES: tuple[KeywordRule, ...] = (
    KeywordRule(QueryType.TREND, 0.85, (
        r"\btrends?\b", r"\bover time\b", r"\btime series\b", r"\bgrowth\b", r"\bgrow(ing|n)?\b",
        r"\bdeclin(e|ing)\b", r"\b(monthly|weekly|daily|yearly|quarterly|annually)\b",
        r"\b(per|by|each) (day|week|month|quarter|year)\b",
    )),
    KeywordRule(QueryType.RANKING, 0.85, (
        r"\b(top|bottom)\s+\d+\b", r"\b(top|bottom)\b", r"\b(highest|lowest|best|worst)\b",
        r"(?<!\bat )\b(most|least)\b", r"\brank(ing|ed)?\b",
    )),
    KeywordRule(QueryType.COMPARISON, 0.7, (
        r"\bcompar(e|ed|ing|ison)\b", r"\bvs\.?(?=\s|$)", r"\bversus\b", r"\bdifference\b",
    )),
    KeywordRule(QueryType.RELATIONSHIP, 0.75, (
        r"\bcorrelat(e|ed|es|ion)\b", r"\brelationship\b", r"\bassociat(ed|ion)\b",
    )),
    KeywordRule(QueryType.DISTRIBUTION, 0.8, (
        r"\bdistribut(ed|ion)\b", r"\bhistogram\b", r"\bspread\b",
    )),
    KeywordRule(QueryType.AGGREGATION, 0.9, (
        r"\b(sum|total)\b", r"\b(average|avg|mean)\b", r"\bcount\b", r"\bhow many\b",
        r"\bnumber of\b", r"\b(min|max|minimum|maximum|median)\b",
    )),
    KeywordRule(QueryType.FILTER, 0.75, (
        r"\bshow only\b", r"\bonly\b", r"\bfilter(ed)?\b", r"\bwhere\b",
        r"(>=|<=|!=|=|>|<)", r"\bcontains?\b", r"\bstarts? with\b", r"\bends? with\b",
        r"\b(greater|less|more|fewer) than\b", r"\b(above|below)\b", r"\bat (least|most)\b",
    )),
    KeywordRule(QueryType.PROFILE, 0.9, (
        r"\boverview\b", r"\bsummar(y|ize|ise)\b", r"\bprofile\b", r"\bdescribe\b",
        r"\bwhat('s| is) in\b", r"\bcolumns\b", r"\bdata quality\b",
    )),
)


class RuleBasedIntentClassifier:
    """Keyword classifier; deterministic for a given query text."""

    def __init__(self, rules: tuple[KeywordRule, ...] = DEFAULT_RULES):
        self.rules = rules

    def classify(self, query: str, profile: DataProfile) -> Classification:
        text = " ".join(query.lower().split())
        for rule in self.rules:
            hits = rule.hits(text)
            if hits:
                confidence = rule.base_confidence + EXTRA_HIT_BONUS * (len(hits) - 1)
                return Classification(
                    query_type=rule.query_type,
                    confidence=min(confidence, MAX_CLASSIFIER_CONFIDENCE),
                    matched_keywords=hits,
                )
        return Classification(query_type=QueryType.UNKNOWN, confidence=UNKNOWN_CONFIDENCE)
