"""Pydantic schemas for the semantic analysis engine.

This module defines the structured contracts that flow between agents:

- DataProfile: statistical, quality and security summary of an upload
- QueryIntent: structured interpretation of a natural-language question
- ExecutionPlan: dependency-ordered steps compiled from an intent
- AnalysisResult: rows, insights and chart hints produced by a plan

Profiles are frozen once built. Column statistics are a discriminated
union keyed on ``kind`` so exactly one payload shape is active per column.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class FrozenModel(BaseModel):
    """Base for contract types that must not change after construction."""

    model_config = ConfigDict(frozen=True)


# =============================================================================
# Enums
# =============================================================================

class ColumnType(str, Enum):
    """Inferred semantic type of a column."""

    NUMERIC = "numeric"
    CATEGORICAL = "categorical"
    DATETIME = "datetime"
    TEXT = "text"
    BOOLEAN = "boolean"


class Severity(str, Enum):
    """Severity for quality flags and issues."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class QualityFlagType(str, Enum):
    MISSING_VALUES = "missing_values"
    DUPLICATES = "duplicates"
    OUTLIERS = "outliers"
    INCONSISTENT_FORMAT = "inconsistent_format"
    ENCODING_ISSUES = "encoding_issues"


class RiskLevel(str, Enum):
    """Overall privacy risk of a dataset or column."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class PIIType(str, Enum):
    EMAIL = "email"
    PHONE = "phone"
    SSN = "ssn"
    CREDIT_CARD = "credit_card"
    IP_ADDRESS = "ip_address"
    DATE_OF_BIRTH = "date_of_birth"
    NAME = "name"
    ADDRESS = "address"
    PASSPORT = "passport"
    DRIVER_LICENSE = "driver_license"


class Regulation(str, Enum):
    GDPR = "GDPR"
    CCPA = "CCPA"
    HIPAA = "HIPAA"
    PCI_DSS = "PCI_DSS"
    SOX = "SOX"


class IntentType(str, Enum):
    """Intent types exposed to callers of the planner."""

    PROFILE = "profile"
    TREND = "trend"
    COMPARISON = "comparison"
    AGGREGATION = "aggregation"
    FILTER = "filter"
    CUSTOM = "custom"


class AggregationFunction(str, Enum):
    SUM = "sum"
    AVG = "avg"
    COUNT = "count"
    MIN = "min"
    MAX = "max"
    MEDIAN = "median"
    MODE = "mode"


class FilterOperator(str, Enum):
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    LT = "lt"
    GTE = "gte"
    LTE = "lte"
    IN = "in"
    NOT_IN = "not_in"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class Granularity(str, Enum):
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"


class ChartType(str, Enum):
    BAR = "bar"
    LINE = "line"
    PIE = "pie"
    SCATTER = "scatter"
    TABLE = "table"
    HEATMAP = "heatmap"


class StepType(str, Enum):
    """Kinds of plan steps, in canonical compile order (cache first)."""

    CACHE = "cache"
    LOAD = "load"
    FILTER = "filter"
    AGGREGATE = "aggregate"
    SORT = "sort"
    LIMIT = "limit"
    TRANSFORM = "transform"


class InsightType(str, Enum):
    SUMMARY = "summary"
    TREND = "trend"
    COMPARISON = "comparison"
    ANOMALY = "anomaly"
    RECOMMENDATION = "recommendation"


# =============================================================================
# Column statistics (discriminated on ``kind``)
# =============================================================================

class HistogramBin(FrozenModel):
    lower: float = Field(..., description="Inclusive lower edge")
    upper: float = Field(..., description="Upper edge (inclusive for the last bin)")
    count: int = Field(..., ge=0)


class Percentiles(FrozenModel):
    p25: float
    p50: float
    p75: float
    p90: float
    p95: float


class NumericStats(FrozenModel):
    """Statistics for a numeric column. Variance is the population variance."""

    kind: Literal["numeric"] = "numeric"
    count: int = Field(0, ge=0, description="Non-null numeric values")
    sum: float = 0.0
    min: float
    max: float
    mean: float
    median: float
    mode: list[float] = Field(default_factory=list, description="Most frequent value(s)")
    stddev: float
    variance: float
    skewness: float = 0.0
    percentiles: Percentiles
    histogram: list[HistogramBin] = Field(default_factory=list)
    outliers: list[float] = Field(default_factory=list, description="IQR outliers (capped sample)")
    outlier_count: int = 0


class ValueCount(FrozenModel):
    value: str
    count: int = Field(..., ge=0)
    percentage: float = Field(..., ge=0.0, le=100.0)


class CategoricalStats(FrozenModel):
    kind: Literal["categorical"] = "categorical"
    unique_count: int = Field(..., ge=0)
    top_values: list[ValueCount] = Field(default_factory=list)
    entropy: float = Field(0.0, ge=0.0, description="Shannon entropy in bits")
    mode: str | None = None
    distribution: dict[str, int] = Field(default_factory=dict, description="value -> count (capped)")


class SeasonalityPattern(FrozenModel):
    period: Literal["weekly", "yearly"]
    strength: float = Field(..., ge=0.0, le=1.0)
    peaks: list[str] = Field(default_factory=list, description="Busiest weekdays or months")


class DateGap(FrozenModel):
    start: datetime
    end: datetime
    duration_days: float


class DateTimeStats(FrozenModel):
    kind: Literal["datetime"] = "datetime"
    min: datetime
    max: datetime
    range_days: float = Field(..., ge=0.0)
    frequency: Literal["daily", "weekly", "monthly", "yearly", "irregular"]
    trend: Literal["increasing", "decreasing", "stable", "seasonal"]
    seasonality: SeasonalityPattern | None = None
    gaps: list[DateGap] = Field(default_factory=list)


class WordCount(FrozenModel):
    word: str
    count: int


class RegexPattern(FrozenModel):
    name: str
    pattern: str
    matches: int
    confidence: float = Field(..., ge=0.0, le=1.0)
    description: str


class TextStats(FrozenModel):
    kind: Literal["text"] = "text"
    avg_length: float
    min_length: int
    max_length: int
    common_words: list[WordCount] = Field(default_factory=list)
    encoding: str = "utf-8"
    languages: list[str] = Field(default_factory=list)
    patterns: list[RegexPattern] = Field(default_factory=list)


class BooleanStats(FrozenModel):
    kind: Literal["boolean"] = "boolean"
    true_count: int
    false_count: int
    true_percentage: float
    distribution: dict[str, int] = Field(default_factory=dict, description="raw token -> count")


ColumnStatistics = Annotated[
    Union[NumericStats, CategoricalStats, DateTimeStats, TextStats, BooleanStats],
    Field(discriminator="kind"),
]


# =============================================================================
# Schema
# =============================================================================

class QualityFlag(FrozenModel):
    type: QualityFlagType
    severity: Severity
    count: int = Field(..., ge=0)
    percentage: float = Field(..., ge=0.0, le=100.0)
    description: str
    suggestion: str | None = None


class ColumnProfile(FrozenModel):
    """Profile of a single column."""

    name: str
    type: ColumnType
    nullable: bool
    unique: bool
    statistics: ColumnStatistics
    null_count: int = Field(..., ge=0)
    null_percentage: float = Field(..., ge=0.0, le=100.0)
    unique_count: int = Field(..., ge=0)
    duplicate_count: int = Field(..., ge=0)
    sample_values: list[Any] = Field(default_factory=list, description="Redacted for PII columns")
    quality_flags: list[QualityFlag] = Field(default_factory=list)

    @model_validator(mode="after")
    def _statistics_match_type(self) -> "ColumnProfile":
        if self.statistics.kind != self.type.value:
            raise ValueError(
                f"column {self.name!r}: statistics kind {self.statistics.kind!r} "
                f"does not match type {self.type.value!r}"
            )
        return self


class ForeignKeyHint(FrozenModel):
    column: str
    references: str = Field(..., description="Entity the key likely points at")
    confidence: float = Field(..., ge=0.0, le=1.0)


class DataRelationship(FrozenModel):
    type: Literal["foreign_key", "correlation", "dependency"]
    columns: list[str]
    strength: float = Field(..., ge=0.0, le=1.0)
    description: str


class SchemaProfile(FrozenModel):
    columns: list[ColumnProfile]
    primary_key: str | None = None
    foreign_keys: list[ForeignKeyHint] = Field(default_factory=list)
    relationships: list[DataRelationship] = Field(default_factory=list)


class FileMetadata(FrozenModel):
    filename: str
    size: int = Field(..., ge=0)
    encoding: str
    delimiter: str
    row_count: int = Field(..., ge=0, description="Data rows in the file")
    column_count: int = Field(..., ge=0)
    parsed_rows: int = Field(..., ge=0, description="Rows actually profiled")
    sampled: bool = False
    processing_time_ms: float = 0.0
    checksum: str = Field(..., description="SHA-256 of the uploaded bytes")


# =============================================================================
# Quality, security and insights
# =============================================================================

class QualityIssue(FrozenModel):
    column: str | None = Field(None, description="None for dataset-level issues")
    type: QualityFlagType
    severity: Severity
    description: str
    affected_rows: int = 0
    suggestion: str | None = None


class QualityMetrics(FrozenModel):
    """Quality scores, all on a 0-100 scale."""

    overall_score: float = Field(..., ge=0.0, le=100.0)
    completeness: float = Field(..., ge=0.0, le=100.0)
    consistency: float = Field(..., ge=0.0, le=100.0)
    accuracy: float = Field(..., ge=0.0, le=100.0)
    uniqueness: float = Field(..., ge=0.0, le=100.0)
    validity: float = Field(..., ge=0.0, le=100.0)
    issues: list[QualityIssue] = Field(default_factory=list)


class PIIColumn(FrozenModel):
    column: str
    pii_type: PIIType
    confidence: float = Field(..., ge=0.0, le=1.0)
    detection_method: Literal["column_name", "pattern", "combined"]
    match_ratio: float = Field(0.0, ge=0.0, le=1.0)
    risk_level: RiskLevel
    sample_matches: list[str] = Field(default_factory=list, description="Redacted matches only")


class ComplianceFlag(FrozenModel):
    regulation: Regulation
    columns: list[str]
    requirements: list[str] = Field(default_factory=list)


class SecurityRecommendation(FrozenModel):
    type: Literal["redaction", "encryption", "access_control", "audit_logging"]
    priority: Severity
    description: str
    columns: list[str] = Field(default_factory=list)


class SecurityProfile(FrozenModel):
    pii_columns: list[PIIColumn] = Field(default_factory=list)
    risk_level: RiskLevel = RiskLevel.LOW
    has_redaction: bool = False
    recommendations: list[SecurityRecommendation] = Field(default_factory=list)
    compliance_flags: list[ComplianceFlag] = Field(default_factory=list)


class ProfileInsight(FrozenModel):
    title: str
    description: str
    columns: list[str] = Field(default_factory=list)
    confidence: float = Field(0.8, ge=0.0, le=1.0)


class DataInsights(FrozenModel):
    key_findings: list[ProfileInsight] = Field(default_factory=list)
    trends: list[ProfileInsight] = Field(default_factory=list)
    anomalies: list[ProfileInsight] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    suggested_queries: list[str] = Field(default_factory=list)


# =============================================================================
# Precomputed aggregations and index hints
# =============================================================================

class NumericAggregate(FrozenModel):
    sum: float
    avg: float
    min: float
    max: float
    median: float
    stddev: float
    count: int
    percentiles: Percentiles
    histogram: list[HistogramBin] = Field(default_factory=list)


class CategoricalAggregate(FrozenModel):
    value_counts: dict[str, int]
    top_values: list[ValueCount]
    unique_count: int
    entropy: float


class TemporalAggregate(FrozenModel):
    min: datetime
    max: datetime
    range_days: float
    frequency: str
    trend: str
    seasonality: SeasonalityPattern | None = None


class PrecomputedAggregations(FrozenModel):
    numeric: dict[str, NumericAggregate] = Field(default_factory=dict)
    categorical: dict[str, CategoricalAggregate] = Field(default_factory=dict)
    temporal: dict[str, TemporalAggregate] = Field(default_factory=dict)


class IndexHint(FrozenModel):
    columns: list[str]
    kind: Literal["secondary", "composite"]
    cardinality: int = 0


class DataIndexes(FrozenModel):
    primary: str | None = None
    secondary: list[IndexHint] = Field(default_factory=list)
    composite: list[IndexHint] = Field(default_factory=list)
    full_text: list[str] = Field(default_factory=list)

    def indexed_columns(self) -> set[str]:
        cols = {c for hint in self.secondary + self.composite for c in hint.columns}
        if self.primary:
            cols.add(self.primary)
        return cols


# =============================================================================
# DataProfile
# =============================================================================

class DataProfile(FrozenModel):
    """Immutable profile of an uploaded dataset.

    ``schema`` is exposed as ``schema_`` in Python to avoid shadowing the
    BaseModel attribute; use :meth:`to_dict` for the wire shape.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    version: int = Field(1, ge=1)
    created_at: datetime
    expires_at: datetime
    metadata: FileMetadata
    schema_: SchemaProfile = Field(..., alias="schema")
    quality: QualityMetrics
    security: SecurityProfile
    insights: DataInsights
    sample_data: list[dict[str, Any]] = Field(default_factory=list)
    aggregations: PrecomputedAggregations = Field(default_factory=PrecomputedAggregations)
    indexes: DataIndexes = Field(default_factory=DataIndexes)

    @model_validator(mode="after")
    def _expiry_after_creation(self) -> "DataProfile":
        if self.expires_at <= self.created_at:
            raise ValueError("expires_at must be later than created_at")
        return self

    @property
    def columns(self) -> list[ColumnProfile]:
        return self.schema_.columns

    def column(self, name: str) -> ColumnProfile | None:
        """Case-insensitive column lookup."""
        wanted = name.strip().lower()
        for col in self.schema_.columns:
            if col.name.lower() == wanted:
                return col
        return None

    def columns_of(self, *types: ColumnType) -> list[ColumnProfile]:
        return [c for c in self.schema_.columns if c.type in types]

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# Query intent
# =============================================================================

class FilterCondition(BaseModel):
    column: str
    operator: FilterOperator
    value: Any
    data_type: ColumnType = Field(..., description="Declared type of the filtered column")


class TimeRange(BaseModel):
    column: str
    start: datetime | None = None
    end: datetime | None = None
    granularity: Granularity | None = None


class QueryEntities(BaseModel):
    measures: list[str] = Field(default_factory=list, description="Numeric columns referenced")
    dimensions: list[str] = Field(default_factory=list, description="Categorical/datetime columns referenced")
    filters: list[FilterCondition] = Field(default_factory=list)
    timeframe: TimeRange | None = None


class SortKey(BaseModel):
    column: str
    direction: SortDirection = SortDirection.DESC


class QueryOperation(BaseModel):
    group_by: list[str] = Field(default_factory=list)
    aggregation: AggregationFunction | None = None
    sort: list[SortKey] = Field(default_factory=list)
    limit: int | None = Field(None, ge=1)


class VisualizationHint(BaseModel):
    type: ChartType
    x_axis: str | None = None
    y_axis: str | None = None
    color: str | None = None


class QueryIntent(BaseModel):
    """Structured interpretation of a natural-language question."""

    type: IntentType
    entities: QueryEntities = Field(default_factory=QueryEntities)
    operation: QueryOperation = Field(default_factory=QueryOperation)
    visualization: VisualizationHint | None = None
    confidence: float = Field(..., ge=0.0, le=1.0)
    original_query: str = ""
    query_type: str = Field("unknown", description="Finer-grained classifier label")
    unresolved_terms: list[str] = Field(default_factory=list)


# =============================================================================
# Execution plan
# =============================================================================

class PlanStep(BaseModel):
    id: str
    type: StepType
    operation: str
    params: dict[str, Any] = Field(default_factory=dict)
    estimated_time_ms: float = Field(0.0, ge=0.0)
    depends_on: list[str] = Field(default_factory=list)


class ExecutionPlan(BaseModel):
    """Steps form a DAG whose edges only point at earlier-declared steps."""

    id: str
    steps: list[PlanStep]
    estimated_time_ms: float = Field(0.0, ge=0.0)
    estimated_cost: float = Field(0.0, ge=0.0)
    cache_key: str | None = None
    fallback_to_llm: bool = False
    optimizations: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _dependencies_point_backwards(self) -> "ExecutionPlan":
        seen: set[str] = set()
        for step in self.steps:
            if step.id in seen:
                raise ValueError(f"duplicate step id {step.id!r}")
            unknown = [dep for dep in step.depends_on if dep not in seen]
            if unknown:
                raise ValueError(
                    f"step {step.id!r} depends on {unknown} which are not declared before it"
                )
            seen.add(step.id)
        return self

    def step(self, step_id: str) -> PlanStep | None:
        return next((s for s in self.steps if s.id == step_id), None)


class QueryPlannerResult(BaseModel):
    query_intent: QueryIntent
    execution_plan: ExecutionPlan


# =============================================================================
# Analysis result
# =============================================================================

class GeneratedInsight(BaseModel):
    type: InsightType
    title: str
    description: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    data: dict[str, Any] = Field(default_factory=dict)


class ChartSuggestion(BaseModel):
    chart_type: ChartType
    x_axis: str | None = None
    y_axis: str | None = None
    reason: str
    score: float = Field(..., ge=0.0, le=1.0)


class AnalysisMetadata(BaseModel):
    execution_time_ms: float = Field(0.0, ge=0.0)
    data_points: int = Field(0, ge=0, description="Rows consumed by the plan")
    cache_hit: bool = False
    agent_path: list[str] = Field(default_factory=list)
    steps_executed: list[str] = Field(default_factory=list)
    source: Literal["sample", "aggregations", "cache"] = "sample"


class AnalysisResult(BaseModel):
    id: str
    query: str
    intent: QueryIntent
    execution_plan: ExecutionPlan
    data: list[dict[str, Any]] = Field(default_factory=list)
    insights: list[GeneratedInsight] = Field(default_factory=list)
    metadata: AnalysisMetadata = Field(default_factory=AnalysisMetadata)
    suggestions: list[str] = Field(default_factory=list)
    chart_suggestions: list[ChartSuggestion] = Field(default_factory=list)
