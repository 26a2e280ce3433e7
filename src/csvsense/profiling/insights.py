"""Dataset-level insights shown right after an upload."""

from __future__ import annotations

from csvsense.agents.contracts import (
    CategoricalStats,
    ColumnProfile,
    ColumnType,
    DataInsights,
    DataRelationship,
    DateTimeStats,
    NumericStats,
    ProfileInsight,
    QualityFlagType,
    QualityMetrics,
    SecurityProfile,
)


SKEW_THRESHOLD = 1.0
MAX_SUGGESTED_QUERIES = 6


def build_insights(
    columns: list[ColumnProfile],
    quality: QualityMetrics,
    security: SecurityProfile,
    relationships: list[DataRelationship],
    row_count: int,
) -> DataInsights:
    numeric = [c for c in columns if c.type is ColumnType.NUMERIC]
    categorical = [c for c in columns if c.type is ColumnType.CATEGORICAL]
    datetimes = [c for c in columns if c.type is ColumnType.DATETIME]

    kinds = ", ".join(
        f"{sum(1 for c in columns if c.type is t)} {t.value}"
        for t in ColumnType
        if any(c.type is t for c in columns)
    )
    findings = [
        ProfileInsight(
            title="Dataset shape",
            description=f"{row_count} rows and {len(columns)} columns ({kinds})",
            confidence=1.0,
        ),
        ProfileInsight(
            title="Data quality",
            description=f"Overall quality score is {quality.overall_score:.0f}/100 "
                        f"with {len(quality.issues)} notable issue(s)",
            confidence=0.9,
        ),
    ]
    if security.pii_columns:
        findings.append(ProfileInsight(
            title="Personal data detected",
            description=f"{len(security.pii_columns)} column(s) look like personal data; "
                        f"risk level {security.risk_level.value}",
            columns=[c.column for c in security.pii_columns],
            confidence=max(c.confidence for c in security.pii_columns),
        ))
    for rel in relationships:
        if rel.type == "correlation":
            findings.append(ProfileInsight(
                title="Correlated columns",
                description=rel.description,
                columns=rel.columns,
                confidence=rel.strength,
            ))

    trends = []
    for col in datetimes:
        stats = col.statistics
        assert isinstance(stats, DateTimeStats)
        description = (
            f"{col.name} spans {stats.range_days:.0f} days at {stats.frequency} frequency; "
            f"record volume is {stats.trend}"
        )
        if stats.seasonality:
            description += f" with a {stats.seasonality.period} pattern peaking on {', '.join(stats.seasonality.peaks)}"
        trends.append(ProfileInsight(title=f"Activity over {col.name}", description=description, columns=[col.name]))

    anomalies = []
    for col in numeric:
        stats = col.statistics
        assert isinstance(stats, NumericStats)
        if stats.outlier_count:
            anomalies.append(ProfileInsight(
                title=f"Outliers in {col.name}",
                description=f"{stats.outlier_count} value(s) outside the IQR fences",
                columns=[col.name],
                confidence=0.7,
            ))
        if abs(stats.skewness) >= SKEW_THRESHOLD:
            side = "right" if stats.skewness > 0 else "left"
            anomalies.append(ProfileInsight(
                title=f"Skewed distribution in {col.name}",
                description=f"{col.name} is {side}-skewed (skewness {stats.skewness:.2f}); "
                            "medians describe it better than means",
                columns=[col.name],
                confidence=0.6,
            ))
    for col in columns:
        for flag in col.quality_flags:
            if flag.type is QualityFlagType.MISSING_VALUES and flag.percentage > 10:
                anomalies.append(ProfileInsight(
                    title=f"Missing values in {col.name}",
                    description=flag.description,
                    columns=[col.name],
                    confidence=0.9,
                ))

    recommendations = [issue.suggestion for issue in quality.issues if issue.suggestion]
    recommendations += [rec.description for rec in security.recommendations]

    return DataInsights(
        key_findings=findings,
        trends=trends,
        anomalies=anomalies,
        recommendations=list(dict.fromkeys(recommendations)),
        suggested_queries=suggest_queries(numeric, categorical, datetimes),
    )


def suggest_queries(
    numeric: list[ColumnProfile],
    categorical: list[ColumnProfile],
    datetimes: list[ColumnProfile],
) -> list[str]:
    """Questions phrased with real column names so the planner resolves them."""
    queries: list[str] = []
    measure = numeric[0].name if numeric else None
    dimension = categorical[0].name if categorical else None
    if measure and dimension:
        queries.append(f"What is the total {measure} by {dimension}?")
        queries.append(f"Top 5 {dimension} by {measure}")
    if measure and datetimes:
        queries.append(f"Show the {measure} trend over time")
    if measure:
        queries.append(f"What is the average {measure}?")
    if len(numeric) >= 2:
        queries.append(f"Correlation between {numeric[0].name} and {numeric[1].name}")
    if dimension:
        stats = categorical[0].statistics
        if isinstance(stats, CategoricalStats) and len(stats.top_values) >= 2:
            a, b = stats.top_values[0].value, stats.top_values[1].value
            target = measure or "count"
            queries.append(f"Compare {target} for {a} vs {b}")
    queries.append("Give me an overview of the dataset")
    return queries[:MAX_SUGGESTED_QUERIES]
