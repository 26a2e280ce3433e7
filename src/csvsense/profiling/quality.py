"""Data quality scoring.

Five dimensions, each scored 0-100, combined into a weighted overall score:

- completeness: share of non-null cells
- consistency: share of non-null cells that parse as the column's type
- accuracy: penalises numeric outliers
- uniqueness: share of rows that are not exact duplicates
- validity: share of values satisfying simple column constraints
"""

from __future__ import annotations

import re

import pandas as pd

from csvsense.agents.contracts import (
    ColumnType,
    NumericStats,
    QualityFlag,
    QualityFlagType,
    QualityIssue,
    QualityMetrics,
    Severity,
)
from csvsense.profiling.type_inference import TypedColumn


WEIGHTS = {
    "completeness": 0.30,
    "consistency": 0.20,
    "accuracy": 0.20,
    "uniqueness": 0.15,
    "validity": 0.15,
}

_SEVERITY_ORDER = [Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL]

_NON_NEGATIVE_NAME = re.compile(r"(amount|price|cost|revenue|sales|qty|quantity|count|age|total)", re.I)
_EMAIL_NAME = re.compile(r"e-?mail", re.I)
_EMAIL_VALUE = re.compile(r"^[\w.+-]+@[\w-]+\.[\w.-]+$")
_ID_NAME = re.compile(r"(^id$|_id$|^id_|uuid|identifier)", re.I)
_MOJIBAKE = re.compile("�|Ã.|â€")


def at_least(severity: Severity, floor: Severity) -> bool:
    return _SEVERITY_ORDER.index(severity) >= _SEVERITY_ORDER.index(floor)


def missing_severity(pct: float) -> Severity:
    if pct > 50:
        return Severity.CRITICAL
    if pct > 10:
        return Severity.HIGH
    if pct > 5:
        return Severity.MEDIUM
    return Severity.LOW


def column_flags(column: TypedColumn, stats: object) -> list[QualityFlag]:
    """Quality flags for a single column."""
    total = len(column.raw)
    flags: list[QualityFlag] = []
    if total == 0:
        return flags

    nulls = total - column.non_null
    if nulls:
        pct = nulls / total * 100
        flags.append(QualityFlag(
            type=QualityFlagType.MISSING_VALUES,
            severity=missing_severity(pct),
            count=nulls,
            percentage=round(pct, 2),
            description=f"{nulls} of {total} values are missing",
            suggestion="Impute or filter missing values before aggregating",
        ))

    if _ID_NAME.search(column.name):
        dupes = int(column.raw.dropna().duplicated().sum())
        if dupes:
            pct = dupes / total * 100
            flags.append(QualityFlag(
                type=QualityFlagType.DUPLICATES,
                severity=Severity.HIGH if pct > 5 else Severity.MEDIUM,
                count=dupes,
                percentage=round(pct, 2),
                description=f"Identifier column has {dupes} repeated values",
                suggestion="Check whether rows were loaded twice",
            ))

    if isinstance(stats, NumericStats) and stats.outlier_count:
        pct = stats.outlier_count / max(stats.count, 1) * 100
        flags.append(QualityFlag(
            type=QualityFlagType.OUTLIERS,
            severity=Severity.MEDIUM if pct > 5 else Severity.LOW,
            count=stats.outlier_count,
            percentage=round(pct, 2),
            description=f"{stats.outlier_count} values fall outside 1.5x IQR",
            suggestion="Review extreme values; they can dominate sums and averages",
        ))

    if column.type not in (ColumnType.CATEGORICAL, ColumnType.TEXT) and column.non_null:
        bad = column.non_null - column.conforming
        if bad:
            pct = bad / total * 100
            flags.append(QualityFlag(
                type=QualityFlagType.INCONSISTENT_FORMAT,
                severity=Severity.HIGH if pct > 10 else Severity.MEDIUM if pct > 2 else Severity.LOW,
                count=bad,
                percentage=round(pct, 2),
                description=f"{bad} values do not parse as {column.type.value}",
                suggestion=f"Normalize the format of {column.name!r}",
            ))

    garbled = int(column.raw.dropna().str.contains(_MOJIBAKE).sum())
    if garbled:
        pct = garbled / total * 100
        flags.append(QualityFlag(
            type=QualityFlagType.ENCODING_ISSUES,
            severity=Severity.MEDIUM if pct > 1 else Severity.LOW,
            count=garbled,
            percentage=round(pct, 2),
            description=f"{garbled} values look mis-decoded",
            suggestion="Re-export the file as UTF-8",
        ))

    return flags


def _validity(column: TypedColumn) -> tuple[int, int]:
    """(checked, valid) counts for the column's constraints."""
    if column.type is ColumnType.NUMERIC and _NON_NEGATIVE_NAME.search(column.name):
        values = column.values.dropna()
        return len(values), int((values >= 0).sum())
    if _EMAIL_NAME.search(column.name):
        values = column.raw.dropna()
        return len(values), int(values.str.match(_EMAIL_VALUE).sum())
    return 0, 0


def assess_quality(
    frame: pd.DataFrame,
    columns: list[TypedColumn],
    stats: dict[str, object],
    flags: dict[str, list[QualityFlag]],
) -> QualityMetrics:
    """Score a parsed frame.

    Args:
        frame: String-typed parsed frame (used for duplicate rows)
        columns: Typed columns in schema order
        stats: Column name -> statistics payload
        flags: Column name -> quality flags already computed

    Returns:
        QualityMetrics with issues for every flag at medium severity or above
    """
    rows = len(frame)
    if not columns or rows == 0:
        return QualityMetrics(
            overall_score=0.0, completeness=0.0, consistency=0.0,
            accuracy=0.0, uniqueness=0.0, validity=0.0,
        )

    completeness = sum(c.non_null / rows for c in columns) / len(columns)

    ratios = [c.conforming / c.non_null for c in columns if c.non_null]
    consistency = sum(ratios) / len(ratios) if ratios else 1.0

    outlier_ratios = [
        s.outlier_count / s.count
        for s in stats.values()
        if isinstance(s, NumericStats) and s.count
    ]
    accuracy = 1.0 - (sum(outlier_ratios) / len(outlier_ratios) if outlier_ratios else 0.0)

    duplicate_rows = int(frame.duplicated().sum())
    uniqueness = 1.0 - duplicate_rows / rows

    checked = valid = 0
    for column in columns:
        c, v = _validity(column)
        checked += c
        valid += v
    validity = valid / checked if checked else 1.0

    scores = {
        "completeness": completeness,
        "consistency": consistency,
        "accuracy": accuracy,
        "uniqueness": uniqueness,
        "validity": validity,
    }
    overall = sum(scores[k] * w for k, w in WEIGHTS.items())

    issues: list[QualityIssue] = []
    for column in columns:
        for flag in flags.get(column.name, []):
            if at_least(flag.severity, Severity.MEDIUM):
                issues.append(QualityIssue(
                    column=column.name,
                    type=flag.type,
                    severity=flag.severity,
                    description=flag.description,
                    affected_rows=flag.count,
                    suggestion=flag.suggestion,
                ))
    if duplicate_rows:
        pct = duplicate_rows / rows * 100
        issues.append(QualityIssue(
            column=None,
            type=QualityFlagType.DUPLICATES,
            severity=Severity.HIGH if pct > 5 else Severity.MEDIUM,
            description=f"{duplicate_rows} rows are exact duplicates",
            affected_rows=duplicate_rows,
            suggestion="Drop duplicate rows before analysis",
        ))

    return QualityMetrics(
        overall_score=_pct(overall),
        issues=issues,
        **{k: _pct(v) for k, v in scores.items()},
    )


def _pct(ratio: float) -> float:
    return round(min(max(ratio, 0.0), 1.0) * 100, 2)
