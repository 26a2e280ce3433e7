"""Build a :class:`DataProfile` from an uploaded CSV.

This is the synchronous core of the profiling agent. It checks the
cancellation token between phases and between columns so a timed-out
upload stops consuming CPU.
"""

from __future__ import annotations

import hashlib
import math
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import pandas as pd

from csvsense.agents.base import CancellationToken
from csvsense.agents.contracts import (
    ColumnProfile,
    ColumnType,
    DataProfile,
    FileMetadata,
    QualityFlag,
    SchemaProfile,
)
from csvsense.config import EngineConfig
from csvsense.io.csv_reader import ParsedCsv, read_csv_bytes
from csvsense.logging_config import get_logger
from csvsense.profiling import statistics
from csvsense.profiling.aggregations import build_aggregations, build_indexes
from csvsense.profiling.insights import build_insights
from csvsense.profiling.pii import redact_column, scan_security
from csvsense.profiling.quality import assess_quality, column_flags
from csvsense.profiling.relationships import (
    find_correlations,
    find_foreign_keys,
    foreign_key_relationships,
)
from csvsense.profiling.type_inference import TypedColumn, build_typed_column


logger = get_logger(__name__)

SAMPLE_VALUES_PER_COLUMN = 5


@dataclass
class UploadedFile:
    """Upload boundary: raw bytes plus the client-supplied name and MIME type."""

    buffer: bytes
    name: str
    mime_type: str = "text/csv"
    size: int | None = None

    def __post_init__(self) -> None:
        if self.size is None:
            self.size = len(self.buffer)


@dataclass
class ProfileOutcome:
    """Profile plus side information the agent reports alongside it."""

    profile: DataProfile
    warnings: list[str] = field(default_factory=list)
    memory_used_bytes: int = 0


def compute_statistics(column: TypedColumn) -> Any:
    """Statistics payload matching the column's inferred type."""
    if column.type is ColumnType.NUMERIC:
        return statistics.numeric_stats(column.values)
    if column.type is ColumnType.DATETIME:
        return statistics.datetime_stats(column.values)
    if column.type is ColumnType.BOOLEAN:
        return statistics.boolean_stats(column.raw, column.values)
    if column.type is ColumnType.CATEGORICAL:
        return statistics.categorical_stats(column.raw)
    return statistics.text_stats(column.raw)


def json_value(value: Any, col_type: ColumnType) -> Any:
    """Typed JSON-safe cell value for ``sample_data``."""
    if value is None or value is pd.NA or value is pd.NaT:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    if col_type is ColumnType.NUMERIC:
        f = float(value)
        return int(f) if f.is_integer() and abs(f) < 2**53 else f
    if col_type is ColumnType.BOOLEAN:
        return bool(value)
    if col_type is ColumnType.DATETIME:
        return pd.Timestamp(value).isoformat()
    return str(value)


def profile_csv(
    file: UploadedFile,
    config: EngineConfig | None = None,
    token: CancellationToken | None = None,
) -> ProfileOutcome:
    """Parse and profile an upload.

    Args:
        file: Uploaded CSV
        config: Engine configuration (sample size, limits, TTL)
        token: Cancellation token checked between phases and columns

    Returns:
        ProfileOutcome wrapping the immutable DataProfile

    Raises:
        AgentError: On empty or unparseable content
        AgentCancelledError: When the token is cancelled mid-way
    """
    config = config or EngineConfig()
    token = token or CancellationToken()
    started = time.perf_counter()
    log = logger.bind(filename=file.name, size=file.size)

    parsed = read_csv_bytes(file.buffer, max_rows=config.max_parse_rows)
    log.info(
        "csv_parsed",
        rows=parsed.parsed_rows,
        columns=parsed.frame.shape[1],
        delimiter=parsed.delimiter,
        encoding=parsed.encoding,
    )
    token.raise_if_cancelled()

    typed: list[TypedColumn] = []
    stats: dict[str, Any] = {}
    flags: dict[str, list[QualityFlag]] = {}
    for name in parsed.frame.columns:
        token.raise_if_cancelled()
        column = build_typed_column(name, parsed.frame[name])
        typed.append(column)
        stats[name] = compute_statistics(column)
        flags[name] = column_flags(column, stats[name])
        log.debug("column_profiled", column=name, type=column.type.value)

    token.raise_if_cancelled()
    quality = assess_quality(parsed.frame, typed, stats, flags)
    security = scan_security({c.name: c.raw for c in typed}, threshold=config.pii_confidence_threshold)
    pii_types = {c.column: c.pii_type for c in security.pii_columns}
    originals = list(typed)
    for i, column in enumerate(typed):
        if column.name in pii_types:
            # Quality above is scored on raw values; everything below sees masked ones
            typed[i] = redact_column(column, pii_types[column.name])
            stats[column.name] = compute_statistics(typed[i])

    token.raise_if_cancelled()
    columns = [
        _column_profile(c, stats[c.name], flags[c.name], counted=original)
        for c, original in zip(typed, originals)
    ]
    indexes = build_indexes(columns)
    foreign_keys = find_foreign_keys(typed, indexes.primary)
    relationships = find_correlations(typed) + foreign_key_relationships(foreign_keys)

    token.raise_if_cancelled()
    schema = SchemaProfile(
        columns=columns,
        primary_key=indexes.primary,
        foreign_keys=foreign_keys,
        relationships=relationships,
    )
    insights = build_insights(columns, quality, security, relationships, parsed.row_count)
    sample = _sample_rows(typed, config.sample_rows)

    created = datetime.now(timezone.utc)
    elapsed_ms = (time.perf_counter() - started) * 1000
    profile = DataProfile(
        id=f"profile_{uuid.uuid4().hex[:16]}",
        version=1,
        created_at=created,
        expires_at=created + timedelta(hours=config.profile_ttl_hours),
        metadata=FileMetadata(
            filename=file.name,
            size=file.size or len(file.buffer),
            encoding=parsed.encoding,
            delimiter=parsed.delimiter,
            row_count=parsed.row_count,
            column_count=len(columns),
            parsed_rows=parsed.parsed_rows,
            sampled=parsed.sampled,
            processing_time_ms=round(elapsed_ms, 2),
            checksum=hashlib.sha256(file.buffer).hexdigest(),
        ),
        schema=schema,
        quality=quality,
        security=security,
        insights=insights,
        sample_data=sample,
        aggregations=build_aggregations(columns),
        indexes=indexes,
    )

    log.info(
        "profile_built",
        profile_id=profile.id,
        quality=quality.overall_score,
        pii_columns=len(security.pii_columns),
        processing_time_ms=round(elapsed_ms, 2),
    )
    return ProfileOutcome(
        profile=profile,
        warnings=_warnings(parsed),
        memory_used_bytes=int(parsed.frame.memory_usage(deep=True).sum()),
    )


def _column_profile(
    column: TypedColumn,
    stats: Any,
    flags: list[QualityFlag],
    counted: TypedColumn | None = None,
) -> ColumnProfile:
    # Null and uniqueness counts come from the unmasked column
    raw = (counted or column).raw
    total = len(raw)
    non_null = raw.dropna()
    null_count = total - len(non_null)
    unique_count = int(non_null.nunique())

    samples = [json_value(v, column.type) for v in column.values.dropna().unique()[:SAMPLE_VALUES_PER_COLUMN]]
    return ColumnProfile(
        name=column.name,
        type=column.type,
        nullable=null_count > 0,
        unique=bool(len(non_null)) and unique_count == len(non_null),
        statistics=stats,
        null_count=null_count,
        null_percentage=round(null_count / total * 100, 2) if total else 0.0,
        unique_count=unique_count,
        duplicate_count=len(non_null) - unique_count,
        sample_values=samples,
        quality_flags=flags,
    )


def _sample_rows(
    columns: list[TypedColumn],
    limit: int,
) -> list[dict[str, Any]]:
    rows: list[dict[str, Any]] = []
    if not columns:
        return rows
    n = min(limit, len(columns[0].values))
    for i in range(n):
        row: dict[str, Any] = {}
        for col in columns:
            row[col.name] = json_value(col.values.iloc[i], col.type)
        rows.append(row)
    return rows


def _warnings(parsed: ParsedCsv) -> list[str]:
    warnings = []
    if parsed.sampled:
        warnings.append(
            f"Profiled the first {parsed.parsed_rows} of {parsed.row_count} rows"
        )
    return warnings


__all__ = ["ProfileOutcome", "UploadedFile", "json_value", "profile_csv"]
