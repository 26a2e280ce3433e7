"""Cross-column relationships: strong numeric correlations and key hints."""

from __future__ import annotations

import re
from itertools import combinations

import pandas as pd

from csvsense.agents.contracts import ColumnType, DataRelationship, ForeignKeyHint
from csvsense.profiling.type_inference import TypedColumn


CORRELATION_THRESHOLD = 0.7
MAX_NUMERIC_COLUMNS = 30

_FK_NAME = re.compile(r"^(?P<entity>[A-Za-z][A-Za-z0-9_]*?)(_id|_ID|Id|ID)$")


def find_correlations(columns: list[TypedColumn]) -> list[DataRelationship]:
    numeric = [c for c in columns if c.type is ColumnType.NUMERIC][:MAX_NUMERIC_COLUMNS]
    relationships: list[DataRelationship] = []
    for a, b in combinations(numeric, 2):
        mask = a.values.notna() & b.values.notna()
        if mask.sum() < 3:
            continue
        r = a.values[mask].corr(b.values[mask])
        if pd.isna(r) or abs(r) < CORRELATION_THRESHOLD:
            continue
        direction = "positively" if r > 0 else "negatively"
        relationships.append(DataRelationship(
            type="correlation",
            columns=[a.name, b.name],
            strength=round(min(abs(float(r)), 1.0), 4),
            description=f"{a.name} and {b.name} are strongly {direction} correlated (r={r:.2f})",
        ))
    return relationships


def find_foreign_keys(columns: list[TypedColumn], primary_key: str | None) -> list[ForeignKeyHint]:
    """``customer_id``-style columns other than the primary key."""
    hints: list[ForeignKeyHint] = []
    for col in columns:
        if col.name == primary_key:
            continue
        match = _FK_NAME.match(col.name)
        if not match or not match.group("entity"):
            continue
        repeated = col.raw.dropna().duplicated().any()
        hints.append(ForeignKeyHint(
            column=col.name,
            references=match.group("entity").lower(),
            confidence=0.8 if repeated else 0.6,
        ))
    return hints


def foreign_key_relationships(hints: list[ForeignKeyHint]) -> list[DataRelationship]:
    return [
        DataRelationship(
            type="foreign_key",
            columns=[h.column],
            strength=h.confidence,
            description=f"{h.column} likely references a {h.references} entity",
        )
        for h in hints
    ]
