"""Tests for end-to-end profiling and the DataProfilingAgent."""

from __future__ import annotations

import json

import pytest

from csvsense.agents.base import (
    AgentCancelledError,
    AgentValidationError,
    CancellationToken,
    ManagedAgent,
    create_execution_context,
)
from csvsense.agents.contracts import ColumnType, NumericStats, PIIType, RiskLevel
from csvsense.agents.profiling_agent import DataProfilingAgent
from csvsense.config import EngineConfig
from csvsense.profiling.profiler import UploadedFile, profile_csv


CARDS = ("4111111111111111", "5500000000000004")
EMAILS = ("alice@corp.com", "bob@corp.com")


def _customer_csv() -> bytes:
    lines = ["order_id,amount,card_number,email"]
    for i in range(10):
        lines.append(f"{i + 1},{(i + 1) * 10},{CARDS[i % 2]},{EMAILS[i % 2]}")
    return ("\n".join(lines) + "\n").encode("utf-8")


class TestProfileCsv:
    def test_metadata(self, sales_profile):
        meta = sales_profile.metadata
        assert meta.filename == "sales.csv"
        assert meta.row_count == 5
        assert meta.column_count == 8
        assert meta.delimiter == ","
        assert meta.encoding == "utf-8"
        assert len(meta.checksum) == 64
        assert sales_profile.id.startswith("profile_")
        assert sales_profile.expires_at > sales_profile.created_at

    @pytest.mark.parametrize("name,expected", [
        ("order_id", ColumnType.NUMERIC),
        ("date", ColumnType.DATETIME),
        ("region", ColumnType.CATEGORICAL),
        ("category", ColumnType.CATEGORICAL),
        ("revenue", ColumnType.NUMERIC),
        ("quantity", ColumnType.NUMERIC),
        ("email", ColumnType.TEXT),
        ("returned", ColumnType.BOOLEAN),
    ])
    def test_inferred_types(self, sales_profile, name, expected):
        assert sales_profile.column(name).type is expected

    def test_revenue_statistics(self, sales_profile):
        stats = sales_profile.column("revenue").statistics
        assert isinstance(stats, NumericStats)
        assert stats.sum == pytest.approx(4430.75)
        assert stats.min == 300.0
        assert stats.max == 1500.0

    def test_email_is_flagged_and_redacted(self, sales_profile):
        pii = sales_profile.security.pii_columns
        assert [c.column for c in pii] == ["email"]
        assert pii[0].pii_type is PIIType.EMAIL
        assert pii[0].confidence == 1.0
        assert sales_profile.security.risk_level is RiskLevel.HIGH
        assert sales_profile.column("email").sample_values[0] == "al***@example.com"
        assert sales_profile.sample_data[0]["email"] == "al***@example.com"
        assert all("@example.com" not in v or "***" in v for v in pii[0].sample_matches)

    def test_raw_pii_never_reaches_the_profile(self):
        profile = profile_csv(UploadedFile(buffer=_customer_csv(), name="customers.csv")).profile
        flagged = {c.column: c.pii_type for c in profile.security.pii_columns}
        assert flagged == {"card_number": PIIType.CREDIT_CARD, "email": PIIType.EMAIL}

        dumped = json.dumps(profile.model_dump(mode="json"))
        for raw in CARDS + EMAILS:
            assert raw not in dumped
        assert "card_number" not in profile.aggregations.numeric
        assert profile.column("card_number").type is not ColumnType.NUMERIC
        assert profile.column("card_number").unique_count == 2
        assert profile.aggregations.numeric["amount"].sum == pytest.approx(550.0)

    def test_sample_rows_are_typed(self, sales_profile):
        row = sales_profile.sample_data[0]
        assert row["revenue"] == 1200.5
        assert row["quantity"] == 2
        assert row["returned"] is False
        assert row["date"].startswith("2024-01-05")

    def test_precomputed_aggregations(self, sales_profile):
        aggregations = sales_profile.aggregations
        assert aggregations.numeric["revenue"].sum == pytest.approx(4430.75)
        assert aggregations.categorical["category"].value_counts == {"Electronics": 3, "Clothing": 2}
        assert "date" in aggregations.temporal

    def test_indexes(self, sales_profile):
        assert sales_profile.indexes.primary == "order_id"
        assert "category" in sales_profile.indexes.indexed_columns()

    def test_suggested_queries_use_real_columns(self, sales_profile):
        assert any("order_id" in q or "revenue" in q for q in sales_profile.insights.suggested_queries)

    def test_sampling_is_reported(self, sales_upload):
        outcome = profile_csv(sales_upload, EngineConfig(max_parse_rows=3))
        assert outcome.profile.metadata.sampled
        assert outcome.profile.metadata.parsed_rows == 3
        assert outcome.profile.metadata.row_count == 5
        assert outcome.warnings

    def test_cancelled_token_stops_profiling(self, sales_upload):
        token = CancellationToken()
        token.cancel("user")
        with pytest.raises(AgentCancelledError):
            profile_csv(sales_upload, EngineConfig(), token)

    def test_profile_serializes(self, sales_profile):
        data = sales_profile.to_dict()
        assert data["schema"]["primary_key"] == "order_id"


class TestDataProfilingAgent:
    def test_rejects_non_upload(self):
        with pytest.raises(AgentValidationError):
            DataProfilingAgent().validate_input(b"a,b\n1,2\n")

    def test_rejects_empty_file(self):
        with pytest.raises(AgentValidationError, match="empty"):
            DataProfilingAgent().validate_input(UploadedFile(buffer=b"", name="x.csv"))

    def test_rejects_oversized_file(self):
        agent = DataProfilingAgent(EngineConfig(max_file_size_bytes=4))
        with pytest.raises(AgentValidationError, match="limit"):
            agent.validate_input(UploadedFile(buffer=b"a,b\n1,2\n", name="x.csv"))

    def test_rejects_non_csv(self):
        upload = UploadedFile(buffer=b"%PDF", name="report.pdf", mime_type="application/pdf")
        with pytest.raises(AgentValidationError, match="not a CSV"):
            DataProfilingAgent().validate_input(upload)

    def test_accepts_csv_mime_with_other_extension(self):
        upload = UploadedFile(buffer=b"a\n1\n", name="export.dat", mime_type="text/csv; charset=utf-8")
        assert DataProfilingAgent().validate_input(upload)

    @pytest.mark.asyncio
    async def test_managed_execution(self, sales_upload):
        agent = ManagedAgent(DataProfilingAgent())
        result = await agent.execute(sales_upload, create_execution_context())
        assert result.success
        assert result.data.metadata.row_count == 5
        assert result.metrics.memory_used_bytes > 0

    @pytest.mark.asyncio
    async def test_empty_dataset_is_reported(self):
        agent = ManagedAgent(DataProfilingAgent())
        upload = UploadedFile(buffer=b"a,b\n", name="empty.csv")
        result = await agent.execute(upload, create_execution_context())
        assert result.error.code == "EMPTY_DATASET"
