"""Tests for the csvsense command line."""

import json
import logging

import pytest
from click.testing import CliRunner

from csvsense import __version__
from csvsense.cli import main


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers = handlers
    root.setLevel(level)


@pytest.fixture
def runner():
    return CliRunner()


def run(runner, *args):
    return runner.invoke(main, ["--log-level", "ERROR", *args])


@pytest.fixture
def sales_path(tmp_path, sales_csv):
    path = tmp_path / "sales.csv"
    path.write_bytes(sales_csv)
    return str(path)


class TestProfileCommand:
    def test_summary(self, runner, sales_path):
        result = run(runner, "profile", sales_path)
        assert result.exit_code == 0, result.output
        assert "sales.csv: 5 rows x 8 columns" in result.output
        assert "email: text" in result.output
        assert "[PII: email]" in result.output

    def test_json(self, runner, sales_path):
        result = run(runner, "profile", sales_path, "--json")
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["metadata"]["row_count"] == 5
        assert data["schema"]["primary_key"] == "order_id"

    def test_empty_file_fails(self, runner, tmp_path):
        path = tmp_path / "empty.csv"
        path.write_text("a,b\n")
        result = run(runner, "profile", str(path))
        assert result.exit_code != 0
        assert "EMPTY_DATASET" in result.output

    def test_missing_file(self, runner):
        result = run(runner, "profile", "does-not-exist.csv")
        assert result.exit_code == 2


class TestAskCommand:
    def test_table_output(self, runner, sales_path):
        result = run(runner, "ask", sales_path, "What is the total revenue by category?")
        assert result.exit_code == 0, result.output
        assert "Intent: aggregation" in result.output
        assert "Electronics | 3680.5" in result.output

    def test_json_output(self, runner, sales_path):
        result = run(runner, "ask", sales_path, "total revenue in North", "--json")
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["data"] == [{"revenue": 1650.75}]


class TestPlanCommand:
    def test_prints_plan(self, runner, sales_path):
        result = run(runner, "plan", sales_path, "Top 3 categories by revenue")
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["query_intent"]["query_type"] == "ranking"
        assert [s["type"] for s in data["execution_plan"]["steps"]][:2] == ["cache", "load"]


def test_version(runner):
    result = runner.invoke(main, ["--version"])
    assert __version__ in result.output
