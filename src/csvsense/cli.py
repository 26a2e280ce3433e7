"""CLI entrypoint for csvsense."""

import asyncio
import json
from pathlib import Path

import click

from csvsense import __version__
from csvsense.agents.base import AgentError, create_execution_context
from csvsense.agents.contracts import AnalysisResult, DataProfile, QueryPlannerResult
from csvsense.config import EngineConfig
from csvsense.logging_config import setup_logging
from csvsense.orchestrator import AgentOrchestrator
from csvsense.profiling.profiler import UploadedFile


def _load_upload(path: str) -> UploadedFile:
    file_path = Path(path)
    return UploadedFile(buffer=file_path.read_bytes(), name=file_path.name)


async def _profile(path: str, config: EngineConfig, timeout_ms: int | None) -> DataProfile:
    async with AgentOrchestrator(config) as orchestrator:
        context = create_execution_context(timeout_ms=timeout_ms or config.upload_timeout_ms)
        return await orchestrator.process_data_upload(_load_upload(path), context)


async def _plan(path: str, question: str, config: EngineConfig) -> QueryPlannerResult:
    async with AgentOrchestrator(config) as orchestrator:
        profile = await orchestrator.process_data_upload(_load_upload(path))
        return await orchestrator.plan_query(question, profile)


async def _ask(path: str, question: str, config: EngineConfig) -> AnalysisResult:
    async with AgentOrchestrator(config) as orchestrator:
        profile = await orchestrator.process_data_upload(_load_upload(path))
        return await orchestrator.analyze(question, profile)


def _fail(message: str, error: AgentError) -> None:
    click.echo(f"❌ {message}: {error.message} [{error.code}]", err=True)
    raise click.Abort()


def format_profile_summary(profile: DataProfile) -> str:
    meta = profile.metadata
    lines = [
        f"📄 {meta.filename}: {meta.row_count} rows x {meta.column_count} columns "
        f"({meta.encoding}, delimiter {meta.delimiter!r})",
        f"Quality score: {profile.quality.overall_score:.1f}/100",
        f"Privacy risk: {profile.security.risk_level.value}",
        "",
        "Columns:",
    ]
    pii = {c.column: c.pii_type.value for c in profile.security.pii_columns}
    for col in profile.columns:
        marker = f"  [PII: {pii[col.name]}]" if col.name in pii else ""
        lines.append(
            f"  - {col.name}: {col.type.value}, {col.null_percentage:.1f}% null, "
            f"{col.unique_count} unique{marker}"
        )
    if profile.insights.suggested_queries:
        lines.append("")
        lines.append("Try asking:")
        lines.extend(f"  • {q}" for q in profile.insights.suggested_queries)
    return "\n".join(lines)


def format_result(result: AnalysisResult, max_rows: int = 20) -> str:
    intent = result.intent
    lines = [
        f"Intent: {intent.type.value} ({intent.query_type}), confidence {intent.confidence:.2f}",
        "",
    ]
    if result.data:
        headers = list(result.data[0].keys())
        lines.append(" | ".join(headers))
        lines.append("-" * len(lines[-1]))
        for row in result.data[:max_rows]:
            lines.append(" | ".join("" if row.get(h) is None else str(row.get(h)) for h in headers))
        if len(result.data) > max_rows:
            lines.append(f"... {len(result.data) - max_rows} more row(s)")
    else:
        lines.append("(no rows)")
    if result.insights:
        lines.append("")
        lines.append("Insights:")
        lines.extend(f"  • {i.title}: {i.description}" for i in result.insights)
    if result.suggestions:
        lines.append("")
        lines.append("Follow-up questions:")
        lines.extend(f"  • {s}" for s in result.suggestions)
    return "\n".join(lines)


@click.group()
@click.version_option(version=__version__)
@click.option("--log-level", default=None, help="Log level (default: CSVSENSE_LOG_LEVEL or INFO)")
@click.option("--json-logs", is_flag=True, default=False, help="Emit JSON log lines on stderr")
def main(log_level: str | None, json_logs: bool):
    """csvsense - Chat with your CSV."""
    setup_logging(level=log_level, json_format=json_logs or None)


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the full profile as JSON")
@click.option("--timeout-ms", type=int, default=None, help="Profiling timeout (default: upload timeout)")
def profile(path: str, as_json: bool, timeout_ms: int | None):
    """Profile a CSV file."""
    config = EngineConfig.from_env()
    try:
        result = asyncio.run(_profile(path, config, timeout_ms))
    except AgentError as e:
        _fail("Profiling failed", e)
        return
    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        click.echo(format_profile_summary(result))


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.argument("question")
def plan(path: str, question: str):
    """Show the intent and execution plan for QUESTION."""
    config = EngineConfig.from_env()
    try:
        result = asyncio.run(_plan(path, question, config))
    except AgentError as e:
        _fail("Planning failed", e)
        return
    click.echo(json.dumps(result.model_dump(mode="json"), indent=2))


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.argument("question")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the full result as JSON")
def ask(path: str, question: str, as_json: bool):
    """Answer QUESTION about the CSV at PATH."""
    config = EngineConfig.from_env()
    try:
        result = asyncio.run(_ask(path, question, config))
    except AgentError as e:
        _fail("Analysis failed", e)
        return
    if as_json:
        click.echo(json.dumps(result.model_dump(mode="json"), indent=2))
    else:
        click.echo(format_result(result))


if __name__ == "__main__":
    main()
