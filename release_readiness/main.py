"""CLI entrypoint for release readiness analysis."""
from __future__ import annotations

import asyncio
import json
import logging

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from .autotest_pipeline import AutotestPipeline
from .config_loader import RuntimeConfig, ensure_env_vars, load_config, load_runtime_config
from .models import DetectionConfig, DetectionResult, SeverityFilter, SuiteResult
from .patterns import PatternMatcher
from .pipeline import IssueDetectionPipeline
from .readiness import ReleaseReadinessAnalyzer
from .retry import RetryPolicy
from .semantic_classifier import SemanticClassifier
from .state_machine import PipelineError
from .tools.ollama_tools import OllamaGateway
from .tools.slack_tools import SlackGateway

app = typer.Typer(help="Detect release blockers and review automated test results from Slack.")
console = Console()


def _configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def _load_runtime() -> RuntimeConfig:
    ensure_env_vars()
    return load_runtime_config(load_config())


def _build_semantic(runtime: RuntimeConfig) -> SemanticClassifier | None:
    if not runtime.ollama_enabled:
        return None
    gateway = OllamaGateway(
        base_url=runtime.ollama_base_url,
        model=runtime.ollama_model,
        probe_timeout_seconds=runtime.probe_timeout_seconds,
        generate_timeout_seconds=runtime.generate_timeout_seconds,
    )
    return SemanticClassifier(gateway=gateway, timeout_seconds=runtime.generate_timeout_seconds)


def _build_analyzer(runtime: RuntimeConfig) -> ReleaseReadinessAnalyzer:
    source = SlackGateway(
        user_token=runtime.slack_user_token,
        timeout_seconds=runtime.slack_timeout_seconds,
        retry_policy=RetryPolicy(
            max_attempts=runtime.retry_max_attempts,
            base_delay_seconds=runtime.retry_base_delay_seconds,
            max_delay_seconds=runtime.retry_max_delay_seconds,
        ),
    )
    semantic = _build_semantic(runtime)
    matcher = PatternMatcher(
        negation_window=runtime.negation_window,
        escalation_mentions=runtime.escalation_mentions,
        browse_base_url=runtime.jira_base_url or None,
        negated_phrases=runtime.negated_phrases,
        summary_header_patterns=runtime.summary_header_patterns,
    )
    issues = IssueDetectionPipeline(
        source=source,
        matcher=matcher,
        semantic=semantic,
        seed_queries=runtime.seed_queries,
        confidence_floor=runtime.semantic_confidence_floor,
        semantic_concurrency=runtime.semantic_concurrency,
    )
    autotests = AutotestPipeline(
        source=source,
        semantic=semantic,
        test_bots=runtime.test_bots,
        confidence_floor=runtime.semantic_confidence_floor,
    )
    return ReleaseReadinessAnalyzer(issues=issues, autotests=autotests)


def _detection_config(
    runtime: RuntimeConfig,
    *,
    channel: str | None,
    date: str,
    severity: SeverityFilter = SeverityFilter.BOTH,
    semantic: bool = True,
) -> DetectionConfig:
    return DetectionConfig(
        channel=channel or runtime.slack_channel,
        date=date,
        severity_filter=severity,
        max_threads=runtime.max_threads,
        max_messages=runtime.max_messages,
        use_semantic=semantic and runtime.ollama_enabled,
    )


def _print_issues(result: DetectionResult) -> None:
    if not result.issues:
        console.print("[green]No issues found.[/]")
    else:
        table = Table(title="Release issues")
        table.add_column("Kind")
        table.add_column("Tickets")
        table.add_column("Thread")
        table.add_column("Text")
        for issue in result.issues:
            table.add_row(
                issue.kind.value,
                ", ".join(issue.ticket_keys) or "-",
                "yes" if issue.has_thread else "no",
                issue.text,
            )
        console.print(table)
    if result.partial_failure:
        console.print(f"[yellow]Partial search failure:[/] {', '.join(result.failed_queries)}")


def _print_suites(suites: list[SuiteResult]) -> None:
    if not suites:
        console.print("[yellow]No automated test results found.[/]")
        return
    table = Table(title="Automated tests")
    table.add_column("Suite")
    table.add_column("Status")
    table.add_column("Review")
    table.add_column("Tests")
    for suite in suites:
        table.add_row(
            suite.suite,
            suite.status.value,
            suite.section_status.value,
            ", ".join(f"{name}={verdict.status.value}" for name, verdict in suite.verdicts.items()) or "-",
        )
    console.print(table)


def _fail(exc: Exception) -> None:
    console.print(f"[red]Analysis failed:[/] {exc}")
    raise typer.Exit(code=1)


@app.command()
def issues(
    channel: str = typer.Option(None, help="Channel name or id; defaults to slack.channel."),
    date: str = typer.Option("today", help="'today' or YYYY-MM-DD."),
    severity: SeverityFilter = typer.Option(SeverityFilter.BOTH, help="Which issue kinds to report."),
    semantic: bool = typer.Option(True, help="Use the local language model for ambiguous tickets."),
    as_json: bool = typer.Option(False, "--json", help="Print machine-readable output."),
) -> None:
    """Detect blocking and critical issues for one day."""
    _configure_logging()
    runtime = _load_runtime()
    analyzer = _build_analyzer(runtime)
    try:
        config = _detection_config(runtime, channel=channel, date=date, severity=severity, semantic=semantic)
        result = asyncio.run(analyzer.issues.run(config))
    except (PipelineError, ValidationError) as exc:
        _fail(exc)
        return
    if as_json:
        console.print_json(result.model_dump_json())
        return
    _print_issues(result)


@app.command()
def autotests(
    channel: str = typer.Option(None, help="Channel name or id; defaults to slack.channel."),
    date: str = typer.Option("today", help="'today' or YYYY-MM-DD."),
    semantic: bool = typer.Option(True, help="Use the local language model for per-test review."),
    as_json: bool = typer.Option(False, "--json", help="Print machine-readable output."),
) -> None:
    """Review the latest automated test run per suite."""
    _configure_logging()
    runtime = _load_runtime()
    analyzer = _build_analyzer(runtime)
    try:
        config = _detection_config(runtime, channel=channel, date=date, semantic=semantic)
        suites = asyncio.run(analyzer.autotests.run(config.channel, config.date, use_semantic=config.use_semantic))
    except (PipelineError, ValidationError) as exc:
        _fail(exc)
        return
    if as_json:
        console.print_json(json.dumps([suite.model_dump(mode="json") for suite in suites]))
        return
    _print_suites(suites)


@app.command()
def readiness(
    channel: str = typer.Option(None, help="Channel name or id; defaults to slack.channel."),
    date: str = typer.Option("today", help="'today' or YYYY-MM-DD."),
    semantic: bool = typer.Option(True, help="Use the local language model."),
    as_json: bool = typer.Option(False, "--json", help="Print machine-readable output."),
) -> None:
    """Combine issues and test results into a release decision."""
    _configure_logging()
    runtime = _load_runtime()
    analyzer = _build_analyzer(runtime)
    try:
        config = _detection_config(runtime, channel=channel, date=date, semantic=semantic)
        report = asyncio.run(analyzer.analyze(config))
    except (PipelineError, ValidationError) as exc:
        _fail(exc)
        return
    if as_json:
        console.print_json(report.model_dump_json())
        return
    colors = {"ready": "green", "blocked": "red", "uncertain": "yellow"}
    color = colors.get(report.decision.value, "white")
    console.print(f"[{color}]Release decision for {report.date}: {report.decision.value.upper()}[/]")
    _print_issues(report.issues)
    _print_suites(report.suites)


@app.command("probe-model")
def probe_model() -> None:
    """Check whether the configured local language model is reachable."""
    _configure_logging()
    runtime = load_runtime_config(load_config())
    semantic = _build_semantic(runtime)
    if semantic is None:
        console.print("[yellow]Semantic classification is disabled in config.yaml.[/]")
        return
    available = asyncio.run(semantic.is_available())
    if available:
        console.print(f"[green]Model {runtime.ollama_model} is available.[/]")
    else:
        console.print(f"[red]Model {runtime.ollama_model} is not available at {runtime.ollama_base_url}.[/]")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
