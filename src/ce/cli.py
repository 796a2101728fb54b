"""CLI commands for inspecting intent classification, strategies and evidence retrieval."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer

from .config import DEFAULT_CONFIG_NAME, RetrievalSettings, SettingsError, load_settings
from .intent.classifier import TaskIntentClassifier
from .intent.strategy import IntentStrategyProvider
from .orchestrator import EvidenceOrchestrator, RetrievalResult, build_default_providers
from .schema import ClassificationContext, RetrievalContext
from .tools.vcs import GitError, GitSnapshotService

APP_HELP = "Context evidence retrieval CLI entry point."

app = typer.Typer(help=APP_HELP)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log retrieval details to stderr."),
) -> None:
    """Configure logging before any command runs."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _load_settings_or_exit(config: Optional[str]) -> RetrievalSettings:
    config_path = Path(config) if config else Path(DEFAULT_CONFIG_NAME)
    if config and not config_path.exists():
        raise typer.BadParameter(f"Config file not found: {config_path}")
    try:
        return load_settings(config_path)
    except SettingsError as error:
        typer.echo(f"Failed to load settings: {error}")
        raise typer.Exit(code=1) from error


def _echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2))


def _render_result(result: RetrievalResult) -> Dict[str, Any]:
    return {
        "intent": result.classification.intent.value,
        "confidence": result.classification.confidence,
        "secondary_intent": (
            result.classification.secondary_intent.value if result.classification.secondary_intent else None
        ),
        "signals": [signal.model_dump(mode="json") for signal in result.signals],
        "total_tokens": result.total_tokens,
        "provider_errors": result.provider_errors,
        "evidence": [
            {
                "provider": item.evidence.provider.value,
                "path": item.evidence.path,
                "range": list(item.evidence.range),
                "tokens": item.evidence.tokens,
                "score": round(item.score, 3),
                "matched_signals": [signal.value for signal in item.evidence.matched_signals],
            }
            for item in result.ranked
        ],
    }


@app.command()
def classify(
    text: str = typer.Argument(..., help="Task description to classify."),
    error: bool = typer.Option(False, "--error", help="An error is currently on screen."),
    test_file: bool = typer.Option(False, "--test-file", help="The active file is a test file."),
    recent: List[str] = typer.Option(None, "--recent", "-r", help="Recently touched file (repeatable)."),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to the evidence settings file."),
) -> None:
    """Classify a task description into an intent."""
    settings = _load_settings_or_exit(config)
    classifier = TaskIntentClassifier(min_confidence=settings.min_confidence)
    context = ClassificationContext(error_present=error, test_file=test_file, recent_files=tuple(recent or ()))
    result = classifier.classify_with_context(text, context)
    _echo_json(result.model_dump(mode="json"))


@app.command()
def strategy(
    intent: str = typer.Argument(..., help="Intent name (debug, implement, refactor, explore, test, review, unknown)."),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to the evidence settings file."),
) -> None:
    """Show the strategy and effective weights for an intent."""
    settings = _load_settings_or_exit(config)
    provider = IntentStrategyProvider(settings.strategies)
    try:
        resolved = provider.get_strategy(intent)
    except KeyError as error:
        typer.echo(str(error.args[0]) if error.args else str(error))
        raise typer.Exit(code=1) from error
    payload = resolved.model_dump(mode="json")
    payload["effective_weights"] = provider.apply_weight_modifiers(settings.weights, intent).model_dump(mode="json")
    _echo_json(payload)


@app.command()
def gather(
    text: str = typer.Argument(..., help="Task description to retrieve evidence for."),
    repo: Path = typer.Option(Path("."), "--repo", help="Repository to search."),
    snapshot: Optional[str] = typer.Option(
        None,
        "--snapshot",
        help="Snapshot hash to diff against (defaults to HEAD).",
    ),
    budget: Optional[int] = typer.Option(None, "--budget", "-b", help="Total token budget."),
    error_output: Optional[Path] = typer.Option(
        None,
        "--error-output",
        help="File holding error output or a stack trace.",
    ),
    working_set: List[str] = typer.Option(None, "--working", "-w", help="File in the working set (repeatable)."),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to the evidence settings file."),
) -> None:
    """Run one retrieval cycle against a repository and print the ranked evidence."""
    settings = _load_settings_or_exit(config)
    if budget is not None and budget < 0:
        typer.echo("Budget must be zero or positive.")
        raise typer.Exit(code=1)

    try:
        snapshot_hash = snapshot or GitSnapshotService.for_path(repo).repo.current_head()
        providers = build_default_providers(repo, settings, snapshot_hash=snapshot_hash)
    except GitError as error:
        typer.echo(f"Unable to open repository: {error}")
        raise typer.Exit(code=1) from error

    error_text = None
    if error_output is not None:
        try:
            error_text = error_output.read_text(encoding="utf-8")
        except OSError as error:
            typer.echo(f"Unable to read error output: {error}")
            raise typer.Exit(code=1) from error

    context = RetrievalContext(
        error_present=error_text is not None,
        error_output=error_text,
        working_set=tuple(working_set or ()),
    )
    orchestrator = EvidenceOrchestrator(providers, settings=settings)
    result = asyncio.run(orchestrator.gather(text, context, token_budget=budget))
    _echo_json(_render_result(result))


if __name__ == "__main__":  # pragma: no cover
    app()
