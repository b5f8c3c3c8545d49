"""catalai CLI — Typer + Rich terminal interface.

Commands: matrix, evaluate, classify, sessions, analyze, suggestions,
validate, provider. All output is Rich-powered tables and panels.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from catalai import __version__
from catalai.classifier import Classifier
from catalai.errors import CatalaiError
from catalai.learning.sampler import ValidationSampler
from catalai.learning.worker import LearningWorker
from catalai.matrix.document import baseline_matrix, read_matrix, write_matrix
from catalai.matrix.registry import validate_matrix
from catalai.matrix.store import MatrixVersionStore
from catalai.persistence.database import close_db, init_db
from catalai.persistence.feedback import SQLiteFeedbackStore
from catalai.providers.litellm_provider import LiteLLMProvider
from catalai.schemas.classification import (
    ClarifyingExchange,
    ClassificationContext,
    ClassificationOutcome,
    RouteAction,
)
from catalai.schemas.config import EngineConfig
from catalai.schemas.feedback import (
    AnalysisFilters,
    AnalysisReport,
    DateRange,
    FeedbackSession,
    FeedbackStatus,
)
from catalai.schemas.suggestion import SuggestionStatus
from catalai.settings import feedback_db_path, load_engine_config, resolve_state_dir

console = Console()

# ── App and sub-apps ─────────────────────────────────────────────

app = typer.Typer(
    name="catalai",
    help="Decision-matrix classification of business processes with adaptive learning.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

matrix_app = typer.Typer(
    name="matrix",
    help="Inspect, import and export decision matrix versions.",
    no_args_is_help=True,
)
app.add_typer(matrix_app, name="matrix")

sessions_app = typer.Typer(
    name="sessions",
    help="Record and query feedback sessions.",
    no_args_is_help=True,
)
app.add_typer(sessions_app, name="sessions")

suggestions_app = typer.Typer(
    name="suggestions",
    help="Review matrix-change suggestions.",
    no_args_is_help=True,
)
app.add_typer(suggestions_app, name="suggestions")

provider_app = typer.Typer(
    name="provider",
    help="Check the LLM completion provider.",
    no_args_is_help=True,
)
app.add_typer(provider_app, name="provider")


@dataclass
class _CliState:
    config: EngineConfig
    state_dir: Path

    @property
    def feedback_db(self) -> Path:
        return feedback_db_path(self.config, self.state_dir)


# ── Version callback ───────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"catalai {__version__}")
        raise typer.Exit()


# ── App Callback ────────────────────────────────────────────────


@app.callback()
def main(
    ctx: typer.Context,
    state_dir: Path = typer.Option(
        None, "--state-dir", help="Directory for matrix versions, suggestions and feedback",
    ),
    config_path: Path = typer.Option(
        None, "--config", help="Engine config TOML (defaults to the packaged defaults)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
    version: bool = typer.Option(
        False, "--version", "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """catalai — classify business processes with a versioned decision matrix."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        config = load_engine_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading config:[/red] {e}")
        raise typer.Exit(1) from None
    ctx.obj = _CliState(config=config, state_dir=resolve_state_dir(config, state_dir))


# ── Helpers ──────────────────────────────────────────────────────


def _state(ctx: typer.Context) -> _CliState:
    return ctx.obj


def _fail(error: Exception) -> typer.Exit:
    console.print(f"[red]Error:[/red] {error}")
    return typer.Exit(1)


def _open_store(ctx: typer.Context) -> MatrixVersionStore:
    try:
        return MatrixVersionStore.open(_state(ctx).state_dir)
    except CatalaiError as e:
        raise _fail(e) from None


def _parse_date(value: str | None, option: str) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        console.print(f"[red]Invalid date for {option}:[/red] {value} (use YYYY-MM-DD)")
        raise typer.Exit(1) from None


def _parse_attributes(pairs: list[str] | None) -> dict[str, str | float]:
    values: dict[str, str | float] = {}
    for pair in pairs or []:
        if "=" not in pair:
            console.print(f"[red]Invalid --attr:[/red] {pair} (use name=value)")
            raise typer.Exit(1) from None
        name, raw = pair.split("=", 1)
        raw = raw.strip()
        try:
            values[name.strip()] = float(raw)
        except ValueError:
            values[name.strip()] = raw
    return values


def _load_sessions(
    ctx: typer.Context,
    date_range: DateRange | None = None,
    status: FeedbackStatus = FeedbackStatus.ANY,
) -> list[FeedbackSession]:
    async def _list():
        db = await init_db(_state(ctx).feedback_db)
        try:
            return await SQLiteFeedbackStore(db).list_sessions(date_range, status)
        finally:
            await close_db(db)

    return asyncio.run(_list())


def _route_style(action: RouteAction) -> str:
    """Return a Rich style string for a route action."""
    return {
        RouteAction.AUTO_CLASSIFY: "bold green",
        RouteAction.CLARIFY: "bold yellow",
        RouteAction.MANUAL_REVIEW: "bold red",
    }.get(action, "white")


def _status_style(status: SuggestionStatus) -> str:
    return {
        SuggestionStatus.PENDING: "yellow",
        SuggestionStatus.APPROVED: "green",
        SuggestionStatus.REJECTED: "red",
    }.get(status, "white")


def _display_outcome(outcome: ClassificationOutcome) -> None:
    evaluation, routing = outcome.evaluation, outcome.routing
    body = Text()
    body.append("Category:   ", style="bold")
    body.append(f"{evaluation.category}")
    if evaluation.overridden:
        body.append(f"  (LLM said {evaluation.original_category})", style="dim")
    body.append("\nConfidence: ", style="bold")
    body.append(f"{evaluation.confidence:.2f}")
    body.append(f"  (LLM {evaluation.original_confidence:.2f})", style="dim")
    body.append("\nQuality:    ", style="bold")
    body.append(str(routing.quality))
    body.append("\nRoute:      ", style="bold")
    body.append(str(routing.action), style=_route_style(routing.action))
    body.append(f"  {routing.reason}", style="dim")
    console.print(Panel(body, title=f"Matrix v{evaluation.matrix_version}", expand=False))

    if evaluation.triggered_rules:
        table = Table(title="Triggered rules")
        table.add_column("Rule", style="cyan")
        table.add_column("Priority", justify="right")
        table.add_column("Action")
        for rule in evaluation.triggered_rules:
            table.add_row(rule.rule_name or rule.rule_id, str(rule.priority), str(rule.action))
        console.print(table)

    for warning in evaluation.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")


def _display_report(report: AnalysisReport) -> None:
    console.print(Panel(
        f"Sessions analysed: {report.analysed_sessions}\n"
        f"Matrix version:    v{report.matrix_version}\n"
        f"Support threshold: {report.support_threshold}\n"
        f"Agreement rate:    {report.overall_agreement_rate:.0%}",
        title=f"Analysis {report.analysis_id[:8]}",
        expand=False,
    ))

    if report.common_misclassifications:
        table = Table(title="Common misclassifications")
        table.add_column("From")
        table.add_column("To")
        table.add_column("Count", justify="right")
        for m in report.common_misclassifications[:10]:
            table.add_row(m.from_category, m.to_category, str(m.count))
        console.print(table)

    for insight in report.insights:
        console.print(f"[cyan]▸[/cyan] {insight}")

    if report.suggestions:
        table = Table(title=f"Suggestions ({len(report.suggestions)})", show_lines=True)
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Change")
        table.add_column("Support", justify="right")
        for s in report.suggestions:
            table.add_row(s.id[:8], s.summary(), str(s.evidence.support))
        console.print(table)
    else:
        console.print("[dim]No pattern met the support threshold.[/dim]")

    if report.unactionable_patterns:
        console.print(
            f"[dim]{len(report.unactionable_patterns)} pattern(s) had no registered "
            "attribute to build a rule from.[/dim]"
        )


def _resolve_suggestion_id(store: MatrixVersionStore, prefix: str) -> str:
    matches = [s.id for s in store.list_suggestions() if s.id.startswith(prefix)]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        console.print(f"[red]Suggestion not found:[/red] {prefix}")
    else:
        console.print(f"[red]Ambiguous suggestion prefix:[/red] {prefix}")
    raise typer.Exit(1)


# ── matrix ───────────────────────────────────────────────────────


@matrix_app.command("show")
def matrix_show(ctx: typer.Context) -> None:
    """Show the active matrix."""
    store = _open_store(ctx)
    matrix = store.active
    if matrix is None:
        console.print("[dim]No active matrix. Run 'catalai matrix baseline' or import one.[/dim]")
        return

    console.print(
        f"[bold]Matrix v{matrix.version}[/bold] by {matrix.created_by} "
        f"at {matrix.created_at:%Y-%m-%d %H:%M} — {matrix.description}"
    )

    attrs = Table(title="Attributes")
    attrs.add_column("Name", style="cyan")
    attrs.add_column("Type")
    attrs.add_column("Values")
    attrs.add_column("Weight", justify="right")
    for a in matrix.attributes:
        attrs.add_row(a.name, str(a.type), ", ".join(a.possible_values) or "-", f"{a.weight:.2f}")
    console.print(attrs)

    rules = Table(title="Rules", show_lines=True)
    rules.add_column("ID", style="cyan")
    rules.add_column("Priority", justify="right")
    rules.add_column("Conditions")
    rules.add_column("Action")
    rules.add_column("Enabled")
    for r in sorted(matrix.rules, key=lambda r: r.sort_key):
        conditions = " AND ".join(
            f"{c.attribute} {c.operator.value} {list(c.value) if isinstance(c.value, tuple) else c.value}"
            for c in r.conditions
        ) or "(always)"
        action = str(r.action_type)
        if r.action.type == "override":
            action = f"override → {r.action.category}"
        elif r.action.type == "adjust_confidence":
            action = f"adjust {r.action.delta:+.2f}"
        rules.add_row(r.id, str(r.priority), conditions, action, "yes" if r.enabled else "no")
    console.print(rules)

    for issue in validate_matrix(matrix):
        console.print(f"[yellow]Warning:[/yellow] rule {issue.rule_id}: {issue.message}")


@matrix_app.command("export")
def matrix_export(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="Output JSON file"),
    version: int = typer.Option(None, "--version", help="Export a specific version"),
) -> None:
    """Export a matrix version as a JSON document."""
    store = _open_store(ctx)
    try:
        matrix = store.get(version) if version is not None else store.require_active()
    except CatalaiError as e:
        raise _fail(e) from None
    write_matrix(matrix, path)
    console.print(f"[green]Exported matrix v{matrix.version} to {path}[/green]")


@matrix_app.command("import")
def matrix_import(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="Matrix JSON document"),
    strict: bool = typer.Option(False, "--strict", help="Reject out-of-domain condition values"),
) -> None:
    """Import a matrix document and activate it as a new version."""
    store = _open_store(ctx)
    try:
        matrix = store.activate(read_matrix(path, strict=strict), created_by="import")
    except (CatalaiError, FileNotFoundError) as e:
        raise _fail(e) from None
    console.print(f"[green]Activated matrix v{matrix.version} from {path}[/green]")


@matrix_app.command("baseline")
def matrix_baseline(ctx: typer.Context) -> None:
    """Activate the packaged baseline matrix as a new version."""
    store = _open_store(ctx)
    try:
        matrix = store.activate(baseline_matrix())
    except CatalaiError as e:
        raise _fail(e) from None
    console.print(
        f"[green]Activated baseline matrix v{matrix.version} "
        f"({len(matrix.attributes)} attributes, {len(matrix.rules)} rules)[/green]"
    )


@matrix_app.command("history")
def matrix_history(ctx: typer.Context) -> None:
    """List every matrix version."""
    store = _open_store(ctx)
    versions = store.history()
    if not versions:
        console.print("[dim]No matrix versions yet.[/dim]")
        return

    active = store.active
    table = Table(title=f"Matrix versions ({len(versions)})")
    table.add_column("Version", justify="right", style="cyan")
    table.add_column("Created")
    table.add_column("By")
    table.add_column("Rules", justify="right")
    table.add_column("Description", max_width=60)
    for m in versions:
        marker = " *" if active is not None and m.version == active.version else ""
        table.add_row(
            f"v{m.version}{marker}",
            f"{m.created_at:%Y-%m-%d %H:%M}",
            m.created_by,
            str(len(m.rules)),
            m.description,
        )
    console.print(table)


@matrix_app.command("revert")
def matrix_revert(
    ctx: typer.Context,
    version: int = typer.Argument(..., help="Version to restore"),
) -> None:
    """Re-activate an older version as a new version."""
    store = _open_store(ctx)
    try:
        matrix = store.revert_to(version, created_by="cli")
    except CatalaiError as e:
        raise _fail(e) from None
    console.print(f"[green]Restored v{version} as matrix v{matrix.version}[/green]")


# ── evaluate / classify ──────────────────────────────────────────


@app.command()
def evaluate(
    ctx: typer.Context,
    category: str = typer.Option(..., "--category", "-c", help="Category proposed by the LLM"),
    confidence: float = typer.Option(
        ..., "--confidence", min=0.0, max=1.0, help="LLM confidence (0-1)",
    ),
    description: str = typer.Option("", "--description", "-d", help="Process description"),
    attr: list[str] = typer.Option(None, "--attr", "-a", help="Attribute as name=value"),
    answer: list[str] = typer.Option(None, "--answer", help="Clarifying answer (repeatable)"),
) -> None:
    """Evaluate an LLM classification against the active matrix and route it."""
    store = _open_store(ctx)
    context = ClassificationContext(
        process_description=description,
        attribute_values=_parse_attributes(attr),
        llm_category=category,
        llm_confidence=confidence,
        conversation_history=tuple(ClarifyingExchange(answer=a) for a in answer or []),
    )
    try:
        outcome = Classifier(store, _state(ctx).config).classify(context)
    except CatalaiError as e:
        raise _fail(e) from None
    _display_outcome(outcome)


@app.command()
def classify(
    ctx: typer.Context,
    description: str = typer.Argument(..., help="Process description"),
    attr: list[str] = typer.Option(None, "--attr", "-a", help="Attribute as name=value"),
) -> None:
    """Ask the configured LLM for a category, then evaluate and route it."""
    state = _state(ctx)
    store = _open_store(ctx)
    classifier = Classifier(store, state.config, LiteLLMProvider(state.config.provider))
    try:
        outcome = asyncio.run(classifier.classify_description(description, _parse_attributes(attr)))
    except CatalaiError as e:
        raise _fail(e) from None
    _display_outcome(outcome)


# ── sessions ─────────────────────────────────────────────────────


@sessions_app.command("import")
def sessions_import(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="JSON-lines file of feedback sessions"),
) -> None:
    """Record feedback sessions from a JSON-lines file."""

    async def _import():
        db = await init_db(_state(ctx).feedback_db)
        try:
            return await SQLiteFeedbackStore(db).import_jsonl(path)
        finally:
            await close_db(db)

    try:
        count = asyncio.run(_import())
    except (CatalaiError, FileNotFoundError) as e:
        raise _fail(e) from None
    console.print(f"[green]Imported {count} feedback session(s)[/green]")


@sessions_app.command("list")
def sessions_list(
    ctx: typer.Context,
    status: FeedbackStatus = typer.Option(
        FeedbackStatus.ANY, "--status", help="any, confirmed or corrected",
    ),
    since: str = typer.Option(None, "--since", help="Only sessions on or after this date"),
    until: str = typer.Option(None, "--until", help="Only sessions on or before this date"),
    limit: int = typer.Option(20, "--limit", "-n", help="Max sessions to show"),
) -> None:
    """Show recorded feedback sessions, newest first."""
    window = DateRange(start=_parse_date(since, "--since"), end=_parse_date(until, "--until"))
    sessions = _load_sessions(ctx, window, status)
    if not sessions:
        console.print("[dim]No feedback sessions found.[/dim]")
        return

    shown = list(reversed(sessions))[:limit]
    table = Table(title=f"Feedback sessions ({len(shown)} of {len(sessions)} shown)")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("When")
    table.add_column("Final")
    table.add_column("Corrected")
    table.add_column("Subject", style="dim")
    for s in shown:
        corrected = Text(s.user_corrected_category, style="red") if s.is_corrected else Text("-")
        table.add_row(
            s.session_id[:12],
            f"{s.timestamp:%Y-%m-%d %H:%M}",
            s.final_category,
            corrected,
            s.subject or "-",
        )
    console.print(table)


# ── analyze ──────────────────────────────────────────────────────


@app.command()
def analyze(
    ctx: typer.Context,
    since: str = typer.Option(None, "--since", help="Only sessions on or after this date"),
    until: str = typer.Option(None, "--until", help="Only sessions on or before this date"),
    include_confirmed: bool = typer.Option(
        False, "--all", help="Analyse confirmed sessions too, not just corrections",
    ),
    min_support: int = typer.Option(None, "--min-support", min=1, help="Minimum pattern support"),
    min_fraction: float = typer.Option(
        0.0, "--min-fraction", min=0.0, max=1.0,
        help="Minimum share of analysed sessions a pattern must cover",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON"),
) -> None:
    """Mine feedback for misclassification patterns and submit suggestions."""
    state = _state(ctx)
    store = _open_store(ctx)
    filters = AnalysisFilters(
        start=_parse_date(since, "--since"),
        end=_parse_date(until, "--until"),
        misclassifications_only=not include_confirmed,
        min_support=min_support or state.config.analysis.min_support,
        min_support_fraction=min_fraction,
    )

    try:
        matrix = store.require_active()
        sessions = _load_sessions(ctx, filters.date_range)
        with console.status("Analysing feedback..."):
            report = asyncio.run(LearningWorker(state.config).analyze(matrix, sessions, filters))
        store.submit(report.suggestions)
    except CatalaiError as e:
        raise _fail(e) from None

    if as_json:
        console.print_json(report.model_dump_json())
        return
    _display_report(report)


# ── suggestions ──────────────────────────────────────────────────


@suggestions_app.command("list")
def suggestions_list(
    ctx: typer.Context,
    status: SuggestionStatus = typer.Option(
        None, "--status", help="pending, approved or rejected",
    ),
) -> None:
    """List suggestions."""
    store = _open_store(ctx)
    suggestions = store.list_suggestions(status)
    if not suggestions:
        console.print("[dim]No suggestions found.[/dim]")
        return

    table = Table(title=f"Suggestions ({len(suggestions)})", show_lines=True)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Base", justify="right")
    table.add_column("Change")
    table.add_column("Support", justify="right")
    table.add_column("Notes", style="dim", max_width=40)
    for s in suggestions:
        table.add_row(
            s.id[:8],
            Text(str(s.status), style=_status_style(s.status)),
            f"v{s.base_version}",
            s.summary(),
            str(s.evidence.support),
            s.review_notes or "",
        )
    console.print(table)


@suggestions_app.command("show")
def suggestions_show(
    ctx: typer.Context,
    suggestion_id: str = typer.Argument(..., help="Suggestion ID or prefix"),
) -> None:
    """Show a suggestion with its evidence and proposed change."""
    store = _open_store(ctx)
    suggestion = store.get_suggestion(_resolve_suggestion_id(store, suggestion_id))
    console.print(Panel(
        f"{suggestion.summary()}\n\n{suggestion.rationale}\n\n"
        f"[dim]{suggestion.evidence.pattern_description}[/dim]",
        title=f"Suggestion {suggestion.id} ({suggestion.status})",
    ))
    console.print_json(json.dumps(suggestion.proposed_change.model_dump(mode="json")))


@suggestions_app.command("approve")
def suggestions_approve(
    ctx: typer.Context,
    suggestion_id: str = typer.Argument(..., help="Suggestion ID or prefix"),
    notes: str = typer.Option(None, "--notes", help="Review notes"),
    reviewer: str = typer.Option(None, "--reviewer", help="Reviewer name"),
) -> None:
    """Approve a suggestion and commit its change as a new matrix version."""
    store = _open_store(ctx)
    full_id = _resolve_suggestion_id(store, suggestion_id)
    try:
        matrix = store.apply_suggestion(full_id, notes=notes, reviewer=reviewer)
    except CatalaiError as e:
        raise _fail(e) from None
    console.print(f"[green]Approved {full_id[:8]}; matrix v{matrix.version} is active[/green]")


@suggestions_app.command("reject")
def suggestions_reject(
    ctx: typer.Context,
    suggestion_id: str = typer.Argument(..., help="Suggestion ID or prefix"),
    notes: str = typer.Option(..., "--notes", help="Why the suggestion is rejected"),
    reviewer: str = typer.Option(None, "--reviewer", help="Reviewer name"),
) -> None:
    """Reject a suggestion. The matrix is not changed."""
    store = _open_store(ctx)
    full_id = _resolve_suggestion_id(store, suggestion_id)
    try:
        store.reject(full_id, notes=notes, reviewer=reviewer)
    except CatalaiError as e:
        raise _fail(e) from None
    console.print(f"[yellow]Rejected {full_id[:8]}[/yellow]")


# ── validate ─────────────────────────────────────────────────────


@app.command()
def validate(
    ctx: typer.Context,
    suggestion_id: str = typer.Argument(..., help="Suggestion ID or prefix"),
    seed: int = typer.Option(None, "--seed", help="Sampling seed"),
) -> None:
    """Estimate a suggestion's effect by replaying sampled feedback sessions."""
    state = _state(ctx)
    store = _open_store(ctx)
    full_id = _resolve_suggestion_id(store, suggestion_id)
    sampler = ValidationSampler(state.config.validation, state.config.routing, state.config.quality)
    try:
        sessions = _load_sessions(ctx)
        result = sampler.validate_suggestion(store, full_id, sessions, seed=seed)
    except CatalaiError as e:
        raise _fail(e) from None

    table = Table(title=f"Validation of {full_id[:8]} (seed {result.seed})", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Sample", f"{result.sample_size} of {result.population_size}")
    table.add_row("Improved", Text(str(result.improved_count), style="green"))
    table.add_row("Unchanged", str(result.unchanged_count))
    table.add_row("Worsened", Text(str(result.worsened_count), style="red"))
    table.add_row("Improvement rate", f"{result.improvement_rate:.1%}")
    console.print(table)


# ── provider ─────────────────────────────────────────────────────


@provider_app.command("test")
def provider_test(ctx: typer.Context) -> None:
    """Send a short message to the configured model and report latency."""
    config = _state(ctx).config.provider
    provider = LiteLLMProvider(config)
    messages = [{"role": "user", "content": "Reply with the single word: ready"}]
    try:
        probe = asyncio.run(provider.probe(messages))
    except CatalaiError as e:
        raise _fail(e) from None
    console.print(
        f"[green]✓[/green] {probe.model or config.model} replied "
        f"{probe.text.strip()[:60]!r} in {probe.latency:.2f}s"
    )
