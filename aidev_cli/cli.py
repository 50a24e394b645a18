"""Typer-based CLI for aidev change impact analysis and context packs."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, NoReturn, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from . import __version__, config
from .config_manager import clear_prompt_config, load_prompt_config, save_prompt_config
from .errors import AidevError, ConfigError, GitError, exit_code_for, format_error
from .generator import PromptPackGenerator
from .git_service import GitService, parse_diff_range
from .impact import ImpactAnalyzer
from .model_loader import (
    ProjectModel,
    init_project,
    load_project_model,
    save_discovered_edges,
)
from .models import ChangedFile, ImpactEvidence, ImpactReport
from .providers import create_adapter
from .scanners import scan_project
from .state import InternalState, StateManager
from .utils import canonicalize_output, normalize_path

app = typer.Typer(
    help="aidev: change impact analysis and token-budgeted context packs.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()
err_console = Console(stderr=True)

MAX_LISTED_FILES = 20

CHANGE_ICONS = {
    "added": "[green]+[/green]",
    "deleted": "[red]-[/red]",
    "renamed": "[yellow]R[/yellow]",
    "modified": "[cyan]M[/cyan]",
}


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"aidev v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr."),
):
    """aidev: find what a change touches and package it for an assistant."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(levelname)s %(name)s: %(message)s",
        )


def _fail(exc: AidevError, as_json: bool = False) -> NoReturn:
    """Print *exc* and exit with its mapped code."""
    if as_json:
        typer.echo(format_error(exc, "json"))
    else:
        err_console.print(f"[red]{escape(format_error(exc))}[/red]")
    raise typer.Exit(code=exit_code_for(exc))


def _project_root(path: Path) -> Path:
    root = path.resolve()
    if not root.is_dir():
        raise typer.BadParameter(f"Not a directory: {path}")
    return root


def _collect_changes(
    root: Path,
    diff: Optional[str],
    staged: bool,
    files: Optional[List[str]],
) -> List[ChangedFile]:
    if files:
        return [ChangedFile(path=normalize_path(f)) for f in files]

    git = GitService(root)
    if not git.is_git_repo():
        raise GitError(f"Not a git repository: {root} (use --file to name changes)")
    if staged:
        return git.get_staged_changes()
    if diff:
        return git.get_diff_changes(*parse_diff_range(diff))

    # default: staged plus unstaged, first entry per path wins
    seen = set()
    changes: List[ChangedFile] = []
    for change in git.get_staged_changes() + git.get_unstaged_changes():
        if change.path not in seen:
            seen.add(change.path)
            changes.append(change)
    return changes


# ===================================================================
# init / sync
# ===================================================================

@app.command("init")
def init(
    path: Path = typer.Option(Path("."), "--path", "-p", help="Project root."),
):
    """Create the .aidev/ model skeleton (existing files are kept)."""
    root = _project_root(path)
    created = init_project(root)
    if not created:
        console.print(f"[yellow]{config.PROJECT_DIR_NAME}/ already initialised in {escape(str(root))}[/yellow]")
        return
    for item in created:
        console.print(f"[green]created[/green] {escape(item.relative_to(root).as_posix())}")
    console.print("\nNext: describe components in .aidev/model/components/, then run [bold]aidev sync[/bold].")


@app.command("sync")
def sync(
    path: Path = typer.Option(Path("."), "--path", "-p", help="Project root."),
    check: bool = typer.Option(False, "--check", help="Report drift without writing (exit 1 on drift)."),
):
    """Scan sources and refresh discovered import edges."""
    root = _project_root(path)
    try:
        model = load_project_model(root)
        scan = scan_project(root, model.config)
    except AidevError as exc:
        _fail(exc)

    if check:
        current = {(e.source, e.target, e.type) for e in model.discovered_edges}
        fresh = {(e.source, e.target, e.type) for e in scan.edges}
        added = sorted(fresh - current)
        removed = sorted(current - fresh)
        if not added and not removed:
            console.print(f"[green]In sync[/green]: {len(fresh)} discovered edges.")
            return
        for source, target, _ in added:
            console.print(f"  [green]+[/green] {escape(source)} -> {escape(target)}")
        for source, target, _ in removed:
            console.print(f"  [red]-[/red] {escape(source)} -> {escape(target)}")
        console.print(f"[yellow]Drift[/yellow]: {len(added)} new, {len(removed)} stale edges.")
        raise typer.Exit(code=1)

    out = save_discovered_edges(root, scan.edges)
    console.print(
        f"Scanned [bold]{len(scan.files)}[/bold] files, "
        f"wrote [bold]{len(scan.edges)}[/bold] edges to {escape(out.relative_to(root).as_posix())}"
    )
    if scan.skipped:
        console.print(f"[yellow]Skipped {len(scan.skipped)} unreadable files[/yellow]")
    if scan.truncated:
        console.print("[yellow]Stopped at scan.max_files; raise it in .aidev/config.yaml[/yellow]")


# ===================================================================
# impact
# ===================================================================

def _print_report(report: ImpactReport) -> None:
    summary = report.summary
    console.print(Panel(
        f"Files changed: [bold]{summary.files_changed}[/bold]\n"
        f"Components affected: [bold]{summary.components_affected}[/bold]\n"
        f"Files affected: [bold]{summary.files_affected}[/bold]\n"
        f"Mean confidence: [bold]{summary.confidence_mean * 100:.1f}%[/bold]",
        title="Impact Analysis",
        expand=False,
    ))

    if report.changed_files:
        console.print("\n[cyan]Changed files[/cyan]")
        for change in report.changed_files:
            icon = CHANGE_ICONS.get(change.change_type, " ")
            console.print(f"  {icon} {escape(change.path)}")

    if report.impact_edges:
        table = Table(title="\nAffected components", show_header=True)
        table.add_column("Component", style="bold")
        table.add_column("Type")
        table.add_column("Via")
        table.add_column("Distance", justify="right")
        table.add_column("Confidence", justify="right")
        for edge in report.impact_edges:
            table.add_row(
                escape(edge.target),
                edge.type,
                escape(edge.source),
                str(edge.distance),
                f"{edge.confidence * 100:.0f}%",
            )
        console.print(table)

    changed = {normalize_path(c.path) for c in report.changed_files}
    others = [f for f in report.affected_files if f not in changed]
    if others:
        console.print("\n[cyan]Impacted files[/cyan]")
        for path in others[:MAX_LISTED_FILES]:
            edge = report.edge_for_file(path)
            conf = f" [dim]({edge.confidence * 100:.0f}%)[/dim]" if edge else ""
            console.print(f"  {escape(path)}{conf}")
        if len(others) > MAX_LISTED_FILES:
            console.print(f"  [dim]... and {len(others) - MAX_LISTED_FILES} more[/dim]")
    console.print("")


def _print_evidence(evidence: ImpactEvidence) -> None:
    console.print(f"[bold]{escape(evidence.summary)}[/bold]")
    console.print(f"Score: {evidence.score * 100:.1f}%")
    for hop in evidence.hops:
        arrow = "->" if hop.direction == "forward" else "<-"
        console.print(
            f"  {escape(hop.source)} {arrow} {escape(hop.target)} "
            f"[dim]({hop.edge_type}, {hop.detection_method}, {hop.confidence:.2f})[/dim]"
        )


@app.command("impact")
def impact(
    path: Path = typer.Option(Path("."), "--path", "-p", help="Project root."),
    diff: Optional[str] = typer.Option(None, "--diff", help="Git ref or range (HEAD~1, main..feature)."),
    staged: bool = typer.Option(False, "--staged", help="Analyze staged changes."),
    files: Optional[List[str]] = typer.Option(None, "--file", "-f", help="Analyze these files (repeatable)."),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON."),
    min_confidence: int = typer.Option(
        0, "--min-confidence", min=0, max=100,
        help="Hide impacts below this confidence (percent).",
    ),
    explain: Optional[str] = typer.Option(None, "--explain", help="Explain why this file is affected."),
):
    """Analyze which components and files a change affects."""
    root = _project_root(path)
    try:
        model = load_project_model(root)
        changes = _collect_changes(root, diff, staged, files)
    except AidevError as exc:
        _fail(exc, as_json)

    if not changes:
        if as_json:
            typer.echo(canonicalize_output({"changedFiles": [], "message": "No changes detected."}))
        else:
            console.print("[yellow]No changes detected.[/yellow]")
        return

    analyzer = ImpactAnalyzer(model)

    if explain:
        evidence = analyzer.explain(explain, changes)
        if as_json:
            payload = evidence.to_dict() if evidence else {"target": normalize_path(explain), "path": None}
            typer.echo(canonicalize_output(payload))
        elif evidence is None:
            console.print(f"[yellow]No impact path from the changes to {escape(explain)}[/yellow]")
        else:
            _print_evidence(evidence)
        return

    report = analyzer.analyze(changes).filter_by_confidence(min_confidence / 100)
    if as_json:
        typer.echo(canonicalize_output(report.to_dict()))
    else:
        _print_report(report)


# ===================================================================
# prompt
# ===================================================================

def _resolve_provider(cli_value: Optional[str], model: ProjectModel) -> str:
    """CLI option, then project config, then user defaults, then built-in."""
    if cli_value:
        provider = cli_value
    elif "default" in model.config.providers.model_fields_set:
        provider = model.config.providers.default
    else:
        provider = load_prompt_config(config.USER_CONFIG_FILE).get("provider", config.DEFAULT_PROVIDER)
    provider = provider.lower()
    if provider not in config.SUPPORTED_PROVIDERS:
        raise ConfigError(
            f"Unknown provider '{provider}'. Choose from: {', '.join(config.SUPPORTED_PROVIDERS)}"
        )
    return provider


def _resolve_budget(cli_value: Optional[int], provider: str, model: ProjectModel) -> int:
    if cli_value is not None:
        return cli_value
    providers = model.config.providers
    if "token_budgets" in providers.model_fields_set and provider in providers.token_budgets:
        return providers.token_budgets[provider]
    user_budget = load_prompt_config(config.USER_CONFIG_FILE).get("budget")
    return int(user_budget) if user_budget is not None else config.DEFAULT_BUDGET


@app.command("prompt")
def prompt(
    path: Path = typer.Option(Path("."), "--path", "-p", help="Project root."),
    provider: Optional[str] = typer.Option(None, "--provider", help="Output format: claude, openai, generic."),
    budget: Optional[int] = typer.Option(None, "--budget", "-b", help="Total token budget."),
    task: Optional[str] = typer.Option(None, "--task", "-t", help="Task description placed first in the pack."),
    diff: Optional[str] = typer.Option(None, "--diff", help="Git ref or range (HEAD~1, main..feature)."),
    staged: bool = typer.Option(False, "--staged", help="Use staged changes."),
    files: Optional[List[str]] = typer.Option(None, "--file", "-f", help="Use these files (repeatable)."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the pack to this file."),
    architecture: bool = typer.Option(True, "--architecture/--no-architecture", help="Include architecture docs."),
    contracts: bool = typer.Option(True, "--contracts/--no-contracts", help="Include component contracts."),
):
    """Build a token-budgeted, secret-redacted context pack for the change."""
    root = _project_root(path)
    try:
        model = load_project_model(root)
        resolved_provider = _resolve_provider(provider, model)
        resolved_budget = _resolve_budget(budget, resolved_provider, model)
        changes = _collect_changes(root, diff, staged, files)

        if not changes and not task:
            console.print("[yellow]No changes detected.[/yellow]")
            return

        report = ImpactAnalyzer(model).analyze(changes)
        generator = PromptPackGenerator(
            root,
            provider=resolved_provider,
            budget=resolved_budget,
            task_description=task,
            include_architecture=architecture,
            include_contracts=contracts,
        )
        pack = generator.generate(report)
    except AidevError as exc:
        _fail(exc)

    formatted = create_adapter(resolved_provider).format(pack)
    manifest = pack.manifest

    if output is None:
        typer.echo(formatted.content)
        status = err_console
    else:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(formatted.content, encoding="utf-8")
        status = console
        status.print(f"[green]Wrote[/green] {escape(str(output))}")

    status.print(
        f"[dim]{manifest['tokens']['total']}/{manifest['tokens']['budget']} tokens, "
        f"{manifest['files']['included']} files, "
        f"{len(pack.allocation.dropped)} dropped, "
        f"hash {manifest['contentHash']}[/dim]"
    )


# ===================================================================
# state
# ===================================================================

def _budget_style(percent: int) -> str:
    if percent > 90:
        return "red"
    if percent > 70:
        return "yellow"
    return "green"


def _print_state_compact(state: InternalState, tokens: int) -> None:
    percent = round(tokens * 100 / state.budget.max_tokens)
    filled = min(30, round(30 * percent / 100))
    bar = "#" * filled + "-" * (30 - filled)
    style = _budget_style(percent)
    console.print(f"Budget: [{style}][{bar}][/{style}] {percent}%  [dim]{tokens} / {state.budget.max_tokens} tokens[/dim]")

    cc = state.code_context
    if cc is None:
        console.print("[dim]Code context: (not loaded)[/dim]")
    else:
        console.print(
            f"Code context: {cc.summary.files_changed} changed, "
            f"{cc.summary.components_affected} components, {cc.summary.files_affected} files, "
            f"{cc.summary.confidence_mean * 100:.0f}% confidence"
        )

    tc = state.task_context
    active = sum(1 for o in tc.objectives if o.status == "active")
    console.print(
        f"Task context: {active} active objectives, {len(tc.known_facts)} facts, "
        f"{len(tc.open_questions)} questions, {len(tc.decisions)} decisions"
    )
    if tc.next_action:
        console.print(f"[yellow]Next: {escape(tc.next_action)}[/yellow]")


def _print_state(state: InternalState, tokens: int) -> None:
    percent = round(tokens * 100 / state.budget.max_tokens)
    style = _budget_style(percent)
    console.print(Panel(
        f"Budget: [{style}]{percent}%[/{style}] ({tokens} / {state.budget.max_tokens} tokens)\n"
        f"Session: {state.session_id[:8]} | Updated: {state.updated_at:%Y-%m-%d %H:%M}",
        title="Internal State",
        expand=False,
    ))

    cc = state.code_context
    console.print("\n[bold cyan]Code context[/bold cyan]")
    if cc is None:
        console.print("[dim](none; run aidev state --refresh)[/dim]")
    else:
        console.print(f"[dim]Refreshed {cc.as_of:%Y-%m-%d %H:%M} | ref {escape(cc.git_ref or 'unknown')}[/dim]")
        for change in cc.changed_files[:MAX_LISTED_FILES]:
            console.print(f"  {CHANGE_ICONS.get(change.change_type, ' ')} {escape(change.path)}")
        if cc.affected_components:
            console.print(f"  Components: {escape(', '.join(cc.affected_components))}")
        console.print(
            f"  {cc.summary.files_affected} files affected, "
            f"mean confidence {cc.summary.confidence_mean * 100:.1f}%"
        )

    tc = state.task_context
    console.print("\n[bold magenta]Task context[/bold magenta]")
    for objective in tc.objectives:
        if objective.status == "active":
            console.print(f"  [bold]objective[/bold] {escape(objective.goal)} [dim]({objective.id[:8]})[/dim]")
    resolved = sum(1 for o in tc.objectives if o.status == "resolved")
    if resolved:
        console.print(f"  [dim]({resolved} resolved objectives)[/dim]")
    for fact in tc.known_facts[-10:]:
        console.print(f"  [green]fact[/green] {escape(fact.fact)} [dim]({escape(fact.source)})[/dim]")
    if len(tc.known_facts) > 10:
        console.print(f"  [dim]... and {len(tc.known_facts) - 10} earlier facts[/dim]")
    for question in tc.open_questions:
        marker = "[red]![/red]" if question.priority == "high" else "?"
        console.print(f"  {marker} {escape(question.question)} [dim]({question.id[:8]})[/dim]")
    for decision in tc.decisions[-5:]:
        console.print(f"  [cyan]decided[/cyan] {escape(decision.what)} [dim]because {escape(decision.why)}[/dim]")
    for constraint in tc.constraints:
        console.print(f"  [yellow]{constraint.type}[/yellow] {escape(constraint.constraint)}")
    if tc.next_action:
        console.print(f"\n[bold yellow]Next action:[/bold yellow] {escape(tc.next_action)}")
    console.print("")


@app.command("state")
def state(
    path: Path = typer.Option(Path("."), "--path", "-p", help="Project root."),
    as_json: bool = typer.Option(False, "--json", help="Print the state as JSON."),
    compact: bool = typer.Option(False, "--compact", help="Print a short summary only."),
    refresh: bool = typer.Option(False, "--refresh", help="Rebuild the code context from current changes."),
    diff: Optional[str] = typer.Option(None, "--diff", help="Git ref or range used by --refresh."),
    staged: bool = typer.Option(False, "--staged", help="Use staged changes for --refresh."),
    files: Optional[List[str]] = typer.Option(None, "--file", "-f", help="Use these files for --refresh."),
    objective: Optional[str] = typer.Option(None, "--objective", help="Add an objective."),
    resolve_objective: Optional[str] = typer.Option(None, "--resolve-objective", help="Resolve an objective by id or id prefix."),
    fact: Optional[str] = typer.Option(None, "--fact", help="Record a known fact."),
    fact_source: str = typer.Option("user", "--fact-source", help="Where the fact comes from."),
    question: Optional[str] = typer.Option(None, "--question", help="Add an open question."),
    question_priority: str = typer.Option("medium", "--question-priority", help="high, medium or low."),
    answer: Optional[str] = typer.Option(None, "--answer", help="Remove an answered question by id or id prefix."),
    decide: Optional[str] = typer.Option(None, "--decide", help="Record a decision (needs --why)."),
    why: Optional[str] = typer.Option(None, "--why", help="Reasoning for --decide."),
    constraint: Optional[str] = typer.Option(None, "--constraint", help="Add a constraint."),
    constraint_type: str = typer.Option("soft", "--constraint-type", help="hard, soft or preference."),
    next_action: Optional[str] = typer.Option(None, "--next", help="Set the next action (empty string clears it)."),
    prune: bool = typer.Option(False, "--prune", help="Prune the reasoning layer to fit the budget."),
    budget: Optional[int] = typer.Option(None, "--budget", min=1, help="Token budget for the state."),
    reset: bool = typer.Option(False, "--reset", help="Start a fresh state."),
):
    """Keep objectives, facts and decisions next to the current impact facts."""
    root = _project_root(path)
    if decide and not why:
        err_console.print("[red]--why is required with --decide[/red]")
        raise typer.Exit(code=1)

    manager = StateManager(root, max_tokens=budget)
    try:
        if reset:
            manager.reset()
            console.print("[green]State reset.[/green]")
            return
        if budget is not None:
            manager.save()

        if refresh:
            model = load_project_model(root)
            changes = _collect_changes(root, diff, staged, files)
            if changes:
                report = ImpactAnalyzer(model).analyze(changes)
                ref = "files" if files else "staged" if staged else diff or "working"
                manager.refresh_code_context(report, ref)
                _status("Code context refreshed.", as_json)
            else:
                manager.clear_code_context()
                _status("No changes detected, code context cleared.", as_json)

        if objective:
            added = manager.add_objective(objective)
            _status(f"Objective added: {added.id[:8]}", as_json)
        if resolve_objective:
            if manager.resolve_objective(resolve_objective) is None:
                raise ConfigError(f"No objective matches id '{resolve_objective}'")
            _status("Objective resolved.", as_json)
        if fact:
            added = manager.add_known_fact(fact, fact_source)
            _status(f"Fact recorded: {added.id[:8]}", as_json)
        if question:
            added = manager.add_open_question(question, question_priority)
            _status(f"Question added: {added.id[:8]}", as_json)
        if answer:
            if not manager.remove_question(answer):
                raise ConfigError(f"No open question matches id '{answer}'")
            _status("Question removed.", as_json)
        if decide:
            added = manager.add_decision(decide, why)
            _status(f"Decision recorded: {added.id[:8]}", as_json)
        if constraint:
            added = manager.add_constraint(constraint, constraint_type)
            _status(f"Constraint added: {added.id[:8]}", as_json)
        if next_action is not None:
            manager.set_next_action(next_action)
            _status("Next action updated.", as_json)
        if prune:
            result = manager.prune()
            _status(
                f"Pruned {result.pruned_items} items ({result.tokens_before} -> {result.tokens_after} tokens)",
                as_json,
            )
    except AidevError as exc:
        _fail(exc, as_json)

    current = manager.load()
    if as_json:
        typer.echo(canonicalize_output(current.model_dump(mode="json")))
    elif compact:
        _print_state_compact(current, manager.estimate_tokens())
    else:
        _print_state(current, manager.estimate_tokens())


def _status(message: str, as_json: bool) -> None:
    """Progress line; goes to stderr when stdout carries JSON."""
    (err_console if as_json else console).print(f"[green]{escape(message)}[/green]")


# ===================================================================
# user defaults
# ===================================================================

@app.command("set-defaults")
def set_defaults(
    provider: Optional[str] = typer.Option(None, "--provider", help="Default output provider."),
    budget: Optional[int] = typer.Option(None, "--budget", min=1, help="Default token budget."),
    reset: bool = typer.Option(False, "--reset", help="Remove saved defaults."),
):
    """Save default provider/budget in the user config."""
    if reset:
        if not clear_prompt_config(config.USER_CONFIG_FILE):
            console.print("[red]Failed to update config.[/red]")
            raise typer.Exit(code=1)
        console.print("Defaults reset.")
        return

    if provider is None and budget is None:
        raise typer.BadParameter("Pass --provider and/or --budget (or --reset).")
    if provider is not None:
        provider = provider.lower()
        if provider not in config.SUPPORTED_PROVIDERS:
            raise typer.BadParameter(
                f"Unknown provider '{provider}'. Choose from: {', '.join(config.SUPPORTED_PROVIDERS)}"
            )

    config.ensure_base_dirs()
    if not save_prompt_config(config.USER_CONFIG_FILE, provider=provider, budget=budget):
        console.print("[red]Failed to update config.[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]Saved defaults to[/green] {escape(str(config.USER_CONFIG_FILE))}")


@app.command("show-defaults")
def show_defaults():
    """Show the effective user-level defaults."""
    saved = load_prompt_config(config.USER_CONFIG_FILE)
    table = Table(show_header=True)
    table.add_column("Setting")
    table.add_column("Value", style="bold")
    table.add_column("Source", style="dim")
    table.add_row(
        "provider",
        str(saved.get("provider", config.DEFAULT_PROVIDER)),
        "user config" if "provider" in saved else "built-in",
    )
    table.add_row(
        "budget",
        str(saved.get("budget", config.DEFAULT_BUDGET)),
        "user config" if "budget" in saved else "built-in",
    )
    console.print(table)
    console.print(f"[dim]{escape(str(config.USER_CONFIG_FILE))}[/dim]")


if __name__ == "__main__":
    app()
