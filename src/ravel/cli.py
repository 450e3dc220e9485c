"""CLI interface for ravel."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ravel import __version__
from ravel.config import Config
from ravel.core import scheduler
from ravel.core.errors import MergeConflictError, RavelError
from ravel.core.models import (
    IntegrationOutcome,
    Phase,
    PhaseStatus,
    ReviewVerdict,
    TransitionRequest,
)
from ravel.core.orchestrator import Orchestrator

app = typer.Typer(
    name="ravel",
    help="Schedule phased implementation plans across parallel workers.",
    no_args_is_help=True,
)
console = Console()

PlanArg = Annotated[
    Path,
    typer.Argument(
        help="Path to the plan document",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
]
FormatOpt = Annotated[str, typer.Option("--format", "-f", help="Output format: text, json")]

STATUS_COLORS = {
    PhaseStatus.PENDING: "dim",
    PhaseStatus.DISPATCHED: "blue",
    PhaseStatus.DEVELOPING: "blue",
    PhaseStatus.FOR_REVIEW: "cyan",
    PhaseStatus.MERGED: "green",
    PhaseStatus.PR_APPROVED: "green",
    PhaseStatus.REJECTED: "yellow",
    PhaseStatus.FIXING: "yellow",
    PhaseStatus.ESCALATED: "bold red",
    PhaseStatus.DONE: "bold green",
}


def _parse_status(value: str) -> PhaseStatus:
    """Convert a status string to PhaseStatus, rejecting anything unknown."""
    normalised = value.strip().lower().replace("-", "_").replace(" ", "_")
    aliases = {
        "approved": PhaseStatus.PR_APPROVED,
        "review": PhaseStatus.FOR_REVIEW,
        "in_review": PhaseStatus.FOR_REVIEW,
        "in_progress": PhaseStatus.DEVELOPING,
    }
    try:
        return aliases.get(normalised) or PhaseStatus(normalised)
    except ValueError:
        valid = ", ".join(s.value for s in PhaseStatus)
        console.print(f"[red]Unknown status '{escape(value)}'. Valid: {valid}[/red]")
        raise typer.Exit(1) from None


def _parse_outcome(value: str) -> IntegrationOutcome:
    normalised = value.strip().lower().replace("-", "_")
    try:
        return IntegrationOutcome(normalised)
    except ValueError:
        valid = ", ".join(o.value for o in IntegrationOutcome)
        console.print(f"[red]Unknown outcome '{escape(value)}'. Valid: {valid}[/red]")
        raise typer.Exit(1) from None


@contextmanager
def _handle_errors() -> Iterator[None]:
    """Turn domain errors into a message and a non-zero exit."""
    try:
        yield
    except MergeConflictError as e:
        console.print(f"[bold red]{escape(str(e))}[/bold red]", soft_wrap=True)
        console.print("[dim]Resolve the merge by hand, then record it with --outcome success.[/dim]")
        raise typer.Exit(2) from e
    except RavelError as e:
        console.print(f"[red]{escape(str(e))}[/red]", soft_wrap=True)
        raise typer.Exit(1) from e


def _orchestrator(plan_path: Path) -> Orchestrator:
    return Orchestrator(plan_path)


def _format_deps(phase: Phase) -> str:
    explicit = list(phase.explicit_dependencies)
    implicit = [f"{d}*" for d in phase.implicit_dependencies if d not in explicit]
    return ", ".join(explicit + implicit) or "-"


def _phase_table(phases: list[Phase]) -> Table:
    table = Table(show_header=True, header_style="bold")
    table.add_column("Phase", style="cyan")
    table.add_column("Name")
    table.add_column("Level", justify="right")
    table.add_column("Group")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Depends On")
    table.add_column("Reviews")

    for phase in phases:
        color = STATUS_COLORS.get(phase.status, "white")
        status = f"[{color}]{phase.status.value}[/{color}]"
        if phase.removed:
            status += " [dim](removed)[/dim]"
        name = phase.name[:32] + "..." if len(phase.name) > 35 else phase.name
        if phase.synthetic:
            name = f"[magenta]{escape(name)}[/magenta]"
        else:
            name = escape(name)
        table.add_row(
            phase.id,
            name,
            str(phase.level),
            phase.group or "solo",
            status,
            str(phase.attempts),
            _format_deps(phase),
            ", ".join(phase.review_refs) or "-",
        )
    return table


def _print_phase(phase: Phase) -> None:
    color = STATUS_COLORS.get(phase.status, "white")
    console.print(f"[green]Phase {phase.id}[/green] -> [{color}]{phase.status.value}[/{color}]")
    console.print(f"  Attempts: {phase.attempts}")
    if phase.review_refs:
        console.print(f"  Reviews: {', '.join(phase.review_refs)}")


@app.callback()
def main(
    verbose: Annotated[
        int,
        typer.Option("--verbose", "-v", count=True, help="Log bookkeeping (-v info, -vv debug)"),
    ] = 0,
) -> None:
    """Configure logging for every command."""
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


@app.command()
def version() -> None:
    """Show the ravel version."""
    console.print(f"ravel {__version__}")


@app.command()
def parse(
    plan_path: PlanArg,
    base: Annotated[
        str | None,
        typer.Option("--base", "-b", help="Base point (branch or commit); fixed once recorded"),
    ] = None,
) -> None:
    """Parse the plan and create or reconcile its status record."""
    with _handle_errors():
        state = _orchestrator(plan_path).parse(base=base)

    console.print(f"\n[bold]{escape(state.plan_name)}[/bold]  base: [cyan]{escape(state.base_point)}[/cyan]")
    phases = sorted(state.phases.values(), key=scheduler.schedule_key)
    console.print(_phase_table(phases))
    console.print("[dim]* implicit dependency (shared file targets)[/dim]\n")


@app.command("next")
def next_phases(plan_path: PlanArg, output_format: FormatOpt = "text") -> None:
    """List phases that can be dispatched now."""
    with _handle_errors():
        orchestrator = _orchestrator(plan_path)
        state = orchestrator.status()
    ready = scheduler.ready(state)

    if output_format == "json":
        print(json.dumps([p.model_dump(mode="json", exclude={"history"}) for p in ready], indent=2))
        return

    if not ready:
        blocked = scheduler.blocked(state)
        console.print("[yellow]No phases ready[/yellow]")
        for phase in blocked:
            ancestors = ", ".join(scheduler.escalated_ancestors(state, phase))
            console.print(f"  [red]Phase {phase.id} blocked by escalated {ancestors}[/red]")
        return

    for phase in ready:
        where = f"group {phase.group}" if phase.group else "solo"
        console.print(f"[cyan]{phase.id}[/cyan] {escape(phase.name)} ({where}) -> {phase.branch_name}")


@app.command("check-group")
def check_group(
    plan_path: PlanArg,
    group: Annotated[str, typer.Argument(help="Group label, e.g. A")],
    output_format: FormatOpt = "text",
) -> None:
    """Check whether a group can be integrated. Exits 1 when it cannot."""
    with _handle_errors():
        result = _orchestrator(plan_path).check_group(group)

    if output_format == "json":
        print(result.model_dump_json(indent=2))
    elif result.ready:
        console.print(f"[green]Group {group} ready to integrate[/green]")
    else:
        console.print(f"[yellow]Group {group} waiting on: {', '.join(result.waiting_on) or '-'}[/yellow]")
        for phase_id, status in result.statuses.items():
            console.print(f"  {phase_id}: {status.value}")

    if not result.ready:
        raise typer.Exit(1)


@app.command()
def update(
    plan_path: PlanArg,
    phase: Annotated[str, typer.Option("--phase", "-p", help="Phase ID")],
    status: Annotated[str, typer.Option("--status", "-s", help="Target status")],
    ref: Annotated[
        list[str] | None,
        typer.Option("--ref", help="Review artifact reference (repeatable)"),
    ] = None,
    attempts: Annotated[
        int | None,
        typer.Option("--attempts", help="Fail unless the phase has exactly this many attempts"),
    ] = None,
    reason: Annotated[str | None, typer.Option("--reason", "-r", help="Why the status changed")] = None,
    manual: Annotated[
        bool,
        typer.Option("--manual", help="Human override: abandon, or complete escalated/approved phases"),
    ] = False,
) -> None:
    """Request a status transition for a phase."""
    target = _parse_status(status)
    request = TransitionRequest(
        phase_id=phase,
        target=target,
        review_refs=ref or [],
        expected_attempts=attempts,
        reason=reason,
        manual=manual,
    )
    with _handle_errors():
        result = _orchestrator(plan_path).update(request)
    _print_phase(result)


@app.command()
def review(
    plan_path: PlanArg,
    phase: Annotated[str, typer.Option("--phase", "-p", help="Phase ID")],
    approve: Annotated[bool, typer.Option("--approve/--reject", help="Review verdict")],
    ref: Annotated[
        list[str] | None,
        typer.Option("--ref", help="Review artifact reference (repeatable)"),
    ] = None,
    reason: Annotated[str | None, typer.Option("--reason", "-r", help="Reviewer summary")] = None,
) -> None:
    """Record a review verdict for a phase."""
    verdict = ReviewVerdict(phase_id=phase, approved=approve, review_refs=ref or [], reason=reason)
    with _handle_errors():
        result = _orchestrator(plan_path).review(verdict)
    _print_phase(result)


@app.command("add-phase")
def add_phase(
    plan_path: PlanArg,
    name: Annotated[str | None, typer.Option("--name", "-n", help="Phase name")] = None,
    depends_on: Annotated[
        list[str] | None,
        typer.Option("--depends-on", "-d", help="Dependency phase ID (repeatable)"),
    ] = None,
    phase_id: Annotated[str | None, typer.Option("--id", help="Explicit id (must use the synthetic prefix)")] = None,
    group: Annotated[str | None, typer.Option("--group", "-g", help="Synthetic group label")] = None,
    fix_group: Annotated[
        str | None,
        typer.Option("--fix-group", help="Inject the integration fix phase for this group"),
    ] = None,
    description: Annotated[str | None, typer.Option("--description", help="What the phase must do")] = None,
) -> None:
    """Add a synthetic phase to a running plan."""
    with _handle_errors():
        phase = _orchestrator(plan_path).add_phase(
            name=name,
            depends_on=depends_on or [],
            phase_id=phase_id,
            group=group,
            description=description,
            fix_group=fix_group,
        )
    console.print(f"[magenta]Added {phase.id}[/magenta] {escape(phase.name)}")
    console.print(f"  Depends on: {', '.join(phase.dependencies) or '-'}")
    console.print(f"  Branch: {phase.branch_name}")


@app.command()
def integrate(
    plan_path: PlanArg,
    group: Annotated[str, typer.Option("--group", "-g", help="Group label")],
    outcome: Annotated[
        str,
        typer.Option("--outcome", "-o", help="success, build_failed, or conflict"),
    ],
    detail: Annotated[str | None, typer.Option("--detail", help="Failure output or notes")] = None,
) -> None:
    """Record the result of merging a ready group."""
    result = _parse_outcome(outcome)
    with _handle_errors():
        record = _orchestrator(plan_path).integrate(group, result, detail)

    if record.fix_phase:
        console.print(f"[yellow]Group {group} build failed; injected {record.fix_phase}[/yellow]")
    else:
        console.print(f"[green]Group {group} integrated: {', '.join(record.phase_ids)} done[/green]")


@app.command()
def timeout(
    plan_path: PlanArg,
    phase: Annotated[str, typer.Option("--phase", "-p", help="Phase ID")],
) -> None:
    """Report an unresponsive worker: redispatch once, then escalate."""
    with _handle_errors():
        result = _orchestrator(plan_path).report_timeout(phase)
    _print_phase(result)


@app.command()
def resolve(
    plan_path: PlanArg,
    phase: Annotated[str, typer.Option("--phase", "-p", help="Escalated phase ID")],
    remove: Annotated[bool, typer.Option("--remove", help="Drop the phase instead of completing it")] = False,
) -> None:
    """Resolve an escalated phase after human intervention."""
    with _handle_errors():
        result = _orchestrator(plan_path).resolve(phase, remove=remove)
    if result.removed:
        console.print(f"[yellow]Phase {result.id} removed[/yellow]")
    else:
        _print_phase(result)


@app.command()
def events(plan_path: PlanArg) -> None:
    """Print actionable phase-ready and group-ready events as JSON."""
    with _handle_errors():
        pending = _orchestrator(plan_path).events()
    payload = [{"event": type(e).__name__, **e.model_dump(mode="json")} for e in pending]
    print(json.dumps(payload, indent=2))


@app.command()
def status(plan_path: PlanArg, output_format: FormatOpt = "text") -> None:
    """Show every phase's status."""
    with _handle_errors():
        state = _orchestrator(plan_path).status()

    if output_format == "json":
        print(state.model_dump_json(indent=2))
        return

    done = sum(1 for p in state.phases.values() if p.status == PhaseStatus.DONE)
    console.print(f"\n[bold]{escape(state.plan_name)}[/bold]")
    console.print(f"  Base: {escape(state.base_point)}")
    console.print(f"  Progress: {done}/{len(state.phases)} done")
    console.print(f"  Revision: {state.revision}  Updated: {state.updated_at.strftime('%Y-%m-%d %H:%M:%S')}")

    phases = sorted(state.phases.values(), key=scheduler.schedule_key)
    console.print(_phase_table(phases))

    waiting = scheduler.awaiting_integration(state)
    if waiting:
        console.print(f"[green]Ready to integrate: {', '.join(waiting)}[/green]")
    for phase in scheduler.blocked(state):
        ancestors = ", ".join(scheduler.escalated_ancestors(state, phase))
        console.print(f"[red]Phase {phase.id} blocked by escalated {ancestors}[/red]")
    console.print()


@app.command()
def audit(
    plan_path: PlanArg,
    strict: Annotated[
        bool,
        typer.Option("--strict", help="Fail on warnings too"),
    ] = False,
    output_format: FormatOpt = "text",
) -> None:
    """Validate plan structure before parsing it into a status record."""
    from ravel.core.audit import AuditSeverity
    from ravel.core.auditor import PlanAuditor

    result = PlanAuditor(Config.load().synthetic_prefix).audit(plan_path)

    if output_format == "json":
        # Use print directly to avoid Rich markup processing
        print(result.model_dump_json(indent=2))
        if not result.passed or (strict and result.summary.warnings > 0):
            raise typer.Exit(1)
        return

    console.print(f"\n[bold]Auditing:[/bold] {plan_path.name}\n")
    console.print(f"[bold]{escape(result.summary.plan)}[/bold]")
    console.print(f"  Phases found: {result.summary.phases_found}")
    console.print(f"  Levels: {result.summary.levels}")
    console.print(f"  Parallel groups: {', '.join(result.summary.groups) or '-'}")
    console.print(f"  Implicit edges: {result.summary.implicit_edges}")
    console.print()

    headings = {
        AuditSeverity.ERROR: "[bold red]Errors:[/bold red]",
        AuditSeverity.WARNING: "[bold yellow]Warnings:[/bold yellow]",
        AuditSeverity.INFO: "[bold cyan]Info:[/bold cyan]",
    }
    for severity, heading in headings.items():
        issues = [i for i in result.issues if i.severity == severity]
        if not issues:
            continue
        console.print(heading)
        for issue in issues:
            console.print(f"  [{issue.code}] {issue.message}", markup=False)
        console.print()

    console.print(f"[bold]Summary:[/bold] {result.summary.errors} error(s), {result.summary.warnings} warning(s)")
    if not result.passed:
        console.print("[bold red]Result: FAIL[/bold red]\n")
        raise typer.Exit(1)
    console.print("[bold green]Result: PASS[/bold green]\n")

    if strict and result.summary.warnings > 0:
        console.print("[yellow]Strict mode: Failing due to warnings[/yellow]\n")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
