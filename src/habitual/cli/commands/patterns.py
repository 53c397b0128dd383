"""Pattern inspection and maintenance commands.

Commands:
- list: View stored patterns with filtering
- show: One pattern with its evidence
- stats: Counts by status and category
- retire / boost: Manual curation
- enforce-dormancy: Run the dormancy sweep
- context: Print the session-start context block
- mirror: Write a pattern into the knowledge repository
- extraction-log: Recent extraction runs
"""

from __future__ import annotations

import typer
from rich.markup import escape
from rich.panel import Panel

from habitual.core.errors import NotFoundError
from habitual.patterns.context import ContextInjector
from habitual.patterns.models import PatternCategory, PatternStatus

from ..helpers import cli_errors, get_state, open_store, open_writer
from ..output import (
    StatusColors,
    console,
    create_evidence_table,
    create_extraction_log_table,
    create_patterns_table,
    create_simple_table,
    format_timestamp,
    output_json,
)


def list_patterns(
    status: PatternStatus | None = typer.Option(
        None,
        "--status",
        "-s",
        help="Only show patterns with this status",
    ),
    category: PatternCategory | None = typer.Option(
        None,
        "--category",
        "-c",
        help="Only show patterns in this category",
    ),
) -> None:
    """List stored patterns, most recently reinforced first.

    Examples:
        habitual list
        habitual list --status active
        habitual --json list --category verification
    """
    with cli_errors():
        patterns = open_store().list_patterns(status=status, category=category)

    if get_state().json_output:
        output_json([p.to_dict() for p in patterns])
        return

    if not patterns:
        console.print("[dim]No patterns found.[/dim]")
        return

    table = create_patterns_table()
    for p in patterns:
        table.add_row(
            p.id,
            p.category.value,
            StatusColors.status(p.status),
            StatusColors.confidence(p.confidence),
            f"{p.weight:.2f}",
            format_timestamp(p.last_reinforced),
        )
    console.print(table)
    console.print(f"\n[dim]{len(patterns)} pattern(s)[/dim]")


def show(
    pattern_id: str = typer.Argument(..., help="Pattern ID"),
) -> None:
    """Show one pattern with its evidence."""
    with cli_errors():
        store = open_store()
        record = store.read(pattern_id)
        if record is None:
            raise NotFoundError(f"no pattern with id {pattern_id!r}", pattern_id=pattern_id)
        evidence = store.get_evidence(record.id)

    if get_state().json_output:
        output_json({**record.to_dict(), "evidence": [e.to_dict() for e in evidence]})
        return

    console.print(Panel(
        f"[bold]{escape(record.name)}[/bold]\n"
        f"[dim]{record.category.value} / {record.id}[/dim]",
        title="Pattern",
        border_style="cyan",
    ))
    if record.description:
        console.print(record.description, markup=False)

    table = create_simple_table()
    table.add_column("Field", style="dim", width=18)
    table.add_column("Value")
    table.add_row("Status", StatusColors.status(record.status))
    table.add_row("Confidence", StatusColors.confidence(record.confidence))
    table.add_row("Weight", f"{record.weight:.2f}")
    table.add_row("Sessions", str(record.session_count))
    table.add_row("Projects", str(record.project_count))
    table.add_row("First seen", format_timestamp(record.first_seen))
    table.add_row("Last reinforced", format_timestamp(record.last_reinforced))
    console.print(table)

    console.print("\n[bold]Instruction[/bold]")
    console.print(f"  {record.instruction}", markup=False)

    if evidence:
        ev_table = create_evidence_table()
        for e in evidence:
            snippet = e.snippet if len(e.snippet) <= 60 else e.snippet[:57] + "..."
            ev_table.add_row(
                format_timestamp(e.recorded_at),
                escape(e.session_id),
                escape(e.project),
                escape(snippet),
            )
        console.print()
        console.print(ev_table)
    else:
        console.print("\n[dim]No evidence recorded.[/dim]")


def stats() -> None:
    """Show pattern counts by status and category."""
    with cli_errors():
        result = open_store().stats()

    if get_state().json_output:
        output_json(result.to_dict())
        return

    console.print("[bold]Pattern Store[/bold]")
    table = create_simple_table()
    table.add_column("Metric", style="dim", width=18)
    table.add_column("Value", justify="right")
    table.add_row("Total patterns", str(result.total))
    table.add_row("Active", f"[green]{result.active}[/green]")
    table.add_row("Dormant", f"[yellow]{result.dormant}[/yellow]")
    table.add_row("Retired", f"[dim]{result.retired}[/dim]")
    table.add_row("Evidence", str(result.evidence_count))
    table.add_row("Extraction runs", str(result.extraction_runs))
    console.print(table)

    console.print("\n[bold]By Category[/bold]")
    cat_table = create_simple_table()
    cat_table.add_column("Category", style="cyan", width=18)
    cat_table.add_column("Count", justify="right")
    for name, count in sorted(result.by_category.items()):
        cat_table.add_row(name, str(count))
    console.print(cat_table)


def retire(
    pattern_id: str = typer.Argument(..., help="Pattern ID"),
) -> None:
    """Retire a pattern so it is never injected again."""
    with cli_errors():
        if not open_store().retire(pattern_id):
            raise NotFoundError(f"no pattern with id {pattern_id!r}", pattern_id=pattern_id)

    if get_state().json_output:
        output_json({"success": True, "pattern_id": pattern_id, "status": "retired"})
        return
    console.print(f"[green]Retired[/green] {escape(pattern_id)}")


def boost(
    pattern_id: str = typer.Argument(..., help="Pattern ID"),
    delta: float = typer.Argument(..., help="Amount to add to the weight (>= 0)"),
) -> None:
    """Raise a pattern's weight (capped at 2.0)."""
    with cli_errors():
        new_weight = open_store().boost(pattern_id, delta)
        if new_weight is None:
            raise NotFoundError(f"no pattern with id {pattern_id!r}", pattern_id=pattern_id)

    if get_state().json_output:
        output_json({"success": True, "pattern_id": pattern_id, "weight": new_weight})
        return
    console.print(
        f"Weight of [cyan]{escape(pattern_id)}[/cyan] is now [bold]{new_weight:.2f}[/bold]"
    )


def enforce_dormancy(
    days: float | None = typer.Option(
        None,
        "--days",
        "-d",
        help="Age threshold in days (default from config)",
    ),
) -> None:
    """Mark active patterns not reinforced recently as dormant."""
    with cli_errors():
        changed = open_store().enforce_dormancy(days)

    if get_state().json_output:
        output_json({"dormant": changed, "count": len(changed)})
        return

    if not changed:
        console.print("[dim]No patterns became dormant.[/dim]")
        return
    console.print(f"[yellow]{len(changed)} pattern(s) became dormant:[/yellow]")
    for pattern_id in changed:
        console.print(f"  - {pattern_id}")


def context() -> None:
    """Print the context block injected at session start."""
    state = get_state()
    with cli_errors():
        text = ContextInjector(open_store(), state.config.context).render()

    if state.json_output:
        output_json({"context": text})
        return
    # Raw text: the block is consumed by other tools, so no Rich markup
    typer.echo(text, nl=False)


def mirror(
    pattern_id: str = typer.Argument(..., help="Pattern ID"),
) -> None:
    """Write a stored pattern into the knowledge repository."""
    with cli_errors():
        record = open_store().read(pattern_id)
        if record is None:
            raise NotFoundError(f"no pattern with id {pattern_id!r}", pattern_id=pattern_id)
        path = open_writer().mirror_pattern(record)

    if get_state().json_output:
        output_json({"success": True, "pattern_id": record.id, "path": str(path)})
        return
    console.print(f"[green]Wrote[/green] {path}", highlight=False)


def extraction_log(
    limit: int = typer.Option(
        20,
        "--limit",
        "-n",
        min=1,
        help="Maximum number of runs to display",
    ),
) -> None:
    """Show recent extraction runs, newest first."""
    with cli_errors():
        entries = open_store().get_extraction_log(limit)

    if get_state().json_output:
        output_json([e.to_dict() for e in entries])
        return

    if not entries:
        console.print("[dim]No extraction runs recorded.[/dim]")
        return
    table = create_extraction_log_table()
    for e in entries:
        table.add_row(
            format_timestamp(e.extracted_at),
            str(e.session_count),
            str(e.patterns_created),
            str(e.patterns_updated),
            str(e.patterns_retired),
            escape(e.model),
        )
    console.print(table)
