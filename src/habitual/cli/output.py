"""Rich output formatting for the Habitual CLI.

- Shared console instance
- Color schemes for status and confidence values
- Table builders with consistent styling
- JSON and error output helpers
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from rich.console import Console
from rich.table import Table

from habitual.patterns.models import ConfidenceTier, PatternStatus

# =============================================================================
# Shared console instance
# =============================================================================

# NOTE: Command modules should use this console. JSON mode is handled by the
# commands themselves, not by this Console instance.
console = Console()


# =============================================================================
# Color schemes
# =============================================================================


class StatusColors:
    """Color mappings for status and confidence values."""

    PATTERN_STATUS: dict[PatternStatus, str] = {
        PatternStatus.ACTIVE: "green",
        PatternStatus.DORMANT: "yellow",
        PatternStatus.RETIRED: "dim",
    }

    CONFIDENCE: dict[ConfidenceTier, str] = {
        ConfidenceTier.HIGH: "green",
        ConfidenceTier.MEDIUM: "yellow",
        ConfidenceTier.LOW: "red",
    }

    @classmethod
    def status(cls, status: PatternStatus) -> str:
        color = cls.PATTERN_STATUS.get(status, "white")
        return f"[{color}]{status.value}[/{color}]"

    @classmethod
    def confidence(cls, tier: ConfidenceTier) -> str:
        color = cls.CONFIDENCE.get(tier, "white")
        return f"[{color}]{tier.value}[/{color}]"


# =============================================================================
# Formatters
# =============================================================================


def format_timestamp(dt: datetime | None) -> str:
    """Format a stored timestamp for display (UTC, minute precision)."""
    if dt is None:
        return "-"
    return dt.strftime("%Y-%m-%d %H:%M UTC")


# =============================================================================
# Table builders
# =============================================================================


def create_patterns_table(title: str = "User Patterns") -> Table:
    """Create a styled table for pattern listings."""
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Category", width=13)
    table.add_column("Status", width=8)
    table.add_column("Confidence", width=10)
    table.add_column("Weight", justify="right", width=6)
    table.add_column("Last reinforced", no_wrap=True)
    return table


def create_evidence_table(title: str = "Evidence") -> Table:
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("Recorded", no_wrap=True)
    table.add_column("Session", style="cyan")
    table.add_column("Project")
    table.add_column("Snippet")
    return table


def create_extraction_log_table(title: str = "Extraction Runs") -> Table:
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("Extracted", no_wrap=True)
    table.add_column("Sessions", justify="right")
    table.add_column("Created", justify="right")
    table.add_column("Updated", justify="right")
    table.add_column("Retired", justify="right")
    table.add_column("Model")
    return table


def create_simple_table(show_header: bool = False) -> Table:
    """Create a simple table without box styling, for key-value displays."""
    return Table(show_header=show_header, box=None)


# =============================================================================
# JSON and error output
# =============================================================================


def output_json(data: Any) -> None:
    """Print machine-readable JSON, with no markup, highlighting or wrapping."""
    console.print(
        json.dumps(data, indent=2, default=str),
        markup=False,
        highlight=False,
        soft_wrap=True,
    )


def output_error(
    message: str,
    *,
    error_type: str | None = None,
    hints: list[str] | None = None,
    json_output: bool = False,
) -> None:
    """Output a formatted error with optional hints and JSON alternative.

    Args:
        message: The error message to display.
        error_type: Exception class name, included in JSON output.
        hints: Optional list of hint strings for the user.
        json_output: If True, output as JSON instead of Rich markup.
    """
    if json_output:
        result: dict[str, Any] = {"success": False, "message": message}
        if error_type:
            result["error_type"] = error_type
        if hints:
            result["hints"] = hints
        output_json(result)
        return

    console.print("[red]Error:[/red] ", end="")
    console.print(message, markup=False, highlight=False)
    if hints:
        console.print()
        console.print("[dim]Hints:[/dim]")
        for hint in hints:
            console.print(f"  - {hint}", markup=False)


__all__ = [
    "StatusColors",
    "console",
    "create_evidence_table",
    "create_extraction_log_table",
    "create_patterns_table",
    "create_simple_table",
    "format_timestamp",
    "output_error",
    "output_json",
]
