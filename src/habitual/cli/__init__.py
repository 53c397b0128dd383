"""Habitual CLI.

A Typer app for inspecting and curating the pattern store. The callback
builds the configuration snapshot once (defaults, --config file, HABITUAL_*
environment) and configures logging; commands read it through
``helpers.get_state()``.

Package structure:
    cli/
    ├── __init__.py           # This file - app assembly and global options
    ├── helpers.py            # Config loading, CLI state, error mapping
    ├── output.py             # Rich formatting
    └── commands/
        ├── __init__.py       # Command exports
        └── patterns.py       # list, show, stats, retire, boost, ...

Exit codes: 0 success, 1 invalid input or unknown pattern, 2 storage or
lock failure, 3 refused filesystem path.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Annotated

import typer

from habitual import __version__
from habitual.core.errors import ValidationError
from habitual.core.logging import configure_logging

# Re-export helpers module for direct access to internal state (conftest.py needs this)
from . import helpers as helpers
from .commands import (
    boost,
    context,
    enforce_dormancy,
    extraction_log,
    list_patterns,
    mirror,
    retire,
    show,
    stats,
)
from .helpers import CliState, build_config, exit_code_for, set_state
from .output import console, output_error

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

# =============================================================================
# Typer app definition
# =============================================================================

app = typer.Typer(
    name="habitual",
    help="Inspect and curate learned user behavioral patterns",
    add_completion=False,
    no_args_is_help=True,
)


# =============================================================================
# Global option callbacks
# =============================================================================


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"Habitual v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    config_file: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            help="YAML configuration file",
            envvar="HABITUAL_CONFIG",
        ),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            "-L",
            help="Logging level (DEBUG, INFO, WARNING, ERROR)",
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            "-j",
            help="Output as JSON for machine parsing",
        ),
    ] = False,
) -> None:
    """Habitual - durable store of user behavioral patterns."""
    try:
        config = build_config(config_file, os.environ)
        if log_level is not None and log_level.upper() not in _LOG_LEVELS:
            raise ValidationError(
                f"invalid log level {log_level!r}; expected one of: "
                + ", ".join(_LOG_LEVELS),
                field="log_level",
            )
    except ValidationError as e:
        output_error(str(e), error_type=type(e).__name__, json_output=json_output)
        raise typer.Exit(exit_code_for(e)) from None

    log = config.logging
    try:
        configure_logging(
            level=log_level.upper() if log_level else log.level,  # type: ignore[arg-type]
            format=log.format,
            file_path=log.file_path,
        )
    except (ValueError, OSError) as e:
        output_error(f"Logging configuration error: {e}", json_output=json_output)
        raise typer.Exit(1) from None

    set_state(CliState(config=config, json_output=json_output))


# =============================================================================
# Command registration
# =============================================================================

app.command(name="list")(list_patterns)
app.command()(show)
app.command()(stats)
app.command()(retire)
app.command()(boost)
app.command(name="enforce-dormancy")(enforce_dormancy)
app.command()(context)
app.command()(mirror)
app.command(name="extraction-log")(extraction_log)


# =============================================================================
# Public API
# =============================================================================

__all__ = [
    "app",
    "console",
    "main",
]
