"""Shared utilities for Habitual CLI commands.

- Configuration loading (defaults, YAML file, environment)
- Module-level CLI state shared between the callback and commands
- Store and writer construction
- Mapping of core errors to exit codes
"""

from __future__ import annotations

from collections.abc import Generator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pydantic
import typer
import yaml

from habitual.core.config import HabitualConfig
from habitual.core.errors import (
    HabitualError,
    NotFoundError,
    PersistenceError,
    SecurityError,
    ValidationError,
)
from habitual.core.logging import get_logger
from habitual.patterns.repository import RepositoryWriter
from habitual.patterns.store import PatternStore

from .output import output_error

# =============================================================================
# Module-level logger
# =============================================================================

_logger = get_logger("cli")


# =============================================================================
# Configuration loading
# =============================================================================

# Environment variable -> (config section, field)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "HABITUAL_DB": ("store", "db_path"),
    "HABITUAL_BUSY_TIMEOUT": ("store", "busy_timeout_seconds"),
    "HABITUAL_DORMANCY_DAYS": ("dormancy", "threshold_days"),
    "HABITUAL_KNOWLEDGE_DIR": ("repository", "knowledge_root"),
    "HABITUAL_LOG": ("logging", "file_path"),
    "HABITUAL_LOG_LEVEL": ("logging", "level"),
}


def _load_config_file(config_file: Path) -> dict[str, Any]:
    try:
        text = config_file.read_text(encoding="utf-8")
    except OSError as e:
        raise ValidationError(
            f"cannot read config file {config_file}: {e}", field="config"
        ) from e
    try:
        loaded = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ValidationError(
            f"config file {config_file} is not valid YAML: {e}", field="config"
        ) from e
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ValidationError(
            f"config file {config_file} must contain a mapping", field="config"
        )
    return loaded


def build_config(
    config_file: Path | None,
    environ: Mapping[str, str],
) -> HabitualConfig:
    """Build the configuration snapshot for this process.

    Sources, later ones winning: built-in defaults, the optional YAML
    ``config_file``, then the HABITUAL_* variables in ``environ``. A log
    file given through HABITUAL_LOG switches the format to JSON unless the
    config file chose one.

    Raises:
        ValidationError: If the file is unreadable or any value is invalid.
    """
    data = _load_config_file(config_file) if config_file is not None else {}

    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if not value:
            continue
        section_data = data.get(section) or {}
        if not isinstance(section_data, dict):
            raise ValidationError(
                f"config section {section!r} must be a mapping", field=section
            )
        section_data = dict(section_data)
        section_data[key] = value.upper() if key == "level" else value
        if env_name == "HABITUAL_LOG":
            section_data.setdefault("format", "json")
        data[section] = section_data

    try:
        return HabitualConfig.model_validate(data)
    except pydantic.ValidationError as e:
        raise ValidationError(f"invalid configuration: {e}", field="config") from e


# =============================================================================
# CLI state
# =============================================================================


@dataclass
class CliState:
    """Per-invocation CLI state, filled in by the app callback."""

    config: HabitualConfig = field(default_factory=HabitualConfig)
    json_output: bool = False


_state = CliState()


def get_state() -> CliState:
    return _state


def set_state(state: CliState) -> None:
    global _state
    _state = state


def reset_state() -> None:
    """Reset CLI state (primarily for testing)."""
    set_state(CliState())


def open_store() -> PatternStore:
    """Open the pattern store described by the current config."""
    return PatternStore.from_config(_state.config)


def open_writer() -> RepositoryWriter:
    return RepositoryWriter(_state.config.repository)


# =============================================================================
# Error handling
# =============================================================================


def exit_code_for(error: HabitualError) -> int:
    """Exit code for a core error.

    1: bad input or unknown pattern, 2: storage failure, 3: refused path.
    """
    if isinstance(error, SecurityError):
        return 3
    if isinstance(error, PersistenceError):
        return 2
    return 1


def _hints_for(error: HabitualError) -> list[str] | None:
    if isinstance(error, PersistenceError) and error.transient:
        return ["Another process holds the lock; retry in a moment."]
    if isinstance(error, NotFoundError):
        return ["Run 'habitual list' to see stored pattern ids."]
    return None


@contextmanager
def cli_errors() -> Generator[None, None, None]:
    """Print core errors and exit with the matching code.

    Raises:
        typer.Exit: For any HabitualError raised inside the block.
    """
    try:
        yield
    except HabitualError as e:
        _logger.debug("command_failed", error_type=type(e).__name__, error=str(e))
        output_error(
            str(e),
            error_type=type(e).__name__,
            hints=_hints_for(e),
            json_output=_state.json_output,
        )
        raise typer.Exit(exit_code_for(e)) from None


__all__ = [
    "ENV_OVERRIDES",
    "CliState",
    "build_config",
    "cli_errors",
    "exit_code_for",
    "get_state",
    "open_store",
    "open_writer",
    "reset_state",
    "set_state",
]
