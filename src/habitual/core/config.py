"""Configuration models for Habitual.

Pydantic v2 models describing the read-only configuration snapshot that is
built once at process start and passed to each component at construction.
Nothing in the core reads the process environment; see
``habitual.cli.helpers.build_config`` for the one place that does.

Example YAML:
    store:
      db_path: ~/.habitual/habitual.db
      busy_timeout_seconds: 5
    dormancy:
      threshold_days: 180
    repository:
      knowledge_root: ~/knowledge
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_HOME = Path.home() / ".habitual"
DEFAULT_DB_PATH = DEFAULT_HOME / "habitual.db"
DEFAULT_KNOWLEDGE_ROOT = DEFAULT_HOME / "knowledge"

# Upper bound on pattern weight; fixed, not a tuning knob
WEIGHT_CAP = 2.0


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class StoreConfig(_FrozenModel):
    """Configuration for the SQLite pattern database."""

    db_path: Path = Field(
        default=DEFAULT_DB_PATH,
        description="Path to the SQLite database holding patterns, evidence "
        "and the extraction log.",
    )
    busy_timeout_seconds: float = Field(
        default=5.0,
        gt=0.0,
        le=300.0,
        description="How long a writer waits on a locked database before "
        "surfacing a transient PersistenceError.",
    )

    @field_validator("db_path")
    @classmethod
    def _expand_db_path(cls, v: Path) -> Path:
        return v.expanduser()


class DormancyConfig(_FrozenModel):
    """Configuration for the dormancy sweep."""

    threshold_days: float = Field(
        default=180,
        ge=0,
        le=36500,
        description="Active patterns not reinforced for longer than this many "
        "days become dormant.",
    )


class ContextConfig(_FrozenModel):
    """Configuration for the session-start context block."""

    heading: str = Field(
        default="User Behavioral Patterns",
        min_length=1,
        description="Heading text of the rendered block.",
    )
    max_patterns: int = Field(
        default=20,
        ge=1,
        le=200,
        description="Maximum number of patterns rendered.",
    )
    max_chars: int = Field(
        default=4000,
        ge=200,
        description="Upper bound on the rendered block length in characters.",
    )


class RepositoryConfig(_FrozenModel):
    """Configuration for the on-disk knowledge repository mirror."""

    knowledge_root: Path = Field(
        default=DEFAULT_KNOWLEDGE_ROOT,
        description="Root of the synced knowledge directory. Pattern files go "
        "under <root>/_user/patterns/<category>/<id>.md",
    )
    lock_path: Path | None = Field(
        default=None,
        description="Advisory lock file serializing writes (and pushes) to the "
        "knowledge directory. None means <root parent>/.<root name>.lock",
    )
    lock_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        le=600.0,
        description="Maximum wait for the repository lock.",
    )

    @field_validator("knowledge_root", "lock_path")
    @classmethod
    def _expand_paths(cls, v: Path | None) -> Path | None:
        return v.expanduser() if v is not None else None

    @property
    def effective_lock_path(self) -> Path:
        """The lock file actually used, resolving the default."""
        if self.lock_path is not None:
            return self.lock_path
        root = self.knowledge_root
        return root.parent / f".{root.name}.lock"


class LogConfig(_FrozenModel):
    """Configuration for structured logging."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="WARNING",
        description="Minimum log level to capture",
    )
    format: Literal["json", "console", "both"] = Field(
        default="console",
        description="Output format: json for structured (to file_path or stderr), "
        "console for human-readable, "
        "both for console output to stderr and to file_path",
    )
    file_path: Path | None = Field(
        default=None,
        description="Path for log file output (required if format='both')",
    )

    @model_validator(mode="after")
    def _validate_file_path_for_both(self) -> LogConfig:
        if self.format == "both" and self.file_path is None:
            raise ValueError("file_path is required when format='both'")
        return self


class HabitualConfig(_FrozenModel):
    """Top-level configuration snapshot."""

    store: StoreConfig = Field(default_factory=StoreConfig)
    dormancy: DormancyConfig = Field(default_factory=DormancyConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    repository: RepositoryConfig = Field(default_factory=RepositoryConfig)
    logging: LogConfig = Field(default_factory=LogConfig)


__all__ = [
    "DEFAULT_DB_PATH",
    "DEFAULT_KNOWLEDGE_ROOT",
    "WEIGHT_CAP",
    "ContextConfig",
    "DormancyConfig",
    "HabitualConfig",
    "LogConfig",
    "RepositoryConfig",
    "StoreConfig",
]
