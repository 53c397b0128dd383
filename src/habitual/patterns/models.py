"""Data models for the pattern store.

Enums for the closed vocabularies (category, status, confidence tier) and
dataclasses for the records read back from SQLite.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class PatternCategory(str, Enum):
    """Closed set of pattern categories.

    Adding a member changes the schema CHECK constraint as well, so it is a
    schema change (bump SCHEMA_VERSION).
    """

    VERIFICATION = "verification"
    """User wants claims backed by independent checks."""

    INVESTIGATION = "investigation"
    """How the user approaches unknowns (overview first, drill-down, ...)."""

    METHODOLOGY = "methodology"
    """Preferred working method (tests first, small steps, ...)."""

    COMMUNICATION = "communication"
    """Tone, length, and structure preferences for responses."""

    WORKFLOW = "workflow"
    """Habits around branching, commits, reviews, and releases."""

    TOOLING = "tooling"
    """Preferred tools, commands, and environments."""

    REVIEW = "review"
    """What the user checks for when reviewing changes."""


class PatternStatus(str, Enum):
    """Lifecycle status of a pattern.

    - ACTIVE: eligible for context injection
    - DORMANT: not reinforced within the threshold; kept, not injected
    - RETIRED: explicitly switched off; kept for history
    """

    ACTIVE = "active"
    DORMANT = "dormant"
    RETIRED = "retired"


class ConfidenceTier(str, Enum):
    """Coarse confidence derived from corroboration breadth."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class PatternRecord:
    """A stored behavioral pattern."""

    id: str
    category: PatternCategory
    name: str
    description: str
    session_refs: tuple[str, ...]
    confidence: ConfidenceTier
    weight: float
    session_count: int
    project_count: int
    instruction: str
    status: PatternStatus
    first_seen: datetime
    last_reinforced: datetime

    def to_dict(self) -> dict[str, object]:
        """Serialize to a JSON-compatible dictionary."""
        return {
            "id": self.id,
            "category": self.category.value,
            "name": self.name,
            "description": self.description,
            "session_refs": list(self.session_refs),
            "confidence": self.confidence.value,
            "weight": self.weight,
            "session_count": self.session_count,
            "project_count": self.project_count,
            "instruction": self.instruction,
            "status": self.status.value,
            "first_seen": self.first_seen.isoformat(),
            "last_reinforced": self.last_reinforced.isoformat(),
        }


@dataclass
class EvidenceRecord:
    """One observed occurrence backing a pattern. Append-only."""

    id: int
    pattern_id: str
    session_id: str
    project: str
    snippet: str
    recorded_at: datetime

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "pattern_id": self.pattern_id,
            "session_id": self.session_id,
            "project": self.project,
            "snippet": self.snippet,
            "recorded_at": self.recorded_at.isoformat(),
        }


@dataclass
class ExtractionLogEntry:
    """Audit row for one extraction run.

    ``id`` is None until the entry has been stored.
    """

    extracted_at: datetime
    session_count: int
    patterns_created: int
    patterns_updated: int
    patterns_retired: int
    model: str
    id: int | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "extracted_at": self.extracted_at.isoformat(),
            "session_count": self.session_count,
            "patterns_created": self.patterns_created,
            "patterns_updated": self.patterns_updated,
            "patterns_retired": self.patterns_retired,
            "model": self.model,
        }


@dataclass
class PatternStats:
    """Aggregate counts for observability tooling."""

    total: int = 0
    active: int = 0
    dormant: int = 0
    retired: int = 0
    by_category: dict[str, int] = field(default_factory=dict)
    evidence_count: int = 0
    extraction_runs: int = 0

    def to_dict(self) -> dict[str, object]:
        return {
            "total": self.total,
            "active": self.active,
            "dormant": self.dormant,
            "retired": self.retired,
            "by_category": dict(self.by_category),
            "evidence_count": self.evidence_count,
            "extraction_runs": self.extraction_runs,
        }
