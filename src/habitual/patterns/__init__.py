"""Behavioral pattern store, scoring, context rendering and repository mirror."""

from habitual.patterns.confidence import (
    WEIGHT_CAP,
    boost_weight,
    clamp_weight,
    confidence_tier,
)
from habitual.patterns.context import ContextInjector, render_context
from habitual.patterns.locking import FileRepositoryLock, RepositoryLock
from habitual.patterns.models import (
    ConfidenceTier,
    EvidenceRecord,
    ExtractionLogEntry,
    PatternCategory,
    PatternRecord,
    PatternStats,
    PatternStatus,
)
from habitual.patterns.repository import RepositoryWriter
from habitual.patterns.sanitize import sanitize_pattern_id
from habitual.patterns.store import PatternStore

__all__ = [
    "WEIGHT_CAP",
    "ConfidenceTier",
    "ContextInjector",
    "EvidenceRecord",
    "ExtractionLogEntry",
    "FileRepositoryLock",
    "PatternCategory",
    "PatternRecord",
    "PatternStats",
    "PatternStatus",
    "PatternStore",
    "RepositoryLock",
    "RepositoryWriter",
    "boost_weight",
    "clamp_weight",
    "confidence_tier",
    "render_context",
    "sanitize_pattern_id",
]
