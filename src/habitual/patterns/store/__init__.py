"""Pattern store composed from focused mixins.

- PatternCrudMixin: write, boost, retire, add_evidence
- PatternQueryMixin: read, list_patterns, get_evidence, stats
- DormancyMixin: enforce_dormancy
- ExtractionLogMixin: append_extraction_log, get_extraction_log

The base class (PatternStoreBase) provides:
- SQLite connection management with WAL mode and a bounded busy timeout
- Explicit per-operation transactions and batch_connection()
- Schema creation and the guarded query_readonly() path

Usage:
    from habitual.patterns.store import PatternStore

    store = PatternStore()  # Uses default ~/.habitual/habitual.db
    store = PatternStore(db_path=Path("/custom/path.db"))
    store = PatternStore.from_config(config)

PatternStoreBase is listed LAST so mixins can rely on _get_connection(),
_now() and _logger being provided by it.
"""

from habitual.patterns.store.base import (
    DEFAULT_BUSY_TIMEOUT_SECONDS,
    DEFAULT_DORMANCY_THRESHOLD_DAYS,
    PatternStoreBase,
    WhereBuilder,
)
from habitual.patterns.store.dormancy import DormancyMixin
from habitual.patterns.store.extraction_log import ExtractionLogMixin
from habitual.patterns.store.patterns_crud import PatternCrudMixin
from habitual.patterns.store.patterns_query import PatternQueryMixin


class PatternStore(
    PatternCrudMixin,
    PatternQueryMixin,
    DormancyMixin,
    ExtractionLogMixin,
    PatternStoreBase,
):
    """SQLite-backed store of user behavioral patterns.

    Safe to use from several short-lived processes against the same
    database file: every mutation is a single transaction, and lock waits
    are bounded by ``busy_timeout_seconds``.
    """


__all__ = [
    "DEFAULT_BUSY_TIMEOUT_SECONDS",
    "DEFAULT_DORMANCY_THRESHOLD_DAYS",
    "DormancyMixin",
    "ExtractionLogMixin",
    "PatternCrudMixin",
    "PatternQueryMixin",
    "PatternStore",
    "PatternStoreBase",
    "WhereBuilder",
]
