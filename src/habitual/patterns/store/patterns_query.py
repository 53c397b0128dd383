"""Pattern query and lookup mixin for PatternStore.

Provides methods for reading patterns back out of the store:
- read: Single pattern lookup (unknown or hostile ids find nothing)
- list_patterns: Filter by status and/or category
- get_evidence: Evidence rows for a pattern
- stats: Aggregate counts for observability tooling
- _row_to_pattern_record: Database row to PatternRecord conversion

The write-side mixins reuse its row conversion.
"""

import json
import sqlite3
from collections.abc import Callable
from contextlib import AbstractContextManager

from habitual.core.errors import PersistenceError
from habitual.core.logging import HabitualLogger
from habitual.patterns.models import (
    ConfidenceTier,
    EvidenceRecord,
    PatternCategory,
    PatternRecord,
    PatternStats,
    PatternStatus,
)
from habitual.patterns.sanitize import lookup_pattern_id, validate_category, validate_status
from habitual.patterns.store.base import WhereBuilder
from habitual.utils.time import parse_timestamp


def _decode_session_refs(raw: str | None, pattern_id: str) -> tuple[str, ...]:
    """Parse the stored JSON array, refusing anything but a list of strings."""
    try:
        value = json.loads(raw or "[]")
    except json.JSONDecodeError as e:
        raise PersistenceError(
            f"corrupt session_refs for pattern {pattern_id!r}: {e}"
        ) from e
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise PersistenceError(
            f"corrupt session_refs for pattern {pattern_id!r}: expected a list of strings"
        )
    return tuple(value)


class PatternQueryMixin:
    """Mixin providing pattern query methods for PatternStore.

    This mixin requires that the composed class provides:
    - _get_connection(): Context manager yielding sqlite3.Connection
    """

    _logger: HabitualLogger
    _get_connection: Callable[..., AbstractContextManager[sqlite3.Connection]]

    def read(self, pattern_id: str) -> PatternRecord | None:
        """Get a single pattern by its ID.

        The id goes through the sanitizer and is bound as a parameter, so an
        input like ``"'; DROP TABLE user_patterns; --"`` is just an id that
        does not exist.

        Args:
            pattern_id: The pattern ID to retrieve.

        Returns:
            PatternRecord if found, None otherwise.
        """
        clean_id = lookup_pattern_id(pattern_id)
        if clean_id is None:
            return None

        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM user_patterns WHERE id = ?",
                (clean_id,),
            ).fetchone()
            if row:
                return self._row_to_pattern_record(row)
            return None

    def list_patterns(
        self,
        status: PatternStatus | str | None = None,
        category: PatternCategory | str | None = None,
    ) -> list[PatternRecord]:
        """List patterns matching every given filter.

        Unspecified filters match everything. Results are ordered by most
        recently reinforced first, with id as a stable tie-break.

        Args:
            status: Optional status filter.
            category: Optional category filter.

        Returns:
            Matching PatternRecord objects.

        Raises:
            ValidationError: If a filter value is outside its enumeration.
        """
        wb = WhereBuilder()
        if status is not None:
            wb.add("status = ?", validate_status(status).value)
        if category is not None:
            wb.add("category = ?", validate_category(category).value)
        where_sql, params = wb.build()

        with self._get_connection() as conn:
            cursor = conn.execute(
                f"""
                SELECT * FROM user_patterns
                WHERE {where_sql}
                ORDER BY last_reinforced DESC, id ASC
                """,
                params,
            )
            return [self._row_to_pattern_record(row) for row in cursor.fetchall()]

    def get_evidence(self, pattern_id: str) -> list[EvidenceRecord]:
        """Get the evidence recorded for a pattern, oldest first."""
        clean_id = lookup_pattern_id(pattern_id)
        if clean_id is None:
            return []

        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                SELECT * FROM pattern_evidence
                WHERE pattern_id = ?
                ORDER BY recorded_at ASC, id ASC
                """,
                (clean_id,),
            )
            return [self._row_to_evidence_record(row) for row in cursor.fetchall()]

    def stats(self) -> PatternStats:
        """Aggregate pattern counts by status and category.

        All counts come from one read transaction, so they are consistent
        with each other.
        """
        result = PatternStats(by_category={c.value: 0 for c in PatternCategory})

        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                SELECT status, category, COUNT(*) AS n
                FROM user_patterns
                GROUP BY status, category
                """
            )
            for row in cursor.fetchall():
                count = row["n"]
                result.total += count
                result.by_category[row["category"]] = (
                    result.by_category.get(row["category"], 0) + count
                )
                if row["status"] == PatternStatus.ACTIVE.value:
                    result.active += count
                elif row["status"] == PatternStatus.DORMANT.value:
                    result.dormant += count
                elif row["status"] == PatternStatus.RETIRED.value:
                    result.retired += count

            result.evidence_count = conn.execute(
                "SELECT COUNT(*) FROM pattern_evidence"
            ).fetchone()[0]
            result.extraction_runs = conn.execute(
                "SELECT COUNT(*) FROM pattern_extraction_log"
            ).fetchone()[0]

        return result

    def _row_to_pattern_record(self, row: sqlite3.Row) -> PatternRecord:
        """Convert a database row to a PatternRecord.

        Args:
            row: Database row from user_patterns table.

        Returns:
            PatternRecord instance with all fields populated.

        Raises:
            PersistenceError: If the row holds values the schema should have
                prevented (written by another tool, or corrupted).
        """
        pattern_id = row["id"]
        try:
            return PatternRecord(
                id=pattern_id,
                category=PatternCategory(row["category"]),
                name=row["name"],
                description=row["description"] or "",
                session_refs=_decode_session_refs(row["session_refs"], pattern_id),
                confidence=ConfidenceTier(row["confidence"]),
                weight=float(row["weight"]),
                session_count=row["session_count"],
                project_count=row["project_count"],
                instruction=row["instruction"],
                status=PatternStatus(row["status"]),
                first_seen=parse_timestamp(row["first_seen"]),
                last_reinforced=parse_timestamp(row["last_reinforced"]),
            )
        except ValueError as e:
            raise PersistenceError(f"corrupt row for pattern {pattern_id!r}: {e}") from e

    @staticmethod
    def _row_to_evidence_record(row: sqlite3.Row) -> EvidenceRecord:
        try:
            return EvidenceRecord(
                id=row["id"],
                pattern_id=row["pattern_id"],
                session_id=row["session_id"],
                project=row["project"],
                snippet=row["snippet"],
                recorded_at=parse_timestamp(row["recorded_at"]),
            )
        except ValueError as e:
            raise PersistenceError(f"corrupt evidence row {row['id']!r}: {e}") from e
