"""Pattern write-side mixin for PatternStore.

Provides methods that create and mutate patterns:
- write: Create a pattern or update an existing one (upsert by id)
- boost: Raise a pattern's weight, capped
- retire: Switch a pattern off without deleting it
- add_evidence: Append an observation backing a pattern

Every method validates its input before opening a connection, and runs its
reads and writes inside one write transaction.
"""

import json
import sqlite3
from collections.abc import Callable, Iterable
from contextlib import AbstractContextManager
from datetime import datetime

from habitual.core.errors import NotFoundError, PersistenceError
from habitual.core.logging import HabitualLogger
from habitual.patterns.confidence import (
    boost_weight,
    clamp_weight,
    confidence_tier,
    validate_boost_delta,
)
from habitual.patterns.models import (
    ConfidenceTier,
    EvidenceRecord,
    PatternCategory,
    PatternRecord,
    PatternStatus,
)
from habitual.patterns.sanitize import (
    lookup_pattern_id,
    normalize_session_refs,
    sanitize_pattern_id,
    validate_category,
    validate_confidence,
    validate_count,
    validate_text,
)
from habitual.utils.time import format_timestamp, parse_timestamp


class PatternCrudMixin:
    """Mixin providing pattern write methods.

    This mixin requires that the composed class provides:
    - _get_connection(): Context manager yielding sqlite3.Connection
    - _now(): Current time from the store's clock
    - _row_to_pattern_record(): Row conversion (from PatternQueryMixin)
    """

    _logger: HabitualLogger
    _get_connection: Callable[..., AbstractContextManager[sqlite3.Connection]]
    _now: Callable[[], datetime]
    _row_to_pattern_record: Callable[[sqlite3.Row], PatternRecord]

    def write(
        self,
        pattern_id: str,
        category: PatternCategory | str,
        name: str,
        description: str,
        session_refs: Iterable[str],
        confidence: ConfidenceTier | str | None,
        weight: float,
        session_count: int,
        project_count: int,
        instruction: str,
        *,
        reactivate: bool = False,
    ) -> PatternRecord:
        """Create or update a pattern.

        A new pattern starts active with ``first_seen == last_reinforced ==
        now``. An existing pattern gets every mutable field replaced and
        ``last_reinforced`` moved to now; ``first_seen`` never changes, and
        neither does the status unless ``reactivate`` is set.

        Args:
            pattern_id: Caller-supplied id; sanitized before use.
            category: One of PatternCategory.
            name: Short human-readable name.
            description: Longer explanation (may be empty).
            session_refs: Sessions the pattern was observed in.
            confidence: Explicit tier, or None to derive it from the counts.
            weight: Injection priority; clamped into [0.0, WEIGHT_CAP].
            session_count: Number of sessions observed in.
            project_count: Number of projects observed in.
            instruction: Directive text injected at session start.
            reactivate: Set status back to active on update.

        Returns:
            The stored PatternRecord.

        Raises:
            ValidationError: If any input is rejected; storage is untouched.
            PersistenceError: If the transaction fails; it is rolled back.
        """
        clean_id = sanitize_pattern_id(pattern_id)
        category = validate_category(category)
        name = validate_text(name, "name")
        description = validate_text(description, "description", required=False)
        instruction = validate_text(instruction, "instruction")
        refs = normalize_session_refs(session_refs)
        session_count = validate_count(session_count, "session_count")
        project_count = validate_count(project_count, "project_count")
        if confidence is None:
            tier = confidence_tier(session_count, project_count)
        else:
            tier = validate_confidence(confidence)
        clamped = clamp_weight(weight)
        now = self._now()

        with self._get_connection(write=True) as conn:
            existing = conn.execute(
                "SELECT first_seen, status FROM user_patterns WHERE id = ?",
                (clean_id,),
            ).fetchone()

            if existing:
                try:
                    first_seen = parse_timestamp(existing["first_seen"])
                except ValueError as e:
                    raise PersistenceError(
                        f"corrupt row for pattern {clean_id!r}: {e}"
                    ) from e
                # A clock that went backwards must not break first_seen <= last_reinforced
                reinforced = max(now, first_seen)
                status = PatternStatus.ACTIVE.value if reactivate else existing["status"]
                conn.execute(
                    """
                    UPDATE user_patterns SET
                        category = ?,
                        name = ?,
                        description = ?,
                        session_refs = ?,
                        confidence = ?,
                        weight = ?,
                        session_count = ?,
                        project_count = ?,
                        instruction = ?,
                        status = ?,
                        last_reinforced = ?
                    WHERE id = ?
                    """,
                    (
                        category.value,
                        name,
                        description,
                        json.dumps(list(refs)),
                        tier.value,
                        clamped,
                        session_count,
                        project_count,
                        instruction,
                        status,
                        format_timestamp(reinforced),
                        clean_id,
                    ),
                )
                event = "pattern_updated"
            else:
                timestamp = format_timestamp(now)
                conn.execute(
                    """
                    INSERT INTO user_patterns (
                        id, category, name, description, session_refs,
                        confidence, weight, session_count, project_count,
                        instruction, status, first_seen, last_reinforced
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        clean_id,
                        category.value,
                        name,
                        description,
                        json.dumps(list(refs)),
                        tier.value,
                        clamped,
                        session_count,
                        project_count,
                        instruction,
                        PatternStatus.ACTIVE.value,
                        timestamp,
                        timestamp,
                    ),
                )
                event = "pattern_created"

            row = conn.execute(
                "SELECT * FROM user_patterns WHERE id = ?", (clean_id,)
            ).fetchone()
            record = self._row_to_pattern_record(row)

        self._logger.info(
            event,
            pattern_id=clean_id,
            category=category.value,
            confidence=tier.value,
            weight=clamped,
            status=record.status.value,
        )
        return record

    def boost(self, pattern_id: str, delta: float) -> float | None:
        """Raise a pattern's weight by ``delta``, capped at WEIGHT_CAP.

        ``last_reinforced`` is left alone: a boost is a ranking signal, not
        a new observation.

        Args:
            pattern_id: The pattern to boost.
            delta: Non-negative amount to add.

        Returns:
            The new weight, or None if the pattern does not exist.

        Raises:
            ValidationError: If ``delta`` is negative or not finite.
        """
        amount = validate_boost_delta(delta)
        clean_id = lookup_pattern_id(pattern_id)
        if clean_id is None:
            return None

        with self._get_connection(write=True) as conn:
            row = conn.execute(
                "SELECT weight FROM user_patterns WHERE id = ?",
                (clean_id,),
            ).fetchone()
            if not row:
                return None
            new_weight = boost_weight(row["weight"], amount)
            conn.execute(
                "UPDATE user_patterns SET weight = ? WHERE id = ?",
                (new_weight, clean_id),
            )

        self._logger.debug(
            "pattern_boosted",
            pattern_id=clean_id,
            old_weight=row["weight"],
            new_weight=new_weight,
        )
        return new_weight

    def retire(self, pattern_id: str) -> bool:
        """Mark a pattern as retired.

        Retired patterns stay in the store (with their evidence) but are
        never injected and never touched by the dormancy sweep.

        Returns:
            True if the pattern existed, False otherwise.
        """
        clean_id = lookup_pattern_id(pattern_id)
        if clean_id is None:
            return False

        with self._get_connection(write=True) as conn:
            cursor = conn.execute(
                "UPDATE user_patterns SET status = ? WHERE id = ?",
                (PatternStatus.RETIRED.value, clean_id),
            )
            retired = cursor.rowcount > 0

        if retired:
            self._logger.info("pattern_retired", pattern_id=clean_id)
        return retired

    def add_evidence(
        self,
        pattern_id: str,
        session_id: str,
        project: str,
        snippet: str,
    ) -> EvidenceRecord:
        """Append one observation backing a pattern.

        Args:
            pattern_id: The pattern the evidence supports.
            session_id: Session the observation came from.
            project: Project the session ran in (may be empty).
            snippet: Excerpt of the observed behavior (may be empty).

        Returns:
            The stored EvidenceRecord.

        Raises:
            ValidationError: If an input is rejected.
            NotFoundError: If the pattern does not exist.
        """
        clean_id = sanitize_pattern_id(pattern_id)
        session_id = validate_text(session_id, "session_id")
        project = validate_text(project, "project", required=False)
        snippet = validate_text(snippet, "snippet", required=False)
        now = self._now()

        with self._get_connection(write=True) as conn:
            exists = conn.execute(
                "SELECT 1 FROM user_patterns WHERE id = ?", (clean_id,)
            ).fetchone()
            if not exists:
                raise NotFoundError(
                    f"pattern {clean_id!r} does not exist", pattern_id=clean_id
                )
            cursor = conn.execute(
                """
                INSERT INTO pattern_evidence (
                    pattern_id, session_id, project, snippet, recorded_at
                ) VALUES (?, ?, ?, ?, ?)
                """,
                (clean_id, session_id, project, snippet, format_timestamp(now)),
            )
            evidence_id = cursor.lastrowid

        # Snippets can hold user content, so only the length is logged
        self._logger.debug(
            "evidence_added",
            pattern_id=clean_id,
            session_id=session_id,
            snippet_length=len(snippet),
        )
        return EvidenceRecord(
            id=evidence_id or 0,
            pattern_id=clean_id,
            session_id=session_id,
            project=project,
            snippet=snippet,
            recorded_at=parse_timestamp(format_timestamp(now)),
        )
