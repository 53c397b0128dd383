"""Dormancy sweep mixin for PatternStore.

Active patterns that have not been reinforced within the threshold become
dormant. Dormant patterns are kept with their evidence and weight; they just
stop being injected until a write re-activates them.
"""

import math
import sqlite3
from collections.abc import Callable
from contextlib import AbstractContextManager
from datetime import UTC, datetime, timedelta

from habitual.core.errors import PersistenceError, ValidationError
from habitual.core.logging import HabitualLogger
from habitual.patterns.models import PatternStatus
from habitual.utils.time import parse_timestamp


class DormancyMixin:
    """Mixin providing the dormancy sweep.

    This mixin requires that the composed class provides:
    - _get_connection(): Context manager yielding sqlite3.Connection
    - _now(): Current time from the store's clock
    - dormancy_threshold_days: Default threshold
    """

    _logger: HabitualLogger
    _get_connection: Callable[..., AbstractContextManager[sqlite3.Connection]]
    _now: Callable[[], datetime]
    dormancy_threshold_days: float

    def enforce_dormancy(self, threshold_days: float | None = None) -> list[str]:
        """Mark stale active patterns as dormant.

        A pattern is stale when its ``last_reinforced`` is strictly older
        than ``now - threshold_days``. The whole sweep is one write
        transaction, so a second concurrent sweep waits and then finds
        nothing left to change.

        Args:
            threshold_days: Age limit in days. None uses the store default.

        Returns:
            Ids of the patterns that changed, sorted.

        Raises:
            ValidationError: If the threshold is negative or not finite.
            PersistenceError: If a stored timestamp cannot be parsed.
        """
        days = self.dormancy_threshold_days if threshold_days is None else threshold_days
        if isinstance(days, bool) or not isinstance(days, (int, float)):
            raise ValidationError(
                f"threshold_days must be a number, got {days!r}", field="threshold_days"
            )
        if (isinstance(days, float) and not math.isfinite(days)) or days < 0:
            raise ValidationError(
                "threshold_days must be a finite value >= 0",
                field="threshold_days",
            )
        days = min(days, timedelta.max.days)

        try:
            cutoff = self._now() - timedelta(days=days)
        except OverflowError:
            # Reaches past the earliest representable date: nothing is older
            cutoff = datetime.min.replace(tzinfo=UTC)

        with self._get_connection(write=True) as conn:
            rows = conn.execute(
                "SELECT id, last_reinforced FROM user_patterns WHERE status = ?",
                (PatternStatus.ACTIVE.value,),
            ).fetchall()
            # Compared as datetimes rather than strings so rows written by
            # other tools in SQLite's own datetime layout still compare right
            try:
                stale = sorted(
                    row["id"]
                    for row in rows
                    if parse_timestamp(row["last_reinforced"]) < cutoff
                )
            except ValueError as e:
                raise PersistenceError(f"corrupt last_reinforced value: {e}") from e
            conn.executemany(
                "UPDATE user_patterns SET status = ? WHERE id = ? AND status = ?",
                [
                    (PatternStatus.DORMANT.value, pattern_id, PatternStatus.ACTIVE.value)
                    for pattern_id in stale
                ],
            )

        self._logger.info(
            "dormancy_enforced",
            threshold_days=days,
            cutoff=cutoff.isoformat(),
            dormant_count=len(stale),
        )
        return stale
