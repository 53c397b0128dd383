"""Tests for the dormancy sweep."""

from __future__ import annotations

import math
import sqlite3
from collections.abc import Callable
from datetime import timedelta
from pathlib import Path

import pytest

from habitual.core.errors import PersistenceError, ValidationError
from habitual.patterns.models import PatternRecord, PatternStatus
from habitual.patterns.store import PatternStore

from tests.conftest import START, FakeClock

WritePattern = Callable[..., PatternRecord]


class TestEnforceDormancy:
    def test_stale_active_patterns_become_dormant(
        self, store: PatternStore, clock: FakeClock, write_pattern: WritePattern,
    ) -> None:
        write_pattern(pattern_id="old")
        clock.advance(days=100)
        write_pattern(pattern_id="recent")
        clock.advance(days=100)

        assert store.enforce_dormancy(threshold_days=180) == ["old"]
        old = store.read("old")
        recent = store.read("recent")
        assert old is not None and old.status is PatternStatus.DORMANT
        assert recent is not None and recent.status is PatternStatus.ACTIVE

    def test_boundary_is_strict(
        self, store: PatternStore, clock: FakeClock, write_pattern: WritePattern,
    ) -> None:
        write_pattern()
        clock.advance(days=30)
        # Exactly at the threshold: not older than the cutoff
        assert store.enforce_dormancy(threshold_days=30) == []
        clock.advance(microseconds=1)
        assert store.enforce_dormancy(threshold_days=30) == ["verify-before-done"]

    def test_rerun_is_noop(
        self, store: PatternStore, clock: FakeClock, write_pattern: WritePattern,
    ) -> None:
        write_pattern()
        clock.advance(days=365)
        assert store.enforce_dormancy() == ["verify-before-done"]
        assert store.enforce_dormancy() == []

    def test_default_threshold_from_store(
        self, db_path: Path, clock: FakeClock, pattern_fields: Callable[..., dict],
    ) -> None:
        s = PatternStore(db_path, dormancy_threshold_days=7, clock=clock)
        s.write(**pattern_fields())
        clock.advance(days=8)
        assert s.enforce_dormancy() == ["verify-before-done"]

    def test_weight_untouched(
        self, store: PatternStore, clock: FakeClock, write_pattern: WritePattern,
    ) -> None:
        write_pattern(weight=1.7)
        clock.advance(days=365)
        store.enforce_dormancy()
        record = store.read("verify-before-done")
        assert record is not None
        assert record.weight == 1.7

    def test_retired_patterns_not_touched(
        self, store: PatternStore, clock: FakeClock, write_pattern: WritePattern,
    ) -> None:
        write_pattern()
        store.retire("verify-before-done")
        clock.advance(days=365)
        assert store.enforce_dormancy() == []
        record = store.read("verify-before-done")
        assert record is not None
        assert record.status is PatternStatus.RETIRED

    def test_zero_threshold_makes_everything_older_dormant(
        self, store: PatternStore, clock: FakeClock, write_pattern: WritePattern,
    ) -> None:
        write_pattern(pattern_id="a")
        write_pattern(pattern_id="b")
        clock.advance(seconds=1)
        assert store.enforce_dormancy(threshold_days=0) == ["a", "b"]

    def test_sqlite_datetime_layout_is_understood(
        self, db_path: Path, store: PatternStore, clock: FakeClock, write_pattern: WritePattern,
    ) -> None:
        write_pattern()
        stale = (START - timedelta(days=400)).strftime("%Y-%m-%d %H:%M:%S")
        conn = sqlite3.connect(db_path)
        try:
            conn.execute(
                "UPDATE user_patterns SET first_seen = ?, last_reinforced = ?",
                (stale, stale),
            )
            conn.commit()
        finally:
            conn.close()
        assert store.enforce_dormancy() == ["verify-before-done"]

    @pytest.mark.parametrize("days", [-1, -(10**400), math.nan, math.inf, "30", True])
    def test_invalid_threshold_rejected(self, store: PatternStore, days: object) -> None:
        with pytest.raises(ValidationError):
            store.enforce_dormancy(days)  # type: ignore[arg-type]

    @pytest.mark.parametrize("days", [800_000, 1e9, 10**400])
    def test_threshold_beyond_calendar_is_noop(
        self, store: PatternStore, clock: FakeClock, write_pattern: WritePattern, days: object,
    ) -> None:
        write_pattern()
        clock.advance(days=365)
        assert store.enforce_dormancy(days) == []  # type: ignore[arg-type]
        record = store.read("verify-before-done")
        assert record is not None
        assert record.status is PatternStatus.ACTIVE

    def test_corrupt_last_reinforced_raises_persistence_error(
        self, db_path: Path, store: PatternStore, write_pattern: WritePattern,
    ) -> None:
        write_pattern()
        conn = sqlite3.connect(db_path)
        try:
            conn.execute("UPDATE user_patterns SET last_reinforced = 'garbage'")
            conn.commit()
        finally:
            conn.close()
        with pytest.raises(PersistenceError):
            store.enforce_dormancy()
