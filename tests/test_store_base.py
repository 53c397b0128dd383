"""Tests for PatternStoreBase: connections, schema, transactions, read-only path."""

from __future__ import annotations

import sqlite3
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from habitual.core.config import HabitualConfig, StoreConfig
from habitual.core.errors import PersistenceError, ValidationError
from habitual.patterns.models import PatternRecord
from habitual.patterns.store import PatternStore, WhereBuilder

from tests.conftest import FakeClock


class TestWhereBuilder:
    """Tests for the WhereBuilder SQL clause accumulator."""

    def test_empty_builds_tautology(self) -> None:
        assert WhereBuilder().build() == ("1=1", ())

    def test_single_clause(self) -> None:
        wb = WhereBuilder()
        wb.add("status = ?", "active")
        assert wb.build() == ("status = ?", ("active",))

    def test_clauses_joined_with_and(self) -> None:
        wb = WhereBuilder()
        wb.add("status = ?", "active")
        wb.add("category = ?", "review")
        sql, params = wb.build()
        assert sql == "status = ? AND category = ?"
        assert params == ("active", "review")

    def test_clause_without_params(self) -> None:
        wb = WhereBuilder()
        wb.add("weight > 0")
        assert wb.build() == ("weight > 0", ())


class TestSchema:
    def test_creates_database_and_parent_directory(
        self, db_path: Path, store: PatternStore,
    ) -> None:
        assert db_path.exists()

    def test_wal_mode_enabled(self, db_path: Path, store: PatternStore) -> None:
        conn = sqlite3.connect(db_path)
        try:
            mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
        finally:
            conn.close()
        assert mode.lower() == "wal"

    def test_tables_exist(self, store: PatternStore) -> None:
        rows = store.query_readonly(
            "SELECT name FROM sqlite_master WHERE type = 'table' ORDER BY name"
        )
        names = {r["name"] for r in rows}
        assert {"user_patterns", "pattern_evidence", "pattern_extraction_log"} <= names

    def test_reopen_is_idempotent_and_keeps_data(
        self,
        db_path: Path,
        clock: FakeClock,
        write_pattern: Callable[..., PatternRecord],
    ) -> None:
        write_pattern()
        reopened = PatternStore(db_path, clock=clock)
        assert reopened.read("verify-before-done") is not None
        version = reopened.query_readonly("SELECT version FROM schema_version")
        assert version == [{"version": PatternStore.SCHEMA_VERSION}]

    def test_from_config(self, tmp_path: Path, clock: FakeClock) -> None:
        config = HabitualConfig(
            store=StoreConfig(db_path=tmp_path / "c.db", busy_timeout_seconds=2.5),
        )
        s = PatternStore.from_config(config, clock=clock)
        assert s.db_path == tmp_path / "c.db"
        assert s.busy_timeout_seconds == 2.5
        assert s.dormancy_threshold_days == 180

    @pytest.mark.parametrize(
        ("column", "value"),
        [
            ("weight", 2.5),
            ("weight", -0.1),
            ("category", "bogus"),
            ("status", "deleted"),
            ("confidence", "certain"),
            ("session_count", -1),
        ],
    )
    def test_check_constraints_reject_direct_writes(
        self, db_path: Path, store: PatternStore, column: str, value: Any,
    ) -> None:
        row: dict[str, Any] = {
            "id": "x",
            "category": "verification",
            "name": "n",
            "confidence": "low",
            "weight": 1.0,
            "session_count": 0,
            "instruction": "i",
            "status": "active",
            "first_seen": "2026-01-01T00:00:00.000000+00:00",
            "last_reinforced": "2026-01-01T00:00:00.000000+00:00",
        }
        row[column] = value
        cols = ", ".join(row)
        marks = ", ".join("?" for _ in row)
        conn = sqlite3.connect(db_path)
        try:
            with pytest.raises(sqlite3.IntegrityError):
                conn.execute(
                    f"INSERT INTO user_patterns ({cols}) VALUES ({marks})",
                    tuple(row.values()),
                )
        finally:
            conn.close()

    def test_evidence_foreign_key(self, store: PatternStore) -> None:
        with pytest.raises(PersistenceError), store._get_connection(write=True) as conn:
            conn.execute(
                "INSERT INTO pattern_evidence (pattern_id, session_id, recorded_at) "
                "VALUES ('missing', 's', '2026-01-01')"
            )


class TestTransactions:
    def test_batch_commits_together(
        self, store: PatternStore, pattern_fields: Callable[..., dict[str, Any]],
    ) -> None:
        with store.batch_connection():
            store.write(**pattern_fields(pattern_id="one"))
            store.write(**pattern_fields(pattern_id="two"))
        assert store.read("one") is not None
        assert store.read("two") is not None

    def test_batch_rolls_back_on_error(
        self, store: PatternStore, pattern_fields: Callable[..., dict[str, Any]],
    ) -> None:
        with pytest.raises(RuntimeError), store.batch_connection():
            store.write(**pattern_fields(pattern_id="one"))
            store.add_evidence("one", "s1", "proj", "snippet")
            raise RuntimeError("extraction crashed")
        assert store.read("one") is None
        assert store.get_evidence("one") == []

    def test_failed_write_leaves_no_partial_state(self, store: PatternStore) -> None:
        with pytest.raises(RuntimeError), store._get_connection(write=True) as conn:
            conn.execute(
                "INSERT INTO user_patterns (id, category, name, confidence, instruction, "
                "first_seen, last_reinforced) VALUES ('half', 'review', 'n', 'low', 'i', "
                "'2026-01-01', '2026-01-01')"
            )
            raise RuntimeError("boom")
        assert store.stats().total == 0


class TestLockContention:
    """Lock waits are bounded and surface as transient PersistenceError."""

    def test_write_times_out_while_another_writer_holds_lock(
        self,
        db_path: Path,
        clock: FakeClock,
        pattern_fields: Callable[..., dict[str, Any]],
    ) -> None:
        impatient = PatternStore(db_path, busy_timeout_seconds=0.1, clock=clock)
        holder = sqlite3.connect(db_path, isolation_level=None)
        try:
            holder.execute("BEGIN IMMEDIATE")
            with pytest.raises(PersistenceError) as exc_info:
                impatient.write(**pattern_fields())
            assert exc_info.value.transient is True
        finally:
            holder.execute("ROLLBACK")
            holder.close()
        # Succeeds once the lock is released
        assert impatient.write(**pattern_fields()).id == "verify-before-done"

    def test_reads_proceed_while_writer_holds_lock(
        self,
        db_path: Path,
        store: PatternStore,
        write_pattern: Callable[..., PatternRecord],
    ) -> None:
        write_pattern()
        holder = sqlite3.connect(db_path, isolation_level=None)
        try:
            holder.execute("BEGIN IMMEDIATE")
            holder.execute("UPDATE user_patterns SET weight = 0.5")
            record = store.read("verify-before-done")
        finally:
            holder.execute("ROLLBACK")
            holder.close()
        assert record is not None
        assert record.weight == 1.0

    def test_translate_error_flags_locked_as_transient(self, store: PatternStore) -> None:
        err = store._translate_error(sqlite3.OperationalError("database is locked"))
        assert err.transient is True

    def test_translate_error_other_errors_not_transient(self, store: PatternStore) -> None:
        err = store._translate_error(sqlite3.IntegrityError("CHECK constraint failed"))
        assert err.transient is False


class TestQueryReadonly:
    """Tests for the guarded read-only statistics path."""

    def test_select_with_params(
        self, store: PatternStore, write_pattern: Callable[..., PatternRecord],
    ) -> None:
        write_pattern()
        rows = store.query_readonly(
            "SELECT COUNT(*) AS n FROM user_patterns WHERE category = ?",
            ["verification"],
        )
        assert rows == [{"n": 1}]

    def test_trailing_semicolon_allowed(self, store: PatternStore) -> None:
        assert store.query_readonly("SELECT 1 AS a;") == [{"a": 1}]

    def test_with_clause_allowed(self, store: PatternStore) -> None:
        assert store.query_readonly("WITH x AS (SELECT 2 AS a) SELECT a FROM x") == [{"a": 2}]

    @pytest.mark.parametrize(
        "sql",
        [
            "DELETE FROM user_patterns",
            "DROP TABLE user_patterns",
            "PRAGMA query_only=OFF",
            "SELECT 1; DROP TABLE user_patterns",
            "  update user_patterns set weight = 0",
        ],
    )
    def test_non_select_rejected(self, store: PatternStore, sql: str) -> None:
        with pytest.raises(ValidationError):
            store.query_readonly(sql)

    def test_write_disguised_behind_with_is_blocked(
        self, store: PatternStore, write_pattern: Callable[..., PatternRecord],
    ) -> None:
        write_pattern()
        with pytest.raises(PersistenceError):
            store.query_readonly("WITH x AS (SELECT 1) DELETE FROM user_patterns")
        assert store.stats().total == 1

    def test_binding_mismatch_is_validation_error(self, store: PatternStore) -> None:
        with pytest.raises(ValidationError):
            store.query_readonly("SELECT ? AS a")

    def test_hostile_value_is_just_a_value(
        self, store: PatternStore, write_pattern: Callable[..., PatternRecord],
    ) -> None:
        write_pattern()
        rows = store.query_readonly(
            "SELECT COUNT(*) AS n FROM user_patterns WHERE id = ?",
            ["x' OR '1'='1"],
        )
        assert rows == [{"n": 0}]
