"""Base class for PatternStore with connection and schema management.

This module provides the foundational `PatternStoreBase` class that handles:
- SQLite connection management with WAL mode and a bounded busy timeout
- Explicit transactions (every write is all-or-nothing)
- Translation of sqlite3 errors into PersistenceError
- Schema creation and version tracking
- A guarded read-only query path for statistics tooling

Mixins inherit from this base to add pattern, evidence, dormancy and
extraction-log operations.
"""

import contextvars
import sqlite3
from collections.abc import Generator, Sequence
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Self

from habitual.core.config import DEFAULT_DB_PATH, WEIGHT_CAP, HabitualConfig
from habitual.core.errors import PersistenceError, ValidationError
from habitual.core.logging import get_logger
from habitual.patterns.models import ConfidenceTier, PatternCategory, PatternStatus
from habitual.utils.time import Clock, utc_now

# Module-level logger for the pattern store
_logger = get_logger("patterns.store")

# Type alias for SQLite query parameters, matching sqlite3.execute().
SQLParam = str | int | float | bytes | None

DEFAULT_BUSY_TIMEOUT_SECONDS = 5.0
DEFAULT_DORMANCY_THRESHOLD_DAYS = 180.0

_READONLY_PREFIXES = ("SELECT", "WITH")


def _sql_in_list(values: Sequence[str]) -> str:
    """Render a CHECK (... IN (...)) list from enum constants (never user input)."""
    return ", ".join(f"'{v}'" for v in values)


class WhereBuilder:
    """Accumulates SQL WHERE clauses and their bound parameters.

    Clauses are joined with AND. Values always travel as bound parameters;
    only the fixed clause text is ever interpolated into SQL.

    Usage::

        wb = WhereBuilder()
        wb.add("status = ?", "active")
        wb.add("category = ?", "verification")
        where_sql, params = wb.build()
        conn.execute(f"SELECT * FROM user_patterns WHERE {where_sql}", params)
    """

    __slots__ = ("_clauses", "_params")

    def __init__(self) -> None:
        self._clauses: list[str] = []
        self._params: list[SQLParam] = []

    def add(self, clause: str, *params: SQLParam) -> None:
        """Append a WHERE clause with its bound parameters."""
        self._clauses.append(clause)
        self._params.extend(params)

    def build(self) -> tuple[str, tuple[SQLParam, ...]]:
        """Return the combined WHERE fragment and parameter tuple.

        Returns ``("1=1", ())`` when no clauses have been added.
        """
        if not self._clauses:
            return "1=1", ()
        return " AND ".join(self._clauses), tuple(self._params)


class PatternStoreBase:
    """SQLite-backed pattern store base class.

    Each operation opens its own short-lived connection and transaction,
    because callers are independent processes racing on the same file.
    WAL mode lets readers proceed while a writer holds the lock; writers
    wait up to ``busy_timeout_seconds`` and then fail with a transient
    PersistenceError.

    Attributes:
        db_path: Path to the SQLite database file.
        busy_timeout_seconds: Bounded wait on a locked database.
        dormancy_threshold_days: Default age for the dormancy sweep.
    """

    # Schema version - increment when schema changes (including new categories)
    SCHEMA_VERSION = 1

    def __init__(
        self,
        db_path: Path | None = None,
        *,
        busy_timeout_seconds: float = DEFAULT_BUSY_TIMEOUT_SECONDS,
        dormancy_threshold_days: float = DEFAULT_DORMANCY_THRESHOLD_DAYS,
        clock: Clock = utc_now,
    ) -> None:
        """Initialize the pattern store.

        Creates the database directory if needed, enables WAL, and creates
        the schema when the stored version is older than SCHEMA_VERSION.

        Args:
            db_path: Path to the SQLite database file.
                Defaults to ~/.habitual/habitual.db
            busy_timeout_seconds: Maximum wait on a locked database.
            dormancy_threshold_days: Default threshold for enforce_dormancy().
            clock: Source of "now"; tests inject a controllable clock.
        """
        self.db_path = db_path or DEFAULT_DB_PATH
        self.busy_timeout_seconds = busy_timeout_seconds
        self.dormancy_threshold_days = dormancy_threshold_days
        self._clock = clock
        self._logger = _logger
        self._batch_conn: contextvars.ContextVar[sqlite3.Connection | None] = (
            contextvars.ContextVar("_batch_conn", default=None)
        )
        self._ensure_db_exists()
        self._migrate_if_needed()

    @classmethod
    def from_config(cls, config: HabitualConfig, clock: Clock = utc_now) -> Self:
        """Build a store from the configuration snapshot."""
        return cls(
            config.store.db_path,
            busy_timeout_seconds=config.store.busy_timeout_seconds,
            dormancy_threshold_days=config.dormancy.threshold_days,
            clock=clock,
        )

    def _now(self) -> datetime:
        return self._clock()

    def _ensure_db_exists(self) -> None:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(
                f"cannot create database directory {self.db_path.parent}: {e}"
            ) from e

    def _translate_error(self, exc: sqlite3.Error) -> PersistenceError:
        """Map a sqlite3 error to PersistenceError, flagging lock contention."""
        message = str(exc).lower()
        transient = isinstance(exc, sqlite3.OperationalError) and (
            "locked" in message or "busy" in message
        )
        if transient:
            self._logger.warning(
                "database_locked",
                db_path=str(self.db_path),
                timeout_seconds=self.busy_timeout_seconds,
            )
        else:
            self._logger.error(
                "database_error",
                db_path=str(self.db_path),
                error_type=type(exc).__name__,
                error=str(exc),
            )
        return PersistenceError(
            f"database operation failed on {self.db_path}: {exc}",
            transient=transient,
        )

    def _connect(self) -> sqlite3.Connection:
        """Open a configured connection in manual-transaction mode."""
        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_seconds,
                isolation_level=None,
            )
        except sqlite3.Error as e:
            raise self._translate_error(e) from e
        try:
            conn.row_factory = sqlite3.Row
            conn.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_seconds * 1000)}")
            conn.execute("PRAGMA foreign_keys=ON")
        except sqlite3.Error as e:
            conn.close()
            raise self._translate_error(e) from e
        return conn

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            conn.execute("ROLLBACK")

    @contextmanager
    def _get_connection(
        self, write: bool = False,
    ) -> Generator[sqlite3.Connection, None, None]:
        """Run a block inside one transaction.

        If called inside a ``batch_connection()`` context, reuses the batch
        connection and its transaction (the batch commits once at the end).
        Otherwise opens a fresh connection, begins a transaction
        (``BEGIN IMMEDIATE`` for writes, so the write lock is taken up front),
        commits on success and rolls back on any exception.

        Args:
            write: Whether the block mutates data.

        Yields:
            A configured sqlite3.Connection instance.

        Raises:
            PersistenceError: On any sqlite3 error, including lock timeouts.
        """
        batch = self._batch_conn.get()
        if batch is not None:
            yield batch
            return

        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE" if write else "BEGIN DEFERRED")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            self._rollback(conn)
            raise self._translate_error(e) from e
        except BaseException:
            self._rollback(conn)
            raise
        finally:
            conn.close()

    @contextmanager
    def batch_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Group several store operations into one write transaction.

        While active, every ``_get_connection()`` call reuses the same
        connection, so an extraction run (writes, evidence, log entry) is
        committed together or not at all.

        Example::

            with store.batch_connection():
                store.write(...)
                store.add_evidence(...)
                store.append_extraction_log(...)

        Yields:
            The shared sqlite3.Connection instance.
        """
        conn = self._connect()
        token = self._batch_conn.set(conn)
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            self._rollback(conn)
            raise self._translate_error(e) from e
        except BaseException:
            self._rollback(conn)
            raise
        finally:
            self._batch_conn.reset(token)
            conn.close()

    def close(self) -> None:  # noqa: B027
        """Close any persistent resources.

        No-op: connections are managed per-operation via _get_connection().
        """

    def _migrate_if_needed(self) -> None:
        """Create the schema when the stored version is behind.

        Idempotent: running it on an up-to-date database changes nothing.
        """
        conn = self._connect()
        try:
            # journal_mode is persistent and cannot change inside a transaction
            conn.execute("PRAGMA journal_mode=WAL")
        except sqlite3.Error as e:
            raise self._translate_error(e) from e
        finally:
            conn.close()

        with self._get_connection(write=True) as conn:
            try:
                row = conn.execute("SELECT version FROM schema_version LIMIT 1").fetchone()
                current_version = row["version"] if row else 0
            except sqlite3.OperationalError:
                current_version = 0

            if current_version < self.SCHEMA_VERSION:
                self._create_schema(conn)

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create all tables and indexes (IF NOT EXISTS) and record the version."""
        self._create_schema_version_table(conn)
        self._create_patterns_table(conn)
        self._create_evidence_table(conn)
        self._create_extraction_log_table(conn)

        conn.execute("DELETE FROM schema_version")
        conn.execute(
            "INSERT INTO schema_version (version) VALUES (?)",
            (self.SCHEMA_VERSION,),
        )
        self._logger.info("schema_created", version=self.SCHEMA_VERSION)

    @staticmethod
    def _create_schema_version_table(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            )
        """)

    @staticmethod
    def _create_patterns_table(conn: sqlite3.Connection) -> None:
        categories = _sql_in_list([c.value for c in PatternCategory])
        statuses = _sql_in_list([s.value for s in PatternStatus])
        tiers = _sql_in_list([t.value for t in ConfidenceTier])
        conn.execute(f"""
            CREATE TABLE IF NOT EXISTS user_patterns (
                id TEXT PRIMARY KEY,
                category TEXT NOT NULL CHECK (category IN ({categories})),
                name TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                session_refs TEXT NOT NULL DEFAULT '[]',
                confidence TEXT NOT NULL CHECK (confidence IN ({tiers})),
                weight REAL NOT NULL DEFAULT 1.0
                    CHECK (weight >= 0.0 AND weight <= {WEIGHT_CAP}),
                session_count INTEGER NOT NULL DEFAULT 0 CHECK (session_count >= 0),
                project_count INTEGER NOT NULL DEFAULT 0 CHECK (project_count >= 0),
                instruction TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ({statuses})),
                first_seen TEXT NOT NULL,
                last_reinforced TEXT NOT NULL,
                CHECK (first_seen <= last_reinforced)
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_patterns_status ON user_patterns(status)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_patterns_category ON user_patterns(category)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_patterns_reinforced "
            "ON user_patterns(last_reinforced)"
        )

    @staticmethod
    def _create_evidence_table(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS pattern_evidence (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                pattern_id TEXT NOT NULL REFERENCES user_patterns(id),
                session_id TEXT NOT NULL,
                project TEXT NOT NULL DEFAULT '',
                snippet TEXT NOT NULL DEFAULT '',
                recorded_at TEXT NOT NULL
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_evidence_pattern "
            "ON pattern_evidence(pattern_id)"
        )

    @staticmethod
    def _create_extraction_log_table(conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS pattern_extraction_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                extracted_at TEXT NOT NULL,
                session_count INTEGER NOT NULL DEFAULT 0,
                patterns_created INTEGER NOT NULL DEFAULT 0,
                patterns_updated INTEGER NOT NULL DEFAULT 0,
                patterns_retired INTEGER NOT NULL DEFAULT 0,
                model TEXT NOT NULL
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_extraction_log_at "
            "ON pattern_extraction_log(extracted_at)"
        )

    def query_readonly(
        self,
        sql: str,
        params: Sequence[SQLParam] = (),
    ) -> list[dict[str, Any]]:
        """Run one parameterized read-only statement for counts and stats.

        The connection is switched to ``PRAGMA query_only`` so even a
        statement that slipped past the prefix check cannot modify data.
        Values must be passed through ``params``; a ``;`` anywhere in the
        statement is rejected.

        Args:
            sql: A single SELECT (or WITH ... SELECT) statement.
            params: Bound parameters for the statement's ``?`` placeholders.

        Returns:
            Rows as plain dictionaries.

        Raises:
            ValidationError: If the statement is not a single read-only query
                or its parameters do not match.
            PersistenceError: On database failure.
        """
        statement = sql.strip().rstrip(";").strip()
        if not statement.upper().startswith(_READONLY_PREFIXES):
            raise ValidationError("only SELECT statements are allowed", field="sql")
        if ";" in statement:
            raise ValidationError("only a single statement is allowed", field="sql")

        conn = self._connect()
        try:
            conn.execute("PRAGMA query_only=ON")
            rows = conn.execute(statement, tuple(params)).fetchall()
        except sqlite3.ProgrammingError as e:
            raise ValidationError(f"invalid read-only query: {e}", field="sql") from e
        except sqlite3.Error as e:
            raise self._translate_error(e) from e
        finally:
            conn.close()
        return [dict(row) for row in rows]


# Export public API
__all__ = [
    "DEFAULT_BUSY_TIMEOUT_SECONDS",
    "DEFAULT_DORMANCY_THRESHOLD_DAYS",
    "PatternStoreBase",
    "SQLParam",
    "WhereBuilder",
    "_logger",
]
