"""Extraction-run audit log mixin for PatternStore."""

import sqlite3
from collections.abc import Callable
from contextlib import AbstractContextManager

from habitual.core.errors import PersistenceError, ValidationError
from habitual.core.logging import HabitualLogger
from habitual.patterns.models import ExtractionLogEntry
from habitual.patterns.sanitize import validate_count, validate_text
from habitual.utils.time import format_timestamp, parse_timestamp


class ExtractionLogMixin:
    """Mixin providing the extraction audit log.

    This mixin requires that the composed class provides:
    - _get_connection(): Context manager yielding sqlite3.Connection
    """

    _logger: HabitualLogger
    _get_connection: Callable[..., AbstractContextManager[sqlite3.Connection]]

    def append_extraction_log(self, entry: ExtractionLogEntry) -> int:
        """Record one extraction run.

        Args:
            entry: The run summary. Its ``id`` is ignored.

        Returns:
            The id assigned to the stored row.

        Raises:
            ValidationError: If a count is negative or the model is blank.
        """
        values = (
            format_timestamp(entry.extracted_at),
            validate_count(entry.session_count, "session_count"),
            validate_count(entry.patterns_created, "patterns_created"),
            validate_count(entry.patterns_updated, "patterns_updated"),
            validate_count(entry.patterns_retired, "patterns_retired"),
            validate_text(entry.model, "model"),
        )

        with self._get_connection(write=True) as conn:
            cursor = conn.execute(
                """
                INSERT INTO pattern_extraction_log (
                    extracted_at, session_count, patterns_created,
                    patterns_updated, patterns_retired, model
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                values,
            )
            log_id = cursor.lastrowid or 0

        self._logger.info(
            "extraction_logged",
            log_id=log_id,
            session_count=entry.session_count,
            patterns_created=entry.patterns_created,
            patterns_updated=entry.patterns_updated,
            patterns_retired=entry.patterns_retired,
            model=entry.model,
        )
        return log_id

    def get_extraction_log(self, limit: int = 20) -> list[ExtractionLogEntry]:
        """Get the most recent extraction runs, newest first."""
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValidationError(
                f"limit must be a positive integer, got {limit!r}", field="limit"
            )

        with self._get_connection() as conn:
            cursor = conn.execute(
                """
                SELECT * FROM pattern_extraction_log
                ORDER BY extracted_at DESC, id DESC
                LIMIT ?
                """,
                (limit,),
            )
            return [self._row_to_extraction_log_entry(row) for row in cursor.fetchall()]

    @staticmethod
    def _row_to_extraction_log_entry(row: sqlite3.Row) -> ExtractionLogEntry:
        try:
            return ExtractionLogEntry(
                id=row["id"],
                extracted_at=parse_timestamp(row["extracted_at"]),
                session_count=row["session_count"],
                patterns_created=row["patterns_created"],
                patterns_updated=row["patterns_updated"],
                patterns_retired=row["patterns_retired"],
                model=row["model"],
            )
        except ValueError as e:
            raise PersistenceError(f"corrupt extraction log row {row['id']!r}: {e}") from e
