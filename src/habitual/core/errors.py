"""Exception hierarchy for Habitual.

All errors inherit from HabitualError, so callers can catch broad
(HabitualError) or narrow (e.g., SecurityError). The core raises these and
never swallows them; the entry point decides logging, exit codes and retry.
"""

from __future__ import annotations

from pathlib import Path


class HabitualError(Exception):
    """Base exception for all Habitual errors."""


class ValidationError(HabitualError):
    """Raised when caller input is rejected before touching storage.

    Examples: category outside the enumeration, an id that sanitizes to
    nothing, a NaN weight. Safe to retry once the input is fixed.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class NotFoundError(HabitualError):
    """Raised when an operation requires a pattern that does not exist."""

    def __init__(self, message: str, pattern_id: str | None = None) -> None:
        super().__init__(message)
        self.pattern_id = pattern_id


class PersistenceError(HabitualError):
    """Raised when the database or lock file cannot complete an operation.

    ``transient`` is True for lock contention and timeouts, where the caller
    may retry with backoff. Constraint violations and I/O failures are not
    transient.
    """

    def __init__(self, message: str, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class SecurityError(HabitualError):
    """Raised when a filesystem target is a symlink or escapes its root.

    Always fatal to the operation: nothing is written.
    """

    def __init__(self, message: str, path: Path | None = None) -> None:
        super().__init__(message)
        self.path = path


__all__ = [
    "HabitualError",
    "NotFoundError",
    "PersistenceError",
    "SecurityError",
    "ValidationError",
]
