"""Pytest fixtures for Habitual tests."""

from __future__ import annotations

import logging
from collections.abc import Callable, Generator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
import structlog

from habitual.patterns.models import PatternRecord
from habitual.patterns.store import PatternStore

START = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)


class FakeClock:
    """Controllable clock; call it to get "now"."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> None:
        self.now = value


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset logging and CLI state before and after each test.

    This ensures test isolation for logging configuration.
    """
    import habitual.cli.helpers as cli_helpers

    cli_helpers.reset_state()

    # Reset structlog to default state
    structlog.reset_defaults()

    # Clear all handlers from root logger
    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    original_level = root_logger.level
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    cli_helpers.reset_state()
    structlog.reset_defaults()

    # Restore original handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(original_level)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "state" / "habitual.db"


@pytest.fixture
def store(db_path: Path, clock: FakeClock) -> PatternStore:
    """A PatternStore on a temporary database with a controllable clock."""
    return PatternStore(db_path, busy_timeout_seconds=1.0, clock=clock)


@pytest.fixture
def knowledge_root(tmp_path: Path) -> Path:
    root = tmp_path / "knowledge"
    root.mkdir()
    return root


def _pattern_fields(**overrides: Any) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "pattern_id": "verify-before-done",
        "category": "verification",
        "name": "Verify before claiming done",
        "description": "User asks for test output before accepting a fix.",
        "session_refs": ["s1"],
        "confidence": None,
        "weight": 1.0,
        "session_count": 1,
        "project_count": 1,
        "instruction": "Run the test suite and show the result before saying done.",
    }
    fields.update(overrides)
    return fields


@pytest.fixture
def pattern_fields() -> Callable[..., dict[str, Any]]:
    """Keyword arguments for PatternStore.write, with overrides."""
    return _pattern_fields


@pytest.fixture
def write_pattern(store: PatternStore) -> Callable[..., PatternRecord]:
    """Write a pattern with sensible defaults; keyword overrides per field."""

    def _write(reactivate: bool = False, **overrides: Any) -> PatternRecord:
        return store.write(**_pattern_fields(**overrides), reactivate=reactivate)

    return _write
