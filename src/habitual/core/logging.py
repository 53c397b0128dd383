"""Structured logging infrastructure for Habitual.

Provides structured logging using structlog with a component name bound to
every entry. Supports console output, JSON output (to a rotating file or
stderr), or both. Logs never go to stdout, which carries command output.

Example usage:
    from habitual.core.logging import configure_logging, get_logger

    # Configure once at startup (the CLI does this)
    configure_logging(level="DEBUG", format="console")

    logger = get_logger("store")
    logger.info("pattern_created", pattern_id="trust-but-verify")

    # Bind context for a scope
    run_logger = logger.bind(model="extractor-v2")
    run_logger.debug("extraction_started")
"""

from __future__ import annotations

import logging
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Literal

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Field names whose values must never reach a log sink
SENSITIVE_PATTERNS = frozenset({
    "api_key",
    "apikey",
    "api-key",
    "token",
    "secret",
    "password",
    "credential",
    "bearer",
    "authorization",
})

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR"]
LogFormat = Literal["json", "console", "both"]


def _sanitize_value(key: str, value: Any) -> Any:
    """Return "[REDACTED]" when the key names a sensitive field."""
    key_lower = key.lower()
    for pattern in SENSITIVE_PATTERNS:
        if pattern in key_lower:
            return "[REDACTED]"
    return value


def _sanitize_event_dict(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that redacts sensitive fields, one level deep."""
    sanitized: EventDict = {}
    for key, value in event_dict.items():
        if isinstance(value, dict):
            sanitized[key] = {k: _sanitize_value(k, v) for k, v in value.items()}
        else:
            sanitized[key] = _sanitize_value(key, value)
    return sanitized


def _add_timestamp(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Structlog processor that adds an ISO8601 UTC timestamp."""
    event_dict["timestamp"] = datetime.now(UTC).isoformat()
    return event_dict


class HabitualLogger:
    """Component logger wrapping structlog.

    The underlying structlog logger is fetched on every call, so loggers
    created at import time still honor a later configure_logging().
    """

    def __init__(self, component: str, **initial_context: Any) -> None:
        self._component = component
        self._context: dict[str, Any] = {"component": component, **initial_context}

    def _get_logger(self) -> structlog.stdlib.BoundLogger:
        logger: structlog.stdlib.BoundLogger = structlog.get_logger().bind(**self._context)
        return logger

    def bind(self, **context: Any) -> HabitualLogger:
        """Create a new logger with additional bound context.

        Args:
            **context: Additional context to bind (e.g., pattern_id, model).

        Returns:
            A new HabitualLogger with the additional context bound.
        """
        new_logger = HabitualLogger.__new__(HabitualLogger)
        new_logger._component = self._component
        new_logger._context = {**self._context, **context}
        return new_logger

    def debug(self, event: str, **kw: Any) -> None:
        self._get_logger().debug(event, **kw)

    def info(self, event: str, **kw: Any) -> None:
        self._get_logger().info(event, **kw)

    def warning(self, event: str, **kw: Any) -> None:
        self._get_logger().warning(event, **kw)

    def error(self, event: str, **kw: Any) -> None:
        self._get_logger().error(event, **kw)

    def exception(self, event: str, **kw: Any) -> None:
        """Log an error with traceback; call from inside an except block."""
        self._get_logger().exception(event, **kw)


def _get_processors(renderer: Processor) -> list[Processor]:
    """Build the shared processor chain ending in ``renderer``."""
    return [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        _sanitize_event_dict,
        _add_timestamp,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ]


def configure_logging(
    level: LogLevel = "INFO",
    format: LogFormat = "console",  # noqa: A002
    file_path: Path | None = None,
    max_file_size_mb: int = 10,
    backup_count: int = 3,
) -> None:
    """Configure Habitual structured logging.

    Call once at process start, before any logging occurs.

    Args:
        level: Minimum log level to capture.
        format: "console" for human-readable stderr output, "json" for
            structured output (to ``file_path`` or stderr), "both" for console
            output to stderr and to ``file_path``.
        file_path: Log file path. Required when format="both".
        max_file_size_mb: Maximum log file size before rotation (MB).
        backup_count: Number of rotated log files to keep.

    Raises:
        ValueError: If format="both" but file_path is not provided.
    """
    if format == "both" and file_path is None:
        raise ValueError("file_path is required when format='both'")

    log_level = getattr(logging, level)
    handlers: list[logging.Handler] = []

    if format in ("console", "both"):
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(log_level)
        handlers.append(console_handler)

    if format in ("json", "both"):
        if file_path is not None:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler: logging.Handler = RotatingFileHandler(
                file_path,
                maxBytes=max_file_size_mb * 1024 * 1024,
                backupCount=backup_count,
                encoding="utf-8",
            )
            file_handler.setLevel(log_level)
            handlers.append(file_handler)
        else:
            json_handler = logging.StreamHandler(sys.stderr)
            json_handler.setLevel(log_level)
            handlers.append(json_handler)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in handlers:
        root_logger.addHandler(handler)

    if format == "json":
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    # cache_logger_on_first_use=False keeps import-time loggers configurable
    structlog.configure(
        processors=_get_processors(renderer),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def get_logger(component: str, **initial_context: Any) -> HabitualLogger:
    """Get a Habitual logger for a component.

    Args:
        component: The component name (e.g., "store", "repository").
        **initial_context: Additional context to bind.

    Returns:
        A HabitualLogger instance bound to the component.
    """
    return HabitualLogger(component, **initial_context)


__all__ = [
    "HabitualLogger",
    "LogFormat",
    "LogLevel",
    "SENSITIVE_PATTERNS",
    "configure_logging",
    "get_logger",
]
