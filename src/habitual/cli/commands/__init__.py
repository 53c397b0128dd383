"""CLI command modules."""

from .patterns import (
    boost,
    context,
    enforce_dormancy,
    extraction_log,
    list_patterns,
    mirror,
    retire,
    show,
    stats,
)

__all__ = [
    "boost",
    "context",
    "enforce_dormancy",
    "extraction_log",
    "list_patterns",
    "mirror",
    "retire",
    "show",
    "stats",
]
