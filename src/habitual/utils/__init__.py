"""Shared utilities for Habitual."""

from habitual.utils.time import format_timestamp, parse_timestamp, utc_now

__all__ = ["format_timestamp", "parse_timestamp", "utc_now"]
