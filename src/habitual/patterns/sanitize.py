"""Validation and normalization of caller-supplied pattern fields.

Every externally supplied identifier or enumeration value passes through
here before it is bound into a query or joined into a filesystem path.
All functions are pure.
"""

import re
from collections.abc import Iterable
from enum import Enum
from typing import TypeVar

from habitual.core.errors import ValidationError
from habitual.patterns.models import ConfidenceTier, PatternCategory, PatternStatus

MAX_PATTERN_ID_LENGTH = 64

# Largest value an SQLite INTEGER column can hold
MAX_COUNT = 2**63 - 1

# Whitespace and underscores read as word separators; everything else
# outside [a-z0-9-] is dropped outright (including '.', '/' and '\').
_SEPARATORS = re.compile(r"[\s_]+")
_DISALLOWED = re.compile(r"[^a-z0-9-]")
_HYPHEN_RUNS = re.compile(r"-{2,}")
_WHITESPACE = re.compile(r"\s+")

_E = TypeVar("_E", bound=Enum)


def sanitize_pattern_id(raw: object) -> str:
    """Canonicalize a pattern identifier.

    The result contains only lowercase ASCII letters, digits and single
    hyphens, has no leading or trailing hyphen, and is at most
    MAX_PATTERN_ID_LENGTH characters.

    Args:
        raw: Caller-supplied identifier.

    Returns:
        The canonical identifier.

    Raises:
        ValidationError: If ``raw`` is not a string or nothing survives
            filtering.
    """
    if not isinstance(raw, str):
        raise ValidationError(
            f"pattern id must be a string, got {type(raw).__name__}", field="id"
        )
    candidate = _SEPARATORS.sub("-", raw.lower())
    candidate = _DISALLOWED.sub("", candidate)
    candidate = _HYPHEN_RUNS.sub("-", candidate).strip("-")
    candidate = candidate[:MAX_PATTERN_ID_LENGTH].rstrip("-")
    if not candidate:
        raise ValidationError(
            f"pattern id {raw!r} is empty after sanitization", field="id"
        )
    return candidate


def lookup_pattern_id(raw: object) -> str | None:
    """Sanitize an id for a read-side lookup.

    Returns None instead of raising, so lookups of hostile or malformed ids
    simply find nothing.
    """
    try:
        return sanitize_pattern_id(raw)
    except ValidationError:
        return None


def _validate_member(enum_cls: type[_E], value: object, field: str) -> _E:
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        for member in enum_cls:
            if member.value == value:
                return member
    allowed = ", ".join(m.value for m in enum_cls)
    raise ValidationError(
        f"invalid {field} {value!r}; expected one of: {allowed}", field=field
    )


def validate_category(value: object) -> PatternCategory:
    """Check exact membership in the category enumeration.

    Raises:
        ValidationError: If ``value`` is not a category.
    """
    return _validate_member(PatternCategory, value, "category")


def validate_status(value: object) -> PatternStatus:
    """Check exact membership in the status enumeration."""
    return _validate_member(PatternStatus, value, "status")


def validate_confidence(value: object) -> ConfidenceTier:
    """Check exact membership in the confidence tier enumeration."""
    return _validate_member(ConfidenceTier, value, "confidence")


def validate_count(value: object, field: str) -> int:
    """Accept a non-negative integer counter that fits in SQLite (bools are rejected)."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer, got {value!r}", field=field)
    if value < 0:
        raise ValidationError(f"{field} must be >= 0, got {value}", field=field)
    if value > MAX_COUNT:
        raise ValidationError(f"{field} must be <= {MAX_COUNT}", field=field)
    return value


def validate_text(value: object, field: str, *, required: bool = True) -> str:
    """Accept a string field, stripped of surrounding whitespace.

    Raises:
        ValidationError: If ``value`` is not a string, or is blank while
            ``required``.
    """
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string, got {value!r}", field=field)
    text = value.strip()
    if required and not text:
        raise ValidationError(f"{field} must not be empty", field=field)
    return text


def collapse_whitespace(text: str) -> str:
    """Collapse all whitespace, newlines included, to single spaces."""
    return _WHITESPACE.sub(" ", text).strip()


def normalize_session_refs(refs: Iterable[object]) -> tuple[str, ...]:
    """Turn session references into an ordered set of non-empty strings.

    Duplicates are dropped, keeping the first occurrence.

    Raises:
        ValidationError: If ``refs`` is a bare string or holds a non-string
            or blank entry.
    """
    if isinstance(refs, (str, bytes)):
        raise ValidationError(
            "session_refs must be a sequence of strings, not a single string",
            field="session_refs",
        )
    seen: dict[str, None] = {}
    for ref in refs:
        if not isinstance(ref, str) or not ref.strip():
            raise ValidationError(
                f"invalid session reference {ref!r}", field="session_refs"
            )
        seen.setdefault(ref.strip(), None)
    return tuple(seen)


__all__ = [
    "MAX_COUNT",
    "MAX_PATTERN_ID_LENGTH",
    "collapse_whitespace",
    "lookup_pattern_id",
    "normalize_session_refs",
    "sanitize_pattern_id",
    "validate_category",
    "validate_confidence",
    "validate_count",
    "validate_status",
    "validate_text",
]
