"""Confidence tiers and weight arithmetic.

Confidence comes from corroboration breadth: seeing a habit across two
projects is stronger evidence than seeing it many times in one.

Weight only ever moves up, through explicit boosts, and never past
WEIGHT_CAP. Weight has no time-based decay; time affects status
(dormancy), not weight.
"""

import math

from habitual.core.config import WEIGHT_CAP
from habitual.core.errors import ValidationError
from habitual.patterns.models import ConfidenceTier
from habitual.patterns.sanitize import validate_count

WEIGHT_FLOOR = 0.0

# Thresholds for confidence_tier()
HIGH_PROJECT_COUNT = 2
HIGH_SESSION_COUNT = 4
MEDIUM_SESSION_COUNT = 2


def confidence_tier(session_count: int, project_count: int) -> ConfidenceTier:
    """Map corroboration counts to a confidence tier.

    - 2+ projects: high, regardless of sessions
    - otherwise 4+ sessions: high
    - otherwise 2+ sessions: medium
    - otherwise: low

    Raises:
        ValidationError: If either count is negative or not an integer.
    """
    session_count = validate_count(session_count, "session_count")
    project_count = validate_count(project_count, "project_count")

    if project_count >= HIGH_PROJECT_COUNT:
        return ConfidenceTier.HIGH
    if session_count >= HIGH_SESSION_COUNT:
        return ConfidenceTier.HIGH
    if session_count >= MEDIUM_SESSION_COUNT:
        return ConfidenceTier.MEDIUM
    return ConfidenceTier.LOW


def _finite_float(value: object, field: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{field} must be a number, got {value!r}", field=field)
    try:
        result = float(value)
    except OverflowError:
        raise ValidationError(f"{field} is out of range", field=field) from None
    if not math.isfinite(result):
        raise ValidationError(f"{field} must be finite, got {value!r}", field=field)
    return result


def clamp_weight(value: object) -> float:
    """Clamp a weight into [WEIGHT_FLOOR, WEIGHT_CAP].

    Raises:
        ValidationError: If ``value`` is not a finite number.
    """
    weight = _finite_float(value, "weight")
    return max(WEIGHT_FLOOR, min(weight, WEIGHT_CAP))


def validate_boost_delta(delta: object) -> float:
    """Accept a finite, non-negative boost amount.

    Raises:
        ValidationError: If ``delta`` is negative or not a finite number.
    """
    amount = _finite_float(delta, "delta")
    if amount < 0:
        raise ValidationError(f"boost delta must be >= 0, got {amount}", field="delta")
    return amount


def boost_weight(current: float, delta: object) -> float:
    """Increase a weight by ``delta``, capped at WEIGHT_CAP.

    Raises:
        ValidationError: If ``delta`` is negative or not a finite number.
    """
    return min(clamp_weight(current) + validate_boost_delta(delta), WEIGHT_CAP)


__all__ = [
    "WEIGHT_CAP",
    "WEIGHT_FLOOR",
    "boost_weight",
    "clamp_weight",
    "confidence_tier",
    "validate_boost_delta",
]
