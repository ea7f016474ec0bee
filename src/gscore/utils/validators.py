"""Validation and rounding helpers shared by the scoring stages."""

import math
from collections.abc import Iterable, Mapping
from typing import Any

# Default tolerance for weight-sum invariants
WEIGHT_TOLERANCE = 1e-6

# Absorbs float noise such as 54.49999999999999 before rounding
_ROUNDING_EPSILON = 1e-9


def is_finite_number(value: Any) -> bool:
    """True for real, finite numbers. Booleans are not numbers here."""
    if value is None or isinstance(value, bool):
        return False
    try:
        return math.isfinite(value)
    except (TypeError, ValueError):
        return False


def round_half_away(value: float) -> int:
    """
    Round to the nearest integer, ties away from zero.

    Python's built-in round() uses banker's rounding (round(54.5) == 54),
    which is not the contract for score stages.

    Args:
        value: Finite number to round

    Returns:
        Rounded integer
    """
    magnitude = math.floor(abs(value) + 0.5 + _ROUNDING_EPSILON)
    return int(math.copysign(magnitude, value)) if magnitude else 0


def clamp(value: float, lo: float, hi: float) -> float:
    """Clamp value to [lo, hi]."""
    return max(lo, min(hi, value))


def weights_sum_to(
    weights: Iterable[float],
    target: float,
    tolerance: float = WEIGHT_TOLERANCE,
) -> tuple[bool, float]:
    """
    Check that weights sum to target within tolerance.

    Returns:
        Tuple of (ok, actual_sum)
    """
    total = math.fsum(weights)
    return abs(total - target) <= tolerance, total


def negative_weights(weights: Mapping[str, float]) -> list[str]:
    """Keys whose weight is negative or not a finite number."""
    return sorted(
        key for key, w in weights.items()
        if not is_finite_number(w) or w < 0
    )
