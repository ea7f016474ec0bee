"""Risk band validation and classification."""

import logging
from collections.abc import Sequence

from gscore.engine.types import RiskBand
from gscore.utils.validators import is_finite_number

logger = logging.getLogger(__name__)

SCORE_MIN = 0.0
SCORE_MAX = 100.0


def _contiguous(hi: float, next_lo: float) -> bool:
    # Shared boundary ([0,35],[35,65]) or integer partition ([0,34],[35,65])
    return next_lo == hi or next_lo == hi + 1


def validate_bands(bands: Sequence[RiskBand]) -> list[str]:
    """
    Check that bands are ordered, contiguous and cover [0, 100] exactly.

    Args:
        bands: Bands in ascending order

    Returns:
        List of violations (empty when valid)
    """
    if not bands:
        return ["No risk bands defined"]

    errors: list[str] = []
    keys = [b.key for b in bands]
    if len(set(keys)) != len(keys):
        errors.append(f"Duplicate band keys: {keys}")

    for band in bands:
        if not (is_finite_number(band.lo) and is_finite_number(band.hi)):
            errors.append(f"Band '{band.key}' has a non-numeric range {band.range}")
            return errors
        if band.lo > band.hi:
            errors.append(f"Band '{band.key}' has lo > hi: {band.range}")

    if bands[0].lo != SCORE_MIN:
        errors.append(f"First band '{bands[0].key}' starts at {bands[0].lo}, expected {SCORE_MIN:g}")
    if bands[-1].hi != SCORE_MAX:
        errors.append(f"Last band '{bands[-1].key}' ends at {bands[-1].hi}, expected {SCORE_MAX:g}")

    for current, following in zip(bands, bands[1:]):
        if not _contiguous(current.hi, following.lo):
            errors.append(
                f"Gap or overlap between bands: '{current.key}' ends at {current.hi:g}, "
                f"'{following.key}' starts at {following.lo:g}"
            )

    return errors


def classify_band(score: float | None, bands: Sequence[RiskBand]) -> RiskBand | None:
    """
    Map a score to its risk band.

    Lookup is the first band with lo <= score <= hi, so a shared boundary
    belongs to the lower band. A score matching no band falls back to the
    highest band and logs the anomaly; a valid config never triggers this.

    Args:
        score: Final composite score (None when there was insufficient data)
        bands: Validated bands in ascending order

    Returns:
        Matching RiskBand, or None for a None score
    """
    if score is None:
        return None

    for band in bands:
        if band.contains(score):
            return band

    fallback = bands[-1]
    logger.warning(
        "Score %s matched no risk band; falling back to highest band '%s'",
        score,
        fallback.key,
    )
    return fallback
