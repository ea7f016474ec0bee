"""
Normalizer: raw series + latest value -> bounded 0-100 risk score.

Percentile rank of the latest value within its history (optionally
winsorized), squashed through a logistic centered at the median, scaled
to an integer score. A percentile-based score is comparable across
signals with unrelated units, which is what lets the aggregator weight
them against each other.
"""

import math
from collections.abc import Sequence

import numpy as np
import pandas as pd

from gscore.engine.errors import Reason
from gscore.utils.stats import (
    finite_values,
    logistic01,
    percentile_rank,
    tanh01,
    winsorize,
    z_score,
)
from gscore.utils.validators import clamp, is_finite_number, round_half_away

DEFAULT_LOGISTIC_K = 3.0
DEFAULT_MIN_HISTORY = 30


def normalize_with_reason(
    series: pd.Series | np.ndarray | Sequence[float],
    latest: float,
    *,
    invert: bool = False,
    k: float = DEFAULT_LOGISTIC_K,
    winsor: tuple[float, float] | None = None,
    min_history: int = DEFAULT_MIN_HISTORY,
) -> tuple[int | None, Reason | None]:
    """
    Normalize latest against series and report why a score is missing.

    Args:
        series: Historical values (non-finite entries are ignored)
        latest: Most recent value
        invert: True when higher raw values imply lower risk
        k: Logistic steepness
        winsor: Optional (p_lo, p_hi) quantile clip applied to the series
        min_history: Minimum finite history points required

    Returns:
        Tuple of (score 0-100 or None, reason or None)
    """
    if not is_finite_number(latest):
        return None, Reason.INVALID_INPUT

    history = finite_values(series)
    if len(history) == 0:
        return None, Reason.INVALID_INPUT
    if len(history) < min_history:
        return None, Reason.INSUFFICIENT_HISTORY

    if winsor is not None:
        history = winsorize(history, winsor)

    p = percentile_rank(history, float(latest))
    if math.isnan(p):
        return None, Reason.INVALID_INPUT

    if invert:
        p = 1.0 - p

    score01 = logistic01(2.0 * p - 1.0, k)
    return int(clamp(round_half_away(100.0 * score01), 0, 100)), None


def normalize(
    series: pd.Series | np.ndarray | Sequence[float],
    latest: float,
    *,
    invert: bool = False,
    k: float = DEFAULT_LOGISTIC_K,
    winsor: tuple[float, float] | None = None,
    min_history: int = DEFAULT_MIN_HISTORY,
) -> int | None:
    """Percentile-logistic risk score in [0, 100], or None (see normalize_with_reason)."""
    score, _ = normalize_with_reason(
        series,
        latest,
        invert=invert,
        k=k,
        winsor=winsor,
        min_history=min_history,
    )
    return score


def risk_from_z(
    z: float,
    *,
    direction: int = 1,
    scale: float = 2.0,
    clip: float = 4.0,
) -> int | None:
    """
    Map a z-score to a 0-100 risk score via tanh.

    Used by factors that score deviation from a mean rather than rank.

    Args:
        z: Z-score
        direction: 1 if positive deviations raise risk, -1 otherwise
        scale: tanh scale
        clip: Symmetric clip applied to z before mapping

    Returns:
        Score 0-100, or None for a non-finite z
    """
    if not is_finite_number(z):
        return None
    if direction not in (1, -1):
        raise ValueError(f"direction must be 1 or -1, got {direction}")

    clipped = clamp(z, -clip, clip)
    return int(clamp(round_half_away(100.0 * tanh01(direction * clipped, scale)), 0, 100))


def normalize_z_with_reason(
    series: pd.Series | np.ndarray | Sequence[float],
    latest: float,
    *,
    invert: bool = False,
    scale: float = 2.0,
    clip: float = 4.0,
    min_history: int = DEFAULT_MIN_HISTORY,
) -> tuple[int | None, Reason | None]:
    """Deviation-based counterpart of normalize_with_reason: z of latest against history, through risk_from_z."""
    if not is_finite_number(latest):
        return None, Reason.INVALID_INPUT

    history = finite_values(series)
    if len(history) == 0:
        return None, Reason.INVALID_INPUT
    if len(history) < min_history:
        return None, Reason.INSUFFICIENT_HISTORY

    z = z_score(float(latest), history)
    score = risk_from_z(z, direction=-1 if invert else 1, scale=scale, clip=clip)
    if score is None:
        # flat history
        return None, Reason.INVALID_INPUT
    return score, None
