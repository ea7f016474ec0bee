"""Sub-signal aggregation inside a factor, with re-normalization over available inputs."""

import math
from collections.abc import Iterable, Mapping
from typing import Any

from gscore.engine.types import SubSignalScore
from gscore.utils.validators import is_finite_number, round_half_away

SubScores = Mapping[str, float | None] | Iterable[SubSignalScore]


def renormalize_weights(available: Iterable[str], weights: Mapping[str, float]) -> dict[str, float]:
    """
    Rescale the weights of the available keys so they sum to 1.

    Keys without a configured weight are dropped. Returns an empty dict when
    nothing is available or the available weights sum to zero.

    Args:
        available: Keys that have a usable value
        weights: Configured weights by key

    Returns:
        Renormalized weights by key, in the order of `available`
    """
    present = {key: float(weights[key]) for key in available if key in weights}
    total = math.fsum(present.values())
    if total <= 0:
        return {}
    return {key: w / total for key, w in present.items()}


def _as_mapping(sub_scores: SubScores) -> Mapping[str, float | None]:
    if isinstance(sub_scores, Mapping):
        return sub_scores
    return {s.key: s.score for s in sub_scores}


def _available(sub_scores: Mapping[str, float | None], weights: Mapping[str, float]) -> list[str]:
    return [
        key for key, score in sub_scores.items()
        if is_finite_number(score) and key in weights
    ]


def aggregate_factor(
    sub_scores: SubScores,
    configured_weights: Mapping[str, float],
) -> int | None:
    """
    Combine sub-signal scores into one factor score.

    Only sub-signals with a score and a configured weight take part; their
    weights are re-normalized over that subset so a missing sub-signal never
    drags the factor toward zero.

    Args:
        sub_scores: SubSignalScores, or score (0-100) or None by sub-signal key
        configured_weights: Configured sub-weights by key

    Returns:
        Factor score 0-100, or None if no sub-signal is available
    """
    sub_scores = _as_mapping(sub_scores)
    normalized = renormalize_weights(_available(sub_scores, configured_weights), configured_weights)
    if not normalized:
        return None

    total = math.fsum(float(sub_scores[key]) * w for key, w in normalized.items())
    return round_half_away(total)


def sub_signal_contributions(
    sub_scores: SubScores,
    configured_weights: Mapping[str, float],
) -> list[dict[str, Any]]:
    """
    Per-sub-signal breakdown of a factor score, largest contribution first.

    Returns:
        List of {key, score, weight, contribution} using re-normalized weights
    """
    sub_scores = _as_mapping(sub_scores)
    normalized = renormalize_weights(_available(sub_scores, configured_weights), configured_weights)
    rows = [
        {
            "key": key,
            "score": sub_scores[key],
            "weight": w,
            "contribution": float(sub_scores[key]) * w,
        }
        for key, w in normalized.items()
    ]
    rows.sort(key=lambda row: row["contribution"], reverse=True)
    return rows
