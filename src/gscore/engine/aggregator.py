"""
Hierarchical weighted aggregation: factors -> pillars -> composite.

Each level keeps only inputs that have a score, re-normalizes their weights
over that subset and rounds half away from zero before the next level
consumes the result. A level with nothing eligible yields None; it never
raises.
"""

import logging
import math
from collections.abc import Iterable

from gscore.engine.config import WeightConfig
from gscore.engine.errors import Reason
from gscore.engine.subweights import renormalize_weights
from gscore.engine.types import AggregateResult, FactorResult, PillarAggregate
from gscore.utils.validators import round_half_away

logger = logging.getLogger(__name__)


def _weighted_score(scores: dict[str, float], weights: dict[str, float]) -> int | None:
    normalized = renormalize_weights(scores.keys(), weights)
    if not normalized:
        return None
    return round_half_away(math.fsum(scores[key] * w for key, w in normalized.items()))


def _index_results(
    factor_results: Iterable[FactorResult],
    weights: WeightConfig,
) -> dict[str, FactorResult]:
    by_key: dict[str, FactorResult] = {}
    for result in factor_results:
        spec = weights.factors.get(result.key)
        if spec is None:
            logger.warning("Ignoring factor %s: not in config", result.key)
            continue
        if not spec.enabled:
            logger.info("Ignoring factor %s: disabled in config", result.key)
            continue
        if result.key in by_key:
            logger.warning("Duplicate result for factor %s; keeping the last one", result.key)
        by_key[result.key] = result
    return by_key


def aggregate_pillar(
    pillar_key: str,
    results: dict[str, FactorResult],
    weights: WeightConfig,
) -> PillarAggregate:
    """Aggregate the eligible factors of one pillar."""
    contributing: list[FactorResult] = []
    excluded: list[str] = []
    factor_weights: dict[str, float] = {}
    scores: dict[str, float] = {}

    for spec in weights.enabled_factors(pillar_key):
        result = results.get(spec.key)
        if result is None or not result.is_eligible:
            excluded.append(spec.key)
            continue
        contributing.append(result)
        factor_weights[spec.key] = spec.weight
        scores[spec.key] = float(result.score)

    score = _weighted_score(scores, factor_weights)
    return PillarAggregate(
        key=pillar_key,
        score=score,
        weight=weights.pillars[pillar_key],
        contributing_factors=tuple(contributing) if score is not None else (),
        excluded_factors=tuple(excluded),
        reason=Reason.NO_ELIGIBLE_INPUTS if score is None else None,
    )


def aggregate(factor_results: Iterable[FactorResult], weights: WeightConfig) -> AggregateResult:
    """
    Aggregate factor results into pillar scores and an unadjusted composite.

    Args:
        factor_results: Factor results after freshness classification
        weights: Validated weight configuration

    Returns:
        AggregateResult with pillars in config order; composite is None
        (reason no_eligible_inputs) when no pillar has a score
    """
    results = _index_results(factor_results, weights)
    pillars = tuple(aggregate_pillar(key, results, weights) for key in weights.pillars)

    pillar_scores = {p.key: float(p.score) for p in pillars if p.score is not None}
    composite = _weighted_score(pillar_scores, dict(weights.pillars))

    if composite is None:
        logger.warning("No pillar has eligible inputs; composite is unavailable")
        return AggregateResult(pillars=pillars, composite=None, reason=Reason.NO_ELIGIBLE_INPUTS)

    return AggregateResult(pillars=pillars, composite=composite)
