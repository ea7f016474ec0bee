"""
Composite pipeline: freshness -> aggregation -> adjustments -> band.

compute_composite is synchronous and pure given its inputs and `now`; the
async fetch side lives in gscore.engine.cycle.
"""

import logging
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from gscore.engine.adjustments import apply_adjustments
from gscore.engine.aggregator import aggregate
from gscore.engine.bands import classify_band
from gscore.engine.config import PRESETS, EngineConfig
from gscore.engine.errors import InvalidConfigError
from gscore.engine.freshness import apply_freshness
from gscore.engine.types import AdjustmentInput, CompositeResult, FactorResult

logger = logging.getLogger(__name__)


def compute_composite(
    factor_results: Iterable[FactorResult],
    config: EngineConfig,
    adjustment_inputs: Iterable[AdjustmentInput] = (),
    now: datetime | None = None,
) -> CompositeResult:
    """
    Run the scoring pipeline over one cycle's factor results.

    Args:
        factor_results: One FactorResult per factor unit
        config: Validated engine configuration
        adjustment_inputs: Proposed adjustment deltas (missing ones apply 0)
        now: Evaluation instant for freshness (default: current UTC time)

    Returns:
        CompositeResult; final_score and band are None when no pillar has
        eligible inputs
    """
    now = now or datetime.now(timezone.utc)

    factors = apply_freshness(factor_results, config, now)
    aggregated = aggregate(factors, config.weights)
    final_score, records = apply_adjustments(aggregated.composite, adjustment_inputs, config.adjustments)
    band = classify_band(final_score, config.bands)

    logger.info(
        "Composite raw=%s final=%s band=%s digest=%s",
        aggregated.composite,
        final_score,
        band.key if band else None,
        config.digest,
    )

    return CompositeResult(
        raw_score=aggregated.composite,
        adjustments=tuple(records),
        final_score=final_score,
        band=band,
        config_digest=config.digest,
        pillars=aggregated.pillars,
        factors=tuple(factors),
        as_of=now,
        model_version=config.model_version,
        reason=aggregated.reason,
    )


def compute_alternative(
    factor_results: Iterable[FactorResult],
    config: EngineConfig,
    weights: str | Mapping[str, float],
    adjustment_inputs: Iterable[AdjustmentInput] = (),
    now: datetime | None = None,
) -> CompositeResult:
    """
    Rerun the pipeline under alternative pillar weights.

    Args:
        factor_results: Factor results from the official run
        config: Official configuration
        weights: Preset name from PRESETS, or pillar weights by key
        adjustment_inputs: Same adjustment inputs as the official run
        now: Evaluation instant

    Returns:
        CompositeResult computed with the rescaled config

    Raises:
        InvalidConfigError: Unknown preset or invalid resulting weights
    """
    if isinstance(weights, str):
        if weights not in PRESETS:
            raise InvalidConfigError([f"Unknown preset '{weights}'; expected one of {sorted(PRESETS)}"])
        weights = PRESETS[weights]

    alternative = config.with_pillar_weights(weights)
    return compute_composite(list(factor_results), alternative, adjustment_inputs, now)


def _delta(previous: int | None, current: int | None) -> int | None:
    if previous is None or current is None:
        return None
    return current - previous


def diff_results(previous: CompositeResult, current: CompositeResult) -> dict[str, Any]:
    """
    Compare two cycles for downstream consumers (history, alerting).

    Returns:
        Dict with score delta, band change, per-factor score deltas and
        status changes, and whether the config changed between runs
    """
    previous_band = previous.band.key if previous.band else None
    current_band = current.band.key if current.band else None

    factor_keys = [f.key for f in current.factors]
    factor_keys += [f.key for f in previous.factors if f.key not in factor_keys]

    factors: dict[str, dict[str, Any]] = {}
    for key in factor_keys:
        before = previous.factor(key)
        after = current.factor(key)
        before_score = before.score if before else None
        after_score = after.score if after else None
        factors[key] = {
            "previous": before_score,
            "current": after_score,
            "delta": _delta(before_score, after_score),
            "previous_status": before.status.value if before else None,
            "current_status": after.status.value if after else None,
        }

    return {
        "score_delta": _delta(previous.final_score, current.final_score),
        "previous_score": previous.final_score,
        "current_score": current.final_score,
        "band_changed": previous_band != current_band,
        "previous_band": previous_band,
        "current_band": current_band,
        "config_changed": previous.config_digest != current.config_digest,
        "factors": factors,
    }
