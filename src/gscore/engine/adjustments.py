"""
Adjustment overlay: small, capped point deltas applied to the composite.

Calculators propose an unclamped raw delta from auxiliary price data;
apply_adjustments clamps each delta to its configured cap, sums them onto
the raw composite and keeps an audit record per adjustment.

Adjustment semantics:
- cycle: residual of the current price against a power-law trend fitted to
  prior daily closes. Residuals inside +/-30% contribute nothing; beyond
  that the raw delta is 3 points per unit of residual.
- spike: today's return in units of EWMA volatility of prior returns.
  |z| < 2 contributes nothing; beyond that the raw delta is 0.3 * z.
"""

import logging
import math
from collections.abc import Iterable, Sequence

import numpy as np
import pandas as pd

from gscore.engine.config import AdjustmentSettings
from gscore.engine.errors import Reason
from gscore.engine.types import AdjustmentInput, AdjustmentRecord
from gscore.utils.stats import ewma_volatility, fit_power_law, simple_returns
from gscore.utils.validators import clamp, is_finite_number, round_half_away

logger = logging.getLogger(__name__)

CYCLE = "cycle"
SPIKE = "spike"

CYCLE_MIN_POINTS = 365
CYCLE_RESIDUAL_THRESHOLD = 0.30
CYCLE_SCALE = 3.0

SPIKE_MIN_RETURNS = 20
SPIKE_EWMA_ALPHA = 0.1
SPIKE_Z_THRESHOLD = 2.0
SPIKE_SCALE = 0.3

WITHIN_NORMAL_RANGE = "within_normal_range"
SIGNIFICANT_DEVIATION = "significant_deviation"
WITHIN_NORMAL_VOLATILITY = "within_normal_volatility"
SIGNIFICANT_VOLATILITY = "significant_volatility"
NO_VOLATILITY_DATA = "no_volatility_data"


def _as_price_series(prices: pd.Series | np.ndarray | Sequence[float]) -> pd.Series:
    series = pd.Series(prices, dtype="object") if not isinstance(prices, pd.Series) else prices
    values = pd.to_numeric(series, errors="coerce").astype(float)
    return values[np.isfinite(values.to_numpy()) & (values.to_numpy() > 0)].reset_index(drop=True)


def cycle_adjustment(prices: pd.Series | np.ndarray | Sequence[float]) -> AdjustmentInput:
    """
    Propose the cycle adjustment from daily closes.

    The last element is the current price; the trend is fitted to all
    earlier closes and evaluated at the current day index.

    Args:
        prices: Daily closes, oldest first

    Returns:
        AdjustmentInput with raw_delta None when history is insufficient
    """
    series = _as_price_series(prices)
    if len(series) < CYCLE_MIN_POINTS + 1:
        return AdjustmentInput(CYCLE, None, Reason.INSUFFICIENT_HISTORY, {"n_points": len(series)})

    history = series.iloc[:-1]
    current = float(series.iloc[-1])
    fit = fit_power_law(history.to_numpy(), min_points=CYCLE_MIN_POINTS)
    if fit is None:
        return AdjustmentInput(CYCLE, None, Reason.INVALID_INPUT, {"n_points": len(history)})

    trend = fit.expected(len(history))
    if not is_finite_number(trend) or trend <= 0:
        return AdjustmentInput(CYCLE, None, Reason.INVALID_INPUT, {"n_points": fit.n_points})

    residual = (current - trend) / trend
    inputs = {
        "price": current,
        "trend": trend,
        "residual": residual,
        "power_law": {"a": fit.a, "b": fit.b},
        "n_points": fit.n_points,
    }
    if abs(residual) < CYCLE_RESIDUAL_THRESHOLD:
        return AdjustmentInput(CYCLE, 0.0, WITHIN_NORMAL_RANGE, inputs)
    return AdjustmentInput(CYCLE, CYCLE_SCALE * residual, SIGNIFICANT_DEVIATION, inputs)


def spike_adjustment(prices: pd.Series | np.ndarray | Sequence[float]) -> AdjustmentInput:
    """
    Propose the spike adjustment from daily closes.

    Volatility comes from returns before the current one, so a spike does
    not dampen its own z-score.

    Args:
        prices: Daily closes, oldest first (the last is the current close)

    Returns:
        AdjustmentInput with raw_delta None when history is insufficient
    """
    returns = simple_returns(_as_price_series(prices))
    if len(returns) < SPIKE_MIN_RETURNS + 1:
        return AdjustmentInput(SPIKE, None, Reason.INSUFFICIENT_HISTORY, {"n_returns": len(returns)})

    current = float(returns.iloc[-1])
    sigma = ewma_volatility(returns.iloc[:-1], period=SPIKE_MIN_RETURNS, alpha=SPIKE_EWMA_ALPHA)
    if sigma is None or sigma == 0:
        return AdjustmentInput(SPIKE, None, NO_VOLATILITY_DATA, {"r_1d": current, "sigma": sigma})

    z = current / sigma
    inputs = {"r_1d": current, "sigma": sigma, "z": z}
    if abs(z) < SPIKE_Z_THRESHOLD:
        return AdjustmentInput(SPIKE, 0.0, WITHIN_NORMAL_VOLATILITY, inputs)
    return AdjustmentInput(SPIKE, SPIKE_SCALE * z, SIGNIFICANT_VOLATILITY, inputs)


def _record(item: AdjustmentInput, settings: AdjustmentSettings) -> AdjustmentRecord:
    cap = settings.cap_for(item.key)

    if not settings.is_enabled(item.key):
        return AdjustmentRecord(item.key, item.raw_delta, 0.0, cap, Reason.DISABLED, dict(item.inputs))

    if not is_finite_number(item.raw_delta):
        reason = item.reason or Reason.MISSING_INPUTS
        return AdjustmentRecord(item.key, None, 0.0, cap, reason, dict(item.inputs))

    applied = clamp(float(item.raw_delta), -cap, cap)
    if applied != item.raw_delta:
        logger.info("Adjustment %s clamped from %+.3f to %+.3f", item.key, item.raw_delta, applied)
    return AdjustmentRecord(item.key, float(item.raw_delta), applied, cap, item.reason, dict(item.inputs))


def apply_adjustments(
    composite_raw: float | None,
    adjustment_inputs: Iterable[AdjustmentInput],
    settings: AdjustmentSettings,
) -> tuple[int | None, list[AdjustmentRecord]]:
    """
    Clamp, sum and apply adjustment deltas to the raw composite.

    Every configured adjustment gets a record: one with no input is
    recorded with applied delta 0 and reason missing_inputs. Inputs for
    adjustments absent from the config are recorded as disabled.

    Args:
        composite_raw: Unadjusted composite score (None if unavailable)
        adjustment_inputs: Proposed deltas from the calculators
        settings: Caps and switches

    Returns:
        Tuple of (final score 0-100 or None, records)
    """
    records: list[AdjustmentRecord] = []
    seen: set[str] = set()

    for item in adjustment_inputs:
        if item.key in seen:
            logger.warning("Duplicate adjustment input %s ignored", item.key)
            continue
        seen.add(item.key)
        records.append(_record(item, settings))

    for key in settings.caps:
        if key not in seen:
            records.append(_record(AdjustmentInput(key, None, Reason.MISSING_INPUTS), settings))

    if composite_raw is None:
        return None, records

    total = math.fsum(r.applied_delta for r in records)
    final = clamp(float(composite_raw) + total, 0.0, 100.0)
    return round_half_away(final), records
