"""
Factor units: raw signals -> normalized sub-signal scores -> FactorResult.

A FactorModule binds a factor key to one SignalSource per sub-signal. It
fetches all sources concurrently, records provenance for each fetch and
hands the signals to build_factor_result, which does the scoring.
"""

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from time import perf_counter

import pandas as pd

from gscore.data.signal import Signal, SignalSource
from gscore.engine.config import EngineConfig
from gscore.engine.errors import Reason
from gscore.engine.freshness import classify_freshness
from gscore.engine.normalizer import normalize_with_reason, normalize_z_with_reason
from gscore.engine.subweights import aggregate_factor
from gscore.engine.types import FactorResult, FactorStatus, SubSignalScore
from gscore.utils.provenance import ProvenanceEntry, build_provenance

logger = logging.getLogger(__name__)


def _trim_window(series: pd.Series, window_days: int | None) -> pd.Series:
    if window_days is None or series.empty:
        return series
    cutoff = series.index[-1] - timedelta(days=window_days)
    return series[series.index >= cutoff]


def score_signal(
    signal: Signal | None,
    config: EngineConfig,
    invert: bool = False,
    method: str = "percentile",
) -> tuple[int | None, Reason | None]:
    """Normalize the latest value of a signal against its own windowed history (rank or z-score)."""
    if signal is None:
        return None, Reason.MISSING_INPUTS

    series = _trim_window(signal.to_series(), config.normalization.percentile_window_days)
    if series.empty:
        return None, Reason.INVALID_INPUT

    settings = config.normalization
    if method == "zscore":
        return normalize_z_with_reason(
            series,
            float(series.iloc[-1]),
            invert=invert,
            scale=settings.z_scale,
            clip=settings.z_clip,
            min_history=settings.min_history,
        )
    return normalize_with_reason(
        series,
        float(series.iloc[-1]),
        invert=invert,
        k=settings.logistic_k,
        winsor=settings.winsor,
        min_history=settings.min_history,
    )


def build_factor_result(
    key: str,
    config: EngineConfig,
    signals: Mapping[str, Signal | None],
    *,
    invert: Mapping[str, bool] | None = None,
    provenance: Sequence[ProvenanceEntry] = (),
    now: datetime | None = None,
) -> FactorResult:
    """
    Score a factor from its sub-signals.

    Sub-signals are scored independently and combined with the configured
    sub-weights, re-normalized over those that produced a score. A factor
    without configured sub-weights weighs its signals equally. The factor's
    last update is the oldest last timestamp among contributing signals.

    Args:
        key: Factor key (must exist in config)
        config: Engine configuration
        signals: Signal (or None if unavailable) by sub-signal key
        invert: Sub-signal keys where higher raw values mean lower risk
        provenance: Fetch records to attach
        now: Evaluation instant for the initial freshness status

    Returns:
        FactorResult; excluded with a reason when no sub-signal scored

    Raises:
        KeyError: If the factor is not in the config
    """
    spec = config.weights.factors.get(key)
    if spec is None:
        raise KeyError(f"Unknown factor '{key}'")

    invert = invert or {}
    weights = dict(config.weights.subweights_for(key)) or {sub: 1.0 for sub in signals}

    sub_scores: list[SubSignalScore] = []
    timestamps: list[datetime] = []
    for sub_key, weight in weights.items():
        signal = signals.get(sub_key)
        score, reason = score_signal(signal, config, invert.get(sub_key, False), spec.method)
        sub_scores.append(SubSignalScore(sub_key, score, weight, reason))
        if score is not None and signal.last_timestamp is not None:
            timestamps.append(signal.last_timestamp)

    score = aggregate_factor(sub_scores, weights)

    if score is None:
        reasons = [s.reason for s in sub_scores if s.reason is not None]
        reason = reasons[0] if len(set(reasons)) == 1 else Reason.NO_ELIGIBLE_INPUTS
        return FactorResult(
            key=key,
            pillar_key=spec.pillar,
            score=None,
            status=FactorStatus.EXCLUDED,
            last_updated_at=None,
            weight=spec.weight,
            sub_scores=tuple(sub_scores),
            provenance=tuple(provenance),
            reason=reason,
        )

    last_updated_at = min(timestamps) if timestamps else None
    check = classify_freshness(
        last_updated_at,
        config.freshness.ttl_for(spec),
        now=now,
        excluded_multiplier=config.freshness.excluded_multiplier,
        market_dependent=spec.market_dependent,
        business_days_only=spec.business_days_only,
        market_timezone=config.freshness.market_timezone,
    )
    result = FactorResult(
        key=key,
        pillar_key=spec.pillar,
        score=score,
        status=FactorStatus.FRESH,
        last_updated_at=last_updated_at,
        weight=spec.weight,
        sub_scores=tuple(sub_scores),
        provenance=tuple(provenance),
    )
    if check.status is FactorStatus.FRESH:
        return result
    return result.with_status(check.status, check.reason)


@dataclass
class FactorModule:
    """
    One factor's unit of work in a computation cycle.

    Attributes:
        key: Factor key in the config
        sources: SignalSource by sub-signal key
        invert: Sub-signal keys where higher raw values mean lower risk
    """

    key: str
    sources: Mapping[str, SignalSource]
    invert: Mapping[str, bool] = field(default_factory=dict)

    async def _fetch(self, sub_key: str, source: SignalSource) -> tuple[str, Signal | None, ProvenanceEntry]:
        start = perf_counter()
        try:
            signal = await source.fetch()
        except Exception as e:
            latency = (perf_counter() - start) * 1000
            logger.warning("Factor %s: source %s failed: %s", self.key, source.name, e)
            return sub_key, None, build_provenance(source.name, False, latency, e)

        latency = (perf_counter() - start) * 1000
        ok = not signal.to_series().empty
        return sub_key, signal, build_provenance(
            source.name, ok, latency, None if ok else "empty series"
        )

    async def compute(self, config: EngineConfig, now: datetime | None = None) -> FactorResult:
        """
        Fetch every source concurrently and score the factor.

        Source failures are recorded in provenance and leave that sub-signal
        missing; they never fail the factor as a whole.
        """
        outcomes = await asyncio.gather(
            *[self._fetch(sub_key, source) for sub_key, source in self.sources.items()]
        )
        signals = {sub_key: signal for sub_key, signal, _ in outcomes}
        provenance = [entry for _, _, entry in outcomes]
        return build_factor_result(
            self.key,
            config,
            signals,
            invert=self.invert,
            provenance=provenance,
            now=now or datetime.now(timezone.utc),
        )
