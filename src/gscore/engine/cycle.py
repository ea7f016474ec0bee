"""
One computation cycle: run factor units concurrently, then score.

Units run under a semaphore (GSCORE_MAX_CONCURRENCY, default 4), each with
a timeout (GSCORE_FACTOR_TIMEOUT seconds, default 30). A unit that fails or
times out falls back to its last cached result when a FactorCache is given,
otherwise it becomes an excluded FactorResult. One unit's failure never
fails the cycle.
"""

import asyncio
import logging
import os
from collections.abc import Iterable
from datetime import datetime, timezone
from time import perf_counter
from typing import Protocol

from gscore.data.cache import FactorCache
from gscore.engine.composite import compute_composite
from gscore.engine.config import EngineConfig
from gscore.engine.errors import Reason
from gscore.engine.types import AdjustmentInput, CompositeResult, FactorResult, FactorStatus
from gscore.utils.provenance import build_provenance
from gscore.utils.validators import is_finite_number

logger = logging.getLogger(__name__)

MAX_CONCURRENCY_ENV = "GSCORE_MAX_CONCURRENCY"
FACTOR_TIMEOUT_ENV = "GSCORE_FACTOR_TIMEOUT"


class FactorUnit(Protocol):
    """Anything that computes one factor (FactorModule is the usual one)."""

    key: str

    async def compute(self, config: EngineConfig, now: datetime | None = None) -> FactorResult: ...


def default_max_concurrency() -> int:
    return int(os.environ.get(MAX_CONCURRENCY_ENV, "4"))


def default_factor_timeout() -> float:
    return float(os.environ.get(FACTOR_TIMEOUT_ENV, "30"))


def _failed_result(
    key: str,
    config: EngineConfig,
    reason: Reason,
    error: BaseException,
    latency_ms: float,
) -> FactorResult:
    spec = config.weights.factors.get(key)
    return FactorResult(
        key=key,
        pillar_key=spec.pillar if spec else "",
        score=None,
        status=FactorStatus.EXCLUDED,
        last_updated_at=None,
        weight=spec.weight if spec else 0.0,
        provenance=(build_provenance(key, False, latency_ms, error),),
        reason=reason,
    )


async def _run_unit(
    unit: FactorUnit,
    config: EngineConfig,
    semaphore: asyncio.Semaphore,
    timeout_s: float,
    cache: FactorCache | None,
    now: datetime,
) -> FactorResult:
    async with semaphore:
        start = perf_counter()
        try:
            result = await asyncio.wait_for(unit.compute(config, now), timeout=timeout_s)
        except asyncio.TimeoutError:
            reason = Reason.TIMEOUT
            error: BaseException = TimeoutError(f"exceeded {timeout_s}s")
        except Exception as e:
            reason = Reason.FACTOR_ERROR
            error = e
        else:
            if cache is not None and is_finite_number(result.score):
                cache.store(result)
            return result

    latency_ms = (perf_counter() - start) * 1000
    cached = cache.load(unit.key) if cache is not None else None
    if cached is not None:
        logger.warning(
            "Factor %s failed (%s: %s); using cached result from %s",
            unit.key,
            reason.value,
            error,
            cached.last_updated_at,
        )
        return cached

    logger.warning("Factor %s failed (%s: %s); excluding it", unit.key, reason.value, error)
    return _failed_result(unit.key, config, reason, error, latency_ms)


async def run_cycle(
    units: Iterable[FactorUnit],
    config: EngineConfig,
    *,
    adjustment_inputs: Iterable[AdjustmentInput] = (),
    max_concurrency: int | None = None,
    factor_timeout_s: float | None = None,
    cache: FactorCache | None = None,
    now: datetime | None = None,
) -> CompositeResult:
    """
    Compute every factor unit concurrently, then run the scoring pipeline.

    Args:
        units: Factor units (one per factor)
        config: Validated engine configuration
        adjustment_inputs: Proposed adjustment deltas
        max_concurrency: Max units in flight (default: GSCORE_MAX_CONCURRENCY)
        factor_timeout_s: Per-unit timeout (default: GSCORE_FACTOR_TIMEOUT)
        cache: Optional fallback/store for factor results
        now: Evaluation instant shared by every unit

    Returns:
        CompositeResult for the cycle
    """
    max_concurrency = max_concurrency or default_max_concurrency()
    factor_timeout_s = factor_timeout_s or default_factor_timeout()
    if max_concurrency < 1:
        raise ValueError(f"max_concurrency must be at least 1, got {max_concurrency}")
    now = now or datetime.now(timezone.utc)

    semaphore = asyncio.Semaphore(max_concurrency)
    start = perf_counter()
    results = await asyncio.gather(
        *[_run_unit(unit, config, semaphore, factor_timeout_s, cache, now) for unit in units]
    )
    logger.info(
        "Cycle computed %d factors in %.1fms",
        len(results),
        (perf_counter() - start) * 1000,
    )

    return compute_composite(results, config, adjustment_inputs, now)
