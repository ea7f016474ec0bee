"""Composite risk scoring engine."""

from gscore.engine.adjustments import apply_adjustments, cycle_adjustment, spike_adjustment
from gscore.engine.aggregator import aggregate
from gscore.engine.bands import classify_band, validate_bands
from gscore.engine.composite import compute_alternative, compute_composite, diff_results
from gscore.engine.config import (
    DEFAULT_CONFIG,
    PRESETS,
    AdjustmentSettings,
    EngineConfig,
    FactorSpec,
    FreshnessSettings,
    NormalizationSettings,
    WeightConfig,
    config_from_dict,
    load_config,
)
from gscore.engine.cycle import run_cycle
from gscore.engine.errors import GScoreError, InvalidConfigError, Reason
from gscore.engine.factor import FactorModule, build_factor_result
from gscore.engine.freshness import FreshnessCheck, apply_freshness, classify_freshness
from gscore.engine.normalizer import (
    normalize,
    normalize_with_reason,
    normalize_z_with_reason,
    risk_from_z,
)
from gscore.engine.subweights import aggregate_factor, renormalize_weights, sub_signal_contributions
from gscore.engine.types import (
    AdjustmentInput,
    AdjustmentRecord,
    AggregateResult,
    CompositeResult,
    FactorResult,
    FactorStatus,
    PillarAggregate,
    RiskBand,
    SubSignalScore,
)

__all__ = [
    # Pipeline
    "normalize",
    "normalize_with_reason",
    "normalize_z_with_reason",
    "risk_from_z",
    "classify_freshness",
    "apply_freshness",
    "FreshnessCheck",
    "aggregate_factor",
    "renormalize_weights",
    "sub_signal_contributions",
    "aggregate",
    "apply_adjustments",
    "cycle_adjustment",
    "spike_adjustment",
    "classify_band",
    "validate_bands",
    "compute_composite",
    "compute_alternative",
    "diff_results",
    "run_cycle",
    "FactorModule",
    "build_factor_result",
    # Config
    "DEFAULT_CONFIG",
    "PRESETS",
    "AdjustmentSettings",
    "EngineConfig",
    "FactorSpec",
    "FreshnessSettings",
    "NormalizationSettings",
    "WeightConfig",
    "config_from_dict",
    "load_config",
    # Errors
    "GScoreError",
    "InvalidConfigError",
    "Reason",
    # Records
    "AdjustmentInput",
    "AdjustmentRecord",
    "AggregateResult",
    "CompositeResult",
    "FactorResult",
    "FactorStatus",
    "PillarAggregate",
    "RiskBand",
    "SubSignalScore",
]
