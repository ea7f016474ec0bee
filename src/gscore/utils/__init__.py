"""Utility modules."""

from gscore.utils.provenance import ProvenanceEntry, build_meta, build_provenance, sanitize_error
from gscore.utils.serialize import canonical_dumps, digest, sanitize_nan_inf, to_jsonable
from gscore.utils.stats import (
    ewma_volatility,
    fit_power_law,
    logistic01,
    percentile_rank,
    simple_returns,
    tanh01,
    winsorize,
)
from gscore.utils.validators import clamp, is_finite_number, round_half_away, weights_sum_to

__all__ = [
    "ProvenanceEntry",
    "build_meta",
    "build_provenance",
    "sanitize_error",
    "canonical_dumps",
    "digest",
    "sanitize_nan_inf",
    "to_jsonable",
    "ewma_volatility",
    "fit_power_law",
    "logistic01",
    "percentile_rank",
    "simple_returns",
    "tanh01",
    "winsorize",
    "clamp",
    "is_finite_number",
    "round_half_away",
    "weights_sum_to",
]
