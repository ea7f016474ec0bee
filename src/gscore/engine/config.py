"""
Engine configuration: weights, bands, normalization and freshness settings.

Configuration is an explicitly constructed, validated, immutable value. It is
loaded once per process (or per hot-reload, which builds a new instance) and
passed into the pipeline by the caller; there is no module-level mutable
config cache.

Invariants checked at construction (violations raise InvalidConfigError):
- pillar weights sum to 1.0 within tolerance
- for each pillar, the weights of its enabled factors sum to the pillar weight
- each factor's sub-weights sum to 1.0
- every factor names a known pillar; no weight is negative
- bands are ordered, contiguous and cover [0, 100]
"""

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any

import pytz

from gscore.engine.bands import validate_bands
from gscore.engine.errors import InvalidConfigError
from gscore.engine.types import RiskBand
from gscore.utils.serialize import digest as content_digest
from gscore.utils.validators import (
    WEIGHT_TOLERANCE,
    is_finite_number,
    negative_weights,
    weights_sum_to,
)

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "GSCORE_CONFIG"

NORMALIZATION_METHODS = ("percentile", "zscore")


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True)
class FactorSpec:
    """Static description of one factor."""

    key: str
    pillar: str
    weight: float
    enabled: bool = True
    label: str | None = None
    ttl_hours: float | None = None
    market_dependent: bool = False
    business_days_only: bool = False
    # "percentile" ranks the latest value; "zscore" scores its deviation from the mean
    method: str = "percentile"


@dataclass(frozen=True)
class WeightConfig:
    """Validated pillar, factor and sub-signal weights."""

    pillars: Mapping[str, float]
    factors: Mapping[str, FactorSpec]
    subweights: Mapping[str, Mapping[str, float]] = field(default_factory=dict)
    tolerance: float = WEIGHT_TOLERANCE

    def __post_init__(self) -> None:
        object.__setattr__(self, "pillars", MappingProxyType(dict(self.pillars)))
        object.__setattr__(self, "factors", MappingProxyType(dict(self.factors)))
        object.__setattr__(
            self,
            "subweights",
            MappingProxyType({k: MappingProxyType(dict(v)) for k, v in self.subweights.items()}),
        )

        violations = self.violations()
        if violations:
            raise InvalidConfigError(violations)

    def violations(self) -> list[str]:
        """List every invariant violation (empty when valid)."""
        errors: list[str] = []

        if not self.pillars:
            return ["No pillars defined"]

        bad = negative_weights(self.pillars)
        if bad:
            errors.append(f"Pillar weights must be finite and non-negative: {bad}")
        else:
            ok, total = weights_sum_to(self.pillars.values(), 1.0, self.tolerance)
            if not ok:
                errors.append(f"Pillar weights sum to {total:.6f}, expected 1.0")

        pillar_totals: dict[str, list[float]] = {key: [] for key in self.pillars}
        for key, spec in self.factors.items():
            if spec.key != key:
                errors.append(f"Factor '{key}' is registered under a different key '{spec.key}'")
            if spec.pillar not in self.pillars:
                errors.append(f"Factor '{key}' references unknown pillar '{spec.pillar}'")
                continue
            if not is_finite_number(spec.weight) or spec.weight < 0:
                errors.append(f"Factor '{key}' has invalid weight {spec.weight!r}")
                continue
            if spec.ttl_hours is not None and (
                not is_finite_number(spec.ttl_hours) or spec.ttl_hours <= 0
            ):
                errors.append(f"Factor '{key}' has invalid ttl_hours {spec.ttl_hours!r}")
            if spec.method not in NORMALIZATION_METHODS:
                errors.append(f"Factor '{key}' has unknown method {spec.method!r}")
            if spec.enabled:
                pillar_totals[spec.pillar].append(spec.weight)

        if not bad:
            for pillar_key, pillar_weight in self.pillars.items():
                ok, total = weights_sum_to(pillar_totals[pillar_key], pillar_weight, self.tolerance)
                if not ok:
                    errors.append(
                        f"Pillar '{pillar_key}' has weight {pillar_weight} "
                        f"but its enabled factors sum to {total:.6f}"
                    )

        for factor_key, subs in self.subweights.items():
            if factor_key not in self.factors:
                errors.append(f"Sub-weights defined for unknown factor '{factor_key}'")
                continue
            bad_subs = negative_weights(subs)
            if bad_subs:
                errors.append(f"Sub-weights for '{factor_key}' must be non-negative: {bad_subs}")
                continue
            ok, total = weights_sum_to(subs.values(), 1.0, self.tolerance)
            if not ok:
                errors.append(f"Sub-weights for '{factor_key}' sum to {total:.6f}, expected 1.0")

        return errors

    def enabled_factors(self, pillar: str | None = None) -> list[FactorSpec]:
        """Enabled factors in config order, optionally restricted to one pillar."""
        return [
            spec for spec in self.factors.values()
            if spec.enabled and (pillar is None or spec.pillar == pillar)
        ]

    def subweights_for(self, factor_key: str) -> Mapping[str, float]:
        return self.subweights.get(factor_key, MappingProxyType({}))

    def with_pillar_weights(self, weights: Mapping[str, float]) -> "WeightConfig":
        """
        New config with different pillar weights.

        Enabled factor weights are rescaled proportionally inside each pillar
        so the pillar/factor invariant keeps holding. Pillars missing from
        `weights` keep their current weight.

        Raises:
            InvalidConfigError: If the resulting config is invalid
        """
        unknown = sorted(set(weights) - set(self.pillars))
        if unknown:
            raise InvalidConfigError([f"Unknown pillars in override: {unknown}"])

        new_pillars = {key: float(weights.get(key, w)) for key, w in self.pillars.items()}
        new_factors: dict[str, FactorSpec] = {}
        for key, spec in self.factors.items():
            old_pillar_weight = self.pillars[spec.pillar]
            new_pillar_weight = new_pillars[spec.pillar]
            if spec.enabled and old_pillar_weight > 0:
                scaled = spec.weight * new_pillar_weight / old_pillar_weight
            else:
                scaled = spec.weight
            new_factors[key] = replace(spec, weight=scaled)

        return WeightConfig(
            pillars=new_pillars,
            factors=new_factors,
            subweights={k: dict(v) for k, v in self.subweights.items()},
            tolerance=self.tolerance,
        )


@dataclass(frozen=True)
class NormalizationSettings:
    """Percentile normalization parameters."""

    winsor: tuple[float, float] | None = (0.05, 0.95)
    logistic_k: float = 3.0
    z_scale: float = 2.0
    z_clip: float = 4.0
    min_history: int = 30
    percentile_window_days: int | None = 1825

    def violations(self) -> list[str]:
        errors: list[str] = []
        if self.winsor is not None:
            if len(self.winsor) != 2 or not all(is_finite_number(q) for q in self.winsor):
                errors.append(f"normalization.winsor must be a [lo, hi] pair of numbers, got {self.winsor}")
            elif not (0.0 <= self.winsor[0] < self.winsor[1] <= 1.0):
                errors.append(f"normalization.winsor must satisfy 0 <= lo < hi <= 1, got {self.winsor}")
        if not is_finite_number(self.logistic_k) or self.logistic_k <= 0:
            errors.append("normalization.logistic_k must be positive")
        if not is_finite_number(self.z_scale) or self.z_scale <= 0:
            errors.append("normalization.z_scale must be positive")
        if not is_finite_number(self.z_clip) or self.z_clip <= 0:
            errors.append("normalization.z_clip must be positive")
        if not _is_int(self.min_history) or self.min_history < 1:
            errors.append("normalization.min_history must be an integer of at least 1")
        if self.percentile_window_days is not None and (
            not _is_int(self.percentile_window_days) or self.percentile_window_days < 1
        ):
            errors.append("normalization.percentile_window_days must be null or an integer of at least 1")
        return errors


@dataclass(frozen=True)
class FreshnessSettings:
    """Freshness policy shared by all factors (per-factor TTLs live on FactorSpec)."""

    default_ttl_hours: float = 48.0
    # age > excluded_multiplier * ttl => excluded; between ttl and that => stale
    excluded_multiplier: float = 3.0
    market_timezone: str = "America/New_York"

    def violations(self) -> list[str]:
        errors: list[str] = []
        if not is_finite_number(self.default_ttl_hours) or self.default_ttl_hours <= 0:
            errors.append("freshness.default_ttl_hours must be positive")
        if not is_finite_number(self.excluded_multiplier) or self.excluded_multiplier < 1:
            errors.append("freshness.excluded_multiplier must be >= 1")
        try:
            pytz.timezone(str(self.market_timezone))
        except pytz.UnknownTimeZoneError:
            errors.append(f"freshness.market_timezone '{self.market_timezone}' is not a known timezone")
        return errors

    def ttl_for(self, spec: FactorSpec | None) -> float:
        if spec is not None and spec.ttl_hours is not None:
            return spec.ttl_hours
        return self.default_ttl_hours


@dataclass(frozen=True)
class AdjustmentSettings:
    """Caps (absolute points) and switches for the adjustment overlay."""

    caps: Mapping[str, float] = field(default_factory=lambda: {"cycle": 2.0, "spike": 1.5})
    enabled: Mapping[str, bool] = field(default_factory=lambda: {"cycle": True, "spike": True})

    def __post_init__(self) -> None:
        object.__setattr__(self, "caps", MappingProxyType(dict(self.caps)))
        object.__setattr__(self, "enabled", MappingProxyType(dict(self.enabled)))

    def violations(self) -> list[str]:
        bad = negative_weights(self.caps)
        if bad:
            return [f"Adjustment caps must be finite and non-negative: {bad}"]
        return []

    def cap_for(self, key: str) -> float:
        return self.caps.get(key, 0.0)

    def is_enabled(self, key: str) -> bool:
        return key in self.caps and self.enabled.get(key, True)


@dataclass(frozen=True)
class EngineConfig:
    """Everything the pipeline needs, validated as a whole."""

    weights: WeightConfig
    bands: tuple[RiskBand, ...]
    normalization: NormalizationSettings = field(default_factory=NormalizationSettings)
    freshness: FreshnessSettings = field(default_factory=FreshnessSettings)
    adjustments: AdjustmentSettings = field(default_factory=AdjustmentSettings)
    model_version: str = "v3"
    digest: str = field(init=False, default="")

    def __post_init__(self) -> None:
        object.__setattr__(self, "bands", tuple(self.bands))
        violations = (
            validate_bands(self.bands)
            + self.normalization.violations()
            + self.freshness.violations()
            + self.adjustments.violations()
        )
        if violations:
            raise InvalidConfigError(violations)
        object.__setattr__(self, "digest", content_digest(self.to_dict()))

    def to_dict(self) -> dict[str, Any]:
        """Plain-JSON form; round-trips through config_from_dict."""
        w = self.weights
        return {
            "model_version": self.model_version,
            "meta": {"tolerance": w.tolerance},
            "pillars": {key: {"weight": weight} for key, weight in w.pillars.items()},
            "factors": {
                key: {
                    "pillar": spec.pillar,
                    "weight": spec.weight,
                    "enabled": spec.enabled,
                    "label": spec.label,
                    "method": spec.method,
                    "staleness": {
                        "ttl_hours": spec.ttl_hours,
                        "market_dependent": spec.market_dependent,
                        "business_days_only": spec.business_days_only,
                    },
                }
                for key, spec in w.factors.items()
            },
            "subweights": {k: dict(v) for k, v in w.subweights.items()},
            "bands": [
                {
                    "key": b.key,
                    "label": b.label,
                    "range": [b.lo, b.hi],
                    "color": b.color,
                    "recommendation": b.recommendation,
                }
                for b in self.bands
            ],
            "normalization": {
                "winsor": list(self.normalization.winsor) if self.normalization.winsor else None,
                "logistic_k": self.normalization.logistic_k,
                "z_scale": self.normalization.z_scale,
                "z_clip": self.normalization.z_clip,
                "min_history": self.normalization.min_history,
                "percentile_window_days": self.normalization.percentile_window_days,
            },
            "freshness": {
                "default_ttl_hours": self.freshness.default_ttl_hours,
                "excluded_multiplier": self.freshness.excluded_multiplier,
                "market_timezone": self.freshness.market_timezone,
            },
            "adjustments": {
                key: {"cap": cap, "enabled": self.adjustments.enabled.get(key, True)}
                for key, cap in self.adjustments.caps.items()
            },
        }

    def with_pillar_weights(self, weights: Mapping[str, float]) -> "EngineConfig":
        """New EngineConfig with rescaled pillar weights (see WeightConfig.with_pillar_weights)."""
        return EngineConfig(
            weights=self.weights.with_pillar_weights(weights),
            bands=self.bands,
            normalization=self.normalization,
            freshness=self.freshness,
            adjustments=self.adjustments,
            model_version=self.model_version,
        )


# Pillar weights for what-if comparisons against the official weighting
PRESETS: dict[str, dict[str, float]] = {
    "official": {"liquidity": 0.35, "momentum": 0.25, "leverage": 0.20, "macro": 0.10, "social": 0.10},
    "balanced_30_30": {"liquidity": 0.30, "momentum": 0.30, "leverage": 0.20, "macro": 0.10, "social": 0.10},
    "momentum_tilted": {"liquidity": 0.25, "momentum": 0.35, "leverage": 0.20, "macro": 0.10, "social": 0.10},
}


DEFAULT_CONFIG: dict[str, Any] = {
    "model_version": "v3.3.0",
    "meta": {"tolerance": WEIGHT_TOLERANCE},
    "pillars": {
        "liquidity": {"weight": 0.35},
        "momentum": {"weight": 0.25},
        "leverage": {"weight": 0.20},
        "macro": {"weight": 0.10},
        "social": {"weight": 0.10},
    },
    "factors": {
        "stablecoins": {
            "label": "Stablecoins", "pillar": "liquidity", "weight": 0.15,
            "staleness": {"ttl_hours": 24},
        },
        "net_liquidity": {
            "label": "Net Liquidity (FRED)", "pillar": "liquidity", "weight": 0.15,
            "staleness": {"ttl_hours": 240},
        },
        "etf_flows": {
            "label": "ETF Flows", "pillar": "liquidity", "weight": 0.05,
            "staleness": {"ttl_hours": 120, "market_dependent": True, "business_days_only": True},
        },
        "trend_valuation": {
            "label": "Trend & Valuation", "pillar": "momentum", "weight": 0.20,
            "staleness": {"ttl_hours": 24},
        },
        "onchain": {
            "label": "On-chain Activity", "pillar": "momentum", "weight": 0.05,
            "staleness": {"ttl_hours": 96},
        },
        "term_leverage": {
            "label": "Term Structure & Leverage", "pillar": "leverage", "weight": 0.20,
            "staleness": {"ttl_hours": 6, "market_dependent": True},
        },
        "macro_overlay": {
            "label": "Macro Overlay", "pillar": "macro", "weight": 0.10,
            "staleness": {"ttl_hours": 24, "market_dependent": True},
        },
        "social_interest": {
            "label": "Social Interest", "pillar": "social", "weight": 0.10,
            "staleness": {"ttl_hours": 24},
        },
    },
    "subweights": {
        "trend_valuation": {"bmsb_distance": 0.6, "mayer_stretch": 0.3, "weekly_rsi": 0.1},
        "stablecoins": {"supply_growth": 0.4, "momentum": 0.4, "concentration": 0.2},
        "macro_overlay": {"dxy_20d": 0.4, "us2y_20d": 0.3, "vix_pct": 0.3},
    },
    "bands": [
        {"key": "aggressive_buy", "label": "Aggressive Buying", "range": [0, 14], "color": "green",
         "recommendation": "Historically depressed conditions."},
        {"key": "dca_buy", "label": "Regular DCA Buying", "range": [15, 34], "color": "green",
         "recommendation": "Favorable long-term conditions."},
        {"key": "moderate_buy", "label": "Moderate Buying", "range": [35, 49], "color": "yellow",
         "recommendation": "Moderate buying opportunities."},
        {"key": "hold_wait", "label": "Hold & Wait", "range": [50, 64], "color": "orange",
         "recommendation": "Hold core; buy dips selectively."},
        {"key": "reduce_risk", "label": "Reduce Risk", "range": [65, 79], "color": "red",
         "recommendation": "Trim risk; tighten risk controls."},
        {"key": "high_risk", "label": "High Risk", "range": [80, 100], "color": "red",
         "recommendation": "Crowded positioning; prone to disorderly moves."},
    ],
    "normalization": {
        "winsor": [0.05, 0.95],
        "logistic_k": 3.0,
        "z_scale": 2.0,
        "z_clip": 4.0,
        "min_history": 30,
        "percentile_window_days": 1825,
    },
    "freshness": {
        "default_ttl_hours": 48,
        "excluded_multiplier": 3.0,
        "market_timezone": "America/New_York",
    },
    "adjustments": {
        "cycle": {"cap": 2.0, "enabled": True},
        "spike": {"cap": 1.5, "enabled": True},
    },
}


def _require(raw: Mapping[str, Any], key: str, errors: list[str]) -> Any:
    value = raw.get(key)
    if value is None:
        errors.append(f"Missing required field: {key}")
    return value


def config_from_dict(raw: Mapping[str, Any]) -> EngineConfig:
    """
    Build and validate an EngineConfig from its JSON form.

    Args:
        raw: Parsed config document

    Returns:
        Validated EngineConfig

    Raises:
        InvalidConfigError: On missing fields, malformed entries or violated invariants
    """
    if not isinstance(raw, Mapping):
        raise InvalidConfigError([f"Config document must be a JSON object, got {type(raw).__name__}"])

    errors: list[str] = []
    pillars_raw = _require(raw, "pillars", errors)
    factors_raw = _require(raw, "factors", errors)
    bands_raw = _require(raw, "bands", errors)
    if errors:
        raise InvalidConfigError(errors)

    try:
        tolerance = float((raw.get("meta") or {}).get("tolerance", WEIGHT_TOLERANCE))
        pillars = {
            key: float(p["weight"] if isinstance(p, Mapping) else p)
            for key, p in pillars_raw.items()
        }
        factors = {}
        for key, f in factors_raw.items():
            staleness = f.get("staleness") or {}
            factors[key] = FactorSpec(
                key=key,
                pillar=f["pillar"],
                weight=float(f["weight"]),
                enabled=bool(f.get("enabled", True)),
                label=f.get("label"),
                ttl_hours=staleness.get("ttl_hours"),
                market_dependent=bool(staleness.get("market_dependent", False)),
                business_days_only=bool(staleness.get("business_days_only", False)),
                method=str(f.get("method", "percentile")),
            )
        subweights = {
            factor_key: {sub: float(w) for sub, w in subs.items()}
            for factor_key, subs in (raw.get("subweights") or {}).items()
        }
        bands = tuple(
            RiskBand(
                key=b["key"],
                label=b.get("label", b["key"]),
                lo=float(b["range"][0]),
                hi=float(b["range"][1]),
                color=b.get("color"),
                recommendation=b.get("recommendation"),
            )
            for b in bands_raw
        )

        norm_raw = raw.get("normalization") or {}
        winsor = norm_raw.get("winsor", (0.05, 0.95))
        normalization = NormalizationSettings(
            winsor=tuple(winsor) if winsor is not None else None,
            logistic_k=float(norm_raw.get("logistic_k", 3.0)),
            z_scale=float(norm_raw.get("z_scale", 2.0)),
            z_clip=float(norm_raw.get("z_clip", 4.0)),
            min_history=int(norm_raw.get("min_history", 30)),
            percentile_window_days=norm_raw.get("percentile_window_days", 1825),
        )

        fresh_raw = raw.get("freshness") or {}
        freshness = FreshnessSettings(
            default_ttl_hours=float(fresh_raw.get("default_ttl_hours", 48.0)),
            excluded_multiplier=float(fresh_raw.get("excluded_multiplier", 3.0)),
            market_timezone=fresh_raw.get("market_timezone", "America/New_York"),
        )

        adj_raw = raw.get("adjustments")
        if adj_raw is None:
            adjustments = AdjustmentSettings()
        else:
            adjustments = AdjustmentSettings(
                caps={key: float(a["cap"]) for key, a in adj_raw.items()},
                enabled={key: bool(a.get("enabled", True)) for key, a in adj_raw.items()},
            )

        weights = WeightConfig(
            pillars=pillars,
            factors=factors,
            subweights=subweights,
            tolerance=tolerance,
        )
        return EngineConfig(
            weights=weights,
            bands=bands,
            normalization=normalization,
            freshness=freshness,
            adjustments=adjustments,
            model_version=str(raw.get("model_version", "v3")),
        )
    except InvalidConfigError:
        raise
    except (AttributeError, KeyError, TypeError, ValueError, IndexError) as e:
        raise InvalidConfigError([f"Malformed config entry: {type(e).__name__}: {e}"]) from e


def load_config(source: str | Path | Mapping[str, Any] | None = None) -> EngineConfig:
    """
    Load and validate the engine configuration.

    Resolution order when `source` is None: the GSCORE_CONFIG environment
    variable (path to a JSON file), then the built-in DEFAULT_CONFIG.

    Args:
        source: JSON file path, parsed mapping, or None

    Returns:
        Validated EngineConfig

    Raises:
        InvalidConfigError: If the configuration violates any invariant
        FileNotFoundError: If a given path does not exist
    """
    if source is None:
        source = os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG

    if isinstance(source, Mapping):
        config = config_from_dict(source)
        origin = "mapping"
    else:
        path = Path(source)
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise InvalidConfigError([f"{path}: not valid JSON ({e})"]) from e
        config = config_from_dict(raw)
        origin = str(path)

    logger.info(
        "Loaded config model_version=%s digest=%s from %s",
        config.model_version,
        config.digest,
        origin,
    )
    return config
