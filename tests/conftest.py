"""Pytest configuration and fixtures."""

import copy
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from gscore.data.signal import Signal
from gscore.engine.config import DEFAULT_CONFIG, EngineConfig, config_from_dict
from gscore.engine.types import FactorResult, FactorStatus

# Wednesday, mid-session in New York
NOW = datetime(2024, 1, 10, 17, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    """Fixed evaluation instant."""
    return NOW


@pytest.fixture
def default_config_dict() -> dict[str, Any]:
    """Deep copy of the built-in config document, safe to mutate."""
    return copy.deepcopy(DEFAULT_CONFIG)


@pytest.fixture
def default_config() -> EngineConfig:
    """Validated built-in config."""
    return config_from_dict(DEFAULT_CONFIG)


@pytest.fixture
def simple_config_dict() -> dict[str, Any]:
    """Three pillars, one factor each, Low/Medium/High bands."""
    return {
        "model_version": "test",
        "pillars": {"a": {"weight": 0.3}, "b": {"weight": 0.4}, "c": {"weight": 0.3}},
        "factors": {
            "fa": {"pillar": "a", "weight": 0.3, "staleness": {"ttl_hours": 24}},
            "fb": {"pillar": "b", "weight": 0.4, "staleness": {"ttl_hours": 24}},
            "fc": {"pillar": "c", "weight": 0.3, "staleness": {"ttl_hours": 24}},
        },
        "subweights": {"fa": {"x": 0.6, "y": 0.4}},
        "bands": [
            {"key": "low", "label": "Low", "range": [0, 34]},
            {"key": "medium", "label": "Medium", "range": [35, 65]},
            {"key": "high", "label": "High", "range": [66, 100]},
        ],
        "normalization": {"winsor": None, "min_history": 30},
    }


@pytest.fixture
def simple_config(simple_config_dict: dict[str, Any]) -> EngineConfig:
    """Validated three-pillar config."""
    return config_from_dict(simple_config_dict)


@pytest.fixture
def make_result(now: datetime) -> Callable[..., FactorResult]:
    """Factory for FactorResults updated one hour before `now`."""

    def _make(
        key: str,
        pillar_key: str,
        score: int | None,
        status: FactorStatus = FactorStatus.FRESH,
        age_hours: float = 1.0,
        weight: float = 0.0,
        reason: str | None = None,
    ) -> FactorResult:
        return FactorResult(
            key=key,
            pillar_key=pillar_key,
            score=score,
            status=status,
            last_updated_at=now - timedelta(hours=age_hours),
            weight=weight,
            reason=reason,
        )

    return _make


@pytest.fixture
def default_results(make_result: Callable[..., FactorResult], default_config: EngineConfig) -> list[FactorResult]:
    """One fresh result scoring 50 for every default factor."""
    return [
        make_result(spec.key, spec.pillar, 50, weight=spec.weight)
        for spec in default_config.weights.factors.values()
    ]


@pytest.fixture
def make_signal(now: datetime) -> Callable[..., Signal]:
    """Factory for daily signals whose last point is one hour before `now`."""

    def _make(key: str, values: list[float], end_age_hours: float = 1.0) -> Signal:
        end = now - timedelta(hours=end_age_hours)
        n = len(values)
        points = tuple(
            (end - timedelta(days=n - 1 - i), float(v)) for i, v in enumerate(values)
        )
        return Signal(key=key, points=points, source="test")

    return _make


@pytest.fixture
def power_law_prices() -> list[float]:
    """400 daily closes lying exactly on price = 100 * (day + 1) ** 1.2."""
    return [100.0 * (day + 1) ** 1.2 for day in range(400)]


@pytest.fixture
def calm_prices() -> list[float]:
    """41 closes whose daily returns alternate +1% / -1%."""
    prices = [100.0]
    for i in range(40):
        prices.append(prices[-1] * (1.01 if i % 2 == 0 else 0.99))
    return prices
