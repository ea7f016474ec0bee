"""Tests for factor building and FactorModule."""

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import pytest

from gscore.data.signal import Signal, SignalSource
from gscore.engine.config import EngineConfig, config_from_dict
from gscore.engine.errors import Reason
from gscore.engine.factor import FactorModule, build_factor_result
from gscore.engine.types import FactorStatus

RISING = [float(x) for x in range(60)]
FLAT = [5.0] * 60


class StaticSource:
    """SignalSource returning a fixed signal."""

    def __init__(self, name: str, signal: Signal):
        self.name = name
        self.signal = signal

    async def fetch(self) -> Signal:
        return self.signal


class FailingSource:
    """SignalSource that always raises."""

    name = "broken"

    async def fetch(self) -> Signal:
        raise RuntimeError("upstream 503")


class TestBuildFactorResult:
    """Tests for build_factor_result."""

    def test_weighted_sub_signals(
        self, default_config: EngineConfig, make_signal: Callable[..., Signal], now: datetime
    ) -> None:
        """0.6 * 95 + 0.3 * 50 + 0.1 * 50 = 77."""
        signals = {
            "bmsb_distance": make_signal("bmsb_distance", RISING),
            "mayer_stretch": make_signal("mayer_stretch", FLAT),
            "weekly_rsi": make_signal("weekly_rsi", FLAT),
        }
        result = build_factor_result("trend_valuation", default_config, signals, now=now)
        assert [s.score for s in result.sub_scores] == [95, 50, 50]
        assert result.score == 77
        assert result.status is FactorStatus.FRESH
        assert result.pillar_key == "momentum"
        assert result.weight == 0.20

    def test_missing_sub_signal_renormalizes(
        self, default_config: EngineConfig, make_signal: Callable[..., Signal], now: datetime
    ) -> None:
        """(0.6 * 95 + 0.3 * 50) / 0.9 = 80."""
        signals = {
            "bmsb_distance": make_signal("bmsb_distance", RISING),
            "mayer_stretch": make_signal("mayer_stretch", FLAT),
        }
        result = build_factor_result("trend_valuation", default_config, signals, now=now)
        assert result.score == 80
        rsi = next(s for s in result.sub_scores if s.key == "weekly_rsi")
        assert rsi.score is None
        assert rsi.reason is Reason.MISSING_INPUTS

    def test_invert(
        self, default_config: EngineConfig, make_signal: Callable[..., Signal], now: datetime
    ) -> None:
        signals = {"net_liquidity": make_signal("net_liquidity", RISING)}
        result = build_factor_result(
            "net_liquidity", default_config, signals, invert={"net_liquidity": True}, now=now
        )
        assert result.score == 5

    def test_last_updated_is_oldest_contributor(
        self, default_config: EngineConfig, make_signal: Callable[..., Signal], now: datetime
    ) -> None:
        signals = {
            "bmsb_distance": make_signal("bmsb_distance", RISING, end_age_hours=1),
            "mayer_stretch": make_signal("mayer_stretch", FLAT, end_age_hours=5),
        }
        result = build_factor_result("trend_valuation", default_config, signals, now=now)
        assert result.last_updated_at == now - timedelta(hours=5)

    def test_stale_signals(
        self, default_config: EngineConfig, make_signal: Callable[..., Signal], now: datetime
    ) -> None:
        signals = {"bmsb_distance": make_signal("bmsb_distance", RISING, end_age_hours=40)}
        result = build_factor_result("trend_valuation", default_config, signals, now=now)
        assert result.status is FactorStatus.STALE
        assert result.score == 95
        assert result.reason is Reason.STALE_DATA

    def test_no_signals(self, default_config: EngineConfig, now: datetime) -> None:
        result = build_factor_result("trend_valuation", default_config, {}, now=now)
        assert result.score is None
        assert result.status is FactorStatus.EXCLUDED
        assert result.reason is Reason.MISSING_INPUTS

    def test_short_history(
        self, default_config: EngineConfig, make_signal: Callable[..., Signal], now: datetime
    ) -> None:
        signals = {"net_liquidity": make_signal("net_liquidity", RISING[:10])}
        result = build_factor_result("net_liquidity", default_config, signals, now=now)
        assert result.score is None
        assert result.reason is Reason.INSUFFICIENT_HISTORY

    def test_percentile_window(self, default_config: EngineConfig, now: datetime) -> None:
        """Observations older than the percentile window are not ranked."""
        old = [(now - timedelta(days=2000 - i), 1000.0) for i in range(100)]
        recent = [(now - timedelta(days=59 - i, hours=1), float(i)) for i in range(60)]
        signal = Signal("net_liquidity", tuple(old + recent))
        result = build_factor_result("net_liquidity", default_config, {"net_liquidity": signal}, now=now)
        assert result.score == 95

    def test_zscore_method_uses_z_settings(
        self,
        simple_config_dict: dict[str, Any],
        make_signal: Callable[..., Signal],
        now: datetime,
    ) -> None:
        """Same signal: percentile rank gives 95, z-score clipped at 0.5 gives 62."""
        simple_config_dict["factors"]["fb"]["method"] = "zscore"
        simple_config_dict["normalization"]["z_clip"] = 0.5
        config = config_from_dict(simple_config_dict)
        signals = {"level": make_signal("level", RISING)}

        assert build_factor_result("fb", config, signals, now=now).score == 62
        assert build_factor_result("fc", config, signals, now=now).score == 95

    def test_unknown_factor(self, default_config: EngineConfig) -> None:
        with pytest.raises(KeyError, match="mystery"):
            build_factor_result("mystery", default_config, {})


class TestFactorModule:
    """Tests for FactorModule."""

    def test_static_source_satisfies_protocol(self, make_signal: Callable[..., Signal]) -> None:
        assert isinstance(StaticSource("s", make_signal("x", FLAT)), SignalSource)

    def test_compute_records_provenance(
        self, default_config: EngineConfig, make_signal: Callable[..., Signal], now: datetime
    ) -> None:
        module = FactorModule(
            key="trend_valuation",
            sources={
                "bmsb_distance": StaticSource("coinbase", make_signal("bmsb_distance", RISING)),
                "mayer_stretch": StaticSource("coinbase", make_signal("mayer_stretch", FLAT)),
                "weekly_rsi": FailingSource(),
            },
        )
        result = asyncio.run(module.compute(default_config, now))

        assert result.score == 80
        assert [p.ok for p in result.provenance] == [True, True, False]
        failed = result.provenance[2]
        assert failed.source == "broken"
        assert failed.error == "RuntimeError: upstream 503"
        assert failed.latency_ms is not None

    def test_all_sources_fail(self, default_config: EngineConfig, now: datetime) -> None:
        module = FactorModule(key="net_liquidity", sources={"net_liquidity": FailingSource()})
        result = asyncio.run(module.compute(default_config, now))
        assert result.status is FactorStatus.EXCLUDED
        assert result.reason is Reason.MISSING_INPUTS

    def test_empty_signal_marked_not_ok(self, default_config: EngineConfig, now: datetime) -> None:
        module = FactorModule(
            key="net_liquidity",
            sources={"net_liquidity": StaticSource("fred", Signal("net_liquidity", ()))},
        )
        result = asyncio.run(module.compute(default_config, now))
        assert result.provenance[0].ok is False
        assert result.provenance[0].error == "empty series"
        assert result.score is None
