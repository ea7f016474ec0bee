"""Tests for configuration loading and validation."""

import json
import math
from pathlib import Path
from typing import Any

import pytest

from gscore.engine.config import (
    CONFIG_ENV_VAR,
    PRESETS,
    AdjustmentSettings,
    EngineConfig,
    FreshnessSettings,
    NormalizationSettings,
    config_from_dict,
    load_config,
)
from gscore.engine.errors import InvalidConfigError


class TestWeightInvariants:
    """The three weight-sum invariants hold for every valid config."""

    @pytest.mark.parametrize("preset", sorted(PRESETS))
    def test_sums(self, default_config: EngineConfig, preset: str) -> None:
        config = default_config.with_pillar_weights(PRESETS[preset])
        weights = config.weights

        assert math.fsum(weights.pillars.values()) == pytest.approx(1.0, abs=1e-6)
        for pillar_key, pillar_weight in weights.pillars.items():
            factor_sum = math.fsum(s.weight for s in weights.enabled_factors(pillar_key))
            assert factor_sum == pytest.approx(pillar_weight, abs=1e-6)
        for subs in weights.subweights.values():
            assert math.fsum(subs.values()) == pytest.approx(1.0, abs=1e-6)

    def test_pillar_sum_violation(self, default_config_dict: dict[str, Any]) -> None:
        default_config_dict["pillars"]["social"]["weight"] = 0.2
        with pytest.raises(InvalidConfigError, match="Pillar weights sum to 1.1"):
            config_from_dict(default_config_dict)

    def test_factor_sum_violation(self, default_config_dict: dict[str, Any]) -> None:
        default_config_dict["factors"]["onchain"]["weight"] = 0.10
        with pytest.raises(InvalidConfigError, match="Pillar 'momentum'"):
            config_from_dict(default_config_dict)

    def test_subweight_sum_violation(self, default_config_dict: dict[str, Any]) -> None:
        default_config_dict["subweights"]["trend_valuation"]["weekly_rsi"] = 0.2
        with pytest.raises(InvalidConfigError, match="Sub-weights for 'trend_valuation'"):
            config_from_dict(default_config_dict)

    def test_tolerance(self, default_config_dict: dict[str, Any]) -> None:
        """Float noise below 1e-6 is accepted."""
        default_config_dict["pillars"]["social"]["weight"] = 0.1 + 5e-7
        default_config_dict["factors"]["social_interest"]["weight"] = 0.1 + 5e-7
        config_from_dict(default_config_dict)

    def test_unknown_pillar(self, default_config_dict: dict[str, Any]) -> None:
        default_config_dict["factors"]["onchain"]["pillar"] = "sentiment"
        with pytest.raises(InvalidConfigError, match="unknown pillar 'sentiment'"):
            config_from_dict(default_config_dict)

    def test_negative_weight(self, default_config_dict: dict[str, Any]) -> None:
        default_config_dict["subweights"]["stablecoins"]["concentration"] = -0.2
        with pytest.raises(InvalidConfigError, match="non-negative"):
            config_from_dict(default_config_dict)

    def test_disabling_a_factor_requires_reweighting(self, default_config_dict: dict[str, Any]) -> None:
        """Disabled factors leave their pillar short; the loader does not auto-renormalize."""
        default_config_dict["factors"]["onchain"]["enabled"] = False
        with pytest.raises(InvalidConfigError, match="Pillar 'momentum'"):
            config_from_dict(default_config_dict)

        default_config_dict["factors"]["trend_valuation"]["weight"] = 0.25
        config = config_from_dict(default_config_dict)
        assert [s.key for s in config.weights.enabled_factors("momentum")] == ["trend_valuation"]

    def test_all_violations_reported(self, default_config_dict: dict[str, Any]) -> None:
        default_config_dict["factors"]["onchain"]["pillar"] = "sentiment"
        default_config_dict["subweights"]["trend_valuation"]["weekly_rsi"] = 0.2
        with pytest.raises(InvalidConfigError) as exc_info:
            config_from_dict(default_config_dict)
        assert len(exc_info.value.violations) >= 3


class TestConfigFromDict:
    """Tests for parsing the JSON form."""

    def test_default_is_valid(self, default_config: EngineConfig) -> None:
        assert default_config.model_version == "v3.3.0"
        assert len(default_config.bands) == 6
        assert default_config.weights.factors["etf_flows"].business_days_only is True

    def test_missing_required_field(self, default_config_dict: dict[str, Any]) -> None:
        del default_config_dict["bands"]
        with pytest.raises(InvalidConfigError, match="Missing required field: bands"):
            config_from_dict(default_config_dict)

    def test_malformed_entry(self, default_config_dict: dict[str, Any]) -> None:
        del default_config_dict["factors"]["onchain"]["pillar"]
        with pytest.raises(InvalidConfigError, match="Malformed config entry"):
            config_from_dict(default_config_dict)

    def test_invalid_bands(self, default_config_dict: dict[str, Any]) -> None:
        default_config_dict["bands"][1]["range"] = [16, 34]
        with pytest.raises(InvalidConfigError, match="Gap or overlap"):
            config_from_dict(default_config_dict)

    def test_invalid_timezone(self, default_config_dict: dict[str, Any]) -> None:
        default_config_dict["freshness"]["market_timezone"] = "Mars/Olympus"
        with pytest.raises(InvalidConfigError, match="market_timezone"):
            config_from_dict(default_config_dict)

    def test_invalid_winsor(self, default_config_dict: dict[str, Any]) -> None:
        default_config_dict["normalization"]["winsor"] = [0.9, 0.1]
        with pytest.raises(InvalidConfigError, match="winsor"):
            config_from_dict(default_config_dict)

    @pytest.mark.parametrize(
        ("section", "key", "value"),
        [
            (None, "pillars", [0.5, 0.5]),
            (None, "factors", {"onchain": 0.1}),
            ("normalization", "winsor", [0.1, 0.5, 0.9]),
            ("normalization", "winsor", ["lo", "hi"]),
            ("normalization", "percentile_window_days", "365"),
            ("normalization", "min_history", "many"),
            ("freshness", "market_timezone", None),
        ],
    )
    def test_malformed_documents_raise_invalid_config(
        self,
        default_config_dict: dict[str, Any],
        section: str | None,
        key: str,
        value: Any,
    ) -> None:
        """Wrongly typed sections are reported as config errors, never as raw exceptions."""
        target = default_config_dict if section is None else default_config_dict.setdefault(section, {})
        target[key] = value
        with pytest.raises(InvalidConfigError):
            config_from_dict(default_config_dict)

    def test_null_meta_uses_default_tolerance(self, default_config_dict: dict[str, Any]) -> None:
        default_config_dict["meta"] = None
        assert config_from_dict(default_config_dict).weights.tolerance == pytest.approx(1e-6)

    def test_document_must_be_object(self) -> None:
        with pytest.raises(InvalidConfigError, match="JSON object"):
            config_from_dict([1, 2, 3])

    def test_factor_method(self, default_config_dict: dict[str, Any]) -> None:
        default_config_dict["factors"]["onchain"]["method"] = "zscore"
        config = config_from_dict(default_config_dict)
        assert config.weights.factors["onchain"].method == "zscore"
        assert config_from_dict(config.to_dict()).digest == config.digest

    def test_unknown_factor_method(self, default_config_dict: dict[str, Any]) -> None:
        default_config_dict["factors"]["onchain"]["method"] = "vibes"
        with pytest.raises(InvalidConfigError, match="unknown method"):
            config_from_dict(default_config_dict)

    def test_round_trip(self, default_config: EngineConfig) -> None:
        assert config_from_dict(default_config.to_dict()).digest == default_config.digest

    def test_invalid_config_error_is_value_error(self) -> None:
        assert issubclass(InvalidConfigError, ValueError)


class TestDigest:
    """Tests for the config digest."""

    def test_format(self, default_config: EngineConfig) -> None:
        assert len(default_config.digest) == 16
        int(default_config.digest, 16)

    def test_stable(self, default_config_dict: dict[str, Any]) -> None:
        assert config_from_dict(default_config_dict).digest == config_from_dict(default_config_dict).digest

    def test_changes_with_content(
        self, default_config: EngineConfig, default_config_dict: dict[str, Any]
    ) -> None:
        default_config_dict["bands"][0]["label"] = "Very Low"
        assert config_from_dict(default_config_dict).digest != default_config.digest


class TestImmutability:
    """Configs are values, not shared mutable state."""

    def test_mappings_read_only(self, default_config: EngineConfig) -> None:
        with pytest.raises(TypeError):
            default_config.weights.pillars["liquidity"] = 1.0
        with pytest.raises(TypeError):
            default_config.weights.subweights["trend_valuation"]["weekly_rsi"] = 1.0

    def test_frozen(self, default_config: EngineConfig) -> None:
        with pytest.raises(AttributeError):
            default_config.model_version = "other"


class TestWithPillarWeights:
    """Tests for what-if reweighting."""

    def test_rescales_factors_proportionally(self, default_config: EngineConfig) -> None:
        config = default_config.with_pillar_weights(PRESETS["balanced_30_30"])
        factors = config.weights.factors
        assert factors["stablecoins"].weight == pytest.approx(0.15 * 0.30 / 0.35)
        assert factors["trend_valuation"].weight == pytest.approx(0.24)
        assert factors["onchain"].weight == pytest.approx(0.06)
        assert config.digest != default_config.digest

    def test_official_preset_is_identity(self, default_config: EngineConfig) -> None:
        config = default_config.with_pillar_weights(PRESETS["official"])
        assert dict(config.weights.pillars) == dict(default_config.weights.pillars)

    def test_unknown_pillar(self, default_config: EngineConfig) -> None:
        with pytest.raises(InvalidConfigError, match="Unknown pillars"):
            default_config.with_pillar_weights({"sentiment": 0.5})

    def test_invalid_sum(self, default_config: EngineConfig) -> None:
        with pytest.raises(InvalidConfigError, match="Pillar weights sum"):
            default_config.with_pillar_weights({"liquidity": 0.9})

    def test_original_untouched(self, default_config: EngineConfig) -> None:
        default_config.with_pillar_weights(PRESETS["momentum_tilted"])
        assert default_config.weights.pillars["momentum"] == 0.25


class TestLoadConfig:
    """Tests for load_config resolution."""

    def test_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        assert load_config().model_version == "v3.3.0"

    def test_from_path(self, tmp_path: Path, simple_config_dict: dict[str, Any]) -> None:
        path = tmp_path / "cfg.json"
        path.write_text(json.dumps(simple_config_dict))
        assert load_config(path).model_version == "test"
        assert load_config(str(path)).model_version == "test"

    def test_from_env(
        self, tmp_path: Path, simple_config_dict: dict[str, Any], monkeypatch: pytest.MonkeyPatch
    ) -> None:
        path = tmp_path / "cfg.json"
        path.write_text(json.dumps(simple_config_dict))
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
        assert load_config().model_version == "test"

    def test_from_mapping(self, simple_config_dict: dict[str, Any]) -> None:
        assert set(load_config(simple_config_dict).weights.pillars) == {"a", "b", "c"}

    def test_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "cfg.json"
        path.write_text("{not json")
        with pytest.raises(InvalidConfigError, match="not valid JSON"):
            load_config(path)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.json")


class TestSettings:
    """Tests for settings defaults."""

    def test_defaults_valid(self) -> None:
        assert NormalizationSettings().violations() == []
        assert FreshnessSettings().violations() == []
        assert AdjustmentSettings().violations() == []

    def test_ttl_fallback(self, default_config: EngineConfig) -> None:
        freshness = default_config.freshness
        assert freshness.ttl_for(default_config.weights.factors["term_leverage"]) == 6
        assert freshness.ttl_for(None) == 48.0

    def test_adjustment_switches(self) -> None:
        settings = AdjustmentSettings(caps={"cycle": 2.0}, enabled={"cycle": False})
        assert settings.is_enabled("cycle") is False
        assert settings.is_enabled("spike") is False
        assert settings.cap_for("cycle") == 2.0

    def test_negative_cap(self) -> None:
        assert AdjustmentSettings(caps={"cycle": -1.0}).violations()
