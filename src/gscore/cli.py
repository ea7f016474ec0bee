"""Command-line entry point: score a cycle from JSON inputs, or validate a config."""

import argparse
import json
import logging
import os
import sys
from collections.abc import Mapping
from datetime import datetime, timezone
from pathlib import Path
from time import perf_counter
from typing import Any

import pandas as pd

from gscore.engine.adjustments import cycle_adjustment, spike_adjustment
from gscore.engine.composite import compute_alternative, compute_composite
from gscore.engine.config import PRESETS, EngineConfig, load_config
from gscore.engine.errors import InvalidConfigError
from gscore.engine.types import AdjustmentInput, FactorResult, FactorStatus
from gscore.utils.provenance import build_meta

logger = logging.getLogger(__name__)

_CALCULATORS = {"cycle": cycle_adjustment, "spike": spike_adjustment}


def _parse_timestamp(value: str | None) -> datetime | None:
    if value is None:
        return None
    ts = pd.Timestamp(value)
    ts = ts.tz_localize("UTC") if ts.tzinfo is None else ts.tz_convert("UTC")
    return ts.to_pydatetime()


def factor_results_from_json(raw: Any, config: EngineConfig) -> list[FactorResult]:
    """
    Build FactorResults from a JSON document.

    Accepts a list of {key, score, last_updated_at, status?} or a mapping of
    key -> {score, last_updated_at, status?}. Pillar and weight come from
    the config.
    """
    if isinstance(raw, Mapping):
        raw = [{"key": key, **entry} for key, entry in raw.items()]

    results: list[FactorResult] = []
    for entry in raw:
        key = entry["key"]
        spec = config.weights.factors.get(key)
        results.append(
            FactorResult(
                key=key,
                pillar_key=spec.pillar if spec else entry.get("pillar", ""),
                score=entry.get("score"),
                status=FactorStatus(entry.get("status", "fresh")),
                last_updated_at=_parse_timestamp(entry.get("last_updated_at")),
                weight=spec.weight if spec else float(entry.get("weight", 0.0)),
                reason=entry.get("reason"),
            )
        )
    return results


def adjustment_inputs_from_json(raw: Any) -> list[AdjustmentInput]:
    """
    Build AdjustmentInputs from a JSON mapping of key -> entry.

    An entry either gives `raw_delta` directly or `prices` (daily closes,
    oldest first) for the built-in cycle/spike calculators.
    """
    inputs: list[AdjustmentInput] = []
    for key, entry in raw.items():
        if "prices" in entry and key in _CALCULATORS:
            inputs.append(_CALCULATORS[key](entry["prices"]))
        else:
            inputs.append(AdjustmentInput(key, entry.get("raw_delta"), entry.get("reason")))
    return inputs


def _read_json(path: str) -> Any:
    return json.loads(Path(path).read_text(encoding="utf-8"))


def cmd_compute(args: argparse.Namespace) -> int:
    start_time = perf_counter()
    config = load_config(args.config)

    factors = factor_results_from_json(_read_json(args.factors), config)
    adjustments = adjustment_inputs_from_json(_read_json(args.adjustments)) if args.adjustments else []
    now = _parse_timestamp(args.now) or datetime.now(timezone.utc)

    if args.preset:
        result = compute_alternative(factors, config, args.preset, adjustments, now)
    else:
        result = compute_composite(factors, config, adjustments, now)

    output = {
        "meta": build_meta("compute", (perf_counter() - start_time) * 1000),
        "display_score": result.display_score(),
        "result": result.to_dict(),
    }
    print(json.dumps(output, indent=2, allow_nan=False))
    return 0


def cmd_validate_config(args: argparse.Namespace) -> int:
    try:
        config = load_config(args.path)
    except InvalidConfigError as e:
        print(f"Invalid config {args.path}:", file=sys.stderr)
        for violation in e.violations:
            print(f"  - {violation}", file=sys.stderr)
        return 1

    print(f"OK model_version={config.model_version} digest={config.digest}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gscore", description="Composite market risk score")
    sub = parser.add_subparsers(dest="command", required=True)

    compute = sub.add_parser("compute", help="Score one cycle from factor results")
    compute.add_argument("--factors", required=True, help="JSON file of factor results")
    compute.add_argument("--config", default=None, help="JSON config (default: $GSCORE_CONFIG or built-in)")
    compute.add_argument("--adjustments", default=None, help="JSON file of adjustment inputs")
    compute.add_argument("--preset", choices=sorted(PRESETS), default=None, help="Alternative pillar weighting")
    compute.add_argument("--now", default=None, help="Evaluation time (ISO 8601, default: now)")
    compute.set_defaults(func=cmd_compute)

    validate = sub.add_parser("validate-config", help="Validate a config file")
    validate.add_argument("path", help="JSON config file")
    validate.set_defaults(func=cmd_validate_config)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the gscore CLI."""
    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
    # Logs go to stderr so stdout stays pure JSON
    logging.basicConfig(level=getattr(logging, log_level, logging.INFO), stream=sys.stderr)

    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except InvalidConfigError as e:
        logger.error("%s", e)
        return 1
    except FileNotFoundError as e:
        logger.error("File not found: %s", e.filename)
        return 2


if __name__ == "__main__":
    sys.exit(main())
