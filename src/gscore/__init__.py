"""G-Score composite market risk engine."""

import os


def get_engine_version() -> str:
    """Get version with fallback for dev mode."""
    if version := os.environ.get("ENGINE_VERSION"):
        return version
    try:
        from importlib.metadata import version as pkg_version

        return pkg_version("gscore-engine")
    except Exception:
        return "dev"


ENGINE_VERSION = get_engine_version()
# Bump when the CompositeResult layout changes materially (new fields, renamed fields)
# v1: composite, band, factors
# v2: pillar aggregates, adjustment records with pre/post clamp values
# v3: config_digest, excluded_factors per pillar, status reasons
SCHEMA_VERSION = "3"
