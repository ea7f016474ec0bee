"""Error taxonomy for the scoring engine.

Only configuration integrity is fatal. Every numerical edge case degrades to
a None score plus a reason code that travels with the record that lost its
value, so callers can see why a factor, pillar or composite is missing.
"""

from enum import Enum


class Reason(str, Enum):
    """Status reason codes attached to records with a degraded value."""

    FRESH = "fresh"
    INSUFFICIENT_HISTORY = "insufficient_history"
    INVALID_INPUT = "invalid_input"
    STALE_DATA = "stale_data"
    EXCLUDED_DATA = "excluded_data"
    NO_TIMESTAMP = "no_timestamp"
    NO_ELIGIBLE_INPUTS = "no_eligible_inputs"
    TIMEOUT = "timeout"
    FACTOR_ERROR = "factor_error"
    MISSING_INPUTS = "missing_inputs"
    DISABLED = "disabled"


class GScoreError(Exception):
    """Base class for engine errors."""

    pass


class InvalidConfigError(GScoreError, ValueError):
    """Raised when weight or band invariants are violated at load time."""

    def __init__(self, violations: list[str]):
        self.violations = list(violations)
        super().__init__("Invalid configuration: " + "; ".join(self.violations))
