"""
Typed records for the scoring pipeline.

Every record is a frozen dataclass created once per computation cycle. A
missing score is a typed None, never an absent key; a new cycle produces
new instances instead of mutating old ones.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

from gscore.utils.provenance import ProvenanceEntry
from gscore.utils.serialize import sanitize_nan_inf, to_jsonable
from gscore.utils.validators import is_finite_number

INSUFFICIENT_DATA_LABEL = "insufficient data"


class FactorStatus(str, Enum):
    """Freshness status of a factor's data."""

    FRESH = "fresh"
    STALE = "stale"
    EXCLUDED = "excluded"


@dataclass(frozen=True)
class SubSignalScore:
    """Normalized score of one sub-signal inside a factor."""

    key: str
    score: int | None
    weight: float
    reason: str | None = None


@dataclass(frozen=True)
class FactorResult:
    """One factor's contribution for a cycle."""

    key: str
    pillar_key: str
    score: int | None
    status: FactorStatus
    last_updated_at: datetime | None
    weight: float
    sub_scores: tuple[SubSignalScore, ...] = ()
    provenance: tuple[ProvenanceEntry, ...] = ()
    reason: str | None = None

    @property
    def is_eligible(self) -> bool:
        """Counts toward its pillar: has a finite score and is not excluded."""
        return is_finite_number(self.score) and self.status is not FactorStatus.EXCLUDED

    def with_status(self, status: FactorStatus, reason: str | None) -> "FactorResult":
        """Copy with a new status; excluded results drop their score."""
        score = None if status is FactorStatus.EXCLUDED else self.score
        return replace(self, status=status, reason=reason, score=score)


@dataclass(frozen=True)
class PillarAggregate:
    """Re-normalized weighted score of one pillar."""

    key: str
    score: int | None
    weight: float
    contributing_factors: tuple[FactorResult, ...] = ()
    excluded_factors: tuple[str, ...] = ()
    reason: str | None = None


@dataclass(frozen=True)
class AggregateResult:
    """Pillar aggregates plus the unadjusted composite."""

    pillars: tuple[PillarAggregate, ...]
    composite: int | None
    reason: str | None = None

    def pillar(self, key: str) -> PillarAggregate | None:
        return next((p for p in self.pillars if p.key == key), None)


@dataclass(frozen=True)
class AdjustmentInput:
    """Unclamped delta proposed by one adjustment calculator."""

    key: str
    raw_delta: float | None
    reason: str | None = None
    inputs: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AdjustmentRecord:
    """Audit record of one applied adjustment."""

    key: str
    raw_delta: float | None
    applied_delta: float
    cap: float
    reason: str | None = None
    inputs: dict[str, Any] = field(default_factory=dict)

    @property
    def was_clamped(self) -> bool:
        return self.raw_delta is not None and self.raw_delta != self.applied_delta


@dataclass(frozen=True)
class RiskBand:
    """Contiguous score range with its label, inclusive upper bound."""

    key: str
    label: str
    lo: float
    hi: float
    color: str | None = None
    recommendation: str | None = None

    @property
    def range(self) -> tuple[float, float]:
        return (self.lo, self.hi)

    def contains(self, score: float) -> bool:
        return self.lo <= score <= self.hi


@dataclass(frozen=True)
class CompositeResult:
    """Final output of one computation cycle."""

    raw_score: int | None
    adjustments: tuple[AdjustmentRecord, ...]
    final_score: int | None
    band: RiskBand | None
    config_digest: str
    pillars: tuple[PillarAggregate, ...] = ()
    factors: tuple[FactorResult, ...] = ()
    as_of: datetime | None = None
    model_version: str | None = None
    reason: str | None = None

    @property
    def has_score(self) -> bool:
        return self.final_score is not None

    def display_score(self) -> str:
        """Score for presentation; a missing composite is never shown as a number."""
        if self.final_score is None:
            return INSUFFICIENT_DATA_LABEL
        return str(self.final_score)

    def factor(self, key: str) -> FactorResult | None:
        return next((f for f in self.factors if f.key == key), None)

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe dict (NaN/inf sanitized, enums and datetimes rendered)."""
        return sanitize_nan_inf(to_jsonable(self))
