"""
Freshness classification of factor data by age against a per-factor TTL.

    age <= ttl                      -> fresh
    age >  excluded_multiplier*ttl  -> excluded
    otherwise                       -> stale

Market-dependent factors observed over a weekend, and business-day-only
factors, get a grace rule inside the stale window: data from the start of
the most recent business day (market timezone) or later counts as fresh.
Clock-based only, no holiday calendar.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pytz

from gscore.data.signal import to_utc
from gscore.engine.config import EngineConfig
from gscore.engine.errors import Reason
from gscore.engine.types import FactorResult, FactorStatus
from gscore.utils.validators import is_finite_number

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDED_MULTIPLIER = 3.0
DEFAULT_MARKET_TIMEZONE = "America/New_York"


@dataclass(frozen=True)
class FreshnessCheck:
    """Outcome of one freshness classification."""

    status: FactorStatus
    reason: Reason
    age_hours: float | None


def is_weekend(ts: datetime, tz: str = DEFAULT_MARKET_TIMEZONE) -> bool:
    """True if ts falls on Saturday or Sunday in the given timezone."""
    return to_utc(ts).astimezone(pytz.timezone(tz)).weekday() >= 5


def most_recent_business_day_start(ts: datetime, tz: str = DEFAULT_MARKET_TIMEZONE) -> datetime:
    """
    Midnight (market timezone) of the latest Monday-Friday on or before ts.

    Args:
        ts: Reference instant
        tz: Market timezone

    Returns:
        UTC datetime of that local midnight
    """
    market_tz = pytz.timezone(tz)
    local_date = to_utc(ts).astimezone(market_tz).date()
    while local_date.weekday() >= 5:
        local_date -= timedelta(days=1)
    local_midnight = market_tz.localize(datetime(local_date.year, local_date.month, local_date.day))
    return local_midnight.astimezone(timezone.utc)


def classify_freshness(
    last_updated_at: datetime | None,
    ttl_hours: float,
    *,
    now: datetime | None = None,
    excluded_multiplier: float = DEFAULT_EXCLUDED_MULTIPLIER,
    market_dependent: bool = False,
    business_days_only: bool = False,
    market_timezone: str = DEFAULT_MARKET_TIMEZONE,
) -> FreshnessCheck:
    """
    Classify data age as fresh, stale or excluded.

    Args:
        last_updated_at: Timestamp of the newest data (None if unknown)
        ttl_hours: Time-to-live in hours
        now: Evaluation instant (default: current UTC time)
        excluded_multiplier: Multiple of ttl beyond which data is excluded
        market_dependent: Factor tracks a market that is closed on weekends
        business_days_only: Factor only publishes on business days
        market_timezone: Timezone for weekday logic

    Returns:
        FreshnessCheck with status, reason and age in hours
    """
    if last_updated_at is None:
        return FreshnessCheck(FactorStatus.EXCLUDED, Reason.NO_TIMESTAMP, None)

    now_utc = to_utc(now) if now is not None else datetime.now(timezone.utc)
    updated_utc = to_utc(last_updated_at)
    age_hours = (now_utc - updated_utc).total_seconds() / 3600.0

    if age_hours <= ttl_hours:
        return FreshnessCheck(FactorStatus.FRESH, Reason.FRESH, age_hours)

    if age_hours > excluded_multiplier * ttl_hours:
        return FreshnessCheck(FactorStatus.EXCLUDED, Reason.EXCLUDED_DATA, age_hours)

    grace_applies = business_days_only or (
        market_dependent and is_weekend(now_utc, market_timezone)
    )
    if grace_applies and updated_utc >= most_recent_business_day_start(now_utc, market_timezone):
        return FreshnessCheck(FactorStatus.FRESH, Reason.FRESH, age_hours)

    return FreshnessCheck(FactorStatus.STALE, Reason.STALE_DATA, age_hours)


def apply_freshness(
    results: Iterable[FactorResult],
    config: EngineConfig,
    now: datetime | None = None,
) -> list[FactorResult]:
    """
    Re-status factor results by data age.

    Results that are already excluded, or carry no score, stay excluded with
    their original reason. Factors unknown to the config use the default TTL.

    Args:
        results: Factor results from the current cycle
        config: Engine configuration (TTLs and freshness policy)
        now: Evaluation instant (default: current UTC time)

    Returns:
        New FactorResult instances, in input order
    """
    now = now or datetime.now(timezone.utc)
    policy = config.freshness
    out: list[FactorResult] = []

    for result in results:
        if result.status is FactorStatus.EXCLUDED or not is_finite_number(result.score):
            out.append(result.with_status(FactorStatus.EXCLUDED, result.reason or Reason.EXCLUDED_DATA))
            continue

        spec = config.weights.factors.get(result.key)
        check = classify_freshness(
            result.last_updated_at,
            policy.ttl_for(spec),
            now=now,
            excluded_multiplier=policy.excluded_multiplier,
            market_dependent=spec.market_dependent if spec else False,
            business_days_only=spec.business_days_only if spec else False,
            market_timezone=policy.market_timezone,
        )
        if check.status is not FactorStatus.FRESH:
            logger.info(
                "Factor %s is %s (age %.1fh)",
                result.key,
                check.status.value,
                check.age_hours if check.age_hours is not None else float("nan"),
            )
        reason = None if check.status is FactorStatus.FRESH else check.reason
        out.append(result.with_status(check.status, reason))

    return out
