"""Raw signal contract between fetch collaborators and the scoring engine."""

import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol, runtime_checkable

import pandas as pd


@dataclass(frozen=True)
class Signal:
    """
    Ordered (timestamp, value) series for one raw metric.

    Immutable once fetched. Points are kept as given; to_series() applies
    the canonical ordering and cleaning.
    """

    key: str
    points: tuple[tuple[datetime, float], ...]
    source: str = "unknown"

    def to_series(self) -> pd.Series:
        """UTC-indexed, time-sorted series with non-finite values dropped."""
        return standardize_points(self.points, name=self.key)

    @property
    def last_timestamp(self) -> datetime | None:
        series = self.to_series()
        if series.empty:
            return None
        return series.index[-1].to_pydatetime()

    @classmethod
    def from_frame(
        cls,
        key: str,
        df: pd.DataFrame,
        value_col: str = "value",
        date_col: str = "date",
        source: str = "unknown",
    ) -> "Signal":
        """Build a Signal from a DataFrame with a date column and a value column."""
        dates = pd.to_datetime(df[date_col], utc=True)
        values = pd.to_numeric(df[value_col], errors="coerce")
        points = tuple(
            (ts.to_pydatetime(), float(v)) for ts, v in zip(dates, values)
        )
        return cls(key=key, points=points, source=source)


@runtime_checkable
class SignalSource(Protocol):
    """
    Anything that can fetch one Signal.

    Retry, fallback between providers and caching are the source's own
    business; the engine only sees a Signal or an exception.
    """

    name: str

    async def fetch(self) -> Signal: ...


def to_utc(ts: datetime) -> datetime:
    """Attach UTC to naive datetimes; convert aware ones to UTC."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def standardize_points(
    points: Iterable[tuple[datetime, float]],
    name: str | None = None,
) -> pd.Series:
    """
    Standardize (timestamp, value) pairs to a canonical series.

    Index: tz-aware UTC DatetimeIndex, ascending. Values: float64.
    Non-finite values are dropped; for duplicate timestamps the last
    observation wins.

    Args:
        points: Iterable of (timestamp, value)
        name: Series name

    Returns:
        Standardized Series (possibly empty)
    """
    rows = [
        (to_utc(ts), float(v))
        for ts, v in points
        if v is not None and not isinstance(v, bool) and math.isfinite(float(v))
    ]
    if not rows:
        return pd.Series([], index=pd.DatetimeIndex([], tz="UTC"), dtype="float64", name=name)

    index = pd.DatetimeIndex([ts for ts, _ in rows])
    series = pd.Series([v for _, v in rows], index=index, dtype="float64", name=name)
    series = series[~series.index.duplicated(keep="last")]
    return series.sort_index()
