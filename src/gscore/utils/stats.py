"""Statistical primitives used by the normalizer and adjustment calculators."""

import math
from dataclasses import dataclass

import numpy as np
import pandas as pd


def finite_values(values: pd.Series | np.ndarray | list[float]) -> np.ndarray:
    """Return the finite values as a float array (NaN/inf/None dropped)."""
    arr = pd.to_numeric(pd.Series(values, dtype="object"), errors="coerce").to_numpy(dtype=float)
    return arr[np.isfinite(arr)]


def percentile_rank(reference: np.ndarray, x: float) -> float:
    """
    Percentile rank of x within reference, ties counted at half weight.

    rank = (count_less + 0.5 * count_equal) / n

    Args:
        reference: Reference values (finite)
        x: Value to rank

    Returns:
        Rank in [0, 1], or NaN if reference is empty or x is not finite
    """
    if not math.isfinite(x) or len(reference) == 0:
        return float("nan")

    count_less = int(np.count_nonzero(reference < x))
    count_equal = int(np.count_nonzero(reference == x))
    return (count_less + 0.5 * count_equal) / len(reference)


def winsorize(values: np.ndarray, limits: tuple[float, float]) -> np.ndarray:
    """
    Clip values to the [p_lo, p_hi] empirical quantiles.

    Bounds are taken from the sorted sample at floor(p_lo * n) and
    ceil(p_hi * n) - 1 so the clip points are always observed values.

    Args:
        values: Finite values
        limits: (p_lo, p_hi) as fractions in [0, 1]

    Returns:
        Clipped copy of values
    """
    if len(values) == 0:
        return values.copy()

    lo, hi = limits
    ordered = np.sort(values)
    n = len(ordered)
    lo_idx = min(max(math.floor(lo * n), 0), n - 1)
    hi_idx = min(max(math.ceil(hi * n) - 1, 0), n - 1)
    return np.clip(values, ordered[lo_idx], ordered[hi_idx])


def logistic01(x: float, k: float) -> float:
    """
    Logistic squashing of a centered input into (0, 1).

    Args:
        x: Input, typically 2p - 1 for a percentile p
        k: Steepness

    Returns:
        1 / (1 + e^(-k x)), or NaN if x is not finite
    """
    if not math.isfinite(x):
        return float("nan")
    return 1.0 / (1.0 + math.exp(-k * x))


def tanh01(z: float, scale: float) -> float:
    """Map a z-score into (0, 1) via 0.5 * (1 + tanh(z / scale))."""
    if not math.isfinite(z):
        return float("nan")
    return 0.5 * (1.0 + math.tanh(z / scale))


def z_score(x: float, reference: np.ndarray) -> float:
    """Population z-score of x against reference; NaN when undefined."""
    if not math.isfinite(x) or len(reference) == 0:
        return float("nan")
    std = float(np.std(reference))
    if std == 0:
        return float("nan")
    return (x - float(np.mean(reference))) / std


def simple_returns(prices: pd.Series) -> pd.Series:
    """Period-over-period simple returns with the leading NaN dropped."""
    return prices.pct_change().dropna()


def ewma_volatility(returns: pd.Series, period: int = 20, alpha: float = 0.1) -> float | None:
    """
    EWMA volatility of a return series.

    The variance is seeded with the mean squared return of the first
    `period` observations, then smoothed over the remainder.

    Args:
        returns: Return series (oldest first)
        period: Seed window length
        alpha: Smoothing factor (0-1, higher = more responsive)

    Returns:
        Volatility (same units as returns), or None if fewer than `period` returns
    """
    values = finite_values(returns)
    if len(values) < period:
        return None

    squared = values ** 2
    seed = float(squared[:period].mean())
    path = pd.Series([seed, *squared[period:]])
    variance = float(path.ewm(alpha=alpha, adjust=False).mean().iloc[-1])
    return math.sqrt(variance)


@dataclass(frozen=True)
class PowerLawFit:
    """price = a * (day_index + 1) ** b, fitted in log-log space."""

    a: float
    b: float
    n_points: int

    def expected(self, day_index: int) -> float:
        return self.a * (day_index + 1) ** self.b


def fit_power_law(prices: pd.Series | np.ndarray, min_points: int = 365) -> PowerLawFit | None:
    """
    Fit a power-law trend to daily prices by OLS on log(price) vs log(day + 1).

    Args:
        prices: Daily prices, oldest first (index position is the day number)
        min_points: Minimum number of positive prices required

    Returns:
        PowerLawFit, or None with insufficient or degenerate data
    """
    arr = np.asarray(prices, dtype=float)
    days = np.arange(len(arr))
    mask = np.isfinite(arr) & (arr > 0)
    if int(mask.sum()) < min_points:
        return None

    x = np.log(days[mask] + 1.0)
    y = np.log(arr[mask])
    if np.ptp(x) == 0:
        return None

    slope, intercept = np.polyfit(x, y, 1)
    return PowerLawFit(a=float(math.exp(intercept)), b=float(slope), n_points=int(mask.sum()))
