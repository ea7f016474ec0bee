"""Signal contract and factor result caching."""

from gscore.data.cache import FactorCache
from gscore.data.signal import Signal, SignalSource, standardize_points, to_utc

__all__ = [
    "FactorCache",
    "Signal",
    "SignalSource",
    "standardize_points",
    "to_utc",
]
