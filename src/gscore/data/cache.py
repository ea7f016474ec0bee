"""Cross-cycle cache of factor results."""

import os
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import diskcache

from gscore.utils.serialize import digest

if TYPE_CHECKING:
    from gscore.engine.types import FactorResult


class FactorCache:
    """
    Last good FactorResult per factor, used when a unit fails or times out.

    The cache never decides freshness: a cached result is re-classified
    against its own last_updated_at like any other result.
    """

    def __init__(self, cache_dir: str | None = None, namespace: str = "factor"):
        if cache_dir is None:
            cache_dir = os.environ.get("CACHE_DIR", ".cache/factors")
        self.cache: diskcache.Cache = diskcache.Cache(cache_dir)
        self.namespace = namespace
        self._default_ttl = int(os.environ.get("CACHE_TTL", "604800"))  # 7 days

    def _key(self, factor_key: str) -> str:
        return f"{self.namespace}/{factor_key}"

    def store(self, result: "FactorResult", ttl: int | None = None) -> str:
        """
        Store a factor result.

        Args:
            result: Result to cache (only scored results are worth caching)
            ttl: Cache TTL in seconds (default: CACHE_TTL)

        Returns:
            Content hash of the stored result
        """
        entry: dict[str, Any] = {
            "result": result,
            "hash": digest(result),
            "stored_at": datetime.now(timezone.utc).isoformat(),
        }
        expire = ttl if ttl is not None else self._default_ttl
        self.cache.set(self._key(result.key), entry, expire=expire)
        return entry["hash"]

    def get(self, factor_key: str) -> dict[str, Any] | None:
        """Get the cache entry (result, hash, stored_at) for a factor."""
        return self.cache.get(self._key(factor_key))

    def load(self, factor_key: str) -> "FactorResult | None":
        """
        Get the cached FactorResult for a factor.

        Args:
            factor_key: Factor key

        Returns:
            Cached result or None if absent or expired
        """
        entry = self.get(factor_key)
        if not entry:
            return None
        return entry["result"]

    def exists(self, factor_key: str) -> bool:
        """Check if a factor has a cached result."""
        return self._key(factor_key) in self.cache

    def clear(self) -> None:
        """Clear all cached results."""
        self.cache.clear()

    def close(self) -> None:
        self.cache.close()
