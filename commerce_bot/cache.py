"""In-memory TTL cache shared by user lookups, dedup and conversation sessions."""

import time
from typing import Any, Dict, Optional

DEFAULT_TTL_SECONDS = 300


class Cache:
    """Simple in-memory cache with TTL."""

    def __init__(self, default_ttl: int = DEFAULT_TTL_SECONDS):
        self._cache: Dict[str, tuple[Any, float]] = {}
        self.default_ttl = default_ttl

    def get(self, key: str) -> Optional[Any]:
        """Get value from cache if not expired."""
        if key in self._cache:
            value, expires_at = self._cache[key]
            if time.monotonic() < expires_at:
                return value
            else:
                del self._cache[key]
        return None

    def set(self, key: str, value: Any, ttl_seconds: int = None):
        """Set value in cache with TTL."""
        if ttl_seconds is None:
            ttl_seconds = self.default_ttl
        expires_at = time.monotonic() + ttl_seconds
        self._cache[key] = (value, expires_at)

    def delete(self, key: str):
        """Delete key from cache."""
        if key in self._cache:
            del self._cache[key]

    def purge_expired(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        now = time.monotonic()
        expired = [k for k, (_, expires_at) in self._cache.items() if expires_at <= now]
        for key in expired:
            del self._cache[key]
        return len(expired)

    def clear(self):
        """Clear all cache."""
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)


cache = Cache()
