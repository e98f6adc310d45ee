"""
Fixed-window request counting per identity.

Counting is delegated to the `limits` package (the engine behind slowapi).
With the default memory:// storage, state lives in this process only: a
restart clears every counter and several processes each keep their own
windows. Point RATE_LIMIT_STORAGE_URI at a shared backend (redis://,
memcached://) for quotas shared across workers.
"""
import math
import time
from typing import Optional

from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage, Storage, storage_from_string
from limits.strategies import FixedWindowRateLimiter as FixedWindowStrategy


ANONYMOUS_KEY = "anonymous"


class FixedWindowRateLimiter:
    """
    Allow at most `max_requests` per key in each `window_seconds` window.

    The window opens on the first request for a key. Requests over the limit
    are still counted, so a throttled caller stays throttled until the
    window ends.
    """

    def __init__(
        self,
        max_requests: int = 60,
        window_seconds: int = 60,
        *,
        enabled: bool = True,
        storage: Optional[Storage] = None,
    ):
        if max_requests < 1 or window_seconds <= 0:
            raise ValueError("Rate limit needs max_requests >= 1 and a positive window")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.enabled = enabled
        self._item = RateLimitItemPerSecond(max_requests, window_seconds)
        self._storage = storage or MemoryStorage()
        self._strategy = FixedWindowStrategy(self._storage)

    @classmethod
    def from_uri(cls, max_requests: int, window_seconds: int, storage_uri: str, *, enabled: bool = True):
        """Build a limiter on any `limits` storage URI, e.g. memory:// or redis://host:6379."""
        return cls(max_requests, window_seconds, enabled=enabled, storage=storage_from_string(storage_uri))

    @staticmethod
    def _key(key: Optional[str]) -> str:
        return key or ANONYMOUS_KEY

    def allow(self, key: Optional[str]) -> bool:
        """Count one request for `key` and say whether it may proceed."""
        if not self.enabled:
            return True
        return self._strategy.hit(self._item, self._key(key))

    def count(self, key: Optional[str]) -> int:
        """Requests seen in the current window for `key`."""
        return self._storage.get(self._item.key_for(self._key(key)))

    def retry_after(self, key: Optional[str]) -> int:
        """Seconds until the window for `key` resets (0 if it already has)."""
        if self.count(key) == 0:
            return 0
        stats = self._strategy.get_window_stats(self._item, self._key(key))
        return max(0, math.ceil(stats.reset_time - time.time()))

    def reset(self) -> None:
        self._storage.reset()
