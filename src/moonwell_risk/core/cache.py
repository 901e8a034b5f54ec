"""TTL-based cache of computed positions, keyed by account."""

import threading
import time
from collections.abc import Callable

from moonwell_risk.core.models import UserPosition


class CacheEntry:
    """
    Cache entry with TTL support.

    Parameters
    ----------
    value : UserPosition
        Cached position
    ttl : float
        Time-to-live in seconds
    created_at : float
        Creation timestamp on the owning cache's clock

    """

    def __init__(self, value: UserPosition, ttl: float, created_at: float) -> None:
        self.value = value
        self.ttl = ttl
        self.created_at = created_at

    def age(self, now: float) -> float:
        return now - self.created_at

    def is_expired(self, now: float, max_age: float | None = None) -> bool:
        """
        Check if cache entry has expired.

        Parameters
        ----------
        now : float
            Current time on the owning cache's clock
        max_age : float | None
            Tighter or looser freshness bound for this lookup; defaults to the TTL

        """
        limit = self.ttl if max_age is None else max_age
        return self.age(now) > limit


class PositionCache:
    """
    In-memory position cache with TTL and an injectable clock.

    Entries are replaced whole; readers never see a partially updated position.

    Parameters
    ----------
    ttl : float
        Default time-to-live in seconds
    clock : Callable[[], float]
        Monotonic time source

    """

    def __init__(self, ttl: float = 30.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self.clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _key(account: str) -> str:
        return account.lower()

    def get(self, account: str, max_age: float | None = None) -> UserPosition | None:
        """
        Get the cached position if it exists and is fresh enough.

        Parameters
        ----------
        account : str
            Account address
        max_age : float | None
            Freshness bound in seconds; uses the cache TTL if None

        Returns
        -------
        UserPosition | None
            Cached position, or None when absent or stale

        """
        key = self._key(account)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self.clock(), max_age):
                if entry.is_expired(self.clock()):
                    del self._entries[key]
                return None
            return entry.value

    def peek(self, account: str) -> UserPosition | None:
        """Return the last stored position regardless of its age."""
        with self._lock:
            entry = self._entries.get(self._key(account))
            return entry.value if entry else None

    def put(self, account: str, position: UserPosition) -> None:
        with self._lock:
            self._entries[self._key(account)] = CacheEntry(position, self.ttl, self.clock())

    def age(self, account: str) -> float | None:
        """Seconds since the account's position was stored, or None."""
        with self._lock:
            entry = self._entries.get(self._key(account))
            return entry.age(self.clock()) if entry else None

    def invalidate(self, account: str | None = None) -> None:
        """Drop one account's entry, or every entry when ``account`` is None."""
        with self._lock:
            if account is None:
                self._entries.clear()
            else:
                self._entries.pop(self._key(account), None)

    def cleanup_expired(self) -> int:
        """
        Remove all expired entries from cache.

        Returns
        -------
        int
            Number of entries removed

        """
        with self._lock:
            now = self.clock()
            expired_keys = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired_keys:
                del self._entries[key]
            return len(expired_keys)
