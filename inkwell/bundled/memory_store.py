"""Thread-safe in-memory key-value store with TTL and versioning support."""

import logging
from datetime import datetime, timedelta
from threading import RLock
from typing import Any

from inkwell.auth.store import KeyValueStore, StoreEntry, VersionConflict
from inkwell.auth.utils import Clock, utc_now

logger = logging.getLogger(__name__)


class TTLEntry:
    """Entry in the store with expiration and version tracking."""

    def __init__(self, value: str, version: int, expires_at: datetime | None = None):
        """Initialize TTL entry.

        Args:
            value: The stored value
            version: Write version, starting at 1
            expires_at: Expiry moment, None for no expiration
        """
        self.value = value
        self.version = version
        self.expires_at = expires_at

    def is_expired(self, now: datetime) -> bool:
        """Check if entry has expired."""
        if self.expires_at is None:
            return False
        return now >= self.expires_at


class MemoryStore(KeyValueStore):
    """In-memory implementation of the key-value store contract.

    This store provides:
    - Thread-safe operations using RLock
    - TTL support with lazy expiration on access
    - Prefix listing
    - Versions for conditional writes, drawn from one store-wide counter
    - Expired entries purged on reads and, at most once per cleanup interval, on writes
    - An injectable clock so expiry can be driven by tests

    Suitable for development, tests and single-process deployments.
    """

    def __init__(self, config: dict[str, Any] | None = None, clock: Clock | None = None):
        super().__init__(config)
        self._data: dict[str, TTLEntry] = {}
        self._version_counter = 0
        self._lock = RLock()
        self._clock = clock or utc_now
        self._cleanup_interval = timedelta(seconds=float(self.config.get("cleanup_interval", 300)))
        self._last_cleanup = self._clock()

    @property
    def supports_versioning(self) -> bool:
        return True

    def _expiry(self, ttl_seconds: float | None) -> datetime | None:
        if ttl_seconds is None:
            return None
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        return self._clock() + timedelta(seconds=ttl_seconds)

    def _live_entry(self, key: str) -> TTLEntry | None:
        entry = self._data.get(key)
        if entry is None:
            return None

        if entry.is_expired(self._clock()):
            del self._data[key]
            return None

        return entry

    def _next_version(self) -> int:
        # Never reused, so a stale reader cannot match a deleted and recreated key
        self._version_counter += 1
        return self._version_counter

    def _cleanup_if_due(self) -> None:
        now = self._clock()
        if now - self._last_cleanup >= self._cleanup_interval:
            self._last_cleanup = now
            self.purge_expired()

    async def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._live_entry(key)
            return entry.value if entry else None

    async def get_entry(self, key: str) -> StoreEntry | None:
        with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                return None
            return StoreEntry(value=entry.value, version=entry.version)

    async def put(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        with self._lock:
            self._cleanup_if_due()
            self._data[key] = TTLEntry(value, self._next_version(), self._expiry(ttl_seconds))

    async def put_if_version(
        self,
        key: str,
        value: str,
        expected_version: int | None,
        ttl_seconds: float | None = None,
    ) -> int:
        with self._lock:
            entry = self._live_entry(key)
            actual = entry.version if entry else None
            if actual != expected_version:
                logger.debug(f"Conditional write rejected for {key!r}: expected {expected_version}, found {actual}")
                raise VersionConflict(key, expected_version, actual)

            self._cleanup_if_due()
            version = self._next_version()
            self._data[key] = TTLEntry(value, version, self._expiry(ttl_seconds))
            return version

    async def delete(self, key: str) -> bool:
        with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                return False

            del self._data[key]
            return True

    async def list(self, prefix: str) -> list[str]:
        with self._lock:
            keys = [key for key in self._data if key.startswith(prefix)]
            return sorted(key for key in keys if self._live_entry(key) is not None)

    def purge_expired(self) -> int:
        """Remove expired entries.

        Returns:
            Number of entries cleaned up
        """
        now = self._clock()
        with self._lock:
            expired_keys = [key for key, entry in self._data.items() if entry.is_expired(now)]
            for key in expired_keys:
                del self._data[key]
        return len(expired_keys)

    def size(self, prefix: str = "") -> int:
        """Number of live entries, optionally restricted to a key prefix."""
        now = self._clock()
        with self._lock:
            return sum(
                1
                for key, entry in self._data.items()
                if key.startswith(prefix) and not entry.is_expired(now)
            )

    def clear(self) -> None:
        """Clear all data."""
        with self._lock:
            self._data.clear()
