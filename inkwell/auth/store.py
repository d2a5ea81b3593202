"""
KeyValueStore interface for the inkwell authentication core.

All cross-request state (users, sessions, CSRF tickets, site settings) lives
in an external key-value store. This module defines the capability contract
that store must provide.

Contract:
- get/put/delete by key, listing by key prefix
- optional per-key time-to-live on put
- eventual, best-effort consistency; no cross-key transactions
- optional conditional writes keyed on a per-key version
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any


class VersionConflict(Exception):
    """Raised by ``put_if_version`` when the stored version does not match."""

    def __init__(self, key: str, expected: int | None, actual: int | None):
        super().__init__(f"Version conflict on {key!r}: expected {expected}, found {actual}")
        self.key = key
        self.expected = expected
        self.actual = actual


@dataclass
class StoreEntry:
    """A stored value together with its write version."""

    value: str
    version: int


class KeyValueStore(ABC):
    """
    Abstract base class for the external key-value store.

    Values are opaque strings; callers handle encoding. Implementations may
    raise any exception on failure: the auth core treats every exception
    raised here as the store being unavailable.
    """

    def __init__(self, config: dict[str, Any] | None = None):
        """
        Initialize the store.

        Args:
            config: Backend-specific options
        """
        self.config = (config or {}).copy()

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """
        Fetch a value.

        Returns:
            The value, or None if the key is absent or expired
        """
        pass

    @abstractmethod
    async def put(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        """
        Store a value, replacing any existing one.

        Args:
            key: Key to write
            value: Value to store
            ttl_seconds: Expire the key automatically after this many seconds
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Remove a key.

        Returns:
            True if a live entry was removed, False if there was nothing to remove
        """
        pass

    @abstractmethod
    async def list(self, prefix: str) -> list[str]:
        """
        List the live keys starting with ``prefix``.
        """
        pass

    @property
    def supports_versioning(self) -> bool:
        """Whether ``get_entry`` and ``put_if_version`` are available."""
        return False

    async def get_entry(self, key: str) -> StoreEntry | None:
        """
        Fetch a value with its version.

        Only available when ``supports_versioning`` is True.
        """
        raise NotImplementedError(f"{type(self).__name__} does not support versioned reads")

    async def put_if_version(
        self,
        key: str,
        value: str,
        expected_version: int | None,
        ttl_seconds: float | None = None,
    ) -> int:
        """
        Write only if the stored version still equals ``expected_version``.

        Args:
            key: Key to write
            value: Value to store
            expected_version: Version read earlier, or None if the key must not exist
            ttl_seconds: Optional time-to-live

        Returns:
            The new version

        Raises:
            VersionConflict: If another writer got there first
        """
        raise NotImplementedError(f"{type(self).__name__} does not support conditional writes")

    async def close(self) -> None:
        """Release any resources held by the store."""
        pass
