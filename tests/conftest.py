"""
Pytest configuration and shared fixtures.
"""

from datetime import UTC, datetime, timedelta

import pytest

from inkwell.auth.credential_vault import CredentialHasher
from inkwell.bundled.memory_store import MemoryStore


class FakeClock:
    """A clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryStore(clock=clock)


@pytest.fixture
def hasher():
    """Argon2id with the smallest legal costs so the suite stays fast."""
    return CredentialHasher(memory_cost=8, time_cost=1, parallelism=1)
