"""
Security utilities for the inkwell authentication core.

Token generation, timing-safe comparison, log masking and timing attack
protection shared by the session, CSRF and login code paths.
"""

import asyncio
import secrets
import time
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from cryptography.hazmat.primitives import constant_time

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock: the current time in UTC."""
    return datetime.now(UTC)


class MinimumRuntime:
    """
    Context manager that ensures an operation takes a minimum time.

    Login answers for unknown users, wrong passwords and correct passwords
    should be indistinguishable by response time.
    """

    def __init__(self, seconds: float):
        if seconds < 0:
            raise ValueError("Minimum runtime cannot be negative")
        self.minimum_seconds = seconds
        self.start_time: float | None = None

    async def __aenter__(self):
        self.start_time = time.perf_counter()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is None:
            return

        elapsed = time.perf_counter() - self.start_time
        remaining = self.minimum_seconds - elapsed

        if remaining > 0:
            await asyncio.sleep(remaining)


@asynccontextmanager
async def timing_protection(seconds: float) -> AsyncGenerator[None]:
    """
    Async context manager for timing attack protection.

    Usage:
        async with timing_protection(0.25):
            user = await authenticate(username, password)
    """
    async with MinimumRuntime(seconds):
        yield


def generate_token(num_bytes: int = 32) -> str:
    """
    Generate an unguessable URL-safe token.

    Args:
        num_bytes: Bytes of entropy, at least 16 (128 bits)

    Returns:
        URL-safe token string
    """
    if num_bytes < 16:
        raise ValueError("Tokens need at least 16 bytes (128 bits) of entropy")
    return secrets.token_urlsafe(num_bytes)


def secure_compare(a: str | None, b: str | None) -> bool:
    """Constant-time equality for secrets. ``None`` never matches anything."""
    if a is None or b is None:
        return False
    return constant_time.bytes_eq(a.encode("utf-8"), b.encode("utf-8"))


def mask_token(token: str | None) -> str:
    """Shorten a token to something safe to put in a log line."""
    if not token:
        return "<none>"
    if len(token) <= 8:
        return "***"
    return f"{token[:4]}***"


SENSITIVE_KEY_PARTS = ("password", "token", "secret", "salt", "hash", "invite", "authorization", "cookie")


def _mask_value(value: Any) -> Any:
    if isinstance(value, dict):
        return mask_sensitive_data(value, force=True)
    if isinstance(value, str) and len(value) > 4:
        return f"{value[:2]}***{value[-2:]}"
    return "***"


def mask_sensitive_data(data: dict[str, Any], force: bool = False) -> dict[str, Any]:
    """
    Copy of ``data`` that is safe to log.

    Values under keys that look like credentials (password, token, salt, ...)
    are shortened to their first and last two characters. Nested mappings
    are masked recursively.
    """
    masked = {}
    for key, value in data.items():
        if force or any(part in key.lower() for part in SENSITIVE_KEY_PARTS):
            masked[key] = _mask_value(value)
        elif isinstance(value, dict):
            masked[key] = mask_sensitive_data(value)
        else:
            masked[key] = value
    return masked


def seconds_until(moment: datetime, now: datetime) -> int:
    """Whole seconds from ``now`` until ``moment``, rounded up, never negative."""
    remaining = (moment - now).total_seconds()
    if remaining <= 0:
        return 0
    return int(remaining) + (0 if remaining == int(remaining) else 1)
