"""
Tests for auth security utilities.
"""

import time
from datetime import UTC, datetime, timedelta

import pytest

from inkwell.auth.utils import (
    MinimumRuntime,
    generate_token,
    mask_sensitive_data,
    mask_token,
    secure_compare,
    seconds_until,
    timing_protection,
)


class TestMinimumRuntime:
    """Test MinimumRuntime context manager."""

    @pytest.mark.asyncio
    async def test_enforces_minimum_runtime(self):
        start = time.perf_counter()
        async with MinimumRuntime(0.05):
            pass
        assert time.perf_counter() - start >= 0.045

    @pytest.mark.asyncio
    async def test_applies_on_exception(self):
        start = time.perf_counter()
        with pytest.raises(ValueError):
            async with timing_protection(0.05):
                raise ValueError("boom")
        assert time.perf_counter() - start >= 0.045

    def test_rejects_negative(self):
        with pytest.raises(ValueError):
            MinimumRuntime(-1)


class TestTokens:
    """Test token generation and comparison."""

    def test_tokens_are_unique_and_url_safe(self):
        tokens = {generate_token() for _ in range(50)}

        assert len(tokens) == 50
        for token in tokens:
            assert len(token) >= 43
            assert all(c.isalnum() or c in "-_" for c in token)

    def test_rejects_low_entropy(self):
        with pytest.raises(ValueError, match="128 bits"):
            generate_token(8)

    @pytest.mark.parametrize(
        "a,b,expected",
        [
            ("secret", "secret", True),
            ("secret", "secreT", False),
            ("secret", "secret\0", False),
            ("", "", True),
            ("short", "much longer value", False),
            ("secret", None, False),
            (None, None, False),
        ],
    )
    def test_secure_compare(self, a, b, expected):
        assert secure_compare(a, b) is expected

    def test_mask_token(self):
        assert mask_token(None) == "<none>"
        assert mask_token("abc") == "***"
        assert mask_token("abcdefghijkl") == "abcd***"


class TestMaskSensitiveData:
    """Test log masking of configuration and payloads."""

    def test_masks_nested_secrets(self):
        data = {
            "founder": {"username": "admin", "password": "hunter2hunter2"},
            "registration": {"invite_code": "let-me-in"},
            "sessions": {"ttl_seconds": 3600},
        }

        masked = mask_sensitive_data(data)

        assert masked["founder"]["username"] == "admin"
        assert masked["founder"]["password"] == "hu***r2"
        assert masked["registration"]["invite_code"] == "le***in"
        assert masked["sessions"]["ttl_seconds"] == 3600

    def test_short_values_fully_masked(self):
        assert mask_sensitive_data({"token": "abc", "salt": None}) == {"token": "***", "salt": "***"}


class TestSecondsUntil:
    """Test retry-after arithmetic."""

    def test_rounds_up(self):
        now = datetime(2025, 1, 1, tzinfo=UTC)
        assert seconds_until(now + timedelta(seconds=10.2), now) == 11
        assert seconds_until(now + timedelta(seconds=10), now) == 10

    def test_never_negative(self):
        now = datetime(2025, 1, 1, tzinfo=UTC)
        assert seconds_until(now - timedelta(seconds=5), now) == 0
