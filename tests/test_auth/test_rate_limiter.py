"""Tests for the fixed-window login throttle."""

import pytest

from inkwell.auth.rate_limiter import LoginThrottle


async def fail(throttle, username, times):
    for _ in range(times):
        await throttle.record(username, success=False)


class TestLoginThrottle:
    """Test counting, lockout and reset."""

    @pytest.mark.asyncio
    async def test_fresh_account_allowed(self, throttle, make_user):
        await make_user("alice")

        status = await throttle.status("alice")

        assert status.allowed
        assert status.remaining == 5
        assert status.retry_after is None

    @pytest.mark.asyncio
    async def test_unknown_username_allowed(self, throttle):
        assert await throttle.check_allowed("ghost") is True
        assert await throttle.record("ghost", success=False) is None

    @pytest.mark.asyncio
    async def test_lockout_after_max_attempts(self, throttle, make_user):
        await make_user("alice")
        await fail(throttle, "alice", 4)
        assert await throttle.check_allowed("alice") is True

        await fail(throttle, "alice", 1)
        status = await throttle.status("alice")

        assert status.allowed is False
        assert status.remaining == 0
        assert status.retry_after == 900

    @pytest.mark.asyncio
    async def test_window_anchored_to_first_failure(self, throttle, users, make_user, clock):
        await make_user("alice")
        await throttle.record("alice", success=False)
        first_failure = clock.now

        clock.advance(600)
        await fail(throttle, "alice", 4)

        user = await users.get("alice")
        assert user.login_attempts == 5
        assert user.last_attempt_at == first_failure
        assert (await throttle.status("alice")).retry_after == 300

        # 900 seconds after the first failure, not after the last one
        clock.advance(301)
        assert await throttle.check_allowed("alice") is True

    @pytest.mark.asyncio
    async def test_failure_after_window_starts_new_streak(self, throttle, users, make_user, clock):
        await make_user("alice")
        await fail(throttle, "alice", 5)
        clock.advance(901)

        await throttle.record("alice", success=False)

        user = await users.get("alice")
        assert user.login_attempts == 1
        assert user.last_attempt_at == clock.now

    @pytest.mark.asyncio
    async def test_success_resets_counter(self, throttle, users, make_user, clock):
        await make_user("alice")
        await fail(throttle, "alice", 3)

        await throttle.record("alice", success=True)

        user = await users.get("alice")
        assert user.login_attempts == 0
        assert user.last_attempt_at is None
        assert user.last_active_at == clock.now

    @pytest.mark.asyncio
    async def test_reset(self, throttle, make_user):
        await make_user("alice")
        await fail(throttle, "alice", 5)

        await throttle.reset("alice")

        assert await throttle.check_allowed("alice") is True

    def test_rejects_bad_parameters(self, users):
        with pytest.raises(ValueError):
            LoginThrottle(users, max_attempts=0)
        with pytest.raises(ValueError):
            LoginThrottle(users, lockout_window_seconds=0)
