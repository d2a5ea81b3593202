"""
Per-account login throttling.

Failed logins are counted on the User record itself (``login_attempts`` and
``last_attempt_at``). The lockout window is a fixed window anchored to the
first failure of the current streak: later failures inside the window raise
the count without moving the anchor, and once the window has elapsed the
streak is over and the next failure starts a new one.

The count is updated with a read-modify-write on the User record. With a
store that supports conditional writes that sequence is versioned; without
one, concurrent failures for the same account can under-count.
"""

import logging
from datetime import datetime, timedelta

from .exceptions import UserNotFound
from .records import UserRepository
from .types import RateLimitResult, User
from .utils import Clock, seconds_until, utc_now

logger = logging.getLogger(__name__)


class LoginThrottle:
    """Failed-attempt counting and lockout for password logins."""

    def __init__(
        self,
        users: UserRepository,
        max_attempts: int = 5,
        lockout_window_seconds: int = 900,
        clock: Clock | None = None,
    ):
        """
        Initialize the throttle.

        Args:
            users: Repository holding the attempt counters
            max_attempts: Failures allowed inside one window
            lockout_window_seconds: Window length, measured from the first failure
            clock: Time source, defaults to UTC now
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if lockout_window_seconds <= 0:
            raise ValueError("lockout_window_seconds must be positive")

        self.users = users
        self.max_attempts = max_attempts
        self.lockout_window = timedelta(seconds=lockout_window_seconds)
        self._clock = clock or utc_now

    def _window_active(self, user: User, now: datetime) -> bool:
        if user.last_attempt_at is None or user.login_attempts == 0:
            return False
        return now - user.last_attempt_at <= self.lockout_window

    def status_for(self, user: User | None) -> RateLimitResult:
        """Lockout state of an already loaded user, without writing anything."""
        if user is None:
            return RateLimitResult(allowed=True, limit=self.max_attempts, remaining=self.max_attempts)

        now = self._clock()
        if not self._window_active(user, now):
            # The previous streak has expired; it is reset on the next write
            return RateLimitResult(allowed=True, limit=self.max_attempts, remaining=self.max_attempts)

        remaining = max(0, self.max_attempts - user.login_attempts)
        allowed = user.login_attempts < self.max_attempts
        retry_after = None
        if not allowed:
            retry_after = max(1, seconds_until(user.last_attempt_at + self.lockout_window, now))

        return RateLimitResult(
            allowed=allowed,
            limit=self.max_attempts,
            remaining=remaining,
            retry_after=retry_after,
        )

    async def status(self, username: str) -> RateLimitResult:
        return self.status_for(await self.users.get(username))

    async def check_allowed(self, username: str) -> bool:
        """Whether a login attempt for ``username`` may proceed.

        Unknown usernames are always allowed through so that the answer does
        not reveal which accounts exist.
        """
        return (await self.status(username)).allowed

    async def record(self, username: str, success: bool) -> User | None:
        """
        Record the outcome of a login attempt.

        Returns:
            The updated user, or None if the account does not exist
        """
        now = self._clock()

        def apply(user: User) -> None:
            if success:
                user.login_attempts = 0
                user.last_attempt_at = None
                user.last_active_at = now
            elif self._window_active(user, now):
                user.login_attempts += 1
            else:
                user.login_attempts = 1
                user.last_attempt_at = now

        try:
            user = await self.users.update(username, apply)
        except UserNotFound:
            return None

        if not success:
            logger.info(f"Failed login for {username!r} ({user.login_attempts}/{self.max_attempts} in window)")
            if user.login_attempts >= self.max_attempts:
                logger.warning(f"Account {username!r} locked out until {user.last_attempt_at + self.lockout_window:%Y-%m-%d %H:%M:%S}")

        return user

    async def reset(self, username: str) -> User:
        """Clear the failure streak, e.g. after an administrator reset."""

        def apply(user: User) -> None:
            user.login_attempts = 0
            user.last_attempt_at = None

        return await self.users.update(username, apply)
