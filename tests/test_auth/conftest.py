"""
Pytest configuration and shared fixtures for auth tests.
"""

import pytest
import pytest_asyncio

from inkwell.auth.auth_core import AuthCore
from inkwell.auth.csrf import CsrfGuard
from inkwell.auth.policy_engine import PermissionEvaluator
from inkwell.auth.rate_limiter import LoginThrottle
from inkwell.auth.records import SettingsRepository, UserRepository
from inkwell.auth.session_manager import SessionStore
from inkwell.auth.types import Role, User

FOUNDER = "founder"
FOUNDER_PASSWORD = "founder-pass"
INVITE_CODE = "let-me-in"


@pytest.fixture
def users(store):
    return UserRepository(store)


@pytest.fixture
def settings(store):
    return SettingsRepository(store)


@pytest.fixture
def throttle(users, clock):
    return LoginThrottle(users, max_attempts=5, lockout_window_seconds=900, clock=clock)


@pytest.fixture
def sessions(store, users, clock):
    return SessionStore(store, users, ttl_seconds=3600, clock=clock)


@pytest.fixture
def csrf(store, clock):
    return CsrfGuard(store, ttl_seconds=600, clock=clock)


@pytest.fixture
def permissions():
    return PermissionEvaluator(FOUNDER)


@pytest.fixture
def core(users, settings, hasher, throttle, sessions, csrf, permissions, clock):
    return AuthCore(
        users,
        settings,
        hasher,
        throttle,
        sessions,
        csrf,
        permissions,
        min_password_length=6,
        login_min_seconds=0,
        clock=clock,
    )


@pytest_asyncio.fixture
async def founder(core):
    return await core.bootstrap(password=FOUNDER_PASSWORD, invite_code=INVITE_CODE)


@pytest.fixture
def make_user(users, hasher):
    """Create a stored account directly, bypassing registration."""

    async def factory(username: str, password: str = "secret-pass", role: Role = Role.USER, **fields) -> User:
        digest, salt = hasher.hash(password)
        return await users.create(User(username=username, password_hash=digest, salt=salt, role=role, **fields))

    return factory
