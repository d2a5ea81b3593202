"""
Tests for building the auth system from configuration.
"""

import pytest
from bevy import get_registry

from inkwell.auth.auth_core import AuthCore
from inkwell.auth.config.loader import AuthConfigLoader
from inkwell.auth.config.schema import AuthConfig
from inkwell.auth.exceptions import ConfigurationError
from inkwell.auth.factory import AuthSystemFactory, BackendLoader, create_auth_system
from inkwell.auth.records import UserRepository
from inkwell.auth.session_manager import SessionStore
from inkwell.auth.store import KeyValueStore
from inkwell.auth.types import Role
from inkwell.bundled.memory_store import MemoryStore


def make_config(**overrides) -> AuthConfig:
    data = {
        "passwords": {"memory_cost": 8, "time_cost": 1, "parallelism": 1},
        "founder": {"username": "founder", "password": "founder-pass"},
        "registration": {"invite_code": "let-me-in"},
        "security": {"login_min_seconds": 0},
    }
    data.update(overrides)
    return AuthConfigLoader.from_dict(data)


class NotAStore:
    def __init__(self, config=None):
        pass


class TestBackendLoader:
    """Test dynamic backend loading."""

    def test_loads_class(self):
        assert BackendLoader.load_class("inkwell.bundled.memory_store:MemoryStore") is MemoryStore

    @pytest.mark.parametrize(
        "path,message",
        [
            ("inkwell.bundled.memory_store", "Invalid module path"),
            ("inkwell.no_such_module:Thing", "Could not import"),
            ("inkwell.bundled.memory_store:Missing", "not found"),
        ],
    )
    def test_errors(self, path, message):
        with pytest.raises(ConfigurationError, match=message):
            BackendLoader.load_class(path)


class TestAuthSystemFactory:
    """Test component wiring and container registration."""

    def test_builtin_memory_backend(self):
        factory = AuthSystemFactory()
        assert isinstance(factory.create_store(make_config()), MemoryStore)

    def test_rejects_non_store_backend(self):
        config = make_config(store={"backend": f"{__name__}:NotAStore"})
        with pytest.raises(ConfigurationError, match="not a KeyValueStore"):
            AuthSystemFactory().create_store(config)

    def test_registers_components(self):
        container = get_registry().create_container()
        factory = AuthSystemFactory(container)

        core = factory.create_auth_core(make_config())

        assert factory.get_configured_container() is container
        assert container.get(AuthCore) is core
        assert container.get(AuthConfig).founder.username == "founder"
        assert isinstance(container.get(KeyValueStore), MemoryStore)
        assert container.get(UserRepository) is core.users
        assert container.get(SessionStore) is core.sessions

    def test_uses_given_store(self, store):
        core = AuthSystemFactory().create_auth_core(make_config(), store)
        assert core.users.store is store

    def test_applies_configuration(self):
        config = make_config(
            throttle={"max_attempts": 3, "lockout_window_seconds": 60},
            permissions={"overrides": {"post": "moderator"}},
        )

        core = AuthSystemFactory().create_auth_core(config)

        assert core.throttle.max_attempts == 3
        assert core.permissions.required_role("post") is Role.MODERATOR
        assert core.founder_username == "founder"

    def test_bad_override_is_configuration_error(self):
        config = make_config(permissions={"overrides": {"teleport": "user"}})
        with pytest.raises(ConfigurationError, match="permission overrides"):
            AuthSystemFactory().create_auth_core(config)


class TestCreateAuthSystem:
    """Test the bootstrap entry point."""

    @pytest.mark.asyncio
    async def test_bootstraps_founder(self, store, clock):
        core = await create_auth_system(make_config(), store=store, clock=clock)

        founder = await core.users.get("founder")
        assert founder.role is Role.FOUNDER
        assert (await core.site_settings()).invite_code == "let-me-in"

    @pytest.mark.asyncio
    async def test_restart_keeps_existing_state(self, store, clock):
        first = await create_auth_system(make_config(), store=store, clock=clock)
        await first.register("alice", "Aa123456!", "let-me-in")

        second = await create_auth_system(
            make_config(registration={"invite_code": "changed"}), store=store, clock=clock
        )

        assert await second.users.exists("alice")
        assert (await second.site_settings()).invite_code == "let-me-in"

    @pytest.mark.asyncio
    async def test_different_founder_refused(self, store, clock):
        await create_auth_system(make_config(), store=store, clock=clock)

        with pytest.raises(ConfigurationError, match="cannot be reassigned"):
            await create_auth_system(
                make_config(founder={"username": "usurper", "password": "usurper-pass"}),
                store=store,
                clock=clock,
            )

    @pytest.mark.asyncio
    async def test_missing_founder_password(self, store):
        config = make_config(founder={"username": "founder"})
        with pytest.raises(ConfigurationError, match="founder password"):
            await create_auth_system(config, store=store)
