"""
Auth system factory for building the authentication core from configuration.

The factory turns an ``AuthConfig`` into concrete components, loading the
key-value store backend dynamically, and registers each of them in a bevy
container so request handlers can have them injected.
"""

import importlib
import logging

from bevy import Container, get_registry

from .auth_core import AuthCore
from .config.schema import AuthConfig
from .credential_vault import CredentialHasher
from .csrf import CsrfGuard
from .exceptions import ConfigurationError
from .policy_engine import PermissionEvaluator
from .rate_limiter import LoginThrottle
from .records import SettingsRepository, UserRepository
from .session_manager import SessionStore
from .store import KeyValueStore
from .utils import Clock

logger = logging.getLogger(__name__)

BUILTIN_BACKENDS = {
    "memory": "inkwell.bundled.memory_store:MemoryStore",
}


class BackendLoader:
    """Loads backend classes from module paths."""

    @staticmethod
    def load_class(module_path: str) -> type:
        """
        Load a class from a module path like 'module.path:ClassName'.

        Args:
            module_path: Module path in format 'module.path:ClassName'

        Returns:
            The loaded class

        Raises:
            ConfigurationError: If the module or class cannot be loaded
        """
        if ":" not in module_path:
            raise ConfigurationError(
                f"Invalid module path format: {module_path}. Expected 'module:class'"
            )

        module_name, class_name = module_path.rsplit(":", 1)
        try:
            module = importlib.import_module(module_name)
        except ImportError as e:
            raise ConfigurationError(f"Could not import module '{module_name}': {e}") from e

        try:
            return getattr(module, class_name)
        except AttributeError as e:
            raise ConfigurationError(
                f"Class '{class_name}' not found in module '{module_name}': {e}"
            ) from e


class AuthSystemFactory:
    """Factory for creating and wiring the auth components."""

    def __init__(self, container: Container | None = None, clock: Clock | None = None):
        """
        Initialize the auth factory.

        Args:
            container: DI container for registering services. If None, a new one is created.
            clock: Time source handed to every time-dependent component
        """
        self.container = container or get_registry().create_container()
        self.clock = clock
        self._loader = BackendLoader()

    def create_store(self, config: AuthConfig) -> KeyValueStore:
        """
        Create the key-value store named by ``store.backend``.

        Raises:
            ConfigurationError: If the backend cannot be loaded or is not a KeyValueStore
        """
        backend = config.store.backend
        store_class = self._loader.load_class(BUILTIN_BACKENDS.get(backend, backend))

        if not (isinstance(store_class, type) and issubclass(store_class, KeyValueStore)):
            raise ConfigurationError(f"Class {store_class} is not a KeyValueStore")

        logger.debug(f"Using key-value store backend {store_class.__name__}")
        return store_class(config.store.options)

    def create_hasher(self, config: AuthConfig) -> CredentialHasher:
        passwords = config.passwords
        try:
            return CredentialHasher(
                memory_cost=passwords.memory_cost,
                time_cost=passwords.time_cost,
                parallelism=passwords.parallelism,
                hash_length=passwords.hash_length,
                salt_length=passwords.salt_length,
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid password hashing parameters: {e}") from e

    def create_auth_core(self, config: AuthConfig, store: KeyValueStore | None = None) -> AuthCore:
        """
        Build every component and register it in the container.

        Args:
            config: Validated auth configuration
            store: Store to use instead of the configured backend

        Returns:
            The wired AuthCore
        """
        if store is None:
            store = self.create_store(config)
        attempts = config.security.max_update_attempts

        users = UserRepository(store, max_update_attempts=attempts)
        settings = SettingsRepository(store, max_update_attempts=attempts)
        hasher = self.create_hasher(config)
        throttle = LoginThrottle(
            users,
            max_attempts=config.throttle.max_attempts,
            lockout_window_seconds=config.throttle.lockout_window_seconds,
            clock=self.clock,
        )
        sessions = SessionStore(
            store,
            users,
            ttl_seconds=config.sessions.ttl_seconds,
            token_bytes=config.sessions.token_bytes,
            use_index=config.sessions.use_index,
            activity_resolution_seconds=config.sessions.activity_resolution_seconds,
            clock=self.clock,
        )
        csrf = CsrfGuard(
            store,
            ttl_seconds=config.csrf.ttl_seconds,
            token_bytes=config.csrf.token_bytes,
            clock=self.clock,
        )
        try:
            permissions = PermissionEvaluator(
                config.founder.username,
                overrides=config.permissions.overrides,
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid permission overrides: {e}") from e
        core = AuthCore(
            users,
            settings,
            hasher,
            throttle,
            sessions,
            csrf,
            permissions,
            min_password_length=config.passwords.min_length,
            login_min_seconds=config.security.login_min_seconds,
            clock=self.clock,
        )

        self.container.add(AuthConfig, config)
        self.container.add(KeyValueStore, store)
        self.container.add(UserRepository, users)
        self.container.add(SettingsRepository, settings)
        self.container.add(CredentialHasher, hasher)
        self.container.add(LoginThrottle, throttle)
        self.container.add(SessionStore, sessions)
        self.container.add(CsrfGuard, csrf)
        self.container.add(PermissionEvaluator, permissions)
        self.container.add(AuthCore, core)
        return core

    def get_configured_container(self) -> Container:
        """Get the container with all auth services registered."""
        return self.container


async def create_auth_system(
    config: AuthConfig,
    container: Container | None = None,
    store: KeyValueStore | None = None,
    clock: Clock | None = None,
) -> AuthCore:
    """
    Build the auth core and run the founder bootstrap.

    Args:
        config: Validated auth configuration
        container: Optional DI container. If None, creates a new one.
        store: Store to use instead of the configured backend
        clock: Time source for every component

    Raises:
        ConfigurationError: If the configuration or the stored founder is inconsistent
    """
    factory = AuthSystemFactory(container, clock=clock)
    core = factory.create_auth_core(config, store)
    await core.bootstrap(
        password=config.founder.password,
        invite_code=config.registration.invite_code,
    )
    return core
