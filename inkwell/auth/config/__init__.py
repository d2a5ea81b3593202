"""Authentication configuration: schema and YAML loading."""

from .loader import AuthConfigLoader
from .schema import (
    AuthConfig,
    CsrfConfig,
    FounderConfig,
    PasswordConfig,
    PermissionsConfig,
    RegistrationConfig,
    SecurityConfig,
    SessionConfig,
    StoreConfig,
    ThrottleConfig,
)

__all__ = [
    "AuthConfig",
    "AuthConfigLoader",
    "CsrfConfig",
    "FounderConfig",
    "PasswordConfig",
    "PermissionsConfig",
    "RegistrationConfig",
    "SecurityConfig",
    "SessionConfig",
    "StoreConfig",
    "ThrottleConfig",
]
