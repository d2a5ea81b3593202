"""
Inkwell Authentication

Password verification, cookie-backed sessions with sliding expiration, a
ranked role hierarchy with moderation flags, login throttling and single-use
request-forgery tickets. Every privileged request passes through
``AuthCore.authorize`` before any work happens.

Security Notice:
This package handles sensitive security operations. Passwords are hashed
with argon2id, tokens carry at least 128 bits of entropy and are never
logged in full, and storage failures always deny access.
"""

from .auth_core import AuthCore
from .config import AuthConfig, AuthConfigLoader
from .credential_vault import CredentialHasher
from .csrf import CsrfGuard
from .exceptions import (
    AuthenticationError,
    AuthError,
    AuthorizationError,
    AuthValidationError,
    ConfigurationError,
    CsrfRejected,
    InvalidInviteCode,
    PermissionDenied,
    RateLimited,
    SessionInvalid,
    SettingsConflict,
    StorageUnavailable,
    UsernameTaken,
    UserNotFound,
)
from .factory import AuthSystemFactory, BackendLoader, create_auth_system
from .policy_engine import ACTION_RULES, ActionRule, PermissionEvaluator
from .rate_limiter import LoginThrottle
from .records import SettingsRepository, UserRepository
from .session_manager import SessionStore
from .store import KeyValueStore, StoreEntry, VersionConflict
from .types import (
    CsrfTicket,
    DenialReason,
    LoginResult,
    PolicyDecision,
    RateLimitResult,
    Role,
    Session,
    SessionInvalidReason,
    SessionValidation,
    SiteSettings,
    User,
)
from .utils import generate_token, mask_sensitive_data, secure_compare, timing_protection

__all__ = [
    # Data types
    "CsrfTicket",
    "DenialReason",
    "LoginResult",
    "PolicyDecision",
    "RateLimitResult",
    "Role",
    "Session",
    "SessionInvalidReason",
    "SessionValidation",
    "SiteSettings",
    "User",
    # Components
    "AuthCore",
    "CredentialHasher",
    "CsrfGuard",
    "LoginThrottle",
    "PermissionEvaluator",
    "ActionRule",
    "ACTION_RULES",
    "SessionStore",
    "UserRepository",
    "SettingsRepository",
    # Store contract
    "KeyValueStore",
    "StoreEntry",
    "VersionConflict",
    # Configuration
    "AuthConfig",
    "AuthConfigLoader",
    "AuthSystemFactory",
    "BackendLoader",
    "create_auth_system",
    # Exceptions
    "AuthError",
    "AuthenticationError",
    "AuthorizationError",
    "AuthValidationError",
    "ConfigurationError",
    "CsrfRejected",
    "InvalidInviteCode",
    "PermissionDenied",
    "RateLimited",
    "SessionInvalid",
    "SettingsConflict",
    "StorageUnavailable",
    "UsernameTaken",
    "UserNotFound",
    # Utilities
    "generate_token",
    "mask_sensitive_data",
    "secure_compare",
    "timing_protection",
]
