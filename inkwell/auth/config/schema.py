"""Configuration schema models using Pydantic."""

from __future__ import annotations

import re
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from ..types import USERNAME_PATTERN, Role


class StoreConfig(BaseModel):
    """Which key-value store backend to use."""

    backend: str = Field("memory", description="'memory' or an import path 'module.path:ClassName'")
    options: Dict[str, Any] = Field(default_factory=dict, description="Backend-specific options")

    @field_validator("backend")
    @classmethod
    def validate_backend_spec(cls, v):
        """Validate backend specification format."""
        if not re.match(
            r"^([a-zA-Z_][a-zA-Z0-9_-]*|[a-zA-Z_][a-zA-Z0-9_]*(?:\.[a-zA-Z_][a-zA-Z0-9_]*)*:[a-zA-Z_][a-zA-Z0-9_]*)$",
            v,
        ):
            raise ValueError(
                "Backend must be a simple name (e.g., 'memory') or import path (e.g., 'module.path:ClassName')"
            )
        return v


class PasswordConfig(BaseModel):
    """Argon2id cost parameters and password rules."""

    memory_cost: int = Field(65536, ge=8, description="Memory usage in KiB")
    time_cost: int = Field(3, ge=1, description="Iterations")
    parallelism: int = Field(4, ge=1, description="Lanes")
    hash_length: int = Field(32, ge=16, description="Digest length in bytes")
    salt_length: int = Field(16, ge=16, description="Salt length in bytes (128 bits minimum)")
    min_length: int = Field(6, ge=1, description="Minimum password length")


class SessionConfig(BaseModel):
    """Session lifetime, token and cookie settings."""

    ttl_seconds: int = Field(86400, gt=0, description="Sliding session lifetime")
    token_bytes: int = Field(32, ge=16, description="Session token entropy in bytes")
    use_index: bool = Field(True, description="Maintain the per-user session index")
    cookie_name: str = Field("inkwell_session", min_length=1)
    cookie_secure: bool = Field(True, description="Send the session cookie over HTTPS only")
    activity_resolution_seconds: int = Field(60, ge=0)


class ThrottleConfig(BaseModel):
    """Login lockout settings."""

    max_attempts: int = Field(5, ge=1)
    lockout_window_seconds: int = Field(900, gt=0)


class CsrfConfig(BaseModel):
    """Anti-forgery ticket settings."""

    ttl_seconds: int = Field(600, gt=0)
    token_bytes: int = Field(32, ge=16)
    header_name: str = Field("X-CSRF-Token", min_length=1)
    form_field: str = Field("csrf_token", min_length=1)


class FounderConfig(BaseModel):
    """The system-owner account created at bootstrap."""

    username: str = Field(..., description="Founder username, fixed for the life of the store")
    password: Optional[str] = Field(None, description="Needed only to bootstrap an empty store")

    @field_validator("username")
    @classmethod
    def validate_username(cls, v):
        if not USERNAME_PATTERN.match(v):
            raise ValueError("Founder username must be 3-20 characters of letters, digits, '_' or '-'")
        return v


class RegistrationConfig(BaseModel):
    """Registration settings seeded into the site settings record."""

    invite_code: Optional[str] = Field(None, description="Initial invite code; None closes registration")

    @field_validator("invite_code")
    @classmethod
    def blank_closes_registration(cls, v):
        if v is not None and not v.strip():
            return None
        return v


class PermissionsConfig(BaseModel):
    """Adjustments to the action table."""

    overrides: Dict[str, Role] = Field(default_factory=dict, description="Minimum role per action")


class SecurityConfig(BaseModel):
    """Miscellaneous hardening settings."""

    login_min_seconds: float = Field(0.25, ge=0, description="Minimum runtime of a login attempt")
    max_update_attempts: int = Field(3, ge=1, description="Versioned write attempts before giving up")


class AuthConfig(BaseModel):
    """Main authentication configuration."""

    store: StoreConfig = Field(default_factory=StoreConfig)
    passwords: PasswordConfig = Field(default_factory=PasswordConfig)
    sessions: SessionConfig = Field(default_factory=SessionConfig)
    throttle: ThrottleConfig = Field(default_factory=ThrottleConfig)
    csrf: CsrfConfig = Field(default_factory=CsrfConfig)
    founder: FounderConfig
    registration: RegistrationConfig = Field(default_factory=RegistrationConfig)
    permissions: PermissionsConfig = Field(default_factory=PermissionsConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
