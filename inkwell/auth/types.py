"""Core data types for the authentication system."""

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]{3,20}$")


class Role(Enum):
    """Account roles, totally ordered by rank."""

    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"
    FOUNDER = "founder"

    @property
    def rank(self) -> int:
        return _ROLE_RANKS[self]


_ROLE_RANKS = {
    Role.USER: 0,
    Role.MODERATOR: 1,
    Role.ADMIN: 2,
    Role.FOUNDER: 3,
}


class SessionInvalidReason(Enum):
    """Machine-readable reason a session failed validation."""

    EXPIRED = "expired"
    REVOKED = "revoked"
    BANNED = "banned"


class DenialReason(Enum):
    """Why the permission evaluator refused an action."""

    INSUFFICIENT_RANK = "insufficient_rank"
    BANNED = "banned"
    MUTED = "muted"
    FOUNDER_PROTECTED = "founder_protected"
    SELF_TARGET = "self_target"
    TARGET_OUTRANKS = "target_outranks"
    TARGET_REQUIRED = "target_required"
    UNKNOWN_ACTION = "unknown_action"

    @property
    def description(self) -> str:
        return _DENIAL_DESCRIPTIONS[self]


_DENIAL_DESCRIPTIONS = {
    DenialReason.INSUFFICIENT_RANK: "your role does not allow this action",
    DenialReason.BANNED: "your account has been banned",
    DenialReason.MUTED: "your account has been muted",
    DenialReason.FOUNDER_PROTECTED: "the site founder cannot be targeted",
    DenialReason.SELF_TARGET: "you cannot target your own account",
    DenialReason.TARGET_OUTRANKS: "the target account is not below your role",
    DenialReason.TARGET_REQUIRED: "this action needs a target account",
    DenialReason.UNKNOWN_ACTION: "unknown action",
}


@dataclass
class User:
    """An account record.

    ``last_attempt_at`` anchors the current failed-login window: it is set by the
    first failure of a streak and left alone by the failures that follow.
    """

    username: str
    password_hash: str | None = None
    salt: str | None = None
    role: Role = Role.USER
    banned: bool = False
    muted: bool = False
    login_attempts: int = 0
    last_attempt_at: datetime | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_active_at: datetime | None = None
    nickname: str | None = None
    avatar: str | None = None
    password_reset_required: bool = False

    def __post_init__(self):
        """Validate user after creation."""
        if not self.username or not self.username.strip():
            from .exceptions import AuthValidationError

            raise AuthValidationError("Username cannot be empty")

    @property
    def is_founder(self) -> bool:
        return self.role is Role.FOUNDER

    @property
    def rank(self) -> int:
        return self.role.rank

    def public_profile(self) -> dict[str, Any]:
        """Fields that are safe to show to anyone."""
        return {
            "username": self.username,
            "nickname": self.nickname or self.username,
            "avatar": self.avatar,
            "role": self.role.value,
            "banned": self.banned,
            "muted": self.muted,
            "created_at": self.created_at.isoformat(),
        }

    def __repr__(self) -> str:
        return f"User(username={self.username!r}, role={self.role.value!r}, banned={self.banned}, muted={self.muted})"


@dataclass
class Session:
    """A server-tracked login bound to an opaque token."""

    token: str
    username: str
    expires_at: datetime
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def __repr__(self) -> str:
        return f"Session(token={self.token[:6]!r}..., username={self.username!r}, expires_at={self.expires_at.isoformat()})"


@dataclass
class CsrfTicket:
    """A single-use anti-forgery token issued to one user."""

    username: str
    token: str
    expires_at: datetime
    consumed: bool = False

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


@dataclass
class SiteSettings:
    """Store-backed, versioned site-wide settings."""

    invite_code: str | None = None
    founder_username: str | None = None
    version: int = 0
    updated_at: datetime | None = None
    updated_by: str | None = None

    @property
    def registration_open(self) -> bool:
        return bool(self.invite_code)


@dataclass
class PolicyDecision:
    """Outcome of a permission evaluation."""

    allowed: bool
    action: str
    reason: DenialReason | None = None


@dataclass
class SessionValidation:
    """Outcome of validating a session token."""

    user: User | None = None
    session: Session | None = None
    reason: SessionInvalidReason | None = None

    @property
    def is_valid(self) -> bool:
        return self.user is not None and self.reason is None


@dataclass
class RateLimitResult:
    """Current lockout state for an account."""

    allowed: bool
    limit: int
    remaining: int
    retry_after: int | None = None


@dataclass
class LoginResult:
    """What a successful login hands back to the HTTP layer."""

    user: User
    session: Session
    csrf_token: str
