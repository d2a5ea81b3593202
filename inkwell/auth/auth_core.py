"""
Authentication and authorization orchestration.

``AuthCore`` ties the credential hasher, login throttle, session store,
CSRF guard and permission evaluator together. Every other handler goes
through it: ``login``/``logout`` for credentials, and ``authorize`` as the
single per-request gate (session, then permission, then CSRF ticket) before
any privileged or state-changing work happens.

Account moderation flags (``banned``, ``muted``) are independent switches.
Each moderation change is checked against the freshly loaded target record
and persisted as one write.
"""

import logging
from collections.abc import Callable

from .credential_vault import CredentialHasher
from .csrf import CsrfGuard
from .exceptions import (
    AuthenticationError,
    AuthValidationError,
    ConfigurationError,
    InvalidInviteCode,
    PermissionDenied,
    RateLimited,
    SessionInvalid,
    UsernameTaken,
    UserNotFound,
)
from .policy_engine import PermissionEvaluator
from .rate_limiter import LoginThrottle
from .records import SettingsRepository, UserRepository
from .session_manager import SessionStore
from .types import USERNAME_PATTERN, DenialReason, LoginResult, Role, SiteSettings, User
from .utils import Clock, generate_token, secure_compare, timing_protection, utc_now

logger = logging.getLogger(__name__)


class AuthCore:
    """The authentication core consumed by every request handler."""

    def __init__(
        self,
        users: UserRepository,
        settings: SettingsRepository,
        hasher: CredentialHasher,
        throttle: LoginThrottle,
        sessions: SessionStore,
        csrf: CsrfGuard,
        permissions: PermissionEvaluator,
        min_password_length: int = 6,
        login_min_seconds: float = 0.0,
        clock: Clock | None = None,
    ):
        self.users = users
        self.settings = settings
        self.hasher = hasher
        self.throttle = throttle
        self.sessions = sessions
        self.csrf = csrf
        self.permissions = permissions
        self.min_password_length = min_password_length
        self.login_min_seconds = login_min_seconds
        self._clock = clock or utc_now
        self._decoy: tuple[str, str] | None = None

    @property
    def founder_username(self) -> str:
        return self.permissions.founder_username

    # Bootstrap and registration

    async def bootstrap(
        self,
        password: str | None = None,
        invite_code: str | None = None,
        reset_password: bool = False,
    ) -> User:
        """
        Make sure the founder account and site settings exist.

        Safe to run on every start. This is the only path that may set the
        founder's role, moderation flags or password.

        Args:
            password: Founder password; required when the account must be created
            invite_code: Initial invite code, used only when seeding settings
            reset_password: Replace the founder password with ``password``

        Raises:
            ConfigurationError: If the store names a different founder, or a
                password is needed but not given
        """
        username = self.founder_username
        settings = await self.settings.create_if_absent(
            SiteSettings(invite_code=invite_code, founder_username=username)
        )
        if settings.founder_username is None:
            settings = await self.settings.update(
                lambda s: setattr(s, "founder_username", username), updated_by=username
            )
        elif settings.founder_username != username:
            raise ConfigurationError(
                f"This site already belongs to founder '{settings.founder_username}', "
                f"it cannot be reassigned to '{username}'"
            )

        user = await self.users.get(username)
        if user is None:
            if not password:
                raise ConfigurationError("A founder password is required to bootstrap an empty store")
            self._check_password(password)
            digest, salt = await self.hasher.hash_async(password)
            try:
                user = await self.users.create(
                    User(username=username, password_hash=digest, salt=salt, role=Role.FOUNDER, nickname=username)
                )
                logger.info(f"Founder account {username!r} created")
                return user
            except UsernameTaken:
                user = await self.users.get(username)

        replace_password = reset_password or user.password_reset_required
        if replace_password and not password:
            raise ConfigurationError(f"Founder account {username!r} needs a new password to be configured")

        if not (replace_password or user.role is not Role.FOUNDER or user.banned or user.muted):
            return user

        new_credentials = None
        if replace_password:
            self._check_password(password)
            new_credentials = await self.hasher.hash_async(password)

        def apply(record: User) -> None:
            record.role = Role.FOUNDER
            record.banned = False
            record.muted = False
            if new_credentials:
                record.password_hash, record.salt = new_credentials
                record.password_reset_required = False
                record.login_attempts = 0
                record.last_attempt_at = None

        user = await self.users.update(username, apply)
        if new_credentials:
            await self.sessions.destroy_all(username)
        logger.info(f"Founder account {username!r} restored by bootstrap")
        return user

    async def register(
        self,
        username: str,
        password: str,
        invite_code: str | None,
        nickname: str | None = None,
        avatar: str | None = None,
    ) -> User:
        """
        Create an ordinary account.

        Raises:
            AuthValidationError: Malformed username or too short password
            InvalidInviteCode: Registration closed or wrong invite code
            UsernameTaken: The username already exists
        """
        if not username or not USERNAME_PATTERN.match(username):
            raise AuthValidationError("Username must be 3-20 characters of letters, digits, '_' or '-'")
        self._check_password(password)

        settings = await self.settings.load()
        if not settings.registration_open or not invite_code or not secure_compare(invite_code, settings.invite_code):
            logger.warning(f"Registration of {username!r} refused: bad invite code")
            raise InvalidInviteCode()

        if username == self.founder_username:
            raise UsernameTaken(username)

        digest, salt = await self.hasher.hash_async(password)
        user = await self.users.create(
            User(
                username=username,
                password_hash=digest,
                salt=salt,
                role=Role.USER,
                created_at=self._clock(),
                nickname=nickname or username,
                avatar=avatar,
            )
        )
        logger.info(f"Registered new user {username!r}")
        return user

    # Login and sessions

    async def login(self, username: str, password: str) -> LoginResult:
        """
        Check credentials and open a session.

        Raises:
            AuthValidationError: Username or password missing
            RateLimited: Too many recent failures, even if the password is right
            AuthenticationError: Wrong username or password (one message for both)
            PermissionDenied: The password was right but the account is banned
        """
        if not username or not password:
            raise AuthValidationError("Username and password are required")

        async with timing_protection(self.login_min_seconds):
            user = await self.users.get(username)

            status = self.throttle.status_for(user)
            if not status.allowed:
                logger.warning(f"Login for {username!r} refused, account is locked out")
                raise RateLimited(status.retry_after or 1)

            if user is None:
                await self._burn_verification(password)
                logger.info("Login failed for an unknown username")
                raise AuthenticationError()

            verified = not user.password_reset_required and await self.hasher.verify_async(
                password, user.password_hash, user.salt
            )
            if not verified:
                await self.throttle.record(username, success=False)
                raise AuthenticationError()

            user = await self.throttle.record(username, success=True)
            if user is None:
                raise AuthenticationError()

            if user.banned:
                logger.warning(f"Banned user {username!r} tried to log in")
                raise PermissionDenied(DenialReason.BANNED, "login")

            if self.hasher.needs_rehash(user.password_hash):
                user = await self._rehash(user, password)

            session = await self.sessions.create(username)
            csrf_token = await self.csrf.issue(username)

        logger.info(f"User {username!r} logged in")
        return LoginResult(user=user, session=session, csrf_token=csrf_token)

    async def _burn_verification(self, password: str) -> None:
        # Unknown usernames pay for one verification too
        if self._decoy is None:
            self._decoy = await self.hasher.hash_async(generate_token())
        await self.hasher.verify_async(password, *self._decoy)

    async def _rehash(self, user: User, password: str) -> User:
        digest, salt = await self.hasher.hash_async(password)

        def apply(record: User) -> None:
            record.password_hash = digest
            record.salt = salt

        logger.info(f"Upgrading password digest parameters for {user.username!r}")
        return await self.users.update(user.username, apply)

    async def logout(self, session_token: str | None) -> bool:
        if not session_token:
            return False
        return await self.sessions.destroy(session_token)

    async def logout_all(self, user: User, keep_token: str | None = None) -> int:
        """End every session of ``user``, optionally keeping the current one."""
        return await self.sessions.destroy_all(user.username, except_token=keep_token)

    async def authenticate(self, session_token: str | None) -> User:
        """
        Resolve a session token to a live, non-banned user.

        Raises:
            SessionInvalid: Carrying why the session was refused
        """
        validation = await self.sessions.validate(session_token)
        if not validation.is_valid:
            raise SessionInvalid(validation.reason)
        return validation.user

    async def authorize(
        self,
        session_token: str | None,
        action: str,
        *,
        csrf_token: str | None = None,
        mutating: bool = True,
        target: str | None = None,
        resource_owner: str | None = None,
    ) -> User:
        """
        The per-request gate.

        Validates the session, evaluates the permission for ``action`` and,
        for mutating requests, redeems the CSRF ticket. The ticket is only
        consumed once the permission check has passed.

        Returns:
            The acting user

        Raises:
            SessionInvalid, UserNotFound, PermissionDenied, CsrfRejected
        """
        user = await self.authenticate(session_token)

        target_user = None
        if target is not None:
            target_user = await self.users.get(target)
            if target_user is None:
                raise UserNotFound(target)

        self.permissions.require(user, action, target_user, resource_owner)

        if mutating:
            await self.csrf.require(user.username, csrf_token)

        return user

    async def issue_csrf(self, user: User) -> str:
        return await self.csrf.issue(user.username)

    # Profiles

    async def public_profile(self, username: str) -> dict:
        user = await self.users.get(username)
        if user is None:
            raise UserNotFound(username)
        return user.public_profile()

    async def update_profile(self, actor: User, nickname: str | None = None, avatar: str | None = None) -> User:
        self.permissions.require(actor, "update_profile")

        def apply(record: User) -> None:
            if nickname:
                record.nickname = nickname
            if avatar:
                record.avatar = avatar

        return await self.users.update(actor.username, apply)

    async def change_password(
        self,
        actor: User,
        current_password: str,
        new_password: str,
        keep_token: str | None = None,
    ) -> User:
        """
        Change the actor's own password and end their other sessions.

        The founder password only changes through ``bootstrap``.
        """
        self.permissions.require(actor, "change_password")
        if self.permissions.is_founder(actor):
            raise PermissionDenied(DenialReason.FOUNDER_PROTECTED, "change_password")
        self._check_password(new_password)

        current = await self.users.get(actor.username)
        if current is None:
            raise UserNotFound(actor.username)
        if not await self.hasher.verify_async(current_password, current.password_hash, current.salt):
            raise AuthValidationError("Current password is incorrect")

        digest, salt = await self.hasher.hash_async(new_password)

        def apply(record: User) -> None:
            record.password_hash = digest
            record.salt = salt

        user = await self.users.update(actor.username, apply)
        await self.sessions.destroy_all(actor.username, except_token=keep_token)
        logger.info(f"User {actor.username!r} changed their password")
        return user

    # Moderation

    async def _moderate(self, actor: User, action: str, target: str, change: Callable[[User], None]) -> User:
        def apply(record: User) -> None:
            # Checked against the stored target so a concurrent promotion is respected
            self.permissions.require(actor, action, record)
            change(record)

        user = await self.users.update(target, apply)
        logger.info(f"{actor.username!r} performed '{action}' on {target!r}")
        return user

    async def ban(self, actor: User, target: str) -> User:
        """Ban ``target`` and end all of their sessions."""
        user = await self._moderate(actor, "ban", target, lambda u: setattr(u, "banned", True))
        await self.sessions.destroy_all(target)
        return user

    async def unban(self, actor: User, target: str) -> User:
        return await self._moderate(actor, "unban", target, lambda u: setattr(u, "banned", False))

    async def mute(self, actor: User, target: str) -> User:
        return await self._moderate(actor, "mute", target, lambda u: setattr(u, "muted", True))

    async def unmute(self, actor: User, target: str) -> User:
        return await self._moderate(actor, "unmute", target, lambda u: setattr(u, "muted", False))

    async def set_role(self, actor: User, target: str, role: Role) -> User:
        """Promote or demote ``target``. The founder role is never assignable."""
        if role is Role.FOUNDER:
            raise AuthValidationError("The founder role cannot be assigned")
        if role.rank >= actor.rank:
            raise PermissionDenied(DenialReason.INSUFFICIENT_RANK, "set_role")

        return await self._moderate(actor, "set_role", target, lambda u: setattr(u, "role", role))

    async def reset_password(self, actor: User, target: str, new_password: str) -> User:
        """Set a new password for ``target``, clear their lockout and end their sessions."""
        self._check_password(new_password)
        digest, salt = await self.hasher.hash_async(new_password)

        def change(record: User) -> None:
            record.password_hash = digest
            record.salt = salt
            record.password_reset_required = False
            record.login_attempts = 0
            record.last_attempt_at = None

        user = await self._moderate(actor, "reset_password", target, change)
        await self.sessions.destroy_all(target)
        return user

    async def force_logout(self, actor: User, target: str) -> int:
        target_user = await self.users.get(target)
        if target_user is None:
            raise UserNotFound(target)
        self.permissions.require(actor, "force_logout", target_user)

        removed = await self.sessions.destroy_all(target)
        logger.info(f"{actor.username!r} forced {target!r} out of {removed} session(s)")
        return removed

    async def delete_user(self, actor: User, target: str) -> None:
        target_user = await self.users.get(target)
        if target_user is None:
            raise UserNotFound(target)
        self.permissions.require(actor, "delete_user", target_user)

        await self.sessions.destroy_all(target)
        await self.users.delete(target)
        logger.info(f"{actor.username!r} deleted account {target!r}")

    # Site settings

    async def site_settings(self) -> SiteSettings:
        return await self.settings.load()

    async def update_invite_code(self, actor: User, invite_code: str | None, expected_version: int | None) -> SiteSettings:
        """
        Replace the invite code. An empty code closes registration.

        Raises:
            SettingsConflict: If ``expected_version`` is stale
        """
        self.permissions.require(actor, "manage_invite_code")
        code = invite_code.strip() if invite_code else None

        def apply(settings: SiteSettings) -> None:
            settings.invite_code = code or None

        settings = await self.settings.update(apply, expected_version, updated_by=actor.username)
        logger.info(f"{actor.username!r} updated the invite code (settings version {settings.version})")
        return settings

    def _check_password(self, password: str | None) -> None:
        if not password or len(password) < self.min_password_length:
            raise AuthValidationError(f"Password must be at least {self.min_password_length} characters")
