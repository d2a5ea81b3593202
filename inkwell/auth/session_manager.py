"""
Session lifecycle backed by the key-value store.

Sessions are keyed by an opaque random token and stored with a TTL. Each
successful validation pushes the expiry forward by the full TTL (sliding
expiration). A session that fails validation for any reason is deleted, so
an invalid token can never become valid again.

Session states::

    created -> valid -> expired | revoked | invalidated by ban

A secondary index ``session_index/<username>`` lists each user's tokens so
that "log out everywhere" does not have to scan every session in the store.
The index is best effort: it may name tokens whose sessions already
expired, and those are pruned whenever the index is rewritten. With the
index disabled, ``destroy_all`` falls back to scanning all sessions.
"""

import json
import logging
import re
from collections.abc import Callable
from datetime import datetime, timedelta

from .exceptions import StorageUnavailable, UserNotFound
from .records import SESSION_CODEC, UserRepository, guarded
from .store import KeyValueStore, VersionConflict
from .types import Session, SessionInvalidReason, SessionValidation, User
from .utils import Clock, generate_token, mask_token, utc_now

logger = logging.getLogger(__name__)

SESSION_PREFIX = "sessions/"
INDEX_PREFIX = "session_index/"
TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_-]{22,128}$")


class SessionStore:
    """Creates, validates and revokes login sessions."""

    def __init__(
        self,
        store: KeyValueStore,
        users: UserRepository,
        ttl_seconds: int = 86400,
        token_bytes: int = 32,
        use_index: bool = True,
        activity_resolution_seconds: int = 60,
        clock: Clock | None = None,
    ):
        """
        Initialize the session store.

        Args:
            store: Key-value store holding the sessions
            users: Repository used to resolve a session to its user
            ttl_seconds: Session lifetime after creation or last use
            token_bytes: Token entropy in bytes, at least 16
            use_index: Maintain the per-user token index
            activity_resolution_seconds: Minimum gap between ``last_active_at`` writes
            clock: Time source, defaults to UTC now
        """
        if ttl_seconds <= 0:
            raise ValueError("Session ttl_seconds must be positive")
        if token_bytes < 16:
            raise ValueError("Session tokens need at least 16 bytes (128 bits) of entropy")

        self.store = store
        self.users = users
        self.ttl = timedelta(seconds=ttl_seconds)
        self.token_bytes = token_bytes
        self.use_index = use_index
        self.activity_resolution = timedelta(seconds=activity_resolution_seconds)
        self._clock = clock or utc_now

    @staticmethod
    def key(token: str) -> str:
        return f"{SESSION_PREFIX}{token}"

    @staticmethod
    def index_key(username: str) -> str:
        return f"{INDEX_PREFIX}{username}"

    async def _write(self, session: Session) -> None:
        ttl_seconds = (session.expires_at - self._clock()).total_seconds()
        await guarded(
            self.store.put(self.key(session.token), SESSION_CODEC.encode(session), ttl_seconds=max(ttl_seconds, 1)),
            "save session",
        )

    async def _load_entry(self, token: str) -> tuple[Session | None, int | None]:
        if not self.store.supports_versioning:
            return await self._load(token), None
        entry = await guarded(self.store.get_entry(self.key(token)), "load session")
        if entry is None:
            return None, None
        return SESSION_CODEC.decode(entry.value), entry.version

    async def _refresh(self, session: Session, version: int | None) -> bool:
        """Persist the slid expiry. False if the session was deleted since it was read."""
        if not self.store.supports_versioning:
            await self._write(session)
            return True

        key = self.key(session.token)
        ttl_seconds = max((session.expires_at - self._clock()).total_seconds(), 1)
        try:
            await guarded(
                self.store.put_if_version(key, SESSION_CODEC.encode(session), version, ttl_seconds=ttl_seconds),
                "save session",
            )
            return True
        except VersionConflict:
            # Tokens are never reissued, so a surviving entry means a concurrent refresh won
            return await guarded(self.store.get_entry(key), "load session") is not None

    async def _load(self, token: str) -> Session | None:
        raw = await guarded(self.store.get(self.key(token)), "load session")
        if raw is None:
            return None
        return SESSION_CODEC.decode(raw)

    async def create(self, username: str) -> Session:
        """
        Start a new session for ``username``.

        The session record is fully written before the token is returned.
        """
        now = self._clock()
        session = Session(
            token=generate_token(self.token_bytes),
            username=username,
            expires_at=now + self.ttl,
            created_at=now,
        )
        await self._write(session)

        if self.use_index:
            await self._update_index(username, lambda tokens: tokens | {session.token})

        logger.info(f"Session {mask_token(session.token)} created for {username!r}")
        return session

    async def validate(self, token: str | None) -> SessionValidation:
        """
        Resolve a session token to its user.

        Returns:
            A valid result carrying the user and the refreshed session, or an
            invalid result carrying the reason
        """
        if not token or not TOKEN_PATTERN.match(token):
            return SessionValidation(reason=SessionInvalidReason.EXPIRED)

        session, version = await self._load_entry(token)
        if session is None or session.token != token:
            return SessionValidation(reason=SessionInvalidReason.EXPIRED)

        now = self._clock()
        if session.is_expired(now):
            await self.destroy(token)
            return SessionValidation(reason=SessionInvalidReason.EXPIRED)

        user = await self.users.get(session.username)
        if user is None:
            await self.destroy(token)
            logger.info(f"Session {mask_token(token)} revoked, account {session.username!r} is gone")
            return SessionValidation(reason=SessionInvalidReason.REVOKED)

        if user.banned:
            await self.destroy(token)
            logger.warning(f"Session {mask_token(token)} invalidated, {user.username!r} is banned")
            return SessionValidation(reason=SessionInvalidReason.BANNED)

        session.expires_at = now + self.ttl
        if not await self._refresh(session, version):
            logger.info(f"Session {mask_token(token)} was revoked during validation")
            return SessionValidation(reason=SessionInvalidReason.REVOKED)

        user = await self._touch(user, now)
        return SessionValidation(user=user, session=session)

    async def _touch(self, user: User, now: datetime) -> User:
        if user.last_active_at and now - user.last_active_at < self.activity_resolution:
            return user

        def apply(record: User) -> None:
            record.last_active_at = now

        try:
            return await self.users.update(user.username, apply)
        except UserNotFound:
            return user

    async def destroy(self, token: str) -> bool:
        """
        Delete a session unconditionally.

        Returns:
            True if a session was removed
        """
        session = None
        try:
            session = await self._load(token)
        except StorageUnavailable:
            # An undecodable record is still removed below
            logger.warning(f"Destroying unreadable session {mask_token(token)}")

        removed = await guarded(self.store.delete(self.key(token)), "delete session")

        if self.use_index and session is not None:
            await self._update_index(session.username, lambda tokens: tokens - {token})

        return removed

    async def destroy_all(self, username: str, except_token: str | None = None) -> int:
        """
        Delete every session belonging to ``username``.

        Args:
            username: Owner of the sessions
            except_token: A session to keep, e.g. the one making the request

        Returns:
            Number of sessions removed
        """
        if self.use_index:
            tokens = await self._read_index(username)
        else:
            tokens = await self._scan_tokens(username)

        removed = 0
        for token in tokens:
            if token == except_token:
                continue
            if await guarded(self.store.delete(self.key(token)), "delete session"):
                removed += 1

        if self.use_index:
            await self._update_index(
                username, lambda current: {except_token} & current if except_token else set()
            )

        logger.info(f"Destroyed {removed} session(s) for {username!r}")
        return removed

    async def active_sessions(self, username: str) -> list[Session]:
        """Live sessions for ``username``, oldest first."""
        tokens = await self._read_index(username) if self.use_index else await self._scan_tokens(username)

        sessions = []
        now = self._clock()
        for token in tokens:
            session = await self._load(token)
            if session and session.username == username and not session.is_expired(now):
                sessions.append(session)
        return sorted(sessions, key=lambda s: s.created_at)

    async def _scan_tokens(self, username: str) -> set[str]:
        tokens = set()
        for key in await guarded(self.store.list(SESSION_PREFIX), "list sessions"):
            session = await self._load(key[len(SESSION_PREFIX):])
            if session and session.username == username:
                tokens.add(session.token)
        return tokens

    async def _read_index(self, username: str) -> set[str]:
        raw = await guarded(self.store.get(self.index_key(username)), "load session index")
        return self._decode_index(raw)

    @staticmethod
    def _decode_index(raw: str | None) -> set[str]:
        if raw is None:
            return set()
        try:
            return set(json.loads(raw))
        except (ValueError, TypeError):
            logger.error("Session index is corrupt, rebuilding it")
            return set()

    async def _live_tokens(self, tokens: set[str]) -> set[str]:
        live = set()
        for token in tokens:
            if await guarded(self.store.get(self.key(token)), "load session") is not None:
                live.add(token)
        return live

    async def _update_index(self, username: str, change: Callable[[set[str]], set[str]]) -> None:
        key = self.index_key(username)

        if not self.store.supports_versioning:
            tokens = await self._live_tokens(change(await self._read_index(username)))
            await self._write_index(key, tokens, None)
            return

        for _ in range(3):
            entry = await guarded(self.store.get_entry(key), "load session index")
            current = self._decode_index(entry.value if entry else None)
            tokens = await self._live_tokens(change(current))
            try:
                await self._write_index(key, tokens, entry.version if entry else None)
                return
            except VersionConflict:
                continue

        # The sessions themselves are authoritative; a stale index only costs extra deletes later
        logger.warning(f"Could not update session index for {username!r}")

    async def _write_index(self, key: str, tokens: set[str], version: int | None) -> None:
        if not tokens:
            if version is None and self.store.supports_versioning:
                return
            await guarded(self.store.delete(key), "delete session index")
            return

        encoded = json.dumps(sorted(tokens))
        if self.store.supports_versioning:
            await guarded(self.store.put_if_version(key, encoded, version), "save session index")
        else:
            await guarded(self.store.put(key, encoded), "save session index")
