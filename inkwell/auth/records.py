"""
Versioned record schemas and repositories over the key-value store.

Every record is stored as JSON carrying a ``schema`` number. Decoding runs
the registered migrations up to the current version, so older records keep
loading after the schema evolves. Any failure at the store boundary (the
collaborator raising, or a record that cannot be decoded) surfaces as
``StorageUnavailable``; the detail is logged here and never returned.
"""

import json
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, TypeVar

from .exceptions import SettingsConflict, StorageUnavailable, UsernameTaken, UserNotFound
from .store import KeyValueStore, VersionConflict
from .types import USERNAME_PATTERN, CsrfTicket, Role, Session, SiteSettings, User
from .utils import utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")

USER_PREFIX = "users/"
SETTINGS_KEY = "settings/site"


async def guarded(awaitable: Awaitable[T], operation: str) -> T:
    """Await a store call, converting any failure into ``StorageUnavailable``."""
    try:
        return await awaitable
    except (StorageUnavailable, VersionConflict):
        raise
    except Exception as e:
        logger.exception(f"Key-value store failed during {operation}")
        raise StorageUnavailable({"operation": operation}) from e


def _dump_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _load_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class RecordCodec:
    """Encodes one entity type to JSON and decodes it through migrations."""

    def __init__(
        self,
        kind: str,
        version: int,
        to_dict: Callable[[Any], dict[str, Any]],
        from_dict: Callable[[dict[str, Any]], Any],
        migrations: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] | None = None,
    ):
        self.kind = kind
        self.version = version
        self._to_dict = to_dict
        self._from_dict = from_dict
        self._migrations = migrations or {}

    def encode(self, obj: Any) -> str:
        return json.dumps({"schema": self.version, **self._to_dict(obj)})

    def decode(self, raw: str) -> Any:
        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError(f"{self.kind} record is not an object")

            schema = data.get("schema", 0)
            if schema > self.version:
                raise ValueError(f"{self.kind} record has unknown schema {schema}")

            while schema < self.version:
                data = self._migrations[schema](data)
                schema = data["schema"]

            return self._from_dict(data)
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Could not decode {self.kind} record: {e}")
            raise StorageUnavailable({"record": self.kind}) from e


def _user_to_dict(user: User) -> dict[str, Any]:
    return {
        "username": user.username,
        "password_hash": user.password_hash,
        "salt": user.salt,
        "role": user.role.value,
        "banned": user.banned,
        "muted": user.muted,
        "login_attempts": user.login_attempts,
        "last_attempt_at": _dump_datetime(user.last_attempt_at),
        "created_at": _dump_datetime(user.created_at),
        "last_active_at": _dump_datetime(user.last_active_at),
        "nickname": user.nickname,
        "avatar": user.avatar,
        "password_reset_required": user.password_reset_required,
    }


def _user_from_dict(data: dict[str, Any]) -> User:
    return User(
        username=data["username"],
        password_hash=data.get("password_hash"),
        salt=data.get("salt"),
        role=Role(data.get("role", "user")),
        banned=bool(data.get("banned", False)),
        muted=bool(data.get("muted", False)),
        login_attempts=int(data.get("login_attempts", 0)),
        last_attempt_at=_load_datetime(data.get("last_attempt_at")),
        created_at=_load_datetime(data.get("created_at")) or utc_now(),
        last_active_at=_load_datetime(data.get("last_active_at")),
        nickname=data.get("nickname"),
        avatar=data.get("avatar"),
        password_reset_required=bool(data.get("password_reset_required", False)),
    )


def _user_from_legacy(data: dict[str, Any]) -> dict[str, Any]:
    """Unversioned records written by the old site.

    Their password digests came from a fast, unsalted hash and cannot be
    verified any more, so the account is parked until its password is reset.
    """
    role = data.get("role", "user")
    return {
        "schema": 1,
        "username": data["username"],
        "password_hash": None,
        "salt": None,
        "role": role if role in {r.value for r in Role} else "user",
        "banned": bool(data.get("banned", False)),
        "muted": bool(data.get("muted", False)),
        "login_attempts": 0,
        "last_attempt_at": None,
        "created_at": data.get("createdAt"),
        "last_active_at": None,
        "nickname": data.get("nickname"),
        "avatar": data.get("avatar"),
        "password_reset_required": True,
    }


def _session_to_dict(session: Session) -> dict[str, Any]:
    return {
        "token": session.token,
        "username": session.username,
        "expires_at": _dump_datetime(session.expires_at),
        "created_at": _dump_datetime(session.created_at),
    }


def _session_from_dict(data: dict[str, Any]) -> Session:
    return Session(
        token=data["token"],
        username=data["username"],
        expires_at=_load_datetime(data["expires_at"]),
        created_at=_load_datetime(data.get("created_at")) or utc_now(),
    )


def _ticket_to_dict(ticket: CsrfTicket) -> dict[str, Any]:
    return {
        "username": ticket.username,
        "token": ticket.token,
        "expires_at": _dump_datetime(ticket.expires_at),
        "consumed": ticket.consumed,
    }


def _ticket_from_dict(data: dict[str, Any]) -> CsrfTicket:
    return CsrfTicket(
        username=data["username"],
        token=data["token"],
        expires_at=_load_datetime(data["expires_at"]),
        consumed=bool(data.get("consumed", False)),
    )


def _settings_to_dict(settings: SiteSettings) -> dict[str, Any]:
    return {
        "invite_code": settings.invite_code,
        "founder_username": settings.founder_username,
        "version": settings.version,
        "updated_at": _dump_datetime(settings.updated_at),
        "updated_by": settings.updated_by,
    }


def _settings_from_dict(data: dict[str, Any]) -> SiteSettings:
    return SiteSettings(
        invite_code=data.get("invite_code"),
        founder_username=data.get("founder_username"),
        version=int(data.get("version", 0)),
        updated_at=_load_datetime(data.get("updated_at")),
        updated_by=data.get("updated_by"),
    )


USER_CODEC = RecordCodec("user", 1, _user_to_dict, _user_from_dict, {0: _user_from_legacy})
SESSION_CODEC = RecordCodec("session", 1, _session_to_dict, _session_from_dict)
CSRF_CODEC = RecordCodec("csrf", 1, _ticket_to_dict, _ticket_from_dict)
SETTINGS_CODEC = RecordCodec("settings", 1, _settings_to_dict, _settings_from_dict)


class UserRepository:
    """Loads and persists User records.

    Read-modify-write goes through ``update``. When the store supports
    conditional writes each attempt is a versioned write and a lost race is
    retried against the fresh record; otherwise the write is a plain put and
    concurrent updates to the same account can overwrite each other.
    """

    def __init__(self, store: KeyValueStore, max_update_attempts: int = 3):
        if max_update_attempts < 1:
            raise ValueError("max_update_attempts must be at least 1")
        self.store = store
        self.max_update_attempts = max_update_attempts

    @staticmethod
    def key(username: str) -> str:
        return f"{USER_PREFIX}{username}"

    async def get(self, username: str) -> User | None:
        if not username or not USERNAME_PATTERN.match(username):
            return None

        raw = await guarded(self.store.get(self.key(username)), "load user")
        if raw is None:
            return None
        return USER_CODEC.decode(raw)

    async def exists(self, username: str) -> bool:
        return await self.get(username) is not None

    async def create(self, user: User) -> User:
        """Persist a new account.

        Raises:
            UsernameTaken: If the username is already registered
        """
        key = self.key(user.username)
        encoded = USER_CODEC.encode(user)

        if self.store.supports_versioning:
            try:
                await guarded(self.store.put_if_version(key, encoded, None), "create user")
            except VersionConflict:
                raise UsernameTaken(user.username)
        else:
            if await guarded(self.store.get(key), "load user") is not None:
                raise UsernameTaken(user.username)
            await guarded(self.store.put(key, encoded), "create user")

        return user

    async def update(self, username: str, mutate: Callable[[User], None]) -> User:
        """Apply ``mutate`` to the stored user and persist it as a single write.

        Raises:
            UserNotFound: If the account does not exist
            StorageUnavailable: If every attempt lost a race, or the store failed
        """
        key = self.key(username)

        if not self.store.supports_versioning:
            user = await self.get(username)
            if user is None:
                raise UserNotFound(username)
            mutate(user)
            await guarded(self.store.put(key, USER_CODEC.encode(user)), "save user")
            return user

        for attempt in range(1, self.max_update_attempts + 1):
            entry = await guarded(self.store.get_entry(key), "load user")
            if entry is None:
                raise UserNotFound(username)

            user = USER_CODEC.decode(entry.value)
            mutate(user)
            try:
                await guarded(
                    self.store.put_if_version(key, USER_CODEC.encode(user), entry.version),
                    "save user",
                )
                return user
            except VersionConflict:
                logger.debug(f"Concurrent update of user {username!r}, attempt {attempt}")

        logger.error(f"Gave up updating user {username!r} after {self.max_update_attempts} attempts")
        raise StorageUnavailable({"operation": "save user"})

    async def delete(self, username: str) -> bool:
        return await guarded(self.store.delete(self.key(username)), "delete user")

    async def usernames(self) -> list[str]:
        keys = await guarded(self.store.list(USER_PREFIX), "list users")
        return [key[len(USER_PREFIX):] for key in keys]


class SettingsRepository:
    """Loads and updates the single SiteSettings record."""

    def __init__(self, store: KeyValueStore, max_update_attempts: int = 3):
        self.store = store
        self.max_update_attempts = max_update_attempts

    async def load(self) -> SiteSettings:
        raw = await guarded(self.store.get(SETTINGS_KEY), "load settings")
        if raw is None:
            return SiteSettings()
        return SETTINGS_CODEC.decode(raw)

    async def create_if_absent(self, settings: SiteSettings) -> SiteSettings:
        """Seed the settings record; an existing record wins and is returned."""
        existing = await guarded(self.store.get(SETTINGS_KEY), "load settings")
        if existing is not None:
            return SETTINGS_CODEC.decode(existing)

        settings.version = 1
        encoded = SETTINGS_CODEC.encode(settings)
        if self.store.supports_versioning:
            try:
                await guarded(self.store.put_if_version(SETTINGS_KEY, encoded, None), "save settings")
            except VersionConflict:
                return await self.load()
        else:
            await guarded(self.store.put(SETTINGS_KEY, encoded), "save settings")
        return settings

    async def update(
        self,
        mutate: Callable[[SiteSettings], None],
        expected_version: int | None = None,
        updated_by: str | None = None,
    ) -> SiteSettings:
        """Apply ``mutate`` and bump the settings version.

        Args:
            mutate: Changes to apply
            expected_version: Version the caller based its change on; None skips the check
            updated_by: Username recorded on the new version

        Raises:
            SettingsConflict: If ``expected_version`` is stale
        """
        for attempt in range(1, self.max_update_attempts + 1):
            if self.store.supports_versioning:
                entry = await guarded(self.store.get_entry(SETTINGS_KEY), "load settings")
                store_version = entry.version if entry else None
                settings = SETTINGS_CODEC.decode(entry.value) if entry else SiteSettings()
            else:
                store_version = None
                settings = await self.load()

            if expected_version is not None and settings.version != expected_version:
                raise SettingsConflict(expected_version, settings.version)

            mutate(settings)
            settings.version += 1
            settings.updated_at = utc_now()
            settings.updated_by = updated_by
            encoded = SETTINGS_CODEC.encode(settings)

            if not self.store.supports_versioning:
                await guarded(self.store.put(SETTINGS_KEY, encoded), "save settings")
                return settings

            try:
                await guarded(
                    self.store.put_if_version(SETTINGS_KEY, encoded, store_version),
                    "save settings",
                )
                return settings
            except VersionConflict:
                logger.debug(f"Concurrent settings update, attempt {attempt}")

        logger.error(f"Gave up updating settings after {self.max_update_attempts} attempts")
        raise StorageUnavailable({"operation": "save settings"})
