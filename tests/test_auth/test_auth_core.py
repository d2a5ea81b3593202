"""Tests for AuthCore: login, the per-request gate, moderation and settings."""

import pytest

from inkwell.auth.exceptions import (
    AuthenticationError,
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
from inkwell.auth.types import DenialReason, Role, SessionInvalidReason

from .conftest import FOUNDER, FOUNDER_PASSWORD, INVITE_CODE


class TestBootstrap:
    """Test founder bootstrap."""

    @pytest.mark.asyncio
    async def test_creates_founder_and_settings(self, core, founder, settings):
        assert founder.role is Role.FOUNDER
        site = await settings.load()
        assert site.founder_username == FOUNDER
        assert site.invite_code == INVITE_CODE
        assert site.version == 1

    @pytest.mark.asyncio
    async def test_is_idempotent(self, core, founder):
        again = await core.bootstrap(password="different", invite_code="other")

        assert again.password_hash == founder.password_hash
        assert (await core.site_settings()).invite_code == INVITE_CODE

    @pytest.mark.asyncio
    async def test_requires_password_for_empty_store(self, core):
        with pytest.raises(ConfigurationError, match="founder password"):
            await core.bootstrap()

    @pytest.mark.asyncio
    async def test_refuses_to_reassign_founder(self, core, founder, settings):
        await settings.update(lambda s: setattr(s, "founder_username", "someone_else"))

        with pytest.raises(ConfigurationError, match="someone_else"):
            await core.bootstrap(password=FOUNDER_PASSWORD)

    @pytest.mark.asyncio
    async def test_restores_tampered_founder(self, core, founder, users):
        def tamper(user):
            user.role = Role.USER
            user.banned = True
            user.muted = True

        await users.update(FOUNDER, tamper)

        restored = await core.bootstrap()

        assert restored.role is Role.FOUNDER
        assert not restored.banned and not restored.muted

    @pytest.mark.asyncio
    async def test_resets_founder_password(self, core, founder):
        await core.bootstrap(password="brand-new-pass", reset_password=True)

        result = await core.login(FOUNDER, "brand-new-pass")
        assert result.user.username == FOUNDER
        with pytest.raises(AuthenticationError):
            await core.login(FOUNDER, FOUNDER_PASSWORD)

    @pytest.mark.asyncio
    async def test_legacy_founder_gets_configured_password(self, core, store):
        await store.put(
            f"users/{FOUNDER}",
            '{"username": "founder", "passwordHash": "abc", "role": "admin"}',
        )

        founder = await core.bootstrap(password=FOUNDER_PASSWORD)

        assert founder.role is Role.FOUNDER
        assert not founder.password_reset_required
        assert (await core.login(FOUNDER, FOUNDER_PASSWORD)).user.role is Role.FOUNDER


class TestRegistration:
    """Test account registration."""

    @pytest.mark.asyncio
    async def test_register_and_login(self, core, founder):
        user = await core.register("alice", "Aa123456!", INVITE_CODE, nickname="Alice")

        assert user.role is Role.USER
        assert user.nickname == "Alice"
        assert (await core.login("alice", "Aa123456!")).user.username == "alice"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("username", ["al", "a" * 21, "bad name", "semi;colon", ""])
    async def test_invalid_username(self, core, founder, username):
        with pytest.raises(AuthValidationError):
            await core.register(username, "Aa123456!", INVITE_CODE)

    @pytest.mark.asyncio
    async def test_short_password(self, core, founder):
        with pytest.raises(AuthValidationError, match="at least 6"):
            await core.register("alice", "12345", INVITE_CODE)

    @pytest.mark.asyncio
    async def test_wrong_invite_code(self, core, founder):
        with pytest.raises(InvalidInviteCode):
            await core.register("alice", "Aa123456!", "wrong")
        with pytest.raises(InvalidInviteCode):
            await core.register("alice", "Aa123456!", None)

    @pytest.mark.asyncio
    async def test_closed_registration(self, core, founder):
        await core.update_invite_code(founder, None, expected_version=1)

        with pytest.raises(InvalidInviteCode):
            await core.register("alice", "Aa123456!", INVITE_CODE)

    @pytest.mark.asyncio
    async def test_duplicate_and_founder_names_taken(self, core, founder):
        await core.register("alice", "Aa123456!", INVITE_CODE)

        with pytest.raises(UsernameTaken):
            await core.register("alice", "Aa123456!", INVITE_CODE)
        with pytest.raises(UsernameTaken):
            await core.register(FOUNDER, "Aa123456!", INVITE_CODE)


class TestLogin:
    """Test the login flow."""

    @pytest.mark.asyncio
    async def test_login_issues_session_and_csrf(self, core, founder, make_user):
        await make_user("alice", "Aa123456!")

        result = await core.login("alice", "Aa123456!")

        assert (await core.authenticate(result.session.token)).username == "alice"
        assert await core.csrf.validate("alice", result.csrf_token)

    @pytest.mark.asyncio
    async def test_uniform_message_for_unknown_and_wrong(self, core, founder, make_user):
        await make_user("alice", "Aa123456!")

        with pytest.raises(AuthenticationError) as unknown:
            await core.login("nobody", "Aa123456!")
        with pytest.raises(AuthenticationError) as wrong:
            await core.login("alice", "wrong-pass")

        assert unknown.value.message == wrong.value.message == "Invalid username or password"

    @pytest.mark.asyncio
    async def test_missing_credentials(self, core):
        with pytest.raises(AuthValidationError):
            await core.login("", "x")

    @pytest.mark.asyncio
    async def test_lockout_and_recovery(self, core, founder, make_user, users, clock):
        await make_user("alice", "Aa123456!")
        for _ in range(5):
            with pytest.raises(AuthenticationError):
                await core.login("alice", "wrong-pass")

        with pytest.raises(RateLimited) as exc_info:
            await core.login("alice", "Aa123456!")
        assert exc_info.value.retry_after > 0

        clock.advance(15 * 60 + 1)
        result = await core.login("alice", "Aa123456!")

        assert result.user.login_attempts == 0
        assert (await users.get("alice")).login_attempts == 0

    @pytest.mark.asyncio
    async def test_locked_attempts_not_counted(self, core, founder, make_user, users):
        await make_user("alice", "Aa123456!")
        for _ in range(5):
            with pytest.raises(AuthenticationError):
                await core.login("alice", "wrong-pass")

        with pytest.raises(RateLimited):
            await core.login("alice", "wrong-pass")

        assert (await users.get("alice")).login_attempts == 5

    @pytest.mark.asyncio
    async def test_banned_user_cannot_login(self, core, founder, make_user):
        await make_user("alice", "Aa123456!", banned=True)

        with pytest.raises(PermissionDenied) as exc_info:
            await core.login("alice", "Aa123456!")
        assert exc_info.value.reason is DenialReason.BANNED

    @pytest.mark.asyncio
    async def test_banned_user_wrong_password_gets_generic_error(self, core, founder, make_user):
        await make_user("alice", "Aa123456!", banned=True)

        with pytest.raises(AuthenticationError):
            await core.login("alice", "wrong-pass")

    @pytest.mark.asyncio
    async def test_legacy_account_cannot_login(self, core, founder, store):
        await store.put("users/oldtimer", '{"username": "oldtimer", "passwordHash": "abc"}')

        with pytest.raises(AuthenticationError):
            await core.login("oldtimer", "whatever")

    @pytest.mark.asyncio
    async def test_rehash_on_parameter_change(self, core, founder, make_user, users):
        from inkwell.auth.credential_vault import CredentialHasher

        await make_user("alice", "Aa123456!")
        core.hasher = CredentialHasher(memory_cost=16, time_cost=1, parallelism=1)

        await core.login("alice", "Aa123456!")

        assert "m=16" in (await users.get("alice")).password_hash

    @pytest.mark.asyncio
    async def test_logout(self, core, founder, make_user):
        await make_user("alice", "Aa123456!")
        result = await core.login("alice", "Aa123456!")

        assert await core.logout(result.session.token) is True
        with pytest.raises(SessionInvalid):
            await core.authenticate(result.session.token)
        assert await core.logout(None) is False


class TestAuthorize:
    """Test the per-request gate."""

    @pytest.mark.asyncio
    async def test_read_needs_no_csrf(self, core, founder, make_user):
        await make_user("alice", "Aa123456!")
        result = await core.login("alice", "Aa123456!")

        user = await core.authorize(result.session.token, "view", mutating=False)
        assert user.username == "alice"

    @pytest.mark.asyncio
    async def test_mutation_consumes_ticket(self, core, founder, make_user):
        await make_user("alice", "Aa123456!")
        result = await core.login("alice", "Aa123456!")

        await core.authorize(result.session.token, "post", csrf_token=result.csrf_token)

        with pytest.raises(CsrfRejected):
            await core.authorize(result.session.token, "post", csrf_token=result.csrf_token)

    @pytest.mark.asyncio
    async def test_foreign_ticket_rejected(self, core, founder, make_user):
        await make_user("alice", "Aa123456!")
        await make_user("mallory", "Mm123456!")
        alice = await core.login("alice", "Aa123456!")
        mallory = await core.login("mallory", "Mm123456!")

        with pytest.raises(CsrfRejected):
            await core.authorize(mallory.session.token, "post", csrf_token=alice.csrf_token)

    @pytest.mark.asyncio
    async def test_invalid_session(self, core):
        with pytest.raises(SessionInvalid) as exc_info:
            await core.authorize("A" * 43, "view", mutating=False)
        assert exc_info.value.reason is SessionInvalidReason.EXPIRED

    @pytest.mark.asyncio
    async def test_denied_permission_keeps_ticket(self, core, founder, make_user):
        await make_user("bob", "Bb123456!", muted=True)
        result = await core.login("bob", "Bb123456!")

        with pytest.raises(PermissionDenied) as exc_info:
            await core.authorize(result.session.token, "comment", csrf_token=result.csrf_token)

        assert exc_info.value.reason is DenialReason.MUTED
        assert await core.csrf.validate("bob", result.csrf_token)

    @pytest.mark.asyncio
    async def test_unknown_target(self, core, founder, make_user):
        await make_user("boss", "Bb123456!", role=Role.ADMIN)
        result = await core.login("boss", "Bb123456!")

        with pytest.raises(UserNotFound):
            await core.authorize(result.session.token, "ban", csrf_token=result.csrf_token, target="ghost")

    @pytest.mark.asyncio
    async def test_storage_failure_fails_closed(self, core, founder, make_user, store):
        await make_user("alice", "Aa123456!")
        result = await core.login("alice", "Aa123456!")

        async def broken(key):
            raise ConnectionError("down")

        store.get = broken

        with pytest.raises(StorageUnavailable):
            await core.authorize(result.session.token, "view", mutating=False)


class TestModeration:
    """Test moderation transitions."""

    @pytest.mark.asyncio
    async def test_admin_cannot_ban_founder(self, core, founder, make_user):
        admin = await make_user("boss", role=Role.ADMIN)

        with pytest.raises(PermissionDenied) as exc_info:
            await core.ban(admin, FOUNDER)
        assert exc_info.value.reason is DenialReason.FOUNDER_PROTECTED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("operation", ["ban", "mute", "unban", "unmute", "force_logout", "delete_user"])
    async def test_founder_immune_to_every_admin_operation(self, core, founder, make_user, users, operation):
        admin = await make_user("boss", role=Role.ADMIN)

        with pytest.raises(PermissionDenied):
            await getattr(core, operation)(admin, FOUNDER)

        stored = await users.get(FOUNDER)
        assert stored.role is Role.FOUNDER
        assert not stored.banned and not stored.muted

    @pytest.mark.asyncio
    async def test_founder_password_and_role_immune(self, core, founder, make_user):
        admin = await make_user("boss", role=Role.ADMIN)

        with pytest.raises(PermissionDenied):
            await core.reset_password(admin, FOUNDER, "hijacked!")
        with pytest.raises(PermissionDenied):
            await core.set_role(founder, FOUNDER, Role.USER)
        with pytest.raises(PermissionDenied):
            await core.change_password(founder, FOUNDER_PASSWORD, "another-pass")

        assert (await core.login(FOUNDER, FOUNDER_PASSWORD)).user.is_founder

    @pytest.mark.asyncio
    async def test_ban_revokes_sessions(self, core, founder, make_user, users):
        admin = await make_user("boss", role=Role.ADMIN)
        await make_user("bob", "Bb123456!")
        first = await core.login("bob", "Bb123456!")
        second = await core.login("bob", "Bb123456!")

        banned = await core.ban(admin, "bob")

        assert banned.banned
        for result in (first, second):
            with pytest.raises(SessionInvalid):
                await core.authenticate(result.session.token)

    @pytest.mark.asyncio
    async def test_ban_and_unban_set_explicit_values(self, core, founder, make_user):
        admin = await make_user("boss", role=Role.ADMIN)
        await make_user("bob")

        await core.ban(admin, "bob")
        assert (await core.ban(admin, "bob")).banned is True
        assert (await core.unban(admin, "bob")).banned is False
        assert (await core.unban(admin, "bob")).banned is False

    @pytest.mark.asyncio
    async def test_mute_blocks_comment_until_unmuted(self, core, founder, make_user):
        admin = await make_user("boss", role=Role.ADMIN)
        await make_user("bob", "Bb123456!")
        session = (await core.login("bob", "Bb123456!")).session.token

        await core.mute(admin, "bob")
        ticket = await core.issue_csrf(await core.authenticate(session))
        with pytest.raises(PermissionDenied) as exc_info:
            await core.authorize(session, "comment", csrf_token=ticket)
        assert exc_info.value.reason is DenialReason.MUTED

        await core.unmute(admin, "bob")
        user = await core.authorize(session, "comment", csrf_token=ticket)
        assert user.username == "bob"

    @pytest.mark.asyncio
    async def test_moderator_cannot_ban(self, core, founder, make_user):
        moderator = await make_user("mod", role=Role.MODERATOR)
        await make_user("bob")

        with pytest.raises(PermissionDenied) as exc_info:
            await core.ban(moderator, "bob")
        assert exc_info.value.reason is DenialReason.INSUFFICIENT_RANK

    @pytest.mark.asyncio
    async def test_admin_cannot_ban_another_admin(self, core, founder, make_user):
        admin = await make_user("boss", role=Role.ADMIN)
        await make_user("peer", role=Role.ADMIN)

        with pytest.raises(PermissionDenied) as exc_info:
            await core.ban(admin, "peer")
        assert exc_info.value.reason is DenialReason.TARGET_OUTRANKS

    @pytest.mark.asyncio
    async def test_moderate_missing_user(self, core, founder, make_user):
        admin = await make_user("boss", role=Role.ADMIN)
        with pytest.raises(UserNotFound):
            await core.mute(admin, "ghost")

    @pytest.mark.asyncio
    async def test_set_role(self, core, founder, make_user):
        await make_user("alice")

        promoted = await core.set_role(founder, "alice", Role.ADMIN)
        assert promoted.role is Role.ADMIN

        demoted = await core.set_role(founder, "alice", Role.USER)
        assert demoted.role is Role.USER

    @pytest.mark.asyncio
    async def test_founder_role_never_assignable(self, core, founder, make_user):
        await make_user("alice")
        with pytest.raises(AuthValidationError):
            await core.set_role(founder, "alice", Role.FOUNDER)

    @pytest.mark.asyncio
    async def test_admin_cannot_set_roles(self, core, founder, make_user):
        admin = await make_user("boss", role=Role.ADMIN)
        await make_user("alice")
        with pytest.raises(PermissionDenied):
            await core.set_role(admin, "alice", Role.MODERATOR)

    @pytest.mark.asyncio
    async def test_reset_password(self, core, founder, make_user, users):
        admin = await make_user("boss", role=Role.ADMIN)
        await make_user("bob", "Bb123456!")
        old_session = (await core.login("bob", "Bb123456!")).session.token
        for _ in range(5):
            with pytest.raises(AuthenticationError):
                await core.login("bob", "wrong-pass")

        await core.reset_password(admin, "bob", "fresh-pass")

        with pytest.raises(SessionInvalid):
            await core.authenticate(old_session)
        assert (await core.login("bob", "fresh-pass")).user.username == "bob"

    @pytest.mark.asyncio
    async def test_reset_password_unlocks_legacy_account(self, core, founder, make_user, store):
        admin = await make_user("boss", role=Role.ADMIN)
        await store.put("users/oldtimer", '{"username": "oldtimer", "passwordHash": "abc"}')

        await core.reset_password(admin, "oldtimer", "fresh-pass")

        assert (await core.login("oldtimer", "fresh-pass")).user.username == "oldtimer"

    @pytest.mark.asyncio
    async def test_force_logout(self, core, founder, make_user):
        admin = await make_user("boss", role=Role.ADMIN)
        await make_user("bob", "Bb123456!")
        await core.login("bob", "Bb123456!")
        await core.login("bob", "Bb123456!")

        assert await core.force_logout(admin, "bob") == 2

    @pytest.mark.asyncio
    async def test_force_logout_self_denied(self, core, founder, make_user):
        admin = await make_user("boss", role=Role.ADMIN)
        with pytest.raises(PermissionDenied) as exc_info:
            await core.force_logout(admin, "boss")
        assert exc_info.value.reason is DenialReason.SELF_TARGET

    @pytest.mark.asyncio
    async def test_delete_user(self, core, founder, make_user, users):
        admin = await make_user("boss", role=Role.ADMIN)
        await make_user("bob", "Bb123456!")
        session = (await core.login("bob", "Bb123456!")).session.token

        await core.delete_user(admin, "bob")

        assert await users.get("bob") is None
        with pytest.raises(SessionInvalid):
            await core.authenticate(session)


class TestProfiles:
    """Test public profiles and self-service changes."""

    @pytest.mark.asyncio
    async def test_public_profile_hides_secrets(self, core, founder, make_user):
        await make_user("alice", nickname="Alice")

        profile = await core.public_profile("alice")

        assert profile["nickname"] == "Alice"
        assert "password_hash" not in profile
        assert "salt" not in profile
        assert "login_attempts" not in profile

    @pytest.mark.asyncio
    async def test_public_profile_missing(self, core):
        with pytest.raises(UserNotFound):
            await core.public_profile("ghost")

    @pytest.mark.asyncio
    async def test_update_profile(self, core, founder, make_user):
        alice = await make_user("alice")

        updated = await core.update_profile(alice, nickname="Al", avatar="https://example.com/al.png")

        assert updated.nickname == "Al"
        assert updated.avatar == "https://example.com/al.png"

    @pytest.mark.asyncio
    async def test_change_password_revokes_other_sessions(self, core, founder, make_user):
        await make_user("alice", "Aa123456!")
        current = await core.login("alice", "Aa123456!")
        other = await core.login("alice", "Aa123456!")
        alice = await core.authenticate(current.session.token)

        await core.change_password(alice, "Aa123456!", "Zz987654!", keep_token=current.session.token)

        assert (await core.authenticate(current.session.token)).username == "alice"
        with pytest.raises(SessionInvalid):
            await core.authenticate(other.session.token)
        assert (await core.login("alice", "Zz987654!")).user.username == "alice"

    @pytest.mark.asyncio
    async def test_change_password_needs_current(self, core, founder, make_user):
        alice = await make_user("alice", "Aa123456!")
        with pytest.raises(AuthValidationError, match="Current password"):
            await core.change_password(alice, "wrong-pass", "Zz987654!")

    @pytest.mark.asyncio
    async def test_logout_all(self, core, founder, make_user):
        await make_user("alice", "Aa123456!")
        first = await core.login("alice", "Aa123456!")
        await core.login("alice", "Aa123456!")

        assert await core.logout_all(first.user) == 2
        with pytest.raises(SessionInvalid):
            await core.authenticate(first.session.token)


class TestInviteCode:
    """Test the versioned invite code setting."""

    @pytest.mark.asyncio
    async def test_update_invite_code(self, core, founder, make_user):
        admin = await make_user("boss", role=Role.ADMIN)

        site = await core.update_invite_code(admin, "  new-code ", expected_version=1)

        assert site.invite_code == "new-code"
        assert site.version == 2
        assert site.updated_by == "boss"
        assert (await core.register("alice", "Aa123456!", "new-code")).username == "alice"

    @pytest.mark.asyncio
    async def test_stale_update_rejected(self, core, founder, make_user):
        admin = await make_user("boss", role=Role.ADMIN)
        await core.update_invite_code(admin, "first", expected_version=1)

        with pytest.raises(SettingsConflict):
            await core.update_invite_code(founder, "second", expected_version=1)
        assert (await core.site_settings()).invite_code == "first"

    @pytest.mark.asyncio
    async def test_requires_admin(self, core, founder, make_user):
        moderator = await make_user("mod", role=Role.MODERATOR)
        with pytest.raises(PermissionDenied):
            await core.update_invite_code(moderator, "mine", expected_version=1)
