"""JSON endpoints for accounts, sessions and moderation."""

from bevy import Inject, injectable
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from inkwell.auth.auth_core import AuthCore
from inkwell.auth.config.schema import AuthConfig
from inkwell.auth.exceptions import AuthValidationError, PermissionDenied
from inkwell.auth.types import DenialReason, Role, SiteSettings
from inkwell.http.guard import gate, json_body, optional_field, require_field, session_token
from inkwell.http.router import Router

router = Router()


def settings_payload(settings: SiteSettings) -> dict:
    return {
        "registration_open": settings.registration_open,
        "invite_code": settings.invite_code,
        "version": settings.version,
        "updated_by": settings.updated_by,
        "updated_at": settings.updated_at.isoformat() if settings.updated_at else None,
    }


def clear_session_cookie(response: Response, config: AuthConfig) -> None:
    response.delete_cookie(
        config.sessions.cookie_name,
        secure=config.sessions.cookie_secure,
        httponly=True,
        samesite="lax",
    )


# Accounts and sessions


@router.route("/api/register", {"POST"})
@injectable
async def register(request: Inject[Request], auth: Inject[AuthCore]) -> Response:
    body = await json_body(request)
    user = await auth.register(
        require_field(body, "username"),
        require_field(body, "password"),
        optional_field(body, "invite_code"),
        nickname=optional_field(body, "nickname"),
        avatar=optional_field(body, "avatar"),
    )
    return JSONResponse({"user": user.public_profile()}, status_code=201)


@router.route("/api/login", {"POST"})
@injectable
async def login(request: Inject[Request], auth: Inject[AuthCore], config: Inject[AuthConfig]) -> Response:
    body = await json_body(request)
    result = await auth.login(require_field(body, "username"), require_field(body, "password"))

    response = JSONResponse(
        {
            "user": result.user.public_profile(),
            "csrf_token": result.csrf_token,
            "expires_at": result.session.expires_at.isoformat(),
        }
    )
    response.set_cookie(
        config.sessions.cookie_name,
        result.session.token,
        max_age=config.sessions.ttl_seconds,
        secure=config.sessions.cookie_secure,
        httponly=True,
        samesite="lax",
    )
    return response


@router.route("/api/logout", {"POST"})
@injectable
async def logout(request: Inject[Request], auth: Inject[AuthCore], config: Inject[AuthConfig]) -> Response:
    await auth.logout(session_token(request, config))
    response = JSONResponse({"logged_out": True})
    clear_session_cookie(response, config)
    return response


@router.route("/api/logout-all", {"POST"})
@injectable
async def logout_all(request: Inject[Request], auth: Inject[AuthCore], config: Inject[AuthConfig]) -> Response:
    user = await gate(request, auth, config, "none")
    removed = await auth.logout_all(user)
    response = JSONResponse({"sessions_ended": removed})
    clear_session_cookie(response, config)
    return response


@router.route("/api/me")
@injectable
async def me(request: Inject[Request], auth: Inject[AuthCore], config: Inject[AuthConfig]) -> Response:
    user = await gate(request, auth, config, "view")
    return JSONResponse({"user": user.public_profile(), "csrf_token": await auth.issue_csrf(user)})


@router.route("/api/csrf")
@injectable
async def csrf(request: Inject[Request], auth: Inject[AuthCore], config: Inject[AuthConfig]) -> Response:
    user = await gate(request, auth, config, "view")
    return JSONResponse({"csrf_token": await auth.issue_csrf(user)})


# Profiles


@router.route("/api/users/{username}")
@injectable
async def public_profile(username: str, auth: Inject[AuthCore]) -> Response:
    return JSONResponse({"user": await auth.public_profile(username)})


@router.route("/api/users/{username}/profile", {"PUT"})
@injectable
async def update_profile(
    username: str, request: Inject[Request], auth: Inject[AuthCore], config: Inject[AuthConfig]
) -> Response:
    body = await json_body(request)
    user = await gate(request, auth, config, "update_profile")
    if user.username != username:
        raise PermissionDenied(DenialReason.INSUFFICIENT_RANK, "update_profile")

    user = await auth.update_profile(
        user,
        nickname=optional_field(body, "nickname"),
        avatar=optional_field(body, "avatar"),
    )
    return JSONResponse({"user": user.public_profile()})


@router.route("/api/users/{username}/password", {"PUT"})
@injectable
async def change_password(
    username: str, request: Inject[Request], auth: Inject[AuthCore], config: Inject[AuthConfig]
) -> Response:
    body = await json_body(request)
    user = await gate(request, auth, config, "change_password")
    if user.username != username:
        raise PermissionDenied(DenialReason.INSUFFICIENT_RANK, "change_password")

    await auth.change_password(
        user,
        require_field(body, "current_password"),
        require_field(body, "new_password"),
        keep_token=session_token(request, config),
    )
    return JSONResponse({"password_changed": True, "csrf_token": await auth.issue_csrf(user)})


# Moderation


async def moderate(request: Request, auth: AuthCore, config: AuthConfig, action: str):
    body = await json_body(request)
    target = require_field(body, "username")
    actor = await gate(request, auth, config, action, target=target)
    return actor, target, body


@router.route("/api/admin/ban", {"POST"})
@injectable
async def ban(request: Inject[Request], auth: Inject[AuthCore], config: Inject[AuthConfig]) -> Response:
    actor, target, _ = await moderate(request, auth, config, "ban")
    user = await auth.ban(actor, target)
    return JSONResponse({"user": user.public_profile()})


@router.route("/api/admin/unban", {"POST"})
@injectable
async def unban(request: Inject[Request], auth: Inject[AuthCore], config: Inject[AuthConfig]) -> Response:
    actor, target, _ = await moderate(request, auth, config, "unban")
    user = await auth.unban(actor, target)
    return JSONResponse({"user": user.public_profile()})


@router.route("/api/admin/mute", {"POST"})
@injectable
async def mute(request: Inject[Request], auth: Inject[AuthCore], config: Inject[AuthConfig]) -> Response:
    actor, target, _ = await moderate(request, auth, config, "mute")
    user = await auth.mute(actor, target)
    return JSONResponse({"user": user.public_profile()})


@router.route("/api/admin/unmute", {"POST"})
@injectable
async def unmute(request: Inject[Request], auth: Inject[AuthCore], config: Inject[AuthConfig]) -> Response:
    actor, target, _ = await moderate(request, auth, config, "unmute")
    user = await auth.unmute(actor, target)
    return JSONResponse({"user": user.public_profile()})


@router.route("/api/admin/force-logout", {"POST"})
@injectable
async def force_logout(request: Inject[Request], auth: Inject[AuthCore], config: Inject[AuthConfig]) -> Response:
    actor, target, _ = await moderate(request, auth, config, "force_logout")
    removed = await auth.force_logout(actor, target)
    return JSONResponse({"sessions_ended": removed})


@router.route("/api/admin/reset-password", {"POST"})
@injectable
async def reset_password(request: Inject[Request], auth: Inject[AuthCore], config: Inject[AuthConfig]) -> Response:
    actor, target, body = await moderate(request, auth, config, "reset_password")
    user = await auth.reset_password(actor, target, require_field(body, "password"))
    return JSONResponse({"user": user.public_profile()})


@router.route("/api/admin/role", {"POST"})
@injectable
async def set_role(request: Inject[Request], auth: Inject[AuthCore], config: Inject[AuthConfig]) -> Response:
    actor, target, body = await moderate(request, auth, config, "set_role")
    try:
        role = Role(require_field(body, "role"))
    except ValueError as e:
        raise AuthValidationError(f"Unknown role '{body.get('role')}'") from e

    user = await auth.set_role(actor, target, role)
    return JSONResponse({"user": user.public_profile()})


@router.route("/api/admin/users/{username}", {"DELETE"})
@injectable
async def delete_user(
    username: str, request: Inject[Request], auth: Inject[AuthCore], config: Inject[AuthConfig]
) -> Response:
    actor = await gate(request, auth, config, "delete_user", target=username)
    await auth.delete_user(actor, username)
    return JSONResponse({"deleted": username})


# Site settings


@router.route("/api/admin/settings")
@injectable
async def site_settings(request: Inject[Request], auth: Inject[AuthCore], config: Inject[AuthConfig]) -> Response:
    await gate(request, auth, config, "manage_settings")
    return JSONResponse({"settings": settings_payload(await auth.site_settings())})


@router.route("/api/admin/settings/invite-code", {"PUT"})
@injectable
async def update_invite_code(
    request: Inject[Request], auth: Inject[AuthCore], config: Inject[AuthConfig]
) -> Response:
    body = await json_body(request)
    version = body.get("version")
    if version is not None and (isinstance(version, bool) or not isinstance(version, int)):
        raise AuthValidationError("'version' must be an integer")

    actor = await gate(request, auth, config, "manage_invite_code")
    settings = await auth.update_invite_code(actor, optional_field(body, "invite_code"), version)
    return JSONResponse({"settings": settings_payload(settings)})
