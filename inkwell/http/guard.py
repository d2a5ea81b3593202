"""Helpers that pull credentials out of a request and run the per-request gate."""

from typing import Any

from starlette.requests import Request

from inkwell.auth.auth_core import AuthCore
from inkwell.auth.config.schema import AuthConfig
from inkwell.auth.exceptions import AuthValidationError
from inkwell.auth.types import User

SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}


def session_token(request: Request, config: AuthConfig) -> str | None:
    return request.cookies.get(config.sessions.cookie_name)


async def json_body(request: Request) -> dict[str, Any]:
    """The request body as a JSON object; an empty body reads as ``{}``."""
    if not await request.body():
        return {}

    try:
        body = await request.json()
    except ValueError as e:
        raise AuthValidationError("Request body is not valid JSON") from e

    if not isinstance(body, dict):
        raise AuthValidationError("Request body must be a JSON object")
    return body


async def csrf_token(request: Request, config: AuthConfig) -> str | None:
    """The CSRF ticket from the configured header, falling back to the body field."""
    token = request.headers.get(config.csrf.header_name)
    if token:
        return token

    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        value = (await json_body(request)).get(config.csrf.form_field)
        return value if isinstance(value, str) else None

    if content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
        value = (await request.form()).get(config.csrf.form_field)
        return value if isinstance(value, str) else None

    return None


async def gate(
    request: Request,
    auth: AuthCore,
    config: AuthConfig,
    action: str,
    *,
    target: str | None = None,
    resource_owner: str | None = None,
) -> User:
    """Authorize ``action`` for the request's session; safe methods skip the CSRF check."""
    mutating = request.method not in SAFE_METHODS
    return await auth.authorize(
        session_token(request, config),
        action,
        csrf_token=await csrf_token(request, config) if mutating else None,
        mutating=mutating,
        target=target,
        resource_owner=resource_owner,
    )


def require_field(body: dict[str, Any], name: str) -> str:
    value = body.get(name)
    if not isinstance(value, str) or not value:
        raise AuthValidationError(f"'{name}' is required")
    return value


def optional_field(body: dict[str, Any], name: str) -> str | None:
    value = body.get(name)
    if value is None:
        return None
    if not isinstance(value, str):
        raise AuthValidationError(f"'{name}' must be a string")
    return value
