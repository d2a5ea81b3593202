"""Exception handlers translating auth errors into JSON responses."""

import logging

from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from inkwell.auth.exceptions import (
    AuthenticationError,
    AuthError,
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

logger = logging.getLogger(__name__)

# Checked in order; subclasses come before their bases
STATUS_CODES: list[tuple[type[AuthError], int]] = [
    (UsernameTaken, 409),
    (AuthValidationError, 400),
    (AuthenticationError, 401),
    (SessionInvalid, 401),
    (CsrfRejected, 403),
    (InvalidInviteCode, 403),
    (PermissionDenied, 403),
    (UserNotFound, 404),
    (SettingsConflict, 409),
    (RateLimited, 429),
    (StorageUnavailable, 503),
]


def status_for(exc: AuthError) -> int:
    for exc_type, status in STATUS_CODES:
        if isinstance(exc, exc_type):
            return status
    return 403


def reason_for(exc: AuthError) -> str | None:
    match exc:
        case SessionInvalid() | PermissionDenied():
            return exc.reason.value
        case CsrfRejected():
            return "csrf"
        case RateLimited():
            return "rate_limited"
        case InvalidInviteCode():
            return "invalid_invite_code"
        case _:
            return None


async def auth_error_handler(request: Request, exc: AuthError) -> Response:
    """Render any AuthError as ``{"error", "reason"}`` with its mapped status."""
    if isinstance(exc, ConfigurationError):
        logger.error(f"Configuration error while handling {request.url.path}: {exc.message}")
        return JSONResponse({"error": "Internal Server Error", "reason": None}, status_code=500)

    status = status_for(exc)
    headers = {}
    if isinstance(exc, RateLimited):
        headers["Retry-After"] = str(exc.retry_after)

    logger.debug(f"{request.method} {request.url.path} -> {status} ({type(exc).__name__})")
    return JSONResponse(
        {"error": exc.message, "reason": reason_for(exc)},
        status_code=status,
        headers=headers,
    )
