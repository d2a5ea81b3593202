"""Exception classes for the authentication system."""


class AuthError(Exception):
    """Base exception for all authentication-related errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class AuthenticationError(AuthError):
    """Raised when credentials are rejected.

    The message is identical whether or not the username exists.
    """

    def __init__(self, details: dict | None = None):
        super().__init__("Invalid username or password", details)


class SessionInvalid(AuthError):
    """Raised when a session is missing, expired, revoked or invalidated by a ban."""

    def __init__(self, reason, details: dict | None = None):
        self.reason = reason
        super().__init__("Your session is no longer valid, please log in again", details)


class AuthorizationError(AuthError):
    """Raised when authorization fails."""

    pass


class PermissionDenied(AuthorizationError):
    """Raised when a rank or moderation-flag gate fails for an action."""

    def __init__(self, reason, action: str | None = None, details: dict | None = None):
        self.reason = reason
        self.action = action

        if action:
            message = f"Permission denied for '{action}': {reason.description}"
        else:
            message = f"Permission denied: {reason.description}"

        super().__init__(message, details)


class CsrfRejected(AuthorizationError):
    """Raised when a request-forgery ticket is missing, expired, reused or foreign."""

    def __init__(self, details: dict | None = None):
        super().__init__("Invalid or expired form token", details)


class RateLimited(AuthError):
    """Raised while the login lockout window is active."""

    def __init__(self, retry_after: int, details: dict | None = None):
        self.retry_after = retry_after
        super().__init__("Too many failed login attempts, try again later", details)


class StorageUnavailable(AuthError):
    """Raised when the store collaborator fails or returns malformed data.

    The message never carries store keys or internal state.
    """

    def __init__(self, details: dict | None = None):
        super().__init__("The service is temporarily unavailable", details)


class InvalidInviteCode(AuthorizationError):
    """Raised when registration is closed or the invite code does not match."""

    def __init__(self, details: dict | None = None):
        super().__init__("The invite code is not valid", details)


class AuthValidationError(AuthError):
    """Raised when auth input validation fails."""

    pass


class UsernameTaken(AuthValidationError):
    """Raised when registering a username that already exists."""

    def __init__(self, username: str):
        self.username = username
        super().__init__(f"Username '{username}' is already taken")


class UserNotFound(AuthError):
    """Raised when an operation targets an account that does not exist."""

    def __init__(self, username: str):
        self.username = username
        super().__init__(f"User '{username}' does not exist")


class SettingsConflict(AuthError):
    """Raised when a settings update is based on a stale version."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Settings were changed by someone else (expected version {expected}, found {actual})"
        )


class ConfigurationError(AuthError):
    """Raised when auth configuration is invalid."""

    pass
