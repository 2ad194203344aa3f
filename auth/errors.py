"""
auth/errors.py -- Closed error taxonomy for the auth subsystem.

Every failure that leaves auth/ is an AuthError carrying exactly one ErrorKind.
Callers branch on `exc.kind`, never on message text. The HTTP layer owns the
kind -> status code mapping; nothing in auth/ knows about HTTP.

Layer rule: stdlib only.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    USER_DISABLED = "user_disabled"
    EMAIL_TAKEN = "email_taken"
    USERNAME_TAKEN = "username_taken"
    INVALID_TOKEN = "invalid_token"
    TOKEN_EXPIRED = "token_expired"
    TOKEN_REVOKED = "token_revoked"
    NOT_FOUND = "not_found"
    PASSWORD_TOO_SHORT = "password_too_short"
    INTERNAL = "internal_error"


# Safe, user-facing default messages. Internal context goes in the exception
# chain (raise ... from exc), not here.
_DEFAULT_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.INVALID_CREDENTIALS: "Invalid credentials.",
    ErrorKind.USER_DISABLED: "User account is disabled.",
    ErrorKind.EMAIL_TAKEN: "Email already registered.",
    ErrorKind.USERNAME_TAKEN: "Username already taken.",
    ErrorKind.INVALID_TOKEN: "Invalid token.",
    ErrorKind.TOKEN_EXPIRED: "Token expired.",
    ErrorKind.TOKEN_REVOKED: "Token revoked.",
    ErrorKind.NOT_FOUND: "Resource not found.",
    ErrorKind.PASSWORD_TOO_SHORT: "Password must be at least 8 characters.",
    ErrorKind.INTERNAL: "An unexpected error occurred.",
}


class AuthError(Exception):
    """A classified auth failure.

    `message` is safe to return to API clients. Wrap lower-level exceptions
    with `raise AuthError(ErrorKind.INTERNAL, "...") from exc` so the cause is
    kept for logging without leaking into the response.
    """

    def __init__(self, kind: ErrorKind, message: str | None = None) -> None:
        self.kind = kind
        self.message = message or _DEFAULT_MESSAGES[kind]
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"AuthError({self.kind.value!r}, {self.message!r})"
