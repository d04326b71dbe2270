"""Authentication helpers: identity error codes and bearer-secret checks."""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Dict, Optional

from ..errors import GolfImproverError

INVALID_CREDENTIAL = "auth/invalid-credential"
INVALID_EMAIL = "auth/invalid-email"
USER_DISABLED = "auth/user-disabled"
USER_NOT_FOUND = "auth/user-not-found"
EMAIL_ALREADY_IN_USE = "auth/email-already-in-use"
WEAK_PASSWORD = "auth/weak-password"
OPERATION_NOT_ALLOWED = "auth/operation-not-allowed"
UNAUTHENTICATED = "auth/unauthenticated"

_FRIENDLY_MESSAGES: Dict[str, str] = {
    INVALID_CREDENTIAL: "Invalid email or password. Please try again.",
    INVALID_EMAIL: "Please enter a valid email address.",
    USER_DISABLED: "This account has been disabled. Please contact support.",
    USER_NOT_FOUND: "No account found with this email. Please sign up first.",
    EMAIL_ALREADY_IN_USE: "An account with this email already exists. Please log in.",
    WEAK_PASSWORD: "Password should be at least 6 characters.",
    UNAUTHENTICATED: "Please log in to continue.",
}


def friendly_message(code: Optional[str], raw_message: str = "") -> str:
    """Return the user-facing message for an identity error code.

    Codes without a mapping fall back to the provider's own message.
    """

    if code and code in _FRIENDLY_MESSAGES:
        return _FRIENDLY_MESSAGES[code]
    return raw_message or "Authentication failed. Please try again."


@dataclass
class AuthError(GolfImproverError):
    """Raised when an identity operation or request authentication fails."""

    message: str
    code: Optional[str] = None
    status_code: int = 401

    def __str__(self) -> str:  # pragma: no cover - dataclass convenience
        return self.message

    @property
    def user_message(self) -> str:
        return friendly_message(self.code, self.message)


def bearer_token(header_value: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""

    if not header_value or not header_value.startswith("Bearer "):
        return None
    token = header_value[len("Bearer "):].strip()
    return token or None


def verify_bearer_secret(header_value: Optional[str], secret: Optional[str]) -> None:
    """Validate a shared-secret bearer header.

    Raises
    ------
    AuthError
        If the secret is not configured on the server, or the header is missing
        or does not match.
    """

    if not secret:
        raise AuthError("Unauthorized", code=UNAUTHENTICATED)

    token = bearer_token(header_value)
    if token is None or not hmac.compare_digest(token.encode(), secret.encode()):
        raise AuthError("Unauthorized", code=UNAUTHENTICATED)
