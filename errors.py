"""
Error taxonomy for the Airline Manual Admin backend.

Every failure that can reach a caller is a ServiceError subclass carrying a
stable ``kind`` and an HTTP-style ``status_code``. Services raise these;
api_response turns them into structured error envelopes.

Kinds:
- validation_error (400): malformed input
- unauthenticated (401): missing/invalid/expired token, inactive account
- invalid_credentials (401): login failure (same message for every cause)
- forbidden (403): role or tenant mismatch
- not_found (404): entity absent after access was authorized
- conflict (409): duplicate email / airline code
- invalid_or_expired_token (400): password reset token rejected
- invalid_refresh_token (401): refresh token rejected
"""

from typing import Any, Dict, Optional


class ServiceError(Exception):
    """Base class for errors surfaced to API callers."""
    kind: str = "server_error"
    status_code: int = 500

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    @property
    def default_message(self) -> str:
        return "Internal server error"

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(ServiceError):
    """Request input is malformed (400)."""
    kind = "validation_error"
    status_code = 400

    @property
    def default_message(self) -> str:
        return "Bad request"


class Unauthenticated(ServiceError):
    """No usable identity for this request (401)."""
    kind = "unauthenticated"
    status_code = 401

    @property
    def default_message(self) -> str:
        return "Authentication required"


class InvalidCredentials(Unauthenticated):
    """Login failed. The message never says which part was wrong."""
    kind = "invalid_credentials"

    def __init__(self, details: Optional[Dict[str, Any]] = None):
        super().__init__("Invalid credentials", details)


class Forbidden(ServiceError):
    """Authenticated, but the role or tenant does not allow this (403)."""
    kind = "forbidden"
    status_code = 403

    @property
    def default_message(self) -> str:
        return "You do not have permission to perform this action"


class NotFound(ServiceError):
    kind = "not_found"
    status_code = 404

    @property
    def default_message(self) -> str:
        return "Resource not found"


class Conflict(ServiceError):
    kind = "conflict"
    status_code = 409

    @property
    def default_message(self) -> str:
        return "Resource already exists"


class InvalidOrExpiredToken(ServiceError):
    """A reset or refresh token was unknown, used up, or past its expiry."""
    kind = "invalid_or_expired_token"
    status_code = 400

    @property
    def default_message(self) -> str:
        return "Invalid or expired token"


class InvalidRefreshToken(InvalidOrExpiredToken):
    kind = "invalid_refresh_token"
    status_code = 401

    @property
    def default_message(self) -> str:
        return "Invalid or expired refresh token"


__all__ = [
    "ServiceError",
    "ValidationError",
    "Unauthenticated",
    "InvalidCredentials",
    "Forbidden",
    "NotFound",
    "Conflict",
    "InvalidOrExpiredToken",
    "InvalidRefreshToken",
]
