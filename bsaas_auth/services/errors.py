from __future__ import annotations

from typing import Any, Optional


class AuthError(Exception):
    """Base class for auth-core exceptions mapped to HTTP responses by core.errors."""

    status_code: int = 400
    code: str = "bad_request"
    default_message: str = "Request failed"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)
        if code is not None:
            self.code = code
        self.details = details or {}
        self.headers = headers or {}


class Unauthorized(AuthError):
    status_code = 401
    code = "unauthorized"
    default_message = "Invalid credentials"


class BadRequest(AuthError):
    status_code = 400
    code = "bad_request"
    default_message = "Bad request"


class Forbidden(AuthError):
    status_code = 403
    code = "forbidden"
    default_message = "Forbidden"


class Conflict(AuthError):
    status_code = 409
    code = "conflict"
    default_message = "Conflict"


class FeatureUnavailable(AuthError):
    status_code = 501
    code = "not_configured"
    default_message = "Feature not configured"


__all__ = [
    "AuthError",
    "Unauthorized",
    "BadRequest",
    "Forbidden",
    "Conflict",
    "FeatureUnavailable",
]
