from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each subclass carries the HTTP status it maps to. ``public_message`` is
    what the client sees; for 401 and 5xx classes it is a fixed generic
    string so that token, configuration or storage details never leak.
    """

    status_code: int = 400
    generic_message: Optional[str] = None

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    @property
    def public_message(self) -> str:
        return self.generic_message or self.message


class ConfigurationError(ServiceError):
    """Invalid or missing process configuration; fatal at startup."""
    status_code = 500
    generic_message = "internal server error"


class BadRequestError(ServiceError):
    """Request is malformed or fails a protocol check (400)."""
    status_code = 400


class UpstreamError(BadRequestError):
    """The identity provider rejected or failed a request (400).

    The provider's HTTP status is reflected in the message; response bodies
    are not, since they may echo client credentials.
    """

    def __init__(self, message: str, *, upstream_status: Optional[int] = None) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    generic_message = "unauthorized"


class InvalidTokenError(AuthenticationError):
    """Session token is structurally invalid."""


class TokenExpiredError(AuthenticationError):
    """Session token was valid but its expiration has passed."""


class ForbiddenError(ServiceError):
    """Request refused, e.g. failed CSRF verification (403)."""
    status_code = 403


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404


class RateLimitedError(ServiceError):
    """Rate limit exceeded (429)."""
    status_code = 429
    generic_message = "too many requests"


class ServerError(ServiceError):
    """Internal server error (500)."""
    status_code = 500
    generic_message = "internal server error"


__all__ = [
    "ServiceError",
    "ConfigurationError",
    "BadRequestError",
    "UpstreamError",
    "AuthenticationError",
    "InvalidTokenError",
    "TokenExpiredError",
    "ForbiddenError",
    "NotFoundError",
    "RateLimitedError",
    "ServerError",
]
