"""
auth/errors.py -- Typed failures raised by the authentication core.

Each class carries the HTTP status and stable error code the API layer
renders, plus a default public message. Messages are written for the caller:
they never name internal identifiers or say whether an account exists.

api/main.py installs one exception handler for AuthError; services raise,
routes stay thin.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for authentication and authorization failures."""

    status_code: int = 400
    code: str = "bad_request"
    message: str = "Request could not be completed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        if message is not None:
            self.message = message


class RateLimited(AuthError):
    status_code = 429
    code = "rate_limited"
    message = "A code was sent recently. Please wait before requesting another."


class EmailNotEligible(AuthError):
    status_code = 400
    code = "email_not_eligible"
    message = "A code cannot be sent to this email for that purpose."


class NotifierFailure(AuthError):
    status_code = 503
    code = "delivery_failed"
    message = "The verification email could not be delivered. Please try again later."


class InvalidCode(AuthError):
    """Wrong, unknown, or already-used code. The three cases look the same."""

    status_code = 400
    code = "invalid_code"
    message = "The verification code is invalid."


class CodeExpired(AuthError):
    status_code = 400
    code = "code_expired"
    message = "The verification code has expired."


class Conflict(AuthError):
    status_code = 409
    code = "conflict"
    message = "An account with this email already exists."


class Unauthorized(AuthError):
    status_code = 401
    code = "unauthorized"
    message = "Authentication required."


class TokenExpired(Unauthorized):
    message = "Token has expired."


class TokenInvalid(Unauthorized):
    message = "Token is invalid."


class Forbidden(AuthError):
    status_code = 403
    code = "forbidden"
    message = "Insufficient permissions."
