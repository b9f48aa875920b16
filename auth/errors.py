"""
auth/errors.py -- Typed failures raised by the authentication core.

Every error carries the HTTP status and the stable error code the API layer
puts in the error envelope, so api/main.py needs a single exception handler
for the whole taxonomy:

  ValidationError      409  duplicate identity fields
  AuthenticationError  401  invalid credentials, locked, unverified
  TokenError           401  refresh/access token not usable
  ForbiddenError       403  authenticated but missing an authority
  NotFoundError        404  unknown identity on direct lookup
  SecretTooLongError   422  secret over bcrypt's 72-byte input limit

Storage-layer faults (sqlalchemy.exc.OperationalError and friends) are NOT
wrapped -- they propagate to the generic 500 handler.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for recoverable, user-facing authentication failures."""

    status_code: int = 400
    error_code: str = "auth_error"
    default_message: str = "Authentication request failed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Validation (409)
# ---------------------------------------------------------------------------


class ValidationError(AuthError):
    status_code = 409
    error_code = "conflict"
    default_message = "Identity conflicts with an existing account."


class DuplicateUsernameError(ValidationError):
    error_code = "duplicate_username"
    default_message = "Username is already taken."


class DuplicateEmailError(ValidationError):
    error_code = "duplicate_email"
    default_message = "Email is already registered."


# ---------------------------------------------------------------------------
# Authentication (401)
# ---------------------------------------------------------------------------


class AuthenticationError(AuthError):
    status_code = 401
    error_code = "unauthorized"
    default_message = "Authentication required."


class InvalidCredentialsError(AuthenticationError):
    """Wrong secret OR unknown identifier. The two are never distinguished."""

    error_code = "invalid_credentials"
    default_message = "Invalid username or password."


class AccountLockedError(AuthenticationError):
    error_code = "account_locked"
    default_message = "Account is locked. Contact an administrator."


class EmailNotVerifiedError(AuthenticationError):
    error_code = "email_not_verified"
    default_message = "Email address has not been verified."


# ---------------------------------------------------------------------------
# Tokens (401)
# ---------------------------------------------------------------------------


class TokenError(AuthError):
    status_code = 401
    error_code = "invalid_token"
    default_message = "Token is not valid."


class TokenNotFoundError(TokenError):
    error_code = "token_not_found"
    default_message = "Refresh token not recognised."


class TokenExpiredError(TokenError):
    error_code = "token_expired"
    default_message = "Token has expired."


class TokenRevokedError(TokenError):
    error_code = "token_revoked"
    default_message = "Refresh token has been revoked."


class InvalidTokenError(TokenError):
    """Bad signature, malformed structure, or wrong token type."""

    error_code = "invalid_token"
    default_message = "Token is not valid."


# ---------------------------------------------------------------------------
# Authorization and lookup
# ---------------------------------------------------------------------------


class ForbiddenError(AuthError):
    status_code = 403
    error_code = "forbidden"
    default_message = "Insufficient permissions."


class NotFoundError(AuthError):
    status_code = 404
    error_code = "not_found"
    default_message = "User not found."


# ---------------------------------------------------------------------------
# Unprocessable input (422)
# ---------------------------------------------------------------------------


class SecretTooLongError(AuthError):
    """The secret encodes to more bytes than bcrypt accepts."""

    status_code = 422
    error_code = "validation_error"
    default_message = "Secret must be at most 72 bytes when UTF-8 encoded."
