"""
API request and response models for Gatehouse REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import Identity, IssuedSession
from auth.passwords import MAX_SECRET_BYTES


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    username and email are trimmed; secret is kept byte-for-byte as typed, the
    same way login reads it.
    """

    username: str = Field(min_length=3, max_length=100, pattern=r"^[A-Za-z0-9_.-]+$")
    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    secret: str = Field(min_length=8)

    @field_validator("username", "email", mode="before")
    @classmethod
    def strip_identifiers(cls, value: object) -> object:
        """Trim surrounding whitespace before the length and pattern checks run."""
        return value.strip() if isinstance(value, str) else value

    @field_validator("secret")
    @classmethod
    def secret_fits_bcrypt(cls, value: str) -> str:
        """bcrypt's limit is bytes, not characters: "é" * 72 is 144 bytes."""
        if len(value.encode("utf-8")) > MAX_SECRET_BYTES:
            raise ValueError(f"secret must be at most {MAX_SECRET_BYTES} bytes when UTF-8 encoded")
        return value


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login. Accepts a username or an email.

    No byte check on secret: an over-long secret cannot match any stored hash
    and fails as invalid_credentials.
    """

    username_or_email: str = Field(min_length=1, max_length=255)
    secret: str = Field(min_length=1, max_length=4 * MAX_SECRET_BYTES)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(min_length=1, max_length=512)


class LogoutRequest(BaseModel):
    """Optional body for POST /api/v1/auth/logout. No length limits: logout never fails."""

    refresh_token: Optional[str] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class IdentityResponse(BaseModel):
    """Identity summary. Never carries the credential hash or lockout counter."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    email_verified: bool
    account_locked: bool
    last_login_at: Optional[datetime]
    roles: list[str]
    created_at: Optional[datetime]

    @classmethod
    def from_identity(cls, identity: Identity) -> "IdentityResponse":
        """Factory Method: the domain -> transport mapping lives with the output model."""
        return cls(
            id=identity.id,
            username=identity.username,
            email=identity.email,
            email_verified=identity.email_verified,
            account_locked=identity.account_locked,
            last_login_at=identity.last_login_at,
            roles=sorted(identity.roles),
            created_at=identity.created_at,
        )


class AuthResponse(BaseModel):
    """Credential pair returned by register, login and refresh."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int
    user: IdentityResponse

    @classmethod
    def from_issued(cls, issued: IssuedSession) -> "AuthResponse":
        return cls(
            access_token=issued.access_token,
            refresh_token=issued.refresh_token,
            token_type=issued.token_type,
            expires_in=issued.expires_in,
            user=IdentityResponse.from_identity(issued.identity),
        )


class ErrorDetail(BaseModel):
    """Structured error information included in every error response."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope: {"error": {...}}."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response body for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
