"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Access tokens arrive as "Authorization: Bearer <token>". Two flavours:

  get_current_identity()   decodes the token AND loads the live identity.
                           Use when the handler needs the account itself.
  require_authority(name)  decodes the token and checks the authority claim
                           only -- no database round trip.

Failures raise AuthError subclasses (InvalidTokenError, TokenExpiredError,
ForbiddenError); api/main.py maps them to the error envelope.

Layer rule: auth/dependencies.py may import from fastapi (for Depends/Request)
because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from auth.errors import AuthenticationError, ForbiddenError
from auth.models import AccessClaims, Identity
from auth.service import SessionService


def get_session_service(request: Request) -> SessionService:
    return request.app.state.session_service


def _bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise AuthenticationError()
    return auth_header[7:]


def get_access_claims(request: Request) -> AccessClaims:
    """Verify the Bearer token locally and return its claims."""
    service = get_session_service(request)
    return service.issuer.decode_access_token(_bearer_token(request))


def get_current_identity(request: Request) -> Identity:
    """Require authentication and return the live identity.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(identity: Identity = Depends(get_current_identity)): ...
    """
    service = get_session_service(request)
    return service.authenticate_access_token(_bearer_token(request))


def require_authority(authority: str) -> Callable[[Request], AccessClaims]:
    """Build a dependency that requires `authority` in the token's claims.

    Use as a FastAPI dependency:
        @router.post("/users/{id}/unlock")
        def route(claims: AccessClaims = Depends(require_authority("users:UPDATE"))): ...
    """

    def dependency(request: Request) -> AccessClaims:
        claims = get_access_claims(request)
        if authority not in claims.authorities:
            raise ForbiddenError()
        return claims

    return dependency
