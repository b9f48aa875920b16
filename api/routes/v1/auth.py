"""
api/routes/v1/auth.py -- Session endpoints.

Routes:
  POST /api/v1/auth/register  -- create identity; returns token pair (201)
  POST /api/v1/auth/login     -- username-or-email + secret; returns token pair
  POST /api/v1/auth/refresh   -- rotate refresh token; returns new token pair
  POST /api/v1/auth/logout    -- revoke one refresh session; always 204
  GET  /api/v1/auth/me        -- current identity (requires Bearer access token)

Handlers are plain `def`: FastAPI runs them in its threadpool, so the bcrypt
work and the per-identity locks in SessionService never block the event loop.

Security:
  [C1] SessionService.login() equalizes timing for unknown identifiers -- call
       it, never inline lookup + verify.
  [M5] Cache-Control: no-store on every response that carries tokens.
  Errors are raised as AuthError subclasses and rendered by api/main.py.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse

from api.models import AuthResponse, IdentityResponse, LoginRequest, LogoutRequest, RefreshRequest, RegisterRequest
from auth.dependencies import get_current_identity, get_session_service
from auth.models import Identity, IssuedSession
from auth.service import SessionService

# Auth policy:
# - POST /api/v1/auth/register: public
# - POST /api/v1/auth/login:    public
# - POST /api/v1/auth/refresh:  public -- the refresh token is the credential
# - POST /api/v1/auth/logout:   public -- revoking needs no access token
# - GET  /api/v1/auth/me:       requires auth (get_current_identity)
router = APIRouter()


def _token_response(issued: IssuedSession, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=AuthResponse.from_issued(issued).model_dump(mode="json"),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(body: RegisterRequest, service: SessionService = Depends(get_session_service)) -> JSONResponse:
    """Create an identity with the default roles and return its first token pair.

    409 duplicate_username / duplicate_email if either is already in use.
    """
    issued = service.register(body.username, body.email, body.secret)
    return _token_response(issued, status_code=201)


@router.post("/auth/login", response_model=AuthResponse)
def login(body: LoginRequest, service: SessionService = Depends(get_session_service)) -> JSONResponse:
    """Authenticate and return a fresh token pair; all older sessions are revoked.

    Returns the same 401 invalid_credentials for an unknown identifier and a
    wrong secret. Locked accounts get 401 account_locked.
    """
    issued = service.login(body.username_or_email, body.secret)
    return _token_response(issued)


@router.post("/auth/refresh", response_model=AuthResponse)
def refresh(body: RefreshRequest, service: SessionService = Depends(get_session_service)) -> JSONResponse:
    """Exchange a refresh token for a new pair. The presented token stops working."""
    issued = service.refresh(body.refresh_token)
    return _token_response(issued)


@router.post("/auth/logout", status_code=204)
def logout(
    body: Optional[LogoutRequest] = None,
    service: SessionService = Depends(get_session_service),
) -> Response:
    """Revoke the supplied refresh session. Idempotent: no body, or an unknown
    token, is still a 204."""
    service.logout(body.refresh_token if body is not None else None)
    return Response(status_code=204)


@router.get("/auth/me", response_model=IdentityResponse)
def me(identity: Identity = Depends(get_current_identity)) -> IdentityResponse:
    """Return the identity behind the presented access token."""
    return IdentityResponse.from_identity(identity)
