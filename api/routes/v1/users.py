"""
api/routes/v1/users.py -- Administrative identity endpoints.

Routes:
  GET  /api/v1/users/{id}         -- identity summary (authority users:READ)
  POST /api/v1/users/{id}/unlock  -- clear lockout (authority users:UPDATE)

Authority checks use the claims inside the access token (require_authority),
so they cost no database round trip. Unlock bypasses the authentication path
of the target account entirely: no secret, no counter, just the transition.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from api.models import IdentityResponse
from auth.dependencies import get_session_service, require_authority
from auth.models import AccessClaims
from auth.service import SessionService

router = APIRouter()


@router.get("/users/{identity_id}", response_model=IdentityResponse)
def get_user(
    identity_id: int,
    claims: AccessClaims = Depends(require_authority("users:READ")),
    service: SessionService = Depends(get_session_service),
) -> IdentityResponse:
    """Return one identity. 404 if absent or soft-deleted."""
    return IdentityResponse.from_identity(service.get_identity(identity_id))


@router.post("/users/{identity_id}/unlock", status_code=204)
def unlock_user(
    identity_id: int,
    claims: AccessClaims = Depends(require_authority("users:UPDATE")),
    service: SessionService = Depends(get_session_service),
) -> Response:
    """Unlock an account and reset its failed-attempt counter. 404 if absent."""
    service.unlock(identity_id)
    return Response(status_code=204)
