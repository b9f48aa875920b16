"""
auth/tokens.py -- Access token signing and refresh token generation.

Security design decisions:
  Access tokens: python-jose with HS256. Signed with SECRET_KEY and carry the
       identity id (sub), username, authority set, iat, exp and a "type" claim.
       Verification needs no database round trip. Expiry and every other
       failure raise different TokenError subclasses so callers can decide
       whether a refresh is worth attempting.

  Refresh tokens: secrets.token_urlsafe(48) gives 384 bits of entropy and no
       structure. Their only proof of validity is a live row in the refresh
       session store.

  Refresh digests: HMAC-SHA256(SECRET_KEY, raw_token). Deterministic, so the
       same token hashes to the same value at issue time and at lookup time
       (O(1) via the unique index). bcrypt's random salt would make lookup
       impossible, and its intentional slowness buys nothing for a 384-bit
       random value.

  Key lifecycle: the TokenIssuer is built once in the application lifespan
       from get_settings() and holds the key for the life of the process.
       Rotating the signing key means standing up a new TokenIssuer that
       accepts the old key for decode until outstanding access tokens expire.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import InvalidTokenError, TokenExpiredError
from auth.models import AccessClaims

if TYPE_CHECKING:
    from auth.models import Identity


_ALGORITHM = "HS256"
_ACCESS_TYPE = "access"
_REQUIRED_CLAIMS = ("sub", "username", "authorities", "iat", "exp", "type")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def refresh_token_digest(raw_token: str, key: str) -> str:
    """Return HMAC-SHA256(key, raw_token) as a hex string."""
    return hmac.new(key.encode(), raw_token.encode(), hashlib.sha256).hexdigest()


class TokenIssuer:
    """Mint and verify access tokens; mint opaque refresh tokens.

    Usage:
        issuer = TokenIssuer(settings.secret_key, settings.access_token_expire_seconds)
        token, expires_at = issuer.issue_access_token(identity, {"users:READ"})
        claims = issuer.decode_access_token(token)
    """

    def __init__(
        self,
        secret_key: str,
        access_ttl_seconds: int,
        algorithm: str = _ALGORITHM,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._secret_key = secret_key
        self._algorithm = algorithm
        self.access_ttl_seconds = access_ttl_seconds
        self._clock = clock

    def issue_access_token(self, identity: Identity, authorities: Iterable[str]) -> tuple[str, datetime]:
        """Encode a signed access token. Returns (token, expires_at)."""
        issued_at = self._clock()
        expires_at = issued_at + timedelta(seconds=self.access_ttl_seconds)
        payload = {
            "sub": str(identity.id),
            "username": identity.username,
            "authorities": sorted(set(authorities)),
            "iat": issued_at,
            "exp": expires_at,
            "type": _ACCESS_TYPE,
        }
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm), expires_at

    def issue_refresh_token(self) -> str:
        return secrets.token_urlsafe(48)

    def decode_access_token(self, token: str) -> AccessClaims:
        """Verify signature and expiry and return the claims.

        Raises TokenExpiredError when exp has passed (signature was fine), and
        InvalidTokenError for everything else: bad signature, garbage input,
        missing claims, or a token that is not an access token.
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except ExpiredSignatureError as exc:
            raise TokenExpiredError("Access token has expired.") from exc
        except JWTError as exc:
            raise InvalidTokenError() from exc

        if any(claim not in payload for claim in _REQUIRED_CLAIMS) or payload["type"] != _ACCESS_TYPE:
            raise InvalidTokenError()
        try:
            return AccessClaims(
                identity_id=int(payload["sub"]),
                username=payload["username"],
                authorities=frozenset(payload["authorities"]),
                issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
                expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            )
        except (TypeError, ValueError) as exc:
            raise InvalidTokenError() from exc
