"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class. Identity is frozen: lockout and login transitions
(auth/lockout.py) return a new snapshot via dataclasses.replace() instead of
mutating a shared object, so each transition can be tested on its own.

CredentialHolder is the capability the rest of the system depends on when it
only needs "something that can authenticate" -- authorization consumers never
touch the concrete Identity fields.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, runtime_checkable


@runtime_checkable
class CredentialHolder(Protocol):
    def authorities(self) -> frozenset[str]: ...

    def credential_digest(self) -> str: ...

    def is_usable(self) -> bool: ...


@dataclass(frozen=True)
class Identity:
    """An authenticated principal (user account).

    roles is an opaque tuple of role names owned by the authorization
    collaborator (auth/roles.py). granted holds the resolved authority strings;
    the store fills it in when the row is loaded so authorities() needs no
    further lookup.

    deleted_at is the soft-delete marker. The store never returns rows where
    it is set, so code holding an Identity can assume it is live.
    """

    username: str
    email: str
    hashed_password: str
    id: int | None = None
    email_verified: bool = False
    account_locked: bool = False
    locked_at: datetime | None = None
    failed_login_attempts: int = 0
    last_login_at: datetime | None = None
    roles: tuple[str, ...] = ()
    granted: frozenset[str] = field(default_factory=frozenset)
    created_at: datetime | None = None
    deleted_at: datetime | None = None

    # CredentialHolder

    def authorities(self) -> frozenset[str]:
        return self.granted

    def credential_digest(self) -> str:
        return self.hashed_password

    def is_usable(self) -> bool:
        return self.deleted_at is None and not self.account_locked


@dataclass
class RefreshSession:
    """One issued refresh token, stored by digest only.

    token_digest is HMAC-SHA256(SECRET_KEY, raw_token). The raw token is
    returned to the client once and never persisted.
    """

    identity_id: int
    token_digest: str
    expires_at: datetime
    id: int | None = None
    revoked: bool = False
    created_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


@dataclass(frozen=True)
class AccessClaims:
    """Verified payload of an access token."""

    identity_id: int
    username: str
    authorities: frozenset[str]
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class IssuedSession:
    """The credential pair handed back by register, login and refresh."""

    access_token: str
    refresh_token: str
    access_expires_at: datetime
    expires_in: int
    identity: Identity
    session_id: int
    token_type: str = "Bearer"
