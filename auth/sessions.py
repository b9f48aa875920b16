"""
auth/sessions.py -- RefreshTokenStore: the single source of truth for session validity.

A refresh token is valid exactly when a row with its digest exists, is not
revoked, and has not reached expires_at. Nothing about the raw token itself
proves anything.

Lookup is by token_digest = HMAC-SHA256(SECRET_KEY, raw_token), computed the
same way at issue and at lookup, through the UNIQUE index on token_digest.

validate() never mutates. Revocation is explicit (revoke, revoke_all_for_identity)
and expired rows are reclaimed by sweep_expired(). A swept token answers
NotFound instead of Expired; both are rejections.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.engine import Connection

from auth.db import Database, from_iso, refresh_sessions, to_iso, utcnow
from auth.errors import TokenExpiredError, TokenNotFoundError, TokenRevokedError
from auth.models import RefreshSession
from auth.tokens import refresh_token_digest

logger = logging.getLogger("gatehouse.auth")


class RefreshTokenStore:
    """Repository for RefreshSession rows.

    Usage:
        sessions = RefreshTokenStore(db, digest_key=settings.secret_key)
        session_id = sessions.issue(identity_id, raw_token, timedelta(days=7))
        identity_id = sessions.validate(raw_token)
    """

    def __init__(self, db: Database, digest_key: str, clock: Callable[[], datetime] = utcnow) -> None:
        self.db = db
        self._digest_key = digest_key
        self._clock = clock

    def digest(self, raw_token: str) -> str:
        return refresh_token_digest(raw_token, self._digest_key)

    def issue(self, identity_id: int, raw_token: str, ttl: timedelta, conn: Connection | None = None) -> int:
        """Store a new non-revoked session for raw_token and return its ID."""
        now = self._clock()
        with self.db.connect(conn) as c:
            result = c.execute(
                refresh_sessions.insert().values(
                    identity_id=identity_id,
                    token_digest=self.digest(raw_token),
                    expires_at=to_iso(now + ttl),
                    revoked=False,
                    created_at=to_iso(now),
                )
            )
            return result.inserted_primary_key[0]

    def find(self, raw_token: str, conn: Connection | None = None) -> RefreshSession | None:
        """Return the session for raw_token regardless of its state, or None."""
        with self.db.connect(conn) as c:
            row = c.execute(
                select(refresh_sessions).where(refresh_sessions.c.token_digest == self.digest(raw_token))
            ).fetchone()
        return _row_to_session(row) if row is not None else None

    def validate(self, raw_token: str, conn: Connection | None = None) -> int:
        """Return the owning identity ID if raw_token is currently usable.

        Raises TokenNotFoundError, TokenRevokedError or TokenExpiredError.
        A revoked token reports Revoked even once it has also expired.
        """
        session = self.find(raw_token, conn=conn)
        if session is None:
            raise TokenNotFoundError()
        if session.revoked:
            raise TokenRevokedError()
        if session.is_expired(self._clock()):
            raise TokenExpiredError("Refresh token has expired.")
        return session.identity_id

    def revoke_all_for_identity(self, identity_id: int, conn: Connection | None = None) -> int:
        """Revoke every live session of an identity. Returns the number revoked."""
        with self.db.connect(conn) as c:
            result = c.execute(
                refresh_sessions.update()
                .where((refresh_sessions.c.identity_id == identity_id) & refresh_sessions.c.revoked.is_(False))
                .values(revoked=True)
            )
        return result.rowcount

    def revoke(self, session_id: int, conn: Connection | None = None) -> bool:
        """Revoke one session. Returns True if it was live before the call."""
        with self.db.connect(conn) as c:
            result = c.execute(
                refresh_sessions.update()
                .where((refresh_sessions.c.id == session_id) & refresh_sessions.c.revoked.is_(False))
                .values(revoked=True)
            )
        return result.rowcount > 0

    def sweep_expired(self, now: datetime | None = None) -> int:
        """Delete sessions whose expires_at has passed. Returns rows removed."""
        cutoff = to_iso(now or self._clock())
        with self.db.connect() as c:
            result = c.execute(refresh_sessions.delete().where(refresh_sessions.c.expires_at < cutoff))
        if result.rowcount:
            logger.info("Swept %d expired refresh sessions", result.rowcount)
        return result.rowcount

    def count_active(self, identity_id: int) -> int:
        """Number of non-revoked, unexpired sessions for an identity."""
        with self.db.connect() as c:
            return (
                c.execute(
                    select(func.count())
                    .select_from(refresh_sessions)
                    .where(
                        (refresh_sessions.c.identity_id == identity_id)
                        & refresh_sessions.c.revoked.is_(False)
                        & (refresh_sessions.c.expires_at > to_iso(self._clock()))
                    )
                ).scalar()
                or 0
            )


# ---------------------------------------------------------------------------
# Row mapper
# ---------------------------------------------------------------------------


def _row_to_session(row) -> RefreshSession:
    return RefreshSession(
        id=row.id,
        identity_id=row.identity_id,
        token_digest=row.token_digest,
        expires_at=from_iso(row.expires_at),
        revoked=bool(row.revoked),
        created_at=from_iso(row.created_at),
    )
