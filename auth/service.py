"""
auth/service.py -- SessionService: register / login / refresh / logout / unlock.

Every flow that mutates state runs inside one Database.unit_of_work():

  register  duplicate checks + insert identity + first session   (key: registration)
  login     re-read identity + reset counter + revoke-all + issue (key: identity id)
  failure   re-read identity + record_failure                     (key: identity id)
  refresh   re-validate + revoke-all + issue                       (key: identity id)
  unlock    re-read identity + unlock                              (key: identity id)

Holding the identity's key across validate -> revoke -> issue is what makes
two concurrent refreshes with the same token produce exactly one new
generation: the second caller re-validates after the first has committed and
sees the token revoked.

bcrypt work happens outside any lock. The only slow step never holds up other
requests for the same identity.

Enumeration resistance [C1]: unknown identifiers run a dummy bcrypt verify and
fail with the same InvalidCredentialsError as a wrong secret.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from auth.db import Database, utcnow
from auth.errors import (
    DuplicateEmailError,
    DuplicateUsernameError,
    InvalidCredentialsError,
    InvalidTokenError,
    NotFoundError,
    TokenNotFoundError,
    ValidationError,
)
from auth.lockout import LockoutPolicy
from auth.models import Identity, IssuedSession
from auth.passwords import CredentialVerifier
from auth.roles import RoleDirectory, StaticRoleDirectory
from auth.sessions import RefreshTokenStore
from auth.store import IdentityStore
from auth.tokens import TokenIssuer

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("gatehouse.auth")

# Lock key serializing duplicate checks + insert. Identity keys are ints.
_REGISTRATION_KEY = "registration"


class SessionService:
    def __init__(
        self,
        db: Database,
        identities: IdentityStore,
        sessions: RefreshTokenStore,
        verifier: CredentialVerifier,
        issuer: TokenIssuer,
        lockout: LockoutPolicy,
        roles: RoleDirectory,
        refresh_ttl_seconds: int,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.db = db
        self.identities = identities
        self.sessions = sessions
        self.verifier = verifier
        self.issuer = issuer
        self.lockout = lockout
        self.roles = roles
        self.refresh_ttl = timedelta(seconds=refresh_ttl_seconds)
        self._clock = clock

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    def register(self, username: str, email: str, secret: str) -> IssuedSession:
        """Create an identity with the default roles and open its first session.

        Raises DuplicateUsernameError / DuplicateEmailError (checked in that
        order) without writing anything.
        """
        hashed = self.verifier.hash(secret)
        try:
            with self.db.unit_of_work(_REGISTRATION_KEY) as conn:
                if self.identities.username_taken(username, conn=conn):
                    raise DuplicateUsernameError()
                if self.identities.email_taken(email, conn=conn):
                    raise DuplicateEmailError()
                identity_id = self.identities.create(
                    Identity(
                        username=username,
                        email=email,
                        hashed_password=hashed,
                        roles=self.roles.default_roles(),
                        created_at=self._clock(),
                    ),
                    conn=conn,
                )
                identity = self.identities.get_by_id(identity_id, conn=conn)
                issued = self._issue(identity, conn)
        except IntegrityError as exc:
            # Another process won the race past the pre-check
            raise self._duplicate_error(username) from exc
        logger.info("Identity registered: identity_id=%s username=%s", identity_id, username)
        return issued

    def login(self, username_or_email: str, secret: str) -> IssuedSession:
        identity = self.identities.get_by_login(username_or_email)
        if identity is None:
            self.verifier.dummy_verify(secret)
            logger.info("Failed login: unknown identifier")
            raise InvalidCredentialsError()

        self.lockout.check(identity)

        if not self.verifier.verify(secret, identity.hashed_password):
            self._record_failure(identity.id)
            logger.info("Failed login: identity_id=%s", identity.id)
            raise InvalidCredentialsError()

        with self.db.unit_of_work(identity.id) as conn:
            current = self.identities.get_by_id(identity.id, conn=conn, for_update=True)
            if current is None:
                raise InvalidCredentialsError()
            # Failures from parallel requests may have locked it since the first read
            self.lockout.check(current)
            self.lockout.check_verified(current)
            current = self.lockout.record_success(current, self._clock())
            self.identities.save_login_state(current, conn=conn)
            issued = self._issue(current, conn)
        logger.info("Login succeeded: identity_id=%s", current.id)
        return issued

    def refresh(self, raw_refresh_token: str) -> IssuedSession:
        """Rotate: the presented token is revoked and a new pair is issued.

        TokenNotFoundError / TokenRevokedError / TokenExpiredError from the
        store surface unchanged.
        """
        identity_id = self.sessions.validate(raw_refresh_token)
        with self.db.unit_of_work(identity_id) as conn:
            self.sessions.validate(raw_refresh_token, conn=conn)
            identity = self.identities.get_by_id(identity_id, conn=conn, for_update=True)
            if identity is None:
                raise TokenNotFoundError()
            self.lockout.check(identity)
            issued = self._issue(identity, conn)
        logger.info("Refresh session rotated: identity_id=%s", identity_id)
        return issued

    def logout(self, raw_refresh_token: str | None = None) -> None:
        """Revoke the session behind raw_refresh_token, if any. Never raises AuthError."""
        if not raw_refresh_token:
            return
        session = self.sessions.find(raw_refresh_token)
        if session is None:
            return
        if self.sessions.revoke(session.id):
            logger.info("Logout: identity_id=%s session_id=%s", session.identity_id, session.id)

    def unlock(self, identity_id: int) -> Identity:
        """Administrative unlock. Bypasses authentication entirely."""
        with self.db.unit_of_work(identity_id) as conn:
            current = self.identities.get_by_id(identity_id, conn=conn, for_update=True)
            if current is None:
                raise NotFoundError()
            updated = self.lockout.unlock(current)
            self.identities.save_login_state(updated, conn=conn)
        logger.info("Account unlocked: identity_id=%s", identity_id)
        return updated

    # ------------------------------------------------------------------
    # Lookups and administration
    # ------------------------------------------------------------------

    def get_identity(self, identity_id: int) -> Identity:
        identity = self.identities.get_by_id(identity_id)
        if identity is None:
            raise NotFoundError()
        return identity

    def authenticate_access_token(self, token: str) -> Identity:
        """Decode an access token and return the live identity it names.

        A token for a since-deleted identity is InvalidTokenError, not NotFound.
        """
        claims = self.issuer.decode_access_token(token)
        identity = self.identities.get_by_id(claims.identity_id)
        if identity is None:
            raise InvalidTokenError()
        return identity

    def verify_email(self, identity_id: int) -> Identity:
        if not self.identities.set_email_verified(identity_id, True):
            raise NotFoundError()
        return self.get_identity(identity_id)

    def delete_identity(self, identity_id: int) -> None:
        """Soft-delete an identity and revoke all of its sessions."""
        with self.db.unit_of_work(identity_id) as conn:
            if not self.identities.soft_delete(identity_id, conn=conn):
                raise NotFoundError()
            revoked = self.sessions.revoke_all_for_identity(identity_id, conn=conn)
        logger.info("Identity deleted: identity_id=%s (%d sessions revoked)", identity_id, revoked)

    def sweep_expired_sessions(self) -> int:
        return self.sessions.sweep_expired(self._clock())

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _issue(self, identity: Identity, conn: Connection) -> IssuedSession:
        """Mint a pair and make it the identity's only live session.

        Must run inside the identity's unit of work.
        """
        access_token, access_expires_at = self.issuer.issue_access_token(identity, identity.authorities())
        raw_refresh = self.issuer.issue_refresh_token()
        self.sessions.revoke_all_for_identity(identity.id, conn=conn)
        session_id = self.sessions.issue(identity.id, raw_refresh, self.refresh_ttl, conn=conn)
        return IssuedSession(
            access_token=access_token,
            refresh_token=raw_refresh,
            access_expires_at=access_expires_at,
            expires_in=self.issuer.access_ttl_seconds,
            identity=identity,
            session_id=session_id,
        )

    def _record_failure(self, identity_id: int) -> None:
        with self.db.unit_of_work(identity_id) as conn:
            current = self.identities.get_by_id(identity_id, conn=conn, for_update=True)
            if current is None:
                return
            updated = self.lockout.record_failure(current, self._clock())
            if updated is not current:
                self.identities.save_login_state(updated, conn=conn)

    def _duplicate_error(self, username: str) -> ValidationError:
        if self.identities.username_taken(username):
            return DuplicateUsernameError()
        return DuplicateEmailError()


def build_service(settings: Settings, db: Database | None = None) -> SessionService:
    """Wire a SessionService from Settings. Used by the API lifespan and the CLI."""
    db = db or Database(settings.database_url)
    roles = StaticRoleDirectory(settings.role_permissions, settings.default_roles)
    return SessionService(
        db=db,
        identities=IdentityStore(db, roles, case_sensitive=settings.identifiers_case_sensitive),
        sessions=RefreshTokenStore(db, digest_key=settings.secret_key),
        verifier=CredentialVerifier(rounds=settings.bcrypt_rounds),
        issuer=TokenIssuer(settings.secret_key, settings.access_token_expire_seconds),
        lockout=LockoutPolicy(settings.lockout_threshold, settings.require_email_verification),
        roles=roles,
        refresh_ttl_seconds=settings.refresh_token_expire_seconds,
    )
