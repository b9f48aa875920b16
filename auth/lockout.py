"""
auth/lockout.py -- Brute-force lockout state machine.

Two states per identity, Active and Locked:

  Active --failure, counter+1 < threshold--> Active   (counter += 1)
  Active --failure, counter+1 == threshold-> Locked   (locked, locked_at = now)
  Active --success-----------------------> Active   (counter = 0, last_login_at = now)
  Locked --unlock------------------------> Active   (unlocked, locked_at = None, counter = 0)

Locked is terminal until an explicit unlock; time never clears it.

Every transition takes a frozen Identity snapshot and returns a new one.
Persistence is the caller's job: SessionService re-reads the row inside the
identity's unit of work, applies the transition, and writes the result back,
so concurrent failures cannot lose increments.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime

from auth.errors import AccountLockedError, EmailNotVerifiedError
from auth.models import Identity

logger = logging.getLogger("gatehouse.auth")

DEFAULT_THRESHOLD = 5


class LockoutPolicy:
    def __init__(self, threshold: int = DEFAULT_THRESHOLD, require_email_verification: bool = False) -> None:
        if threshold < 1:
            raise ValueError("lockout threshold must be at least 1")
        self.threshold = threshold
        self.require_email_verification = require_email_verification

    def check(self, identity: Identity) -> None:
        """Reject a locked identity. Runs before any credential verification."""
        if identity.account_locked:
            raise AccountLockedError()

    def check_verified(self, identity: Identity) -> None:
        """Reject an unverified email when the deployment requires verification."""
        if self.require_email_verification and not identity.email_verified:
            raise EmailNotVerifiedError()

    def record_failure(self, identity: Identity, now: datetime) -> Identity:
        if identity.account_locked:
            return identity
        attempts = identity.failed_login_attempts + 1
        if attempts >= self.threshold:
            logger.warning("Account locked after %d failed attempts: identity_id=%s", attempts, identity.id)
            return replace(identity, failed_login_attempts=attempts, account_locked=True, locked_at=now)
        return replace(identity, failed_login_attempts=attempts)

    def record_success(self, identity: Identity, now: datetime) -> Identity:
        return replace(identity, failed_login_attempts=0, last_login_at=now)

    def unlock(self, identity: Identity) -> Identity:
        return replace(identity, account_locked=False, locked_at=None, failed_login_attempts=0)
