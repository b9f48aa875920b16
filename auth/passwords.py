"""
auth/passwords.py -- Password hashing and verification (bcrypt).

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error. Direct bcrypt usage is simpler, has no
compatibility shim, and is actively maintained.

The stored hash is bcrypt's modular-crypt string ($2b$<cost>$<salt><digest>),
so verification needs nothing beyond the string itself. bcrypt.checkpw
compares digests in constant time.

Timing equalization [C1]: every CredentialVerifier precomputes a dummy hash at
its own cost factor. SessionService calls dummy_verify() when the identifier
does not resolve, so an unknown username costs the same bcrypt work as a
wrong password.
"""

from __future__ import annotations

import bcrypt

from auth.errors import SecretTooLongError

# bcrypt reads at most 72 bytes of input; bcrypt 5 refuses anything longer
MAX_SECRET_BYTES = 72

_DUMMY_SECRET = "gatehouse_timing_dummy"


class CredentialVerifier:
    """Hash secrets for storage and check them against stored hashes.

    Usage:
        verifier = CredentialVerifier(rounds=12)
        stored = verifier.hash("hunter2")
        verifier.verify("hunter2", stored)   # True
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        self._dummy_hash = self.hash(_DUMMY_SECRET)

    def hash(self, plaintext: str) -> str:
        """Return a salted bcrypt hash of plaintext.

        Raises SecretTooLongError when plaintext is over MAX_SECRET_BYTES as
        UTF-8. Nothing is silently truncated.
        """
        encoded = plaintext.encode("utf-8")
        if len(encoded) > MAX_SECRET_BYTES:
            raise SecretTooLongError()
        return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plaintext: str, stored_hash: str) -> bool:
        """Return True if plaintext matches stored_hash. Never raises.

        A secret over MAX_SECRET_BYTES can never have been stored, so it is a
        plain mismatch.
        """
        encoded = plaintext.encode("utf-8")
        if not stored_hash or len(encoded) > MAX_SECRET_BYTES:
            return False
        try:
            return bcrypt.checkpw(encoded, stored_hash.encode("utf-8"))
        except (ValueError, TypeError):
            # Malformed or foreign hash string
            return False

    def dummy_verify(self, plaintext: str) -> None:
        """Spend one verification's worth of bcrypt work and discard the result."""
        self.verify(plaintext, self._dummy_hash)
