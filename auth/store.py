"""
auth/store.py -- SQLAlchemy Core repository for Identity records.

Pattern: Repository + Data Mapper. IdentityStore is the repository;
_row_to_identity is the mapper. Service and route code never touches SQL.

Soft delete: every query filters deleted_at IS NULL. A soft-deleted identity
cannot be looked up, authenticated, locked, unlocked or refreshed -- to this
code it does not exist. The one exception is username_taken / email_taken:
the unique indexes still cover deleted rows, so a deleted account's username
and email stay reserved until a hard purge (done outside this core).

Case sensitivity: with case_sensitive=False, username and email comparisons
use lower() on both sides. The database unique constraint stays
case-sensitive; SessionService's duplicate pre-check under the registration
lock closes the gap for a single process.

Every method takes an optional conn so it can run inside a caller's unit of
work (see auth/db.py). Without one it opens a short transaction.

Security:
  All queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.engine import Connection

from auth.db import Database, from_iso, to_iso, users, utcnow
from auth.models import Identity
from auth.roles import RoleDirectory


class IdentityStore:
    """Repository for Identity entities.

    Usage:
        store = IdentityStore(db, roles)
        identity_id = store.create(Identity(username="alice", email="a@x.io", hashed_password=h))
        identity = store.get_by_login("alice")
    """

    def __init__(self, db: Database, roles: RoleDirectory, case_sensitive: bool = True) -> None:
        self.db = db
        self.roles = roles
        self.case_sensitive = case_sensitive

    def _match(self, column, value: str):
        if self.case_sensitive:
            return column == value
        return func.lower(column) == value.lower()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_by_id(self, identity_id: int, conn: Connection | None = None, for_update: bool = False) -> Identity | None:
        """Look up a live identity by primary key. Returns None if absent or deleted."""
        stmt = select(users).where((users.c.id == identity_id) & users.c.deleted_at.is_(None))
        if for_update:
            stmt = stmt.with_for_update()
        with self.db.connect(conn) as c:
            row = c.execute(stmt).fetchone()
        return self._row_to_identity(row) if row is not None else None

    def get_by_login(self, username_or_email: str, conn: Connection | None = None) -> Identity | None:
        """Resolve a login identifier as a username first, then as an email."""
        with self.db.connect(conn) as c:
            for column in (users.c.username, users.c.email):
                row = c.execute(
                    select(users).where(self._match(column, username_or_email) & users.c.deleted_at.is_(None))
                ).fetchone()
                if row is not None:
                    return self._row_to_identity(row)
        return None

    def username_taken(self, username: str, conn: Connection | None = None) -> bool:
        return self._exists(users.c.username, username, conn)

    def email_taken(self, email: str, conn: Connection | None = None) -> bool:
        return self._exists(users.c.email, email, conn)

    def _exists(self, column, value: str, conn: Connection | None) -> bool:
        # Deleted rows still hold their username and email
        with self.db.connect(conn) as c:
            found = c.execute(select(users.c.id).where(self._match(column, value)).limit(1)).first()
        return found is not None

    def count_active(self) -> int:
        with self.db.connect() as c:
            return c.execute(select(func.count()).select_from(users).where(users.c.deleted_at.is_(None))).scalar() or 0

    def count_locked(self) -> int:
        with self.db.connect() as c:
            return (
                c.execute(
                    select(func.count())
                    .select_from(users)
                    .where(users.c.account_locked.is_(True) & users.c.deleted_at.is_(None))
                ).scalar()
                or 0
            )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, identity: Identity, conn: Connection | None = None) -> int:
        """Insert a new identity and return its assigned ID.

        Raises sqlalchemy.exc.IntegrityError if the username or email already
        exists. SessionService pre-checks, so this only fires on a race.
        """
        with self.db.connect(conn) as c:
            result = c.execute(
                users.insert().values(
                    username=identity.username,
                    email=identity.email,
                    hashed_password=identity.hashed_password,
                    email_verified=identity.email_verified,
                    account_locked=identity.account_locked,
                    failed_login_attempts=identity.failed_login_attempts,
                    roles=",".join(identity.roles),
                    created_at=to_iso(identity.created_at or utcnow()),
                )
            )
            return result.inserted_primary_key[0]

    def save_login_state(self, identity: Identity, conn: Connection | None = None) -> bool:
        """Persist the fields lockout and login transitions own.

        Returns True if a live row was updated.
        """
        with self.db.connect(conn) as c:
            result = c.execute(
                users.update()
                .where((users.c.id == identity.id) & users.c.deleted_at.is_(None))
                .values(
                    failed_login_attempts=identity.failed_login_attempts,
                    account_locked=identity.account_locked,
                    locked_at=to_iso(identity.locked_at),
                    last_login_at=to_iso(identity.last_login_at),
                )
            )
        return result.rowcount > 0

    def set_email_verified(self, identity_id: int, verified: bool = True, conn: Connection | None = None) -> bool:
        with self.db.connect(conn) as c:
            result = c.execute(
                users.update()
                .where((users.c.id == identity_id) & users.c.deleted_at.is_(None))
                .values(email_verified=verified)
            )
        return result.rowcount > 0

    def soft_delete(self, identity_id: int, conn: Connection | None = None) -> bool:
        """Stamp deleted_at. Returns False if the identity was absent or already deleted."""
        with self.db.connect(conn) as c:
            result = c.execute(
                users.update()
                .where((users.c.id == identity_id) & users.c.deleted_at.is_(None))
                .values(deleted_at=to_iso(utcnow()))
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Row mapper (Data Mapper pattern)
    # ------------------------------------------------------------------

    def _row_to_identity(self, row) -> Identity:
        roles = tuple(r for r in (row.roles or "").split(",") if r)
        return Identity(
            id=row.id,
            username=row.username,
            email=row.email,
            hashed_password=row.hashed_password,
            email_verified=bool(row.email_verified),
            account_locked=bool(row.account_locked),
            locked_at=from_iso(row.locked_at),
            failed_login_attempts=row.failed_login_attempts,
            last_login_at=from_iso(row.last_login_at),
            roles=roles,
            granted=self.roles.authorities_for(roles),
            created_at=from_iso(row.created_at),
            deleted_at=from_iso(row.deleted_at),
        )
