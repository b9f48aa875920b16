"""
auth/db.py -- Engine, schema and unit of work shared by the auth stores.

Pattern: Unit of Work. Each SessionService flow (register, login, refresh,
failed login, unlock) declares the mutations that must commit together by
running them inside one unit_of_work() block:

    with db.unit_of_work(identity_id) as conn:
        identities.get_by_id(identity_id, conn=conn, for_update=True)
        sessions.revoke_all_for_identity(identity_id, conn=conn)
        sessions.issue(identity_id, raw, ttl, conn=conn)

unit_of_work(key) first takes an in-process lock for key, then opens
engine.begin(). Commit happens on clean exit, rollback on any exception, and
the lock is released on every exit path. Two requests for the same identity
therefore run validate -> revoke -> issue one after the other, never
interleaved. Different identities never contend.

Row locks: stores pass for_update=True when re-reading an identity inside a
unit of work. SQLAlchemy renders SELECT ... FOR UPDATE on backends that have
it (PostgreSQL, MySQL) and omits it on SQLite, where the keyed lock plus
SQLite's single-writer database lock provide the same serialization for one
process.

Timestamps are stored as ISO 8601 strings with fixed microsecond precision so
string comparison in SQL matches chronological order.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Hashable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    text,
)
from sqlalchemy.engine import Connection, Engine

logger = logging.getLogger("gatehouse.db")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(100), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("email_verified", Boolean, nullable=False, server_default="0"),
    Column("account_locked", Boolean, nullable=False, server_default="0"),
    Column("locked_at", String(32)),
    Column("failed_login_attempts", Integer, nullable=False, server_default="0"),
    Column("last_login_at", String(32)),
    Column("roles", Text, nullable=False, server_default=""),  # comma-separated role names
    Column("created_at", String(32), nullable=False),
    Column("deleted_at", String(32)),  # soft-delete marker
)

refresh_sessions = Table(
    "refresh_sessions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("identity_id", Integer, ForeignKey("users.id"), nullable=False),
    Column("token_digest", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("expires_at", String(32), nullable=False),
    Column("revoked", Boolean, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Index("ix_refresh_sessions_identity_id", "identity_id"),
    Index("ix_refresh_sessions_expires_at", "expires_at"),
)


# ---------------------------------------------------------------------------
# Timestamp helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Keyed locks
# ---------------------------------------------------------------------------


class KeyedLocks:
    """One threading.Lock per key, created on demand and dropped when unused.

    A reference count per key lets the registry forget locks nobody holds or
    waits on, so the dict does not grow with every identity ever seen.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, list] = {}  # key -> [lock, refcount]

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign keys on every new SQLite connection.

    SQLite PRAGMAs are per-connection and not inherited from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


class Database:
    """Owns the engine and the per-key lock registry.

    Usage:
        db = Database("sqlite:///gatehouse.db")
        with db.unit_of_work(identity_id) as conn:
            ...
        db.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        metadata.create_all(self.engine)
        self._locks = KeyedLocks()
        logger.info("Auth database ready: %s", self.engine.url.render_as_string(hide_password=True))

    @contextmanager
    def unit_of_work(self, key: Hashable | None = None) -> Iterator[Connection]:
        """Yield a connection inside one transaction, serialized per key.

        key=None skips the in-process lock (single-statement writes that are
        already atomic at the storage layer).
        """
        if key is None:
            with self.engine.begin() as conn:
                yield conn
            return
        with self._locks.hold(key):
            with self.engine.begin() as conn:
                yield conn

    @contextmanager
    def connect(self, conn: Connection | None = None) -> Iterator[Connection]:
        """Reuse the caller's connection, or open a short transaction of our own.

        Store methods take an optional conn so they can run standalone or as
        one step of a caller's unit of work.
        """
        if conn is not None:
            yield conn
            return
        with self.engine.begin() as own:
            yield own

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def close(self) -> None:
        self.engine.dispose()
