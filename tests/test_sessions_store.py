"""Unit tests for auth/sessions.py -- RefreshTokenStore.

Covers:
- issue() stores a digest, never the raw token
- validate() answers NotFound / Revoked / Expired and never mutates
- revoke() and revoke_all_for_identity() only touch live rows
- sweep_expired() deletes expired rows; a swept token is still rejected
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from auth.db import Database, refresh_sessions
from auth.errors import TokenExpiredError, TokenNotFoundError, TokenRevokedError
from auth.models import Identity
from auth.roles import StaticRoleDirectory
from auth.sessions import RefreshTokenStore
from auth.store import IdentityStore

KEY = "s" * 40
TTL = timedelta(hours=1)


@pytest.fixture
def db(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'sessions.db'}")
    yield database
    database.close()


@pytest.fixture
def identity_ids(db) -> tuple[int, int]:
    store = IdentityStore(db, StaticRoleDirectory({}, []))
    first = store.create(Identity(username="alice", email="alice@example.com", hashed_password="x"))
    second = store.create(Identity(username="bob", email="bob@example.com", hashed_password="x"))
    return first, second


@pytest.fixture
def store(db, clock) -> RefreshTokenStore:
    return RefreshTokenStore(db, digest_key=KEY, clock=clock)


def _all_rows(db):
    with db.engine.connect() as conn:
        return conn.execute(select(refresh_sessions)).fetchall()


def test_issue_stores_digest_not_raw_token(db, store, identity_ids):
    store.issue(identity_ids[0], "raw-token-value", TTL)
    (row,) = _all_rows(db)
    assert row.token_digest == store.digest("raw-token-value")
    assert "raw-token-value" not in row.token_digest
    assert bool(row.revoked) is False


def test_validate_returns_owner(store, identity_ids):
    store.issue(identity_ids[0], "tok-a", TTL)
    assert store.validate("tok-a") == identity_ids[0]
    # Read-only: validating again still succeeds
    assert store.validate("tok-a") == identity_ids[0]


def test_validate_unknown_token(store):
    with pytest.raises(TokenNotFoundError):
        store.validate("never-issued")


def test_validate_revoked_token(store, identity_ids):
    session_id = store.issue(identity_ids[0], "tok-a", TTL)
    assert store.revoke(session_id) is True
    with pytest.raises(TokenRevokedError):
        store.validate("tok-a")


def test_validate_expired_token(store, clock, identity_ids):
    store.issue(identity_ids[0], "tok-a", TTL)
    clock.advance(hours=1, seconds=1)
    with pytest.raises(TokenExpiredError):
        store.validate("tok-a")


def test_revoked_beats_expired(store, clock, identity_ids):
    session_id = store.issue(identity_ids[0], "tok-a", TTL)
    store.revoke(session_id)
    clock.advance(days=1)
    with pytest.raises(TokenRevokedError):
        store.validate("tok-a")


def test_revoke_twice_reports_false(store, identity_ids):
    session_id = store.issue(identity_ids[0], "tok-a", TTL)
    assert store.revoke(session_id) is True
    assert store.revoke(session_id) is False


def test_revoke_all_only_affects_one_identity(store, identity_ids):
    alice, bob = identity_ids
    store.issue(alice, "a1", TTL)
    store.issue(alice, "a2", TTL)
    store.issue(bob, "b1", TTL)

    assert store.revoke_all_for_identity(alice) == 2
    assert store.revoke_all_for_identity(alice) == 0
    assert store.count_active(alice) == 0
    assert store.validate("b1") == bob


def test_find_returns_session_in_any_state(store, identity_ids):
    session_id = store.issue(identity_ids[0], "tok-a", TTL)
    store.revoke(session_id)
    session = store.find("tok-a")
    assert session is not None
    assert session.id == session_id
    assert session.revoked is True
    assert store.find("missing") is None


def test_sweep_removes_only_expired(db, store, clock, identity_ids):
    store.issue(identity_ids[0], "short", timedelta(minutes=1))
    store.issue(identity_ids[1], "long", timedelta(days=1))
    clock.advance(minutes=5)

    assert store.sweep_expired() == 1
    assert len(_all_rows(db)) == 1
    assert store.validate("long") == identity_ids[1]


def test_swept_token_is_still_rejected(store, clock, identity_ids):
    store.issue(identity_ids[0], "tok-a", timedelta(minutes=1))
    clock.advance(minutes=5)
    with pytest.raises(TokenExpiredError):
        store.validate("tok-a")
    store.sweep_expired()
    # Gone from storage: still rejected, now as unknown
    with pytest.raises(TokenNotFoundError):
        store.validate("tok-a")
