"""
tests/conftest.py -- Shared test fixtures for Gatehouse.

This module provides:
  - FakeClock: a settable UTC clock for expiry and lockout timestamps
  - make_service: factory fixture building a SessionService on a file-backed
    SQLite DB under tmp_path, with bcrypt at its minimum cost
  - api_client: TestClient wired to an isolated service, plus an admin token

Design: file-backed SQLite (not :memory:) because the concurrency tests run
SessionService calls on several threads. Each thread gets its own pooled
connection, and WAL mode lets readers proceed while one writer commits.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread.

DEBUG and BCRYPT_ROUNDS must be set before any api/auth import so
get_settings() auto-generates SECRET_KEY instead of raising ValueError, and
bcrypt stays fast.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.db import Database
from auth.lockout import LockoutPolicy
from auth.models import Identity
from auth.passwords import CredentialVerifier
from auth.roles import StaticRoleDirectory
from auth.service import SessionService
from auth.sessions import RefreshTokenStore
from auth.store import IdentityStore
from auth.tokens import TokenIssuer

TEST_KEY = "test-secret-key-that-is-at-least-32-characters"
ROLE_PERMISSIONS = {"USER": [], "ADMIN": ["users:READ", "users:UPDATE"]}


class FakeClock:
    """Callable clock frozen at a settable instant."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now = self.now + timedelta(**delta)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_service(tmp_path) -> Generator[Callable[..., SessionService], None, None]:
    """Return a factory for SessionService instances on isolated SQLite files.

    Keyword overrides: clock, threshold, require_verification, case_sensitive,
    refresh_ttl, access_ttl. Every database created is disposed at teardown.
    """
    created: list[Database] = []

    def factory(
        clock: Callable[[], datetime] | None = None,
        threshold: int = 5,
        require_verification: bool = False,
        case_sensitive: bool = True,
        refresh_ttl: int = 3600,
        access_ttl: int = 900,
    ) -> SessionService:
        db = Database(f"sqlite:///{tmp_path / f'auth_{len(created)}.db'}")
        created.append(db)
        roles = StaticRoleDirectory(ROLE_PERMISSIONS, ["USER"])
        kwargs = {"clock": clock} if clock is not None else {}
        return SessionService(
            db=db,
            identities=IdentityStore(db, roles, case_sensitive=case_sensitive),
            sessions=RefreshTokenStore(db, digest_key=TEST_KEY, **kwargs),
            verifier=CredentialVerifier(rounds=4),
            issuer=TokenIssuer(TEST_KEY, access_ttl),
            lockout=LockoutPolicy(threshold, require_verification),
            roles=roles,
            refresh_ttl_seconds=refresh_ttl,
            **kwargs,
        )

    yield factory

    for db in created:
        db.close()


@pytest.fixture
def service(make_service) -> SessionService:
    return make_service()


def create_admin(service: SessionService, username: str = "rootadmin", secret: str = "adminpass123") -> int:
    """Insert an ADMIN identity directly (registration only grants default roles)."""
    return service.identities.create(
        Identity(
            username=username,
            email=f"{username}@example.com",
            hashed_password=service.verifier.hash(secret),
            email_verified=True,
            roles=("ADMIN",),
        )
    )


def _patch_lifespan(service: SessionService):
    """Return an async context manager that replaces the real lifespan.

    Wires the test service into app.state so TestClient routes see the
    isolated test DB. The sweep_task is a long-sleeping coroutine: a real
    asyncio.Task is required because shutdown calls .cancel() on it.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.session_service = service
        app.state.sweep_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.sweep_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(tmp_path_factory) -> Generator[tuple[TestClient, SessionService, str], None, None]:
    """Yield (client, service, admin_access_token) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan, so tests
    hit real route handlers against an isolated database. base_url uses
    localhost to satisfy TrustedHostMiddleware.
    """
    db = Database(f"sqlite:///{tmp_path_factory.mktemp('api') / 'auth.db'}")
    roles = StaticRoleDirectory(ROLE_PERMISSIONS, ["USER"])
    service = SessionService(
        db=db,
        identities=IdentityStore(db, roles),
        sessions=RefreshTokenStore(db, digest_key=TEST_KEY),
        verifier=CredentialVerifier(rounds=4),
        issuer=TokenIssuer(TEST_KEY, 900),
        lockout=LockoutPolicy(5),
        roles=roles,
        refresh_ttl_seconds=3600,
    )
    create_admin(service)
    admin_token = service.login("rootadmin", "adminpass123").access_token

    app.router.lifespan_context = _patch_lifespan(service)

    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield client, service, admin_token

    db.close()


@pytest.fixture
def admin_id(service: SessionService) -> int:
    return create_admin(service)
