"""
tests/conftest.py -- Shared test fixtures for catalog auth tests.

This module provides:
  - _make_test_stores(): creates an isolated in-memory auth DB
  - _patch_lifespan(): wires test stores + service into app.state, bypassing real startup
  - make_registration() / registration: Registration factory with overridable fields
  - stores / issuer / hasher / service: unit-level fixtures, fresh DB per test
  - api_client: TestClient with a registered user and its access token

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool and the identity and
session stores each own an engine. Plain :memory: DBs are per-connection and
would present a blank schema to each worker thread. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

Environment variables must be set before any auth/core import so the cached
get_settings() sees them:
  DEBUG=true               -- auto-generate SECRET_KEY instead of raising
  BCRYPT_ROUNDS=4          -- cheapest legal bcrypt cost
  RATE_LIMIT_ENABLED=false -- one client IP for the whole suite
  ALLOWED_HOSTS            -- TestClient sends Host: testserver
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any auth/core import so get_settings() picks them up.
os.environ.setdefault("DEBUG", "true")
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ALLOWED_HOSTS"] = '["testserver"]'

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import Registration
from auth.passwords import PasswordHasher
from auth.service import AuthService
from auth.store import IdentityStore, SessionStore
from auth.tokens import TokenIssuer

TEST_SECRET = "test-secret-key-that-is-at-least-32-characters"
TEST_ISSUER = "portal-data-backend"

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[IdentityStore, SessionStore]:
    """Create identity + session stores over one named shared-memory SQLite DB.

    Args:
        db_suffix: Unique string appended to the DB name so tests and modules
                   don't share state (e.g. 'api', or a random hex per test).
    """
    db_url = f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true"
    return IdentityStore(db_url), SessionStore(db_url)


def _patch_lifespan(identity_store: IdentityStore, session_store: SessionStore, service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores and service into app.state so TestClient
    routes see isolated test DBs rather than the production database.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.identity_store = identity_store
        app.state.session_store = session_store
        app.state.auth_service = service
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


def make_registration(**overrides) -> Registration:
    """Registration for a@x.com / alice unless overridden."""
    fields = {
        "organization_id": "org-1",
        "role_id": "role-member",
        "name": "Alice Example",
        "username": "alice",
        "email": "a@x.com",
        "password": "longenough1",
    }
    fields.update(overrides)
    return Registration(**fields)


# ---------------------------------------------------------------------------
# Function-scoped fixtures -- fresh DB for every unit test
# ---------------------------------------------------------------------------


@pytest.fixture
def stores() -> Generator[tuple[IdentityStore, SessionStore], None, None]:
    identity_store, session_store = _make_test_stores(uuid.uuid4().hex)
    yield identity_store, session_store
    session_store.close()
    identity_store.close()


@pytest.fixture
def issuer() -> TokenIssuer:
    return TokenIssuer(
        secret_key=TEST_SECRET,
        issuer=TEST_ISSUER,
        access_expire_seconds=900,
        refresh_expire_seconds=7 * 24 * 60 * 60,
    )


@pytest.fixture
def registration():
    """Factory fixture: registration(**overrides) -> Registration."""
    return make_registration


@pytest.fixture(scope="session")
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture
def service(stores, issuer, hasher) -> AuthService:
    identity_store, session_store = stores
    return AuthService(identity_store, session_store, issuer, hasher)


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, str, str], None, None]:
    """Yield (client, token, identity_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use an isolated in-memory store.
    A user (testadmin@x.com / testpass123) is registered before the client
    starts; its access token is ready for Authorization headers.
    """
    identity_store, session_store = _make_test_stores(f"api_{uuid.uuid4().hex}")
    service = AuthService(
        identity_store,
        session_store,
        TokenIssuer(TEST_SECRET, TEST_ISSUER),
        PasswordHasher(rounds=4),
    )
    result = service.register(
        make_registration(username="testadmin", email="testadmin@x.com", password="testpass123")
    )

    app.router.lifespan_context = _patch_lifespan(identity_store, session_store, service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, result.access_token, result.user.id

    session_store.close()
    identity_store.close()
