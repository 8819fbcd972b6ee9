"""
tests/conftest.py -- Shared test fixtures for the admin backend.

This module provides:
  - make_test_store(): creates an isolated in-memory identity DB
  - _patch_lifespan(): wires a test store + token service into app.state,
    bypassing real startup
  - api_client: TestClient over a seeded DB, with bearer headers for every
    demo account

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

DEBUG and BCRYPT_ROUNDS must be set before any core/auth import so
get_settings() auto-generates signing secrets and hashing stays fast.
"""

from __future__ import annotations

import os
import re
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

# CRITICAL: Set before any core/auth import -- get_settings() is cached on first call.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver"]')

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.tokens import TokenConfig, TokenService
from core.config import get_settings
from identity.store import IdentityStore
from main import seed_demo_data

ADMIN = "admin@test.ro"
INST_ADMIN = "admin.s3@primarie.ro"
EDITOR = "editor.s3@primarie.ro"
REGULATOR = "regulator@mediu.gov.ro"

SECTOR3 = "Primăria Sector 3"
SECTOR6 = "Primăria Sector 6"
PMB = "Primăria Municipiului București"
OPERATOR_S3 = "Operator Salubrizare Sector 3"

PASSWORDS = {
    ADMIN: "admin123",
    INST_ADMIN: "primarie123",
    EDITOR: "editor123",
    REGULATOR: "regulator123",
}

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_test_store(db_suffix: str) -> IdentityStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    return IdentityStore(db_url=f"sqlite:///file:test_identity_{db_suffix}?mode=memory&cache=shared&uri=true")


def make_token_service() -> TokenService:
    return TokenService(TokenConfig.from_settings(get_settings()))


def _patch_lifespan(store: IdentityStore, tokens: TokenService):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.identity_store = store
        app.state.token_service = tokens
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@dataclass
class ApiContext:
    """Everything an integration test needs: client, store, seeded IDs, tokens."""

    client: TestClient
    store: IdentityStore
    tokens: TokenService
    ids: dict[str, int]
    _headers: dict[str, dict[str, str]] = field(default_factory=dict)

    def headers(self, email: str) -> dict[str, str]:
        """Bearer header for a seeded (or later-created) account."""
        if email not in self._headers:
            user = self.store.find_user_by_email(email)
            assert user is not None, f"No such test user: {email}"
            self._headers[email] = {"Authorization": f"Bearer {self.tokens.issue_access_token(user.id)}"}
        return self._headers[email]


@pytest.fixture(scope="module")
def api_client(request: pytest.FixtureRequest) -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers but use an isolated, freshly seeded store per
    test module.
    """
    store = make_test_store(request.module.__name__.rsplit(".", 1)[-1])
    ids = seed_demo_data(store)
    tokens = make_token_service()

    app.router.lifespan_context = _patch_lifespan(store, tokens)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(client=client, store=store, tokens=tokens, ids=ids)

    store.close()


@pytest.fixture
def store(request: pytest.FixtureRequest) -> Generator[IdentityStore, None, None]:
    """Function-scoped empty store for repository and use-case unit tests."""
    s = make_test_store("unit_" + re.sub(r"\W", "_", request.node.nodeid))
    yield s
    s.close()
