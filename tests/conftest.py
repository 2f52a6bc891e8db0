"""
tests/conftest.py -- Shared test fixtures for the user console integration tests.

This module provides:
  - make_test_store(): creates an isolated in-memory user DB
  - RecordingMailer: Mailer that records verification emails instead of sending
  - _patch_lifespan(): wires test store + mailer into app.state, bypassing real startup
  - api_client: TestClient with an active admin's session token
  - make_user: factory that inserts a user with a given status and returns it with a token
  - reset_rate_limits (autouse): clears limiter counters between tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

DEBUG and BCRYPT_ROUNDS must be set before any auth/core import: DEBUG lets
get_settings() auto-generate SECRET_KEY, and 4 rounds keeps bcrypt fast
(only accepted in DEBUG mode).
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any auth/core import -- Settings is cached on first use.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.models import User, UserStatus
from auth.store import UserStore
from auth.tokens import create_session_token, hash_password
from core.config import get_settings
from core.mailer import Mailer

ADMIN_PASSWORD = "adminpass123"


# ---------------------------------------------------------------------------
# Store and mailer helpers
# ---------------------------------------------------------------------------


def make_test_store(db_suffix: str) -> UserStore:
    """Create an isolated named shared-memory SQLite store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    return UserStore(db_url=f"sqlite:///file:test_users_{db_suffix}?mode=memory&cache=shared&uri=true")


class RecordingMailer(Mailer):
    """Mailer that records every verification email instead of talking SMTP."""

    def __init__(self) -> None:
        super().__init__(get_settings())
        self.sent: list[tuple[str, str, str]] = []

    async def send_verification_email(self, email: str, name: str, token: str) -> bool:
        self.sent.append((email, name, token))
        return True

    def last_token_for(self, email: str) -> str:
        for sent_email, _name, token in reversed(self.sent):
            if sent_email == email:
                return token
        raise AssertionError(f"No verification email recorded for {email}")


def _patch_lifespan(user_store: UserStore, mailer: Mailer):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-created test store and mailer into app.state so routes see
    the isolated test DB rather than the configured DATABASE_URL.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.mailer = mailer
        yield

    return test_lifespan


def unique_email(prefix: str = "user") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10]}@example.com"


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_rate_limits() -> Generator[None, None, None]:
    """Every TestClient request comes from the same address; start each test at zero."""
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture(scope="module")
def user_store(request) -> Generator[UserStore, None, None]:
    store = make_test_store(request.module.__name__.rsplit(".", 1)[-1])
    yield store
    store.drop_tables()
    store.close()


@pytest.fixture(scope="module")
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture(scope="module")
def api_client(user_store: UserStore, mailer: RecordingMailer) -> Generator[tuple[TestClient, str, str], None, None]:
    """Yield (client, token, user_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use an isolated in-memory store. The
    admin is created active so it can perform every administrative action.
    """
    admin = User(
        name="Test Admin",
        email=unique_email("admin"),
        password_hash=hash_password(ADMIN_PASSWORD),
        status=UserStatus.active,
    )
    uid = user_store.create_user(admin)
    token = create_session_token(user_store.get_by_id(uid))

    app.router.lifespan_context = _patch_lifespan(user_store, mailer)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, uid


@pytest.fixture
def make_user(user_store: UserStore) -> Callable[..., tuple[User, str]]:
    """Return a factory: make_user(status=..., name=..., password=...) -> (User, session token)."""

    def _make(
        status: UserStatus = UserStatus.active,
        name: str = "Sample User",
        password: str = "secret123",
        email: str | None = None,
    ) -> tuple[User, str]:
        uid = user_store.create_user(
            User(
                name=name,
                email=email or unique_email(),
                password_hash=hash_password(password),
                status=status,
            )
        )
        user = user_store.get_by_id(uid)
        return user, create_session_token(user)

    return _make
