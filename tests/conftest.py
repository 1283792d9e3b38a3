"""
tests/conftest.py -- Shared test fixtures for Newsdesk unit and integration tests.

This module provides:
  - FakeClock: a settable UTC clock for lockout and reset-expiry tests
  - CapturingNotifier: records issued reset tokens instead of mailing them
  - _make_test_stores(): creates isolated in-memory DBs for accounts + content
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - account_store / auth_service: unit-level fixtures on a private DB
  - harness: TestClient over the real app plus handles on everything behind it

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
for the TestClient fixtures because route handlers run in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.
Each fixture uses a fresh name, so no state leaks between tests.

Environment must be set before any core/auth import: get_settings() is
cached on first call and auth/tokens.py reads it at import time.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

# CRITICAL: DEBUG lets get_settings() auto-generate SECRET_KEY; cheap bcrypt
# keeps the suite fast; the rate limiter would otherwise cut lockout tests
# short; TestClient sends Host: testserver.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver"]')

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import Account
from auth.passwords import hash_password
from auth.service import AuthService
from auth.store import AccountStore
from cache.throttle import ViewThrottle
from content.store import ContentStore

ADMIN_EMAIL = "admin@newsdesk.test"
ADMIN_PASSWORD = "correct-horse-battery"


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable UTC clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@dataclass
class CapturingNotifier:
    sent: list[tuple[str, str]] = field(default_factory=list)

    def send_reset(self, email: str, raw_token: str) -> None:
        self.sent.append((email, raw_token))

    @property
    def last_token(self) -> str:
        return self.sent[-1][1]


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _shared_memory_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def _make_test_stores() -> tuple[AccountStore, ContentStore]:
    """Create isolated named shared-memory SQLite stores for one test."""
    return AccountStore(_shared_memory_url("test_auth")), ContentStore(_shared_memory_url("test_content"))


def _seed_admin(store: AccountStore, email: str = ADMIN_EMAIL, password: str = ADMIN_PASSWORD) -> str:
    return store.create_account(Account(email=email, password_hash=hash_password(password), name="Test Admin"))


def _patch_lifespan(
    account_store: AccountStore,
    content_store: ContentStore,
    service: AuthService,
    notifier: CapturingNotifier,
    throttle: ViewThrottle,
):
    """Return an async context manager that replaces the real lifespan.

    The publish_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.account_store = account_store
        app.state.content_store = content_store
        app.state.auth_service = service
        app.state.reset_notifier = notifier
        app.state.view_throttle = throttle
        app.state.publish_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.publish_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def account_store() -> Generator[AccountStore, None, None]:
    store = AccountStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def content_store() -> Generator[ContentStore, None, None]:
    store = ContentStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def auth_service(account_store: AccountStore, clock: FakeClock) -> AuthService:
    """AuthService on a private DB with the admin account already created."""
    _seed_admin(account_store)
    return AuthService(account_store, clock=clock)


# ---------------------------------------------------------------------------
# Integration fixture
# ---------------------------------------------------------------------------


@dataclass
class Harness:
    client: TestClient
    account_store: AccountStore
    content_store: ContentStore
    service: AuthService
    notifier: CapturingNotifier
    throttle: ViewThrottle
    clock: FakeClock
    admin_id: str

    def login(self, email: str = ADMIN_EMAIL, password: str = ADMIN_PASSWORD):
        return self.client.post("/auth/login", json={"email": email, "password": password})

    def bearer(self, access_token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}


@pytest.fixture
def harness(clock: FakeClock) -> Generator[Harness, None, None]:
    """Yield a Harness around the real app with isolated stores.

    The TestClient keeps cookies between calls like a browser would, so the
    refresh cookie set by /auth/login is sent to /auth/refresh automatically.
    Tests that need to replay an old token set the cookie explicitly.
    """
    account_store, content_store = _make_test_stores()
    admin_id = _seed_admin(account_store)
    service = AuthService(account_store, clock=clock)
    notifier = CapturingNotifier()
    throttle = ViewThrottle(ttl=3.0)

    app.router.lifespan_context = _patch_lifespan(account_store, content_store, service, notifier, throttle)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield Harness(client, account_store, content_store, service, notifier, throttle, clock, admin_id)

    account_store.close()
    content_store.close()
