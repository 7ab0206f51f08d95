"""
tests/conftest.py -- Shared test fixtures for the Offerland auth tests.

This module provides:
  - FakeClock: a settable clock so expiry boundaries are crossed without sleeping
  - _make_test_stores(): creates isolated in-memory DBs for users + tokens
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - token_config / stores / issuer / authenticator: unit-level fixtures
  - api_client: TestClient over the real app with an isolated DB
  - make_user: factory fixture inserting a user with the known PASSWORD

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any api/core import so get_settings()
auto-generates signing secrets in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
import time
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any api/core import so get_settings() can
# auto-generate signing secrets in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.issuer import TokenIssuer
from auth.middleware import Authenticator
from auth.models import IssuedSecret, TokenConfig, User
from auth.passwords import hash_password
from auth.store import UserStore
from auth.token_store import TokenStore
from core.background import BackgroundTaskRunner

ACCESS_SECRET = "a" * 32 + "-access-signing-secret"
REFRESH_SECRET = "r" * 32 + "-refresh-signing-secret"
IDENTITY = "https://auth.offerland.test"
PASSWORD = "correct horse battery"


class FakeClock:
    """Callable clock frozen at a fixed instant until advanced."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2030, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingNotifier:
    """Notifier that keeps every secret it was asked to deliver."""

    def __init__(self) -> None:
        self.activations: list[tuple[User, IssuedSecret]] = []
        self.resets: list[tuple[User, IssuedSecret]] = []

    def send_activation(self, user: User, secret: IssuedSecret) -> None:
        self.activations.append((user, secret))

    def send_password_reset(self, user: User, secret: IssuedSecret) -> None:
        self.resets.append((user, secret))

    def wait_for(self, kind: str, count: int, timeout: float = 5.0) -> IssuedSecret:
        """Block until ``count`` deliveries of ``kind`` arrived; return the latest secret.

        Delivery happens on the background runner, after the response.
        """
        sent = getattr(self, kind)
        deadline = time.monotonic() + timeout
        while len(sent) < count:
            if time.monotonic() > deadline:
                raise AssertionError(f"expected {count} {kind} deliveries, got {len(sent)}")
            time.sleep(0.01)
        return sent[-1][1]


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _memory_url(name: str) -> str:
    return f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true"


def _make_test_stores(db_suffix: str, clock=None) -> tuple[UserStore, TokenStore]:
    """Create isolated named shared-memory SQLite stores for test isolation.

    Both stores share one database, as they do in production.

    Args:
        db_suffix: Unique string appended to the DB name so tests don't share
                   state (e.g. 'api', or a random hex per test).
    """
    url = _memory_url(f"test_offerland_{db_suffix}")
    user_store = UserStore(db_url=url)
    token_store = TokenStore(db_url=url, clock=clock) if clock else TokenStore(db_url=url)
    return user_store, token_store


def _patch_lifespan(
    user_store: UserStore,
    token_store: TokenStore,
    config: TokenConfig,
    notifier: RecordingNotifier,
    clock=None,
):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs rather than the configured database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        kwargs = {"clock": clock} if clock else {}
        app.state.user_store = user_store
        app.state.token_store = token_store
        app.state.token_config = config
        app.state.issuer = TokenIssuer(config, token_store, user_store, **kwargs)
        app.state.authenticator = Authenticator(config, user_store, token_store, **kwargs)
        app.state.notifier = notifier
        app.state.runner = BackgroundTaskRunner(max_workers=1)
        yield
        app.state.runner.shutdown(grace_seconds=5)

    return test_lifespan


def _insert_user(store: UserStore, username: str | None = None, *, activated: bool = True, password: str = PASSWORD) -> User:
    """Insert a user with a known password (PASSWORD unless given) and return it."""
    username = username or f"user-{uuid.uuid4().hex[:8]}"
    return store.insert(
        User(
            username=username,
            email=f"{username}@example.com",
            hashed_password=hash_password(password),
            activated=activated,
        )
    )


# ---------------------------------------------------------------------------
# Unit-level fixtures -- one fresh database per test
# ---------------------------------------------------------------------------


@pytest.fixture
def make_user():
    """Factory fixture: make_user(store, username=None, *, activated=True, password=PASSWORD)."""
    return _insert_user


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def token_config() -> TokenConfig:
    return TokenConfig(
        access_secret=ACCESS_SECRET,
        refresh_secret=REFRESH_SECRET,
        identity=IDENTITY,
        access_ttl_seconds=900,
        refresh_ttl_seconds=3600,
        activation_ttl_seconds=600,
        reset_ttl_seconds=600,
    )


@pytest.fixture
def stores(clock: FakeClock) -> Generator[tuple[UserStore, TokenStore], None, None]:
    user_store, token_store = _make_test_stores(uuid.uuid4().hex, clock=clock)
    yield user_store, token_store
    token_store.close()
    user_store.close()


@pytest.fixture
def issuer(token_config, stores, clock) -> TokenIssuer:
    user_store, token_store = stores
    return TokenIssuer(token_config, token_store, user_store, clock=clock)


@pytest.fixture
def authenticator(token_config, stores, clock) -> Authenticator:
    user_store, token_store = stores
    return Authenticator(token_config, user_store, token_store, clock=clock)


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, UserStore, RecordingNotifier], None, None]:
    """Yield (client, user_store, notifier) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use an isolated in-memory database.
    base_url is https so the client stores and returns Secure cookies.
    """
    user_store, token_store = _make_test_stores(f"api_{uuid.uuid4().hex}")
    config = TokenConfig(access_secret=ACCESS_SECRET, refresh_secret=REFRESH_SECRET, identity=IDENTITY)
    notifier = RecordingNotifier()

    app.router.lifespan_context = _patch_lifespan(user_store, token_store, config, notifier)

    with TestClient(app, base_url="https://testserver", raise_server_exceptions=True) as client:
        yield client, user_store, notifier

    token_store.close()
    user_store.close()
