"""
tests/conftest.py -- Shared fixtures for CodeGate unit and integration tests.

This module provides:
  - FakeClock / RecordingNotifier: deterministic time and an in-memory outbox
  - unit fixtures (clock, notifier, user_store, code_store, session_store,
    code_service, token_issuer, auth_service) over plain in-memory SQLite
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient over the real app with isolated stores

Design: Named shared-memory SQLite URIs (not plain :memory:) are used for the
API fixture because TestClient runs route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any auth/core import so get_settings()
auto-generates signing keys in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, configure_state
from auth.codes import CodeStore, VerificationCodeService
from auth.models import CodePurpose, Role, User
from auth.service import AuthService
from auth.sessions import SessionStore
from auth.store import UserStore
from auth.tokens import TokenIssuer
from core.config import get_settings

ACCESS_KEY = "a" * 32 + "-access-signing-key"
REFRESH_KEY = "r" * 32 + "-refresh-signing-key"
HASH_KEY = "h" * 32 + "-code-hash-key"

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock returning a settable epoch time."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class SentCode:
    email: str
    code: str
    purpose: CodePurpose


@dataclass
class RecordingNotifier:
    """Notifier that keeps every message in memory. Set fail=True to simulate a provider outage."""

    fail: bool = False
    outbox: list[SentCode] = field(default_factory=list)

    def send(self, email: str, code: str, purpose: CodePurpose) -> bool:
        self.outbox.append(SentCode(email=email, code=code, purpose=CodePurpose(purpose)))
        return not self.fail

    def last_code(self, email: str, purpose: CodePurpose | None = None) -> str:
        for sent in reversed(self.outbox):
            if sent.email == email and (purpose is None or sent.purpose == purpose):
                return sent.code
        raise AssertionError(f"no code was sent to {email}")


# ---------------------------------------------------------------------------
# Unit fixtures -- fresh in-memory databases per test
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def code_store(clock: FakeClock) -> Generator[CodeStore, None, None]:
    store = CodeStore("sqlite:///:memory:", clock=clock)
    yield store
    store.close()


@pytest.fixture
def session_store(clock: FakeClock) -> Generator[SessionStore, None, None]:
    store = SessionStore("sqlite:///:memory:", clock=clock)
    yield store
    store.close()


@pytest.fixture
def code_service(
    code_store: CodeStore, user_store: UserStore, notifier: RecordingNotifier, clock: FakeClock
) -> VerificationCodeService:
    return VerificationCodeService(
        codes=code_store,
        users=user_store,
        notifier=notifier,
        hash_key=HASH_KEY,
        clock=clock,
    )


@pytest.fixture
def token_issuer(clock: FakeClock) -> TokenIssuer:
    return TokenIssuer(ACCESS_KEY, REFRESH_KEY, clock=clock)


@pytest.fixture
def auth_service(
    user_store: UserStore,
    code_service: VerificationCodeService,
    token_issuer: TokenIssuer,
    session_store: SessionStore,
    clock: FakeClock,
) -> AuthService:
    return AuthService(
        users=user_store,
        codes=code_service,
        tokens=token_issuer,
        sessions=session_store,
        hash_key=HASH_KEY,
        clock=clock,
    )


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


@dataclass
class ApiContext:
    client: TestClient
    notifier: RecordingNotifier
    user_store: UserStore
    session_store: SessionStore

    def login(self, email: str) -> dict:
        """Request a login code and redeem it. Returns the login response body."""
        resp = self.client.post("/api/v1/auth/send-code", json={"email": email, "type": "login"})
        assert resp.status_code == 200, resp.text
        resp = self.client.post(
            "/api/v1/auth/login",
            json={"email": email, "code": self.notifier.last_code(email, CodePurpose.login)},
        )
        assert resp.status_code == 200, resp.text
        return resp.json()

    def user_with_role(self, email: str, role_name: str, permissions: dict[str, set[str]]) -> dict:
        """Create a user holding a new role, log them in, return the login body."""
        role_id = self.user_store.create_role(
            Role(name=role_name, permissions={k: frozenset(v) for k, v in permissions.items()})
        )
        self.user_store.create_user(User(email=email, name=email.split("@")[0], role_id=role_id))
        return self.login(email)


def auth_header(body: dict) -> dict[str, str]:
    return {"Authorization": f"Bearer {body['accessToken']}"}


def _make_test_stores(db_suffix: str) -> tuple[UserStore, CodeStore, SessionStore]:
    """Create named shared-memory SQLite stores, isolated per suffix."""
    url = f"sqlite:///file:test_codegate_{db_suffix}?mode=memory&cache=shared&uri=true"
    return UserStore(url), CodeStore(url), SessionStore(url)


def _patch_lifespan(
    user_store: UserStore, code_store: CodeStore, session_store: SessionStore, notifier: RecordingNotifier
):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        configure_state(
            app,
            get_settings(),
            user_store=user_store,
            code_store=code_store,
            session_store=session_store,
            notifier=notifier,
        )
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for integration tests.

    One database per test module. Per-IP rate limits are switched off so
    tests can call the auth routes freely; the per-address resend window
    still applies, so tests use distinct emails.
    """
    user_store, code_store, session_store = _make_test_stores(request.module.__name__.rsplit(".", 1)[-1])
    notifier = RecordingNotifier()

    app.router.lifespan_context = _patch_lifespan(user_store, code_store, session_store, notifier)
    limiter.enabled = False

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(client=client, notifier=notifier, user_store=user_store, session_store=session_store)

    limiter.enabled = True
    session_store.close()
    code_store.close()
    user_store.close()
