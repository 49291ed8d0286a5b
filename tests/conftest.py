"""
tests/conftest.py -- Shared test fixtures for login center tests.

This module provides:
  - db_url: a fresh named in-memory database per test (unit tests)
  - Stores / make_stores(): every repository bound to one database
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - hub: (TestClient, Stores) for route tests, follow_redirects=False
  - helpers to create users and projects and to build auth headers

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment must be set before any project import:
  DEBUG=true               get_settings() auto-generates SECRET_KEY
  TRUST_PROXY_HEADERS=true tests pick their client IP with X-Forwarded-For,
                           so database rate-limit buckets never collide
  ADMIN_API_KEY            opens the admin endpoints for tests
  DATABASE_URL             keeps the health check off the real database file
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from unittest.mock import MagicMock

# CRITICAL: set before any project import; get_settings() is cached.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("TRUST_PROXY_HEADERS", "true")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key-for-the-suite")
os.environ.setdefault("DATABASE_URL", "sqlite:///file:test_default?mode=memory&cache=shared&uri=true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from asgi import app
from auth.models import User
from auth.store import UserStore
from auth.tokens import create_access_token
from oauth2.codes import SingleUseCodes, authorization_codes_repo, setup_codes_repo
from oauth2.models import AuthorizationCode, SetupCode
from projects.lifecycle import register_project
from projects.models import Project, Visibility
from projects.store import ProjectStore
from security.audit import AuditLogger
from security.rate_limit import RateLimiter

ADMIN_KEY = os.environ["ADMIN_API_KEY"]


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def memory_url(name: str) -> str:
    return f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true"


@dataclass
class Stores:
    url: str
    users: UserStore
    projects: ProjectStore
    auth_codes: SingleUseCodes[AuthorizationCode]
    setup_codes: SingleUseCodes[SetupCode]
    audit: AuditLogger
    limiter: RateLimiter

    def close(self) -> None:
        # All repositories share one engine; closing once disposes it.
        self.users.close()


def make_stores(db_url: str) -> Stores:
    return Stores(
        url=db_url,
        users=UserStore(db_url),
        projects=ProjectStore(db_url),
        auth_codes=authorization_codes_repo(db_url),
        setup_codes=setup_codes_repo(db_url),
        audit=AuditLogger(db_url),
        limiter=RateLimiter(db_url),
    )


def _patch_lifespan(stores: Stores):
    """Return an async context manager that replaces the real lifespan.

    The retention task is a long-sleeping coroutine so shutdown has a real
    asyncio.Task to cancel. The OAuth registry is a MagicMock so nothing
    reaches the network.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = stores.users
        app.state.project_store = stores.projects
        app.state.auth_codes = stores.auth_codes
        app.state.setup_codes = stores.setup_codes
        app.state.audit = stores.audit
        app.state.rate_limiter = stores.limiter
        app.state.oauth = MagicMock()
        app.state.retention_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.retention_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Domain helpers
# ---------------------------------------------------------------------------


def make_user(stores: Stores, email: str | None = None, name: str = "Test User") -> User:
    email = email or f"user-{uuid.uuid4().hex[:8]}@example.com"
    user_id = stores.users.create_user(User(email=email, name=name))
    return stores.users.get_by_id(user_id)


def make_project(
    stores: Stores,
    owner: User,
    name: str = "Shop",
    domain: str | None = "https://shop.example.com",
    visibility: Visibility = Visibility.PUBLIC,
) -> Project:
    return register_project(stores.projects, stores.audit, owner.id, name, domain=domain, visibility=visibility)


def bearer(user: User) -> dict[str, str]:
    """Authorization header carrying a hub session JWT for user."""
    token = create_access_token(user.id, user.email, user.role, user.token_version, expire_seconds=3600)
    return {"Authorization": f"Bearer {token}"}


def from_ip(ip: str | None = None) -> dict[str, str]:
    """X-Forwarded-For header with a unique client IP unless one is given."""
    return {"X-Forwarded-For": ip or f"10.{uuid.uuid4().int % 250}.{uuid.uuid4().int % 250}.{uuid.uuid4().int % 250}"}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def db_url() -> Generator[str, None, None]:
    """A fresh named in-memory database for one test."""
    url = memory_url(f"unit_{uuid.uuid4().hex}")
    stores = make_stores(url)
    yield url
    stores.close()


@pytest.fixture
def stores(db_url: str) -> Stores:
    return make_stores(db_url)


@pytest.fixture(autouse=True)
def _reset_slowapi() -> None:
    """slowapi counts in process memory; give every test a clean slate."""
    limiter.reset()


@pytest.fixture(scope="module")
def hub(request) -> Generator[tuple[TestClient, Stores], None, None]:
    """Yield (client, stores) for route tests.

    One database per test module. follow_redirects=False because the web
    tests assert on Location headers, which disappear once a redirect is
    followed.
    """
    stores = make_stores(memory_url(f"routes_{request.module.__name__.rsplit('.', 1)[-1]}"))
    app.router.lifespan_context = _patch_lifespan(stores)
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client, stores
    stores.close()
