"""
tests/conftest.py -- Shared test fixtures for Gatekeeper.

This module provides:
  - make_db_url(): a fresh named shared-memory SQLite URI
  - user_store / action_store / rbac_store / codec: unit-test building blocks
  - api_client: TestClient with a super-admin access token for API tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers on another thread and because three
stores open their own engines on one database. Plain :memory: DBs are
per-connection and would present a blank schema to each of them.

The environment must be set before any api/auth/core import so
get_settings() auto-generates SECRET_KEY in dev mode, does not mark cookies
Secure over plain-http TestClient, and does not rate-limit the test suite.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from types import SimpleNamespace

# CRITICAL: set before any api/auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SECURE_COOKIES", "false")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("OTP_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app, seed_defaults, wire_services
from auth.store import ActionTokenStore, UserStore
from auth.tokens import TokenCodec
from core.config import get_settings
from core.mailer import LoggingMailer
from rbac.service import SUPER_ADMIN_ROLE
from rbac.store import RbacStore

TEST_SECRET = "test-secret-key-with-at-least-32-characters"
ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "adminpass123"


def make_db_url(prefix: str = "test") -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


# ---------------------------------------------------------------------------
# Unit-test fixtures -- one fresh database per test
# ---------------------------------------------------------------------------


@pytest.fixture()
def db_url() -> str:
    return make_db_url()


@pytest.fixture()
def user_store(db_url) -> Generator[UserStore, None, None]:
    store = UserStore(db_url=db_url)
    yield store
    store.close()


@pytest.fixture()
def action_store(db_url) -> Generator[ActionTokenStore, None, None]:
    store = ActionTokenStore(db_url=db_url)
    yield store
    store.close()


@pytest.fixture()
def rbac_store(db_url) -> Generator[RbacStore, None, None]:
    store = RbacStore(db_url=db_url)
    yield store
    store.close()


@pytest.fixture()
def codec() -> TokenCodec:
    return TokenCodec(
        TEST_SECRET,
        action_expire_seconds=300,
        access_expire_seconds=900,
        refresh_expire_seconds=3600,
    )


@pytest.fixture()
def mailer() -> LoggingMailer:
    return LoggingMailer(keep_outbox=True)


# ---------------------------------------------------------------------------
# API fixture -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


def _patch_lifespan(stores: SimpleNamespace, mailer: LoggingMailer, admin: SimpleNamespace):
    """Return an async context manager that replaces the real lifespan.

    Wires the test stores and a LoggingMailer through the same
    wire_services() the real lifespan uses, then creates a verified
    super-admin and records its id and access token on `admin`.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        settings = get_settings()
        wire_services(
            app,
            user_store=stores.users,
            action_store=stores.actions,
            rbac_store=stores.rbac,
            mailer=mailer,
            settings=settings,
        )
        await seed_defaults(app, settings)
        role = await app.state.rbac_service.ensure_system_role(SUPER_ADMIN_ROLE)
        user = await app.state.user_service.create_user(
            "testadmin", ADMIN_EMAIL, ADMIN_PASSWORD, is_email_verified=True, role_id=role.id
        )
        tokens = await app.state.session_service.issue_and_attach(user)
        admin.id = user.id
        admin.token = tokens.access_token
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, str, str], None, None]:
    """Yield (client, admin_authorization_header, admin_user_id).

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use an isolated in-memory database.
    Mail sent by the app is readable from client.app.state.mailer.outbox.
    """
    url = make_db_url("api")
    stores = SimpleNamespace(users=UserStore(url), actions=ActionTokenStore(url), rbac=RbacStore(url))
    admin = SimpleNamespace(id=None, token=None)

    app.router.lifespan_context = _patch_lifespan(stores, LoggingMailer(keep_outbox=True), admin)

    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield client, admin.token, admin.id

    stores.users.close()
    stores.actions.close()
    stores.rbac.close()
