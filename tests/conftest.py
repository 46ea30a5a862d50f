"""
tests/conftest.py -- Shared test fixtures for HostAuth.

This module provides:
  - secret_store / codec / user_store / identity: isolated unit-level objects
    over a per-test temporary secrets dir and an in-memory SQLite DB
  - fake_idp: a GoogleIdentityProvider double (no network)
  - api: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are used for the
API fixture because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread.

Environment must be set before any api/ import: api.main reads get_settings()
at import time to configure middleware.
"""

from __future__ import annotations

import asyncio
import os
import tempfile
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

# CRITICAL: set before any core/api import so get_settings() sees them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("JWT_SECRETS_DIR", tempfile.mkdtemp(prefix="hostauth-test-secrets-"))

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import _stop_task, app
from auth.identity import IdentityService
from auth.models import IdentityProfile
from auth.oauth import GoogleIdentityProvider
from auth.secret_store import SecretStore
from auth.state import OAuthStateBroker
from auth.store import UserStore
from auth.tokens import TokenCodec, hash_password
from core.config import get_settings

APP_DOMAIN = "app.example.com"
OTHER_DOMAIN = "other.example.com"

# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def secrets_dir(tmp_path: Path) -> Path:
    return tmp_path / "secrets"


@pytest.fixture
def secret_store(secrets_dir: Path) -> SecretStore:
    """Development-posture store with two provisioned domains."""
    store = SecretStore(secrets_dir, allow_localhost=True)
    store.ensure_dir()
    store.provision_or_get(APP_DOMAIN)
    store.provision_or_get(OTHER_DOMAIN)
    return store


@pytest.fixture
def codec(secret_store: SecretStore) -> TokenCodec:
    return TokenCodec(secret_store, expire_seconds=3600)


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore("sqlite:///:memory:")
    yield store
    store.close()


def _make_fake_idp(profile: IdentityProfile | None = None) -> MagicMock:
    """GoogleIdentityProvider double: builds a fake consent URL, never touches the network."""
    idp = MagicMock(spec=GoogleIdentityProvider)
    idp.build_authorization_url.side_effect = lambda state: f"https://accounts.google.com/o/oauth2/v2/auth?state={state}"
    idp.exchange_code = AsyncMock(return_value="google-access-token")
    idp.fetch_profile = AsyncMock(
        return_value=profile
        or IdentityProfile(
            subject_id="google-sub-1",
            email="g@x.com",
            name="G User",
            picture="https://example.com/g.png",
            email_verified=True,
        )
    )
    return idp


@pytest.fixture
def fake_idp() -> MagicMock:
    return _make_fake_idp()


@pytest.fixture
def identity(user_store: UserStore, codec: TokenCodec, fake_idp: MagicMock) -> IdentityService:
    return IdentityService(user_store, codec, OAuthStateBroker(), identity_provider=fake_idp)


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    secret_store: SecretStore
    user_store: UserStore
    state_broker: OAuthStateBroker
    idp: MagicMock
    admin_id: str
    admin_token: str


def _patch_lifespan(
    secret_store: SecretStore,
    user_store: UserStore,
    state_broker: OAuthStateBroker,
    identity: IdentityService,
):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-built test components into app.state so routes see isolated
    stores. The reaper task is a long-sleeping coroutine so shutdown can
    cancel a real asyncio.Task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = get_settings()
        app.state.secret_store = secret_store
        app.state.user_store = user_store
        app.state.state_broker = state_broker
        app.state.identity = identity
        app.state.reaper_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        await _stop_task(app.state.reaper_task)

    return test_lifespan


@pytest.fixture(scope="module")
def api(tmp_path_factory: pytest.TempPathFactory) -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness for HTTP integration tests.

    The client's default host is app.example.com; both app.example.com and
    other.example.com have secrets. An admin account (admin@x.com /
    adminpass123) exists before the client starts, so accounts registered by
    tests are plain users.
    """
    secret_store = SecretStore(tmp_path_factory.mktemp("api-secrets"), allow_localhost=True)
    secret_store.ensure_dir()
    secret_store.provision_or_get(APP_DOMAIN)
    secret_store.provision_or_get(OTHER_DOMAIN)

    db_name = f"test_auth_{os.getpid()}_{id(secret_store)}"
    user_store = UserStore(f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")
    admin = user_store.create_with_password("admin@x.com", "Admin", hash_password("adminpass123"))

    codec = TokenCodec(secret_store, expire_seconds=get_settings().token_expire_seconds)
    state_broker = OAuthStateBroker()
    idp = _make_fake_idp()
    identity = IdentityService(user_store, codec, state_broker, identity_provider=idp)
    admin_token = codec.mint(admin, APP_DOMAIN)

    app.router.lifespan_context = _patch_lifespan(secret_store, user_store, state_broker, identity)
    limiter.reset()

    with TestClient(app, base_url=f"http://{APP_DOMAIN}", follow_redirects=False) as client:
        yield ApiHarness(
            client=client,
            secret_store=secret_store,
            user_store=user_store,
            state_broker=state_broker,
            idp=idp,
            admin_id=admin.id,
            admin_token=admin_token,
        )

    user_store.close()
