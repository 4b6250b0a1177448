"""
tests/conftest.py -- Shared test fixtures for micro-crm.

This module provides:
  - make_settings(): Settings pointed at per-test SQLite files under tmp_path
  - FakeProvider: an OIDC provider (discovery, JWKS, token endpoint) served
    through httpx.MockTransport, signing ID tokens with a throwaway RSA key
  - _patch_lifespan(): runs the real build_state() wiring against test
    settings, bypassing get_settings() and real network calls
  - client / oidc_client: TestClient with follow_redirects=False

Design: every test gets its own database files under pytest's tmp_path, so
tests never share rows and TestClient's worker threads all see the same
schema. BCRYPT_ROUNDS=4 keeps hashing fast.

Environment must be set before any api/ import: api/main.py reads
get_settings() at import time for the middleware stack.
"""

from __future__ import annotations

import asyncio
import os
import time
from collections.abc import Generator
from contextlib import asynccontextmanager, suppress
from urllib.parse import parse_qsl

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SECRET_KEY", "test-secret-key-0123456789abcdef0123456789")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import httpx
import pytest
from authlib.jose import JsonWebKey, jwt
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, build_state, close_state
from core.config import Settings

# Rate limits are exercised explicitly in test_auth_routes.py.
limiter.enabled = False

SECRET = "test-secret-key-0123456789abcdef0123456789"
ISSUER = "https://idp.example.test"
CLIENT_ID = "micro-crm"
CLIENT_SECRET = "client-secret"
REDIRECT_URI = "http://testserver/login/oidc/callback"
LOGOUT_URL = f"{ISSUER}/logout"


def make_settings(tmp_path, **overrides) -> Settings:
    values = dict(
        debug=True,
        secret_key=SECRET,
        database_url=f"sqlite:///{tmp_path / 'micro-crm.db'}",
        token_store_path=str(tmp_path / "id_tokens.db"),
        bcrypt_rounds=4,
    )
    values.update(overrides)
    return Settings(**values)


def oidc_overrides(**extra) -> dict:
    values = dict(
        oidc_issuer=ISSUER,
        oidc_client_id=CLIENT_ID,
        oidc_client_secret=CLIENT_SECRET,
        oidc_redirect_uri=REDIRECT_URI,
        oidc_logout_url=LOGOUT_URL,
    )
    values.update(extra)
    return values


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Fake identity provider
# ---------------------------------------------------------------------------


class FakeProvider:
    """Just enough of an OIDC provider for the authorization-code flow.

    issue_code() registers a code; the token endpoint trades it (once) for a
    token response carrying the given ID token.
    """

    def __init__(self) -> None:
        self.kid = "key-1"
        self.key = JsonWebKey.generate_key("RSA", 2048, is_private=True)
        self.codes: dict[str, str | None] = {}
        self.token_requests: list[dict[str, str]] = []
        self.discovery_calls = 0
        self.jwks_calls = 0
        self.fail_discovery = False

    def rotate_key(self, kid: str) -> None:
        self.kid = kid
        self.key = JsonWebKey.generate_key("RSA", 2048, is_private=True)

    def jwks(self) -> dict:
        jwk = self.key.as_dict(is_private=False)
        jwk.update(kid=self.kid, use="sig", alg="RS256")
        return {"keys": [jwk]}

    def claims(self, email: str = "bob@example.com", name: str = "Bob Jones", **overrides) -> dict:
        now = int(time.time())
        values = {
            "iss": ISSUER,
            "aud": CLIENT_ID,
            "sub": email,
            "email": email,
            "name": name,
            "iat": now,
            "exp": now + 3600,
        }
        values.update(overrides)
        return {k: v for k, v in values.items() if v is not None}

    def sign(self, claims: dict, kid: str | None = None) -> str:
        header = {"alg": "RS256", "kid": kid or self.kid}
        return jwt.encode(header, claims, self.key).decode("ascii")

    def issue_code(self, code: str, id_token: str | None) -> None:
        self.codes[code] = id_token

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/.well-known/openid-configuration":
            self.discovery_calls += 1
            if self.fail_discovery:
                return httpx.Response(503, text="unavailable")
            return httpx.Response(
                200,
                json={
                    "issuer": ISSUER,
                    "authorization_endpoint": f"{ISSUER}/authorize",
                    "token_endpoint": f"{ISSUER}/token",
                    "jwks_uri": f"{ISSUER}/jwks",
                    "end_session_endpoint": LOGOUT_URL,
                },
            )
        if path == "/jwks":
            self.jwks_calls += 1
            return httpx.Response(200, json=self.jwks())
        if path == "/token":
            form = dict(parse_qsl(request.content.decode("utf-8")))
            self.token_requests.append(form)
            code = form.get("code")
            if code not in self.codes:
                return httpx.Response(400, json={"error": "invalid_grant", "error_description": "unknown code"})
            id_token = self.codes.pop(code)
            body = {"access_token": f"at-{code}", "token_type": "Bearer", "expires_in": 3600}
            if id_token is not None:
                body["id_token"] = id_token
            return httpx.Response(200, json=body)
        return httpx.Response(404)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


# ---------------------------------------------------------------------------
# App clients
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
    """Return a lifespan that wires the real collaborators from test settings.

    The purge_task is a long-sleeping coroutine so shutdown has a real
    asyncio.Task to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        await build_state(app, settings, oidc_transport=transport)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()
        with suppress(asyncio.CancelledError):
            await app.state.purge_task
        close_state(app)

    return test_lifespan


def _client(settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> Generator[TestClient, None, None]:
    app.router.lifespan_context = _patch_lifespan(settings, transport)
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client


@pytest.fixture
def client(tmp_path) -> Generator[TestClient, None, None]:
    """TestClient with federated login disabled."""
    yield from _client(make_settings(tmp_path))


@pytest.fixture
def oidc_client(tmp_path, provider) -> Generator[TestClient, None, None]:
    """TestClient whose OIDC bridge talks to the FakeProvider."""
    yield from _client(make_settings(tmp_path, **oidc_overrides()), provider.transport)


@pytest.fixture
def register(client):
    """Register a user through the API and return (token, user_json)."""

    def _register(username: str, email: str, password: str = "secret123", **extra):
        resp = client.post("/register", json={"username": username, "email": email, "password": password, **extra})
        assert resp.status_code == 201, resp.text
        body = resp.json()
        return body["token"], body["user"]

    return _register
