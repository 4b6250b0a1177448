"""
tests/test_health.py -- Integration tests for GET /health.

Covers:
  - 200 response with status, version, and components fields
  - database failure reports degraded instead of failing the request
  - no authentication required
  - TrustedHostMiddleware rejects unknown Host headers
  - shutdown cancels and awaits the token-store purge loop
"""

from __future__ import annotations

import asyncio

from conftest import make_settings
from sqlalchemy.exc import OperationalError

import api.main as api_main
from api.main import __version__


def test_health_returns_200_with_components(client):
    """Health endpoint returns 200 with status, version, and components."""
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["version"] == __version__
    assert data["components"] == {"app": "ok", "database": "ok"}


def test_health_no_auth_required(client):
    resp = client.get("/health", headers={})
    assert resp.status_code == 200
    assert "www-authenticate" not in resp.headers


def test_health_degraded_when_database_unreachable(client, monkeypatch):
    class BrokenEngine:
        def connect(self):
            raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    monkeypatch.setattr(client.app.state.crm, "engine", BrokenEngine())
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "degraded"
    assert resp.json()["components"]["database"] == "error"


def test_unknown_host_rejected(client):
    resp = client.get("/health", headers={"Host": "evil.example"})
    assert resp.status_code == 400


def test_shutdown_waits_for_purge_task(tmp_path, monkeypatch):
    """The real lifespan cancels the purge loop and awaits it before closing stores."""
    monkeypatch.setattr(api_main, "get_settings", lambda: make_settings(tmp_path))

    async def run():
        async with api_main.lifespan(api_main.app):
            task = api_main.app.state.purge_task
            assert not task.done()
        return task

    task = asyncio.run(run())
    assert task.cancelled()
