"""
tests/conftest.py -- Shared fixtures for the SSO server and client tests.

This module provides:
  - _patch_lifespan(): wires fresh in-memory stores and a test client
    registration into app.state, bypassing real startup
  - server: TestClient for the authorization server (follow_redirects=False)
  - session_cookie(): a signed session JWT for a given display name
  - client_settings: ClientSettings pointing at the test registration
  - ServerBridge: lets the client redirector call the server TestClient

Environment variables must be set before any core/auth/client import so the
lru_cache'd settings see them: DEBUG auto-generates SECRET_KEY, ALLOWED_HOSTS
admits the TestClient "testserver" host, and rate limiting is switched off so
repeated token requests across tests never trip it.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from unittest.mock import MagicMock
from urllib.parse import urlsplit

# CRITICAL: Set env before any core/auth/client import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("CLIENT_DEBUG", "true")
os.environ.setdefault("CLIENT_CLIENT_SECRET", "acmesecret")

import pytest
from fastapi.testclient import TestClient

from api.main import init_auth_state
from asgi import app
from auth.clients import ClientRegistry
from auth.models import ClientRegistration, Principal
from auth.tokens import create_session_token
from client.config import ClientSettings
from core.config import get_settings

CLIENT_ID = "acme"
CLIENT_SECRET = "acmesecret"  # noqa: S105 -- test fixture value
REDIRECT_URI = "http://localhost:9999/client/login"
ALICE = Principal(id="github:1001", display_name="Alice")


def make_registry() -> ClientRegistry:
    return ClientRegistry(
        [
            ClientRegistration(
                client_id=CLIENT_ID,
                client_secret=CLIENT_SECRET,
                allowed_redirect_uris=frozenset({REDIRECT_URI}),
            )
        ]
    )


def session_cookie(principal: Principal = ALICE) -> str:
    return create_session_token(principal, expire_seconds=3600)


class ServerBridge:
    """requests-style get/post that hand the path and query to a server TestClient.

    Lets ClientRedirector talk to the in-process authorization server
    without opening a socket.
    """

    def __init__(self, client: TestClient) -> None:
        self.client = client

    @staticmethod
    def _local(url: str) -> str:
        parts = urlsplit(url)
        return f"{parts.path}?{parts.query}" if parts.query else parts.path

    def get(self, url: str, **kwargs):
        return self.client.get(self._local(url), **kwargs)

    def post(self, url: str, **kwargs):
        return self.client.post(self._local(url), **kwargs)


def _patch_lifespan():
    """Return an async context manager that replaces the real lifespan.

    Runs the same init_auth_state() wiring as production but with a fixed
    client registration, a mocked authlib registry (no provider network
    calls) and no purge task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        init_auth_state(app, get_settings(), clients=make_registry())
        app.state.oauth = MagicMock()
        app.state.purge_task = None
        yield

    return test_lifespan


@pytest.fixture
def server() -> Generator[TestClient, None, None]:
    """Authorization server TestClient with fresh stores per test.

    follow_redirects=False is essential: most assertions are on redirect
    Location headers, which disappear once the client follows them.
    """
    app.router.lifespan_context = _patch_lifespan()
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client


@pytest.fixture
def signed_in(server: TestClient) -> TestClient:
    """The server client carrying Alice's browser session cookie."""
    server.cookies.set(get_settings().session_cookie_name, session_cookie())
    return server


@pytest.fixture
def client_settings() -> ClientSettings:
    return ClientSettings(debug=True, client_id=CLIENT_ID, client_secret=CLIENT_SECRET, redirect_uri=REDIRECT_URI)
