"""
tests/test_guards.py -- Unit tests for SessionGuard, TokenGuard and AnonymousGuard.

Requests are built directly from ASGI scopes so each guard is exercised
without the middleware stack around it.

Covers:
  - SessionGuard: valid cookie, missing/tampered cookie, login redirect with
    next= (path and query only), establish/terminate cookie headers
  - TokenGuard: Bearer scheme parsing, unknown and expired tokens, 401
    challenge with WWW-Authenticate and never a redirect
  - AnonymousGuard: never fails, surfaces an optional session principal
"""

from __future__ import annotations

from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest
from conftest import ALICE, session_cookie
from starlette.requests import Request
from starlette.responses import Response

from auth.errors import InvalidToken, Unauthenticated
from auth.guards import AnonymousGuard, SessionGuard, TokenGuard, extract_bearer_token
from auth.models import AccessToken, GuardType, utcnow
from auth.store import TokenStore
from core.config import get_settings

COOKIE = get_settings().session_cookie_name


def _request(path: str = "/", query: str = "", headers: dict[str, str] | None = None) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "scheme": "http",
        "server": ("testserver", 80),
        "root_path": "",
        "path": path,
        "query_string": query.encode(),
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
    }
    return Request(scope)


def _with_session(path: str = "/") -> Request:
    return _request(path, headers={"Cookie": f"{COOKIE}={session_cookie()}"})


class TestSessionGuard:
    def test_valid_cookie_yields_principal(self) -> None:
        context = SessionGuard().authenticate(_with_session())
        assert context.guard is GuardType.SESSION
        assert context.principal == ALICE
        assert context.is_authenticated

    def test_missing_cookie(self) -> None:
        with pytest.raises(Unauthenticated):
            SessionGuard().authenticate(_request())

    def test_tampered_cookie(self) -> None:
        token = session_cookie()
        request = _request(headers={"Cookie": f"{COOKIE}={token[:-4]}AAAA"})
        with pytest.raises(Unauthenticated):
            SessionGuard().authenticate(request)

    def test_challenge_redirects_to_login_with_next(self) -> None:
        guard = SessionGuard()
        request = _request("/oauth/authorize", query="client_id=acme&state=xyz")
        resp = guard.challenge(request, Unauthenticated())
        assert resp.status_code == 302
        location = urlparse(resp.headers["location"])
        assert location.path == "/login"
        assert not location.netloc
        assert parse_qs(location.query)["next"] == ["/oauth/authorize?client_id=acme&state=xyz"]

    def test_establish_and_terminate_cookie(self) -> None:
        guard = SessionGuard()
        resp = Response()
        guard.establish(resp, ALICE)
        set_cookie = resp.headers["set-cookie"]
        assert set_cookie.startswith(f"{COOKIE}=")
        assert "httponly" in set_cookie.lower()

        resp = Response()
        guard.terminate(resp)
        assert 'Max-Age=0' in resp.headers["set-cookie"] or "max-age=0" in resp.headers["set-cookie"].lower()


class TestBearerExtraction:
    @pytest.mark.parametrize(
        "header,expected",
        [
            ("Bearer abc", "abc"),
            ("bearer abc", "abc"),
            ("BEARER abc", "abc"),
            ("Basic abc", None),
            ("Bearer", None),
            ("Bearer   ", None),
        ],
    )
    def test_extract(self, header: str, expected: str | None) -> None:
        assert extract_bearer_token(_request(headers={"Authorization": header})) == expected

    def test_no_header(self) -> None:
        assert extract_bearer_token(_request()) is None


class TestTokenGuard:
    @pytest.fixture
    def store(self) -> TokenStore:
        store = TokenStore()
        now = utcnow()
        store.put(AccessToken("live", ALICE, "acme", now, now + timedelta(minutes=5)))
        store.put(AccessToken("stale", ALICE, "acme", now - timedelta(hours=1), now - timedelta(seconds=1)))
        return store

    def test_valid_token(self, store: TokenStore) -> None:
        context = TokenGuard(store).authenticate(_request("/me", headers={"Authorization": "Bearer live"}))
        assert context.guard is GuardType.TOKEN
        assert context.principal == ALICE
        assert context.access_token.token == "live"

    def test_missing_token(self, store: TokenStore) -> None:
        with pytest.raises(Unauthenticated):
            TokenGuard(store).authenticate(_request("/me"))

    def test_unknown_token(self, store: TokenStore) -> None:
        with pytest.raises(InvalidToken):
            TokenGuard(store).authenticate(_request("/me", headers={"Authorization": "Bearer nope"}))

    def test_expired_token(self, store: TokenStore) -> None:
        with pytest.raises(InvalidToken):
            TokenGuard(store).authenticate(_request("/me", headers={"Authorization": "Bearer stale"}))
        assert store.get("stale") is None

    def test_session_cookie_is_not_a_credential(self, store: TokenStore) -> None:
        with pytest.raises(Unauthenticated):
            TokenGuard(store).authenticate(_with_session("/me"))

    def test_challenge_without_credential(self, store: TokenStore) -> None:
        resp = TokenGuard(store).challenge(_request("/me"), Unauthenticated())
        assert resp.status_code == 401
        assert "location" not in resp.headers
        assert resp.headers["www-authenticate"] == 'Bearer realm="ssoauth"'

    def test_challenge_with_bad_token(self, store: TokenStore) -> None:
        resp = TokenGuard(store).challenge(_request("/me"), InvalidToken())
        assert resp.status_code == 401
        assert 'error="invalid_token"' in resp.headers["www-authenticate"]


class TestAnonymousGuard:
    def test_without_session(self) -> None:
        context = AnonymousGuard(SessionGuard()).authenticate(_request("/login"))
        assert context.guard is GuardType.ANONYMOUS
        assert context.principal is None
        assert not context.is_authenticated

    def test_with_session(self) -> None:
        context = AnonymousGuard(SessionGuard()).authenticate(_with_session("/login"))
        assert context.principal == ALICE
