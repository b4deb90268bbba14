"""
tests/test_resource.py -- Guard chain dispatch on the protected resource.

/me and /user run the same handler but sit behind different guards:

  /me   -- token guard: 401 + WWW-Authenticate on failure, never a redirect;
           a browser session cookie is not a credential here
  /user -- session guard: 302 to /login?next=/user on failure; a bearer
           token is not a credential here
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import pytest
from conftest import ALICE, CLIENT_ID, CLIENT_SECRET, REDIRECT_URI
from fastapi.testclient import TestClient


def _bearer(server: TestClient) -> str:
    issuer = server.app.state.issuer
    code = issuer.begin_authorization(CLIENT_ID, REDIRECT_URI, ALICE)
    return issuer.exchange_code(code.code, CLIENT_ID, CLIENT_SECRET, REDIRECT_URI).token


class TestTokenGuardedAlias:
    def test_no_credential_is_401_without_redirect(self, server: TestClient) -> None:
        resp = server.get("/me")
        assert resp.status_code == 401
        assert "location" not in resp.headers
        assert resp.headers["www-authenticate"] == 'Bearer realm="ssoauth"'
        assert resp.json()["error"]["code"] == "unauthenticated"

    def test_unknown_token(self, server: TestClient) -> None:
        resp = server.get("/me", headers={"Authorization": "Bearer not-a-token"})
        assert resp.status_code == 401
        assert 'error="invalid_token"' in resp.headers["www-authenticate"]

    def test_session_cookie_alone_is_401(self, signed_in: TestClient) -> None:
        resp = signed_in.get("/me")
        assert resp.status_code == 401
        assert "location" not in resp.headers

    def test_valid_token(self, server: TestClient) -> None:
        resp = server.get("/me", headers={"Authorization": f"Bearer {_bearer(server)}"})
        assert resp.status_code == 200
        assert resp.json() == {"name": "Alice"}

    def test_lowercase_scheme(self, server: TestClient) -> None:
        resp = server.get("/me", headers={"Authorization": f"bearer {_bearer(server)}"})
        assert resp.status_code == 200

    def test_trailing_slash_stays_token_guarded(self, server: TestClient) -> None:
        resp = server.get("/me/", headers={"Authorization": "Bearer not-a-token"})
        assert resp.status_code == 401
        assert "location" not in resp.headers

    def test_trailing_slash_with_valid_token_is_not_sent_to_login(self, server: TestClient) -> None:
        resp = server.get("/me/", headers={"Authorization": f"Bearer {_bearer(server)}"})
        assert resp.status_code == 307
        assert urlparse(resp.headers["location"]).path == "/me"

    def test_invalidated_token(self, server: TestClient) -> None:
        token = _bearer(server)
        server.app.state.tokens.invalidate(token)
        resp = server.get("/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401


class TestSessionGuardedAlias:
    def test_session_cookie(self, signed_in: TestClient) -> None:
        resp = signed_in.get("/user")
        assert resp.status_code == 200
        assert resp.json() == {"name": "Alice"}

    def test_no_session_redirects_to_login(self, server: TestClient) -> None:
        resp = server.get("/user")
        assert resp.status_code == 302
        location = urlparse(resp.headers["location"])
        assert location.path == "/login"
        assert parse_qs(location.query)["next"] == ["/user"]

    def test_bearer_token_alone_redirects(self, server: TestClient) -> None:
        resp = server.get("/user", headers={"Authorization": f"Bearer {_bearer(server)}"})
        assert resp.status_code == 302

    def test_id_is_not_exposed_by_default(self, signed_in: TestClient) -> None:
        assert "id" not in signed_in.get("/user").json()


class TestCatchAll:
    @pytest.mark.parametrize("path", ["/", "/nope", "/deeply/nested/path"])
    def test_unknown_paths_are_session_guarded(self, server: TestClient, path: str) -> None:
        resp = server.get(path)
        assert resp.status_code == 302
        assert resp.headers["location"].startswith("/login?next=")

    def test_unknown_path_with_session_is_404(self, signed_in: TestClient) -> None:
        resp = signed_in.get("/nope")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "http_404"
