"""
tests/test_issuer.py -- Unit tests for TokenIssuer and ClientRegistry.

Covers:
  - resolve_client: unknown client, unregistered redirect
  - begin_authorization: requires a principal; code bound to client/redirect
  - exchange_code: principal round-trip, single use, bad secret and
    mismatched redirect do not burn the code, expiry, non-expiring tokens
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from conftest import ALICE, CLIENT_ID, CLIENT_SECRET, REDIRECT_URI, make_registry

from auth.clients import ClientRegistry
from auth.errors import InvalidClient, InvalidGrant, InvalidRedirect, Unauthenticated
from auth.issuer import TokenIssuer
from auth.models import ClientRegistration, utcnow
from auth.store import AuthorizationCodeStore, TokenStore
from core.config import OAuthClientConfig


@pytest.fixture
def issuer() -> TokenIssuer:
    return TokenIssuer(make_registry(), TokenStore(), AuthorizationCodeStore(), code_ttl_seconds=300)


class TestClientRegistry:
    def test_from_config(self) -> None:
        registry = ClientRegistry.from_config(
            [OAuthClientConfig(client_id="a", client_secret="s", redirect_uris=["http://a/cb"])]
        )
        assert registry.get("a").allowed_redirect_uris == frozenset({"http://a/cb"})

    def test_duplicate_client_id_rejected(self) -> None:
        reg = ClientRegistration(client_id="a", client_secret="s", allowed_redirect_uris=frozenset())
        with pytest.raises(ValueError, match="Duplicate"):
            ClientRegistry([reg, reg])

    def test_authenticate(self) -> None:
        registry = make_registry()
        assert registry.authenticate(CLIENT_ID, CLIENT_SECRET).client_id == CLIENT_ID
        with pytest.raises(InvalidClient):
            registry.authenticate(CLIENT_ID, "wrong")
        with pytest.raises(InvalidClient):
            registry.authenticate("nobody", CLIENT_SECRET)


class TestAuthorization:
    def test_unknown_client(self, issuer: TokenIssuer) -> None:
        with pytest.raises(InvalidClient):
            issuer.begin_authorization("nobody", REDIRECT_URI, ALICE)

    def test_unregistered_redirect(self, issuer: TokenIssuer) -> None:
        with pytest.raises(InvalidRedirect):
            issuer.begin_authorization(CLIENT_ID, "https://attacker.example/cb", ALICE)

    def test_requires_principal(self, issuer: TokenIssuer) -> None:
        with pytest.raises(Unauthenticated):
            issuer.begin_authorization(CLIENT_ID, REDIRECT_URI, None)

    def test_code_is_bound_and_short_lived(self, issuer: TokenIssuer) -> None:
        now = utcnow()
        code = issuer.begin_authorization(CLIENT_ID, REDIRECT_URI, ALICE, now=now)
        assert code.client_id == CLIENT_ID
        assert code.redirect_uri == REDIRECT_URI
        assert code.expires_at == now + timedelta(seconds=300)
        assert issuer.codes.get(code.code) is code


class TestExchange:
    def test_token_resolves_to_authorizing_principal(self, issuer: TokenIssuer) -> None:
        code = issuer.begin_authorization(CLIENT_ID, REDIRECT_URI, ALICE)
        token = issuer.exchange_code(code.code, CLIENT_ID, CLIENT_SECRET, REDIRECT_URI)
        assert token.principal == ALICE
        assert issuer.tokens.get(token.token) is token
        assert token.expires_at is not None

    def test_code_is_single_use(self, issuer: TokenIssuer) -> None:
        code = issuer.begin_authorization(CLIENT_ID, REDIRECT_URI, ALICE)
        issuer.exchange_code(code.code, CLIENT_ID, CLIENT_SECRET, REDIRECT_URI)
        with pytest.raises(InvalidGrant):
            issuer.exchange_code(code.code, CLIENT_ID, CLIENT_SECRET, REDIRECT_URI)
        assert len(issuer.tokens) == 1

    def test_bad_secret_does_not_burn_code(self, issuer: TokenIssuer) -> None:
        code = issuer.begin_authorization(CLIENT_ID, REDIRECT_URI, ALICE)
        with pytest.raises(InvalidClient):
            issuer.exchange_code(code.code, CLIENT_ID, "wrong", REDIRECT_URI)
        assert issuer.exchange_code(code.code, CLIENT_ID, CLIENT_SECRET, REDIRECT_URI).principal == ALICE

    def test_redirect_mismatch_does_not_burn_code(self, issuer: TokenIssuer) -> None:
        code = issuer.begin_authorization(CLIENT_ID, REDIRECT_URI, ALICE)
        with pytest.raises(InvalidGrant):
            issuer.exchange_code(code.code, CLIENT_ID, CLIENT_SECRET, "http://localhost:9999/elsewhere")
        assert issuer.exchange_code(code.code, CLIENT_ID, CLIENT_SECRET, REDIRECT_URI).principal == ALICE

    def test_expired_code(self, issuer: TokenIssuer) -> None:
        code = issuer.begin_authorization(CLIENT_ID, REDIRECT_URI, ALICE)
        later = code.expires_at + timedelta(seconds=1)
        with pytest.raises(InvalidGrant):
            issuer.exchange_code(code.code, CLIENT_ID, CLIENT_SECRET, REDIRECT_URI, now=later)

    def test_zero_ttl_means_token_never_expires(self) -> None:
        issuer = TokenIssuer(make_registry(), TokenStore(), AuthorizationCodeStore(), token_ttl_seconds=0)
        code = issuer.begin_authorization(CLIENT_ID, REDIRECT_URI, ALICE)
        token = issuer.exchange_code(code.code, CLIENT_ID, CLIENT_SECRET, REDIRECT_URI)
        assert token.expires_at is None
        assert token.expires_in() is None
