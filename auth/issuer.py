"""
auth/issuer.py -- Authorization Code Grant: code issuance and code exchange.

Two phases, two HTTP endpoints:
  begin_authorization() runs behind GET /oauth/authorize once the Session
      Guard has established who the user is. It mints a short-lived code
      bound to (principal, client_id, redirect_uri).
  exchange_code() runs behind POST /oauth/token, server-to-server. It
      authenticates the client, consumes the code atomically and mints the
      access token.

Splitting issuance this way keeps the long-lived access token out of the
browser's address bar and history; only the single-use code travels there.

Layer rule: no imports from api/, web/ or client/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from auth.clients import ClientRegistry
from auth.errors import InvalidClient, InvalidRedirect, Unauthenticated
from auth.models import AccessToken, AuthorizationCode, ClientRegistration, Principal, utcnow
from auth.store import AuthorizationCodeStore, TokenStore
from auth.tokens import generate_access_token, generate_authorization_code

logger = logging.getLogger("ssoauth.auth.issuer")


class TokenIssuer:
    """Authorization Server role.

    Args:
        clients:           Static client registrations.
        tokens:            Store that receives minted access tokens.
        codes:             Registry of outstanding authorization codes.
        code_ttl_seconds:  Lifetime of an authorization code.
        token_ttl_seconds: Lifetime of an access token; 0 = never expires.
    """

    def __init__(
        self,
        clients: ClientRegistry,
        tokens: TokenStore,
        codes: AuthorizationCodeStore,
        code_ttl_seconds: int = 300,
        token_ttl_seconds: int = 43200,
    ) -> None:
        self.clients = clients
        self.tokens = tokens
        self.codes = codes
        self.code_ttl = timedelta(seconds=code_ttl_seconds)
        self.token_ttl = timedelta(seconds=token_ttl_seconds) if token_ttl_seconds > 0 else None

    def resolve_client(self, client_id: str, redirect_uri: str) -> ClientRegistration:
        """Validate an authorization request's client and redirect target.

        Raises InvalidClient for an unknown client_id and InvalidRedirect for a
        redirect_uri outside the client's allow-list (exact match only).
        """
        client = self.clients.get(client_id)
        if client is None:
            logger.warning("Authorization request for unknown client_id %r", client_id)
            raise InvalidClient("Unknown client_id.")
        if redirect_uri not in client.allowed_redirect_uris:
            # Possible open-redirect or code-interception attempt.
            logger.warning(
                "Rejected unregistered redirect_uri %r for client %r",
                redirect_uri,
                client_id,
            )
            raise InvalidRedirect()
        return client

    def begin_authorization(
        self,
        client_id: str,
        redirect_uri: str,
        principal: Principal | None,
        now: datetime | None = None,
    ) -> AuthorizationCode:
        """Issue an authorization code for an already-authenticated principal."""
        self.resolve_client(client_id, redirect_uri)
        if principal is None:
            raise Unauthenticated("An authenticated session is required to authorize a client.")
        now = now or utcnow()
        code = AuthorizationCode(
            code=generate_authorization_code(),
            principal=principal,
            client_id=client_id,
            redirect_uri=redirect_uri,
            expires_at=now + self.code_ttl,
        )
        self.codes.put(code)
        logger.info("Authorization code issued to client %r for %s", client_id, principal.id)
        return code

    def exchange_code(
        self,
        code: str,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        now: datetime | None = None,
    ) -> AccessToken:
        """Exchange a valid code for an access token recorded in the Token Store.

        Raises InvalidClient on bad credentials, InvalidGrant when the code is
        unknown, already redeemed, expired or bound to another client/redirect.
        A given code yields at most one token, however many threads race for it.
        """
        self.clients.authenticate(client_id, client_secret)
        redeemed = self.codes.redeem(code, client_id, redirect_uri, now=now)
        now = now or utcnow()
        token = AccessToken(
            token=generate_access_token(),
            principal=redeemed.principal,
            client_id=client_id,
            issued_at=now,
            expires_at=now + self.token_ttl if self.token_ttl is not None else None,
        )
        self.tokens.put(token)
        logger.info("Access token issued to client %r for %s", client_id, redeemed.principal.id)
        return token
