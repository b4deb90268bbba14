"""
auth/clients.py -- Static registry of OAuth2 client registrations.

Loaded once at startup from Settings.oauth_clients and never mutated. Every
authorization and token request is validated against it.

Security:
  Client secrets are compared with hmac.compare_digest so response timing
  does not reveal how much of a guessed secret was correct.
  Unknown client ids still run one comparison against a dummy secret.
"""

from __future__ import annotations

import hmac
import logging
from collections.abc import Iterable

from auth.errors import InvalidClient
from auth.models import ClientRegistration
from core.config import OAuthClientConfig

logger = logging.getLogger("ssoauth.auth.clients")

_DUMMY_SECRET = "ssoauth-timing-dummy-secret"


class ClientRegistry:
    def __init__(self, registrations: Iterable[ClientRegistration] = ()) -> None:
        self._clients: dict[str, ClientRegistration] = {}
        for reg in registrations:
            if reg.client_id in self._clients:
                raise ValueError(f"Duplicate OAuth client registration: {reg.client_id!r}")
            self._clients[reg.client_id] = reg

    @classmethod
    def from_config(cls, configs: Iterable[OAuthClientConfig]) -> ClientRegistry:
        registry = cls(
            ClientRegistration(
                client_id=c.client_id,
                client_secret=c.client_secret,
                allowed_redirect_uris=frozenset(c.redirect_uris),
            )
            for c in configs
        )
        logger.info("Loaded %d OAuth client registration(s)", len(registry))
        return registry

    def get(self, client_id: str) -> ClientRegistration | None:
        return self._clients.get(client_id)

    def authenticate(self, client_id: str, client_secret: str) -> ClientRegistration:
        """Return the registration if the id/secret pair matches, else raise InvalidClient."""
        reg = self._clients.get(client_id)
        expected = reg.client_secret if reg is not None else _DUMMY_SECRET
        secret_ok = hmac.compare_digest(expected.encode(), (client_secret or "").encode())
        if reg is None or not secret_ok:
            logger.warning("Client authentication failed for client_id %r", client_id)
            raise InvalidClient()
        return reg

    def __len__(self) -> int:
        return len(self._clients)
