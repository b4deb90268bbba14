"""
auth/store.py -- In-process stores for access tokens and authorization codes.

Pattern: Repository. TokenStore and AuthorizationCodeStore are the only shared
mutable state in the server. Route, issuer and guard code never touch the
underlying dicts directly.

Concurrency:
  FastAPI runs sync endpoints on a threadpool, so every method here can be
  called from many threads at once.

  Reads take no lock. A dict lookup is atomic under the GIL and AccessToken
  is frozen, so a reader sees either the old record or the new one, never a
  torn one.

  Writes, evictions and code redemption hold a threading.Lock. redeem() is the
  check-and-set that closes the double-exchange race: lookup, validity checks
  and the redeemed flip happen under one lock acquisition, so two concurrent
  exchanges of the same code cannot both succeed [C4].

Expiry is lazy: expired records are reported as absent on lookup and evicted
at that point. purge_expired() is the optional sweeper used by the lifespan
background task.

Layer rule: no imports from api/, web/ or client/.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime

from auth.errors import InvalidGrant
from auth.models import AccessToken, AuthorizationCode, utcnow

logger = logging.getLogger("ssoauth.auth.store")


class TokenStore:
    """Repository for issued AccessTokens, keyed by the opaque token value.

    Usage:
        store = TokenStore()
        store.put(token)
        store.get(token.token)   # AccessToken, or None if unknown/expired
        store.invalidate(token.token)
    """

    def __init__(self) -> None:
        self._tokens: dict[str, AccessToken] = {}
        self._lock = threading.Lock()

    def put(self, token: AccessToken) -> None:
        with self._lock:
            self._tokens[token.token] = token

    def get(self, token_value: str, now: datetime | None = None) -> AccessToken | None:
        """Return the live token for token_value, or None.

        Hot path -- runs on every token-guarded request. O(1), lock-free unless
        the record turns out to be expired and needs evicting.
        """
        token = self._tokens.get(token_value)
        if token is None:
            return None
        if token.is_expired(now):
            self._evict(token)
            return None
        return token

    def invalidate(self, token_value: str) -> None:
        """Drop a token. Unknown values are ignored."""
        with self._lock:
            self._tokens.pop(token_value, None)

    def purge_expired(self, now: datetime | None = None) -> int:
        """Delete every expired token. Returns the number of records removed."""
        now = now or utcnow()
        with self._lock:
            expired = [value for value, token in self._tokens.items() if token.is_expired(now)]
            for value in expired:
                del self._tokens[value]
        return len(expired)

    def _evict(self, token: AccessToken) -> None:
        # Only remove the exact record we saw expire; a concurrent put() may
        # already have replaced it.
        with self._lock:
            if self._tokens.get(token.token) is token:
                del self._tokens[token.token]

    def __len__(self) -> int:
        return len(self._tokens)


class AuthorizationCodeStore:
    """Registry of outstanding AuthorizationCodes.

    Codes are only ever read back through redeem(); get() exists for
    diagnostics and tests.
    """

    def __init__(self) -> None:
        self._codes: dict[str, AuthorizationCode] = {}
        self._lock = threading.Lock()

    def put(self, code: AuthorizationCode) -> None:
        with self._lock:
            self._codes[code.code] = code

    def get(self, code_value: str) -> AuthorizationCode | None:
        return self._codes.get(code_value)

    def redeem(
        self,
        code_value: str,
        client_id: str,
        redirect_uri: str,
        now: datetime | None = None,
    ) -> AuthorizationCode:
        """Atomically validate and consume a code [C4].

        Raises InvalidGrant if the code is unknown, already redeemed, expired,
        or bound to a different client_id / redirect_uri. A mismatched attempt
        does not consume the code -- the rightful client can still redeem it.

        A redeemed code stays in the registry (marked redeemed) until it
        expires so a replay is reported as "already redeemed" rather than
        "unknown".
        """
        now = now or utcnow()
        with self._lock:
            code = self._codes.get(code_value)
            if code is None:
                raise InvalidGrant("Authorization code is unknown.")
            if code.redeemed:
                logger.warning("Replay of redeemed authorization code for client %r", client_id)
                raise InvalidGrant("Authorization code has already been used.")
            if code.is_expired(now):
                del self._codes[code_value]
                raise InvalidGrant("Authorization code has expired.")
            if code.client_id != client_id:
                raise InvalidGrant("Authorization code was issued to another client.")
            if code.redirect_uri != redirect_uri:
                raise InvalidGrant("redirect_uri does not match the authorization request.")
            code.redeemed = True
            return code

    def purge_expired(self, now: datetime | None = None) -> int:
        """Delete expired codes, redeemed or not. Returns the number removed."""
        now = now or utcnow()
        with self._lock:
            expired = [value for value, code in self._codes.items() if code.is_expired(now)]
            for value in expired:
                del self._codes[value]
        return len(expired)

    def __len__(self) -> int:
        return len(self._codes)
