"""
client/redirector.py -- Client side of the OAuth2 Authorization Code flow.

Per browser session the flow moves through three states:

  NO_TOKEN -> AWAITING_CALLBACK -> HAS_TOKEN

  begin()          NO_TOKEN -> AWAITING_CALLBACK  (fresh state in the session)
  complete()       AWAITING_CALLBACK -> HAS_TOKEN (state check, code exchange)
  fetch_resource() HAS_TOKEN; a 401 drops the token back to NO_TOKEN
  forget()         any -> NO_TOKEN

The session argument is the Starlette request.session mapping (signed
cookie). Only a random session id and the pending state live there; access
tokens are held in the process-local TokenCache keyed by that id and never
reach the browser.

Security:
  [C1] The returned state is compared in constant time and consumed on first
       use. A mismatch raises StateMismatch before any network call.
  [C4] The client authenticates to the token endpoint with HTTP Basic; the
       secret never appears in a URL.
"""

from __future__ import annotations

import hmac
import logging
import secrets
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, MutableMapping, Optional
from urllib.parse import urlencode

import requests

from client.config import ClientSettings
from client.errors import (
    ResourceUnavailable,
    StateMismatch,
    TokenExchangeError,
    TokenRejected,
    TransientExchangeError,
)

logger = logging.getLogger("ssoauth.client")

_SID_KEY = "client_sid"
_STATE_KEY = "oauth_state"


class FlowState(str, Enum):
    NO_TOKEN = "no_token"
    AWAITING_CALLBACK = "awaiting_callback"
    HAS_TOKEN = "has_token"


@dataclass(frozen=True)
class CachedToken:
    access_token: str
    expires_at: Optional[float] = None

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now if now is not None else time.time()) >= self.expires_at


class TokenCache:
    """Thread-safe map of session id -> CachedToken.

    Expired entries are dropped lazily on lookup.
    """

    def __init__(self) -> None:
        self._tokens: dict[str, CachedToken] = {}
        self._lock = threading.Lock()

    def get(self, sid: str) -> Optional[CachedToken]:
        cached = self._tokens.get(sid)
        if cached is None:
            return None
        if cached.is_expired():
            self.drop(sid)
            return None
        return cached

    def put(self, sid: str, token: CachedToken) -> None:
        with self._lock:
            self._tokens[sid] = token

    def drop(self, sid: str) -> None:
        with self._lock:
            self._tokens.pop(sid, None)

    def __len__(self) -> int:
        return len(self._tokens)


class ClientRedirector:
    """Drives the Authorization Code flow against the configured server.

    `http` is anything with requests-style get()/post() returning objects with
    status_code and json(); defaults to a requests.Session.
    """

    def __init__(
        self,
        settings: ClientSettings,
        http: Any = None,
        cache: Optional[TokenCache] = None,
    ) -> None:
        self._settings = settings
        if http is None:
            http = requests.Session()
            http.max_redirects = 3
        self._http = http
        self._cache = cache if cache is not None else TokenCache()

    # -- session helpers -----------------------------------------------------

    @staticmethod
    def _sid(session: MutableMapping[str, Any]) -> str:
        sid = session.get(_SID_KEY)
        if not sid:
            sid = secrets.token_urlsafe(16)
            session[_SID_KEY] = sid
        return sid

    def state(self, session: MutableMapping[str, Any]) -> FlowState:
        sid = session.get(_SID_KEY)
        if sid and self._cache.get(sid) is not None:
            return FlowState.HAS_TOKEN
        if session.get(_STATE_KEY):
            return FlowState.AWAITING_CALLBACK
        return FlowState.NO_TOKEN

    # -- flow ------------------------------------------------------------------

    def begin(self, session: MutableMapping[str, Any]) -> str:
        """Store a fresh state and return the authorize URL to redirect to.

        Calling begin() again replaces any pending state, so a stale callback
        from an earlier attempt fails the state check.
        """
        self._sid(session)
        state = secrets.token_urlsafe(32)
        session[_STATE_KEY] = state
        query = urlencode(
            {
                "response_type": "code",
                "client_id": self._settings.client_id,
                "redirect_uri": self._settings.redirect_uri,
                "state": state,
            }
        )
        return f"{self._settings.authorize_url}?{query}"

    def complete(self, session: MutableMapping[str, Any], code: Optional[str], state: Optional[str]) -> CachedToken:
        """Check the returned state, then exchange the code for an access token.

        Raises:
            StateMismatch:          no pending state, or it differs [C1].
            TransientExchangeError: the token endpoint could not be reached.
            TokenExchangeError:     the token endpoint refused the exchange or
                                    answered with something other than a token.
        """
        expected = session.pop(_STATE_KEY, None)
        if not expected or not state or not hmac.compare_digest(expected, state):
            logger.warning("OAuth callback rejected: state mismatch")
            raise StateMismatch()
        if not code:
            raise TokenExchangeError("The callback carried no authorization code.", code="invalid_request")

        try:
            resp = self._http.post(
                self._settings.token_url,
                data={
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": self._settings.redirect_uri,
                },
                auth=(self._settings.client_id, self._settings.client_secret),  # [C4]
                timeout=self._settings.http_timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as exc:
            logger.warning("Token endpoint unreachable: %s", exc)
            raise TransientExchangeError() from exc
        except requests.RequestException as exc:
            logger.warning("Token request failed: %s", exc)
            raise TokenExchangeError() from exc

        if resp.status_code != 200:
            error_code = _error_code(resp)
            logger.warning("Token exchange refused (%d %s)", resp.status_code, error_code)
            raise TokenExchangeError(code=error_code)

        try:
            body = resp.json()
        except ValueError as exc:
            raise TokenExchangeError("The token response is not JSON.") from exc
        access_token = body.get("access_token") if isinstance(body, dict) else None
        if not access_token:
            raise TokenExchangeError("The token response carried no access_token.")
        expires_in = body.get("expires_in")
        cached = CachedToken(
            access_token=access_token,
            expires_at=time.time() + expires_in if expires_in is not None else None,
        )
        self._cache.put(self._sid(session), cached)
        logger.info("Access token obtained for client %s", self._settings.client_id)
        return cached

    def fetch_resource(self, session: MutableMapping[str, Any]) -> dict[str, Any]:
        """Call the protected resource with the cached bearer token.

        Raises TokenRejected when there is no token or the resource server
        answers 401; the cached token is dropped in the latter case.
        Raises ResourceUnavailable when the call fails or the answer is not a
        JSON 200.
        """
        sid = self._sid(session)
        cached = self._cache.get(sid)
        if cached is None:
            raise TokenRejected("No access token for this session.")

        try:
            resp = self._http.get(
                self._settings.resource_url,
                headers={"Authorization": f"Bearer {cached.access_token}"},
                timeout=self._settings.http_timeout,
            )
        except requests.RequestException as exc:
            logger.warning("Resource server unreachable: %s", exc)
            raise ResourceUnavailable() from exc
        if resp.status_code == 401:
            logger.info("Resource server rejected the cached token; dropping it")
            self._cache.drop(sid)
            raise TokenRejected()
        if resp.status_code != 200:
            raise ResourceUnavailable(f"Resource server answered {resp.status_code}.")
        try:
            return resp.json()
        except ValueError as exc:
            raise ResourceUnavailable("The resource server answered with something other than JSON.") from exc

    def forget(self, session: MutableMapping[str, Any]) -> None:
        sid = session.pop(_SID_KEY, None)
        session.pop(_STATE_KEY, None)
        if sid:
            self._cache.drop(sid)


def _error_code(resp: Any) -> str:
    """Pull the RFC 6749 error code out of a token endpoint error response."""
    try:
        body = resp.json()
    except ValueError:
        return "token_exchange_failed"
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return body["error"]
    return "token_exchange_failed"
