"""
auth/guards.py -- Request guards: session cookie, bearer token, anonymous.

Every guard satisfies the same small capability (the Guard protocol):
  authenticate(request) -> SecurityContext   raises AuthError on failure
  challenge(request, exc) -> Response        the failure response for exc

The guard chain (auth/chain.py) picks exactly one guard per request path.
Guards never call each other on failure, so a token-guarded path cannot fall
back to a login redirect, and a session-guarded path never answers with a
bare 401.

  SessionGuard   -- interactive browser path. No/invalid session cookie ->
                    302 to the social login entry point with ?next=.
  TokenGuard     -- programmatic path. Bearer token required; 401 with a
                    WWW-Authenticate header on failure, never a redirect.
  AnonymousGuard -- explicit permit-all for login, token endpoint, health.
                    Picks up the session principal when one is present.

Layer rule: no imports from api/, web/ or client/. Starlette request and
response types are allowed -- guards are part of the HTTP pipeline.
"""

from __future__ import annotations

import logging
from typing import Protocol
from urllib.parse import urlencode

from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response

from auth.errors import AuthError, InvalidToken, Unauthenticated
from auth.models import GuardType, Principal, SecurityContext
from auth.store import TokenStore
from auth.tokens import clear_session_cookie, create_session_token, decode_session_token, set_session_cookie
from core.config import get_settings

logger = logging.getLogger("ssoauth.auth.guards")

_REALM = "ssoauth"


class Guard(Protocol):
    guard_type: GuardType

    def authenticate(self, request: Request) -> SecurityContext: ...

    def challenge(self, request: Request, exc: AuthError) -> Response: ...


# ---------------------------------------------------------------------------
# Session Guard
# ---------------------------------------------------------------------------


class SessionGuard:
    """Unauthenticated -> (social login round-trip) -> Authenticated.

    The session lives in an httpOnly cookie holding a signed JWT
    (auth/tokens.py). establish() is called by the social login callback once
    the provider has vouched for the user; terminate() by logout.
    """

    guard_type = GuardType.SESSION

    def __init__(self, login_url: str = "/login", cookie_name: str | None = None) -> None:
        self.login_url = login_url
        self.cookie_name = cookie_name or get_settings().session_cookie_name

    def current_principal(self, request: Request) -> Principal | None:
        """Soft variant: the session principal, or None. Never raises."""
        raw = request.cookies.get(self.cookie_name)
        if not raw:
            return None
        return decode_session_token(raw)

    def authenticate(self, request: Request) -> SecurityContext:
        principal = self.current_principal(request)
        if principal is None:
            raise Unauthenticated("A browser session is required.")
        return SecurityContext(guard=self.guard_type, principal=principal)

    def challenge(self, request: Request, exc: AuthError) -> Response:
        """Send the browser to the login page, remembering where it was going.

        next= is always the server-local path plus query string -- never the
        full URL -- so it cannot be turned into an open redirect [C2].
        """
        target = request.url.path
        if request.url.query:
            target = f"{target}?{request.url.query}"
        query = urlencode({"next": target}, safe="/")
        return RedirectResponse(f"{self.login_url}?{query}", status_code=302)

    def establish(self, response: Response, principal: Principal) -> None:
        set_session_cookie(response, create_session_token(principal))
        logger.info("Session established for %s", principal.id)

    def terminate(self, response: Response) -> None:
        clear_session_cookie(response)


# ---------------------------------------------------------------------------
# Token Guard
# ---------------------------------------------------------------------------


def extract_bearer_token(request: Request) -> str | None:
    """Return the credential from 'Authorization: Bearer <token>', or None.

    The scheme name is case-insensitive (RFC 7235); the token is not.
    """
    header = request.headers.get("Authorization", "")
    scheme, _, credential = header.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return credential.strip() or None


class TokenGuard:
    """Resource Server gate. Pure and non-interactive: no redirect fallback."""

    guard_type = GuardType.TOKEN

    def __init__(self, store: TokenStore) -> None:
        self.store = store

    def authenticate(self, request: Request) -> SecurityContext:
        value = extract_bearer_token(request)
        if value is None:
            raise Unauthenticated("Bearer token required.")
        token = self.store.get(value)
        if token is None:
            raise InvalidToken()
        return SecurityContext(guard=self.guard_type, principal=token.principal, access_token=token)

    def challenge(self, request: Request, exc: AuthError) -> Response:
        # RFC 6750 section 3: no error attribute when no credential was sent.
        www_auth = f'Bearer realm="{_REALM}"'
        if isinstance(exc, InvalidToken):
            www_auth += f', error="{exc.code}"'
        return JSONResponse(
            status_code=401,
            content={"error": {"code": exc.code, "message": exc.message}},
            headers={"WWW-Authenticate": www_auth},
        )


# ---------------------------------------------------------------------------
# Anonymous Guard
# ---------------------------------------------------------------------------


class AnonymousGuard:
    """Permit-all rule. Still a guard, so every path stays covered by some rule."""

    guard_type = GuardType.ANONYMOUS

    def __init__(self, session: SessionGuard) -> None:
        self.session = session

    def authenticate(self, request: Request) -> SecurityContext:
        return SecurityContext(guard=self.guard_type, principal=self.session.current_principal(request))

    def challenge(self, request: Request, exc: AuthError) -> Response:
        # authenticate() never raises; kept to satisfy the Guard protocol.
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": {"code": exc.code, "message": exc.message}},
        )
