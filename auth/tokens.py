"""
auth/tokens.py -- Session JWT, opaque credential generation and cookie helpers.

Security design decisions:
  Session JWT: python-jose with HS256. The browser session established after a
       social login is a signed JWT in an httpOnly cookie carrying the
       principal id (sub), display name and expiry. Verification returns None
       on any failure -- the Session Guard turns that into a login redirect.

  Opaque credentials: authorization codes, access tokens and client-side state
       values come from secrets.token_urlsafe. Access tokens are deliberately
       NOT JWTs: the Token Store is the single source of truth, so a token is
       only valid while the store says so.

  SECRET_KEY: sourced from core.config.get_settings(), which validates it at
       startup [M6].

Layer rule: no imports from api/, web/ or client/. Import from core/ is
allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.models import Principal
from core.config import get_settings

logger = logging.getLogger("ssoauth.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

# Distinguishes session JWTs from any other token signed with the same key.
_SESSION_TYPE = "session"


# ---------------------------------------------------------------------------
# Opaque credentials
# ---------------------------------------------------------------------------


def generate_authorization_code() -> str:
    """Return a new one-time authorization code (32 random bytes, URL-safe)."""
    return secrets.token_urlsafe(32)


def generate_access_token() -> str:
    """Return a new opaque bearer token (256 bits of entropy)."""
    return secrets.token_urlsafe(32)


# ---------------------------------------------------------------------------
# Session JWT encode / decode
# ---------------------------------------------------------------------------


def create_session_token(principal: Principal, expire_seconds: int = 0) -> str:
    """Encode a signed session JWT for the given principal.

    Args:
        principal:      Identity returned by the social login provider.
        expire_seconds: Session duration in seconds. If 0 (default), uses
                        Settings.session_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.session_expire_seconds
    expire = datetime.now(timezone.utc) + timedelta(seconds=duration)
    payload = {
        "sub": principal.id,
        "name": principal.display_name,
        "typ": _SESSION_TYPE,
        "exp": expire,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_session_token(token: str) -> Principal | None:
    """Decode and verify a session JWT. Returns the Principal or None on any failure.

    Returning None (rather than raising) keeps the caller simple: any bad
    cookie is treated as "no session".
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if payload.get("typ") != _SESSION_TYPE or "sub" not in payload or "name" not in payload:
        return None
    return Principal(id=payload["sub"], display_name=payload["name"])


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Write the session JWT as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": the cookie still rides top-level GET navigations, which the
        /oauth/authorize redirect from the client process relies on, but not
        cross-site POSTs.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the JWT expiry so both expire together.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.session_expire_seconds
    response.set_cookie(
        _settings.session_cookie_name,
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=duration,
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(_settings.session_cookie_name)
