"""
api/routes/oauth.py -- Authorization Server endpoints (Authorization Code Grant).

Routes:
  GET  /oauth/authorize   -- session-guarded; issues a code and redirects back
  POST /oauth/token       -- client-authenticated; exchanges a code for a token

Guarding:
  /oauth/authorize falls under the session catch-all rule. By the time the
  handler runs the Session Guard has either produced a principal or already
  answered with a login redirect, so the handler never sees an anonymous user
  in the default configuration.

  /oauth/token is an anonymous rule at the chain level; the client proves
  itself with its id/secret (HTTP Basic or form fields, RFC 6749 2.3.1)
  inside the handler.

Security:
  [C2] Unknown client or unregistered redirect_uri is answered directly with
       an error and never redirected -- redirecting to an unvetted URI would
       hand the code to whoever registered it.
  [H2] POST /oauth/token is rate-limited per IP (TOKEN_RATE_LIMIT).
  [M5] Cache-Control: no-store on token responses and code redirects.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Optional, Tuple
from urllib.parse import parse_qsl, unquote_plus, urlencode, urlsplit, urlunsplit

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.security.utils import get_authorization_scheme_param

from api.limiter import limiter
from api.models import OAuthErrorResponse, TokenResponse
from auth.dependencies import get_issuer, get_security_context
from auth.errors import AuthError, InvalidClient, InvalidRequest, UnsupportedGrantType, UnsupportedResponseType
from auth.issuer import TokenIssuer
from auth.models import SecurityContext
from core.config import get_settings

logger = logging.getLogger("ssoauth.api.oauth")

_settings = get_settings()

router = APIRouter()


def _with_query(uri: str, **params: Optional[str]) -> str:
    """Append params to uri, keeping any query the registered URI already has."""
    parts = urlsplit(uri)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend((k, v) for k, v in params.items() if v is not None)
    return urlunsplit(parts._replace(query=urlencode(query)))


def _basic_credentials(encoded: str) -> Tuple[str, str]:
    """Decode an HTTP Basic credential into (client_id, client_secret).

    Both halves are form-urlencoded before base64 (RFC 6749 2.3.1). A header
    that does not decode is a client authentication failure, not a 400.
    """
    try:
        decoded = base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise InvalidClient("Malformed Basic credentials.") from exc
    username, sep, password = decoded.partition(":")
    if not sep:
        raise InvalidClient("Malformed Basic credentials.")
    return unquote_plus(username), unquote_plus(password)


def _oauth_error(exc: AuthError, basic_used: bool = False) -> JSONResponse:
    resp = JSONResponse(
        status_code=exc.status_code,
        content=OAuthErrorResponse(error=exc.code, error_description=exc.message).model_dump(exclude_none=True),
    )
    if isinstance(exc, InvalidClient) and basic_used:
        resp.headers["WWW-Authenticate"] = 'Basic realm="ssoauth"'
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Authorization endpoint
# ---------------------------------------------------------------------------


@router.get("/oauth/authorize")
def authorize(
    response_type: Optional[str] = None,
    client_id: Optional[str] = None,
    redirect_uri: Optional[str] = None,
    state: Optional[str] = None,
    context: SecurityContext = Depends(get_security_context),
    issuer: TokenIssuer = Depends(get_issuer),
) -> RedirectResponse:
    """Issue an authorization code to the signed-in user and redirect back.

    Registered clients are approved without a consent screen once the user
    holds a session. state is echoed back untouched; verifying it is the
    client's job.
    """
    if not client_id or not redirect_uri:
        raise InvalidRequest("client_id and redirect_uri are required.")

    # Raises InvalidClient / InvalidRedirect -- rendered as JSON, no redirect [C2]
    issuer.resolve_client(client_id, redirect_uri)

    if response_type != "code":
        exc = UnsupportedResponseType()
        return RedirectResponse(
            _with_query(redirect_uri, error=exc.code, error_description=exc.message, state=state),
            status_code=302,
        )

    code = issuer.begin_authorization(client_id, redirect_uri, context.principal)
    resp = RedirectResponse(_with_query(redirect_uri, code=code.code, state=state), status_code=302)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Token endpoint
# ---------------------------------------------------------------------------


@limiter.limit(_settings.token_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post(
    "/oauth/token",
    response_model=TokenResponse,
    responses={400: {"model": OAuthErrorResponse}, 401: {"model": OAuthErrorResponse}},
)
def token(
    request: Request,
    grant_type: Optional[str] = Form(None),
    code: Optional[str] = Form(None),
    redirect_uri: Optional[str] = Form(None),
    client_id: Optional[str] = Form(None),
    client_secret: Optional[str] = Form(None),
    issuer: TokenIssuer = Depends(get_issuer),
) -> JSONResponse:
    """Exchange an authorization code for an access token.

    Every failure is returned, never retried: the client must restart the
    flow from /oauth/authorize to obtain a new code.
    """
    scheme, encoded = get_authorization_scheme_param(request.headers.get("Authorization"))
    basic_used = scheme.lower() == "basic"
    try:
        if basic_used:
            cid, secret = _basic_credentials(encoded)
            if client_id and client_id != cid:
                raise InvalidRequest("client_id in the body does not match the Authorization header.")
        else:
            cid, secret = client_id, client_secret

        if not grant_type:
            raise InvalidRequest("grant_type is required.")
        if grant_type != "authorization_code":
            raise UnsupportedGrantType()
        if not cid:
            raise InvalidClient("Client authentication is required.")
        if not code or not redirect_uri:
            raise InvalidRequest("code and redirect_uri are required.")

        access_token = issuer.exchange_code(code, cid, secret or "", redirect_uri)
    except AuthError as exc:
        logger.info("Token request rejected: %s (%s)", exc.code, exc.message)
        return _oauth_error(exc, basic_used=basic_used)

    resp = JSONResponse(content=TokenResponse.from_token(access_token).model_dump(exclude_none=True))
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    resp.headers["Pragma"] = "no-cache"
    return resp
