"""
web/routes.py -- Browser-facing routes: social login, logout, session home.

Routes:
  GET  /                          -- session home (session-guarded)
  GET  /login                     -- provider buttons; ?next= carried through
  GET  /login/oauth/{provider}    -- redirect to the social provider
  GET  /login/callback/{provider} -- provider callback; establishes the session
  POST /logout                    -- ends the session

This is the social-login collaborator the Session Guard redirects to. The
guard chain covers /login/** and /logout with anonymous rules; / falls under
the session catch-all.

Security:
  [C2] next= is validated by _safe_next() before every redirect; only
       server-local relative paths are accepted.
  [M3] ?error= values are mapped through a whitelist before reaching the
       template.
  [M5] Cache-Control: no-store on the session-establishing redirect.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from auth.dependencies import get_principal, get_security_context
from auth.guards import SessionGuard
from auth.models import Principal, SecurityContext
from auth.oauth import get_enabled_providers, get_oauth_principal

logger = logging.getLogger("ssoauth.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()

# Session key holding the post-login target across the provider round-trip.
_NEXT_KEY = "login_next"

# Whitelist mapping for ?error= query params on /login [M3].
_ERROR_MESSAGES: dict[str, str] = {
    "oauth_failed": "Sign-in with the provider failed. Please try again.",
    "unknown_provider": "That sign-in provider is not enabled.",
}


def _safe_next(next_url: Optional[str]) -> str:
    """Validate a post-login redirect target. Only accept relative paths. [C2]

    Prevents open redirect attacks where an attacker crafts a URL like:
      /login?next=https://attacker.com  or  /login?next=//attacker.com
    """
    if next_url and next_url.startswith("/") and not next_url.startswith("//") and "\\" not in next_url:
        return next_url
    return "/"


def _session_guard(request: Request) -> SessionGuard:
    return request.app.state.session_guard


# ---------------------------------------------------------------------------
# Session home
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def home(request: Request, principal: Principal = Depends(get_principal)) -> HTMLResponse:
    return templates.TemplateResponse(request, "home.html", {"name": principal.display_name})


# ---------------------------------------------------------------------------
# Login routes
#
# /login/oauth/{provider} and /login/callback/{provider} are registered before
# GET /login; all three are covered by the "/login/**" anonymous rule.
# ---------------------------------------------------------------------------


@router.get("/login/oauth/{provider}")
async def oauth_redirect(
    request: Request,
    provider: str,
    next_url: Optional[str] = Query(None, alias="next"),
) -> RedirectResponse:
    """Redirect the browser to the provider's authorization page.

    Validates the provider name against the enabled provider list before
    redirecting, and stashes the post-login target in the session so it
    survives the provider round-trip.
    """
    enabled = {p["name"] for p in get_enabled_providers()}
    if provider not in enabled:
        return RedirectResponse("/login?error=unknown_provider", status_code=302)

    request.session[_NEXT_KEY] = _safe_next(next_url)  # [C2]
    client = request.app.state.oauth.create_client(provider)
    redirect_uri = str(request.url_for("oauth_callback", provider=provider))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/login/callback/{provider}", name="oauth_callback")
async def oauth_callback(request: Request, provider: str) -> RedirectResponse:
    """Handle the provider callback and establish the browser session.

    Flow:
      1. Exchange the provider's code for a provider token (authlib verifies
         its own state via the session).
      2. Normalize the provider profile into a Principal.
      3. Establish the session (signed JWT cookie) and redirect to next.
    """
    enabled = {p["name"] for p in get_enabled_providers()}
    if provider not in enabled:
        return RedirectResponse("/login?error=unknown_provider", status_code=302)

    client = request.app.state.oauth.create_client(provider)

    try:
        token = await client.authorize_access_token(request)
    except OAuthError:
        logger.exception("Provider token exchange failed for %r", provider)
        return RedirectResponse("/login?error=oauth_failed", status_code=302)

    try:
        principal = await get_oauth_principal(client, provider, token)
    except ValueError:
        logger.warning("Social login rejected: incomplete profile from %r", provider)
        return RedirectResponse("/login?error=oauth_failed", status_code=302)

    next_url = _safe_next(request.session.pop(_NEXT_KEY, None))  # [C2]
    resp = RedirectResponse(next_url, status_code=302)
    _session_guard(request).establish(resp, principal)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.get("/login", response_class=HTMLResponse)
def login_form(
    request: Request,
    next_url: Optional[str] = Query(None, alias="next"),
    error: Optional[str] = None,
    context: SecurityContext = Depends(get_security_context),
) -> HTMLResponse:
    """Render the provider buttons, or skip straight to next if already signed in."""
    if context.is_authenticated:
        return RedirectResponse(_safe_next(next_url), status_code=302)

    return templates.TemplateResponse(
        request,
        "login.html",
        {
            "error_msg": _ERROR_MESSAGES.get(error or ""),
            "providers": get_enabled_providers(),
            "next": _safe_next(next_url),
        },
    )


@router.post("/logout")
def logout(request: Request) -> RedirectResponse:
    """Clear the session cookie and return to the login page."""
    resp = RedirectResponse("/login", status_code=302)
    _session_guard(request).terminate(resp)
    request.session.pop(_NEXT_KEY, None)
    return resp
