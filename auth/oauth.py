"""
auth/oauth.py -- Authlib registry for the upstream social login providers.

The social login handshake is delegated entirely to the providers; this module
only registers them and turns a provider token response into a Principal.

Reads configuration from core.config.get_settings() at module load to decide
which providers are active. Only providers with both client ID and secret
configured get registered -- the login template renders buttons dynamically
based on get_enabled_providers().

OAuth state parameter (CSRF protection) for the provider round-trip is handled
by authlib automatically via Starlette SessionMiddleware.

Supported providers:
  github   -- Authorization code flow; static endpoints.
  facebook -- Authorization code flow; static endpoints (Graph API).
  google   -- Authorization code flow; OIDC discovery.

Layer rule: no imports from api/, web/ or client/. Import from core/ is
allowed -- core/ is the kernel layer.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuth

from auth.models import Principal
from core.config import get_settings

logger = logging.getLogger("ssoauth.auth.oauth")

# ---------------------------------------------------------------------------
# Authlib OAuth registry
# ---------------------------------------------------------------------------

oauth = OAuth()

_cfg = get_settings()

# GitHub -- static endpoints (no OIDC discovery document)
if _cfg.github_client_id and _cfg.github_client_secret:
    oauth.register(
        name="github",
        client_id=_cfg.github_client_id,
        client_secret=_cfg.github_client_secret,
        access_token_url="https://github.com/login/oauth/access_token",  # noqa: S106 -- URL, not a password
        authorize_url="https://github.com/login/oauth/authorize",
        api_base_url="https://api.github.com/",
        client_kwargs={"scope": "read:user"},
    )
    logger.info("GitHub OAuth provider registered")

# Facebook -- static Graph API endpoints
if _cfg.facebook_client_id and _cfg.facebook_client_secret:
    oauth.register(
        name="facebook",
        client_id=_cfg.facebook_client_id,
        client_secret=_cfg.facebook_client_secret,
        access_token_url="https://graph.facebook.com/oauth/access_token",  # noqa: S106 -- URL, not a password
        authorize_url="https://www.facebook.com/dialog/oauth",
        api_base_url="https://graph.facebook.com/",
        client_kwargs={"scope": "public_profile"},
    )
    logger.info("Facebook OAuth provider registered")

# Google -- OIDC discovery
if _cfg.google_client_id and _cfg.google_client_secret:
    oauth.register(
        name="google",
        client_id=_cfg.google_client_id,
        client_secret=_cfg.google_client_secret,
        server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        client_kwargs={"scope": "openid profile"},
    )
    logger.info("Google OAuth provider registered")


# ---------------------------------------------------------------------------
# Provider metadata
# ---------------------------------------------------------------------------


def get_enabled_providers() -> list[dict]:
    """Return {"name", "label"} for every configured provider, in display order."""
    cfg = get_settings()
    providers: list[dict] = []
    if cfg.github_client_id and cfg.github_client_secret:
        providers.append({"name": "github", "label": "GitHub"})
    if cfg.facebook_client_id and cfg.facebook_client_secret:
        providers.append({"name": "facebook", "label": "Facebook"})
    if cfg.google_client_id and cfg.google_client_secret:
        providers.append({"name": "google", "label": "Google"})
    return providers


# ---------------------------------------------------------------------------
# Identity extraction -- provider-specific normalization
# ---------------------------------------------------------------------------


async def get_oauth_principal(client, provider: str, token: dict) -> Principal:
    """Build a Principal from a provider token response.

    Normalizes the provider-specific profile formats into (id, display name).
    The id is prefixed with the provider name so identities from different
    providers can never collide.

    Args:
        client:   The authlib OAuth client for this provider.
        provider: "github", "facebook" or "google".
        token:    The token dict returned by authlib after code exchange.

    Raises:
        ValueError: If the provider response lacks a stable subject id. The
            caller must treat this as an authentication failure.
    """
    if provider == "github":
        subject, name = await _get_github_identity(client, token)
    elif provider == "facebook":
        subject, name = await _get_facebook_identity(client, token)
    elif provider == "google":
        subject, name = _get_oidc_identity(token, provider)
    else:
        raise ValueError(f"Unknown OAuth provider: {provider!r}")
    return Principal(id=f"{provider}:{subject}", display_name=name)


async def _get_github_identity(client, token: dict) -> tuple[str, str]:
    """GET /user -- numeric id is the stable subject; name falls back to login."""
    resp = await client.get("user", token=token)
    resp.raise_for_status()
    profile = resp.json()
    if profile.get("id") is None:
        raise ValueError("GitHub OAuth: profile has no id")
    name = profile.get("name") or profile.get("login") or str(profile["id"])
    return str(profile["id"]), name


async def _get_facebook_identity(client, token: dict) -> tuple[str, str]:
    """GET /me?fields=id,name -- app-scoped user id is the stable subject."""
    resp = await client.get("me", params={"fields": "id,name"}, token=token)
    resp.raise_for_status()
    profile = resp.json()
    if not profile.get("id"):
        raise ValueError("Facebook OAuth: profile has no id")
    return str(profile["id"]), profile.get("name") or str(profile["id"])


def _get_oidc_identity(token: dict, provider: str) -> tuple[str, str]:
    """Read sub and name from the id_token claims authlib parsed into userinfo."""
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError(f"{provider} OAuth: no userinfo in token response")
    subject = userinfo.get("sub")
    if not subject:
        raise ValueError(f"{provider} OAuth: missing sub claim in userinfo")
    name = userinfo.get("name") or userinfo.get("email") or subject
    return subject, name
