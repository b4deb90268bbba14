"""
core/config.py -- Centralized configuration for the authorization server.

All environment variable reads for the server process happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead. The client process has its own settings class in client/config.py.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). List fields such as OAUTH_CLIENTS and
      GUARD_RULES are parsed from JSON.

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Dev mode generates a SECRET_KEY with a warning; production mode
      refuses to start without one.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. The session JWT
       and the Starlette session cookie are both signed with it.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure.

  [C3] Authorization codes must expire in the near future. AUTH_CODE_TTL_SECONDS
       is bounded to 1..600 seconds.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
auth/ or client/.
"""

import logging
import secrets
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("ssoauth.config")

_MAX_CODE_TTL = 600


class OAuthClientConfig(BaseModel):
    """One registered OAuth2 client, as read from OAUTH_CLIENTS.

    Example:
        OAUTH_CLIENTS='[{"client_id": "acme", "client_secret": "...",
                         "redirect_uris": ["http://localhost:9999/client/login"]}]'
    """

    client_id: str = Field(min_length=1)
    client_secret: str = Field(min_length=1)
    redirect_uris: list[str] = Field(min_length=1)


class GuardRuleConfig(BaseModel):
    """One (path, guard, order) tuple of the guard chain."""

    path: str
    guard: Literal["session", "token", "anonymous"]
    order: int


# Lower order wins. /me is the token alias of the protected resource and must
# be evaluated before the session catch-all.
_DEFAULT_GUARD_RULES: list[GuardRuleConfig] = [
    GuardRuleConfig(path="/me", guard="token", order=0),
    GuardRuleConfig(path="/oauth/token", guard="anonymous", order=1),
    GuardRuleConfig(path="/login/**", guard="anonymous", order=2),
    GuardRuleConfig(path="/logout", guard="anonymous", order=3),
    GuardRuleConfig(path="/api/v1/health", guard="anonymous", order=4),
    GuardRuleConfig(path="/**", guard="session", order=10),
]


class Settings(BaseSettings):
    """Authorization server settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]

    # ------------------------------------------------------------------
    # Browser session (Session Guard)
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    session_cookie_name: str = "sso_session"
    session_expire_seconds: int = 3600

    # ------------------------------------------------------------------
    # Token issuance
    # ------------------------------------------------------------------

    auth_code_ttl_seconds: int = 300
    # 0 means issued access tokens never expire.
    token_expire_seconds: int = 43200
    # How often the background sweeper drops expired codes and tokens.
    # 0 disables the sweeper; lookups still treat expired records as absent.
    purge_interval_seconds: int = 600

    oauth_clients: list[OAuthClientConfig] = []
    guard_rules: list[GuardRuleConfig] = _DEFAULT_GUARD_RULES

    # The protected resource only returns the display name unless this is set.
    principal_include_id: bool = False

    # ------------------------------------------------------------------
    # Social login providers (optional -- empty string means disabled)
    # ------------------------------------------------------------------

    github_client_id: str = ""
    github_client_secret: str = ""
    facebook_client_id: str = ""
    facebook_client_secret: str = ""
    google_client_id: str = ""
    google_client_secret: str = ""

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    token_rate_limit: str = "30/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M7].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters [M6].
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning(
                    "WARNING: Using auto-generated SECRET_KEY. " "Sessions will not persist across restarts."
                )
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_lifetimes(self) -> "Settings":
        """Keep authorization codes short-lived and reject negative lifetimes [C3]."""
        if not 0 < self.auth_code_ttl_seconds <= _MAX_CODE_TTL:
            raise ValueError(f"AUTH_CODE_TTL_SECONDS must be between 1 and {_MAX_CODE_TTL}.")
        if self.token_expire_seconds < 0:
            raise ValueError("TOKEN_EXPIRE_SECONDS must be >= 0 (0 disables expiry).")
        if self.session_expire_seconds <= 0:
            raise ValueError("SESSION_EXPIRE_SECONDS must be positive.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
