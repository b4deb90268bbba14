"""
client/config.py -- Settings for the OAuth2 client process.

Same pattern as core/config.py (pydantic-settings + lru_cache singleton), but
a separate class with the CLIENT_ env prefix: the client is an independent
process and must not read the authorization server's settings.

  CLIENT_CLIENT_ID / CLIENT_CLIENT_SECRET  -- this client's registration
  CLIENT_AUTHORIZE_URL / CLIENT_TOKEN_URL  -- authorization server endpoints
  CLIENT_RESOURCE_URL                      -- token-guarded resource (/me)
  CLIENT_REDIRECT_URI                      -- must be registered server-side
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("ssoauth.client.config")


class ClientSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CLIENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False
    secret_key: str = ""
    secure_cookies: bool = False

    client_id: str = "acme"
    client_secret: str = ""
    authorize_url: str = "http://localhost:8080/oauth/authorize"
    token_url: str = "http://localhost:8080/oauth/token"
    resource_url: str = "http://localhost:8080/me"
    redirect_uri: str = "http://localhost:9999/client/login"

    # Seconds for each call to the authorization server.
    http_timeout: float = 10.0
    # How many times a transient token-exchange failure may restart the flow.
    max_flow_restarts: int = 1

    @model_validator(mode="after")
    def validate_secret_key(self) -> "ClientSettings":
        """Same SECRET_KEY policy as the server [M6][M7]; signs the local session cookie."""
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated CLIENT_SECRET_KEY.")
            else:
                raise ValueError("CLIENT_SECRET_KEY is required in production mode. Set CLIENT_DEBUG=true for dev.")
        if len(self.secret_key) < 32:
            raise ValueError("CLIENT_SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_client_settings() -> ClientSettings:
    return ClientSettings()
