"""
API request and response models for the authorization server.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two -- in
particular, a Principal is never serialized directly; PrincipalView is the
only shape of an identity that leaves the server.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict

from auth.models import AccessToken, Principal

# ---------------------------------------------------------------------------
# OAuth2 token endpoint (RFC 6749 section 5)
# ---------------------------------------------------------------------------


class TokenResponse(BaseModel):
    """Successful response for POST /oauth/token.

    expires_in is omitted for tokens that never expire.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"  # noqa: S105 # nosec B105 -- OAuth token type, not a password
    expires_in: Optional[int] = None

    @classmethod
    def from_token(cls, token: AccessToken) -> "TokenResponse":
        return cls(access_token=token.token, expires_in=token.expires_in())


class OAuthErrorResponse(BaseModel):
    """Error response for POST /oauth/token (RFC 6749 section 5.2).

    Deliberately flat -- OAuth2 client libraries expect "error" to be a string,
    not the nested envelope the rest of the API uses.
    """

    model_config = ConfigDict(frozen=True)

    error: str
    error_description: Optional[str] = None


# ---------------------------------------------------------------------------
# Protected resource
# ---------------------------------------------------------------------------


class PrincipalView(BaseModel):
    """Allow-listed projection of a Principal.

    name is always present. id is only filled in when the deployment opts in
    (PRINCIPAL_INCLUDE_ID=true); routes serialize with exclude_none so the
    key is absent otherwise.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    id: Optional[str] = None

    @classmethod
    def from_principal(cls, principal: Principal, include_id: bool = False) -> "PrincipalView":
        return cls(name=principal.display_name, id=principal.id if include_id else None)


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = {}
