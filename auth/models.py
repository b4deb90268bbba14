"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores, the
issuer and the guards do the work. Expiry helpers live here because every
consumer must agree on what "expired" means.

Layer rule: no imports from api/, web/ or client/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GuardType(str, Enum):
    SESSION = "session"
    TOKEN = "token"
    ANONYMOUS = "anonymous"


@dataclass(frozen=True)
class Principal:
    """An authenticated identity, independent of how it authenticated.

    id is namespaced by the social provider ("github:583231") so two providers
    can never collide. Never serialized directly -- api/models.PrincipalView is
    the only shape that leaves the server.
    """

    id: str
    display_name: str


@dataclass
class AuthorizationCode:
    """Short-lived, single-use bridge from interactive login to token issuance.

    redeemed is only ever flipped by AuthorizationCodeStore.redeem() under the
    store lock.
    """

    code: str
    principal: Principal
    client_id: str
    redirect_uri: str
    expires_at: datetime
    redeemed: bool = False

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expires_at


@dataclass(frozen=True)
class AccessToken:
    """An opaque bearer credential and the principal it resolves to.

    expires_at is None for non-expiring tokens (TOKEN_EXPIRE_SECONDS=0).
    client_id is a lookup-only back-reference to the ClientRegistration.
    """

    token: str
    principal: Principal
    client_id: str
    issued_at: datetime
    expires_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at

    def expires_in(self, now: datetime | None = None) -> int | None:
        """Seconds until expiry, floored at 0. None when the token never expires."""
        if self.expires_at is None:
            return None
        remaining = (self.expires_at - (now or utcnow())).total_seconds()
        return max(int(remaining), 0)


@dataclass(frozen=True)
class ClientRegistration:
    client_id: str
    client_secret: str
    allowed_redirect_uris: frozenset[str]


@dataclass(frozen=True)
class GuardRule:
    path_pattern: str
    guard: GuardType
    order: int


@dataclass(frozen=True)
class SecurityContext:
    """Request-scoped result of a guard.

    Attached to request.state by the guard middleware and handed to route
    handlers through auth.dependencies -- never stored in a global or a
    thread-local.
    """

    guard: GuardType
    principal: Principal | None = None
    access_token: AccessToken | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.principal is not None
