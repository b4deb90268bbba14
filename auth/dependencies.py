"""
auth/dependencies.py -- FastAPI Depends() helpers for the guard pipeline.

The guard middleware (api/main.py) runs the chain's authoritative guard before
any route handler and stores the resulting SecurityContext on request.state.
These helpers hand that context to handlers as an explicit argument, so no
handler reads identity from a global or thread-local.

get_security_context() -- the context for this request (any guard).
get_principal()        -- the authenticated Principal; 401 if the matched
                          guard was anonymous and no session was present.

Layer rule: no imports from api/, web/ or client/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.issuer import TokenIssuer
from auth.models import Principal, SecurityContext


def get_security_context(request: Request) -> SecurityContext:
    """Return the SecurityContext established by the guard middleware.

    A missing context means the route was reached without passing through the
    guard chain -- a wiring bug, reported as 500 rather than served.
    """
    context = getattr(request.state, "security_context", None)
    if context is None:
        raise HTTPException(
            status_code=500,
            detail={"code": "guard_missing", "message": "Request was not authenticated by the guard chain."},
        )
    return context


def get_principal(request: Request) -> Principal:
    """Require an authenticated principal. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(principal: Principal = Depends(get_principal)): ...
    """
    context = get_security_context(request)
    if context.principal is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthenticated", "message": "Authentication required."},
        )
    return context.principal


def get_issuer(request: Request) -> TokenIssuer:
    return request.app.state.issuer
