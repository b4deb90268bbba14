"""
api/routes/resource.py -- The protected resource, reachable via two aliases.

  GET /user -- browser alias, covered by the session catch-all rule
  GET /me   -- programmatic alias, covered by the token rule (order 0)

Both paths run the same handler. Which credential each one accepts is decided
entirely by the guard chain, not here; the handler only sees the resulting
principal.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from api.models import PrincipalView
from auth.dependencies import get_principal
from auth.models import Principal
from core.config import get_settings

router = APIRouter()


@router.get("/user", response_model=PrincipalView, response_model_exclude_none=True)
@router.get("/me", response_model=PrincipalView, response_model_exclude_none=True)
def user_info(principal: Principal = Depends(get_principal)) -> PrincipalView:
    """Return the allow-listed view of the current principal."""
    return PrincipalView.from_principal(principal, include_id=get_settings().principal_include_id)
