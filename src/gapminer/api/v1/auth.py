# Auth router: introspection of the presented API key.
# Created: 2026-10-14

from __future__ import annotations

from fastapi import APIRouter, Depends

from gapminer.api.deps import require_permission
from gapminer.keys.models import AuthenticatedKey

router = APIRouter(tags=["Auth"])


@router.get("/auth/key", response_model=AuthenticatedKey)
async def current_key(key: AuthenticatedKey = Depends(require_permission())):
    """Describe the API key used for this request."""
    return key
