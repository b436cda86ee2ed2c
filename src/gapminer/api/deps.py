# Shared FastAPI dependencies for the API layer.
# Created: 2026-10-14

from __future__ import annotations

import logging

from fastapi import Header, HTTPException, Request

from gapminer.keys.errors import KeyStoreError
from gapminer.keys.manager import APIKeyManager
from gapminer.keys.models import AuthenticatedKey, Denied, Permission
from gapminer.keys.usage import UsageMeter

logger = logging.getLogger(__name__)


def _presented_key(request: Request) -> str | None:
    """Read the key from ``Authorization: Bearer ...`` or ``X-API-Key``."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header.removeprefix("Bearer ").strip()
    return request.headers.get("X-API-Key")


def require_permission(permission: Permission | str | None = None):
    """FastAPI dependency that authenticates the request by API key.

    Usage::

        @router.get("/gaps")
        async def list_gaps(key: AuthenticatedKey = Depends(require_permission("gaps:read"))):
            ...

    Unknown, revoked, expired and malformed keys all get the same 401 so a
    caller cannot tell which keys exist. A valid key without the permission
    gets 403. Store faults are 503, never 401.
    """
    required = Permission(permission) if permission is not None else None

    async def _check(request: Request) -> AuthenticatedKey:
        presented = _presented_key(request)
        if not presented:
            raise HTTPException(
                status_code=401,
                detail="API key required",
                headers={"WWW-Authenticate": "Bearer"},
            )

        try:
            result = await request.app.state.validator.validate(presented, required)
        except KeyStoreError:
            logger.exception("Key store unavailable during validation")
            raise HTTPException(status_code=503, detail="Authentication temporarily unavailable")

        if isinstance(result, Denied):
            if not result.reason.is_authentication_failure:
                request.state.metered_key_id = result.credential_id
                raise HTTPException(
                    status_code=403,
                    detail=f"API key missing required scope: {required.value}",
                )
            raise HTTPException(
                status_code=401,
                detail="Invalid API key",
                headers={"WWW-Authenticate": "Bearer"},
            )

        # Metered from here on, including rate-limited calls
        request.state.api_key = result
        request.state.metered_key_id = result.id

        rl_info = request.app.state.rate_limiter.check(result.id, result.rate_limit_per_minute)
        if not rl_info.allowed:
            raise HTTPException(
                status_code=429,
                detail="Too many requests",
                headers=rl_info.headers(),
            )
        request.state.rate_limit_headers = rl_info.headers()
        return result

    return _check


async def get_owner_id(x_owner_id: str = Header(..., min_length=1)) -> str:
    """Owner identity for key management routes.

    Set by the upstream session layer after the user has signed in.
    """
    return x_owner_id


def get_key_manager(request: Request) -> APIKeyManager:
    return request.app.state.key_manager


def get_usage_meter(request: Request) -> UsageMeter:
    return request.app.state.usage_meter
