# API keys router: management endpoints for an owner's API keys.
# Created: 2026-10-14
#
# The caller's identity comes from the X-Owner-Id header set by the session
# layer. Keys belonging to another owner are reported as not found.

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from gapminer.api.deps import get_key_manager, get_owner_id, get_usage_meter
from gapminer.api.v1.schemas.api_keys import (
    APIKeyCreatedResponse,
    APIKeyInfo,
    APIKeyUsageResponse,
    CreateKeyRequest,
    PermissionCatalog,
    UpdateKeyRequest,
    UsageSummaryInfo,
)
from gapminer.keys.errors import CredentialNotFoundError, CredentialRevokedError
from gapminer.keys.manager import APIKeyManager
from gapminer.keys.models import Credential, IssuedCredential
from gapminer.keys.usage import UsageMeter, summarize

logger = logging.getLogger(__name__)

router = APIRouter(tags=["API Keys"])


def _created(issued: IssuedCredential) -> APIKeyCreatedResponse:
    info = APIKeyInfo.from_record(issued.credential)
    return APIKeyCreatedResponse(key=issued.plaintext, **info.model_dump())


async def _owned_key(manager: APIKeyManager, key_id: str, owner_id: str) -> Credential:
    record = await manager.get(key_id)
    if record is None or record.owner_id != owner_id:
        raise HTTPException(status_code=404, detail="API key not found")
    return record


@router.post("/api-keys", response_model=APIKeyCreatedResponse)
async def create_api_key(
    body: CreateKeyRequest,
    request: Request,
    owner_id: str = Depends(get_owner_id),
    manager: APIKeyManager = Depends(get_key_manager),
):
    """Create a new API key. The plaintext key is returned only once."""
    scopes = body.scopes
    if scopes is None:
        scopes = list(request.app.state.settings.api_key_default_scopes)
    try:
        issued = await manager.create(
            owner_id=owner_id,
            name=body.name,
            scopes=scopes,
            rate_limit_per_minute=body.rate_limit_per_minute,
            expires_in_days=body.expires_in_days,
            metadata=body.metadata,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _created(issued)


@router.get("/api-keys", response_model=list[APIKeyInfo])
async def list_api_keys(
    owner_id: str = Depends(get_owner_id),
    manager: APIKeyManager = Depends(get_key_manager),
):
    """List the owner's API keys, newest first (no secrets exposed)."""
    return [APIKeyInfo.from_record(k) for k in await manager.list_keys(owner_id)]


@router.get("/api-keys/permissions", response_model=PermissionCatalog)
async def list_permissions():
    """Scopes a key can be granted, with labels and the read/write/full presets."""
    return PermissionCatalog.build()


@router.get("/api-keys/{key_id}", response_model=APIKeyInfo)
async def get_api_key(
    key_id: str,
    owner_id: str = Depends(get_owner_id),
    manager: APIKeyManager = Depends(get_key_manager),
):
    return APIKeyInfo.from_record(await _owned_key(manager, key_id, owner_id))


@router.patch("/api-keys/{key_id}", response_model=APIKeyInfo)
async def update_api_key(
    key_id: str,
    body: UpdateKeyRequest,
    owner_id: str = Depends(get_owner_id),
    manager: APIKeyManager = Depends(get_key_manager),
):
    """Update name, scopes, rate limit, metadata, or deactivate a key."""
    await _owned_key(manager, key_id, owner_id)
    try:
        record = await manager.update(
            key_id,
            display_name=body.name,
            scopes=body.scopes,
            rate_limit_per_minute=body.rate_limit_per_minute,
            metadata=body.metadata,
            active=body.active,
        )
    except CredentialNotFoundError:
        raise HTTPException(status_code=404, detail="API key not found")
    except CredentialRevokedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return APIKeyInfo.from_record(record)


@router.delete("/api-keys/{key_id}")
async def revoke_api_key(
    key_id: str,
    permanent: bool = Query(False, description="Delete the record instead of revoking it"),
    owner_id: str = Depends(get_owner_id),
    manager: APIKeyManager = Depends(get_key_manager),
):
    """Revoke an API key, or delete it outright with ``?permanent=true``."""
    await _owned_key(manager, key_id, owner_id)
    if permanent:
        if not await manager.delete(key_id):
            raise HTTPException(status_code=404, detail="API key not found")
        return {"status": "deleted"}
    if not await manager.revoke(key_id):
        raise HTTPException(status_code=404, detail="API key not found or already revoked")
    return {"status": "ok"}


@router.post("/api-keys/{key_id}/rotate", response_model=APIKeyCreatedResponse)
async def rotate_api_key(
    key_id: str,
    owner_id: str = Depends(get_owner_id),
    manager: APIKeyManager = Depends(get_key_manager),
):
    """Rotate an API key: revoke old + create new with the same settings."""
    await _owned_key(manager, key_id, owner_id)
    issued = await manager.rotate(key_id)
    if issued is None:
        raise HTTPException(status_code=404, detail="API key not found or already revoked")
    return _created(issued)


@router.get("/api-keys/{key_id}/usage", response_model=APIKeyUsageResponse)
async def get_api_key_usage(
    key_id: str,
    request: Request,
    days: int | None = Query(None, gt=0, le=90),
    owner_id: str = Depends(get_owner_id),
    manager: APIKeyManager = Depends(get_key_manager),
    meter: UsageMeter = Depends(get_usage_meter),
):
    """Usage events for the trailing window plus summary figures."""
    await _owned_key(manager, key_id, owner_id)
    window = days or request.app.state.settings.usage_window_days
    events = await meter.query(key_id, window_days=window)
    summary = summarize(events)
    return APIKeyUsageResponse(
        key_id=key_id,
        window_days=window,
        summary=UsageSummaryInfo(
            total_requests=summary.total_requests,
            error_count=summary.error_count,
            error_rate=summary.error_rate,
            avg_response_time_ms=summary.avg_response_time_ms,
            requests_last_minute=summary.requests_last_minute,
            by_endpoint=summary.by_endpoint,
        ),
        events=events,
    )
