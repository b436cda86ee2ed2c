# API key schemas.
# Created: 2026-10-14

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from gapminer.keys.models import (
    PERMISSION_GROUPS,
    Credential,
    CredentialMetadata,
    Permission,
    UsageEvent,
)


class CreateKeyRequest(BaseModel):
    """Create a new API key."""

    name: str = Field(..., min_length=1, max_length=100)
    scopes: list[str] | None = None  # Defaults from settings
    rate_limit_per_minute: int | None = Field(None, gt=0)
    expires_in_days: int | None = Field(None, gt=0)
    metadata: CredentialMetadata | None = None


class UpdateKeyRequest(BaseModel):
    """Partial update. Omitted fields are left unchanged."""

    name: str | None = Field(None, min_length=1, max_length=100)
    scopes: list[str] | None = None
    rate_limit_per_minute: int | None = Field(None, gt=0)
    metadata: CredentialMetadata | None = None
    active: bool | None = None


class APIKeyInfo(BaseModel):
    """API key info (no secrets)."""

    id: str
    name: str
    prefix: str
    scopes: list[Permission]
    rate_limit_per_minute: int
    created_at: datetime
    last_used_at: datetime | None = None
    expires_at: datetime | None = None
    active: bool
    metadata: CredentialMetadata

    @classmethod
    def from_record(cls, record: Credential) -> APIKeyInfo:
        return cls(
            id=record.id,
            name=record.display_name,
            prefix=record.display_prefix,
            scopes=record.scopes,
            rate_limit_per_minute=record.rate_limit_per_minute,
            created_at=record.created_at,
            last_used_at=record.last_used_at,
            expires_at=record.expires_at,
            active=record.active,
            metadata=record.metadata,
        )


class APIKeyCreatedResponse(APIKeyInfo):
    """Response when a new API key is created. The plaintext is shown once."""

    key: str  # Full plaintext, only shown at creation


class UsageSummaryInfo(BaseModel):
    total_requests: int
    error_count: int
    error_rate: float
    avg_response_time_ms: float
    requests_last_minute: int
    by_endpoint: dict[str, int]


class APIKeyUsageResponse(BaseModel):
    key_id: str
    window_days: int
    summary: UsageSummaryInfo
    events: list[UsageEvent]


class PermissionInfo(BaseModel):
    value: Permission
    label: str


class PermissionCatalog(BaseModel):
    """Every scope a key can hold, with display labels and preset groups."""

    permissions: list[PermissionInfo]
    groups: dict[str, list[Permission]]

    @classmethod
    def build(cls) -> PermissionCatalog:
        return cls(
            permissions=[PermissionInfo(value=p, label=p.label) for p in Permission],
            groups={name: list(perms) for name, perms in PERMISSION_GROUPS.items()},
        )
