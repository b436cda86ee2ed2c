"""API key data models.

Created: 2026-10-12

Three record shapes cover the key lifecycle:

- ``NewCredential``: a record ready to be stored, before the store assigns an id
- ``Credential``: a stored record, as read back from the store
- ``IssuedCredential``: a stored record plus its plaintext, returned once at creation

None of the persisted shapes has a field for the plaintext, and unknown fields
are rejected, so a document carrying a secret fails validation at the store
boundary instead of being trusted.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from gapminer.keys.errors import CredentialRevokedError


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


# ============================================================================
# Permissions
# ============================================================================


class Permission(str, enum.Enum):
    """Capabilities an API key may hold."""

    PAPERS_READ = "papers:read"
    PAPERS_WRITE = "papers:write"
    GAPS_READ = "gaps:read"
    GAPS_WRITE = "gaps:write"
    COLLECTIONS_READ = "collections:read"
    COLLECTIONS_WRITE = "collections:write"
    BATCH_EXECUTE = "batch:execute"
    ANALYTICS_READ = "analytics:read"

    @property
    def label(self) -> str:
        return PERMISSION_LABELS[self]


PERMISSION_LABELS: dict[Permission, str] = {
    Permission.PAPERS_READ: "Read Papers",
    Permission.PAPERS_WRITE: "Write Papers",
    Permission.GAPS_READ: "Read Gaps",
    Permission.GAPS_WRITE: "Write Gaps",
    Permission.COLLECTIONS_READ: "Read Collections",
    Permission.COLLECTIONS_WRITE: "Write Collections",
    Permission.BATCH_EXECUTE: "Execute Batch Jobs",
    Permission.ANALYTICS_READ: "Read Analytics",
}

PERMISSION_GROUPS: dict[str, tuple[Permission, ...]] = {
    "read": (
        Permission.PAPERS_READ,
        Permission.GAPS_READ,
        Permission.COLLECTIONS_READ,
        Permission.ANALYTICS_READ,
    ),
    "write": (
        Permission.PAPERS_WRITE,
        Permission.GAPS_WRITE,
        Permission.COLLECTIONS_WRITE,
    ),
    "full": tuple(Permission),
}


def parse_permissions(values: list[str] | list[Permission]) -> list[Permission]:
    """Convert scope strings to permissions, dropping duplicates.

    Raises ValueError listing every unknown scope.
    """
    valid = {p.value for p in Permission}
    invalid = sorted({str(getattr(v, "value", v)) for v in values} - valid)
    if invalid:
        raise ValueError(f"Invalid scopes: {invalid}")
    result: list[Permission] = []
    for v in values:
        perm = Permission(v)
        if perm not in result:
            result.append(perm)
    return result


# ============================================================================
# Credentials
# ============================================================================


class CredentialMetadata(BaseModel):
    """Free-form attributes attached to a key. Not interpreted by validation."""

    model_config = ConfigDict(extra="allow")

    ip_whitelist: list[str] | None = None
    description: str | None = None
    environment: Literal["development", "staging", "production"] | None = None


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class NewCredential(BaseModel):
    """A credential record before the store assigns its id."""

    model_config = ConfigDict(extra="forbid")

    owner_id: str = Field(..., min_length=1)
    display_name: str = Field(..., min_length=1, max_length=100)
    digest: str = Field(..., min_length=64, max_length=64)
    display_prefix: str
    scopes: list[Permission]
    rate_limit_per_minute: int = Field(60, gt=0)
    last_used_at: datetime | None = None
    expires_at: datetime | None = None
    active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    metadata: CredentialMetadata = Field(default_factory=CredentialMetadata)

    @field_validator("scopes")
    @classmethod
    def _dedupe_scopes(cls, v: list[Permission]) -> list[Permission]:
        return list(dict.fromkeys(v))

    @field_validator("last_used_at", "expires_at", "created_at")
    @classmethod
    def _aware(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v)


class Credential(NewCredential):
    """A stored API key record (no plaintext)."""

    id: str = Field(..., min_length=1)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at < now

    def has_permission(self, permission: Permission) -> bool:
        return permission in self.scopes


# Fields that may change after creation. id, owner_id, digest, display_prefix
# and created_at are fixed for the life of the record.
MUTABLE_FIELDS = frozenset(
    {"display_name", "scopes", "rate_limit_per_minute", "metadata", "active", "last_used_at"}
)


def apply_changes(record: Credential, changes: dict[str, Any]) -> Credential:
    """Return *record* with *changes* applied and re-validated.

    Raises ValueError for immutable or unknown fields, and
    CredentialRevokedError when asked to reactivate an inactive record.
    """
    bad = set(changes) - MUTABLE_FIELDS
    if bad:
        raise ValueError(f"Fields cannot be updated: {sorted(bad)}")
    if changes.get("active") is True and not record.active:
        raise CredentialRevokedError(record.id)
    data = record.model_dump()
    data.update(changes)
    return Credential.model_validate(data)


@dataclass(frozen=True)
class IssuedCredential:
    """A freshly created key. The plaintext is never available again."""

    credential: Credential
    plaintext: str

    def __repr__(self) -> str:
        return f"IssuedCredential(credential={self.credential.id!r}, plaintext='***')"


class AuthenticatedKey(BaseModel):
    """What a caller learns about a key that passed validation.

    Carries no digest or other storage internals.
    """

    id: str
    owner_id: str
    display_name: str
    display_prefix: str
    scopes: list[Permission]
    rate_limit_per_minute: int
    expires_at: datetime | None = None
    last_used_at: datetime | None = None

    @classmethod
    def from_credential(cls, record: Credential) -> AuthenticatedKey:
        return cls(
            id=record.id,
            owner_id=record.owner_id,
            display_name=record.display_name,
            display_prefix=record.display_prefix,
            scopes=list(record.scopes),
            rate_limit_per_minute=record.rate_limit_per_minute,
            expires_at=record.expires_at,
            last_used_at=record.last_used_at,
        )

    def has_permission(self, permission: Permission) -> bool:
        return permission in self.scopes


# ============================================================================
# Validation outcomes
# ============================================================================


class DenialReason(str, enum.Enum):
    """Why a presented key was refused."""

    MALFORMED = "malformed"  # Wrong shape, client error
    NOT_FOUND = "not_found"  # Unknown, revoked or deleted
    EXPIRED = "expired"  # Past expires_at, deactivated on detection
    INSUFFICIENT_SCOPE = "insufficient_scope"  # Valid key, missing permission

    @property
    def is_authentication_failure(self) -> bool:
        return self is not DenialReason.INSUFFICIENT_SCOPE


@dataclass(frozen=True)
class Denied:
    """A refused validation. ``credential_id`` is set only when a record matched."""

    reason: DenialReason
    credential_id: str | None = None

    def __bool__(self) -> bool:
        return False


# ============================================================================
# Usage
# ============================================================================


class UsageEvent(BaseModel):
    """One metered API call. Immutable once recorded."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    credential_id: str = Field(..., min_length=1)
    endpoint: str
    method: str
    status_code: int = Field(..., ge=100, le=599)
    response_time_ms: float = Field(..., ge=0)
    timestamp: datetime = Field(default_factory=utcnow)

    @field_validator("timestamp")
    @classmethod
    def _aware(cls, v: datetime) -> datetime:
        return _as_utc(v)
