# API Key Manager: create, list, update, revoke, rotate, delete.
# Created: 2026-10-13
#
# The plaintext key is returned once from create()/rotate() (like GitHub PATs)
# and is never stored. Revocation is permanent: a revoked key cannot be
# reactivated, only replaced by rotation or a new key.

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from gapminer.keys.errors import CredentialNotFoundError, CredentialRevokedError
from gapminer.keys.generator import generate_secret
from gapminer.keys.models import (
    Credential,
    CredentialMetadata,
    IssuedCredential,
    NewCredential,
    Permission,
    parse_permissions,
    utcnow,
)
from gapminer.keys.store import CredentialStore
from gapminer.security.audit import AuditLogger, AuditSeverity

logger = logging.getLogger(__name__)

_DEFAULT_RATE_LIMIT = 60


class APIKeyManager:
    """Manages the API key lifecycle on top of a CredentialStore."""

    def __init__(
        self,
        store: CredentialStore,
        audit: AuditLogger | None = None,
        clock: Callable[[], datetime] = utcnow,
        default_rate_limit: int = _DEFAULT_RATE_LIMIT,
    ):
        self._store = store
        self._audit = audit
        self._clock = clock
        self._default_rate_limit = default_rate_limit

    def _audit_event(self, action: str, record: Credential, **context: Any) -> None:
        if self._audit is None:
            return
        severity = {
            "api_key_revoked": AuditSeverity.WARNING,
            "api_key_deleted": AuditSeverity.CRITICAL,
        }.get(action, AuditSeverity.INFO)
        self._audit.log_api_event(
            action=action,
            target=f"key:{record.id}",
            actor=record.owner_id,
            severity=severity,
            key_name=record.display_name,
            prefix=record.display_prefix,
            **context,
        )

    async def create(
        self,
        owner_id: str,
        name: str,
        scopes: list[str] | list[Permission],
        rate_limit_per_minute: int | None = None,
        expires_in_days: int | None = None,
        metadata: CredentialMetadata | dict[str, Any] | None = None,
    ) -> IssuedCredential:
        """Create a new API key. Returns the stored record and the plaintext key.

        The plaintext key is returned only once and cannot be retrieved later.
        """
        permissions = parse_permissions(scopes)
        if not permissions:
            raise ValueError("At least one scope is required")
        if rate_limit_per_minute is None:
            rate_limit_per_minute = self._default_rate_limit
        if rate_limit_per_minute <= 0:
            raise ValueError("rate_limit_per_minute must be positive")
        if expires_in_days is not None and expires_in_days <= 0:
            raise ValueError("expires_in_days must be positive")

        now = self._clock()
        expires_at = now + timedelta(days=expires_in_days) if expires_in_days else None
        return await self._issue(
            owner_id=owner_id,
            name=name,
            scopes=permissions,
            rate_limit_per_minute=rate_limit_per_minute,
            expires_at=expires_at,
            metadata=metadata,
            action="api_key_created",
        )

    async def _issue(
        self,
        owner_id: str,
        name: str,
        scopes: list[Permission],
        rate_limit_per_minute: int,
        expires_at: datetime | None,
        metadata: CredentialMetadata | dict[str, Any] | None,
        action: str,
        **audit_context: Any,
    ) -> IssuedCredential:
        secret = generate_secret()
        new = NewCredential(
            owner_id=owner_id,
            display_name=name,
            digest=secret.digest,
            display_prefix=secret.display_prefix,
            scopes=scopes,
            rate_limit_per_minute=rate_limit_per_minute,
            expires_at=expires_at,
            created_at=self._clock(),
            metadata=metadata or CredentialMetadata(),
        )
        record = await self._store.create(new)
        logger.info("Issued API key %s (%s) for %s", record.id, record.display_prefix, owner_id)
        self._audit_event(action, record, scopes=[s.value for s in record.scopes], **audit_context)
        return IssuedCredential(credential=record, plaintext=secret.plaintext)

    async def list_keys(self, owner_id: str) -> list[Credential]:
        """List an owner's keys, newest first (no secrets exposed)."""
        return await self._store.list_by_owner(owner_id)

    async def get(self, key_id: str) -> Credential | None:
        return await self._store.get_by_id(key_id)

    async def update(
        self,
        key_id: str,
        *,
        display_name: str | None = None,
        scopes: list[str] | list[Permission] | None = None,
        rate_limit_per_minute: int | None = None,
        metadata: CredentialMetadata | dict[str, Any] | None = None,
        active: bool | None = None,
    ) -> Credential:
        """Update the mutable fields of a key.

        Raises CredentialNotFoundError for unknown ids and
        CredentialRevokedError when asked to reactivate a revoked key.
        """
        record = await self._store.get_by_id(key_id)
        if record is None:
            raise CredentialNotFoundError(key_id)

        changes: dict[str, Any] = {}
        if display_name is not None:
            changes["display_name"] = display_name
        if scopes is not None:
            permissions = parse_permissions(scopes)
            if not permissions:
                raise ValueError("At least one scope is required")
            changes["scopes"] = permissions
        if rate_limit_per_minute is not None:
            if rate_limit_per_minute <= 0:
                raise ValueError("rate_limit_per_minute must be positive")
            changes["rate_limit_per_minute"] = rate_limit_per_minute
        if metadata is not None:
            if isinstance(metadata, CredentialMetadata):
                metadata = metadata.model_dump(exclude_none=True)
            changes["metadata"] = metadata
        if active is not None:
            if active and not record.active:
                raise CredentialRevokedError(key_id)
            changes["active"] = active

        if not changes:
            return record

        updated = await self._store.update(key_id, changes)
        if updated is None:
            raise CredentialNotFoundError(key_id)
        revoked = changes.get("active") is False and record.active
        action = "api_key_revoked" if revoked else "api_key_updated"
        self._audit_event(action, updated, fields=sorted(changes))
        return updated

    async def revoke(self, key_id: str) -> bool:
        """Revoke an API key by ID. Returns True if found and revoked."""
        record = await self._store.get_by_id(key_id)
        if record is None or not record.active:
            return False
        updated = await self._store.update(key_id, {"active": False})
        if updated is None:
            return False
        logger.info("Revoked API key %s (%s)", key_id, record.display_prefix)
        self._audit_event("api_key_revoked", updated)
        return True

    async def delete(self, key_id: str) -> bool:
        """Permanently remove an API key. Returns True if it existed."""
        record = await self._store.get_by_id(key_id)
        if record is None:
            return False
        deleted = await self._store.delete(key_id)
        if deleted:
            logger.info("Deleted API key %s (%s)", key_id, record.display_prefix)
            self._audit_event("api_key_deleted", record)
        return deleted

    async def rotate(self, key_id: str) -> IssuedCredential | None:
        """Revoke an active key and issue a replacement with the same settings.

        The replacement keeps the original expiry date. Returns None if the key
        is unknown, revoked or already expired. The old key is revoked only once
        the replacement is stored, so a failed create leaves it usable.
        """
        record = await self._store.get_by_id(key_id)
        if record is None or not record.active or record.is_expired(self._clock()):
            return None
        issued = await self._issue(
            owner_id=record.owner_id,
            name=record.display_name,
            scopes=list(record.scopes),
            rate_limit_per_minute=record.rate_limit_per_minute,
            expires_at=record.expires_at,
            metadata=record.metadata,
            action="api_key_rotated",
            replaces=record.id,
        )
        revoked = await self._store.update(key_id, {"active": False})
        if revoked is not None:
            self._audit_event("api_key_revoked", revoked, reason="rotated")
        return issued
