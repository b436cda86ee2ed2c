"""API key validation.

Created: 2026-10-12

``CredentialValidator.validate()`` is called once per incoming request. Checks
run in a fixed order and stop at the first failure:

    malformed -> not_found -> expired -> insufficient_scope -> success

The store is written only when an expired key is deactivated or when a
successful validation stamps ``last_used_at``. Expiry is enforced lazily here;
there is no background sweep. Store exceptions propagate: an unreachable store
is not an invalid key.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from gapminer.keys.generator import hash_secret, looks_like_key
from gapminer.keys.models import (
    AuthenticatedKey,
    Denied,
    DenialReason,
    Permission,
    utcnow,
)
from gapminer.keys.store import CredentialStore

logger = logging.getLogger(__name__)


class CredentialValidator:
    """Resolves presented API keys to authenticated keys or denials."""

    def __init__(self, store: CredentialStore, clock: Callable[[], datetime] = utcnow):
        self._store = store
        self._clock = clock

    async def validate(
        self,
        presented: str,
        required_permission: Permission | str | None = None,
    ) -> AuthenticatedKey | Denied:
        """Validate a plaintext key, optionally requiring one permission.

        Raises ValueError if *required_permission* is not a known permission,
        and any store error unchanged.
        """
        required = Permission(required_permission) if required_permission is not None else None

        if not looks_like_key(presented):
            logger.info("API key rejected: malformed")
            return Denied(DenialReason.MALFORMED)

        record = await self._store.get_by_digest(hash_secret(presented))
        if record is None or not record.active:
            logger.info("API key rejected: not found")
            return Denied(DenialReason.NOT_FOUND)

        now = self._clock()
        if record.is_expired(now):
            # Concurrent callers may both get here; setting active=False twice is harmless.
            await self._store.update(record.id, {"active": False})
            logger.info("API key %s (%s) expired, deactivated", record.id, record.display_prefix)
            return Denied(DenialReason.EXPIRED, credential_id=record.id)

        if required is not None and not record.has_permission(required):
            logger.warning(
                "API key %s (%s) lacks permission %s", record.id, record.display_prefix, required.value
            )
            return Denied(DenialReason.INSUFFICIENT_SCOPE, credential_id=record.id)

        updated = await self._store.update(record.id, {"last_used_at": now})
        if updated is None:
            # Deleted between the lookup and the write
            return Denied(DenialReason.NOT_FOUND)
        return AuthenticatedKey.from_credential(updated)
