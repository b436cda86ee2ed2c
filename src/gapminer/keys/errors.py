# Exceptions raised by the key store and key lifecycle operations.
# Created: 2026-10-12
#
# Denials from validation are values (see models.Denied), not exceptions.
# These cover infrastructure faults and invalid lifecycle transitions.

from __future__ import annotations


class KeyStoreError(Exception):
    """Base class for credential store failures."""


class StoreUnavailableError(KeyStoreError):
    """The backing store could not be reached or written. Retryable."""

    reason = "store_unavailable"


class MalformedRecordError(KeyStoreError):
    """A stored document did not match the credential or usage schema."""


class DuplicateDigestError(KeyStoreError):
    """A credential with the same digest already exists."""


class CredentialNotFoundError(LookupError):
    """No credential with the given id."""

    def __init__(self, key_id: str):
        super().__init__(f"API key not found: {key_id}")
        self.key_id = key_id


class CredentialRevokedError(ValueError):
    """Attempted to reactivate a revoked credential."""

    def __init__(self, key_id: str):
        super().__init__(f"API key {key_id} is revoked and cannot be reactivated")
        self.key_id = key_id
