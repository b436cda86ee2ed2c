"""API keys package for GapMiner."""

from gapminer.keys.errors import (
    CredentialNotFoundError,
    CredentialRevokedError,
    DuplicateDigestError,
    KeyStoreError,
    MalformedRecordError,
    StoreUnavailableError,
)
from gapminer.keys.generator import KEY_PREFIX, generate_secret, hash_secret
from gapminer.keys.manager import APIKeyManager
from gapminer.keys.models import (
    AuthenticatedKey,
    Credential,
    Denied,
    DenialReason,
    IssuedCredential,
    NewCredential,
    Permission,
    UsageEvent,
)
from gapminer.keys.store import CredentialStore, FileKeyStore, InMemoryKeyStore, UsageStore
from gapminer.keys.usage import UsageMeter, UsageSummary, summarize
from gapminer.keys.validator import CredentialValidator

__all__ = [
    "KEY_PREFIX",
    "APIKeyManager",
    "AuthenticatedKey",
    "Credential",
    "CredentialNotFoundError",
    "CredentialRevokedError",
    "CredentialStore",
    "CredentialValidator",
    "Denied",
    "DenialReason",
    "DuplicateDigestError",
    "FileKeyStore",
    "InMemoryKeyStore",
    "IssuedCredential",
    "KeyStoreError",
    "MalformedRecordError",
    "NewCredential",
    "Permission",
    "StoreUnavailableError",
    "UsageEvent",
    "UsageMeter",
    "UsageStore",
    "UsageSummary",
    "generate_secret",
    "hash_secret",
    "summarize",
]
