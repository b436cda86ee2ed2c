"""Credential and usage storage.

Created: 2026-10-12

The validator, meter and manager talk to storage only through the two
protocols below, so the hosted document store can be swapped for a local
backend in development and tests.

Backends:
- ``InMemoryKeyStore``: dict-backed, process-local
- ``FileKeyStore``: JSON file for credentials plus an append-only JSONL file
  for usage events, under ~/.gapminer/ by default

Every document read from a backend is validated into a typed model. A
document that fails validation raises MalformedRecordError rather than being
passed on; I/O failures raise StoreUnavailableError.
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from pydantic import ValidationError

from gapminer.keys.errors import DuplicateDigestError, MalformedRecordError, StoreUnavailableError
from gapminer.keys.models import Credential, NewCredential, UsageEvent, apply_changes

logger = logging.getLogger(__name__)


class CredentialStore(Protocol):
    """Protocol for credential storage backends.

    Each call is atomic for a single record. No multi-record transactions.
    """

    async def create(self, record: NewCredential) -> Credential:
        """Store a new record and return it with its assigned id."""
        ...

    async def get_by_id(self, key_id: str) -> Credential | None: ...

    async def get_by_digest(self, digest: str) -> Credential | None: ...

    async def list_by_owner(self, owner_id: str) -> list[Credential]:
        """All records for an owner, newest first."""
        ...

    async def update(self, key_id: str, changes: dict[str, Any]) -> Credential | None:
        """Apply a partial update. Returns None if the id is unknown.

        Raises CredentialRevokedError when asked to reactivate an inactive record.
        """
        ...

    async def delete(self, key_id: str) -> bool: ...


class UsageStore(Protocol):
    """Protocol for append-only usage event storage."""

    async def append(self, event: UsageEvent) -> None: ...

    async def list_since(self, credential_id: str, since: datetime) -> list[UsageEvent]:
        """Events for one credential with timestamp >= since, newest first."""
        ...


def _new_id() -> str:
    return secrets.token_hex(8)


def parse_credential(doc: Any) -> Credential:
    try:
        return Credential.model_validate(doc)
    except ValidationError as e:
        doc_id = doc.get("id") if isinstance(doc, dict) else None
        raise MalformedRecordError(f"Invalid credential document {doc_id!r}: {e}") from e


def parse_usage(doc: Any) -> UsageEvent:
    try:
        return UsageEvent.model_validate(doc)
    except ValidationError as e:
        raise MalformedRecordError(f"Invalid usage document: {e}") from e


def _newest_first(records: list[Credential]) -> list[Credential]:
    return sorted(records, key=lambda r: r.created_at, reverse=True)


def _recent_usage(events: list[UsageEvent], credential_id: str, since: datetime) -> list[UsageEvent]:
    matched = [e for e in events if e.credential_id == credential_id and e.timestamp >= since]
    return sorted(matched, key=lambda e: e.timestamp, reverse=True)


# ============================================================================
# In-memory backend
# ============================================================================


class InMemoryKeyStore:
    """Process-local store implementing both CredentialStore and UsageStore.

    Returns copies so callers cannot mutate stored state.
    """

    def __init__(self) -> None:
        self._records: dict[str, Credential] = {}
        self._digest_index: dict[str, str] = {}
        self._usage: list[UsageEvent] = []
        self._lock = asyncio.Lock()

    async def create(self, record: NewCredential) -> Credential:
        async with self._lock:
            if record.digest in self._digest_index:
                raise DuplicateDigestError("A key with this digest already exists")
            stored = Credential(id=_new_id(), **record.model_dump())
            self._records[stored.id] = stored
            self._digest_index[stored.digest] = stored.id
            return stored.model_copy(deep=True)

    async def get_by_id(self, key_id: str) -> Credential | None:
        record = self._records.get(key_id)
        return record.model_copy(deep=True) if record else None

    async def get_by_digest(self, digest: str) -> Credential | None:
        key_id = self._digest_index.get(digest)
        if key_id is None:
            return None
        return await self.get_by_id(key_id)

    async def list_by_owner(self, owner_id: str) -> list[Credential]:
        owned = [r.model_copy(deep=True) for r in self._records.values() if r.owner_id == owner_id]
        return _newest_first(owned)

    async def update(self, key_id: str, changes: dict[str, Any]) -> Credential | None:
        async with self._lock:
            record = self._records.get(key_id)
            if record is None:
                return None
            updated = apply_changes(record, changes)
            self._records[key_id] = updated
            return updated.model_copy(deep=True)

    async def delete(self, key_id: str) -> bool:
        async with self._lock:
            record = self._records.pop(key_id, None)
            if record is None:
                return False
            self._digest_index.pop(record.digest, None)
            return True

    async def append(self, event: UsageEvent) -> None:
        self._usage.append(event)

    async def list_since(self, credential_id: str, since: datetime) -> list[UsageEvent]:
        return _recent_usage(self._usage, credential_id, since)


# ============================================================================
# File backend
# ============================================================================


class FileKeyStore:
    """File-backed store implementing both CredentialStore and UsageStore.

    Storage layout::

        <base_path>/
            api_keys.json         # list of credential documents
            api_key_usage.jsonl   # one usage event per line, append-only

    Writes go through a temp file + rename and are chmod 0600. An asyncio
    lock serializes read-modify-write cycles within the process.
    """

    def __init__(self, base_path: Path | None = None):
        if base_path is None:
            from gapminer.config import get_config_dir

            base_path = get_config_dir()
        self.base_path = base_path
        self._keys_file = base_path / "api_keys.json"
        self._usage_file = base_path / "api_key_usage.jsonl"
        self._lock = asyncio.Lock()

    # -- file I/O ----------------------------------------------------------

    def _load(self) -> list[Credential]:
        if not self._keys_file.exists():
            return []
        try:
            raw = json.loads(self._keys_file.read_text(encoding="utf-8"))
        except OSError as e:
            raise StoreUnavailableError(f"Cannot read {self._keys_file}: {e}") from e
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedRecordError(f"Corrupt key file {self._keys_file}: {e}") from e
        if not isinstance(raw, list):
            raise MalformedRecordError(f"Expected a list in {self._keys_file}")
        return [parse_credential(doc) for doc in raw]

    def _save(self, records: list[Credential]) -> None:
        data = [r.model_dump(mode="json") for r in records]
        temp_path = self._keys_file.with_suffix(".tmp")
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
            temp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
            temp_path.chmod(0o600)
            temp_path.replace(self._keys_file)
        except OSError as e:
            if temp_path.exists():
                temp_path.unlink()
            raise StoreUnavailableError(f"Cannot write {self._keys_file}: {e}") from e

    def _find(self, records: list[Credential], key_id: str) -> int | None:
        for i, r in enumerate(records):
            if r.id == key_id:
                return i
        return None

    # -- CredentialStore ---------------------------------------------------

    async def create(self, record: NewCredential) -> Credential:
        async with self._lock:
            records = self._load()
            if any(r.digest == record.digest for r in records):
                raise DuplicateDigestError("A key with this digest already exists")
            stored = Credential(id=_new_id(), **record.model_dump())
            records.append(stored)
            self._save(records)
            logger.debug("Stored API key %s (%s)", stored.id, stored.display_prefix)
            return stored

    async def get_by_id(self, key_id: str) -> Credential | None:
        records = self._load()
        idx = self._find(records, key_id)
        return records[idx] if idx is not None else None

    async def get_by_digest(self, digest: str) -> Credential | None:
        for r in self._load():
            if r.digest == digest:
                return r
        return None

    async def list_by_owner(self, owner_id: str) -> list[Credential]:
        return _newest_first([r for r in self._load() if r.owner_id == owner_id])

    async def update(self, key_id: str, changes: dict[str, Any]) -> Credential | None:
        async with self._lock:
            records = self._load()
            idx = self._find(records, key_id)
            if idx is None:
                return None
            updated = apply_changes(records[idx], changes)
            if updated == records[idx]:
                return updated
            records[idx] = updated
            self._save(records)
            return updated

    async def delete(self, key_id: str) -> bool:
        async with self._lock:
            records = self._load()
            idx = self._find(records, key_id)
            if idx is None:
                return False
            del records[idx]
            self._save(records)
            return True

    # -- UsageStore --------------------------------------------------------

    async def append(self, event: UsageEvent) -> None:
        line = event.model_dump_json() + "\n"
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
            with open(self._usage_file, "a", encoding="utf-8") as f:
                f.write(line)
        except OSError as e:
            raise StoreUnavailableError(f"Cannot append to {self._usage_file}: {e}") from e

    async def list_since(self, credential_id: str, since: datetime) -> list[UsageEvent]:
        if not self._usage_file.exists():
            return []
        try:
            lines = self._usage_file.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            raise StoreUnavailableError(f"Cannot read {self._usage_file}: {e}") from e
        except UnicodeDecodeError as e:
            raise MalformedRecordError(f"Corrupt usage file {self._usage_file}: {e}") from e
        events = []
        for line in lines:
            if not line.strip():
                continue
            try:
                doc = json.loads(line)
            except json.JSONDecodeError as e:
                raise MalformedRecordError(f"Corrupt usage line in {self._usage_file}: {e}") from e
            events.append(parse_usage(doc))
        return _recent_usage(events, credential_id, since)
