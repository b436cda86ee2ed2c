# Tests for credential and usage storage backends.
# Created: 2026-10-15

import json
import os
from datetime import UTC, datetime, timedelta

import pytest

from gapminer.keys.errors import (
    CredentialRevokedError,
    DuplicateDigestError,
    MalformedRecordError,
    StoreUnavailableError,
)
from gapminer.keys.generator import generate_secret
from gapminer.keys.models import Credential, NewCredential, Permission, UsageEvent
from gapminer.keys.store import FileKeyStore, InMemoryKeyStore

T0 = datetime(2026, 10, 1, 12, 0, tzinfo=UTC)


def _new(owner: str = "user-1", created_at: datetime = T0, **overrides) -> NewCredential:
    secret = generate_secret()
    data = {
        "owner_id": owner,
        "display_name": "test",
        "digest": secret.digest,
        "display_prefix": secret.display_prefix,
        "scopes": [Permission.PAPERS_READ],
        "created_at": created_at,
    }
    data.update(overrides)
    return NewCredential(**data)


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryKeyStore()
    return FileKeyStore(base_path=tmp_path)


class TestCredentialStore:
    """Behaviour shared by every backend."""

    @pytest.mark.asyncio
    async def test_create_assigns_id(self, store):
        record = await store.create(_new())
        assert isinstance(record, Credential)
        assert record.id
        assert await store.get_by_id(record.id) == record

    @pytest.mark.asyncio
    async def test_get_by_digest(self, store):
        new = _new()
        record = await store.create(new)
        assert (await store.get_by_digest(new.digest)).id == record.id
        assert await store.get_by_digest("0" * 64) is None

    @pytest.mark.asyncio
    async def test_duplicate_digest_rejected(self, store):
        new = _new()
        await store.create(new)
        with pytest.raises(DuplicateDigestError):
            await store.create(new)

    @pytest.mark.asyncio
    async def test_list_by_owner_newest_first(self, store):
        older = await store.create(_new(created_at=T0))
        newer = await store.create(_new(created_at=T0 + timedelta(hours=1)))
        await store.create(_new(owner="someone-else"))

        listed = await store.list_by_owner("user-1")
        assert [r.id for r in listed] == [newer.id, older.id]

    @pytest.mark.asyncio
    async def test_update_partial(self, store):
        record = await store.create(_new())
        updated = await store.update(record.id, {"display_name": "renamed", "scopes": ["gaps:read"]})
        assert updated.display_name == "renamed"
        assert updated.scopes == [Permission.GAPS_READ]
        assert updated.digest == record.digest

    @pytest.mark.asyncio
    async def test_update_unknown_returns_none(self, store):
        assert await store.update("missing", {"active": False}) is None

    @pytest.mark.asyncio
    async def test_deactivate_twice_is_noop(self, store):
        record = await store.create(_new())
        first = await store.update(record.id, {"active": False})
        second = await store.update(record.id, {"active": False})
        assert first.active is False
        assert second == first

    @pytest.mark.asyncio
    async def test_revoked_record_cannot_be_reactivated(self, store):
        new = _new()
        record = await store.create(new)
        await store.update(record.id, {"active": False})

        with pytest.raises(CredentialRevokedError):
            await store.update(record.id, {"active": True})

        assert (await store.get_by_digest(new.digest)).active is False

    @pytest.mark.asyncio
    async def test_reactivating_active_record_is_allowed(self, store):
        record = await store.create(_new())
        assert (await store.update(record.id, {"active": True})).active is True

    @pytest.mark.asyncio
    async def test_immutable_fields_rejected(self, store):
        record = await store.create(_new())
        with pytest.raises(ValueError, match="cannot be updated"):
            await store.update(record.id, {"digest": "f" * 64})

    @pytest.mark.asyncio
    async def test_delete(self, store):
        new = _new()
        record = await store.create(new)
        assert await store.delete(record.id) is True
        assert await store.get_by_id(record.id) is None
        assert await store.get_by_digest(new.digest) is None
        assert await store.delete(record.id) is False

    @pytest.mark.asyncio
    async def test_usage_since_filters_and_orders(self, store):
        for minutes in (0, 5, 10):
            await store.append(
                UsageEvent(
                    credential_id="k1",
                    endpoint="/gaps",
                    method="GET",
                    status_code=200,
                    response_time_ms=12.5,
                    timestamp=T0 + timedelta(minutes=minutes),
                )
            )
        await store.append(
            UsageEvent(
                credential_id="k2",
                endpoint="/gaps",
                method="GET",
                status_code=200,
                response_time_ms=1,
                timestamp=T0,
            )
        )

        events = await store.list_since("k1", T0 + timedelta(minutes=5))
        assert [e.timestamp for e in events] == [T0 + timedelta(minutes=10), T0 + timedelta(minutes=5)]


class TestInMemoryKeyStore:
    @pytest.mark.asyncio
    async def test_returns_copies(self):
        store = InMemoryKeyStore()
        record = await store.create(_new())
        record.display_name = "mutated"
        assert (await store.get_by_id(record.id)).display_name == "test"


class TestFileKeyStore:
    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path):
        record = await FileKeyStore(base_path=tmp_path).create(_new())
        reloaded = await FileKeyStore(base_path=tmp_path).get_by_id(record.id)
        assert reloaded == record

    @pytest.mark.asyncio
    async def test_file_permissions(self, tmp_path):
        store = FileKeyStore(base_path=tmp_path)
        await store.create(_new())
        mode = oct(os.stat(tmp_path / "api_keys.json").st_mode & 0o777)
        assert mode == "0o600"

    @pytest.mark.asyncio
    async def test_no_plaintext_on_disk(self, tmp_path):
        secret = generate_secret()
        store = FileKeyStore(base_path=tmp_path)
        await store.create(_new(digest=secret.digest, display_prefix=secret.display_prefix))
        raw = (tmp_path / "api_keys.json").read_text()
        assert secret.plaintext not in raw
        assert secret.digest in raw

    @pytest.mark.asyncio
    async def test_document_with_key_field_rejected(self, tmp_path):
        store = FileKeyStore(base_path=tmp_path)
        record = await store.create(_new())
        docs = json.loads((tmp_path / "api_keys.json").read_text())
        docs[0]["key"] = "***"
        (tmp_path / "api_keys.json").write_text(json.dumps(docs))

        with pytest.raises(MalformedRecordError):
            await store.get_by_id(record.id)

    @pytest.mark.asyncio
    async def test_document_missing_fields_rejected(self, tmp_path):
        (tmp_path / "api_keys.json").write_text(json.dumps([{"id": "abc", "owner_id": "u"}]))
        with pytest.raises(MalformedRecordError):
            await FileKeyStore(base_path=tmp_path).get_by_digest("0" * 64)

    @pytest.mark.asyncio
    async def test_corrupt_json_rejected(self, tmp_path):
        (tmp_path / "api_keys.json").write_text("{not json")
        with pytest.raises(MalformedRecordError):
            await FileKeyStore(base_path=tmp_path).list_by_owner("user-1")

    @pytest.mark.asyncio
    async def test_undecodable_key_file_rejected(self, tmp_path):
        (tmp_path / "api_keys.json").write_bytes(b"\xff\xfe\x00garbage")
        with pytest.raises(MalformedRecordError):
            await FileKeyStore(base_path=tmp_path).get_by_id("abc")

    @pytest.mark.asyncio
    async def test_undecodable_usage_file_rejected(self, tmp_path):
        (tmp_path / "api_key_usage.jsonl").write_bytes(b"\xff\xfe\x00garbage\n")
        with pytest.raises(MalformedRecordError):
            await FileKeyStore(base_path=tmp_path).list_since("k1", T0)

    @pytest.mark.asyncio
    async def test_unwritable_location(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        with pytest.raises(StoreUnavailableError):
            await FileKeyStore(base_path=blocker).create(_new())

    @pytest.mark.asyncio
    async def test_usage_is_jsonl(self, tmp_path):
        store = FileKeyStore(base_path=tmp_path)
        event = UsageEvent(
            credential_id="k1",
            endpoint="/papers",
            method="POST",
            status_code=201,
            response_time_ms=40,
            timestamp=T0,
        )
        await store.append(event)
        await store.append(event)
        lines = (tmp_path / "api_key_usage.jsonl").read_text().splitlines()
        assert len(lines) == 2
        assert json.loads(lines[0])["credential_id"] == "k1"
        assert await store.list_since("k1", T0) == [event, event]
