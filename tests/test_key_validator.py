# Tests for API key validation.
# Created: 2026-10-15

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from gapminer.keys.errors import StoreUnavailableError
from gapminer.keys.generator import hash_secret
from gapminer.keys.manager import APIKeyManager
from gapminer.keys.models import AuthenticatedKey, Credential, Denied, DenialReason, Permission
from gapminer.keys.store import InMemoryKeyStore
from gapminer.keys.validator import CredentialValidator

PLAINTEXT = "gm_" + "A" * 32


class FakeClock:
    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2026, 10, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def _record(**overrides) -> Credential:
    data = {
        "id": "key-1",
        "owner_id": "user-1",
        "display_name": "test",
        "digest": hash_secret(PLAINTEXT),
        "display_prefix": PLAINTEXT[:11],
        "scopes": [Permission.PAPERS_READ],
        "created_at": datetime(2026, 9, 1, tzinfo=UTC),
    }
    data.update(overrides)
    return Credential(**data)


def _mock_store(record: Credential | None = None) -> AsyncMock:
    store = AsyncMock()
    store.get_by_digest.return_value = record
    store.update.return_value = record
    return store


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryKeyStore()


@pytest.fixture
def manager(store, clock):
    return APIKeyManager(store, clock=clock)


@pytest.fixture
def validator(store, clock):
    return CredentialValidator(store, clock=clock)


class TestValidateSuccess:
    @pytest.mark.asyncio
    async def test_valid_key_right_after_creation(self, store):
        manager = APIKeyManager(store)
        issued = await manager.create("user-1", "fresh", ["papers:read"])

        result = await CredentialValidator(store).validate(issued.plaintext)

        assert isinstance(result, AuthenticatedKey)
        assert result.id == issued.credential.id
        assert result.owner_id == "user-1"
        assert result.last_used_at is not None
        assert result.last_used_at >= issued.credential.created_at

        stored = await store.get_by_id(issued.credential.id)
        assert stored.last_used_at == result.last_used_at

    @pytest.mark.asyncio
    async def test_result_has_no_digest(self, manager, validator):
        issued = await manager.create("user-1", "k", ["papers:read"])
        result = await validator.validate(issued.plaintext)
        assert "digest" not in result.model_dump()

    @pytest.mark.asyncio
    async def test_required_permission_held(self, manager, validator):
        issued = await manager.create("user-1", "k", ["gaps:read", "gaps:write"])
        result = await validator.validate(issued.plaintext, Permission.GAPS_WRITE)
        assert isinstance(result, AuthenticatedKey)

    @pytest.mark.asyncio
    async def test_required_permission_as_string(self, manager, validator):
        issued = await manager.create("user-1", "k", ["batch:execute"])
        result = await validator.validate(issued.plaintext, "batch:execute")
        assert isinstance(result, AuthenticatedKey)

    @pytest.mark.asyncio
    async def test_not_yet_expired(self, manager, validator, clock):
        issued = await manager.create("user-1", "k", ["papers:read"], expires_in_days=30)
        clock.advance(days=29)
        result = await validator.validate(issued.plaintext)
        assert isinstance(result, AuthenticatedKey)


class TestValidateDenied:
    @pytest.mark.asyncio
    async def test_malformed_skips_store(self):
        store = _mock_store()
        result = await CredentialValidator(store).validate("sk_live_notours")
        assert result == Denied(DenialReason.MALFORMED)
        store.get_by_digest.assert_not_awaited()
        store.update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_string_is_malformed(self):
        store = _mock_store()
        result = await CredentialValidator(store).validate("")
        assert result.reason is DenialReason.MALFORMED
        store.get_by_digest.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_key(self, validator):
        result = await validator.validate("gm_doesnotexist")
        assert isinstance(result, Denied)
        assert result.reason is DenialReason.NOT_FOUND
        assert result.credential_id is None

    @pytest.mark.asyncio
    async def test_lookup_is_by_digest(self):
        store = _mock_store()
        await CredentialValidator(store).validate(PLAINTEXT)
        store.get_by_digest.assert_awaited_once_with(hash_secret(PLAINTEXT))

    @pytest.mark.asyncio
    async def test_inactive_record_is_not_found(self):
        store = _mock_store(_record(active=False))
        result = await CredentialValidator(store).validate(PLAINTEXT)
        assert result.reason is DenialReason.NOT_FOUND
        store.update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_insufficient_scope_does_not_touch_last_used(self, manager, validator, store):
        issued = await manager.create("user-1", "reader", ["papers:read"])

        result = await validator.validate(issued.plaintext, Permission.PAPERS_WRITE)

        assert result.reason is DenialReason.INSUFFICIENT_SCOPE
        assert result.credential_id == issued.credential.id
        stored = await store.get_by_id(issued.credential.id)
        assert stored.last_used_at is None
        assert stored.active is True

    @pytest.mark.asyncio
    async def test_insufficient_scope_no_writes(self):
        store = _mock_store(_record())
        result = await CredentialValidator(store).validate(PLAINTEXT, "papers:write")
        assert result.reason is DenialReason.INSUFFICIENT_SCOPE
        store.update.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_permission_raises(self):
        store = _mock_store(_record())
        with pytest.raises(ValueError):
            await CredentialValidator(store).validate(PLAINTEXT, "admin")
        store.get_by_digest.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_expiry_checked_before_scope(self, clock):
        expired = _record(expires_at=clock.now - timedelta(seconds=1))
        store = _mock_store(expired)
        result = await CredentialValidator(store, clock=clock).validate(PLAINTEXT, "papers:write")
        assert result.reason is DenialReason.EXPIRED

    def test_denied_is_falsy(self):
        assert not Denied(DenialReason.NOT_FOUND)
        assert DenialReason.INSUFFICIENT_SCOPE.is_authentication_failure is False
        assert DenialReason.EXPIRED.is_authentication_failure is True


class TestLazyExpiry:
    @pytest.mark.asyncio
    async def test_expired_key_is_deactivated(self, manager, validator, store, clock):
        issued = await manager.create("user-1", "short", ["papers:read"], expires_in_days=1)
        clock.advance(days=2)

        result = await validator.validate(issued.plaintext)

        assert result.reason is DenialReason.EXPIRED
        assert result.credential_id == issued.credential.id
        stored = await store.get_by_id(issued.credential.id)
        assert stored.active is False

    @pytest.mark.asyncio
    async def test_second_attempt_after_expiry_is_not_found(self, manager, validator, clock):
        issued = await manager.create("user-1", "short", ["papers:read"], expires_in_days=1)
        clock.advance(days=2)
        await validator.validate(issued.plaintext)
        result = await validator.validate(issued.plaintext)
        assert result.reason is DenialReason.NOT_FOUND

    @pytest.mark.asyncio
    async def test_expired_path_writes_only_active_flag(self, clock):
        store = _mock_store(_record(expires_at=clock.now - timedelta(days=1)))
        await CredentialValidator(store, clock=clock).validate(PLAINTEXT)
        store.update.assert_awaited_once_with("key-1", {"active": False})

    @pytest.mark.asyncio
    async def test_concurrent_expiry_converges(self, clock):
        class InterleavingStore(InMemoryKeyStore):
            """Yields after each read so every caller sees the record before any write."""

            async def get_by_digest(self, digest):
                record = await super().get_by_digest(digest)
                await asyncio.sleep(0)
                return record

        store = InterleavingStore()
        manager = APIKeyManager(store, clock=clock)
        issued = await manager.create("user-1", "race", ["papers:read"], expires_in_days=1)
        clock.advance(days=2)
        validator = CredentialValidator(store, clock=clock)

        results = await asyncio.gather(*(validator.validate(issued.plaintext) for _ in range(25)))

        assert all(r.reason is DenialReason.EXPIRED for r in results)
        stored = await store.get_by_id(issued.credential.id)
        assert stored.active is False


class TestStoreFailures:
    @pytest.mark.asyncio
    async def test_lookup_failure_propagates(self):
        store = AsyncMock()
        store.get_by_digest.side_effect = StoreUnavailableError("down")
        with pytest.raises(StoreUnavailableError):
            await CredentialValidator(store).validate(PLAINTEXT)

    @pytest.mark.asyncio
    async def test_write_failure_propagates(self):
        store = _mock_store(_record())
        store.update.side_effect = StoreUnavailableError("read-only")
        with pytest.raises(StoreUnavailableError):
            await CredentialValidator(store).validate(PLAINTEXT)

    @pytest.mark.asyncio
    async def test_deleted_between_read_and_write(self):
        store = _mock_store(_record())
        store.update.return_value = None
        result = await CredentialValidator(store).validate(PLAINTEXT)
        assert result.reason is DenialReason.NOT_FOUND


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_issue_validate_revoke(self, store):
        manager = APIKeyManager(store)
        validator = CredentialValidator(store)
        issued = await manager.create(
            "user-1",
            "pipeline",
            ["gaps:read"],
            rate_limit_per_minute=60,
            expires_in_days=30,
        )
        assert issued.credential.rate_limit_per_minute == 60

        first = await validator.validate(issued.plaintext)
        assert isinstance(first, AuthenticatedKey)
        assert first.scopes == [Permission.GAPS_READ]

        assert await manager.revoke(issued.credential.id) is True

        second = await validator.validate(issued.plaintext)
        assert second.reason is DenialReason.NOT_FOUND
