"""Tests for the payment approval settings and their cache."""

import json
from unittest.mock import AsyncMock

import pytest

from linguamarket.app.marketplace.crud.crud_admin import admin_settings_dao
from linguamarket.src.billing.shared.settings_cache import (
    AdminSettingsCache,
    PaymentApprovalSettings,
    load_settings_from_db,
)


class FakeClock:
    def __init__(self):
        self.value = 1000.0

    def __call__(self):
        return self.value


class SharedRedis:
    """Just enough of redis.asyncio for two caches to share one copy."""

    def __init__(self):
        self.store = {}

    async def get(self, key):
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self.store[key] = value

    async def delete(self, key):
        self.store.pop(key, None)


def _redis(cached=None):
    redis = AsyncMock()
    redis.get.return_value = cached
    return redis


class TestPaymentApprovalSettings:
    """Tests for the approval policy."""

    def test_defaults_deny_institutions(self):
        assert PaymentApprovalSettings().can_institution_approve(3, 'CASH') is False

    def test_approvable_method(self):
        policy = PaymentApprovalSettings(allow_institution_payment_approval=True)

        assert policy.can_institution_approve(3, 'cash') is True
        assert policy.can_institution_approve(3, 'PAYPAL') is False
        assert policy.can_institution_approve(3, 'WIRE') is False
        assert policy.can_institution_approve(None, 'CASH') is False

    def test_exemption(self):
        policy = PaymentApprovalSettings(
            allow_institution_payment_approval=True, institution_payment_approval_exemptions=(3,)
        )

        assert policy.can_institution_approve(3, 'CASH') is False
        assert policy.can_institution_approve(4, 'CASH') is True

    def test_dict_round_trip_normalizes_methods(self):
        policy = PaymentApprovalSettings.from_dict({
            'allow_institution_payment_approval': True,
            'institution_approvable_methods': ['cash'],
            'institution_payment_approval_exemptions': ['9'],
        })

        assert policy.institution_approvable_methods == ('CASH',)
        assert policy.institution_payment_approval_exemptions == (9,)
        assert PaymentApprovalSettings.from_dict(policy.to_dict()) == policy


class TestAdminSettingsCache:
    """Tests for the read-through cache."""

    @pytest.mark.asyncio
    async def test_snapshot_is_reused_until_ttl(self, db):
        clock = FakeClock()
        loader = AsyncMock(return_value=PaymentApprovalSettings(allow_institution_payment_approval=True))
        cache = AdminSettingsCache(loader=loader, ttl_seconds=60, clock=clock)

        await cache.get(db)
        clock.value += 59
        await cache.get(db)
        assert loader.await_count == 1

        clock.value += 2
        await cache.get(db)
        assert loader.await_count == 2

    @pytest.mark.asyncio
    async def test_shared_copy_wins_over_database(self, db):
        shared = PaymentApprovalSettings(allow_institution_payment_approval=True, admin_only_methods=('CASH',))
        redis = _redis(json.dumps(shared.to_dict()))
        loader = AsyncMock()
        cache = AdminSettingsCache(loader=loader, ttl_seconds=60, redis=redis, redis_key='test:settings')

        result = await cache.get(db)

        assert result == shared
        loader.assert_not_called()
        redis.get.assert_awaited_once_with('test:settings')

    @pytest.mark.asyncio
    async def test_miss_writes_shared_copy(self, db):
        redis = _redis()
        loader = AsyncMock(return_value=PaymentApprovalSettings())
        cache = AdminSettingsCache(loader=loader, ttl_seconds=60, redis=redis, redis_key='test:settings')

        await cache.get(db)

        key, ttl, value = redis.setex.await_args.args
        assert key == 'test:settings'
        assert ttl == 60
        assert json.loads(value)['allow_institution_payment_approval'] is False

    @pytest.mark.asyncio
    async def test_redis_outage_falls_through_to_database(self, db):
        redis = _redis()
        redis.get.side_effect = ConnectionError('redis down')
        redis.setex.side_effect = ConnectionError('redis down')
        loader = AsyncMock(return_value=PaymentApprovalSettings())
        cache = AdminSettingsCache(loader=loader, ttl_seconds=60, redis=redis)

        assert await cache.get(db) == PaymentApprovalSettings()

    @pytest.mark.asyncio
    async def test_invalidate_drops_both_copies(self, db):
        clock = FakeClock()
        redis = _redis()
        loader = AsyncMock(return_value=PaymentApprovalSettings())
        cache = AdminSettingsCache(loader=loader, ttl_seconds=60, redis=redis, redis_key='test:settings', clock=clock)
        await cache.get(db)

        await cache.invalidate()
        await cache.get(db)

        redis.delete.assert_awaited_once_with('test:settings')
        assert loader.await_count == 2

    @pytest.mark.asyncio
    async def test_other_instance_keeps_its_snapshot_until_ttl(self, db):
        """Test that invalidating one process reaches another only once its snapshot expires."""
        clock = FakeClock()
        redis = SharedRedis()
        stored = {'policy': PaymentApprovalSettings()}

        async def loader(db):
            return stored['policy']

        writer = AdminSettingsCache(loader=loader, ttl_seconds=60, redis=redis, clock=clock)
        reader = AdminSettingsCache(loader=loader, ttl_seconds=60, redis=redis, clock=clock)
        await writer.get(db)
        await reader.get(db)

        stored['policy'] = PaymentApprovalSettings(allow_institution_payment_approval=True)
        await writer.invalidate()

        assert (await writer.get(db)).allow_institution_payment_approval is True
        assert (await reader.get(db)).allow_institution_payment_approval is False
        clock.value += 61
        assert (await reader.get(db)).allow_institution_payment_approval is True


class TestLoadSettingsFromDb:
    """Tests for the database loader."""

    @pytest.mark.asyncio
    async def test_missing_row_yields_defaults(self, db):
        assert await load_settings_from_db(db) == PaymentApprovalSettings()

    @pytest.mark.asyncio
    async def test_stored_row(self, db):
        row = await admin_settings_dao.get_or_create(db)
        row.allow_institution_payment_approval = True
        row.institution_payment_approval_exemptions = [5]
        await db.commit()

        policy = await load_settings_from_db(db)

        assert policy.allow_institution_payment_approval is True
        assert policy.institution_payment_approval_exemptions == (5,)
