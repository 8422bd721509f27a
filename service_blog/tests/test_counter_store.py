"""
Unit tests for the counter stores.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock
from redis.exceptions import TimeoutError as RedisTimeoutError

from service_blog.app.adapters.counter_store import InMemoryCounterStore, RedisCounterStore
from shared.errors import StoreUnavailableError


class TestInMemoryCounterStore:
    """Test cases for InMemoryCounterStore."""

    @pytest.fixture
    def clock(self):
        now = {"t": 100.0}

        def _clock():
            return now["t"]

        _clock.now = now
        return _clock

    @pytest.fixture
    def store(self, clock):
        return InMemoryCounterStore(clock=clock)

    @pytest.mark.asyncio
    async def test_incr_counts_from_one(self, store):
        assert await store.incr("k") == 1
        assert await store.incr("k") == 2
        assert await store.get("k") == 2

    @pytest.mark.asyncio
    async def test_ttl_states(self, store):
        assert await store.ttl("missing") == -2

        await store.incr("k")
        assert await store.ttl("k") == -1

        await store.expire("k", 60)
        assert await store.ttl("k") == 60

    @pytest.mark.asyncio
    async def test_expired_key_restarts(self, store, clock):
        await store.incr("k")
        await store.expire("k", 10)

        clock.now["t"] += 10
        assert await store.get("k") is None
        assert await store.incr("k") == 1

    @pytest.mark.asyncio
    async def test_scan_and_delete(self, store):
        await store.incr("auth_rate_limit:1.2.3.4:1")
        await store.incr("auth_rate_limit:5.6.7.8:1")
        await store.incr("api_rate_limit:1.2.3.4:1")

        keys = await store.scan_keys("auth_rate_limit*")
        assert sorted(keys) == ["auth_rate_limit:1.2.3.4:1", "auth_rate_limit:5.6.7.8:1"]

        assert await store.delete(*keys) == 2
        assert await store.delete("auth_rate_limit:1.2.3.4:1") == 0
        assert await store.scan_keys("*") == ["api_rate_limit:1.2.3.4:1"]

    @pytest.mark.asyncio
    async def test_concurrent_increments_are_atomic(self, store):
        results = await asyncio.gather(*[store.incr("k") for _ in range(50)])

        assert sorted(results) == list(range(1, 51))
        assert await store.get("k") == 50

    @pytest.mark.asyncio
    async def test_incr_with_expiry_sets_ttl_once(self, store, clock):
        assert await store.incr_with_expiry("k", 60) == 1
        clock.now["t"] += 30
        assert await store.incr_with_expiry("k", 60) == 2

        assert await store.ttl("k") == 30

    @pytest.mark.asyncio
    async def test_incr_with_expiry_restores_missing_ttl(self, store):
        await store.incr("k")
        assert await store.ttl("k") == -1

        assert await store.incr_with_expiry("k", 60) == 2
        assert await store.ttl("k") == 60


class TestRedisCounterStore:
    """Test cases for RedisCounterStore."""

    @pytest.fixture
    def mock_redis(self):
        return AsyncMock()

    @pytest.fixture
    def store(self, mock_redis):
        return RedisCounterStore("redis://localhost:6379/0", client=mock_redis)

    @pytest.mark.asyncio
    async def test_incr(self, store, mock_redis):
        mock_redis.incr.return_value = 3

        assert await store.incr("k") == 3
        mock_redis.incr.assert_awaited_once_with("k")

    @pytest.mark.asyncio
    async def test_expire(self, store, mock_redis):
        await store.expire("k", 900)
        mock_redis.expire.assert_awaited_once_with("k", 900)

    @pytest.fixture
    def mock_pipeline(self, mock_redis):
        pipeline = MagicMock()
        pipeline.execute = AsyncMock()
        mock_redis.pipeline = MagicMock()
        mock_redis.pipeline.return_value.__aenter__.return_value = pipeline
        return pipeline

    @pytest.mark.asyncio
    async def test_incr_with_expiry_uses_one_pipeline(self, store, mock_redis, mock_pipeline):
        mock_pipeline.execute.return_value = [1, -1]

        assert await store.incr_with_expiry("k", 900) == 1
        mock_redis.pipeline.assert_called_once_with(transaction=True)
        mock_pipeline.incr.assert_called_once_with("k")
        mock_pipeline.ttl.assert_called_once_with("k")
        mock_redis.expire.assert_awaited_once_with("k", 900)

    @pytest.mark.asyncio
    async def test_incr_with_expiry_keeps_existing_ttl(self, store, mock_redis, mock_pipeline):
        mock_pipeline.execute.return_value = [4, 512]

        assert await store.incr_with_expiry("k", 900) == 4
        mock_redis.expire.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_incr_with_expiry_reapplies_lost_ttl(self, store, mock_redis, mock_pipeline):
        mock_pipeline.execute.return_value = [4, -1]

        assert await store.incr_with_expiry("k", 900) == 4
        mock_redis.expire.assert_awaited_once_with("k", 900)

    @pytest.mark.asyncio
    async def test_incr_with_expiry_error(self, store, mock_pipeline):
        mock_pipeline.execute.side_effect = RedisTimeoutError("Timeout reading from socket")

        with pytest.raises(StoreUnavailableError):
            await store.incr_with_expiry("k", 900)

    @pytest.mark.asyncio
    async def test_scan_keys(self, store, mock_redis):
        async def scan_iter(match=None):
            for key in ("auth_rate_limit:a:1", "auth_rate_limit:b:1"):
                yield key

        mock_redis.scan_iter = MagicMock(side_effect=scan_iter)

        assert await store.scan_keys("auth_rate_limit*") == ["auth_rate_limit:a:1", "auth_rate_limit:b:1"]
        mock_redis.scan_iter.assert_called_once_with(match="auth_rate_limit*")

    @pytest.mark.asyncio
    async def test_delete_without_keys_skips_redis(self, store, mock_redis):
        assert await store.delete() == 0
        mock_redis.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_errors_become_store_unavailable(self, store, mock_redis):
        mock_redis.incr.side_effect = RedisTimeoutError("Timeout reading from socket")

        with pytest.raises(StoreUnavailableError) as exc_info:
            await store.incr("k")

        assert exc_info.value.store == "redis"
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_ping_error(self, store, mock_redis):
        mock_redis.ping.side_effect = OSError("Connection refused")

        with pytest.raises(StoreUnavailableError):
            await store.ping()

    @pytest.mark.asyncio
    async def test_close(self, store, mock_redis):
        await store.close()

        mock_redis.aclose.assert_awaited_once()
        # A second close is a no-op
        await store.close()
        mock_redis.aclose.assert_awaited_once()
