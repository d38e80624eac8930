"""
Unit tests for the Redis and PostgreSQL cache tiers.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from service_tribute_cache.app.caching.tiers import (
    INDEX_TTL_SECONDS,
    PostgresDurableTier,
    RedisFastTier,
)
from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.test_helpers import FakeClock


def async_iter(items):
    async def _gen(*args, **kwargs):
        for item in items:
            yield item
    return _gen


class TestRedisFastTier:
    """Test cases for RedisFastTier."""

    @pytest.fixture
    def pipe(self):
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=[True, 1, True])
        return pipe

    @pytest.fixture
    def mock_redis(self, pipe):
        client = MagicMock()
        client.get = AsyncMock(return_value=None)
        client.delete = AsyncMock(return_value=0)
        client.smembers = AsyncMock(return_value=set())
        client.ping = AsyncMock(return_value=True)
        client.aclose = AsyncMock()
        client.pipeline.return_value.__aenter__ = AsyncMock(return_value=pipe)
        client.pipeline.return_value.__aexit__ = AsyncMock(return_value=False)
        return client

    @pytest.fixture
    def tier(self, mock_redis):
        tier = RedisFastTier("redis://localhost:6379/0", "ns")
        tier._redis = mock_redis
        return tier

    @pytest.mark.asyncio
    async def test_lazy_connection(self, mock_redis):
        tier = RedisFastTier("redis://cache:6379/1", "ns")

        with patch("service_tribute_cache.app.caching.tiers.redis.from_url", return_value=mock_redis) as from_url:
            assert await tier.ping() is True
            assert await tier.ping() is True

        from_url.assert_called_once()
        assert from_url.call_args.args[0] == "redis://cache:6379/1"

    @pytest.mark.asyncio
    async def test_get(self, tier, mock_redis):
        mock_redis.get.return_value = '{"id":"A"}'

        assert await tier.get("ns:client_:A") == '{"id":"A"}'
        mock_redis.get.assert_called_once_with("ns:client_:A")

    @pytest.mark.asyncio
    async def test_set_records_entity_index(self, tier, pipe):
        await tier.set("ns:client_:A", '{"id":"A"}', 900, "entity_by_id", "A")

        pipe.setex.assert_called_once_with("ns:client_:A", 900, '{"id":"A"}')
        pipe.sadd.assert_called_once_with("ns:_index:A", "ns:client_:A")
        pipe.expire.assert_called_once_with("ns:_index:A", INDEX_TTL_SECONDS)
        pipe.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_set_without_entity_skips_index(self, tier, pipe):
        await tier.set("ns:clients_:abc", "[]", 1800, "entity_listing", None)

        pipe.setex.assert_called_once_with("ns:clients_:abc", 1800, "[]")
        pipe.sadd.assert_not_called()

    @pytest.mark.asyncio
    async def test_delete_tagged_uses_index(self, tier, mock_redis):
        mock_redis.smembers.return_value = {"ns:client_:A"}
        mock_redis.delete.return_value = 1

        assert await tier.delete_tagged("A") == 1
        mock_redis.smembers.assert_called_once_with("ns:_index:A")
        mock_redis.delete.assert_any_call("ns:client_:A")
        mock_redis.delete.assert_called_with("ns:_index:A")

    @pytest.mark.asyncio
    async def test_delete_empty_is_noop(self, tier, mock_redis):
        assert await tier.delete([]) == 0
        mock_redis.delete.assert_not_called()

    @pytest.mark.asyncio
    async def test_delete_prefix_escapes_glob(self, tier, mock_redis):
        mock_redis.scan_iter = MagicMock(side_effect=async_iter(["ns:client_:A[1]"]))
        mock_redis.delete.return_value = 1

        assert await tier.delete_prefix("ns:client_:A[1]") == 1
        assert mock_redis.scan_iter.call_args.kwargs["match"] == "ns:client_:A\\[1\\]*"

    @pytest.mark.asyncio
    async def test_count_skips_index_sets(self, tier, mock_redis):
        mock_redis.scan_iter = MagicMock(side_effect=async_iter([
            "ns:client_:A",
            "ns:messages_:A:abc",
            "ns:_index:A",
        ]))

        assert await tier.count("ns:") == 2

    @pytest.mark.asyncio
    async def test_close(self, tier, mock_redis):
        await tier.close()

        mock_redis.aclose.assert_awaited_once()
        assert tier._redis is None


class TestPostgresDurableTier:
    """Test cases for PostgresDurableTier."""

    @pytest.fixture
    def conn(self):
        conn = MagicMock()
        conn.execute = AsyncMock(return_value="DELETE 0")
        conn.fetchrow = AsyncMock(return_value=None)
        conn.fetchval = AsyncMock(return_value=0)
        return conn

    @pytest.fixture
    def clock(self):
        return FakeClock(1000.0)

    @pytest.fixture
    def tier(self, conn, clock):
        tier = PostgresDurableTier("postgres://localhost/test", clock=clock)
        pool = MagicMock()
        pool.acquire.return_value.__aenter__ = AsyncMock(return_value=conn)
        pool.acquire.return_value.__aexit__ = AsyncMock(return_value=False)
        pool.close = AsyncMock()
        tier.pool = pool
        return tier

    def test_rejects_unsafe_table_name(self):
        with pytest.raises(ValueError):
            PostgresDurableTier("postgres://localhost/test", table="entries; DROP TABLE x")

    @pytest.mark.asyncio
    async def test_get_live_row(self, tier, conn):
        conn.fetchrow.return_value = {"value": '{"id":"A"}', "expires_at": 1500.0}

        assert await tier.get("ns:client_:A") == '{"id":"A"}'
        conn.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_expired_row_deletes_it(self, tier, conn, clock):
        conn.fetchrow.return_value = {"value": '{"id":"A"}', "expires_at": 1500.0}
        clock.now = 1500.0

        assert await tier.get("ns:client_:A") is None
        sql, key = conn.execute.call_args.args
        assert sql.startswith("DELETE FROM tribute_cache_entries")
        assert key == "ns:client_:A"

    @pytest.mark.asyncio
    async def test_set_upserts_with_bookkeeping(self, tier, conn):
        await tier.set("ns:client_:A", '{"id":"A"}', 900, "entity_by_id", "A")

        args = conn.execute.call_args.args
        assert "ON CONFLICT (key) DO UPDATE" in args[0]
        assert args[1:] == ("ns:client_:A", '{"id":"A"}', "entity_by_id", "A", 1000.0, 900, 1900.0)

    @pytest.mark.asyncio
    async def test_delete_prefix_escapes_like(self, tier, conn):
        conn.execute.return_value = "DELETE 3"

        assert await tier.delete_prefix("fcrm_tributes:client_:A") == 3
        assert conn.execute.call_args.args[1] == "fcrm\\_tributes:client\\_:A%"

    @pytest.mark.asyncio
    async def test_delete_tagged(self, tier, conn):
        conn.execute.return_value = "DELETE 2"

        assert await tier.delete_tagged("A") == 2
        assert conn.execute.call_args.args[1] == "A"

    @pytest.mark.asyncio
    async def test_count_only_live_rows(self, tier, conn):
        conn.fetchval.return_value = 7

        assert await tier.count("ns:") == 7
        assert conn.fetchval.call_args.args[2] == 1000.0

    @pytest.mark.asyncio
    async def test_close(self, tier):
        pool = tier.pool
        await tier.close()

        pool.close.assert_awaited_once()
        assert tier.pool is None


class TestCircuitBreaker:
    """Test cases for the tier circuit breaker."""

    @pytest.mark.asyncio
    async def test_opens_and_recovers(self):
        clock = FakeClock(0.0)
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=30.0, name="t", clock=clock)
        failing = AsyncMock(side_effect=ConnectionError("down"))

        for _ in range(2):
            with pytest.raises(ConnectionError):
                await breaker.call(failing)

        assert breaker.is_open()
        with pytest.raises(CircuitBreakerOpenException):
            await breaker.call(failing)
        assert failing.await_count == 2

        clock.advance(30.0)
        healthy = AsyncMock(return_value="ok")
        assert await breaker.call(healthy) == "ok"
        assert breaker.get_state()["state"] == "closed"
