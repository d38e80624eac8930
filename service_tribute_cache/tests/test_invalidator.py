"""
Unit tests for cache invalidation.
"""

import pytest
from prometheus_client import CollectorRegistry

from service_tribute_cache.app.caching.invalidator import CacheInvalidator
from service_tribute_cache.app.caching.key_builder import CacheKeyBuilder
from service_tribute_cache.app.caching.store import CacheStore
from service_tribute_cache.app.caching.tiers import MemoryTier
from shared.errors import ValidationError
from shared.metrics import MetricsCollector
from shared.test_helpers import FailingTier, TestDataFactory


class TestCacheInvalidator:
    """Test cases for CacheInvalidator."""

    @pytest.fixture
    def registry(self):
        return CollectorRegistry()

    @pytest.fixture
    def store(self):
        return CacheStore(MemoryTier("fast"), MemoryTier("durable"), "ns")

    @pytest.fixture
    def keys(self):
        return CacheKeyBuilder("ns")

    @pytest.fixture
    def invalidator(self, store, keys, registry):
        return CacheInvalidator(store, keys, metrics=MetricsCollector("tribute_cache_test", registry))

    async def _seed(self, store, keys):
        await store.set(keys.entity_key("A"), TestDataFactory.create_tribute("A"), 900, entity_id="A")
        await store.set(keys.entity_key("A", team_index=2, gallery=True), TestDataFactory.create_tribute("A", 2), 900,
                        entity_id="A")
        await store.set("ns:messages_:A:abc", TestDataFactory.create_messages("A"), 300, entity_id="A")
        # Written without an entity tag; removed through its key root
        await store.set("ns:donations_:A:def", [], 300)
        await store.set(keys.entity_key("AB"), TestDataFactory.create_tribute("AB"), 900, entity_id="AB")
        await store.set("ns:clients_:xyz", TestDataFactory.create_tribute_listing(), 1800)

    @pytest.mark.asyncio
    async def test_clear_entity_is_targeted(self, invalidator, store, keys, registry):
        await self._seed(store, keys)

        assert await invalidator.clear_entity("A") is True

        assert await store.get(keys.entity_key("A")) is None
        assert await store.get(keys.entity_key("A", team_index=2, gallery=True)) is None
        assert await store.get("ns:messages_:A:abc") is None
        assert await store.get("ns:donations_:A:def") is None
        assert await store.get(keys.entity_key("AB")) is not None
        assert await store.get("ns:clients_:xyz") is not None
        assert registry.get_sample_value("cache_invalidations_total", {"scope": "entity"}) == 1

    @pytest.mark.asyncio
    async def test_clear_entity_is_idempotent(self, invalidator, store, keys):
        await self._seed(store, keys)

        assert await invalidator.clear_entity("A") is True
        assert await invalidator.clear_entity("A") is True
        assert (await store.stats()).entry_count == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("entity_id", ["", "   ", None])
    async def test_clear_entity_requires_id(self, invalidator, entity_id):
        with pytest.raises(ValidationError) as exc_info:
            await invalidator.clear_entity(entity_id)
        assert exc_info.value.message == "Entity ID required"

    @pytest.mark.asyncio
    async def test_clear_all(self, invalidator, store, keys, registry):
        await self._seed(store, keys)

        assert await invalidator.clear_all() is True

        stats = await store.stats()
        assert stats.entry_count == 0
        assert registry.get_sample_value("cache_invalidations_total", {"scope": "all"}) == 1

    @pytest.mark.asyncio
    async def test_clear_all_when_empty(self, invalidator):
        assert await invalidator.clear_all() is True

    @pytest.mark.asyncio
    async def test_clear_all_reports_total_failure(self, keys):
        store = CacheStore(FailingTier("fast"), FailingTier("durable"), "ns")
        invalidator = CacheInvalidator(store, keys)

        assert await invalidator.clear_all() is False
        assert await invalidator.clear_entity("A") is False

    @pytest.mark.asyncio
    async def test_clear_entity_spares_ids_sharing_a_prefix(self, invalidator, store, keys):
        await store.set(keys.entity_key("FIN123"), {"id": "FIN123"}, 900, entity_id="FIN123")
        await store.set(keys.entity_key("FIN123:x"), {"id": "FIN123:x"}, 900, entity_id="FIN123:x")

        assert await invalidator.clear_entity("FIN123") is True

        assert await store.get(keys.entity_key("FIN123")) is None
        assert await store.get(keys.entity_key("FIN123:x")) == {"id": "FIN123:x"}
