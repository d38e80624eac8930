"""
Bulk and entity-scoped cache invalidation.
"""

from typing import Optional, TYPE_CHECKING

from shared.errors import ValidationError
from shared.logging import get_logger
from .key_builder import CacheKeyBuilder, KEY_SEPARATOR
from .store import CacheStore

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class CacheInvalidator:
    """Clears cache entries on administrator request. Both operations are idempotent."""

    def __init__(self, store: CacheStore, key_builder: CacheKeyBuilder,
                 metrics: Optional["MetricsCollector"] = None):
        self.store = store
        self.key_builder = key_builder
        self.metrics = metrics
        self.logger = get_logger("tribute_cache.invalidator")

    async def clear_all(self) -> bool:
        """Flush every entry under the namespace from both tiers."""
        success = await self.store.flush_namespace()

        if success:
            self.logger.info("Cleared all cache entries", namespace=self.store.namespace)
            if self.metrics:
                self.metrics.record_invalidation("all")
        else:
            self.logger.error("Failed to clear cache entries", namespace=self.store.namespace)

        return success

    async def clear_entity(self, entity_id: str) -> bool:
        """Remove the entity's lookups, messages and other sub-resources."""
        entity_id = (entity_id or "").strip()
        if not entity_id:
            raise ValidationError("Entity ID required")

        success = await self.store.delete_entity(entity_id)

        # Roots catch entries written without index bookkeeping
        for root in self.key_builder.entity_roots(entity_id):
            success = await self.store.delete(root) and success
            success = await self.store.delete_by_prefix(root + KEY_SEPARATOR) and success

        if success:
            self.logger.info("Cleared entity cache", entity_id=entity_id)
            if self.metrics:
                self.metrics.record_invalidation("entity")
        else:
            self.logger.error("Failed to clear entity cache", entity_id=entity_id)

        return success
