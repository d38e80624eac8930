"""
Two-tier cache store.

Every write goes to both tiers. Reads try the fast tier, then the durable
tier; a durable hit is returned as-is and does not repopulate the fast
tier. A failing tier is skipped; with both tiers down reads miss and
writes are no-ops. No store operation raises to its caller.
"""

import json
import time
from typing import Any, Callable, List, Optional, Tuple, TYPE_CHECKING

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import SerializationError, StoreTierUnavailable
from shared.logging import get_logger
from .key_builder import KEY_SEPARATOR
from .models import CacheStats
from .tiers import CacheTier, MemoryTier, PostgresDurableTier, RedisFastTier

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.config import BaseConfig
    from shared.metrics import MetricsCollector


class CacheStore:
    """Fast shared tier plus durable fallback tier."""

    def __init__(
        self,
        fast_tier: CacheTier,
        durable_tier: CacheTier,
        namespace: str,
        *,
        metrics: Optional["MetricsCollector"] = None,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
    ):
        self.fast_tier = fast_tier
        self.durable_tier = durable_tier
        self.namespace = namespace
        self.metrics = metrics
        self.logger = get_logger("tribute_cache.store")
        self._breakers = {
            id(tier): CircuitBreaker(
                failure_threshold=failure_threshold,
                recovery_timeout=recovery_timeout,
                name=f"cache_tier.{role}",
            )
            for role, tier in (("fast", fast_tier), ("durable", durable_tier))
        }

    @property
    def tiers(self) -> Tuple[CacheTier, CacheTier]:
        return (self.fast_tier, self.durable_tier)

    @property
    def namespace_prefix(self) -> str:
        return f"{self.namespace}{KEY_SEPARATOR}"

    async def _run(self, tier: CacheTier, operation: str, *args, **kwargs) -> Any:
        """Call a tier method behind its circuit breaker."""
        breaker = self._breakers[id(tier)]
        try:
            return await breaker.call(getattr(tier, operation), *args, **kwargs)
        except CircuitBreakerOpenException as exc:
            raise StoreTierUnavailable(tier.name, str(exc), {"operation": operation}) from exc
        except Exception as exc:
            raise StoreTierUnavailable(tier.name, str(exc), {"operation": operation}) from exc

    def _tier_failed(self, exc: StoreTierUnavailable) -> None:
        self.logger.warning(
            "Cache tier unavailable, degrading",
            tier=exc.tier,
            operation=exc.details.get("operation"),
            error=exc.message,
        )
        if self.metrics:
            self.metrics.record_tier_error(exc.tier)

    async def _each_tier(self, operation: str, *args) -> List[Any]:
        """Run an operation on both tiers; failed tiers contribute None."""
        results = []
        for tier in self.tiers:
            try:
                results.append(await self._run(tier, operation, *args))
            except StoreTierUnavailable as exc:
                self._tier_failed(exc)
                results.append(None)
        return results

    async def get(self, key: str) -> Optional[Any]:
        """Return the cached payload, or None on a miss."""
        for tier in self.tiers:
            try:
                raw = await self._run(tier, "get", key)
            except StoreTierUnavailable as exc:
                self._tier_failed(exc)
                continue

            if raw is None:
                continue

            try:
                return json.loads(raw)
            except (TypeError, ValueError):
                self.logger.warning("Discarding undecodable cache entry", tier=tier.name, key=key)
                continue

        return None

    async def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: int,
        resource_type: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> bool:
        """Write to both tiers; True if at least one tier stored the value."""
        try:
            payload = self.encode(value)
        except SerializationError as exc:
            self.logger.warning("Refusing to cache unserializable value", key=key, error=exc.message)
            return False

        stored = False
        for tier in self.tiers:
            try:
                await self._run(tier, "set", key, payload, ttl_seconds, resource_type, entity_id)
                stored = True
            except StoreTierUnavailable as exc:
                self._tier_failed(exc)

        if stored:
            self.logger.debug("Cached value", key=key, ttl=ttl_seconds)
        return stored

    async def delete(self, key: str) -> bool:
        results = await self._each_tier("delete", [key])
        return any(result is not None for result in results)

    async def delete_by_prefix(self, prefix: str) -> bool:
        """Best-effort prefix delete on both tiers."""
        results = await self._each_tier("delete_prefix", prefix)
        removed = sum(result or 0 for result in results)
        self.logger.debug("Deleted by prefix", prefix=prefix, keys_count=removed)
        return any(result is not None for result in results)

    async def delete_entity(self, entity_id: str) -> bool:
        """Exact delete of every entry recorded against an entity."""
        results = await self._each_tier("delete_tagged", entity_id)
        return any(result is not None for result in results)

    async def flush_namespace(self) -> bool:
        results = await self._each_tier("delete_prefix", self.namespace_prefix)
        return any(result is not None for result in results)

    async def stats(self) -> CacheStats:
        fast_available = False
        try:
            fast_available = bool(await self._run(self.fast_tier, "ping"))
        except StoreTierUnavailable as exc:
            self._tier_failed(exc)

        entry_count = 0
        for tier in (self.durable_tier, self.fast_tier):
            if tier is self.fast_tier and not fast_available:
                continue
            try:
                entry_count = int(await self._run(tier, "count", self.namespace_prefix))
                break
            except StoreTierUnavailable as exc:
                self._tier_failed(exc)

        return CacheStats(entry_count=entry_count, fast_tier_available=fast_available)

    def breaker_states(self) -> dict:
        return {breaker.name: breaker.get_state() for breaker in self._breakers.values()}

    async def close(self) -> None:
        for tier in self.tiers:
            try:
                await tier.close()
            except Exception as exc:
                self.logger.warning("Failed to close cache tier", tier=tier.name, error=str(exc))

    @staticmethod
    def encode(value: Any) -> str:
        try:
            return json.dumps(value, separators=(",", ":"))
        except (TypeError, ValueError) as exc:
            raise SerializationError(str(exc))


def create_cache_store(
    config: "BaseConfig",
    *,
    metrics: Optional["MetricsCollector"] = None,
    clock: Callable[[], float] = time.time,
) -> CacheStore:
    """Build the store from configured tier backends."""
    if config.fast_tier_backend == "memory":
        fast_tier: CacheTier = MemoryTier(name="memory_fast", clock=clock)
    else:
        fast_tier = RedisFastTier(config.redis_url, config.cache_namespace)

    if config.durable_tier_backend == "memory":
        durable_tier: CacheTier = MemoryTier(name="memory_durable", clock=clock)
    else:
        durable_tier = PostgresDurableTier(config.postgres_dsn, clock=clock)

    return CacheStore(fast_tier, durable_tier, config.cache_namespace, metrics=metrics)
