"""
Storage tiers backing the cache store.

The fast tier is shared and volatile (Redis); entries expire on their own
and there is no reliable pattern delete, so an index set per entity tracks
the keys derived from it. The durable tier (PostgreSQL) does not expire
anything by itself: each row carries its TTL bookkeeping and expiry is
enforced on read.
"""

import re
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, List, Optional

import asyncpg
import redis.asyncio as redis

from shared.logging import get_logger
from .key_builder import KEY_SEPARATOR, PREFIX_INDEX, key_segment
from .models import CacheEntry


INDEX_TTL_SECONDS = 86400
SCAN_BATCH_SIZE = 500

_REDIS_GLOB_CHARS = re.compile(r"([*?\[\]\\])")
_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class CacheTier(ABC):
    """A single key/value tier. Implementations may raise on I/O failure."""

    name: str = "tier"

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the stored JSON string, or None on a miss."""

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int,
                  resource_type: Optional[str] = None, entity_id: Optional[str] = None) -> None:
        """Store a JSON string for ttl_seconds."""

    @abstractmethod
    async def delete(self, keys: Iterable[str]) -> int:
        """Delete exact keys; returns the number removed."""

    @abstractmethod
    async def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with prefix."""

    @abstractmethod
    async def delete_tagged(self, entity_id: str) -> int:
        """Delete every key recorded against an entity."""

    @abstractmethod
    async def count(self, prefix: str) -> int:
        """Count live entries whose key starts with prefix."""

    @abstractmethod
    async def ping(self) -> bool:
        """Return True when the tier is reachable."""

    async def close(self) -> None:
        return None


class MemoryTier(CacheTier):
    """Process-local tier; suitable for a single worker and for tests."""

    def __init__(self, name: str = "memory", clock: Callable[[], float] = time.time):
        self.name = name
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def _live(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return None
        return entry

    async def get(self, key: str) -> Optional[str]:
        entry = self._live(key)
        return entry.value if entry else None

    async def set(self, key: str, value: str, ttl_seconds: int,
                  resource_type: Optional[str] = None, entity_id: Optional[str] = None) -> None:
        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            ttl_seconds=ttl_seconds,
            stored_at=self._clock(),
            resource_type=resource_type,
            entity_id=entity_id,
        )

    async def delete(self, keys: Iterable[str]) -> int:
        removed = 0
        for key in keys:
            if self._entries.pop(key, None) is not None:
                removed += 1
        return removed

    async def delete_prefix(self, prefix: str) -> int:
        return await self.delete([key for key in self._entries if key.startswith(prefix)])

    async def delete_tagged(self, entity_id: str) -> int:
        return await self.delete([key for key, entry in self._entries.items() if entry.entity_id == entity_id])

    async def count(self, prefix: str) -> int:
        return sum(1 for key in list(self._entries) if key.startswith(prefix) and self._live(key))

    async def ping(self) -> bool:
        return True


class RedisFastTier(CacheTier):
    """Shared low-latency tier on Redis."""

    name = "redis"

    def __init__(self, redis_url: str, namespace: str):
        self.redis_url = redis_url
        self.namespace = namespace
        self.logger = get_logger("tribute_cache.tiers.redis")
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
                health_check_interval=30
            )
        return self._redis

    def _index_key(self, entity_id: str) -> str:
        return KEY_SEPARATOR.join([self.namespace, PREFIX_INDEX, key_segment(entity_id)])

    async def _scan(self, prefix: str) -> List[str]:
        redis_client = await self._get_redis()
        pattern = _REDIS_GLOB_CHARS.sub(r"\\\1", prefix) + "*"
        return [key async for key in redis_client.scan_iter(match=pattern, count=SCAN_BATCH_SIZE)]

    async def get(self, key: str) -> Optional[str]:
        redis_client = await self._get_redis()
        return await redis_client.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int,
                  resource_type: Optional[str] = None, entity_id: Optional[str] = None) -> None:
        redis_client = await self._get_redis()
        async with redis_client.pipeline(transaction=False) as pipe:
            pipe.setex(key, ttl_seconds, value)
            if entity_id:
                index_key = self._index_key(entity_id)
                pipe.sadd(index_key, key)
                pipe.expire(index_key, INDEX_TTL_SECONDS)
            await pipe.execute()

    async def delete(self, keys: Iterable[str]) -> int:
        keys = list(keys)
        if not keys:
            return 0
        redis_client = await self._get_redis()
        return int(await redis_client.delete(*keys))

    async def delete_prefix(self, prefix: str) -> int:
        keys = await self._scan(prefix)
        removed = await self.delete(keys)
        if removed:
            self.logger.debug("Deleted keys by prefix", prefix=prefix, keys_count=removed)
        return removed

    async def delete_tagged(self, entity_id: str) -> int:
        redis_client = await self._get_redis()
        index_key = self._index_key(entity_id)
        members = await redis_client.smembers(index_key)
        removed = await self.delete(list(members))
        await redis_client.delete(index_key)
        return removed

    async def count(self, prefix: str) -> int:
        index_prefix = KEY_SEPARATOR.join([self.namespace, PREFIX_INDEX, ""])
        return sum(1 for key in await self._scan(prefix) if not key.startswith(index_prefix))

    async def ping(self) -> bool:
        redis_client = await self._get_redis()
        return bool(await redis_client.ping())

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


class PostgresDurableTier(CacheTier):
    """Durable fallback tier on PostgreSQL with explicit TTL bookkeeping."""

    name = "postgres"

    def __init__(self, dsn: str, table: str = "tribute_cache_entries", clock: Callable[[], float] = time.time):
        if not _IDENTIFIER.match(table):
            raise ValueError(f"Invalid table name: {table}")
        self.dsn = dsn
        self.table = table
        self.logger = get_logger("tribute_cache.tiers.postgres")
        self._clock = clock
        self.pool: Optional[asyncpg.Pool] = None

    async def _get_pool(self) -> asyncpg.Pool:
        if self.pool is None:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=1,
                max_size=10,
                command_timeout=5
            )
            await self._create_tables()
            self.logger.info("PostgreSQL durable tier started", table=self.table)
        return self.pool

    async def _create_tables(self):
        async with self.pool.acquire() as conn:
            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.table} (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    resource_type VARCHAR(64),
                    entity_id VARCHAR(255),
                    stored_at DOUBLE PRECISION NOT NULL,
                    ttl_seconds INTEGER NOT NULL,
                    expires_at DOUBLE PRECISION NOT NULL
                )
            """)
            await conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{self.table}_entity_id ON {self.table} (entity_id)"
            )

    @staticmethod
    def _like_prefix(prefix: str) -> str:
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        return escaped + "%"

    @staticmethod
    def _affected(status: str) -> int:
        try:
            return int(status.split()[-1])
        except (AttributeError, IndexError, ValueError):
            return 0

    async def get(self, key: str) -> Optional[str]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT value, expires_at FROM {self.table} WHERE key = $1",
                key
            )
            if row is None:
                return None
            if row["expires_at"] <= self._clock():
                await conn.execute(f"DELETE FROM {self.table} WHERE key = $1", key)
                return None
            return row["value"]

    async def set(self, key: str, value: str, ttl_seconds: int,
                  resource_type: Optional[str] = None, entity_id: Optional[str] = None) -> None:
        pool = await self._get_pool()
        stored_at = self._clock()
        async with pool.acquire() as conn:
            await conn.execute(f"""
                INSERT INTO {self.table} (key, value, resource_type, entity_id, stored_at, ttl_seconds, expires_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                ON CONFLICT (key) DO UPDATE SET
                    value = EXCLUDED.value,
                    resource_type = EXCLUDED.resource_type,
                    entity_id = EXCLUDED.entity_id,
                    stored_at = EXCLUDED.stored_at,
                    ttl_seconds = EXCLUDED.ttl_seconds,
                    expires_at = EXCLUDED.expires_at
            """, key, value, resource_type, entity_id, stored_at, ttl_seconds, stored_at + ttl_seconds)

    async def delete(self, keys: Iterable[str]) -> int:
        keys = list(keys)
        if not keys:
            return 0
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            status = await conn.execute(f"DELETE FROM {self.table} WHERE key = ANY($1::text[])", keys)
        return self._affected(status)

    async def delete_prefix(self, prefix: str) -> int:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            status = await conn.execute(
                f"DELETE FROM {self.table} WHERE key LIKE $1 ESCAPE '\\'",
                self._like_prefix(prefix)
            )
        return self._affected(status)

    async def delete_tagged(self, entity_id: str) -> int:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            status = await conn.execute(f"DELETE FROM {self.table} WHERE entity_id = $1", entity_id)
        return self._affected(status)

    async def count(self, prefix: str) -> int:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            total = await conn.fetchval(
                f"SELECT COUNT(*) FROM {self.table} WHERE key LIKE $1 ESCAPE '\\' AND expires_at > $2",
                self._like_prefix(prefix),
                self._clock()
            )
        return int(total or 0)

    async def ping(self) -> bool:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            return await conn.fetchval("SELECT 1") == 1

    async def close(self) -> None:
        if self.pool is not None:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL durable tier stopped")
