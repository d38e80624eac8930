"""
Tribute Cache service: wiring and admin control surface.
"""

import hashlib
import hmac
import time
from typing import Any, Dict, List, Optional

import httpx
import jwt
from fastapi import Header, HTTPException

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import AuthenticationError, ValidationError
from shared.logging import set_entity_context
from .adapters.tribute_api_client import TributeApiClient
from .caching.invalidator import CacheInvalidator
from .caching.key_builder import CacheKeyBuilder
from .caching.models import CacheActionRequest, CacheActionResponse
from .caching.store import CacheStore, create_cache_store
from .caching.ttl_policy import TTLOverrideStrategy, TTLPolicyResolver
from .interception.classifier import RequestClassifier
from .interception.interceptor import CacheInterceptor, EnabledPolicy


SERVICE_NAME = "tribute_cache"
SERVICE_PORT = 8020

CSRF_PURPOSE = "cache-admin"
CSRF_ALGORITHM = "HS256"


class TributeCacheService(BaseService):
    """Cache layer service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        *,
        store: Optional[CacheStore] = None,
        ttl_strategy: Optional[TTLOverrideStrategy] = None,
        enabled_policy: Optional[EnabledPolicy] = None,
        upstream_transport=None,
    ):
        super().__init__(SERVICE_NAME, SERVICE_PORT, config=config)

        self.key_builder = CacheKeyBuilder(self.config.cache_namespace)
        self.store = store or create_cache_store(self.config, metrics=self.metrics)
        self.ttl_policy = TTLPolicyResolver(self.config.ttl_overrides(), strategy=ttl_strategy)
        self.classifier = RequestClassifier(self._upstream_hosts())
        self.interceptor = CacheInterceptor(
            self.classifier,
            self.key_builder,
            self.store,
            self.ttl_policy,
            enabled_source=self.config.caching_enabled,
            enabled_policy=enabled_policy,
            metrics=self.metrics,
            debug_logging=self.config.debug_logging,
        )
        self.invalidator = CacheInvalidator(self.store, self.key_builder, metrics=self.metrics)
        self.tribute_client = TributeApiClient(
            self.config.upstream_api_url,
            self.interceptor,
            transport=upstream_transport,
        )

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.tribute_client.close()
            await self.store.close()

        self._setup_cache_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.tribute_cache_service = self

    def _upstream_hosts(self) -> List[str]:
        """Host of the configured API URL first, then the static allow-list."""
        hosts = list(self.config.upstream_hosts)
        try:
            api_host = httpx.URL(self.config.upstream_api_url).host
        except httpx.InvalidURL as exc:
            self.logger.warning("Upstream API URL not usable for host detection", error=str(exc))
            return hosts
        if api_host and api_host.lower() not in hosts:
            hosts.insert(0, api_host.lower())
        return hosts

    def _require_api_key(self, api_key: Optional[str]) -> str:
        """Validate the administrator API key."""
        if not api_key or not any(
            hmac.compare_digest(api_key.encode("utf-8"), known.encode("utf-8")) for known in self.config.admin_api_keys
        ):
            self.logger.warning("Rejected admin request with invalid API key")
            raise AuthenticationError("Invalid API key")
        return api_key

    @staticmethod
    def _key_fingerprint(api_key: str) -> str:
        return hashlib.sha256(api_key.encode("utf-8")).hexdigest()[:16]

    def issue_csrf_token(self, api_key: str) -> str:
        now = int(time.time())
        claims = {
            "sub": self._key_fingerprint(api_key),
            "purpose": CSRF_PURPOSE,
            "iat": now,
            "exp": now + self.config.csrf_token_ttl_seconds,
        }
        return jwt.encode(claims, self.config.csrf_secret, algorithm=CSRF_ALGORITHM)

    def _require_csrf_token(self, api_key: str, token: Optional[str]) -> None:
        if not token:
            raise HTTPException(status_code=403, detail="CSRF token required")
        try:
            claims = jwt.decode(token, self.config.csrf_secret, algorithms=[CSRF_ALGORITHM])
        except jwt.PyJWTError as exc:
            self.logger.warning("Rejected admin request with invalid CSRF token", error=str(exc))
            raise HTTPException(status_code=403, detail="Invalid CSRF token")

        if claims.get("purpose") != CSRF_PURPOSE or claims.get("sub") != self._key_fingerprint(api_key):
            raise HTTPException(status_code=403, detail="Invalid CSRF token")

    async def run_action(self, action: CacheActionRequest) -> CacheActionResponse:
        """Execute an invalidation action and describe the outcome."""
        if action.action == "clearAll":
            success = await self.invalidator.clear_all()
            return CacheActionResponse(
                success=success,
                message="Cache cleared successfully" if success else "Failed to clear cache",
            )

        if action.action == "clearEntity":
            try:
                success = await self.invalidator.clear_entity(action.entity_id or "")
            except ValidationError as exc:
                return CacheActionResponse(success=False, message=exc.message)
            return CacheActionResponse(
                success=success,
                message="Entity cache cleared successfully" if success else "Failed to clear entity cache",
            )

        raise HTTPException(status_code=400, detail=f"Unknown action: {action.action}")

    def _setup_cache_routes(self):
        """Set up admin cache routes."""

        @self.app.get("/api/v1/cache/csrf-token")
        async def get_csrf_token(x_api_key: Optional[str] = Header(None, alias="X-API-Key")):
            """Issue a short-lived token required by cache actions."""
            api_key = self._require_api_key(x_api_key)
            return {
                "token": self.issue_csrf_token(api_key),
                "expires_in": self.config.csrf_token_ttl_seconds,
            }

        @self.app.post("/api/v1/cache/actions", response_model=CacheActionResponse)
        async def cache_action(
            action: CacheActionRequest,
            x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
            x_csrf_token: Optional[str] = Header(None, alias="X-CSRF-Token"),
        ):
            """Clear the whole cache or a single entity."""
            api_key = self._require_api_key(x_api_key)
            self._require_csrf_token(api_key, x_csrf_token)
            set_entity_context(action.entity_id)

            result = await self.run_action(action)
            self.logger.info(
                "Cache action executed",
                action=action.action,
                entity_id=action.entity_id,
                success=result.success,
            )
            return result

        @self.app.get("/api/v1/cache/stats")
        async def get_cache_stats(x_api_key: Optional[str] = Header(None, alias="X-API-Key")):
            """Get cache statistics."""
            self._require_api_key(x_api_key)
            stats = await self.store.stats()
            return stats.model_dump(by_alias=True)

        @self.app.get("/api/v1/cache/policy")
        async def get_cache_policy(x_api_key: Optional[str] = Header(None, alias="X-API-Key")):
            """Expose effective TTLs and the global switch."""
            self._require_api_key(x_api_key)
            return {
                "enabled": self.interceptor.is_enabled(),
                "namespace": self.config.cache_namespace,
                "ttl_seconds": self.ttl_policy.table(),
                "upstream_hosts": self.classifier.upstream_hosts,
            }

        @self.app.get("/api/v1/cache/circuit-breakers")
        async def get_circuit_breakers(x_api_key: Optional[str] = Header(None, alias="X-API-Key")):
            """Get cache tier circuit breaker status."""
            self._require_api_key(x_api_key)
            states = self.store.breaker_states()
            return {"circuit_breakers": states, "count": len(states)}

    async def _check_dependencies(self) -> Dict[str, Any]:
        stats = await self.store.stats()
        return {
            "fast_tier": "ok" if stats.fast_tier_available else "unavailable",
            "cache_entries": stats.entry_count,
        }


def create_app(config: Optional[ServiceConfig] = None, **kwargs):
    """Create FastAPI application."""
    service = TributeCacheService(config or get_config(SERVICE_NAME, SERVICE_PORT), **kwargs)
    return service.app


if __name__ == "__main__":
    service = TributeCacheService()
    service.run()
