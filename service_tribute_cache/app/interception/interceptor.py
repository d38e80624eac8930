"""
Interception of upstream API calls.

Per call: CLASSIFY, then LOOKUP. A hit yields a synthesized response that
looks like a live 200 response; a miss yields a one-shot capture which
stores the real response once it completes with status 200. Any failure
inside the cache layer turns the call into a plain passthrough.
"""

import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union, TYPE_CHECKING

import httpx

from shared.errors import SerializationError
from shared.logging import get_logger
from ..caching.key_builder import CacheKeyBuilder
from ..caching.models import RequestDescriptor
from ..caching.store import CacheStore
from ..caching.ttl_policy import TTLPolicyResolver
from .classifier import NOT_APPLICABLE, RequestClassifier

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class EnabledPolicy(ABC):
    """Hook to adjust the resolved global enabled flag."""

    @abstractmethod
    def adjust(self, enabled: bool) -> bool:
        """Return the enabled flag to use given the configured value."""


class DefaultEnabledPolicy(EnabledPolicy):
    """Leaves the configured flag unchanged."""

    def adjust(self, enabled: bool) -> bool:
        return enabled


class InterceptState(str, Enum):
    PASSTHROUGH = "passthrough"
    HIT = "hit"
    MISS = "miss"


@dataclass(frozen=True)
class InterceptContext:
    """Values resolved once per inbound request and passed to every call."""
    enabled: bool
    request_id: Optional[str] = None


@dataclass
class SynthesizedResponse:
    """Transport-shaped response served from cache."""
    body: str
    status: int = 200
    headers: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"headers": dict(self.headers), "body": self.body, "status": self.status}


@dataclass
class InterceptOutcome:
    state: InterceptState
    descriptor: Optional[RequestDescriptor] = None
    key: Optional[str] = None
    response: Optional[SynthesizedResponse] = None
    capture: Optional["ResponseCapture"] = None


PASSTHROUGH = InterceptOutcome(InterceptState.PASSTHROUGH)


class ResponseCapture:
    """Stores the result of one missed call; fires at most once."""

    def __init__(self, interceptor: "CacheInterceptor", descriptor: RequestDescriptor, key: str):
        self.interceptor = interceptor
        self.descriptor = descriptor
        self.key = key
        self._armed = True

    @property
    def armed(self) -> bool:
        return self._armed

    async def complete(self, url: Union[str, httpx.URL], status_code: int, body: Union[bytes, str, None]) -> bool:
        """Store the upstream body if it is a 200 JSON response. Never raises."""
        if not self._armed:
            return False

        interceptor = self.interceptor
        resource_type = self.descriptor.resource_type.value

        try:
            if not interceptor.classifier.is_upstream_url(url):
                return False

            self._armed = False

            if status_code != 200:
                interceptor.logger.debug("Not caching non-success response", key=self.key, status_code=status_code)
                interceptor._record_store(resource_type, "skipped")
                return False

            data = self.decode(body)
            if data is None:
                interceptor._record_store(resource_type, "skipped")
                return False

            ttl = interceptor.ttl_policy.resolve(self.descriptor.resource_type)
            stored = await interceptor.store.set(
                self.key,
                data,
                ttl,
                resource_type=resource_type,
                entity_id=self.descriptor.entity_id,
            )
            interceptor._record_store(resource_type, "stored" if stored else "failed")
            return stored

        except SerializationError as exc:
            interceptor.logger.warning("Upstream body is not JSON, not caching", key=self.key, error=exc.message)
            interceptor._record_store(resource_type, "invalid")
            return False
        except Exception as exc:
            interceptor.logger.error("Response capture failed", key=self.key, error=str(exc))
            interceptor._record_store(resource_type, "failed")
            return False

    @staticmethod
    def decode(body: Union[bytes, str, None]) -> Any:
        if body is None:
            return None
        try:
            if isinstance(body, (bytes, bytearray)):
                body = body.decode("utf-8")
            if not body.strip():
                return None
            return json.loads(body)
        except (UnicodeDecodeError, ValueError) as exc:
            raise SerializationError(str(exc))


class CacheInterceptor:
    """Orchestrates classifier, key builder, store and TTL policy."""

    def __init__(
        self,
        classifier: RequestClassifier,
        key_builder: CacheKeyBuilder,
        store: CacheStore,
        ttl_policy: TTLPolicyResolver,
        *,
        enabled_source: Callable[[], bool] = lambda: True,
        enabled_policy: Optional[EnabledPolicy] = None,
        metrics: Optional["MetricsCollector"] = None,
        debug_logging: bool = False,
    ):
        self.classifier = classifier
        self.key_builder = key_builder
        self.store = store
        self.ttl_policy = ttl_policy
        self.enabled_source = enabled_source
        self.enabled_policy = enabled_policy or DefaultEnabledPolicy()
        self.metrics = metrics
        self.debug_logging = debug_logging
        self.logger = get_logger("tribute_cache.interceptor")

    def is_enabled(self) -> bool:
        try:
            return bool(self.enabled_policy.adjust(bool(self.enabled_source())))
        except Exception as exc:
            self.logger.warning("Enabled flag resolution failed, bypassing cache", error=str(exc))
            return False

    def new_context(self, request_id: Optional[str] = None) -> InterceptContext:
        """Resolve per-request values once, at the start of request handling."""
        return InterceptContext(enabled=self.is_enabled(), request_id=request_id)

    async def begin(
        self,
        url: Union[str, httpx.URL],
        method: str = "GET",
        body: Any = None,
        context: Optional[InterceptContext] = None,
    ) -> InterceptOutcome:
        """Classify and look up a call before it is sent."""
        context = context or self.new_context()
        if not context.enabled:
            return PASSTHROUGH

        descriptor = self.classifier.classify(url, method, body)
        if descriptor is NOT_APPLICABLE:
            return PASSTHROUGH

        resource_type = descriptor.resource_type.value
        start = time.perf_counter()

        try:
            key = self.key_builder.build(descriptor)
            cached = await self.store.get(key)
            response = self._synthesize(cached) if cached is not None else None
        except Exception as exc:
            self.logger.error("Cache lookup failed, passing through", url=str(url), error=str(exc))
            self._record_lookup(resource_type, "error")
            return PASSTHROUGH

        duration = time.perf_counter() - start
        # Per-call HIT/MISS lines are promoted to info when debug logging is on
        log = self.logger.info if self.debug_logging else self.logger.debug
        log(
            "API intercept",
            type=resource_type,
            id=descriptor.primary_id,
            team=descriptor.secondary_params.get("team_index"),
            cache="HIT" if response else "MISS",
            key=key,
            request_id=context.request_id,
        )

        if response is not None:
            self._record_lookup(resource_type, "hit", duration)
            return InterceptOutcome(InterceptState.HIT, descriptor, key, response=response)

        self._record_lookup(resource_type, "miss", duration)
        return InterceptOutcome(
            InterceptState.MISS,
            descriptor,
            key,
            capture=ResponseCapture(self, descriptor, key),
        )

    @staticmethod
    def _synthesize(payload: Any) -> SynthesizedResponse:
        return SynthesizedResponse(body=json.dumps(payload))

    def _record_lookup(self, resource_type: str, result: str, duration: Optional[float] = None) -> None:
        if not self.metrics:
            return
        try:
            self.metrics.record_cache_lookup(resource_type, result, duration)
        except Exception as exc:  # pragma: no cover - metrics failures must not affect traffic
            self.logger.debug("Failed to record lookup metrics", error=str(exc))

    def _record_store(self, resource_type: str, result: str) -> None:
        if not self.metrics:
            return
        try:
            self.metrics.record_cache_store(resource_type, result)
        except Exception as exc:  # pragma: no cover - metrics failures must not affect traffic
            self.logger.debug("Failed to record store metrics", error=str(exc))
