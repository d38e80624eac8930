"""
TTL policy for cached upstream responses.
"""

from abc import ABC, abstractmethod
from typing import Dict, Mapping, Optional, Union

from shared.logging import get_logger
from shared.errors import ConfigurationMissing
from .models import ResourceType, TTLCategory, RESOURCE_TTL_CATEGORY


DEFAULT_CLIENT_LIST_TTL = 1800     # 30 minutes for client listings
DEFAULT_SINGLE_CLIENT_TTL = 900    # 15 minutes for individual clients
DEFAULT_STATIC_CONTENT_TTL = 7200  # 2 hours for static content
DEFAULT_MESSAGES_TTL = 300         # 5 minutes for dynamic content
DEFAULT_TTL = DEFAULT_SINGLE_CLIENT_TTL

DEFAULT_TTL_TABLE: Dict[TTLCategory, int] = {
    TTLCategory.CLIENT_LIST: DEFAULT_CLIENT_LIST_TTL,
    TTLCategory.SINGLE_CLIENT: DEFAULT_SINGLE_CLIENT_TTL,
    TTLCategory.STATIC_CONTENT: DEFAULT_STATIC_CONTENT_TTL,
    TTLCategory.MESSAGES: DEFAULT_MESSAGES_TTL,
}


class TTLOverrideStrategy(ABC):
    """Hook for operators and tests to adjust the final TTL."""

    @abstractmethod
    def adjust(self, category: TTLCategory, ttl_seconds: int) -> int:
        """Return the TTL to use given the resolved value."""


class DefaultTTLOverrideStrategy(TTLOverrideStrategy):
    """Leaves the resolved TTL unchanged."""

    def adjust(self, category: TTLCategory, ttl_seconds: int) -> int:
        return ttl_seconds


class TTLPolicyResolver:
    """Maps a resource type to a cache lifetime in seconds."""

    def __init__(
        self,
        overrides: Optional[Mapping[Union[str, TTLCategory], Optional[int]]] = None,
        strategy: Optional[TTLOverrideStrategy] = None,
    ):
        self.logger = get_logger("tribute_cache.ttl_policy")
        self.strategy = strategy or DefaultTTLOverrideStrategy()
        self._overrides: Dict[TTLCategory, int] = {}

        for name, value in (overrides or {}).items():
            try:
                category = TTLCategory(name)
                self._overrides[category] = self._validate(category, value)
            except ValueError:
                self.logger.warning("Ignoring TTL override for unknown category", category=str(name))
            except ConfigurationMissing as exc:
                self.logger.debug("TTL override not usable, using default", category=str(name), reason=exc.message)

    @staticmethod
    def _validate(category: TTLCategory, value: Optional[int]) -> int:
        if value is None:
            raise ConfigurationMissing(f"cache_duration_{category.value}", "not set")
        try:
            seconds = int(value)
        except (TypeError, ValueError):
            raise ConfigurationMissing(f"cache_duration_{category.value}", f"not an integer: {value!r}")
        if seconds <= 0:
            raise ConfigurationMissing(f"cache_duration_{category.value}", "must be positive")
        return seconds

    def category_for(self, resource_type: ResourceType) -> TTLCategory:
        return RESOURCE_TTL_CATEGORY.get(resource_type, TTLCategory.SINGLE_CLIENT)

    def resolve(self, resource_type: ResourceType) -> int:
        """Resolve override, then default table, then the injected strategy."""
        category = self.category_for(resource_type)
        ttl = self._overrides.get(category, DEFAULT_TTL_TABLE.get(category, DEFAULT_TTL))

        try:
            adjusted = int(self.strategy.adjust(category, ttl))
        except Exception as exc:
            self.logger.warning("TTL override strategy failed, using resolved value", category=category.value, error=str(exc))
            adjusted = ttl

        return max(1, adjusted)

    def table(self) -> Dict[str, int]:
        """Effective TTL per category before the strategy is applied."""
        return {
            category.value: self._overrides.get(category, default)
            for category, default in DEFAULT_TTL_TABLE.items()
        }
