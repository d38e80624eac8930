"""
Data models shared by the interception and caching packages.
"""

from typing import Dict, Any, Optional, Mapping
from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, Field


class ResourceType(str, Enum):
    """Kinds of upstream API calls the cache understands."""
    ENTITY_BY_ID = "entity_by_id"
    ENTITY_BY_NUMBER = "entity_by_number"
    ENTITY_LISTING = "entity_listing"
    ENTITY_SUB_RESOURCE = "entity_sub_resource"
    COLLECTION_COUNT = "collection_count"
    SITEMAP_LISTING = "sitemap_listing"


class TTLCategory(str, Enum):
    """TTL buckets; names match the configuration keys."""
    CLIENT_LIST = "client_list"
    SINGLE_CLIENT = "single_client"
    MESSAGES = "messages"
    STATIC_CONTENT = "static_content"


RESOURCE_TTL_CATEGORY: Dict[ResourceType, TTLCategory] = {
    ResourceType.ENTITY_BY_ID: TTLCategory.SINGLE_CLIENT,
    ResourceType.ENTITY_BY_NUMBER: TTLCategory.SINGLE_CLIENT,
    ResourceType.ENTITY_LISTING: TTLCategory.CLIENT_LIST,
    ResourceType.ENTITY_SUB_RESOURCE: TTLCategory.MESSAGES,
    ResourceType.COLLECTION_COUNT: TTLCategory.STATIC_CONTENT,
    ResourceType.SITEMAP_LISTING: TTLCategory.STATIC_CONTENT,
}


@dataclass(frozen=True)
class RequestDescriptor:
    """Semantic view of one outbound upstream call."""
    resource_type: ResourceType
    primary_id: str = ""
    secondary_params: Mapping[str, str] = field(default_factory=dict)
    raw_params: Mapping[str, Any] = field(default_factory=dict)

    @property
    def entity_id(self) -> Optional[str]:
        """Entity the response belongs to, if any."""
        if self.resource_type in (
            ResourceType.ENTITY_BY_ID,
            ResourceType.ENTITY_BY_NUMBER,
            ResourceType.ENTITY_SUB_RESOURCE,
        ):
            return self.primary_id or None
        return None


@dataclass
class CacheEntry:
    """A cached upstream payload with its TTL bookkeeping."""
    key: str
    value: Any
    ttl_seconds: int
    stored_at: float
    resource_type: Optional[str] = None
    entity_id: Optional[str] = None

    @property
    def expires_at(self) -> float:
        return self.stored_at + self.ttl_seconds

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class CacheStats(BaseModel):
    """Cache statistics exposed to administrators."""
    entry_count: int = Field(0, serialization_alias="entryCount")
    fast_tier_available: bool = Field(False, serialization_alias="fastTierAvailable")


class CacheActionRequest(BaseModel):
    """Request model for the admin invalidation endpoint."""
    action: str = Field(..., description="clearAll or clearEntity")
    entity_id: Optional[str] = Field(None, alias="entityId", description="Entity to clear")

    model_config = {"populate_by_name": True}


class CacheActionResponse(BaseModel):
    """Response model for the admin invalidation endpoint."""
    success: bool
    message: str
