"""
Deterministic cache keys for upstream API requests.
"""

import hashlib
import json
from typing import Any, List, Mapping
from urllib.parse import quote

from .models import RequestDescriptor, ResourceType


KEY_SEPARATOR = ":"

PREFIX_CLIENT = "client_"
PREFIX_CLIENT_LIST = "clients_"
PREFIX_MESSAGES = "messages_"
PREFIX_TREES = "trees_"
PREFIX_DONATIONS = "donations_"
PREFIX_COUNT = "count_"
PREFIX_SITEMAP = "sitemap_"
PREFIX_INDEX = "_index"

SUB_RESOURCE_PREFIXES = {
    "messages": PREFIX_MESSAGES,
    "trees": PREFIX_TREES,
    "donations": PREFIX_DONATIONS,
}

# Every prefix whose keys embed an entity id
ENTITY_PREFIXES = [PREFIX_CLIENT, PREFIX_MESSAGES, PREFIX_TREES, PREFIX_DONATIONS]

_FALSY_FLAGS = {"", "0", "false", "no", "off"}


def canonical_params(params: Mapping[str, Any]) -> str:
    """Encode a parameter map independently of its insertion order."""
    return json.dumps(params or {}, sort_keys=True, separators=(",", ":"), default=str)


def key_segment(value: Any) -> str:
    """Percent-encode a caller-supplied value so it stays one key segment."""
    return quote(str(value), safe="")


def params_digest(params: Mapping[str, Any]) -> str:
    return hashlib.sha256(canonical_params(params).encode("utf-8")).hexdigest()


def _flag_set(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() not in _FALSY_FLAGS


class CacheKeyBuilder:
    """Turns a RequestDescriptor into a namespaced cache key."""

    def __init__(self, namespace: str = "fcrm_tributes"):
        self.namespace = namespace

    def _join(self, *parts: str) -> str:
        return KEY_SEPARATOR.join([self.namespace, *parts])

    @property
    def namespace_prefix(self) -> str:
        """Prefix shared by every key this builder produces."""
        return f"{self.namespace}{KEY_SEPARATOR}"

    def build(self, descriptor: RequestDescriptor) -> str:
        resource_type = descriptor.resource_type
        secondary = descriptor.secondary_params

        if resource_type in (ResourceType.ENTITY_BY_ID, ResourceType.ENTITY_BY_NUMBER):
            return self.entity_key(
                descriptor.primary_id,
                team_index=secondary.get("team_index"),
                gallery=_flag_set(secondary.get("gallery")),
                extra=_flag_set(secondary.get("extra")),
            )

        if resource_type == ResourceType.ENTITY_LISTING:
            return self._join(PREFIX_CLIENT_LIST, params_digest(descriptor.raw_params))

        if resource_type == ResourceType.ENTITY_SUB_RESOURCE:
            subresource = secondary.get("subresource", "messages")
            prefix = SUB_RESOURCE_PREFIXES.get(subresource)
            if prefix is None:
                raise ValueError(f"Unknown sub-resource: {subresource}")
            return self._join(prefix, key_segment(descriptor.primary_id), params_digest(descriptor.raw_params))

        if resource_type == ResourceType.COLLECTION_COUNT:
            return self._join(PREFIX_COUNT, secondary.get("variant", "count"))

        if resource_type == ResourceType.SITEMAP_LISTING:
            return self._join(PREFIX_SITEMAP, params_digest(descriptor.raw_params))

        raise ValueError(f"Unsupported resource type: {resource_type}")

    def entity_key(self, entity_id: str, team_index: Any = None, gallery: bool = False, extra: bool = False) -> str:
        """Key for a single entity lookup; optional suffixes in fixed order."""
        parts = [PREFIX_CLIENT, key_segment(entity_id)]

        if team_index is not None and str(team_index) != "":
            parts.append(f"team_{key_segment(team_index)}")

        if gallery:
            parts.append("gallery")

        if extra:
            parts.append("extra")

        return self._join(*parts)

    def entity_roots(self, entity_id: str) -> List[str]:
        """Key roots for every entry derived from one entity."""
        return [self._join(prefix, key_segment(entity_id)) for prefix in ENTITY_PREFIXES]

    def index_key(self, entity_id: str) -> str:
        """Key of the set tracking the cache keys owned by an entity."""
        return self._join(PREFIX_INDEX, key_segment(entity_id))
