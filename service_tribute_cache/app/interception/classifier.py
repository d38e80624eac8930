"""
Classifies outbound calls to the upstream tribute API.
"""

import json
import re
from typing import Any, Dict, Iterable, Mapping, Optional, Union

import httpx

from shared.logging import get_logger
from ..caching.models import RequestDescriptor, ResourceType


# Returned when a call is not a cacheable upstream API call
NOT_APPLICABLE = None

CACHEABLE_METHODS = {"GET", "POST"}

FILE_NUMBER_TOKEN = "file-number"

_FILE_NUMBER_PATH = re.compile(r"/api/client/file-number/([^/?#]+)/?$")
_SUB_RESOURCE_PATH = re.compile(r"/api/client/([^/?#]+)/(messages|trees|donations)/?$")
_CLIENT_PATH = re.compile(r"/api/client/([^/?#]+)/?$")
_CLIENT_LIST_PATH = re.compile(r"/api/clients(/|$)")
_SITEMAP_COUNT_PATH = re.compile(r"/api/tributes/sitemap-count/?$")
_COUNT_PATH = re.compile(r"/api/tributes/count/?$")
_TRIBUTES_PATH = re.compile(r"/api/tributes(/|$)")


class RequestClassifier:
    """Maps an outbound call onto a RequestDescriptor."""

    def __init__(self, upstream_hosts: Iterable[str]):
        self.upstream_hosts = [host.strip().lower() for host in upstream_hosts if host and host.strip()]
        self.logger = get_logger("tribute_cache.classifier")

    def is_upstream_url(self, url: Union[str, httpx.URL]) -> bool:
        """Whether the URL host is on the allow-list (exact or subdomain)."""
        try:
            host = httpx.URL(str(url)).host.lower()
        except Exception:
            return False
        if not host:
            return False
        return any(host == allowed or host.endswith("." + allowed) for allowed in self.upstream_hosts)

    def classify(
        self,
        url: Union[str, httpx.URL],
        method: str = "GET",
        body: Any = None,
    ) -> Optional[RequestDescriptor]:
        """Return a descriptor, or NOT_APPLICABLE. Never raises."""
        try:
            if (method or "GET").upper() not in CACHEABLE_METHODS:
                return NOT_APPLICABLE
            if not self.is_upstream_url(url):
                return NOT_APPLICABLE
            return self._classify(httpx.URL(str(url)), body)
        except Exception as exc:
            self.logger.debug("Classification failed, passing through", url=str(url), error=str(exc))
            return NOT_APPLICABLE

    def _classify(self, url: httpx.URL, body: Any) -> Optional[RequestDescriptor]:
        path = url.path

        match = _FILE_NUMBER_PATH.search(path)
        if match:
            return self._entity_lookup(ResourceType.ENTITY_BY_NUMBER, match.group(1), url)

        match = _SUB_RESOURCE_PATH.search(path)
        if match:
            return RequestDescriptor(
                resource_type=ResourceType.ENTITY_SUB_RESOURCE,
                primary_id=match.group(1),
                secondary_params={"subresource": match.group(2)},
                raw_params=self._body_params(body),
            )

        match = _CLIENT_PATH.search(path)
        if match and match.group(1) != FILE_NUMBER_TOKEN:
            return self._entity_lookup(ResourceType.ENTITY_BY_ID, match.group(1), url)

        if _CLIENT_LIST_PATH.search(path):
            return RequestDescriptor(
                resource_type=ResourceType.ENTITY_LISTING,
                raw_params=self._body_params(body),
            )

        # sitemap-count also contains "count", so it is checked first
        if _SITEMAP_COUNT_PATH.search(path):
            return RequestDescriptor(
                resource_type=ResourceType.COLLECTION_COUNT,
                secondary_params={"variant": "sitemap"},
            )

        if _COUNT_PATH.search(path):
            return RequestDescriptor(
                resource_type=ResourceType.COLLECTION_COUNT,
                secondary_params={"variant": "count"},
            )

        if _TRIBUTES_PATH.search(path):
            params = self._body_params(body)
            if params.get("sitemap") is True:
                return RequestDescriptor(
                    resource_type=ResourceType.SITEMAP_LISTING,
                    raw_params=params,
                )

        return NOT_APPLICABLE

    @staticmethod
    def _entity_lookup(resource_type: ResourceType, entity_id: str, url: httpx.URL) -> RequestDescriptor:
        params = url.params
        secondary: Dict[str, str] = {}

        team_index = params.get("teamGroupIndex")
        if team_index is not None and team_index != "":
            secondary["team_index"] = team_index
        if "gallery" in params:
            secondary["gallery"] = "1"
        if "tribute" in params:
            secondary["extra"] = "1"

        return RequestDescriptor(
            resource_type=resource_type,
            primary_id=entity_id,
            secondary_params=secondary,
            raw_params=dict(params.multi_items()),
        )

    @staticmethod
    def _body_params(body: Any) -> Dict[str, Any]:
        """Decode a JSON request body; raises on malformed input."""
        if body is None:
            return {}
        if isinstance(body, Mapping):
            return dict(body)
        if isinstance(body, (bytes, bytearray)):
            body = body.decode("utf-8")
        if isinstance(body, str):
            if not body.strip():
                return {}
            decoded = json.loads(body)
            return decoded if isinstance(decoded, dict) else {}
        raise TypeError(f"Unsupported body type: {type(body).__name__}")
