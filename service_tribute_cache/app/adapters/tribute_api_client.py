"""
Tribute API client used by the host application.
"""

from typing import Any, Dict, Optional

import httpx

from shared.logging import get_logger
from shared.errors import ExternalServiceError
from ..interception.interceptor import CacheInterceptor, InterceptContext
from ..interception.transport import CONTEXT_EXTENSION, CachingTransport


class TributeApiClient:
    """Client for the upstream tribute API; every call goes through the cache."""

    def __init__(
        self,
        base_url: str,
        interceptor: CacheInterceptor,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ):
        self.base_url = base_url.rstrip('/')
        self.logger = get_logger("tribute_cache.api_client")
        self.interceptor = interceptor
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            transport=CachingTransport(interceptor, transport),
            timeout=timeout,
        )

    async def get_client(
        self,
        client_id: str,
        team_index: Optional[int] = None,
        gallery: bool = False,
        extra: bool = False,
        context: Optional[InterceptContext] = None,
    ) -> Optional[Dict[str, Any]]:
        """Fetch a single tribute by id."""
        params = self._lookup_params(team_index, gallery, extra)
        return await self._request("GET", f"/api/client/{client_id}", params=params, context=context)

    async def get_client_by_number(
        self,
        file_number: str,
        team_index: Optional[int] = None,
        gallery: bool = False,
        extra: bool = False,
        context: Optional[InterceptContext] = None,
    ) -> Optional[Dict[str, Any]]:
        """Fetch a single tribute by its file number."""
        params = self._lookup_params(team_index, gallery, extra)
        return await self._request("GET", f"/api/client/file-number/{file_number}", params=params, context=context)

    async def list_clients(self, params: Dict[str, Any], context: Optional[InterceptContext] = None) -> Optional[Any]:
        """Search tributes; filters travel in the JSON body."""
        return await self._request("POST", "/api/clients/", json=params, context=context)

    async def get_messages(
        self,
        client_id: str,
        params: Optional[Dict[str, Any]] = None,
        context: Optional[InterceptContext] = None,
    ) -> Optional[Any]:
        """Fetch tribute messages for a tribute."""
        return await self._request("POST", f"/api/client/{client_id}/messages", json=params or {}, context=context)

    async def get_tributes_count(self, context: Optional[InterceptContext] = None) -> Optional[Any]:
        return await self._request("GET", "/api/tributes/count", context=context)

    @staticmethod
    def _lookup_params(team_index: Optional[int], gallery: bool, extra: bool) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if team_index is not None:
            params["teamGroupIndex"] = team_index
        if gallery:
            params["gallery"] = 1
        if extra:
            params["tribute"] = 1
        return params

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        context: Optional[InterceptContext] = None,
    ) -> Optional[Any]:
        extensions = {CONTEXT_EXTENSION: context} if context is not None else None
        try:
            response = await self._client.request(method, path, params=params, json=json, extensions=extensions)
        except httpx.HTTPError as exc:
            self.logger.error("Tribute API request error", path=path, error=str(exc))
            raise ExternalServiceError(service="tribute_api", message=str(exc), details={"path": path})

        if response.status_code == 200:
            return response.json()

        if response.status_code == 404:
            self.logger.info("Tribute API resource not found", path=path)
            return None

        self.logger.error(
            "Tribute API request failed",
            path=path,
            status_code=response.status_code,
            response=response.text
        )
        raise ExternalServiceError(
            service="tribute_api",
            message=f"Unexpected status {response.status_code}",
            details={"status_code": response.status_code, "body": response.text}
        )

    async def close(self) -> None:
        await self._client.aclose()
