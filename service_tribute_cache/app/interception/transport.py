"""
httpx transport that routes upstream API calls through the interceptor.
"""

from typing import Optional

import httpx
from opentelemetry import trace

from shared.logging import get_logger
from .interceptor import CacheInterceptor, InterceptContext, InterceptState


CONTEXT_EXTENSION = "tribute_cache_context"

tracer = trace.get_tracer(__name__)


class CachingTransport(httpx.AsyncBaseTransport):
    """Wraps another transport; cache hits never reach it.

    Callers that resolved an InterceptContext at the start of their own
    request handling pass it per call via
    ``extensions={"tribute_cache_context": context}``.
    """

    def __init__(self, interceptor: CacheInterceptor, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.interceptor = interceptor
        self._transport = transport or httpx.AsyncHTTPTransport()
        self.logger = get_logger("tribute_cache.transport")

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        try:
            body = request.content
        except httpx.RequestNotRead:
            # Streaming bodies cannot be classified
            return await self._transport.handle_async_request(request)

        context = request.extensions.get(CONTEXT_EXTENSION)
        if not isinstance(context, InterceptContext):
            context = None

        with tracer.start_as_current_span("tribute_cache.intercept") as span:
            outcome = await self.interceptor.begin(request.url, request.method, body, context)
            span.set_attribute("tribute_cache.state", outcome.state.value)

            if outcome.state == InterceptState.HIT and outcome.response is not None:
                return httpx.Response(
                    status_code=outcome.response.status,
                    headers=outcome.response.headers,
                    content=outcome.response.body.encode("utf-8"),
                    request=request,
                )

            response = await self._transport.handle_async_request(request)

            capture = outcome.capture
            if capture is None:
                return response

            if response.status_code == 200:
                await response.aread()
                await capture.complete(request.url, response.status_code, response.content)
            else:
                await capture.complete(request.url, response.status_code, None)

            return response

    async def aclose(self) -> None:
        await self._transport.aclose()
