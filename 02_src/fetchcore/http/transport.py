"""Network I/O for queued requests, using httpx."""

from typing import Protocol

import httpx

from ..errors import TransportError
from ..logging_config import get_logger
from ..models import HTTPRequest

logger = get_logger(__name__)


class IHttpTransport(Protocol):
    """Performs one HTTP request."""

    async def send(self, request: HTTPRequest) -> httpx.Response:
        """Send request and return the fully read response."""
        ...

    async def close(self) -> None:
        """Release connections."""
        ...


class HttpTransport:
    """httpx.AsyncClient based transport with per-proxy client pools."""

    def __init__(
        self,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._timeout = timeout
        self._transport = transport
        self._clients: dict[str | None, httpx.AsyncClient] = {}

    def _client(self, proxy: str | None) -> httpx.AsyncClient:
        client = self._clients.get(proxy)
        if client is None:
            # an explicit transport handles every request itself
            client = httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                proxy=None if self._transport is not None else proxy,
                follow_redirects=True,
            )
            self._clients[proxy] = client
        return client

    async def send(self, request: HTTPRequest) -> httpx.Response:
        """Send request and return the fully read response.

        Network failures are raised as TransportError; HTTP error statuses are
        returned as-is for the caller to judge.
        """
        url = request.build_url()
        try:
            return await self._client(request.proxy).request(
                request.method,
                url,
                headers=request.build_headers(),
                content=request.build_content(),
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise TransportError(request.method, url, e) from e

    async def close(self) -> None:
        """Release connections."""
        for client in self._clients.values():
            await client.aclose()
        self._clients.clear()
