"""Async HTTP client for the agent backend endpoints."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import httpx

from agentstream.config import ClientConfig
from agentstream.schemas import ClearRequest, RouteRequest, StreamRequest

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """Raised when a request is rejected or the connection fails."""

    pass


class AgentStreamClient:
    """Thin wrapper over httpx.AsyncClient for stream, route and clear requests.

    Use as an async context manager, or call aclose() when done.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            config: Connection settings (defaults to ClientConfig())
            transport: Optional httpx transport, mainly for tests
        """
        self.config = config or ClientConfig()
        self._client = httpx.AsyncClient(
            base_url=self.config.base_url,
            headers=self.config.headers,
            timeout=self.config.request_timeout,
            transport=transport,
        )

    async def __aenter__(self) -> AgentStreamClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @asynccontextmanager
    async def stream(self, request: StreamRequest) -> AsyncIterator[AsyncIterator[bytes]]:
        """Open a stream-request and yield its body as a byte iterator.

        Raises:
            TransportError: If the request fails or returns a non-2xx status
        """
        # Stream reads are bounded by the per-agent timeout, not the request timeout
        timeout = httpx.Timeout(self.config.request_timeout, read=None)
        try:
            async with self._client.stream(
                "POST",
                self.config.stream_path,
                json=request.to_json(),
                timeout=timeout,
            ) as response:
                if response.is_error:
                    raise TransportError(f"Stream request failed: HTTP {response.status_code}")
                yield _iter_body(response)
        except httpx.HTTPError as e:
            logger.error(f"Stream request failed: {e}")
            raise TransportError(f"Stream request failed: {e}") from e

    async def route(self, request: RouteRequest) -> dict[str, Any]:
        """Send a route-request and return the decoded JSON body.

        Raises:
            TransportError: If the request fails, returns a non-2xx status, or
                the body is not JSON
        """
        response = await self._post(self.config.route_path, request.to_json())
        try:
            return response.json()
        except ValueError as e:
            raise TransportError("Route response is not valid JSON") from e

    async def clear(self, session_id: str) -> None:
        """Ask the backend to drop its state for a session."""
        await self._post(self.config.clear_path, ClearRequest(session_id=session_id).to_json())

    async def _post(self, path: str, body: dict[str, Any]) -> httpx.Response:
        try:
            response = await self._client.post(path, json=body)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            logger.error(f"POST {path} returned {e.response.status_code}")
            raise TransportError(f"API error: {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error(f"POST {path} failed: {e}")
            raise TransportError(f"Request to {path} failed: {e}") from e


async def _iter_body(response: httpx.Response) -> AsyncIterator[bytes]:
    try:
        async for chunk in response.aiter_bytes():
            yield chunk
    except httpx.HTTPError as e:
        raise TransportError(f"Stream interrupted: {e}") from e
