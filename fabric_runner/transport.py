from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Protocol, runtime_checkable

import httpx
from loguru import logger


class TransportError(Exception):
    """Base class for failures reaching the queue API."""


class TransportConnectionError(TransportError, ConnectionError):
    """The request never produced a response (DNS, connect, reset, read timeout)."""


class TransportResponseError(TransportError):
    def __init__(self, status_code: int, reason: str, body: str = "") -> None:
        self.status_code = status_code
        self.reason = reason
        self.body = body
        detail = f"{status_code} {reason}".strip()
        if body:
            detail = f"{detail}. {body[:500]}"
        super().__init__(detail)


class Transport(Protocol):
    async def post(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        """POST a JSON body and return the decoded JSON response."""

    async def get(self, url: str) -> dict[str, Any]:
        """GET a URL and return the decoded JSON response."""

    async def put(self, url: str) -> dict[str, Any]:
        """PUT with an empty body and return the decoded JSON response."""


@runtime_checkable
class StreamingTransport(Protocol):
    def open_stream(self, url: str) -> Any:
        """Async context manager yielding an async iterator of raw body chunks."""


class FalTransport:
    """Authenticated JSON transport for the fal.ai queue API.

    Sends ``Authorization: Key <api_key>`` on every request. Connection-level
    failures surface as TransportConnectionError, non-2xx responses as
    TransportResponseError.
    """

    def __init__(
        self,
        api_key: str,
        timeout: httpx.Timeout | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        self.api_key = api_key
        self.timeout = timeout or httpx.Timeout(connect=5.0, read=30.0, write=10.0, pool=5.0)
        self._client = client

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Key {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, url: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        client = await self._ensure_client()
        try:
            response = await client.request(method, url, json=payload, headers=self._headers())
        except httpx.TransportError as exc:
            raise TransportConnectionError(f"{method} {url} failed: {exc!r}") from exc

        if response.is_error:
            raise TransportResponseError(response.status_code, response.reason_phrase, response.text)

        try:
            data = response.json()
        except ValueError as exc:
            raise TransportResponseError(response.status_code, "invalid JSON body", response.text) from exc
        if not isinstance(data, dict):
            raise TransportResponseError(response.status_code, "expected a JSON object", response.text)
        return data

    async def post(self, url: str, payload: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", url, payload)

    async def get(self, url: str) -> dict[str, Any]:
        return await self._request("GET", url)

    async def put(self, url: str) -> dict[str, Any]:
        return await self._request("PUT", url)

    @asynccontextmanager
    async def open_stream(self, url: str) -> AsyncIterator[AsyncIterator[bytes]]:
        client = await self._ensure_client()
        # the await deadline governs streams, not the read timeout
        timeout = httpx.Timeout(self.timeout.connect or 5.0, read=None)
        try:
            async with client.stream("GET", url, headers=self._headers(), timeout=timeout) as response:
                if response.is_error:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise TransportResponseError(response.status_code, response.reason_phrase, body)
                logger.debug("opened status stream", url=url)
                yield response.aiter_bytes()
        except httpx.TransportError as exc:
            raise TransportConnectionError(f"GET {url} stream failed: {exc!r}") from exc

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
