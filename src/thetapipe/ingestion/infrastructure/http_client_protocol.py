# SPDX-License-Identifier: Apache-2.0
"""Async HTTP transport seam used by the paginated fetcher."""

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol, runtime_checkable

import httpx


@runtime_checkable
class HttpResponse(Protocol):
    """The parts of a response the fetcher reads."""

    status_code: int
    headers: Dict[str, str]
    text: str

    def json(self) -> Any: ...


@runtime_checkable
class AsyncHttpClientProtocol(Protocol):
    """Anything that can issue an async GET against the vendor terminal.

    Tests pass an in-memory fake; production uses :class:`AsyncHttpxClientAdapter`.
    """

    async def get(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> HttpResponse: ...


class HttpxResponseAdapter:
    """Read-only view of an ``httpx.Response``."""

    def __init__(self, response: httpx.Response):
        self._response = response

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def headers(self) -> Dict[str, str]:
        return dict(self._response.headers)

    @property
    def text(self) -> str:
        return self._response.text

    def json(self) -> Any:
        return self._response.json()


class AsyncHttpxClientAdapter:
    """``httpx.AsyncClient`` behind :class:`AsyncHttpClientProtocol`.

    Without an injected client one is opened lazily, inside the event loop
    that first sends a request, and closed again by :meth:`aclose`.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._client = client
        self._owns_client = client is None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def get(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> HttpResponse:
        response = await self._ensure_client().get(
            url, params=params, headers=headers, timeout=timeout
        )
        return HttpxResponseAdapter(response)

    async def aclose(self) -> None:
        if not self._owns_client:
            return
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def get_default_async_http_client() -> AsyncHttpClientProtocol:
    return AsyncHttpxClientAdapter()


__all__ = [
    "HttpResponse",
    "AsyncHttpClientProtocol",
    "HttpxResponseAdapter",
    "AsyncHttpxClientAdapter",
    "get_default_async_http_client",
]
