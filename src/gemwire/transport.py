"""Transport protocol: the injected "perform one HTTP exchange" capability.

The executor owns retries and status handling; a transport only moves bytes.
``HttpxTransport`` is the default implementation. Tests substitute a recording
fake with the same ``send`` signature.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
import logging
from typing import Any, Protocol, runtime_checkable

import httpx

from gemwire.errors import NetworkError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HttpRequest:
    """A fully-resolved HTTP request."""

    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    params: Mapping[str, str] = field(default_factory=dict)
    json: Any = None
    content: bytes | None = None


@dataclass(frozen=True)
class HttpResponse:
    """Status, headers and raw body of a completed exchange.

    Header names are normalized to lower case on construction.
    """

    status_code: int
    headers: Mapping[str, str] = field(default_factory=dict)
    text: str = ""

    def __post_init__(self) -> None:
        """Normalize header names for case-insensitive lookup."""
        normalized = {str(k).lower(): v for k, v in self.headers.items()}
        object.__setattr__(self, "headers", normalized)

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        return self.headers.get(name.lower())


@runtime_checkable
class Transport(Protocol):
    """Minimal transport protocol."""

    async def send(self, request: HttpRequest) -> HttpResponse:
        """Perform one exchange. Raise ``NetworkError`` on transport failure."""
        ...


class HttpxTransport:
    """Transport backed by ``httpx.AsyncClient``."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        timeout_s: float = 120.0,
    ) -> None:
        """Wrap *client*, or create (and own) one with *timeout_s*."""
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_s)

    async def send(self, request: HttpRequest) -> HttpResponse:
        """Send *request* and return the raw response."""
        kwargs: dict[str, Any] = {
            "headers": dict(request.headers),
            "params": dict(request.params) or None,
        }
        if request.content is not None:
            kwargs["content"] = request.content
        elif request.json is not None:
            kwargs["json"] = request.json

        try:
            resp = await self._client.request(request.method, request.url, **kwargs)
        except httpx.RequestError as e:
            # httpx includes the full URL (and so any key) in some messages.
            logger.debug("Transport failure: %s", type(e).__name__)
            raise NetworkError(
                f"{request.method} request failed: {type(e).__name__}",
                hint="Check network connectivity or raise the timeout.",
            ) from e

        return HttpResponse(
            status_code=resp.status_code,
            headers=dict(resp.headers),
            text=resp.text,
        )

    async def aclose(self) -> None:
        """Close the underlying client when this transport created it."""
        if self._owns_client:
            await self._client.aclose()
