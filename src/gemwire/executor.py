"""Retrying request executor: one logical HTTP call with bounded retries."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
import json
import logging
from typing import TYPE_CHECKING, Any

from gemwire._http import is_success
from gemwire.errors import APIError, ResponseParseError
from gemwire.retry import RetryPolicy, retry_async, should_retry_request
from gemwire.transport import HttpRequest, HttpResponse

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from gemwire.transport import Transport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestSpec:
    """Method, headers, query params and optional payload for one call.

    ``json`` and ``content`` are mutually exclusive; ``content`` carries raw
    bytes (uploads).
    """

    method: str = "POST"
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, str] = field(default_factory=dict)
    json: Any = None
    content: bytes | None = None
    #: Label used in error messages and logs (e.g. "generate", "upload").
    phase: str | None = None

    def with_headers(self, **headers: str) -> RequestSpec:
        """Return a copy with *headers* merged in."""
        return replace(self, headers={**self.headers, **headers})

    def with_params(self, **params: str) -> RequestSpec:
        """Return a copy with query *params* merged in."""
        return replace(self, params={**self.params, **params})


def parse_json_body(resp: HttpResponse, *, phase: str | None = None) -> dict[str, Any]:
    """Parse a successful response body.

    Empty bodies yield ``{}``. Invalid JSON is a contract violation and raises
    ``ResponseParseError``.
    """
    if not resp.text or not resp.text.strip():
        return {}
    try:
        data = json.loads(resp.text)
    except json.JSONDecodeError as e:
        raise ResponseParseError(
            f"Response body is not valid JSON: {e.msg} at position {e.pos}",
            body=resp.text,
            phase=phase,
        ) from e
    if not isinstance(data, dict):
        raise ResponseParseError(
            f"Expected a JSON object, got {type(data).__name__}",
            body=resp.text,
            phase=phase,
        )
    return data


class RequestExecutor:
    """Send requests through a transport with a bounded retry budget.

    A 2xx response is success. Anything else raises ``APIError`` and counts as
    a failed attempt; after the last attempt the most recent error propagates.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Create an executor over *transport*."""
        self.transport = transport
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def send(
        self,
        url: str,
        spec: RequestSpec,
        *,
        policy: RetryPolicy | None = None,
        should_retry: Callable[[BaseException], bool] = should_retry_request,
    ) -> HttpResponse:
        """Send *spec* to *url*, returning the first 2xx response."""
        request = HttpRequest(
            method=spec.method,
            url=url,
            headers=spec.headers,
            params=spec.params,
            json=spec.json,
            content=spec.content,
        )

        async def _attempt() -> HttpResponse:
            logger.debug("%s %s phase=%s", spec.method, url, spec.phase or "-")
            resp = await self.transport.send(request)
            if not is_success(resp.status_code):
                raise APIError.from_status(resp.status_code, resp.text, phase=spec.phase)
            return resp

        return await retry_async(
            _attempt,
            policy=policy or self.policy,
            should_retry=should_retry,
            sleep=self._sleep,
        )

    async def execute(
        self,
        url: str,
        spec: RequestSpec,
        *,
        policy: RetryPolicy | None = None,
    ) -> dict[str, Any]:
        """Send *spec* and return the parsed JSON body.

        Parse failures happen after the retry loop and are never retried.
        """
        resp = await self.send(url, spec, policy=policy)
        return parse_json_body(resp, phase=spec.phase)
