"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration and the HTTP test
doubles. Environment fixtures are autouse.
"""

from __future__ import annotations

from contextlib import suppress
from dataclasses import dataclass, field
import json
import logging
import os
from typing import Any

import pytest

from gemwire.config import Config
from gemwire.errors import NetworkError
from gemwire.transport import HttpRequest, HttpResponse

GEMINI_MODEL = "gemini-2.5-flash"

# =============================================================================
# Test Doubles
# =============================================================================


def json_response(
    body: Any = None, *, status: int = 200, headers: dict[str, str] | None = None
) -> HttpResponse:
    """Build an HttpResponse with a JSON (or empty) body."""
    text = "" if body is None else json.dumps(body)
    return HttpResponse(status_code=status, headers=headers or {}, text=text)


@dataclass
class FakeTransport:
    """Transport test double.

    Returns scripted responses in order and records every request. Scripted
    exceptions are raised instead of returned. When the script runs out it
    answers ``200 {}``.
    """

    script: list[HttpResponse | BaseException] = field(default_factory=list)
    requests: list[HttpRequest] = field(default_factory=list)

    async def send(self, request: HttpRequest) -> HttpResponse:
        self.requests.append(request)
        if not self.script:
            return json_response({})
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    @property
    def calls(self) -> int:
        return len(self.requests)

    @property
    def last(self) -> HttpRequest:
        return self.requests[-1]


@dataclass
class RecordingSleep:
    """Sleep double that records requested delays without waiting."""

    delays: list[float] = field(default_factory=list)

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def network_error() -> NetworkError:
    return NetworkError("POST request failed: ConnectError")


@pytest.fixture
def api_key_config() -> Config:
    """Config with a user-supplied key."""
    return Config(model=GEMINI_MODEL, api_key="user-key")


# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "gemwire.config.load_dotenv", lambda *_args, **_kwargs: False
        )


@pytest.fixture(autouse=True)
def isolate_gemini_env(request, monkeypatch):
    """Clear GEMINI_* env vars so stored-key lookups start empty.

    Opt-out: @pytest.mark.allow_env_pollution
    """
    if request.node.get_closest_marker("allow_env_pollution"):
        return
    for key in list(os.environ.keys()):
        if key.startswith("GEMINI_"):
            monkeypatch.delenv(key, raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

