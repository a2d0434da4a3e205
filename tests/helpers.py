"""Test helpers: canned Gemini response bodies and client construction.

Keep this file tiny; it exists so test modules do not each hand-roll the same
wire shapes.
"""

from __future__ import annotations

from typing import Any

from gemwire.client import GeminiClient
from gemwire.config import Config
from gemwire.retry import RetryPolicy
from tests.conftest import GEMINI_MODEL, FakeTransport, RecordingSleep


def generate_body(
    *parts: dict[str, Any],
    finish_reason: str = "STOP",
    usage: dict[str, int] | None = None,
) -> dict[str, Any]:
    """A ``generateContent`` response with one candidate."""
    body: dict[str, Any] = {
        "candidates": [
            {
                "content": {"role": "model", "parts": list(parts)},
                "finishReason": finish_reason,
            }
        ]
    }
    if usage is not None:
        body["usageMetadata"] = usage
    return body


def make_client(
    transport: FakeTransport,
    *,
    api_key: str | None = None,
    stored_key: str | None = None,
    token: str | None = None,
    attempts: int = 1,
    sleep: RecordingSleep | None = None,
) -> GeminiClient:
    """Build a client over *transport* with explicit credential sources."""

    async def token_source() -> str | None:
        return token

    return GeminiClient(
        Config(
            model=GEMINI_MODEL,
            api_key=api_key,
            retry=RetryPolicy(max_attempts=attempts, delay_s=0.5),
        ),
        transport=transport,
        token_source=token_source if token is not None else None,
        key_lookup=lambda: stored_key,
        sleep=sleep or RecordingSleep(),
    )
