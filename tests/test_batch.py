from __future__ import annotations

import logging

import pytest

from gemwire.batch import generate_many
from gemwire.errors import APIError, InvalidArgumentError
from tests.conftest import FakeTransport, json_response
from tests.helpers import generate_body, make_client

pytestmark = pytest.mark.unit


@pytest.mark.asyncio
async def test_failures_are_recorded_per_item(
    transport: FakeTransport, caplog: pytest.LogCaptureFixture
) -> None:
    transport.script = [
        json_response(generate_body({"text": "one"})),
        json_response({"error": "nope"}, status=400),
        json_response(generate_body({"text": "three"})),
    ]
    client = make_client(transport, api_key="k")

    with caplog.at_level(logging.WARNING, logger="gemwire.batch"):
        outcomes = await generate_many(client, ["a", "b", "", "c"])

    assert [o.index for o in outcomes] == [0, 1, 2, 3]
    assert [o.ok for o in outcomes] == [True, False, False, True]
    assert outcomes[0].message == "one"
    assert isinstance(outcomes[1].error, APIError)
    assert isinstance(outcomes[2].error, InvalidArgumentError)
    assert outcomes[3].message == "three"
    assert "Batch item 1 failed" in caplog.text
    # The empty prompt never reaches the transport.
    assert transport.calls == 3


@pytest.mark.asyncio
async def test_unexpected_exceptions_propagate(transport: FakeTransport) -> None:
    transport.script = [RuntimeError("bug")]

    with pytest.raises(RuntimeError):
        await generate_many(make_client(transport, api_key="k"), ["a", "b"])


@pytest.mark.asyncio
async def test_model_override_applies_to_every_item(transport: FakeTransport) -> None:
    client = make_client(transport, api_key="k")
    transport.script = [
        json_response(generate_body({"text": "x"})),
        json_response(generate_body({"text": "y"})),
    ]

    await generate_many(client, ["a", "b"], model="gemini-2.5-pro")

    assert all(":generateContent" in r.url and "gemini-2.5-pro" in r.url for r in transport.requests)
