"""GeminiClient orchestration: auth, output shape, endpoints and parsing."""

from __future__ import annotations

import base64

from pydantic import BaseModel
import pytest

from gemwire.client import GeminiClient
from gemwire.config import Config
from gemwire.errors import (
    APIError,
    InvalidArgumentError,
    MissingCredentialError,
    ProtocolError,
)
from gemwire.media import Attachment
from gemwire.output import OutputMode
from gemwire.prompt import (
    CodeExecutionResultPart,
    ExecutableCodePart,
    PromptBuilder,
    TextPart,
    Tool,
)
from tests.conftest import GEMINI_MODEL, FakeTransport, RecordingSleep, json_response
from tests.helpers import generate_body, make_client

pytestmark = pytest.mark.unit

BASE = "https://generativelanguage.googleapis.com/v1beta"


class Answer(BaseModel):
    city: str
    population: int


# =============================================================================
# Authentication
# =============================================================================


@pytest.mark.asyncio
async def test_grounded_generate_sends_stored_key_as_query_param(
    transport: FakeTransport,
) -> None:
    """Search grounding with a stored key and no OAuth path uses the key."""
    transport.script = [json_response(generate_body({"text": "Paris"}))]
    client = make_client(transport, stored_key="K")
    prompt = client.prompt().append_text("Capital of France?").set_tool(Tool.GOOGLE_SEARCH)

    result = await client.generate(prompt)

    sent = transport.last
    assert sent.url == f"{BASE}/models/{GEMINI_MODEL}:generateContent"
    assert sent.params == {"key": "K"}
    assert "Authorization" not in sent.headers
    assert sent.json["tools"] == [{"googleSearch": {}}]
    assert sent.json["generationConfig"] == {"responseMimeType": "text/plain"}
    assert result.text == "Paris"
    assert result.mode is OutputMode.GROUNDED_TEXT


@pytest.mark.asyncio
async def test_grounded_generate_without_key_makes_no_http_call(
    transport: FakeTransport,
) -> None:
    client = make_client(transport, token="oauth-token")
    prompt = PromptBuilder().append_text("News?").set_tool(Tool.GOOGLE_SEARCH)

    with pytest.raises(MissingCredentialError):
        await client.generate(prompt)

    assert transport.calls == 0


@pytest.mark.asyncio
async def test_oauth_token_is_sent_as_bearer_header(transport: FakeTransport) -> None:
    transport.script = [json_response(generate_body({"text": "hi"}))]
    client = make_client(transport, token="tok", stored_key="unused")

    await client.generate("Hello")

    assert transport.last.headers == {"Authorization": "Bearer tok"}
    assert transport.last.params == {}


@pytest.mark.asyncio
async def test_user_key_is_preferred_over_oauth(transport: FakeTransport) -> None:
    client = make_client(transport, api_key="user-key", token="tok")
    transport.script = [json_response(generate_body({"text": "hi"}))]

    await client.generate("Hello")

    assert transport.last.params == {"key": "user-key"}
    assert "Authorization" not in transport.last.headers


@pytest.mark.asyncio
async def test_no_credentials_fails_before_http(transport: FakeTransport) -> None:
    with pytest.raises(MissingCredentialError):
        await make_client(transport).generate("Hello")
    assert transport.calls == 0


# =============================================================================
# Generation
# =============================================================================


@pytest.mark.asyncio
async def test_json_output_is_validated_into_schema_model(transport: FakeTransport) -> None:
    transport.script = [
        json_response(
            generate_body(
                {"text": '{"city": "Lyon", "population": 522000}'},
                usage={"promptTokenCount": 12, "candidatesTokenCount": 9},
            )
        )
    ]
    client = make_client(transport, api_key="k")
    prompt = client.prompt().append_text("Pick a city").enable_json_output(schema=Answer)

    result = await client.generate(prompt)

    generation = transport.last.json["generationConfig"]
    assert generation["responseMimeType"] == "application/json"
    assert generation["responseJsonSchema"]["required"] == ["city", "population"]
    assert result.structured == Answer(city="Lyon", population=522000)
    assert result.usage == {"input_tokens": 12, "output_tokens": 9}


@pytest.mark.asyncio
async def test_json_output_that_fails_validation_leaves_structured_empty(
    transport: FakeTransport,
) -> None:
    transport.script = [json_response(generate_body({"text": '{"city": 1}'}))]
    client = make_client(transport, api_key="k")

    result = await client.generate(
        PromptBuilder().append_text("x").enable_json_output(schema=Answer)
    )

    assert result.structured is None
    assert result.text == '{"city": 1}'


@pytest.mark.asyncio
async def test_image_response_requests_modalities(transport: FakeTransport) -> None:
    png = base64.b64encode(b"\x89PNG").decode()
    transport.script = [
        json_response(
            generate_body(
                {"text": "Here you go"},
                {"inlineData": {"mimeType": "image/png", "data": png}},
            )
        )
    ]
    client = make_client(transport, api_key="k")

    result = await client.generate(
        PromptBuilder().append_text("Draw a cat").enable_image_response()
    )

    assert transport.last.json["generationConfig"] == {
        "responseModalities": ["TEXT", "IMAGE"]
    }
    assert [img.mime_type for img in result.images] == ["image/png"]


@pytest.mark.asyncio
async def test_code_execution_parts_are_typed(transport: FakeTransport) -> None:
    transport.script = [
        json_response(
            generate_body(
                {"text": "Let me compute.", "thought": True},
                {"executableCode": {"language": "PYTHON", "code": "print(2+2)"}},
                {"codeExecutionResult": {"outcome": "OUTCOME_OK", "output": "4\n"}},
                {"text": "The answer is 4."},
            )
        )
    ]
    client = make_client(transport, api_key="k")

    result = await client.generate(
        PromptBuilder().append_text("2+2?").set_tool(Tool.CODE_EXECUTION)
    )

    assert result.text == "The answer is 4."
    assert result.thoughts == "Let me compute."
    assert result.executable_code == [ExecutableCodePart("PYTHON", "print(2+2)")]
    assert result.code_results == [CodeExecutionResultPart("OUTCOME_OK", "4\n")]


@pytest.mark.asyncio
async def test_blocked_prompt_raises_protocol_error(transport: FakeTransport) -> None:
    transport.script = [json_response({"promptFeedback": {"blockReason": "SAFETY"}})]

    with pytest.raises(ProtocolError, match="SAFETY"):
        await make_client(transport, api_key="k").generate("x")


@pytest.mark.asyncio
async def test_server_errors_retry_within_config_budget(transport: FakeTransport) -> None:
    sleep = RecordingSleep()
    transport.script = [
        json_response(status=500),
        json_response(generate_body({"text": "ok"})),
    ]
    client = make_client(transport, api_key="k", attempts=2, sleep=sleep)

    result = await client.generate("x")

    assert result.text == "ok"
    assert sleep.delays == [0.5]


@pytest.mark.asyncio
async def test_model_override_changes_endpoint(transport: FakeTransport) -> None:
    transport.script = [json_response(generate_body({"text": "ok"}))]

    await make_client(transport, api_key="k").generate("x", model="models/gemini-2.5-pro")

    assert transport.last.url == f"{BASE}/models/gemini-2.5-pro:generateContent"


@pytest.mark.asyncio
@pytest.mark.parametrize("prompt", ["", PromptBuilder(), PromptBuilder().build()])
async def test_empty_prompt_is_rejected(transport: FakeTransport, prompt: object) -> None:
    with pytest.raises(InvalidArgumentError, match="no content"):
        await make_client(transport, api_key="k").generate(prompt)  # type: ignore[arg-type]
    assert transport.calls == 0


@pytest.mark.asyncio
async def test_chat_continuation_replays_model_turn(transport: FakeTransport) -> None:
    transport.script = [
        json_response(generate_body({"text": "Paris"})),
        json_response(generate_body({"text": "About 2 million"})),
    ]
    client = make_client(transport, api_key="k")
    chat = client.prompt().append_text("Capital of France?")

    first = await client.generate(chat)
    chat.record_response(first).append_text("Population?")
    await client.generate(chat)

    contents = transport.last.json["contents"]
    assert [c["role"] for c in contents] == ["user", "model", "user"]
    assert contents[1]["parts"] == [{"text": "Paris"}]
    assert chat.turns[-1].parts == [TextPart("Population?")]


# =============================================================================
# Other endpoints
# =============================================================================


@pytest.mark.asyncio
async def test_count_tokens_wraps_generate_request(transport: FakeTransport) -> None:
    transport.script = [json_response({"totalTokens": 42})]

    total = await make_client(transport, api_key="k").count_tokens("Hello")

    assert total == 42
    assert transport.last.url == f"{BASE}/models/{GEMINI_MODEL}:countTokens"
    request = transport.last.json["generateContentRequest"]
    assert request["model"] == f"models/{GEMINI_MODEL}"
    assert request["contents"] == [{"role": "user", "parts": [{"text": "Hello"}]}]


@pytest.mark.asyncio
async def test_count_tokens_requires_total(transport: FakeTransport) -> None:
    transport.script = [json_response({})]
    with pytest.raises(ProtocolError, match="totalTokens"):
        await make_client(transport, api_key="k").count_tokens("Hello")


@pytest.mark.asyncio
async def test_embed_forces_stored_key_even_with_oauth(transport: FakeTransport) -> None:
    transport.script = [json_response({"embedding": {"values": [0.5, 1, -2.25]}})]
    client = make_client(transport, stored_key="K", token="tok")

    vector = await client.embed("hello")

    assert vector == [0.5, 1.0, -2.25]
    assert transport.last.url == f"{BASE}/models/text-embedding-004:embedContent"
    assert transport.last.params == {"key": "K"}
    assert transport.last.json == {"content": {"parts": [{"text": "hello"}]}}


@pytest.mark.asyncio
async def test_embed_without_key_fails_before_http(transport: FakeTransport) -> None:
    with pytest.raises(MissingCredentialError):
        await make_client(transport, token="tok").embed("hello")
    assert transport.calls == 0


@pytest.mark.asyncio
async def test_generate_images_decodes_predictions(transport: FakeTransport) -> None:
    transport.script = [
        json_response(
            {
                "predictions": [
                    {"bytesBase64Encoded": base64.b64encode(b"img-1").decode()},
                    {"raiFilteredReason": "filtered"},
                    {
                        "bytesBase64Encoded": base64.b64encode(b"img-2").decode(),
                        "mimeType": "image/jpeg",
                    },
                ]
            }
        )
    ]

    images = await make_client(transport, api_key="k").generate_images(
        "A lighthouse", sample_count=3, aspect_ratio="16:9"
    )

    assert [(i.data, i.mime_type) for i in images] == [
        (b"img-1", "image/png"),
        (b"img-2", "image/jpeg"),
    ]
    assert transport.last.json == {
        "instances": [{"prompt": "A lighthouse"}],
        "parameters": {"sampleCount": 3, "aspectRatio": "16:9"},
    }


@pytest.mark.asyncio
async def test_generate_images_with_no_images_is_a_protocol_error(
    transport: FakeTransport,
) -> None:
    transport.script = [json_response({"predictions": []})]
    with pytest.raises(ProtocolError, match="no images"):
        await make_client(transport, api_key="k").generate_images("x")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kwargs", [{"sample_count": 0}, {"sample_count": 5}, {"aspect_ratio": "2:1"}]
)
async def test_generate_images_validates_arguments(
    transport: FakeTransport, kwargs: dict[str, object]
) -> None:
    with pytest.raises(InvalidArgumentError):
        await make_client(transport, api_key="k").generate_images("x", **kwargs)  # type: ignore[arg-type]
    assert transport.calls == 0


@pytest.mark.asyncio
async def test_upload_file_then_reference_it(transport: FakeTransport) -> None:
    transport.script = [
        json_response(headers={"X-Goog-Upload-URL": "https://upload/session"}),
        json_response({"file": {"uri": "https://files/v", "mimeType": "video/mp4"}}),
        json_response(generate_body({"text": "A cat video"})),
    ]
    client = make_client(transport, api_key="k")

    descriptor = await client.upload_file(
        Attachment.from_bytes(b"\0" * 16, "video/mp4"), display_name="cat.mp4"
    )
    prompt = client.prompt().append_text("Describe").attach_by_reference(descriptor)
    result = await client.generate(prompt)

    start, finalize, generate = transport.requests
    assert start.url == "https://generativelanguage.googleapis.com/upload/v1beta/files"
    assert start.json == {"file": {"display_name": "cat.mp4"}}
    assert finalize.url == "https://upload/session"
    assert generate.json["contents"][0]["parts"][1] == {
        "fileData": {"mimeType": "video/mp4", "fileUri": "https://files/v"}
    }
    assert result.text == "A cat video"


@pytest.mark.asyncio
async def test_api_errors_surface_with_status(transport: FakeTransport) -> None:
    transport.script = [json_response({"error": {"code": 400}}, status=400)]

    with pytest.raises(APIError) as exc:
        await make_client(transport, api_key="k").generate("x")

    assert exc.value.status_code == 400
    assert exc.value.phase == "generate"


@pytest.mark.asyncio
async def test_client_closes_only_owned_transport(api_key_config: Config) -> None:
    class ClosingTransport(FakeTransport):
        closed = False

        async def aclose(self) -> None:
            self.closed = True

    injected = ClosingTransport()
    async with GeminiClient(api_key_config, transport=injected) as client:
        assert client.config.api_key == "user-key"

    assert injected.closed is False
