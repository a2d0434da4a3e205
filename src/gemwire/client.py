"""Gemini REST client: request orchestration over the retrying executor."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
import logging
from typing import TYPE_CHECKING, Any

from gemwire.auth import AuthPolicyResolver
from gemwire.config import Config, env_key_lookup
from gemwire.errors import InvalidArgumentError, ProtocolError
from gemwire.executor import RequestExecutor, RequestSpec
from gemwire.media import AttachmentCodec
from gemwire.output import resolve_output_format
from gemwire.prompt import PromptBuilder, PromptDocument
from gemwire.result import GeneratedImage, GenerateResult, parse_generate_response
from gemwire.transport import HttpxTransport
from gemwire.uploads import ResumableUpload

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from gemwire.auth import KeyLookup, TokenSource
    from gemwire.media import Attachment
    from gemwire.output import EffectiveGenerationConfig
    from gemwire.transport import Transport
    from gemwire.uploads import FileDescriptor

logger = logging.getLogger(__name__)

PromptInput = PromptBuilder | PromptDocument | str

_ASPECT_RATIOS = frozenset({"1:1", "3:4", "4:3", "9:16", "16:9"})
_MAX_IMAGE_SAMPLES = 4


class GeminiClient:
    """Client for generation, token counting, embeddings, images and uploads.

    Every call is awaited to completion before the next starts; a client is
    meant for a single flow and holds no per-request state.

    Example:
        async with GeminiClient(Config(api_key="...")) as client:
            prompt = client.prompt().append_text("Name three moons of Jupiter.")
            result = await client.generate(prompt)
            print(result.text)
    """

    def __init__(
        self,
        config: Config | None = None,
        *,
        transport: Transport | None = None,
        token_source: TokenSource | None = None,
        key_lookup: KeyLookup | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        codec: AttachmentCodec | None = None,
    ) -> None:
        """Create a client.

        Args:
            config: Client configuration. Defaults to ``Config()``.
            transport: HTTP capability; an owned ``HttpxTransport`` when None.
            token_source: Async callable returning an OAuth bearer token.
            key_lookup: Stored-key lookup; reads ``config.api_key_env`` when None.
            sleep: Wait function between retry attempts.
            codec: Media codec shared by prompts and uploads.
        """
        self.config = config or Config()
        self._owns_transport = transport is None
        self._transport: Transport = transport or HttpxTransport(
            timeout_s=self.config.timeout_s
        )
        self._executor = RequestExecutor(
            self._transport, policy=self.config.retry, sleep=sleep
        )
        self._codec = codec or AttachmentCodec()
        self._auth = AuthPolicyResolver(
            token_source=token_source,
            key_lookup=key_lookup or env_key_lookup(self.config.api_key_env),
        )

    async def __aenter__(self) -> GeminiClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the transport if this client created it."""
        if self._owns_transport and isinstance(self._transport, HttpxTransport):
            await self._transport.aclose()

    def prompt(self) -> PromptBuilder:
        """Start a new prompt sharing this client's codec."""
        return PromptBuilder(codec=self._codec)

    # -- Generation ----------------------------------------------------------

    async def generate(
        self, prompt: PromptInput, *, model: str | None = None
    ) -> GenerateResult:
        """Send a prompt to ``generateContent``.

        Output format and authentication are resolved fresh for this call;
        credential failures surface before any HTTP request.

        Raises:
            InvalidArgumentError: The prompt has no content.
            MissingCredentialError: No usable authentication path.
            APIError: Non-2xx after the retry budget.
            ProtocolError: The 2xx body broke the response contract.
        """
        document = self._document(prompt)
        effective = self._effective_output(document)
        decision = await self._auth.resolve(document.tools, self.config.api_key)
        logger.debug(
            "generate model=%s output=%s auth=%s",
            model or self.config.model,
            effective.mode.value,
            decision.mode.value,
        )
        spec = decision.apply(
            RequestSpec(json=document.to_request_body(effective), phase="generate")
        )
        url = self.config.model_url(model or self.config.model, "generateContent")
        payload = await self._executor.execute(url, spec)
        return parse_generate_response(
            payload,
            effective=effective,
            schema_model=document.generation_config.response_schema_model(),
        )

    async def count_tokens(
        self, prompt: PromptInput, *, model: str | None = None
    ) -> int:
        """Count the tokens *prompt* would consume."""
        document = self._document(prompt)
        effective = self._effective_output(document)
        decision = await self._auth.resolve(document.tools, self.config.api_key)
        target = model or self.config.model
        body = document.to_request_body(effective)
        body["model"] = target if target.startswith("models/") else f"models/{target}"
        spec = decision.apply(
            RequestSpec(json={"generateContentRequest": body}, phase="count tokens")
        )
        payload = await self._executor.execute(
            self.config.model_url(target, "countTokens"), spec
        )
        total = payload.get("totalTokens")
        if isinstance(total, bool) or not isinstance(total, int):
            raise ProtocolError(
                "countTokens response is missing totalTokens", phase="count tokens"
            )
        return total

    # -- Embeddings and images (API key only) --------------------------------

    async def embed(self, text: str, *, model: str | None = None) -> list[float]:
        """Return the embedding vector for *text*."""
        decision = self._auth.resolve_api_key(self.config.api_key)
        target = model or self.config.embedding_model
        spec = decision.apply(
            RequestSpec(json={"content": {"parts": [{"text": text}]}}, phase="embed")
        )
        payload = await self._executor.execute(
            self.config.model_url(target, "embedContent"), spec
        )
        embedding = payload.get("embedding")
        values = embedding.get("values") if isinstance(embedding, Mapping) else None
        if not isinstance(values, list) or not all(
            isinstance(v, (int, float)) and not isinstance(v, bool) for v in values
        ):
            raise ProtocolError(
                "embedContent response is missing embedding.values", phase="embed"
            )
        return [float(v) for v in values]

    async def generate_images(
        self,
        prompt: str,
        *,
        sample_count: int = 1,
        aspect_ratio: str = "1:1",
        model: str | None = None,
    ) -> list[GeneratedImage]:
        """Generate images through the ``predict`` endpoint."""
        if not 1 <= sample_count <= _MAX_IMAGE_SAMPLES:
            raise InvalidArgumentError(
                f"sample_count must be between 1 and {_MAX_IMAGE_SAMPLES}, "
                f"got {sample_count}"
            )
        if aspect_ratio not in _ASPECT_RATIOS:
            raise InvalidArgumentError(
                f"Unsupported aspect_ratio {aspect_ratio!r}",
                hint=f"Use one of: {', '.join(sorted(_ASPECT_RATIOS))}",
            )
        decision = self._auth.resolve_api_key(self.config.api_key)
        target = model or self.config.image_model
        body: dict[str, Any] = {
            "instances": [{"prompt": prompt}],
            "parameters": {"sampleCount": sample_count, "aspectRatio": aspect_ratio},
        }
        spec = decision.apply(RequestSpec(json=body, phase="predict"))
        payload = await self._executor.execute(
            self.config.model_url(target, "predict"), spec
        )

        images: list[GeneratedImage] = []
        predictions = payload.get("predictions")
        for item in predictions if isinstance(predictions, list) else []:
            if not isinstance(item, Mapping):
                continue
            encoded = item.get("bytesBase64Encoded")
            if not isinstance(encoded, str) or not encoded:
                continue
            try:
                data = self._codec.decode(encoded)
            except InvalidArgumentError as e:
                raise ProtocolError(
                    f"predict returned undecodable image data: {e}", phase="predict"
                ) from e
            images.append(
                GeneratedImage(
                    data=data, mime_type=str(item.get("mimeType") or "image/png")
                )
            )
        if not images:
            raise ProtocolError(
                "predict response contains no images",
                hint="All samples may have been filtered; try rephrasing the prompt.",
                phase="predict",
            )
        return images

    # -- Uploads -------------------------------------------------------------

    async def upload_file(
        self, attachment: Attachment, *, display_name: str | None = None
    ) -> FileDescriptor:
        """Register a large attachment and return its descriptor.

        Attach the result to a prompt with ``PromptBuilder.attach_by_reference``.
        """
        decision = self._auth.resolve_api_key(self.config.api_key)
        upload = ResumableUpload(
            self._executor,
            endpoint=self.config.upload_url,
            auth=decision,
            codec=self._codec,
        )
        return await upload.upload(attachment, display_name=display_name)

    # -- Helpers -------------------------------------------------------------

    @staticmethod
    def _document(prompt: PromptInput) -> PromptDocument:
        if isinstance(prompt, str):
            document = PromptBuilder().append_text(prompt).build()
        elif isinstance(prompt, PromptBuilder):
            document = prompt.build()
        elif isinstance(prompt, PromptDocument):
            document = prompt
        else:
            raise InvalidArgumentError(
                f"Expected PromptBuilder, PromptDocument or str, got "
                f"{type(prompt).__name__}"
            )
        if document.is_empty:
            raise InvalidArgumentError(
                "Prompt has no content",
                hint="Call append_text() or attach a file before generating.",
            )
        return document

    @staticmethod
    def _effective_output(document: PromptDocument) -> EffectiveGenerationConfig:
        config = document.generation_config
        return resolve_output_format(
            document.tools,
            json_output=config.json_output,
            image_response=config.image_response,
            modalities=config.response_modalities,
            response_schema=config.response_schema_json(),
        )
