"""Prompt documents: parts, turns, tools, generation settings, and the builder.

``PromptBuilder`` is the mutable, chainable side; ``PromptDocument`` is the
immutable snapshot a client serializes for one request. Output-shape flags are
stored here but only turned into wire fields by ``gemwire.output`` at request
time.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
import logging
import math
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from gemwire.errors import InvalidArgumentError, InvalidFileDescriptorError
from gemwire.media import (
    INLINE_LIMIT_BYTES,
    Attachment,
    AttachmentCodec,
    normalize_mime_type,
)

if TYPE_CHECKING:
    from gemwire.output import EffectiveGenerationConfig
    from gemwire.result import GenerateResult

logger = logging.getLogger(__name__)

USER_ROLE = "user"
MODEL_ROLE = "model"

ResponseSchemaInput = type[BaseModel] | dict[str, Any]


class Tool(str, Enum):
    """Built-in tools. Presence activates the tool; there is no payload."""

    GOOGLE_SEARCH = "googleSearch"
    URL_CONTEXT = "urlContext"
    CODE_EXECUTION = "codeExecution"

    @classmethod
    def parse(cls, value: Tool | str) -> Tool:
        """Accept a Tool, its wire value, or its member name."""
        if isinstance(value, Tool):
            return value
        try:
            return cls(value)
        except ValueError:
            pass
        try:
            return cls[str(value).upper()]
        except KeyError:
            valid = ", ".join(t.value for t in cls)
            raise InvalidArgumentError(
                f"Unknown tool: {value!r}", hint=f"Valid tools: {valid}"
            ) from None


GROUNDING_TOOLS: frozenset[Tool] = frozenset({Tool.GOOGLE_SEARCH, Tool.URL_CONTEXT})


# =============================================================================
# Parts
# =============================================================================


@dataclass(frozen=True)
class TextPart:
    text: str

    def to_wire(self) -> dict[str, Any]:
        return {"text": self.text}


@dataclass(frozen=True)
class InlineDataPart:
    """Base64 payload sent inside the request. Small files only."""

    mime_type: str
    data: str

    def to_wire(self) -> dict[str, Any]:
        return {"inlineData": {"mimeType": self.mime_type, "data": self.data}}


@dataclass(frozen=True)
class FileDataPart:
    """Reference to a file registered through the upload protocol."""

    mime_type: str
    uri: str

    def to_wire(self) -> dict[str, Any]:
        return {"fileData": {"mimeType": self.mime_type, "fileUri": self.uri}}


@dataclass(frozen=True)
class ExecutableCodePart:
    """Code the model wrote for the code-execution tool (response only)."""

    language: str
    code: str

    def to_wire(self) -> dict[str, Any]:
        return {"executableCode": {"language": self.language, "code": self.code}}


@dataclass(frozen=True)
class CodeExecutionResultPart:
    """Outcome of running an ``ExecutableCodePart`` (response only)."""

    outcome: str
    output: str

    def to_wire(self) -> dict[str, Any]:
        return {"codeExecutionResult": {"outcome": self.outcome, "output": self.output}}


@dataclass(frozen=True)
class ThoughtPart:
    """Thinking summary text (response only)."""

    text: str

    def to_wire(self) -> dict[str, Any]:
        return {"text": self.text, "thought": True}


Part = (
    TextPart
    | InlineDataPart
    | FileDataPart
    | ExecutableCodePart
    | CodeExecutionResultPart
    | ThoughtPart
)


def part_from_wire(raw: Mapping[str, Any]) -> Part | None:
    """Map one wire part to its variant; unknown shapes return ``None``."""
    if raw.get("thought") is True and isinstance(raw.get("text"), str):
        return ThoughtPart(text=raw["text"])
    if isinstance(raw.get("text"), str):
        return TextPart(text=raw["text"])
    inline = raw.get("inlineData")
    if isinstance(inline, Mapping):
        return InlineDataPart(
            mime_type=str(inline.get("mimeType", "")), data=str(inline.get("data", ""))
        )
    file_data = raw.get("fileData")
    if isinstance(file_data, Mapping):
        return FileDataPart(
            mime_type=str(file_data.get("mimeType", "")),
            uri=str(file_data.get("fileUri", "")),
        )
    code = raw.get("executableCode")
    if isinstance(code, Mapping):
        return ExecutableCodePart(
            language=str(code.get("language", "")), code=str(code.get("code", ""))
        )
    outcome = raw.get("codeExecutionResult")
    if isinstance(outcome, Mapping):
        return CodeExecutionResultPart(
            outcome=str(outcome.get("outcome", "")),
            output=str(outcome.get("output", "")),
        )
    return None


# =============================================================================
# Document
# =============================================================================


@dataclass
class Turn:
    """One message in the conversation."""

    role: str
    parts: list[Part] = field(default_factory=list)

    def to_wire(self) -> dict[str, Any]:
        return {"role": self.role, "parts": [p.to_wire() for p in self.parts]}


@dataclass
class GenerationConfig:
    """Tuning parameters plus the output-shape flags.

    ``json_output`` and ``image_response`` are never both True; the builder
    enforces that on every write.
    """

    temperature: float | None = None
    top_k: int | None = None
    top_p: float | None = None
    max_output_tokens: int | None = None
    thinking_budget: int | float | None = None
    include_thoughts: bool = False
    json_output: bool = False
    response_schema: ResponseSchemaInput | None = None
    image_response: bool = False
    response_modalities: tuple[str, ...] | None = None

    def response_schema_json(self) -> dict[str, Any] | None:
        """Return JSON Schema for the API."""
        schema = self.response_schema
        if schema is None:
            return None
        if isinstance(schema, dict):
            return schema
        return schema.model_json_schema()

    def response_schema_model(self) -> type[BaseModel] | None:
        """Return the pydantic class when one was provided."""
        schema = self.response_schema
        if isinstance(schema, type) and issubclass(schema, BaseModel):
            return schema
        return None

    def tuning_to_wire(self) -> dict[str, Any]:
        """Serialize the numeric and thinking settings (not output shape)."""
        out: dict[str, Any] = {}
        if self.temperature is not None:
            out["temperature"] = self.temperature
        if self.top_k is not None:
            out["topK"] = self.top_k
        if self.top_p is not None:
            out["topP"] = self.top_p
        if self.max_output_tokens is not None:
            out["maxOutputTokens"] = self.max_output_tokens
        thinking: dict[str, Any] = {}
        if self.thinking_budget is not None:
            thinking["thinkingBudget"] = self.thinking_budget
        if self.include_thoughts:
            thinking["includeThoughts"] = True
        if thinking:
            out["thinkingConfig"] = thinking
        return out


@dataclass(frozen=True)
class PromptDocument:
    """Immutable snapshot of the conversation state for one request."""

    turns: tuple[Turn, ...] = ()
    system_instruction: str | None = None
    tools: frozenset[Tool] = frozenset()
    generation_config: GenerationConfig = field(default_factory=GenerationConfig)

    @property
    def is_empty(self) -> bool:
        """True when no turn carries anything but blank text."""
        return not any(
            not (isinstance(part, TextPart) and not part.text.strip())
            for turn in self.turns
            for part in turn.parts
        )

    def to_request_body(
        self, effective: EffectiveGenerationConfig | None = None
    ) -> dict[str, Any]:
        """Serialize to a ``generateContent`` request body."""
        body: dict[str, Any] = {"contents": [t.to_wire() for t in self.turns]}
        if self.system_instruction:
            body["systemInstruction"] = {"parts": [{"text": self.system_instruction}]}
        if self.tools:
            # Enum definition order keeps the body deterministic.
            body["tools"] = [{t.value: {}} for t in Tool if t in self.tools]

        generation = self.generation_config.tuning_to_wire()
        if effective is not None:
            generation.update(effective.to_wire())
        if generation:
            body["generationConfig"] = generation
        return body


# =============================================================================
# Builder
# =============================================================================


class PromptBuilder:
    """Chainable builder for a multi-turn, multi-part prompt.

    Append operations only ever touch the trailing user turn; once a model
    turn is recorded the next append opens a new user turn.

    Example:
        doc = (
            PromptBuilder()
            .set_system_instruction("Answer tersely.")
            .append_text("Summarize the attached report.")
            .attach_inline(Attachment.from_bytes(pdf, "application/pdf"))
            .set_tool(Tool.CODE_EXECUTION)
            .build()
        )
    """

    def __init__(self, *, codec: AttachmentCodec | None = None) -> None:
        """Start an empty prompt."""
        self._codec = codec or AttachmentCodec()
        self._turns: list[Turn] = []
        self._system_instruction: str | None = None
        self._tools: set[Tool] = set()
        self._config = GenerationConfig()

    # -- Inspection ----------------------------------------------------------

    @property
    def tools(self) -> frozenset[Tool]:
        return frozenset(self._tools)

    @property
    def generation_config(self) -> GenerationConfig:
        return replace(self._config)

    @property
    def turns(self) -> tuple[Turn, ...]:
        return tuple(Turn(t.role, list(t.parts)) for t in self._turns)

    def build(self) -> PromptDocument:
        """Snapshot the current state."""
        return PromptDocument(
            turns=self.turns,
            system_instruction=self._system_instruction,
            tools=self.tools,
            generation_config=self.generation_config,
        )

    # -- Content -------------------------------------------------------------

    def _current_user_turn(self) -> Turn:
        if self._turns and self._turns[-1].role == USER_ROLE:
            return self._turns[-1]
        turn = Turn(role=USER_ROLE)
        self._turns.append(turn)
        return turn

    def append_text(self, text: str) -> PromptBuilder:
        """Add text to the current user turn, joining with a newline.

        The current user turn is the trailing turn when its role is user. After
        a model turn a new user turn is opened, even if earlier user turns exist.
        """
        if self._turns and self._turns[-1].role == USER_ROLE:
            parts = self._turns[-1].parts
            for idx, part in enumerate(parts):
                if isinstance(part, TextPart):
                    parts[idx] = TextPart(text=f"{part.text}\n{text}")
                    return self
            parts.append(TextPart(text=text))
            return self
        self._turns.append(Turn(role=USER_ROLE, parts=[TextPart(text=text)]))
        return self

    def attach_inline(self, attachment: Attachment) -> PromptBuilder:
        """Encode *attachment* into an inline part on the current user turn.

        Attachments without readable bytes are skipped with a warning.

        Raises:
            UnsupportedMediaTypeError: The media type is not accepted.
            InvalidArgumentError: The payload exceeds the inline size limit.
        """
        mime_type = self._codec.check(attachment.mime_type)
        label = attachment.name or "<unnamed>"
        try:
            data = attachment.read()
        except OSError as e:
            logger.warning("Skipping attachment %s: unreadable (%s)", label, e)
            return self
        if data is None:
            logger.warning("Skipping attachment %s: no readable bytes", label)
            return self
        if len(data) > INLINE_LIMIT_BYTES:
            raise InvalidArgumentError(
                f"Attachment {label} is {len(data)} bytes; inline limit is "
                f"{INLINE_LIMIT_BYTES}",
                hint="Upload it with GeminiClient.upload_file() and attach by reference.",
            )
        encoded = self._codec.encode_bytes(data, mime_type)
        self._current_user_turn().parts.append(
            InlineDataPart(mime_type=mime_type, data=encoded)
        )
        return self

    def attach_inline_many(self, attachments: Iterable[Attachment]) -> PromptBuilder:
        """Attach each item; unreadable ones are skipped individually."""
        for attachment in attachments:
            self.attach_inline(attachment)
        return self

    def attach_by_reference(self, descriptor: Any) -> PromptBuilder:
        """Reference a registered file (a ``FileDescriptor`` or a mapping)."""
        if isinstance(descriptor, Mapping):
            uri = descriptor.get("uri")
            mime_type = descriptor.get("mimeType") or descriptor.get("mime_type")
        else:
            uri = getattr(descriptor, "uri", None)
            mime_type = getattr(descriptor, "mime_type", None)
        missing = [
            name
            for name, value in (("uri", uri), ("mime_type", mime_type))
            if not isinstance(value, str) or not value
        ]
        if missing:
            raise InvalidFileDescriptorError(
                f"File descriptor is missing {', '.join(missing)}",
                hint="Pass the FileDescriptor returned by GeminiClient.upload_file().",
            )
        self._current_user_turn().parts.append(
            FileDataPart(mime_type=normalize_mime_type(mime_type), uri=uri)
        )
        return self

    def add_turn(self, role: str, parts: Iterable[Part]) -> PromptBuilder:
        """Append a complete turn in conversation order."""
        self._turns.append(Turn(role=role, parts=list(parts)))
        return self

    def add_model_turn(self, content: str | Iterable[Part]) -> PromptBuilder:
        """Append a model turn from text or ready-made parts."""
        if isinstance(content, str):
            return self.add_turn(MODEL_ROLE, [TextPart(text=content)])
        return self.add_turn(MODEL_ROLE, content)

    def record_response(self, result: GenerateResult) -> PromptBuilder:
        """Append the model's reply so the conversation can continue.

        Thought parts are not replayed.
        """
        parts = [p for p in result.parts if not isinstance(p, ThoughtPart)]
        return self.add_turn(MODEL_ROLE, parts)

    def set_system_instruction(self, text: str | None) -> PromptBuilder:
        """Replace the system instruction; ``None`` clears it."""
        self._system_instruction = text
        return self

    # -- Tools ---------------------------------------------------------------

    def set_tool(self, tool: Tool | str, enabled: bool = True) -> PromptBuilder:
        """Enable or disable a built-in tool."""
        parsed = Tool.parse(tool)
        if enabled:
            self._tools.add(parsed)
        else:
            self._tools.discard(parsed)
        return self

    # -- Generation settings -------------------------------------------------

    def set_temperature(self, value: float) -> PromptBuilder:
        self._config.temperature = value
        return self

    def set_top_k(self, value: int) -> PromptBuilder:
        self._config.top_k = value
        return self

    def set_top_p(self, value: float) -> PromptBuilder:
        self._config.top_p = value
        return self

    def set_max_output_tokens(self, value: int) -> PromptBuilder:
        self._config.max_output_tokens = value
        return self

    def set_thinking_budget(self, budget: int | float) -> PromptBuilder:
        """Cap reasoning tokens. Must be a finite non-negative number."""
        if (
            isinstance(budget, bool)
            or not isinstance(budget, (int, float))
            or not math.isfinite(budget)
            or budget < 0
        ):
            raise InvalidArgumentError(
                f"Thinking budget must be a finite non-negative number, "
                f"got {budget!r}",
                hint="Pass 0 to disable thinking or a token count such as 1024.",
            )
        self._config.thinking_budget = budget
        return self

    def enable_thinking_summary(self, enabled: bool = True) -> PromptBuilder:
        self._config.include_thoughts = enabled
        return self

    def enable_image_response(self, enabled: bool = True) -> PromptBuilder:
        """Request text+image output. Turns JSON output off when enabling."""
        if enabled and self._config.json_output:
            logger.warning("Image response enabled; disabling JSON output")
            self._config.json_output = False
            self._config.response_schema = None
        self._config.image_response = enabled
        return self

    def enable_json_output(
        self, enabled: bool = True, *, schema: ResponseSchemaInput | None = None
    ) -> PromptBuilder:
        """Request JSON output, optionally constrained by *schema*.

        *schema* is a JSON Schema dict or a pydantic model class. Turns image
        response off when enabling.
        """
        if schema is not None and not (
            isinstance(schema, dict)
            or (isinstance(schema, type) and issubclass(schema, BaseModel))
        ):
            raise InvalidArgumentError(
                "schema must be a pydantic model class or JSON schema dict",
                hint="Pass a BaseModel subclass or a dict following JSON Schema.",
            )
        if enabled and self._config.image_response:
            logger.warning("JSON output enabled; disabling image response")
            self._config.image_response = False
        self._config.json_output = enabled
        self._config.response_schema = schema if enabled else None
        return self

    def set_response_modalities(
        self, modalities: str | Iterable[str] | None
    ) -> PromptBuilder:
        """Declare output modalities used when image response is active.

        A single string is one modality, not a sequence of characters.
        """
        if isinstance(modalities, str):
            modalities = (modalities,)
        self._config.response_modalities = (
            tuple(m.upper() for m in modalities) if modalities is not None else None
        )
        return self
