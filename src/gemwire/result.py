"""Generation results: typed parts, usage and structured output."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
import json
import logging
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ValidationError

from gemwire.errors import ProtocolError
from gemwire.output import OutputMode
from gemwire.prompt import (
    CodeExecutionResultPart,
    ExecutableCodePart,
    InlineDataPart,
    Part,
    TextPart,
    ThoughtPart,
    part_from_wire,
)

if TYPE_CHECKING:
    from gemwire.output import EffectiveGenerationConfig

logger = logging.getLogger(__name__)

# Gemini usageMetadata keys -> provider-agnostic keys.
_USAGE_KEYS = {
    "promptTokenCount": "input_tokens",
    "candidatesTokenCount": "output_tokens",
    "totalTokenCount": "total_tokens",
    "thoughtsTokenCount": "reasoning_tokens",
    "toolUsePromptTokenCount": "tool_use_tokens",
}


@dataclass(frozen=True)
class GenerateResult:
    """Parsed ``generateContent`` response (first candidate)."""

    parts: tuple[Part, ...] = ()
    usage: dict[str, int] = field(default_factory=dict)
    finish_reason: str | None = None
    mode: OutputMode | None = None
    #: JSON-decoded text in JSON mode; a validated model when a pydantic
    #: schema was given. ``None`` when decoding or validation failed.
    structured: Any = None
    grounding_metadata: dict[str, Any] | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def text(self) -> str:
        """Answer text, excluding thought summaries."""
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    @property
    def thoughts(self) -> str | None:
        chunks = [p.text for p in self.parts if isinstance(p, ThoughtPart)]
        return "\n\n".join(chunks).strip() if chunks else None

    @property
    def images(self) -> list[InlineDataPart]:
        return [
            p
            for p in self.parts
            if isinstance(p, InlineDataPart) and p.mime_type.startswith("image/")
        ]

    @property
    def executable_code(self) -> list[ExecutableCodePart]:
        return [p for p in self.parts if isinstance(p, ExecutableCodePart)]

    @property
    def code_results(self) -> list[CodeExecutionResultPart]:
        return [p for p in self.parts if isinstance(p, CodeExecutionResultPart)]


def normalize_usage(raw: Any) -> dict[str, int]:
    """Map ``usageMetadata`` onto stable keys, keeping integer counts only."""
    if not isinstance(raw, Mapping):
        return {}
    return {
        ours: raw[theirs]
        for theirs, ours in _USAGE_KEYS.items()
        if isinstance(raw.get(theirs), int)
    }


def parse_generate_response(
    payload: Mapping[str, Any],
    *,
    effective: EffectiveGenerationConfig | None = None,
    schema_model: type[BaseModel] | None = None,
) -> GenerateResult:
    """Build a ``GenerateResult`` from a response body.

    Raises:
        ProtocolError: The body has no candidates.
    """
    candidates = payload.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        feedback = payload.get("promptFeedback")
        reason = feedback.get("blockReason") if isinstance(feedback, Mapping) else None
        if reason:
            raise ProtocolError(
                f"Prompt was blocked (blockReason={reason})",
                hint="Rephrase the prompt or adjust safety settings.",
                phase="generate",
            )
        raise ProtocolError("Response has no candidates", phase="generate")

    first = candidates[0] if isinstance(candidates[0], Mapping) else {}
    content = first.get("content")
    raw_parts = content.get("parts") if isinstance(content, Mapping) else None
    parts: list[Part] = []
    for raw in raw_parts or []:
        if not isinstance(raw, Mapping):
            continue
        part = part_from_wire(raw)
        if part is None:
            logger.debug("Ignoring unknown response part keys: %s", sorted(raw))
            continue
        parts.append(part)

    grounding = first.get("groundingMetadata")
    mode = effective.mode if effective is not None else None
    result = GenerateResult(
        parts=tuple(parts),
        usage=normalize_usage(payload.get("usageMetadata")),
        finish_reason=first.get("finishReason"),
        mode=mode,
        grounding_metadata=dict(grounding) if isinstance(grounding, Mapping) else None,
        raw=dict(payload),
    )
    if mode is OutputMode.JSON:
        structured = _extract_structured(result.text, schema_model)
        result = replace(result, structured=structured)
    return result


def _extract_structured(text: str, schema_model: type[BaseModel] | None) -> Any:
    if not text:
        return None
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        logger.debug("JSON mode response text did not decode")
        return None
    if schema_model is None:
        return value
    try:
        return schema_model.model_validate(value)
    except ValidationError as e:
        logger.debug("Structured output failed validation: %s", e.error_count())
        return None


@dataclass(frozen=True)
class GeneratedImage:
    """One image returned by the ``predict`` endpoint."""

    data: bytes = field(repr=False)
    mime_type: str = "image/png"
