"""Output-format resolution.

Decides which response shape to request given the active tools and the
builder's flags. Rules are evaluated top to bottom and the first match wins;
every setting the winning rule does not own is cleared. Add new rules at the
position that reflects their precedence.

Resolution is cheap and must run right before every request: tools and flags
can change between calls on the same builder.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
import logging
from typing import Any

from gemwire.prompt import GROUNDING_TOOLS, Tool

logger = logging.getLogger(__name__)

TEXT_MIME_TYPE = "text/plain"
JSON_MIME_TYPE = "application/json"
DEFAULT_IMAGE_MODALITIES: tuple[str, ...] = ("TEXT", "IMAGE")


class OutputMode(str, Enum):
    GROUNDED_TEXT = "grounded_text"
    JSON = "json"
    IMAGE = "image"
    TEXT = "text"


@dataclass(frozen=True)
class EffectiveGenerationConfig:
    """The output-shape fields actually sent for one request."""

    mode: OutputMode
    response_mime_type: str | None = None
    response_schema: dict[str, Any] | None = None
    response_modalities: tuple[str, ...] | None = None

    def to_wire(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.response_mime_type is not None:
            out["responseMimeType"] = self.response_mime_type
        if self.response_schema is not None:
            out["responseJsonSchema"] = self.response_schema
        if self.response_modalities:
            out["responseModalities"] = list(self.response_modalities)
        return out


@dataclass(frozen=True)
class OutputRequest:
    """Inputs to output-format resolution."""

    tools: frozenset[Tool]
    json_output: bool = False
    image_response: bool = False
    modalities: tuple[str, ...] | None = None
    response_schema: dict[str, Any] | None = None


@dataclass(frozen=True)
class OutputRule:
    """One precedence step: a predicate and the config it produces."""

    name: str
    matches: Callable[[OutputRequest], bool]
    produce: Callable[[OutputRequest], EffectiveGenerationConfig]


def _grounded(_: OutputRequest) -> EffectiveGenerationConfig:
    return EffectiveGenerationConfig(
        mode=OutputMode.GROUNDED_TEXT, response_mime_type=TEXT_MIME_TYPE
    )


def _json(req: OutputRequest) -> EffectiveGenerationConfig:
    return EffectiveGenerationConfig(
        mode=OutputMode.JSON,
        response_mime_type=JSON_MIME_TYPE,
        response_schema=req.response_schema,
    )


def _image(req: OutputRequest) -> EffectiveGenerationConfig:
    return EffectiveGenerationConfig(
        mode=OutputMode.IMAGE,
        response_modalities=req.modalities or DEFAULT_IMAGE_MODALITIES,
    )


def _text(_: OutputRequest) -> EffectiveGenerationConfig:
    return EffectiveGenerationConfig(
        mode=OutputMode.TEXT, response_mime_type=TEXT_MIME_TYPE
    )


#: Evaluated in order; the API rejects structured or multi-modal output while
#: grounding is active, so grounding comes first.
OUTPUT_RULES: tuple[OutputRule, ...] = (
    OutputRule("grounding", lambda r: bool(r.tools & GROUNDING_TOOLS), _grounded),
    OutputRule("json", lambda r: r.json_output, _json),
    OutputRule("image", lambda r: r.image_response, _image),
    OutputRule("default", lambda _: True, _text),
)


def resolve_output_format(
    tools: Iterable[Tool],
    *,
    json_output: bool = False,
    image_response: bool = False,
    modalities: Iterable[str] | None = None,
    response_schema: dict[str, Any] | None = None,
    rules: tuple[OutputRule, ...] = OUTPUT_RULES,
) -> EffectiveGenerationConfig:
    """Return the effective output configuration for one request."""
    req = OutputRequest(
        tools=frozenset(tools),
        json_output=json_output,
        image_response=image_response,
        modalities=tuple(modalities) if modalities is not None else None,
        response_schema=response_schema,
    )
    for rule in rules:
        if rule.matches(req):
            effective = rule.produce(req)
            if rule.name == "grounding" and (json_output or image_response):
                logger.warning(
                    "Grounding tool active; ignoring %s output request",
                    "JSON" if json_output else "image",
                )
            logger.debug("Output format resolved by rule %r", rule.name)
            return effective
    # OUTPUT_RULES ends with a catch-all; custom rule lists may not.
    return _text(req)
