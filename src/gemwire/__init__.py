"""gemwire: a small, explicit client core for the Gemini REST API.

Public API:
    - GeminiClient: generate, count_tokens, embed, generate_images, upload_file
    - PromptBuilder / PromptDocument: multi-turn, multi-part prompts
    - Attachment / AttachmentCodec: media validation and encoding
    - Config / RetryPolicy: configuration
    - generate_many(): batch generation with per-item failures
"""

from __future__ import annotations

import logging

from gemwire.auth import AuthDecision, AuthMode, AuthPolicyResolver
from gemwire.batch import BatchOutcome, generate_many
from gemwire.client import GeminiClient
from gemwire.config import Config
from gemwire.errors import (
    APIError,
    ConfigurationError,
    GemwireError,
    InvalidArgumentError,
    InvalidFileDescriptorError,
    MissingCredentialError,
    NetworkError,
    ProtocolError,
    RateLimitError,
    ResponseParseError,
    UnsupportedMediaTypeError,
    UploadProtocolError,
)
from gemwire.executor import RequestExecutor, RequestSpec
from gemwire.media import Attachment, AttachmentCodec
from gemwire.output import EffectiveGenerationConfig, OutputMode, resolve_output_format
from gemwire.prompt import PromptBuilder, PromptDocument, Tool
from gemwire.result import GeneratedImage, GenerateResult
from gemwire.retry import RetryPolicy
from gemwire.transport import HttpRequest, HttpResponse, HttpxTransport, Transport
from gemwire.uploads import FileDescriptor, ResumableUpload, UploadState

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("gemwire")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("gemwire").addHandler(logging.NullHandler())

__all__ = [
    "APIError",
    "Attachment",
    "AttachmentCodec",
    "AuthDecision",
    "AuthMode",
    "AuthPolicyResolver",
    "BatchOutcome",
    "Config",
    "ConfigurationError",
    "EffectiveGenerationConfig",
    "FileDescriptor",
    "GeminiClient",
    "GenerateResult",
    "GeneratedImage",
    "GemwireError",
    "HttpRequest",
    "HttpResponse",
    "HttpxTransport",
    "InvalidArgumentError",
    "InvalidFileDescriptorError",
    "MissingCredentialError",
    "NetworkError",
    "OutputMode",
    "PromptBuilder",
    "PromptDocument",
    "ProtocolError",
    "RateLimitError",
    "RequestExecutor",
    "RequestSpec",
    "ResponseParseError",
    "ResumableUpload",
    "RetryPolicy",
    "Tool",
    "Transport",
    "UnsupportedMediaTypeError",
    "UploadProtocolError",
    "UploadState",
    "generate_many",
    "resolve_output_format",
]
