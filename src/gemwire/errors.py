"""Exception hierarchy for gemwire."""

from __future__ import annotations

_BODY_PREVIEW_CHARS = 500


class GemwireError(Exception):
    """Base exception for all gemwire errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(GemwireError):
    """Configuration validation failed."""


class InvalidArgumentError(GemwireError):
    """A caller passed an out-of-domain value."""


class InvalidFileDescriptorError(InvalidArgumentError):
    """A file reference is missing its uri or mime type."""


class UnsupportedMediaTypeError(GemwireError):
    """Attachment media type is not accepted by the API."""

    def __init__(
        self, mime_type: str, *, hint: str | None = None
    ) -> None:
        super().__init__(f"Unsupported media type: {mime_type!r}", hint=hint)
        self.mime_type = mime_type


class MissingCredentialError(GemwireError):
    """No usable authentication path for the request."""


class APIError(GemwireError):
    """HTTP call failed (non-2xx status or transport failure).

    The executor retries these within its attempt budget; ``body`` keeps the
    raw response text for diagnosis.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        status_code: int | None = None,
        body: str | None = None,
        retryable: bool = True,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.status_code = status_code
        self.body = body
        self.retryable = retryable
        self.phase = phase

    @classmethod
    def from_status(
        cls, status_code: int, body: str, *, phase: str | None = None
    ) -> APIError:
        """Build the error for a non-2xx response."""
        err_cls: type[APIError] = RateLimitError if status_code == 429 else cls
        preview = body[:_BODY_PREVIEW_CHARS]
        if len(body) > _BODY_PREVIEW_CHARS:
            preview += "..."
        label = f"{phase} failed" if phase else "Request failed"
        message = f"{label} (status={status_code})"
        if preview:
            message = f"{message}: {preview}"
        hint = None
        if status_code in (401, 403):
            hint = "Check the API key or OAuth token and its permissions."
        return err_cls(
            message, hint=hint, status_code=status_code, body=body, phase=phase
        )


class RateLimitError(APIError):
    """Rate limit exceeded (HTTP 429)."""


class NetworkError(APIError):
    """The transport could not complete the exchange."""


class ProtocolError(GemwireError):
    """A 2xx response violated the API contract. Never retried."""

    def __init__(
        self, message: str, *, hint: str | None = None, phase: str | None = None
    ) -> None:
        super().__init__(message, hint=hint)
        self.phase = phase


class ResponseParseError(ProtocolError):
    """A successful response body was not valid JSON."""

    def __init__(
        self, message: str, *, body: str, phase: str | None = None
    ) -> None:
        super().__init__(message, phase=phase)
        self.body = body


class UploadProtocolError(ProtocolError):
    """The resumable upload exchange broke its contract."""
