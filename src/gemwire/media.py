"""Attachments and the media codec.

The codec checks a declared media type against the table of types the API
accepts, then base64-encodes the bytes. Rejection happens before any bytes are
read so unsupported data never leaves the process.
"""

from __future__ import annotations

import base64
import binascii
from collections.abc import Callable  # noqa: TC003 - used at runtime in dataclass
from dataclasses import dataclass
from typing import Final, Literal

from gemwire.errors import InvalidArgumentError, UnsupportedMediaTypeError

MediaKind = Literal["document", "text", "image", "audio", "video"]

#: Inline request payloads above this size are rejected by the API.
INLINE_LIMIT_BYTES: Final[int] = 20 * 1024 * 1024

SUPPORTED_MEDIA_TYPES: Final[dict[MediaKind, frozenset[str]]] = {
    "document": frozenset({"application/pdf"}),
    "text": frozenset(
        {
            "text/plain",
            "text/html",
            "text/css",
            "text/csv",
            "text/xml",
            "text/markdown",
            "text/rtf",
            "text/javascript",
            "text/x-python",
            "application/json",
            "application/x-javascript",
            "application/x-python",
        }
    ),
    "image": frozenset(
        {"image/png", "image/jpeg", "image/webp", "image/heic", "image/heif"}
    ),
    "audio": frozenset(
        {
            "audio/wav",
            "audio/mp3",
            "audio/mpeg",
            "audio/aiff",
            "audio/aac",
            "audio/ogg",
            "audio/flac",
        }
    ),
    "video": frozenset(
        {
            "video/mp4",
            "video/mpeg",
            "video/mov",
            "video/avi",
            "video/x-flv",
            "video/mpg",
            "video/webm",
            "video/wmv",
            "video/3gpp",
        }
    ),
}

_DATA_URI_PREFIX = "data:"


def normalize_mime_type(mime_type: str) -> str:
    """Lower-case *mime_type* and drop parameters such as ``charset``."""
    return mime_type.split(";", 1)[0].strip().lower()


@dataclass(frozen=True, slots=True)
class Attachment:
    """A binary attachment with a declared media type.

    ``content_loader`` is the raw byte source; it may return ``None`` (or raise
    ``OSError``) when nothing is readable.
    """

    mime_type: str
    content_loader: Callable[[], bytes | None]
    name: str = ""

    @classmethod
    def from_bytes(cls, data: bytes, mime_type: str, *, name: str = "") -> Attachment:
        """Create an Attachment over in-memory bytes."""
        return cls(mime_type=mime_type, content_loader=lambda: data, name=name)

    @classmethod
    def from_text(
        cls, text: str, *, mime_type: str = "text/plain", name: str = ""
    ) -> Attachment:
        """Create a UTF-8 text Attachment."""
        content = text.encode("utf-8")
        return cls(mime_type=mime_type, content_loader=lambda: content, name=name)

    def read(self) -> bytes | None:
        """Return the bytes, or ``None`` when the source has nothing."""
        data = self.content_loader()
        return data or None


class AttachmentCodec:
    """Validate media types and transform bytes to base64 text."""

    def __init__(
        self, supported: dict[MediaKind, frozenset[str]] | None = None
    ) -> None:
        """Use *supported* instead of the default table when given."""
        self._table = supported if supported is not None else SUPPORTED_MEDIA_TYPES

    def kind_of(self, mime_type: str) -> MediaKind | None:
        """Return the kind a media type belongs to, if supported."""
        normalized = normalize_mime_type(mime_type)
        for kind, types in self._table.items():
            if normalized in types:
                return kind
        return None

    def is_supported(self, mime_type: str) -> bool:
        """Whether the API accepts *mime_type*."""
        return self.kind_of(mime_type) is not None

    def check(self, mime_type: str) -> str:
        """Return the normalized type or raise ``UnsupportedMediaTypeError``."""
        if not self.is_supported(mime_type):
            raise UnsupportedMediaTypeError(
                mime_type,
                hint="See gemwire.media.SUPPORTED_MEDIA_TYPES for accepted types.",
            )
        return normalize_mime_type(mime_type)

    def encode_bytes(
        self, data: bytes, mime_type: str, *, as_data_uri: bool = False
    ) -> str:
        """Encode raw bytes declared as *mime_type*."""
        normalized = self.check(mime_type)
        encoded = base64.b64encode(data).decode("ascii")
        if as_data_uri:
            return f"{_DATA_URI_PREFIX}{normalized};base64,{encoded}"
        return encoded

    def encode(self, attachment: Attachment, *, as_data_uri: bool = False) -> str:
        """Encode an attachment.

        Raises:
            UnsupportedMediaTypeError: Before reading, if the type is rejected.
            InvalidArgumentError: If the attachment has no readable bytes.
        """
        self.check(attachment.mime_type)
        data = attachment.read()
        if data is None:
            raise InvalidArgumentError(
                f"Attachment {attachment.name or '<unnamed>'} has no readable bytes"
            )
        return self.encode_bytes(data, attachment.mime_type, as_data_uri=as_data_uri)

    @staticmethod
    def decode(text: str) -> bytes:
        """Decode base64 text or a ``data:`` URI back to bytes."""
        payload = text
        if text.startswith(_DATA_URI_PREFIX):
            _, sep, payload = text.partition(",")
            if not sep:
                raise InvalidArgumentError("Malformed data URI: missing ','")
        try:
            return base64.b64decode(payload, validate=True)
        except binascii.Error as e:
            raise InvalidArgumentError(f"Invalid base64 payload: {e}") from e
