"""Two-phase upload protocol for registering large attachments.

Phase 1 (start) asks the upload endpoint for a session URL. Phase 2 sends the
whole payload to that URL with a combined "upload, finalize" command. Despite
the protocol's name there is no chunked resumption: a failure in either phase
ends the attempt, and the caller starts over with a fresh ``ResumableUpload``.

States::

    NOT_STARTED -> SESSION_STARTED -> FINALIZED
         \\               \\
          +-> FAILED <-----+
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
import logging
from typing import TYPE_CHECKING, Any

from gemwire._http import (
    UPLOAD_COMMAND_HEADER,
    UPLOAD_LENGTH_HEADER,
    UPLOAD_OFFSET_HEADER,
    UPLOAD_PROTOCOL_HEADER,
    UPLOAD_TYPE_HEADER,
    UPLOAD_URL_HEADER,
)
from gemwire.errors import InvalidArgumentError, UploadProtocolError
from gemwire.executor import RequestSpec, parse_json_body
from gemwire.media import AttachmentCodec
from gemwire.retry import NO_RETRY

if TYPE_CHECKING:
    from gemwire.auth import AuthDecision
    from gemwire.executor import RequestExecutor
    from gemwire.media import Attachment

logger = logging.getLogger(__name__)


class UploadState(str, Enum):
    NOT_STARTED = "not_started"
    SESSION_STARTED = "session_started"
    FINALIZED = "finalized"
    FAILED = "failed"


@dataclass(frozen=True)
class UploadSession:
    """Ephemeral state between start and finalize."""

    upload_url: str
    total_bytes: int
    mime_type: str
    display_name: str


@dataclass(frozen=True)
class FileDescriptor:
    """A registered file that prompts can reference by ``uri``."""

    uri: str
    mime_type: str
    name: str | None = None
    display_name: str | None = None
    size_bytes: int | None = None
    state: str | None = None

    @classmethod
    def from_response(
        cls, payload: Mapping[str, Any], *, fallback_mime_type: str
    ) -> FileDescriptor:
        """Read ``{"file": {...}}`` or the equivalent flat object.

        Raises:
            UploadProtocolError: The object has no ``uri``.
        """
        raw = payload.get("file")
        obj: Mapping[str, Any] = raw if isinstance(raw, Mapping) else payload
        uri = obj.get("uri")
        if not isinstance(uri, str) or not uri:
            raise UploadProtocolError(
                "Upload finalize response is missing file.uri", phase="upload"
            )
        # sizeBytes is an int64, which the API serializes as a string.
        size = str(obj.get("sizeBytes", ""))
        return cls(
            uri=uri,
            mime_type=str(obj.get("mimeType") or fallback_mime_type),
            name=obj.get("name"),
            display_name=obj.get("displayName"),
            size_bytes=int(size) if size.isdigit() else None,
            state=obj.get("state"),
        )


class ResumableUpload:
    """Drive one upload attempt through start and finalize.

    The start phase authenticates with a forced API key; the session URL
    returned by the server is self-authorizing, so finalize sends no
    credential.
    """

    def __init__(
        self,
        executor: RequestExecutor,
        *,
        endpoint: str,
        auth: AuthDecision,
        codec: AttachmentCodec | None = None,
    ) -> None:
        """Bind the attempt to an executor, endpoint and API-key decision."""
        if not auth.uses_api_key:
            raise UploadProtocolError(
                "Uploads require an API key; OAuth is not accepted", phase="upload"
            )
        self._executor = executor
        self._endpoint = endpoint
        self._auth = auth
        self._codec = codec or AttachmentCodec()
        self.state = UploadState.NOT_STARTED
        self.session: UploadSession | None = None

    async def start(
        self, *, total_bytes: int, mime_type: str, display_name: str
    ) -> UploadSession:
        """Open an upload session.

        Raises:
            UploadProtocolError: Called out of order, or the 2xx response has
                no upload URL header.
            APIError: The endpoint returned a non-2xx status.
        """
        self._require(UploadState.NOT_STARTED, "start")
        spec = RequestSpec(
            method="POST",
            headers={
                UPLOAD_PROTOCOL_HEADER: "resumable",
                UPLOAD_COMMAND_HEADER: "start",
                UPLOAD_LENGTH_HEADER: str(total_bytes),
                UPLOAD_TYPE_HEADER: mime_type,
                "Content-Type": "application/json",
            },
            json={"file": {"display_name": display_name}},
            phase="upload start",
        )
        try:
            resp = await self._executor.send(self._endpoint, self._auth.apply(spec))
            upload_url = resp.header(UPLOAD_URL_HEADER)
            if not upload_url:
                raise UploadProtocolError(
                    f"Upload start response (status={resp.status_code}) is "
                    f"missing the {UPLOAD_URL_HEADER} header",
                    phase="upload start",
                )
        except BaseException:
            self.state = UploadState.FAILED
            raise

        self.session = UploadSession(
            upload_url=upload_url,
            total_bytes=total_bytes,
            mime_type=mime_type,
            display_name=display_name,
        )
        self.state = UploadState.SESSION_STARTED
        logger.debug("Upload session started for %s (%d bytes)", display_name, total_bytes)
        return self.session

    async def finalize(self, data: bytes) -> FileDescriptor:
        """Send all bytes at offset 0 and finalize. Never retried.

        Raises:
            UploadProtocolError: Called out of order, size mismatch, or the
                response has no file uri.
            APIError: The session URL returned a non-2xx status.
        """
        self._require(UploadState.SESSION_STARTED, "finalize")
        session = self.session
        if session is None:
            raise UploadProtocolError(
                "Upload session is missing after start", phase="upload"
            )
        try:
            if len(data) != session.total_bytes:
                raise UploadProtocolError(
                    f"Declared {session.total_bytes} bytes but got {len(data)}",
                    phase="upload",
                )
            spec = RequestSpec(
                method="POST",
                headers={
                    "Content-Length": str(session.total_bytes),
                    "Content-Type": session.mime_type,
                    UPLOAD_OFFSET_HEADER: "0",
                    UPLOAD_COMMAND_HEADER: "upload, finalize",
                },
                content=data,
                phase="upload",
            )
            resp = await self._executor.send(session.upload_url, spec, policy=NO_RETRY)
            payload = parse_json_body(resp, phase="upload")
            descriptor = FileDescriptor.from_response(
                payload, fallback_mime_type=session.mime_type
            )
        except BaseException:
            self.state = UploadState.FAILED
            raise
        finally:
            # A session is consumed by its single finalize, success or not.
            self.session = None

        self.state = UploadState.FINALIZED
        logger.debug("Upload finalized: %s", descriptor.uri)
        return descriptor

    async def upload(
        self, attachment: Attachment, *, display_name: str | None = None
    ) -> FileDescriptor:
        """Run both phases for *attachment*.

        Raises:
            UnsupportedMediaTypeError: Before any HTTP call.
            InvalidArgumentError: The attachment has no readable bytes.
        """
        mime_type = self._codec.check(attachment.mime_type)
        data = attachment.read()
        if data is None:
            raise InvalidArgumentError(
                f"Attachment {attachment.name or '<unnamed>'} has no readable bytes"
            )
        name = display_name or attachment.name or "upload"
        await self.start(total_bytes=len(data), mime_type=mime_type, display_name=name)
        return await self.finalize(data)

    def _require(self, expected: UploadState, action: str) -> None:
        if self.state is not expected:
            raise UploadProtocolError(
                f"Cannot {action} an upload in state {self.state.value}",
                hint="Create a new ResumableUpload for each attempt.",
                phase="upload",
            )
