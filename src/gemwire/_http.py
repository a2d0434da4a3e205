"""Small HTTP-related constants shared across gemwire.

Kept import-free so every module can depend on it without cycles.
"""

from __future__ import annotations

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
DEFAULT_UPLOAD_URL = "https://generativelanguage.googleapis.com/upload/v1beta/files"

# Resumable upload protocol headers.
UPLOAD_PROTOCOL_HEADER = "X-Goog-Upload-Protocol"
UPLOAD_COMMAND_HEADER = "X-Goog-Upload-Command"
UPLOAD_OFFSET_HEADER = "X-Goog-Upload-Offset"
UPLOAD_URL_HEADER = "X-Goog-Upload-URL"
UPLOAD_LENGTH_HEADER = "X-Goog-Upload-Header-Content-Length"
UPLOAD_TYPE_HEADER = "X-Goog-Upload-Header-Content-Type"

API_KEY_PARAM = "key"
AUTHORIZATION_HEADER = "Authorization"


def is_success(status_code: int) -> bool:
    """Return True for 2xx status codes."""
    return 200 <= status_code < 300
