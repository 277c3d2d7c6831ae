import json
import uuid
from typing import Any, Dict, Optional, Tuple

CRLF = b"\r\n"


def new_boundary() -> str:
    """Random boundary token, generated per body."""
    return uuid.uuid4().hex


def build_related_body(
    metadata: Dict[str, Any],
    content: bytes,
    content_mime: str,
    boundary: Optional[str] = None,
) -> Tuple[bytes, str]:
    """
    Serialize a two part multipart/related body for a OneDrive upload.

    :param metadata: JSON metadata describing the item (Content-ID <metadata>)
    :param content: Raw file bytes (Content-ID <content>)
    :param content_mime: MIME type of the raw part
    :param boundary: Optional boundary token, a random one is used otherwise
    :return: (body bytes, value for the Content-Type header)
    """
    boundary = boundary or new_boundary()
    delimiter = b"--" + boundary.encode("ascii")

    parts = [
        delimiter,
        b"Content-ID: <metadata>",
        b"Content-Type: application/json",
        b"",
        json.dumps(metadata).encode("utf-8"),
        delimiter,
        b"Content-ID: <content>",
        f"Content-Type: {content_mime}".encode("ascii"),
        b"",
        content,
        delimiter + b"--",
        b"",
    ]
    body = CRLF.join(parts)

    return body, f"multipart/related; boundary={boundary}"
