"""Helpers for multi-part messages carrying inline media."""

import base64
import hashlib
import mimetypes
from pathlib import Path
from typing import Any

from ..models.contracts import InlineData, MessagePart, MessagePayload

MEDIA_PLACEHOLDER = "[Media Attachment]"


def is_multimodal(payload: Any) -> bool:
    """True when the payload is a part list carrying at least one attachment."""
    return isinstance(payload, list) and any(
        isinstance(part, MessagePart) and part.inline_data is not None for part in payload
    )


def media_hash(part: MessagePart) -> str | None:
    """SHA-256 of a part's base64 payload, or None for text parts."""
    if part.inline_data is None:
        return None
    return hashlib.sha256(part.inline_data.data.encode("utf-8")).hexdigest()


def payload_text(payload: MessagePayload) -> str:
    """
    Text to log for a payload.

    Strings pass through. Part lists yield their first text part, or the
    media placeholder when they only carry attachments.
    """
    if isinstance(payload, str):
        return payload
    for part in payload:
        if part.text:
            return part.text
    if any(part.inline_data is not None for part in payload):
        return MEDIA_PLACEHOLDER
    return ""


def to_data_url(inline: InlineData) -> str:
    return f"data:{inline.mime_type};base64,{inline.data}"


def part_from_file(path: Path) -> MessagePart:
    """Read a local file into an inline-data part."""
    mime_type, _ = mimetypes.guess_type(path.name)
    data = base64.b64encode(path.read_bytes()).decode("ascii")
    return MessagePart(
        inline_data=InlineData(mime_type=mime_type or "application/octet-stream", data=data)
    )
