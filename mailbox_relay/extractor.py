"""Content extraction from Gmail ``format=full`` message resources.

Walks the part tree to find the readable bodies and degrades HTML to
plain text when a message carries no ``text/plain`` part.
"""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass
from typing import Any

import structlog

from .models import ExtractedMessage, Provenance

logger = structlog.get_logger()

NO_TEXT_FOUND = "(no text found)"

_STYLE_RE = re.compile(r"<style[\s\S]*?</style>", re.IGNORECASE)
_SCRIPT_RE = re.compile(r"<script[\s\S]*?</script>", re.IGNORECASE)
_BREAK_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
_BLOCK_END_RE = re.compile(r"</(?:p|div|h[1-6]|li|tr)>", re.IGNORECASE)
_LIST_ITEM_RE = re.compile(r"<li(?:\s[^>]*)?>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_SPACE_BEFORE_NEWLINE_RE = re.compile(r"[ \t\r\f\v]+\n")
_SPACE_AFTER_NEWLINE_RE = re.compile(r"\n[ \t\r\f\v]+")
_BLANK_LINES_RE = re.compile(r"\n{3,}")
_SPACE_RUN_RE = re.compile(r"[ \t\r\f\v]{2,}")

# &amp; goes last so "&amp;lt;" decodes to the literal "&lt;".
_ENTITIES = (
    ("&nbsp;", " "),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&#39;", "'"),
    ("&quot;", '"'),
    ("&amp;", "&"),
)


@dataclass(frozen=True)
class MessageBodies:
    """Decoded bodies of one message; empty strings when absent."""

    text: str = ""
    html: str = ""


def decode_body_data(data: str | None) -> str:
    """Decode a Gmail base64url body; malformed input yields ``""``."""
    if not data:
        return ""
    padded = data + "=" * (-len(data) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError):
        logger.warning("body_decode_failed", length=len(data))
        return ""
    return raw.decode("utf-8", errors="replace")


def _mime_type(part: dict[str, Any]) -> str:
    return str(part.get("mimeType") or "").lower()


def _body_data(part: dict[str, Any]) -> str | None:
    return (part.get("body") or {}).get("data")


def extract_bodies(payload: dict[str, Any] | None) -> MessageBodies:
    """Return the first ``text/plain`` and first ``text/html`` bodies.

    Parts are visited depth-first in document order. Inline data on the
    top-level payload counts as content of its own media type, or as
    provisional plain text when it is neither text nor HTML.
    """
    if not payload:
        return MessageBodies()

    text = ""
    html = ""

    top_data = _body_data(payload)
    if top_data:
        decoded = decode_body_data(top_data)
        top_type = _mime_type(payload)
        if top_type == "text/plain":
            text = decoded
        elif top_type == "text/html":
            html = decoded
        else:
            text = decoded

    stack = [payload]
    while stack:
        part = stack.pop()
        mime_type = _mime_type(part)
        data = _body_data(part)
        if data and mime_type == "text/plain" and not text:
            text = decode_body_data(data)
        elif data and mime_type == "text/html" and not html:
            html = decode_body_data(data)
        children = part.get("parts") or []
        stack.extend(reversed(children))

    return MessageBodies(text=text.strip(), html=html.strip())


def html_to_text(html: str | None) -> str:
    """Best-effort readable text from an HTML body.

    Not an HTML renderer: it drops style/script blocks, turns line breaks
    and block endings into newlines, bullets list items, decodes a handful
    of common entities and squeezes whitespace.
    """
    if not html:
        return ""
    text = _STYLE_RE.sub("", html)
    text = _SCRIPT_RE.sub("", text)
    text = _BREAK_RE.sub("\n", text)
    text = _BLOCK_END_RE.sub("\n", text)
    text = _LIST_ITEM_RE.sub(" • ", text)
    text = _TAG_RE.sub(" ", text)
    for entity, replacement in _ENTITIES:
        text = re.sub(re.escape(entity), replacement, text, flags=re.IGNORECASE)
    text = _SPACE_BEFORE_NEWLINE_RE.sub("\n", text)
    text = _SPACE_AFTER_NEWLINE_RE.sub("\n", text)
    text = _BLANK_LINES_RE.sub("\n\n", text)
    text = _SPACE_RUN_RE.sub(" ", text)
    return text.strip()


def header_value(headers: list[dict[str, Any]], name: str) -> str | None:
    """Case-insensitive lookup in a Gmail ``payload.headers`` list."""
    wanted = name.lower()
    for header in headers:
        if str(header.get("name", "")).lower() == wanted:
            return header.get("value")
    return None


def build_message(resource: dict[str, Any], source: Provenance) -> ExtractedMessage:
    """Turn a ``users.messages.get`` resource into an :class:`ExtractedMessage`."""
    payload = resource.get("payload") or {}
    headers = payload.get("headers") or []
    bodies = extract_bodies(payload)

    return ExtractedMessage(
        message_id=resource.get("id"),
        source=source,
        from_address=header_value(headers, "From"),
        to=header_value(headers, "To") or header_value(headers, "Delivered-To"),
        subject=header_value(headers, "Subject"),
        body=bodies.text or html_to_text(bodies.html) or NO_TEXT_FOUND,
        text_body=bodies.text or None,
        html_body=bodies.html or None,
    )
