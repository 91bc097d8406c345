"""Render buffer: turns stream fragments into render-safe message text.

Two rules keep partial output displayable:

* An odd number of fenced-code delimiters means a code block is still open,
  so the display text gets a synthetic closing fence. ``raw_text`` is never
  modified, so the closer is not persisted or concatenated further.
* A fragment that is, on its own, a complete recommendation document
  (a JSON object with ``text``, ``items`` and ``type`` keys; ``kind`` is
  accepted in place of ``type``) replaces the display text with the
  document's ``text`` and becomes the message's structured payload.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from loguru import logger

from rec_agent.protocol import (
    ItemKind,
    RecommendationDocument,
    StreamEvent,
    StructuredPayload,
    parse_items,
)

FENCE = "```"


@dataclass(slots=True)
class LogicalMessage:
    """Client-side accumulation unit for one message in the conversation."""

    id: str
    role: str = "assistant"
    raw_text: str = ""
    renderable_text: str = ""
    structured_payload: StructuredPayload | None = None
    is_streaming: bool = True


class RenderBuffer:
    def apply(self, message: LogicalMessage, event: StreamEvent) -> None:
        """Apply one stream event to ``message`` in place."""

        if event.structured_payload is not None and not event.text:
            message.structured_payload = event.structured_payload
            message.is_streaming = False
            return

        document = intercept_document(event.text)
        if document is not None:
            message.raw_text = document.text
            message.renderable_text = document.text
            message.structured_payload = document.to_payload()
            message.is_streaming = False
            return

        message.raw_text += event.text
        message.renderable_text = balance_fences(message.raw_text)
        if event.structured_payload is not None:
            message.structured_payload = event.structured_payload
        message.is_streaming = not event.done


def balance_fences(raw_text: str) -> str:
    if raw_text.count(FENCE) % 2:
        return raw_text + FENCE
    return raw_text


def intercept_document(fragment: str) -> RecommendationDocument | None:
    """Return the document if ``fragment`` is exactly one, else ``None``."""

    candidate = fragment.strip()
    if not (candidate.startswith("{") and candidate.endswith("}")):
        return None
    try:
        data: Any = json.loads(candidate)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None

    kind_value = data.get("type", data.get("kind"))
    if "text" not in data or "items" not in data or kind_value is None:
        return None
    if not isinstance(data["items"], list):
        return None

    try:
        kind = ItemKind(str(kind_value).lower())
        return RecommendationDocument(
            text=str(data["text"]),
            items=parse_items(kind, data["items"]),
            kind=kind,
            is_exact_match=data.get("isExactMatch"),
        )
    except ValueError as exc:
        logger.debug("JSON fragment is not a recommendation document: {}", exc)
        return None
