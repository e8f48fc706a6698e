"""Turning the accumulated stream text into a finalized assistant message."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

_JSON_FENCE_RE = re.compile(r"^```json\s*\n([\s\S]*?)\n?```\s*$")
_MARKDOWN_IMAGE_RE = re.compile(r"!\[[^\]]*\]\((https?://[^)\s]+)\)")
_JSON_FENCE_OPEN = "```json"


class MediaItem(BaseModel):
    """A media reference carried by an assistant response."""

    type: str
    url: Optional[str] = None
    title: Optional[str] = None


class FinalizedMessage(BaseModel):
    """A completed assistant message handed to artifact processing."""

    id: str
    content: str
    raw_text: str = ""
    content_types: List[str] = Field(default_factory=lambda: ["text"])
    media_items: List[MediaItem] = Field(default_factory=list)

    @property
    def image_item(self) -> Optional[MediaItem]:
        for item in self.media_items:
            if item.type == "image" and item.url:
                return item
        return None


def looks_structured(text: str) -> bool:
    """True when a stream carries a JSON response document instead of prose."""
    stripped = text.lstrip()
    return stripped.startswith("{") or stripped.startswith("```json")


def detect_structured(text: str) -> Optional[bool]:
    """Like ``looks_structured``, but None while the leading text could still open a fence."""
    stripped = text.lstrip()
    if not stripped or _JSON_FENCE_OPEN.startswith(stripped):
        return None
    return looks_structured(stripped)


def _unfence(text: str) -> str:
    match = _JSON_FENCE_RE.match(text.strip())
    return match.group(1) if match else text


def extract_markdown_images(text: str) -> List[MediaItem]:
    return [MediaItem(type="image", url=url) for url in _MARKDOWN_IMAGE_RE.findall(text or "")]


def parse_final_response(message_id: str, text: str) -> FinalizedMessage:
    """Build a ``FinalizedMessage`` from the raw accumulated text.

    Structured responses (``{"formatted_content": ..., "media_items": [...]}``,
    optionally fenced as ```json) contribute their content and media items.
    Anything else is treated as prose; markdown images in it become image
    media items.
    """
    payload: Optional[Dict[str, Any]] = None
    if looks_structured(text):
        try:
            parsed = json.loads(_unfence(text))
            if isinstance(parsed, dict):
                payload = parsed
        except json.JSONDecodeError:
            logger.debug("Final response is not valid JSON, using raw text",
                         extra={"data": {"message_id": message_id, "preview": text[:200]}})

    if payload is None:
        media = extract_markdown_images(text)
        return FinalizedMessage(
            id=message_id,
            content=text,
            raw_text=text,
            content_types=["text", "image"] if media else ["text"],
            media_items=media,
        )

    content = payload.get("formatted_content")
    if not isinstance(content, str):
        content = text
    media_items: List[MediaItem] = []
    raw_items = payload.get("media_items")
    for item in raw_items if isinstance(raw_items, list) else []:
        if not (isinstance(item, dict) and item.get("type")):
            continue
        try:
            media_items.append(MediaItem(type=str(item["type"]), url=item.get("url"), title=item.get("title")))
        except ValidationError:
            logger.debug("Skipping malformed media item",
                         extra={"data": {"message_id": message_id, "item": repr(item)[:200]}})
    if not media_items:
        media_items = extract_markdown_images(content)

    return FinalizedMessage(
        id=message_id,
        content=content,
        raw_text=text,
        content_types=_content_types(payload.get("content_types"), media_items),
        media_items=media_items,
    )


def _content_types(value: Any, media_items: List[MediaItem]) -> List[str]:
    if isinstance(value, list):
        types = [entry for entry in value if isinstance(entry, str)]
        if types:
            return types
    return ["text", "image"] if any(item.type == "image" for item in media_items) else ["text"]
