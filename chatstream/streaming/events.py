"""Classification of decoded frames into typed stream events."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    """Semantic kinds a frame can be classified as."""

    START = "start"
    TOKEN_BATCH = "token_batch"
    TOKEN_COMPLETE = "token_complete"
    WORKFLOW_STATUS = "workflow_status"
    NODE_UPDATE = "node_update"
    CONTENT = "content"
    END = "end"
    CREDITS = "credits"
    TASK_UPDATE = "task_update"
    ERROR = "error"
    UNKNOWN = "unknown"


class Event(BaseModel):
    """A classified frame, consumed once by the state machines."""

    kind: EventKind
    payload: Dict[str, Any] = Field(default_factory=dict)
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


WORKFLOW_STATUS_LABELS: Dict[str, str] = {
    "entry_preparation": "Preparing request...",
    "reasonnode": "Processing with AI...",
    "model_call": "AI Model working...",
    "routing": "Analyzing response...",
    "responsenode": "Formatting response...",
    "response_formatting": "Formatting response...",
    "memory_revision": "Storing memory...",
}

NODE_STATUS_LABELS: Dict[str, str] = {
    "entry_preparation": "Preparing request...",
    "reason_model": "Processing with AI...",
    "should_continue": "Analyzing response...",
    "format_response": "Formatting response...",
    "memory_revision": "Storing memory...",
}

ACTIVE_WORKFLOW_STATUSES = ("starting", "deciding")


def workflow_label(key: str) -> str:
    return WORKFLOW_STATUS_LABELS.get(key, f"Processing {key}...")


def node_label(node_name: Optional[str]) -> str:
    return NODE_STATUS_LABELS.get(node_name or "", f"Processing {node_name}...")


class EventClassifier:
    """Parses a frame's JSON envelope and tags it with an ``EventKind``.

    Malformed frames are logged and dropped (``classify`` returns ``None``);
    they never raise.
    """

    def __init__(self):
        self.dropped_frames = 0
        self._handlers = {
            "start": self._on_start,
            "custom_event": self._on_custom_event,
            "node_update": self._on_node_update,
            "content": self._on_content,
            "end": self._on_end,
            "credits": self._on_credits,
            "error": self._on_error,
            "custom_stream": self._on_custom_stream,
            "message_stream": self._on_message_stream,
            "billing": self._on_billing,
        }

    def classify(self, raw_text: str) -> Optional[Event]:
        try:
            envelope = json.loads(raw_text)
        except (json.JSONDecodeError, TypeError) as exc:
            self._drop("Dropping malformed frame", raw_text, exc)
            return None
        if not isinstance(envelope, dict):
            self._drop("Dropping non-object frame", raw_text)
            return None

        try:
            return self._classify_envelope(envelope)
        except Exception as exc:
            self._drop("Dropping frame that failed classification", raw_text, exc)
            return None

    def _drop(self, message: str, raw_text: str, error: Exception = None) -> None:
        self.dropped_frames += 1
        data = {"frame": str(raw_text)[:200]}
        if error is not None:
            data["error"] = str(error)
        logger.warning(message, extra={"component": "EventClassifier", "data": data})

    def _classify_envelope(self, envelope: Dict[str, Any]) -> Event:
        event_type = envelope.get("type") or "unknown"
        handler = self._handlers.get(event_type) if isinstance(event_type, str) else None
        if handler is None:
            logger.debug("Unknown event type", extra={"data": {"type": event_type}})
            return Event(kind=EventKind.UNKNOWN, payload={"type": event_type, "raw": envelope})
        return handler(envelope)

    def _on_start(self, envelope: Dict[str, Any]) -> Event:
        return Event(kind=EventKind.START, payload={"metadata": envelope.get("metadata") or {}})

    def _on_custom_event(self, envelope: Dict[str, Any]) -> Event:
        chunk = (envelope.get("metadata") or {}).get("raw_chunk")
        if not isinstance(chunk, dict):
            return Event(kind=EventKind.UNKNOWN, payload={"type": "custom_event", "raw": envelope})

        batch = chunk.get("response_batch")
        if isinstance(batch, dict) and batch.get("status") == "streaming":
            return Event(
                kind=EventKind.TOKEN_BATCH,
                payload={
                    "tokens": batch.get("tokens") or "",
                    "start_index": batch.get("start_index"),
                    "count": batch.get("count"),
                    "total_index": batch.get("total_index"),
                },
            )

        token = chunk.get("response_token")
        if isinstance(token, dict) and token.get("status") == "completed":
            return Event(kind=EventKind.TOKEN_COMPLETE)

        # The first status-bearing value decides, even when it is not active.
        for key, value in chunk.items():
            if isinstance(value, dict) and "status" in value:
                if value.get("status") in ACTIVE_WORKFLOW_STATUSES:
                    return Event(
                        kind=EventKind.WORKFLOW_STATUS,
                        payload={"key": key, "status": value.get("status"), "label": workflow_label(key)},
                    )
                break

        return Event(kind=EventKind.UNKNOWN, payload={"type": "custom_event", "raw": envelope})

    def _on_node_update(self, envelope: Dict[str, Any]) -> Event:
        metadata = envelope.get("metadata") or {}
        node_name = metadata.get("node_name")
        return Event(
            kind=EventKind.NODE_UPDATE,
            payload={
                "node_name": node_name,
                "credits_used": metadata.get("credits_used"),
                "messages_count": metadata.get("messages_count"),
                "label": node_label(node_name),
            },
        )

    def _on_content(self, envelope: Dict[str, Any]) -> Event:
        return Event(kind=EventKind.CONTENT, payload={"content": envelope.get("content") or ""})

    def _on_end(self, envelope: Dict[str, Any]) -> Event:
        return Event(kind=EventKind.END)

    def _on_credits(self, envelope: Dict[str, Any]) -> Event:
        return Event(kind=EventKind.CREDITS, payload={"content": envelope.get("content")})

    def _on_error(self, envelope: Dict[str, Any]) -> Event:
        content = envelope.get("content")
        return Event(kind=EventKind.ERROR, payload={"message": f"API Error: {content}"})

    def _on_custom_stream(self, envelope: Dict[str, Any]) -> Event:
        content = envelope.get("content")
        if isinstance(content, dict) and content.get("custom_llm_chunk"):
            return Event(
                kind=EventKind.TOKEN_BATCH,
                payload={"tokens": content["custom_llm_chunk"], "start_index": None,
                         "count": None, "total_index": None},
            )
        if isinstance(content, dict) and (content.get("type") in ("progress", "task_status", "task_list")
                                          or isinstance(content.get("data"), str)):
            return Event(kind=EventKind.TASK_UPDATE, payload={"source": "custom_stream", "content": content})
        return Event(kind=EventKind.UNKNOWN, payload={"type": "custom_stream", "raw": envelope})

    def _on_message_stream(self, envelope: Dict[str, Any]) -> Event:
        content = envelope.get("content")
        raw_message = content.get("raw_message") if isinstance(content, dict) else None
        if isinstance(raw_message, str) and "tool_calls=" in raw_message:
            return Event(kind=EventKind.TASK_UPDATE, payload={"source": "message_stream", "content": content})
        return Event(kind=EventKind.UNKNOWN, payload={"type": "message_stream", "raw": envelope})

    def _on_billing(self, envelope: Dict[str, Any]) -> Event:
        return Event(
            kind=EventKind.TASK_UPDATE,
            payload={"source": "billing", "content": envelope.get("data") or {}},
        )
