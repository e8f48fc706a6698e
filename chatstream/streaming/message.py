"""
State machine for the single in-flight assistant message.

idle -> streaming -> finalizing -> complete, with streaming|finalizing ->
errored on transport failure. Completion hands the finalized text to the
registered finalize handler and returns the slot to idle.
"""

from __future__ import annotations

import logging
import time
import uuid
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel

from chatstream.streaming.events import Event, EventKind
from chatstream.streaming.final_response import FinalizedMessage, detect_structured, parse_final_response
from chatstream.streaming.partial_json import PartialFieldExtractor
from core.bus import EventBus, Topic
from logging_config import log_debug, log_error, log_warning

logger = logging.getLogger(__name__)

PLACEHOLDER_STATUS = "Connecting to AI..."
FINALIZING_STATUS = "Finalizing response..."


class MessageStatus(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    ERRORED = "errored"


ACTIVE_STATUSES = (MessageStatus.STREAMING, MessageStatus.FINALIZING)


class StreamingMessage(BaseModel):
    """The assistant message currently being rendered."""

    id: str
    accumulated_text: str = ""
    visible_text: str = ""
    status: MessageStatus = MessageStatus.STREAMING
    last_status_label: str = PLACEHOLDER_STATUS
    structured: Optional[bool] = None
    error: Optional[str] = None


def new_message_id() -> str:
    return f"streaming-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


class StreamingMessageMachine:
    """Owns the lifecycle of the currently rendering assistant message."""

    def __init__(self,
                 bus: EventBus,
                 on_finalized: Optional[Callable[[FinalizedMessage], None]] = None,
                 extractor: Optional[PartialFieldExtractor] = None,
                 id_factory: Callable[[], str] = new_message_id):
        self.bus = bus
        self.on_finalized = on_finalized
        self.extractor = extractor or PartialFieldExtractor()
        self.id_factory = id_factory
        self.current: Optional[StreamingMessage] = None
        self.last_message: Optional[StreamingMessage] = None

    @property
    def status(self) -> MessageStatus:
        return self.current.status if self.current else MessageStatus.IDLE

    @property
    def is_active(self) -> bool:
        return self.current is not None and self.current.status in ACTIVE_STATUSES

    def handle(self, event: Event) -> None:
        """Apply one classified event."""
        kind = event.kind
        if kind == EventKind.START:
            self.start()
        elif kind == EventKind.TOKEN_BATCH:
            self.append(event.payload.get("tokens") or "", event.payload.get("total_index"))
        elif kind == EventKind.TOKEN_COMPLETE:
            self.complete("token_complete")
        elif kind in (EventKind.WORKFLOW_STATUS, EventKind.NODE_UPDATE):
            self.update_status(event.payload.get("label") or "")
        elif kind == EventKind.CONTENT:
            self._apply_content(event.payload.get("content") or "")
        elif kind == EventKind.END:
            self.complete("end")
        elif kind == EventKind.ERROR:
            self.fail(event.payload.get("message") or "stream error")

    def start(self) -> StreamingMessage:
        if self.is_active:
            log_warning(logger, "Start received while a message is active, force-finalizing it",
                        "StreamingMessage", {"message_id": self.current.id})
            self.complete("restart")

        self.current = StreamingMessage(id=self.id_factory())
        self.bus.emit(Topic.MESSAGE_STARTED, self.current.id)
        self.bus.emit(Topic.MESSAGE_STATUS, self.current.last_status_label)
        log_debug(logger, "Streaming message started", "StreamingMessage", {"message_id": self.current.id})
        return self.current

    def append(self, tokens: str, total_index: Optional[int] = None) -> str:
        """Append raw tokens and emit the visible delta; returns the delta."""
        message = self.current
        if message is None or message.status != MessageStatus.STREAMING:
            log_warning(logger, "Dropping tokens outside an active stream", "StreamingMessage",
                        {"status": self.status.value, "tokens": tokens[:80]})
            return ""
        if not tokens:
            return ""

        message.accumulated_text += tokens
        if message.structured is None:
            message.structured = detect_structured(message.accumulated_text)

        if message.structured is None:
            delta = ""
        elif message.structured:
            delta = self.extractor.extract_delta(message.accumulated_text, tokens)
        else:
            # Prose releases anything held back while the format was undecided.
            delta = message.accumulated_text[len(message.visible_text):]

        if delta:
            message.visible_text += delta
            self.bus.emit(Topic.MESSAGE_APPENDED, delta)

        count = total_index if total_index is not None else len(message.accumulated_text)
        self.update_status(f"Streaming... ({count} chars)")
        return delta

    def update_status(self, label: str) -> None:
        if not self.is_active or not label:
            return
        self.current.last_status_label = label
        self.bus.emit(Topic.MESSAGE_STATUS, label)

    def complete(self, reason: str = "end") -> Optional[FinalizedMessage]:
        """Move the active message to complete; a no-op when nothing is active."""
        message = self.current
        if message is None or message.status not in ACTIVE_STATUSES:
            log_debug(logger, "Completion ignored, no active message", "StreamingMessage", {"reason": reason})
            return None

        if message.structured is None and message.accumulated_text:
            self._release_held(message)
        message.status = MessageStatus.FINALIZING
        self.update_status(FINALIZING_STATUS)
        message.status = MessageStatus.COMPLETE
        self.current = None
        self.last_message = message
        self.bus.emit(Topic.MESSAGE_FINISHED, message)

        try:
            finalized = parse_final_response(message.id, message.accumulated_text)
        except Exception as e:
            log_error(logger, f"Could not parse final response: {e}", "StreamingMessage", e)
            finalized = FinalizedMessage(id=message.id, content=message.accumulated_text,
                                         raw_text=message.accumulated_text)
        log_debug(logger, "Streaming message complete", "StreamingMessage", {
            "message_id": message.id,
            "reason": reason,
            "length": len(message.accumulated_text),
        })
        if self.on_finalized is not None:
            try:
                self.on_finalized(finalized)
            except Exception as e:
                log_error(logger, f"Finalize handler failed: {e}", "StreamingMessage", e)
        return finalized

    def force_finalize(self) -> Optional[FinalizedMessage]:
        """Complete whatever is active; used for aborts and stream close."""
        return self.complete("forced")

    def fail(self, error: str) -> bool:
        """Mark the active message errored and release the slot."""
        message = self.current
        if message is None or message.status not in ACTIVE_STATUSES:
            log_warning(logger, "Error received with no active message", "StreamingMessage", {"error": error})
            return False

        message.status = MessageStatus.ERRORED
        message.error = error
        self.current = None
        self.last_message = message
        self.bus.emit(Topic.MESSAGE_ERRORED, message, error)
        self.bus.emit(Topic.MESSAGE_FINISHED, message)
        return True

    def _release_held(self, message: StreamingMessage) -> None:
        # A stream that ends before its format is known is prose.
        message.structured = False
        held = message.accumulated_text[len(message.visible_text):]
        if held:
            message.visible_text += held
            self.bus.emit(Topic.MESSAGE_APPENDED, held)

    def _apply_content(self, content: str) -> None:
        # Token events normally delivered this text already.
        message = self.current
        if message is None or message.status != MessageStatus.STREAMING:
            return
        if message.accumulated_text or not content:
            log_debug(logger, "Content event ignored, tokens already delivered", "StreamingMessage",
                      {"message_id": message.id})
            return
        self.append(content)
