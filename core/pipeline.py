"""
Stream pipeline: bytes -> frames -> events -> state machines -> artifacts.

Every per-chunk and per-event entry point catches and logs its own errors so
one bad frame never stops the stream.
"""
import logging
from typing import Callable, Optional, Union

from chatstream.artifacts.engine import ArtifactEngine
from chatstream.artifacts.models import Artifact, UiContext
from chatstream.artifacts.store import ArtifactStore
from chatstream.recording.event_log import StreamEventLog
from chatstream.streaming.events import Event, EventClassifier, EventKind
from chatstream.streaming.final_response import FinalizedMessage
from chatstream.streaming.frames import Frame, FrameDecoder
from chatstream.streaming.message import StreamingMessageMachine
from chatstream.tasks.lifecycle import TaskLifecycle
from chatstream.tasks.registry import TaskRegistry
from chatstream.tasks.sources import parse_task_source
from core.bus import EventBus, Topic
from logging_config import log_debug, log_error, log_step_complete

logger = logging.getLogger(__name__)

MESSAGE_EVENT_KINDS = frozenset({
    EventKind.START,
    EventKind.TOKEN_BATCH,
    EventKind.TOKEN_COMPLETE,
    EventKind.WORKFLOW_STATUS,
    EventKind.NODE_UPDATE,
    EventKind.CONTENT,
    EventKind.END,
    EventKind.ERROR,
})

UiContextProvider = Callable[[], UiContext]


class StreamPipeline:
    """Wires the decoder, classifier and the three state holders together."""

    def __init__(self,
                 bus: EventBus = None,
                 task_registry: TaskRegistry = None,
                 artifact_store: ArtifactStore = None,
                 ui_context_provider: Optional[UiContextProvider] = None,
                 recorder: Optional[StreamEventLog] = None):
        self.bus = bus or EventBus()
        self.task_registry = task_registry or TaskRegistry()
        self.artifact_store = artifact_store or ArtifactStore()
        self.ui_context_provider = ui_context_provider or UiContext
        self.recorder = recorder

        self.classifier = EventClassifier()
        self.decoder = FrameDecoder()
        self.messages = StreamingMessageMachine(self.bus, on_finalized=self._on_finalized)
        self.tasks = TaskLifecycle(self.task_registry, self.bus)
        self.artifacts = ArtifactEngine(self.artifact_store, self.bus)

    def begin_stream(self) -> None:
        """Reset per-stream decoding state."""
        self.decoder = FrameDecoder()

    def feed_chunk(self, chunk: Union[bytes, str]) -> int:
        """Decode a transport chunk and apply its frames; returns the frame count."""
        try:
            frames = self.decoder.feed(chunk)
        except Exception as e:
            log_error(logger, f"Failed to decode chunk: {e}", "StreamPipeline", e)
            return 0
        for frame in frames:
            self.process_frame(frame)
        return len(frames)

    def process_frame(self, frame: Frame) -> Optional[Event]:
        try:
            event = self.classifier.classify(frame.raw_text)
        except Exception as e:
            log_error(logger, f"Failed to classify frame: {e}", "StreamPipeline", e)
            return None
        if event is not None:
            self.process_event(event)
        return event

    def process_event(self, event: Event) -> None:
        """Route one classified event to the state machine that owns it."""
        if self.recorder is not None:
            try:
                self.recorder.emit(event)
            except Exception as e:
                log_error(logger, f"Failed to record '{event.kind.value}' event: {e}", "StreamPipeline", e)

        try:
            if event.kind in MESSAGE_EVENT_KINDS:
                self.messages.handle(event)
            elif event.kind == EventKind.TASK_UPDATE:
                for task_event in parse_task_source(event.payload):
                    self.tasks.handle_task_event(task_event)
            elif event.kind == EventKind.CREDITS:
                self.bus.emit(Topic.CREDITS, event.payload.get("content"))
            else:
                log_debug(logger, "Ignoring unknown event", "StreamPipeline",
                          {"type": event.payload.get("type")})
        except Exception as e:
            log_error(logger, f"Failed to process '{event.kind.value}' event: {e}", "StreamPipeline", e)

    def finish_stream(self) -> None:
        """Stream closed: apply any unterminated final line, then force-finalize."""
        try:
            for frame in self.decoder.flush():
                self.process_frame(frame)
        except Exception as e:
            log_error(logger, f"Failed to flush decoder: {e}", "StreamPipeline", e)
        self.messages.force_finalize()
        log_step_complete(logger, "StreamPipeline", "finish_stream", "Stream finished",
                          {"dropped_frames": self.classifier.dropped_frames,
                           "dropped_lines": self.decoder.dropped_lines})
        self.begin_stream()

    def abort(self, reason: str = "Request aborted") -> None:
        """Caller cancelled the request; treated like ``end``."""
        self.messages.force_finalize()
        self.tasks.interrupt_stream_tasks(reason)
        self.begin_stream()

    def transport_failed(self, error: Exception) -> None:
        self.messages.fail(str(error))
        self.tasks.interrupt_stream_tasks(str(error))
        self.begin_stream()

    def consume_pending(self) -> Optional[Artifact]:
        """Run the creation pass, e.g. after the sidebar opens."""
        try:
            return self.artifacts.consume(self.ui_context_provider())
        except Exception as e:
            log_error(logger, f"Artifact creation failed: {e}", "StreamPipeline", e)
            return None

    def _on_finalized(self, message: FinalizedMessage) -> None:
        self.artifacts.process(message, self.ui_context_provider())
