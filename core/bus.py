"""
Outbound event bus for UI/store consumers of the streaming core.
Subscribers register per topic and receive synchronous callbacks.
"""
import logging
from enum import Enum
from typing import Any, Callable, Dict, List

from logging_config import log_error

logger = logging.getLogger(__name__)


class Topic(str, Enum):
    """Outbound notifications published by the core."""
    MESSAGE_STARTED = "message-started"
    MESSAGE_APPENDED = "message-appended"
    MESSAGE_FINISHED = "message-finished"
    MESSAGE_STATUS = "message-status"
    MESSAGE_ERRORED = "message-errored"
    TASK_CHANGED = "task-changed"
    ARTIFACT_STAGED = "artifact-staged"
    ARTIFACT_CREATED = "artifact-created"
    IMAGE_GENERATED = "image-generated"
    CREDITS = "credits"


Callback = Callable[..., Any]


class EventBus:
    """Topic-keyed callback registry."""

    def __init__(self):
        self._subscribers: Dict[Topic, List[Callback]] = {}

    def subscribe(self, topic: Topic, callback: Callback) -> Callable[[], None]:
        """
        Register a callback for a topic.

        Returns:
            An unsubscribe function; calling it more than once is a no-op.
        """
        topic = Topic(topic)
        self._subscribers.setdefault(topic, []).append(callback)

        def unsubscribe() -> None:
            self.unsubscribe(topic, callback)

        return unsubscribe

    def unsubscribe(self, topic: Topic, callback: Callback) -> None:
        """Remove a callback; unknown callbacks are ignored."""
        callbacks = self._subscribers.get(Topic(topic))
        if callbacks and callback in callbacks:
            callbacks.remove(callback)

    def subscriber_count(self, topic: Topic) -> int:
        return len(self._subscribers.get(Topic(topic), []))

    def emit(self, topic: Topic, *args: Any) -> None:
        """Deliver to every subscriber; a failing subscriber is logged and skipped."""
        for callback in list(self._subscribers.get(topic, [])):
            try:
                callback(*args)
            except Exception as e:
                log_error(logger, f"Subscriber for '{topic.value}' raised: {e}", "EventBus", e)
