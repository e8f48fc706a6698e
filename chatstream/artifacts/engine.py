"""
Artifact staging and creation.

``stage`` decides whether a finalized message becomes the pending candidate;
``consume`` turns the candidate into at most one artifact per source message
once an app is open in the sidebar.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from chatstream.artifacts.models import (
    APP_TEMPLATES,
    IMAGE_APP,
    IMAGE_KEYWORDS,
    TEXT_APPS,
    AppId,
    Artifact,
    ContentType,
    GeneratedContent,
    PendingArtifact,
    UiContext,
)
from chatstream.artifacts.store import ArtifactStore
from chatstream.streaming.final_response import FinalizedMessage
from core.bus import EventBus, Topic
from logging_config import log_debug, log_step_complete

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_INPUT = "Generated image from AI"


def has_image_intent(user_input: Optional[str]) -> bool:
    if not user_input:
        return False
    lowered = user_input.lower()
    return any(word in lowered for word in IMAGE_KEYWORDS)


def new_artifact_id(created: datetime) -> str:
    return f"artifact-{int(created.timestamp() * 1000)}-{str(uuid.uuid4())[:8]}"


class ArtifactEngine:
    """Applies the staging rules and the deduplicating creation pass."""

    def __init__(self, store: ArtifactStore, bus: EventBus):
        self.store = store
        self.bus = bus

    def stage(self, message: FinalizedMessage, context: UiContext) -> Optional[PendingArtifact]:
        """Stage a candidate for ``message`` if a rule matches.

        Rules, first match wins:
        1. image item, image-intent input, and no app open (or sidebar hidden);
        2. image item with the image app open in the sidebar;
        3. no image item with a text app active.
        """
        if not message.content or not message.media_items:
            return None

        app_id = context.active_app_id
        image = message.image_item
        pending: Optional[PendingArtifact] = None
        now = datetime.now(timezone.utc).isoformat()

        if image is not None:
            image_input = context.triggering_user_input or DEFAULT_IMAGE_INPUT
            if has_image_intent(context.triggering_user_input) and (app_id is None or not context.sidebar_visible):
                pending = PendingArtifact(image_url=image.url, user_input=image_input, timestamp=now,
                                          ai_response=message.content, message_id=message.id)
            elif app_id == IMAGE_APP and context.sidebar_visible:
                self._set_last_image(image.url)
                pending = PendingArtifact(image_url=image.url, user_input=image_input, timestamp=now,
                                          ai_response=message.content, message_id=message.id)
        elif app_id in TEXT_APPS:
            pending = PendingArtifact(
                text_content=message.content,
                user_input=context.triggering_user_input or f"Content from chat for {app_id.value}",
                timestamp=now,
                ai_response=message.content,
                message_id=message.id,
            )

        if pending is None:
            log_debug(logger, "No artifact rule matched", "ArtifactEngine",
                      {"message_id": message.id, "context": repr(context)})
            return None

        if self.store.pending is not None:
            log_debug(logger, "Replacing pending artifact", "ArtifactEngine",
                      {"previous": self.store.pending.message_id, "current": message.id})
        self.store.stage(pending)
        self.bus.emit(Topic.ARTIFACT_STAGED, pending)
        return pending

    def consume(self, context: UiContext) -> Optional[Artifact]:
        """Materialize the pending candidate; the slot is cleared whatever the outcome."""
        pending = self.store.pending
        if pending is None or not (context.sidebar_visible and context.active_app_id):
            return None

        try:
            if pending.message_id and self.store.find_by_message_id(pending.message_id) is not None:
                log_debug(logger, "Artifact already exists for message", "ArtifactEngine",
                          {"message_id": pending.message_id})
                return None

            artifact = self._build(pending, context.active_app_id)
            if artifact is None:
                log_debug(logger, "Pending artifact does not fit the active app", "ArtifactEngine",
                          {"app_id": context.active_app_id.value, "type": pending.content_type.value})
                return None

            self.store.append(artifact)
            if artifact.generated_content.type == ContentType.IMAGE:
                self._set_last_image(artifact.generated_content.content)
            log_step_complete(logger, "ArtifactEngine", "create_artifact", f"Created artifact: {artifact.title}",
                              {"artifact_id": artifact.id, "app_id": artifact.app_id.value,
                               "message_id": pending.message_id})
            self.bus.emit(Topic.ARTIFACT_CREATED, artifact)
            return artifact
        finally:
            self.store.clear_pending()

    def process(self, message: FinalizedMessage, context: UiContext) -> Optional[Artifact]:
        self.stage(message, context)
        return self.consume(context)

    def _build(self, pending: PendingArtifact, app_id: AppId) -> Optional[Artifact]:
        created = datetime.fromisoformat(pending.timestamp)
        metadata = {
            "generated_at": pending.timestamp,
            "prompt": pending.user_input,
            "message_id": pending.message_id,
        }

        if app_id == IMAGE_APP and pending.image_url:
            metadata["ai_response"] = pending.ai_response or "Generated content"
            content = GeneratedContent(type=ContentType.IMAGE, content=pending.image_url,
                                       thumbnail=pending.image_url, metadata=metadata)
        elif app_id in TEXT_APPS and pending.text_content:
            metadata["word_count"] = len(pending.text_content.split(" "))
            content = GeneratedContent(type=ContentType.TEXT, content=pending.text_content, metadata=metadata)
        else:
            return None

        template = APP_TEMPLATES[app_id]
        return Artifact(
            id=new_artifact_id(created),
            app_id=app_id,
            app_name=template.app_name,
            app_icon=template.app_icon,
            title=template.title,
            user_input=pending.user_input,
            created_at=pending.timestamp,
            generated_content=content,
        )

    def _set_last_image(self, url: Optional[str]) -> None:
        if url:
            self.store.last_generated_image = url
            self.bus.emit(Topic.IMAGE_GENERATED, url)
