"""Artifact records and the static per-app template table."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from pydantic import BaseModel, Field

from exceptions import UnknownAppError


class AppId(str, Enum):
    """Apps that can own artifacts."""

    DREAM = "dream"
    OMNI = "omni"
    HUNT = "hunt"
    ASSISTANT = "assistant"
    DATA_SCIENTIST = "data-scientist"
    KNOWLEDGE = "knowledge"
    DIGITALHUB = "digitalhub"
    DOC = "doc"


class ContentType(str, Enum):
    IMAGE = "image"
    TEXT = "text"


IMAGE_APP = AppId.DREAM

TEXT_APPS: FrozenSet[AppId] = frozenset({
    AppId.OMNI,
    AppId.HUNT,
    AppId.ASSISTANT,
    AppId.DATA_SCIENTIST,
    AppId.KNOWLEDGE,
})

IMAGE_KEYWORDS = ("image", "generate", "create", "picture", "art", "draw", "photo")


class AppTemplate(BaseModel):
    app_name: str
    app_icon: str
    title: str


APP_TEMPLATES: Dict[AppId, AppTemplate] = {
    AppId.DREAM: AppTemplate(app_name="Dream Generator", app_icon="🎨", title="Dream Generation Complete"),
    AppId.OMNI: AppTemplate(app_name="Omni Content Generator", app_icon="⚡", title="Content Generation Session"),
    AppId.HUNT: AppTemplate(app_name="Hunt AI Search", app_icon="🔍", title="Product Search Results"),
    AppId.ASSISTANT: AppTemplate(app_name="AI Assistant", app_icon="🤖", title="Assistant Response"),
    AppId.DATA_SCIENTIST: AppTemplate(app_name="DataWise Analytics", app_icon="📊", title="Data Analysis Results"),
    AppId.KNOWLEDGE: AppTemplate(app_name="Knowledge Hub", app_icon="🧠", title="Knowledge Analysis Results"),
}


def parse_app_id(value: Any) -> Optional[AppId]:
    """Resolve an app id, raising ``UnknownAppError`` for unknown values."""
    if value is None or value == "":
        return None
    if isinstance(value, AppId):
        return value
    try:
        return AppId(value)
    except ValueError:
        raise UnknownAppError(f"Unknown app id: {value!r}") from None


class GeneratedContent(BaseModel):
    type: ContentType
    content: str
    thumbnail: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Artifact(BaseModel):
    """A generated output attached to a user turn. Never mutated once created."""

    id: str
    app_id: AppId
    app_name: str
    app_icon: str
    title: str
    user_input: str
    created_at: str
    generated_content: GeneratedContent

    @property
    def message_id(self) -> Optional[str]:
        return self.generated_content.metadata.get("message_id")


class PendingArtifact(BaseModel):
    """The single staged candidate waiting for an app to open."""

    image_url: Optional[str] = None
    text_content: Optional[str] = None
    user_input: str
    timestamp: str
    ai_response: Optional[str] = None
    message_id: Optional[str] = None

    @property
    def content_type(self) -> ContentType:
        return ContentType.IMAGE if self.image_url else ContentType.TEXT


class UiContext:
    """Read-only snapshot of the UI state the artifact rules depend on.

    ``active_app_id`` is validated on construction; an id outside ``AppId``
    raises ``UnknownAppError``.
    """

    def __init__(self, active_app_id: Any = None, sidebar_visible: bool = False,
                 triggering_user_input: Optional[str] = None):
        self.active_app_id: Optional[AppId] = parse_app_id(active_app_id)
        self.sidebar_visible = sidebar_visible
        self.triggering_user_input = triggering_user_input

    def __repr__(self) -> str:
        app = self.active_app_id.value if self.active_app_id else None
        return (f"UiContext(active_app_id={app!r}, sidebar_visible={self.sidebar_visible!r}, "
                f"triggering_user_input={self.triggering_user_input!r})")
