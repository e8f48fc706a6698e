"""Artifact storage with an optional on-disk copy."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from chatstream.artifacts.models import Artifact, PendingArtifact
from logging_config import log_warning

logger = logging.getLogger(__name__)


class ArtifactStore:
    """Holds created artifacts, the single pending slot and the last generated image.

    When ``persist_directory`` is set every appended artifact is written as
    ``<artifact id>.json`` and existing files are loaded on construction, so
    message-id deduplication survives restarts.
    """

    def __init__(self, persist_directory: Optional[str] = None):
        self.persist_directory = Path(persist_directory) if persist_directory else None
        self.artifacts: List[Artifact] = []
        self.pending: Optional[PendingArtifact] = None
        self.last_generated_image: Optional[str] = None
        if self.persist_directory is not None:
            self.persist_directory.mkdir(parents=True, exist_ok=True)
            self.artifacts = self._load_all()

    def find_by_message_id(self, message_id: str) -> Optional[Artifact]:
        for artifact in self.artifacts:
            if artifact.message_id == message_id:
                return artifact
        return None

    def append(self, artifact: Artifact) -> Optional[Path]:
        """Add an artifact; returns the file it was written to, if persisted."""
        artifact_path = None
        if self.persist_directory is not None:
            artifact_path = self.persist_directory / f"{artifact.id}.json"
            with open(artifact_path, "w", encoding="utf-8") as file_obj:
                json.dump(artifact.model_dump(mode="json"), file_obj, indent=2, ensure_ascii=False)
        self.artifacts.append(artifact)
        return artifact_path

    def stage(self, pending: PendingArtifact) -> None:
        """Replace the pending slot; the last candidate wins."""
        self.pending = pending

    def clear_pending(self) -> None:
        self.pending = None

    def _load_all(self) -> List[Artifact]:
        loaded: List[Artifact] = []
        for artifact_path in sorted(self.persist_directory.glob("*.json")):
            try:
                with open(artifact_path, "r", encoding="utf-8") as file_obj:
                    loaded.append(Artifact.model_validate(json.load(file_obj)))
            except (OSError, json.JSONDecodeError, ValidationError) as e:
                log_warning(logger, f"Skipping unreadable artifact file: {artifact_path.name}",
                            "ArtifactStore", {"error": str(e)})
        loaded.sort(key=lambda artifact: artifact.created_at)
        return loaded
