"""Append-only recording of classified stream events, and replay."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, List

from chatstream.streaming.events import Event, EventKind

if TYPE_CHECKING:
    from core.pipeline import StreamPipeline

logger = logging.getLogger(__name__)


class StreamEventLog:
    """Read/write JSONL stream events for one session."""

    def __init__(self, directory: Path, session_id: str = "default"):
        self.directory = Path(directory)
        self.events_file = self.directory / f"{session_id}.events.jsonl"

    @classmethod
    def from_file(cls, path: Path) -> "StreamEventLog":
        """Open an existing recording by path."""
        path = Path(path)
        log = cls(path.parent)
        log.events_file = path
        return log

    def emit(self, event: Event) -> None:
        """Append one event to the recording."""
        self.directory.mkdir(parents=True, exist_ok=True)
        with open(self.events_file, "a", encoding="utf-8") as file_obj:
            file_obj.write(json.dumps(event.model_dump(mode="json"), ensure_ascii=False))
            file_obj.write("\n")
            file_obj.flush()

    def read_all(self) -> List[Event]:
        if not self.events_file.exists():
            return []

        events: List[Event] = []
        with open(self.events_file, "r", encoding="utf-8") as file_obj:
            for line in file_obj:
                payload = line.strip()
                if not payload:
                    continue
                events.append(Event.model_validate_json(payload))
        return events

    def read_by_kind(self, kind: EventKind) -> List[Event]:
        return [event for event in self.read_all() if event.kind == kind]

    def count(self) -> int:
        return len(self.read_all())


def replay(events: Iterable[Event], pipeline: "StreamPipeline", finish: bool = True) -> int:
    """Drive ``pipeline`` with recorded events; returns how many were applied."""
    applied = 0
    for event in events:
        pipeline.process_event(event)
        applied += 1
    if finish:
        pipeline.finish_stream()
    logger.debug("Replay finished", extra={"data": {"events": applied}})
    return applied
