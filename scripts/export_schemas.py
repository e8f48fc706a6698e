#!/usr/bin/env python3
"""Export JSON schemas for the persisted and recorded records."""

from __future__ import annotations

import json
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from chatstream.artifacts.models import Artifact, PendingArtifact
from chatstream.streaming.events import Event
from chatstream.tasks.models import Task, TaskEvent

SCHEMA_MODELS = {
    "Artifact": Artifact,
    "PendingArtifact": PendingArtifact,
    "Task": Task,
    "TaskEvent": TaskEvent,
    "StreamEvent": Event,
}


def main(target: str = "schemas") -> int:
    target_dir = Path(target)
    target_dir.mkdir(parents=True, exist_ok=True)

    for name, model_cls in SCHEMA_MODELS.items():
        schema_path = target_dir / f"{name}.schema.json"
        with open(schema_path, "w", encoding="utf-8") as file_obj:
            json.dump(model_cls.model_json_schema(), file_obj, indent=2, ensure_ascii=False)

    return 0


if __name__ == "__main__":
    raise SystemExit(main(*sys.argv[1:2]))
