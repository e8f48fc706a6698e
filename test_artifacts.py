#!/usr/bin/env python3
"""Tests for artifact staging, creation, deduplication and persistence."""

import json
import tempfile
import unittest
from unittest.mock import patch
from pathlib import Path

from chatstream.artifacts.engine import ArtifactEngine
from chatstream.artifacts.models import AppId, ContentType, UiContext
from chatstream.artifacts.store import ArtifactStore
from chatstream.streaming.final_response import FinalizedMessage, MediaItem, parse_final_response
from core.bus import EventBus, Topic
from exceptions import UnknownAppError

CAT_URL = "https://cdn.example.com/cat.png"


def image_message(message_id="streaming-1-abc"):
    return FinalizedMessage(
        id=message_id,
        content="Here is your cat.",
        content_types=["text", "image"],
        media_items=[MediaItem(type="image", url=CAT_URL)],
    )


def text_message(message_id="streaming-2-def"):
    return FinalizedMessage(
        id=message_id,
        content="Three trends stand out this quarter",
        media_items=[MediaItem(type="text")],
    )


class ArtifactTestBase(unittest.TestCase):

    def setUp(self):
        self.bus = EventBus()
        self.created = []
        self.images = []
        self.bus.subscribe(Topic.ARTIFACT_CREATED, self.created.append)
        self.bus.subscribe(Topic.IMAGE_GENERATED, self.images.append)
        self.store = ArtifactStore()
        self.engine = ArtifactEngine(self.store, self.bus)


class TestStagingRules(ArtifactTestBase):

    def test_scenario_d_image_intent_without_app(self):
        context = UiContext(triggering_user_input="generate a picture of a cat")
        pending = self.engine.stage(image_message(), context)
        self.assertIsNotNone(pending)
        self.assertEqual(pending.image_url, CAT_URL)
        self.assertEqual(pending.user_input, "generate a picture of a cat")

        artifact = self.engine.consume(UiContext(active_app_id="dream", sidebar_visible=True))
        self.assertIsNotNone(artifact)
        self.assertEqual(len(self.store.artifacts), 1)
        self.assertEqual(artifact.generated_content.type, ContentType.IMAGE)
        self.assertEqual(artifact.generated_content.thumbnail, CAT_URL)
        self.assertEqual(artifact.app_name, "Dream Generator")
        self.assertEqual(artifact.message_id, "streaming-1-abc")
        self.assertIsNone(self.store.pending)

    def test_image_without_intent_and_no_app_is_not_staged(self):
        context = UiContext(triggering_user_input="what is this?")
        self.assertIsNone(self.engine.stage(image_message(), context))

    def test_image_app_open_stages_and_sets_last_image(self):
        context = UiContext(active_app_id=AppId.DREAM, sidebar_visible=True)
        pending = self.engine.stage(image_message(), context)
        self.assertEqual(pending.user_input, "Generated image from AI")
        self.assertEqual(self.store.last_generated_image, CAT_URL)
        self.assertIn(CAT_URL, self.images)

    def test_text_app_stages_text_candidate(self):
        context = UiContext(active_app_id="omni", sidebar_visible=False)
        pending = self.engine.stage(text_message(), context)
        self.assertEqual(pending.text_content, "Three trends stand out this quarter")
        self.assertEqual(pending.user_input, "Content from chat for omni")

    def test_message_without_media_is_not_staged(self):
        message = FinalizedMessage(id="m", content="plain answer")
        self.assertIsNone(self.engine.stage(message, UiContext(active_app_id="omni", sidebar_visible=True)))

    def test_last_candidate_wins(self):
        context = UiContext(active_app_id="hunt")
        self.engine.stage(text_message("first"), context)
        self.engine.stage(text_message("second"), context)
        self.assertEqual(self.store.pending.message_id, "second")

    def test_unknown_app_rejected_at_construction(self):
        with self.assertRaises(UnknownAppError):
            UiContext(active_app_id="photoshop")


class TestCreationPass(ArtifactTestBase):

    def test_consume_requires_visible_sidebar_and_app(self):
        self.engine.stage(text_message(), UiContext(active_app_id="assistant"))
        self.assertIsNone(self.engine.consume(UiContext(active_app_id="assistant", sidebar_visible=False)))
        self.assertIsNotNone(self.store.pending)

        artifact = self.engine.consume(UiContext(active_app_id="assistant", sidebar_visible=True))
        self.assertEqual(artifact.title, "Assistant Response")
        self.assertEqual(artifact.app_icon, "🤖")
        self.assertEqual(artifact.generated_content.metadata["word_count"], 6)
        self.assertEqual(self.created, [artifact])

    def test_scenario_e_same_message_twice(self):
        context = UiContext(active_app_id="dream", sidebar_visible=True)
        message = image_message()
        self.engine.process(message, context)
        self.engine.process(message, context)
        self.assertEqual(len(self.store.artifacts), 1)
        self.assertEqual(len(self.created), 1)
        self.assertIsNone(self.store.pending)

    def test_image_candidate_for_text_app_is_dropped(self):
        self.engine.stage(image_message(), UiContext(triggering_user_input="draw a cat"))
        artifact = self.engine.consume(UiContext(active_app_id="omni", sidebar_visible=True))
        self.assertIsNone(artifact)
        self.assertEqual(self.store.artifacts, [])
        self.assertIsNone(self.store.pending)

    def test_artifact_ids_are_unique(self):
        context = UiContext(active_app_id="knowledge", sidebar_visible=True)
        first = self.engine.process(text_message("a"), context)
        second = self.engine.process(text_message("b"), context)
        self.assertNotEqual(first.id, second.id)
        self.assertTrue(first.id.startswith("artifact-"))


class TestArtifactPersistence(unittest.TestCase):

    def test_dedup_survives_reload(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            bus = EventBus()
            context = UiContext(active_app_id="data-scientist", sidebar_visible=True)
            store = ArtifactStore(temp_dir)
            artifact = ArtifactEngine(store, bus).process(text_message(), context)

            saved = Path(temp_dir) / f"{artifact.id}.json"
            self.assertTrue(saved.exists())
            payload = json.loads(saved.read_text(encoding="utf-8"))
            self.assertEqual(payload["app_id"], "data-scientist")

            reloaded = ArtifactStore(temp_dir)
            self.assertEqual(len(reloaded.artifacts), 1)
            self.assertIsNone(ArtifactEngine(reloaded, bus).process(text_message(), context))
            self.assertEqual(len(reloaded.artifacts), 1)

    def test_failed_write_leaves_store_unchanged(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            bus = EventBus()
            created = []
            bus.subscribe(Topic.ARTIFACT_CREATED, created.append)
            context = UiContext(active_app_id="data-scientist", sidebar_visible=True)
            store = ArtifactStore(temp_dir)
            engine = ArtifactEngine(store, bus)

            with patch("chatstream.artifacts.store.open", side_effect=OSError("read-only"), create=True):
                with self.assertRaises(OSError):
                    engine.process(text_message(), context)

            self.assertEqual(store.artifacts, [])
            self.assertEqual(created, [])
            self.assertIsNone(store.pending)
            self.assertIsNotNone(engine.process(text_message(), context))
            self.assertEqual(len(created), 1)

    def test_unreadable_files_are_skipped(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            (Path(temp_dir) / "broken.json").write_text("{", encoding="utf-8")
            self.assertEqual(ArtifactStore(temp_dir).artifacts, [])


class TestFinalResponse(unittest.TestCase):

    def test_structured_response_yields_media_items(self):
        text = json.dumps({"formatted_content": "A cat", "media_items": [{"type": "image", "url": CAT_URL}]})
        message = parse_final_response("m1", text)
        self.assertEqual(message.content, "A cat")
        self.assertEqual(message.image_item.url, CAT_URL)

    def test_fenced_structured_response(self):
        text = '```json\n{"formatted_content": "fenced"}\n```'
        self.assertEqual(parse_final_response("m2", text).content, "fenced")

    def test_markdown_images_in_prose(self):
        message = parse_final_response("m3", f"Look: ![cat]({CAT_URL})")
        self.assertEqual(message.image_item.url, CAT_URL)

    def test_invalid_json_falls_back_to_text(self):
        message = parse_final_response("m4", '{"formatted_content": "cut off')
        self.assertEqual(message.content, '{"formatted_content": "cut off')
        self.assertEqual(message.media_items, [])


    def test_malformed_media_items_are_skipped(self):
        text = json.dumps({
            "formatted_content": "A cat",
            "content_types": "image",
            "media_items": [{"type": "image", "url": 123}, "junk", {"type": "image", "url": CAT_URL}],
        })
        message = parse_final_response("m5", text)
        self.assertEqual([item.url for item in message.media_items], [CAT_URL])
        self.assertEqual(message.content_types, ["text", "image"])


class TestPipelineArtifacts(unittest.TestCase):

    def test_finalized_stream_creates_artifact(self):
        from core.pipeline import StreamPipeline

        context = UiContext(active_app_id="dream", sidebar_visible=True,
                            triggering_user_input="draw a cat")
        pipeline = StreamPipeline(ui_context_provider=lambda: context)
        body = json.dumps({"formatted_content": "Done", "media_items": [{"type": "image", "url": CAT_URL}]})
        chunk = {"response_batch": {"tokens": body, "status": "streaming"}}
        pipeline.feed_chunk(b'data: {"type":"start"}\n')
        pipeline.feed_chunk(("data: " + json.dumps({"type": "custom_event",
                                                    "metadata": {"raw_chunk": chunk}}) + "\n").encode("utf-8"))
        pipeline.feed_chunk(b'data: {"type":"end"}\ndata: {"type":"end"}\n')

        self.assertEqual(len(pipeline.artifact_store.artifacts), 1)
        self.assertEqual(pipeline.artifact_store.last_generated_image, CAT_URL)


if __name__ == "__main__":
    unittest.main()
