"""Tests for the streaming message state machine and its wiring in the pipeline."""

import json
import unittest
from unittest.mock import patch

from chatstream.streaming.events import Event, EventKind
from chatstream.streaming.message import MessageStatus, StreamingMessageMachine
from core.bus import EventBus, Topic
from core.pipeline import StreamPipeline


def batch_frame(tokens, total_index=None):
    chunk = {"response_batch": {"tokens": tokens, "status": "streaming"}}
    if total_index is not None:
        chunk["response_batch"]["total_index"] = total_index
    return "data: " + json.dumps({"type": "custom_event", "metadata": {"raw_chunk": chunk}}) + "\n"


class BusRecorder:
    """Collects every emission per topic."""

    def __init__(self, bus):
        self.calls = {topic: [] for topic in Topic}
        for topic in Topic:
            bus.subscribe(topic, self._recorder(topic))

    def _recorder(self, topic):
        def record(*args):
            self.calls[topic].append(args)
        return record

    def first_args(self, topic):
        return [args[0] for args in self.calls[topic]]


class TestStreamingThroughPipeline(unittest.TestCase):

    def setUp(self):
        self.pipeline = StreamPipeline()
        self.recorder = BusRecorder(self.pipeline.bus)

    def test_scenario_a_tokens_then_end(self):
        stream = ('data: {"type":"start"}\n' + batch_frame("Hel") + batch_frame("lo")
                  + 'data: {"type":"end"}\n')
        self.pipeline.feed_chunk(stream.encode("utf-8"))

        self.assertEqual(self.recorder.first_args(Topic.MESSAGE_APPENDED), ["Hel", "lo"])
        finished = self.recorder.first_args(Topic.MESSAGE_FINISHED)
        self.assertEqual(len(finished), 1)
        self.assertEqual(finished[0].accumulated_text, "Hello")
        self.assertEqual(finished[0].status, MessageStatus.COMPLETE)
        self.assertEqual(self.pipeline.messages.status, MessageStatus.IDLE)

    def test_scenario_b_bad_line_then_start(self):
        self.pipeline.feed_chunk(b'data: not-json\ndata: {"type":"start"}\n')
        self.assertEqual(len(self.recorder.calls[Topic.MESSAGE_STARTED]), 1)
        self.assertEqual(self.pipeline.classifier.dropped_frames, 1)
        self.assertTrue(self.pipeline.messages.is_active)

    def test_chunk_boundaries_do_not_matter(self):
        stream = ('data: {"type":"start"}\n' + batch_frame("Hel") + batch_frame("lo")
                  + 'data: {"type":"end"}\n').encode("utf-8")
        for index in range(0, len(stream), 7):
            self.pipeline.feed_chunk(stream[index:index + 7])
        self.assertEqual("".join(self.recorder.first_args(Topic.MESSAGE_APPENDED)), "Hello")

    def test_stream_close_without_end_force_finalizes(self):
        self.pipeline.feed_chunk(('data: {"type":"start"}\n' + batch_frame("partial")).encode("utf-8"))
        self.pipeline.finish_stream()
        finished = self.recorder.first_args(Topic.MESSAGE_FINISHED)
        self.assertEqual([message.accumulated_text for message in finished], ["partial"])

    def test_structured_response_streams_formatted_content_only(self):
        self.pipeline.feed_chunk(b'data: {"type":"start"}\n')
        for fragment in ['{"formatted_content":"He', 'llo\\n', 'World", "media_items": []}']:
            self.pipeline.feed_chunk(batch_frame(fragment).encode("utf-8"))
        self.pipeline.feed_chunk(b'data: {"type":"end"}\n')

        self.assertEqual(self.recorder.first_args(Topic.MESSAGE_APPENDED), ["He", "llo\n", "World"])
        finished = self.recorder.first_args(Topic.MESSAGE_FINISHED)[0]
        self.assertEqual(finished.visible_text, "Hello\nWorld")

    def test_structured_fence_split_across_tokens(self):
        self.pipeline.feed_chunk(b'data: {"type":"start"}\n')
        for fragment in ["```", 'json\n{"formatted_content":"Hi', ' there"}\n```']:
            self.pipeline.feed_chunk(batch_frame(fragment).encode("utf-8"))
        self.pipeline.feed_chunk(b'data: {"type":"end"}\n')

        self.assertEqual(self.recorder.first_args(Topic.MESSAGE_APPENDED), ["Hi", " there"])
        self.assertEqual(self.recorder.first_args(Topic.MESSAGE_FINISHED)[0].visible_text, "Hi there")

    def test_status_labels(self):
        self.pipeline.feed_chunk(b'data: {"type":"start"}\n')
        self.pipeline.feed_chunk(b'data: {"type":"node_update","metadata":{"node_name":"reason_model"}}\n')
        self.pipeline.feed_chunk(batch_frame("abc", total_index=3).encode("utf-8"))
        self.assertEqual(self.recorder.first_args(Topic.MESSAGE_STATUS),
                         ["Connecting to AI...", "Processing with AI...", "Streaming... (3 chars)"])

    def test_credits_are_forwarded(self):
        self.pipeline.feed_chunk(b'data: {"type":"credits","content":7}\n')
        self.assertEqual(self.recorder.first_args(Topic.CREDITS), [7])


class TestStreamingMessageMachine(unittest.TestCase):

    def setUp(self):
        self.bus = EventBus()
        self.recorder = BusRecorder(self.bus)
        self.finalized = []
        self.machine = StreamingMessageMachine(self.bus, on_finalized=self.finalized.append)

    def feed(self, kind, **payload):
        self.machine.handle(Event(kind=kind, payload=payload))

    def test_end_is_idempotent(self):
        self.feed(EventKind.START)
        self.feed(EventKind.TOKEN_BATCH, tokens="Hi")
        self.feed(EventKind.END)
        self.feed(EventKind.END)
        self.assertEqual(len(self.recorder.calls[Topic.MESSAGE_FINISHED]), 1)
        self.assertEqual(len(self.finalized), 1)
        self.assertEqual(self.finalized[0].content, "Hi")

    def test_token_complete_then_end(self):
        self.feed(EventKind.START)
        self.feed(EventKind.TOKEN_BATCH, tokens="Hi")
        self.feed(EventKind.TOKEN_COMPLETE)
        self.feed(EventKind.END)
        self.assertEqual(len(self.recorder.calls[Topic.MESSAGE_FINISHED]), 1)

    def test_start_while_active_force_completes_previous(self):
        self.feed(EventKind.START)
        first_id = self.machine.current.id
        self.feed(EventKind.TOKEN_BATCH, tokens="one")
        self.feed(EventKind.START)
        self.feed(EventKind.START)

        finished = self.recorder.first_args(Topic.MESSAGE_FINISHED)
        self.assertEqual(len(finished), 2)
        self.assertEqual(finished[0].id, first_id)
        self.assertEqual(finished[0].accumulated_text, "one")
        self.assertTrue(self.machine.is_active)
        self.assertEqual(len(self.recorder.calls[Topic.MESSAGE_STARTED]), 3)

    def test_fence_like_prefix_is_released_as_prose(self):
        self.feed(EventKind.START)
        self.feed(EventKind.TOKEN_BATCH, tokens="``")
        self.assertEqual(self.recorder.calls[Topic.MESSAGE_APPENDED], [])
        self.feed(EventKind.TOKEN_BATCH, tokens="`py\nprint(1)")
        self.assertEqual(self.recorder.first_args(Topic.MESSAGE_APPENDED), ["```py\nprint(1)"])

    def test_undecided_text_is_released_on_end(self):
        self.feed(EventKind.START)
        self.feed(EventKind.TOKEN_BATCH, tokens="`")
        self.feed(EventKind.END)
        self.assertEqual(self.recorder.first_args(Topic.MESSAGE_APPENDED), ["`"])
        self.assertEqual(self.recorder.first_args(Topic.MESSAGE_FINISHED)[0].visible_text, "`")

    def test_malformed_media_items_do_not_block_next_message(self):
        self.feed(EventKind.START)
        self.feed(EventKind.TOKEN_BATCH,
                  tokens='{"formatted_content":"x","media_items":[{"type":"image","url":123}]}')
        self.feed(EventKind.START)
        self.feed(EventKind.TOKEN_BATCH, tokens="next")

        self.assertEqual(len(self.recorder.calls[Topic.MESSAGE_STARTED]), 2)
        self.assertEqual(self.finalized[0].content, "x")
        self.assertEqual(self.finalized[0].media_items, [])
        self.assertEqual(self.machine.current.accumulated_text, "next")

    def test_parse_failure_still_finalizes(self):
        with patch("chatstream.streaming.message.parse_final_response", side_effect=ValueError("boom")):
            self.feed(EventKind.START)
            self.feed(EventKind.TOKEN_BATCH, tokens="plain")
            self.feed(EventKind.START)

        self.assertEqual(len(self.recorder.calls[Topic.MESSAGE_STARTED]), 2)
        self.assertEqual(self.finalized[0].content, "plain")
        self.assertTrue(self.machine.is_active)

    def test_tokens_while_idle_are_dropped(self):
        self.feed(EventKind.TOKEN_BATCH, tokens="orphan")
        self.assertEqual(self.recorder.calls[Topic.MESSAGE_APPENDED], [])
        self.assertEqual(self.machine.status, MessageStatus.IDLE)

    def test_content_used_only_when_no_tokens_arrived(self):
        self.feed(EventKind.START)
        self.feed(EventKind.CONTENT, content="fallback text")
        self.feed(EventKind.CONTENT, content="duplicate")
        self.feed(EventKind.END)
        self.assertEqual(self.finalized[0].content, "fallback text")

    def test_content_ignored_after_tokens(self):
        self.feed(EventKind.START)
        self.feed(EventKind.TOKEN_BATCH, tokens="streamed")
        self.feed(EventKind.CONTENT, content="streamed")
        self.feed(EventKind.END)
        self.assertEqual(self.finalized[0].content, "streamed")

    def test_fail_marks_errored_without_finalizing(self):
        self.feed(EventKind.START)
        self.feed(EventKind.TOKEN_BATCH, tokens="half")
        self.assertTrue(self.machine.fail("connection reset"))
        self.feed(EventKind.END)

        errored = self.recorder.calls[Topic.MESSAGE_ERRORED]
        self.assertEqual(len(errored), 1)
        self.assertEqual(errored[0][1], "connection reset")
        self.assertEqual(len(self.recorder.calls[Topic.MESSAGE_FINISHED]), 1)
        self.assertEqual(self.machine.last_message.status, MessageStatus.ERRORED)
        self.assertEqual(self.finalized, [])

    def test_failing_finalize_handler_does_not_break_machine(self):
        def explode(message):
            raise RuntimeError("handler failed")

        machine = StreamingMessageMachine(self.bus, on_finalized=explode)
        machine.handle(Event(kind=EventKind.START))
        machine.handle(Event(kind=EventKind.END))
        self.assertEqual(machine.status, MessageStatus.IDLE)

    def test_failing_subscriber_is_isolated(self):
        def explode(*args):
            raise RuntimeError("subscriber failed")

        self.bus.subscribe(Topic.MESSAGE_APPENDED, explode)
        self.feed(EventKind.START)
        self.feed(EventKind.TOKEN_BATCH, tokens="ok")
        self.assertEqual(self.recorder.first_args(Topic.MESSAGE_APPENDED), ["ok"])


class TestEventBus(unittest.TestCase):

    def test_unsubscribe_is_idempotent(self):
        bus = EventBus()
        received = []
        unsubscribe = bus.subscribe(Topic.CREDITS, received.append)
        bus.emit(Topic.CREDITS, 1)
        unsubscribe()
        unsubscribe()
        bus.emit(Topic.CREDITS, 2)
        self.assertEqual(received, [1])
        self.assertEqual(bus.subscriber_count(Topic.CREDITS), 0)


if __name__ == "__main__":
    unittest.main()
