"""Tests for line framing of the response stream."""

import asyncio
import unittest

from chatstream.streaming.frames import FrameDecoder, iter_frames


class TestFrameDecoder(unittest.TestCase):
    """Tests for FrameDecoder.feed / flush."""

    def test_complete_lines_become_frames(self):
        decoder = FrameDecoder()
        frames = decoder.feed(b'data: {"type":"start"}\ndata: {"type":"end"}\n')
        self.assertEqual([frame.raw_text for frame in frames], ['{"type":"start"}', '{"type":"end"}'])

    def test_partial_line_is_carried_over(self):
        decoder = FrameDecoder()
        self.assertEqual(decoder.feed(b'data: {"type":'), [])
        frames = decoder.feed(b'"start"}\n')
        self.assertEqual(len(frames), 1)
        self.assertEqual(frames[0].raw_text, '{"type":"start"}')

    def test_multibyte_character_split_across_chunks(self):
        decoder = FrameDecoder()
        encoded = 'data: {"content":"héllo"}\n'.encode("utf-8")
        split = encoded.index("é".encode("utf-8")) + 1
        self.assertEqual(decoder.feed(encoded[:split]), [])
        frames = decoder.feed(encoded[split:])
        self.assertEqual(frames[0].raw_text, '{"content":"héllo"}')

    def test_carriage_returns_are_stripped(self):
        decoder = FrameDecoder()
        frames = decoder.feed(b'data: {"type":"start"}\r\n')
        self.assertEqual(frames[0].raw_text, '{"type":"start"}')

    def test_non_data_lines_are_dropped(self):
        decoder = FrameDecoder()
        frames = decoder.feed(b'event: message\n: keep-alive\ndata: {"type":"end"}\n\n')
        self.assertEqual(len(frames), 1)
        self.assertEqual(decoder.dropped_lines, 2)

    def test_done_stops_decoding(self):
        decoder = FrameDecoder()
        frames = decoder.feed(b'data: {"type":"end"}\ndata: [DONE]\ndata: {"type":"start"}\n')
        self.assertEqual(len(frames), 1)
        self.assertTrue(decoder.done)
        self.assertEqual(decoder.feed(b'data: {"type":"start"}\n'), [])
        self.assertEqual(decoder.flush(), [])

    def test_flush_processes_unterminated_line(self):
        decoder = FrameDecoder()
        self.assertEqual(decoder.feed(b'data: {"type":"end"}'), [])
        frames = decoder.flush()
        self.assertEqual([frame.raw_text for frame in frames], ['{"type":"end"}'])
        self.assertEqual(decoder.flush(), [])

    def test_str_chunks_are_accepted(self):
        decoder = FrameDecoder()
        frames = decoder.feed('data: {"type":"start"}\n')
        self.assertEqual(len(frames), 1)


class TestIterFrames(unittest.TestCase):
    """Tests for the async frame iterator."""

    def test_yields_until_done(self):
        async def chunks():
            yield b'data: {"type":"start"}\n'
            yield b'data: [DONE]\n'
            yield b'data: {"type":"never"}\n'

        async def collect():
            return [frame.raw_text async for frame in iter_frames(chunks())]

        self.assertEqual(asyncio.run(collect()), ['{"type":"start"}'])

    def test_flushes_tail_at_close(self):
        async def chunks():
            yield b'data: {"type":"start"}\ndata: {"type"'
            yield b':"end"}'

        async def collect():
            return [frame.raw_text async for frame in iter_frames(chunks())]

        self.assertEqual(asyncio.run(collect()), ['{"type":"start"}', '{"type":"end"}'])


if __name__ == "__main__":
    unittest.main()
