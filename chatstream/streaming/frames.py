"""Line framing for the server-sent chat response stream."""

from __future__ import annotations

import codecs
import logging
from typing import AsyncIterator, List, Optional, Union

from pydantic import BaseModel

logger = logging.getLogger(__name__)

FRAME_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


class Frame(BaseModel):
    """One transport line with the data prefix removed."""

    raw_text: str


class FrameDecoder:
    """Splits raw byte chunks into ``data:`` frames.

    Chunk boundaries do not line up with line boundaries, so the trailing
    partial line is carried over to the next ``feed`` call. Lines without the
    ``data: `` prefix are dropped without error. ``data: [DONE]`` ends the
    stream; nothing after it is decoded.
    """

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self.done = False
        self.dropped_lines = 0

    def feed(self, chunk: Union[bytes, str]) -> List[Frame]:
        """Decode one chunk and return every complete frame it finished."""
        if self.done:
            return []
        text = chunk if isinstance(chunk, str) else self._decoder.decode(chunk)
        self._buffer += text
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return self._process_lines(lines)

    def flush(self) -> List[Frame]:
        """Process whatever is left in the buffer once the stream closed."""
        if self.done:
            return []
        tail = self._decoder.decode(b"", final=True)
        remaining = self._buffer + tail
        self._buffer = ""
        if not remaining:
            return []
        return self._process_lines(remaining.split("\n"))

    def _process_lines(self, lines: List[str]) -> List[Frame]:
        frames: List[Frame] = []
        for line in lines:
            frame = self._parse_line(line)
            if self.done:
                break
            if frame is not None:
                frames.append(frame)
        return frames

    def _parse_line(self, line: str) -> Optional[Frame]:
        line = line.rstrip("\r")
        if not line.strip():
            return None
        if not line.startswith(FRAME_PREFIX):
            self.dropped_lines += 1
            logger.debug("Dropping non-data line", extra={"data": {"line": line[:200]}})
            return None
        payload = line[len(FRAME_PREFIX):].strip()
        if payload == DONE_SENTINEL:
            self.done = True
            return None
        if not payload:
            return None
        return Frame(raw_text=payload)


async def iter_frames(chunks: AsyncIterator[Union[bytes, str]],
                      decoder: Optional[FrameDecoder] = None) -> AsyncIterator[Frame]:
    """Yield frames from an async chunk iterator until ``[DONE]`` or close."""
    decoder = decoder or FrameDecoder()
    async for chunk in chunks:
        for frame in decoder.feed(chunk):
            yield frame
        if decoder.done:
            return
    for frame in decoder.flush():
        yield frame
