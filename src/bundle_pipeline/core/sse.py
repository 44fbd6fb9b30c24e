"""Server-sent-event framing of progress events."""

import codecs
import json
from typing import AsyncIterable, AsyncIterator, List, Union

from .logging_config import get_logger
from .progress import parse_event

logger = get_logger("sse")

DATA_PREFIX = "data: "


def encode_event(event) -> str:
    """Frame one event as ``data: <json>`` followed by a blank line."""
    return f"{DATA_PREFIX}{json.dumps(event.to_payload(), ensure_ascii=False)}\n\n"


class SSEDecoder:
    """
    Incremental decoder for a ``data:``-framed event stream.

    Chunks may split lines (and multi-byte characters) anywhere. Complete
    lines are parsed as they arrive; a trailing partial line is kept until
    the next chunk completes it.
    """

    def __init__(self):
        self._buffer = ""
        self._text_decoder = codecs.getincrementaldecoder("utf-8")()

    @property
    def pending(self) -> str:
        return self._buffer

    def feed(self, chunk: Union[str, bytes]) -> List:
        if isinstance(chunk, bytes):
            chunk = self._text_decoder.decode(chunk)
        self._buffer += chunk

        lines = self._buffer.split("\n")
        self._buffer = lines.pop()

        events = []
        for line in lines:
            line = line.rstrip("\r")
            if not line.startswith(DATA_PREFIX.rstrip()):
                continue
            payload = line[len("data:"):].strip()
            if not payload:
                continue
            events.append(parse_event(payload))
        return events

    def flush(self) -> List:
        """Parse whatever is left once the stream has ended."""
        remainder = self._text_decoder.decode(b"", final=True)
        tail = self._buffer + remainder
        self._buffer = ""
        if not tail.strip():
            return []
        return self.feed(tail + "\n")


async def iter_sse_events(chunks: AsyncIterable[Union[str, bytes]]) -> AsyncIterator:
    """Turn raw stream chunks into parsed progress events."""
    decoder = SSEDecoder()
    async for chunk in chunks:
        for event in decoder.feed(chunk):
            yield event
    for event in decoder.flush():
        yield event
