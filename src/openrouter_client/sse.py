"""Server-sent-event decoding for streaming chat completions.

Frames look like ``data: {...json chunk...}`` followed by a blank line.
The stream ends with ``data: [DONE]``; OpenRouter interleaves
``: OPENROUTER PROCESSING`` keep-alive comments while the upstream model
warms up.
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import AsyncIterator

from openrouter_client.types import StreamChunk

_logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"
KEEPALIVE_MARKER = "OPENROUTER PROCESSING"


def parse_sse_line(line: str) -> StreamChunk | None:
    """Decode one complete line.  ``None`` means "nothing to yield".

    A malformed payload is logged and skipped rather than raised, so one
    bad frame does not end the stream.
    """
    line = line.strip()
    if not line or not line.startswith(DATA_PREFIX):
        return None
    data = line[len(DATA_PREFIX):].strip()
    if not data or data == DONE_SENTINEL or KEEPALIVE_MARKER in data:
        return None
    try:
        return StreamChunk.from_dict(json.loads(data))
    except (ValueError, KeyError, TypeError) as e:
        _logger.warning("Skipping malformed stream frame (%s): %.200s", e, data)
        return None


async def iter_sse_chunks(
    byte_stream: AsyncIterator[bytes],
) -> AsyncIterator[StreamChunk]:
    """Yield :class:`StreamChunk` objects in arrival order.

    Reads are pulled only as the consumer asks for more.  Iteration stops
    after the first terminal chunk or at end of input, and the underlying
    byte stream is closed on every exit path, including the consumer
    abandoning iteration early.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    try:
        async for raw in byte_stream:
            buffer += decoder.decode(raw)
            lines = buffer.split("\n")
            buffer = lines.pop()
            for line in lines:
                chunk = parse_sse_line(line)
                if chunk is None:
                    continue
                yield chunk
                if chunk.is_terminal:
                    return
        buffer += decoder.decode(b"", final=True)
        chunk = parse_sse_line(buffer)
        if chunk is not None:
            yield chunk
    finally:
        aclose = getattr(byte_stream, "aclose", None)
        if aclose is not None:
            await aclose()
