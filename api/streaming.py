"""Progress channel: SSE framing, sync→async bridge, and consumer-side parser.

Wire format: each event is one ``data: <json>`` line followed by a blank
line. JSON is UTF-8 and may contain non-ASCII text.
"""

import asyncio
import json
import logging
from typing import AsyncIterator, Iterable, Iterator

logger = logging.getLogger("tubechat")

DATA_PREFIX = "data: "


def encode_event(event: dict) -> str:
    """Frame one event for the wire."""
    return f"{DATA_PREFIX}{json.dumps(event, ensure_ascii=False)}\n\n"


def sse_payload(event: dict) -> dict:
    """Shape an event for sse-starlette's EventSourceResponse (data-only frame)."""
    return {"data": json.dumps(event, ensure_ascii=False)}


class SSEBridge:
    """Bridge between a synchronous worker thread and an async SSE stream.

    Usage:
        bridge = SSEBridge(loop)
        loop.run_in_executor(pool, work, bridge.callback)
        # In async endpoint:
        async for event in bridge.events():
            yield event

    Events are delivered in the order ``callback`` was called.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop):
        self._loop = loop
        self._queue: asyncio.Queue[dict | None] = asyncio.Queue()

    def callback(self, event: dict) -> None:
        """Thread-safe callback invoked from a worker thread."""
        self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    def finish(self) -> None:
        """Signal the stream is complete."""
        self._loop.call_soon_threadsafe(self._queue.put_nowait, None)

    def error(self, message: str) -> None:
        """Push an error event and terminate the stream."""
        self._loop.call_soon_threadsafe(
            self._queue.put_nowait, {"type": "error", "message": message}
        )
        self._loop.call_soon_threadsafe(self._queue.put_nowait, None)

    async def events(self) -> AsyncIterator[dict]:
        """Async generator yielding events until the stream ends."""
        while True:
            event = await self._queue.get()
            if event is None:
                break
            yield event


class SSEEventParser:
    """Incremental consumer-side framer.

    Feed it raw byte chunks as they arrive; it returns the events completed
    by each chunk and holds any partial trailing line for the next call.
    Non-``data:`` lines (blank separators, ``: ping`` comments) are ignored.
    """

    def __init__(self):
        self._buffer = b""

    def feed(self, chunk: bytes) -> list[dict]:
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split(b"\n")
        events = []
        for raw in lines:
            try:
                line = raw.decode("utf-8").rstrip("\r")
            except UnicodeDecodeError:
                logger.debug(f"Skipping undecodable SSE line: {raw[:200]!r}")
                continue
            if not line.startswith(DATA_PREFIX):
                continue
            try:
                events.append(json.loads(line[len(DATA_PREFIX):]))
            except json.JSONDecodeError:
                logger.debug(f"Skipping malformed SSE line: {line[:200]!r}")
        return events


def iter_sse_events(chunks: Iterable[bytes]) -> Iterator[dict]:
    """Lazily parse events from an iterable of byte chunks.

    Finite and not restartable: it ends when ``chunks`` is exhausted.
    """
    parser = SSEEventParser()
    for chunk in chunks:
        if chunk:
            yield from parser.feed(chunk)
