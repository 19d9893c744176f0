"""SSE bridge: sync agent thread → async event stream."""

import asyncio
from typing import AsyncIterator


class SSEBridge:
    """Bridge between synchronous agent frames and an async SSE event stream.

    Usage:
        bridge = SSEBridge(loop)
        agent.chat_frames(dataset_id, question, bridge.callback)
        bridge.close()
        # In async endpoint:
        async for frame in bridge.events():
            yield frame
    """

    def __init__(self, loop: asyncio.AbstractEventLoop):
        self._loop = loop
        self._queue: asyncio.Queue[dict | None] = asyncio.Queue()

    def callback(self, frame: dict) -> None:
        """Thread-safe callback invoked by the agent from a worker thread."""
        self._loop.call_soon_threadsafe(self._queue.put_nowait, frame)

    def close(self) -> None:
        """End the stream after the frames already queued."""
        self._loop.call_soon_threadsafe(self._queue.put_nowait, None)

    def error(self, message: str) -> None:
        """Push a final response frame carrying *message* and end the stream."""
        self._loop.call_soon_threadsafe(
            self._queue.put_nowait, {"type": "response", "content": message}
        )
        self._loop.call_soon_threadsafe(self._queue.put_nowait, None)

    async def events(self) -> AsyncIterator[dict]:
        """Async generator yielding frames until the stream ends."""
        while True:
            frame = await self._queue.get()
            if frame is None:
                break
            yield frame
