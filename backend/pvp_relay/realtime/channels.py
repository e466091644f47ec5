"""Push channels: one-way delivery targets bound to a (room, wallet) pair.

Every transport implements the same two operations.  ``send`` never blocks and
never raises; it returns ``False`` when the event could not be handed to the
transport.  ``close`` ends the channel from the server side.
"""

import asyncio
import json
import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class PushChannel(Protocol):
    def send(self, event: dict[str, Any]) -> bool: ...

    def close(self) -> None: ...


def encode_sse(event: dict[str, Any]) -> bytes:
    return f"data: {json.dumps(event, separators=(',', ':'))}\n\n".encode("utf-8")


class QueueChannel:
    """Server-sent-events channel backed by an asyncio queue.

    The streaming response drains the queue with ``next_event``; ``None`` marks
    the end of the stream.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, event: dict[str, Any]) -> bool:
        if self._closed:
            return False
        self._queue.put_nowait(event)
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    async def next_event(self) -> dict[str, Any] | None:
        return await self._queue.get()

    def __repr__(self) -> str:
        return f"<QueueChannel closed={self._closed} pending={self._queue.qsize()}>"


class SocketIOChannel:
    """Channel that emits on a single Socket.IO connection."""

    EVENT_NAME = "pvp"

    def __init__(self, sio, sid: str) -> None:
        self._sio = sio
        self.sid = sid
        self._closed = False
        self._tasks: set[asyncio.Task] = set()

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, event: dict[str, Any]) -> bool:
        if self._closed:
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return False
        task = loop.create_task(self._sio.emit(self.EVENT_NAME, event, room=self.sid))
        self._tasks.add(task)
        task.add_done_callback(self._on_emit_done)
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self._sio.disconnect(self.sid))
        self._tasks.add(task)
        task.add_done_callback(self._on_emit_done)

    def _on_emit_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.debug("Socket.IO delivery to %s failed: %s", self.sid, exc)

    def __repr__(self) -> str:
        return f"<SocketIOChannel sid={self.sid} closed={self._closed}>"
