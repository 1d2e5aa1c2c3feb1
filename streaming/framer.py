import asyncio
import logging
from typing import AsyncIterator

from metrics import FRAMES
from models import OutputFrame

_EOF = object()


class FrameChannel:
    """Client-bound frame stream. Frames are compact JSON objects, concatenated."""

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self.abandoned = False
        self.logger = logging.getLogger("app")

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, frame: OutputFrame) -> bool:
        if self._closed:
            self.logger.debug(f"Dropping {frame.type.value} frame on closed channel")
            return False
        try:
            self._write(frame.to_json())
        except Exception as e:
            self.logger.error(f"Writing {frame.type.value} frame failed: {e}")
            return False
        FRAMES.labels(type=frame.type.value).inc()
        return True

    def _write(self, data: str) -> None:
        self._queue.put_nowait(data)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_EOF)

    async def __aiter__(self) -> AsyncIterator[str]:
        try:
            while True:
                item = await self._queue.get()
                if item is _EOF:
                    break
                yield item
        finally:
            if not self._closed:
                # consumer went away before the turn finished
                self._closed = True
                self.abandoned = True
