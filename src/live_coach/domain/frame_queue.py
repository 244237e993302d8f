import logging

import janus

from live_coach.ports.audio import AudioFrame

logger = logging.getLogger(__name__)


class FrameQueue:
    # Producer never blocks; created inside a running event loop.
    def __init__(self, capacity: int = 64) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._queue: janus.Queue[AudioFrame] = janus.Queue(maxsize=capacity)
        self._dropped = 0
        self._closed = False

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def dropped(self) -> int:
        return self._dropped

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.sync_q.qsize()

    def offer(self, frame: AudioFrame) -> bool:
        if self._closed:
            self._dropped += 1
            return False
        try:
            self._queue.sync_q.put_nowait(frame)
        except janus.SyncQueueFull:
            self._dropped += 1
            if self._dropped == 1 or self._dropped % 100 == 0:
                logger.warning("Frame queue full, dropped %d frames so far", self._dropped)
            return False
        return True

    async def get(self) -> AudioFrame:
        return await self._queue.async_q.get()

    def get_nowait(self) -> AudioFrame | None:
        try:
            return self._queue.async_q.get_nowait()
        except janus.AsyncQueueEmpty:
            return None

    def discard_pending(self) -> int:
        discarded = 0
        while self.get_nowait() is not None:
            discarded += 1
        return discarded

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.close()
        await self._queue.wait_closed()
