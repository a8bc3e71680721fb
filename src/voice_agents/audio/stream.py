"""Incoming media stream.

The transport decodes agent audio into PCM16 frames and pushes them into an
`AudioStream`. Consumers (the playback sink, the recorder) each get their own
queue so a slow consumer never starves another one.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Final

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_RATE: Final[int] = 24000  # Hz, realtime API PCM16 output
DEFAULT_MAX_QUEUED_FRAMES: Final[int] = 500


class AudioStream:
    """Fan-out of PCM16 mono frames to any number of subscribers.

    Thread-safety: This class is NOT thread-safe. Use from the event loop.
    """

    def __init__(
        self,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        max_queued_frames: int = DEFAULT_MAX_QUEUED_FRAMES,
    ) -> None:
        if sample_rate <= 0:
            raise ValueError(f"Sample rate must be positive, got {sample_rate}")
        self.sample_rate = sample_rate
        self._max_queued_frames = max_queued_frames
        self._subscribers: list[asyncio.Queue[bytes | None]] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def push(self, frame: bytes) -> None:
        """Deliver a frame to every subscriber, dropping the oldest on overflow."""
        if self._closed or not frame:
            return

        for queue in self._subscribers:
            if queue.full():
                queue.get_nowait()
                logger.debug("Audio subscriber queue full, dropped oldest frame")
            queue.put_nowait(frame)

    def flush(self) -> None:
        """Discard queued frames (agent utterance interrupted)."""
        for queue in self._subscribers:
            while not queue.empty():
                queue.get_nowait()

    def close(self) -> None:
        """End the stream; subscribers finish after draining."""
        if self._closed:
            return
        self._closed = True
        for queue in self._subscribers:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(None)

    async def frames(self) -> AsyncIterator[bytes]:
        """Iterate frames pushed after subscription until the stream closes."""
        queue: asyncio.Queue[bytes | None] = asyncio.Queue(maxsize=self._max_queued_frames)
        if self._closed:
            return
        self._subscribers.append(queue)
        try:
            while True:
                frame = await queue.get()
                if frame is None:
                    return
                yield frame
        finally:
            self._subscribers.remove(queue)
