"""Microphone capture.

Reads mono audio from a sounddevice input stream and forwards it as PCM16
bytes to an async consumer (the transport's input audio buffer). PortAudio
invokes the stream callback on its own thread; blocks are handed to the event
loop with `call_soon_threadsafe` and delivered in order by a pump task.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import numpy as np

from voice_agents.audio.pcm import float32_to_pcm16
from voice_agents.audio.stream import DEFAULT_SAMPLE_RATE
from voice_agents.errors import CaptureError

logger = logging.getLogger(__name__)

InputAudioConsumer = Callable[[bytes], Awaitable[None]]


class SoundDeviceMicrophone:
    """Streams microphone PCM16 blocks to `on_audio`.

    sounddevice is imported lazily, as for playback; `start()` raises
    `CaptureError` when no backend or input device is available.

    Thread-safety: Only the PortAudio callback runs off the event loop, and it
    touches nothing but `loop.call_soon_threadsafe`.
    """

    def __init__(
        self,
        on_audio: InputAudioConsumer,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        device: str | None = None,
        block_ms: int = 40,
        max_queued_blocks: int = 50,
    ) -> None:
        """Initialize microphone.

        Args:
            on_audio: Coroutine receiving each PCM16 block
            sample_rate: Capture rate in Hz (must match the session input format)
            device: Optional sounddevice input device name/index
            block_ms: Block length handed to `on_audio`
            max_queued_blocks: Blocks kept while the consumer lags; oldest dropped
        """
        self.sample_rate = sample_rate
        self.device = device
        self.block_size = int(sample_rate * block_ms / 1000)
        self._on_audio = on_audio
        self._queue: asyncio.Queue[bytes] = asyncio.Queue(maxsize=max_queued_blocks)
        self._input: Any = None
        self._task: asyncio.Task[None] | None = None
        self.blocks_dropped = 0

    @property
    def is_running(self) -> bool:
        return self._input is not None

    async def start(self) -> None:
        if self.is_running:
            return

        try:
            import sounddevice as sd
        except (ImportError, OSError) as e:
            raise CaptureError(f"sounddevice unavailable: {e}") from e

        loop = asyncio.get_running_loop()

        def input_callback(
            indata: np.ndarray, frames: int, time_info: object, status: object
        ) -> None:
            _ = frames, time_info
            if status:
                logger.warning(f"Input stream status: {status}")
            mono = indata[:, 0] if indata.ndim > 1 else indata
            loop.call_soon_threadsafe(self._enqueue, float32_to_pcm16(mono))

        try:
            stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                blocksize=self.block_size,
                device=self.device,
                callback=input_callback,
            )
            stream.start()
        except Exception as e:
            device = self.device or "default"
            raise CaptureError(f"Failed to open input device {device}: {e}") from e

        self._input = stream
        self._task = asyncio.create_task(self._pump())
        logger.info(
            f"Microphone started (device: {self.device or 'default'})",
            extra={"sample_rate": self.sample_rate, "block_size": self.block_size},
        )

    async def stop(self) -> None:
        stream = self._input
        self._input = None
        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except Exception as e:
                logger.warning(f"Closing input stream raised: {e}")

        task = self._task
        self._task = None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        while not self._queue.empty():
            self._queue.get_nowait()
        if stream is not None:
            logger.info(f"Microphone stopped ({self.blocks_dropped} blocks dropped)")

    def _enqueue(self, block: bytes) -> None:
        if self._input is None:
            return
        if self._queue.full():
            self._queue.get_nowait()
            self.blocks_dropped += 1
        self._queue.put_nowait(block)

    async def _pump(self) -> None:
        while True:
            block = await self._queue.get()
            try:
                await self._on_audio(block)
            except Exception as e:
                logger.warning(f"Input audio delivery failed: {e}")
