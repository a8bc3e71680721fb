"""Session recording.

Taps the incoming media stream while the session is connected and keeps the
PCM16 samples in memory (bounded by a maximum duration) so the conversation
can be exported as a WAV file afterwards.
"""

import asyncio
import io
import logging
from pathlib import Path

import numpy as np
import soundfile as sf

from voice_agents.audio.pcm import pcm16_samples
from voice_agents.audio.stream import AudioStream

logger = logging.getLogger(__name__)


class StreamRecorder:
    """Records one `AudioStream` at a time."""

    def __init__(self, max_duration_s: float = 1800.0) -> None:
        self.max_duration_s = max_duration_s
        self.sample_rate = 0
        self._chunks: list[np.ndarray] = []
        self._samples = 0
        self._task: asyncio.Task[None] | None = None

    @property
    def is_recording(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def duration_s(self) -> float:
        if not self.sample_rate:
            return 0.0
        return self._samples / self.sample_rate

    def start(self, stream: AudioStream) -> None:
        """Begin a new recording of `stream`, discarding the previous one."""
        if self.is_recording:
            logger.debug("Recorder already running")
            return

        self._chunks = []
        self._samples = 0
        self.sample_rate = stream.sample_rate
        self._task = asyncio.create_task(self._capture(stream))
        logger.info("Recording started", extra={"sample_rate": stream.sample_rate})

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Recording capture failed: {e}", exc_info=True)
        logger.info(f"Recording stopped ({self.duration_s:.1f}s captured)")

    def samples(self) -> np.ndarray:
        """Recorded PCM16 samples."""
        if not self._chunks:
            return np.zeros(0, dtype=np.int16)
        return np.concatenate(self._chunks)

    def to_wav(self) -> bytes:
        """Encode the recording as a 16-bit mono WAV file."""
        buf = io.BytesIO()
        sf.write(buf, self.samples(), self.sample_rate or 24000, format="WAV", subtype="PCM_16")
        return buf.getvalue()

    def save(self, path: Path) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.to_wav())
        logger.info(f"Saved recording to {path}")
        return path

    async def _capture(self, stream: AudioStream) -> None:
        max_samples = int(self.max_duration_s * stream.sample_rate)
        async for frame in stream.frames():
            remaining = max_samples - self._samples
            if remaining <= 0:
                continue  # cap reached, keep draining
            chunk = pcm16_samples(frame)[:remaining].copy()
            self._chunks.append(chunk)
            self._samples += len(chunk)
