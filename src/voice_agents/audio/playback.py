"""Playback sink for agent audio.

The sink consumes frames from the attached `AudioStream` and writes them to a
local output device. Muting drops frames instead of writing them; pausing
stops consumption entirely and releases the device.
"""

import asyncio
import logging
from typing import Any, Protocol

from voice_agents.audio.pcm import pcm16_to_float32
from voice_agents.audio.stream import DEFAULT_SAMPLE_RATE, AudioStream
from voice_agents.errors import PlaybackError

logger = logging.getLogger(__name__)


class PlaybackSink(Protocol):
    """Output device abstraction owned by the audio pipeline."""

    muted: bool

    @property
    def stream(self) -> AudioStream | None: ...

    @property
    def playing(self) -> bool: ...

    def attach(self, stream: AudioStream) -> None:
        """Use `stream` as the playback source."""
        ...

    async def play(self) -> None:
        """Start (or resume) playback.

        Raises:
            PlaybackError: If the output device cannot be started
        """
        ...

    def pause(self) -> None: ...

    async def close(self) -> None: ...


class SoundDevicePlaybackSink:
    """Plays the attached stream through a sounddevice output stream.

    sounddevice is imported lazily so the package imports on machines without
    PortAudio; `play()` raises `PlaybackError` there instead.
    """

    def __init__(self, sample_rate: int = DEFAULT_SAMPLE_RATE, device: str | None = None) -> None:
        """Initialize playback sink.

        Args:
            sample_rate: Output sample rate in Hz
            device: Optional sounddevice output device name/index
        """
        self.sample_rate = sample_rate
        self.device = device
        self.muted = False
        self._stream: AudioStream | None = None
        self._task: asyncio.Task[None] | None = None
        self.frames_played = 0

    @property
    def stream(self) -> AudioStream | None:
        return self._stream

    @property
    def playing(self) -> bool:
        return self._task is not None and not self._task.done()

    def attach(self, stream: AudioStream) -> None:
        # Stops playback of the previous source; the caller decides when to play().
        self.pause()
        self._stream = stream

    async def play(self) -> None:
        if self.playing or self._stream is None:
            return

        output = self._open_output()
        self._task = asyncio.create_task(self._pump(self._stream, output))

    def pause(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def close(self) -> None:
        task = self._task
        self.pause()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _open_output(self) -> Any:
        try:
            import sounddevice as sd
        except (ImportError, OSError) as e:
            raise PlaybackError(f"sounddevice unavailable: {e}") from e

        try:
            output = sd.OutputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype="float32",
                device=self.device,
            )
            output.start()
        except Exception as e:
            device = self.device or "default"
            raise PlaybackError(f"Failed to open output device {device}: {e}") from e

        logger.info(f"Audio output started (device: {self.device or 'default'})")
        return output

    async def _pump(self, stream: AudioStream, output: Any) -> None:
        try:
            async for frame in stream.frames():
                if self.muted:
                    continue
                await asyncio.to_thread(output.write, pcm16_to_float32(frame))
                self.frames_played += 1
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Audio playback failed: {e}")
        finally:
            try:
                output.stop()
                output.close()
            except Exception as e:  # noqa: S110
                logger.debug(f"Audio output close failed (non-critical): {e}")
