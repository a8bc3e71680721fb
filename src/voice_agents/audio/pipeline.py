"""Audio pipeline manager.

Sole owner of the playback sink and the attached media stream. Keeps the
sink, the transport's mute state and the session recording consistent with
the persisted playback toggle and the session status.
"""

import logging

from voice_agents.audio.playback import PlaybackSink
from voice_agents.audio.recording import StreamRecorder
from voice_agents.audio.stream import AudioStream
from voice_agents.errors import PlaybackError
from voice_agents.preferences import PreferenceStore
from voice_agents.transport.base import RealtimeTransport
from voice_agents.transport.notifications import SessionStatus

logger = logging.getLogger(__name__)


class AudioPipeline:
    """Playback, transport mute and recording for one controller."""

    def __init__(
        self,
        sink: PlaybackSink,
        recorder: StreamRecorder,
        transport: RealtimeTransport,
        preferences: PreferenceStore,
    ) -> None:
        self._sink = sink
        self._recorder = recorder
        self._transport = transport
        self._preferences = preferences
        self._stream: AudioStream | None = None

    @property
    def playback_enabled(self) -> bool:
        return self._preferences.current.audio_playback_enabled

    @property
    def stream(self) -> AudioStream | None:
        return self._stream

    @property
    def sink(self) -> PlaybackSink:
        return self._sink

    @property
    def recorder(self) -> StreamRecorder:
        return self._recorder

    async def set_playback_enabled(self, enabled: bool) -> None:
        """Persist the toggle and apply it to the sink and the transport."""
        self._preferences.update(audio_playback_enabled=enabled)
        await self._apply_playback()
        await self._sync_mute()

    async def attach_stream(self, stream: AudioStream) -> None:
        self._stream = stream
        self._sink.attach(stream)
        await self._apply_playback()

    async def on_status_change(self, status: SessionStatus) -> None:
        if status is SessionStatus.CONNECTED:
            await self._sync_mute()
            if self._stream is not None and not self._recorder.is_recording:
                self._recorder.start(self._stream)
            return

        if self._recorder.is_recording:
            await self._recorder.stop()
        if status is SessionStatus.DISCONNECTED:
            self._sink.pause()
            self._stream = None

    async def close(self) -> None:
        await self._recorder.stop()
        await self._sink.close()

    async def _apply_playback(self) -> None:
        if not self.playback_enabled:
            self._sink.muted = True
            self._sink.pause()
            return

        self._sink.muted = False
        try:
            await self._sink.play()
        except PlaybackError as e:
            logger.warning(f"Autoplay may be blocked: {e}")

    async def _sync_mute(self) -> None:
        muted = not self.playback_enabled
        try:
            await self._transport.mute(muted)
        except Exception as e:
            logger.warning(f"Failed to {'mute' if muted else 'unmute'} transport: {e}")
