"""Turn-taking coordination.

Two turn modes:

- automatic: the server's voice activity detector decides when the user's
  turn ends and creates the response itself;
- push-to-talk: the detector is disabled and the user marks the turn with
  press/release.

Event contract for push-to-talk:
    press   -> interrupt, input_audio_buffer.clear
    release -> input_audio_buffer.commit, response.create

A release without a matching press emits nothing.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from voice_agents.config import TurnDetectionConfig
from voice_agents.preferences import PreferenceStore
from voice_agents.transport.base import RealtimeTransport
from voice_agents.transport.protocol import (
    InputAudioBufferClearEvent,
    InputAudioBufferCommitEvent,
    ResponseCreateEvent,
    session_update,
)

logger = logging.getLogger(__name__)

EventSender = Callable[[dict[str, Any]], Awaitable[None]]


class TurnCoordinator:
    """Owns the turn mode and the push-to-talk press state."""

    def __init__(
        self,
        transport: RealtimeTransport,
        send_event: EventSender,
        preferences: PreferenceStore,
        turn_detection: TurnDetectionConfig,
        is_connected: Callable[[], bool],
    ) -> None:
        """Initialize coordinator.

        Args:
            transport: Realtime transport (used for interrupts)
            send_event: Sender that logs and forwards client events
            preferences: Persisted toggles (push-to-talk mode lives here)
            turn_detection: Detector parameters for automatic mode
            is_connected: Returns True while the session is Connected
        """
        self._transport = transport
        self._send_event = send_event
        self._preferences = preferences
        self._turn_detection = turn_detection
        self._is_connected = is_connected
        self._user_speaking = False

    @property
    def push_to_talk(self) -> bool:
        return self._preferences.current.push_to_talk

    @property
    def user_speaking(self) -> bool:
        return self._user_speaking

    def session_update_event(self) -> dict[str, Any]:
        """session.update for the current mode (null detector in push-to-talk)."""
        return session_update(None if self.push_to_talk else self._turn_detection)

    async def push_configuration(self) -> None:
        await self._send_event(self.session_update_event())

    async def set_push_to_talk(self, enabled: bool) -> None:
        """Switch turn mode; re-announced immediately while connected."""
        if enabled == self.push_to_talk:
            return
        self._preferences.update(push_to_talk=enabled)
        if not enabled:
            self._user_speaking = False

        logger.info(f"Turn mode: {'push-to-talk' if enabled else 'automatic'}")
        if self._is_connected():
            await self.push_configuration()

    async def press(self) -> None:
        """Start a manual user turn. No-op unless connected."""
        if not self._is_connected():
            return

        await self._transport.interrupt()
        self._user_speaking = True
        await self._send_event(InputAudioBufferClearEvent().to_event())

    async def release(self) -> None:
        """End a manual user turn and request a response."""
        if not self._is_connected() or not self._user_speaking:
            return

        self._user_speaking = False
        await self._send_event(InputAudioBufferCommitEvent().to_event())
        await self._send_event(ResponseCreateEvent().to_event())

    def reset(self) -> None:
        self._user_speaking = False
