"""Session controller.

Top-level state machine of a voice agent session. It is the only component
that writes the connection status; it sequences credential acquisition,
agent ordering, guardrail installation and transport open, and routes every
transport notification to the recorder, guardrail gate, handoff router,
turn coordinator and audio pipeline.

All work happens on one asyncio event loop. The transport posts
notifications through `post()`; they are processed in arrival order by
`run()` (or `drain()` in tests). UI intents are coroutines that re-check the
current status when they execute.
"""

import asyncio
import logging
import uuid
from collections.abc import Callable
from functools import partial
from typing import Any

from voice_agents.agents.models import AgentSet
from voice_agents.agents.registry import AgentSetRegistry
from voice_agents.audio.pipeline import AudioPipeline
from voice_agents.audio.playback import PlaybackSink, SoundDevicePlaybackSink
from voice_agents.audio.recording import StreamRecorder
from voice_agents.config import AppConfig
from voice_agents.credentials import CredentialProvider
from voice_agents.errors import ConnectionFailure, CredentialError, FailureKind
from voice_agents.guardrails import (
    GuardrailGate,
    GuardrailVerdict,
    ModerationEvaluator,
    ModerationOutput,
)
from voice_agents.handoff import HandoffRouter
from voice_agents.history import SessionHistoryHandler
from voice_agents.preferences import PreferenceStore
from voice_agents.recorder import SessionRecorder
from voice_agents.transport.base import RealtimeTransport
from voice_agents.transport.notifications import (
    AgentHandoff,
    ConnectionStatusChanged,
    GuardrailEvaluated,
    HistoryItemAdded,
    HistoryItemUpdated,
    MediaStreamAttached,
    Notification,
    ServerEvent,
    SessionStatus,
    ToolCallFinished,
    ToolCallStarted,
    TranscriptDelta,
    TranscriptDone,
)
from voice_agents.transport.protocol import ConversationItemCreateEvent, ResponseCreateEvent
from voice_agents.turns import TurnCoordinator
from voice_agents.utils.logging import log_event

logger = logging.getLogger(__name__)


# Valid status transitions; Disconnected never jumps straight to Connected.
VALID_TRANSITIONS: dict[SessionStatus, set[SessionStatus]] = {
    SessionStatus.DISCONNECTED: {SessionStatus.CONNECTING},
    SessionStatus.CONNECTING: {SessionStatus.CONNECTED, SessionStatus.DISCONNECTED},
    SessionStatus.CONNECTED: {SessionStatus.DISCONNECTED},
}

StatusListener = Callable[[SessionStatus], None]

# Notifications tied to one connection; dropped once that connection is gone.
_CONNECTION_SCOPED = (ConnectionStatusChanged, MediaStreamAttached, AgentHandoff)


class SessionController:
    """Owns `SessionStatus` and orchestrates one realtime session at a time.

    Example:
        ```python
        controller = SessionController(config, transport, credentials, evaluator, registry)
        runner = asyncio.create_task(controller.run())
        await controller.connect("customerSupport")
        await controller.send_text("Where is my order?")
        await controller.toggle_connection()
        ```
    """

    def __init__(
        self,
        config: AppConfig,
        transport: RealtimeTransport,
        credentials: CredentialProvider,
        evaluator: ModerationEvaluator,
        registry: AgentSetRegistry,
        preferences: PreferenceStore | None = None,
        recorder: SessionRecorder | None = None,
        sink: PlaybackSink | None = None,
    ) -> None:
        """Initialize controller.

        Args:
            config: Application configuration
            transport: Realtime transport (its listener is taken over)
            credentials: Source of short-lived transport credentials
            evaluator: Moderation classifier used by the guardrail gate
            registry: Agent set lookup
            preferences: Persisted toggles (in-memory if omitted)
            recorder: Transcript and event log owner
            sink: Playback sink (sounddevice output if omitted)
        """
        self.config = config
        self._transport = transport
        self._credentials = credentials
        self._evaluator = evaluator
        self._registry = registry
        self.preferences = preferences or PreferenceStore()
        self.recorder = recorder or SessionRecorder()

        self._status = SessionStatus.DISCONNECTED
        self._generation = 0
        self._queue: asyncio.Queue[tuple[int, Notification]] = asyncio.Queue()
        self._status_listeners: list[StatusListener] = []
        self._last_error: ConnectionFailure | None = None
        self._gate: GuardrailGate | None = None
        self._open_task: asyncio.Task[None] | None = None

        self.router = HandoffRouter(registry.resolve(config.session.default_agent_set))
        self.history = SessionHistoryHandler(self.recorder.transcript)
        self.turns = TurnCoordinator(
            transport=transport,
            send_event=self.send_event,
            preferences=self.preferences,
            turn_detection=config.turn_detection,
            is_connected=lambda: self._status is SessionStatus.CONNECTED,
        )
        self.audio = AudioPipeline(
            sink=sink
            or SoundDevicePlaybackSink(
                sample_rate=config.realtime.sample_rate, device=config.audio.output_device
            ),
            recorder=StreamRecorder(max_duration_s=config.audio.max_recording_s),
            transport=transport,
            preferences=self.preferences,
        )

        transport.listener = self.post

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def last_error(self) -> ConnectionFailure | None:
        return self._last_error

    @property
    def agent_set(self) -> AgentSet:
        return self.router.agent_set

    @property
    def active_agent_name(self) -> str:
        return self.router.active_agent_name

    @property
    def gate(self) -> GuardrailGate | None:
        return self._gate

    def add_status_listener(self, listener: StatusListener) -> None:
        self._status_listeners.append(listener)

    # Notification queue

    def post(self, notification: Notification) -> None:
        """Enqueue a transport notification under the current generation."""
        self._post_for(self._generation, notification)

    def _post_for(self, generation: int, notification: Notification) -> None:
        self._queue.put_nowait((generation, notification))

    async def run(self) -> None:
        """Process notifications until cancelled."""
        while True:
            generation, notification = await self._queue.get()
            try:
                await self._dispatch(generation, notification)
            except Exception as e:
                logger.error(f"Failed to handle {type(notification).__name__}: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        """Process every queued notification, including ones posted meanwhile."""
        while not self._queue.empty():
            generation, notification = self._queue.get_nowait()
            try:
                await self._dispatch(generation, notification)
            finally:
                self._queue.task_done()

    # Connection lifecycle

    async def toggle_connection(self) -> None:
        if self._status in (SessionStatus.CONNECTED, SessionStatus.CONNECTING):
            await self.disconnect()
        else:
            await self.connect()

    def load_agent_set(self, key: str | None) -> AgentSet:
        """Select an agent set; its first agent becomes active."""
        agent_set = self._registry.resolve(key)
        self.router.reset(agent_set)
        logger.info(
            f"Agent set loaded: {agent_set.key}",
            extra={"agents": agent_set.names, "policy": agent_set.policy_name},
        )
        return agent_set

    async def connect(
        self, agent_set_key: str | None = None, active_agent_name: str | None = None
    ) -> None:
        """Open a session. No-op unless currently Disconnected."""
        if self._status is not SessionStatus.DISCONNECTED:
            logger.debug(f"Connect ignored in status {self._status.value}")
            return

        if agent_set_key is not None:
            self.load_agent_set(agent_set_key)
        if active_agent_name is not None:
            self.router.select(active_agent_name)

        # An open left over from a dropped attempt must not touch this one.
        await self._abandon_open()

        self._generation += 1
        generation = self._generation
        self.router.discard()
        self.turns.reset()
        self._last_error = None
        await self._set_status(SessionStatus.CONNECTING)

        self._open_task = asyncio.create_task(self._open_session(generation))
        try:
            await asyncio.wait_for(
                self._open_task, timeout=self.config.session.connect_timeout_s
            )
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            logger.info("Connection attempt abandoned")
        except TimeoutError:
            await self._fail(
                generation,
                FailureKind.TIMEOUT,
                f"Connection not established within {self.config.session.connect_timeout_s}s",
            )
        except CredentialError as e:
            await self._fail(generation, FailureKind.CREDENTIAL, str(e))
        except Exception as e:
            await self._fail(generation, FailureKind.TRANSPORT, str(e))

    async def _open_session(self, generation: int) -> None:
        credential = await self._credentials.fetch()
        if generation != self._generation:
            return
        if not credential:
            raise CredentialError("No ephemeral key returned by the session endpoint")

        agent_set = self.router.agent_set
        agents = agent_set.ordered_for(self.router.active_agent_name)
        self._gate = GuardrailGate(
            agent_set.policy_name, self._evaluator, self.recorder.transcript
        )

        # Notifications are tagged with the attempt that opened the transport.
        self._transport.listener = partial(self._post_for, generation)
        await self._transport.connect(
            credential,
            agents,
            [self._gate],
            {"add_breadcrumb": self.recorder.transcript.add_breadcrumb},
        )

        if generation != self._generation:
            # Transport dropped while it was still opening.
            logger.info("Discarding session opened after disconnect")
            await self._transport.disconnect()

    async def _abandon_open(self) -> None:
        """Cancel an in-flight transport open and wait for it to unwind."""
        task = self._open_task
        self._open_task = None
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.wait({task})

    async def _fail(self, generation: int, kind: FailureKind, message: str) -> None:
        if generation != self._generation:
            logger.debug(f"Ignoring {kind.value} failure of abandoned connection attempt")
            return

        self._last_error = ConnectionFailure(kind=kind, message=message)
        logger.error(f"Connection failed ({kind.value}): {message}")
        log_event("connection_failed", {"kind": kind.value, "message": message})

        try:
            await self._transport.disconnect()
        except Exception as e:
            logger.warning(f"Transport cleanup after failed connect raised: {e}")

        self._generation += 1
        self.turns.reset()
        await self._set_status(SessionStatus.DISCONNECTED)

    async def disconnect(self) -> None:
        """Orderly teardown; late notifications of this session are ignored."""
        if self._status is SessionStatus.DISCONNECTED:
            return

        self._generation += 1
        self.turns.reset()
        await self._set_status(SessionStatus.DISCONNECTED)
        await self._abandon_open()

        try:
            await self._transport.disconnect()
        except Exception as e:
            logger.warning(f"Transport disconnect raised: {e}")

    async def close(self) -> None:
        await self.disconnect()
        await self._abandon_open()
        await self.audio.close()

    async def _set_status(self, status: SessionStatus) -> bool:
        previous = self._status
        if status is previous:
            return False
        if status not in VALID_TRANSITIONS[previous]:
            logger.warning(f"Invalid status transition {previous.value} -> {status.value}")
            return False

        self._status = status
        logger.info(f"Session status: {previous.value} -> {status.value}")
        log_event("session_status", {"from": previous.value, "to": status.value})
        for listener in self._status_listeners:
            listener(status)

        await self.audio.on_status_change(status)
        if status is SessionStatus.CONNECTED:
            await self._announce_active_agent()
        return True

    # Agent selection

    async def select_agent(self, agent_name: str) -> None:
        """Reconnect with `agent_name` as the active agent."""
        if self.router.agent_set.get(agent_name) is None:
            logger.warning(f"Unknown agent '{agent_name}' in set {self.router.agent_set.key}")
            return

        await self.disconnect()
        self.router.select(agent_name)
        await self.connect()

    async def select_agent_set(self, key: str) -> None:
        """Reconnect with another agent set."""
        await self.disconnect()
        self.load_agent_set(key)
        await self.connect()

    async def _announce_active_agent(self) -> None:
        agent = self.router.agent_set.get(self.router.active_agent_name)
        if agent is None:
            return

        self.recorder.transcript.add_breadcrumb(
            f"Agent: {agent.name}",
            {
                "name": agent.name,
                "voice": agent.voice,
                "instructions": agent.instructions,
                "tools": [tool.name for tool in agent.tools],
                "handoffs": sorted(agent.handoff_targets),
            },
        )
        await self.turns.push_configuration()

        if self.router.consume_handoff():
            return
        await self._send_greeting()

    async def _send_greeting(self) -> None:
        """Hidden user turn that makes the agent speak first."""
        item_id = uuid.uuid4().hex[:32]
        trigger = self.config.session.greeting_trigger
        self.recorder.transcript.add_message(item_id, "user", trigger, hidden=True)
        await self.send_event(
            ConversationItemCreateEvent.text_message("user", trigger, item_id=item_id).to_event()
        )
        await self.send_event(ResponseCreateEvent().to_event())

    # UI intents

    async def send_event(self, event: dict[str, Any]) -> None:
        """Log a client event and forward it to the transport."""
        self.recorder.events.log_client_event(event)
        await self._transport.send_event(event)

    async def send_text(self, text: str) -> None:
        text = text.strip()
        if not text:
            return
        if self._status is not SessionStatus.CONNECTED:
            logger.debug("Text message ignored while not connected")
            return

        await self._transport.interrupt()
        self.recorder.events.log_client_event(
            ConversationItemCreateEvent.text_message("user", text).to_event()
        )
        try:
            await self._transport.send_user_text(text)
        except Exception as e:
            logger.error(f"Failed to send text message: {e}")

    async def press_talk(self) -> None:
        await self.turns.press()

    async def release_talk(self) -> None:
        await self.turns.release()

    async def set_push_to_talk(self, enabled: bool) -> None:
        await self.turns.set_push_to_talk(enabled)

    async def set_playback_enabled(self, enabled: bool) -> None:
        await self.audio.set_playback_enabled(enabled)

    # Notification dispatch

    async def _dispatch(self, generation: int, notification: Notification) -> None:
        if isinstance(notification, _CONNECTION_SCOPED) and generation != self._generation:
            logger.debug(f"Dropping stale {type(notification).__name__}")
            return

        if isinstance(notification, ConnectionStatusChanged):
            await self._mirror_status(notification.status)
        elif isinstance(notification, MediaStreamAttached):
            await self.audio.attach_stream(notification.stream)
        elif isinstance(notification, AgentHandoff):
            if self.router.on_handoff(notification.agent_name) and (
                self._status is SessionStatus.CONNECTED
            ):
                await self._announce_active_agent()
        elif isinstance(notification, HistoryItemAdded):
            self.history.on_item_added(notification)
        elif isinstance(notification, HistoryItemUpdated):
            self.history.on_item_updated(notification)
        elif isinstance(notification, TranscriptDelta):
            self.history.on_transcript_delta(notification)
        elif isinstance(notification, TranscriptDone):
            if self.history.on_transcript_done(notification) and self._gate is not None:
                self._gate.mark_pending(notification.item_id)
        elif isinstance(notification, ToolCallStarted):
            self.history.on_tool_start(notification)
        elif isinstance(notification, ToolCallFinished):
            self.history.on_tool_end(notification)
        elif isinstance(notification, GuardrailEvaluated):
            await self._on_guardrail(notification.item_id, notification.output)
        elif isinstance(notification, ServerEvent):
            self.recorder.events.log_server_event(notification.event)
        else:
            logger.warning(f"Unhandled notification: {notification!r}")

    async def _mirror_status(self, status: SessionStatus) -> None:
        if status is SessionStatus.DISCONNECTED:
            if self._status is not SessionStatus.DISCONNECTED:
                logger.warning("Transport reported disconnect")
                self._generation += 1
                self.turns.reset()
                await self._set_status(SessionStatus.DISCONNECTED)
            return

        # A late Connecting/Connected after a user disconnect is not re-applied.
        if self._status is SessionStatus.DISCONNECTED:
            logger.debug(f"Ignoring transport status {status.value} while disconnected")
            return
        await self._set_status(status)

    async def _on_guardrail(self, item_id: str, output: ModerationOutput) -> None:
        if self._gate is None:
            logger.warning("Guardrail verdict without a gate", extra={"item_id": item_id})
            return

        result = self._gate.record_verdict(item_id, output)
        if result.verdict is not GuardrailVerdict.FAIL:
            return
        if self._status is not SessionStatus.CONNECTED:
            return

        # Refusal substitution: stop the blocked answer and have the agent retry.
        await self._transport.interrupt()
        await self.send_event(
            ConversationItemCreateEvent.text_message(
                "system", self._gate.feedback_message(output)
            ).to_event()
        )
        await self.send_event(ResponseCreateEvent().to_event())
