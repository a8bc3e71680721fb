"""Realtime websocket transport.

Implements `RealtimeTransport` over the realtime JSON event protocol. The
transport owns the websocket, the active agent's session configuration and
the incoming media stream; everything it observes is posted to the listener
as a `Notification`.
"""

import asyncio
import base64
import json
import logging
from collections.abc import Sequence
from typing import Any

import websockets
from websockets.asyncio.client import ClientConnection, connect

from voice_agents.agents.models import Agent, handoff_tool_name
from voice_agents.audio.stream import AudioStream
from voice_agents.config import RealtimeConfig
from voice_agents.errors import TransportError
from voice_agents.guardrails import ModerationOutput
from voice_agents.transport.base import OutputFilter, RealtimeTransport
from voice_agents.transport.notifications import (
    AgentHandoff,
    ConnectionStatusChanged,
    GuardrailEvaluated,
    HistoryItemAdded,
    HistoryItemUpdated,
    MediaStreamAttached,
    ServerEvent,
    SessionStatus,
    ToolCallFinished,
    ToolCallStarted,
    TranscriptDelta,
    TranscriptDone,
)
from voice_agents.transport.protocol import (
    ConversationItemCreateEvent,
    FunctionCallOutputEvent,
    FunctionCallOutputItem,
    InputAudioBufferAppendEvent,
    ResponseCancelEvent,
    ResponseCreateEvent,
)

logger = logging.getLogger(__name__)

_EMPTY_PARAMETERS: dict[str, Any] = {
    "type": "object",
    "properties": {},
    "required": [],
    "additionalProperties": False,
}

# Server events that refer to a conversation item by `item_id`.
_ITEM_EVENTS = frozenset(
    {
        "conversation.item.input_audio_transcription.completed",
        "response.audio_transcript.delta",
        "response.text.delta",
        "response.audio_transcript.done",
        "response.text.done",
    }
)


class RealtimeWebSocketTransport(RealtimeTransport):
    """Client side of the realtime websocket protocol.

    Thread-safety: NOT thread-safe. Use from the controller's event loop.
    """

    def __init__(self, config: RealtimeConfig) -> None:
        """Initialize transport.

        Args:
            config: Realtime endpoint configuration
        """
        super().__init__()
        self._config = config
        self._ws: ClientConnection | None = None
        self._receive_task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._agents: dict[str, Agent] = {}
        self._active: Agent | None = None
        self._output_filters: list[OutputFilter] = []
        self._context: dict[str, Any] = {}
        self._stream: AudioStream | None = None
        self._muted = False
        self._closing = False

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    @property
    def active_agent(self) -> Agent | None:
        return self._active

    @property
    def muted(self) -> bool:
        return self._muted

    @property
    def context(self) -> dict[str, Any]:
        """Shared context handed over at connect time."""
        return self._context

    async def connect(
        self,
        credential: str,
        initial_agents: Sequence[Agent],
        output_filters: Sequence[OutputFilter],
        context: dict[str, Any],
    ) -> None:
        if not initial_agents:
            raise TransportError("At least one agent is required to open a session")

        self.notify(ConnectionStatusChanged(SessionStatus.CONNECTING))

        url = f"{self._config.url}?model={self._config.model}"
        headers = {
            "Authorization": f"Bearer {credential}",
            "OpenAI-Beta": "realtime=v1",
        }
        try:
            self._ws = await connect(url, additional_headers=headers)
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise TransportError(f"Failed to open realtime session: {e}") from e

        self._closing = False
        self._agents = {agent.name: agent for agent in initial_agents}
        self._active = initial_agents[0]
        self._output_filters = list(output_filters)
        self._context = context

        logger.info(
            "Realtime session opened",
            extra={"agent": self._active.name, "agents": list(self._agents)},
        )

        await self.send_event(self._agent_session_event(self._active))

        self._stream = AudioStream(sample_rate=self._config.sample_rate)
        self.notify(MediaStreamAttached(self._stream))

        self._receive_task = asyncio.create_task(self._receive_loop(self._ws))
        self.notify(ConnectionStatusChanged(SessionStatus.CONNECTED))

    async def disconnect(self) -> None:
        self._closing = True

        if self._receive_task is not None:
            self._receive_task.cancel()
            try:
                await self._receive_task
            except asyncio.CancelledError:
                pass
            self._receive_task = None

        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.warning(f"Error closing realtime websocket: {e}")
            logger.info("Realtime session closed")

        if self._stream is not None:
            self._stream.close()
            self._stream = None

    async def send_event(self, event: dict[str, Any]) -> None:
        if self._ws is None:
            logger.warning(
                "Dropping event, transport not connected",
                extra={"event_type": event.get("type")},
            )
            return

        try:
            await self._ws.send(json.dumps(event))
        except websockets.exceptions.ConnectionClosed as e:
            logger.warning(
                "Send failed, connection closed",
                extra={"event_type": event.get("type"), "code": e.rcvd.code if e.rcvd else None},
            )

    async def send_user_text(self, text: str) -> None:
        await self.send_event(ConversationItemCreateEvent.text_message("user", text).to_event())
        await self.send_event(ResponseCreateEvent().to_event())

    async def interrupt(self) -> None:
        if self._stream is not None:
            self._stream.flush()
        await self.send_event(ResponseCancelEvent().to_event())

    async def mute(self, muted: bool) -> None:
        self._muted = muted

    async def append_input_audio(self, pcm: bytes) -> None:
        """Stream microphone PCM16 to the server; dropped while muted."""
        if self._muted or self._ws is None:
            return
        audio = base64.b64encode(pcm).decode("ascii")
        await self.send_event(InputAudioBufferAppendEvent(audio=audio).to_event())

    def _agent_session_event(self, agent: Agent) -> dict[str, Any]:
        """session.update carrying the agent's persona, voice and tools.

        Turn detection is left out: the turn coordinator owns it and a
        partial update leaves it untouched.
        """
        tools = [tool.schema() for tool in agent.tools]
        for target_name in sorted(agent.handoff_targets):
            target = self._agents.get(target_name)
            if target is None:
                continue
            tools.append(
                {
                    "type": "function",
                    "name": handoff_tool_name(target.name),
                    "description": (
                        f"Handoff to the {target.name} agent. {target.handoff_description}"
                    ).strip(),
                    "parameters": _EMPTY_PARAMETERS,
                }
            )

        return {
            "type": "session.update",
            "session": {
                "instructions": agent.instructions,
                "voice": agent.voice,
                "modalities": ["text", "audio"],
                "input_audio_format": "pcm16",
                "output_audio_format": "pcm16",
                "input_audio_transcription": {"model": self._config.transcription_model},
                "tools": tools,
                "tool_choice": "auto",
            },
        }

    async def _receive_loop(self, ws: ClientConnection) -> None:
        try:
            async for message in ws:
                if isinstance(message, bytes):
                    message = message.decode("utf-8")
                try:
                    event = json.loads(message)
                except json.JSONDecodeError as e:
                    logger.error(f"Invalid JSON from realtime server: {e}")
                    continue
                if isinstance(event, dict):
                    try:
                        self._handle_server_event(event)
                    except Exception as e:
                        logger.error(
                            f"Failed to handle server event {event.get('type')}: {e}",
                            exc_info=True,
                        )
        except websockets.exceptions.ConnectionClosed as e:
            logger.info(f"Realtime connection closed: {e}")
        finally:
            if not self._closing:
                self._on_unexpected_close()

    def _on_unexpected_close(self) -> None:
        logger.warning("Realtime session dropped")
        self._ws = None
        self._receive_task = None
        if self._stream is not None:
            self._stream.close()
            self._stream = None
        self.notify(ConnectionStatusChanged(SessionStatus.DISCONNECTED))

    def _spawn(self, coro: Any) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _handle_server_event(self, event: dict[str, Any]) -> None:
        self.notify(ServerEvent(event))
        event_type = event.get("type", "")

        if event_type == "error":
            error = event.get("error") or {}
            logger.error(
                "Realtime server error",
                extra={"code": error.get("code"), "error_message": error.get("message")},
            )

        elif event_type in _ITEM_EVENTS and not event.get("item_id"):
            logger.warning(f"Dropping {event_type} without item_id")

        elif event_type == "conversation.item.created":
            item = event.get("item") or {}
            role = item.get("role")
            if item.get("type") == "message" and role in ("user", "assistant") and item.get("id"):
                self.notify(
                    HistoryItemAdded(
                        item_id=item["id"],
                        role="agent" if role == "assistant" else "user",
                        text=_item_text(item),
                    )
                )

        elif event_type == "conversation.item.retrieved":
            item = event.get("item") or {}
            if item.get("type") == "message" and item.get("id"):
                self.notify(HistoryItemUpdated(item["id"], _item_text(item)))

        elif event_type == "conversation.item.input_audio_transcription.completed":
            self.notify(
                TranscriptDone(event["item_id"], "user", event.get("transcript", ""))
            )

        elif event_type in ("response.audio_transcript.delta", "response.text.delta"):
            self.notify(TranscriptDelta(event["item_id"], event.get("delta", "")))

        elif event_type in ("response.audio_transcript.done", "response.text.done"):
            text = event.get("transcript", event.get("text"))
            self.notify(TranscriptDone(event["item_id"], "agent", text))
            if self._output_filters and text:
                self._spawn(self._run_output_filters(event["item_id"], text))

        elif event_type == "response.audio.delta":
            if self._stream is not None and event.get("delta"):
                self._stream.push(base64.b64decode(event["delta"]))

        elif event_type == "input_audio_buffer.speech_started":
            # User barged in; stop whatever is still queued for playback.
            if self._stream is not None:
                self._stream.flush()

        elif event_type == "response.function_call_arguments.done":
            self._spawn(
                self._handle_function_call(
                    event.get("name", ""), event.get("call_id", ""), event.get("arguments")
                )
            )

    async def _run_output_filters(self, item_id: str, text: str) -> None:
        verdict: ModerationOutput | None = None
        for output_filter in self._output_filters:
            try:
                verdict = await output_filter(text)
            except Exception as e:
                logger.error(f"Output filter failed: {e}", extra={"item_id": item_id})
                continue
            if verdict.tripped:
                break

        if verdict is not None:
            self.notify(GuardrailEvaluated(item_id, verdict))

    async def _handle_function_call(
        self, name: str, call_id: str, raw_arguments: str | None
    ) -> None:
        try:
            arguments = json.loads(raw_arguments) if raw_arguments else {}
        except json.JSONDecodeError:
            logger.warning(f"Malformed arguments for {name}, using empty object")
            arguments = {}

        target = self._handoff_target(name)
        if target is not None:
            await self._handoff(target, call_id)
            return

        self.notify(ToolCallStarted(name, arguments))
        result = await self._execute_tool(name, arguments)
        self.notify(ToolCallFinished(name, result))

        await self._send_function_output(call_id, result)
        await self.send_event(ResponseCreateEvent().to_event())

    def _handoff_target(self, tool_name: str) -> Agent | None:
        if self._active is None:
            return None
        for target_name in self._active.handoff_targets:
            target = self._agents.get(target_name)
            if target is not None and handoff_tool_name(target.name) == tool_name:
                return target
        return None

    async def _handoff(self, target: Agent, call_id: str) -> None:
        self._active = target
        await self.send_event(self._agent_session_event(target))
        await self._send_function_output(call_id, {"assistant": target.name})
        self.notify(AgentHandoff(target.name))
        await self.send_event(ResponseCreateEvent().to_event())

    async def _execute_tool(self, name: str, arguments: dict[str, Any]) -> Any:
        tool = self._active.find_tool(name) if self._active is not None else None
        if tool is None:
            logger.warning(f"Model called unknown tool: {name}")
            return {"error": f"Unknown tool: {name}"}

        if tool.handler is None:
            return {
                "success": True,
                "message": f"Tool {name} executed successfully",
                "input": arguments,
            }

        try:
            return await tool.handler(arguments)
        except Exception as e:
            logger.error(f"Tool {name} failed: {e}", exc_info=True)
            return {"error": str(e)}

    async def _send_function_output(self, call_id: str, result: Any) -> None:
        event = FunctionCallOutputEvent(
            item=FunctionCallOutputItem(call_id=call_id, output=json.dumps(result, default=str))
        )
        await self.send_event(event.to_event())


def _item_text(item: dict[str, Any]) -> str:
    parts = []
    for content in item.get("content") or []:
        text = content.get("text") or content.get("transcript")
        if text:
            parts.append(text)
    return "".join(parts)
