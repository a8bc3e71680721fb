"""Realtime client event definitions.

Defines Pydantic models for the client → server events the session core sends
over the realtime transport. Events are serialized to plain dicts with
`to_event()` before being handed to `RealtimeTransport.send_event()`.
"""

from typing import Any, Literal

from pydantic import BaseModel, Field

from voice_agents.config import TurnDetectionConfig


class ServerVAD(BaseModel):
    """Server-side voice activity detector description."""

    type: Literal["server_vad"] = "server_vad"
    threshold: float
    prefix_padding_ms: int
    silence_duration_ms: int
    create_response: bool = True

    @classmethod
    def from_config(cls, config: TurnDetectionConfig) -> "ServerVAD":
        return cls(
            threshold=config.threshold,
            prefix_padding_ms=config.prefix_padding_ms,
            silence_duration_ms=config.silence_duration_ms,
            create_response=config.create_response,
        )


class TurnDetectionSession(BaseModel):
    """Session fields touched by the turn-taking coordinator.

    `turn_detection` is always serialized; `None` disables the detector.
    """

    turn_detection: ServerVAD | None


class ClientEvent(BaseModel):
    """Base class for client → server events."""

    type: str

    def to_event(self) -> dict[str, Any]:
        """Serialize to the dict form accepted by the transport."""
        return self.model_dump()


class SessionUpdateEvent(ClientEvent):
    """Client → Server: session configuration update (turn detection)."""

    type: Literal["session.update"] = "session.update"
    session: TurnDetectionSession


class InputTextContent(BaseModel):
    type: Literal["input_text"] = "input_text"
    text: str


class MessageItem(BaseModel):
    """Conversation message item."""

    id: str | None = None
    type: Literal["message"] = "message"
    role: Literal["user", "assistant", "system"]
    content: list[InputTextContent]

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


class ConversationItemCreateEvent(ClientEvent):
    """Client → Server: append an item to the conversation."""

    type: Literal["conversation.item.create"] = "conversation.item.create"
    item: MessageItem

    def to_event(self) -> dict[str, Any]:
        return {"type": self.type, "item": self.item.to_dict()}

    @classmethod
    def text_message(
        cls, role: Literal["user", "assistant", "system"], text: str, item_id: str | None = None
    ) -> "ConversationItemCreateEvent":
        return cls(
            item=MessageItem(id=item_id, role=role, content=[InputTextContent(text=text)])
        )


class ResponseCreateEvent(ClientEvent):
    """Client → Server: request an agent turn."""

    type: Literal["response.create"] = "response.create"


class ResponseCancelEvent(ClientEvent):
    """Client → Server: cancel the in-flight agent turn."""

    type: Literal["response.cancel"] = "response.cancel"


class InputAudioBufferClearEvent(ClientEvent):
    """Client → Server: drop any buffered input audio."""

    type: Literal["input_audio_buffer.clear"] = "input_audio_buffer.clear"


class InputAudioBufferCommitEvent(ClientEvent):
    """Client → Server: commit buffered input audio as the user's turn."""

    type: Literal["input_audio_buffer.commit"] = "input_audio_buffer.commit"


class InputAudioBufferAppendEvent(ClientEvent):
    """Client → Server: append base64 PCM16 input audio."""

    type: Literal["input_audio_buffer.append"] = "input_audio_buffer.append"
    audio: str = Field(..., description="Base64-encoded PCM16 audio")


class FunctionCallOutputItem(BaseModel):
    type: Literal["function_call_output"] = "function_call_output"
    call_id: str
    output: str


class FunctionCallOutputEvent(ClientEvent):
    """Client → Server: return a tool result to the model."""

    type: Literal["conversation.item.create"] = "conversation.item.create"
    item: FunctionCallOutputItem


def session_update(config: TurnDetectionConfig | None) -> dict[str, Any]:
    """Build a session.update event; `None` selects manual (push-to-talk) turns."""
    vad = ServerVAD.from_config(config) if config is not None else None
    return SessionUpdateEvent(session=TurnDetectionSession(turn_detection=vad)).to_event()
