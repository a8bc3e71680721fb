"""Notifications posted by a realtime transport.

The transport never mutates session state directly. Everything it observes is
wrapped in one of these records and posted to the session controller's queue,
where it is processed in arrival order on the controller's event loop.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from voice_agents.audio.stream import AudioStream
    from voice_agents.guardrails import ModerationOutput


class SessionStatus(Enum):
    """Connection status of the realtime session."""

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"


Role = Literal["user", "agent"]


@dataclass(frozen=True)
class ConnectionStatusChanged:
    status: SessionStatus


@dataclass(frozen=True)
class AgentHandoff:
    """Control transferred to `agent_name`."""

    agent_name: str


@dataclass(frozen=True)
class MediaStreamAttached:
    stream: "AudioStream"


@dataclass(frozen=True)
class HistoryItemAdded:
    item_id: str
    role: Role
    text: str = ""


@dataclass(frozen=True)
class HistoryItemUpdated:
    item_id: str
    text: str


@dataclass(frozen=True)
class TranscriptDelta:
    item_id: str
    delta: str


@dataclass(frozen=True)
class TranscriptDone:
    """Text of an item is final; `role` decides whether moderation applies."""

    item_id: str
    role: Role
    text: str | None = None


@dataclass(frozen=True)
class ToolCallStarted:
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolCallFinished:
    name: str
    result: Any = None


@dataclass(frozen=True)
class GuardrailEvaluated:
    """Verdict of the output filters for a finalized agent message."""

    item_id: str
    output: "ModerationOutput"


@dataclass(frozen=True)
class ServerEvent:
    """Raw server → client protocol event, for the event log."""

    event: dict[str, Any]


Notification = (
    ConnectionStatusChanged
    | AgentHandoff
    | MediaStreamAttached
    | HistoryItemAdded
    | HistoryItemUpdated
    | TranscriptDelta
    | TranscriptDone
    | ToolCallStarted
    | ToolCallFinished
    | GuardrailEvaluated
    | ServerEvent
)
