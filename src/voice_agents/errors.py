"""Error types for the session orchestration core.

Only connection-establishment failures ever reach the session status; every
other error type here is raised and handled inside the component that owns
the failing resource.
"""

from dataclasses import dataclass
from enum import Enum


class VoiceAgentsError(Exception):
    """Base exception for voice agent errors."""

    pass


class CredentialError(VoiceAgentsError):
    """Raised when the credential endpoint cannot be reached or parsed."""

    pass


class TransportError(VoiceAgentsError):
    """Raised when the realtime transport fails to open or send."""

    pass


class PlaybackError(VoiceAgentsError):
    """Raised when the playback sink cannot start (e.g. no output device)."""

    pass


class CaptureError(VoiceAgentsError):
    """Raised when the microphone input stream cannot start."""

    pass


class AgentConfigError(VoiceAgentsError):
    """Raised when an agent set or agent definition is invalid."""

    pass


class ModerationError(VoiceAgentsError):
    """Raised when the moderation classifier returns an unusable answer."""

    pass


class FailureKind(Enum):
    """Classification of a failed connection attempt."""

    CREDENTIAL = "credential"
    TRANSPORT = "transport"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class ConnectionFailure:
    """Visible error state left behind by a failed connection attempt."""

    kind: FailureKind
    message: str
