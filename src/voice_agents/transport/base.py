"""Base transport abstraction for the realtime reasoning service.

Defines the interface the session controller consumes. Implementations own the
wire connection; the controller only ever calls these primitives and receives
`Notification` records through `listener`.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from typing import TYPE_CHECKING, Any

from voice_agents.transport.notifications import Notification

if TYPE_CHECKING:
    from voice_agents.agents.models import Agent
    from voice_agents.guardrails import ModerationOutput

# Output filter: finalized agent text -> verdict.
OutputFilter = Callable[[str], Awaitable["ModerationOutput"]]

NotificationListener = Callable[[Notification], None]


class RealtimeTransport(ABC):
    """Bidirectional event channel to the remote reasoning service.

    Callers are expected not to call `connect()` twice for one session; the
    transport does not enforce it.
    """

    def __init__(self) -> None:
        self.listener: NotificationListener | None = None

    def notify(self, notification: Notification) -> None:
        """Hand a notification to the registered listener, if any."""
        if self.listener is not None:
            self.listener(notification)

    @abstractmethod
    async def connect(
        self,
        credential: str,
        initial_agents: Sequence["Agent"],
        output_filters: Sequence[OutputFilter],
        context: dict[str, Any],
    ) -> None:
        """Open the channel with the first agent of `initial_agents` active.

        Args:
            credential: Short-lived secret from the credential endpoint
            initial_agents: Agent list; initial selection is positional
            output_filters: Filters run on every finalized agent message
            context: Shared context made available to tools

        Raises:
            TransportError: If the channel cannot be opened
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the channel. Safe to call when not connected."""
        pass

    @abstractmethod
    async def send_event(self, event: dict[str, Any]) -> None:
        """Send one structured client event."""
        pass

    @abstractmethod
    async def send_user_text(self, text: str) -> None:
        """Send a user text turn and request a response."""
        pass

    @abstractmethod
    async def interrupt(self) -> None:
        """Stop any in-flight agent utterance."""
        pass

    @abstractmethod
    async def mute(self, muted: bool) -> None:
        """Mute or unmute the transport's audio channel."""
        pass
