"""Transcript and event recording.

Two append-only read models for the UI:

- `Transcript`: conversation items (messages and breadcrumbs) keyed by item id,
  displayed in creation order. Items are mutated in place as streamed text
  arrives but never removed; hidden messages stay in the mapping and are only
  filtered from the visible view.
- `EventLog`: raw protocol events in both directions, in insertion order.

Typical usage:
    recorder = SessionRecorder()
    recorder.transcript.add_message("item_1", "agent")
    recorder.transcript.update_message("item_1", "Hello", append=True)
    recorder.events.log_client_event({"type": "response.create"})
"""

import itertools
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from voice_agents.guardrails import GuardrailResult
from voice_agents.transport.notifications import Role

logger = logging.getLogger(__name__)


class ItemKind(Enum):
    MESSAGE = "MESSAGE"
    BREADCRUMB = "BREADCRUMB"


class ItemStatus(Enum):
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"


def _display_time() -> str:
    return datetime.now().strftime("%H:%M:%S.%f")[:-3]


@dataclass
class TranscriptItem:
    """Single transcript entry.

    Attributes:
        item_id: Unique id (transport item id for messages)
        kind: Message or breadcrumb
        title: Display text (message text or breadcrumb title)
        role: Speaker for messages, None for breadcrumbs
        data: Payload attached to a breadcrumb
        created_at_ms: Monotonic creation time, used for ordering
        sequence: Tie-breaker for items created in the same millisecond
        timestamp: Wall-clock display time
        status: Streaming status
        hidden: Suppressed from the visible transcript (system-internal turns)
        expanded: UI collapse flag for breadcrumbs
        guardrail: Moderation verdict, merged in once evaluated
    """

    item_id: str
    kind: ItemKind
    title: str = ""
    role: Role | None = None
    data: Any = None
    created_at_ms: float = 0.0
    sequence: int = 0
    timestamp: str = ""
    status: ItemStatus = ItemStatus.IN_PROGRESS
    hidden: bool = False
    expanded: bool = False
    guardrail: GuardrailResult | None = None

    @property
    def is_message(self) -> bool:
        return self.kind is ItemKind.MESSAGE


class Transcript:
    """Append-only mapping of transcript items keyed by item id."""

    def __init__(self) -> None:
        self._items: dict[str, TranscriptItem] = {}
        self._sequence = itertools.count()

    def _new_item(self, item_id: str, kind: ItemKind, **fields: Any) -> TranscriptItem:
        item = TranscriptItem(
            item_id=item_id,
            kind=kind,
            created_at_ms=time.monotonic() * 1000.0,
            sequence=next(self._sequence),
            timestamp=_display_time(),
            **fields,
        )
        self._items[item_id] = item
        return item

    def add_message(
        self, item_id: str, role: Role, text: str = "", hidden: bool = False
    ) -> TranscriptItem:
        """Add a message; an existing id is left untouched and returned."""
        existing = self._items.get(item_id)
        if existing is not None:
            logger.debug("Transcript message already exists", extra={"item_id": item_id})
            return existing

        return self._new_item(item_id, ItemKind.MESSAGE, title=text, role=role, hidden=hidden)

    def update_message(self, item_id: str, text: str, append: bool = False) -> bool:
        """Replace or extend a message's text.

        Returns:
            False if no message with `item_id` exists
        """
        item = self._items.get(item_id)
        if item is None or not item.is_message:
            return False

        item.title = item.title + text if append else text
        return True

    def add_breadcrumb(self, title: str, data: Any = None) -> TranscriptItem:
        return self._new_item(
            f"breadcrumb-{uuid.uuid4().hex}",
            ItemKind.BREADCRUMB,
            title=title,
            data=data,
            status=ItemStatus.DONE,
        )

    def set_status(self, item_id: str, status: ItemStatus) -> bool:
        item = self._items.get(item_id)
        if item is None:
            return False
        item.status = status
        return True

    def toggle_expand(self, item_id: str) -> bool:
        item = self._items.get(item_id)
        if item is None:
            return False
        item.expanded = not item.expanded
        return True

    def merge_guardrail(self, item_id: str, result: GuardrailResult) -> bool:
        """Attach a moderation verdict to an existing message; never creates one."""
        item = self._items.get(item_id)
        if item is None or not item.is_message:
            logger.debug("No message to attach guardrail result to", extra={"item_id": item_id})
            return False

        item.guardrail = result
        return True

    def get(self, item_id: str) -> TranscriptItem | None:
        return self._items.get(item_id)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def __len__(self) -> int:
        return len(self._items)

    @property
    def items(self) -> list[TranscriptItem]:
        """All items, including hidden ones, in creation order."""
        return sorted(self._items.values(), key=lambda i: (i.created_at_ms, i.sequence))

    @property
    def visible_items(self) -> list[TranscriptItem]:
        return [i for i in self.items if not i.hidden]


@dataclass
class LoggedEvent:
    """Wire-level record of one protocol event."""

    event_id: str
    direction: str  # "client" | "server"
    event_name: str
    event_data: dict[str, Any]
    timestamp: str = field(default_factory=_display_time)
    expanded: bool = False


class EventLog:
    """Insertion-ordered log of raw protocol events."""

    def __init__(self) -> None:
        self._events: list[LoggedEvent] = []

    def _add(self, direction: str, event: dict[str, Any], suffix: str) -> LoggedEvent:
        name = f"{event.get('type', '')} {suffix}".strip()
        logged = LoggedEvent(
            event_id=str(event.get("event_id") or uuid.uuid4().hex),
            direction=direction,
            event_name=name,
            event_data=event,
        )
        self._events.append(logged)
        return logged

    def log_client_event(self, event: dict[str, Any], suffix: str = "") -> LoggedEvent:
        return self._add("client", event, suffix)

    def log_server_event(self, event: dict[str, Any], suffix: str = "") -> LoggedEvent:
        return self._add("server", event, suffix)

    def toggle_expand(self, event_id: str) -> bool:
        for logged in self._events:
            if logged.event_id == event_id:
                logged.expanded = not logged.expanded
                return True
        return False

    @property
    def events(self) -> list[LoggedEvent]:
        return list(self._events)

    def __len__(self) -> int:
        return len(self._events)


@dataclass
class SessionRecorder:
    """Owner of both read models for one application run."""

    transcript: Transcript = field(default_factory=Transcript)
    events: EventLog = field(default_factory=EventLog)
