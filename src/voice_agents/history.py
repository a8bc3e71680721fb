"""Translate transport history notifications into transcript mutations."""

import json
import logging
from typing import Any

from voice_agents.recorder import ItemStatus, Transcript
from voice_agents.transport.notifications import (
    HistoryItemAdded,
    HistoryItemUpdated,
    ToolCallFinished,
    ToolCallStarted,
    TranscriptDelta,
    TranscriptDone,
)

logger = logging.getLogger(__name__)

TRANSCRIBING_PLACEHOLDER = "[Transcribing...]"


class SessionHistoryHandler:
    """Applies streamed conversation updates to a `Transcript`.

    User audio turns arrive as empty items and are filled in once input
    transcription completes; until then they show a placeholder.
    """

    def __init__(self, transcript: Transcript) -> None:
        self._transcript = transcript

    def on_item_added(self, notification: HistoryItemAdded) -> None:
        if notification.item_id in self._transcript:
            return

        text = notification.text
        if notification.role == "user" and not text:
            text = TRANSCRIBING_PLACEHOLDER
        self._transcript.add_message(notification.item_id, notification.role, text)

    def on_item_updated(self, notification: HistoryItemUpdated) -> None:
        if notification.text:
            self._transcript.update_message(notification.item_id, notification.text)

    def on_transcript_delta(self, notification: TranscriptDelta) -> None:
        if not self._transcript.update_message(
            notification.item_id, notification.delta, append=True
        ):
            logger.debug("Delta for unknown item", extra={"item_id": notification.item_id})

    def on_transcript_done(self, notification: TranscriptDone) -> bool:
        """Finalize a message.

        Returns:
            True if a finalized agent message now awaits moderation
        """
        item = self._transcript.get(notification.item_id)
        if item is None:
            # Server skipped item.created; keep the final text anyway.
            item = self._transcript.add_message(notification.item_id, notification.role)

        if notification.text is not None:
            text = notification.text
            if notification.role == "user" and not text.strip():
                text = "[inaudible]"
            self._transcript.update_message(notification.item_id, text)

        self._transcript.set_status(notification.item_id, ItemStatus.DONE)
        return item.role == "agent"

    def on_tool_start(self, notification: ToolCallStarted) -> None:
        self._transcript.add_breadcrumb(
            f"function call: {notification.name}", _jsonable(notification.arguments)
        )

    def on_tool_end(self, notification: ToolCallFinished) -> None:
        self._transcript.add_breadcrumb(
            f"function call result: {notification.name}", _jsonable(notification.result)
        )


def _jsonable(value: Any) -> Any:
    """Breadcrumb payloads are shown as JSON; stringify anything that is not."""
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value
